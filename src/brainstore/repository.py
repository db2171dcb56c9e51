"""Brain repository: every store operation, one brain file at a time.

Each mutating call is a single transaction against one brain:

    lock -> load -> mutate in memory -> persist -> unlock -> emit events

The loaded Brain belongs to the call that loaded it and is thrown away
afterwards, so an error raised mid-mutation or a fatal persist failure
leaves nothing behind. Reads take no lock; the writer's rename semantics
mean they see either the previous or the new complete file.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator

from pydantic import JsonValue

from . import ledger
from .atomic import AtomicWriter, WriteResult
from .backups import BackupManager
from .canonical import check_json_value, decode, encode, hash_bytes, hash_value, is_canonical
from .commits import CommitIndex
from .constants import (
    DEFAULT_BRAIN,
    EVENT_BRAIN_ACTIVATED,
    EVENT_BRAIN_CREATED,
    EVENT_BRAIN_DELETED,
    EVENT_BRAIN_RESTORED,
    EVENT_CLEANUP_COMPLETED,
    EVENT_ENTITY_DELETED,
    EVENT_ENTITY_RESTORED,
    EVENT_ENTITY_SAVED,
    EVENT_PROJECT_DELETED,
    EVENT_PROJECT_UPDATED,
    MOVE_MERGE,
    PROJECT_ACTIVE,
    PROJECT_ARCHIVED,
    RESERVED_BRAIN_SLUGS,
    SYSTEM_BRAIN,
)
from .errors import BrainError, Conflict, NotFound, ValidationFailure
from .events import EventBus
from .models import Brain, Entity, Project, SchemaBinding, Version, format_ts, utc_now
from .paths import PathLocator, require_slug, sanitize_slug
from .projects import ProjectStore, join_path, leaf_of, normalize_path, parent_of
from .timeutil import parse_time_reference

logger = logging.getLogger(__name__)


class _Transaction:
    """Mutable state of one load-mutate-persist cycle."""

    def __init__(self, slug: str, brain: Brain):
        self.slug = slug
        self.brain = brain
        self.index = CommitIndex(brain)
        self.dirty = False
        self.events: list[tuple[str, dict]] = []

    def changed(self) -> None:
        self.dirty = True

    def emit(self, name: str, payload: dict) -> None:
        """Queue an event; it is delivered only after a successful persist."""
        self.events.append((name, {"brain": self.slug, **payload}))

    def project(self, slug: str) -> Project:
        project = self.brain.projects.get(slug)
        if project is None:
            raise NotFound(f"Project '{slug}' not found", {"brain": self.slug, "project": slug})
        return project

    def store(self, slug: str) -> ProjectStore:
        return ProjectStore(self.project(slug))


def schema_binding(selector: str) -> SchemaBinding:
    """"schemas/article@3" -> SchemaBinding(slug="schemas/article", reference="@3")."""
    path, ref = ledger.parse_selector(selector)
    parsed = ledger.parse_ref(ref)
    return SchemaBinding(
        slug=normalize_path(path),
        reference=None if parsed.is_active else str(parsed),
    )


def _as_list(paths: str | list[str]) -> list[str]:
    return [paths] if isinstance(paths, str) else list(paths)


class BrainRepository:
    """All brain store operations.

    Project and entity operations target the active brain unless a
    `brain` slug is passed explicitly.
    """

    def __init__(
        self,
        paths: PathLocator,
        writer: AtomicWriter,
        events: EventBus,
        backups: BackupManager,
        default_brain: str = DEFAULT_BRAIN,
    ):
        self.paths = paths
        self.writer = writer
        self.events = events
        self.locks = writer.locks
        self.backups = backups
        self.default_brain = default_brain

    # --- Loading and persisting ---

    def _read(self, slug: str) -> Brain:
        path = self.paths.brain(slug)
        if not path.exists():
            raise NotFound(f"Brain '{slug}' not found", {"brain": slug})
        return Brain.from_document(decode(self.writer.read(path)))

    def _write(self, path: Path, brain: Brain) -> WriteResult:
        return self.writer.persist(path, encode(brain.to_document()))

    def _target(self, brain: str | None) -> str:
        if brain is None:
            return self.ensure_active_brain()
        return require_slug(brain, "brain")

    def _load(self, brain: str | None) -> Brain:
        return self._read(self._target(brain))

    @contextmanager
    def _transaction(self, brain: str | None = None) -> Iterator[_Transaction]:
        slug = self._target(brain)
        path = self.paths.brain(slug)
        with self.locks.hold(path):
            txn = _Transaction(slug, self._read(slug))
            yield txn
            if txn.dirty:
                txn.brain.meta.updated_at = utc_now()
                self._write(path, txn.brain)
        self._publish(txn.events)

    def _publish(self, events: list[tuple[str, dict]]) -> None:
        for name, payload in events:
            self.events.emit(name, payload)

    def _create(self, slug: str, path: Path, **state: Any) -> Brain | None:
        """Write a fresh brain unless one exists; None when it already did."""
        with self.locks.hold(path):
            if path.exists():
                return None
            brain = Brain.new(slug, **state)
            self._write(path, brain)
        logger.info(f"Created brain '{slug}'")
        self.events.emit(EVENT_BRAIN_CREATED, {"brain": slug})
        return brain

    # --- Brains ---

    def ensure_system_brain(self) -> Brain:
        """Load the system brain, creating it on first use."""
        path = self.paths.system_brain()
        if not path.exists():
            created = self._create(SYSTEM_BRAIN, path, active_brain=self.default_brain)
            if created is not None:
                return created
        return self._read(SYSTEM_BRAIN)

    def ensure_brain(self, slug: str) -> Brain:
        """Load a brain, creating it with default structure if absent."""
        slug = require_slug(slug, "brain")
        if slug == SYSTEM_BRAIN:
            return self.ensure_system_brain()
        path = self.paths.user_brain(slug)
        if not path.exists():
            created = self._create(slug, path)
            if created is not None:
                return created
        return self._read(slug)

    def ensure_active_brain(self) -> str:
        """Slug of the active user brain, creating whatever is missing."""
        system = self.ensure_system_brain()
        slug = self._active_slug(system)
        self.ensure_brain(slug)
        if system.state.get("active_brain") != slug:
            with self._transaction(SYSTEM_BRAIN) as txn:
                txn.brain.state["active_brain"] = slug
                txn.changed()
        return slug

    def active_brain(self) -> str | None:
        """Active user brain slug, without creating anything."""
        if not self.paths.system_brain().exists():
            return None
        return self._active_slug(self._read(SYSTEM_BRAIN))

    def _active_slug(self, system: Brain) -> str:
        value = system.state.get("active_brain")
        if isinstance(value, str):
            slug = sanitize_slug(value)
            if slug and slug not in RESERVED_BRAIN_SLUGS:
                return slug
        return self.default_brain

    def create_brain(self, slug: str, activate: bool = False) -> dict:
        slug = require_slug(slug, "brain")
        if slug in RESERVED_BRAIN_SLUGS:
            raise Conflict(f"Brain slug '{slug}' is reserved", {"brain": slug})
        path = self.paths.user_brain(slug)
        brain = self._create(slug, path)
        if brain is None:
            raise Conflict(f"Brain '{slug}' already exists", {"brain": slug})
        if activate:
            self.set_active_brain(slug)
        return self._brain_summary(slug, brain)

    def set_active_brain(self, slug: str) -> dict:
        slug = require_slug(slug, "brain")
        if slug in RESERVED_BRAIN_SLUGS:
            raise Conflict(f"Brain '{slug}' cannot be the active brain", {"brain": slug})
        if not self.paths.user_brain(slug).exists():
            raise NotFound(f"Brain '{slug}' not found", {"brain": slug})

        self.ensure_system_brain()
        with self._transaction(SYSTEM_BRAIN) as txn:
            previous = txn.brain.state.get("active_brain")
            txn.brain.state["active_brain"] = slug
            txn.changed()
            txn.emit(EVENT_BRAIN_ACTIVATED, {"active": slug, "previous": previous})
        logger.info(f"Active brain is now '{slug}'")
        return {"active": slug, "previous": previous}

    def delete_brain(self, slug: str) -> dict:
        slug = require_slug(slug, "brain")
        if slug in RESERVED_BRAIN_SLUGS:
            raise Conflict(f"Brain '{slug}' cannot be deleted", {"brain": slug})
        if slug == self.active_brain():
            raise Conflict(f"Brain '{slug}' is active; switch first", {"brain": slug})

        path = self.paths.user_brain(slug)
        with self.locks.hold(path):
            if not path.exists():
                raise NotFound(f"Brain '{slug}' not found", {"brain": slug})
            size = path.stat().st_size
            path.unlink()
        logger.info(f"Deleted brain '{slug}'")
        self.events.emit(EVENT_BRAIN_DELETED, {"brain": slug, "bytes": size})
        return {"brain": slug, "deleted": True, "bytes": size}

    def list_brains(self) -> list[dict]:
        active = self.active_brain()
        result = []
        for slug in self.paths.user_brain_slugs():
            try:
                result.append(self._brain_summary(slug, self._read(slug), active))
            except BrainError as e:
                result.append({"slug": slug, "active": slug == active, "error": e.message})
        return result

    def _brain_summary(self, slug: str, brain: Brain, active: str | None = None) -> dict:
        path = self.paths.brain(slug)
        if active is None:
            active = self.active_brain()
        return {
            "slug": slug,
            "uuid": brain.meta.uuid,
            "schema_version": brain.meta.schema_version,
            "created_at": format_ts(brain.meta.created_at),
            "updated_at": format_ts(brain.meta.updated_at),
            "bytes": path.stat().st_size if path.exists() else 0,
            "project_count": len(brain.projects),
            "active": slug == active,
        }

    def brain_report(self, brain: str | None = None) -> dict:
        slug = self._target(brain)
        model = self._read(slug)
        entities = [e for p in model.projects.values() for e in p.entities.values()]
        return {
            **self._brain_summary(slug, model),
            "path": str(self.paths.brain(slug)),
            "entity_count": len(entities),
            "version_count": sum(len(e.versions) for e in entities),
            "commit_count": len(model.commits),
            "config_keys": sorted(model.config),
        }

    def integrity_report(self, brain: str | None = None) -> dict:
        """Re-verify content hashes, ledger metadata, the commit index and the file itself."""
        slug = self._target(brain)
        path = self.paths.brain(slug)
        if not path.exists():
            raise NotFound(f"Brain '{slug}' not found", {"brain": slug})
        raw = self.writer.read(path)
        model = Brain.from_document(decode(raw))

        issues: list[str] = []
        versions = 0
        for p_slug, project in sorted(model.projects.items()):
            if project.slug != p_slug:
                issues.append(f"{p_slug}: project slug '{project.slug}' does not match its key")
            for e_path, entity in sorted(project.entities.items()):
                for version in entity.ordered_versions():
                    versions += 1
                    if version.hash is not None and hash_value(version.payload) != version.hash:
                        issues.append(f"{p_slug}/{e_path}@{version.version}: content hash mismatch")
                probe = entity.model_copy(deep=True)
                issues.extend(f"{p_slug}/{line}" for line in ledger.repair_entity(p_slug, e_path, probe))

        index = CommitIndex(model)
        diff = index.diff()
        issues.extend(index.check_consistency())

        canonical = is_canonical(raw)
        if not canonical:
            issues.append("file is not in canonical encoding")

        return {
            "brain": slug,
            "path": str(path),
            "bytes": len(raw),
            "file_hash": hash_bytes(raw),
            "canonical": canonical,
            "projects": len(model.projects),
            "versions": versions,
            "commit_index": diff.to_dict(),
            "issues": issues,
            "ok": not issues,
            "last_write": self.writer.last_write,
            "last_failure": self.writer.last_failure,
        }

    # --- Brain config ---

    def get_config(self, key: str, brain: str | None = None) -> JsonValue:
        key = require_slug(key, "config key")
        config = self._load(brain).config
        if key not in config:
            raise NotFound(f"Config key '{key}' not set", {"key": key})
        return config[key]

    def set_config(self, key: str, value: JsonValue, brain: str | None = None) -> dict:
        key = require_slug(key, "config key")
        check_json_value(value)
        with self._transaction(brain) as txn:
            txn.brain.config[key] = value
            txn.changed()
        return {"key": key, "value": value}

    def delete_config(self, key: str, brain: str | None = None) -> dict:
        key = require_slug(key, "config key")
        with self._transaction(brain) as txn:
            if key not in txn.brain.config:
                raise NotFound(f"Config key '{key}' not set", {"key": key})
            del txn.brain.config[key]
            txn.changed()
        return {"key": key, "deleted": True}

    def list_config(self, brain: str | None = None) -> dict[str, JsonValue]:
        config = self._load(brain).config
        return {key: config[key] for key in sorted(config)}

    # --- Projects ---

    def create_project(
        self, slug: str, title: str | None = None, description: str | None = None, brain: str | None = None
    ) -> dict:
        slug = require_slug(slug, "project")
        with self._transaction(brain) as txn:
            if slug in txn.brain.projects:
                raise Conflict(f"Project '{slug}' already exists", {"brain": txn.slug, "project": slug})
            now = utc_now()
            project = Project(
                slug=slug, title=title or slug, description=description or "",
                created_at=now, updated_at=now,
            )
            txn.brain.projects[slug] = project
            txn.changed()
            txn.emit(EVENT_PROJECT_UPDATED, {"project": slug, "action": "created"})
        return project.to_summary()

    def update_project(
        self, slug: str, title: str | None = None, description: str | None = None, brain: str | None = None
    ) -> dict:
        slug = require_slug(slug, "project")
        if title is None and description is None:
            raise ValidationFailure("Nothing to update: give a title or a description")
        with self._transaction(brain) as txn:
            project = txn.project(slug)
            if title is not None:
                project.title = title
            if description is not None:
                project.description = description
            project.updated_at = utc_now()
            txn.changed()
            txn.emit(EVENT_PROJECT_UPDATED, {"project": slug, "action": "updated"})
        return project.to_summary()

    def archive_project(self, slug: str, brain: str | None = None) -> dict:
        """Soft-delete: every entity's active version becomes archived."""
        slug = require_slug(slug, "project")
        with self._transaction(brain) as txn:
            project = txn.project(slug)
            if project.status == PROJECT_ARCHIVED:
                raise Conflict(f"Project '{slug}' is already archived", {"project": slug})
            now = utc_now()
            archived = [
                path for path, entity in sorted(project.entities.items())
                if ledger.archive_entity(entity, now) is not None
            ]
            project.status = PROJECT_ARCHIVED
            project.archived_at = now
            project.updated_at = now
            txn.changed()
            txn.emit(EVENT_PROJECT_UPDATED, {"project": slug, "action": "archived", "entities": archived})
        return {**project.to_summary(), "entities_archived": len(archived)}

    def restore_project(self, slug: str, reactivate: bool = True, brain: str | None = None) -> dict:
        slug = require_slug(slug, "project")
        with self._transaction(brain) as txn:
            project = txn.project(slug)
            if project.status != PROJECT_ARCHIVED:
                raise Conflict(f"Project '{slug}' is not archived", {"project": slug})
            now = utc_now()
            restored = []
            if reactivate:
                restored = [
                    path for path, entity in sorted(project.entities.items())
                    if ledger.reactivate_entity(entity, now) is not None
                ]
            project.status = PROJECT_ACTIVE
            project.archived_at = None
            project.updated_at = now
            txn.changed()
            txn.emit(EVENT_PROJECT_UPDATED, {"project": slug, "action": "restored", "entities": restored})
        return {**project.to_summary(), "entities_reactivated": len(restored)}

    def delete_project(self, slug: str, purge_commits: bool = True, brain: str | None = None) -> dict:
        """Hard-delete a project; optionally drop its commit-index entries."""
        slug = require_slug(slug, "project")
        with self._transaction(brain) as txn:
            project = txn.project(slug)
            del txn.brain.projects[slug]
            purged = txn.index.remove_where(slug) if purge_commits else []
            txn.changed()
            txn.emit(EVENT_PROJECT_DELETED, {
                "project": slug, "entities": len(project.entities), "commits_removed": len(purged),
            })
        logger.info(f"Deleted project '{slug}' ({len(project.entities)} entities)")
        return {"project": slug, "entities_removed": len(project.entities), "commits_removed": len(purged)}

    def list_projects(self, brain: str | None = None) -> list[dict]:
        projects = self._load(brain).projects
        return [projects[slug].to_summary() for slug in sorted(projects)]

    def project_report(self, slug: str, brain: str | None = None) -> dict:
        slug = require_slug(slug, "project")
        model = self._load(brain)
        project = model.projects.get(slug)
        if project is None:
            raise NotFound(f"Project '{slug}' not found", {"project": slug})
        store = ProjectStore(project)
        entities = list(project.entities.values())
        return {
            **project.to_summary(),
            "active_entities": sum(1 for e in entities if e.active() is not None),
            "inactive_entities": sum(1 for e in entities if e.active() is None),
            "version_count": sum(len(e.versions) for e in entities),
            "commit_count": len(CommitIndex(model).for_project(slug)),
            "root_entities": store.children(None),
        }

    # --- Entities ---

    def _writable(self, txn: _Transaction, slug: str) -> ProjectStore:
        store = txn.store(slug)
        if store.archived:
            raise Conflict(f"Project '{slug}' is archived", {"project": slug})
        return store

    def _rename(self, txn: _Transaction, store: ProjectStore, plan: dict[str, str]) -> dict[str, str]:
        applied = store.apply_renames(plan)
        for old, new in applied.items():
            txn.index.relocate(store.project.slug, old, new)
        return applied

    def save_entity(
        self,
        project: str,
        path: str,
        payload: JsonValue = None,
        *,
        meta: dict | None = None,
        parent: str | None = None,
        schema: str | None = None,
        brain: str | None = None,
    ) -> dict:
        """Create an entity or add a version to it.

        Args:
            project: Project slug; created on first save
            path: Entity path, e.g. "characters/heroes/aria"
            payload: JSON value for the new version; None saves no version
            meta: Extra commit metadata, hashed into the commit
            parent: Reposition the entity under this path ("" is the root)
            schema: Bind a schema selector, e.g. "schemas/article@3"

        Returns:
            Commit metadata: project, entity, version, hash, commit, timestamp
        """
        p_slug = require_slug(project, "project")
        path = normalize_path(path)
        if payload is None and parent is None and schema is None:
            raise ValidationFailure("Nothing to save: give a payload, a parent or a schema")
        binding = schema_binding(schema) if schema else None
        new_parent = (normalize_path(parent, allow_root=True) or None) if parent is not None else None

        with self._transaction(brain) as txn:
            now = utc_now()
            if payload is None:
                store = self._writable(txn, p_slug)
                store.get(path)
            elif p_slug in txn.brain.projects:
                store = self._writable(txn, p_slug)
            else:
                store = ProjectStore(Project(slug=p_slug, title=p_slug, created_at=now, updated_at=now))
                txn.brain.projects[p_slug] = store.project

            moved: dict[str, str] = {}
            if parent is not None:
                if path in store:
                    moved = self._rename(txn, store, store.move_plan(path, new_parent, MOVE_MERGE))
                    path = moved.get(path, path)
                else:
                    path = join_path(new_parent, leaf_of(path))

            entity, created = store.get_or_create(path, now)
            if binding is not None:
                entity.schema_ref = binding
                entity.updated_at = now

            result: dict[str, Any] = {"project": p_slug, "entity": path, "created": created}
            if payload is not None:
                version = ledger.save_version(txn.index, p_slug, entity, payload, meta, now)
                result.update(
                    version=version.version,
                    hash=version.hash,
                    commit=version.commit,
                    timestamp=format_ts(now),
                )
                txn.emit(EVENT_ENTITY_SAVED, {
                    "project": p_slug, "entity": path, "version": version.version, "commit": version.commit,
                })
            if moved:
                result["moved"] = moved
                txn.emit(EVENT_PROJECT_UPDATED, {"project": p_slug, "action": "entity_moved", "moved": moved})

            store.touch(now)
            txn.changed()
        return result

    def move_entity(
        self,
        project: str,
        source: str,
        target: str | None = None,
        mode: str = MOVE_MERGE,
        brain: str | None = None,
    ) -> dict:
        """Reparent source and its subtree under target (None or "" is the root).

        Payloads and version history are untouched. With mode "replace"
        target's existing children are first promoted to target's parent.
        """
        p_slug = require_slug(project, "project")
        source = normalize_path(source)
        target = normalize_path(target, allow_root=True) or None

        with self._transaction(brain) as txn:
            store = self._writable(txn, p_slug)
            moved = self._rename(txn, store, store.move_plan(source, target, mode))
            if moved:
                store.touch()
                txn.changed()
                txn.emit(EVENT_PROJECT_UPDATED, {"project": p_slug, "action": "entity_moved", "moved": moved})
        return {"project": p_slug, "source": source, "target": target, "mode": mode, "moved": moved}

    def remove_entity(
        self, project: str, paths: str | list[str], recursive: bool = False, brain: str | None = None
    ) -> dict:
        """Soft-deactivate entities; children are promoted unless recursive."""
        p_slug = require_slug(project, "project")
        targets = [normalize_path(p) for p in _as_list(paths)]

        with self._transaction(brain) as txn:
            store = txn.store(p_slug)
            now = utc_now()
            removed: list[str] = []
            promoted: dict[str, str] = {}
            for path in targets:
                path = promoted.get(path, path)
                store.get(path)
                affected = store.subtree(path) if recursive else [path]
                if not recursive:
                    promoted.update(self._rename(txn, store, store.promotion_plan(path)))
                for item in affected:
                    ledger.archive_entity(store.entities[item], now)
                removed.extend(affected)
                txn.emit(EVENT_ENTITY_DELETED, {
                    "project": p_slug, "entity": path, "mode": "soft", "recursive": recursive, "affected": affected,
                })
            store.touch(now)
            txn.changed()
        return {"project": p_slug, "removed": removed, "promoted": promoted}

    def delete_entity(
        self, project: str, paths: str | list[str], recursive: bool = False, brain: str | None = None
    ) -> dict:
        """Hard-delete entities and their commits; children are promoted unless recursive."""
        p_slug = require_slug(project, "project")
        targets = [normalize_path(p) for p in _as_list(paths)]

        with self._transaction(brain) as txn:
            store = txn.store(p_slug)
            deleted: list[str] = []
            promoted: dict[str, str] = {}
            commits_removed = 0
            for path in targets:
                path = promoted.get(path, path)
                store.get(path)
                doomed = store.subtree(path) if recursive else [path]
                for item in doomed:
                    commits_removed += len(txn.index.remove_where(p_slug, item))
                store.remove(doomed)
                if not recursive:
                    promoted.update(self._rename(txn, store, store.promotion_plan(path)))
                deleted.extend(doomed)
                txn.emit(EVENT_ENTITY_DELETED, {
                    "project": p_slug, "entity": path, "mode": "hard", "recursive": recursive, "affected": doomed,
                })
            store.touch()
            txn.changed()
        logger.info(f"Deleted {len(deleted)} entities from '{p_slug}'")
        return {"project": p_slug, "deleted": deleted, "promoted": promoted, "commits_removed": commits_removed}

    def restore_version(
        self, project: str, entity: str, ref: str | int | None = None, brain: str | None = None
    ) -> dict:
        """Reactivate an inactive or archived version without a new version number.

        With no ref the newest archived version wins, else the newest inactive one.
        """
        p_slug = require_slug(project, "project")
        path = normalize_path(entity)
        with self._transaction(brain) as txn:
            store = self._writable(txn, p_slug)
            record = store.get(path)
            target = ledger.resolve_version(txn.index, p_slug, record, ref) if ref is not None else None
            previous = record.active_version
            version = ledger.restore_version(record, target)
            store.touch()
            txn.changed()
            txn.emit(EVENT_ENTITY_RESTORED, {
                "project": p_slug, "entity": path, "version": version.version,
                "commit": version.commit, "previous": previous,
            })
        return {"project": p_slug, "entity": path, "previous": previous, **version.to_summary()}

    def _entity(self, model: Brain, project: str, path: str) -> tuple[str, str, Entity]:
        p_slug = require_slug(project, "project")
        path = normalize_path(path)
        if p_slug not in model.projects:
            raise NotFound(f"Project '{p_slug}' not found", {"project": p_slug})
        return p_slug, path, ProjectStore(model.projects[p_slug]).get(path)

    def resolve_version(
        self, project: str, entity: str, ref: str | int | None = None, brain: str | None = None
    ) -> Version:
        """Active version (ref None), version number ("7", "@7") or commit ("#3fa2c1...")."""
        model = self._load(brain)
        p_slug, _, record = self._entity(model, project, entity)
        return ledger.resolve_version(CommitIndex(model), p_slug, record, ref)

    def get_entity(
        self, project: str, entity: str, ref: str | int | None = None, brain: str | None = None
    ) -> dict:
        model = self._load(brain)
        p_slug, path, record = self._entity(model, project, entity)
        version = ledger.resolve_version(CommitIndex(model), p_slug, record, ref)
        return {
            "project": p_slug,
            "entity": path,
            "schema": record.schema_ref.model_dump() if record.schema_ref else None,
            **version.to_summary(),
            "active": version.version == record.active_version,
            "payload": version.payload,
            "meta": version.meta,
        }

    def entity_report(self, project: str, entity: str, brain: str | None = None) -> dict:
        model = self._load(brain)
        p_slug, path, record = self._entity(model, project, entity)
        store = ProjectStore(model.projects[p_slug])
        return {
            "project": p_slug,
            **record.to_summary(),
            "parent": parent_of(path),
            "children": store.children(path),
            "version_counter": record.version_counter,
            "versions": [v.to_summary() for v in record.ordered_versions()],
            "commit_count": len(CommitIndex(model).for_project(p_slug, path)),
        }

    def find_commit(self, commit: str, brain: str | None = None) -> dict:
        """Locate a commit anywhere in the brain by full hash or unique prefix."""
        prefix = ledger.parse_ref("#" + str(commit).strip().lstrip("#")).commit
        model = self._load(brain)
        index = CommitIndex(model)

        entry = index.lookup(prefix)
        if entry is not None:
            record = model.projects.get(entry.project, Project(slug=entry.project)).entities.get(entry.entity)
            version = record.versions.get(str(entry.version)) if record else None
            if version is not None and version.commit == prefix:
                return {"project": entry.project, "entity": entry.entity, **version.to_summary()}
            logger.debug(f"Commit index entry for {prefix[:12]} is stale; scanning ledgers")

        matches = [
            (p_slug, path, v)
            for p_slug, p in sorted(model.projects.items())
            for path, e in sorted(p.entities.items())
            for v in e.versions.values()
            if v.commit and v.commit.startswith(prefix)
        ]
        if not matches:
            raise NotFound(f"Commit #{prefix} not found", {"commit": prefix})
        if len(matches) > 1:
            raise Conflict(
                f"Commit prefix #{prefix} is ambiguous",
                {"commit": prefix, "candidates": [v.commit for _, _, v in matches]},
            )
        p_slug, path, version = matches[0]
        return {"project": p_slug, "entity": path, **version.to_summary()}

    # --- Listings (metadata only) ---

    def list_entities(self, project: str, parent: str | None = None, brain: str | None = None) -> list[dict]:
        """All entities, or the direct children of parent ("" lists root-level entities)."""
        p_slug = require_slug(project, "project")
        model = self._load(brain)
        if p_slug not in model.projects:
            raise NotFound(f"Project '{p_slug}' not found", {"project": p_slug})
        store = ProjectStore(model.projects[p_slug])
        if parent is None:
            paths = sorted(store.entities)
        else:
            paths = store.children(normalize_path(parent, allow_root=True) or None)
        return [{**store.entities[p].to_summary(), "parent": parent_of(p)} for p in paths]

    def list_versions(self, project: str, entity: str, brain: str | None = None) -> list[dict]:
        _, _, record = self._entity(self._load(brain), project, entity)
        return [v.to_summary() for v in record.ordered_versions()]

    def list_commits(
        self,
        project: str,
        entity: str | None = None,
        limit: int | None = None,
        since: str | datetime | None = None,
        brain: str | None = None,
    ) -> list[dict]:
        """Commits of a project, newest first, read from the ledgers."""
        p_slug = require_slug(project, "project")
        if isinstance(since, str):
            try:
                since = parse_time_reference(since)
            except ValueError as e:
                raise ValidationFailure(str(e), {"since": since}) from e
        if limit is not None and limit < 0:
            raise ValidationFailure(f"limit must not be negative, got {limit}")

        model = self._load(brain)
        if p_slug not in model.projects:
            raise NotFound(f"Project '{p_slug}' not found", {"project": p_slug})
        store = ProjectStore(model.projects[p_slug])
        paths = [store.get(normalize_path(entity)).slug] if entity else list(store.entities)

        commits = []
        for path in paths:
            for version in store.entities[path].versions.values():
                if not version.commit:
                    continue
                if since is not None and (version.committed_at is None or version.committed_at < since):
                    continue
                commits.append({"project": p_slug, "entity": path, **version.to_summary()})

        commits.sort(key=lambda c: (c["committed_at"] or "", c["entity"], c["version"]), reverse=True)
        return commits[:limit] if limit is not None else commits

    # --- Maintenance ---

    def _projects(self, txn: _Transaction, project: str | None) -> list[str]:
        if project is None:
            return sorted(txn.brain.projects)
        slug = require_slug(project, "project")
        txn.project(slug)
        return [slug]

    def purge_inactive_versions(
        self,
        project: str,
        entity: str | None = None,
        keep_newest: int = 0,
        dry_run: bool = False,
        brain: str | None = None,
    ) -> dict:
        """Irreversibly delete non-active versions beyond keep_newest per entity."""
        p_slug = require_slug(project, "project")
        with self._transaction(brain) as txn:
            store = txn.store(p_slug)
            paths = [store.get(normalize_path(entity)).slug] if entity else sorted(store.entities)
            removed = []
            for path in paths:
                record = store.entities[path]
                if dry_run:
                    versions = ledger.purge_candidates(record, keep_newest)
                else:
                    versions = ledger.purge_inactive(txn.index, p_slug, record, keep_newest)
                removed.extend(
                    {"entity": path, "version": v.version, "commit": v.commit, "status": v.status}
                    for v in versions
                )
            report = {"project": p_slug, "dry_run": dry_run, "keep": keep_newest, "removed": removed, "count": len(removed)}
            if not dry_run:
                if removed:
                    store.touch()
                    txn.changed()
                txn.emit(EVENT_CLEANUP_COMPLETED, {"action": "purge", "project": p_slug, "count": len(removed)})
        return report

    def compact(self, project: str | None = None, brain: str | None = None) -> dict:
        """Re-sort ledgers and rebuild the commit index; never renumbers versions.

        With a project, only that project is re-sorted and re-indexed, though
        index entries of deleted projects are dropped as well.
        """
        with self._transaction(brain) as txn:
            slugs = self._projects(txn, project)
            reordered = 0
            for slug in slugs:
                for record in txn.brain.projects[slug].entities.values():
                    if ledger.sort_ledger(record):
                        reordered += 1
            diff = txn.index.rebuild(None if project is None else slugs[0])
            if not diff.clean:
                txn.changed()
            report = {
                "project": project and slugs[0],
                "entities_reordered": reordered,
                "commits_removed": len(diff.stale),
                "commits_added": len(diff.missing),
                "commits_relocated": len(diff.mismatched),
                "changed": txn.dirty,
            }
            txn.emit(EVENT_CLEANUP_COMPLETED, {"action": "compact", **report})
        return report

    def repair(self, project: str | None = None, dry_run: bool = False, brain: str | None = None) -> dict:
        """Fix inconsistent ledger and project metadata, then rebuild the index."""
        with self._transaction(brain) as txn:
            slugs = self._projects(txn, project)
            now = utc_now()
            fixes: list[str] = []
            entities_repaired = 0
            projects_updated = 0
            for slug in slugs:
                found = self._repair_project(slug, txn.brain.projects[slug], now)
                for path in sorted(txn.brain.projects[slug].entities):
                    entity_fixes = ledger.repair_entity(slug, path, txn.brain.projects[slug].entities[path], now)
                    if entity_fixes:
                        entities_repaired += 1
                        found.extend(f"{slug}/{line}" for line in entity_fixes)
                if found:
                    projects_updated += 1
                    fixes.extend(found)

            diff = txn.index.rebuild(None if project is None else slugs[0])
            changed = bool(fixes) or not diff.clean
            if changed and not dry_run:
                txn.changed()
            report = {
                "project": project and slugs[0],
                "dry_run": dry_run,
                "entities_repaired": entities_repaired,
                "projects_updated": projects_updated,
                "commit_index": diff.to_dict(),
                "fixes": fixes,
                "changed": changed,
            }
            if not dry_run:
                txn.emit(EVENT_CLEANUP_COMPLETED, {"action": "repair", **{k: v for k, v in report.items() if k != "fixes"}})
        if fixes and not dry_run:
            logger.warning(f"Repaired {entities_repaired} entities in brain '{txn.slug}'")
        return report

    def _repair_project(self, slug: str, project: Project, now: datetime) -> list[str]:
        fixes: list[str] = []
        if project.slug != slug:
            fixes.append(f"{slug}: slug '{project.slug}' did not match its key")
            project.slug = slug
        if project.status not in (PROJECT_ACTIVE, PROJECT_ARCHIVED):
            status = PROJECT_ARCHIVED if project.archived_at else PROJECT_ACTIVE
            fixes.append(f"{slug}: status '{project.status}' set to {status}")
            project.status = status
        created = [e.created_at for e in project.entities.values() if e.created_at]
        if project.created_at is None:
            project.created_at = min(created, default=now)
            fixes.append(f"{slug}: missing created_at")
        if project.updated_at is None:
            project.updated_at = max(created, default=project.created_at)
            fixes.append(f"{slug}: missing updated_at")
        return fixes

    # --- Backups ---

    def backup(self, slug: str | None = None, label: str | None = None, compress: bool = False) -> dict:
        slug = self._target(slug)
        return self.backups.create(slug, label, compress).to_dict()

    def list_backups(self, slug: str | None = None) -> list[dict]:
        slug = require_slug(slug, "brain") if slug else None
        return [info.to_dict() for info in self.backups.list_backups(slug)]

    def prune_backups(
        self,
        slug: str | None = None,
        keep: int | None = None,
        older_than: str | int | float | None = None,
        dry_run: bool = False,
    ) -> dict:
        slug = require_slug(slug, "brain") if slug else None
        return self.backups.prune(slug, keep, older_than, dry_run)

    def restore_from_backup(
        self, file: str | Path, target: str | None = None, overwrite: bool = False, activate: bool = False
    ) -> dict:
        """Restore a snapshot as a user brain (its own slug unless target is given)."""
        source = self.backups.resolve(file)
        brain = Brain.from_document(decode(self.backups.read(source)))
        slug = require_slug(target or brain.meta.slug, "brain")
        if slug in RESERVED_BRAIN_SLUGS:
            raise Conflict(f"Cannot restore over reserved brain '{slug}'", {"brain": slug})

        path = self.paths.user_brain(slug)
        with self.locks.hold(path):
            existed = path.exists()
            if existed and not overwrite:
                raise Conflict(f"Brain '{slug}' already exists; pass overwrite", {"brain": slug})
            brain.meta.slug = slug
            result = self._write(path, brain)

        logger.info(f"Restored brain '{slug}' from {source.name}")
        self.events.emit(EVENT_BRAIN_RESTORED, {"brain": slug, "source": source.name, "overwritten": existed})
        if activate:
            self.set_active_brain(slug)
        return {
            "brain": slug,
            "source": str(source),
            "overwritten": existed,
            "activated": activate,
            "hash": result.hash,
            "projects": len(brain.projects),
        }
