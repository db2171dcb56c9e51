"""Per-entity version ledger.

Version state machine:

    active <-> inactive -> archived -> (purged)

At most one version per entity is `active` and the entity's
`active_version` pointer names it. Version numbers come from the
entity's `version_counter`, so they are strictly increasing and never
reused, even after the newest version has been purged. Purging removes
a version from the ledger entirely together with its commit-index entry.

Every function here mutates the in-memory entity only; persisting the
owning brain is the repository's job.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime

from .canonical import check_json_value, hash_value
from .commits import CommitIndex
from .constants import (
    HASH_LENGTH,
    MIN_COMMIT_PREFIX,
    STATUS_ACTIVE,
    STATUS_ARCHIVED,
    STATUS_DELETED,
    STATUS_INACTIVE,
    VERSION_STATUSES,
)
from .errors import Conflict, NotFound, ValidationFailure
from .models import Entity, Version, format_ts, utc_now

logger = logging.getLogger(__name__)

_HEX = re.compile(r"[0-9a-f]+")


# --- Selectors ---


@dataclass(frozen=True)
class VersionRef:
    """A parsed version reference: active, a version number or a commit hash (prefix)."""

    number: int | None = None
    commit: str | None = None

    @property
    def is_active(self) -> bool:
        return self.number is None and self.commit is None

    def __str__(self) -> str:
        if self.number is not None:
            return f"@{self.number}"
        if self.commit is not None:
            return f"#{self.commit}"
        return "active"


def parse_ref(ref: str | int | None) -> VersionRef:
    """Parse a version reference.

    None or "" -> active version; 7, "7", "@7" -> version 7;
    "#3fa2c1..." or a bare hex string of at least 6 characters -> commit.
    """
    if ref is None:
        return VersionRef()
    if isinstance(ref, bool):
        raise ValidationFailure(f"Invalid version reference: {ref!r}")
    if isinstance(ref, int):
        if ref < 1:
            raise ValidationFailure(f"Version numbers start at 1, got {ref}")
        return VersionRef(number=ref)

    text = str(ref).strip().lower()
    if text in ("", "active", "@active"):
        return VersionRef()

    if text.startswith("@"):
        text = text[1:]
        if not text.isdigit():
            raise ValidationFailure(f"Invalid version reference: {ref!r}")
    if text.isdigit():
        return parse_ref(int(text))

    text = text.removeprefix("#")
    if not _HEX.fullmatch(text) or len(text) > HASH_LENGTH:
        raise ValidationFailure(f"Invalid version reference: {ref!r}")
    if len(text) < MIN_COMMIT_PREFIX:
        raise ValidationFailure(
            f"Commit prefix must have at least {MIN_COMMIT_PREFIX} characters: {ref!r}"
        )
    return VersionRef(commit=text)


def parse_selector(selector: str) -> tuple[str, str | None]:
    """Split a human selector into (entity path, reference).

    >>> parse_selector("article@7")
    ('article', '@7')
    >>> parse_selector("article#3fa2c1")
    ('article', '#3fa2c1')
    >>> parse_selector("article")
    ('article', None)
    """
    text = selector.strip()
    for marker in ("@", "#"):
        if marker in text:
            path, _, ref = text.partition(marker)
            if not path.strip():
                raise ValidationFailure(f"Selector has no entity: {selector!r}")
            return path.strip(), marker + ref.strip()
    return text, None


# --- Saving ---


def commit_envelope(
    project: str, entity: str, version: int, content_hash: str, timestamp: datetime, meta: dict
) -> dict:
    """The metadata hashed into a version's commit hash."""
    return {
        "project": project,
        "entity": entity,
        "version": version,
        "content_hash": content_hash,
        "timestamp": format_ts(timestamp),
        "meta": meta,
    }


def next_version_number(entity: Entity) -> int:
    highest = max((v.version for v in entity.versions.values()), default=0)
    return max(highest, entity.version_counter) + 1


def save_version(
    index: CommitIndex,
    project: str,
    entity: Entity,
    payload,
    meta: dict | None = None,
    now: datetime | None = None,
) -> Version:
    """Append a new active version; the previous active one becomes inactive.

    Raises:
        ValidationFailure: payload or meta is not a closed JSON value
    """
    meta = dict(meta or {})
    check_json_value(payload)
    check_json_value(meta)
    now = now or utc_now()

    number = next_version_number(entity)
    content_hash = hash_value(payload)
    commit = hash_value(commit_envelope(project, entity.slug, number, content_hash, now, meta))

    for version in entity.versions.values():
        if version.status == STATUS_ACTIVE:
            version.status = STATUS_INACTIVE

    record = Version(
        version=number,
        hash=content_hash,
        commit=commit,
        committed_at=now,
        status=STATUS_ACTIVE,
        payload=payload,
        meta=meta,
    )
    entity.versions[str(number)] = record
    entity.active_version = number
    entity.version_counter = number
    entity.updated_at = now
    if entity.created_at is None:
        entity.created_at = now

    index.insert(commit, project, entity.slug, number)
    return record


# --- Resolution ---


def resolve_version(
    index: CommitIndex, project: str, entity: Entity, ref: str | int | None = None
) -> Version:
    """Resolve a reference against one entity's ledger.

    Commit hashes go through the commit index first and fall back to a
    ledger scan when the index is stale.

    Raises:
        NotFound: nothing matches
        Conflict: a commit prefix matches more than one version
        ValidationFailure: ref is malformed
    """
    parsed = parse_ref(ref)

    if parsed.is_active:
        version = entity.active()
        if version is None:
            raise NotFound(
                f"Entity '{entity.slug}' has no active version",
                {"project": project, "entity": entity.slug},
            )
        return version

    if parsed.number is not None:
        version = entity.versions.get(str(parsed.number))
        if version is None:
            raise NotFound(
                f"Version {parsed.number} of '{entity.slug}' not found",
                {"project": project, "entity": entity.slug, "version": parsed.number},
            )
        return version

    return _resolve_commit(index, project, entity, parsed.commit)


def _resolve_commit(index: CommitIndex, project: str, entity: Entity, commit: str) -> Version:
    by_commit = {v.commit: v for v in entity.versions.values() if v.commit}

    if len(commit) == HASH_LENGTH:
        entry = index.lookup(commit)
        if entry is not None and entry.project == project and entry.entity == entity.slug:
            version = entity.versions.get(str(entry.version))
            if version is not None and version.commit == commit:
                return version
        else:
            logger.debug(f"Commit {commit[:12]} not indexed for {project}/{entity.slug}; scanning ledger")
        matches = [by_commit[commit]] if commit in by_commit else []
    else:
        matches = [v for h, v in sorted(by_commit.items()) if h.startswith(commit)]

    if not matches:
        raise NotFound(
            f"Commit #{commit} not found for '{entity.slug}'",
            {"project": project, "entity": entity.slug, "commit": commit},
        )
    if len(matches) > 1:
        raise Conflict(
            f"Commit prefix #{commit} is ambiguous for '{entity.slug}'",
            {"commit": commit, "candidates": [v.commit for v in matches]},
        )
    return matches[0]


# --- Status transitions ---


def activate_version(entity: Entity, version: Version, now: datetime | None = None) -> Version | None:
    """Make version the active one; returns the version it displaced, if any."""
    if version.status == STATUS_ACTIVE and entity.active_version == version.version:
        raise Conflict(
            f"Version {version.version} of '{entity.slug}' is already active",
            {"entity": entity.slug, "version": version.version},
        )
    if version.status == STATUS_DELETED:
        raise Conflict(
            f"Version {version.version} of '{entity.slug}' is deleted",
            {"entity": entity.slug, "version": version.version},
        )

    displaced = entity.active()
    for other in entity.versions.values():
        if other.status == STATUS_ACTIVE:
            other.status = STATUS_INACTIVE
    version.status = STATUS_ACTIVE
    entity.active_version = version.version
    entity.updated_at = now or utc_now()
    return displaced


def restore_candidate(entity: Entity) -> Version:
    """Newest archived version, else newest inactive one."""
    ordered = list(reversed(entity.ordered_versions()))
    for status in (STATUS_ARCHIVED, STATUS_INACTIVE):
        for version in ordered:
            if version.status == status:
                return version
    raise NotFound(
        f"Entity '{entity.slug}' has no archived or inactive version to restore",
        {"entity": entity.slug},
    )


def restore_version(entity: Entity, version: Version | None = None, now: datetime | None = None) -> Version:
    """Reactivate an inactive or archived version without a new version number."""
    target = version or restore_candidate(entity)
    activate_version(entity, target, now)
    return target


def archive_entity(entity: Entity, now: datetime | None = None) -> Version | None:
    """Soft-deactivate: the active version becomes archived, the pointer is cleared."""
    current = entity.active()
    for version in entity.versions.values():
        if version.status == STATUS_ACTIVE:
            version.status = STATUS_ARCHIVED
    if current is None and entity.active_version is None:
        return None
    entity.active_version = None
    entity.updated_at = now or utc_now()
    return current


def reactivate_entity(entity: Entity, now: datetime | None = None) -> Version | None:
    """Bring back the newest archived version of an entity with no active version."""
    if entity.active() is not None:
        return None
    for version in reversed(entity.ordered_versions()):
        if version.status == STATUS_ARCHIVED:
            activate_version(entity, version, now)
            return version
    return None


# --- Cleanup ---


def purge_candidates(entity: Entity, keep_newest: int = 0) -> list[Version]:
    """Non-active versions beyond the keep_newest newest ones, oldest first."""
    if keep_newest < 0:
        raise ValidationFailure(f"keep must not be negative, got {keep_newest}")
    inactive = [v for v in reversed(entity.ordered_versions()) if v.status != STATUS_ACTIVE]
    return list(reversed(inactive[keep_newest:]))


def purge_inactive(
    index: CommitIndex, project: str, entity: Entity, keep_newest: int = 0
) -> list[Version]:
    """Irreversibly remove non-active versions beyond the retention count."""
    removed = purge_candidates(entity, keep_newest)
    for version in removed:
        del entity.versions[str(version.version)]
        if version.commit:
            index.remove(version.commit)
    return removed


def sort_ledger(entity: Entity) -> bool:
    """Re-key versions in ascending numeric order; True when the order changed."""
    ordered = sorted(entity.versions, key=_numeric_key)
    if list(entity.versions) == ordered:
        return False
    entity.versions = {key: entity.versions[key] for key in ordered}
    return True


# --- Repair ---


def repair_entity(project: str, path: str, entity: Entity, now: datetime | None = None) -> list[str]:
    """Fix inconsistent ledger metadata in place; returns one line per fix.

    Never touches payloads or existing hashes.
    """
    now = now or utc_now()
    fixes: list[str] = []

    if entity.slug != path:
        fixes.append(f"{path}: slug '{entity.slug}' did not match its key")
        entity.slug = path

    # record/key agreement
    rekeyed: dict[str, Version] = {}
    for key in sorted(entity.versions, key=_numeric_key):
        version = entity.versions[key]
        if key.isdigit() and int(key) != version.version:
            fixes.append(f"{path}: version {key} recorded as {version.version}")
            version.version = int(key)
        elif not key.isdigit():
            fixes.append(f"{path}: version key '{key}' re-keyed to {version.version}")
        number_key = str(version.version)
        if number_key in rekeyed:
            fixes.append(f"{path}: duplicate version {version.version} dropped")
            continue
        rekeyed[number_key] = version
    entity.versions = rekeyed

    for version in entity.ordered_versions():
        if version.status not in VERSION_STATUSES or version.status == STATUS_DELETED:
            fixes.append(f"{path}: version {version.version} status '{version.status}' set to inactive")
            version.status = STATUS_INACTIVE
        if version.hash is None:
            version.hash = hash_value(version.payload)
            fixes.append(f"{path}: version {version.version} content hash recomputed")
        if version.committed_at is None:
            version.committed_at = entity.updated_at or entity.created_at or now
            fixes.append(f"{path}: version {version.version} missing commit timestamp")
        if version.commit is None:
            version.commit = hash_value(
                commit_envelope(project, path, version.version, version.hash,
                                version.committed_at, dict(version.meta))
            )
            fixes.append(f"{path}: version {version.version} commit hash recomputed")

    fixes.extend(_repair_pointer(path, entity))

    highest = max((v.version for v in entity.versions.values()), default=0)
    if entity.version_counter < highest:
        fixes.append(f"{path}: version counter {entity.version_counter} raised to {highest}")
        entity.version_counter = highest

    committed = [v.committed_at for v in entity.versions.values() if v.committed_at]
    if entity.created_at is None:
        entity.created_at = min(committed, default=now)
        fixes.append(f"{path}: missing created_at")
    if entity.updated_at is None:
        entity.updated_at = max(committed, default=entity.created_at)
        fixes.append(f"{path}: missing updated_at")

    return fixes


def _repair_pointer(path: str, entity: Entity) -> list[str]:
    fixes: list[str] = []
    actives = [v for v in entity.ordered_versions() if v.status == STATUS_ACTIVE]
    pointed = entity.active()

    if entity.active_version is not None and pointed is None:
        fixes.append(f"{path}: dangling active pointer {entity.active_version}")
        entity.active_version = None

    if pointed is not None and pointed.status != STATUS_ACTIVE:
        if actives:
            fixes.append(
                f"{path}: pointer {pointed.version} named a {pointed.status} version; "
                f"moved to {actives[-1].version}"
            )
            entity.active_version = actives[-1].version
        else:
            fixes.append(f"{path}: pointed version {pointed.version} marked active")
            pointed.status = STATUS_ACTIVE
            actives = [pointed]
    elif entity.active_version is None and actives:
        fixes.append(f"{path}: active version {actives[-1].version} had no pointer")
        entity.active_version = actives[-1].version

    for version in actives:
        if version.version != entity.active_version:
            fixes.append(f"{path}: extra active version {version.version} set to inactive")
            version.status = STATUS_INACTIVE

    return fixes


def _numeric_key(key: str) -> tuple[int, str]:
    return (int(key), key) if key.isdigit() else (-1, key)
