"""Project hierarchy: an arena of entities keyed by path.

Parent/child relationships are pure string-path lookups. The parent of
"characters/heroes/aria" is "characters/heroes" whether or not that path
holds an entity itself, and reparenting renames keys rather than
rewiring references.
"""

from __future__ import annotations

from datetime import datetime

from .constants import MOVE_MERGE, MOVE_MODES, MOVE_REPLACE, PROJECT_ARCHIVED
from .errors import Conflict, NotFound, ValidationFailure
from .models import Entity, Project, utc_now
from .paths import sanitize_slug


# --- Path helpers ---


def normalize_path(value: str | None, allow_root: bool = False) -> str:
    """Normalize an entity path segment by segment.

    "Characters/ Heroes //Aria" -> "characters/heroes/aria"
    """
    segments = [sanitize_slug(s) for s in str(value or "").split("/")]
    path = "/".join(s for s in segments if s)
    if not path and not allow_root:
        raise ValidationFailure(f"Invalid entity path: {value!r}", {"path": value})
    return path


def parent_of(path: str) -> str | None:
    """Parent path, or None for a root-level entity."""
    head, sep, _ = path.rpartition("/")
    return head if sep else None


def leaf_of(path: str) -> str:
    return path.rpartition("/")[2]


def join_path(parent: str | None, leaf: str) -> str:
    return f"{parent}/{leaf}" if parent else leaf


def is_within(path: str, ancestor: str) -> bool:
    """True when path is ancestor itself or lies below it."""
    return path == ancestor or path.startswith(ancestor + "/")


class ProjectStore:
    """Hierarchy operations over one project's entities."""

    def __init__(self, project: Project):
        self.project = project

    @property
    def entities(self) -> dict[str, Entity]:
        return self.project.entities

    @property
    def archived(self) -> bool:
        return self.project.status == PROJECT_ARCHIVED

    def __contains__(self, path: str) -> bool:
        return path in self.entities

    def get(self, path: str) -> Entity:
        entity = self.entities.get(path)
        if entity is None:
            raise NotFound(
                f"Entity '{path}' not found in project '{self.project.slug}'",
                {"project": self.project.slug, "entity": path},
            )
        return entity

    def get_or_create(self, path: str, now: datetime | None = None) -> tuple[Entity, bool]:
        if path in self.entities:
            return self.entities[path], False
        now = now or utc_now()
        entity = Entity(slug=path, created_at=now, updated_at=now)
        self.entities[path] = entity
        return entity, True

    def touch(self, now: datetime | None = None) -> None:
        self.project.updated_at = now or utc_now()

    # --- Hierarchy queries ---

    def children(self, path: str | None) -> list[str]:
        """Direct children of path (None lists root-level entities)."""
        return sorted(p for p in self.entities if parent_of(p) == path)

    def descendants(self, path: str) -> list[str]:
        prefix = path + "/"
        return sorted(p for p in self.entities if p.startswith(prefix))

    def subtree(self, path: str) -> list[str]:
        """path itself (when it exists) plus everything below it."""
        own = [path] if path in self.entities else []
        return own + self.descendants(path)

    # --- Renames ---

    def promotion_plan(self, path: str, exclude: set[str] | None = None) -> dict[str, str]:
        """Renames that lift everything below path up to path's own parent."""
        exclude = exclude or set()
        new_parent = parent_of(path)
        offset = len(path) + 1
        return {
            old: join_path(new_parent, old[offset:])
            for old in self.descendants(path)
            if old not in exclude
        }

    def move_plan(self, source: str, target: str | None, mode: str = MOVE_MERGE) -> dict[str, str]:
        """Renames that put source (and its subtree) under target.

        Raises:
            NotFound: source does not exist
            Conflict: target lies inside source's subtree
            ValidationFailure: unknown mode
        """
        if mode not in MOVE_MODES:
            raise ValidationFailure(f"Unknown move mode '{mode}'", {"mode": mode, "allowed": list(MOVE_MODES)})
        self.get(source)
        if target is not None and is_within(target, source):
            raise Conflict(
                f"Cannot move '{source}' under itself ('{target}')",
                {"source": source, "target": target},
            )

        moving = [source] + self.descendants(source)
        plan: dict[str, str] = {}

        if mode == MOVE_REPLACE and target is not None:
            plan.update(self.promotion_plan(target, exclude=set(moving)))

        new_root = join_path(target, leaf_of(source))
        if new_root != source:
            offset = len(source)
            for old in moving:
                plan[old] = new_root + old[offset:]
        return {old: new for old, new in plan.items() if old != new}

    def apply_renames(self, plan: dict[str, str]) -> dict[str, str]:
        """Rename entity keys all at once; a collision changes nothing.

        Raises:
            Conflict: two entities would end up on the same path
        """
        if not plan:
            return {}
        staying = set(self.entities) - set(plan)
        seen: set[str] = set()
        for old, new in plan.items():
            if new in staying or new in seen:
                raise Conflict(
                    f"Path '{new}' already exists in project '{self.project.slug}'",
                    {"project": self.project.slug, "source": old, "target": new},
                )
            seen.add(new)

        moved = {old: self.entities.pop(old) for old in plan}
        for old, entity in moved.items():
            entity.slug = plan[old]
            self.entities[entity.slug] = entity
        return dict(plan)

    def remove(self, paths: list[str]) -> list[Entity]:
        return [self.entities.pop(p) for p in paths if p in self.entities]
