"""Core data models for the brain store.

Uses Pydantic v2 for validation, ULID for sortable unique IDs.
The persisted document is `Brain.to_document()` run through the
canonical encoder; `Brain.from_document()` is its inverse.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, JsonValue, ValidationError
from ulid import ULID

from .constants import PROJECT_ACTIVE, SCHEMA_VERSION, STATUS_ACTIVE
from .errors import ValidationFailure


def generate_id() -> str:
    """Generate a ULID (sortable, unique identifier)."""
    return str(ULID())


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(timezone.utc)


def format_ts(ts: datetime) -> str:
    """Stable text form of a timestamp, used inside hashed envelopes."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat()


class Version(BaseModel):
    """One immutable snapshot of an entity payload.

    `status` is a plain string so that hand-edited files with impossible
    statuses still load; the repair path normalizes them.
    """

    version: int
    hash: str | None = None  # content hash of payload
    commit: str | None = None  # hash of the commit envelope
    committed_at: datetime | None = None
    status: str = STATUS_ACTIVE
    payload: JsonValue = None
    meta: dict[str, JsonValue] = Field(default_factory=dict)

    def to_summary(self) -> dict:
        """Metadata-only projection (no payload)."""
        return {
            "version": self.version,
            "hash": self.hash,
            "commit": self.commit,
            "committed_at": self.committed_at.isoformat() if self.committed_at else None,
            "status": self.status,
        }


class SchemaBinding(BaseModel):
    """Schema an entity is bound to: schema entity slug plus an optional selector."""

    slug: str
    reference: str | None = None  # "@3", "#abc123..." or None for active


class Entity(BaseModel):
    """A path-addressed, version-tracked unit of data within a project.

    Identity is the full path ("characters/heroes/aria"). The parent is
    derived from the path, never stored as a reference.
    """

    slug: str
    active_version: int | None = None
    version_counter: int = 0  # highest version number ever issued
    versions: dict[str, Version] = Field(default_factory=dict)
    schema_ref: SchemaBinding | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def active(self) -> Version | None:
        if self.active_version is None:
            return None
        return self.versions.get(str(self.active_version))

    def ordered_versions(self) -> list[Version]:
        """Versions in ascending version-number order."""
        return [self.versions[k] for k in sorted(self.versions, key=_version_key)]

    def to_summary(self) -> dict:
        """Return a compact summary of this entity."""
        return {
            "slug": self.slug,
            "active_version": self.active_version,
            "version_count": len(self.versions),
            "schema": self.schema_ref.model_dump() if self.schema_ref else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class Project(BaseModel):
    """A named collection of entities within a brain."""

    slug: str
    title: str = ""
    description: str = ""
    status: str = PROJECT_ACTIVE
    created_at: datetime | None = None
    updated_at: datetime | None = None
    archived_at: datetime | None = None
    entities: dict[str, Entity] = Field(default_factory=dict)

    def to_summary(self) -> dict:
        """Return a compact summary of this project."""
        return {
            "slug": self.slug,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "entity_count": len(self.entities),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "archived_at": self.archived_at.isoformat() if self.archived_at else None,
        }


class CommitEntry(BaseModel):
    """Derived index entry: where a commit hash lives."""

    project: str
    entity: str
    version: int


class BrainMeta(BaseModel):
    slug: str
    uuid: str = Field(default_factory=generate_id)
    schema_version: int = SCHEMA_VERSION
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class Brain(BaseModel):
    """One persisted namespace: metadata, projects and the commit index."""

    meta: BrainMeta
    projects: dict[str, Project] = Field(default_factory=dict)
    commits: dict[str, CommitEntry] = Field(default_factory=dict)
    config: dict[str, JsonValue] = Field(default_factory=dict)
    state: dict[str, JsonValue] = Field(default_factory=dict)

    @classmethod
    def new(cls, slug: str, **state: Any) -> "Brain":
        """Fresh brain with default structure."""
        now = utc_now()
        return cls(
            meta=BrainMeta(slug=slug, created_at=now, updated_at=now),
            state=dict(state),
        )

    def to_document(self) -> dict:
        """Serialize for canonical JSON storage."""
        return self.model_dump(mode="json")

    @classmethod
    def from_document(cls, data: Any) -> "Brain":
        """Deserialize from decoded JSON."""
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ValidationFailure(
                f"Malformed brain document: {e.error_count()} validation errors",
                {"errors": e.errors(include_url=False, include_context=False)},
            ) from e


def _version_key(key: str) -> tuple[int, str]:
    try:
        return (int(key), key)
    except ValueError:
        return (-1, key)
