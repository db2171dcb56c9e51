"""Filesystem layout for a brain store root.

    <root>/system/storage/system.brain
    <root>/system/storage/logs/
    <root>/user/storage/<slug>.brain
    <root>/user/backups/
"""

from __future__ import annotations

import re
from pathlib import Path

from .constants import BRAIN_SUFFIX, DEFAULT_BRAIN, SYSTEM_BRAIN
from .errors import ValidationFailure

_SLUG_INVALID = re.compile(r"[^a-z0-9\-_.]")


def sanitize_slug(value: str, default: str = "") -> str:
    """Lowercase; invalid characters become '-'; trim '-_.' from both ends."""
    slug = _SLUG_INVALID.sub("-", value.strip().lower()).strip("-_.")
    return slug or default


def require_slug(value: str, kind: str = "slug") -> str:
    """sanitize_slug, but an empty result is a ValidationFailure."""
    slug = sanitize_slug(str(value or ""))
    if not slug:
        raise ValidationFailure(f"Invalid {kind}: {value!r}", {kind: value})
    return slug


class PathLocator:
    """Resolves brain, log and backup paths under one root directory."""

    def __init__(self, root: Path):
        self.root = Path(root)

    @property
    def system_storage(self) -> Path:
        return self.root / "system" / "storage"

    @property
    def logs(self) -> Path:
        return self.system_storage / "logs"

    @property
    def user_storage(self) -> Path:
        return self.root / "user" / "storage"

    @property
    def backups(self) -> Path:
        return self.root / "user" / "backups"

    def system_brain(self) -> Path:
        return self.system_storage / f"{SYSTEM_BRAIN}{BRAIN_SUFFIX}"

    def user_brain(self, slug: str) -> Path:
        return self.user_storage / f"{sanitize_slug(slug, DEFAULT_BRAIN)}{BRAIN_SUFFIX}"

    def brain(self, slug: str) -> Path:
        """Path for any brain slug, system included."""
        if sanitize_slug(slug) == SYSTEM_BRAIN:
            return self.system_brain()
        return self.user_brain(slug)

    def user_brain_slugs(self) -> list[str]:
        if not self.user_storage.exists():
            return []
        return sorted(p.name[: -len(BRAIN_SUFFIX)] for p in self.user_storage.glob(f"*{BRAIN_SUFFIX}"))

    def ensure_directories(self) -> None:
        for directory in (self.system_storage, self.logs, self.user_storage, self.backups):
            directory.mkdir(parents=True, exist_ok=True)
