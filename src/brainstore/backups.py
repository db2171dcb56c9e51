"""Full-file brain snapshots.

Backups live in `<root>/user/backups/` and are named

    <slug>--<YYYYmmdd-HHMMSS>[--<label>].brain[.gz]

They copy the brain file byte for byte (gzip optional) and know nothing
about version ledgers. Creating one holds the brain's write lock so it
never races an in-flight write.
"""

from __future__ import annotations

import gzip
import logging
import re
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path

from .constants import (
    BACKUP_COMPRESSED_SUFFIX,
    BACKUP_SEPARATOR,
    BACKUP_TIMESTAMP_FORMAT,
    BRAIN_SUFFIX,
)
from .errors import NotFound, ValidationFailure, WriteFailure
from .locking import LockManager
from .models import utc_now
from .paths import PathLocator, sanitize_slug
from .timeutil import parse_cutoff

logger = logging.getLogger(__name__)

# slugs may contain the separator themselves; anchor on the timestamp field
_NAME_PATTERN = re.compile(
    rf"^(?P<slug>.+?){BACKUP_SEPARATOR}(?P<stamp>\d{{8}}-\d{{6}})(?:{BACKUP_SEPARATOR}(?P<label>.+))?$"
)


@dataclass
class BackupInfo:
    file: str
    path: str
    slug: str
    label: str | None
    created_at: datetime
    bytes: int
    compressed: bool

    def to_dict(self) -> dict:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data


def backup_name(slug: str, when: datetime, label: str | None = None, compress: bool = False) -> str:
    parts = [slug, when.astimezone(timezone.utc).strftime(BACKUP_TIMESTAMP_FORMAT)]
    if label:
        parts.append(label)
    name = BACKUP_SEPARATOR.join(parts) + BRAIN_SUFFIX
    return name + BACKUP_COMPRESSED_SUFFIX if compress else name


def parse_backup_name(path: Path) -> BackupInfo | None:
    """Parse a backup filename; None when it does not follow the scheme."""
    name = path.name
    compressed = name.endswith(BACKUP_COMPRESSED_SUFFIX)
    stem = name[: -len(BACKUP_COMPRESSED_SUFFIX)] if compressed else name
    if not stem.endswith(BRAIN_SUFFIX):
        return None
    match = _NAME_PATTERN.match(stem[: -len(BRAIN_SUFFIX)])
    if match is None:
        return None

    try:
        created = datetime.strptime(match["stamp"], BACKUP_TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        return None

    try:
        size = path.stat().st_size
    except OSError:
        size = 0
    return BackupInfo(
        file=name,
        path=str(path),
        slug=match["slug"],
        label=match["label"],
        created_at=created,
        bytes=size,
        compressed=compressed,
    )


class BackupManager:
    """Create, list, prune and read brain snapshots."""

    def __init__(self, paths: PathLocator, locks: LockManager):
        self.paths = paths
        self.locks = locks

    @property
    def directory(self) -> Path:
        return self.paths.backups

    def create(self, slug: str, label: str | None = None, compress: bool = False) -> BackupInfo:
        """Snapshot the brain file for slug.

        Raises:
            NotFound: brain file does not exist
            WriteFailure: the snapshot could not be written
        """
        source = self.paths.brain(slug)
        label = sanitize_slug(label) if label else None
        self.directory.mkdir(parents=True, exist_ok=True)

        with self.locks.hold(source):
            if not source.exists():
                raise NotFound(f"Brain '{slug}' not found", {"brain": slug})
            data = source.read_bytes()
            target, label, created = self._unique_target(slug, label, compress)
            try:
                if compress:
                    with gzip.open(target, "wb") as f:
                        f.write(data)
                else:
                    target.write_bytes(data)
            except OSError as e:
                target.unlink(missing_ok=True)
                raise WriteFailure(f"Unable to write backup {target.name}: {e}", {"path": str(target)}) from e

        logger.info(f"Backed up brain '{slug}' to {target.name}")
        return BackupInfo(
            file=target.name,
            path=str(target),
            slug=slug,
            label=label,
            created_at=created,
            bytes=target.stat().st_size,
            compressed=compress,
        )

    def list_backups(self, slug: str | None = None) -> list[BackupInfo]:
        """Backups, newest first, optionally for one brain."""
        if not self.directory.exists():
            return []
        infos = []
        for path in self.directory.iterdir():
            info = parse_backup_name(path)
            if info is None or (slug is not None and info.slug != slug):
                continue
            infos.append(info)
        return sorted(infos, key=lambda i: (i.created_at, _mtime(i.path), i.file), reverse=True)

    def prune(
        self,
        slug: str | None = None,
        keep: int | None = None,
        older_than: str | int | float | None = None,
        dry_run: bool = False,
    ) -> dict:
        """Delete backups beyond the newest `keep` per brain, or older than a cutoff.

        With neither criterion the prune is skipped.
        """
        if keep is None and older_than is None:
            return {"skipped": True, "reason": "no keep or older_than given", "removed": [], "count": 0}
        if keep is not None and keep < 0:
            raise ValidationFailure(f"keep must not be negative, got {keep}")

        cutoff = None
        if older_than is not None:
            try:
                cutoff = parse_cutoff(older_than)
            except ValueError as e:
                raise ValidationFailure(str(e), {"older_than": older_than}) from e

        seen: dict[str, int] = {}
        doomed: list[BackupInfo] = []
        for info in self.list_backups(slug):
            rank = seen.get(info.slug, 0)
            seen[info.slug] = rank + 1
            if (keep is not None and rank >= keep) or (cutoff is not None and info.created_at < cutoff):
                doomed.append(info)

        if not dry_run:
            for info in doomed:
                Path(info.path).unlink(missing_ok=True)
            if doomed:
                logger.info(f"Pruned {len(doomed)} backups")

        return {
            "skipped": False,
            "dry_run": dry_run,
            "removed": [info.to_dict() for info in doomed],
            "count": len(doomed),
        }

    def resolve(self, file: str | Path) -> Path:
        """A backup path: absolute, relative to cwd, or a name in the backup directory."""
        candidate = Path(file)
        for path in (candidate, self.directory / candidate.name):
            if path.is_file():
                return path
        raise NotFound(f"Backup '{file}' not found", {"file": str(file)})

    def read(self, file: str | Path) -> bytes:
        path = self.resolve(file)
        try:
            if path.name.endswith(BACKUP_COMPRESSED_SUFFIX):
                with gzip.open(path, "rb") as f:
                    return f.read()
            return path.read_bytes()
        except (OSError, EOFError) as e:
            raise ValidationFailure(f"Unable to read backup {path.name}: {e}", {"file": str(path)}) from e

    def _unique_target(self, slug: str, label: str | None, compress: bool) -> tuple[Path, str | None, datetime]:
        """Free backup path plus the label and second encoded in its name."""
        now = utc_now().replace(microsecond=0)
        target = self.directory / backup_name(slug, now, label, compress)
        used = label
        counter = 2
        while target.exists():
            # same second: number the label
            used = f"{label}-{counter}" if label else str(counter)
            target = self.directory / backup_name(slug, now, used, compress)
            counter += 1
        return target, used, now


def _mtime(path: str) -> int:
    try:
        return Path(path).stat().st_mtime_ns
    except OSError:
        return 0
