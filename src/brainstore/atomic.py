"""Write-verify-swap persistence for brain files.

The write flow:
1. Write bytes to a temporary sibling of the target (same directory)
2. flush + fsync
3. os.replace() over the target (atomic on POSIX and Windows)
4. Re-read the target and compare its SHA-256 with the expected hash

A failed attempt (I/O error or verification mismatch) is retried exactly
once. A second failure is fatal: the previous bytes are put back and the
error is raised. Readers opening the target at any point see either the
old or the new complete content, never a partial write.
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import asdict, dataclass
from pathlib import Path

from .canonical import hash_bytes
from .constants import (
    EVENT_WRITE_COMPLETED,
    EVENT_WRITE_INTEGRITY_FAILED,
    EVENT_WRITE_RETRY,
    WRITE_MAX_ATTEMPTS,
)
from .errors import IntegrityFailure, StorageException, WriteFailure
from .events import EventBus
from .locking import LockManager
from .models import utc_now

logger = logging.getLogger(__name__)


@dataclass
class WriteResult:
    """Outcome of a successful persist."""

    path: str
    hash: str
    bytes: int
    attempts: int

    def to_dict(self) -> dict:
        return asdict(self)


class AtomicWriter:
    """Persists byte payloads with atomic rename and post-write verification."""

    def __init__(self, events: EventBus, locks: LockManager, verify: bool = True):
        """Initialize the writer.

        Args:
            events: Bus receiving retry / integrity_failed / completed signals
            locks: Lock manager; persist holds the target's exclusive lock
            verify: Re-read and hash-check the file after each rename
        """
        self.events = events
        self.locks = locks
        self.verify = verify
        self.last_write: dict | None = None
        self.last_failure: dict | None = None

    def persist(self, path: Path, data: bytes) -> WriteResult:
        """Atomically replace path with data.

        Raises:
            IntegrityFailure: verification failed on both attempts
            WriteFailure: I/O failed on both attempts
        """
        path = Path(path)
        expected = hash_bytes(data)

        with self.locks.hold(path):
            previous = self._snapshot(path)

            for attempt in range(1, WRITE_MAX_ATTEMPTS + 1):
                try:
                    self._write_once(path, data, expected)
                except StorageException as e:
                    context = {
                        "path": str(path),
                        "attempt": attempt,
                        "expected_hash": expected,
                        "reason": e.code,
                        **e.details,
                    }
                    self.last_failure = {**context, "timestamp": utc_now().isoformat()}

                    if attempt < WRITE_MAX_ATTEMPTS:
                        logger.warning(f"Write to {path.name} failed ({e.message}); retrying")
                        self.events.emit(EVENT_WRITE_RETRY, context)
                        continue

                    logger.error(f"Write to {path.name} failed after {attempt} attempts: {e.message}")
                    self._rollback(path, previous)
                    self.events.emit(EVENT_WRITE_INTEGRITY_FAILED, context)
                    e.details = {**e.details, "attempts": attempt, "path": str(path)}
                    raise

                result = WriteResult(
                    path=str(path), hash=expected, bytes=len(data), attempts=attempt
                )
                self.last_write = {**result.to_dict(), "timestamp": utc_now().isoformat()}
                self.last_failure = None
                logger.debug(f"Wrote {path.name}: {len(data)} bytes, sha256={expected[:12]}")
                self.events.emit(EVENT_WRITE_COMPLETED, result.to_dict())
                return result

        raise AssertionError("unreachable")  # pragma: no cover

    def read(self, path: Path) -> bytes:
        """Read a persisted file (no lock; rename semantics keep it whole)."""
        try:
            return Path(path).read_bytes()
        except OSError as e:
            raise WriteFailure(f"Unable to read {path}: {e}", {"path": str(path)}) from e

    # --- internals ---

    def _write_once(self, path: Path, data: bytes, expected: str) -> None:
        tmp_path = self._write_temporary(path, data)

        try:
            os.replace(tmp_path, path)
        except OSError as e:
            _discard(tmp_path)
            raise WriteFailure(f"Unable to replace {path.name}: {e}", {"path": str(path)}) from e

        _fsync_directory(path.parent)

        if self.verify:
            self._verify(path, data, expected)

    def _write_temporary(self, path: Path, data: bytes) -> Path:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.tmp-")
        except OSError as e:
            raise WriteFailure(
                f"Unable to create temporary file in {path.parent}: {e}", {"path": str(path)}
            ) from e

        tmp_path = Path(tmp_name)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            _discard(tmp_path)
            raise WriteFailure(
                f"Failed writing temporary file {tmp_path.name}: {e}", {"path": str(path)}
            ) from e
        return tmp_path

    def _verify(self, path: Path, data: bytes, expected: str) -> None:
        try:
            content = self._read_back(path)
        except OSError as e:
            raise IntegrityFailure(
                f"Unable to re-read {path.name}: {e}", {"expected_hash": expected}
            ) from e

        actual = hash_bytes(content)
        if actual != expected:
            raise IntegrityFailure(
                f"Hash mismatch for {path.name}: expected {expected[:16]}..., got {actual[:16]}...",
                {"expected_hash": expected, "actual_hash": actual},
            )
        if content != data:
            raise IntegrityFailure(
                f"Content mismatch for {path.name}",
                {"expected_hash": expected, "actual_hash": actual},
            )

    def _read_back(self, path: Path) -> bytes:
        return path.read_bytes()

    def _snapshot(self, path: Path) -> bytes | None:
        try:
            return path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise WriteFailure(f"Unable to read {path.name}: {e}", {"path": str(path)}) from e

    def _rollback(self, path: Path, previous: bytes | None) -> None:
        """Put the pre-write bytes back after a fatal failure."""
        try:
            if previous is None:
                path.unlink(missing_ok=True)
                return
            tmp_path = self._write_temporary(path, previous)
        except (OSError, WriteFailure) as e:
            logger.error(f"Unable to restore previous content of {path.name}: {e}")
            return
        try:
            os.replace(tmp_path, path)
        except OSError as e:
            _discard(tmp_path)
            logger.error(f"Unable to restore previous content of {path.name}: {e}")


def _discard(tmp_path: Path) -> None:
    try:
        tmp_path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning(f"Unable to remove temporary file {tmp_path.name}: {e}")


def _fsync_directory(directory: Path) -> None:
    """Flush the rename itself to disk where the platform allows it."""
    if os.name != "posix":
        return
    try:
        fd = os.open(directory, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass  # some filesystems refuse fsync on directories
    finally:
        os.close(fd)
