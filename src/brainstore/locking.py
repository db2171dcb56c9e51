"""Per-brain exclusive locks.

Writes to a brain file are serialized by holding an exclusive lock on a
sidecar `<file>.lock` for the whole load-mutate-persist cycle. The lock is
an OS-level file lock, so independent processes contend for it too:

- Unix/Linux/macOS: fcntl.flock
- Windows: msvcrt.locking

Within one process the lock is re-entrant per path (the repository holds
it while the writer persists), guarded by a threading.RLock.
"""

from __future__ import annotations

import logging
import os
import platform
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Iterator

from .constants import LOCK_POLL_INTERVAL
from .errors import WriteFailure

logger = logging.getLogger(__name__)

if platform.system() == "Windows":
    import msvcrt

    def _try_lock(handle: IO) -> bool:
        try:
            msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
            return True
        except OSError:
            return False

    def _unlock(handle: IO) -> None:
        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)

else:
    import fcntl

    def _try_lock(handle: IO) -> bool:
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            return True
        except BlockingIOError:
            return False

    def _unlock(handle: IO) -> None:
        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


class BrainLock:
    """Re-entrant exclusive lock on one brain file."""

    def __init__(self, target: Path, timeout: float = 0.0):
        """Initialize the lock.

        Args:
            target: The brain file being protected
            timeout: Seconds to wait for another holder; 0 waits forever
        """
        self.target = target
        self.lock_path = target.with_name(target.name + ".lock")
        self.timeout = timeout
        self._mutex = threading.RLock()
        self._handle: IO | None = None
        self._depth = 0

    @property
    def held(self) -> bool:
        return self._depth > 0

    def acquire(self) -> None:
        self._mutex.acquire()
        if self._depth > 0:
            self._depth += 1
            return

        try:
            self.lock_path.parent.mkdir(parents=True, exist_ok=True)
            handle = open(self.lock_path, "a+b")
        except OSError as e:
            self._mutex.release()
            raise WriteFailure(
                f"Unable to open lock file {self.lock_path}: {e}", {"path": str(self.lock_path)}
            ) from e

        deadline = time.monotonic() + self.timeout if self.timeout > 0 else None
        while not _try_lock(handle):
            if deadline is not None and time.monotonic() >= deadline:
                handle.close()
                self._mutex.release()
                raise WriteFailure(
                    f"Timed out after {self.timeout}s waiting for lock on {self.target.name}",
                    {"path": str(self.target), "timeout": self.timeout},
                )
            time.sleep(LOCK_POLL_INTERVAL)

        self._handle = handle
        self._depth = 1
        logger.debug(f"Acquired lock on {self.target.name} (pid {os.getpid()})")

    def release(self) -> None:
        if self._depth == 0:
            raise RuntimeError(f"Lock on {self.target.name} is not held")
        self._depth -= 1
        if self._depth == 0 and self._handle is not None:
            try:
                _unlock(self._handle)
            finally:
                self._handle.close()
                self._handle = None
            logger.debug(f"Released lock on {self.target.name}")
        self._mutex.release()

    def __enter__(self) -> "BrainLock":
        self.acquire()
        return self

    def __exit__(self, *exc) -> None:
        self.release()


class LockManager:
    """Hands out one BrainLock per brain path for a runtime."""

    def __init__(self, timeout: float = 0.0):
        self.timeout = timeout
        self._locks: dict[Path, BrainLock] = {}
        self._guard = threading.Lock()

    def lock_for(self, target: Path) -> BrainLock:
        key = target.resolve()
        with self._guard:
            if key not in self._locks:
                self._locks[key] = BrainLock(key, self.timeout)
            return self._locks[key]

    @contextmanager
    def hold(self, target: Path) -> Iterator[BrainLock]:
        """Hold the exclusive lock for target for the duration of the block."""
        lock = self.lock_for(target)
        with lock:
            yield lock
