"""Explicit runtime context: one per process, or one per test.

Wires settings, the event bus, locks, the atomic writer, backups and the
repository together. There is no module-level instance; callers keep the
Runtime they booted and pass it (or its repository) around.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .atomic import AtomicWriter
from .backups import BackupManager
from .config import Settings
from .events import EventBus
from .locking import LockManager
from .paths import PathLocator
from .repository import BrainRepository

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    settings: Settings
    paths: PathLocator
    events: EventBus
    locks: LockManager
    writer: AtomicWriter
    backups: BackupManager
    repository: BrainRepository

    @classmethod
    def boot(cls, settings: Settings | None = None, **overrides) -> "Runtime":
        """Build every component and make sure the system and active brains exist."""
        settings = settings or Settings.from_env(**overrides)
        paths = settings.paths
        paths.ensure_directories()

        events = EventBus()
        locks = LockManager(settings.lock_timeout)
        writer = AtomicWriter(events, locks, verify=settings.verify_writes)
        backups = BackupManager(paths, locks)
        repository = BrainRepository(paths, writer, events, backups, default_brain=settings.default_brain)

        active = repository.ensure_active_brain()
        logger.debug(f"Booted brain store at {paths.root} (active brain '{active}')")
        return cls(
            settings=settings,
            paths=paths,
            events=events,
            locks=locks,
            writer=writer,
            backups=backups,
            repository=repository,
        )
