"""Configuration for a brain store runtime.

All settings come from environment variables with local-development
defaults; explicit keyword overrides win over the environment.

    BRAIN_PATH           root directory            (default: ./.brain)
    BRAIN_DEFAULT        default user brain slug   (default: default)
    BRAIN_VERIFY_WRITES  re-read after each write  (default: true)
    BRAIN_LOCK_TIMEOUT   seconds, 0 waits forever  (default: 30)
    BRAIN_LOG_LEVEL      logging level name        (default: INFO)
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator

from .constants import DEFAULT_BRAIN, DEFAULT_LOCK_TIMEOUT
from .paths import PathLocator, sanitize_slug

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


class Settings(BaseModel):
    """Typed runtime settings."""

    root: Path = Path(".brain")
    default_brain: str = DEFAULT_BRAIN
    verify_writes: bool = True
    lock_timeout: float = Field(default=DEFAULT_LOCK_TIMEOUT, ge=0.0)
    log_level: str = "INFO"

    @field_validator("default_brain")
    @classmethod
    def _normalize_brain(cls, value: str) -> str:
        return sanitize_slug(value, DEFAULT_BRAIN)

    @field_validator("log_level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        level = value.strip().upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {value}")
        return level

    @classmethod
    def from_env(cls, **overrides: Any) -> "Settings":
        """Load settings from environment variables."""
        values: dict[str, Any] = {
            "root": os.getenv("BRAIN_PATH", ".brain"),
            "default_brain": os.getenv("BRAIN_DEFAULT", DEFAULT_BRAIN),
            "verify_writes": os.getenv("BRAIN_VERIFY_WRITES", "true").lower() in ("1", "true", "yes"),
            "lock_timeout": float(os.getenv("BRAIN_LOCK_TIMEOUT", str(DEFAULT_LOCK_TIMEOUT))),
            "log_level": os.getenv("BRAIN_LOG_LEVEL", "INFO"),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @property
    def paths(self) -> PathLocator:
        return PathLocator(self.root)


def configure_logging(settings: Settings) -> Path:
    """Log to <root>/system/storage/logs/brainstore.log and stderr.

    Entry points call this once; library code only uses module loggers.
    """
    log_dir = settings.paths.logs
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "brainstore.log"

    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format=LOG_FORMAT,
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler(sys.stderr),
        ],
        force=True,
    )
    return log_file
