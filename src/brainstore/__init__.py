"""brainstore - content-addressed, versioned flat-file JSON document store."""

from .config import Settings, configure_logging
from .errors import (
    BrainError,
    Conflict,
    IntegrityFailure,
    NotFound,
    StorageException,
    ValidationFailure,
    WriteFailure,
)
from .repository import BrainRepository
from .runtime import Runtime

__version__ = "0.1.0"

__all__ = [
    "BrainError",
    "BrainRepository",
    "Conflict",
    "IntegrityFailure",
    "NotFound",
    "Runtime",
    "Settings",
    "StorageException",
    "ValidationFailure",
    "WriteFailure",
    "configure_logging",
]
