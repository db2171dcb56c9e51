"""Error types raised by the brain store.

Two families, kept apart so callers can handle them with one clause each:

- Expected conditions, surfaced directly without retry:
  NotFound, Conflict, ValidationFailure
- Fatal storage conditions (the writer already retried once):
  StorageException and its subclasses IntegrityFailure, WriteFailure

The store knows nothing about HTTP codes or exit codes; `to_dict()`
gives the calling layer the pieces for its own response envelope.
"""

from __future__ import annotations

from typing import Any


class BrainError(Exception):
    """Base exception for all brain store errors.

    Attributes:
        message: Error message
        code: Error kind for programmatic handling
        details: Additional error context
    """

    code = "brain_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


class NotFound(BrainError):
    """Unknown brain, project, entity, version or commit reference."""

    code = "not_found"


class Conflict(BrainError):
    """Duplicate slug, reserved name or invalid state transition."""

    code = "conflict"


class ValidationFailure(BrainError):
    """Malformed payload, metadata or identifier."""

    code = "validation_failure"


class StorageException(BrainError):
    """Fatal storage failure; the operation left no partial effect."""

    code = "storage_error"


class IntegrityFailure(StorageException):
    """Post-write verification did not match the bytes that were written."""

    code = "integrity_failure"


class WriteFailure(StorageException):
    """I/O failure or lock contention timeout."""

    code = "write_failure"
