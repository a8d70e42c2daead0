"""
Typed failures raised by the monitoring engine.

Every error carries a ``context`` dict with the offending ids and fields so the
request layer can render a message without parsing strings.
"""

from typing import Any


class PressureMonitorError(Exception):
    """Base class for all engine failures."""

    kind = "error"

    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context: dict[str, Any] = context

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{key}={value!r}" for key, value in self.context.items())
        return f"{self.message} ({details})"


# Rejected before any mutation
class ValidationError(PressureMonitorError, ValueError):
    kind = "validation"


class InvalidMatrix(ValidationError):
    pass


class InvalidRange(ValidationError):
    pass


class InvalidEndTime(ValidationError):
    pass


class InvalidBucketWidth(ValidationError):
    pass


# Retrying would not change the outcome
class ConflictError(PressureMonitorError):
    kind = "conflict"


class ConflictingSession(ConflictError):
    pass


class AlreadyClosed(ConflictError):
    pass


class AlreadyAcknowledged(ConflictError):
    pass


class NotFoundError(PressureMonitorError):
    kind = "not_found"


class NoOpenSession(NotFoundError):
    pass


class SessionNotFound(NotFoundError):
    pass


class AlertNotFound(NotFoundError):
    pass


class StorageError(PressureMonitorError):
    """Transient persistence failure; nothing was committed, safe to retry."""

    kind = "storage"


class FatalStorageError(StorageError):
    """Never retried: the commit outcome is unknown or the store rejected the statement."""

    kind = "storage_fatal"
