"""Error taxonomy shared by the engine, the lifecycle manager and the server.

Every failure raised by an operation is a ``DomainError`` carrying a stable
``ErrorCode`` and a user-safe message. The server maps codes to HTTP status.
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(Enum):
    """Domain error codes."""

    NOT_FOUND = "NOT_FOUND"
    FORBIDDEN = "FORBIDDEN"
    UNAUTHORIZED = "UNAUTHORIZED"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    CONFLICT = "CONFLICT"
    ROLE_CONFLICT = "ROLE_CONFLICT"
    CAPACITY_EXCEEDED = "CAPACITY_EXCEEDED"
    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"


class DomainError(Exception):
    """Base domain error with code and user-safe message.

    ``commit`` marks errors whose in-memory side effects must still be saved
    before the error propagates.
    """

    code = ErrorCode.VALIDATION_FAILED
    commit = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.code.value}: {self.message}"


class NotFound(DomainError):
    """Raised when an event, user, booking or other entity is missing."""

    code = ErrorCode.NOT_FOUND


class Forbidden(DomainError):
    """Raised when the acting user may not perform the operation."""

    code = ErrorCode.FORBIDDEN


class Unauthorized(DomainError):
    """Raised on bad credentials."""

    code = ErrorCode.UNAUTHORIZED


class ValidationFailed(DomainError):
    code = ErrorCode.VALIDATION_FAILED


class Conflict(DomainError):
    """Raised on overlaps and duplicates."""

    code = ErrorCode.CONFLICT


class RoleConflict(Conflict):
    """Raised when a volunteer role was taken before the invite was accepted.

    The invite is marked rejected, and that change is kept.
    """

    code = ErrorCode.ROLE_CONFLICT
    commit = True


class CapacityExceeded(DomainError):
    """Raised when an event is full. The "full" notification is kept."""

    code = ErrorCode.CAPACITY_EXCEEDED
    commit = True


class PersistenceError(DomainError):
    """Raised when the store or object storage cannot be reached."""

    code = ErrorCode.PERSISTENCE_ERROR


class StaleAggregateError(PersistenceError):
    """Raised when another writer saved the aggregate since it was loaded."""

    def __init__(self, expected_version: int) -> None:
        super().__init__(f"Aggregate changed since version {expected_version}")
        self.expected_version = expected_version
