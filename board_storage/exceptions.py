"""
Custom exceptions for board storage.

All store implementations should raise these exceptions
for consistent error handling across backends.
"""

from __future__ import annotations


class BoardStorageError(Exception):
    """Base exception for all board storage errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFoundError(BoardStorageError):
    """Raised when a query unexpectedly fetches no records.

    The resource names the entity family or query that came back empty,
    e.g. ``"block"`` or ``"session token"``.
    """

    def __init__(self, resource: str):
        super().__init__(f"{{{resource}}} not found", {"resource": resource})
        self.resource = resource


def is_not_found(err: BaseException | None) -> bool:
    """Return True if ``err`` is or wraps a NotFoundError.

    Follows explicit (``raise ... from``) and implicit exception chaining,
    and looks inside exception groups.
    """
    seen: set[int] = set()
    pending: list[BaseException] = [err] if err is not None else []

    while pending:
        current = pending.pop()
        if id(current) in seen:
            continue
        seen.add(id(current))

        if isinstance(current, NotFoundError):
            return True
        if isinstance(current, BaseExceptionGroup):
            pending.extend(current.exceptions)
        if current.__cause__ is not None:
            pending.append(current.__cause__)
        if current.__context__ is not None and not current.__suppress_context__:
            pending.append(current.__context__)

    return False


class DuplicateError(BoardStorageError):
    """Raised when an insert collides with an existing unique key."""

    def __init__(self, resource: str, key: str | None = None):
        details = {"resource": resource}
        if key:
            details["key"] = key
        message = f"{resource} already exists"
        if key:
            message += f": {key}"
        super().__init__(message, details)
        self.resource = resource
        self.key = key


class ValidationError(BoardStorageError):
    """Raised when data validation fails."""

    def __init__(self, field: str, reason: str, value: str | None = None):
        details = {"field": field, "reason": reason}
        if value is not None:
            details["value"] = value
        super().__init__(f"Validation failed for {field}: {reason}", details)
        self.field = field
        self.reason = reason
        self.value = value


class InvalidBlockError(ValidationError):
    """Raised when a block cannot be stored as given."""


class InvalidBoardsAndBlocksError(ValidationError):
    """Raised when a combined boards-and-blocks batch is malformed."""


class InvalidNotificationHintError(ValidationError):
    """Raised when a notification hint is missing required fields."""


class StorageIOError(BoardStorageError):
    """Raised when a storage I/O operation fails."""

    def __init__(self, operation: str, path: str | None = None, cause: Exception | None = None):
        details = {"operation": operation}
        if path:
            details["path"] = path
        if cause:
            details["cause"] = str(cause)
        message = f"Storage I/O error during {operation}"
        if path:
            message += f": {path}"
        super().__init__(message, details)
        self.operation = operation
        self.path = path
        self.cause = cause


class StorageConnectionError(BoardStorageError):
    """Raised when connection to the backing database fails.

    Note: Named StorageConnectionError to avoid shadowing the builtin ConnectionError.
    """

    def __init__(self, endpoint: str, cause: Exception | None = None):
        details = {"endpoint": endpoint}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Connection failed to {endpoint}", details)
        self.endpoint = endpoint
        self.cause = cause
