"""
Client-wide exception hierarchy.

Repositories catch these at their boundary and turn them into
``OperationResult`` failures; only bulk administrative operations
(clearing the audit log) and the Durable Store itself let them escape.

Usage:
    from shiftbook.core.exceptions import StorageError, ValidationError

    raise StorageError("put", collection="users", cause=exc)
    raise ValidationError("El nombre de usuario ya existe.", details={"username": "duplicate"})
"""


class StorageError(Exception):
    """Raised when a Durable Store transaction aborts.

    Args:
        operation: Store operation that failed (``put``, ``delete``, ``transaction`` …).
        collection: Collection name involved, when known.
        cause: Underlying driver exception. Its text is kept for the audit entry.
    """

    def __init__(
        self,
        operation: str,
        collection: str | None = None,
        cause: Exception | None = None,
    ) -> None:
        self.operation = operation
        self.collection = collection
        self.cause = cause
        msg = f"Storage {operation} failed"
        if collection:
            msg += f" on {collection}"
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails a business rule.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable (user-facing) explanation of what failed.
        details: Optional field-level breakdown.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class NotFoundError(Exception):
    """Raised when a requested record does not exist.

    Args:
        resource: Human-readable entity name (e.g. "ShiftReport").
        resource_id: The id that was looked up.
    """

    def __init__(self, resource: str, resource_id: str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ImportRejectedError(ValidationError):
    """Raised when a backup payload is refused before any destructive step."""
