"""
MManage Backend — Custom Exception Hierarchy
=============================================

What:  Application-specific exceptions for the HTTP layer and the backup subsystem.
How:   Each exception carries a message and an optional context dict.
       Global handlers (registered in main.py) turn the HTTP-facing ones into
       structured JSON responses. The backup family never reaches a handler:
       the backup service catches and logs it.

Exception Hierarchy:
    MManageError (base)
    ├── ValidationError            → 400 Bad Request
    ├── NotFoundError              → 404 Not Found
    ├── ConflictError              → 409 Conflict
    ├── DatabaseError              → 500 Internal Server Error
    └── BackupError                (logged only)
        ├── BackupConfigurationError
        ├── UnknownBackupTableError
        └── BackupWriteError
"""

from typing import Any, Dict, Optional


class MManageError(Exception):
    """
    Base exception for all MManage application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(MManageError):
    """
    Raised when client input fails a business rule.

    Schema-level problems are reported by FastAPI as 422; this one covers
    checks that only the service layer can make.
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class NotFoundError(MManageError):
    """Raised when a requested resource does not exist."""

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class ConflictError(MManageError):
    """
    Raised when a write collides with existing data.

    When:    Creating or renaming a user to an email that is already registered.
    HTTP:    409 Conflict
    """

    def __init__(
        self,
        message: str = "The resource already exists",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class DatabaseError(MManageError):
    """
    Raised when primary-store operations fail unexpectedly.

    The message returned to the client is always generic; the context is
    logged server-side only.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


# ══════════════════════════════════════════════════════════════════════════
# Backup replication errors
# ══════════════════════════════════════════════════════════════════════════


class BackupError(MManageError):
    """Base class for failures inside the backup replication subsystem."""


class BackupConfigurationError(BackupError):
    """
    Raised at startup when the backup table registry is invalid.

    When:    A table or column name is not a plain lowercase CQL identifier,
             or a table declares no columns.
    """

    def __init__(
        self,
        message: str = "Invalid backup table configuration",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class UnknownBackupTableError(BackupError):
    """Raised when a record targets a table missing from the registry."""

    def __init__(self, table: str, context: Optional[Dict[str, Any]] = None):
        ctx = context or {}
        ctx["table"] = table
        super().__init__(
            message=f"Backup table '{table}' is not registered",
            context=ctx,
        )
        self.table = table


class BackupWriteError(BackupError):
    """
    Raised when a single insert into the backup store fails.

    Wraps driver errors (timeouts, unavailable replicas, schema mismatch) so
    callers log one exception type. The original error is chained.
    """

    def __init__(
        self,
        message: str = "Backup write failed",
        table: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if table:
            ctx["table"] = table
        super().__init__(message=message, context=ctx)
        self.table = table
