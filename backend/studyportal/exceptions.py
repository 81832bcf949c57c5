"""
Study Portal Backend — Custom Exception Hierarchy
===================================================

What:  Application-specific exceptions for the different failure scenarios.
How:   Each exception carries a user-facing message and an optional context
       dict (logged, never returned verbatim for server-side errors).
       Global handlers registered in main.py map them to HTTP responses.
Who:   Raised by services; caught either by the façade (storage failures it
       can recover from) or by the global handlers.

Exception Hierarchy:
    StudyPortalError (base)
    ├── ValidationError              → 400 Bad Request
    ├── NotFoundError                → 404 Not Found
    ├── FileStorageError             → 500 Internal Server Error
    │   └── LocalStoreWriteError     → recovered by the primary mirror when possible
    ├── LocalStoreCorruptionError    → recovered inside the local store (never escapes)
    ├── PrimaryUnavailableError      → recovered by falling back to the local store
    ├── ReconciliationError          → logged by the connection monitor, retried later
    └── StorageError                 → 503 Service Unavailable (both stores failed)

Recovery policy:
    Errors from the primary store never become request failures as long as
    the local store succeeds. Only a simultaneous failure of both stores on a
    write, or an id missing from the local store on delete/read, reaches the
    client.
"""

from typing import Any, Dict, Optional


class StudyPortalError(Exception):
    """
    Base exception for all Study Portal application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned for 5xx errors)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(StudyPortalError):
    """
    Raised when client input fails validation.

    When:    Missing displayName/type/icon, unknown type, wrong file type,
             empty or oversized payload.
    HTTP:    400 Bad Request
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


class NotFoundError(StudyPortalError):
    """
    Raised when a requested resource does not exist.

    For documents, "exists" is decided by the local store, which is
    authoritative for existence.
    HTTP:    404 Not Found
    """

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


class FileStorageError(StudyPortalError):
    """
    Raised when file system operations fail.

    When:    Disk full, permission denied, directory not writable, I/O error.
    HTTP:    500 Internal Server Error
    """

    def __init__(
        self,
        message: str = "File storage operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class LocalStoreWriteError(FileStorageError):
    """Raised when the local snapshot cannot be rewritten."""

    def __init__(
        self,
        message: str = "Could not write the local document store",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class LocalStoreCorruptionError(StudyPortalError):
    """
    Raised while parsing an unreadable local snapshot.

    Never leaves the local store: the reader catches it, logs it, moves the
    broken file aside and continues with an empty document set.
    """

    def __init__(
        self,
        message: str = "Local document store is corrupt",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class PrimaryUnavailableError(StudyPortalError):
    """
    Raised by the primary store client when the database cannot serve a call.

    When:    Not connected, connection refused, timeout, transient driver error.
    Side effect: the client has already flipped the shared reachability flag
             to false before raising, so the caller can fall back immediately.
    """

    def __init__(
        self,
        message: str = "Primary database is unavailable",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ReconciliationError(StudyPortalError):
    """
    Raised when merging pending local records into the primary store fails.

    The local store is left untouched so the same records are retried on the
    next successful connection or manual reconnect.
    """

    def __init__(
        self,
        message: str = "Reconciliation with the primary database failed",
        pending: int = 0,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["pending"] = pending
        super().__init__(message=message, context=ctx)
        self.pending = pending


class StorageError(StudyPortalError):
    """
    Raised when a write fails in both the local store and the primary store.

    HTTP:    503 Service Unavailable
    """

    def __init__(
        self,
        message: str = "The document could not be saved. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
