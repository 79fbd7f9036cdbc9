"""
Custom exceptions for document mirrors.

Usage errors are raised synchronously, before any remote write is
issued. Remote failures surface on the write task the mirror returns.
Every exception carries a ``details`` mapping suitable for structured
logging.
"""

from typing import Any


def _details(**values: Any) -> dict[str, Any]:
    # Empty values are left out; exceptions are recorded by their message
    return {
        key: str(value) if isinstance(value, BaseException) else value
        for key, value in values.items()
        if value
    }


class MirrorError(Exception):
    """Base exception for all document mirror errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class MirrorUnavailableError(MirrorError):
    """Raised when a write is attempted on a mirror running in degraded mode.

    A mirror degrades when it has no backend or no running event loop.
    It still serves its seeded value to subscribers but has no write path.
    """

    def __init__(self, operation: str, reason: str | None = None):
        suffix = f" ({reason})" if reason else ""
        super().__init__(
            f"Mirror is not connected to a backend; cannot {operation}{suffix}",
            _details(operation=operation, reason=reason),
        )
        self.operation = operation
        self.reason = reason


class MirrorUsageError(MirrorError):
    """Raised when a mirror operation is invoked in a way that cannot succeed."""


class QueryInsertError(MirrorUsageError):
    """Raised when adding a record to a mirror bound to a query."""

    def __init__(self, query_path: str):
        super().__init__(
            f"Cannot add a record to a query over {query_path}; "
            "queries have no insertion location",
            _details(path=query_path),
        )
        self.query_path = query_path


class UnresolvableReferenceError(MirrorUsageError):
    """Raised when a record's remote reference cannot be determined."""

    def __init__(self, record_id: str | None, reason: str):
        super().__init__(
            f"Cannot resolve reference for record {record_id!r}: {reason}",
            _details(record_id=record_id, reason=reason),
        )
        self.record_id = record_id
        self.reason = reason


class InvalidPathError(MirrorUsageError):
    """Raised when a path does not address the expected kind of reference."""

    def __init__(self, path: str, expected: str):
        super().__init__(f"Invalid {expected} path: {path!r}", _details(path=path, expected=expected))
        self.path = path
        self.expected = expected


class RemoteWriteError(MirrorError):
    """Raised when a backend call (a write, or the read behind a listener) fails."""

    def __init__(self, operation: str, path: str | None = None, cause: Exception | None = None):
        target = f": {path}" if path else ""
        super().__init__(
            f"Remote {operation} failed{target}",
            _details(operation=operation, path=path, cause=cause),
        )
        self.operation = operation
        self.path = path
        self.cause = cause


class StorageConnectionError(MirrorError):
    """Raised when the backend cannot be reached.

    Not named ConnectionError, which would shadow the builtin.
    """

    def __init__(self, endpoint: str, cause: Exception | None = None):
        super().__init__(
            f"Could not connect to {endpoint}", _details(endpoint=endpoint, cause=cause)
        )
        self.endpoint = endpoint
        self.cause = cause


class AuthenticationError(MirrorError):
    """Raised when the backend rejects or cannot build credentials."""

    def __init__(self, endpoint: str, reason: str | None = None):
        super().__init__(
            f"Authentication failed for {endpoint}", _details(endpoint=endpoint, reason=reason)
        )
        self.endpoint = endpoint
        self.reason = reason
