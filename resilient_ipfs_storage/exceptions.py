"""
Custom exceptions for resilient IPFS storage.

Every component raises these exceptions so callers can tell a bad input
from a dead network, a rejected request, or a broken local cache.
"""


class ResilientStorageError(Exception):
    """Base exception for all resilient storage errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(ResilientStorageError):
    """Raised when input validation fails (blank payload, missing id)."""

    def __init__(self, field: str, reason: str, value: str | None = None):
        details = {"field": field, "reason": reason}
        if value is not None:
            details["value"] = value
        super().__init__(f"Validation failed for {field}: {reason}", details)
        self.field = field
        self.reason = reason
        self.value = value


class RemoteStoreError(ResilientStorageError):
    """Base exception for failures talking to the remote content store."""

    def __init__(self, message: str, endpoint: str | None = None, cause: Exception | None = None):
        details: dict = {}
        if endpoint:
            details["endpoint"] = endpoint
        if cause:
            details["cause"] = str(cause)
        super().__init__(message, details)
        self.endpoint = endpoint
        self.cause = cause


class ConnectivityError(RemoteStoreError):
    """Raised when the remote store is unreachable or timed out.

    Note: Named ConnectivityError to avoid shadowing the builtin ConnectionError.
    """

    def __init__(self, endpoint: str | None = None, cause: Exception | None = None):
        message = f"Remote store unreachable: {endpoint}" if endpoint else "Remote store not connected"
        if cause:
            message += f" ({cause})"
        super().__init__(message, endpoint, cause)


class RemoteRejectionError(RemoteStoreError):
    """Raised when the remote store refuses a request for a non-network reason."""

    def __init__(
        self,
        endpoint: str | None = None,
        cause: Exception | None = None,
        status: int | None = None,
    ):
        message = f"Remote store rejected request at {endpoint}"
        if cause:
            message += f": {cause}"
        super().__init__(message, endpoint, cause)
        self.status = status
        if status is not None:
            self.details["status"] = status


class StorageError(ResilientStorageError):
    """Raised when the local cache is unavailable or a write cannot complete."""

    def __init__(self, operation: str, cause: Exception | None = None, path: str | None = None):
        details = {"operation": operation}
        if path:
            details["path"] = path
        if cause:
            details["cause"] = str(cause)
        message = f"Local storage error during {operation}"
        if cause:
            message += f": {cause}"
        super().__init__(message, details)
        self.operation = operation
        self.path = path
        self.cause = cause


class NotFoundError(ResilientStorageError):
    """Raised when a read targets an id with no backing record."""

    def __init__(self, content_id: str, cause: Exception | None = None):
        details = {"content_id": content_id}
        if cause:
            details["cause"] = str(cause)
        super().__init__(f"Content not found: {content_id}", details)
        self.content_id = content_id
        self.cause = cause


class ConfigurationError(ResilientStorageError):
    """Raised when a configuration value cannot be used."""

    def __init__(self, key: str, reason: str):
        super().__init__(f"Invalid configuration for {key}: {reason}", {"key": key, "reason": reason})
        self.key = key
        self.reason = reason
