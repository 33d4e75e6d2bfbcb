"""Error types raised while synchronizing groups and events."""
from typing import Optional


class SyncError(Exception):
    """Base class for synchronization failures."""


class FetchError(SyncError):
    """A remote fetch failed; ``cause`` holds the underlying exception."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class TransportError(FetchError):
    """Network unreachable, timeout or HTTP error status."""


class DecodeError(FetchError):
    """Malformed or schema-mismatched JSON payload."""


class InvalidLocatorError(FetchError):
    """Group has no usable events resource."""


class UnknownSyncError(SyncError):
    """Unexpected failure, e.g. the controller was closed mid-operation."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause
