"""
Error taxonomy for the offline cache sync layer.
"""
from typing import Optional, Any


class CacheSyncError(Exception):
    """Base exception for cache and sync errors."""
    pass


class CorruptionError(CacheSyncError):
    """Raised when a stored entry cannot be decoded or fails integrity checks."""

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key


class WriteError(CacheSyncError):
    """Raised when an entry cannot be persisted."""

    def __init__(self, message: str, key: Optional[str] = None):
        super().__init__(message)
        self.key = key


class StoreError(CacheSyncError):
    """Base exception for key-value store failures."""
    pass


class StoreQuotaExceededError(StoreError):
    """Raised when the store has no room for a write."""
    pass


class StoreUnavailableError(StoreError):
    """Raised when the store cannot be reached."""
    pass


class RemoteFetchError(CacheSyncError):
    """Raised when the remote data provider fails."""

    def __init__(self, message: str, resource: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.resource = resource
        self.status_code = status_code


class ValidationError(CacheSyncError):
    """Raised when a collection violates business rules before it is written."""

    def __init__(self, message: str, report: Any = None):
        super().__init__(message)
        self.report = report


class InitializationError(CacheSyncError):
    """Raised when service initialization fails."""

    def __init__(self, message: str, service: Optional[str] = None):
        super().__init__(message)
        self.service = service


class UnknownResourceError(CacheSyncError, KeyError):
    """Raised when a cache-aside resource was never registered."""

    def __init__(self, name: str):
        super().__init__(f"Unknown cache-aside resource: {name}")
        self.name = name

    def __str__(self):
        return self.args[0]

