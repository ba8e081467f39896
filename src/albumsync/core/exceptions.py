"""
Custom exceptions for the album synchronization framework.
"""


class AlbumSyncError(Exception):
    """Base exception for all albumsync errors."""
    pass


class RemoteSourceError(AlbumSyncError):
    """
    Error communicating with the remote album source.
    
    Raised when:
    - The source is unreachable or the connection is reset
    - The source returns an unexpected status code
    - The response payload cannot be understood
    """
    
    def __init__(self, message: str, source: str = None, status_code: int = None):
        super().__init__(message)
        self.source = source
        self.status_code = status_code


class RemoteTimeoutError(RemoteSourceError):
    """A remote call exceeded its timeout or deadline."""
    pass


class RateLimitedError(RemoteSourceError):
    """
    The source signalled rate limiting (HTTP 429) or temporary
    unavailability (HTTP 503). Always transient.
    """
    pass


class AssetNotFoundError(AlbumSyncError, KeyError):
    """No stored entry exists for the requested asset key."""
    
    def __init__(self, key: str):
        super().__init__(f"Asset not found: {key}")
        self.key = key

    def __str__(self) -> str:
        return f"Asset not found: {self.key}"


class StoreIOError(AlbumSyncError):
    """
    Local storage failure (permission denied, disk full, ...).
    
    Never retried inside the store and never absorbed by the orchestrator.
    """
    pass


class CollectionUnavailableError(AlbumSyncError):
    """No snapshot exists and the remote source could not provide one."""
    pass


class SessionCancelledError(AlbumSyncError):
    """The client session owning this operation has been torn down."""
    pass


class ConfigError(AlbumSyncError):
    """Invalid or inconsistent configuration."""
    pass
