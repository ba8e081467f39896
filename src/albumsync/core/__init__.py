"""
Core abstractions and data models for albumsync.
"""

from .models import (
    AssetRef, DerivedVariant, CollectionMeta, CollectionSnapshot,
    RemoteSnapshot, SyncStatus, SyncProgress, SyncReport, SyncResult,
)
from .source import RemoteSource
from .keys import asset_key, collection_id, mask_key
from .exceptions import (
    AlbumSyncError, RemoteSourceError, RemoteTimeoutError, RateLimitedError,
    AssetNotFoundError, StoreIOError, CollectionUnavailableError,
    SessionCancelledError, ConfigError,
)

__all__ = [
    "AssetRef",
    "DerivedVariant",
    "CollectionMeta",
    "CollectionSnapshot",
    "RemoteSnapshot",
    "SyncStatus",
    "SyncProgress",
    "SyncReport",
    "SyncResult",
    "RemoteSource",
    "asset_key",
    "collection_id",
    "mask_key",
    "AlbumSyncError",
    "RemoteSourceError",
    "RemoteTimeoutError",
    "RateLimitedError",
    "AssetNotFoundError",
    "StoreIOError",
    "CollectionUnavailableError",
    "SessionCancelledError",
    "ConfigError",
]
