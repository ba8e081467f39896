"""
Configuration loading.
"""

from .config_loader import AlbumSyncConfig, StoreSettings

__all__ = ["AlbumSyncConfig", "StoreSettings"]
