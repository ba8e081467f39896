"""
Content-addressed store implementations.
"""

from .base import AssetStore, CollectionEntry
from .file_store import FileAssetStore
from .memory_store import InMemoryAssetStore

__all__ = ["AssetStore", "CollectionEntry", "FileAssetStore", "InMemoryAssetStore"]
