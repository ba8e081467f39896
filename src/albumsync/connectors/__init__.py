"""
Remote sources for album listings and asset bytes.
"""

from .shared_album import SharedAlbumSource
from .test_source import TestRemoteSource, blob_for, make_items

__all__ = [
    "SharedAlbumSource",
    "TestRemoteSource",
    "blob_for",
    "make_items",
]
