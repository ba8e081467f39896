"""
Shared-album remote source.
"""

from .shared_album_connector import SharedAlbumSource, base_url_for, partition_for

__all__ = ["SharedAlbumSource", "base_url_for", "partition_for"]
