"""
Store interface for persisting assets and collection snapshots.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import AbstractSet, List, Optional

from ..core.models import CollectionSnapshot


@dataclass(frozen=True)
class CollectionEntry:
    """
    A cached collection as seen by maintenance operations.

    Attributes:
        collection_id: One-way hash of the collection key (directory name)
        last_accessed: Last time the collection was served or synced
        item_count: Number of items in the stored snapshot
    """
    collection_id: str
    last_accessed: Optional[datetime]
    item_count: int = 0


class AssetStore(ABC):
    """
    Abstract base class for content-addressed stores.

    Assets are addressed only by their asset key; snapshots only by their
    collection key. Nothing above the store knows about file paths.
    Storage failures raise StoreIOError and are never retried here.
    """

    @abstractmethod
    def put(self, key: str, data: bytes) -> str:
        """
        Store bytes under an asset key.

        Idempotent: if an entry for key already exists this is a no-op and
        the existing bytes are kept.

        Returns:
            The asset key
        """
        pass

    @abstractmethod
    def exists(self, key: str) -> bool:
        """Check whether an entry exists for the asset key."""
        pass

    @abstractmethod
    def get(self, key: str) -> bytes:
        """
        Read the bytes stored under an asset key.

        Raises:
            AssetNotFoundError if no entry exists
        """
        pass

    @abstractmethod
    def save_snapshot(self, collection_key: str, snapshot: CollectionSnapshot) -> None:
        """Persist a snapshot atomically, replacing any previous one."""
        pass

    @abstractmethod
    def load_snapshot(self, collection_key: str) -> Optional[CollectionSnapshot]:
        """
        Load the stored snapshot for a collection.

        Returns:
            The snapshot, or None if missing or unparseable
        """
        pass

    @abstractmethod
    def touch(self, collection_key: str) -> bool:
        """
        Update the last-accessed marker of a collection.

        Returns:
            False if the collection has no stored snapshot
        """
        pass

    @abstractmethod
    def list_collections(self) -> List[CollectionEntry]:
        """List every cached collection."""
        pass

    @abstractmethod
    def delete_collection(self, collection_id: str) -> bool:
        """Delete a collection's metadata. Returns False if it did not exist."""
        pass

    @abstractmethod
    def collect_orphans(
        self, older_than: timedelta, keep: Optional[AbstractSet[str]] = None
    ) -> int:
        """
        Delete assets referenced by no stored snapshot.

        Only assets written more than older_than ago are considered, so
        assets stored by a sync that has not committed yet survive.

        Args:
            older_than: Minimum age of a collectable asset
            keep: Asset keys to spare even when unreferenced (e.g. assets
                a running sync has found already stored)

        Returns:
            Number of assets deleted
        """
        pass

    @abstractmethod
    def now(self) -> datetime:
        """Current time according to the store's clock."""
        pass

    def expired_collections(self, older_than: timedelta) -> List[str]:
        """Ids of collections not accessed within older_than."""
        cutoff = self.now() - older_than
        return [
            entry.collection_id
            for entry in self.list_collections()
            if entry.last_accessed is None or entry.last_accessed < cutoff
        ]

    def evict_older_than(self, older_than: timedelta) -> int:
        """
        Delete entire collections whose last access exceeds older_than,
        then collect assets no longer referenced by any collection.

        Callers running syncs concurrently must serialize eviction per
        collection (see SyncOrchestrator.evict_older_than).

        Returns:
            Number of collections deleted
        """
        deleted = 0
        for cid in self.expired_collections(older_than):
            if self.delete_collection(cid):
                deleted += 1
        if deleted:
            self.collect_orphans(older_than)
        return deleted

    def get_name(self) -> str:
        """Return the store name/identifier."""
        return type(self).__name__

    def close(self) -> None:
        """Close any open resources. Optional."""
        pass
