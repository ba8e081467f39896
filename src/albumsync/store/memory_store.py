"""
In-memory content-addressed store for tests and ephemeral sessions.
"""

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import AbstractSet, Callable, Dict, List, Optional, Tuple

from ..core.exceptions import AssetNotFoundError
from ..core.keys import asset_key, collection_id, is_valid_asset_key
from ..core.models import CollectionSnapshot
from .base import AssetStore, CollectionEntry


logger = logging.getLogger(__name__)


class InMemoryAssetStore(AssetStore):
    """
    Dictionary-backed store with the same semantics as FileAssetStore.

    Snapshots are kept as serialized dicts so that loading returns a fresh
    value, exactly as a disk round-trip would.

    Attributes:
        writes: Number of asset writes actually performed (no-op puts excluded)
    """

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self._assets: Dict[str, Tuple[bytes, datetime]] = {}
        self._collections: Dict[str, Tuple[dict, datetime]] = {}
        self.writes = 0

    def now(self) -> datetime:
        return self._clock()

    def put(self, key: str, data: bytes) -> str:
        self._check_key(key)
        with self._lock:
            if key in self._assets:
                return key
            self._assets[key] = (bytes(data), self.now())
            self.writes += 1
        return key

    def exists(self, key: str) -> bool:
        self._check_key(key)
        with self._lock:
            return key in self._assets

    def get(self, key: str) -> bytes:
        self._check_key(key)
        with self._lock:
            entry = self._assets.get(key)
        if entry is None:
            raise AssetNotFoundError(key)
        return entry[0]

    def discard_asset(self, key: str) -> None:
        """Drop an asset, simulating a blob lost behind the metadata's back."""
        with self._lock:
            self._assets.pop(key, None)

    def save_snapshot(self, collection_key: str, snapshot: CollectionSnapshot) -> None:
        with self._lock:
            self._collections[collection_id(collection_key)] = (snapshot.to_dict(), self.now())

    def load_snapshot(self, collection_key: str) -> Optional[CollectionSnapshot]:
        with self._lock:
            entry = self._collections.get(collection_id(collection_key))
        if entry is None:
            return None
        try:
            return CollectionSnapshot.from_dict(entry[0])
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Ignoring unparseable snapshot: {e}")
            return None

    def touch(self, collection_key: str) -> bool:
        cid = collection_id(collection_key)
        with self._lock:
            entry = self._collections.get(cid)
            if entry is None:
                return False
            self._collections[cid] = (entry[0], self.now())
        return True

    def list_collections(self) -> List[CollectionEntry]:
        with self._lock:
            return [
                CollectionEntry(cid, accessed, len(data.get("items", [])))
                for cid, (data, accessed) in sorted(self._collections.items())
            ]

    def delete_collection(self, collection_id: str) -> bool:
        with self._lock:
            return self._collections.pop(collection_id, None) is not None

    def collect_orphans(
        self, older_than: timedelta, keep: Optional[AbstractSet[str]] = None
    ) -> int:
        cutoff = self.now() - older_than
        with self._lock:
            referenced = set(keep or ())
            for data, _ in self._collections.values():
                for item in CollectionSnapshot.from_dict(data).items:
                    locator = item.best_locator()
                    if locator:
                        referenced.add(asset_key(locator))
            orphans = [
                key for key, (_, written) in self._assets.items()
                if key not in referenced and written < cutoff
            ]
            for key in orphans:
                del self._assets[key]
        return len(orphans)

    def _check_key(self, key: str) -> None:
        if not is_valid_asset_key(key):
            raise ValueError(f"Invalid asset key: {key!r}")

    def get_name(self) -> str:
        return "memory_store"
