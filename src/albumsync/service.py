"""
Album service: the capabilities exposed upward to listing, metadata,
refresh and image endpoints.

Everything goes through sync_with_cache; the service itself never talks to
the remote source.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from .core.exceptions import CollectionUnavailableError
from .core.keys import key_from_filename, mask_key
from .core.models import CollectionMeta, SyncResult, SyncStatus, format_timestamp
from .store.base import CollectionEntry
from .sync.orchestrator import ProgressCallback, SyncOrchestrator
from .sync.pagination import Page, paginate


logger = logging.getLogger(__name__)


DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


@dataclass
class PageResult:
    """
    A page of a collection plus how it was obtained.

    Attributes:
        page: The sliced, newest-first items
        collection_meta: Album metadata from the snapshot
        last_synced: When the snapshot was last synced
        status: Orchestrator outcome for the underlying sync
        served_from_cache: Snapshot came from disk rather than a fresh fetch
        needs_background_refresh: Snapshot is old enough to warrant a refresh
    """
    page: Page
    collection_meta: CollectionMeta
    last_synced: datetime
    status: SyncStatus
    served_from_cache: bool
    needs_background_refresh: bool

    def to_dict(self) -> Dict[str, Any]:
        data = self.page.to_dict()
        data.update({
            "metadata": self.collection_meta.to_dict(),
            "last_synced": format_timestamp(self.last_synced),
            "status": self.status.value,
            "served_from_cache": self.served_from_cache,
            "needs_background_refresh": self.needs_background_refresh,
        })
        return data


class AlbumService:
    """
    Facade over the orchestrator and store.

    Example:
        >>> service = AlbumService(SyncOrchestrator(store, source))
        >>> result = service.list_page("B0aBcDeFgHiJkLm", page_index=0, page_size=10)
        >>> result.page.has_more
        True
    """

    def __init__(
        self,
        orchestrator: SyncOrchestrator,
        default_page_size: int = DEFAULT_PAGE_SIZE,
        max_page_size: int = MAX_PAGE_SIZE,
        cleanup_after: timedelta = timedelta(hours=24),
        auto_background_refresh: bool = False,
    ):
        """
        Initialize the service.

        Args:
            orchestrator: Sync orchestrator owning the store and source
            default_page_size: Page size when the caller gives none
            max_page_size: Upper clamp for requested page sizes
            cleanup_after: Default age for cleanup()
            auto_background_refresh: Schedule a forced refresh whenever a
                page is served from a snapshot past the refresh age
        """
        self.orchestrator = orchestrator
        self.store = orchestrator.store
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size
        self.cleanup_after = cleanup_after
        self.auto_background_refresh = auto_background_refresh

        self._refresh_executor: Optional[ThreadPoolExecutor] = None

    def sync_with_cache(
        self,
        collection_key: str,
        force: bool = False,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> SyncResult:
        """Sole entry point for obtaining a collection snapshot."""
        return self.orchestrator.sync_with_cache(
            collection_key, force=force, progress_callback=progress_callback
        )

    def list_page(
        self,
        collection_key: str,
        page_index: int = 0,
        page_size: Optional[int] = None,
    ) -> PageResult:
        """
        Return one page of a collection, syncing first if needed.

        Args:
            collection_key: External collection identifier
            page_index: Zero-based page number
            page_size: Items per page, clamped to [1, max_page_size]

        Returns:
            PageResult

        Raises:
            CollectionUnavailableError if nothing is cached and the source failed
        """
        size = page_size if page_size is not None else self.default_page_size
        size = max(1, min(size, self.max_page_size))

        result = self.sync_with_cache(collection_key)
        if not result.available:
            raise CollectionUnavailableError(
                f"Collection {mask_key(collection_key)} is unavailable"
            )

        snapshot = result.snapshot
        page = paginate(snapshot.items, max(0, page_index), size)

        age = snapshot.age(self.store.now())
        needs_refresh = (
            result.served_from_cache
            and age > self.orchestrator.config.background_refresh.total_seconds()
        )
        if needs_refresh and self.auto_background_refresh:
            self.refresh_in_background(collection_key)

        return PageResult(
            page=page,
            collection_meta=snapshot.collection_meta,
            last_synced=snapshot.last_synced,
            status=result.status,
            served_from_cache=result.served_from_cache,
            needs_background_refresh=needs_refresh,
        )

    def get_metadata(self, collection_key: str) -> Optional[CollectionMeta]:
        """
        Collection metadata from the cached snapshot, without any remote call.

        Returns:
            CollectionMeta, or None while the collection has never been synced
        """
        snapshot = self.store.load_snapshot(collection_key)
        if snapshot is None:
            return None
        return snapshot.collection_meta

    def open_asset(self, filename: str) -> bytes:
        """
        Read a stored asset by its served filename.

        Raises:
            ValueError for names that are not <64 hex>.jpg
            AssetNotFoundError if the asset is not stored
        """
        return self.store.get(key_from_filename(filename))

    def refresh(
        self,
        collection_key: str,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> SyncResult:
        """Force a sync regardless of staleness."""
        logger.info(f"Manual refresh requested for {mask_key(collection_key)}")
        return self.sync_with_cache(
            collection_key, force=True, progress_callback=progress_callback
        )

    def refresh_in_background(self, collection_key: str) -> Optional[Future]:
        """
        Schedule a forced refresh on a background worker.

        Returns None if a sync for the collection is already running.
        """
        if self.orchestrator.is_syncing(collection_key):
            logger.debug(f"Sync already running for {mask_key(collection_key)}")
            return None
        if self._refresh_executor is None:
            self._refresh_executor = ThreadPoolExecutor(
                max_workers=1, thread_name_prefix="background-refresh"
            )
        logger.info(f"Scheduling background refresh for {mask_key(collection_key)}")
        return self._refresh_executor.submit(self.refresh, collection_key)

    def cleanup(self, older_than: Optional[timedelta] = None) -> int:
        """Evict collections not accessed within older_than."""
        if older_than is None:
            older_than = self.cleanup_after
        return self.orchestrator.evict_older_than(older_than)

    def list_collections(self) -> List[CollectionEntry]:
        return self.store.list_collections()

    def close(self) -> None:
        if self._refresh_executor is not None:
            self._refresh_executor.shutdown(wait=True)
            self._refresh_executor = None
        self.orchestrator.close()
