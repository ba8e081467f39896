"""
Sync orchestrator: keeps a collection's local snapshot in step with the
remote source.

State machine per collection key:

    EVALUATE ─ fresh ──────────────────────────────────────────► FRESH
        │
        └ stale/missing ─► FETCH_REMOTE ─ failure ─► FALLBACK (STALE_FALLBACK | UNAVAILABLE)
                              │
                              └ success ─► RESOLVE_DELTA ─► DOWNLOAD_LOOP ─► COMMIT (SYNCED)

Only one machine runs per collection at a time; concurrent callers for the
same collection join the running sync and receive its result. Remote
failures never escape; local store failures (StoreIOError) always do.
"""

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Set

from ..core.exceptions import RemoteSourceError, RemoteTimeoutError, StoreIOError
from ..core.keys import asset_key, collection_id, mask_key
from ..core.models import (
    AssetRef, CollectionSnapshot, RemoteSnapshot, SyncProgress,
    SyncReport, SyncResult, SyncStatus,
)
from ..core.source import RemoteSource
from ..store.base import AssetStore
from .delta import resolve_delta
from .retry import RetryConfig, retry_with_backoff


logger = logging.getLogger(__name__)


ProgressCallback = Callable[[SyncProgress], None]


@dataclass
class SyncConfig:
    """
    Configuration for the sync orchestrator.

    Attributes:
        staleness: Age at which a snapshot is no longer served without a refresh
        snapshot_timeout_seconds: Deadline for the remote listing call
        download_timeout_seconds: Timeout per download attempt
        download_delay_seconds: Pause after each successful download
        retry: Retry schedule for downloads
        background_refresh: Age past which a served snapshot should be refreshed
            in the background
    """
    staleness: timedelta = timedelta(hours=24)
    snapshot_timeout_seconds: float = 15.0
    download_timeout_seconds: float = 10.0
    download_delay_seconds: float = 1.0
    retry: RetryConfig = field(default_factory=RetryConfig)
    background_refresh: timedelta = timedelta(hours=1)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SyncConfig":
        """Build from the `sync` section of the YAML configuration."""
        defaults = cls()
        retry_defaults = RetryConfig()
        return cls(
            staleness=timedelta(minutes=float(
                data.get("staleness_minutes", defaults.staleness.total_seconds() / 60)
            )),
            snapshot_timeout_seconds=float(
                data.get("snapshot_timeout_seconds", defaults.snapshot_timeout_seconds)
            ),
            download_timeout_seconds=float(
                data.get("download_timeout_seconds", defaults.download_timeout_seconds)
            ),
            download_delay_seconds=float(
                data.get("download_delay_seconds", defaults.download_delay_seconds)
            ),
            retry=RetryConfig(
                max_attempts=int(data.get("retry_attempts", retry_defaults.max_attempts)),
                backoff_seconds=tuple(
                    float(s) for s in data.get("retry_backoff_seconds", retry_defaults.backoff_seconds)
                ),
                rate_limit_backoff_seconds=float(
                    data.get("rate_limit_backoff_seconds", retry_defaults.rate_limit_backoff_seconds)
                ),
            ),
            background_refresh=timedelta(seconds=float(
                data.get("background_refresh_seconds", defaults.background_refresh.total_seconds())
            )),
        )

    def worst_case_seconds(self, download_count: int) -> float:
        """Upper bound on the time spent in the download loop."""
        per_item = (
            self.retry.max_attempts * self.download_timeout_seconds
            + self.retry.ceiling_seconds
            + self.download_delay_seconds
        )
        return download_count * per_item


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SyncOrchestrator:
    """
    Ties staleness evaluation, remote fetch, delta resolution, bounded-retry
    download and store commit into one operation.

    Features:
    - Cache-first serving with a configurable staleness threshold
    - Stale-but-available fallback when the source fails
    - Partial-failure tolerant commit (gaps are retried on the next sync)
    - Per-collection coalescing of concurrent syncs
    - Eviction serialized against running syncs
    """

    def __init__(
        self,
        store: AssetStore,
        source: RemoteSource,
        config: Optional[SyncConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            store: Content-addressed store for assets and snapshots
            source: Remote source providing listings and asset bytes
            config: Orchestrator configuration (uses defaults if not provided)
            clock: Returns the current UTC time (injectable for tests)
            sleep: Sleep function used for backoff and pacing
        """
        self.store = store
        self.source = source
        self.config = config or SyncConfig()
        self._clock = clock or _utc_now
        self._closed = threading.Event()
        self._sleep = sleep or self._interruptible_sleep

        self._registry_lock = threading.Lock()
        self._inflight: Dict[str, Future] = {}
        self._collection_locks: Dict[str, threading.Lock] = {}
        # Asset keys listed by each running sync; spared by orphan collection.
        self._pinned: Dict[str, Set[str]] = {}

        self._fetch_executor = ThreadPoolExecutor(
            max_workers=4,
            thread_name_prefix="remote-fetch",
        )

    # =========================================================================
    # Public API
    # =========================================================================

    def sync_with_cache(
        self,
        collection_key: str,
        force: bool = False,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> SyncResult:
        """
        Return a snapshot for the collection, refreshing it if stale.

        Args:
            collection_key: External collection identifier
            force: Skip the staleness check and always fetch
            progress_callback: Called after every download attempt

        Returns:
            SyncResult whose status is FRESH, SYNCED, STALE_FALLBACK or
            UNAVAILABLE

        Raises:
            StoreIOError if local storage fails
        """
        cid = collection_id(collection_key)

        with self._registry_lock:
            future = self._inflight.get(cid)
            owner = future is None
            if owner:
                future = Future()
                self._inflight[cid] = future

        if not owner:
            logger.info(
                f"Sync already running for {mask_key(collection_key)}, joining it",
                extra={"collection": mask_key(collection_key)},
            )
            return future.result()

        try:
            with self._collection_lock(cid):
                result = self._run(collection_key, force, progress_callback)
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._registry_lock:
                self._inflight.pop(cid, None)

    def is_stale(self, snapshot: Optional[CollectionSnapshot], now: Optional[datetime] = None) -> bool:
        """
        A snapshot is stale once its age reaches the staleness threshold.
        A missing snapshot is infinitely stale.
        """
        if snapshot is None:
            return True
        now = now or self._clock()
        return (now - snapshot.last_synced) >= self.config.staleness

    def is_syncing(self, collection_key: str) -> bool:
        with self._registry_lock:
            return collection_id(collection_key) in self._inflight

    def evict_older_than(self, older_than: timedelta) -> int:
        """
        Delete collections not accessed within older_than.

        Collections with a sync in progress are skipped; the eviction of
        each collection holds that collection's lock.

        Returns:
            Number of collections deleted
        """
        deleted = 0
        for cid in self.store.expired_collections(older_than):
            lock = self._collection_lock(cid)
            if not lock.acquire(blocking=False):
                logger.info(f"Skipping eviction of {cid}: sync in progress")
                continue
            try:
                # The collection may have been refreshed since it was listed.
                if cid not in self.store.expired_collections(older_than):
                    continue
                if self.store.delete_collection(cid):
                    deleted += 1
            finally:
                lock.release()

        if deleted:
            # Pinning happens under the same lock, so a sync either sees the
            # blob gone and downloads it, or has it spared here.
            with self._registry_lock:
                pinned = set().union(*self._pinned.values())
                self.store.collect_orphans(older_than, keep=pinned)

        logger.info(
            f"Cache cleanup completed: {deleted} collections deleted "
            f"(older than {older_than.total_seconds() / 60:.0f} minutes)"
        )
        return deleted

    def close(self) -> None:
        """Stop pacing sleeps and release the fetch workers."""
        self._closed.set()
        self._fetch_executor.shutdown(wait=False, cancel_futures=True)

    # =========================================================================
    # State machine
    # =========================================================================

    def _run(
        self,
        collection_key: str,
        force: bool,
        progress_callback: Optional[ProgressCallback],
    ) -> SyncResult:
        masked = mask_key(collection_key)
        ctx = {"collection": masked}
        report = SyncReport(collection=masked, started_at=self._clock())

        # EVALUATE
        cached = self.store.load_snapshot(collection_key)
        if not force and not self.is_stale(cached, report.started_at):
            logger.info(
                f"Serving {masked} from fresh cache ({len(cached.items)} items)",
                extra=ctx,
            )
            self._touch(collection_key)
            report.items_total = len(cached.items)
            report.completed_at = self._clock()
            return SyncResult(SyncStatus.FRESH, cached, report)

        logger.info(
            f"Cache for {masked} is {'missing' if cached is None else 'stale'}"
            f"{' (forced)' if force else ''}, fetching from remote",
            extra=ctx,
        )

        # FETCH_REMOTE
        try:
            remote = self._fetch_remote(collection_key)
        except RemoteSourceError as e:
            report.completed_at = self._clock()
            return self._fallback(collection_key, cached, report, e)

        report.fetched_remote = True
        report.items_total = len(remote.items)

        cid = collection_id(collection_key)
        self._pin(cid, remote.items)
        try:
            # RESOLVE_DELTA
            cached_items = cached.items if cached is not None else ()
            to_download = resolve_delta(remote.items, cached_items, self.store)
            report.requested = len(to_download)
            logger.info(
                f"{masked}: {len(remote.items)} items, {len(to_download)} to download, "
                f"{len(remote.items) - len(to_download)} already cached",
                extra=ctx,
            )

            # DOWNLOAD_LOOP
            if to_download:
                self._download_all(to_download, report, progress_callback, ctx)

            # COMMIT
            snapshot = CollectionSnapshot(
                collection_meta=remote.collection_meta,
                items=tuple(remote.items),
                last_synced=self._clock(),
            )
            self.store.save_snapshot(collection_key, snapshot)
        finally:
            self._unpin(cid)
        report.completed_at = self._clock()

        logger.info(
            f"Sync of {masked} complete: {report.downloaded} downloaded, "
            f"{report.failed} failed",
            extra=ctx,
        )
        return SyncResult(SyncStatus.SYNCED, snapshot, report)

    def _submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        if self._closed.is_set():
            raise RemoteSourceError("Orchestrator is closed", source=self.source.get_name())
        try:
            return self._fetch_executor.submit(fn, *args)
        except RuntimeError as e:
            # Closed between the check and the submit.
            raise RemoteSourceError(
                f"Orchestrator is closed: {e}", source=self.source.get_name()
            ) from e

    def _fetch_blob(self, locator: str) -> bytes:
        """One download attempt, cut off at the per-attempt deadline."""
        timeout = self.config.download_timeout_seconds
        future = self._submit(self.source.fetch_blob, locator, timeout)
        try:
            return future.result(timeout=timeout)
        except FuturesTimeoutError:
            future.cancel()
            raise RemoteTimeoutError(
                f"Download exceeded {timeout:g}s",
                source=self.source.get_name(),
            )

    def _fetch_remote(self, collection_key: str) -> RemoteSnapshot:
        timeout = self.config.snapshot_timeout_seconds
        future = self._submit(self.source.fetch_snapshot, collection_key, timeout)
        try:
            return future.result(timeout=timeout)
        except FuturesTimeoutError:
            future.cancel()
            raise RemoteTimeoutError(
                f"Snapshot fetch exceeded {timeout:.0f}s",
                source=self.source.get_name(),
            )
        except RemoteSourceError:
            raise
        except Exception as e:
            raise RemoteSourceError(
                f"Snapshot fetch failed: {e}",
                source=self.source.get_name(),
            ) from e

    def _fallback(
        self,
        collection_key: str,
        cached: Optional[CollectionSnapshot],
        report: SyncReport,
        error: RemoteSourceError,
    ) -> SyncResult:
        masked = mask_key(collection_key)
        if cached is not None:
            logger.warning(
                f"Remote fetch failed for {masked} ({error}), serving stale cache",
                extra={"collection": masked},
            )
            self._touch(collection_key)
            report.items_total = len(cached.items)
            return SyncResult(SyncStatus.STALE_FALLBACK, cached, report)

        logger.error(
            f"Remote fetch failed for {masked} ({error}) and nothing is cached",
            extra={"collection": masked},
        )
        return SyncResult(SyncStatus.UNAVAILABLE, None, report)

    def _download_all(
        self,
        items: List[AssetRef],
        report: SyncReport,
        progress_callback: Optional[ProgressCallback],
        ctx: Dict[str, str],
    ) -> None:
        progress = SyncProgress(total=len(items))

        for index, item in enumerate(items):
            if self._closed.is_set():
                logger.info("Orchestrator closed, stopping download loop", extra=ctx)
                break

            locator = item.best_locator()
            if not locator:
                logger.warning(f"No usable locator for item {item.id}", extra=ctx)
                report.no_locator_ids.append(item.id)
                progress.failed += 1
                progress.done += 1
                self._notify(progress_callback, progress)
                continue

            key = asset_key(locator)
            progress.current_key = key

            if self.store.exists(key):
                # Stored by another collection sharing the locator.
                logger.debug(f"Asset {key[:12]} already stored, skipping download", extra=ctx)
                progress.done += 1
                self._notify(progress_callback, progress)
                continue

            result = retry_with_backoff(
                lambda locator=locator: self._fetch_blob(locator),
                self.config.retry,
                sleep=self._sleep,
                operation_name=f"download {key[:12]}",
            )

            progress.done += 1
            if not result.success:
                logger.warning(
                    f"Giving up on {key[:12]} after {result.attempts} attempts, "
                    f"will retry next sync",
                    extra={**ctx, "asset_key": key},
                )
                report.failed_keys.append(key)
                progress.failed += 1
                self._notify(progress_callback, progress)
                continue

            self.store.put(key, result.result)
            report.downloaded += 1
            progress.downloaded += 1
            self._notify(progress_callback, progress)

            if index < len(items) - 1:
                self._sleep(self.config.download_delay_seconds)

        logger.info(
            f"Download batch complete: {progress.downloaded}/{progress.total} ok, "
            f"{progress.failed} failed",
            extra=ctx,
        )

    # =========================================================================
    # Helpers
    # =========================================================================

    def _touch(self, collection_key: str) -> None:
        try:
            self.store.touch(collection_key)
        except StoreIOError as e:
            logger.warning(f"Failed to update access time: {e}")

    def _notify(self, callback: Optional[ProgressCallback], progress: SyncProgress) -> None:
        if callback is not None:
            callback(progress)

    def _pin(self, cid: str, items: List[AssetRef]) -> None:
        keys = set()
        for item in items:
            locator = item.best_locator()
            if locator:
                keys.add(asset_key(locator))
        with self._registry_lock:
            self._pinned[cid] = keys

    def _unpin(self, cid: str) -> None:
        with self._registry_lock:
            self._pinned.pop(cid, None)

    def _collection_lock(self, cid: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._collection_locks.get(cid)
            if lock is None:
                lock = threading.Lock()
                self._collection_locks[cid] = lock
            return lock

    def _interruptible_sleep(self, seconds: float) -> None:
        if seconds > 0:
            self._closed.wait(seconds)
