#!/usr/bin/env python3
"""
CLI entry point for albumsync.

Usage:
    albumsync sync <KEY>                  # Sync an album into the local store
    albumsync sync <KEY> --refresh        # Force a refresh even if fresh
    albumsync list <KEY> --page 0 --limit 20
    albumsync cleanup --older-than-minutes 1440
    albumsync collections
"""

import argparse
import logging
import sys
import time
from datetime import timedelta
from pathlib import Path
from typing import Optional, TextIO

from dotenv import load_dotenv

from albumsync.config import AlbumSyncConfig, StoreSettings
from albumsync.core.exceptions import (
    AlbumSyncError, CollectionUnavailableError, ConfigError, StoreIOError,
)
from albumsync.core.keys import asset_filename, asset_key, is_valid_collection_key, mask_key
from albumsync.core.logging import setup_logging
from albumsync.core.models import SyncProgress, SyncStatus
from albumsync.core.source import RemoteSource
from albumsync.connectors import SharedAlbumSource
from albumsync.service import AlbumService
from albumsync.store import FileAssetStore
from albumsync.sync import SyncConfig, SyncOrchestrator


logger = logging.getLogger(__name__)

RULE = "=" * 60
BAR_LENGTH = 30


def format_duration(seconds: float) -> str:
    """Format seconds as a short human-readable duration."""
    if seconds < 60:
        return f"{round(seconds)}s"
    if seconds < 3600:
        return f"{round(seconds / 60)}m"
    return f"{round(seconds / 3600)}h"


def calculate_eta(progress: SyncProgress, elapsed: float) -> str:
    """Estimate remaining time from the rate of completed items."""
    if progress.done == 0 or elapsed <= 0:
        return "calculating..."
    rate = progress.done / elapsed
    return format_duration((progress.total - progress.done) / rate)


class ProgressBar:
    """Single-line terminal progress bar fed by SyncProgress updates."""

    def __init__(self, stream: TextIO = sys.stdout, clock=time.monotonic):
        self.stream = stream
        self._clock = clock
        self._started = clock()
        self.updates = 0

    def __call__(self, progress: SyncProgress) -> None:
        self.updates += 1
        self.stream.write("\r" + self.render(progress, self._clock() - self._started))
        self.stream.flush()

    def render(self, progress: SyncProgress, elapsed: float) -> str:
        total = max(progress.total, 1)
        filled = round(BAR_LENGTH * progress.done / total)
        bar = "#" * filled + "-" * (BAR_LENGTH - filled)
        percentage = round(100 * progress.done / total)
        return (
            f"Downloading... [{bar}] {percentage}% "
            f"({progress.done}/{progress.total}) "
            f"Failed: {progress.failed} | "
            f"Elapsed: {format_duration(elapsed)} | "
            f"ETA: {calculate_eta(progress, elapsed)}"
        )

    def finish(self) -> None:
        if self.updates:
            self.stream.write("\n")
            self.stream.flush()


def build_source(config: AlbumSyncConfig) -> RemoteSource:
    """Build the remote source from configuration."""
    source_config = config.get_source_config()
    source_type = source_config.get("type", "shared_album")

    if source_type == "shared_album":
        return SharedAlbumSource(
            user_agent=source_config.get("user_agent"),
            timeout=float(source_config.get("timeout_seconds", 15)),
        )

    raise ConfigError(f"Unknown source type: {source_type}")


def build_service(config: AlbumSyncConfig, source: Optional[RemoteSource] = None) -> AlbumService:
    """Build the store, orchestrator and service from configuration."""
    store_settings = StoreSettings.from_dict(config.get_store_config())
    client_config = config.get_client_config()

    store = FileAssetStore(base_dir=Path(store_settings.base_dir))
    orchestrator = SyncOrchestrator(
        store=store,
        source=source or build_source(config),
        config=SyncConfig.from_dict(config.get_sync_config()),
    )
    return AlbumService(
        orchestrator,
        default_page_size=int(client_config.get("page_size", 20)),
        max_page_size=int(client_config.get("max_page_size", 100)),
        cleanup_after=timedelta(minutes=store_settings.cleanup_after_minutes),
    )


# =============================================================================
# Commands
# =============================================================================

def cmd_sync(service: AlbumService, args: argparse.Namespace, out: TextIO) -> int:
    key = args.key
    started = time.monotonic()

    out.write(f"\n{RULE}\nAlbum sync: {mask_key(key)}\n{RULE}\n\n")

    bar = ProgressBar(stream=out)
    try:
        result = service.sync_with_cache(key, force=args.refresh, progress_callback=bar)
    finally:
        bar.finish()

    if result.status == SyncStatus.UNAVAILABLE:
        out.write("Failed to fetch album metadata\n")
        out.write("  - Check that the key is valid\n")
        out.write("  - Ensure the remote source is reachable\n")
        out.write("  - Try again in a few moments\n")
        return 1

    meta = result.snapshot.collection_meta
    report = result.report
    duration = time.monotonic() - started

    out.write(f"{RULE}\n")
    if result.status == SyncStatus.FRESH:
        out.write(f"Using cached metadata ({len(result.snapshot.items)} items)\n")
    elif result.status == SyncStatus.STALE_FALLBACK:
        out.write("Remote unavailable, kept the previous snapshot\n")
    else:
        out.write("Sync complete\n")
    out.write(f"{RULE}\n")
    out.write(f"Name:         {meta.name}\n")
    out.write(f"Owner:        {meta.owner_first_name} {meta.owner_last_name}".rstrip() + "\n")
    out.write(f"Total items:  {len(result.snapshot.items)}\n")
    out.write(f"Downloaded:   {report.downloaded}\n")
    out.write(f"Failed:       {report.failed}\n")
    out.write(f"Duration:     {format_duration(duration)}\n")
    out.write(f"{RULE}\n")

    if report.failed:
        out.write(f"{report.failed} item(s) failed to download.\n")
        out.write("  These will be retried on next sync.\n")
    elif report.fetched_remote:
        out.write("All items downloaded and cached.\n")
    return 0


def cmd_list(service: AlbumService, args: argparse.Namespace, out: TextIO) -> int:
    try:
        result = service.list_page(args.key, page_index=args.page, page_size=args.limit)
    except CollectionUnavailableError as e:
        out.write(f"{e}\n")
        return 1

    page = result.page
    out.write(
        f"{result.collection_meta.name}: page {page.page} "
        f"({len(page.items)} of {page.total} items, has_more={page.has_more})\n"
    )
    for item in page.items:
        locator = item.best_locator()
        filename = asset_filename(asset_key(locator)) if locator else "-"
        created = item.created_at.isoformat() if item.created_at else "-"
        caption = f"  {item.caption}" if item.caption else ""
        out.write(f"  {created}  {filename}{caption}\n")
    return 0


def cmd_cleanup(service: AlbumService, args: argparse.Namespace, out: TextIO) -> int:
    older_than = None
    if args.older_than_minutes is not None:
        older_than = timedelta(minutes=args.older_than_minutes)
    deleted = service.cleanup(older_than)
    out.write(f"Deleted {deleted} collection(s)\n")
    return 0


def cmd_collections(service: AlbumService, args: argparse.Namespace, out: TextIO) -> int:
    entries = service.list_collections()
    if not entries:
        out.write("No cached collections\n")
        return 0
    out.write(f"{'Collection':<18} {'Items':>6}  Last accessed\n")
    for entry in entries:
        accessed = entry.last_accessed.isoformat() if entry.last_accessed else "unknown"
        out.write(f"{entry.collection_id:<18} {entry.item_count:>6}  {accessed}\n")
    return 0


COMMANDS = {
    "sync": cmd_sync,
    "list": cmd_list,
    "cleanup": cmd_cleanup,
    "collections": cmd_collections,
}


def parse_args(argv=None):
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Mirror shared photo albums into a local content-addressed store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to configuration YAML file",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose/debug logging",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Emit logs as JSON lines",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    sync_parser = subparsers.add_parser("sync", help="Sync an album into the local store")
    sync_parser.add_argument("key", help="Album key (15 alphanumeric characters)")
    sync_parser.add_argument(
        "--refresh",
        action="store_true",
        help="Force refresh even if the cache is fresh",
    )

    list_parser = subparsers.add_parser("list", help="Print one page of an album")
    list_parser.add_argument("key", help="Album key")
    list_parser.add_argument("--page", type=int, default=0, help="Zero-based page number")
    list_parser.add_argument("--limit", type=int, default=None, help="Items per page")

    cleanup_parser = subparsers.add_parser("cleanup", help="Evict unaccessed collections")
    cleanup_parser.add_argument(
        "--older-than-minutes",
        type=float,
        default=None,
        help="Evict collections not accessed for this long (default from config)",
    )

    subparsers.add_parser("collections", help="List cached collections")

    return parser.parse_args(argv)


def main(argv=None, out: TextIO = sys.stdout, source: Optional[RemoteSource] = None) -> int:
    """Main entry point."""
    args = parse_args(argv)

    # ALBUMSYNC_* overrides may come from a .env file; real env vars win.
    load_dotenv()

    setup_logging(verbose=args.verbose, json_format=args.json_logs)

    if getattr(args, "key", None) is not None and not is_valid_collection_key(args.key):
        logger.error(f"Invalid album key format: {mask_key(args.key)}")
        return 1

    try:
        config = AlbumSyncConfig(config_path=args.config)
        config.validate()
        service = build_service(config, source=source)
    except (ConfigError, FileNotFoundError, StoreIOError) as e:
        logger.error(f"Startup failed: {e}")
        return 1
    logger.debug("Configuration loaded")

    try:
        return COMMANDS[args.command](service, args, out)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 1
    except StoreIOError as e:
        logger.error(f"Local storage failure: {e}")
        return 1
    except AlbumSyncError as e:
        logger.exception(f"Fatal error: {e}")
        return 1
    finally:
        service.close()
        service.orchestrator.source.close()


if __name__ == "__main__":
    sys.exit(main())
