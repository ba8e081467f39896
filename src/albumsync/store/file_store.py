"""
Disk-backed content-addressed store.
"""

import json
import logging
import os
import shutil
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import AbstractSet, Callable, List, Optional, Set

from ..core.exceptions import AssetNotFoundError, StoreIOError
from ..core.keys import (
    asset_filename, asset_key, collection_id, is_valid_asset_filename,
    is_valid_asset_key, key_from_filename,
)
from ..core.models import CollectionSnapshot, format_timestamp, parse_timestamp
from .base import AssetStore, CollectionEntry


logger = logging.getLogger(__name__)

METADATA_FILENAME = "metadata.json"
FORMAT_VERSION = 1


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FileAssetStore(AssetStore):
    """
    Stores assets and collection snapshots under a base directory.

    Layout:
        {base_dir}/
            assets/
                {asset_key}.jpg          (write-once, shared by all collections)
            collections/
                {collection_id}/
                    metadata.json        (snapshot + last_accessed)

    Every write goes to a temporary file in the target directory and is
    moved into place with os.replace, so readers never observe partial
    files.
    """

    def __init__(
        self,
        base_dir: Path,
        create_dirs: bool = True,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the file store.

        Args:
            base_dir: Base directory for the cache
            create_dirs: Whether to create directories automatically
            clock: Returns the current UTC time (injectable for tests)
        """
        self.base_dir = Path(base_dir).resolve()
        self.assets_dir = self.base_dir / "assets"
        self.collections_dir = self.base_dir / "collections"
        self._clock = clock or _utc_now

        if create_dirs:
            self._ensure_dir(self.assets_dir)
            self._ensure_dir(self.collections_dir)

    def now(self) -> datetime:
        return self._clock()

    # =========================================================================
    # Assets
    # =========================================================================

    def put(self, key: str, data: bytes) -> str:
        path = self._asset_path(key)
        if path.exists():
            logger.debug(f"Asset {key[:12]} already stored, skipping write")
            return key

        self._atomic_write(path, data)
        logger.debug(f"Stored asset {key[:12]} ({len(data)} bytes)")
        return key

    def exists(self, key: str) -> bool:
        return self._asset_path(key).is_file()

    def get(self, key: str) -> bytes:
        path = self._asset_path(key)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise AssetNotFoundError(key)
        except OSError as e:
            raise StoreIOError(f"Failed to read asset {key[:12]}: {e}") from e

    def asset_path(self, key: str) -> Path:
        """Filesystem path of an asset, for streaming responses."""
        return self._asset_path(key)

    def collect_orphans(
        self, older_than: timedelta, keep: Optional[AbstractSet[str]] = None
    ) -> int:
        referenced = self._referenced_keys() | set(keep or ())
        cutoff = (self.now() - older_than).timestamp()
        removed = 0

        for path in self.assets_dir.glob("*.jpg"):
            if not is_valid_asset_filename(path.name):
                continue
            if key_from_filename(path.name) in referenced:
                continue
            try:
                if path.stat().st_mtime >= cutoff:
                    continue
                path.unlink()
                removed += 1
            except FileNotFoundError:
                continue
            except OSError as e:
                raise StoreIOError(f"Failed to delete asset {path.name}: {e}") from e

        if removed:
            logger.info(f"Removed {removed} unreferenced assets")
        return removed

    # =========================================================================
    # Snapshots
    # =========================================================================

    def save_snapshot(self, collection_key: str, snapshot: CollectionSnapshot) -> None:
        self._write_record(self._collection_dir(collection_key), snapshot, self.now())
        logger.info(
            f"Saved snapshot for collection {collection_id(collection_key)} "
            f"({len(snapshot.items)} items)"
        )

    def load_snapshot(self, collection_key: str) -> Optional[CollectionSnapshot]:
        record = self._read_record(self._collection_dir(collection_key))
        if record is None:
            return None
        snapshot, _ = record
        return snapshot

    def touch(self, collection_key: str) -> bool:
        cdir = self._collection_dir(collection_key)
        record = self._read_record(cdir)
        if record is None:
            logger.warning(
                f"Cannot update access time for uncached collection {cdir.name}"
            )
            return False
        snapshot, _ = record
        self._write_record(cdir, snapshot, self.now())
        return True

    def list_collections(self) -> List[CollectionEntry]:
        entries = []
        if not self.collections_dir.exists():
            return entries

        for cdir in sorted(self.collections_dir.iterdir()):
            if not cdir.is_dir():
                continue
            record = self._read_record(cdir)
            if record is None:
                # Unreadable metadata: fall back to the directory mtime so
                # the collection still ages out.
                try:
                    mtime = datetime.fromtimestamp(cdir.stat().st_mtime, tz=timezone.utc)
                except OSError:
                    mtime = None
                entries.append(CollectionEntry(cdir.name, mtime, 0))
                continue
            snapshot, last_accessed = record
            entries.append(CollectionEntry(cdir.name, last_accessed, len(snapshot.items)))

        logger.debug(f"Found {len(entries)} cached collections")
        return entries

    def delete_collection(self, collection_id: str) -> bool:
        cdir = self.collections_dir / collection_id
        if not cdir.is_dir():
            return False
        try:
            shutil.rmtree(cdir)
        except OSError as e:
            raise StoreIOError(f"Failed to delete collection {collection_id}: {e}") from e
        logger.info(f"Deleted collection {collection_id} from cache")
        return True

    # =========================================================================
    # Internals
    # =========================================================================

    def _asset_path(self, key: str) -> Path:
        if not is_valid_asset_key(key):
            raise ValueError(f"Invalid asset key: {key!r}")
        return self.assets_dir / asset_filename(key)

    def _collection_dir(self, collection_key: str) -> Path:
        return self.collections_dir / collection_id(collection_key)

    def _write_record(
        self, cdir: Path, snapshot: CollectionSnapshot, last_accessed: datetime
    ) -> None:
        self._ensure_dir(cdir)
        record = {
            "format_version": FORMAT_VERSION,
            "snapshot": snapshot.to_dict(),
            "last_accessed": format_timestamp(last_accessed),
        }
        payload = json.dumps(record, indent=2, ensure_ascii=False).encode("utf-8")
        self._atomic_write(cdir / METADATA_FILENAME, payload)

    def _read_record(self, cdir: Path):
        """Return (snapshot, last_accessed) or None when missing/corrupt."""
        path = cdir / METADATA_FILENAME
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug(f"Metadata file not found: {path}")
            return None
        except OSError as e:
            raise StoreIOError(f"Failed to read metadata {path}: {e}") from e

        try:
            record = json.loads(raw)
            snapshot = CollectionSnapshot.from_dict(record["snapshot"])
            last_accessed = parse_timestamp(record.get("last_accessed"))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Ignoring unparseable metadata at {path}: {e}")
            return None
        return snapshot, last_accessed

    def _referenced_keys(self) -> Set[str]:
        keys: Set[str] = set()
        if not self.collections_dir.exists():
            return keys
        for cdir in self.collections_dir.iterdir():
            if not cdir.is_dir():
                continue
            record = self._read_record(cdir)
            if record is None:
                continue
            for item in record[0].items:
                locator = item.best_locator()
                if locator:
                    keys.add(asset_key(locator))
        return keys

    def _atomic_write(self, path: Path, data: bytes) -> None:
        fd = None
        tmp_name = None
        try:
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-")
            with os.fdopen(fd, "wb") as f:
                fd = None
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
            tmp_name = None
        except OSError as e:
            raise StoreIOError(f"Failed to write {path}: {e}") from e
        finally:
            if fd is not None:
                os.close(fd)
            if tmp_name is not None:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass

    def _ensure_dir(self, path: Path) -> None:
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StoreIOError(f"Failed to create directory {path}: {e}") from e

    def get_name(self) -> str:
        return "file_store"
