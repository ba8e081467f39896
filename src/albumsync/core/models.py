"""
Core data models for the album synchronization framework.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp (with optional trailing 'Z').

    Naive values are assumed to be UTC so that all timestamps compare.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Format a datetime as ISO-8601, keeping microseconds for round-trips."""
    if value is None:
        return None
    return value.isoformat()


class SyncStatus(str, Enum):
    """Outcome of a single sync_with_cache call."""
    FRESH = "fresh"
    SYNCED = "synced"
    STALE_FALLBACK = "stale_fallback"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class DerivedVariant:
    """
    One rendition of an asset as published by the remote source.

    Attributes:
        label: Source-side variant label (usually the pixel height, e.g. "2048")
        url: Locator for this rendition (may be empty until resolved)
        checksum: Source checksum identifying the rendition
        file_size: Size in bytes as reported by the source
        width: Pixel width
        height: Pixel height
    """
    label: str
    url: str = ""
    checksum: str = ""
    file_size: int = 0
    width: int = 0
    height: int = 0

    @property
    def resolution(self) -> int:
        """Sort key for picking the best rendition: numeric label, else height."""
        try:
            return int(self.label)
        except (TypeError, ValueError):
            return self.height or 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "url": self.url,
            "checksum": self.checksum,
            "file_size": self.file_size,
            "width": self.width,
            "height": self.height,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DerivedVariant":
        return cls(
            label=str(data.get("label", "")),
            url=data.get("url") or "",
            checksum=data.get("checksum") or "",
            file_size=int(data.get("file_size") or 0),
            width=int(data.get("width") or 0),
            height=int(data.get("height") or 0),
        )


@dataclass(frozen=True)
class AssetRef:
    """
    An item's identity as seen by the remote source.

    Attributes:
        id: Remote identifier of the item
        source_locator: Canonical locator; the asset key is derived from it
        derived_variants: Alternative renditions published by the source
        created_at: Creation time, used for deterministic page ordering
        caption: Optional caption text
        title: Optional title text
    """
    id: str
    source_locator: str
    derived_variants: tuple = ()
    created_at: Optional[datetime] = None
    caption: Optional[str] = None
    title: Optional[str] = None

    def best_locator(self) -> Optional[str]:
        """
        Return the locator to download.

        Prefers source_locator; otherwise the highest-resolution derived
        variant that carries a URL. None when nothing is downloadable.
        """
        if self.source_locator:
            return self.source_locator
        candidates = [v for v in self.derived_variants if v.url]
        if not candidates:
            return None
        return max(candidates, key=lambda v: v.resolution).url

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source_locator": self.source_locator,
            "derived_variants": [v.to_dict() for v in self.derived_variants],
            "created_at": format_timestamp(self.created_at),
            "caption": self.caption,
            "title": self.title,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AssetRef":
        return cls(
            id=str(data.get("id", "")),
            source_locator=data.get("source_locator") or "",
            derived_variants=tuple(
                DerivedVariant.from_dict(v) for v in data.get("derived_variants") or []
            ),
            created_at=parse_timestamp(data.get("created_at")),
            caption=data.get("caption"),
            title=data.get("title"),
        )


@dataclass(frozen=True)
class CollectionMeta:
    """
    Descriptive metadata for a collection (remote album).

    Attributes:
        name: Display name of the album
        owner_first_name: Owner's first name
        owner_last_name: Owner's last name
        ctag: Source change tag for the listing
        items_returned: Item count reported by the source
    """
    name: str = "Untitled Album"
    owner_first_name: str = ""
    owner_last_name: str = ""
    ctag: str = ""
    items_returned: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "owner_first_name": self.owner_first_name,
            "owner_last_name": self.owner_last_name,
            "ctag": self.ctag,
            "items_returned": self.items_returned,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CollectionMeta":
        return cls(
            name=data.get("name") or "Untitled Album",
            owner_first_name=data.get("owner_first_name") or "",
            owner_last_name=data.get("owner_last_name") or "",
            ctag=data.get("ctag") or "",
            items_returned=int(data.get("items_returned") or 0),
        )


@dataclass(frozen=True)
class RemoteSnapshot:
    """Listing returned by RemoteSource.fetch_snapshot."""
    collection_meta: CollectionMeta
    items: List[AssetRef]


@dataclass(frozen=True)
class CollectionSnapshot:
    """
    The unit of metadata persisted per collection.

    Replaced wholesale on every successful resync, never merged. Item order
    is whatever the source returned and carries no meaning.
    """
    collection_meta: CollectionMeta
    items: tuple
    last_synced: datetime

    def age(self, now: datetime) -> float:
        """Seconds elapsed since the snapshot was synced."""
        return (now - self.last_synced).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "collection_meta": self.collection_meta.to_dict(),
            "items": [item.to_dict() for item in self.items],
            "last_synced": format_timestamp(self.last_synced),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CollectionSnapshot":
        last_synced = parse_timestamp(data["last_synced"])
        if last_synced is None:
            raise ValueError("Snapshot is missing last_synced")
        return cls(
            collection_meta=CollectionMeta.from_dict(data.get("collection_meta") or {}),
            items=tuple(AssetRef.from_dict(item) for item in data["items"]),
            last_synced=last_synced,
        )


@dataclass
class SyncProgress:
    """Progress of the download loop, reported after every item."""
    total: int
    done: int = 0
    downloaded: int = 0
    failed: int = 0
    current_key: Optional[str] = None


@dataclass
class SyncReport:
    """Report of a sync operation."""
    collection: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    fetched_remote: bool = False
    items_total: int = 0
    requested: int = 0
    downloaded: int = 0
    failed_keys: List[str] = field(default_factory=list)
    no_locator_ids: List[str] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return len(self.failed_keys) + len(self.no_locator_ids)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "collection": self.collection,
            "started_at": format_timestamp(self.started_at),
            "completed_at": format_timestamp(self.completed_at),
            "fetched_remote": self.fetched_remote,
            "items_total": self.items_total,
            "requested": self.requested,
            "downloaded": self.downloaded,
            "failed": self.failed,
            "failed_keys": list(self.failed_keys),
            "no_locator_ids": list(self.no_locator_ids),
        }

    def summary(self) -> str:
        """Get a human-readable summary."""
        lines = [
            f"Sync Report ({self.collection})",
            f"  Duration: {(self.completed_at - self.started_at).total_seconds():.1f}s" if self.completed_at else "",
            f"  Remote fetched: {self.fetched_remote}",
            f"  Items: {self.items_total}",
            f"  To download: {self.requested}",
            f"  Downloaded: {self.downloaded}",
            f"  Failed: {self.failed}",
        ]
        if self.failed:
            lines.append("  Failed assets will be retried on next sync.")
        return "\n".join(line for line in lines if line)


@dataclass
class SyncResult:
    """
    Result of sync_with_cache.

    Attributes:
        status: FRESH, SYNCED, STALE_FALLBACK or UNAVAILABLE
        snapshot: The snapshot to serve (None only when UNAVAILABLE)
        report: Details of the work performed
    """
    status: SyncStatus
    snapshot: Optional[CollectionSnapshot]
    report: SyncReport

    @property
    def available(self) -> bool:
        return self.snapshot is not None

    @property
    def served_from_cache(self) -> bool:
        """True when the snapshot came from disk rather than a fresh fetch."""
        return self.status in (SyncStatus.FRESH, SyncStatus.STALE_FALLBACK)
