"""
Deterministic page slicing over a collection snapshot.

Pages are independent of any presentation shuffle: items are ordered by
creation time, newest first, and sliced.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from ..core.models import EPOCH, AssetRef


@dataclass
class Page:
    """One page of a collection listing."""
    items: List[AssetRef] = field(default_factory=list)
    has_more: bool = False
    total: int = 0
    page: int = 0
    page_size: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "has_more": self.has_more,
            "total": self.total,
            "page": self.page,
            "page_size": self.page_size,
        }


def sort_newest_first(items: Sequence[AssetRef]) -> List[AssetRef]:
    """
    Order items by created_at descending.

    Items without a creation time sort as the epoch (last). The sort is
    stable, so equal timestamps keep their listing order.
    """
    return sorted(items, key=lambda item: item.created_at or EPOCH, reverse=True)


def paginate(items: Sequence[AssetRef], page_index: int, page_size: int) -> Page:
    """
    Slice one page out of a listing.

    Args:
        items: Snapshot items in any order
        page_index: Zero-based page number
        page_size: Items per page (must be >= 1)

    Returns:
        Page with the items and whether more pages follow
    """
    if page_index < 0:
        raise ValueError(f"page_index must be >= 0, got {page_index}")
    if page_size < 1:
        raise ValueError(f"page_size must be >= 1, got {page_size}")

    ordered = sort_newest_first(items)
    start = page_index * page_size
    end = start + page_size

    return Page(
        items=ordered[start:end],
        has_more=end < len(ordered),
        total=len(ordered),
        page=page_index,
        page_size=page_size,
    )
