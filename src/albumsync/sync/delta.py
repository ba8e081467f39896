"""
Delta resolution between a fresh remote listing and the cached snapshot.
"""

import logging
from typing import Iterable, List, Protocol, Set

from ..core.keys import asset_key
from ..core.models import AssetRef


logger = logging.getLogger(__name__)


class AssetLookup(Protocol):
    """The only store capability the resolver needs."""

    def exists(self, key: str) -> bool:
        ...


def resolve_delta(
    remote_items: Iterable[AssetRef],
    cached_items: Iterable[AssetRef],
    store: AssetLookup,
) -> List[AssetRef]:
    """
    Compute the items of a remote listing that must be downloaded.

    An item is returned when its locator is absent from the cached listing,
    or when the cached listing mentions it but its blob is missing from the
    store (a "phantom" entry left by an earlier partial failure).

    Items sharing a locator map to the same asset key and are returned once.
    Items without any usable locator are returned as-is so the caller can
    record them as failures.

    Args:
        remote_items: Freshly fetched listing
        cached_items: Listing from the previous snapshot (may be empty)
        store: Object exposing exists(asset_key)

    Returns:
        Items to download, in remote listing order
    """
    cached_locators: Set[str] = set()
    for item in cached_items:
        locator = item.best_locator()
        if locator:
            cached_locators.add(locator)

    to_download: List[AssetRef] = []
    seen_keys: Set[str] = set()
    phantoms = 0

    for item in remote_items:
        locator = item.best_locator()
        if not locator:
            to_download.append(item)
            continue

        key = asset_key(locator)
        if key in seen_keys:
            continue
        seen_keys.add(key)

        if locator not in cached_locators:
            to_download.append(item)
            continue

        if not store.exists(key):
            phantoms += 1
            logger.warning(
                f"Asset {key[:12]} listed in metadata but missing from store, re-downloading",
                extra={"asset_key": key},
            )
            to_download.append(item)

    if phantoms:
        logger.info(f"Delta includes {phantoms} phantom entries")

    return to_download
