"""
Unit tests for delta resolution.
"""

from unittest.mock import Mock

from albumsync.connectors.test_source import make_items
from albumsync.core.keys import asset_key
from albumsync.core.models import AssetRef, DerivedVariant
from albumsync.sync.delta import resolve_delta


def store_with(keys):
    store = Mock()
    store.exists.side_effect = lambda key: key in keys
    return store


class TestResolveDelta:
    """Tests for resolve_delta."""

    def test_empty_cache_returns_everything(self):
        items = make_items(5)
        store = store_with(set())

        assert resolve_delta(items, [], store) == items
        store.exists.assert_not_called()

    def test_new_items_only(self):
        """Test cached items with blobs present are skipped."""
        cached = make_items(3)
        remote = make_items(5)
        stored = {asset_key(i.source_locator) for i in cached}

        delta = resolve_delta(remote, cached, store_with(stored))

        assert [i.id for i in delta] == ["item-003", "item-004"]

    def test_phantom_entries_redownloaded(self):
        """Test items listed in metadata but missing from the store are included."""
        items = make_items(4)
        stored = {asset_key(items[0].source_locator), asset_key(items[2].source_locator)}

        delta = resolve_delta(items, items, store_with(stored))

        assert [i.id for i in delta] == ["item-001", "item-003"]

    def test_duplicate_locators_downloaded_once(self):
        locator = "https://x/dup.jpg"
        remote = [
            AssetRef(id="a", source_locator=locator),
            AssetRef(id="b", source_locator=locator),
            AssetRef(id="c", source_locator="https://x/other.jpg"),
        ]

        delta = resolve_delta(remote, [], store_with(set()))

        assert [i.id for i in delta] == ["a", "c"]

    def test_variant_locator_used_when_source_locator_missing(self):
        variant_url = "https://x/2048.jpg"
        item = AssetRef(
            id="v",
            source_locator="",
            derived_variants=(DerivedVariant(label="2048", url=variant_url),),
        )

        assert resolve_delta([item], [item], store_with({asset_key(variant_url)})) == []

    def test_items_without_locator_are_returned(self):
        """Test unlocatable items are passed through for failure bookkeeping."""
        item = AssetRef(id="nothing", source_locator="")

        assert resolve_delta([item], [], store_with(set())) == [item]

    def test_identical_listing_fully_cached(self):
        items = make_items(10)
        stored = {asset_key(i.source_locator) for i in items}

        assert resolve_delta(items, items, store_with(stored)) == []
