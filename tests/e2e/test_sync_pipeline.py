"""
End-to-end tests for the album sync pipeline.

These tests exercise the complete flow:
1. Test source returns a synthetic listing and asset bytes
2. Orchestrator syncs the collection into an on-disk store
3. Service pages the snapshot for a client session
4. Client session loads assets from the store with bounded concurrency
5. A restarted process serves from the cache with no remote calls

No external network dependencies - uses the deterministic test source.
"""

from datetime import timedelta

import pytest

from albumsync.client import ClientConfig, ClientSession, StoreAssetLoader
from albumsync.connectors.test_source import TestRemoteSource, blob_for, make_items
from albumsync.core.keys import asset_key
from albumsync.core.models import SyncStatus
from albumsync.service import AlbumService
from albumsync.store import FileAssetStore
from albumsync.sync import SyncOrchestrator


KEY = "B0aBcDeFgHiJkLm"
OTHER_KEY = "C1aBcDeFgHiJkLm"
WAIT = 5.0


def build(base_dir, source, sleeper, clock=None):
    store = FileAssetStore(base_dir=base_dir, clock=clock)
    orchestrator = SyncOrchestrator(store, source, clock=clock, sleep=sleeper)
    return AlbumService(orchestrator)


@pytest.mark.e2e
class TestEndToEndSync:
    """End-to-end tests for sync, restart and presentation."""

    def test_sync_restart_and_present(self, tmp_path, sleeper):
        """Test a synced collection survives a restart and renders every asset."""
        items = make_items(25)
        source = TestRemoteSource(items=items)
        service = build(tmp_path, source, sleeper)

        first = service.sync_with_cache(KEY)
        assert first.status == SyncStatus.SYNCED
        assert first.report.downloaded == 25
        service.close()

        # Restart: new store and orchestrator over the same directory.
        source = TestRemoteSource(items=items)
        service = build(tmp_path, source, sleeper)

        second = service.sync_with_cache(KEY)
        assert second.status == SyncStatus.FRESH
        assert second.snapshot == first.snapshot
        assert source.remote_calls == 0

        def fetch_page(collection_key, page_index, page_size):
            return service.list_page(collection_key, page_index, page_size).page

        session = ClientSession(
            KEY,
            fetch_page,
            StoreAssetLoader(service.store),
            config=ClientConfig(page_size=10, window_forward=30),
        )
        assert session.load_all() == 25
        assert session.loader.wait_idle(WAIT)

        rendered = session.state.rendered_indices()
        assert rendered == list(range(25))
        for index in rendered:
            item = session.state.ordered_items[index]
            assert session.state.loaded_elements[index] == blob_for(item.source_locator)
        assert session.loader.max_in_flight_observed <= 4

        session.close()
        service.close()
        assert source.remote_calls == 0

    def test_partial_failure_healed_after_restart(self, tmp_path, sleeper):
        items = make_items(10)
        source = TestRemoteSource(items=items)
        source.fail_blob(items[3].source_locator)
        source.fail_blob(items[7].source_locator)
        service = build(tmp_path, source, sleeper)

        result = service.sync_with_cache(KEY)
        assert result.status == SyncStatus.SYNCED
        assert result.report.downloaded == 8
        assert len(result.report.failed_keys) == 2
        service.close()

        source = TestRemoteSource(items=items)
        service = build(tmp_path, source, sleeper)

        result = service.refresh(KEY)

        assert result.report.requested == 2
        assert result.report.downloaded == 2
        assert sorted(source.blob_calls) == sorted(
            [items[3].source_locator, items[7].source_locator]
        )
        service.close()

    def test_collections_share_assets(self, tmp_path, sleeper, clock):
        """Test two collections listing the same photos store each blob once."""
        items = make_items(6)
        source = TestRemoteSource(items=items)
        service = build(tmp_path, source, sleeper, clock=clock)

        service.sync_with_cache(KEY)
        clock.advance(hours=2)
        service.sync_with_cache(OTHER_KEY)

        assert len(list((tmp_path / "assets").glob("*.jpg"))) == 6
        assert len(source.blob_calls) == 6

        # Only the first collection is older than an hour.
        assert service.cleanup(timedelta(hours=1)) == 1
        assert len(service.list_collections()) == 1
        for item in items:
            assert service.store.exists(asset_key(item.source_locator))
        service.close()

    def test_eviction_removes_unreferenced_assets(self, tmp_path, sleeper):
        source = TestRemoteSource(items=make_items(4))
        service = build(tmp_path, source, sleeper)
        service.sync_with_cache(KEY)

        assert service.cleanup(timedelta(0)) == 1

        assert service.list_collections() == []
        assert list((tmp_path / "assets").glob("*.jpg")) == []
        assert service.get_metadata(KEY) is None
        service.close()
