"""
Unit tests for core data models.
"""

from datetime import datetime, timedelta, timezone

from albumsync.core.models import (
    AssetRef,
    CollectionMeta,
    CollectionSnapshot,
    DerivedVariant,
    SyncReport,
    SyncResult,
    SyncStatus,
    parse_timestamp,
)


class TestParseTimestamp:
    """Tests for timestamp parsing."""

    def test_trailing_z(self):
        dt = parse_timestamp("2024-03-01T10:00:00Z")
        assert dt == datetime(2024, 3, 1, 10, 0, tzinfo=timezone.utc)

    def test_naive_is_utc(self):
        dt = parse_timestamp("2024-03-01T10:00:00")
        assert dt.tzinfo is not None
        assert dt.utcoffset() == timedelta(0)

    def test_empty(self):
        assert parse_timestamp(None) is None
        assert parse_timestamp("") is None


class TestAssetRef:
    """Tests for AssetRef."""

    def test_best_locator_prefers_source_locator(self):
        item = AssetRef(
            id="1",
            source_locator="https://x/canonical.jpg",
            derived_variants=(DerivedVariant(label="2048", url="https://x/2048.jpg"),),
        )
        assert item.best_locator() == "https://x/canonical.jpg"

    def test_best_locator_falls_back_to_highest_variant(self):
        """Test the highest-resolution variant with a URL wins."""
        item = AssetRef(
            id="1",
            source_locator="",
            derived_variants=(
                DerivedVariant(label="342", url="https://x/342.jpg"),
                DerivedVariant(label="2048", url="https://x/2048.jpg"),
                DerivedVariant(label="4096", url=""),
            ),
        )
        assert item.best_locator() == "https://x/2048.jpg"

    def test_best_locator_none(self):
        item = AssetRef(id="1", source_locator="", derived_variants=(DerivedVariant(label="1"),))
        assert item.best_locator() is None

    def test_dict_round_trip(self):
        """Test serialization preserves every field."""
        item = AssetRef(
            id="guid-1",
            source_locator="https://x/1.jpg",
            derived_variants=(DerivedVariant(label="2048", url="https://x/1.jpg", width=1536, height=2048),),
            created_at=datetime(2024, 1, 2, 3, 4, 5, 600000, tzinfo=timezone.utc),
            caption="Beach",
        )
        assert AssetRef.from_dict(item.to_dict()) == item


class TestCollectionSnapshot:
    """Tests for CollectionSnapshot."""

    def test_age(self):
        synced = datetime(2024, 1, 1, tzinfo=timezone.utc)
        snapshot = CollectionSnapshot(CollectionMeta(), (), synced)

        assert snapshot.age(synced + timedelta(minutes=5)) == 300

    def test_round_trip(self):
        snapshot = CollectionSnapshot(
            collection_meta=CollectionMeta(name="Trip", ctag="abc", items_returned=1),
            items=(AssetRef(id="1", source_locator="https://x/1.jpg"),),
            last_synced=datetime(2024, 1, 1, tzinfo=timezone.utc),
        )
        assert CollectionSnapshot.from_dict(snapshot.to_dict()) == snapshot

    def test_default_name(self):
        assert CollectionMeta.from_dict({}).name == "Untitled Album"


class TestSyncReport:
    """Tests for SyncReport and SyncResult."""

    def test_failed_counts_both_kinds(self):
        report = SyncReport(
            collection="B0aB***Lm",
            started_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
            failed_keys=["a" * 64],
            no_locator_ids=["guid-9"],
        )
        assert report.failed == 2
        assert report.to_dict()["failed"] == 2
        assert "retried on next sync" in report.summary()

    def test_served_from_cache_flag(self):
        report = SyncReport(collection="x", started_at=datetime(2024, 1, 1, tzinfo=timezone.utc))

        assert SyncResult(SyncStatus.FRESH, None, report).served_from_cache
        assert SyncResult(SyncStatus.STALE_FALLBACK, None, report).served_from_cache
        assert not SyncResult(SyncStatus.SYNCED, None, report).served_from_cache
        assert not SyncResult(SyncStatus.UNAVAILABLE, None, report).available
