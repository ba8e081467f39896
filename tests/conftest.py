"""
Shared test fixtures and configuration for pytest.
"""

import logging
import sys
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List

import pytest

# Add src directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


logger = logging.getLogger(__name__)


# ============================================================================
# Test doubles
# ============================================================================

class FakeClock:
    """Controllable UTC clock; call it to read the time."""

    def __init__(self, start: datetime = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)):
        self.current = start
        self._lock = threading.Lock()

    def __call__(self) -> datetime:
        with self._lock:
            return self.current

    def advance(self, **kwargs) -> datetime:
        with self._lock:
            self.current = self.current + timedelta(**kwargs)
            return self.current


class RecordedSleeper:
    """Sleep replacement that records requested durations and returns at once."""

    def __init__(self):
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)

    @property
    def total(self) -> float:
        return sum(self.calls)


# ============================================================================
# Pytest hooks
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (no external dependencies)")
    config.addinivalue_line("markers", "slow: Tests that take a long time to run")
    config.addinivalue_line("markers", "e2e: End-to-end tests over the on-disk store")


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def clock() -> FakeClock:
    """Fixture providing a controllable clock."""
    return FakeClock()


@pytest.fixture
def sleeper() -> RecordedSleeper:
    """Fixture providing a sleep function that never sleeps."""
    return RecordedSleeper()


@pytest.fixture
def memory_store(clock):
    """Fixture providing an in-memory store on the fake clock."""
    from albumsync.store import InMemoryAssetStore

    return InMemoryAssetStore(clock=clock)


@pytest.fixture
def file_store(tmp_path, clock):
    """Fixture providing a file store in a temporary directory."""
    from albumsync.store import FileAssetStore

    store = FileAssetStore(base_dir=tmp_path / "cache", clock=clock)
    yield store
    store.close()


@pytest.fixture
def sample_items():
    """Fixture providing ten synthetic items."""
    from albumsync.connectors.test_source import make_items

    return make_items(10)


@pytest.fixture
def test_source(sample_items):
    """Fixture providing a deterministic remote source."""
    from albumsync.connectors.test_source import TestRemoteSource

    source = TestRemoteSource(items=sample_items)
    yield source
    source.close()


@pytest.fixture
def orchestrator(memory_store, test_source, clock, sleeper):
    """Fixture providing an orchestrator wired to the in-memory doubles."""
    from albumsync.sync import SyncOrchestrator

    orch = SyncOrchestrator(
        store=memory_store,
        source=test_source,
        clock=clock,
        sleep=sleeper,
    )
    yield orch
    orch.close()


@pytest.fixture
def collection_key() -> str:
    """A well-formed 15-character collection key."""
    return "B0aBcDeFgHiJkLm"
