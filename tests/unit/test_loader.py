"""
Unit tests for the bounded-concurrency progressive loader.
"""

import logging
import threading
import time

import pytest

from albumsync.client import CancellationToken, ClientViewState, ProgressiveLoader, StoreAssetLoader
from albumsync.core.exceptions import AssetNotFoundError
from albumsync.core.keys import asset_key


WAIT = 5.0


def wait_until(predicate, timeout=WAIT):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return False


class ConcurrencyTracker:
    """Load function that tracks how many calls overlap."""

    def __init__(self, duration: float = 0.01):
        self.duration = duration
        self.current = 0
        self.peak = 0
        self.order = []
        self._lock = threading.Lock()

    def __call__(self, locator):
        with self._lock:
            self.current += 1
            self.peak = max(self.peak, self.current)
            self.order.append(locator)
        time.sleep(self.duration)
        with self._lock:
            self.current -= 1
        return f"element:{locator}"


class GatedLoad:
    """Load function whose calls block until the gate opens."""

    def __init__(self, fail=()):
        self.gate = threading.Event()
        self.fail = set(fail)
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, locator):
        with self._lock:
            self.calls.append(locator)
        self.gate.wait(WAIT)
        if locator in self.fail:
            raise IOError(f"cannot load {locator}")
        return f"element:{locator}"


@pytest.fixture
def state():
    return ClientViewState()


def make_loader(state, load_fn, **kwargs):
    return ProgressiveLoader(state, load_fn, **kwargs)


class TestConcurrencyBudget:
    """Tests for the concurrency bound."""

    def test_never_exceeds_budget(self, state):
        """Test 20 loads with a budget of 4 never overlap more than 4."""
        tracker = ConcurrencyTracker()
        loader = make_loader(state, tracker, max_concurrent=4)

        for i in range(20):
            loader.enqueue(i, f"loc-{i}")

        assert loader.wait_idle(WAIT)
        assert tracker.peak <= 4
        assert loader.max_in_flight_observed <= 4
        assert state.in_flight_count == 0
        assert sorted(state.loaded_elements) == list(range(20))
        loader.close()

    def test_fifo_admission(self, state):
        tracker = ConcurrencyTracker(duration=0)
        loader = make_loader(state, tracker, max_concurrent=1)

        for i in range(6):
            loader.enqueue(i, f"loc-{i}")

        assert loader.wait_idle(WAIT)
        assert tracker.order == [f"loc-{i}" for i in range(6)]
        loader.close()

    def test_invalid_budget(self, state):
        with pytest.raises(ValueError):
            make_loader(state, lambda locator: None, max_concurrent=0)

    def test_duplicate_enqueue_rejected(self, state):
        gated = GatedLoad()
        loader = make_loader(state, gated, max_concurrent=2)

        assert loader.enqueue(0, "loc-0") is True
        assert loader.enqueue(0, "loc-0") is False

        gated.gate.set()
        assert loader.wait_idle(WAIT)
        assert loader.enqueue(0, "loc-0") is False
        loader.close()


class TestRetry:
    """Tests for the one-retry policy."""

    def test_retry_then_drop(self, state):
        """Test a load failing twice is removed and never retried."""
        removed = threading.Event()
        removed_indices = []

        def on_removed(index):
            removed_indices.append(index)
            removed.set()

        def load(locator):
            if locator == "bad":
                raise IOError("broken")
            return locator

        loader = make_loader(state, load, max_concurrent=2, on_removed=on_removed)
        loader.enqueue(0, "good")
        loader.enqueue(1, "bad")

        assert loader.wait_idle(WAIT)
        assert removed.wait(WAIT)
        assert loader.attempts_by_locator["bad"] == 2
        assert loader.attempts_by_locator["good"] == 1
        assert 1 not in state.loaded_elements
        assert 1 in state.permanently_failed
        assert removed_indices == [1]

        # Never retried in the same session.
        assert loader.enqueue(1, "bad") is False
        assert loader.attempts_by_locator["bad"] == 2
        loader.close()

    def test_retry_goes_to_tail(self, state):
        calls = []
        failed_once = set()

        def load(locator):
            calls.append(locator)
            if locator == "loc-0" and locator not in failed_once:
                failed_once.add(locator)
                raise IOError("transient")
            return locator

        loader = make_loader(state, load, max_concurrent=1)
        # Completions wait for the lock, so all three are queued first.
        with state.lock:
            for i in range(3):
                loader.enqueue(i, f"loc-{i}")

        assert loader.wait_idle(WAIT)
        assert calls == ["loc-0", "loc-1", "loc-2", "loc-0"]
        assert sorted(state.loaded_elements) == [0, 1, 2]
        loader.close()

    def test_failed_locator_blocked_at_new_index(self, state):
        def load(locator):
            raise IOError("broken")

        loader = make_loader(state, load, max_concurrent=1)
        loader.enqueue(3, "bad")
        assert loader.wait_idle(WAIT)

        assert loader.enqueue(7, "bad") is False
        assert 7 in state.permanently_failed
        loader.close()


class TestCancellation:
    """Tests for cancel, evict and token cancellation."""

    def test_cancel_queued(self, state):
        gated = GatedLoad()
        loader = make_loader(state, gated, max_concurrent=1)
        for i in range(3):
            loader.enqueue(i, f"loc-{i}")

        assert loader.cancel(1) is True
        gated.gate.set()

        assert loader.wait_idle(WAIT)
        assert sorted(state.loaded_elements) == [0, 2]
        assert "loc-1" not in gated.calls
        loader.close()

    def test_cancel_running_discards_result(self, state):
        gated = GatedLoad()
        loader = make_loader(state, gated, max_concurrent=1)
        loader.enqueue(0, "loc-0")

        assert loader.cancel(0) is True
        gated.gate.set()

        assert loader.wait_idle(WAIT)
        assert state.loaded_elements == {}
        assert loader.cancel(0) is False
        loader.close()

    def test_evict_drops_element(self, state):
        loader = make_loader(state, lambda locator: locator, max_concurrent=1)
        loader.enqueue(0, "loc-0")
        assert loader.wait_idle(WAIT)

        loader.evict(0)

        assert 0 not in state.loaded_elements
        loader.close()

    def test_token_cancels_everything(self, state):
        token = CancellationToken()
        gated = GatedLoad()
        loader = make_loader(state, gated, max_concurrent=2, token=token)
        for i in range(5):
            loader.enqueue(i, f"loc-{i}")

        token.cancel()
        gated.gate.set()

        assert loader.wait_idle(WAIT)
        assert not state.pending_queue
        assert loader.active_indices() == []
        assert loader.enqueue(9, "loc-9") is False

    def test_reset_keeps_failed_locators(self, state):
        def load(locator):
            raise IOError("broken")

        loader = make_loader(state, load, max_concurrent=1)
        loader.enqueue(0, "bad")
        assert loader.wait_idle(WAIT)

        loader.reset()

        assert state.permanently_failed == set()
        assert "bad" in loader.failed_locators
        loader.close()


class TestCallbacks:
    """Tests for completion callbacks raised on worker threads."""

    def test_failing_on_loaded_is_logged_and_loading_continues(self, state, caplog):
        def on_loaded(index, element):
            if index == 0:
                raise RuntimeError("render failed")

        loader = make_loader(state, lambda locator: locator, max_concurrent=1, on_loaded=on_loaded)
        with caplog.at_level(logging.ERROR, logger="albumsync.client.loader"):
            loader.enqueue(0, "loc-0")
            loader.enqueue(1, "loc-1")
            assert loader.wait_idle(WAIT)
            assert wait_until(lambda: "index 0: render failed" in caplog.text)

        assert sorted(state.loaded_elements) == [0, 1]
        assert "on_loaded callback failed for index 0" in caplog.text
        loader.close()

    def test_failing_on_removed_is_logged(self, state, caplog):
        def load(locator):
            raise IOError("broken")

        def on_removed(index):
            raise RuntimeError("unmount failed")

        loader = make_loader(state, load, max_concurrent=1, on_removed=on_removed)
        with caplog.at_level(logging.ERROR, logger="albumsync.client.loader"):
            loader.enqueue(0, "bad")
            assert wait_until(lambda: "on_removed callback failed" in caplog.text)

        assert state.permanently_failed == {0}
        loader.close()


class TestStoreAssetLoader:
    """Tests for loading assets from a store."""

    def test_reads_by_asset_key(self, memory_store):
        memory_store.put(asset_key("https://x/a.jpg"), b"bytes")

        assert StoreAssetLoader(memory_store)("https://x/a.jpg") == b"bytes"

    def test_missing_asset(self, memory_store):
        with pytest.raises(AssetNotFoundError):
            StoreAssetLoader(memory_store)("https://x/missing.jpg")
