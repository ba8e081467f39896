"""
Unit tests for the client presentation session.
"""

import pytest

from albumsync.client import CancellationToken, ClientConfig, ClientSession
from albumsync.connectors.test_source import make_items
from albumsync.core.exceptions import SessionCancelledError
from albumsync.sync.pagination import paginate, sort_newest_first


KEY = "B0aBcDeFgHiJkLm"
WAIT = 5.0


class FakeBackend:
    """Serves listing pages from a fixed item list."""

    def __init__(self, count: int):
        self.items = sort_newest_first(make_items(count))
        self.calls = []

    def __call__(self, collection_key, page_index, page_size):
        self.calls.append((collection_key, page_index, page_size))
        return paginate(self.items, page_index, page_size)


def make_session(backend, **config):
    return ClientSession(
        KEY,
        backend,
        lambda locator: f"element:{locator}",
        config=ClientConfig(**config),
        clock=lambda: 1700000000.0,
    )


class TestCancellationToken:
    """Tests for CancellationToken."""

    def test_callbacks_run_once(self):
        token = CancellationToken()
        calls = []
        token.on_cancel(lambda: calls.append("x"))

        token.cancel()
        token.cancel()

        assert token.cancelled is True
        assert calls == ["x"]

    def test_late_registration_runs_immediately(self):
        token = CancellationToken()
        token.cancel()
        calls = []

        token.on_cancel(lambda: calls.append("late"))

        assert calls == ["late"]

    def test_failing_callback_does_not_block_others(self):
        token = CancellationToken()
        calls = []

        def broken():
            raise RuntimeError("boom")

        token.on_cancel(broken)
        token.on_cancel(lambda: calls.append("ok"))
        token.cancel()

        assert calls == ["ok"]

    def test_raise_if_cancelled(self):
        token = CancellationToken()
        token.raise_if_cancelled()
        token.cancel()

        with pytest.raises(SessionCancelledError):
            token.raise_if_cancelled()


class TestClientConfig:
    """Tests for ClientConfig."""

    def test_from_dict(self):
        config = ClientConfig.from_dict({"max_concurrent": "2", "window_forward": 10})

        assert config.max_concurrent == 2
        assert config.window_forward == 10
        assert config.window_back == 5
        assert config.window().forward == 10


class TestLoadMore:
    """Tests for paging through the listing."""

    def test_pages_until_exhausted(self):
        backend = FakeBackend(25)
        session = make_session(backend, page_size=10)

        assert session.load_more() == 10
        assert session.has_more is True
        assert session.load_all() == 25
        assert session.has_more is False
        assert session.load_more() == 0
        assert [c[1] for c in backend.calls] == [0, 1, 2]
        session.close()

    def test_page_size_clamped_to_backend_maximum(self):
        backend = FakeBackend(5)
        session = make_session(backend, page_size=500, max_page_size=100)

        session.load_more()

        assert backend.calls[0][2] == 100
        session.close()

    def test_items_are_presented(self):
        backend = FakeBackend(8)
        session = make_session(backend, page_size=10)

        session.load_more()
        assert session.loader.wait_idle(WAIT)

        assert sorted(i.id for i in session.state.ordered_items) == sorted(i.id for i in backend.items)
        assert session.state.rendered_indices() == list(range(8))
        session.close()

    def test_move_near_end_loads_more(self):
        backend = FakeBackend(50)
        session = make_session(backend, page_size=10, window_forward=20)
        session.load_more()

        session.move_to(0)

        assert session.item_count == 20
        session.close()


class TestClose:
    """Tests for session teardown."""

    def test_close_cancels_token(self):
        session = make_session(FakeBackend(5))
        session.close()
        session.close()

        assert session.token.cancelled is True

    def test_load_more_after_close_raises(self):
        session = make_session(FakeBackend(5))
        session.close()

        with pytest.raises(SessionCancelledError):
            session.load_more()

    def test_close_during_listing_discards_page(self):
        backend = FakeBackend(5)
        session = None

        def closing_backend(collection_key, page_index, page_size):
            session.close()
            return backend(collection_key, page_index, page_size)

        session = ClientSession(KEY, closing_backend, lambda locator: locator)

        with pytest.raises(SessionCancelledError):
            session.load_more()
        assert session.item_count == 0

    def test_context_manager(self):
        with make_session(FakeBackend(5)) as session:
            session.load_more()

        assert session.token.cancelled is True
        assert session.loader.enqueue(0, "loc") is False
