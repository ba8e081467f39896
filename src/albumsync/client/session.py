"""
Client presentation session.

A session owns the view state, the progressive loader and the window
controller, plus one cancellation token. Closing the session cancels the
listing calls and asset loads it started.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from ..core.exceptions import SessionCancelledError
from ..core.keys import mask_key
from ..core.models import AssetRef
from ..sync.pagination import Page
from .loader import ProgressiveLoader
from .state import ClientViewState
from .window import WindowConfig, WindowedShuffleController


logger = logging.getLogger(__name__)


FetchPage = Callable[[str, int, int], Page]


class CancellationToken:
    """
    One-shot cancellation signal shared by everything a session starts.

    Callbacks registered with on_cancel run once, on the cancelling thread;
    registering after cancellation runs the callback immediately.
    """

    def __init__(self):
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._callbacks: List[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._event.set()
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.error(f"Cancellation callback failed: {e}")

    def on_cancel(self, callback: Callable[[], None]) -> None:
        with self._lock:
            if not self._event.is_set():
                self._callbacks.append(callback)
                return
        callback()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise SessionCancelledError("Session has been cancelled")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Sleep until cancelled or timeout. Returns True if cancelled."""
        return self._event.wait(timeout)


@dataclass
class ClientConfig:
    """
    Configuration for a client session.

    Attributes:
        max_concurrent: Simultaneous asset loads
        window_back: Elements kept behind the current index
        window_forward: Elements kept ahead of the current index
        window_margin: Hysteresis margin before eviction
        page_size: Items requested per listing call
        max_page_size: Largest page the backend serves
    """
    max_concurrent: int = 4
    window_back: int = 5
    window_forward: int = 20
    window_margin: int = 5
    page_size: int = 20
    max_page_size: int = 100

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClientConfig":
        """Build from the `client` section of the YAML configuration."""
        defaults = cls()
        return cls(**{
            name: int(data.get(name, getattr(defaults, name)))
            for name in (
                "max_concurrent", "window_back", "window_forward",
                "window_margin", "page_size", "max_page_size",
            )
        })

    def window(self) -> WindowConfig:
        return WindowConfig(
            back=self.window_back,
            forward=self.window_forward,
            margin=self.window_margin,
        )


class ClientSession:
    """
    Infinite-scroll presentation of one collection.

    Example:
        >>> session = ClientSession(key, fetch_page, StoreAssetLoader(store))
        >>> session.load_more()
        20
        >>> session.move_to(10)
        >>> session.close()
    """

    def __init__(
        self,
        collection_key: str,
        fetch_page: FetchPage,
        load_fn: Callable[[str], Any],
        config: Optional[ClientConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the session.

        Args:
            collection_key: Collection to present
            fetch_page: Called as fetch_page(key, page_index, page_size)
            load_fn: Loads one asset locator into a presentation element
            config: Session configuration (uses defaults if not provided)
            clock: Timestamp source for shuffle seeding
        """
        self.collection_key = collection_key
        self.config = config or ClientConfig()
        self.token = CancellationToken()
        self.state = ClientViewState()

        self._fetch_page = fetch_page
        self._items: List[AssetRef] = []
        self._next_page = 0
        self._listing_lock = threading.Lock()
        self.has_more = True

        self.loader = ProgressiveLoader(
            self.state,
            load_fn,
            max_concurrent=self.config.max_concurrent,
            token=self.token,
        )
        self.window = WindowedShuffleController(
            collection_key,
            self.loader,
            self.state,
            config=self.config.window(),
            clock=clock,
        )

    @property
    def item_count(self) -> int:
        return len(self._items)

    def load_more(self) -> int:
        """
        Fetch the next listing page and fold it into the presentation.

        Returns:
            Number of new items

        Raises:
            SessionCancelledError if the session was closed before or during
            the call
        """
        with self._listing_lock:
            self.token.raise_if_cancelled()
            if not self.has_more:
                return 0

            page_size = max(1, min(self.config.page_size, self.config.max_page_size))
            page = self._fetch_page(self.collection_key, self._next_page, page_size)

            # The session may have been torn down while the call was running.
            self.token.raise_if_cancelled()

            self._items.extend(page.items)
            self._next_page += 1
            self.has_more = page.has_more

        logger.debug(
            f"Loaded page {self._next_page - 1} of {mask_key(self.collection_key)}: "
            f"{len(page.items)} items, has_more={page.has_more}"
        )
        if page.items:
            self.window.set_items(self._items)
        return len(page.items)

    def load_all(self) -> int:
        """Fetch pages until the listing is exhausted. Returns the item count."""
        while self.has_more:
            if self.load_more() == 0 and self.has_more:
                break
        return self.item_count

    def move_to(self, index: int) -> None:
        """Move the viewing position, fetching more items near the end."""
        self.token.raise_if_cancelled()
        self.window.move_to(index)
        if self.has_more and index >= self.item_count - self.config.window_forward:
            self.load_more()

    def close(self) -> None:
        """Cancel all outstanding work. Safe to call more than once."""
        if not self.token.cancelled:
            logger.info(f"Closing session for {mask_key(self.collection_key)}")
        self.token.cancel()
        self.loader.close()

    def __enter__(self) -> "ClientSession":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
