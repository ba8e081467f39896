"""
Windowed shuffle controller.

Keeps a seeded random order over every known item and a sliding window of
loaded elements around the current position. Elements are guaranteed for
[i - back, i + forward] and evicted only outside
[i - back - margin, i + forward + margin].
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from ..core.keys import mask_key
from ..core.models import AssetRef
from .loader import ProgressiveLoader
from .shuffle import derive_seed, shuffled
from .state import ClientViewState


logger = logging.getLogger(__name__)


@dataclass
class WindowConfig:
    """
    Window sizes around the current index.

    Attributes:
        back: Elements kept behind the current index
        forward: Elements kept ahead of the current index
        margin: Extra slack on both sides before eviction
    """
    back: int = 5
    forward: int = 20
    margin: int = 5


def default_locator(item: AssetRef) -> Optional[str]:
    return item.best_locator()


class WindowedShuffleController:
    """
    Presentation order and memory window for one viewing session.
    """

    def __init__(
        self,
        collection_key: str,
        loader: ProgressiveLoader,
        state: ClientViewState,
        config: Optional[WindowConfig] = None,
        clock: Callable[[], float] = time.time,
        locator_for: Callable[[AssetRef], Optional[str]] = default_locator,
    ):
        """
        Initialize the controller.

        Args:
            collection_key: Key of the collection being presented
            loader: Loader that materializes elements
            state: View state shared with the loader
            config: Window sizes (uses defaults if not provided)
            clock: Source of the session timestamp used for seeding
            locator_for: Maps an item to the locator handed to the loader
        """
        self.collection_key = collection_key
        self.loader = loader
        self.state = state
        self.config = config or WindowConfig()
        self._clock = clock
        self._locator_for = locator_for

        self._source_items: List[AssetRef] = []
        self.seed: Optional[int] = None
        self.shuffle_count = 0

    def set_items(self, items: Sequence[AssetRef]) -> bool:
        """
        Replace the known item list.

        When the list grows the whole list is reshuffled with a fresh seed,
        loads are reset and the window is rebuilt around the current index.

        Returns:
            True if a reshuffle happened
        """
        items = list(items)
        if self.seed is not None and len(items) <= len(self._source_items):
            return False

        self._source_items = items
        self.seed = derive_seed(self.collection_key, self._clock())
        self.shuffle_count += 1
        order = shuffled(items, self.seed)

        with self.state.lock:
            self.loader.reset()
            self.state.ordered_items = order
            for index, item in enumerate(order):
                locator = self._locator_for(item)
                if not locator or locator in self.loader.failed_locators:
                    self.state.permanently_failed.add(index)

        logger.info(
            f"Shuffled {len(order)} items for {mask_key(self.collection_key)} "
            f"(shuffle #{self.shuffle_count})"
        )
        self.move_to(self.state.current_index)
        return True

    def move_to(self, index: int) -> None:
        """
        Make index the current position.

        Queues loads for the guaranteed range and evicts elements outside
        the hysteresis range.
        """
        with self.state.lock:
            count = len(self.state.ordered_items)
            if count == 0:
                self.state.current_index = 0
                self.state.window_start, self.state.window_end = 0, -1
                return

            index = max(0, min(index, count - 1))
            keep_start = max(0, index - self.config.back)
            keep_end = min(count - 1, index + self.config.forward)

            self.state.current_index = index
            self.state.window_start = keep_start
            self.state.window_end = keep_end

            lower = index - self.config.back - self.config.margin
            upper = index + self.config.forward + self.config.margin
            resident = set(self.state.loaded_elements) | set(self.loader.active_indices())
            for i in sorted(resident):
                if i < lower or i > upper:
                    self.loader.evict(i)

            for i in range(keep_start, keep_end + 1):
                if i in self.state.permanently_failed:
                    continue
                locator = self._locator_for(self.state.ordered_items[i])
                if not locator:
                    self.state.permanently_failed.add(i)
                    continue
                self.loader.enqueue(i, locator)

    def advance(self, step: int = 1) -> int:
        """
        Move by step positions, skipping permanently failed indices.

        Returns:
            The new current index
        """
        with self.state.lock:
            count = len(self.state.ordered_items)
            if count == 0:
                return 0
            index = self.state.current_index
            direction = 1 if step >= 0 else -1
            remaining = abs(step)
            candidate = index
            while remaining and 0 <= candidate + direction < count:
                candidate += direction
                if candidate not in self.state.permanently_failed:
                    index = candidate
                    remaining -= 1
        self.move_to(index)
        return index

    def visible_items(self) -> List[Tuple[int, AssetRef]]:
        """(index, item) pairs in the guaranteed window, minus failed ones."""
        with self.state.lock:
            return [
                (i, self.state.ordered_items[i])
                for i in range(self.state.window_start, self.state.window_end + 1)
                if i not in self.state.permanently_failed
            ]
