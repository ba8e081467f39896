"""
Bounded-concurrency progressive loader.

Turns (index, locator) pairs into loaded presentation elements using a
fixed pool of workers. Admission into the pool is FIFO; completion order is
unconstrained. Every completion immediately drains the queue to refill the
budget.

Per-item lifecycle:

    QUEUED -> LOADING -> LOADED
                    \\-> RETRY_QUEUED -> LOADING -> LOADED
                                               \\-> FAILED (permanent)
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from ..core.keys import asset_key
from ..store.base import AssetStore
from .state import ClientViewState


logger = logging.getLogger(__name__)


MAX_ATTEMPTS = 2


class LoadStatus(str, Enum):
    QUEUED = "queued"
    LOADING = "loading"
    RETRY_QUEUED = "retry_queued"
    LOADED = "loaded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(eq=False)
class LoadTask:
    """A single asset load tracked by the loader."""
    index: int
    locator: str
    attempts: int = 0
    status: LoadStatus = LoadStatus.QUEUED
    cancelled: bool = False


class ProgressiveLoader:
    """
    Client-side loader with a fixed concurrency budget.

    Features:
    - At most max_concurrent loads in flight at any instant
    - FIFO admission into the budget
    - Exactly one retry per item, re-queued at the tail
    - Permanent failures are removed from the view and never retried in
      the same session
    """

    def __init__(
        self,
        state: ClientViewState,
        load_fn: Callable[[str], Any],
        max_concurrent: int = 4,
        token=None,
        on_loaded: Optional[Callable[[int, Any], None]] = None,
        on_removed: Optional[Callable[[int], None]] = None,
    ):
        """
        Initialize the loader.

        Args:
            state: View state owned by the session
            load_fn: Loads one locator and returns the presentation element;
                any exception counts as a failed attempt
            max_concurrent: Concurrency budget
            token: Session CancellationToken; cancelling it cancels all loads
            on_loaded: Called with (index, element) after a successful load
            on_removed: Called with index after a terminal failure
        """
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")

        self.state = state
        self.max_concurrent = max_concurrent
        self._load_fn = load_fn
        self._token = token
        self._on_loaded = on_loaded
        self._on_removed = on_removed

        self._tasks: Dict[int, LoadTask] = {}
        self._idle = threading.Condition(state.lock)
        self._closed = False
        self._executor = ThreadPoolExecutor(
            max_workers=max_concurrent,
            thread_name_prefix="asset-loader",
        )

        self.failed_locators: Set[str] = set()
        self.max_in_flight_observed = 0
        self.attempts_by_locator: Dict[str, int] = {}

        if token is not None:
            token.on_cancel(self.cancel_all)

    # =========================================================================
    # Public API
    # =========================================================================

    def enqueue(self, index: int, locator: str) -> bool:
        """
        Queue a load for a presentation index.

        Returns:
            False when the index is already loaded, active, permanently
            failed, or the session is cancelled
        """
        with self.state.lock:
            if self._is_cancelled():
                return False
            if (
                index in self.state.permanently_failed
                or index in self.state.loaded_elements
                or index in self._tasks
            ):
                return False
            if locator in self.failed_locators:
                self.state.permanently_failed.add(index)
                return False

            task = LoadTask(index=index, locator=locator)
            self._tasks[index] = task
            self.state.pending_queue.append(task)
            self._drain()
        return True

    def cancel(self, index: int) -> bool:
        """
        Cancel a queued or running load.

        A running load cannot be interrupted; its result is discarded.
        """
        with self.state.lock:
            task = self._tasks.pop(index, None)
            if task is None:
                return False
            task.cancelled = True
            task.status = LoadStatus.CANCELLED
            if task in self.state.pending_queue:
                self.state.pending_queue.remove(task)
            self._idle.notify_all()
        return True

    def evict(self, index: int) -> None:
        """Cancel any load for index and drop its element."""
        with self.state.lock:
            self.cancel(index)
            self.state.loaded_elements.pop(index, None)

    def reset(self) -> None:
        """
        Cancel everything and clear loaded elements.

        Failure bookkeeping by locator survives, so items that failed
        permanently stay failed after a reshuffle.
        """
        with self.state.lock:
            for index in list(self._tasks):
                self.cancel(index)
            self.state.pending_queue.clear()
            self.state.loaded_elements.clear()
            self.state.permanently_failed.clear()

    def cancel_all(self) -> None:
        """Cancel every queued and running load and stop the workers."""
        with self.state.lock:
            self._closed = True
            for index in list(self._tasks):
                self.cancel(index)
            self.state.pending_queue.clear()
            self._idle.notify_all()
        self._executor.shutdown(wait=False, cancel_futures=True)
        logger.debug("All loads cancelled")

    def is_active(self, index: int) -> bool:
        with self.state.lock:
            return index in self._tasks

    def active_indices(self) -> List[int]:
        with self.state.lock:
            return list(self._tasks)

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Block until no load is queued or running, or the loader is closed.
        Returns False on timeout.
        """
        with self._idle:
            return self._idle.wait_for(
                lambda: self._closed or (
                    self.state.in_flight_count == 0 and not self.state.pending_queue
                ),
                timeout=timeout,
            )

    def close(self) -> None:
        self.cancel_all()

    # =========================================================================
    # Internals
    # =========================================================================

    def _is_cancelled(self) -> bool:
        return self._closed or (self._token is not None and self._token.cancelled)

    def _drain(self) -> None:
        """Fill the concurrency budget from the head of the queue. Lock held."""
        while (
            self.state.in_flight_count < self.max_concurrent
            and self.state.pending_queue
            and not self._is_cancelled()
        ):
            task = self.state.pending_queue.popleft()
            if task.cancelled:
                continue

            task.attempts += 1
            task.status = LoadStatus.LOADING
            self.attempts_by_locator[task.locator] = (
                self.attempts_by_locator.get(task.locator, 0) + 1
            )
            self.state.in_flight_count += 1
            self.max_in_flight_observed = max(
                self.max_in_flight_observed, self.state.in_flight_count
            )
            self._executor.submit(self._run, task)

    def _run(self, task: LoadTask) -> None:
        element = None
        error: Optional[BaseException] = None
        try:
            if self._token is not None:
                self._token.raise_if_cancelled()
            element = self._load_fn(task.locator)
        except Exception as e:
            logger.debug(f"Load of index {task.index} failed: {e}")
            error = e
        self._complete(task, element, error)

    def _complete(self, task: LoadTask, element: Any, error: Optional[BaseException]) -> None:
        loaded = removed = False

        with self.state.lock:
            self.state.in_flight_count -= 1
            current = self._tasks.get(task.index) is task

            if task.cancelled or not current or self._is_cancelled():
                pass
            elif error is None:
                task.status = LoadStatus.LOADED
                del self._tasks[task.index]
                self.state.loaded_elements[task.index] = element
                loaded = True
            elif task.attempts < MAX_ATTEMPTS:
                logger.info(f"Retrying load of index {task.index}: {error}")
                task.status = LoadStatus.RETRY_QUEUED
                self.state.pending_queue.append(task)
            else:
                logger.warning(
                    f"Dropping index {task.index} after {task.attempts} failed loads: {error}"
                )
                task.status = LoadStatus.FAILED
                del self._tasks[task.index]
                self.state.permanently_failed.add(task.index)
                self.state.loaded_elements.pop(task.index, None)
                self.failed_locators.add(task.locator)
                removed = True

            self._drain()
            self._idle.notify_all()

        if loaded and self._on_loaded is not None:
            try:
                self._on_loaded(task.index, element)
            except Exception as e:
                logger.error(f"on_loaded callback failed for index {task.index}: {e}")
        if removed and self._on_removed is not None:
            try:
                self._on_removed(task.index)
            except Exception as e:
                logger.error(f"on_removed callback failed for index {task.index}: {e}")


class StoreAssetLoader:
    """
    Load function that reads asset bytes from a store.

    The locator is the item's best locator; the store is addressed by the
    asset key derived from it.
    """

    def __init__(self, store: AssetStore):
        self.store = store

    def __call__(self, locator: str) -> bytes:
        return self.store.get(asset_key(locator))
