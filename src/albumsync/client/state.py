"""
Per-session presentation state shared by the loader and window controller.
"""

import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Set

from ..core.models import AssetRef


@dataclass
class ClientViewState:
    """
    Everything a presentation session knows, owned by the session.

    The loader and window controller mutate this value only while holding
    `lock`; nothing here is durable.

    Attributes:
        ordered_items: Items in current (shuffled) presentation order
        current_index: Position the viewer is at
        window_start: First index guaranteed to be resident
        window_end: Last index guaranteed to be resident (-1 when empty)
        loaded_elements: Loaded presentation elements by index
        pending_queue: Load tasks waiting for a concurrency slot (FIFO)
        in_flight_count: Loads currently running
        permanently_failed: Indices that failed twice and are never retried
    """
    ordered_items: List[AssetRef] = field(default_factory=list)
    current_index: int = 0
    window_start: int = 0
    window_end: int = -1
    loaded_elements: Dict[int, Any] = field(default_factory=dict)
    pending_queue: Deque[Any] = field(default_factory=deque)
    in_flight_count: int = 0
    permanently_failed: Set[int] = field(default_factory=set)
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    def rendered_indices(self) -> List[int]:
        """Indices with a loaded element, ascending."""
        with self.lock:
            return sorted(self.loaded_elements)
