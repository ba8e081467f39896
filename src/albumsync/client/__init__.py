"""
Client-side presentation: bounded-concurrency loading, seeded shuffling
and a sliding memory window.
"""

from .state import ClientViewState
from .loader import LoadStatus, LoadTask, ProgressiveLoader, StoreAssetLoader
from .shuffle import derive_seed, shuffled
from .window import WindowConfig, WindowedShuffleController
from .session import CancellationToken, ClientConfig, ClientSession

__all__ = [
    "ClientViewState",
    "LoadStatus",
    "LoadTask",
    "ProgressiveLoader",
    "StoreAssetLoader",
    "derive_seed",
    "shuffled",
    "WindowConfig",
    "WindowedShuffleController",
    "CancellationToken",
    "ClientConfig",
    "ClientSession",
]
