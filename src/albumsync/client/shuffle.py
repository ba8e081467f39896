"""
Seeded Fisher-Yates shuffling for the presentation order.
"""

import hashlib
import random
from typing import List, Sequence, TypeVar


T = TypeVar("T")


def derive_seed(collection_key: str, session_start: float) -> int:
    """
    Seed for a viewing session.

    Deterministic for the same key and start time, different across
    sessions because the start time differs.
    """
    digest = hashlib.sha256(f"{collection_key}{session_start!r}".encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big")


def shuffled(items: Sequence[T], seed: int) -> List[T]:
    """
    Return a new list holding a seeded permutation of items.

    The input is left untouched.
    """
    result = list(items)
    rng = random.Random(seed)
    for i in range(len(result) - 1, 0, -1):
        j = rng.randint(0, i)
        result[i], result[j] = result[j], result[i]
    return result
