"""Seeded randomness for reproducible race builds."""

from __future__ import annotations

import math
import random
from typing import List, Sequence, TypeVar

T = TypeVar("T")


class SeededRandom:
    """A reproducible stream of floats in [0, 1) derived from a seed string.

    Each instance owns its generator; two instances built from the same seed
    produce the same sequence and never share state.
    """

    def __init__(self, seed: str) -> None:
        self.seed = str(seed)
        self._rng = random.Random(self.seed)

    def next(self) -> float:
        return self._rng.random()

    def child(self, suffix: str) -> "SeededRandom":
        """Return an independent stream seeded by ``seed + suffix``."""
        return SeededRandom(f"{self.seed}{suffix}")

    def index(self, upper: int) -> int:
        """Draw an integer in ``[0, upper)`` as ``floor(next() * upper)``."""
        return math.floor(self.next() * upper)

    def shuffle(self, items: Sequence[T]) -> List[T]:
        """Return a shuffled copy of ``items`` (Fisher-Yates, last index down to 1)."""
        shuffled = list(items)
        for i in range(len(shuffled) - 1, 0, -1):
            j = self.index(i + 1)
            shuffled[i], shuffled[j] = shuffled[j], shuffled[i]
        return shuffled

    def __repr__(self) -> str:
        return f"SeededRandom({self.seed!r})"
