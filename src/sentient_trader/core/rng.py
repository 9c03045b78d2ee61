"""Seedable random source.

Only weight mutation, growth gating and weight initialization draw from this.
The forward pass never does.
"""
from __future__ import annotations

import random
from typing import List, Optional, Protocol


class RandomSource(Protocol):
    def random(self) -> float:
        """Uniform float in [0, 1)."""
        ...


class SeededRandom:
    """`random.Random` wrapper; seed=None gives an OS-seeded generator."""

    def __init__(self, seed: Optional[int] = None):
        self.seed = seed
        self._rng = random.Random(seed)

    def random(self) -> float:
        return self._rng.random()


class ScriptedRandom:
    """Replays a fixed sequence of draws (cycled). Used to force growth paths in tests."""

    def __init__(self, draws: List[float]):
        if not draws:
            raise ValueError("ScriptedRandom needs at least one draw")
        self._draws = list(draws)
        self._i = 0

    def random(self) -> float:
        v = self._draws[self._i % len(self._draws)]
        self._i += 1
        return v


def centered(rng: RandomSource, scale: float) -> float:
    """(u - 0.5) * scale."""
    return (rng.random() - 0.5) * scale
