from __future__ import annotations

import math
import random
from collections.abc import Sequence
from enum import Enum
from typing import TypeVar

T = TypeVar("T")


class EngineState(str, Enum):
    IDLE = "idle"
    PLAYING = "playing"
    PAUSED = "paused"
    COMPLETE = "complete"


class SeededRng:
    """Simple seeded RNG wrapper to keep deterministic streams explicit."""

    def __init__(self, seed: int) -> None:
        self._rng = random.Random(int(seed))

    def choice(self, seq: Sequence[T]) -> T:
        return self._rng.choice(seq)

    def sample(self, population: Sequence[T], k: int) -> list[T]:
        return self._rng.sample(population, k)


def new_seed() -> int:
    return random.SystemRandom().randint(1, 2**31 - 1)


def clamp_int(x: int, lo: int, hi: int) -> int:
    return lo if x < lo else hi if x > hi else int(x)


def round_half_up(x: float) -> int:
    # 2.5 -> 3, unlike round() which rounds half to even.
    return int(math.floor(x + 0.5))
