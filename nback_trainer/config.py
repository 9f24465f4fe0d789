from __future__ import annotations

from dataclasses import dataclass, field

# Acoustically distinct when spoken; no rhyming pairs (B/D/P, M/N).
LETTERS: tuple[str, ...] = ("C", "H", "K", "L", "Q", "R", "S", "T")

SOUND_HIT = "hit"
SOUND_MISS = "miss"
SOUND_FALSE_ALARM = "false-alarm"
SOUND_BLOCK_COMPLETE = "block-complete"
SOUND_LEVEL_UP = "level-up"

FEEDBACK_SOUNDS: tuple[str, ...] = (
    SOUND_HIT,
    SOUND_MISS,
    SOUND_FALSE_ALARM,
    SOUND_BLOCK_COMPLETE,
    SOUND_LEVEL_UP,
)

MIN_TRIALS = 5
MAX_TRIALS = 1000
DEFAULT_TRIALS = 20
DEFAULT_MATCH_RATE = 0.3


def letter_sound_id(letter: str) -> str:
    return f"letter-{str(letter).strip().lower()}"


def all_sound_ids(letters: tuple[str, ...] = LETTERS) -> tuple[str, ...]:
    return tuple(letter_sound_id(letter) for letter in letters) + FEEDBACK_SOUNDS


@dataclass(frozen=True, slots=True)
class AdaptiveConfig:
    increase_threshold: float = 0.85
    decrease_threshold: float = 0.70
    min_n: int = 1
    max_n: int = 9

    def __post_init__(self) -> None:
        if not (0.0 <= self.decrease_threshold <= self.increase_threshold <= 1.0):
            raise ValueError("thresholds must satisfy 0 <= decrease <= increase <= 1")
        if self.min_n < 1:
            raise ValueError("min_n must be >= 1")
        if self.min_n > self.max_n:
            raise ValueError("min_n must be <= max_n")


@dataclass(frozen=True, slots=True)
class NBackConfig:
    letters: tuple[str, ...] = LETTERS

    # ISI covers the whole trial: response window plus the silent remainder.
    isi_s: float = 3.0
    response_window_s: float = 2.5

    match_rate: float = DEFAULT_MATCH_RATE
    default_n: int = 2
    default_trials: int = DEFAULT_TRIALS

    pause_poll_s: float = 0.1
    level_up_delay_s: float = 1.0

    # Hit/miss/false-alarm cues; correct rejections are always silent.
    feedback_sounds: bool = True

    adaptive: AdaptiveConfig = field(default_factory=AdaptiveConfig)

    def __post_init__(self) -> None:
        if len(set(self.letters)) < 2:
            raise ValueError("letters must contain at least two distinct symbols")
        if self.isi_s <= 0.0:
            raise ValueError("isi_s must be > 0")
        if self.response_window_s <= 0.0:
            raise ValueError("response_window_s must be > 0")
        if not (0.0 < self.match_rate <= 1.0):
            raise ValueError("match_rate must be in (0.0, 1.0]")
        if self.pause_poll_s <= 0.0:
            raise ValueError("pause_poll_s must be > 0")
        if self.level_up_delay_s < 0.0:
            raise ValueError("level_up_delay_s must be >= 0")
        if not (self.adaptive.min_n <= self.default_n <= self.adaptive.max_n):
            raise ValueError("default_n must be within the adaptive level bounds")
        if self.default_trials < MIN_TRIALS:
            raise ValueError(f"default_trials must be >= {MIN_TRIALS}")

    @property
    def post_response_s(self) -> float:
        return max(0.0, self.isi_s - self.response_window_s)
