from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .config import AdaptiveConfig


class TrialOutcome(str, Enum):
    HIT = "hit"
    MISS = "miss"
    FALSE_ALARM = "false_alarm"
    CORRECT_REJECTION = "correct_rejection"

    @property
    def is_correct(self) -> bool:
        return self in (TrialOutcome.HIT, TrialOutcome.CORRECT_REJECTION)


@dataclass(frozen=True, slots=True)
class BlockResult:
    hits: int
    misses: int
    false_alarms: int
    correct_rejections: int
    hit_rate: float
    correct_rejection_rate: float
    accuracy: float

    @property
    def total_matches(self) -> int:
        return self.hits + self.misses

    @property
    def total_non_matches(self) -> int:
        return self.false_alarms + self.correct_rejections


def classify(user_responded: bool, was_match: bool) -> TrialOutcome:
    if was_match:
        return TrialOutcome.HIT if user_responded else TrialOutcome.MISS
    return TrialOutcome.FALSE_ALARM if user_responded else TrialOutcome.CORRECT_REJECTION


class Scorer:
    """Signal-detection tally for one block.

    Accuracy is balanced: the mean of hit rate and correct-rejection rate, so a
    block with few matches is not carried by easy correct rejections.
    """

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self.hits = 0
        self.misses = 0
        self.false_alarms = 0
        self.correct_rejections = 0
        self.total_matches = 0
        self.total_non_matches = 0

    def record_trial(self, user_responded: bool, was_match: bool) -> TrialOutcome:
        outcome = classify(bool(user_responded), bool(was_match))
        if was_match:
            self.total_matches += 1
        else:
            self.total_non_matches += 1

        if outcome is TrialOutcome.HIT:
            self.hits += 1
        elif outcome is TrialOutcome.MISS:
            self.misses += 1
        elif outcome is TrialOutcome.FALSE_ALARM:
            self.false_alarms += 1
        else:
            self.correct_rejections += 1
        return outcome

    def get_results(self) -> BlockResult:
        hit_rate = 0.0 if self.total_matches == 0 else self.hits / self.total_matches
        cr_rate = 0.0 if self.total_non_matches == 0 else self.correct_rejections / self.total_non_matches
        return BlockResult(
            hits=self.hits,
            misses=self.misses,
            false_alarms=self.false_alarms,
            correct_rejections=self.correct_rejections,
            hit_rate=hit_rate,
            correct_rejection_rate=cr_rate,
            accuracy=(hit_rate + cr_rate) / 2.0,
        )


def calculate_next_level(
    current_n: int,
    accuracy: float,
    *,
    config: AdaptiveConfig | None = None,
) -> int:
    """Adaptive step: up one level at high accuracy, down one at low accuracy."""

    cfg = config or AdaptiveConfig()
    if accuracy >= cfg.increase_threshold:
        return min(int(current_n) + 1, cfg.max_n)
    if accuracy < cfg.decrease_threshold:
        return max(int(current_n) - 1, cfg.min_n)
    return int(current_n)
