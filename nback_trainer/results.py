from __future__ import annotations

import time
from dataclasses import dataclass

from .engine import BlockOutcome


@dataclass(frozen=True, slots=True)
class SessionRecord:
    """Persistable summary of a completed block.

    Field names follow the session history table one to one.
    """

    n: int
    trial_count: int

    hits: int
    misses: int
    false_alarms: int
    correct_rejections: int

    accuracy: float
    hit_rate: float
    correct_rejection_rate: float

    next_level: int
    timestamp: str


def utc_now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(time.time()))


def session_record_from_outcome(
    outcome: BlockOutcome,
    *,
    timestamp: str | None = None,
) -> SessionRecord:
    """Build a SessionRecord from a finished block.

    Level and length come from the outcome, i.e. what the engine ran after
    clamping, not what the caller asked for.
    """

    r = outcome.results
    return SessionRecord(
        n=int(outcome.n),
        trial_count=int(outcome.total_trials),
        hits=int(r.hits),
        misses=int(r.misses),
        false_alarms=int(r.false_alarms),
        correct_rejections=int(r.correct_rejections),
        accuracy=float(r.accuracy),
        hit_rate=float(r.hit_rate),
        correct_rejection_rate=float(r.correct_rejection_rate),
        next_level=int(outcome.next_level),
        timestamp=utc_now_iso() if timestamp is None else str(timestamp),
    )


def level_change_message(current_n: int, next_level: int) -> str:
    if next_level > current_n:
        return f"Level Up! Now {next_level}-back"
    if next_level < current_n:
        return f"Level Down. Now {next_level}-back"
    return f"Staying at {next_level}-back"
