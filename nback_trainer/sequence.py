from __future__ import annotations

from dataclasses import dataclass

from .cognitive_core import SeededRng, new_seed, round_half_up
from .config import DEFAULT_MATCH_RATE, DEFAULT_TRIALS, LETTERS


@dataclass(frozen=True, slots=True)
class NBackSequence:
    """Stimulus stream for one block.

    Every index in ``match_positions`` repeats the letter ``n`` steps back and
    every other index ``>= n`` differs from it.
    """

    stimuli: tuple[str, ...]
    n: int
    total_trials: int
    match_positions: tuple[int, ...]

    def is_match(self, index: int) -> bool:
        return index in self.match_positions

    def match_count(self) -> int:
        return len(self.match_positions)


def guaranteed_match_count(n: int, total_trials: int, match_rate: float) -> int:
    eligible = max(0, int(total_trials) - int(n))
    if eligible == 0:
        return 0
    return min(eligible, max(1, round_half_up(eligible * float(match_rate))))


def generate_sequence(
    n: int,
    total_trials: int = DEFAULT_TRIALS,
    match_rate: float = DEFAULT_MATCH_RATE,
    *,
    letters: tuple[str, ...] = LETTERS,
    rng: SeededRng | None = None,
) -> NBackSequence:
    """Build an n-back sequence with a rate-scaled number of guaranteed matches.

    ``n`` is clamped to at least 1 and ``total_trials`` to at least ``n + 1``.
    A non-positive ``match_rate`` falls back to the default rate and anything
    above 1.0 is treated as 1.0. The letters are filled in index order so a
    copied match letter is already in place when later non-matches are drawn
    against it.
    """

    alphabet = tuple(dict.fromkeys(letters))
    if len(alphabet) < 2:
        raise ValueError("letters must contain at least two distinct symbols")

    n = max(1, int(n))
    total_trials = max(int(total_trials), n + 1)
    rate = float(match_rate)
    if not rate > 0.0:
        rate = DEFAULT_MATCH_RATE
    rate = min(rate, 1.0)

    if rng is None:
        rng = SeededRng(new_seed())

    eligible = list(range(n, total_trials))
    picked = rng.sample(eligible, guaranteed_match_count(n, total_trials, rate))
    match_positions = tuple(sorted(picked))
    chosen = set(match_positions)

    stimuli = [rng.choice(alphabet) for _ in range(n)]
    for i in range(n, total_trials):
        back = stimuli[i - n]
        if i in chosen:
            stimuli.append(back)
        else:
            stimuli.append(rng.choice([s for s in alphabet if s != back]))

    return NBackSequence(
        stimuli=tuple(stimuli),
        n=n,
        total_trials=total_trials,
        match_positions=match_positions,
    )
