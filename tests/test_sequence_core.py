from __future__ import annotations

import math

import pytest

from nback_trainer.cognitive_core import SeededRng
from nback_trainer.config import LETTERS, NBackConfig
from nback_trainer.sequence import generate_sequence, guaranteed_match_count


def _expected_matches(n: int, total: int, rate: float) -> int:
    return max(1, int(math.floor((total - n) * rate + 0.5)))


def _assert_sequence_invariants(seq, *, n: int, total: int) -> None:
    assert seq.n == n
    assert seq.total_trials == total
    assert len(seq.stimuli) == total
    assert all(s in LETTERS for s in seq.stimuli)
    assert list(seq.match_positions) == sorted(set(seq.match_positions))

    matches = set(seq.match_positions)
    for p in matches:
        assert p >= n
        assert seq.stimuli[p] == seq.stimuli[p - n]
    for i in range(n, total):
        if i not in matches:
            assert seq.stimuli[i] != seq.stimuli[i - n]


@pytest.mark.parametrize("n", range(1, 10))
def test_generated_sequences_hold_match_invariants_for_every_level(n: int) -> None:
    rng = SeededRng(1000 + n)
    for total in (n + 1, n + 4, 20, 45):
        for rate in (0.1, 0.3, 0.5, 1.0):
            seq = generate_sequence(n, total, rate, rng=rng)
            _assert_sequence_invariants(seq, n=n, total=total)
            assert seq.match_count() == min(total - n, _expected_matches(n, total, rate))


def test_default_block_has_rate_scaled_match_count() -> None:
    seq = generate_sequence(2, 22, rng=SeededRng(5))
    assert seq.total_trials == 22
    assert seq.match_count() == 6


def test_generator_defaults_follow_the_trainer_config() -> None:
    cfg = NBackConfig()
    seq = generate_sequence(2, rng=SeededRng(6))

    assert seq.total_trials == cfg.default_trials
    assert seq.match_count() == guaranteed_match_count(2, cfg.default_trials, cfg.match_rate)


def test_half_match_count_rounds_up() -> None:
    assert guaranteed_match_count(2, 12, 0.25) == 3
    seq = generate_sequence(2, 12, 0.25, rng=SeededRng(8))
    assert seq.match_count() == 3


def test_short_block_is_clamped_to_n_plus_one_with_a_single_match() -> None:
    seq = generate_sequence(3, 2, rng=SeededRng(1))
    assert seq.total_trials == 4
    assert seq.match_positions == (3,)
    assert seq.stimuli[3] == seq.stimuli[0]


def test_tiny_match_rate_still_guarantees_one_match() -> None:
    seq = generate_sequence(2, 10, 0.01, rng=SeededRng(2))
    assert seq.match_count() == 1


def test_out_of_range_parameters_are_clamped_not_rejected() -> None:
    seq = generate_sequence(0, 10, rng=SeededRng(3))
    assert seq.n == 1
    _assert_sequence_invariants(seq, n=1, total=10)

    default_rate = generate_sequence(2, 22, 0.0, rng=SeededRng(4))
    assert default_rate.match_count() == 6

    capped = generate_sequence(2, 10, 7.5, rng=SeededRng(4))
    assert capped.match_positions == tuple(range(2, 10))
    _assert_sequence_invariants(capped, n=2, total=10)


def test_same_seed_gives_same_sequence() -> None:
    s1 = generate_sequence(3, 30, rng=SeededRng(777))
    s2 = generate_sequence(3, 30, rng=SeededRng(777))
    assert s1 == s2


def test_is_match_follows_match_positions() -> None:
    seq = generate_sequence(2, 20, rng=SeededRng(9))
    flagged = [i for i in range(seq.total_trials) if seq.is_match(i)]
    assert tuple(flagged) == seq.match_positions


def test_custom_alphabet_is_used_and_needs_two_symbols() -> None:
    seq = generate_sequence(1, 30, letters=("A", "B"), rng=SeededRng(10))
    assert set(seq.stimuli) <= {"A", "B"}
    _assert_sequence_invariants_for_alphabet(seq)

    with pytest.raises(ValueError):
        generate_sequence(1, 10, letters=("A", "A"))


def _assert_sequence_invariants_for_alphabet(seq) -> None:
    matches = set(seq.match_positions)
    for i in range(seq.n, seq.total_trials):
        assert (seq.stimuli[i] == seq.stimuli[i - seq.n]) == (i in matches)
