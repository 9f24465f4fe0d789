from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import pytest

from nback_trainer.config import NBackConfig
from nback_trainer.engine import EngineEvent, EngineEventKind, TrialEngine, build_nback_engine
from nback_trainer.results import level_change_message, session_record_from_outcome
from nback_trainer.scoring import TrialOutcome


@dataclass
class FakeClock:
    t: float = 0.0
    pending: list = field(default_factory=list)

    def now(self) -> float:
        return self.t

    async def sleep(self, seconds: float) -> None:
        # Work queued before a wait runs at its start, e.g. inside a response window.
        while self.pending:
            self.pending.pop(0)()
        self.t += max(0.0, float(seconds))
        await asyncio.sleep(0)


class SilentAudio:
    def play(self, sound_id: str) -> None:
        return None


class ScriptedResponder:
    """Presses on trials chosen by ``decide`` right after each letter starts."""

    def __init__(self, decide, clock: FakeClock) -> None:
        self._decide = decide
        self._clock = clock
        self._handlers: list = []

    def subscribe(self, handler) -> None:
        self._handlers.append(handler)

    def unsubscribe(self, handler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def attach(self, engine: TrialEngine) -> None:
        def on_event(event: EngineEvent) -> None:
            if event.kind is not EngineEventKind.TRIAL_START:
                return
            if self._decide(event.detail["trialIndex"], event.detail["isMatch"]):
                self._clock.pending.append(self._press)

        engine.subscribe(on_event)

    def _press(self) -> None:
        for handler in list(self._handlers):
            handler(None)


def _run_block(*, seed: int, n: int, trials: int, decide, config: NBackConfig | None = None):
    clock = FakeClock()
    responder = ScriptedResponder(decide, clock)
    engine = build_nback_engine(
        audio=SilentAudio(),
        presses=responder,
        clock=clock,
        seed=seed,
        config=config,
    )
    responder.attach(engine)
    outcome = asyncio.run(engine.start_block(n, trials))
    return engine, outcome


def test_same_seed_gives_same_block() -> None:
    a, out_a = _run_block(seed=99, n=3, trials=30, decide=lambda i, m: m)
    b, out_b = _run_block(seed=99, n=3, trials=30, decide=lambda i, m: m)

    assert a.sequence == b.sequence
    assert out_a == out_b


def test_different_seeds_usually_differ() -> None:
    seqs = {
        _run_block(seed=s, n=2, trials=20, decide=lambda i, m: False)[0].sequence.stimuli
        for s in range(5)
    }
    assert len(seqs) > 1


def test_trial_records_agree_with_results() -> None:
    # Press on every third trial regardless of the letter.
    engine, outcome = _run_block(seed=7, n=2, trials=40, decide=lambda i, m: i % 3 == 0)
    assert outcome is not None

    records = engine.trials()
    assert [r.index for r in records] == list(range(40))

    counts = {kind: 0 for kind in TrialOutcome}
    for rec in records:
        counts[rec.outcome] += 1
        assert rec.user_pressed == (rec.index % 3 == 0)
        assert rec.was_match == engine.sequence.is_match(rec.index)
        assert rec.letter == engine.sequence.stimuli[rec.index]
        if rec.user_pressed:
            assert rec.response_time_s == pytest.approx(0.0)
        else:
            assert rec.response_time_s is None

    r = outcome.results
    assert counts[TrialOutcome.HIT] == r.hits
    assert counts[TrialOutcome.MISS] == r.misses
    assert counts[TrialOutcome.FALSE_ALARM] == r.false_alarms
    assert counts[TrialOutcome.CORRECT_REJECTION] == r.correct_rejections
    assert r.hits + r.misses == engine.sequence.match_count()


def test_adaptive_ladder_from_a_perfect_and_a_passive_player() -> None:
    _, perfect = _run_block(seed=1, n=4, trials=25, decide=lambda i, m: m)
    _, passive = _run_block(seed=1, n=4, trials=25, decide=lambda i, m: False)

    assert perfect.next_level == 5
    assert passive.next_level == 3
    assert level_change_message(4, perfect.next_level) == "Level Up! Now 5-back"
    assert level_change_message(4, passive.next_level) == "Level Down. Now 3-back"


def test_level_is_capped_by_the_configured_ceiling() -> None:
    _, outcome = _run_block(seed=5, n=9, trials=30, decide=lambda i, m: m)
    assert outcome.next_level == 9
    assert level_change_message(9, outcome.next_level) == "Staying at 9-back"


def test_session_record_mirrors_the_block() -> None:
    engine, outcome = _run_block(seed=12, n=2, trials=20, decide=lambda i, m: m or i == 0)
    rec = session_record_from_outcome(outcome, timestamp="2024-01-01T00:00:00Z")

    assert rec.n == 2
    assert rec.trial_count == 20
    assert rec.hits == outcome.results.hits
    assert rec.false_alarms == outcome.results.false_alarms
    assert rec.accuracy == pytest.approx(outcome.results.accuracy)
    assert rec.next_level == outcome.next_level
    assert rec.timestamp == "2024-01-01T00:00:00Z"


def test_out_of_range_request_is_recorded_as_actually_run() -> None:
    engine, outcome = _run_block(seed=8, n=12, trials=2, decide=lambda i, m: m)

    assert (outcome.n, outcome.total_trials) == (9, 10)
    assert engine.get_progress().n == 9

    rec = session_record_from_outcome(outcome)
    assert (rec.n, rec.trial_count) == (9, 10)
    assert 1 <= rec.next_level <= 9


def test_custom_timing_shortens_the_block() -> None:
    cfg = NBackConfig(isi_s=1.5, response_window_s=1.0)
    clock = FakeClock()
    engine = build_nback_engine(
        audio=SilentAudio(),
        presses=ScriptedResponder(lambda i, m: False, clock),
        clock=clock,
        seed=3,
        config=cfg,
    )
    asyncio.run(engine.start_block(1, 10))

    assert clock.t == pytest.approx(15.0)
    assert [r.presented_at_s for r in engine.trials()][:3] == pytest.approx([0.0, 1.5, 3.0])
