from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from .clock import Clock
from .cognitive_core import EngineState, SeededRng, clamp_int
from .config import (
    SOUND_BLOCK_COMPLETE,
    SOUND_FALSE_ALARM,
    SOUND_HIT,
    SOUND_LEVEL_UP,
    SOUND_MISS,
    NBackConfig,
    letter_sound_id,
)
from .scoring import BlockResult, Scorer, TrialOutcome, calculate_next_level
from .sequence import NBackSequence, generate_sequence

logger = logging.getLogger(__name__)


class AudioPlayer(Protocol):
    def play(self, sound_id: str) -> None:
        """Start playback and return immediately."""
        ...


PressHandler = Callable[[Any], None]


class PressSource(Protocol):
    def subscribe(self, handler: PressHandler) -> None: ...
    def unsubscribe(self, handler: PressHandler) -> None: ...


class EngineEventKind(str, Enum):
    BLOCK_START = "blockStart"
    TRIAL_START = "trialStart"
    TRIAL_END = "trialEnd"
    PAUSED = "paused"
    RESUMED = "resumed"
    STOPPED = "stopped"
    BLOCK_COMPLETE = "blockComplete"


@dataclass(frozen=True, slots=True)
class EngineEvent:
    kind: EngineEventKind
    detail: dict[str, Any]


EngineListener = Callable[[EngineEvent], None]


@dataclass(frozen=True, slots=True)
class BlockOutcome:
    """What a finished block scored, at the level and length it actually ran."""

    results: BlockResult
    next_level: int
    n: int
    total_trials: int


@dataclass(frozen=True, slots=True)
class TrialRecord:
    index: int
    letter: str
    was_match: bool
    user_pressed: bool
    outcome: TrialOutcome
    presented_at_s: float
    response_time_s: float | None

    @property
    def correct(self) -> bool:
        return self.outcome.is_correct


@dataclass(frozen=True, slots=True)
class EngineProgress:
    current_trial: int
    total_trials: int
    n: int


class _Action(str, Enum):
    START = "start"
    PAUSE = "pause"
    RESUME = "resume"
    STOP = "stop"
    FINISH = "finish"


_TRANSITIONS: dict[tuple[EngineState, _Action], EngineState] = {
    (EngineState.IDLE, _Action.START): EngineState.PLAYING,
    (EngineState.COMPLETE, _Action.START): EngineState.PLAYING,
    (EngineState.PLAYING, _Action.PAUSE): EngineState.PAUSED,
    (EngineState.PAUSED, _Action.RESUME): EngineState.PLAYING,
    (EngineState.PLAYING, _Action.STOP): EngineState.IDLE,
    (EngineState.PAUSED, _Action.STOP): EngineState.IDLE,
    (EngineState.PLAYING, _Action.FINISH): EngineState.COMPLETE,
    # Pausing during the last trial never reaches another boundary.
    (EngineState.PAUSED, _Action.FINISH): EngineState.COMPLETE,
}

_FEEDBACK_SOUNDS: dict[TrialOutcome, str] = {
    TrialOutcome.HIT: SOUND_HIT,
    TrialOutcome.MISS: SOUND_MISS,
    TrialOutcome.FALSE_ALARM: SOUND_FALSE_ALARM,
}


@dataclass(slots=True)
class _ResponseWindow:
    opened_at_s: float
    pressed_at_s: float | None = None
    closed: bool = False


class TrialEngine:
    """Timed n-back block runner.

    One block at a time: ``start_block`` generates the letter sequence, then
    for every trial plays the letter, collects at most one press during the
    response window, scores it, plays feedback and waits out the rest of the
    ISI. Pause and stop are cooperative and only observed between trials, so
    a response window or feedback cue already under way always finishes.

    Time is entirely via the injected Clock; audio and presses come from the
    injected collaborators and their failures never change the schedule.
    """

    def __init__(
        self,
        *,
        audio: AudioPlayer,
        presses: PressSource,
        clock: Clock,
        config: NBackConfig | None = None,
        rng: SeededRng | None = None,
    ) -> None:
        self._audio = audio
        self._presses = presses
        self._clock = clock
        self._cfg = config or NBackConfig()
        self._rng = rng

        self._scorer = Scorer()
        self._state = EngineState.IDLE
        self._listeners: list[EngineListener] = []

        self._generation = 0
        self._wake = asyncio.Event()
        self._subscribed = False

        self._n = self._cfg.default_n
        self._sequence: NBackSequence | None = None
        self._current_trial = 0
        self._window: _ResponseWindow | None = None
        self._trials: list[TrialRecord] = []

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def config(self) -> NBackConfig:
        return self._cfg

    @property
    def sequence(self) -> NBackSequence | None:
        return self._sequence

    def get_state(self) -> EngineState:
        return self._state

    def get_progress(self) -> EngineProgress:
        total = 0 if self._sequence is None else self._sequence.total_trials
        return EngineProgress(current_trial=self._current_trial, total_trials=total, n=self._n)

    def trials(self) -> list[TrialRecord]:
        return list(self._trials)

    def subscribe(self, listener: EngineListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: EngineListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def start_block(self, n: int, trial_count: int | None = None) -> BlockOutcome | None:
        """Run one block. Returns None if the block was stopped or not started."""

        if self._state in (EngineState.PLAYING, EngineState.PAUSED):
            logger.debug("start_block ignored while %s", self._state.value)
            return None

        adaptive = self._cfg.adaptive
        n = clamp_int(int(n), adaptive.min_n, adaptive.max_n)
        count = self._cfg.default_trials if trial_count is None else int(trial_count)
        sequence = generate_sequence(
            n,
            count,
            self._cfg.match_rate,
            letters=self._cfg.letters,
            rng=self._rng,
        )

        self._n = n
        self._sequence = sequence
        self._scorer.reset()
        self._trials = []
        self._current_trial = 0
        self._window = None
        self._wake = asyncio.Event()
        self._generation += 1
        generation = self._generation

        self._transition(_Action.START)
        self._presses.subscribe(self._on_press)
        self._subscribed = True

        logger.info(
            "Block started: %d-back, %d trials, %d matches",
            n,
            sequence.total_trials,
            sequence.match_count(),
        )
        self._emit(EngineEventKind.BLOCK_START, n=n, totalTrials=sequence.total_trials)

        for index in range(sequence.total_trials):
            if self._superseded(generation):
                break
            self._current_trial = index
            if self._state is EngineState.PAUSED:
                await self._wait_while_paused()
            if self._superseded(generation):
                break
            await self._run_trial(sequence, index, generation)

        if generation == self._generation:
            self._release_input()
        if self._superseded(generation):
            logger.info("Block aborted after %d of %d trials", len(self._trials), sequence.total_trials)
            return None
        return await self._finish_block()

    def pause(self) -> None:
        if not self._transition(_Action.PAUSE):
            return
        self._emit(EngineEventKind.PAUSED)

    def resume(self) -> None:
        if not self._transition(_Action.RESUME):
            return
        self._wake.set()
        self._emit(EngineEventKind.RESUMED)

    def stop(self) -> None:
        if not self._transition(_Action.STOP):
            return
        self._release_input()
        self._wake.set()
        self._emit(EngineEventKind.STOPPED)

    async def _run_trial(self, sequence: NBackSequence, index: int, generation: int) -> None:
        letter = sequence.stimuli[index]
        is_match = sequence.is_match(index)

        self._emit(
            EngineEventKind.TRIAL_START,
            trialIndex=index,
            totalTrials=sequence.total_trials,
            isMatch=is_match,
        )

        window = _ResponseWindow(opened_at_s=self._clock.now())
        self._window = window
        self._play(letter_sound_id(letter))
        try:
            await self._clock.sleep(self._cfg.response_window_s)
        finally:
            window.closed = True
            if self._window is window:
                self._window = None

        if generation != self._generation:
            # A newer block owns the scorer now.
            return

        user_pressed = window.pressed_at_s is not None
        outcome = self._scorer.record_trial(user_pressed, is_match)
        if self._cfg.feedback_sounds and outcome in _FEEDBACK_SOUNDS:
            self._play(_FEEDBACK_SOUNDS[outcome])

        rt = None if window.pressed_at_s is None else max(0.0, window.pressed_at_s - window.opened_at_s)
        self._trials.append(
            TrialRecord(
                index=index,
                letter=letter,
                was_match=is_match,
                user_pressed=user_pressed,
                outcome=outcome,
                presented_at_s=window.opened_at_s,
                response_time_s=rt,
            )
        )
        self._emit(
            EngineEventKind.TRIAL_END,
            trialIndex=index,
            userPressed=user_pressed,
            wasMatch=is_match,
            correct=outcome.is_correct,
        )

        remaining = self._cfg.post_response_s
        if remaining > 0.0:
            await self._clock.sleep(remaining)

    async def _finish_block(self) -> BlockOutcome:
        self._transition(_Action.FINISH)
        results = self._scorer.get_results()
        next_level = calculate_next_level(self._n, results.accuracy, config=self._cfg.adaptive)

        self._play(SOUND_BLOCK_COMPLETE)
        if next_level > self._n:
            await self._clock.sleep(self._cfg.level_up_delay_s)
            self._play(SOUND_LEVEL_UP)

        logger.info(
            "Block complete: %d-back accuracy=%.3f next_level=%d",
            self._n,
            results.accuracy,
            next_level,
        )
        self._emit(
            EngineEventKind.BLOCK_COMPLETE,
            results=results,
            nextLevel=next_level,
            currentN=self._n,
        )
        total = 0 if self._sequence is None else self._sequence.total_trials
        return BlockOutcome(results=results, next_level=next_level, n=self._n, total_trials=total)

    async def _wait_while_paused(self) -> None:
        # Woken directly by resume()/stop(); the poll tick bounds each wait.
        while self._state is EngineState.PAUSED:
            self._wake.clear()
            woken = asyncio.ensure_future(self._wake.wait())
            tick = asyncio.ensure_future(self._clock.sleep(self._cfg.pause_poll_s))
            try:
                await asyncio.wait((woken, tick), return_when=asyncio.FIRST_COMPLETED)
            finally:
                woken.cancel()
                tick.cancel()

    def _on_press(self, event: Any = None) -> None:
        window = self._window
        if window is None or window.closed or self._state is not EngineState.PLAYING:
            return
        if window.pressed_at_s is None:
            window.pressed_at_s = self._clock.now()

    def _superseded(self, generation: int) -> bool:
        return generation != self._generation or self._state is EngineState.IDLE

    def _transition(self, action: _Action) -> bool:
        target = _TRANSITIONS.get((self._state, action))
        if target is None:
            logger.debug("Ignored %s while %s", action.value, self._state.value)
            return False
        self._state = target
        return True

    def _release_input(self) -> None:
        if self._subscribed:
            self._presses.unsubscribe(self._on_press)
            self._subscribed = False

    def _play(self, sound_id: str) -> None:
        try:
            self._audio.play(sound_id)
        except Exception:
            logger.exception("Audio playback failed for %s", sound_id)

    def _emit(self, kind: EngineEventKind, **detail: Any) -> None:
        event = EngineEvent(kind=kind, detail=detail)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Listener failed on %s", kind.value)


def build_nback_engine(
    *,
    audio: AudioPlayer,
    presses: PressSource,
    clock: Clock,
    seed: int | None = None,
    config: NBackConfig | None = None,
) -> TrialEngine:
    """Factory for a trial engine; a seed makes every block reproducible."""

    rng = None if seed is None else SeededRng(seed)
    return TrialEngine(audio=audio, presses=presses, clock=clock, config=config, rng=rng)
