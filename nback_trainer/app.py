"""Pygame UI shell for the audio n-back trainer.

Screens: start (pick level and block length), game (progress, pause), and
results. The frame loop runs inside asyncio so the trial engine's block task
advances between frames. Timing, scoring and sequence logic live in
nback_trainer/* core modules.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Protocol

import pygame

from .audio import MixerAudioPlayer, NullAudioPlayer
from .clock import Clock, RealClock
from .cognitive_core import EngineState, clamp_int
from .config import MAX_TRIALS, MIN_TRIALS, NBackConfig
from .engine import AudioPlayer, BlockOutcome, EngineEvent, EngineEventKind, TrialEngine, build_nback_engine
from .persistence import default_db_path, get_best_level, get_last_level, open_db, record_session
from .press_input import PressEvent, PressInput
from .results import level_change_message, session_record_from_outcome
from .settings import SettingsStore

logger = logging.getLogger(__name__)

WINDOW_SIZE = (960, 540)
TARGET_FPS = 60
TRIAL_STEP = 5

BG = (3, 9, 78)
TEXT_MAIN = (238, 245, 255)
TEXT_MUTED = (186, 200, 224)
ACCENT = (255, 214, 102)
GOOD = (120, 220, 140)
BAD = (240, 110, 110)


class Screen(Protocol):
    def handle_event(self, event: pygame.event.Event) -> None: ...
    def render(self, surface: pygame.Surface) -> None: ...


class App:
    def __init__(self, surface: pygame.Surface, font: pygame.font.Font) -> None:
        self._surface = surface
        self._font = font
        self._screens: list[Screen] = []
        self._running = True
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def font(self) -> pygame.font.Font:
        return self._font

    def push(self, screen: Screen) -> None:
        self._screens.append(screen)

    def pop(self) -> None:
        # Never pop the last/root screen; root handles its own quit/back behavior.
        if len(self._screens) > 1:
            self._screens.pop()

    def replace(self, screen: Screen) -> None:
        if len(self._screens) > 1:
            self._screens.pop()
        self._screens.append(screen)

    def quit(self) -> None:
        self._running = False

    def spawn(
        self,
        coro: Coroutine[Any, Any, Any],
        on_done: Callable[[asyncio.Task[Any]], None],
    ) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(on_done)
        return task

    async def shutdown(self) -> None:
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type == pygame.QUIT:
            self.quit()
            return
        if not self._screens:
            return
        self._screens[-1].handle_event(event)

    def render(self) -> None:
        if not self._screens:
            return
        self._screens[-1].render(self._surface)


@dataclass(slots=True)
class Trainer:
    """Collaborators shared by every screen of one app run."""

    clock: Clock
    presses: PressInput
    settings: SettingsStore
    db_path: Path
    audio: AudioPlayer
    config: NBackConfig
    best_level: int = 2

    def new_engine(self) -> TrialEngine:
        s = self.settings.settings
        audio = self.audio if s.sound_enabled else NullAudioPlayer()
        cfg = replace(self.config, feedback_sounds=s.feedback_sounds_enabled)
        return build_nback_engine(audio=audio, presses=self.presses, clock=self.clock, config=cfg)

    def refresh_best_level(self) -> None:
        conn = open_db(self.db_path)
        try:
            self.best_level = get_best_level(conn)
        finally:
            conn.close()

    def seed_level_from_history(self) -> None:
        """Start a fresh install at the level the last saved block pointed to."""

        if self.settings.path.exists():
            return
        conn = open_db(self.db_path)
        try:
            level = get_last_level(conn)
        finally:
            conn.close()
        adaptive = self.config.adaptive
        self.settings.update(current_n=clamp_int(level, adaptive.min_n, adaptive.max_n))


def _draw_lines(
    surface: pygame.Surface,
    font: pygame.font.Font,
    lines: list[tuple[str, tuple[int, int, int]]],
    *,
    top: int,
    spacing: int,
) -> None:
    w, _ = surface.get_size()
    y = top
    for text, color in lines:
        if text:
            img = font.render(text, True, color)
            surface.blit(img, ((w - img.get_width()) // 2, y))
        y += spacing


def format_duration(trial_count: int, isi_s: float) -> str:
    total_s = int(round(trial_count * isi_s))
    if total_s < 60:
        return f"{total_s} sec"
    minutes, seconds = divmod(total_s, 60)
    return f"{minutes} min" if seconds == 0 else f"{minutes} min {seconds} sec"


class StartScreen:
    def __init__(self, app: App, trainer: Trainer) -> None:
        self._app = app
        self._trainer = trainer
        self._title_font = pygame.font.Font(None, 56)
        self._item_font = pygame.font.Font(None, 34)
        self._hint_font = pygame.font.Font(None, 22)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        store = self._trainer.settings
        s = store.settings
        adaptive = self._trainer.config.adaptive
        key = event.key
        if key == pygame.K_UP:
            store.update(current_n=clamp_int(s.current_n + 1, adaptive.min_n, adaptive.max_n))
        elif key == pygame.K_DOWN:
            store.update(current_n=clamp_int(s.current_n - 1, adaptive.min_n, adaptive.max_n))
        elif key == pygame.K_RIGHT:
            store.update(trial_count=clamp_int(s.trial_count + TRIAL_STEP, MIN_TRIALS, MAX_TRIALS))
        elif key == pygame.K_LEFT:
            store.update(trial_count=clamp_int(s.trial_count - TRIAL_STEP, MIN_TRIALS, MAX_TRIALS))
        elif key == pygame.K_s:
            store.update(sound_enabled=not s.sound_enabled)
        elif key == pygame.K_f:
            store.update(feedback_sounds_enabled=not s.feedback_sounds_enabled)
        elif key == pygame.K_a:
            store.update(adaptive_difficulty=not s.adaptive_difficulty)
        elif key in (pygame.K_RETURN, pygame.K_KP_ENTER, pygame.K_SPACE):
            self._app.push(GameScreen(self._app, self._trainer, n=s.current_n, trial_count=s.trial_count))
        elif key == pygame.K_ESCAPE:
            self._app.quit()

    def render(self, surface: pygame.Surface) -> None:
        surface.fill(BG)
        s = self._trainer.settings.settings
        duration = format_duration(s.trial_count, self._trainer.config.isi_s)

        def on_off(flag: bool) -> str:
            return "on" if flag else "off"

        _draw_lines(surface, self._title_font, [("Audio N-Back", TEXT_MAIN)], top=50, spacing=60)
        _draw_lines(
            surface,
            self._item_font,
            [
                (f"Level: {s.current_n}-back", ACCENT),
                (f"Trials: {s.trial_count}  (~{duration})", TEXT_MAIN),
                (f"Best level: {self._trainer.best_level}-back", TEXT_MUTED),
                ("", TEXT_MAIN),
                (f"Sound: {on_off(s.sound_enabled)}   Feedback: {on_off(s.feedback_sounds_enabled)}"
                 f"   Adaptive: {on_off(s.adaptive_difficulty)}", TEXT_MUTED),
            ],
            top=140,
            spacing=44,
        )
        _draw_lines(
            surface,
            self._hint_font,
            [
                ("Up/Down: level   Left/Right: trials   S/F/A: toggles", TEXT_MUTED),
                ("Enter/Space: start   Esc: quit", TEXT_MUTED),
            ],
            top=surface.get_height() - 70,
            spacing=26,
        )


class GameScreen:
    def __init__(self, app: App, trainer: Trainer, *, n: int, trial_count: int) -> None:
        self._app = app
        self._trainer = trainer
        self._n = int(n)
        self._trial_count = int(trial_count)
        self._engine = trainer.new_engine()
        self._trial_index = 0
        self._total_trials = self._trial_count
        self._tapped = False
        self._closed = False

        self._title_font = pygame.font.Font(None, 64)
        self._item_font = pygame.font.Font(None, 34)
        self._hint_font = pygame.font.Font(None, 22)

        self._engine.subscribe(self._on_engine_event)
        trainer.presses.subscribe(self._on_press)
        app.spawn(self._engine.start_block(self._n, self._trial_count), self._on_block_done)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        state = self._engine.state
        if state is EngineState.PLAYING and event.key in (pygame.K_p, pygame.K_ESCAPE):
            self._engine.pause()
        elif state is EngineState.PAUSED:
            if event.key in (pygame.K_p, pygame.K_RETURN, pygame.K_KP_ENTER):
                self._engine.resume()
            elif event.key == pygame.K_ESCAPE:
                self._exit()

    def render(self, surface: pygame.Surface) -> None:
        surface.fill(BG)
        _draw_lines(surface, self._title_font, [(f"{self._n}-back", TEXT_MAIN)], top=60, spacing=70)

        shown = min(self._trial_index + 1, self._total_trials)
        lines: list[tuple[str, tuple[int, int, int]]] = [
            (f"Trial {shown} / {self._total_trials}", TEXT_MUTED),
            ("", TEXT_MAIN),
            ("PRESS" if self._tapped else "", ACCENT),
        ]
        if self._engine.state is EngineState.PAUSED:
            lines.append(("Paused - P/Enter resume, Esc exit", ACCENT))
        _draw_lines(surface, self._item_font, lines, top=170, spacing=44)

        _draw_lines(
            surface,
            self._hint_font,
            [("Press Space when the letter matches the one n back.   P: pause", TEXT_MUTED)],
            top=surface.get_height() - 50,
            spacing=26,
        )

    def _exit(self) -> None:
        self._engine.stop()
        self._close()
        self._app.pop()

    def _close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._engine.unsubscribe(self._on_engine_event)
        self._trainer.presses.unsubscribe(self._on_press)

    def _on_engine_event(self, event: EngineEvent) -> None:
        if event.kind is EngineEventKind.BLOCK_START:
            # The engine clamps level and length; show what actually runs.
            self._n = int(event.detail["n"])
            self._total_trials = int(event.detail["totalTrials"])
        elif event.kind is EngineEventKind.TRIAL_START:
            self._trial_index = int(event.detail["trialIndex"])
            self._tapped = False

    def _on_press(self, press: PressEvent) -> None:
        if self._engine.state is EngineState.PLAYING:
            self._tapped = True

    def _on_block_done(self, task: asyncio.Task[Any]) -> None:
        self._close()
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Block failed", exc_info=exc)
            return
        outcome: BlockOutcome | None = task.result()
        if outcome is None:
            return

        settings = self._trainer.settings
        record = session_record_from_outcome(outcome)
        record_session(db_path=self._trainer.db_path, record=record)
        self._trainer.refresh_best_level()

        next_n = outcome.next_level if settings.settings.adaptive_difficulty else outcome.n
        settings.update(current_n=next_n)
        self._app.replace(
            ResultsScreen(self._app, self._trainer, outcome=outcome, n=outcome.n, next_n=next_n)
        )


class ResultsScreen:
    def __init__(
        self,
        app: App,
        trainer: Trainer,
        *,
        outcome: BlockOutcome,
        n: int,
        next_n: int,
    ) -> None:
        self._app = app
        self._trainer = trainer
        self._outcome = outcome
        self._n = int(n)
        self._next_n = int(next_n)
        self._title_font = pygame.font.Font(None, 56)
        self._item_font = pygame.font.Font(None, 32)
        self._hint_font = pygame.font.Font(None, 22)

    def handle_event(self, event: pygame.event.Event) -> None:
        if event.type != pygame.KEYDOWN:
            return
        if event.key in (pygame.K_RETURN, pygame.K_KP_ENTER):
            trial_count = self._trainer.settings.settings.trial_count
            self._app.replace(GameScreen(self._app, self._trainer, n=self._next_n, trial_count=trial_count))
        elif event.key in (pygame.K_ESCAPE, pygame.K_BACKSPACE):
            self._app.pop()

    def render(self, surface: pygame.Surface) -> None:
        surface.fill(BG)
        r = self._outcome.results
        pct = int(round(r.accuracy * 100))
        adaptive = self._trainer.config.adaptive
        color = GOOD if r.accuracy >= adaptive.increase_threshold else (
            ACCENT if r.accuracy >= adaptive.decrease_threshold else BAD
        )

        _draw_lines(surface, self._title_font, [(f"{pct}% accuracy", color)], top=50, spacing=60)
        _draw_lines(
            surface,
            self._item_font,
            [
                (f"Hits: {r.hits}   Misses: {r.misses}", TEXT_MAIN),
                (f"False alarms: {r.false_alarms}   Correct rejections: {r.correct_rejections}", TEXT_MAIN),
                (f"Hit rate: {r.hit_rate:.0%}   Correct rejection rate: {r.correct_rejection_rate:.0%}", TEXT_MUTED),
                ("", TEXT_MAIN),
                (level_change_message(self._n, self._next_n), ACCENT),
            ],
            top=140,
            spacing=42,
        )
        _draw_lines(
            surface,
            self._hint_font,
            [("Enter: continue   Esc: back to start", TEXT_MUTED)],
            top=surface.get_height() - 50,
            spacing=26,
        )


def _init_joysticks() -> None:
    # Ring clickers and gamepads show up as joysticks; safe when unsupported.
    try:
        count = pygame.joystick.get_count()
    except pygame.error:
        return

    for i in range(count):
        try:
            js = pygame.joystick.Joystick(i)
            js.init()
        except pygame.error:
            continue


def run(*, max_frames: int | None = None, event_injector: Callable[[int], None] | None = None) -> int:
    return asyncio.run(_run(max_frames=max_frames, event_injector=event_injector))


async def _run(*, max_frames: int | None, event_injector: Callable[[int], None] | None) -> int:
    pygame.init()
    _init_joysticks()

    pygame.display.set_caption("Audio N-Back")
    surface = pygame.display.set_mode(WINDOW_SIZE, pygame.RESIZABLE)
    font = pygame.font.Font(None, 36)

    clock = RealClock()
    audio = MixerAudioPlayer()
    trainer = Trainer(
        clock=clock,
        presses=PressInput(clock=clock),
        settings=SettingsStore(SettingsStore.default_path()),
        db_path=default_db_path(),
        audio=audio,
        config=NBackConfig(),
    )
    trainer.seed_level_from_history()
    trainer.refresh_best_level()

    app = App(surface=surface, font=font)
    app.push(StartScreen(app, trainer))

    frame = 0
    try:
        while app.running:
            if event_injector is not None:
                event_injector(frame)

            for event in pygame.event.get():
                trainer.presses.handle_event(event)
                app.handle_event(event)

            app.render()

            pygame.display.flip()

            frame += 1
            if max_frames is not None and frame >= max_frames:
                break

            await asyncio.sleep(1.0 / TARGET_FPS)
    finally:
        await app.shutdown()
        audio.stop()
        pygame.quit()

    return 0
