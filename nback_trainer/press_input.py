from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

import pygame

from .clock import Clock

PRESS_KEYS: frozenset[int] = frozenset(
    {
        pygame.K_SPACE,
        pygame.K_RETURN,
        pygame.K_KP_ENTER,
        pygame.K_PAGEDOWN,
        pygame.K_RIGHT,
    }
)


@dataclass(frozen=True, slots=True)
class PressEvent:
    source: str  # "keyboard" | "mouse" | "touch" | "gamepad"
    timestamp_s: float


PressHandler = Callable[[PressEvent], None]


class PressInput:
    """Merge keyboard, mouse, touch and gamepad events into one press signal.

    Presses closer together than ``debounce_s`` collapse into the first one,
    so a ring clicker that fires both a button and a key only counts once.
    """

    def __init__(self, *, clock: Clock, debounce_s: float = 0.2) -> None:
        if debounce_s < 0.0:
            raise ValueError("debounce_s must be >= 0")
        self._clock = clock
        self._debounce_s = float(debounce_s)
        self._handlers: list[PressHandler] = []
        self._last_press_s: float | None = None

    def subscribe(self, handler: PressHandler) -> None:
        if handler not in self._handlers:
            self._handlers.append(handler)

    def unsubscribe(self, handler: PressHandler) -> None:
        if handler in self._handlers:
            self._handlers.remove(handler)

    def handle_event(self, event: pygame.event.Event) -> bool:
        """Feed one pygame event. Returns True if it produced a press."""

        source = press_source(event)
        if source is None:
            return False
        return self.press(source)

    def press(self, source: str) -> bool:
        now = self._clock.now()
        if self._last_press_s is not None and now - self._last_press_s < self._debounce_s:
            return False
        self._last_press_s = now

        press = PressEvent(source=source, timestamp_s=now)
        for handler in list(self._handlers):
            handler(press)
        return True


def press_source(event: pygame.event.Event) -> str | None:
    if event.type == pygame.KEYDOWN:
        return "keyboard" if event.key in PRESS_KEYS else None
    if event.type == pygame.MOUSEBUTTONDOWN:
        return "mouse"
    if event.type == pygame.FINGERDOWN:
        return "touch"
    if event.type == pygame.JOYBUTTONDOWN:
        return "gamepad"
    return None
