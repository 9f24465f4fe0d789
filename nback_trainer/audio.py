"""Pygame mixer adapter for letter stimuli and feedback cues.

This stays outside the trial engine. ``play`` only starts a sound; nothing
here blocks or raises into the caller.
"""

from __future__ import annotations

import logging
import math
from array import array
from pathlib import Path

import pygame

from .config import (
    LETTERS,
    SOUND_BLOCK_COMPLETE,
    SOUND_FALSE_ALARM,
    SOUND_HIT,
    SOUND_LEVEL_UP,
    SOUND_MISS,
    letter_sound_id,
)

logger = logging.getLogger(__name__)

DEFAULT_ASSETS_DIR = Path(__file__).resolve().parents[1] / "assets" / "audio"


class NullAudioPlayer:
    """Silent player for headless runs and sound-off sessions."""

    def play(self, sound_id: str) -> None:
        return None


class MixerAudioPlayer:
    _sample_rate = 22050
    _amp = 32767

    # Fallback chimes: (frequency_hz, duration_s) segments per cue.
    _feedback_tones: dict[str, tuple[tuple[float, float], ...]] = {
        SOUND_HIT: ((880.0, 0.08), (1320.0, 0.10)),
        SOUND_MISS: ((330.0, 0.18),),
        SOUND_FALSE_ALARM: ((220.0, 0.10), (196.0, 0.14)),
        SOUND_BLOCK_COMPLETE: ((523.0, 0.12), (659.0, 0.12), (784.0, 0.20)),
        SOUND_LEVEL_UP: ((659.0, 0.10), (784.0, 0.10), (1047.0, 0.24)),
    }

    def __init__(
        self,
        *,
        letters: tuple[str, ...] = LETTERS,
        assets_dir: Path | None = None,
        volume: float = 1.0,
    ) -> None:
        self._available = False
        self._assets_dir = DEFAULT_ASSETS_DIR if assets_dir is None else assets_dir
        self._sounds: dict[str, pygame.mixer.Sound] = {}
        self._volume = max(0.0, min(1.0, float(volume)))

        try:
            if pygame.mixer.get_init() is None:
                pygame.mixer.init(frequency=self._sample_rate, size=-16, channels=1, buffer=512)
            pygame.mixer.set_num_channels(max(8, int(pygame.mixer.get_num_channels())))
        except pygame.error as exc:
            logger.warning("Audio unavailable: %s", exc)
            return

        self._available = True
        self._preload(letters)

    @property
    def available(self) -> bool:
        return self._available

    def loaded_sound_ids(self) -> tuple[str, ...]:
        return tuple(self._sounds)

    def play(self, sound_id: str) -> None:
        if not self._available:
            return
        sound = self._sounds.get(sound_id)
        if sound is None:
            logger.warning("Audio buffer not found: %s", sound_id)
            return
        sound.set_volume(self._volume)
        sound.play()

    def set_volume(self, volume: float) -> None:
        self._volume = max(0.0, min(1.0, float(volume)))

    def stop(self) -> None:
        if self._available:
            pygame.mixer.stop()

    def _preload(self, letters: tuple[str, ...]) -> None:
        for idx, letter in enumerate(letters):
            sound_id = letter_sound_id(letter)
            path = self._assets_dir / "letters" / f"{str(letter).lower()}.wav"
            sound = self._load_sound(path)
            if sound is None:
                sound = self._build_letter_sound(idx)
            self._sounds[sound_id] = sound

        for sound_id, segments in self._feedback_tones.items():
            sound = self._load_sound(self._assets_dir / "feedback" / f"{sound_id}.wav")
            if sound is None:
                sound = self._build_sequence_sound(segments, gain=0.30)
            self._sounds[sound_id] = sound

    def _load_sound(self, path: Path) -> pygame.mixer.Sound | None:
        if not path.exists():
            return None
        try:
            return pygame.mixer.Sound(str(path))
        except pygame.error:
            logger.warning("Failed to load audio: %s", path)
            return None

    def _build_letter_sound(self, idx: int) -> pygame.mixer.Sound:
        # Two-note code per letter on a pentatonic ladder, distinct across the alphabet.
        ladder = (262.0, 294.0, 330.0, 392.0, 440.0, 523.0, 587.0, 659.0, 784.0, 880.0)
        first = ladder[idx % len(ladder)]
        second = ladder[(idx * 3 + 2) % len(ladder)]
        return self._build_sequence_sound(((first, 0.16), (second, 0.22)), gain=0.38)

    def _build_sequence_sound(
        self,
        segments: tuple[tuple[float, float], ...],
        *,
        gain: float,
    ) -> pygame.mixer.Sound:
        out = array("h")
        for frequency_hz, duration_s in segments:
            out.extend(self._render_tone_pcm(frequency_hz, duration_s, gain=gain))
            out.extend(self._render_silence_pcm(0.025))
        return pygame.mixer.Sound(buffer=out.tobytes())

    def _render_tone_pcm(self, frequency_hz: float, duration_s: float, *, gain: float) -> array[int]:
        sample_count = max(1, int(self._sample_rate * duration_s))
        fade_n = max(1, int(self._sample_rate * 0.008))
        out = array("h")
        for idx in range(sample_count):
            envelope = 1.0
            if idx < fade_n:
                envelope = idx / float(fade_n)
            tail = sample_count - idx - 1
            if tail < fade_n:
                envelope = min(envelope, tail / float(fade_n))
            phase = (2.0 * math.pi * float(frequency_hz) * idx) / float(self._sample_rate)
            sample = math.sin(phase) * gain * max(0.0, envelope)
            out.append(int(max(-1.0, min(1.0, sample)) * self._amp))
        return out

    def _render_silence_pcm(self, duration_s: float) -> array[int]:
        sample_count = max(1, int(self._sample_rate * duration_s))
        return array("h", [0] * sample_count)
