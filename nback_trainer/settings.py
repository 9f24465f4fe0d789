from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any

from .cognitive_core import clamp_int
from .config import MAX_TRIALS, MIN_TRIALS, AdaptiveConfig

logger = logging.getLogger(__name__)

SETTINGS_PATH_ENV = "NBACK_SETTINGS_PATH"


@dataclass(frozen=True, slots=True)
class UserSettings:
    current_n: int = 2
    trial_count: int = 20
    sound_enabled: bool = True
    feedback_sounds_enabled: bool = True
    adaptive_difficulty: bool = True

    @classmethod
    def from_dict(cls, raw: object, *, adaptive: AdaptiveConfig | None = None) -> "UserSettings":
        """Merge known keys over the defaults; wrong types keep the default.

        Level and block length are clamped to what the trainer can run.
        """

        defaults = cls()
        if not isinstance(raw, dict):
            return defaults
        values: dict[str, Any] = {}
        for f in fields(cls):
            if f.name not in raw:
                continue
            value = raw[f.name]
            default = getattr(defaults, f.name)
            if isinstance(default, bool):
                if isinstance(value, bool):
                    values[f.name] = value
            elif isinstance(value, int) and not isinstance(value, bool) and value > 0:
                values[f.name] = value

        bounds = adaptive or AdaptiveConfig()
        if "current_n" in values:
            values["current_n"] = clamp_int(values["current_n"], bounds.min_n, bounds.max_n)
        if "trial_count" in values:
            values["trial_count"] = clamp_int(values["trial_count"], MIN_TRIALS, MAX_TRIALS)
        return replace(defaults, **values)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class SettingsStore:
    _version = 1

    def __init__(self, path: Path) -> None:
        self._path = path
        self._settings = UserSettings()
        self._load()

    @classmethod
    def default_path(cls) -> Path:
        explicit = os.environ.get(SETTINGS_PATH_ENV)
        if explicit:
            return Path(explicit).expanduser()
        return Path.home() / ".audio_nback_settings.json"

    @property
    def path(self) -> Path:
        return self._path

    @property
    def settings(self) -> UserSettings:
        return self._settings

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError):
            logger.warning("Ignoring unreadable settings file %s", self._path)
            return
        if not isinstance(payload, dict):
            return
        self._settings = UserSettings.from_dict(payload.get("settings"))

    def update(self, **changes: Any) -> UserSettings:
        self._settings = replace(self._settings, **changes)
        self.save()
        return self._settings

    def save(self) -> None:
        payload = {
            "version": self._version,
            "settings": self._settings.to_dict(),
        }
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self._path.with_suffix(f"{self._path.suffix}.tmp")
            tmp_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
            tmp_path.replace(self._path)
        except OSError:
            logger.warning("Could not save settings to %s", self._path)
