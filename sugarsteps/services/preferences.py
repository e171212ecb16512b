"""Persistence helpers for the small per-install preference blob."""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional

from ..config import AppConfig


LOGGER = logging.getLogger(__name__)


@dataclass
class Preferences:
    """Session values remembered between runs."""

    user_id: Optional[int] = None
    is_registered: bool = False
    selected_background: Optional[str] = None
    first_time: bool = True


class PreferenceStore:
    """Load and store :class:`Preferences` beside the database."""

    def __init__(self, config: AppConfig) -> None:
        self._path = config.preferences_file
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Preferences:
        with self._lock:
            if not self._path.exists():
                return Preferences()
            try:
                payload = json.loads(self._path.read_text(encoding="utf-8"))
            except json.JSONDecodeError:
                LOGGER.warning("Ignoring unreadable preferences at %s", self._path)
                return Preferences()

        preferences = Preferences()
        if not isinstance(payload, dict):
            return preferences
        for field, value in payload.items():
            if hasattr(preferences, field):
                setattr(preferences, field, value)
        return preferences

    def save(self, preferences: Preferences) -> None:
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            self._path.write_text(json.dumps(asdict(preferences), indent=2), encoding="utf-8")
        LOGGER.debug("Preferences saved to %s", self._path)

    def remember_user(self, user_id: int) -> Preferences:
        preferences = self.load()
        preferences.user_id = int(user_id)
        preferences.is_registered = True
        self.save(preferences)
        return preferences

    def forget_user(self) -> Preferences:
        preferences = self.load()
        preferences.user_id = None
        preferences.is_registered = False
        self.save(preferences)
        return preferences


__all__ = ["PreferenceStore", "Preferences"]
