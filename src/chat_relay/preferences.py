"""Preference store for user context, avatars, and theme.

Each domain is read once when the store is created and rewritten on every
change. Corrupt stored data falls back to defaults for that domain only.
"""

from __future__ import annotations

from collections.abc import Callable
import json
import logging
import os
from typing import Any, Literal

from pydantic import ValidationError

from .models import (
    DEFAULT_AI_AVATAR,
    DEFAULT_USER_AVATAR,
    DisplaySettings,
    Theme,
    UserPreferences,
)
from .storage import KeyValueStore

LOGGER = logging.getLogger(__name__)

USER_PREFERENCES_KEY = "user_preferences"
USER_AVATAR_KEY = "user_avatar"
AI_AVATAR_KEY = "ai_avatar"
THEME_KEY = "theme"

AI_AVATAR_CHOICES: tuple[str, ...] = (
    "avatars/ai-1.png",
    "avatars/ai-2.png",
    "avatars/ai-3.png",
    "avatars/ai-4.png",
    "avatars/ai-5.png",
    "avatars/ai-6.png",
)

AppliedTheme = Literal["dark", "light"]

# ANSI background colours 0-6 and 8 are dark in the rxvt COLORFGBG convention.
_DARK_BACKGROUNDS = {"0", "1", "2", "3", "4", "5", "6", "8"}


def detect_system_prefers_dark() -> bool:
    """Best-effort terminal background detection; assumes dark when unknown."""
    colorfgbg = os.environ.get("COLORFGBG", "").strip()
    if not colorfgbg:
        return True
    background = colorfgbg.split(";")[-1].strip()
    if not background.isdigit():
        return True
    return background in _DARK_BACKGROUNDS


def resolve_theme(theme: Theme, system_prefers_dark: bool) -> AppliedTheme:
    """Resolve a stored theme choice against the system preference."""
    if theme is Theme.SYSTEM:
        return "dark" if system_prefers_dark else "light"
    return "dark" if theme is Theme.DARK else "light"


def parse_interests(text: str) -> list[str]:
    """Split a comma-separated interests field into trimmed, non-empty items."""
    return [item.strip() for item in text.split(",") if item.strip()]


class PreferenceStore:
    """Own UserPreferences and DisplaySettings on top of a key-value store."""

    def __init__(
        self,
        store: KeyValueStore,
        system_prefers_dark: Callable[[], bool] = detect_system_prefers_dark,
    ) -> None:
        self._store = store
        self._system_prefers_dark = system_prefers_dark
        self._preferences = self._load_preferences()
        self._display = DisplaySettings(
            user_avatar=self._store.get(USER_AVATAR_KEY) or DEFAULT_USER_AVATAR,
            ai_avatar=self._store.get(AI_AVATAR_KEY) or DEFAULT_AI_AVATAR,
            theme=self._load_theme(),
        )

    def _load_preferences(self) -> UserPreferences:
        raw = self._store.get(USER_PREFERENCES_KEY)
        if not raw:
            return UserPreferences()
        try:
            payload = json.loads(raw)
            if not isinstance(payload, dict):
                raise ValueError("stored preferences are not an object")
            # Merge over defaults so older payloads missing fields stay valid.
            return UserPreferences.model_validate(
                {**UserPreferences().to_wire(), **payload}
            )
        except (ValueError, ValidationError) as exc:
            LOGGER.warning(
                "preferences.load_failed",
                extra={"event": "preferences.load_failed", "reason": str(exc)},
            )
            return UserPreferences()

    def _load_theme(self) -> Theme:
        raw = self._store.get(THEME_KEY)
        if not raw:
            return Theme.LIGHT
        try:
            return Theme(raw)
        except ValueError:
            LOGGER.warning(
                "preferences.theme_invalid",
                extra={"event": "preferences.theme_invalid", "value": raw},
            )
            return Theme.LIGHT

    @property
    def user_preferences(self) -> UserPreferences:
        return self._preferences

    def update_user_preferences(self, **changes: Any) -> UserPreferences:
        """Merge a partial update and persist it immediately."""
        merged = {**self._preferences.model_dump(), **changes}
        updated = UserPreferences.model_validate(merged)
        self._store.set(
            USER_PREFERENCES_KEY,
            json.dumps(updated.to_wire(), ensure_ascii=False),
        )
        self._preferences = updated
        LOGGER.info(
            "preferences.updated",
            extra={"event": "preferences.updated", "fields": sorted(changes)},
        )
        return self._preferences

    @property
    def display_settings(self) -> DisplaySettings:
        return self._display

    def set_user_avatar(self, ref: str) -> None:
        value = ref.strip() or DEFAULT_USER_AVATAR
        self._store.set(USER_AVATAR_KEY, value)
        self._display = self._display.model_copy(update={"user_avatar": value})

    def set_ai_avatar(self, ref: str) -> None:
        value = ref.strip() or DEFAULT_AI_AVATAR
        self._store.set(AI_AVATAR_KEY, value)
        self._display = self._display.model_copy(update={"ai_avatar": value})

    def reset_user_avatar(self) -> None:
        self.set_user_avatar(DEFAULT_USER_AVATAR)

    def reset_ai_avatar(self) -> None:
        self.set_ai_avatar(DEFAULT_AI_AVATAR)

    def set_theme(self, theme: Theme | str) -> Theme:
        choice = Theme(theme)
        self._store.set(THEME_KEY, choice.value)
        self._display = self._display.model_copy(update={"theme": choice})
        LOGGER.info(
            "preferences.theme_changed",
            extra={"event": "preferences.theme_changed", "theme": choice.value},
        )
        return choice

    @property
    def applied_theme(self) -> AppliedTheme:
        """Theme to render right now; SYSTEM is resolved on every read."""
        return resolve_theme(self._display.theme, self._system_prefers_dark())
