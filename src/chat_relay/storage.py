"""Client-local key-value persistence for preferences and commands."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Protocol

from platformdirs import user_data_path

from .exceptions import PersistenceError

LOGGER = logging.getLogger(__name__)

APP_NAME = "chat-relay"
DEFAULT_STORE_FILENAME = "preferences.json"


class KeyValueStore(Protocol):
    """String-valued store; each key owns one persisted domain."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...


class MemoryStore:
    """Volatile store used by tests and ephemeral sessions."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._values: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._values.get(key)

    def set(self, key: str, value: str) -> None:
        self._values[key] = value

    def snapshot(self) -> dict[str, str]:
        return dict(self._values)


def default_store_path() -> Path:
    return user_data_path(APP_NAME, appauthor=False) / DEFAULT_STORE_FILENAME


class JsonFileStore:
    """Persist all keys in a single JSON document, rewritten on every change."""

    def __init__(self, path: str | Path | None = None) -> None:
        self.path = Path(path).expanduser() if path else default_store_path()
        self._values: dict[str, str] | None = None

    def _enforce_permissions(self, path: Path, mode: int = 0o600) -> None:
        """Set POSIX permissions on a file or directory; silently ignores failures."""
        if os.name != "posix":
            return
        try:
            path.chmod(mode)
        except OSError:
            pass

    def _load(self) -> dict[str, str]:
        if self._values is not None:
            return self._values
        values: dict[str, str] = {}
        if self.path.exists():
            try:
                payload = json.loads(self.path.read_text(encoding="utf-8"))
            except (OSError, ValueError) as exc:
                LOGGER.warning(
                    "storage.read_failed",
                    extra={
                        "event": "storage.read_failed",
                        "path": str(self.path),
                        "reason": str(exc),
                    },
                )
                payload = {}
            if isinstance(payload, dict):
                values = {
                    str(key): value
                    for key, value in payload.items()
                    if isinstance(value, str)
                }
        self._values = values
        return values

    def get(self, key: str) -> str | None:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        """Write the updated document, then adopt it as the cached state."""
        values = {**self._load(), key: value}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self._enforce_permissions(self.path.parent, 0o700)
            self.path.write_text(
                json.dumps(values, ensure_ascii=False, indent=2, sort_keys=True),
                encoding="utf-8",
            )
        except OSError as exc:
            raise PersistenceError(f"Unable to write {self.path}: {exc}") from exc
        self._values = values
        self._enforce_permissions(self.path)
