"""Tests for key-value storage backends."""

from __future__ import annotations

import json
import os
from pathlib import Path
import tempfile
import unittest
from unittest.mock import patch

from chat_relay.exceptions import PersistenceError
from chat_relay.storage import JsonFileStore, MemoryStore


class MemoryStoreTests(unittest.TestCase):
    def test_get_set_and_snapshot(self) -> None:
        store = MemoryStore({"a": "1"})
        store.set("b", "2")
        self.assertEqual(store.get("a"), "1")
        self.assertIsNone(store.get("missing"))
        self.assertEqual(store.snapshot(), {"a": "1", "b": "2"})


class JsonFileStoreTests(unittest.TestCase):
    """Validate file persistence, permissions, and corrupt-file fallback."""

    def test_values_round_trip_through_file(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "nested" / "prefs.json"
            JsonFileStore(path).set("theme", "dark")

            self.assertEqual(JsonFileStore(path).get("theme"), "dark")
            self.assertEqual(json.loads(path.read_text(encoding="utf-8")), {"theme": "dark"})
            if os.name == "posix":
                self.assertEqual(path.stat().st_mode & 0o777, 0o600)

    def test_corrupt_file_reads_as_empty(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "prefs.json"
            path.write_text("{broken", encoding="utf-8")
            store = JsonFileStore(path)
            with self.assertLogs("chat_relay.storage", level="WARNING") as logs:
                self.assertIsNone(store.get("theme"))
            self.assertTrue(any("storage.read_failed" in line for line in logs.output))

            store.set("theme", "light")
            self.assertEqual(json.loads(path.read_text(encoding="utf-8")), {"theme": "light"})

    def test_non_string_values_are_ignored(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "prefs.json"
            path.write_text(json.dumps({"theme": "dark", "count": 3}), encoding="utf-8")
            store = JsonFileStore(path)
            self.assertEqual(store.get("theme"), "dark")
            self.assertIsNone(store.get("count"))

    def test_write_failure_raises_persistence_error(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            store = JsonFileStore(Path(temp_dir) / "prefs.json")
            with patch.object(Path, "write_text", side_effect=OSError("disk full")):
                with self.assertRaises(PersistenceError):
                    store.set("theme", "dark")

    def test_failed_write_leaves_cached_values_unchanged(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "prefs.json"
            store = JsonFileStore(path)
            store.set("theme", "light")
            with patch.object(Path, "write_text", side_effect=OSError("disk full")):
                with self.assertRaises(PersistenceError):
                    store.set("theme", "dark")
                with self.assertRaises(PersistenceError):
                    store.set("name", "Ada")

            self.assertEqual(store.get("theme"), "light")
            self.assertIsNone(store.get("name"))
            self.assertEqual(json.loads(path.read_text(encoding="utf-8")), {"theme": "light"})

    def test_default_path_lives_in_user_data_dir(self) -> None:
        with patch(
            "chat_relay.storage.user_data_path", return_value=Path("/data/chat-relay")
        ):
            store = JsonFileStore()
        self.assertEqual(store.path, Path("/data/chat-relay/preferences.json"))


if __name__ == "__main__":
    unittest.main()
