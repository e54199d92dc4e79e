"""Tests for the per-folder settings store."""
import json
from unittest.mock import patch

import pytest

from notesync.exceptions import ErrorCode, StorageError
from notesync.models.schema import Settings
from notesync.storage.settings_store import SettingsStore


class TestSettingsStore:
    """Loading and saving settings.json."""

    def test_missing_file_gives_defaults(self, settings_store):
        settings = settings_store.load()
        assert settings.pinned == []
        assert settings.default_note_name is None

    def test_path_inside_hidden_dir(self, notes_dir):
        store = SettingsStore(notes_dir, ".custom")
        assert store.path == notes_dir / ".custom" / "settings.json"

    def test_save_uses_camel_case(self, settings_store):
        settings_store.save(Settings(pinned_note_ids=["a", "b"], default_note_name="Note {counter}"))
        data = json.loads(settings_store.path.read_text(encoding="utf-8"))
        assert data == {"pinnedNoteIds": ["a", "b"], "defaultNoteName": "Note {counter}"}

    def test_round_trip(self, settings_store):
        settings_store.save(Settings().with_pinned(["work/Standup"]))
        assert settings_store.load().pinned == ["work/Standup"]

    def test_unknown_keys_preserved(self, settings_store):
        settings_store.path.parent.mkdir(parents=True)
        settings_store.path.write_text(
            json.dumps({"pinnedNoteIds": ["x"], "interfaceZoom": 1.25, "theme": {"mode": "dark"}}),
            encoding="utf-8",
        )
        settings = settings_store.load()
        settings_store.save(settings.with_pinned(["x", "y"]))
        data = json.loads(settings_store.path.read_text(encoding="utf-8"))
        assert data["interfaceZoom"] == 1.25
        assert data["theme"] == {"mode": "dark"}
        assert data["pinnedNoteIds"] == ["x", "y"]

    @pytest.mark.parametrize("raw", ["{not json", "[1, 2]", '{"pinnedNoteIds": 5}'])
    def test_invalid_file_gives_defaults(self, settings_store, raw):
        settings_store.path.parent.mkdir(parents=True)
        settings_store.path.write_text(raw, encoding="utf-8")
        assert settings_store.load().pinned == []

    def test_empty_file_gives_defaults(self, settings_store):
        settings_store.path.parent.mkdir(parents=True)
        settings_store.path.write_text("  ", encoding="utf-8")
        assert settings_store.load() == Settings()

    def test_write_failure_raises_storage_error(self, settings_store):
        with patch("pathlib.Path.write_text", side_effect=OSError("disk full")):
            with pytest.raises(StorageError) as exc_info:
                settings_store.save(Settings())
        assert exc_info.value.code is ErrorCode.SETTINGS_WRITE_FAILED
        assert not settings_store.path.exists()
