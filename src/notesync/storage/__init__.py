"""Storage layer for the notesync engine."""

from notesync.storage.fts_index import FtsIndex
from notesync.storage.note_repository import NoteRepository
from notesync.storage.settings_store import SettingsStore

__all__ = [
    "FtsIndex",
    "NoteRepository",
    "SettingsStore",
]
