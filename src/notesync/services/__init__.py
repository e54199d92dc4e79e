"""Services coordinating notes, search and external changes."""

from notesync.services.backend import LocalNotesBackend, NotesBackend
from notesync.services.change_detector import ExternalChangeDetector, RecentlySavedSet
from notesync.services.notes_controller import NotesController, NotesState

__all__ = [
    "ExternalChangeDetector",
    "LocalNotesBackend",
    "NotesBackend",
    "NotesController",
    "NotesState",
    "RecentlySavedSet",
]
