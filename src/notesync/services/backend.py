"""Async persistence backend consumed by the notes controller.

``NotesBackend`` is the boundary between the event-loop side of the
engine and storage. ``LocalNotesBackend`` implements it on top of the
markdown repository, settings store and search index, running every
blocking call in a worker thread so the loop never stalls on disk I/O.
"""
import asyncio
import logging
from typing import List, Optional, Protocol

from notesync.models.schema import Note, NoteMetadata, SearchResult, Settings
from notesync.observability import traced
from notesync.storage.fts_index import FtsIndex
from notesync.storage.note_repository import NoteRepository
from notesync.storage.settings_store import SettingsStore

logger = logging.getLogger(__name__)


class NotesBackend(Protocol):
    """Storage operations the controller depends on."""

    async def read_note(self, note_id: str) -> Note: ...

    async def save_note(self, note_id: Optional[str], content: str) -> Note: ...

    async def list_notes(self) -> List[NoteMetadata]: ...

    async def delete_note(self, note_id: str) -> None: ...

    async def duplicate_note(self, note_id: str) -> Note: ...

    async def create_note(self) -> Note: ...

    async def get_settings(self) -> Settings: ...

    async def update_settings(self, settings: Settings) -> None: ...

    async def search_notes(self, query: str) -> List[SearchResult]: ...


class LocalNotesBackend:
    """``NotesBackend`` over a local notes folder."""

    def __init__(
        self,
        repository: NoteRepository,
        index: Optional[FtsIndex] = None,
        settings_store: Optional[SettingsStore] = None,
        search_limit: int = 20,
    ):
        self.repository = repository
        self.index = index if index is not None else repository.index
        self.settings_store = settings_store or repository.settings_store
        self.search_limit = search_limit

    @property
    def notes_folder(self) -> str:
        return str(self.repository.notes_dir)

    @traced("read_note")
    async def read_note(self, note_id: str) -> Note:
        return await asyncio.to_thread(self.repository.read, note_id)

    @traced("save_note")
    async def save_note(self, note_id: Optional[str], content: str) -> Note:
        return await asyncio.to_thread(self.repository.save, note_id, content)

    @traced("list_notes")
    async def list_notes(self) -> List[NoteMetadata]:
        return await asyncio.to_thread(self.repository.list_notes)

    @traced("delete_note")
    async def delete_note(self, note_id: str) -> None:
        await asyncio.to_thread(self.repository.delete, note_id)

    @traced("duplicate_note")
    async def duplicate_note(self, note_id: str) -> Note:
        return await asyncio.to_thread(self.repository.duplicate, note_id)

    @traced("create_note")
    async def create_note(self) -> Note:
        return await asyncio.to_thread(self.repository.create)

    @traced("get_settings")
    async def get_settings(self) -> Settings:
        return await asyncio.to_thread(self.settings_store.load)

    @traced("update_settings")
    async def update_settings(self, settings: Settings) -> None:
        await asyncio.to_thread(self.settings_store.save, settings)

    @traced("search_notes")
    async def search_notes(self, query: str) -> List[SearchResult]:
        """Ranked search. Without an index the result is always empty."""
        if self.index is None:
            logger.debug("No search index configured")
            return []
        return await asyncio.to_thread(self.index.search, query, self.search_limit)

    @traced("rebuild_index")
    async def rebuild_index(self) -> int:
        return await asyncio.to_thread(self.repository.rebuild_index)
