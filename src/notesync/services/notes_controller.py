"""Notes state controller.

Single source of truth for the note list, the selected note and its last
synced content, search state, and whether the open note has unresolved
external edits. Every operation catches its own errors and reports them
through ``state.error``; nothing raises across this boundary.

All methods must be called from the event loop thread.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine, Dict, List, Optional, Set

from notesync.config import NoteSyncConfig
from notesync.config import config as default_config
from notesync.exceptions import NoteSyncError
from notesync.models.schema import (
    FileChangeEvent,
    Note,
    NoteMetadata,
    SearchResult,
)
from notesync.services.backend import NotesBackend
from notesync.services.change_detector import ExternalChangeDetector, RecentlySavedSet
from notesync.services.search_service import (
    RequestSequencer,
    instant_matches,
    merge_results,
)
from notesync.utils import truncate

logger = logging.getLogger(__name__)


@dataclass
class NotesState:
    """Observable controller state."""

    notes: List[NoteMetadata] = field(default_factory=list)
    selected_note_id: Optional[str] = None
    current_note: Optional[Note] = None
    notes_folder: Optional[str] = None
    is_loading: bool = True
    error: Optional[str] = None
    search_query: str = ""
    search_results: List[SearchResult] = field(default_factory=list)
    is_searching: bool = False
    has_external_changes: bool = False
    # Bumped only by reload_current_note
    reload_version: int = 0
    # Id of the note created by the last create_note, until another is selected
    created_note_id: Optional[str] = None


Listener = Callable[[NotesState], None]


def describe_error(error: BaseException) -> str:
    """Human-readable message for a failed operation."""
    if isinstance(error, NoteSyncError):
        return error.message
    return str(error) or error.__class__.__name__


class NotesController:
    """Coordinates note operations against a ``NotesBackend``."""

    def __init__(
        self,
        backend: NotesBackend,
        config: Optional[NoteSyncConfig] = None,
        notes_folder: Optional[str] = None,
    ):
        cfg = config or default_config
        self.backend = backend
        self.state = NotesState(notes_folder=notes_folder)
        self.recently_saved = RecentlySavedSet(
            cfg.seconds(cfg.recently_saved_window_ms)
        )
        self.detector = ExternalChangeDetector(self.recently_saved)
        self._search_requests = RequestSequencer()
        self._refresh_delay = cfg.seconds(cfg.list_refresh_delay_ms)
        self._instant_limit = cfg.instant_search_limit
        self._refresh_handle: Optional[asyncio.TimerHandle] = None
        self._listeners: List[Listener] = []
        self._tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener(state)`` after every state change.

        Returns:
            A function that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _update(self, **changes: Any) -> None:
        for name, value in changes.items():
            setattr(self.state, name, value)
        self._notify()

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.state)
            except Exception:
                logger.exception("State listener failed")

    def _fail(self, action: str, error: BaseException) -> None:
        message = f"{action}: {describe_error(error)}"
        logger.error(message)
        self._update(error=message)

    def dismiss_error(self) -> None:
        if self.state.error is not None:
            self._update(error=None)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ------------------------------------------------------------------
    # List
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Load the note list for the first time."""
        try:
            notes = await self.backend.list_notes()
            self._update(notes=notes)
        except Exception as e:
            self._fail("Failed to initialize", e)
        finally:
            self._update(is_loading=False)

    async def refresh_notes(self) -> None:
        """Reload the note list now."""
        try:
            notes = await self.backend.list_notes()
        except Exception as e:
            self._fail("Failed to load notes", e)
            return
        self._update(notes=notes)

    def schedule_refresh(self) -> None:
        """Reload the note list once saves have been quiet for a moment.

        Each call restarts the delay, so a burst of saves costs one reload.
        """
        if self._refresh_handle is not None:
            self._refresh_handle.cancel()
        loop = asyncio.get_running_loop()
        self._refresh_handle = loop.call_later(self._refresh_delay, self._fire_refresh)

    def _fire_refresh(self) -> None:
        self._refresh_handle = None
        self._spawn(self.refresh_notes())

    @property
    def refresh_pending(self) -> bool:
        return self._refresh_handle is not None

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    async def select_note(self, note_id: str) -> None:
        """Select a note and load its content.

        The selection changes before the read completes. A failed read
        restores the previous selection; a read that completes after the
        selection moved on is dropped.
        """
        previous_id = self.state.selected_note_id
        changes: Dict[str, Any] = {"selected_note_id": note_id, "has_external_changes": False}
        if self.state.created_note_id != note_id:
            changes["created_note_id"] = None
        self._update(**changes)
        try:
            note = await self.backend.read_note(note_id)
        except Exception as e:
            if self.state.selected_note_id == note_id:
                self.state.selected_note_id = previous_id
            self._fail("Failed to load note", e)
            return
        if self.state.selected_note_id != note_id:
            logger.debug(f"Dropping stale read of {note_id}")
            return
        self._update(current_note=note)

    async def reload_current_note(self) -> None:
        """Re-read the selected note and ask the editor to show it."""
        note_id = self.state.selected_note_id
        if not note_id:
            return
        try:
            note = await self.backend.read_note(note_id)
        except Exception as e:
            self._fail("Failed to reload note", e)
            return
        if self.state.selected_note_id != note_id:
            logger.debug(f"Dropping stale reload of {note_id}")
            return
        self._update(
            current_note=note,
            has_external_changes=False,
            reload_version=self.state.reload_version + 1,
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create_note(self) -> None:
        """Create a note from the name template and select it."""
        try:
            note = await self.backend.create_note()
        except Exception as e:
            self._fail("Failed to create note", e)
            return
        # The watcher will report the new file; that is our own write
        self.recently_saved.hold(note.id)
        await self.refresh_notes()
        self._search_requests.invalidate()
        self._update(
            current_note=note,
            selected_note_id=note.id,
            created_note_id=note.id,
            has_external_changes=False,
            search_query="",
            search_results=[],
            is_searching=False,
        )
        logger.info(f"Created note {note.id}")

    async def save_note(self, content: str, note_id: Optional[str] = None) -> Optional[Note]:
        """Persist ``content``.

        Args:
            content: Canonical text to write.
            note_id: Note to write. Defaults to the selected note; a queued
                flush passes the note it was scheduled for.

        Returns:
            The saved note (its id differs on rename), or None on failure.
        """
        saving_id = note_id or self.state.selected_note_id
        if not saving_id:
            return None

        # Marked before the write: the watcher may fire before the call returns
        self.recently_saved.add(saving_id)
        try:
            updated = await self.backend.save_note(saving_id, content)
        except Exception as e:
            self.recently_saved.release(saving_id)
            self._fail("Failed to save note", e)
            return None

        renamed = updated.id != saving_id
        if renamed:
            self.recently_saved.add(updated.id)
            await self._transfer_pin(saving_id, updated.id)

        changes: Dict[str, Any] = {"has_external_changes": False}
        # The user may have switched notes while the write was in flight
        if self.state.selected_note_id == saving_id:
            changes["selected_note_id"] = updated.id
            changes["current_note"] = updated
        self._update(**changes)

        self.schedule_refresh()
        if renamed:
            self.recently_saved.release_later(saving_id, updated.id)
        else:
            self.recently_saved.release_later(saving_id)
        return updated

    async def _transfer_pin(self, old_id: str, new_id: str) -> None:
        """Move a pin to the renamed note. Failures are logged only."""
        try:
            settings = await self.backend.get_settings()
            pinned = settings.pinned
            if old_id not in pinned:
                return
            pinned = [new_id if pin == old_id else pin for pin in pinned]
            await self.backend.update_settings(settings.with_pinned(pinned))
            logger.debug(f"Moved pin {old_id} -> {new_id}")
        except Exception as e:
            logger.warning(f"Renamed {old_id} -> {new_id} but failed to move its pin: {e}")

    async def delete_note(self, note_id: str) -> None:
        """Delete a note; clears the selection only if it was selected."""
        self.recently_saved.add(note_id)
        try:
            await self.backend.delete_note(note_id)
        except Exception as e:
            self.recently_saved.release(note_id)
            self._fail("Failed to delete note", e)
            return
        self.recently_saved.release_later(note_id)

        try:
            settings = await self.backend.get_settings()
            if note_id in settings.pinned:
                await self.backend.update_settings(
                    settings.with_pinned([p for p in settings.pinned if p != note_id])
                )
        except Exception as e:
            logger.warning(f"Deleted {note_id} but failed to unpin it: {e}")

        if self.state.selected_note_id == note_id:
            self._update(
                selected_note_id=None,
                current_note=None,
                created_note_id=None,
                has_external_changes=False,
            )
        await self.refresh_notes()
        logger.info(f"Deleted note {note_id}")

    async def duplicate_note(self, note_id: str) -> None:
        """Copy a note under a fresh id and select the copy."""
        try:
            note = await self.backend.duplicate_note(note_id)
        except Exception as e:
            self._fail("Failed to duplicate note", e)
            return
        self.recently_saved.hold(note.id)
        await self.refresh_notes()
        self._update(
            current_note=note,
            selected_note_id=note.id,
            created_note_id=None,
            has_external_changes=False,
        )

    async def pin_note(self, note_id: str) -> None:
        try:
            settings = await self.backend.get_settings()
            if note_id in settings.pinned:
                return
            await self.backend.update_settings(
                settings.with_pinned(settings.pinned + [note_id])
            )
        except Exception as e:
            self._fail("Failed to pin note", e)
            return
        await self.refresh_notes()

    async def unpin_note(self, note_id: str) -> None:
        try:
            settings = await self.backend.get_settings()
            await self.backend.update_settings(
                settings.with_pinned([p for p in settings.pinned if p != note_id])
            )
        except Exception as e:
            self._fail("Failed to unpin note", e)
            return
        await self.refresh_notes()

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search(self, query: str) -> None:
        """Show instant matches now, merged ranked results when they arrive.

        A response for anything but the latest request is dropped.
        """
        request_id = self._search_requests.next()
        trimmed = query.strip()
        if not trimmed:
            self._update(search_query=query, search_results=[], is_searching=False)
            return

        instant = instant_matches(self.state.notes, trimmed, self._instant_limit)
        self._update(search_query=query, search_results=instant, is_searching=True)

        try:
            results = await self.backend.search_notes(trimmed)
        except Exception as e:
            # Instant matches stay on screen
            logger.error(f"Search failed for '{truncate(trimmed, 50)}': {describe_error(e)}")
        else:
            if not self._search_requests.is_current(request_id):
                logger.debug(f"Dropping stale search response #{request_id}")
                return
            self._update(search_results=merge_results(results, instant))

        if self._search_requests.is_current(request_id):
            self._update(is_searching=False)

    def clear_search(self) -> None:
        """Clear the query; any in-flight search response becomes stale."""
        self._search_requests.invalidate()
        self._update(search_query="", search_results=[], is_searching=False)

    # ------------------------------------------------------------------
    # External changes
    # ------------------------------------------------------------------

    async def handle_external_changes(self, changed_ids: List[str]) -> None:
        """React to ids changed by someone else.

        Flags the open note instead of reloading it, so unsaved edits in
        the editor survive until the user chooses to reload.
        """
        if not changed_ids:
            return
        if self.state.selected_note_id in changed_ids:
            logger.info(f"Open note {self.state.selected_note_id} changed on disk")
            self._update(has_external_changes=True)
        await self.refresh_notes()

    async def process_file_change(self, event: FileChangeEvent) -> List[str]:
        """Filter out self-echo and handle the rest.

        Returns:
            The ids treated as external.
        """
        external = self.detector.classify(event.changed_ids)
        if external:
            await self.handle_external_changes(external)
        return external

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def aclose(self) -> None:
        """Cancel timers and wait for background tasks."""
        if self._refresh_handle is not None:
            self._refresh_handle.cancel()
            self._refresh_handle = None
        self.recently_saved.clear()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._listeners.clear()
