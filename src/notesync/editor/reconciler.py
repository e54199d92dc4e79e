"""Load/reconcile state machine for the editor buffer.

Runs whenever the controller presents a different note object or a new
reload version, and decides what the buffer has to do:

* same note, same version: a save echo, bookkeeping only
* same note, newer version: the user asked to reload, replace content
* different note whose previous (id, content) is our last write: the save
  renamed the note, adopt the new id and keep the buffer
* different note otherwise: a genuine switch, flush, then load

No note loaded is both the initial state and the state after the selected
note is deleted.
"""
import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Optional, Sequence

from notesync.editor.autosave import AutosaveScheduler
from notesync.editor.buffer import EditorBuffer
from notesync.editor.codec import NoteCodec
from notesync.models.schema import Note, SaveFingerprint
from notesync.storage.markdown_parser import is_effectively_empty

logger = logging.getLogger(__name__)

FrameScheduler = Callable[[Callable[[], None]], Any]


class ReconcileAction(str, Enum):
    """What a reconcile pass did to the buffer."""

    IDLE = "idle"
    CLEARED = "cleared"
    BOOKKEEPING = "bookkeeping"
    RELOADED = "reloaded"
    RENAME_ADOPTED = "rename_adopted"
    SWITCHED = "switched"


def next_loop_iteration(callback: Callable[[], None]) -> Any:
    """Default frame scheduler: run ``callback`` on the next loop pass."""
    return asyncio.get_running_loop().call_soon(callback)


class NoteReconciler:
    """Keeps the buffer in step with the note the controller presents.

    Args:
        buffer: The editor buffer to drive.
        codec: Converts canonical text to buffer documents.
        autosaves: Every scheduler that may hold unsaved edits.
        schedule_frame: Runs a callback after the replacement is committed.
    """

    def __init__(
        self,
        buffer: EditorBuffer,
        codec: NoteCodec,
        autosaves: Sequence[AutosaveScheduler],
        schedule_frame: Optional[FrameScheduler] = None,
    ):
        self.buffer = buffer
        self.codec = codec
        self.autosaves = list(autosaves)
        self._schedule_frame = schedule_frame or next_loop_iteration
        self.loaded_note_id: Optional[str] = None
        self.loaded_modified: Optional[int] = None
        self.last_reload_version = 0
        self.last_save: Optional[SaveFingerprint] = None

    def record_save(self, note_id: str, content: str) -> None:
        """Remember the latest write so its rename echo can be recognized."""
        self.last_save = SaveFingerprint(note_id=note_id, content=content)

    def to_doc(self, content: str) -> Any:
        """Parse ``content``; on any codec failure the raw text is the document."""
        try:
            return self.codec.parse(content)
        except Exception as e:
            logger.warning(f"Could not parse note content, showing raw text: {e}")
            return content

    def reconcile(
        self, note: Optional[Note], reload_version: int, is_new: bool = False
    ) -> ReconcileAction:
        """Bring the buffer in line with ``note``.

        Args:
            note: The controller's current note, None when nothing is selected.
            reload_version: The controller's reload counter.
            is_new: True for a note that was just created.
        """
        if note is None:
            return self._clear()

        if note.id == self.loaded_note_id:
            if reload_version != self.last_reload_version:
                return self._reload(note, reload_version)
            # A save echo: reloading would destroy caret and unsaved keystrokes
            self.loaded_modified = note.modified
            if self.last_save == SaveFingerprint(note.id, note.content):
                self.last_save = None
            return ReconcileAction.BOOKKEEPING

        # Checked before any flush so a stale-id save cannot recreate the old file
        if self._is_rename_echo(note):
            return self._adopt_rename(note)

        return self._switch(note, reload_version, is_new)

    def _is_rename_echo(self, note: Note) -> bool:
        last = self.last_save
        return (
            last is not None
            and self.loaded_note_id is not None
            and last.note_id == self.loaded_note_id
            and last.content == note.content
        )

    def _clear(self) -> ReconcileAction:
        if self.loaded_note_id is None:
            return ReconcileAction.IDLE
        logger.debug(f"Unloading {self.loaded_note_id}")
        # The note is gone; writing its edits would bring it back
        for autosave in self.autosaves:
            autosave.cancel()
        self.buffer.clear()
        self.loaded_note_id = None
        self.loaded_modified = None
        self.last_save = None
        return ReconcileAction.CLEARED

    def _reload(self, note: Note, reload_version: int) -> ReconcileAction:
        logger.debug(f"Reloading {note.id} (version {reload_version})")
        self.last_reload_version = reload_version
        self.loaded_modified = note.modified
        # Reload means the user chose the disk version over pending edits
        for autosave in self.autosaves:
            autosave.cancel()
        self.buffer.set_content(self.to_doc(note.content))
        if self.buffer.source_mode:
            # Leaving source view parses source_text back; it must be the reloaded text
            self.buffer.enter_source_mode(note.content)
        return ReconcileAction.RELOADED

    def _adopt_rename(self, note: Note) -> ReconcileAction:
        logger.debug(f"Rename echo {self.loaded_note_id} -> {note.id}")
        self.loaded_note_id = note.id
        self.loaded_modified = note.modified
        self.last_save = None
        # Edits made while the rename propagated belong to the new id
        for autosave in self.autosaves:
            if autosave.dirty:
                autosave.flush(note.id)
        return ReconcileAction.RENAME_ADOPTED

    def _switch(self, note: Note, reload_version: int, is_new: bool) -> ReconcileAction:
        previous_id = self.loaded_note_id
        logger.debug(f"Switching {previous_id} -> {note.id}")
        # Serialized synchronously, so this precedes the replacement below
        for autosave in self.autosaves:
            autosave.flush()

        loading_id = note.id
        self.loaded_note_id = loading_id
        self.loaded_modified = note.modified
        self.last_reload_version = reload_version

        self.buffer.blur()
        self.buffer.reset_view_state()
        self.buffer.set_content(self.to_doc(note.content))
        self.buffer.scroll_to_top()

        wants_focus = is_new or is_effectively_empty(note.content)

        def after_commit() -> None:
            if self.loaded_note_id != loading_id:
                return
            self.buffer.scroll_to_top()
            if wants_focus:
                self.buffer.focus("start")
                self.buffer.select_all()

        self._schedule_frame(after_commit)
        return ReconcileAction.SWITCHED
