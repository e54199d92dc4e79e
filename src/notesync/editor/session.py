"""Editor session: wires the buffer, autosave and reconciler to the controller."""
import logging
from typing import Callable, List, Optional

from notesync.config import NoteSyncConfig
from notesync.config import config as default_config
from notesync.editor.autosave import AutosaveScheduler
from notesync.editor.buffer import EditorBuffer
from notesync.editor.codec import FrontmatterCodec, NoteCodec
from notesync.editor.reconciler import FrameScheduler, NoteReconciler, ReconcileAction
from notesync.models.schema import Note
from notesync.services.notes_controller import NotesController, NotesState

logger = logging.getLogger(__name__)


class EditorSession:
    """One open editor bound to a ``NotesController``.

    Rich edits are saved 500 ms after the last keystroke, raw-source edits
    after 300 ms (both configurable). Reconciliation runs only when the
    controller presents a different note object or a new reload version.
    """

    def __init__(
        self,
        controller: NotesController,
        codec: Optional[NoteCodec] = None,
        buffer: Optional[EditorBuffer] = None,
        config: Optional[NoteSyncConfig] = None,
        schedule_frame: Optional[FrameScheduler] = None,
    ):
        cfg = config or default_config
        self.controller = controller
        self.codec = codec or FrontmatterCodec()
        self.buffer = buffer or EditorBuffer()
        self.rich_autosave = AutosaveScheduler(
            self._persist,
            self._serialize_doc,
            self._loaded_note_id,
            cfg.seconds(cfg.rich_save_delay_ms),
            name="rich",
        )
        self.source_autosave = AutosaveScheduler(
            self._persist,
            lambda: self.buffer.source_text,
            self._loaded_note_id,
            cfg.seconds(cfg.source_save_delay_ms),
            name="source",
        )
        self.reconciler = NoteReconciler(
            self.buffer,
            self.codec,
            [self.rich_autosave, self.source_autosave],
            schedule_frame=schedule_frame,
        )
        self.last_action = ReconcileAction.IDLE
        self._saving = 0
        self._seen_note: Optional[Note] = None
        self._seen_version = controller.state.reload_version
        self._unsubscribe: List[Callable[[], None]] = [
            controller.subscribe(self._on_state),
            self.buffer.on_edit(self._on_edit),
            self.buffer.on_source_edit(self._on_source_edit),
        ]
        self._on_state(controller.state)

    @property
    def loaded_note_id(self) -> Optional[str]:
        return self.reconciler.loaded_note_id

    @property
    def is_saving(self) -> bool:
        return self._saving > 0

    def _loaded_note_id(self) -> Optional[str]:
        return self.reconciler.loaded_note_id

    def _serialize_doc(self) -> str:
        return self.codec.serialize(self.buffer.doc)

    def _on_state(self, state: NotesState) -> None:
        note = state.current_note
        if note is self._seen_note and state.reload_version == self._seen_version:
            return
        self._seen_note = note
        self._seen_version = state.reload_version
        is_new = note is not None and note.id == state.created_note_id
        self.last_action = self.reconciler.reconcile(
            note, state.reload_version, is_new=is_new
        )

    def _on_edit(self, doc: object) -> None:
        self.rich_autosave.mark_dirty(self.reconciler.loaded_note_id)

    def _on_source_edit(self, text: str) -> None:
        self.source_autosave.mark_dirty(self.reconciler.loaded_note_id)

    async def _persist(self, note_id: str, content: str) -> Optional[Note]:
        self.reconciler.record_save(note_id, content)
        self._saving += 1
        try:
            return await self.controller.save_note(content, note_id)
        finally:
            self._saving -= 1

    def toggle_source_mode(self) -> None:
        """Switch between the document view and the raw markdown view.

        Pending edits of the view being left are flushed first.
        """
        if not self.buffer.source_mode:
            self.rich_autosave.flush()
            self.buffer.enter_source_mode(self._serialize_doc())
        else:
            self.source_autosave.flush()
            self.buffer.exit_source_mode(self.reconciler.to_doc(self.buffer.source_text))

    def flush(self) -> None:
        """Start writing every pending edit now."""
        self.rich_autosave.flush()
        self.source_autosave.flush()

    async def close(self) -> None:
        """Flush, wait for writes, and detach from the controller."""
        self.flush()
        await self.rich_autosave.drain()
        await self.source_autosave.drain()
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe.clear()
        logger.debug("Editor session closed")
