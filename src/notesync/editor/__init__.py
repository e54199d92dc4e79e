"""Editor-side synchronization: buffer, autosave and reconciliation."""

from notesync.editor.autosave import AutosaveScheduler
from notesync.editor.buffer import EditorBuffer
from notesync.editor.codec import BufferDoc, FrontmatterCodec, NoteCodec, PlainTextCodec
from notesync.editor.reconciler import NoteReconciler, ReconcileAction
from notesync.editor.session import EditorSession

__all__ = [
    "AutosaveScheduler",
    "BufferDoc",
    "EditorBuffer",
    "EditorSession",
    "FrontmatterCodec",
    "NoteCodec",
    "NoteReconciler",
    "PlainTextCodec",
    "ReconcileAction",
]
