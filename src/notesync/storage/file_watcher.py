"""File watcher reporting changes to notes made outside this process.

Uses watchdog to monitor the notes folder recursively. Every markdown
event becomes a ``FileChangeEvent`` carrying the single changed note id;
events for the same path are debounced on the leading edge so editors
that write in several steps produce one notification. The search index
is kept current for external edits before the event is emitted.
"""
import asyncio
import logging
import os
import threading
import time
from typing import Callable, Dict, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from notesync.exceptions import NoteNotFoundError, NoteSyncError
from notesync.models.schema import ChangeKind, FileChangeEvent
from notesync.storage.note_repository import NoteRepository

logger = logging.getLogger(__name__)

# Debounce map housekeeping
DEBOUNCE_MAP_PRUNE_SIZE = 100
DEBOUNCE_ENTRY_MAX_AGE = 5.0

Emitter = Callable[[FileChangeEvent], None]


def asyncio_emitter(loop: asyncio.AbstractEventLoop, queue: "asyncio.Queue[FileChangeEvent]") -> Emitter:
    """Build an emitter that hands events from the observer thread to ``queue``."""

    def emit(event: FileChangeEvent) -> None:
        try:
            loop.call_soon_threadsafe(queue.put_nowait, event)
        except RuntimeError:
            # Loop already closed during shutdown
            logger.debug(f"Dropping file change after loop close: {event.path}")

    return emit


class NoteEventHandler(FileSystemEventHandler):
    """Translates watchdog events into note change events."""

    def __init__(
        self,
        repository: NoteRepository,
        emit: Emitter,
        debounce: float = 0.5,
        update_index: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ):
        super().__init__()
        self.repository = repository
        self._emit = emit
        self._debounce = debounce
        self._update_index = update_index
        self._clock = clock
        self._last_seen: Dict[str, float] = {}
        self._lock = threading.Lock()

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._handle(os.fsdecode(event.src_path), ChangeKind.CREATED)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._handle(os.fsdecode(event.src_path), ChangeKind.MODIFIED)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._handle(os.fsdecode(event.src_path), ChangeKind.DELETED)

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._handle(os.fsdecode(event.src_path), ChangeKind.DELETED)
        self._handle(os.fsdecode(event.dest_path), ChangeKind.CREATED)

    def _debounced(self, path: str) -> bool:
        """True when ``path`` fired within the debounce window."""
        with self._lock:
            now = self._clock()
            if len(self._last_seen) > DEBOUNCE_MAP_PRUNE_SIZE:
                self._last_seen = {
                    p: seen
                    for p, seen in self._last_seen.items()
                    if now - seen < DEBOUNCE_ENTRY_MAX_AGE
                }
            last = self._last_seen.get(path)
            if last is not None and now - last < self._debounce:
                return True
            self._last_seen[path] = now
            return False

    def _handle(self, path: str, kind: ChangeKind) -> None:
        note_id = self.repository.id_for_path(path)
        if note_id is None or self._debounced(path):
            return

        # A "modified" event for a file that is gone is really a delete
        if kind is ChangeKind.MODIFIED and not os.path.exists(path):
            kind = ChangeKind.DELETED

        if self._update_index:
            self._sync_index(note_id, kind)

        logger.debug(f"File {kind.value}: {note_id}")
        try:
            self._emit(FileChangeEvent(changed_ids=[note_id], kind=kind, path=path))
        except Exception:
            logger.exception(f"Failed to deliver file change for {note_id}")

    def _sync_index(self, note_id: str, kind: ChangeKind) -> None:
        index = self.repository.index
        if index is None:
            return
        try:
            if kind is ChangeKind.DELETED:
                index.delete_note(note_id)
                return
            try:
                index.index_note(self.repository.read(note_id))
            except NoteNotFoundError:
                index.delete_note(note_id)
        except NoteSyncError as e:
            logger.warning(f"Index update failed for external change {note_id}: {e}")


class NoteFileWatcher:
    """Owns the watchdog observer for one notes folder."""

    def __init__(
        self,
        repository: NoteRepository,
        emit: Emitter,
        debounce: float = 0.5,
        update_index: bool = True,
    ):
        self.repository = repository
        self.handler = NoteEventHandler(
            repository, emit, debounce=debounce, update_index=update_index
        )
        self._observer: Optional[Observer] = None

    @property
    def running(self) -> bool:
        return self._observer is not None and self._observer.is_alive()

    def start(self) -> None:
        """Start watching. Calling start on a running watcher is a no-op."""
        if self.running:
            return
        observer = Observer()
        observer.schedule(self.handler, str(self.repository.notes_dir), recursive=True)
        observer.daemon = True
        observer.start()
        self._observer = observer
        logger.info(f"Watching {self.repository.notes_dir} for note changes")

    def stop(self, timeout: float = 2.0) -> None:
        """Stop the observer thread and wait for it to exit."""
        observer = self._observer
        self._observer = None
        if observer is None:
            return
        observer.stop()
        observer.join(timeout)
        logger.info("File watcher stopped")
