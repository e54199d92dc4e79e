"""Repository for note storage and retrieval.

Each note is a markdown file under the notes folder; its id is the path
relative to that folder without the ``.md`` suffix. The file name follows
the note title, so saving a note whose title changed renames the file and
returns a different id. The file system is the source of truth; the search
index is updated alongside every write and can be rebuilt at any time.
"""
import logging
import os
import threading
from pathlib import Path
from typing import Iterator, List, Optional, Set, Union

from notesync.exceptions import (
    ErrorCode,
    NoteNotFoundError,
    StorageError,
    ValidationError,
)
from notesync.models.schema import Note, NoteMetadata, validate_note_id
from notesync.storage.fts_index import FtsIndex
from notesync.storage.markdown_parser import (
    UNTITLED,
    expand_note_name_template,
    extract_title,
    generate_preview,
    sanitize_filename,
    title_from_id,
)
from notesync.storage.settings_store import SettingsStore

logger = logging.getLogger(__name__)

NOTE_SUFFIX = ".md"
ASSETS_DIR_NAME = "assets"
MAX_SCAN_DEPTH = 10


def is_excluded_dir(name: str) -> bool:
    """Directories never scanned for notes: dot-directories and ``assets``."""
    return name.startswith(".") or name == ASSETS_DIR_NAME


class NoteRepository:
    """Markdown file store for notes.

    All methods are blocking; the async backend runs them in worker
    threads. Mutations are serialized with a lock so that two concurrent
    saves can never pick the same free file name.
    """

    def __init__(
        self,
        notes_dir: Union[str, Path],
        settings_store: Optional[SettingsStore] = None,
        index: Optional[FtsIndex] = None,
    ):
        """Initialize the repository.

        Args:
            notes_dir: Folder holding the markdown notes. Created if missing.
            settings_store: Settings of the folder (pins, note name template).
                If None, a store in ``.scratch`` is used.
            index: Search index to keep current. Optional.
        """
        self.notes_dir = Path(notes_dir).expanduser().resolve()
        self.notes_dir.mkdir(parents=True, exist_ok=True)
        self.settings_store = settings_store or SettingsStore(self.notes_dir)
        self.index = index
        self.file_lock = threading.RLock()

    # ------------------------------------------------------------------
    # Id <-> path mapping
    # ------------------------------------------------------------------

    def path_for(self, note_id: str) -> Path:
        """Absolute path of the markdown file for ``note_id``.

        Raises:
            ValidationError: If the id is unsafe or escapes the notes folder.
        """
        try:
            validate_note_id(note_id)
        except ValueError as e:
            raise ValidationError(
                str(e),
                field="note_id",
                value=note_id,
                code=ErrorCode.PATH_TRAVERSAL_DETECTED,
            ) from e
        # Appending keeps dotted stems like "meeting.2024-01-15" intact
        path = self.notes_dir / (note_id + NOTE_SUFFIX)
        try:
            path.resolve().relative_to(self.notes_dir)
        except ValueError as e:
            raise ValidationError(
                "Note ID escapes the notes folder",
                field="note_id",
                value=note_id,
                code=ErrorCode.PATH_TRAVERSAL_DETECTED,
            ) from e
        return path

    def id_for_path(self, path: Union[str, Path]) -> Optional[str]:
        """Note id for an absolute file path.

        Returns None for paths outside the folder, non-markdown files and
        files inside excluded directories.
        """
        try:
            rel = Path(path).relative_to(self.notes_dir)
        except ValueError:
            return None
        if any(is_excluded_dir(part) for part in rel.parts):
            return None
        rel_str = rel.as_posix()
        if not rel_str.endswith(NOTE_SUFFIX):
            return None
        note_id = rel_str[: -len(NOTE_SUFFIX)]
        return note_id or None

    def exists(self, note_id: str) -> bool:
        """Whether a note file exists for ``note_id``."""
        return self.path_for(note_id).is_file()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def read(self, note_id: str) -> Note:
        """Read a note from disk.

        Raises:
            NoteNotFoundError: If the file does not exist.
            StorageError: If the file cannot be read.
        """
        path = self.path_for(note_id)
        if not path.is_file():
            raise NoteNotFoundError(note_id)
        try:
            with open(path, encoding="utf-8", newline="") as f:
                content = f.read()
            modified = _mtime(path)
        except FileNotFoundError as e:
            raise NoteNotFoundError(note_id) from e
        except (OSError, UnicodeDecodeError) as e:
            raise StorageError(
                f"Failed to read note '{note_id}': {e}",
                operation="read",
                path=str(path),
                code=ErrorCode.STORAGE_READ_FAILED,
                original_error=e,
            ) from e
        return Note(
            id=note_id,
            title=extract_title(content),
            content=content,
            path=str(path),
            modified=modified,
        )

    def iter_note_paths(self) -> Iterator[Path]:
        """Yield every note file, skipping excluded directories."""
        root_depth = len(self.notes_dir.parts)
        for dirpath, dirnames, filenames in os.walk(self.notes_dir):
            depth = len(Path(dirpath).parts) - root_depth
            if depth >= MAX_SCAN_DEPTH:
                dirnames[:] = []
            else:
                dirnames[:] = sorted(d for d in dirnames if not is_excluded_dir(d))
            for filename in sorted(filenames):
                if filename.endswith(NOTE_SUFFIX):
                    yield Path(dirpath) / filename

    def iter_notes(self) -> Iterator[Note]:
        """Yield every readable note. Unreadable files are logged and skipped."""
        for path in self.iter_note_paths():
            note_id = self.id_for_path(path)
            if note_id is None:
                continue
            try:
                yield self.read(note_id)
            except (NoteNotFoundError, StorageError, ValidationError) as e:
                logger.warning(f"Skipping note {path}: {e}")

    def list_notes(self, pinned: Optional[Set[str]] = None) -> List[NoteMetadata]:
        """List all notes: pinned first, then most recently modified first.

        Args:
            pinned: Pinned ids; read from settings when None.
        """
        if pinned is None:
            pinned = set(self.settings_store.load().pinned)
        notes = [
            NoteMetadata(
                id=note.id,
                title=note.title,
                preview=generate_preview(note.content),
                modified=note.modified,
            )
            for note in self.iter_notes()
        ]
        notes.sort(key=lambda n: (n.id not in pinned, -n.modified))
        return notes

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def save(self, note_id: Optional[str], content: str) -> Note:
        """Write ``content``, renaming the file when the title changed.

        The target file name is derived from the title. An existing note
        keeps its sub-folder; a new note (``note_id`` None) goes to the
        root. Collisions get ``-1``, ``-2``... suffixes. The new file is
        written before the old one is removed, so a failure never loses
        the note.

        Returns:
            The saved note. Its id differs from ``note_id`` on rename.

        Raises:
            StorageError: If the write fails.
            ValidationError: If ``note_id`` is unsafe.
        """
        title = extract_title(content)
        leaf = sanitize_filename(title)

        with self.file_lock:
            old_path: Optional[Path] = None
            if note_id is not None:
                old_path = self.path_for(note_id)
                prefix = note_id.rsplit("/", 1)[0] + "/" if "/" in note_id else ""
                final_id = self._free_id(prefix, leaf, keep=note_id)
            else:
                final_id = self._free_id("", leaf)
            path = self.path_for(final_id)

            self._write(path, content, final_id)
            renamed = note_id is not None and final_id != note_id
            if renamed and old_path is not None and old_path.exists():
                try:
                    old_path.unlink()
                except OSError as e:
                    # The new file is already written; a leftover is only clutter
                    logger.warning(f"Failed to remove renamed note {old_path}: {e}")

            note = Note(
                id=final_id,
                title=title,
                content=content,
                path=str(path),
                modified=_mtime(path),
            )
            self._index(note, removed_id=note_id if renamed else None)

        if renamed:
            logger.info(f"Renamed note {note_id} -> {final_id}")
        return note

    def create(self, template: Optional[str] = None) -> Note:
        """Create a new note named after the note name template.

        Args:
            template: Name template; defaults to the folder setting.
        """
        if template is None:
            template = self.settings_store.load().default_note_name or UNTITLED
        expanded = expand_note_name_template(template)
        segments = [sanitize_filename(s) for s in expanded.split("/") if s.strip()]
        candidate = "/".join(segments) or UNTITLED

        with self.file_lock:
            if "{counter}" in template:
                counter = 1
                final_id = candidate.replace("{counter}", str(counter))
                while self.exists(final_id):
                    counter += 1
                    final_id = candidate.replace("{counter}", str(counter))
            else:
                prefix, _, leaf = candidate.rpartition("/")
                final_id = self._free_id(prefix + "/" if prefix else "", leaf)

            display_title = title_from_id(final_id) or UNTITLED
            content = f"# {display_title}\n\n"
            path = self.path_for(final_id)
            self._write(path, content, final_id)
            note = Note(
                id=final_id,
                title=display_title,
                content=content,
                path=str(path),
                modified=_mtime(path),
            )
            self._index(note)

        logger.info(f"Created note {final_id}")
        return note

    def duplicate(self, note_id: str) -> Note:
        """Store a copy of a note under a fresh id."""
        original = self.read(note_id)
        return self.save(None, original.content)

    def delete(self, note_id: str) -> None:
        """Delete a note. Deleting a missing note is not an error.

        Raises:
            StorageError: If the file exists but cannot be removed.
        """
        path = self.path_for(note_id)
        with self.file_lock:
            try:
                path.unlink()
            except FileNotFoundError:
                logger.debug(f"Note {note_id} already gone")
            except OSError as e:
                raise StorageError(
                    f"Failed to delete note '{note_id}': {e}",
                    operation="delete",
                    path=str(path),
                    code=ErrorCode.STORAGE_DELETE_FAILED,
                    original_error=e,
                ) from e
            if self.index is not None:
                self.index.delete_note(note_id)
        logger.info(f"Deleted note {note_id}")

    def rebuild_index(self) -> int:
        """Rebuild the search index from the files on disk."""
        if self.index is None:
            return 0
        return self.index.rebuild(self.iter_notes())

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _free_id(self, prefix: str, leaf: str, keep: Optional[str] = None) -> str:
        """First id ``prefix + leaf[-n]`` not taken by another file.

        ``keep`` (the note being saved) always counts as free.
        """
        candidate = prefix + leaf
        counter = 1
        while candidate != keep and self.exists(candidate):
            candidate = f"{prefix}{leaf}-{counter}"
            counter += 1
        return candidate

    def _write(self, path: Path, content: str, note_id: str) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "w", encoding="utf-8", newline="") as f:
                f.write(content)
        except OSError as e:
            raise StorageError(
                f"Failed to write note '{note_id}': {e}",
                operation="write",
                path=str(path),
                code=ErrorCode.STORAGE_WRITE_FAILED,
                original_error=e,
            ) from e

    def _index(self, note: Note, removed_id: Optional[str] = None) -> None:
        """Mirror a write into the search index. Index failures are logged only."""
        if self.index is None:
            return
        try:
            if removed_id is not None:
                self.index.delete_note(removed_id)
            self.index.index_note(note)
        except StorageError as e:
            logger.warning(f"Search index update failed for {note.id}: {e}")


def _mtime(path: Path) -> int:
    return int(path.stat().st_mtime)
