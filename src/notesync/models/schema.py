"""Data models for the notesync engine."""

import time
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def validate_note_id(value: str, field_name: str = "Note ID") -> str:
    """Validate that a note id is a safe relative path inside the notes folder.

    Note ids are POSIX-style relative paths without the ``.md`` suffix
    (``"Ideas"``, ``"work/Standup"``). Rejects:
    - empty ids
    - backslashes
    - absolute paths
    - ``.`` and ``..`` segments (path traversal)
    - empty segments (leading/trailing/double slashes)

    Args:
        value: The id to validate
        field_name: Name of the field for error messages

    Returns:
        The validated value (unchanged)

    Raises:
        ValueError: If the id is unsafe
    """
    if not value:
        raise ValueError(f"{field_name} cannot be empty")

    if "\\" in value:
        raise ValueError(f"{field_name} cannot contain backslashes")

    if value.startswith("/"):
        raise ValueError(f"{field_name} cannot be an absolute path")

    for segment in value.split("/"):
        if segment in ("", ".", ".."):
            raise ValueError(
                f"{field_name} cannot contain empty, '.' or '..' segments"
            )

    return value


def epoch_seconds() -> int:
    """Current wall-clock time as whole seconds since the epoch."""
    return int(time.time())


class NoteMetadata(BaseModel):
    """Lightweight description of a note for list rendering."""

    id: str = Field(..., description="Relative path of the note without .md")
    title: str = Field(..., description="Display title extracted from content")
    preview: str = Field(default="", description="First body line, markdown stripped")
    modified: int = Field(default=0, description="Modification time (epoch seconds)")

    model_config = ConfigDict(frozen=True)


class Note(BaseModel):
    """A single note as loaded into the editing buffer."""

    id: str = Field(..., description="Relative path of the note without .md")
    title: str = Field(..., description="Display title extracted from content")
    content: str = Field(default="", description="Canonical markdown text")
    path: str = Field(default="", description="Absolute path of the markdown file")
    modified: int = Field(default=0, description="Modification time (epoch seconds)")

    model_config = ConfigDict(frozen=True)


class SearchResult(BaseModel):
    """A search hit. ``score == 0`` marks a provisional local (instant) match."""

    id: str
    title: str
    preview: str = ""
    modified: int = 0
    score: float = 0.0

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_metadata(cls, note: NoteMetadata, score: float = 0.0) -> "SearchResult":
        """Build a search result from list metadata."""
        return cls(
            id=note.id,
            title=note.title,
            preview=note.preview,
            modified=note.modified,
            score=score,
        )


class Settings(BaseModel):
    """Per-folder settings stored in ``<notes>/.scratch/settings.json``.

    Only the fields the engine reads are typed; everything else a UI
    writes (theme, fonts, ...) is preserved as extra fields.
    """

    pinned_note_ids: Optional[List[str]] = Field(default=None, alias="pinnedNoteIds")
    default_note_name: Optional[str] = Field(default=None, alias="defaultNoteName")
    git_enabled: Optional[bool] = Field(default=None, alias="gitEnabled")
    text_direction: Optional[str] = Field(default=None, alias="textDirection")
    editor_width: Optional[str] = Field(default=None, alias="editorWidth")
    theme: Optional[Dict[str, Any]] = None
    editor_font: Optional[Dict[str, Any]] = Field(default=None, alias="editorFont")

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    @property
    def pinned(self) -> List[str]:
        """Pinned note ids, never None."""
        return list(self.pinned_note_ids or [])

    def with_pinned(self, pinned_ids: List[str]) -> "Settings":
        """Return a copy of these settings with a new pin list."""
        return self.model_copy(update={"pinned_note_ids": list(pinned_ids)})


class ChangeKind(str, Enum):
    """Kinds of file-system changes reported by the watcher."""

    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass(frozen=True)
class FileChangeEvent:
    """A file-system notification, uncorrelated with the request that caused it.

    Attributes:
        changed_ids: Note ids touched by the change.
        kind: What happened to the file.
        path: Absolute path of the changed file (informational).
    """

    changed_ids: List[str]
    kind: ChangeKind = ChangeKind.MODIFIED
    path: str = ""


@dataclass(frozen=True)
class SaveFingerprint:
    """The most recent (note id, content) pair written by this process.

    Used to tell the echo of our own id-changing save (a rename) apart
    from a genuine note switch.
    """

    note_id: str
    content: str
