"""Configuration module for the notesync engine."""

import logging
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, model_validator

from notesync import __version__

# Load environment variables from the project root .env file.
# Anchored to __file__ so it works regardless of the process CWD.
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")

# User-level config lives next to the logs and metrics
_USER_ENV = Path.home() / ".notesync" / ".env"
load_dotenv(_USER_ENV)


logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    """Read an integer environment variable, falling back to ``default``."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer value %r for %s", raw, name)
        return default


class NoteSyncConfig(BaseModel):
    """Configuration for the note synchronization engine."""

    # Base directory for relative paths
    base_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("NOTESYNC_BASE_DIR", "."))
    )
    # Folder holding the markdown notes
    notes_dir: Path = Field(
        default_factory=lambda: Path(os.getenv("NOTESYNC_NOTES_DIR", "notes"))
    )
    # Per-folder hidden directory for settings.json (pins, note name template)
    settings_dir_name: str = Field(
        default_factory=lambda: os.getenv("NOTESYNC_SETTINGS_DIR_NAME", ".scratch")
    )
    # Search index configuration
    # When True the SQLite index lives in memory and is rebuilt from the
    # markdown files on startup (the files are always the source of truth).
    in_memory_index: bool = Field(
        default_factory=lambda: os.getenv("NOTESYNC_IN_MEMORY_INDEX", "true").lower()
        in ("true", "1", "yes")
    )
    index_path: Path = Field(
        default_factory=lambda: Path(
            os.getenv("NOTESYNC_INDEX_PATH", "data/index/search.db")
        )
    )
    # Autosave debounce for rich buffer edits and for raw-source edits
    rich_save_delay_ms: int = Field(
        default_factory=lambda: _env_int("NOTESYNC_RICH_SAVE_DELAY_MS", 500)
    )
    source_save_delay_ms: int = Field(
        default_factory=lambda: _env_int("NOTESYNC_SOURCE_SAVE_DELAY_MS", 300)
    )
    # How long an id stays "just written by us". Must exceed the watcher debounce.
    recently_saved_window_ms: int = Field(
        default_factory=lambda: _env_int("NOTESYNC_RECENTLY_SAVED_WINDOW_MS", 1000)
    )
    # Coalescing window for list refreshes triggered by saves
    list_refresh_delay_ms: int = Field(
        default_factory=lambda: _env_int("NOTESYNC_LIST_REFRESH_DELAY_MS", 300)
    )
    # Per-path debounce applied by the file watcher
    watcher_debounce_ms: int = Field(
        default_factory=lambda: _env_int("NOTESYNC_WATCHER_DEBOUNCE_MS", 500)
    )
    # Search limits
    instant_search_limit: int = Field(
        default_factory=lambda: _env_int("NOTESYNC_INSTANT_SEARCH_LIMIT", 20)
    )
    search_limit: int = Field(
        default_factory=lambda: _env_int("NOTESYNC_SEARCH_LIMIT", 20)
    )
    # Fallback note name template when settings.json has none
    default_note_name: str = Field(
        default_factory=lambda: os.getenv("NOTESYNC_DEFAULT_NOTE_NAME", "Untitled")
    )
    # Observability
    log_dir: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("NOTESYNC_LOG_DIR")) if os.getenv("NOTESYNC_LOG_DIR") else None
        )
    )
    metrics_file: Optional[Path] = Field(
        default_factory=lambda: (
            Path(os.getenv("NOTESYNC_METRICS_FILE"))
            if os.getenv("NOTESYNC_METRICS_FILE")
            else None
        )
    )
    version: str = Field(default=__version__)

    @model_validator(mode="after")
    def _validate_timings(self) -> "NoteSyncConfig":
        """Validate debounce windows and limits."""
        for name in (
            "rich_save_delay_ms",
            "source_save_delay_ms",
            "list_refresh_delay_ms",
            "watcher_debounce_ms",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")
        if self.recently_saved_window_ms <= self.watcher_debounce_ms:
            raise ValueError(
                "recently_saved_window_ms must exceed watcher_debounce_ms, "
                "otherwise the watcher echo of our own writes looks external"
            )
        if self.instant_search_limit < 1 or self.search_limit < 1:
            raise ValueError("search limits must be >= 1")
        return self

    def get_absolute_path(self, path: Path) -> Path:
        """Convert a relative path to an absolute path based on base_dir."""
        if path.is_absolute():
            return path
        return self.base_dir / path

    def get_index_url(self) -> str:
        """Get the SQLAlchemy URL for the search index."""
        if self.in_memory_index:
            return "sqlite://"
        index_path = self.get_absolute_path(self.index_path)
        index_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{index_path}"

    @staticmethod
    def seconds(milliseconds: int) -> float:
        """Convert a millisecond setting into the seconds asyncio expects."""
        return milliseconds / 1000.0


# Create a global config instance
config = NoteSyncConfig()
