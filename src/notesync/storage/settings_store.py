"""Per-folder settings persistence.

Settings live in ``<notes folder>/<settings dir>/settings.json`` with the
camelCase keys other tools expect. Unknown keys are preserved so that a
save from this engine never drops fields written by someone else.
"""
import json
import logging
import threading
from pathlib import Path
from typing import Union

from pydantic import ValidationError as PydanticValidationError

from notesync.exceptions import ErrorCode, StorageError
from notesync.models.schema import Settings

logger = logging.getLogger(__name__)

SETTINGS_FILE_NAME = "settings.json"


class SettingsStore:
    """Reads and writes the settings record of one notes folder."""

    def __init__(self, notes_dir: Union[str, Path], dir_name: str = ".scratch"):
        self.notes_dir = Path(notes_dir)
        self.dir_name = dir_name
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        """Absolute path of the settings file."""
        return self.notes_dir / self.dir_name / SETTINGS_FILE_NAME

    def load(self) -> Settings:
        """Load settings, returning defaults when the file is missing or invalid."""
        with self._lock:
            if not self.path.exists():
                return Settings()
            try:
                raw = self.path.read_text(encoding="utf-8")
                data = json.loads(raw) if raw.strip() else {}
                if not isinstance(data, dict):
                    raise ValueError("settings root must be a JSON object")
                return Settings.model_validate(data)
            except (OSError, ValueError, PydanticValidationError) as e:
                logger.warning(f"Ignoring unreadable settings file {self.path}: {e}")
                return Settings()

    def save(self, settings: Settings) -> None:
        """Write settings as pretty-printed JSON.

        Raises:
            StorageError: If the file cannot be written.
        """
        payload = settings.model_dump(by_alias=True, exclude_none=True)
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                temp_file = self.path.with_suffix(".tmp")
                temp_file.write_text(
                    json.dumps(payload, indent=2, ensure_ascii=False),
                    encoding="utf-8",
                )
                temp_file.replace(self.path)
            except OSError as e:
                raise StorageError(
                    f"Failed to write settings: {e}",
                    operation="save_settings",
                    path=str(self.path),
                    code=ErrorCode.SETTINGS_WRITE_FAILED,
                    original_error=e,
                ) from e
        logger.debug(f"Saved settings to {self.path}")
