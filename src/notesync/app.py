"""Application wiring for one notes folder."""
import asyncio
import logging
from pathlib import Path
from typing import Any, Optional, Union

from notesync.config import NoteSyncConfig
from notesync.config import config as default_config
from notesync.editor.codec import NoteCodec
from notesync.editor.session import EditorSession
from notesync.exceptions import ConfigurationError, ErrorCode
from notesync.models.db_models import init_index_db
from notesync.models.schema import FileChangeEvent
from notesync.services.backend import LocalNotesBackend
from notesync.services.notes_controller import NotesController
from notesync.storage.file_watcher import NoteFileWatcher, asyncio_emitter
from notesync.storage.fts_index import FtsIndex
from notesync.storage.note_repository import NoteRepository
from notesync.storage.settings_store import SettingsStore

logger = logging.getLogger(__name__)


class NoteSyncApp:
    """Store, index, controller, editor session and file watcher for a folder.

    Use ``await NoteSyncApp.open(folder)`` and ``await app.close()``, or
    ``async with await NoteSyncApp.open(folder) as app``.
    """

    def __init__(
        self,
        repository: NoteRepository,
        backend: LocalNotesBackend,
        controller: NotesController,
        session: EditorSession,
        engine: Any,
        config: NoteSyncConfig,
    ):
        self.repository = repository
        self.backend = backend
        self.controller = controller
        self.session = session
        self.engine = engine
        self.config = config
        self.events: Optional["asyncio.Queue[FileChangeEvent]"] = None
        self.watcher: Optional[NoteFileWatcher] = None
        self._detector_task: Optional[asyncio.Task] = None

    @classmethod
    async def open(
        cls,
        folder: Optional[Union[str, Path]] = None,
        config: Optional[NoteSyncConfig] = None,
        codec: Optional[NoteCodec] = None,
        watch: bool = True,
    ) -> "NoteSyncApp":
        """Open a notes folder, index it and load the note list.

        Args:
            folder: Notes folder. Defaults to the configured ``notes_dir``.
            config: Engine configuration. Defaults to the global config.
            codec: Document codec for the editor. Defaults to frontmatter.
            watch: Start the file watcher.

        Raises:
            ConfigurationError: If the notes folder path is not a directory.
        """
        cfg = config or default_config
        notes_dir = Path(folder) if folder else cfg.get_absolute_path(cfg.notes_dir)
        if notes_dir.exists() and not notes_dir.is_dir():
            raise ConfigurationError(
                f"Notes folder {notes_dir} is not a directory",
                config_key="notes_dir",
                code=ErrorCode.NOTES_FOLDER_NOT_SET,
            )

        engine = init_index_db(cfg.get_index_url())
        index = FtsIndex(engine)
        settings_store = SettingsStore(notes_dir, cfg.settings_dir_name)
        repository = NoteRepository(notes_dir, settings_store, index)
        backend = LocalNotesBackend(
            repository, index, settings_store, search_limit=cfg.search_limit
        )
        controller = NotesController(
            backend, cfg, notes_folder=str(repository.notes_dir)
        )
        session = EditorSession(controller, codec=codec, config=cfg)
        app = cls(repository, backend, controller, session, engine, cfg)

        await backend.rebuild_index()
        await controller.initialize()
        if watch:
            app.start_watching()
        logger.info(
            f"Opened {repository.notes_dir} ({len(controller.state.notes)} notes)"
        )
        return app

    def start_watching(self) -> None:
        """Start the watcher and the task feeding its events to the controller."""
        if self.watcher is not None:
            return
        loop = asyncio.get_running_loop()
        self.events = asyncio.Queue()
        self.watcher = NoteFileWatcher(
            self.repository,
            asyncio_emitter(loop, self.events),
            debounce=self.config.seconds(self.config.watcher_debounce_ms),
        )
        self.watcher.start()
        self._detector_task = loop.create_task(
            self.controller.detector.run(
                self.events, self.controller.handle_external_changes
            )
        )

    async def close(self) -> None:
        """Flush pending edits and shut everything down."""
        await self.session.close()
        if self.watcher is not None:
            await asyncio.to_thread(self.watcher.stop)
            self.watcher = None
        if self._detector_task is not None:
            self._detector_task.cancel()
            try:
                await self._detector_task
            except asyncio.CancelledError:
                pass
            self._detector_task = None
        await self.controller.aclose()
        self.engine.dispose()
        logger.info(f"Closed {self.repository.notes_dir}")

    async def __aenter__(self) -> "NoteSyncApp":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
