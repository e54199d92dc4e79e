"""Common test fixtures for the notesync engine."""

import pytest

from notesync.config import NoteSyncConfig
from notesync.models.db_models import init_index_db
from notesync.storage.fts_index import FtsIndex
from notesync.storage.note_repository import NoteRepository
from notesync.storage.settings_store import SettingsStore
from tests.fakes import FakeBackend, FrameQueue


@pytest.fixture(params=["asyncio"])
def anyio_backend(request):
    """Restrict anyio tests to asyncio only (trio is not installed)."""
    return request.param


@pytest.fixture
def fast_config(tmp_path):
    """Config with short debounce windows so timing tests run quickly.

    The ratios match the defaults: source < rich autosave, watcher
    debounce < recently-saved window.
    """
    return NoteSyncConfig(
        base_dir=tmp_path,
        notes_dir=tmp_path / "notes",
        in_memory_index=True,
        rich_save_delay_ms=50,
        source_save_delay_ms=30,
        recently_saved_window_ms=200,
        list_refresh_delay_ms=30,
        watcher_debounce_ms=100,
        log_dir=None,
        metrics_file=None,
    )


@pytest.fixture
def notes_dir(tmp_path):
    """Empty notes folder."""
    path = tmp_path / "notes"
    path.mkdir()
    return path


@pytest.fixture
def settings_store(notes_dir):
    return SettingsStore(notes_dir)


@pytest.fixture
def index_engine():
    """In-memory SQLite engine with the index schema."""
    engine = init_index_db("sqlite://")
    yield engine
    engine.dispose()


@pytest.fixture
def fts_index(index_engine):
    return FtsIndex(index_engine)


@pytest.fixture
def note_repository(notes_dir, settings_store, fts_index):
    """Repository over a temporary folder with a live search index."""
    return NoteRepository(notes_dir, settings_store, fts_index)


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def frames():
    """Manually drained replacement for the next-frame scheduler."""
    return FrameQueue()
