"""Tests for the notes state controller."""
import asyncio

import pytest

from notesync.exceptions import NoteNotFoundError
from notesync.models.schema import ChangeKind, FileChangeEvent, SearchResult, Settings
from notesync.services.notes_controller import NotesController, describe_error


async def settle(rounds: int = 5) -> None:
    """Let every ready task run until it blocks."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def controller(fake_backend, fast_config):
    return NotesController(fake_backend, fast_config, notes_folder="/notes")


@pytest.fixture
def window(fast_config):
    """Seconds until a recently-saved mark is released, plus slack."""
    return fast_config.seconds(fast_config.recently_saved_window_ms) * 2


@pytest.fixture
def refresh_delay(fast_config):
    return fast_config.seconds(fast_config.list_refresh_delay_ms) * 3


class TestObservation:
    """Listeners and errors."""

    def test_initial_state(self, controller):
        assert controller.state.is_loading is True
        assert controller.state.notes_folder == "/notes"
        assert controller.state.reload_version == 0

    @pytest.mark.anyio
    async def test_listeners_see_every_update(self, controller, fake_backend):
        fake_backend.add_note("Alpha")
        seen = []
        unsubscribe = controller.subscribe(lambda s: seen.append(s.is_loading))
        await controller.initialize()
        assert seen[-1] is False
        count = len(seen)
        unsubscribe()
        await controller.refresh_notes()
        assert len(seen) == count

    @pytest.mark.anyio
    async def test_failing_listener_does_not_break_updates(self, controller, fake_backend):
        fake_backend.add_note("Alpha")

        def broken(state):
            raise RuntimeError("listener bug")

        controller.subscribe(broken)
        await controller.initialize()
        assert [n.id for n in controller.state.notes] == ["Alpha"]

    @pytest.mark.anyio
    async def test_initialize_failure(self, controller, fake_backend):
        fake_backend.fail("list_notes")
        await controller.initialize()
        assert controller.state.is_loading is False
        assert controller.state.error.startswith("Failed to initialize")
        controller.dismiss_error()
        assert controller.state.error is None

    def test_describe_error(self):
        assert describe_error(NoteNotFoundError("x")) == "Note 'x' not found"
        assert describe_error(ValueError()) == "ValueError"


class TestSelection:
    """Selecting and reloading notes."""

    @pytest.mark.anyio
    async def test_select_loads_note(self, controller, fake_backend):
        fake_backend.add_note("Alpha")
        await controller.select_note("Alpha")
        assert controller.state.selected_note_id == "Alpha"
        assert controller.state.current_note.id == "Alpha"

    @pytest.mark.anyio
    async def test_selection_is_optimistic(self, controller, fake_backend):
        fake_backend.add_note("Alpha")
        gate = fake_backend.gate("read_note:Alpha")
        task = asyncio.get_running_loop().create_task(controller.select_note("Alpha"))
        await settle()
        assert controller.state.selected_note_id == "Alpha"
        assert controller.state.current_note is None
        gate.set()
        await task
        assert controller.state.current_note.id == "Alpha"

    @pytest.mark.anyio
    async def test_select_clears_external_flag(self, controller, fake_backend):
        fake_backend.add_note("Alpha")
        fake_backend.add_note("Beta")
        await controller.select_note("Alpha")
        await controller.handle_external_changes(["Alpha"])
        assert controller.state.has_external_changes is True
        await controller.select_note("Beta")
        assert controller.state.has_external_changes is False

    @pytest.mark.anyio
    async def test_failed_read_keeps_current_note(self, controller, fake_backend):
        fake_backend.add_note("Alpha")
        await controller.select_note("Alpha")
        await controller.select_note("Missing")
        assert controller.state.current_note.id == "Alpha"
        assert controller.state.selected_note_id == "Alpha"
        assert "not found" in controller.state.error

    @pytest.mark.anyio
    async def test_stale_read_is_dropped(self, controller, fake_backend):
        fake_backend.add_note("Alpha")
        fake_backend.add_note("Beta")
        gate = fake_backend.gate("read_note:Alpha")
        slow = asyncio.get_running_loop().create_task(controller.select_note("Alpha"))
        await settle()
        await controller.select_note("Beta")
        gate.set()
        await slow
        assert controller.state.selected_note_id == "Beta"
        assert controller.state.current_note.id == "Beta"

    @pytest.mark.anyio
    async def test_reload_bumps_version(self, controller, fake_backend):
        fake_backend.add_note("Alpha")
        await controller.select_note("Alpha")
        fake_backend.add_note("Alpha", "# Alpha\n\nchanged elsewhere")
        await controller.handle_external_changes(["Alpha"])
        await controller.reload_current_note()
        assert controller.state.reload_version == 1
        assert controller.state.has_external_changes is False
        assert controller.state.current_note.content == "# Alpha\n\nchanged elsewhere"

    @pytest.mark.anyio
    async def test_reload_without_selection_is_noop(self, controller):
        await controller.reload_current_note()
        assert controller.state.reload_version == 0


class TestSave:
    """save_note bookkeeping."""

    @pytest.mark.anyio
    async def test_marked_before_write_and_released_after_window(
        self, controller, fake_backend, window
    ):
        fake_backend.add_note("Alpha")
        await controller.select_note("Alpha")
        gate = fake_backend.gate("save_note")
        task = asyncio.get_running_loop().create_task(
            controller.save_note("# Alpha\n\nedited")
        )
        await settle()
        assert "Alpha" in controller.recently_saved
        gate.set()
        saved = await task
        assert saved.id == "Alpha"
        assert "Alpha" in controller.recently_saved
        await asyncio.sleep(window)
        assert "Alpha" not in controller.recently_saved
        await controller.aclose()

    @pytest.mark.anyio
    async def test_save_updates_current_note(self, controller, fake_backend):
        fake_backend.add_note("Alpha")
        await controller.select_note("Alpha")
        await controller.save_note("# Alpha\n\nedited")
        assert controller.state.current_note.content == "# Alpha\n\nedited"
        assert fake_backend.saves == [("Alpha", "# Alpha\n\nedited")]
        await controller.aclose()

    @pytest.mark.anyio
    async def test_failed_save_releases_mark_immediately(self, controller, fake_backend):
        fake_backend.add_note("Alpha")
        await controller.select_note("Alpha")
        fake_backend.fail("save_note")
        assert await controller.save_note("# Alpha\n\nlost?") is None
        assert "Alpha" not in controller.recently_saved
        assert controller.state.error.startswith("Failed to save note")
        assert controller.state.current_note.content != "# Alpha\n\nlost?"

    @pytest.mark.anyio
    async def test_save_without_target_is_noop(self, controller, fake_backend):
        assert await controller.save_note("text") is None
        assert fake_backend.saves == []

    @pytest.mark.anyio
    async def test_rename_moves_selection_marks_and_pin(
        self, controller, fake_backend, window
    ):
        fake_backend.add_note("Untitled", "# Untitled\n\n")
        fake_backend.settings = Settings(pinned_note_ids=["Other", "Untitled"])
        await controller.select_note("Untitled")
        saved = await controller.save_note("# Hello\n\n")
        assert saved.id == "Hello"
        assert controller.state.selected_note_id == "Hello"
        assert controller.state.current_note.id == "Hello"
        assert controller.recently_saved.ids == {"Untitled", "Hello"}
        assert fake_backend.settings.pinned == ["Other", "Hello"]
        await asyncio.sleep(window)
        assert len(controller.recently_saved) == 0
        await controller.aclose()

    @pytest.mark.anyio
    async def test_pin_transfer_failure_does_not_fail_save(self, controller, fake_backend):
        fake_backend.add_note("Untitled", "# Untitled\n\n")
        await controller.select_note("Untitled")
        fake_backend.fail("get_settings")
        saved = await controller.save_note("# Hello\n\n")
        assert saved.id == "Hello"
        assert controller.state.selected_note_id == "Hello"
        assert controller.state.error is None
        await controller.aclose()

    @pytest.mark.anyio
    async def test_save_for_unselected_note_keeps_selection(self, controller, fake_backend):
        fake_backend.add_note("Alpha")
        fake_backend.add_note("Beta")
        await controller.select_note("Beta")
        await controller.save_note("# Alpha\n\nflushed late", note_id="Alpha")
        assert controller.state.selected_note_id == "Beta"
        assert controller.state.current_note.id == "Beta"
        assert fake_backend.notes["Alpha"].content == "# Alpha\n\nflushed late"
        await controller.aclose()

    @pytest.mark.anyio
    async def test_switch_during_save_keeps_new_selection(self, controller, fake_backend):
        fake_backend.add_note("Alpha")
        fake_backend.add_note("Beta")
        await controller.select_note("Alpha")
        gate = fake_backend.gate("save_note")
        task = asyncio.get_running_loop().create_task(
            controller.save_note("# Alpha\n\nslow write")
        )
        await settle()
        await controller.select_note("Beta")
        gate.set()
        await task
        assert controller.state.current_note.id == "Beta"
        assert controller.state.selected_note_id == "Beta"
        await controller.aclose()

    @pytest.mark.anyio
    async def test_save_clears_external_flag(self, controller, fake_backend):
        fake_backend.add_note("Alpha")
        await controller.select_note("Alpha")
        await controller.handle_external_changes(["Alpha"])
        await controller.save_note("# Alpha\n\nmine wins")
        assert controller.state.has_external_changes is False
        await controller.aclose()

    @pytest.mark.anyio
    async def test_burst_of_saves_refreshes_once(
        self, controller, fake_backend, refresh_delay
    ):
        fake_backend.add_note("Alpha")
        await controller.select_note("Alpha")
        for i in range(3):
            await controller.save_note(f"# Alpha\n\nedit {i}")
        assert controller.refresh_pending
        assert fake_backend.calls_of("list_notes") == []
        await asyncio.sleep(refresh_delay)
        assert len(fake_backend.calls_of("list_notes")) == 1
        assert controller.state.notes[0].preview == "edit 2"
        await controller.aclose()


class TestMutations:
    """Create, delete, duplicate, pin."""

    @pytest.mark.anyio
    async def test_create_selects_new_note(self, controller, fake_backend):
        controller.state.search_query = "old"
        await controller.create_note()
        state = controller.state
        assert state.selected_note_id == "Untitled"
        assert state.created_note_id == "Untitled"
        assert state.current_note.content == "# Untitled\n\n"
        assert state.search_query == ""
        assert [n.id for n in state.notes] == ["Untitled"]
        assert "Untitled" in controller.recently_saved
        await controller.aclose()

    @pytest.mark.anyio
    async def test_selecting_another_note_forgets_created(self, controller, fake_backend):
        fake_backend.add_note("Alpha")
        await controller.create_note()
        await controller.select_note("Alpha")
        assert controller.state.created_note_id is None
        await controller.aclose()

    @pytest.mark.anyio
    async def test_create_failure(self, controller, fake_backend):
        fake_backend.fail("create_note")
        await controller.create_note()
        assert controller.state.error.startswith("Failed to create note")
        assert controller.state.selected_note_id is None

    @pytest.mark.anyio
    async def test_delete_selected(self, controller, fake_backend):
        fake_backend.add_note("Alpha")
        fake_backend.settings = Settings(pinned_note_ids=["Alpha"])
        await controller.select_note("Alpha")
        await controller.delete_note("Alpha")
        assert controller.state.selected_note_id is None
        assert controller.state.current_note is None
        assert controller.state.notes == []
        assert fake_backend.settings.pinned == []
        assert "Alpha" in controller.recently_saved
        await controller.aclose()

    @pytest.mark.anyio
    async def test_delete_other_keeps_selection(self, controller, fake_backend):
        fake_backend.add_note("Alpha")
        fake_backend.add_note("Beta")
        await controller.select_note("Beta")
        await controller.delete_note("Alpha")
        assert controller.state.selected_note_id == "Beta"
        assert [n.id for n in controller.state.notes] == ["Beta"]
        await controller.aclose()

    @pytest.mark.anyio
    async def test_delete_unpin_failure_still_deletes(self, controller, fake_backend):
        fake_backend.add_note("Alpha")
        fake_backend.fail("get_settings")
        await controller.delete_note("Alpha")
        assert "Alpha" not in fake_backend.notes
        assert controller.state.error is None
        await controller.aclose()

    @pytest.mark.anyio
    async def test_delete_failure(self, controller, fake_backend):
        fake_backend.add_note("Alpha")
        fake_backend.fail("delete_note")
        await controller.delete_note("Alpha")
        assert "Alpha" not in controller.recently_saved
        assert controller.state.error.startswith("Failed to delete note")

    @pytest.mark.anyio
    async def test_duplicate(self, controller, fake_backend):
        fake_backend.add_note("Alpha")
        await controller.duplicate_note("Alpha")
        assert controller.state.selected_note_id == "Alpha-1"
        assert controller.state.current_note.content == fake_backend.notes["Alpha"].content
        assert {n.id for n in controller.state.notes} == {"Alpha", "Alpha-1"}
        await controller.aclose()

    @pytest.mark.anyio
    async def test_pin_and_unpin(self, controller, fake_backend):
        fake_backend.add_note("Old")
        fake_backend.add_note("New")
        await controller.initialize()
        assert [n.id for n in controller.state.notes] == ["New", "Old"]
        await controller.pin_note("Old")
        await controller.pin_note("Old")
        assert fake_backend.settings.pinned == ["Old"]
        assert [n.id for n in controller.state.notes] == ["Old", "New"]
        await controller.unpin_note("Old")
        assert [n.id for n in controller.state.notes] == ["New", "Old"]

    @pytest.mark.anyio
    async def test_pin_failure(self, controller, fake_backend):
        fake_backend.fail("update_settings")
        await controller.pin_note("Alpha")
        assert controller.state.error.startswith("Failed to pin note")


class TestSearch:
    """Two-tier search with stale-response suppression."""

    @staticmethod
    async def load(controller, fake_backend):
        fake_backend.add_note("Apple pie")
        fake_backend.add_note("Groceries", "# Groceries\n\nBuy apples")
        fake_backend.add_note("Taxes")
        await controller.initialize()
        return controller

    @pytest.mark.anyio
    async def test_blank_query_clears_synchronously(self, controller, fake_backend):
        loaded = await self.load(controller, fake_backend)
        loaded.state.search_results = [SearchResult(id="x", title="x")]
        await loaded.search("   ")
        assert loaded.state.search_results == []
        assert loaded.state.is_searching is False
        assert fake_backend.calls_of("search_notes") == []

    @pytest.mark.anyio
    async def test_instant_then_merged(self, controller, fake_backend):
        loaded = await self.load(controller, fake_backend)
        fake_backend.search_results["apple"] = [
            SearchResult(id="Apple pie", title="Apple pie", score=4.0),
            SearchResult(id="Recipes", title="Recipes", score=2.0),
        ]
        gate = fake_backend.gate("search_notes")
        task = asyncio.get_running_loop().create_task(loaded.search("apple"))
        await settle()
        assert loaded.state.is_searching is True
        assert {r.id for r in loaded.state.search_results} == {"Apple pie", "Groceries"}
        assert all(r.score == 0 for r in loaded.state.search_results)
        gate.set()
        await task
        assert [r.id for r in loaded.state.search_results] == ["Apple pie", "Recipes", "Groceries"]
        assert loaded.state.is_searching is False

    @pytest.mark.anyio
    async def test_slow_response_does_not_overwrite_newer(self, controller, fake_backend):
        loaded = await self.load(controller, fake_backend)
        fake_backend.search_results["abc"] = [SearchResult(id="Old", title="Old", score=1.0)]
        fake_backend.search_results["abcd"] = [SearchResult(id="New", title="New", score=1.0)]
        gate = fake_backend.gate("search_notes:abc")
        slow = asyncio.get_running_loop().create_task(loaded.search("abc"))
        await settle()
        await loaded.search("abcd")
        gate.set()
        await slow
        assert [r.id for r in loaded.state.search_results] == ["New"]
        assert loaded.state.search_query == "abcd"
        assert loaded.state.is_searching is False

    @pytest.mark.anyio
    async def test_clear_search_drops_in_flight_response(self, controller, fake_backend):
        loaded = await self.load(controller, fake_backend)
        fake_backend.search_results["tax"] = [SearchResult(id="Taxes", title="Taxes", score=1.0)]
        gate = fake_backend.gate("search_notes")
        task = asyncio.get_running_loop().create_task(loaded.search("tax"))
        await settle()
        loaded.clear_search()
        gate.set()
        await task
        assert loaded.state.search_results == []
        assert loaded.state.search_query == ""
        assert loaded.state.is_searching is False

    @pytest.mark.anyio
    async def test_search_failure_keeps_instant_results(self, controller, fake_backend):
        loaded = await self.load(controller, fake_backend)
        fake_backend.fail("search_notes")
        await loaded.search("taxes")
        assert [r.id for r in loaded.state.search_results] == ["Taxes"]
        assert loaded.state.is_searching is False


class TestExternalChanges:
    """Self-echo suppression and the external-change flag."""

    @pytest.mark.anyio
    async def test_change_to_other_note_only_refreshes(self, controller, fake_backend):
        fake_backend.add_note("Alpha")
        await controller.select_note("Alpha")
        fake_backend.add_note("Beta")
        await controller.handle_external_changes(["Beta"])
        assert controller.state.has_external_changes is False
        assert {n.id for n in controller.state.notes} == {"Alpha", "Beta"}

    @pytest.mark.anyio
    async def test_self_echo_never_sets_flag(self, controller, fake_backend):
        fake_backend.add_note("Alpha")
        await controller.select_note("Alpha")
        await controller.save_note("# Alpha\n\nmine")
        external = await controller.process_file_change(
            FileChangeEvent(["Alpha"], ChangeKind.MODIFIED)
        )
        assert external == []
        assert controller.state.has_external_changes is False
        await controller.aclose()

    @pytest.mark.anyio
    async def test_change_after_window_sets_flag_without_replacing(
        self, controller, fake_backend, window
    ):
        fake_backend.add_note("Alpha")
        await controller.select_note("Alpha")
        await controller.save_note("# Alpha\n\nmine")
        await asyncio.sleep(window)
        fake_backend.add_note("Alpha", "# Alpha\n\ntheirs")
        external = await controller.process_file_change(
            FileChangeEvent(["Alpha"], ChangeKind.MODIFIED)
        )
        assert external == ["Alpha"]
        assert controller.state.has_external_changes is True
        assert controller.state.current_note.content == "# Alpha\n\nmine"
        await controller.aclose()

    @pytest.mark.anyio
    async def test_empty_change_is_ignored(self, controller, fake_backend):
        await controller.handle_external_changes([])
        assert fake_backend.calls_of("list_notes") == []


class TestLifecycle:
    """Shutdown."""

    @pytest.mark.anyio
    async def test_aclose_cancels_pending_refresh(self, controller, fake_backend, refresh_delay):
        fake_backend.add_note("Alpha")
        await controller.select_note("Alpha")
        await controller.save_note("# Alpha\n\nx")
        assert controller.refresh_pending
        await controller.aclose()
        assert not controller.refresh_pending
        await asyncio.sleep(refresh_delay)
        assert fake_backend.calls_of("list_notes") == []
        assert len(controller.recently_saved) == 0
