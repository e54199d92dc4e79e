"""Self-echo suppression for file-change notifications.

Every write this process issues shows up again as a file-system event a
little later. ``RecentlySavedSet`` remembers which ids were just written;
``ExternalChangeDetector`` drops notifications for those ids and passes
the remaining (external) ones on.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Set

from notesync.models.schema import FileChangeEvent

logger = logging.getLogger(__name__)

ExternalHandler = Callable[[List[str]], Awaitable[None]]


class RecentlySavedSet:
    """Note ids considered "just written by us".

    Membership is reference counted: each ``add`` must be matched by one
    ``release``. Two overlapping saves of the same id therefore cannot
    release each other's mark early. Timed releases are loop timer
    handles and are cancelled by ``clear``.

    Must only be used from the event loop thread.
    """

    def __init__(self, window: float):
        """Initialize the set.

        Args:
            window: Seconds an id stays marked after ``release_later``.
                Must exceed the file watcher's own debounce window.
        """
        self.window = window
        self._holds: Dict[str, int] = {}
        self._timers: Set[asyncio.TimerHandle] = set()

    def __contains__(self, note_id: object) -> bool:
        return note_id in self._holds

    def __len__(self) -> int:
        return len(self._holds)

    @property
    def ids(self) -> Set[str]:
        return set(self._holds)

    def add(self, note_id: str) -> None:
        """Mark ``note_id`` until a matching ``release``."""
        self._holds[note_id] = self._holds.get(note_id, 0) + 1

    def release(self, note_id: str) -> None:
        """Drop one mark of ``note_id``. Unknown ids are ignored."""
        count = self._holds.get(note_id, 0)
        if count <= 1:
            self._holds.pop(note_id, None)
        else:
            self._holds[note_id] = count - 1

    def release_later(self, *note_ids: str) -> Optional[asyncio.TimerHandle]:
        """Release one mark of each id after the quiescence window."""
        if not note_ids:
            return None
        loop = asyncio.get_running_loop()
        handle: Optional[asyncio.TimerHandle] = None

        def fire() -> None:
            self._timers.discard(handle)
            for note_id in note_ids:
                self.release(note_id)

        handle = loop.call_later(self.window, fire)
        self._timers.add(handle)
        return handle

    def hold(self, note_id: str) -> None:
        """Mark ``note_id`` for one quiescence window."""
        self.add(note_id)
        self.release_later(note_id)

    def discard(self, note_id: str) -> None:
        """Forget every mark of ``note_id`` immediately."""
        self._holds.pop(note_id, None)

    def clear(self) -> None:
        for handle in self._timers:
            handle.cancel()
        self._timers.clear()
        self._holds.clear()


class ExternalChangeDetector:
    """Classifies file-change notifications as self-inflicted or external."""

    def __init__(self, recently_saved: RecentlySavedSet):
        self.recently_saved = recently_saved
        self.suppressed = 0

    def classify(self, changed_ids: Iterable[str]) -> List[str]:
        """Return the ids not explained by our own recent writes.

        Order is preserved and duplicates removed.
        """
        external: List[str] = []
        for note_id in changed_ids:
            if note_id in self.recently_saved:
                self.suppressed += 1
                logger.debug(f"Ignoring self-echo for {note_id}")
                continue
            if note_id not in external:
                external.append(note_id)
        return external

    async def run(
        self,
        queue: "asyncio.Queue[FileChangeEvent]",
        on_external: ExternalHandler,
    ) -> None:
        """Consume file-change events until cancelled.

        A failing handler is logged; the loop keeps consuming.
        """
        while True:
            event = await queue.get()
            try:
                external = self.classify(event.changed_ids)
                if external:
                    logger.info(
                        f"External {event.kind.value} change: {', '.join(external)}"
                    )
                    await on_external(external)
            except Exception:
                logger.exception("Failed to handle file change event")
            finally:
                queue.task_done()
