"""Debounced autosave.

Turns a high-frequency stream of buffer edits into a low-frequency stream
of writes without ever losing the final state. Serialization happens only
when the timer fires or on flush, never per keystroke.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

logger = logging.getLogger(__name__)

# persist(note_id, content) returns the saved note (or anything with ``id``)
PersistFn = Callable[[str, str], Awaitable[Any]]


class AutosaveScheduler:
    """Debounce timer plus dirty flag for one kind of edit.

    Writes never overlap: a flush while an earlier write is in flight
    serializes immediately but sends the write only after the earlier one
    finished, to the id that write ended up under.

    Args:
        persist: ``persist(note_id, content)`` coroutine performing the write.
            Its result's ``id`` tells the scheduler about renames.
        serialize: Returns the buffer's current canonical text.
        current_note_id: Returns the id of the note loaded in the editor.
        delay: Debounce in seconds.
        name: Label used in log messages.
    """

    def __init__(
        self,
        persist: PersistFn,
        serialize: Callable[[], str],
        current_note_id: Callable[[], Optional[str]],
        delay: float,
        name: str = "autosave",
    ):
        self._persist = persist
        self._serialize = serialize
        self._current_note_id = current_note_id
        self.delay = delay
        self.name = name
        self._dirty = False
        self._owner_id: Optional[str] = None
        self._handle: Optional[asyncio.TimerHandle] = None
        self._in_flight: Set[asyncio.Task] = set()
        # old id -> id the write renamed it to, while chained writes may need it
        self._renamed: Dict[str, str] = {}

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def pending(self) -> bool:
        """True while the debounce timer is armed."""
        return self._handle is not None

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    @property
    def owner_id(self) -> Optional[str]:
        """Note that was loaded when the buffer last became dirty."""
        return self._owner_id

    def mark_dirty(self, note_id: Optional[str]) -> None:
        """Record an edit of ``note_id`` and restart the debounce timer."""
        if note_id is None:
            return
        self._cancel_timer()
        self._dirty = True
        self._owner_id = note_id
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.delay, self._on_timer)

    def _on_timer(self) -> None:
        self._handle = None
        owner = self._owner_id
        if not self._dirty or owner is None:
            return
        if self._current_note_id() != owner:
            logger.debug(f"[{self.name}] {owner} no longer loaded, timer skipped")
            return
        if any(not task.done() for task in self._in_flight):
            # The previous write may still rename the note; wait for its echo
            logger.debug(f"[{self.name}] Write for {owner} in flight, timer re-armed")
            self._handle = asyncio.get_running_loop().call_later(self.delay, self._on_timer)
            return
        self._start_persist(owner)

    def flush(self, note_id: Optional[str] = None) -> Optional[asyncio.Task]:
        """Write pending edits now.

        The timer is cancelled and, when dirty, the buffer is serialized
        before this returns; only the write itself runs in the background.

        Args:
            note_id: Target note. Defaults to the note the edits were made in.

        Returns:
            The write task, or None when nothing was dirty.
        """
        self._cancel_timer()
        if not self._dirty:
            return None
        target = note_id or self._owner_id
        if target is None:
            return None
        return self._start_persist(target)

    def cancel(self) -> None:
        """Drop pending edits without writing them."""
        self._cancel_timer()
        self._dirty = False
        self._owner_id = None

    async def drain(self) -> None:
        """Wait for every write already started."""
        while True:
            pending = [task for task in self._in_flight if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    def _cancel_timer(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _start_persist(self, note_id: str) -> Optional[asyncio.Task]:
        try:
            content = self._serialize()
        except Exception:
            # Stay dirty; the next edit or flush retries
            logger.exception(f"[{self.name}] Failed to serialize buffer for {note_id}")
            return None
        # Dirty is cleared after serialize succeeds, never before
        self._dirty = False
        earlier = [task for task in self._in_flight if not task.done()]
        if earlier:
            logger.debug(f"[{self.name}] Write for {note_id} queued behind {len(earlier)} in flight")
        else:
            self._renamed.clear()
        task = asyncio.get_running_loop().create_task(self._run(note_id, content, earlier))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    def _resolve(self, note_id: str) -> str:
        """Follow renames made by earlier writes."""
        seen = {note_id}
        while note_id in self._renamed:
            note_id = self._renamed[note_id]
            if note_id in seen:
                break
            seen.add(note_id)
        return note_id

    async def _run(self, note_id: str, content: str, earlier: List[asyncio.Task]) -> None:
        if earlier:
            await asyncio.gather(*earlier, return_exceptions=True)
            target = self._resolve(note_id)
            if target != note_id:
                logger.debug(f"[{self.name}] {note_id} was renamed to {target}, writing there")
                note_id = target
        try:
            saved = await self._persist(note_id, content)
        except Exception:
            logger.exception(f"[{self.name}] Failed to persist {note_id}")
            return
        saved_id = getattr(saved, "id", None)
        if saved_id and saved_id != note_id:
            self._renamed[note_id] = saved_id
            if self._owner_id == note_id:
                self._owner_id = saved_id
