"""In-memory editing buffer.

Holds the document being edited plus transient view state (focus,
selection, scroll position, raw-source view, in-note find). User edits
notify listeners so the autosave machinery can react; programmatic
changes made while loading a note never do.
"""
from typing import Any, Callable, List, Optional, Tuple

EditListener = Callable[[Any], None]


def _doc_length(doc: Any) -> int:
    body = getattr(doc, "body", doc)
    return len(body) if isinstance(body, str) else 0


class EditorBuffer:
    """The editor's document and view state."""

    def __init__(self, doc: Any = "") -> None:
        self.doc: Any = doc
        self.focused = False
        self.selection: Tuple[int, int] = (0, 0)
        self.scroll_top = 0
        self.source_mode = False
        self.source_text = ""
        self.find_query = ""
        self._edit_listeners: List[EditListener] = []
        self._source_listeners: List[EditListener] = []

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def on_edit(self, listener: EditListener) -> Callable[[], None]:
        """Register a listener for user edits of the document."""
        self._edit_listeners.append(listener)
        return lambda: self._edit_listeners.remove(listener)

    def on_source_edit(self, listener: EditListener) -> Callable[[], None]:
        """Register a listener for user edits of the raw source text."""
        self._source_listeners.append(listener)
        return lambda: self._source_listeners.remove(listener)

    # ------------------------------------------------------------------
    # User edits
    # ------------------------------------------------------------------

    def edit(self, doc: Any) -> None:
        """Apply a user edit."""
        self.doc = doc
        for listener in list(self._edit_listeners):
            listener(doc)

    def edit_source(self, text: str) -> None:
        """Apply a user edit in the raw-source view."""
        self.source_text = text
        for listener in list(self._source_listeners):
            listener(text)

    # ------------------------------------------------------------------
    # Programmatic changes (no notifications)
    # ------------------------------------------------------------------

    def set_content(self, doc: Any) -> None:
        """Replace the document; the caret moves to the start."""
        self.doc = doc
        self.selection = (0, 0)

    def clear(self) -> None:
        self.set_content("")
        self.blur()
        self.reset_view_state()
        self.scroll_to_top()

    def blur(self) -> None:
        self.focused = False

    def focus(self, position: str = "start") -> None:
        self.focused = True
        offset = 0 if position == "start" else _doc_length(self.doc)
        self.selection = (offset, offset)

    def select_all(self) -> None:
        self.selection = (0, _doc_length(self.doc))

    def scroll_to_top(self) -> None:
        self.scroll_top = 0

    def scroll_to(self, offset: int) -> None:
        self.scroll_top = max(offset, 0)

    def set_find_query(self, query: Optional[str]) -> None:
        self.find_query = query or ""

    def enter_source_mode(self, text: str) -> None:
        self.source_text = text
        self.source_mode = True

    def exit_source_mode(self, doc: Any) -> None:
        self.set_content(doc)
        self.source_mode = False
        self.source_text = ""

    def reset_view_state(self) -> None:
        """Leave the raw-source view and clear the in-note find."""
        self.source_mode = False
        self.source_text = ""
        self.find_query = ""
