"""Conversion between canonical note text and the editor's document.

The engine treats the document model as opaque: it only needs
``parse(text) -> doc`` and ``serialize(doc) -> text`` with
``serialize(parse(text)) == text``. A plain ``str`` is always accepted
as a document; it is what the editor holds after a failed parse.
"""
import re
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Protocol

import frontmatter
import yaml

from notesync.exceptions import CodecError

# Leading YAML block: "---" line, anything, closing "---" line
_FRONTMATTER_BLOCK = re.compile(r"\A---[ \t]*\r?\n(.*?\r?\n)?---[ \t]*(?:\r?\n|\Z)", re.DOTALL)


class NoteCodec(Protocol):
    """Reversible text codec used by the editor."""

    def parse(self, text: str) -> Any: ...

    def serialize(self, doc: Any) -> str: ...


@dataclass(frozen=True)
class BufferDoc:
    """Editor document: an optional frontmatter header plus the markdown body.

    Attributes:
        header: The exact frontmatter block including delimiters, or "".
        metadata: Parsed frontmatter (read-only view for the UI).
        body: Markdown after the header.
    """

    header: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)
    body: str = ""

    def with_body(self, body: str) -> "BufferDoc":
        return replace(self, body=body)

    @property
    def text(self) -> str:
        return self.header + self.body


class FrontmatterCodec:
    """Splits off and validates a YAML frontmatter header.

    The header is kept verbatim so that serializing never reformats YAML
    the user wrote by hand.
    """

    def parse(self, text: str) -> BufferDoc:
        """Parse canonical text.

        Raises:
            CodecError: If the frontmatter block is not valid YAML.
        """
        match = _FRONTMATTER_BLOCK.match(text)
        if match is None:
            return BufferDoc(body=text)
        header = match.group(0)
        try:
            post = frontmatter.loads(header)
        except (yaml.YAMLError, ValueError, TypeError) as e:
            raise CodecError(f"Invalid frontmatter: {e}", original_error=e) from e
        return BufferDoc(header=header, metadata=dict(post.metadata), body=text[match.end():])

    def serialize(self, doc: Any) -> str:
        if isinstance(doc, str):
            return doc
        if isinstance(doc, BufferDoc):
            return doc.text
        raise CodecError(f"Cannot serialize {type(doc).__name__}")


class PlainTextCodec:
    """Identity codec: the document is the text."""

    def parse(self, text: str) -> str:
        return text

    def serialize(self, doc: Any) -> str:
        if isinstance(doc, BufferDoc):
            return doc.text
        return str(doc)
