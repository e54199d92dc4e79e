"""Markdown helpers for note titles, previews and file names.

Notes are stored as plain markdown, optionally with a YAML frontmatter
header. These helpers derive the list metadata (title, preview) from the
text and map titles to safe file names. They never modify the text itself.
"""
import datetime
import re
from typing import Optional

UNTITLED = "Untitled"

TITLE_MAX_CHARS = 50
PREVIEW_MAX_CHARS = 100

# Invisible characters editors like to leave behind
_INVISIBLE = ("\u00a0", "\ufeff")

_FILENAME_UNSAFE = re.compile(r'[/\\:*?"<>|]')
_FRONTMATTER_CLOSE = re.compile(r"\n---")

_STRIKE = re.compile(r"~~(.*?)~~")
_BOLD_STAR = re.compile(r"\*\*(.*?)\*\*")
_BOLD_UNDERSCORE = re.compile(r"__(.*?)__")
_INLINE_CODE = re.compile(r"`([^`]*)`")
_IMAGE = re.compile(r"!\[([^\]]*)\]\([^)]+\)")
_LINK = re.compile(r"\[([^\]]+)\]\([^)]+\)")
_ITALIC_STAR = re.compile(r"\*([^*]+)\*")
_ITALIC_UNDERSCORE = re.compile(r"_([^_]+)_")
_TASK_MARKER = re.compile(r"- \[[ xX]\] ")
_LIST_MARKER = re.compile(r"^(\s*[-+*]|\s*\d+\.)\s+")


def is_effectively_empty(text: str) -> bool:
    """True when ``text`` holds only whitespace and invisible characters."""
    return all(c.isspace() or c in _INVISIBLE for c in text)


def strip_frontmatter(content: str) -> str:
    """Return ``content`` without a leading ``---`` ... ``---`` block.

    Content without a complete frontmatter block is returned unchanged.
    """
    trimmed = content.lstrip()
    if not trimmed.startswith("---"):
        return content
    rest = trimmed[3:]
    match = _FRONTMATTER_CLOSE.search(rest)
    if match is None:
        return content
    after_close = rest[match.end():]
    if after_close.startswith("\r\n"):
        return after_close[2:]
    if after_close.startswith("\n"):
        return after_close[1:]
    return after_close


def extract_title(content: str) -> str:
    """Extract the display title of a note.

    The first ``# `` heading wins; otherwise the first non-empty line
    (truncated); otherwise ``Untitled``. Frontmatter is ignored.
    """
    for line in strip_frontmatter(content).splitlines():
        trimmed = line.strip()
        if trimmed.startswith("# "):
            title = trimmed[2:].strip()
            if not is_effectively_empty(title):
                return title
        if not is_effectively_empty(trimmed):
            return trimmed[:TITLE_MAX_CHARS]
    return UNTITLED


def strip_markdown(text: str) -> str:
    """Remove common inline markdown formatting from a single line."""
    result = text
    trimmed = result.lstrip()
    if trimmed.startswith("#"):
        result = trimmed.lstrip("#").lstrip()

    # Order matters: strike and bold before italics, images before links
    result = _STRIKE.sub(r"\1", result)
    result = _BOLD_STAR.sub(r"\1", result)
    result = _BOLD_UNDERSCORE.sub(r"\1", result)
    result = _INLINE_CODE.sub(r"\1", result)
    result = _IMAGE.sub(r"\1", result)
    result = _LINK.sub(r"\1", result)
    result = _ITALIC_STAR.sub(r"\1", result)
    result = _ITALIC_UNDERSCORE.sub(r"\1", result)
    result = _TASK_MARKER.sub("", result)
    result = _LIST_MARKER.sub("", result, count=1)
    return result.strip()


def generate_preview(content: str) -> str:
    """First non-empty line after the title line, with markdown stripped."""
    lines = strip_frontmatter(content).splitlines()
    for line in lines[1:]:
        trimmed = line.strip()
        if not trimmed:
            continue
        stripped = strip_markdown(trimmed)
        if stripped:
            return stripped[:PREVIEW_MAX_CHARS]
    return ""


def sanitize_filename(title: str) -> str:
    """Map a title to a file-name-safe leaf (no extension).

    Path separators and characters reserved on common filesystems become
    ``-``, leading dots are dropped; an empty result becomes
    ``Untitled``.
    """
    cleaned = "".join(c for c in title if c not in _INVISIBLE)
    # A leading dot would hide the note from listing
    cleaned = _FILENAME_UNSAFE.sub("-", cleaned).strip().lstrip(".").strip()
    if not cleaned or is_effectively_empty(cleaned):
        return UNTITLED
    return cleaned


def title_from_id(note_id: str) -> str:
    """Derive a display title from a note id: ``work/my-note`` -> ``My Note``."""
    leaf = note_id.rsplit("/", 1)[-1]
    words = leaf.replace("-", " ").replace("_", " ").split()
    return " ".join(word[:1].upper() + word[1:] for word in words)


def expand_note_name_template(
    template: str, now: Optional[datetime.datetime] = None
) -> str:
    """Expand date/time tags in a note name template (local time).

    Supported tags: ``{timestamp} {date} {year} {month} {day} {time}``.
    ``{counter}`` is left in place for the caller to resolve.
    """
    now = now or datetime.datetime.now().astimezone()
    replacements = {
        "{timestamp}": str(int(now.timestamp())),
        "{date}": now.strftime("%Y-%m-%d"),
        "{year}": now.strftime("%Y"),
        "{month}": now.strftime("%m"),
        "{day}": now.strftime("%d"),
        # Dashes instead of colons keep the name filesystem safe
        "{time}": now.strftime("%H-%M-%S"),
    }
    result = template
    for tag, value in replacements.items():
        result = result.replace(tag, value)
    return result
