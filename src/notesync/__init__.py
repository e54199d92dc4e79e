"""
notesync - the synchronization and reconciliation engine of a local-first note editor.

Notes are plain markdown files on disk. This package keeps an in-memory editing
buffer, a debounced autosave path and file-system change notifications consistent
with each other, on a single asyncio event loop.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("notesync")
except PackageNotFoundError:
    __version__ = "0.3.0"
