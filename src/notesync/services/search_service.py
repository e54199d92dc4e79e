"""Two-tier search: instant local matches merged with ranked results.

Instant matches are computed synchronously from the in-memory note list
so typing never waits on the index. Ranked results arrive later and are
merged in front of them. Each request gets a sequence number; a response
that is not for the latest request is stale and must be dropped.
"""
import logging
from typing import Iterable, List

from notesync.models.schema import NoteMetadata, SearchResult

logger = logging.getLogger(__name__)

DEFAULT_INSTANT_LIMIT = 20


def instant_matches(
    notes: Iterable[NoteMetadata], query: str, limit: int = DEFAULT_INSTANT_LIMIT
) -> List[SearchResult]:
    """Case-insensitive substring matches on title and preview.

    Results keep list order and carry ``score == 0`` (provisional).
    An empty or blank query matches nothing.
    """
    needle = query.strip().lower()
    if not needle or limit <= 0:
        return []
    matches: List[SearchResult] = []
    for note in notes:
        if needle in note.title.lower() or needle in note.preview.lower():
            matches.append(SearchResult.from_metadata(note, score=0.0))
            if len(matches) >= limit:
                break
    return matches


def merge_results(
    authoritative: List[SearchResult], instant: List[SearchResult]
) -> List[SearchResult]:
    """Ranked results first, then instant matches the index did not return.

    An empty ranked response keeps the instant results as they are: the
    index may simply not have caught up with a recent write.
    """
    if not authoritative:
        return list(instant)
    merged = list(authoritative)
    seen = {result.id for result in authoritative}
    for result in instant:
        if result.id not in seen:
            seen.add(result.id)
            merged.append(result)
    return merged


class RequestSequencer:
    """Strictly increasing request ids for stale-response suppression."""

    def __init__(self) -> None:
        self._latest = 0

    @property
    def latest(self) -> int:
        return self._latest

    def next(self) -> int:
        """Start a new request; every earlier request becomes stale."""
        self._latest += 1
        return self._latest

    def is_current(self, request_id: int) -> bool:
        return request_id == self._latest

    def invalidate(self) -> None:
        """Make every in-flight request stale without starting a new one."""
        self._latest += 1
