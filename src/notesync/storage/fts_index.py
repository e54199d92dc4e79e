"""FTS5 full-text search index for notes.

The index mirrors title, preview and content of every note in SQLite so
that searches do not have to read the notes folder. Queries are ranked with
bm25; when FTS5 finds nothing (or fails) a substring scan takes over so a
note the tokenizer misses is still found.
"""
import logging
import re
import sqlite3
import threading
from typing import Any, Callable, Iterable, List, Optional

from sqlalchemy import delete, text
from sqlalchemy.exc import DatabaseError as SQLAlchemyDatabaseError
from sqlalchemy.exc import OperationalError as SQLAlchemyOperationalError

from notesync.exceptions import ErrorCode, SearchError, StorageError
from notesync.models.db_models import DBNote, get_session_factory, rebuild_fts_index
from notesync.models.schema import Note, SearchResult
from notesync.storage.markdown_parser import generate_preview
from notesync.utils import escape_like_pattern

logger = logging.getLogger(__name__)

# Fallback scoring
TITLE_MATCH_SCORE = 50.0
TITLE_AND_BODY_BONUS = 5.0
BODY_MATCH_SCORE = 10.0


class FtsIndex:
    """FTS5 full-text search index with graceful degradation.

    All access is serialized with a lock: backend calls arrive from worker
    threads and an in-memory database is a single shared connection.

    Args:
        engine: SQLAlchemy engine from ``init_index_db``.
        session_factory: Callable returning a context-manager session.
    """

    def __init__(self, engine: Any, session_factory: Optional[Callable] = None) -> None:
        self.engine = engine
        self._session_factory = session_factory or get_session_factory(engine)
        self._lock = threading.RLock()
        self.available: bool = True

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def index_note(self, note: Note, preview: Optional[str] = None) -> None:
        """Insert or update a note in the index."""
        record = DBNote(
            id=note.id,
            title=note.title,
            preview=preview if preview is not None else generate_preview(note.content),
            content=note.content,
            modified=note.modified,
        )
        with self._lock:
            try:
                with self._session_factory() as session:
                    session.merge(record)
                    session.commit()
            except SQLAlchemyDatabaseError as e:
                raise StorageError(
                    f"Failed to index note '{note.id}': {e}",
                    operation="index_note",
                    code=ErrorCode.INDEX_FAILED,
                    original_error=e,
                ) from e

    def delete_note(self, note_id: str) -> None:
        """Remove a note from the index. Unknown ids are ignored."""
        with self._lock:
            try:
                with self._session_factory() as session:
                    session.execute(delete(DBNote).where(DBNote.id == note_id))
                    session.commit()
            except SQLAlchemyDatabaseError as e:
                raise StorageError(
                    f"Failed to unindex note '{note_id}': {e}",
                    operation="delete_note",
                    code=ErrorCode.INDEX_FAILED,
                    original_error=e,
                ) from e

    def rebuild(self, notes: Iterable[Note]) -> int:
        """Replace the whole index with ``notes``.

        Returns:
            Number of notes indexed.
        """
        with self._lock:
            with self._session_factory() as session:
                session.execute(delete(DBNote))
                for note in notes:
                    session.add(
                        DBNote(
                            id=note.id,
                            title=note.title,
                            preview=generate_preview(note.content),
                            content=note.content,
                            modified=note.modified,
                        )
                    )
                session.commit()
            count = rebuild_fts_index(self.engine)
            self.available = True
        logger.info(f"Search index rebuilt with {count} notes")
        return count

    def count(self) -> int:
        """Number of indexed notes."""
        with self._lock:
            with self._session_factory() as session:
                return session.execute(text("SELECT COUNT(*) FROM notes")).scalar() or 0

    # ------------------------------------------------------------------
    # Public query API
    # ------------------------------------------------------------------

    def search(self, query: str, limit: int = 20) -> List[SearchResult]:
        """Ranked full-text search with substring fallback.

        Args:
            query: Free text; treated as a literal phrase.
            limit: Maximum results.

        Returns:
            Results ordered best first. Scores are always > 0.
        """
        query = query.strip()
        if not query:
            return []

        with self._lock:
            if not self.available:
                logger.debug("FTS5 unavailable, using fallback search")
                return self._fallback_text_search(query, limit)

            sql = text("""
                SELECT n.id, n.title, n.preview, n.modified, bm25(notes_fts) AS rank
                FROM notes_fts
                JOIN notes n ON n.rowid = notes_fts.rowid
                WHERE notes_fts MATCH :query
                ORDER BY rank
                LIMIT :limit
            """)

            results: List[SearchResult] = []
            try:
                with self._session_factory() as session:
                    rows = session.execute(
                        sql, {"query": self._escape_query(query), "limit": limit}
                    ).fetchall()
            except (sqlite3.OperationalError, SQLAlchemyOperationalError) as e:
                logger.warning(
                    f"FTS5 query failed for '{query}': {e}. Using fallback search."
                )
                return self._fallback_text_search(query, limit)
            except (sqlite3.DatabaseError, SQLAlchemyDatabaseError) as e:
                logger.error(f"FTS5 database error: {e}. Disabling FTS5 for this session.")
                self.available = False
                return self._fallback_text_search(query, limit)

            for row in rows:
                results.append(
                    SearchResult(
                        id=row[0],
                        title=row[1],
                        preview=row[2] or "",
                        modified=row[3] or 0,
                        # bm25 is negative, lower is better
                        score=max(-float(row[4]), 1e-6),
                    )
                )

            if not results:
                return self._fallback_text_search(query, limit)
            return results

    # ------------------------------------------------------------------
    # Query escaping helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _escape_query(query: str) -> str:
        """Escape query for FTS5 literal matching (quoted phrase)."""
        result = query.replace('"', '""')
        result = re.sub(r"[*^]", "", result)
        return f'"{result}"'

    # ------------------------------------------------------------------
    # Fallback
    # ------------------------------------------------------------------

    def _fallback_text_search(self, query: str, limit: int = 20) -> List[SearchResult]:
        """LIKE-based substring search scored by where the match is."""
        search_term = f"%{escape_like_pattern(query)}%"
        needle = query.lower()
        scored: List[SearchResult] = []

        try:
            with self._session_factory() as session:
                sql = text("""
                    SELECT id, title, preview, modified, content
                    FROM notes
                    WHERE title LIKE :term ESCAPE '\\' OR content LIKE :term ESCAPE '\\'
                """)
                rows = session.execute(sql, {"term": search_term}).fetchall()
        except SQLAlchemyDatabaseError as e:
            raise SearchError(
                f"Fallback text search failed: {e}",
                query=query,
                code=ErrorCode.SEARCH_FAILED,
            ) from e

        for note_id, title, preview, modified, content in rows:
            in_title = needle in (title or "").lower()
            in_body = needle in (content or "").lower()
            if in_title:
                score = TITLE_MATCH_SCORE + (TITLE_AND_BODY_BONUS if in_body else 0.0)
            elif in_body:
                score = BODY_MATCH_SCORE
            else:
                # LIKE and str.lower() disagree on non-ASCII case
                continue
            scored.append(
                SearchResult(
                    id=note_id,
                    title=title,
                    preview=preview or "",
                    modified=modified or 0,
                    score=score,
                )
            )

        scored.sort(key=lambda r: (-r.score, -r.modified))
        logger.debug(
            f"Fallback search returned {len(scored)} results for query '{query}'"
        )
        return scored[:limit]
