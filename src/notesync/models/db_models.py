"""SQLAlchemy models backing the full-text search index.

The markdown files are the source of truth; this database only mirrors
title/preview/content so searches do not have to walk the notes folder.
"""
from typing import Any

from sqlalchemy import Column, Integer, String, Text, create_engine, event, text
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

# Create base class for SQLAlchemy models
Base = declarative_base()


class DBNote(Base):
    """Indexed copy of a note."""
    __tablename__ = "notes"
    id = Column(String(1024), primary_key=True, index=True)
    title = Column(String(255), nullable=False, index=True)
    preview = Column(String(255), nullable=False, default="")
    content = Column(Text, nullable=False)
    modified = Column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        """Return string representation of note."""
        return f"<Note(id='{self.id}', title='{self.title}')>"


def init_index_db(url: str = "sqlite://") -> Any:
    """Create the index engine, tables and FTS5 mirror.

    An in-memory URL (``sqlite://``) is served by a single shared
    connection so every thread sees the same database; file databases
    use WAL mode.

    Returns:
        The SQLAlchemy engine.
    """
    if url in ("sqlite://", "sqlite:///:memory:"):
        engine = create_engine(
            url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        engine = create_engine(
            url,
            pool_pre_ping=True,
            connect_args={"check_same_thread": False},
        )

        @event.listens_for(engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.close()

    Base.metadata.create_all(engine)
    init_fts5(engine)
    return engine


def init_fts5(engine) -> None:
    """Initialize the FTS5 virtual table and the triggers keeping it in sync."""
    with engine.connect() as conn:
        conn.execute(text("""
            CREATE VIRTUAL TABLE IF NOT EXISTS notes_fts USING fts5(
                id UNINDEXED,
                title,
                content,
                content='notes',
                content_rowid='rowid'
            )
        """))

        conn.execute(text("""
            CREATE TRIGGER IF NOT EXISTS notes_ai AFTER INSERT ON notes BEGIN
                INSERT INTO notes_fts(rowid, id, title, content)
                VALUES (NEW.rowid, NEW.id, NEW.title, NEW.content);
            END
        """))

        conn.execute(text("""
            CREATE TRIGGER IF NOT EXISTS notes_ad AFTER DELETE ON notes BEGIN
                INSERT INTO notes_fts(notes_fts, rowid, id, title, content)
                VALUES ('delete', OLD.rowid, OLD.id, OLD.title, OLD.content);
            END
        """))

        conn.execute(text("""
            CREATE TRIGGER IF NOT EXISTS notes_au AFTER UPDATE ON notes BEGIN
                INSERT INTO notes_fts(notes_fts, rowid, id, title, content)
                VALUES ('delete', OLD.rowid, OLD.id, OLD.title, OLD.content);
                INSERT INTO notes_fts(rowid, id, title, content)
                VALUES (NEW.rowid, NEW.id, NEW.title, NEW.content);
            END
        """))

        conn.commit()


def rebuild_fts_index(engine) -> int:
    """Rebuild the FTS5 table from the notes table.

    Returns:
        Number of notes indexed.
    """
    with engine.connect() as conn:
        conn.execute(text("INSERT INTO notes_fts(notes_fts) VALUES('rebuild')"))
        conn.commit()
        count = conn.execute(text("SELECT COUNT(*) FROM notes")).scalar()

    return count


def get_session_factory(engine):
    """Get a session factory bound to the index engine."""
    return sessionmaker(bind=engine)
