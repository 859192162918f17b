"""
Verse store access through SQLAlchemy Core.

PersistenceGateway is the only writer of verse rows. Writes are multi-row
INSERT ... ON CONFLICT (reference, translation) DO NOTHING statements, so a
replayed or resumed batch is a no-op for rows already present.
"""

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterable, Optional, Sequence

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    Index,
    create_engine,
    func,
    select,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError

from .models import AttemptRecord, VerseRecord

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 500

# Bound-parameter ceilings per statement
PARAMETER_LIMITS = {"sqlite": 999, "postgresql": 32767}

metadata = MetaData()

bible_verses = Table(
    "bible_verses",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("reference", String(64), nullable=False),
    Column("book", String(32), nullable=False),
    Column("chapter", Integer, nullable=False),
    Column("verse", Integer, nullable=False),
    Column("text", Text, nullable=False),
    Column("translation", String(8), nullable=False),
    Column("category", String(16), nullable=False, default="Core"),
    UniqueConstraint("reference", "translation", name="uq_bible_verses_reference_translation"),
    Index("ix_bible_verses_translation_book_chapter", "translation", "book", "chapter"),
)

import_attempts = Table(
    "import_attempts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("translation", String(8), nullable=False),
    Column("book", String(32), nullable=False),
    Column("chapter", Integer, nullable=False),
    Column("status", String(16), nullable=False),
    Column("source", String(32)),
    Column("verse_count", Integer, nullable=False, default=0),
    Column("inserted", Integer, nullable=False, default=0),
    Column("conflicted", Integer, nullable=False, default=0),
    Column("flagged", Boolean, nullable=False, default=False),
    Column("error", Text),
    Column("attempted_at", DateTime(timezone=True), nullable=False),
    Index("ix_import_attempts_unit", "translation", "book", "chapter"),
)

VERSE_COLUMNS = ("reference", "book", "chapter", "verse", "text", "translation", "category")


class StoreUnavailableError(Exception):
    """The verse store cannot be reached; fatal to the current batch."""


class PersistenceGateway:
    """Idempotent batched writes and count queries over the verse store."""

    def __init__(self, database_url: str, batch_size: int = DEFAULT_BATCH_SIZE, engine: Optional[Engine] = None):
        self.engine = engine or create_engine(database_url, future=True)
        self.dialect = self.engine.dialect.name
        if self.dialect not in PARAMETER_LIMITS:
            raise ValueError(f"Unsupported database dialect: {self.dialect}")

        max_rows = PARAMETER_LIMITS[self.dialect] // len(VERSE_COLUMNS)
        self.batch_size = max(1, min(batch_size, max_rows))
        # SQLite admits a single writer; serialize here rather than fail on lock timeouts.
        self._write_lock = threading.Lock() if self.dialect == "sqlite" else None

    @contextmanager
    def _connect(self, write: bool = False):
        lock = self._write_lock if write else None
        if lock is not None:
            lock.acquire()
        try:
            with self.engine.begin() as conn:
                yield conn
        except (OperationalError, InterfaceError) as e:
            logger.error(f"Verse store unavailable: {e}")
            raise StoreUnavailableError(str(e)) from e
        finally:
            if lock is not None:
                lock.release()

    def create_schema(self):
        """Create tables if missing."""
        try:
            metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            logger.error(f"Could not create schema: {e}")
            raise StoreUnavailableError(str(e)) from e

    def ping(self):
        """Raise StoreUnavailableError unless the store answers."""
        with self._connect() as conn:
            conn.execute(select(1))

    def _insert(self):
        if self.dialect == "postgresql":
            return postgresql.insert(bible_verses)
        return sqlite.insert(bible_verses)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def upsert_batch(self, records: Sequence[VerseRecord]) -> tuple[int, int]:
        """
        Insert records, ignoring (reference, translation) conflicts.

        Returns:
            (inserted, conflicted) row counts

        Raises:
            StoreUnavailableError: if the store cannot be reached
        """
        inserted = 0
        total = 0
        rows = [{col: getattr(r, col) for col in VERSE_COLUMNS} for r in records]

        for start in range(0, len(rows), self.batch_size):
            chunk = rows[start:start + self.batch_size]
            stmt = self._insert().values(chunk).on_conflict_do_nothing(
                index_elements=["reference", "translation"]
            )
            with self._connect(write=True) as conn:
                inserted += max(conn.execute(stmt).rowcount, 0)
            total += len(chunk)

        conflicted = total - inserted
        logger.debug(f"Upserted {total} rows: {inserted} inserted, {conflicted} already present")
        return inserted, conflicted

    def record_attempt(self, record: AttemptRecord):
        row = record.to_dict()
        row["attempted_at"] = datetime.now(timezone.utc)
        with self._connect(write=True) as conn:
            conn.execute(import_attempts.insert().values(**row))

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def count_verses(self, translation: Optional[str] = None, reference: Optional[str] = None) -> int:
        stmt = select(func.count()).select_from(bible_verses)
        if translation is not None:
            stmt = stmt.where(bible_verses.c.translation == translation)
        if reference is not None:
            stmt = stmt.where(bible_verses.c.reference == reference)
        with self._connect() as conn:
            return conn.execute(stmt).scalar_one()

    def counts_by_translation(self) -> dict[str, int]:
        stmt = (
            select(bible_verses.c.translation, func.count())
            .group_by(bible_verses.c.translation)
        )
        with self._connect() as conn:
            return {t: n for t, n in conn.execute(stmt)}

    def chapter_counts(self, translation: str) -> dict[tuple[str, int], int]:
        """Stored verse count per (book, chapter) for one translation."""
        stmt = (
            select(bible_verses.c.book, bible_verses.c.chapter, func.count())
            .where(bible_verses.c.translation == translation)
            .group_by(bible_verses.c.book, bible_verses.c.chapter)
        )
        with self._connect() as conn:
            return {(book, chapter): n for book, chapter, n in conn.execute(stmt)}

    def translations_for(self, reference: str) -> set[str]:
        stmt = select(bible_verses.c.translation).where(bible_verses.c.reference == reference)
        with self._connect() as conn:
            return set(conn.execute(stmt).scalars())

    def full_coverage_references(self, translations: Iterable[str], references: Optional[Iterable[str]] = None) -> set[str]:
        """References present in every one of the given translations."""
        targets = sorted(set(translations))
        if not targets:
            return set()
        stmt = (
            select(bible_verses.c.reference)
            .where(bible_verses.c.translation.in_(targets))
            .group_by(bible_verses.c.reference)
            .having(func.count(func.distinct(bible_verses.c.translation)) == len(targets))
        )
        with self._connect() as conn:
            covered = set(conn.execute(stmt).scalars())
        if references is not None:
            covered &= set(references)
        return covered

    def latest_attempts(self, translation: str) -> dict[tuple[str, int], AttemptRecord]:
        """Most recent attempt per (book, chapter) for one translation."""
        stmt = (
            select(import_attempts)
            .where(import_attempts.c.translation == translation)
            .order_by(import_attempts.c.id)
        )
        latest: dict[tuple[str, int], AttemptRecord] = {}
        with self._connect() as conn:
            for row in conn.execute(stmt).mappings():
                latest[(row["book"], row["chapter"])] = AttemptRecord(
                    translation=row["translation"],
                    book=row["book"],
                    chapter=row["chapter"],
                    status=row["status"],
                    source=row["source"],
                    verse_count=row["verse_count"],
                    inserted=row["inserted"],
                    conflicted=row["conflicted"],
                    flagged=bool(row["flagged"]),
                    error=row["error"],
                )
        return latest

    def dispose(self):
        self.engine.dispose()
