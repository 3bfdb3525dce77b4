"""
Repository pattern for data access.

Handles database operations and data persistence logic for cache entries,
daily usage counters, the cost ledger, consistency report snapshots and
the local story store.
"""

import json
import uuid
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional, Protocol, Tuple

from .db import DEFAULT_DB_PATH, get_connection
from .models import CacheEntry, CacheKind, ChapterRef, Character, CostLedgerEntry, UsageRecord


class StoryStore(Protocol):
    """Read-only view of the external story/chapter store."""

    def get_chapters(self, story_id: str) -> List[ChapterRef]:
        ...

    def get_characters(self, story_id: str) -> List[Character]:
        ...


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create all tables if they don't exist.

    The cost ledger is append-only: no UPDATE or DELETE operations should
    ever be performed on it.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS ai_cache (
                cache_key TEXT PRIMARY KEY,
                request_digest TEXT NOT NULL,
                kind TEXT NOT NULL,
                response TEXT NOT NULL,
                cost TEXT NOT NULL,
                created_at TEXT NOT NULL,
                ttl_seconds INTEGER NOT NULL
            );

            CREATE TABLE IF NOT EXISTS ai_usage (
                user_id TEXT NOT NULL,
                date TEXT NOT NULL,
                count INTEGER NOT NULL DEFAULT 0,
                PRIMARY KEY (user_id, date)
            );

            CREATE TABLE IF NOT EXISTS ai_cost_ledger (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                timestamp TEXT NOT NULL,
                kind TEXT NOT NULL,
                cost TEXT NOT NULL,
                user_id TEXT,
                story_id TEXT,
                cache_key TEXT
            );

            CREATE TABLE IF NOT EXISTS story_characters (
                id TEXT PRIMARY KEY,
                story_id TEXT NOT NULL,
                character_name TEXT NOT NULL,
                character_description TEXT NOT NULL DEFAULT '',
                created_at TEXT NOT NULL
            );

            CREATE UNIQUE INDEX IF NOT EXISTS idx_story_characters_name
                ON story_characters (story_id, character_name COLLATE NOCASE);

            CREATE TABLE IF NOT EXISTS story_chapters (
                id TEXT PRIMARY KEY,
                story_id TEXT NOT NULL,
                sequence_number INTEGER NOT NULL,
                content TEXT NOT NULL DEFAULT ''
            );

            CREATE TABLE IF NOT EXISTS character_consistency_analyses (
                story_id TEXT NOT NULL,
                chapter_key TEXT NOT NULL,
                user_id TEXT,
                analysis_data TEXT NOT NULL,
                generated_at TEXT NOT NULL,
                PRIMARY KEY (story_id, chapter_key)
            );
        """)
        conn.commit()
    finally:
        conn.close()


class CacheRepository:
    """Storage for cached AI responses and their cost ledger rows."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def get(self, key: str) -> Optional[CacheEntry]:
        """Fetch a cache entry by key regardless of freshness."""
        conn = get_connection(self.db_path)
        try:
            row = conn.execute("""
                SELECT cache_key, request_digest, kind, response, cost,
                       created_at, ttl_seconds
                FROM ai_cache WHERE cache_key = ?
            """, (key,)).fetchone()
        finally:
            conn.close()

        if row is None:
            return None
        return CacheEntry(
            key=row[0],
            request_digest=row[1],
            kind=CacheKind(row[2]),
            response=json.loads(row[3]),
            cost=Decimal(row[4]),
            created_at=datetime.fromisoformat(row[5]),
            ttl=timedelta(seconds=row[6])
        )

    def put(self, entry: CacheEntry, ledger_entry: CostLedgerEntry) -> None:
        """Write an entry and its ledger row in a single transaction.

        A write for an existing key replaces the previous row (last writer
        wins). If either insert fails, neither is committed.
        """
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN TRANSACTION")
            conn.execute("""
                INSERT OR REPLACE INTO ai_cache
                (cache_key, request_digest, kind, response, cost, created_at, ttl_seconds)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                entry.key,
                entry.request_digest,
                entry.kind.value,
                json.dumps(entry.response, sort_keys=True),
                str(entry.cost),
                entry.created_at.isoformat(),
                int(entry.ttl.total_seconds())
            ))
            _insert_ledger_row(conn, ledger_entry)
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def delete(self, key: str) -> bool:
        """Remove an entry. Returns True if a row was deleted."""
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("DELETE FROM ai_cache WHERE cache_key = ?", (key,))
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()


class UsageRepository:
    """Per-user, per-day call counters."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def get(self, user_id: str, day: date) -> UsageRecord:
        """Read a day's usage. A missing row means zero calls."""
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT count FROM ai_usage WHERE user_id = ? AND date = ?",
                (user_id, day.isoformat())
            ).fetchone()
        finally:
            conn.close()
        return UsageRecord(user_id=user_id, date=day, call_count=row[0] if row else 0)

    def increment_if_below(self, user_id: str, day: date, limit: int) -> Tuple[bool, int]:
        """Atomically increment the day's counter unless it already reached limit.

        The read and the write happen inside one BEGIN IMMEDIATE
        transaction, which takes the database write lock up front, so
        concurrent callers are serialized and no update is lost.

        Args:
            user_id: User being counted
            day: Usage day
            limit: Maximum calls allowed for the day

        Returns:
            (allowed, count) where count is the value after the call
        """
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute(
                "SELECT count FROM ai_usage WHERE user_id = ? AND date = ?",
                (user_id, day.isoformat())
            ).fetchone()
            current = row[0] if row else 0

            if current >= limit:
                conn.rollback()
                return False, current

            conn.execute("""
                INSERT INTO ai_usage (user_id, date, count) VALUES (?, ?, 1)
                ON CONFLICT (user_id, date) DO UPDATE SET count = count + 1
            """, (user_id, day.isoformat()))
            conn.commit()
            return True, current + 1
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()


def _insert_ledger_row(conn, entry: CostLedgerEntry) -> None:
    conn.execute("""
        INSERT INTO ai_cost_ledger
        (timestamp, kind, cost, user_id, story_id, cache_key)
        VALUES (?, ?, ?, ?, ?, ?)
    """, (
        entry.timestamp.isoformat(),
        entry.kind,
        str(entry.cost),
        entry.user_id,
        entry.story_id,
        entry.cache_key
    ))


def insert_ledger_entry(entry: CostLedgerEntry, db_path: str = DEFAULT_DB_PATH) -> None:
    """Append a single cost record to the ledger.

    Args:
        entry: The cost record to append
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        _insert_ledger_row(conn, entry)
        conn.commit()
    finally:
        conn.close()


def fetch_ledger_entries(
    user_id: Optional[str] = None,
    kind: Optional[str] = None,
    since: Optional[datetime] = None,
    limit: int = 100,
    db_path: str = DEFAULT_DB_PATH
) -> List[CostLedgerEntry]:
    """Fetch ledger rows, newest first, optionally filtered.

    Args:
        user_id: Optional filter for a specific user
        kind: Optional filter for a specific kind
        since: Optional lower bound on timestamp
        limit: Maximum number of rows to return
        db_path: Path to SQLite database file

    Returns:
        List of ledger entries ordered by timestamp (newest first)
    """
    conn = get_connection(db_path)
    try:
        query = """
            SELECT timestamp, kind, cost, user_id, story_id, cache_key
            FROM ai_cost_ledger
        """
        params: List[Any] = []
        conditions = []

        if user_id:
            conditions.append("user_id = ?")
            params.append(user_id)
        if kind:
            conditions.append("kind = ?")
            params.append(kind)
        if since is not None:
            conditions.append("timestamp >= ?")
            params.append(since.isoformat())

        if conditions:
            query += " WHERE " + " AND ".join(conditions)

        query += " ORDER BY timestamp DESC, id DESC LIMIT ?"
        params.append(limit)

        entries = []
        for row in conn.execute(query, params).fetchall():
            entries.append(CostLedgerEntry(
                timestamp=datetime.fromisoformat(row[0]),
                kind=row[1],
                cost=Decimal(row[2]),
                user_id=row[3],
                story_id=row[4],
                cache_key=row[5]
            ))
        return entries
    finally:
        conn.close()


class ReportRepository:
    """Latest consistency report snapshot per (story_id, chapter_id)."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def upsert(
        self,
        story_id: str,
        chapter_id: Optional[str],
        report: Dict[str, Any],
        user_id: Optional[str] = None
    ) -> None:
        """Replace the stored snapshot for the story/chapter pair."""
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT OR REPLACE INTO character_consistency_analyses
                (story_id, chapter_key, user_id, analysis_data, generated_at)
                VALUES (?, ?, ?, ?, ?)
            """, (
                story_id,
                chapter_id or "",
                user_id,
                json.dumps(report, sort_keys=True),
                report.get("generated_at") or datetime.now().isoformat()
            ))
            conn.commit()
        finally:
            conn.close()

    def get_latest(self, story_id: str, chapter_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute("""
                SELECT analysis_data FROM character_consistency_analyses
                WHERE story_id = ? AND chapter_key = ?
            """, (story_id, chapter_id or "")).fetchone()
        finally:
            conn.close()
        return json.loads(row[0]) if row else None


class SqliteStoryStore:
    """Story store backed by the local SQLite database.

    Stands in for the app's story/chapter service in local runs and tests.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        self.db_path = db_path

    def get_characters(self, story_id: str) -> List[Character]:
        """Characters of a story in creation order."""
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute("""
                SELECT id, story_id, character_name, character_description, created_at
                FROM story_characters WHERE story_id = ?
                ORDER BY created_at ASC, id ASC
            """, (story_id,)).fetchall()
        finally:
            conn.close()
        return [
            Character(
                id=row[0],
                story_id=row[1],
                name=row[2],
                canonical_description=row[3],
                created_at=datetime.fromisoformat(row[4])
            )
            for row in rows
        ]

    def get_chapters(self, story_id: str) -> List[ChapterRef]:
        """Chapters of a story ordered by sequence number."""
        conn = get_connection(self.db_path)
        try:
            rows = conn.execute("""
                SELECT id, story_id, sequence_number, content
                FROM story_chapters WHERE story_id = ?
                ORDER BY sequence_number ASC, id ASC
            """, (story_id,)).fetchall()
        finally:
            conn.close()
        return [
            ChapterRef(id=row[0], story_id=row[1], sequence_number=row[2], text=row[3])
            for row in rows
        ]

    def add_character(
        self,
        story_id: str,
        name: str,
        description: str = "",
        created_at: Optional[datetime] = None
    ) -> Character:
        """Insert a character.

        Raises:
            sqlite3.IntegrityError: If the story already has a character
                with the same name, ignoring case
        """
        character = Character(
            id=str(uuid.uuid4()),
            story_id=story_id,
            name=name,
            canonical_description=description,
            created_at=created_at or datetime.now()
        )
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO story_characters
                (id, story_id, character_name, character_description, created_at)
                VALUES (?, ?, ?, ?, ?)
            """, (
                character.id,
                character.story_id,
                character.name,
                character.canonical_description,
                character.created_at.isoformat()
            ))
            conn.commit()
        finally:
            conn.close()
        return character

    def add_chapter(self, story_id: str, sequence_number: int, text: str) -> ChapterRef:
        chapter = ChapterRef(
            id=str(uuid.uuid4()),
            story_id=story_id,
            sequence_number=sequence_number,
            text=text
        )
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO story_chapters (id, story_id, sequence_number, content)
                VALUES (?, ?, ?, ?)
            """, (chapter.id, chapter.story_id, chapter.sequence_number, chapter.text))
            conn.commit()
        finally:
            conn.close()
        return chapter
