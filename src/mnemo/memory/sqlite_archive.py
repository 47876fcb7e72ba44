"""SQLite archive with FTS5 search - persistent drop-in for the in-memory archive."""

import asyncio
import json
import sqlite3
from datetime import datetime
from pathlib import Path

import aiosqlite

from mnemo.core.errors import validate_identifier, validate_limit
from mnemo.core.logging import get_logger, op_tag
from mnemo.core.types import Role, Turn, TurnFlags
from mnemo.memory.base import Archive
from mnemo.memory.similarity import content_tokens

logger = get_logger("memory.sqlite_archive")


# Python 3.12+ fix: Register datetime adapters explicitly
def _adapt_datetime(dt: datetime) -> str:
    """Convert datetime to ISO format string for SQLite storage."""
    return dt.isoformat()


def _convert_datetime(val: bytes) -> datetime:
    """Convert ISO format string from SQLite to datetime."""
    return datetime.fromisoformat(val.decode())


sqlite3.register_adapter(datetime, _adapt_datetime)
sqlite3.register_converter("DATETIME", _convert_datetime)

SCHEMA = """
CREATE TABLE IF NOT EXISTS turns (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    conversation_id TEXT NOT NULL,
    role TEXT NOT NULL,
    text TEXT NOT NULL,
    created_at DATETIME NOT NULL,
    importance REAL DEFAULT 0.0,
    flags TEXT,     -- JSON object
    entities TEXT   -- JSON array
);

CREATE INDEX IF NOT EXISTS idx_turns_user
    ON turns(user_id, created_at);

CREATE INDEX IF NOT EXISTS idx_turns_conversation
    ON turns(user_id, conversation_id, created_at);

-- FTS5 index for full-text search
CREATE VIRTUAL TABLE IF NOT EXISTS turns_fts USING fts5(
    id UNINDEXED,
    user_id UNINDEXED,
    content,
    tokenize='porter'
);

-- Triggers to keep FTS in sync
CREATE TRIGGER IF NOT EXISTS turns_ai AFTER INSERT ON turns BEGIN
    INSERT INTO turns_fts(id, user_id, content) VALUES (new.id, new.user_id, new.text);
END;

CREATE TRIGGER IF NOT EXISTS turns_ad AFTER DELETE ON turns BEGIN
    DELETE FROM turns_fts WHERE id = old.id;
END;
"""

_COLUMNS = "id, user_id, conversation_id, role, text, created_at, importance, flags, entities"


class SQLiteArchive(Archive):
    """SQLite-backed archive. Search ranks FTS matches by importance, then recency."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._conn: aiosqlite.Connection | None = None
        # One connection, one writer at a time
        self._write_lock = asyncio.Lock()

    async def connect(self) -> None:
        """Initialize database connection and schema."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = await aiosqlite.connect(
            self.db_path,
            detect_types=sqlite3.PARSE_DECLTYPES | sqlite3.PARSE_COLNAMES,
        )
        await self._conn.executescript(SCHEMA)
        await self._conn.commit()
        logger.info(f"Connected to archive: {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self._conn:
            await self._conn.close()
            self._conn = None

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Archive not connected. Call connect() first.")
        return self._conn

    @staticmethod
    def _row_to_turn(row: tuple) -> Turn:
        flags = json.loads(row[7]) if row[7] else {}
        return Turn(
            id=row[0],
            user_id=row[1],
            conversation_id=row[2],
            role=Role(row[3]),
            text=row[4],
            created_at=row[5],
            importance=row[6] or 0.0,
            flags=TurnFlags(**flags),
            extracted_entities=json.loads(row[8]) if row[8] else [],
        )

    @staticmethod
    def _escape_fts_query(query: str) -> str:
        """Turn free text into a literal-safe FTS5 expression.

        Content words are quoted and OR-ed so operators (AND, OR, NEAR),
        commas and quotes in user text are matched literally.
        """
        terms = sorted(content_tokens(query))
        if not terms:
            return '"' + query.replace('"', '""') + '"'
        return " OR ".join('"' + t.replace('"', '""') + '"' for t in terms)

    async def append(self, turn: Turn) -> None:
        validate_identifier(turn.user_id, "user_id")
        flags = {
            "is_question": turn.flags.is_question,
            "has_decision": turn.flags.has_decision,
            "has_code": turn.flags.has_code,
        }
        async with self._write_lock:
            # Explicit delete so the FTS trigger drops the old row on re-append
            await self.conn.execute("DELETE FROM turns WHERE id = ?", (turn.id,))
            await self.conn.execute(
                f"INSERT INTO turns ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    turn.id,
                    turn.user_id,
                    turn.conversation_id,
                    turn.role.value,
                    turn.text,
                    turn.created_at,
                    turn.importance,
                    json.dumps(flags),
                    json.dumps(turn.extracted_entities),
                ),
            )
            await self.conn.commit()

        logger.debug(f"Archived turn {turn.id} for user {turn.user_id}")

    async def search(self, user_id: str, query: str, max_results: int = 5) -> list[Turn]:
        validate_identifier(user_id, "user_id")
        validate_limit(max_results)
        if max_results == 0:
            return []

        results = []
        try:
            sql = f"""
                SELECT {", ".join("t." + c for c in _COLUMNS.split(", "))}
                FROM turns_fts
                JOIN turns t ON t.id = turns_fts.id
                WHERE turns_fts MATCH ? AND turns_fts.user_id = ?
                ORDER BY t.importance DESC, t.created_at DESC
                LIMIT ?
            """
            async with self.conn.execute(
                sql, (self._escape_fts_query(query), user_id, max_results)
            ) as cursor:
                async for row in cursor:
                    results.append(self._row_to_turn(row))

            logger.debug(f"FTS search returned {len(results)} results for query: {query}")

        except sqlite3.OperationalError as e:
            logger.warning(f"{op_tag(user_id, 'archive.search')} FTS search failed, falling back to LIKE: {e}")
            results = await self._fallback_search(user_id, query, max_results)

        return results

    async def _fallback_search(self, user_id: str, query: str, limit: int) -> list[Turn]:
        """Simple LIKE search when FTS fails."""
        results = []
        async with self.conn.execute(
            f"SELECT {_COLUMNS} FROM turns WHERE user_id = ? AND text LIKE ? "
            "ORDER BY importance DESC, created_at DESC LIMIT ?",
            (user_id, f"%{query}%", limit),
        ) as cursor:
            async for row in cursor:
                results.append(self._row_to_turn(row))
        return results

    async def get(self, turn_id: str) -> Turn | None:
        async with self.conn.execute(
            f"SELECT {_COLUMNS} FROM turns WHERE id = ?", (turn_id,)
        ) as cursor:
            row = await cursor.fetchone()
            return self._row_to_turn(row) if row else None

    async def conversation(
        self, user_id: str, conversation_id: str, limit: int = 50
    ) -> list[Turn]:
        validate_identifier(user_id, "user_id")
        validate_limit(limit, "limit")
        results = []
        async with self.conn.execute(
            f"SELECT {_COLUMNS} FROM turns WHERE user_id = ? AND conversation_id = ? "
            "ORDER BY created_at DESC LIMIT ?",
            (user_id, conversation_id, limit),
        ) as cursor:
            async for row in cursor:
                results.append(self._row_to_turn(row))
        results.reverse()
        return results

    async def delete(self, user_id: str, turn_id: str) -> bool:
        async with self._write_lock:
            cursor = await self.conn.execute(
                "DELETE FROM turns WHERE id = ? AND user_id = ?", (turn_id, user_id)
            )
            await self.conn.commit()
        return cursor.rowcount > 0

    async def delete_user(self, user_id: str) -> int:
        async with self._write_lock:
            cursor = await self.conn.execute("DELETE FROM turns WHERE user_id = ?", (user_id,))
            await self.conn.commit()

        logger.info(f"Deleted all archive data for user {user_id}: {cursor.rowcount} turns removed")
        return cursor.rowcount
