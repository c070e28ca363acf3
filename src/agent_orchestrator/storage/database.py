"""aiosqlite connection and schema for sessions and memory turns."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Sequence

import aiosqlite

from agent_orchestrator.log import get_logger

logger = get_logger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS sessions (
    id              TEXT PRIMARY KEY,
    session_type    TEXT NOT NULL,
    user_id         TEXT,
    org_id          TEXT,
    agent_id        TEXT,
    status          TEXT NOT NULL,
    turn_count      INTEGER NOT NULL DEFAULT 0,
    system_prompt   TEXT,
    created_at      TEXT NOT NULL,
    updated_at      TEXT NOT NULL,
    ended_at        TEXT,
    context_json    TEXT NOT NULL DEFAULT '{}',
    snapshot_json   TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sessions_status
    ON sessions(status, updated_at);

CREATE TABLE IF NOT EXISTS memory_turns (
    id              TEXT PRIMARY KEY,
    session_id      TEXT    NOT NULL,
    turn_number     INTEGER NOT NULL,
    role            TEXT    NOT NULL CHECK(role IN ('user','assistant','system','tool')),
    content         TEXT    NOT NULL,
    metadata_json   TEXT    NOT NULL DEFAULT '{}',
    created_at      TEXT    NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_memory_turns_session
    ON memory_turns(session_id, turn_number);
"""


class Database:
    """Single aiosqlite connection shared by the session store.

    Writes go through ``write`` so that statements reading and inserting in
    one step (turn numbering) never interleave across sessions.
    """

    def __init__(self, db_path: str):
        self._db_path = db_path
        self._conn: aiosqlite.Connection | None = None
        self._write_lock = asyncio.Lock()

    @property
    def path(self) -> str:
        return self._db_path

    async def initialize(self) -> None:
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
            # WAL needs a file; in-memory databases keep the default journal
            journal = "WAL"
        else:
            journal = "MEMORY"
        self._conn = await aiosqlite.connect(self._db_path)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute(f"PRAGMA journal_mode={journal}")
        await self._conn.executescript(SCHEMA_SQL)
        await self._conn.commit()
        logger.info("session_database_ready", path=self._db_path, journal=journal)

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._conn

    async def write(self, sql: str, params: Sequence[Any] = ()) -> int:
        """Execute one statement and commit. Returns the affected row count."""
        async with self._write_lock:
            cursor = await self.conn.execute(sql, params)
            await self.conn.commit()
            return cursor.rowcount

    async def fetch_one(self, sql: str, params: Sequence[Any] = ()) -> aiosqlite.Row | None:
        cursor = await self.conn.execute(sql, params)
        return await cursor.fetchone()

    async def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[aiosqlite.Row]:
        cursor = await self.conn.execute(sql, params)
        return list(await cursor.fetchall())

    async def close(self) -> None:
        if self._conn is None:
            return
        await self._conn.close()
        self._conn = None
        logger.info("session_database_closed", path=self._db_path)
