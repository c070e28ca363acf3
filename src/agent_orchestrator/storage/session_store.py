"""SQLite-backed durable session store."""

from __future__ import annotations

import json
from datetime import datetime, timezone

from agent_orchestrator.core.collaborators import SessionStore
from agent_orchestrator.core.models import Session
from agent_orchestrator.log import get_logger
from agent_orchestrator.memory.conversation import MemoryTurn
from agent_orchestrator.storage.database import Database

logger = get_logger(__name__)


def _ts(value: datetime | None) -> str | None:
    # Fixed-width UTC timestamps so string comparison in SQL is chronological
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


class SqliteSessionStore(SessionStore):
    """Session snapshots and append-only memory turns over aiosqlite."""

    def __init__(self, db: Database):
        self._db = db

    async def save_session(self, session: Session) -> None:
        snapshot = session.to_dict()
        system_prompt = (
            session.agent_instance.system_prompt if session.agent_instance else None
        )
        await self._db.write(
            """INSERT INTO sessions
               (id, session_type, user_id, org_id, agent_id, status, turn_count,
                system_prompt, created_at, updated_at, ended_at, context_json, snapshot_json)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(id) DO UPDATE SET
                   agent_id = excluded.agent_id,
                   status = excluded.status,
                   turn_count = excluded.turn_count,
                   system_prompt = excluded.system_prompt,
                   updated_at = excluded.updated_at,
                   ended_at = excluded.ended_at,
                   context_json = excluded.context_json,
                   snapshot_json = excluded.snapshot_json""",
            (
                session.id,
                str(session.session_type),
                session.user_id,
                session.org_id,
                session.agent_id,
                str(session.status),
                session.turn_count,
                system_prompt,
                _ts(session.created_at),
                _ts(session.updated_at),
                _ts(session.ended_at),
                json.dumps(session.context, default=str),
                json.dumps(snapshot, default=str),
            ),
        )

    async def get_session(self, session_id: str) -> Session | None:
        row = await self._db.fetch_one(
            "SELECT snapshot_json FROM sessions WHERE id = ?", (session_id,)
        )
        if row is None:
            return None
        return Session.from_dict(json.loads(row["snapshot_json"]))

    async def list_session_ids(
        self, status: str | None = None, updated_before: datetime | None = None
    ) -> list[str]:
        clauses: list[str] = []
        params: list[str] = []
        if status is not None:
            clauses.append("status = ?")
            params.append(str(status))
        if updated_before is not None:
            clauses.append("updated_at < ?")
            params.append(_ts(updated_before))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = await self._db.fetch_all(
            f"SELECT id FROM sessions {where} ORDER BY updated_at ASC", params
        )
        return [row["id"] for row in rows]

    async def append_turn(self, session_id: str, turn: MemoryTurn) -> None:
        await self._db.write(
            """INSERT INTO memory_turns
               (id, session_id, turn_number, role, content, metadata_json, created_at)
               SELECT ?, ?, COALESCE(MAX(turn_number), 0) + 1, ?, ?, ?, ?
               FROM memory_turns WHERE session_id = ?""",
            (
                turn.id,
                session_id,
                str(turn.role),
                turn.content,
                json.dumps(turn.metadata, default=str),
                _ts(turn.timestamp),
                session_id,
            ),
        )

    async def list_turns(self, session_id: str) -> list[MemoryTurn]:
        rows = await self._db.fetch_all(
            """SELECT * FROM memory_turns
               WHERE session_id = ?
               ORDER BY turn_number ASC""",
            (session_id,),
        )
        return [self._row_to_turn(row) for row in rows]

    @staticmethod
    def _row_to_turn(row) -> MemoryTurn:
        return MemoryTurn(
            id=row["id"],
            role=row["role"],
            content=row["content"],
            timestamp=datetime.fromisoformat(row["created_at"]),
            metadata=json.loads(row["metadata_json"]),
        )
