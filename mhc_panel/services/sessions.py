"""
Stream sessions: one row per live broadcast detected or started manually.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import asdict, dataclass
from typing import Any

from ..errors import PanelError
from ..store import Database, new_id, now_iso, parse_iso

logger = logging.getLogger(__name__)


@dataclass
class StreamSession:
    id: str
    platform: str
    broadcaster: str
    started_at: str
    ended_at: str | None
    status: str
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _row_to_session(row: sqlite3.Row) -> StreamSession:
    return StreamSession(
        id=row["id"],
        platform=row["platform"],
        broadcaster=row["broadcaster"],
        started_at=row["started_at"],
        ended_at=row["ended_at"],
        status=row["status"],
        created_at=row["created_at"],
    )


class StreamSessionService:
    """Start/end and query stream sessions."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def start(self, broadcaster: str, platform: str = "chaturbate") -> StreamSession:
        """Start a session, or return the LIVE one if it already exists."""
        current = await self.get_current(broadcaster)
        if current:
            logger.info("Session already live", extra={"session_id": current.id})
            return current

        session_id = new_id()
        now = now_iso()
        with self.db.connection() as conn:
            conn.execute(
                """
                INSERT INTO stream_sessions (id, platform, broadcaster, started_at, status, created_at)
                VALUES (?, ?, ?, ?, 'LIVE', ?)
                """,
                (session_id, platform, broadcaster.lower(), now, now),
            )
        logger.info("Session started", extra={"session_id": session_id, "broadcaster": broadcaster})
        session = await self.get_by_id(session_id)
        if session is None:
            raise PanelError(f"Session {session_id} was not stored")
        return session

    async def end(self, session_id: str) -> StreamSession | None:
        with self.db.connection() as conn:
            cursor = conn.execute(
                """
                UPDATE stream_sessions SET ended_at = ?, status = 'ENDED'
                WHERE id = ? AND status = 'LIVE'
                """,
                (now_iso(), session_id),
            )
        if cursor.rowcount:
            logger.info("Session ended", extra={"session_id": session_id})
        return await self.get_by_id(session_id)

    async def get_current(self, broadcaster: str) -> StreamSession | None:
        with self.db.connection() as conn:
            row = conn.execute(
                """
                SELECT * FROM stream_sessions
                WHERE broadcaster = ? AND status = 'LIVE'
                ORDER BY started_at DESC LIMIT 1
                """,
                (broadcaster.lower(),),
            ).fetchone()
        return _row_to_session(row) if row else None

    async def get_by_id(self, session_id: str) -> StreamSession | None:
        with self.db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM stream_sessions WHERE id = ?", (session_id,)
            ).fetchone()
        return _row_to_session(row) if row else None

    async def list_sessions(self, broadcaster: str, limit: int = 50, offset: int = 0) -> list[StreamSession]:
        with self.db.connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM stream_sessions
                WHERE broadcaster = ?
                ORDER BY started_at DESC
                LIMIT ? OFFSET ?
                """,
                (broadcaster.lower(), limit, offset),
            ).fetchall()
        return [_row_to_session(row) for row in rows]

    async def get_stats(self, session_id: str) -> dict[str, Any]:
        """Interaction totals and duration for a session."""
        session = await self.get_by_id(session_id)
        if session is None:
            return {"totalInteractions": 0, "totalTips": 0, "uniqueUsers": 0, "durationMinutes": None}

        duration_minutes = None
        if session.ended_at:
            started = parse_iso(session.started_at)
            ended = parse_iso(session.ended_at)
            duration_minutes = (ended - started).total_seconds() / 60

        with self.db.connection() as conn:
            row = conn.execute(
                """
                SELECT
                    COUNT(*) AS total_interactions,
                    COALESCE(SUM(CASE WHEN type = 'TIP_EVENT' THEN 1 ELSE 0 END), 0) AS total_tips,
                    COUNT(DISTINCT person_id) AS unique_users
                FROM interactions
                WHERE stream_session_id = ?
                """,
                (session_id,),
            ).fetchone()

        return {
            "totalInteractions": row["total_interactions"],
            "totalTips": row["total_tips"],
            "uniqueUsers": row["unique_users"],
            "durationMinutes": duration_minutes,
        }
