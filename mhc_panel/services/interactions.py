"""
Interaction log: chat, tips, follows and notes tied to a person.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

from ..errors import ValidationError
from ..store import Database, dumps, loads, new_id, now_iso

logger = logging.getLogger(__name__)


class InteractionType(str, Enum):
    CHAT_MESSAGE = "CHAT_MESSAGE"
    PRIVATE_MESSAGE = "PRIVATE_MESSAGE"
    TIP_EVENT = "TIP_EVENT"
    PROFILE_PASTE = "PROFILE_PASTE"
    CHAT_IMPORT = "CHAT_IMPORT"
    MANUAL_NOTE = "MANUAL_NOTE"
    FOLLOW = "FOLLOW"
    UNFOLLOW = "UNFOLLOW"
    USER_ENTER = "USER_ENTER"
    USER_LEAVE = "USER_LEAVE"
    FANCLUB_JOIN = "FANCLUB_JOIN"
    MEDIA_PURCHASE = "MEDIA_PURCHASE"


class InteractionSource(str, Enum):
    CB_EVENTS = "cb_events"
    STATBATE_PLUS = "statbate_plus"
    MANUAL = "manual"


@dataclass
class Interaction:
    id: str
    person_id: str
    stream_session_id: str | None
    type: str
    content: str | None
    timestamp: str
    source: str
    metadata: dict[str, Any] | None
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _row_to_interaction(row: sqlite3.Row) -> Interaction:
    return Interaction(
        id=row["id"],
        person_id=row["person_id"],
        stream_session_id=row["stream_session_id"],
        type=row["type"],
        content=row["content"],
        timestamp=row["timestamp"],
        source=row["source"],
        metadata=loads(row["metadata"]),
        created_at=row["created_at"],
    )


class InteractionService:
    """Writes and queries the interactions table."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def create(
        self,
        person_id: str,
        type: str,
        source: str,
        content: str | None = None,
        stream_session_id: str | None = None,
        metadata: dict[str, Any] | None = None,
        timestamp: str | None = None,
    ) -> Interaction:
        try:
            InteractionType(type)
            InteractionSource(source)
        except ValueError as e:
            raise ValidationError(str(e)) from e

        interaction_id = new_id()
        now = now_iso()
        with self.db.connection() as conn:
            conn.execute(
                """
                INSERT INTO interactions (id, person_id, stream_session_id, type, content,
                                          timestamp, source, metadata, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    interaction_id,
                    person_id,
                    stream_session_id,
                    type,
                    content,
                    timestamp or now,
                    source,
                    dumps(metadata) if metadata is not None else None,
                    now,
                ),
            )
            row = conn.execute(
                "SELECT * FROM interactions WHERE id = ?", (interaction_id,)
            ).fetchone()
        return _row_to_interaction(row)

    async def list_for_person(
        self,
        person_id: str,
        type: str | None = None,
        source: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Interaction]:
        sql = "SELECT * FROM interactions WHERE person_id = ?"
        params: list[Any] = [person_id]
        if type:
            sql += " AND type = ?"
            params.append(type)
        if source:
            sql += " AND source = ?"
            params.append(source)
        sql += " ORDER BY timestamp DESC, created_at DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        with self.db.connection() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_row_to_interaction(row) for row in rows]

    async def get_latest(self, person_id: str) -> Interaction | None:
        items = await self.list_for_person(person_id, limit=1)
        return items[0] if items else None

    async def list_recent_by_source(self, source: str, limit: int = 100) -> list[Interaction]:
        with self.db.connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM interactions WHERE source = ?
                ORDER BY timestamp DESC, created_at DESC LIMIT ?
                """,
                (source, limit),
            ).fetchall()
        return [_row_to_interaction(row) for row in rows]

    async def list_for_session(self, session_id: str, limit: int = 500) -> list[Interaction]:
        with self.db.connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM interactions WHERE stream_session_id = ?
                ORDER BY timestamp DESC, created_at DESC LIMIT ?
                """,
                (session_id, limit),
            ).fetchall()
        return [_row_to_interaction(row) for row in rows]
