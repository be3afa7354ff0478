"""Persistence for AI broadcast summaries (one row per broadcast)."""

from __future__ import annotations

import logging
import sqlite3
from typing import Any

from ..errors import PanelError
from ..store import Database, dumps, loads, new_id, now_iso

logger = logging.getLogger(__name__)

JSON_FIELDS = (
    "room_subject_variants",
    "visitors_stayed",
    "visitors_quick",
    "visitors_banned",
    "top_tippers",
    "top_lovers_board",
)

SCALAR_FIELDS = (
    "theme",
    "tokens_received",
    "tokens_per_hour",
    "max_viewers",
    "unique_viewers",
    "avg_watch_time_seconds",
    "new_followers",
    "lost_followers",
    "net_followers",
    "overall_vibe",
    "engagement_summary",
    "tracking_notes",
    "private_dynamics",
    "opportunities",
    "full_markdown",
    "transcript_text",
    "ai_model",
    "generation_tokens_used",
    "generated_at",
)

SUMMARY_FIELDS = SCALAR_FIELDS + JSON_FIELDS


def _row_to_summary(row: sqlite3.Row) -> dict[str, Any]:
    summary = dict(row)
    for name in JSON_FIELDS:
        summary[name] = loads(summary[name], [])
    return summary


def _encode(name: str, value: Any) -> Any:
    if name in JSON_FIELDS:
        return dumps(value or [])
    return value


class SummaryStore:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def get(self, broadcast_id: str) -> dict[str, Any] | None:
        with self.db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM broadcast_summaries WHERE broadcast_id = ?", (broadcast_id,)
            ).fetchone()
        return _row_to_summary(row) if row else None

    async def save(self, broadcast_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        """Insert or replace the summary for a broadcast.

        Fields not given keep their column defaults on insert and are
        overwritten with the given values on conflict.
        """
        values = {name: _encode(name, fields[name]) for name in SUMMARY_FIELDS if name in fields}
        values.setdefault("generated_at", now_iso())
        columns = list(values)
        now = now_iso()

        assignments = ", ".join(f"{name} = excluded.{name}" for name in columns)
        with self.db.connection() as conn:
            conn.execute(
                f"""
                INSERT INTO broadcast_summaries (
                    id, broadcast_id, {', '.join(columns)}, created_at, updated_at
                ) VALUES (?, ?, {', '.join('?' for _ in columns)}, ?, ?)
                ON CONFLICT(broadcast_id) DO UPDATE SET
                    {assignments}, updated_at = excluded.updated_at
                """,
                (new_id(), broadcast_id, *values.values(), now, now),
            )

        logger.info("Summary saved", extra={"broadcast_id": broadcast_id})
        saved = await self.get(broadcast_id)
        if saved is None:
            raise PanelError(f"Summary for broadcast {broadcast_id} was not stored")
        return saved

    async def update(self, broadcast_id: str, fields: dict[str, Any]) -> dict[str, Any] | None:
        """Update selected fields; unknown names are ignored."""
        updates = [(name, _encode(name, fields[name])) for name in SUMMARY_FIELDS if name in fields]
        if not updates:
            return await self.get(broadcast_id)

        assignments = ", ".join(f"{name} = ?" for name, _ in updates)
        with self.db.connection() as conn:
            cursor = conn.execute(
                f"UPDATE broadcast_summaries SET {assignments}, updated_at = ? WHERE broadcast_id = ?",
                (*[value for _, value in updates], now_iso(), broadcast_id),
            )
        if cursor.rowcount == 0:
            return None
        return await self.get(broadcast_id)

    async def delete(self, broadcast_id: str) -> bool:
        with self.db.connection() as conn:
            cursor = conn.execute(
                "DELETE FROM broadcast_summaries WHERE broadcast_id = ?", (broadcast_id,)
            )
        return cursor.rowcount > 0
