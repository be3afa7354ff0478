"""Application settings stored as JSON values in app_settings."""

from __future__ import annotations

import logging
from typing import Any

from ..store import Database, dumps, loads, now_iso

logger = logging.getLogger(__name__)

MERGE_GAP_KEY = "broadcast_merge_gap_minutes"
AI_DELAY_KEY = "ai_summary_delay_minutes"
DEFAULT_MERGE_GAP_MINUTES = 30


class SettingsService:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def get(self, key: str, default: Any = None) -> Any:
        with self.db.connection() as conn:
            row = conn.execute("SELECT value FROM app_settings WHERE key = ?", (key,)).fetchone()
        if row is None:
            return default
        return loads(row["value"], default)

    async def exists(self, key: str) -> bool:
        with self.db.connection() as conn:
            row = conn.execute("SELECT 1 FROM app_settings WHERE key = ?", (key,)).fetchone()
        return row is not None

    async def get_all(self) -> dict[str, dict[str, Any]]:
        with self.db.connection() as conn:
            rows = conn.execute("SELECT * FROM app_settings ORDER BY key").fetchall()
        return {
            row["key"]: {
                "value": loads(row["value"]),
                "description": row["description"],
                "updatedAt": row["updated_at"],
            }
            for row in rows
        }

    async def set(self, key: str, value: Any, description: str | None = None) -> None:
        """Upsert a setting; the stored description is kept when none is given."""
        with self.db.connection() as conn:
            conn.execute(
                """
                INSERT INTO app_settings (key, value, description, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value = excluded.value,
                    description = COALESCE(excluded.description, app_settings.description),
                    updated_at = excluded.updated_at
                """,
                (key, dumps(value), description, now_iso()),
            )
        logger.info("Setting updated", extra={"key": key})

    async def delete(self, key: str) -> bool:
        with self.db.connection() as conn:
            cursor = conn.execute("DELETE FROM app_settings WHERE key = ?", (key,))
        return cursor.rowcount > 0

    async def get_broadcast_config(self) -> dict[str, Any]:
        merge_gap = await self.get(MERGE_GAP_KEY, DEFAULT_MERGE_GAP_MINUTES)
        if merge_gap is None:
            merge_gap = DEFAULT_MERGE_GAP_MINUTES
        ai_delay = await self.get(AI_DELAY_KEY)
        return {
            "mergeGapMinutes": merge_gap,
            "summaryDelayMinutes": ai_delay if ai_delay is not None else merge_gap,
            "aiSummaryDelayMinutes": ai_delay,
            "aiSummaryDelayIsCustom": ai_delay is not None,
        }
