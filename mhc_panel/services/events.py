"""Raw Events API log."""

from __future__ import annotations

import logging
from typing import Any

from ..store import Database, dumps, loads, new_id, now_iso

logger = logging.getLogger(__name__)


class EventLogService:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def record(
        self,
        method: str,
        broadcaster: str | None,
        username: str | None,
        raw_event: dict[str, Any],
    ) -> str:
        event_id = new_id()
        with self.db.connection() as conn:
            conn.execute(
                """
                INSERT INTO event_logs (id, timestamp, method, broadcaster, username, raw_event)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (event_id, now_iso(), method, broadcaster, username, dumps(raw_event)),
            )
        return event_id

    async def recent(self, limit: int = 100, methods: list[str] | None = None) -> list[dict[str, Any]]:
        """Newest events first, optionally restricted to some methods."""
        sql = "SELECT * FROM event_logs"
        params: list[Any] = []
        if methods:
            sql += f" WHERE method IN ({', '.join('?' for _ in methods)})"
            params.extend(methods)
        sql += " ORDER BY timestamp DESC LIMIT ?"
        params.append(limit)

        with self.db.connection() as conn:
            rows = conn.execute(sql, params).fetchall()

        return [
            {
                "id": row["id"],
                "timestamp": row["timestamp"],
                "method": row["method"],
                "broadcaster": row["broadcaster"],
                "username": row["username"],
                "rawEvent": loads(row["raw_event"], {}),
            }
            for row in rows
        ]
