"""
Point-in-time captures of a person's external metrics.

Snapshots come from Statbate (member/model info), the Chaturbate Stats API,
or manual entry. Deltas compare the two newest snapshots of one source.
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import asdict, dataclass
from typing import Any

from ..errors import ValidationError
from ..store import Database, dumps, loads, new_id, now_iso

logger = logging.getLogger(__name__)

SNAPSHOT_SOURCES = ("statbate_member", "statbate_model", "cb_stats", "manual")


@dataclass
class Snapshot:
    id: str
    person_id: str
    source: str
    captured_at: str
    raw_payload: dict[str, Any]
    normalized_metrics: dict[str, Any] | None
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _row_to_snapshot(row: sqlite3.Row) -> Snapshot:
    return Snapshot(
        id=row["id"],
        person_id=row["person_id"],
        source=row["source"],
        captured_at=row["captured_at"],
        raw_payload=loads(row["raw_payload"], {}),
        normalized_metrics=loads(row["normalized_metrics"]),
        created_at=row["created_at"],
    )


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class SnapshotService:
    """Stores and compares snapshots."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def create(
        self,
        person_id: str,
        source: str,
        raw_payload: dict[str, Any],
        normalized_metrics: dict[str, Any] | None = None,
        captured_at: str | None = None,
    ) -> Snapshot:
        if source not in SNAPSHOT_SOURCES:
            raise ValidationError(f"Unknown snapshot source: {source}")

        snapshot_id = new_id()
        now = now_iso()
        with self.db.connection() as conn:
            conn.execute(
                """
                INSERT INTO snapshots (id, person_id, source, captured_at, raw_payload,
                                       normalized_metrics, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    snapshot_id,
                    person_id,
                    source,
                    captured_at or now,
                    dumps(raw_payload),
                    dumps(normalized_metrics) if normalized_metrics is not None else None,
                    now,
                ),
            )
            row = conn.execute("SELECT * FROM snapshots WHERE id = ?", (snapshot_id,)).fetchone()

        logger.debug("Snapshot created", extra={"person_id": person_id, "source": source})
        return _row_to_snapshot(row)

    async def get_latest(self, person_id: str, source: str | None = None) -> Snapshot | None:
        sql = "SELECT * FROM snapshots WHERE person_id = ?"
        params: list[Any] = [person_id]
        if source:
            sql += " AND source = ?"
            params.append(source)
        sql += " ORDER BY captured_at DESC, created_at DESC LIMIT 1"

        with self.db.connection() as conn:
            row = conn.execute(sql, params).fetchone()
        return _row_to_snapshot(row) if row else None

    async def list_for_person(
        self,
        person_id: str,
        source: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Snapshot]:
        sql = "SELECT * FROM snapshots WHERE person_id = ?"
        params: list[Any] = [person_id]
        if source:
            sql += " AND source = ?"
            params.append(source)
        sql += " ORDER BY captured_at DESC, created_at DESC LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        with self.db.connection() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_row_to_snapshot(row) for row in rows]

    async def get_delta(self, person_id: str, source: str) -> dict[str, float] | None:
        """Numeric change between the two newest snapshots of a source.

        Returns:
            {metric: newest - previous} for metrics numeric in both, or None
            when fewer than two snapshots exist.
        """
        latest = await self.list_for_person(person_id, source=source, limit=2)
        if len(latest) < 2:
            return None

        newest = latest[0].normalized_metrics or {}
        previous = latest[1].normalized_metrics or {}
        delta: dict[str, float] = {}
        for key, value in newest.items():
            old = previous.get(key)
            if _is_number(value) and _is_number(old):
                delta[key] = value - old
        return delta
