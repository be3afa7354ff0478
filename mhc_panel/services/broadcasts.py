"""
Broadcast log for the panel owner.

Broadcasts are curated records of the owner's streams (manual entries or
auto-detected ones) with token/viewer totals, notes and tags. AI summaries
hang off a broadcast by id, see summaries.py.

Invariants:
    - duration_minutes is derived from started_at/ended_at when not given
    - merge keeps the earlier broadcast and deletes the later one
    - merged duration is the sum of both durations
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any

from ..errors import PanelError, ValidationError
from ..store import Database, dumps, loads, new_id, now_iso, parse_iso, to_iso, utcnow

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = (
    "started_at",
    "ended_at",
    "duration_minutes",
    "peak_viewers",
    "total_tokens",
    "followers_gained",
    "summary",
    "notes",
    "tags",
    "room_subject",
)


@dataclass
class Broadcast:
    id: str
    started_at: str
    ended_at: str | None
    duration_minutes: int | None
    peak_viewers: int
    total_tokens: int
    followers_gained: int
    summary: str | None
    notes: str | None
    tags: list[str] = field(default_factory=list)
    room_subject: str | None = None
    auto_detected: bool = False
    source: str = "manual"
    created_at: str = ""
    updated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _row_to_broadcast(row: sqlite3.Row) -> Broadcast:
    return Broadcast(
        id=row["id"],
        started_at=row["started_at"],
        ended_at=row["ended_at"],
        duration_minutes=row["duration_minutes"],
        peak_viewers=row["peak_viewers"],
        total_tokens=row["total_tokens"],
        followers_gained=row["followers_gained"],
        summary=row["summary"],
        notes=row["notes"],
        tags=loads(row["tags"], []),
        room_subject=row["room_subject"],
        auto_detected=bool(row["auto_detected"]),
        source=row["source"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _minutes_between(start: datetime, end: datetime) -> int:
    return round((end - start).total_seconds() / 60)


def _join_text(first: str | None, second: str | None) -> str | None:
    parts = [part for part in (first, second) if part]
    return "\n\n".join(parts) if parts else None


class BroadcastService:
    """CRUD, stats and merge over my_broadcasts."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def create(
        self,
        started_at: datetime,
        ended_at: datetime | None = None,
        duration_minutes: int | None = None,
        peak_viewers: int = 0,
        total_tokens: int = 0,
        followers_gained: int = 0,
        summary: str | None = None,
        notes: str | None = None,
        tags: list[str] | None = None,
        room_subject: str | None = None,
        auto_detected: bool = False,
        source: str = "manual",
    ) -> Broadcast:
        if ended_at is not None and not duration_minutes:
            duration_minutes = _minutes_between(started_at, ended_at)

        broadcast_id = new_id()
        now = now_iso()
        with self.db.connection() as conn:
            conn.execute(
                """
                INSERT INTO my_broadcasts (
                    id, started_at, ended_at, duration_minutes,
                    peak_viewers, total_tokens, followers_gained,
                    summary, notes, tags, room_subject,
                    auto_detected, source, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    broadcast_id,
                    to_iso(started_at),
                    to_iso(ended_at) if ended_at else None,
                    duration_minutes,
                    peak_viewers,
                    total_tokens,
                    followers_gained,
                    summary,
                    notes,
                    dumps(tags or []),
                    room_subject,
                    int(auto_detected),
                    source,
                    now,
                    now,
                ),
            )

        logger.info(
            "Broadcast created",
            extra={"broadcast_id": broadcast_id, "auto_detected": auto_detected, "source": source},
        )
        created = await self.get_by_id(broadcast_id)
        if created is None:
            raise PanelError(f"Broadcast {broadcast_id} was not stored")
        return created

    async def get_by_id(self, broadcast_id: str) -> Broadcast | None:
        with self.db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM my_broadcasts WHERE id = ?", (broadcast_id,)
            ).fetchone()
        return _row_to_broadcast(row) if row else None

    async def update(self, broadcast_id: str, **changes: Any) -> Broadcast | None:
        """Apply only the provided fields.

        Raises:
            ValueError: On an unknown field name
        """
        unknown = set(changes) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Unknown broadcast fields: {', '.join(sorted(unknown))}")

        fields: list[str] = []
        values: list[Any] = []
        for name in UPDATABLE_FIELDS:
            if name not in changes:
                continue
            value = changes[name]
            if name in ("started_at", "ended_at") and isinstance(value, datetime):
                value = to_iso(value)
            elif name == "tags":
                value = dumps(value or [])
            fields.append(f"{name} = ?")
            values.append(value)

        if not fields:
            return await self.get_by_id(broadcast_id)

        fields.append("updated_at = ?")
        values.extend([now_iso(), broadcast_id])
        with self.db.connection() as conn:
            cursor = conn.execute(
                f"UPDATE my_broadcasts SET {', '.join(fields)} WHERE id = ?",
                values,
            )
        if cursor.rowcount == 0:
            return None

        logger.info("Broadcast updated", extra={"broadcast_id": broadcast_id})
        return await self.get_by_id(broadcast_id)

    async def end(
        self,
        broadcast_id: str,
        peak_viewers: int | None = None,
        total_tokens: int | None = None,
        followers_gained: int | None = None,
    ) -> Broadcast | None:
        """Set ended_at to now and compute the duration."""
        broadcast = await self.get_by_id(broadcast_id)
        if broadcast is None:
            return None

        ended_at = utcnow()
        duration = _minutes_between(parse_iso(broadcast.started_at), ended_at)
        with self.db.connection() as conn:
            conn.execute(
                """
                UPDATE my_broadcasts SET
                    ended_at = ?,
                    duration_minutes = ?,
                    peak_viewers = COALESCE(?, peak_viewers),
                    total_tokens = COALESCE(?, total_tokens),
                    followers_gained = COALESCE(?, followers_gained),
                    updated_at = ?
                WHERE id = ?
                """,
                (
                    to_iso(ended_at),
                    duration,
                    peak_viewers,
                    total_tokens,
                    followers_gained,
                    now_iso(),
                    broadcast_id,
                ),
            )

        logger.info("Broadcast ended", extra={"broadcast_id": broadcast_id, "duration_minutes": duration})
        return await self.get_by_id(broadcast_id)

    async def list_with_count(self, limit: int = 20, offset: int = 0) -> dict[str, Any]:
        with self.db.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM my_broadcasts ORDER BY started_at DESC LIMIT ? OFFSET ?",
                (limit, offset),
            ).fetchall()
            total = conn.execute("SELECT COUNT(*) FROM my_broadcasts").fetchone()[0]

        return {
            "broadcasts": [_row_to_broadcast(row) for row in rows],
            "total": total,
            "hasMore": offset + len(rows) < total,
        }

    async def get_current(self) -> Broadcast | None:
        with self.db.connection() as conn:
            row = conn.execute(
                """
                SELECT * FROM my_broadcasts WHERE ended_at IS NULL
                ORDER BY started_at DESC LIMIT 1
                """
            ).fetchone()
        return _row_to_broadcast(row) if row else None

    async def get_stats(self, days: int = 30) -> dict[str, Any]:
        cutoff = to_iso(utcnow() - timedelta(days=days))
        with self.db.connection() as conn:
            row = conn.execute(
                """
                SELECT
                    COUNT(*) AS total_broadcasts,
                    COALESCE(SUM(duration_minutes), 0) AS total_minutes,
                    COALESCE(SUM(total_tokens), 0) AS total_tokens,
                    COALESCE(MAX(peak_viewers), 0) AS peak_viewers,
                    COALESCE(SUM(followers_gained), 0) AS total_followers
                FROM my_broadcasts
                WHERE started_at >= ?
                """,
                (cutoff,),
            ).fetchone()

        count = row["total_broadcasts"]
        return {
            "totalBroadcasts": count,
            "totalMinutes": row["total_minutes"],
            "avgDurationMinutes": round(row["total_minutes"] / count) if count else 0,
            "totalTokens": row["total_tokens"],
            "avgTokens": round(row["total_tokens"] / count) if count else 0,
            "peakViewers": row["peak_viewers"],
            "totalFollowersGained": row["total_followers"],
        }

    async def merge(self, first_id: str, second_id: str) -> Broadcast | None:
        """Merge two broadcasts into the earlier one.

        Returns:
            The merged broadcast, or None when either id is unknown.
        """
        first = await self.get_by_id(first_id)
        second = await self.get_by_id(second_id)
        if first is None or second is None:
            return None

        keep, drop = (first, second) if first.started_at <= second.started_at else (second, first)

        started_at = min(keep.started_at, drop.started_at)
        ended_candidates = [value for value in (keep.ended_at, drop.ended_at) if value]
        ended_at = max(ended_candidates) if ended_candidates else None
        # airtime only; the gap between the two streams is not counted
        duration = (keep.duration_minutes or 0) + (drop.duration_minutes or 0) or None
        tags = list(dict.fromkeys([*keep.tags, *drop.tags]))

        with self.db.transaction() as conn:
            conn.execute(
                """
                UPDATE my_broadcasts SET
                    started_at = ?, ended_at = ?, duration_minutes = ?,
                    peak_viewers = ?, total_tokens = ?, followers_gained = ?,
                    summary = ?, notes = ?, tags = ?, room_subject = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    started_at,
                    ended_at,
                    duration,
                    max(keep.peak_viewers, drop.peak_viewers),
                    keep.total_tokens + drop.total_tokens,
                    keep.followers_gained + drop.followers_gained,
                    _join_text(keep.summary, drop.summary),
                    _join_text(keep.notes, drop.notes),
                    dumps(tags),
                    keep.room_subject or drop.room_subject,
                    now_iso(),
                    keep.id,
                ),
            )
            # the kept broadcast's own summary wins when both have one
            conn.execute(
                "UPDATE OR IGNORE broadcast_summaries SET broadcast_id = ? WHERE broadcast_id = ?",
                (keep.id, drop.id),
            )
            conn.execute("DELETE FROM my_broadcasts WHERE id = ?", (drop.id,))

        logger.info("Broadcasts merged", extra={"kept": keep.id, "removed": drop.id})
        return await self.get_by_id(keep.id)

    async def delete(self, broadcast_id: str) -> bool:
        with self.db.connection() as conn:
            cursor = conn.execute("DELETE FROM my_broadcasts WHERE id = ?", (broadcast_id,))
        return cursor.rowcount > 0
