"""
Follower tracking.

Two independent histories live here:
- FollowerHistoryService: follower counts over time per person (trends)
- FollowHistoryService: who followed/unfollowed the owner, and whom the
  owner follows, as an append-only action log

Invariants:
    - A follower count equal to the previous one is not recorded
    - The current following/follower set is derived from the latest action
      per person and direction
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import timedelta
from typing import Any

from ..errors import ValidationError
from ..store import Database, new_id, now_iso, to_iso, utcnow
from .persons import PersonRole, PersonService

logger = logging.getLogger(__name__)

FOLLOW_DIRECTIONS = ("following", "follower")
FOLLOW_ACTIONS = ("follow", "unfollow")


def _since(days: int) -> str:
    return to_iso(utcnow() - timedelta(days=days))


def _row_dict(row: sqlite3.Row) -> dict[str, Any]:
    return dict(row)


class FollowerHistoryService:
    """Follower count history and trend queries."""

    def __init__(self, db: Database) -> None:
        self.db = db

    async def record_count(
        self, person_id: str, follower_count: int, source: str = "affiliate_api"
    ) -> dict[str, Any] | None:
        """Record a count, computing the delta from the previous record.

        Returns:
            The stored record, or None when the count did not change.
        """
        with self.db.connection() as conn:
            previous = conn.execute(
                """
                SELECT follower_count FROM follower_count_history
                WHERE person_id = ? ORDER BY recorded_at DESC LIMIT 1
                """,
                (person_id,),
            ).fetchone()

            previous_count = previous["follower_count"] if previous else None
            delta = follower_count - previous_count if previous_count is not None else 0
            if previous_count is not None and delta == 0:
                return None

            record_id = new_id()
            conn.execute(
                """
                INSERT INTO follower_count_history
                    (id, person_id, follower_count, previous_count, delta, recorded_at, source)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (record_id, person_id, follower_count, previous_count, delta, now_iso(), source),
            )
            row = conn.execute(
                "SELECT * FROM follower_count_history WHERE id = ?", (record_id,)
            ).fetchone()

        logger.debug(
            "Recorded follower count",
            extra={"person_id": person_id, "follower_count": follower_count, "delta": delta},
        )
        return _row_dict(row)

    async def get_history(self, person_id: str, days: int = 30, limit: int = 100) -> list[dict[str, Any]]:
        with self.db.connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM follower_count_history
                WHERE person_id = ? AND recorded_at > ?
                ORDER BY recorded_at DESC LIMIT ?
                """,
                (person_id, _since(days), limit),
            ).fetchall()
        return [_row_dict(row) for row in rows]

    async def get_growth_stats(self, person_id: str, days: int = 30) -> dict[str, Any]:
        since = _since(days)
        with self.db.connection() as conn:
            stats = conn.execute(
                """
                SELECT
                    COALESCE(SUM(delta), 0) AS total_growth,
                    COALESCE(MAX(delta), 0) AS max_gain,
                    COALESCE(MIN(delta), 0) AS max_loss,
                    COUNT(*) AS record_count
                FROM follower_count_history
                WHERE person_id = ? AND recorded_at > ?
                """,
                (person_id, since),
            ).fetchone()
            first = conn.execute(
                """
                SELECT follower_count FROM follower_count_history
                WHERE person_id = ? AND recorded_at > ?
                ORDER BY recorded_at ASC LIMIT 1
                """,
                (person_id, since),
            ).fetchone()
            last = conn.execute(
                """
                SELECT follower_count FROM follower_count_history
                WHERE person_id = ? AND recorded_at > ?
                ORDER BY recorded_at DESC LIMIT 1
                """,
                (person_id, since),
            ).fetchone()

        total_growth = stats["total_growth"]
        return {
            "totalGrowth": total_growth,
            "averageDaily": total_growth / days if days > 0 else 0,
            "maxGain": stats["max_gain"],
            "maxLoss": stats["max_loss"],
            "recordCount": stats["record_count"],
            "firstCount": first["follower_count"] if first else None,
            "lastCount": last["follower_count"] if last else None,
            "periodDays": days,
        }

    async def get_top_movers(
        self, days: int = 7, limit: int = 10, direction: str = "gainers"
    ) -> list[dict[str, Any]]:
        if direction not in ("gainers", "losers"):
            raise ValidationError(f"Unknown direction: {direction}")
        having = "> 0" if direction == "gainers" else "< 0"
        order = "DESC" if direction == "gainers" else "ASC"

        with self.db.connection() as conn:
            rows = conn.execute(
                f"""
                SELECT
                    p.username,
                    fh.person_id,
                    SUM(fh.delta) AS total_change,
                    (SELECT follower_count FROM follower_count_history latest
                     WHERE latest.person_id = fh.person_id
                     ORDER BY latest.recorded_at DESC LIMIT 1) AS current_count
                FROM follower_count_history fh
                JOIN persons p ON p.id = fh.person_id
                WHERE fh.recorded_at > ?
                GROUP BY fh.person_id, p.username
                HAVING SUM(fh.delta) {having}
                ORDER BY total_change {order}
                LIMIT ?
                """,
                (_since(days), limit),
            ).fetchall()
        return [_row_dict(row) for row in rows]

    async def get_recent_changes(self, min_delta: int = 100, limit: int = 50) -> list[dict[str, Any]]:
        with self.db.connection() as conn:
            rows = conn.execute(
                """
                SELECT fh.*, p.username
                FROM follower_count_history fh
                JOIN persons p ON p.id = fh.person_id
                WHERE ABS(fh.delta) >= ?
                ORDER BY fh.recorded_at DESC
                LIMIT ?
                """,
                (min_delta, limit),
            ).fetchall()
        return [_row_dict(row) for row in rows]

    async def get_dashboard_summary(self, days: int = 7, limit: int = 10) -> dict[str, Any]:
        with self.db.connection() as conn:
            counts = conn.execute(
                """
                SELECT
                    COUNT(DISTINCT person_id) AS total_tracked,
                    COUNT(DISTINCT CASE WHEN delta != 0 THEN person_id END) AS with_changes
                FROM follower_count_history
                WHERE recorded_at > ?
                """,
                (_since(days),),
            ).fetchone()

        return {
            "topGainers": await self.get_top_movers(days, limit, "gainers"),
            "topLosers": await self.get_top_movers(days, limit, "losers"),
            "recentChanges": await self.get_recent_changes(min_delta=50, limit=20),
            "totalTracked": counts["total_tracked"],
            "totalWithChanges": counts["with_changes"],
        }

    async def get_recent_changes_paginated(
        self,
        limit: int = 20,
        offset: int = 0,
        sort_by: str = "date",
        sort_order: str = "desc",
        min_delta: int = 0,
    ) -> dict[str, Any]:
        order_column = "ABS(fh.delta)" if sort_by == "change" else "fh.recorded_at"
        order = "ASC" if sort_order.lower() == "asc" else "DESC"

        with self.db.connection() as conn:
            rows = conn.execute(
                f"""
                SELECT fh.*, p.username
                FROM follower_count_history fh
                JOIN persons p ON p.id = fh.person_id
                WHERE ABS(fh.delta) >= ?
                ORDER BY {order_column} {order}
                LIMIT ? OFFSET ?
                """,
                (min_delta, limit, offset),
            ).fetchall()
            total = conn.execute(
                "SELECT COUNT(*) FROM follower_count_history WHERE ABS(delta) >= ?",
                (min_delta,),
            ).fetchone()[0]

        return {"records": [_row_dict(row) for row in rows], "total": total}


class FollowHistoryService:
    """Append-only follow/unfollow log and list diffing."""

    def __init__(self, db: Database, persons: PersonService) -> None:
        self.db = db
        self.persons = persons

    async def record(
        self, person_id: str, direction: str, action: str, source: str = "manual_import"
    ) -> dict[str, Any]:
        if direction not in FOLLOW_DIRECTIONS:
            raise ValidationError(f"Unknown follow direction: {direction}")
        if action not in FOLLOW_ACTIONS:
            raise ValidationError(f"Unknown follow action: {action}")

        record_id = new_id()
        with self.db.connection() as conn:
            conn.execute(
                """
                INSERT INTO follow_history (id, person_id, direction, action, source, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (record_id, person_id, direction, action, source, now_iso()),
            )
            row = conn.execute("SELECT * FROM follow_history WHERE id = ?", (record_id,)).fetchone()

        logger.debug(
            "Follow history recorded",
            extra={"person_id": person_id, "direction": direction, "action": action, "source": source},
        )
        return _row_dict(row)

    async def get_for_person(self, person_id: str, direction: str | None = None) -> list[dict[str, Any]]:
        sql = "SELECT * FROM follow_history WHERE person_id = ?"
        params: list[Any] = [person_id]
        if direction:
            sql += " AND direction = ?"
            params.append(direction)
        sql += " ORDER BY created_at DESC"

        with self.db.connection() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_row_dict(row) for row in rows]

    async def current_set(self, direction: str) -> set[str]:
        """Usernames whose latest action in this direction is a follow."""
        with self.db.connection() as conn:
            rows = conn.execute(
                """
                SELECT p.username, fh.action
                FROM follow_history fh
                JOIN persons p ON p.id = fh.person_id
                WHERE fh.direction = ?
                  AND fh.created_at = (
                      SELECT MAX(latest.created_at) FROM follow_history latest
                      WHERE latest.person_id = fh.person_id AND latest.direction = fh.direction
                  )
                """,
                (direction,),
            ).fetchall()
        return {row["username"] for row in rows if row["action"] == "follow"}

    async def _update(self, direction: str, usernames: list[str]) -> dict[str, int]:
        submitted = list(dict.fromkeys(name.strip().lower() for name in usernames if name.strip()))
        current = await self.current_set(direction)
        added = [name for name in submitted if name not in current]
        removed = sorted(current - set(submitted))

        role = PersonRole.MODEL.value if direction == "following" else PersonRole.VIEWER.value
        for name in added:
            person = await self.persons.find_or_create(name, role=role)
            await self.record(person.id, direction, "follow", "list_scrape")
        for name in removed:
            person = await self.persons.find_by_username(name)
            if person:
                await self.record(person.id, direction, "unfollow", "list_scrape")

        stats = {"newCount": len(added), "removedCount": len(removed), "totalCount": len(submitted)}
        logger.info("Follow list updated", extra={"direction": direction, **stats})
        return stats

    async def update_following(self, usernames: list[str]) -> dict[str, int]:
        return await self._update("following", usernames)

    async def update_followers(self, usernames: list[str]) -> dict[str, int]:
        return await self._update("follower", usernames)
