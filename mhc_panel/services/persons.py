"""
Person directory.

A person is any Chaturbate account the panel has seen: viewers in chat,
models looked up on Statbate, and the broadcaster's own account.

Invariants:
    - usernames are lower-cased before they touch the database
    - (username, platform) is unique
    - rid/did are only filled in, never overwritten, by find_or_create
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any

from ..errors import PanelError
from ..store import Database, new_id, now_iso

logger = logging.getLogger(__name__)


class PersonRole(str, Enum):
    MODEL = "MODEL"
    VIEWER = "VIEWER"
    BOTH = "BOTH"
    UNKNOWN = "UNKNOWN"


@dataclass
class Person:
    """A tracked account.

    Attributes:
        id: Person UUID
        username: Lower-cased username
        platform: Platform name (always chaturbate today)
        role: MODEL, VIEWER, BOTH or UNKNOWN
        rid: Statbate room id (models)
        did: Statbate donor id (members)
        first_seen_at: First time this person was recorded
        last_seen_at: Last time this person was looked up or seen in events
        is_excluded: Hidden from people lists (owner alt accounts)
    """

    id: str
    username: str
    platform: str
    role: str
    rid: int | None
    did: int | None
    first_seen_at: str
    last_seen_at: str
    is_excluded: bool
    created_at: str
    updated_at: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _row_to_person(row: sqlite3.Row) -> Person:
    return Person(
        id=row["id"],
        username=row["username"],
        platform=row["platform"],
        role=row["role"],
        rid=row["rid"],
        did=row["did"],
        first_seen_at=row["first_seen_at"],
        last_seen_at=row["last_seen_at"],
        is_excluded=bool(row["is_excluded"]),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class PersonService:
    """CRUD over the persons and person_aliases tables.

    Example:
        >>> persons = PersonService(db, owner_username="hudson_cage")
        >>> person = await persons.find_or_create("SomeViewer", role="VIEWER")
        >>> person.username
        'someviewer'
    """

    def __init__(
        self,
        db: Database,
        owner_username: str = "hudson_cage",
        excluded_usernames: tuple[str, ...] = (),
    ) -> None:
        self.db = db
        self.owner_username = owner_username.lower()
        self.excluded_usernames = {name.lower() for name in excluded_usernames}

    async def get_by_id(self, person_id: str) -> Person | None:
        with self.db.connection() as conn:
            row = conn.execute("SELECT * FROM persons WHERE id = ?", (person_id,)).fetchone()
        return _row_to_person(row) if row else None

    async def find_by_username(self, username: str, platform: str = "chaturbate") -> Person | None:
        """Find a person by username, falling back to active aliases."""
        name = username.strip().lower()
        with self.db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM persons WHERE username = ? AND platform = ?",
                (name, platform),
            ).fetchone()
            if row is None:
                row = conn.execute(
                    """
                    SELECT p.* FROM persons p
                    JOIN person_aliases a ON a.person_id = p.id
                    WHERE a.alias = ? AND a.platform = ? AND a.valid_to IS NULL
                    LIMIT 1
                    """,
                    (name, platform),
                ).fetchone()
        return _row_to_person(row) if row else None

    async def find_or_create(
        self,
        username: str,
        role: str = PersonRole.UNKNOWN.value,
        platform: str = "chaturbate",
        rid: int | None = None,
        did: int | None = None,
    ) -> Person:
        """Return the existing person (touching last_seen_at) or create one.

        Args:
            username: Username in any case
            role: Role for new persons; upgrades an UNKNOWN role on existing ones
            platform: Platform name
            rid: Statbate room id, only stored if none is known yet
            did: Statbate donor id, only stored if none is known yet
        """
        existing = await self.find_by_username(username, platform)
        now = now_iso()

        if existing:
            with self.db.connection() as conn:
                conn.execute(
                    """
                    UPDATE persons SET
                        last_seen_at = ?,
                        rid = COALESCE(rid, ?),
                        did = COALESCE(did, ?),
                        role = CASE WHEN role = 'UNKNOWN' THEN ? ELSE role END,
                        updated_at = ?
                    WHERE id = ?
                    """,
                    (now, rid, did, role, now, existing.id),
                )
            updated = await self.get_by_id(existing.id)
            if updated is None:
                raise PanelError(f"Person {existing.id} was not stored")
            return updated

        name = username.strip().lower()
        is_excluded = name in self.excluded_usernames
        person_id = new_id()
        with self.db.connection() as conn:
            conn.execute(
                """
                INSERT INTO persons (id, username, platform, role, rid, did, first_seen_at,
                                     last_seen_at, is_excluded, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (person_id, name, platform, role, rid, did, now, now, int(is_excluded), now, now),
            )

        logger.info(
            "Person created",
            extra={"person_id": person_id, "username": name, "role": role, "excluded": is_excluded},
        )
        created = await self.get_by_id(person_id)
        if created is None:
            raise PanelError(f"Person {person_id} was not stored")
        return created

    async def search(self, query: str, limit: int = 10) -> list[str]:
        """Prefix search on usernames, excluded persons omitted."""
        prefix = query.strip().lower()
        if not prefix:
            return []
        escaped = prefix.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        with self.db.connection() as conn:
            rows = conn.execute(
                """
                SELECT username FROM persons
                WHERE username LIKE ? ESCAPE '\\' AND is_excluded = 0
                ORDER BY username
                LIMIT ?
                """,
                (escaped + "%", limit),
            ).fetchall()
        return [row["username"] for row in rows]

    async def list_all(self, limit: int = 500, offset: int = 0) -> tuple[list[Person], int]:
        """List non-excluded persons; the owner sorts last."""
        with self.db.connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM persons
                WHERE is_excluded = 0
                ORDER BY CASE WHEN username = ? THEN 1 ELSE 0 END, last_seen_at DESC
                LIMIT ? OFFSET ?
                """,
                (self.owner_username, limit, offset),
            ).fetchall()
            total = conn.execute(
                "SELECT COUNT(*) FROM persons WHERE is_excluded = 0"
            ).fetchone()[0]
        return [_row_to_person(row) for row in rows], total

    async def update(
        self,
        person_id: str,
        role: str | None = None,
        rid: int | None = None,
        did: int | None = None,
        is_excluded: bool | None = None,
    ) -> Person | None:
        fields: list[str] = []
        values: list[Any] = []
        if role is not None:
            fields.append("role = ?")
            values.append(role)
        if rid is not None:
            fields.append("rid = ?")
            values.append(rid)
        if did is not None:
            fields.append("did = ?")
            values.append(did)
        if is_excluded is not None:
            fields.append("is_excluded = ?")
            values.append(int(is_excluded))

        if not fields:
            return await self.get_by_id(person_id)

        fields.append("updated_at = ?")
        values.extend([now_iso(), person_id])
        with self.db.connection() as conn:
            cursor = conn.execute(
                f"UPDATE persons SET {', '.join(fields)} WHERE id = ?",
                values,
            )
            if cursor.rowcount == 0:
                return None
        return await self.get_by_id(person_id)

    async def delete(self, person_id: str) -> bool:
        with self.db.connection() as conn:
            cursor = conn.execute("DELETE FROM persons WHERE id = ?", (person_id,))
        deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Person deleted", extra={"person_id": person_id})
        return deleted

    async def add_alias(self, person_id: str, alias: str, platform: str = "chaturbate") -> dict[str, Any]:
        """Record an alias, closing any open alias with the same name first."""
        name = alias.strip().lower()
        now = now_iso()
        alias_id = new_id()
        with self.db.transaction() as conn:
            conn.execute(
                """
                UPDATE person_aliases SET valid_to = ?
                WHERE person_id = ? AND alias = ? AND platform = ? AND valid_to IS NULL
                """,
                (now, person_id, name, platform),
            )
            conn.execute(
                """
                INSERT INTO person_aliases (id, person_id, alias, platform, valid_from)
                VALUES (?, ?, ?, ?, ?)
                """,
                (alias_id, person_id, name, platform, now),
            )
        return {
            "id": alias_id,
            "person_id": person_id,
            "alias": name,
            "platform": platform,
            "valid_from": now,
            "valid_to": None,
        }

    async def get_aliases(self, person_id: str) -> list[dict[str, Any]]:
        with self.db.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM person_aliases WHERE person_id = ? ORDER BY valid_from DESC",
                (person_id,),
            ).fetchall()
        return [dict(row) for row in rows]
