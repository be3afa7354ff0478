"""
Panel user accounts.

Users log in with email, username or subscriber id plus a password. The
first account ever created becomes the owner; later accounts are members.
Permissions come from a static role map.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
from dataclasses import dataclass
from typing import Any

from ..errors import ConflictError, PanelError, ValidationError
from ..store import Database, new_id, now_iso
from .passwords import hash_password, verify_password

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8

CONTENT_VIEW_PERMISSIONS = (
    "content.view_persons",
    "content.view_sessions",
    "content.view_broadcasts",
    "content.view_media",
)

CONTENT_PERMISSIONS = CONTENT_VIEW_PERMISSIONS + (
    "content.edit_persons",
    "content.edit_broadcasts",
    "content.edit_media",
    "content.delete",
)

ROLE_PERMISSIONS: dict[str, tuple[str, ...]] = {
    "owner": ("*",),
    "admin": (
        "auth.login",
        "users.view",
        "users.edit",
        *CONTENT_PERMISSIONS,
        "admin.view_dashboard",
        "admin.manage_jobs",
        "admin.manage_settings",
        "admin.view_logs",
    ),
    "member": ("auth.login", *CONTENT_VIEW_PERMISSIONS),
    "guest": ("auth.login",),
}


@dataclass
class User:
    id: str
    email: str | None
    username: str | None
    subscriber_id: str | None
    display_name: str | None
    role: str
    totp_enabled: bool
    is_active: bool
    last_login_at: str | None
    created_at: str
    password_hash: str = ""

    @property
    def permissions(self) -> list[str]:
        return list(ROLE_PERMISSIONS.get(self.role, ()))

    def has_permission(self, permission: str) -> bool:
        granted = ROLE_PERMISSIONS.get(self.role, ())
        return "*" in granted or permission in granted

    def to_public(self) -> dict[str, Any]:
        """API representation; never includes the password hash."""
        return {
            "id": self.id,
            "email": self.email,
            "username": self.username,
            "subscriberId": self.subscriber_id,
            "displayName": self.display_name,
            "role": self.role,
            "roles": [self.role],
            "permissions": self.permissions,
            "totpEnabled": self.totp_enabled,
            "isActive": self.is_active,
            "lastLoginAt": self.last_login_at,
            "createdAt": self.created_at,
        }


def _row_to_user(row: sqlite3.Row) -> User:
    return User(
        id=row["id"],
        email=row["email"],
        username=row["username"],
        subscriber_id=row["subscriber_id"],
        display_name=row["display_name"],
        role=row["role"],
        totp_enabled=bool(row["totp_enabled"]),
        is_active=bool(row["is_active"]),
        last_login_at=row["last_login_at"],
        created_at=row["created_at"],
        password_hash=row["password_hash"],
    )


class UserService:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def create(
        self,
        password: str,
        email: str | None = None,
        username: str | None = None,
        subscriber_id: str | None = None,
        display_name: str | None = None,
    ) -> User:
        """Create an account.

        Raises:
            ValidationError: No identifier, or password shorter than 8 characters
            ConflictError: Email, username or subscriber id already taken
        """
        if not (email or username or subscriber_id):
            raise ValidationError("email, username or subscriberId required")
        if not password or len(password) < MIN_PASSWORD_LENGTH:
            raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

        email = email.strip().lower() if email else None
        username = username.strip().lower() if username else None
        user_id = new_id()
        now = now_iso()
        password_hash = await asyncio.to_thread(hash_password, password)

        with self.db.transaction() as conn:
            taken = conn.execute(
                """
                SELECT 1 FROM users
                WHERE email = ? OR username = ? OR subscriber_id = ?
                LIMIT 1
                """,
                (email, username, subscriber_id),
            ).fetchone()
            if taken:
                raise ConflictError("An account with these credentials already exists")

            first_user = conn.execute("SELECT COUNT(*) FROM users").fetchone()[0] == 0
            role = "owner" if first_user else "member"
            conn.execute(
                """
                INSERT INTO users (id, email, username, subscriber_id, password_hash,
                                   display_name, role, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (user_id, email, username, subscriber_id, password_hash, display_name, role, now, now),
            )

        logger.info("User created", extra={"user_id": user_id, "role": role})
        user = await self.get_by_id(user_id)
        if user is None:
            raise PanelError(f"User {user_id} was not stored")
        return user

    async def get_by_id(self, user_id: str) -> User | None:
        with self.db.connection() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        return _row_to_user(row) if row else None

    async def find_by_identifier(
        self,
        email: str | None = None,
        username: str | None = None,
        subscriber_id: str | None = None,
    ) -> User | None:
        if email:
            column, value = "email", email.strip().lower()
        elif username:
            column, value = "username", username.strip().lower()
        elif subscriber_id:
            column, value = "subscriber_id", subscriber_id.strip()
        else:
            return None

        with self.db.connection() as conn:
            row = conn.execute(f"SELECT * FROM users WHERE {column} = ?", (value,)).fetchone()
        return _row_to_user(row) if row else None

    async def authenticate(
        self,
        password: str,
        email: str | None = None,
        username: str | None = None,
        subscriber_id: str | None = None,
    ) -> User | None:
        """Return the user when the password matches and the account is active."""
        user = await self.find_by_identifier(email, username, subscriber_id)
        if user is None:
            # keep timing similar for unknown accounts
            await asyncio.to_thread(hash_password, password or "")
            return None
        if not user.is_active:
            return None
        if not await asyncio.to_thread(verify_password, password or "", user.password_hash):
            return None
        return user

    async def record_login(self, user_id: str) -> None:
        now = now_iso()
        with self.db.connection() as conn:
            conn.execute(
                "UPDATE users SET last_login_at = ?, updated_at = ? WHERE id = ?",
                (now, now, user_id),
            )

    async def set_totp_enabled(self, user_id: str, enabled: bool) -> None:
        with self.db.connection() as conn:
            conn.execute(
                "UPDATE users SET totp_enabled = ?, updated_at = ? WHERE id = ?",
                (int(enabled), now_iso(), user_id),
            )
        logger.info("TOTP setting changed", extra={"user_id": user_id, "enabled": enabled})
