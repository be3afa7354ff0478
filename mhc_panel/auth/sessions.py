"""
Login sessions.

The browser holds a random 32-byte hex token in the session_token cookie;
the database only stores its SHA-256 hash. Each session also carries a CSRF
token that state-changing requests must echo in X-CSRF-Token.

Invariants:
    - Only active, unexpired sessions resolve from a token
    - Sessions idle for more than renewal_hours get last_active_at bumped and
      their expiry extended on the next request
    - Revoked sessions are kept with revoked_at and revoke_reason
"""

from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from ..errors import PanelError
from ..store import Database, new_id, now_iso, parse_iso, to_iso, utcnow
from .passwords import generate_token, hash_token

logger = logging.getLogger(__name__)


@dataclass
class AuthSession:
    id: str
    user_id: str
    csrf_token: str
    ip_address: str | None
    user_agent: str | None
    device_fingerprint: str | None
    totp_verified: bool
    totp_verified_at: str | None
    is_active: bool
    created_at: str
    last_active_at: str
    expires_at: str

    def to_public(self, current_session_id: str | None = None) -> dict[str, Any]:
        return {
            "id": self.id,
            "ipAddress": self.ip_address,
            "userAgent": self.user_agent,
            "createdAt": self.created_at,
            "lastActiveAt": self.last_active_at,
            "expiresAt": self.expires_at,
            "isCurrent": self.id == current_session_id,
        }


def _row_to_session(row: sqlite3.Row) -> AuthSession:
    return AuthSession(
        id=row["id"],
        user_id=row["user_id"],
        csrf_token=row["csrf_token"],
        ip_address=row["ip_address"],
        user_agent=row["user_agent"],
        device_fingerprint=row["device_fingerprint"],
        totp_verified=bool(row["totp_verified"]),
        totp_verified_at=row["totp_verified_at"],
        is_active=bool(row["is_active"]),
        created_at=row["created_at"],
        last_active_at=row["last_active_at"],
        expires_at=row["expires_at"],
    )


class SessionManager:
    def __init__(self, db: Database, session_days: int = 7, renewal_hours: int = 1) -> None:
        self.db = db
        self.session_days = session_days
        self.renewal_hours = renewal_hours

    async def create(
        self,
        user_id: str,
        ip_address: str | None = None,
        user_agent: str | None = None,
        device_fingerprint: str | None = None,
        totp_verified: bool = True,
    ) -> tuple[str, AuthSession]:
        """Create a session.

        Returns:
            (raw token for the cookie, session)
        """
        token = generate_token(32)
        session_id = new_id()
        now = utcnow()
        with self.db.connection() as conn:
            conn.execute(
                """
                INSERT INTO auth_sessions (
                    id, user_id, token_hash, csrf_token, ip_address, user_agent,
                    device_fingerprint, totp_verified, totp_verified_at,
                    created_at, last_active_at, expires_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    session_id,
                    user_id,
                    hash_token(token),
                    generate_token(32),
                    ip_address,
                    user_agent,
                    device_fingerprint,
                    int(totp_verified),
                    None,
                    to_iso(now),
                    to_iso(now),
                    to_iso(now + timedelta(days=self.session_days)),
                ),
            )
        logger.info("Session created", extra={"user_id": user_id, "session_id": session_id})
        session = await self.get_by_id(session_id)
        if session is None:
            raise PanelError(f"Session {session_id} was not stored")
        return token, session

    async def get_by_token(self, token: str) -> AuthSession | None:
        with self.db.connection() as conn:
            row = conn.execute(
                """
                SELECT * FROM auth_sessions
                WHERE token_hash = ? AND is_active = 1 AND expires_at > ?
                """,
                (hash_token(token), now_iso()),
            ).fetchone()
        return _row_to_session(row) if row else None

    async def get_by_id(self, session_id: str) -> AuthSession | None:
        with self.db.connection() as conn:
            row = conn.execute("SELECT * FROM auth_sessions WHERE id = ?", (session_id,)).fetchone()
        return _row_to_session(row) if row else None

    def needs_renewal(self, session: AuthSession) -> bool:
        idle = utcnow() - parse_iso(session.last_active_at)
        return idle > timedelta(hours=self.renewal_hours)

    async def touch(self, session: AuthSession) -> None:
        """Rolling renewal: bump activity and push the expiry out."""
        now = utcnow()
        new_expiry = max(session.expires_at, to_iso(now + timedelta(days=self.session_days)))
        with self.db.connection() as conn:
            conn.execute(
                """
                UPDATE auth_sessions SET last_active_at = ?, expires_at = ?
                WHERE id = ? AND is_active = 1
                """,
                (to_iso(now), new_expiry, session.id),
            )

    async def mark_totp_verified(self, session_id: str) -> None:
        with self.db.connection() as conn:
            conn.execute(
                "UPDATE auth_sessions SET totp_verified = 1, totp_verified_at = ? WHERE id = ?",
                (now_iso(), session_id),
            )

    async def rotate(self, session_id: str) -> tuple[str, AuthSession] | None:
        """Issue a new token and CSRF token for an active session."""
        token = generate_token(32)
        with self.db.connection() as conn:
            cursor = conn.execute(
                """
                UPDATE auth_sessions SET token_hash = ?, csrf_token = ?, last_active_at = ?
                WHERE id = ? AND is_active = 1
                """,
                (hash_token(token), generate_token(32), now_iso(), session_id),
            )
        if cursor.rowcount == 0:
            return None
        session = await self.get_by_id(session_id)
        if session is None:
            raise PanelError(f"Session {session_id} was not stored")
        return token, session

    async def revoke(self, session_id: str, reason: str = "user_logout") -> bool:
        with self.db.connection() as conn:
            cursor = conn.execute(
                """
                UPDATE auth_sessions SET is_active = 0, revoked_at = ?, revoke_reason = ?
                WHERE id = ? AND is_active = 1
                """,
                (now_iso(), reason, session_id),
            )
        return cursor.rowcount > 0

    async def revoke_all(self, user_id: str, except_session_id: str | None = None) -> int:
        with self.db.connection() as conn:
            cursor = conn.execute(
                """
                UPDATE auth_sessions SET is_active = 0, revoked_at = ?, revoke_reason = 'logout_all'
                WHERE user_id = ? AND is_active = 1 AND id != ?
                """,
                (now_iso(), user_id, except_session_id or ""),
            )
        logger.info("Sessions revoked", extra={"user_id": user_id, "count": cursor.rowcount})
        return cursor.rowcount

    async def list_active(self, user_id: str) -> list[AuthSession]:
        with self.db.connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM auth_sessions
                WHERE user_id = ? AND is_active = 1 AND expires_at > ?
                ORDER BY last_active_at DESC
                """,
                (user_id, now_iso()),
            ).fetchall()
        return [_row_to_session(row) for row in rows]
