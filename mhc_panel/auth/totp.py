"""
Two-factor authentication: TOTP devices, recovery codes and trusted devices.

Invariants:
    - TOTP secrets are stored encrypted (SecretBox), never in plain text
    - A user has TOTP enabled only while at least one verified device exists
    - Recovery codes are single use; regenerating replaces the whole batch
    - Recovery codes and trusted device tokens are stored as SHA-256 hashes
    - Trusted device tokens expire
"""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta
from typing import Any

import pyotp

from ..errors import NotFoundError, ValidationError
from ..store import Database, new_id, now_iso, to_iso, utcnow
from .crypto import SecretBox
from .passwords import generate_token, hash_token

logger = logging.getLogger(__name__)

RECOVERY_CODE_COUNT = 10
RECOVERY_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
VALID_WINDOW = 1


def generate_recovery_code() -> str:
    groups = ["".join(secrets.choice(RECOVERY_CODE_ALPHABET) for _ in range(4)) for _ in range(3)]
    return "-".join(groups)


def normalize_code(code: str) -> str:
    return code.strip().replace(" ", "").upper()


class TotpService:
    """TOTP device enrollment and verification.

    Args:
        db: Database handle
        secret_box: Encrypts/decrypts TOTP secrets
        issuer: Issuer name shown in authenticator apps
        trusted_device_days: Lifetime of trusted device tokens
    """

    def __init__(
        self,
        db: Database,
        secret_box: SecretBox,
        issuer: str = "MHC Control Panel",
        trusted_device_days: int = 30,
    ) -> None:
        self.db = db
        self.secret_box = secret_box
        self.issuer = issuer
        self.trusted_device_days = trusted_device_days

    # -- devices -------------------------------------------------------

    async def begin_setup(self, user_id: str, account_name: str, device_name: str = "Authenticator") -> dict[str, str]:
        """Create an unverified device and return its provisioning data."""
        secret = pyotp.random_base32()
        device_id = new_id()
        with self.db.connection() as conn:
            conn.execute(
                """
                INSERT INTO totp_devices (id, user_id, name, secret_encrypted, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (device_id, user_id, device_name, self.secret_box.encrypt(secret), now_iso()),
            )
        uri = pyotp.TOTP(secret).provisioning_uri(name=account_name, issuer_name=self.issuer)
        logger.info("TOTP setup started", extra={"user_id": user_id, "device_id": device_id})
        return {"qrCode": uri, "manualEntryKey": secret, "deviceId": device_id}

    async def confirm_setup(self, user_id: str, device_id: str, code: str) -> list[str]:
        """Verify the first code from a new device and enable 2FA.

        Returns:
            A fresh batch of recovery codes.

        Raises:
            NotFoundError: Unknown device
            ValidationError: Wrong code
        """
        with self.db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM totp_devices WHERE id = ? AND user_id = ?", (device_id, user_id)
            ).fetchone()
        if row is None:
            raise NotFoundError("Device not found")

        secret = self.secret_box.decrypt(row["secret_encrypted"])
        if not pyotp.TOTP(secret).verify(normalize_code(code), valid_window=VALID_WINDOW):
            raise ValidationError("Invalid verification code")

        with self.db.transaction() as conn:
            conn.execute(
                "UPDATE totp_devices SET is_verified = 1, last_used_at = ? WHERE id = ?",
                (now_iso(), device_id),
            )
            conn.execute(
                "UPDATE users SET totp_enabled = 1, updated_at = ? WHERE id = ?",
                (now_iso(), user_id),
            )

        logger.info("TOTP enabled", extra={"user_id": user_id, "device_id": device_id})
        return await self.regenerate_recovery_codes(user_id)

    async def verify_code(self, user_id: str, code: str) -> bool:
        with self.db.connection() as conn:
            rows = conn.execute(
                "SELECT id, secret_encrypted FROM totp_devices WHERE user_id = ? AND is_verified = 1",
                (user_id,),
            ).fetchall()

        token = normalize_code(code)
        for row in rows:
            secret = self.secret_box.decrypt(row["secret_encrypted"])
            if pyotp.TOTP(secret).verify(token, valid_window=VALID_WINDOW):
                with self.db.connection() as conn:
                    conn.execute(
                        "UPDATE totp_devices SET last_used_at = ? WHERE id = ?", (now_iso(), row["id"])
                    )
                return True
        return False

    async def list_devices(self, user_id: str) -> list[dict[str, Any]]:
        with self.db.connection() as conn:
            rows = conn.execute(
                """
                SELECT id, name, is_verified, last_used_at, created_at FROM totp_devices
                WHERE user_id = ? AND is_verified = 1
                ORDER BY created_at
                """,
                (user_id,),
            ).fetchall()
        return [
            {
                "id": row["id"],
                "name": row["name"],
                "lastUsedAt": row["last_used_at"],
                "createdAt": row["created_at"],
            }
            for row in rows
        ]

    async def remove_device(self, user_id: str, device_id: str) -> bool:
        """Delete a device; removing the last one disables 2FA."""
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM totp_devices WHERE id = ? AND user_id = ?", (device_id, user_id)
            )
            if cursor.rowcount == 0:
                return False
            remaining = conn.execute(
                "SELECT COUNT(*) FROM totp_devices WHERE user_id = ? AND is_verified = 1", (user_id,)
            ).fetchone()[0]
            if remaining == 0:
                conn.execute(
                    "UPDATE users SET totp_enabled = 0, updated_at = ? WHERE id = ?", (now_iso(), user_id)
                )
                conn.execute("DELETE FROM recovery_codes WHERE user_id = ?", (user_id,))
        logger.info("TOTP device removed", extra={"user_id": user_id, "device_id": device_id})
        return True

    # -- recovery codes ------------------------------------------------

    async def regenerate_recovery_codes(self, user_id: str) -> list[str]:
        codes = [generate_recovery_code() for _ in range(RECOVERY_CODE_COUNT)]
        hashed = [hash_token(normalize_code(code)) for code in codes]
        batch_id = new_id()
        now = now_iso()
        with self.db.transaction() as conn:
            conn.execute("DELETE FROM recovery_codes WHERE user_id = ?", (user_id,))
            conn.executemany(
                """
                INSERT INTO recovery_codes (id, user_id, batch_id, code_hash, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                [(new_id(), user_id, batch_id, code_hash, now) for code_hash in hashed],
            )
        logger.info("Recovery codes regenerated", extra={"user_id": user_id})
        return codes

    async def use_recovery_code(self, user_id: str, code: str, ip_address: str | None = None) -> bool:
        with self.db.connection() as conn:
            cursor = conn.execute(
                """
                UPDATE recovery_codes SET used_at = ?, used_ip = ?
                WHERE user_id = ? AND code_hash = ? AND used_at IS NULL
                """,
                (now_iso(), ip_address, user_id, hash_token(normalize_code(code))),
            )
        if not cursor.rowcount:
            return False
        logger.info("Recovery code used", extra={"user_id": user_id})
        return True

    async def remaining_recovery_codes(self, user_id: str) -> int:
        with self.db.connection() as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM recovery_codes WHERE user_id = ? AND used_at IS NULL", (user_id,)
            ).fetchone()[0]

    # -- trusted devices -----------------------------------------------

    async def trust_device(
        self,
        user_id: str,
        name: str | None = None,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> str:
        """Register a trusted device and return the raw cookie token."""
        token = generate_token(32)
        now = utcnow()
        with self.db.connection() as conn:
            conn.execute(
                """
                INSERT INTO trusted_devices (id, user_id, token_hash, name, user_agent,
                                             ip_address, created_at, expires_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    new_id(),
                    user_id,
                    hash_token(token),
                    name,
                    user_agent,
                    ip_address,
                    to_iso(now),
                    to_iso(now + timedelta(days=self.trusted_device_days)),
                ),
            )
        logger.info("Device trusted", extra={"user_id": user_id})
        return token

    async def is_trusted_device(self, user_id: str, token: str | None) -> bool:
        if not token:
            return False
        with self.db.connection() as conn:
            cursor = conn.execute(
                """
                UPDATE trusted_devices SET last_used_at = ?
                WHERE user_id = ? AND token_hash = ? AND revoked_at IS NULL AND expires_at > ?
                """,
                (now_iso(), user_id, hash_token(token), now_iso()),
            )
        return cursor.rowcount > 0

    async def list_trusted_devices(self, user_id: str) -> list[dict[str, Any]]:
        with self.db.connection() as conn:
            rows = conn.execute(
                """
                SELECT * FROM trusted_devices
                WHERE user_id = ? AND revoked_at IS NULL AND expires_at > ?
                ORDER BY created_at DESC
                """,
                (user_id, now_iso()),
            ).fetchall()
        return [
            {
                "id": row["id"],
                "name": row["name"],
                "userAgent": row["user_agent"],
                "ipAddress": row["ip_address"],
                "createdAt": row["created_at"],
                "lastUsedAt": row["last_used_at"],
                "expiresAt": row["expires_at"],
            }
            for row in rows
        ]

    async def revoke_trusted_device(self, user_id: str, device_id: str) -> bool:
        with self.db.connection() as conn:
            cursor = conn.execute(
                """
                UPDATE trusted_devices SET revoked_at = ?
                WHERE id = ? AND user_id = ? AND revoked_at IS NULL
                """,
                (now_iso(), device_id, user_id),
            )
        return cursor.rowcount > 0
