"""Password and token hashing."""

from __future__ import annotations

import base64
import binascii
import hashlib
import secrets

PBKDF2_ITERATIONS = 200_000
SALT_BYTES = 16
KEY_BYTES = 32


def hash_password(password: str) -> str:
    """PBKDF2-SHA256, stored as base64(salt + derived key)."""
    salt = secrets.token_bytes(SALT_BYTES)
    dk = hashlib.pbkdf2_hmac("sha256", str(password).encode("utf-8"), salt, PBKDF2_ITERATIONS)
    return base64.b64encode(salt + dk).decode("ascii")


def verify_password(password: str, stored: str) -> bool:
    try:
        raw = base64.b64decode(str(stored).encode("ascii"), validate=True)
    except (binascii.Error, ValueError):
        return False
    if len(raw) != SALT_BYTES + KEY_BYTES:
        return False
    salt = raw[:SALT_BYTES]
    stored_key = raw[SALT_BYTES:]
    new_key = hashlib.pbkdf2_hmac("sha256", str(password).encode("utf-8"), salt, PBKDF2_ITERATIONS)
    return secrets.compare_digest(new_key, stored_key)


def generate_token(num_bytes: int = 32) -> str:
    return secrets.token_hex(num_bytes)


def hash_token(token: str) -> str:
    """SHA-256 of a high-entropy token; session and device tokens are stored this way."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()
