"""
AES-256-GCM encryption for TOTP secrets.

Storage format: base64(nonce(12) | ciphertext+tag). The 256-bit key is the
SHA-256 digest of TOTP_ENCRYPTION_KEY, so any passphrase length works.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

NONCE_SIZE = 12


class DecryptFailed(Exception):
    """Wrong key, corrupted data or malformed payload."""


class SecretBox:
    def __init__(self, passphrase: str) -> None:
        self._aesgcm = AESGCM(hashlib.sha256(passphrase.encode("utf-8")).digest())

    def encrypt(self, plaintext: str) -> str:
        nonce = secrets.token_bytes(NONCE_SIZE)
        ciphertext = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(nonce + ciphertext).decode("ascii")

    def decrypt(self, payload: str) -> str:
        try:
            raw = base64.b64decode(payload.encode("ascii"), validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecryptFailed("Invalid encrypted payload") from e
        if len(raw) <= NONCE_SIZE:
            raise DecryptFailed("Encrypted payload too short")
        try:
            plaintext = self._aesgcm.decrypt(raw[:NONCE_SIZE], raw[NONCE_SIZE:], None)
        except InvalidTag as e:
            raise DecryptFailed("Decryption failed") from e
        return plaintext.decode("utf-8")
