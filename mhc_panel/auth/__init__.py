"""Authentication: users, cookie sessions, CSRF and TOTP two-factor."""

from .crypto import DecryptFailed, SecretBox
from .flow import AuthFlow, LoginResult
from .passwords import generate_token, hash_password, hash_token, verify_password
from .sessions import AuthSession, SessionManager
from .totp import TotpService
from .users import ROLE_PERMISSIONS, User, UserService

__all__ = [
    "ROLE_PERMISSIONS",
    "AuthFlow",
    "AuthSession",
    "DecryptFailed",
    "LoginResult",
    "SecretBox",
    "SessionManager",
    "TotpService",
    "User",
    "UserService",
    "generate_token",
    "hash_password",
    "hash_token",
    "verify_password",
]
