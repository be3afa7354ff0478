"""
Login and two-factor verification flow.

A login with correct credentials always creates a session. When the user has
TOTP enabled and the request carries no valid trusted-device token, that
session starts unverified and only /verify-2fa can promote it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..errors import AuthenticationError, ValidationError
from ..store import parse_iso, utcnow
from .sessions import AuthSession, SessionManager
from .totp import TotpService
from .users import User, UserService

logger = logging.getLogger(__name__)


@dataclass
class LoginResult:
    user: User
    token: str
    session: AuthSession
    requires_2fa: bool = False
    trusted_device_token: str | None = None


class AuthFlow:
    def __init__(self, users: UserService, sessions: SessionManager, totp: TotpService) -> None:
        self.users = users
        self.sessions = sessions
        self.totp = totp

    async def login(
        self,
        password: str | None,
        email: str | None = None,
        username: str | None = None,
        subscriber_id: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        trusted_device_token: str | None = None,
    ) -> LoginResult:
        """Check credentials and open a session.

        Raises:
            ValidationError: No identifier or no password
            AuthenticationError: Wrong credentials or inactive account
        """
        if not password or not (email or username or subscriber_id):
            raise ValidationError("Email/username/subscriberId and password are required")

        user = await self.users.authenticate(password, email, username, subscriber_id)
        if user is None:
            logger.info("Login failed", extra={"ip_address": ip_address})
            raise AuthenticationError("Invalid credentials")

        requires_2fa = user.totp_enabled and not await self.totp.is_trusted_device(user.id, trusted_device_token)
        token, session = await self.sessions.create(
            user.id,
            ip_address=ip_address,
            user_agent=user_agent,
            totp_verified=not requires_2fa,
        )
        if not requires_2fa:
            await self.users.record_login(user.id)

        logger.info("Login succeeded", extra={"user_id": user.id, "requires_2fa": requires_2fa})
        return LoginResult(user=user, token=token, session=session, requires_2fa=requires_2fa)

    async def verify_2fa(
        self,
        session_id: str,
        code: str,
        trust_device: bool = False,
        device_fingerprint: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> LoginResult:
        """Complete a pending login with a TOTP or recovery code.

        The session is rotated so the pre-2FA token stops working.

        Raises:
            ValidationError: Missing session id or code
            AuthenticationError: Unknown session or wrong code
        """
        if not session_id or not code:
            raise ValidationError("Session ID and code are required")

        session = await self.sessions.get_by_id(session_id)
        if session is None or not session.is_active or parse_iso(session.expires_at) <= utcnow():
            raise AuthenticationError("Invalid or expired session")
        user = await self.users.get_by_id(session.user_id)
        if user is None or not user.is_active:
            raise AuthenticationError("Invalid or expired session")

        valid = await self.totp.verify_code(user.id, code)
        if not valid:
            valid = await self.totp.use_recovery_code(user.id, code, ip_address)
        if not valid:
            logger.info("2FA verification failed", extra={"user_id": user.id, "session_id": session_id})
            raise AuthenticationError("Invalid verification code")

        await self.sessions.mark_totp_verified(session_id)

        device_token = None
        if trust_device and device_fingerprint:
            device_token = await self.totp.trust_device(
                user.id, name=device_fingerprint, user_agent=user_agent, ip_address=ip_address
            )

        await self.users.record_login(user.id)
        rotated = await self.sessions.rotate(session_id)
        if rotated is None:
            raise AuthenticationError("Invalid or expired session")
        token, session = rotated

        logger.info("2FA verified", extra={"user_id": user.id, "session_id": session_id})
        return LoginResult(user=user, token=token, session=session, trusted_device_token=device_token)
