"""
FastAPI dependencies: service access, cookie sessions, CSRF and 2FA gates.

Invariants:
    - current_session never raises; it returns None for a missing, unknown or
      expired cookie
    - require_auth refuses sessions that still owe a TOTP code
    - csrf_protect only checks unsafe methods on requests that carry a session

How to change safely:
    - Routers declare their gates with dependencies=[...] on include_router;
      handlers that need the caller take AuthContext via Depends(require_auth)
    - FastAPI caches dependencies per request, so current_session runs once
      however many gates depend on it
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta

from fastapi import Depends, Request, Response

from ..auth import AuthSession, User
from ..container import Services
from ..errors import AuthenticationError, ForbiddenError
from ..store import parse_iso, utcnow
from .config import Settings

logger = logging.getLogger(__name__)

SESSION_COOKIE = "session_token"
TRUSTED_DEVICE_COOKIE = "trusted_device"
CSRF_HEADER = "X-CSRF-Token"
SAFE_METHODS = ("GET", "HEAD", "OPTIONS")


@dataclass
class AuthContext:
    """The authenticated caller."""

    user: User
    session: AuthSession


def get_services(request: Request) -> Services:
    """Get the service container from app state."""
    return request.app.state.services


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def set_session_cookie(response: Response, token: str, settings: Settings, max_age_days: int) -> None:
    response.set_cookie(
        SESSION_COOKIE,
        token,
        max_age=max_age_days * 24 * 3600,
        httponly=True,
        samesite="lax",
        secure=settings.cookie_secure,
        domain=settings.cookie_domain,
    )


def set_trusted_device_cookie(response: Response, token: str, settings: Settings, max_age_days: int) -> None:
    response.set_cookie(
        TRUSTED_DEVICE_COOKIE,
        token,
        max_age=max_age_days * 24 * 3600,
        httponly=True,
        samesite="lax",
        secure=settings.cookie_secure,
        domain=settings.cookie_domain,
    )


def clear_session_cookie(response: Response, settings: Settings) -> None:
    response.delete_cookie(SESSION_COOKIE, domain=settings.cookie_domain)


async def current_session(
    request: Request,
    services: Services = Depends(get_services),
) -> AuthSession | None:
    """Resolve the session cookie, renewing idle sessions."""
    token = request.cookies.get(SESSION_COOKIE)
    if not token:
        return None
    session = await services.auth_sessions.get_by_token(token)
    if session is None:
        return None
    if services.auth_sessions.needs_renewal(session):
        await services.auth_sessions.touch(session)
    return session


async def require_auth(
    session: AuthSession | None = Depends(current_session),
    services: Services = Depends(get_services),
) -> AuthContext:
    """Require a logged-in, fully verified session.

    Raises:
        AuthenticationError: No valid session or inactive user
        ForbiddenError: TOTP is enabled and this session has not passed it
    """
    if session is None:
        raise AuthenticationError()
    user = await services.users.get_by_id(session.user_id)
    if user is None or not user.is_active:
        raise AuthenticationError()
    if user.totp_enabled and not session.totp_verified:
        raise ForbiddenError("Two-factor authentication required", {"requires2FA": True})
    return AuthContext(user=user, session=session)


async def csrf_protect(
    request: Request,
    session: AuthSession | None = Depends(current_session),
) -> None:
    if request.method in SAFE_METHODS or session is None:
        return
    supplied = request.headers.get(CSRF_HEADER)
    if not supplied or not secrets.compare_digest(supplied, session.csrf_token):
        logger.warning("CSRF check failed", extra={"path": request.url.path, "session_id": session.id})
        raise ForbiddenError("Invalid CSRF token")


def require_fresh_2fa(max_age_minutes: int = 5) -> Callable[..., Awaitable[AuthContext]]:
    """Gate for sensitive actions: TOTP users must have verified recently."""

    async def dependency(auth: AuthContext = Depends(require_auth)) -> AuthContext:
        if not auth.user.totp_enabled:
            return auth
        verified_at = parse_iso(auth.session.totp_verified_at)
        if verified_at is None or utcnow() - verified_at > timedelta(minutes=max_age_minutes):
            raise ForbiddenError("Recent two-factor verification required", {"requireFresh2FA": True})
        return auth

    return dependency
