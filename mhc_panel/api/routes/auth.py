"""
Authentication routes: login, signup, 2FA, sessions and trusted devices.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, Field

from ...auth import User
from ...container import Services
from ...errors import NotFoundError, ValidationError
from ..config import Settings
from ..deps import (
    TRUSTED_DEVICE_COOKIE,
    AuthContext,
    clear_session_cookie,
    client_ip,
    csrf_protect,
    get_services,
    get_settings,
    require_auth,
    require_fresh_2fa,
    set_session_cookie,
    set_trusted_device_cookie,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Auth"])

AUTH_METHODS = ("email_password", "subscriber_id", "username_password")


# --- Request Models ---


class LoginRequest(BaseModel):
    """Login with one identifier plus a password."""

    email: str | None = None
    username: str | None = None
    subscriber_id: str | None = Field(None, alias="subscriberId")
    password: str | None = None

    model_config = {"populate_by_name": True}


class SignupRequest(BaseModel):
    """Create an account."""

    auth_method: str | None = Field(None, alias="authMethod")
    email: str | None = None
    username: str | None = None
    subscriber_id: str | None = Field(None, alias="subscriberId")
    password: str | None = None
    display_name: str | None = Field(None, alias="displayName")

    model_config = {"populate_by_name": True}


class Verify2FARequest(BaseModel):
    """Second step of a login."""

    session_id: str | None = Field(None, alias="sessionId")
    code: str | None = None
    trust_device: bool = Field(False, alias="trustDevice")
    device_fingerprint: str | None = Field(None, alias="deviceFingerprint")

    model_config = {"populate_by_name": True}


class TotpSetupRequest(BaseModel):
    device_name: str | None = Field(None, alias="deviceName")

    model_config = {"populate_by_name": True}


class TotpVerifyRequest(BaseModel):
    device_id: str | None = Field(None, alias="deviceId")
    code: str | None = None

    model_config = {"populate_by_name": True}


def _user_payload(user: User, csrf_token: str | None) -> dict[str, Any]:
    return {
        "user": user.to_public(),
        "roles": [user.role],
        "permissions": user.permissions,
        "csrfToken": csrf_token,
    }


# --- Login / signup ---


@router.post("/login")
async def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    services: Services = Depends(get_services),
    settings: Settings = Depends(get_settings),
):
    """
    Log in with email, username or subscriber id plus password.

    Returns {requires2FA, sessionId} when a TOTP code is still needed.
    """
    result = await services.auth_flow.login(
        body.password,
        email=body.email,
        username=body.username,
        subscriber_id=body.subscriber_id,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
        trusted_device_token=request.cookies.get(TRUSTED_DEVICE_COOKIE),
    )
    set_session_cookie(response, result.token, settings, services.config.auth.session_days)

    if result.requires_2fa:
        return {"requires2FA": True, "sessionId": result.session.id}
    return _user_payload(result.user, result.session.csrf_token)


@router.post("/signup", status_code=201)
async def signup(
    body: SignupRequest,
    request: Request,
    response: Response,
    services: Services = Depends(get_services),
    settings: Settings = Depends(get_settings),
):
    """Create an account and log it in."""
    if body.auth_method is not None:
        if body.auth_method not in AUTH_METHODS:
            raise ValidationError("Invalid authentication method")
        if body.auth_method == "email_password" and not body.email:
            raise ValidationError("Email is required for email/password authentication")
        if body.auth_method == "subscriber_id" and not body.subscriber_id:
            raise ValidationError("Subscriber ID is required")
        if body.auth_method == "username_password" and not body.username:
            raise ValidationError("Username is required")

    display_name = body.display_name or body.username or (body.email or "").split("@")[0] or body.subscriber_id
    user = await services.users.create(
        body.password or "",
        email=body.email,
        username=body.username,
        subscriber_id=body.subscriber_id,
        display_name=display_name,
    )

    token, session = await services.auth_sessions.create(
        user.id,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    await services.users.record_login(user.id)
    set_session_cookie(response, token, settings, services.config.auth.session_days)
    return _user_payload(user, session.csrf_token)


@router.post("/verify-2fa")
async def verify_2fa(
    body: Verify2FARequest,
    request: Request,
    response: Response,
    services: Services = Depends(get_services),
    settings: Settings = Depends(get_settings),
):
    """Finish a login with a TOTP or recovery code."""
    result = await services.auth_flow.verify_2fa(
        body.session_id or "",
        body.code or "",
        trust_device=body.trust_device,
        device_fingerprint=body.device_fingerprint,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    if result.trusted_device_token:
        set_trusted_device_cookie(
            response, result.trusted_device_token, settings, services.config.auth.trusted_device_days
        )
    set_session_cookie(response, result.token, settings, services.config.auth.session_days)
    return _user_payload(result.user, result.session.csrf_token)


@router.get("/config")
async def auth_config():
    """Client-side auth options. Google sign-in is not offered."""
    return {"googleEnabled": False, "googleClientId": None}


# --- Session management ---


@router.post("/logout", dependencies=[Depends(csrf_protect)])
async def logout(
    response: Response,
    auth: AuthContext = Depends(require_auth),
    services: Services = Depends(get_services),
    settings: Settings = Depends(get_settings),
):
    await services.auth_sessions.revoke(auth.session.id, "user_logout")
    clear_session_cookie(response, settings)
    return {"success": True}


@router.post("/logout-all", dependencies=[Depends(csrf_protect)])
async def logout_all(
    auth: AuthContext = Depends(require_fresh_2fa(5)),
    services: Services = Depends(get_services),
):
    """Revoke every other session of the caller."""
    count = await services.auth_sessions.revoke_all(auth.user.id, except_session_id=auth.session.id)
    return {"success": True, "sessionsRevoked": count}


@router.get("/me")
async def me(auth: AuthContext = Depends(require_auth)):
    return _user_payload(auth.user, auth.session.csrf_token)


@router.get("/sessions")
async def list_sessions(
    auth: AuthContext = Depends(require_auth),
    services: Services = Depends(get_services),
):
    sessions = await services.auth_sessions.list_active(auth.user.id)
    return {"sessions": [session.to_public(auth.session.id) for session in sessions]}


@router.delete("/sessions/{session_id}", dependencies=[Depends(csrf_protect)])
async def revoke_session(
    session_id: str,
    auth: AuthContext = Depends(require_auth),
    services: Services = Depends(get_services),
):
    if session_id == auth.session.id:
        raise ValidationError("Use /logout to end current session")

    target = await services.auth_sessions.get_by_id(session_id)
    if target is None or target.user_id != auth.user.id:
        raise NotFoundError("Session not found")
    if not await services.auth_sessions.revoke(session_id, "user_revoked"):
        raise NotFoundError("Session not found")
    return {"success": True}


# --- 2FA management ---


@router.post("/2fa/setup", dependencies=[Depends(csrf_protect)])
async def totp_setup(
    body: TotpSetupRequest | None = None,
    auth: AuthContext = Depends(require_auth),
    services: Services = Depends(get_services),
):
    """Begin TOTP enrollment; qrCode is the otpauth:// provisioning URI."""
    account = auth.user.email or auth.user.username or auth.user.subscriber_id or auth.user.id
    device_name = (body.device_name if body else None) or "Authenticator"
    return await services.totp.begin_setup(auth.user.id, account, device_name)


@router.post("/2fa/verify", dependencies=[Depends(csrf_protect)])
async def totp_verify(
    body: TotpVerifyRequest,
    auth: AuthContext = Depends(require_auth),
    services: Services = Depends(get_services),
):
    if not body.device_id or not body.code:
        raise ValidationError("Device ID and code are required")
    codes = await services.totp.confirm_setup(auth.user.id, body.device_id, body.code)
    # the session that enrolled the device counts as verified
    await services.auth_sessions.mark_totp_verified(auth.session.id)
    return {"success": True, "recoveryCodes": codes}


@router.get("/2fa/devices")
async def totp_devices(
    auth: AuthContext = Depends(require_auth),
    services: Services = Depends(get_services),
):
    return {"devices": await services.totp.list_devices(auth.user.id)}


@router.delete("/2fa/devices/{device_id}", dependencies=[Depends(csrf_protect)])
async def delete_totp_device(
    device_id: str,
    auth: AuthContext = Depends(require_fresh_2fa(5)),
    services: Services = Depends(get_services),
):
    if not await services.totp.remove_device(auth.user.id, device_id):
        raise NotFoundError("Device not found")
    return {"success": True}


@router.post("/2fa/recovery-codes", dependencies=[Depends(csrf_protect)])
async def regenerate_recovery_codes(
    auth: AuthContext = Depends(require_fresh_2fa(5)),
    services: Services = Depends(get_services),
):
    return {"recoveryCodes": await services.totp.regenerate_recovery_codes(auth.user.id)}


@router.get("/2fa/recovery-codes/count")
async def recovery_code_count(
    auth: AuthContext = Depends(require_auth),
    services: Services = Depends(get_services),
):
    return {"remaining": await services.totp.remaining_recovery_codes(auth.user.id)}


@router.get("/2fa/trusted-devices")
async def trusted_devices(
    auth: AuthContext = Depends(require_auth),
    services: Services = Depends(get_services),
):
    return {"devices": await services.totp.list_trusted_devices(auth.user.id)}


@router.delete("/2fa/trusted-devices/{device_id}", dependencies=[Depends(csrf_protect)])
async def revoke_trusted_device(
    device_id: str,
    auth: AuthContext = Depends(require_auth),
    services: Services = Depends(get_services),
):
    if not await services.totp.revoke_trusted_device(auth.user.id, device_id):
        raise NotFoundError("Device not found")
    return {"success": True}


