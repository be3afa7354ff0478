"""
Unit tests for two-factor authentication and the login flow.

Tests cover:
- TOTP device setup and code verification
- Recovery codes (single use, regeneration)
- Trusted devices
- AuthFlow login and 2FA completion
"""

import pyotp
import pytest

from mhc_panel.auth import AuthFlow, SecretBox, SessionManager, TotpService, UserService, hash_token
from mhc_panel.errors import AuthenticationError, NotFoundError, ValidationError


def wrong_code(secret: str) -> str:
    current = pyotp.TOTP(secret).now()
    return "000000" if current != "000000" else "111111"


@pytest.fixture
def users(db):
    return UserService(db)


@pytest.fixture
def totp(db):
    return TotpService(db, SecretBox("test-key"), trusted_device_days=30)


@pytest.fixture
async def user(users):
    return await users.create("password123", email="owner@example.com")


class TestTotpService:
    """Tests for TotpService."""

    @pytest.mark.asyncio
    async def test_setup_enables_totp(self, totp, users, user):
        """Confirming a device enables 2FA and issues recovery codes."""
        setup = await totp.begin_setup(user.id, "owner@example.com")
        assert setup["qrCode"].startswith("otpauth://totp/")

        codes = await totp.confirm_setup(user.id, setup["deviceId"], pyotp.TOTP(setup["manualEntryKey"]).now())

        assert len(codes) == 10
        assert len(set(codes)) == 10
        assert (await users.get_by_id(user.id)).totp_enabled is True
        assert [device["id"] for device in await totp.list_devices(user.id)] == [setup["deviceId"]]

    @pytest.mark.asyncio
    async def test_setup_rejects_bad_input(self, totp, user):
        """Wrong codes and unknown devices are rejected."""
        setup = await totp.begin_setup(user.id, "owner@example.com")

        with pytest.raises(ValidationError):
            await totp.confirm_setup(user.id, setup["deviceId"], wrong_code(setup["manualEntryKey"]))
        with pytest.raises(NotFoundError):
            await totp.confirm_setup(user.id, "missing-device", "123456")

    @pytest.mark.asyncio
    async def test_unverified_device_does_not_count(self, totp, user):
        """Codes from a device that was never confirmed are refused."""
        setup = await totp.begin_setup(user.id, "owner@example.com")

        assert await totp.verify_code(user.id, pyotp.TOTP(setup["manualEntryKey"]).now()) is False
        assert await totp.list_devices(user.id) == []

    @pytest.mark.asyncio
    async def test_verify_code(self, totp, user):
        setup = await totp.begin_setup(user.id, "owner@example.com")
        secret = setup["manualEntryKey"]
        await totp.confirm_setup(user.id, setup["deviceId"], pyotp.TOTP(secret).now())

        assert await totp.verify_code(user.id, pyotp.TOTP(secret).now()) is True
        assert await totp.verify_code(user.id, wrong_code(secret)) is False

    @pytest.mark.asyncio
    async def test_recovery_codes_single_use(self, totp, user):
        """Each recovery code works exactly once."""
        codes = await totp.regenerate_recovery_codes(user.id)

        assert await totp.use_recovery_code(user.id, codes[0].lower()) is True
        assert await totp.use_recovery_code(user.id, codes[0]) is False
        assert await totp.remaining_recovery_codes(user.id) == 9

        await totp.regenerate_recovery_codes(user.id)
        assert await totp.use_recovery_code(user.id, codes[1]) is False
        assert await totp.remaining_recovery_codes(user.id) == 10

    @pytest.mark.asyncio
    async def test_recovery_codes_stored_as_token_hashes(self, totp, user):
        """Codes are stored as SHA-256 hashes and matched by a single lookup."""
        codes = await totp.regenerate_recovery_codes(user.id)

        with totp.db.connection() as conn:
            stored = {row["code_hash"] for row in conn.execute("SELECT code_hash FROM recovery_codes")}

        assert stored == {hash_token(code) for code in codes}
        assert await totp.use_recovery_code(user.id, f"  {codes[3]} ") is True
        assert await totp.use_recovery_code(user.id, "AAAA-BBBB-CCCC") is False

    @pytest.mark.asyncio
    async def test_removing_last_device_disables_totp(self, totp, users, user):
        """Deleting the only device turns 2FA off and drops recovery codes."""
        setup = await totp.begin_setup(user.id, "owner@example.com")
        await totp.confirm_setup(user.id, setup["deviceId"], pyotp.TOTP(setup["manualEntryKey"]).now())

        assert await totp.remove_device(user.id, setup["deviceId"]) is True
        assert await totp.remove_device(user.id, setup["deviceId"]) is False
        assert (await users.get_by_id(user.id)).totp_enabled is False
        assert await totp.remaining_recovery_codes(user.id) == 0

    @pytest.mark.asyncio
    async def test_trusted_devices(self, totp, user):
        """Trusted device tokens verify until revoked."""
        token = await totp.trust_device(user.id, name="laptop")

        assert await totp.is_trusted_device(user.id, token) is True
        assert await totp.is_trusted_device(user.id, "bogus") is False
        assert await totp.is_trusted_device(user.id, None) is False

        devices = await totp.list_trusted_devices(user.id)
        assert [device["name"] for device in devices] == ["laptop"]

        assert await totp.revoke_trusted_device(user.id, devices[0]["id"]) is True
        assert await totp.is_trusted_device(user.id, token) is False


class TestAuthFlow:
    """Tests for AuthFlow."""

    @pytest.fixture
    def sessions(self, db):
        return SessionManager(db)

    @pytest.fixture
    def flow(self, users, sessions, totp):
        return AuthFlow(users, sessions, totp)

    @pytest.fixture
    async def secret(self, totp, user):
        setup = await totp.begin_setup(user.id, "owner@example.com")
        await totp.confirm_setup(user.id, setup["deviceId"], pyotp.TOTP(setup["manualEntryKey"]).now())
        return setup["manualEntryKey"]

    @pytest.mark.asyncio
    async def test_login_without_totp(self, flow, users, user):
        """Users without 2FA get a verified session and a recorded login."""
        result = await flow.login("password123", email="owner@example.com")

        assert result.requires_2fa is False
        assert result.session.totp_verified is True
        assert (await users.get_by_id(user.id)).last_login_at is not None

    @pytest.mark.asyncio
    async def test_login_rejections(self, flow, user):
        """Missing fields and bad passwords fail."""
        with pytest.raises(ValidationError):
            await flow.login(None, email="owner@example.com")
        with pytest.raises(ValidationError):
            await flow.login("password123")
        with pytest.raises(AuthenticationError):
            await flow.login("wrong-password", email="owner@example.com")

    @pytest.mark.asyncio
    async def test_login_with_totp_then_verify(self, flow, sessions, secret):
        """A pending session is promoted and rotated by a valid code."""
        pending = await flow.login("password123", email="owner@example.com")
        assert pending.requires_2fa is True
        assert pending.session.totp_verified is False

        result = await flow.verify_2fa(
            pending.session.id,
            pyotp.TOTP(secret).now(),
            trust_device=True,
            device_fingerprint="fp-123",
        )

        assert result.session.id == pending.session.id
        assert result.session.totp_verified is True
        assert result.trusted_device_token
        assert await sessions.get_by_token(pending.token) is None
        assert (await sessions.get_by_token(result.token)).id == pending.session.id

    @pytest.mark.asyncio
    async def test_trusted_device_skips_2fa(self, flow, totp, user, secret):
        device_token = await totp.trust_device(user.id, name="fp-123")

        result = await flow.login("password123", email="owner@example.com", trusted_device_token=device_token)

        assert result.requires_2fa is False

    @pytest.mark.asyncio
    async def test_verify_with_recovery_code(self, flow, totp, user, secret):
        """Recovery codes complete a login in place of a TOTP code."""
        codes = await totp.regenerate_recovery_codes(user.id)
        pending = await flow.login("password123", email="owner@example.com")

        result = await flow.verify_2fa(pending.session.id, codes[3])

        assert result.session.totp_verified is True
        assert result.trusted_device_token is None

    @pytest.mark.asyncio
    async def test_verify_rejections(self, flow, secret):
        """Wrong codes, unknown sessions and missing fields fail."""
        pending = await flow.login("password123", email="owner@example.com")

        with pytest.raises(AuthenticationError):
            await flow.verify_2fa(pending.session.id, wrong_code(secret))
        with pytest.raises(AuthenticationError):
            await flow.verify_2fa("missing-session", pyotp.TOTP(secret).now())
        with pytest.raises(ValidationError):
            await flow.verify_2fa(pending.session.id, "")
