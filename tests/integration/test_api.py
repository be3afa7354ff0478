"""
Integration tests for the HTTP API.

Tests cover:
- Cookie sessions, CSRF and the 2FA login flow
- Person, lookup and stream session routes
- Broadcasts, merge and AI summaries
- Followers, settings, media favorites and room presence
"""

import asyncio

import pyotp
import pytest
from fastapi.testclient import TestClient

from mhc_panel.api.app import create_app
from mhc_panel.api.config import Settings
from mhc_panel.errors import ValidationError

TRANSCRIPT = """
User alice has joined the room.
bob tipped 100 tokens
@carol has followed you
aliceLove the music!
"""


@pytest.fixture
def app(config, fake_openai):
    return create_app(config, Settings(), ai_client=fake_openai)


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client


@pytest.fixture
def authed(client):
    """Client logged in as the owner, sending its CSRF token."""
    response = client.post("/api/auth/signup", json={"email": "owner@example.com", "password": "password123"})
    assert response.status_code == 201
    client.headers["X-CSRF-Token"] = response.json()["csrfToken"]
    return client


class TestAuthRoutes:
    """Tests for /api/auth and the auth gates."""

    def test_health_is_public(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["service"] == "mhc-panel"

    def test_protected_routes_need_session(self, client):
        """Domain routes answer 401 without a session cookie."""
        response = client.get("/api/person/all")

        assert response.status_code == 401
        assert response.json() == {"error": "Authentication required"}
        assert client.get("/api/auth/me").status_code == 401

    def test_unsafe_methods_need_csrf(self, client):
        """A valid session without the CSRF header cannot POST."""
        client.post("/api/auth/signup", json={"email": "owner@example.com", "password": "password123"})

        response = client.post("/api/session/start")

        assert response.status_code == 403
        assert response.json()["error"] == "Invalid CSRF token"
        assert client.get("/api/person/all").status_code == 200

    def test_signup_and_me(self, authed):
        """The first account is the owner and /me reflects the session."""
        me = authed.get("/api/auth/me").json()

        assert me["user"]["email"] == "owner@example.com"
        assert me["roles"] == ["owner"]
        assert me["permissions"] == ["*"]
        assert me["csrfToken"] == authed.headers["X-CSRF-Token"]

        sessions = authed.get("/api/auth/sessions").json()["sessions"]
        assert [session["isCurrent"] for session in sessions] == [True]

    def test_signup_rejections(self, client):
        """Bad methods, short passwords and duplicates are refused."""
        bad_method = client.post("/api/auth/signup", json={"authMethod": "magic", "email": "a@example.com"})
        assert bad_method.status_code == 400

        missing_email = client.post(
            "/api/auth/signup", json={"authMethod": "email_password", "password": "password123"}
        )
        assert missing_email.status_code == 400

        short = client.post("/api/auth/signup", json={"email": "a@example.com", "password": "short"})
        assert short.status_code == 400

        client.post("/api/auth/signup", json={"email": "a@example.com", "password": "password123"})
        duplicate = client.post("/api/auth/signup", json={"email": "a@example.com", "password": "password123"})
        assert duplicate.status_code == 409

    def test_login_wrong_password(self, authed):
        response = authed.post("/api/auth/login", json={"email": "owner@example.com", "password": "nope-nope"})

        assert response.status_code == 401
        assert response.json()["error"] == "Invalid credentials"

    def test_auth_config(self, client):
        assert client.get("/api/auth/config").json() == {"googleEnabled": False, "googleClientId": None}

    def test_logout(self, authed):
        """Logout revokes the session."""
        assert authed.post("/api/auth/logout").json() == {"success": True}

        assert authed.get("/api/auth/me").status_code == 401

    def test_two_factor_flow(self, authed):
        """Enroll TOTP, log in again, finish with a code, then reuse a trusted device."""
        setup = authed.post("/api/auth/2fa/setup").json()
        secret = setup["manualEntryKey"]
        assert setup["qrCode"].startswith("otpauth://totp/")

        verified = authed.post(
            "/api/auth/2fa/verify", json={"deviceId": setup["deviceId"], "code": pyotp.TOTP(secret).now()}
        )
        assert verified.status_code == 200
        assert len(verified.json()["recoveryCodes"]) == 10
        assert authed.get("/api/auth/me").json()["user"]["totpEnabled"] is True
        assert authed.get("/api/auth/2fa/recovery-codes/count").json() == {"remaining": 10}

        authed.post("/api/auth/logout")
        pending = authed.post("/api/auth/login", json={"email": "owner@example.com", "password": "password123"})
        assert pending.json()["requires2FA"] is True

        blocked = authed.get("/api/person/all")
        assert blocked.status_code == 403
        assert blocked.json()["requires2FA"] is True

        done = authed.post(
            "/api/auth/verify-2fa",
            json={
                "sessionId": pending.json()["sessionId"],
                "code": pyotp.TOTP(secret).now(),
                "trustDevice": True,
                "deviceFingerprint": "fp-laptop",
            },
        )
        assert done.status_code == 200
        authed.headers["X-CSRF-Token"] = done.json()["csrfToken"]
        assert authed.get("/api/person/all").status_code == 200

        trusted = authed.get("/api/auth/2fa/trusted-devices").json()["devices"]
        assert [device["name"] for device in trusted] == ["fp-laptop"]

        again = authed.post("/api/auth/login", json={"email": "owner@example.com", "password": "password123"})
        assert "requires2FA" not in again.json()
        assert again.json()["user"]["email"] == "owner@example.com"

    def test_verify_2fa_bad_code(self, authed):
        setup = authed.post("/api/auth/2fa/setup").json()
        authed.post(
            "/api/auth/2fa/verify",
            json={"deviceId": setup["deviceId"], "code": pyotp.TOTP(setup["manualEntryKey"]).now()},
        )
        authed.post("/api/auth/logout")
        pending = authed.post("/api/auth/login", json={"email": "owner@example.com", "password": "password123"})

        response = authed.post(
            "/api/auth/verify-2fa", json={"sessionId": pending.json()["sessionId"], "code": "not-a-code"}
        )

        assert response.status_code == 401


class TestPersonRoutes:
    """Tests for lookup and /api/person."""

    def test_lookup_creates_person(self, authed):
        """Lookup resolves the username and records pasted text."""
        response = authed.post(
            "/api/lookup", json={"username": "SomeViewer", "pastedText": "Profile of someviewer", "role": "VIEWER"}
        )

        assert response.status_code == 200
        body = response.json()
        assert body["person"]["username"] == "someviewer"
        assert body["person"]["role"] == "VIEWER"
        assert body["latestSnapshot"] is None
        assert body["latestInteraction"]["type"] == "PROFILE_PASTE"

    def test_lookup_requires_input(self, authed):
        assert authed.post("/api/lookup", json={}).status_code == 400

    def test_person_lifecycle(self, authed):
        """Search, note, update and delete a person."""
        person = authed.post("/api/lookup", json={"username": "model_one"}).json()["person"]

        assert "model_one" in authed.get("/api/person/search", params={"q": "model"}).json()["usernames"]
        assert authed.get("/api/person/search").status_code == 400
        assert "model_one" in [item["username"] for item in authed.get("/api/person/all").json()["persons"]]

        note = authed.post(f"/api/person/{person['id']}/note", json={"content": "Likes jazz"})
        assert note.json()["interaction"]["type"] == "MANUAL_NOTE"
        assert authed.post(f"/api/person/{person['id']}/note", json={"content": "  "}).status_code == 400

        updated = authed.put(f"/api/person/{person['id']}", json={"role": "MODEL"})
        assert updated.json()["person"]["role"] == "MODEL"
        assert authed.put(f"/api/person/{person['id']}", json={"role": "ROBOT"}).status_code == 400

        detail = authed.get(f"/api/person/{person['id']}").json()
        assert detail["aliases"] == []

        interactions = authed.get(f"/api/person/{person['id']}/interactions").json()["interactions"]
        assert [item["content"] for item in interactions] == ["Likes jazz"]

        assert authed.delete(f"/api/person/{person['id']}").json() == {"success": True}
        assert authed.get(f"/api/person/{person['id']}").status_code == 404


class TestSessionRoutes:
    """Tests for /api/session, /api/events and /api/hudson."""

    def test_start_and_end(self, authed):
        started = authed.post("/api/session/start").json()["session"]
        assert started["status"] == "LIVE"

        current = authed.get("/api/session/current").json()
        assert current["session"]["id"] == started["id"]
        assert current["stats"]["totalInteractions"] == 0

        ended = authed.post("/api/session/end").json()["session"]
        assert ended["status"] == "ENDED"
        assert authed.get("/api/session/current").status_code == 404
        assert authed.post("/api/session/end").status_code == 404

    def test_owner_dashboard(self, authed):
        """Without a Stats API token the dashboard still answers."""
        body = authed.get("/api/hudson").json()

        assert body["person"]["username"] == "hudson_cage"
        assert body["cbStats"] is None
        assert body["currentSession"] is None

    def test_recent_events_empty(self, authed):
        assert authed.get("/api/events/recent").json() == {"events": []}


class TestBroadcastRoutes:
    """Tests for /api/broadcasts."""

    def _create(self, client, start, end, tokens, tags=None):
        response = client.post(
            "/api/broadcasts/",
            json={"started_at": start, "ended_at": end, "total_tokens": tokens, "tags": tags or []},
        )
        assert response.status_code == 201
        return response.json()

    def test_crud_and_merge(self, authed):
        """Merging keeps the earlier broadcast and sums its numbers."""
        first = self._create(authed, "2024-05-01T20:00:00+00:00", "2024-05-01T21:30:00+00:00", 500, ["chill"])
        second = self._create(authed, "2024-05-01T21:40:00+00:00", "2024-05-01T22:00:00+00:00", 100)
        assert first["duration_minutes"] == 90

        merged = authed.post("/api/broadcasts/merge", json={"id1": second["id"], "id2": first["id"]}).json()
        assert merged["id"] == first["id"]
        assert merged["total_tokens"] == 600
        assert merged["duration_minutes"] == 110
        assert merged["tags"] == ["chill"]

        listing = authed.get("/api/broadcasts/").json()
        assert listing["total"] == 1
        assert listing["hasMore"] is False
        assert authed.get(f"/api/broadcasts/{second['id']}").status_code == 404

        updated = authed.put(f"/api/broadcasts/{first['id']}", json={"notes": "great night"}).json()
        assert updated["notes"] == "great night"
        assert updated["total_tokens"] == 600

    def test_merge_validation(self, authed):
        first = self._create(authed, "2024-05-01T20:00:00+00:00", None, 0)

        assert authed.post("/api/broadcasts/merge", json={"id1": first["id"]}).status_code == 400
        assert authed.post("/api/broadcasts/merge", json={"id1": first["id"], "id2": first["id"]}).status_code == 400
        assert authed.post("/api/broadcasts/merge", json={"id1": first["id"], "id2": "nope"}).status_code == 404

    def test_current_and_end(self, authed):
        """An open broadcast is current until ended."""
        live = self._create(authed, "2024-05-01T20:00:00+00:00", None, 0)
        assert authed.get("/api/broadcasts/current").json()["id"] == live["id"]

        ended = authed.post(f"/api/broadcasts/{live['id']}/end", json={"peak_viewers": 12}).json()
        assert ended["ended_at"] is not None
        assert ended["peak_viewers"] == 12
        assert authed.get("/api/broadcasts/current").json() is None

    def test_summary_lifecycle(self, authed, fake_openai):
        """Generate, read, edit and delete an AI summary."""
        broadcast = self._create(authed, "2024-05-01T20:00:00+00:00", "2024-05-01T21:00:00+00:00", 0)
        assert authed.get("/api/broadcasts/ai/status").json() == {"available": True, "model": "gpt-4o-mini"}

        empty = authed.post(f"/api/broadcasts/{broadcast['id']}/summary/generate", json={"transcript": " "})
        assert empty.status_code == 400

        generated = authed.post(
            f"/api/broadcasts/{broadcast['id']}/summary/generate", json={"transcript": TRANSCRIPT}
        ).json()
        assert generated["theme"] == "Rainy Day Chill"
        assert generated["tokens_received"] == 100
        assert len(fake_openai.calls) == 1

        assert authed.get(f"/api/broadcasts/{broadcast['id']}/summary").json()["id"] == generated["id"]

        edited = authed.put(f"/api/broadcasts/{broadcast['id']}/summary", json={"theme": "Edited"}).json()
        assert edited["theme"] == "Edited"

        assert authed.delete(f"/api/broadcasts/{broadcast['id']}/summary").json() == {"success": True}
        assert authed.get(f"/api/broadcasts/{broadcast['id']}/summary").status_code == 404

    def test_preview(self, authed):
        preview = authed.post("/api/broadcasts/ai/preview", json={"transcript": TRANSCRIPT}).json()

        assert preview["parsedData"]["tokensReceived"] == 100
        assert preview["tokensUsed"] == 1500


class TestFollowerRoutes:
    """Tests for /api/followers."""

    def test_record_counts(self, authed):
        """Unchanged counts are reported but not stored."""
        person = authed.post("/api/lookup", json={"username": "model_two"}).json()["person"]

        first = authed.post("/api/followers/record", json={"personId": person["id"], "count": 100}).json()
        second = authed.post("/api/followers/record", json={"personId": person["id"], "count": 100}).json()
        third = authed.post("/api/followers/record", json={"personId": person["id"], "count": 150}).json()

        assert first["recorded"] is True
        assert second == {"recorded": False, "record": None}
        assert third["record"]["delta"] == 50

        growth = authed.get(f"/api/followers/trends/person/{person['id']}/growth").json()
        assert growth["totalGrowth"] == 50

        assert authed.post("/api/followers/record", json={"personId": person["id"]}).status_code == 400
        assert authed.post("/api/followers/record", json={"personId": "missing", "count": 1}).status_code == 404

    def test_follow_lists(self, authed):
        result = authed.post("/api/followers/update-following", json={"usernames": ["b_model", "a_model"]}).json()

        assert result == {"newCount": 2, "removedCount": 0, "totalCount": 2}
        assert authed.get("/api/followers/following").json() == {"following": ["a_model", "b_model"], "total": 2}
        assert authed.post("/api/followers/update-followers", json={}).status_code == 400

    def test_trend_parameters(self, authed):
        assert authed.get("/api/followers/trends").status_code == 200
        assert authed.get("/api/followers/trends/top-movers", params={"direction": "up"}).status_code == 400
        assert authed.get("/api/followers/trends/recent-changes", params={"sortBy": "name"}).status_code == 400


class TestSettingsRoutes:
    """Tests for /api/settings."""

    def test_setting_lifecycle(self, authed):
        put = authed.put("/api/settings/dashboard_theme", json={"value": "dark", "description": "UI theme"}).json()
        assert put["value"] == "dark"
        assert put["description"] == "UI theme"

        assert authed.get("/api/settings/dashboard_theme").json() == {"key": "dashboard_theme", "value": "dark"}
        assert authed.get("/api/settings/").json()["dashboard_theme"]["value"] == "dark"
        assert authed.put("/api/settings/dashboard_theme", json={}).status_code == 400

        assert authed.delete("/api/settings/dashboard_theme").json() == {"success": True}
        assert authed.get("/api/settings/dashboard_theme").status_code == 404

    def test_broadcast_config(self, authed):
        assert authed.get("/api/settings/broadcast/config").status_code == 200


class TestMediaAndRoomRoutes:
    """Tests for /api/media and /api/room."""

    def test_favorites(self, authed, app):
        media = asyncio.run(app.state.services.media.add(None, "people/someone/auto/1.jpg"))

        toggled = authed.post(f"/api/media/{media['id']}/favorite").json()
        assert toggled["is_favorite"] is True

        favorites = authed.get("/api/media/favorites").json()
        assert favorites["total"] == 1
        assert authed.get("/api/media/favorites/stats").json()["imageCount"] == 1

        assert authed.put(f"/api/media/{media['id']}/favorite", json={"is_favorite": "yes"}).status_code == 400
        cleared = authed.put(f"/api/media/{media['id']}/favorite", json={"is_favorite": False}).json()
        assert cleared["is_favorite"] is False

        assert authed.post("/api/media/missing/favorite").status_code == 404
        assert authed.get("/api/media/favorites", params={"mediaType": "gif"}).status_code == 400

    def test_presence_snapshot(self, authed, app):
        assert authed.get("/api/room/presence").json() == {"occupants": [], "occupantCount": 0}

        app.state.services.presence.enter("Alice")

        body = authed.get("/api/room/presence").json()
        assert body["occupantCount"] == 1
        assert body["occupants"][0]["username"] == "alice"


class TestErrorRendering:
    """Tests for how exceptions become responses."""

    def test_internal_value_error_is_server_error(self, app, monkeypatch):
        """Only deliberate validation errors are 400s."""

        async def broken_list_all(**kwargs):
            raise ValueError("bad row")

        with TestClient(app, raise_server_exceptions=False) as client:
            response = client.post(
                "/api/auth/signup", json={"email": "owner@example.com", "password": "password123"}
            )
            assert response.status_code == 201
            monkeypatch.setattr(app.state.services.persons, "list_all", broken_list_all)

            response = client.get("/api/person/all")

        assert response.status_code == 500
        assert response.json() == {"error": "Internal server error"}

    def test_service_validation_error_is_bad_request(self, authed, app, monkeypatch):
        async def rejecting_list_all(**kwargs):
            raise ValidationError("limit too large")

        monkeypatch.setattr(app.state.services.persons, "list_all", rejecting_list_all)

        response = authed.get("/api/person/all")

        assert response.status_code == 400
        assert response.json() == {"error": "limit too large"}
