"""
Unit tests for in-memory room presence.

Tests cover:
- Enter/leave bookkeeping and duplicate suppression
- Excluded usernames
- Subscriber fan-out
"""

import pytest

from mhc_panel.services import RoomPresence


class TestRoomPresence:
    """Tests for RoomPresence."""

    @pytest.fixture
    def presence(self):
        return RoomPresence(excluded_usernames=("smk_lover",))

    def test_enter_and_leave(self, presence):
        """Occupants are tracked by lower-cased username."""
        occupant = presence.enter("Alice", {"isFollower": True})

        assert occupant["username"] == "alice"
        assert occupant["user_data"] == {"isFollower": True}
        assert presence.snapshot()["occupantCount"] == 1

        assert presence.leave("ALICE")["username"] == "alice"
        assert presence.leave("alice") is None
        assert presence.snapshot() == {"occupants": [], "occupantCount": 0}

    def test_duplicate_enter_skipped(self, presence):
        """A second enter while present is ignored; re-entry counts visits."""
        presence.enter("bob")
        assert presence.enter("bob") is None

        presence.leave("bob")
        again = presence.enter("bob")
        assert again["stream_visit_count"] == 2

    def test_excluded_user_ignored(self, presence):
        assert presence.enter("SMK_Lover") is None
        assert presence.snapshot()["occupantCount"] == 0

    def test_clear_resets_visits(self, presence):
        presence.enter("bob")
        presence.clear()

        assert presence.snapshot()["occupantCount"] == 0
        assert presence.enter("bob")["stream_visit_count"] == 1

    @pytest.mark.asyncio
    async def test_subscribe_streams_events(self, presence):
        """Subscribers get a sync event first, then live changes."""
        presence.enter("carol")
        stream = presence.subscribe()

        first = await stream.__anext__()
        assert first["type"] == "presence_sync"
        assert first["occupantCount"] == 1
        assert presence.subscriber_count == 1

        presence.enter("dave")
        presence.leave("carol")

        entered = await stream.__anext__()
        left = await stream.__anext__()
        assert (entered["type"], entered["user"]["username"]) == ("user_enter", "dave")
        assert (left["type"], left["user"]["username"]) == ("user_leave", "carol")

        await stream.aclose()
        assert presence.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_slow_subscriber_drops_oldest(self):
        """A full queue loses its oldest event instead of blocking."""
        presence = RoomPresence(queue_size=2)
        stream = presence.subscribe()
        await stream.__anext__()

        for name in ("a", "b", "c"):
            presence.enter(name)

        assert (await stream.__anext__())["user"]["username"] == "b"
        assert (await stream.__anext__())["user"]["username"] == "c"
        await stream.aclose()
