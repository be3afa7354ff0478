"""
Unit tests for the Events API listener.

Tests cover:
- A full broadcast lifecycle driven through httpx.MockTransport
- Feed position tracking (nextUrl)
- Stop and retry behaviour for error statuses
"""

from dataclasses import replace

import httpx
import pytest

from mhc_panel.config import ChaturbateConfig
from mhc_panel.container import build_listener, build_services

FEED_URL = "https://eventsapi.chaturbate.com/events/hudson_cage/secret-token/?timeout=30"
NEXT_URL = "https://eventsapi.chaturbate.com/events/hudson_cage/secret-token/?i=6&timeout=30"

EVENTS = [
    {"method": "broadcastStart", "object": {"broadcaster": "hudson_cage"}},
    {"method": "userEnter", "object": {"user": {"username": "Alice", "inFanclub": False}}},
    {"method": "chatMessage", "object": {"user": {"username": "alice"}, "message": {"message": "hi!"}}},
    {
        "method": "tip",
        "object": {"user": {"username": "bob"}, "tip": {"tokens": 50, "message": "", "isAnon": False}},
    },
    {"method": "follow", "object": {"user": {"username": "carol"}}},
    {"method": "roomSubjectChange", "object": {"subject": "new subject"}},
]


def feed_handler(batches):
    """Serve each (status, body) pair once, then 401."""
    queue = list(batches)
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        if not queue:
            return httpx.Response(401)
        status, body = queue.pop(0)
        return httpx.Response(status, json=body)

    handler.seen = seen
    return handler


class TestEventsListener:
    """Tests for EventsListener."""

    @pytest.fixture
    async def services(self, config):
        config = replace(config, chaturbate=replace(config.chaturbate, events_token="secret-token"))
        services = build_services(config)
        await services.db.initialize()
        return services

    @pytest.mark.asyncio
    async def test_broadcast_lifecycle(self, services):
        """Events become a session, interactions, follows and log rows."""
        handler = feed_handler([(200, {"events": EVENTS, "nextUrl": NEXT_URL})])
        listener = build_listener(services, transport=httpx.MockTransport(handler))

        await listener.start()

        assert handler.seen == [FEED_URL, NEXT_URL]
        assert listener.running is False
        assert listener.next_url == NEXT_URL

        session = await services.sessions.get_current("hudson_cage")
        assert session is not None
        live_id = session.id

        alice = await services.persons.find_by_username("alice")
        assert alice.role == "VIEWER"
        alice_events = await services.interactions.list_for_person(alice.id)
        assert {item.type for item in alice_events} == {"USER_ENTER", "CHAT_MESSAGE"}
        assert all(item.stream_session_id == live_id for item in alice_events)

        bob = await services.persons.find_by_username("bob")
        [tip] = await services.interactions.list_for_person(bob.id, type="TIP_EVENT")
        assert tip.content == "Tipped 50 tokens"
        assert tip.metadata["tokens"] == 50

        carol = await services.persons.find_by_username("carol")
        follows = await services.follow_history.get_for_person(carol.id)
        assert [(row["direction"], row["action"], row["source"]) for row in follows] == [
            ("follower", "follow", "events_api")
        ]

        logged = await services.events.recent()
        assert len(logged) == len(EVENTS)
        assert services.presence.snapshot()["occupants"][0]["username"] == "alice"

    @pytest.mark.asyncio
    async def test_broadcast_stop_ends_session(self, services):
        """broadcastStop closes the live session and clears presence."""
        stop = {"method": "broadcastStop", "object": {"broadcaster": "hudson_cage"}}
        handler = feed_handler([(200, {"events": EVENTS[:2], "nextUrl": NEXT_URL}), (200, {"events": [stop]})])
        listener = build_listener(services, transport=httpx.MockTransport(handler))

        await listener.start()

        assert await services.sessions.get_current("hudson_cage") is None
        [session] = await services.sessions.list_sessions("hudson_cage")
        assert session.status == "ENDED"
        assert services.presence.snapshot()["occupantCount"] == 0
        assert listener.current_session_id is None

    @pytest.mark.asyncio
    async def test_recovers_live_session(self, services):
        """A LIVE session from a previous run is reused."""
        existing = await services.sessions.start("hudson_cage")
        chat = {"method": "chatMessage", "object": {"user": {"username": "dave"}, "message": {"message": "yo"}}}
        handler = feed_handler([(200, {"events": [chat], "nextUrl": NEXT_URL})])
        listener = build_listener(services, transport=httpx.MockTransport(handler))

        await listener.start()

        [interaction] = await services.interactions.list_for_session(existing.id)
        assert interaction.content == "yo"

    @pytest.mark.asyncio
    async def test_bad_request_keeps_position(self, services):
        """A 400 is retried from the same feed position."""
        handler = feed_handler([(400, {"status": "error"})])
        listener = build_listener(services, transport=httpx.MockTransport(handler))
        listener.retry_delay_seconds = 0

        handled = await listener.poll_once()

        assert handled == 0
        assert listener.running is False
        assert listener.next_url == FEED_URL
        await listener.aclose()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body", [["not", "an", "object"], "oops", {"events": "nope", "nextUrl": NEXT_URL}])
    async def test_malformed_body_keeps_position(self, services, body):
        """A 200 with an unexpected body is skipped without moving the feed."""
        handler = feed_handler([(200, body)])
        listener = build_listener(services, transport=httpx.MockTransport(handler))
        listener.retry_delay_seconds = 0

        handled = await listener.poll_once()

        assert handled == 0
        assert listener.next_url == FEED_URL
        await listener.aclose()

    @pytest.mark.asyncio
    async def test_malformed_body_does_not_stop_listener(self, services):
        """The worker loop survives a bad batch and processes the next one."""
        chat = {"method": "chatMessage", "object": {"user": {"username": "dave"}, "message": {"message": "yo"}}}
        handler = feed_handler([(200, ["junk"]), (200, {"events": ["junk", chat], "nextUrl": NEXT_URL})])
        listener = build_listener(services, transport=httpx.MockTransport(handler))
        listener.retry_delay_seconds = 0

        await listener.start()

        assert handler.seen == [FEED_URL, FEED_URL, NEXT_URL]
        dave = await services.persons.find_by_username("dave")
        assert [item.content for item in await services.interactions.list_for_person(dave.id)] == ["yo"]

    def test_requires_events_token(self, config):
        services = build_services(replace(config, chaturbate=ChaturbateConfig(events_token=None)))

        with pytest.raises(ValueError):
            build_listener(services)
