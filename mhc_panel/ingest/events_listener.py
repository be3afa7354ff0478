"""
Chaturbate Events API listener.

Long-polls the broadcaster's event feed and turns each event into panel data:
- every event is appended to event_logs
- broadcastStart/broadcastStop open and close the stream session
- viewer events become VIEWER persons and cb_events interactions tied to the
  current session
- follow/unfollow also land in follow_history
- userEnter/userLeave update room presence

Invariants:
    - next_url always points at the feed position after the last handled batch
    - A failing event is logged and skipped; it never stops the loop
    - 401/404 stop the listener, everything else is retried

How to change safely:
    - New event methods need a handler in EVENT_INTERACTION_TYPES or
      handle_event(); unknown methods are only logged
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from ..services.events import EventLogService
from ..services.followers import FollowHistoryService
from ..services.interactions import InteractionService
from ..services.persons import PersonRole, PersonService
from ..services.presence import RoomPresence
from ..services.sessions import StreamSessionService

logger = logging.getLogger(__name__)

EVENTS_BASE_URL = "https://eventsapi.chaturbate.com"
LONGPOLL_TIMEOUT_SECONDS = 120.0
STOP_STATUSES = (401, 404)

EVENT_INTERACTION_TYPES = {
    "chatMessage": "CHAT_MESSAGE",
    "privateMessage": "PRIVATE_MESSAGE",
    "tip": "TIP_EVENT",
    "follow": "FOLLOW",
    "unfollow": "UNFOLLOW",
    "userEnter": "USER_ENTER",
    "userLeave": "USER_LEAVE",
    "fanclubJoin": "FANCLUB_JOIN",
    "mediaPurchase": "MEDIA_PURCHASE",
}


class EventsListener:
    """Long-poll loop over the Events API.

    Args:
        username: Broadcaster username
        token: Events API token
        persons: Person directory
        interactions: Interaction writer
        sessions: Stream session service
        events: Raw event log
        follow_history: Follow/unfollow log
        presence: Room presence tracker (optional)
        base_url: Events API root
        retry_delay_seconds: Backoff after a failed poll
        transport: Optional httpx transport (tests use httpx.MockTransport)
    """

    def __init__(
        self,
        username: str,
        token: str,
        persons: PersonService,
        interactions: InteractionService,
        sessions: StreamSessionService,
        events: EventLogService,
        follow_history: FollowHistoryService,
        presence: RoomPresence | None = None,
        base_url: str = EVENTS_BASE_URL,
        retry_delay_seconds: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.username = username.lower()
        self.persons = persons
        self.interactions = interactions
        self.sessions = sessions
        self.events = events
        self.follow_history = follow_history
        self.presence = presence
        self.retry_delay_seconds = retry_delay_seconds
        self.next_url: str | None = f"{base_url}/events/{self.username}/{token}/?timeout=30"
        self.current_session_id: str | None = None
        self.running = False
        self._client = httpx.AsyncClient(timeout=LONGPOLL_TIMEOUT_SECONDS, transport=transport)

    async def start(self) -> None:
        """Run until stop() or a fatal API response."""
        if self.running:
            logger.warning("Events listener already running")
            return

        current = await self.sessions.get_current(self.username)
        if current:
            self.current_session_id = current.id
            logger.info("Recovered live session", extra={"session_id": current.id})

        self.running = True
        logger.info("Starting Events API listener", extra={"broadcaster": self.username})
        try:
            while self.running:
                try:
                    await self.poll_once()
                except (httpx.HTTPError, ValueError) as e:
                    logger.error("Events polling error", extra={"error": str(e)})
                    await asyncio.sleep(self.retry_delay_seconds)
        finally:
            await self.aclose()

    def stop(self) -> None:
        self.running = False
        logger.info("Stopping Events API listener")

    async def aclose(self) -> None:
        await self._client.aclose()

    async def poll_once(self) -> int:
        """Fetch one batch, handle it and advance next_url.

        Returns:
            Number of events handled.
        """
        if not self.next_url:
            logger.error("No nextUrl available for polling")
            self.stop()
            return 0

        try:
            response = await self._client.get(self.next_url)
        except httpx.TimeoutException:
            logger.debug("Longpoll timeout, continuing")
            return 0

        if response.status_code == 400:
            logger.error(
                "Events API returned 400, the token is likely expired; set a new CHATURBATE_EVENTS_TOKEN"
            )
            await asyncio.sleep(self.retry_delay_seconds)
            return 0
        if response.status_code in STOP_STATUSES:
            logger.error(
                "Events API rejected the feed URL, stopping",
                extra={"status": response.status_code},
            )
            self.stop()
            return 0
        response.raise_for_status()

        body = response.json()
        batch = body.get("events") or [] if isinstance(body, dict) else None
        if not isinstance(batch, list):
            logger.error("Malformed Events API response", extra={"body": str(body)[:200]})
            await asyncio.sleep(self.retry_delay_seconds)
            return 0

        self.next_url = body.get("nextUrl") or self.next_url
        batch = [event for event in batch if isinstance(event, dict)]
        if batch:
            logger.info("Received events", extra={"count": len(batch)})
        for event in batch:
            await self.handle_event(event)
        return len(batch)

    async def handle_event(self, event: dict[str, Any]) -> None:
        method = event.get("method", "")
        obj = event.get("object") or {}
        try:
            await self._log_event(method, obj)

            if method == "broadcastStart":
                session = await self.sessions.start(self.username)
                self.current_session_id = session.id
                if self.presence is not None:
                    self.presence.clear()
            elif method == "broadcastStop":
                if self.current_session_id:
                    await self.sessions.end(self.current_session_id)
                    logger.info("Session auto-ended", extra={"session_id": self.current_session_id})
                    self.current_session_id = None
                if self.presence is not None:
                    self.presence.clear()
            elif method in EVENT_INTERACTION_TYPES:
                await self._handle_viewer_event(method, obj)
            else:
                logger.debug("Unhandled event type", extra={"method": method})
        except Exception as e:
            logger.error("Error handling event", extra={"method": method, "error": str(e)}, exc_info=True)

    async def _log_event(self, method: str, obj: dict[str, Any]) -> None:
        broadcaster = obj.get("broadcaster") if isinstance(obj.get("broadcaster"), str) else self.username
        user = obj.get("user") or {}
        await self.events.record(method, broadcaster, user.get("username") or broadcaster, obj)

    async def _handle_viewer_event(self, method: str, obj: dict[str, Any]) -> None:
        user = obj.get("user") or {}
        username = user.get("username")
        if not username:
            return

        message = (obj.get("message") or {}).get("message")
        tip = obj.get("tip") or {}
        metadata: dict[str, Any] = {**user, "broadcaster": self.username}
        content: str | None = None

        if method in ("chatMessage", "privateMessage"):
            if not message:
                return
            content = message
            if method == "privateMessage":
                metadata["fromUser"] = obj["message"].get("fromUser")
                metadata["toUser"] = obj["message"].get("toUser")
        elif method == "tip":
            tokens = tip.get("tokens")
            if tokens is None:
                return
            content = tip.get("message") or f"Tipped {tokens} tokens"
            metadata = {"tokens": tokens, "isAnon": tip.get("isAnon"), **metadata}
        elif method == "mediaPurchase":
            media = obj.get("media") or {}
            content = media.get("name") or "Purchased media"
            metadata["media"] = media

        person = await self.persons.find_or_create(username, role=PersonRole.VIEWER.value)
        await self.interactions.create(
            person_id=person.id,
            type=EVENT_INTERACTION_TYPES[method],
            source="cb_events",
            content=content,
            stream_session_id=self.current_session_id,
            metadata=metadata,
        )

        if method in ("follow", "unfollow"):
            await self.follow_history.record(person.id, "follower", method, "events_api")
        elif method == "userEnter" and self.presence is not None:
            self.presence.enter(username, user)
        elif method == "userLeave" and self.presence is not None:
            self.presence.leave(username)
