"""
Room presence: who is in the owner's room right now.

Fed by the events listener (userEnter/userLeave, broadcastStart/Stop) and read
by the API, either as a snapshot or as a Server-Sent-Events stream.

Invariants:
    - Presence is process-local; it is only live when the listener runs in
      the same process as the API (RUN_MODE=all)
    - A repeated enter for the same user inside the dedup window is ignored
    - Each subscriber has its own bounded queue; a slow subscriber loses its
      oldest events, never blocks the publisher
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import AsyncIterator
from typing import Any

from ..store import now_iso

logger = logging.getLogger(__name__)

DEDUP_WINDOW_SECONDS = 60.0
SUBSCRIBER_QUEUE_SIZE = 100


class RoomPresence:
    """In-memory occupant list with per-subscriber fan-out."""

    def __init__(
        self,
        excluded_usernames: tuple[str, ...] = (),
        dedup_window_seconds: float = DEDUP_WINDOW_SECONDS,
        queue_size: int = SUBSCRIBER_QUEUE_SIZE,
    ) -> None:
        self.excluded = {name.lower() for name in excluded_usernames}
        self.dedup_window_seconds = dedup_window_seconds
        self.queue_size = queue_size
        self._occupants: dict[str, dict[str, Any]] = {}
        self._stream_visits: dict[str, int] = {}
        self._recent_enters: dict[str, float] = {}
        self._subscribers: set[asyncio.Queue[dict[str, Any]]] = set()

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def enter(self, username: str, metadata: dict[str, Any] | None = None) -> dict[str, Any] | None:
        """Record a user entering; returns the occupant, or None when skipped."""
        name = username.lower()
        if name in self.excluded:
            return None

        now = time.monotonic()
        last = self._recent_enters.get(name)
        if last is not None and now - last < self.dedup_window_seconds and name in self._occupants:
            logger.debug("Skipping duplicate enter", extra={"username": name})
            return None
        self._recent_enters[name] = now

        self._stream_visits[name] = self._stream_visits.get(name, 0) + 1
        occupant = {
            "username": name,
            "entered_at": now_iso(),
            "user_data": metadata or {},
            "stream_visit_count": self._stream_visits[name],
        }
        self._occupants[name] = occupant
        self._publish({"type": "user_enter", "timestamp": now_iso(), "user": occupant})
        return occupant

    def leave(self, username: str) -> dict[str, Any] | None:
        name = username.lower()
        occupant = self._occupants.pop(name, None)
        if occupant is None:
            return None
        self._recent_enters.pop(name, None)
        self._publish({"type": "user_leave", "timestamp": now_iso(), "user": occupant})
        return occupant

    def clear(self) -> None:
        """Reset presence at broadcast start/stop."""
        count = len(self._occupants)
        self._occupants.clear()
        self._stream_visits.clear()
        self._recent_enters.clear()
        logger.info("Room presence cleared", extra={"previous_occupants": count})
        self._publish(self._sync_event())

    def snapshot(self) -> dict[str, Any]:
        occupants = sorted(self._occupants.values(), key=lambda item: item["entered_at"], reverse=True)
        return {"occupants": occupants, "occupantCount": len(occupants)}

    def _sync_event(self) -> dict[str, Any]:
        return {"type": "presence_sync", "timestamp": now_iso(), **self.snapshot()}

    def _publish(self, event: dict[str, Any]) -> None:
        for queue in list(self._subscribers):
            if queue.full():
                with contextlib.suppress(asyncio.QueueEmpty):
                    queue.get_nowait()
            queue.put_nowait(event)

    async def subscribe(self) -> AsyncIterator[dict[str, Any]]:
        """Yield a presence_sync event, then every subsequent event."""
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers.add(queue)
        logger.debug("Presence subscriber added", extra={"subscribers": len(self._subscribers)})
        try:
            yield self._sync_event()
            while True:
                yield await queue.get()
        finally:
            self._subscribers.discard(queue)
            logger.debug("Presence subscriber removed", extra={"subscribers": len(self._subscribers)})
