"""Owner dashboard: the broadcaster's own stats, sessions and room activity."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..clients import ChaturbateStatsClient, normalize_stats
from .interactions import Interaction, InteractionService
from .persons import PersonRole, PersonService
from .sessions import StreamSessionService
from .snapshots import SnapshotService

logger = logging.getLogger(__name__)

OWN_ACTIVITY_TYPES = ("PRIVATE_MESSAGE", "CHAT_MESSAGE")


class DashboardService:
    def __init__(
        self,
        persons: PersonService,
        snapshots: SnapshotService,
        interactions: InteractionService,
        sessions: StreamSessionService,
        owner_username: str,
        stats_client: ChaturbateStatsClient | None = None,
        stats_token: str | None = None,
    ) -> None:
        self.persons = persons
        self.snapshots = snapshots
        self.interactions = interactions
        self.sessions = sessions
        self.owner_username = owner_username.lower()
        self.stats_client = stats_client
        self.stats_token = stats_token

    def _is_room_activity(self, interaction: Interaction) -> bool:
        # owner's own enter/leave events come from visiting other rooms
        meta_username = (interaction.metadata or {}).get("username")
        if meta_username and meta_username != self.owner_username:
            return True
        return interaction.type in OWN_ACTIVITY_TYPES

    async def get_overview(self) -> dict[str, Any]:
        person = await self.persons.find_or_create(self.owner_username, role=PersonRole.MODEL.value)

        cb_stats = None
        if self.stats_client is not None and self.stats_token:
            try:
                cb_stats = await self.stats_client.get_stats(self.owner_username, self.stats_token)
            except httpx.HTTPError as e:
                logger.error("Error fetching Chaturbate stats", extra={"error": str(e)})
                cb_stats = None
            if cb_stats:
                await self.snapshots.create(person.id, "cb_stats", cb_stats, normalize_stats(cb_stats))

        cb_delta = await self.snapshots.get_delta(person.id, "cb_stats")
        current = await self.sessions.get_current(self.owner_username)
        current_stats = await self.sessions.get_stats(current.id) if current else None
        recent_sessions = await self.sessions.list_sessions(self.owner_username, limit=10)

        recent = await self.interactions.list_recent_by_source("cb_events", limit=100)
        return {
            "person": person.to_dict(),
            "cbStats": cb_stats,
            "cbDelta": cb_delta,
            "currentSession": current.to_dict() if current else None,
            "currentSessionStats": current_stats,
            "recentSessions": [session.to_dict() for session in recent_sessions],
            "recentInteractions": [item.to_dict() for item in recent if self._is_room_activity(item)],
        }
