"""Chaturbate broadcaster Stats API client (refreshes every 5 minutes upstream)."""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

STATS_BASE_URL = "https://chaturbate.com"


class ChaturbateStatsClient:
    def __init__(
        self,
        base_url: str = STATS_BASE_URL,
        timeout_seconds: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def get_stats(self, username: str, token: str) -> dict[str, Any] | None:
        """Fetch stats for a broadcaster; None when the user is unknown."""
        async with httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout_seconds, transport=self._transport
        ) as client:
            response = await client.get("/statsapi/", params={"username": username, "token": token})

        if response.status_code == 404:
            logger.info("Stats not found", extra={"username": username})
            return None
        if response.is_error:
            logger.error(
                "Chaturbate Stats API error",
                extra={"status": response.status_code, "username": username},
            )
        response.raise_for_status()
        logger.debug("Fetched Chaturbate stats", extra={"username": username})
        return response.json()


def normalize_stats(data: dict[str, Any]) -> dict[str, Any]:
    """Map raw stats to snapshot metrics; -1 sentinels become None."""
    last_broadcast = data.get("last_broadcast")
    time_online = data.get("time_online")
    return {
        "token_balance": data.get("token_balance"),
        "tips_in_last_hour": data.get("tips_in_last_hour"),
        "votes_up": data.get("votes_up"),
        "votes_down": data.get("votes_down"),
        "satisfaction_score": data.get("satisfaction_score"),
        "last_broadcast": None if last_broadcast == -1 else last_broadcast,
        "time_online_minutes": None if time_online == -1 else time_online,
        "num_followers": data.get("num_followers"),
        "num_viewers": data.get("num_viewers"),
        "num_registered_viewers": data.get("num_registered_viewers"),
    }
