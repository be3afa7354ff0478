"""
Statbate Plus API client.

Only the two lookups the panel uses are implemented: member info and model
info. Both return None when Statbate does not know the name.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://plus.statbate.com/api"


class StatbateClient:
    """Async Statbate client.

    Args:
        api_token: Bearer token
        base_url: API root
        timeout_seconds: Request timeout
        transport: Optional httpx transport (tests use httpx.MockTransport)
    """

    def __init__(
        self,
        api_token: str,
        base_url: str = DEFAULT_BASE_URL,
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_token = api_token
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {self.api_token}",
                "Content-Type": "application/json",
            },
            timeout=self.timeout_seconds,
            transport=self._transport,
        )

    async def _get(self, path: str, params: dict[str, str]) -> dict[str, Any] | None:
        logger.debug("Statbate API request", extra={"path": path})
        async with self._client() as client:
            response = await client.get(path, params=params)

        if response.status_code == 404:
            logger.info("Statbate entity not found", extra={"path": path})
            return None
        if response.is_error:
            logger.error(
                "Statbate API error",
                extra={"status": response.status_code, "path": path, "body": response.text[:500]},
            )
        response.raise_for_status()
        return response.json()

    async def get_member_info(self, site: str, name: str, timezone: str = "UTC") -> dict[str, Any] | None:
        return await self._get(f"/members/{site}/{name}/info", {"timezone": timezone})

    async def get_model_info(self, site: str, name: str, timezone: str = "UTC") -> dict[str, Any] | None:
        return await self._get(f"/model/{site}/{name}/info", {"timezone": timezone})


def normalize_member_info(data: dict[str, Any]) -> dict[str, Any]:
    """Flatten member info into snapshot metrics."""
    per_day = data.get("per_day_tokens") or []
    return {
        "did": data.get("did"),
        "all_time_tokens": data.get("all_time_tokens", 0),
        "first_message_date": data.get("first_message_date"),
        "first_tip_date": data.get("first_tip_date"),
        "last_tip_date": data.get("last_tip_date"),
        "last_tip_amount": data.get("last_tip_amount", 0),
        "models_messaged_2weeks": data.get("models_messaged_2weeks", 0),
        "models_tipped_2weeks": data.get("models_tipped_2weeks", 0),
        "models_tipped_2weeks_list": data.get("models_tipped_2weeks_list") or [],
        "tokens_last_period": sum(day.get("tokens", 0) for day in per_day),
    }


def normalize_model_info(data: dict[str, Any]) -> dict[str, Any]:
    """Flatten model info into snapshot metrics."""
    sessions = data.get("sessions") or {}
    income = data.get("income") or {}
    return {
        "rid": data.get("rid"),
        "gender": data.get("gender"),
        "rank": data.get("rank"),
        "sessions_count": sessions.get("count", 0),
        "total_duration_minutes": sessions.get("total_duration", 0),
        "average_duration_minutes": sessions.get("average_duration", 0),
        "income_tokens": income.get("tokens", 0),
        "income_usd": income.get("usd", 0),
        "tags": [tag.get("name") for tag in data.get("tags") or [] if tag.get("name")],
    }
