"""
Unit tests for the Statbate and Chaturbate Stats clients and lookup enrichment.

Tests cover:
- Request shape and 404 handling via httpx.MockTransport
- Metric normalisers
- LookupService storing Statbate snapshots
"""

import httpx
import pytest

from mhc_panel.clients import (
    ChaturbateStatsClient,
    StatbateClient,
    normalize_member_info,
    normalize_model_info,
    normalize_stats,
)
from mhc_panel.services import InteractionService, LookupService, PersonService, SnapshotService

MEMBER_DATA = {
    "did": 4242,
    "all_time_tokens": 12000,
    "last_tip_amount": 50,
    "per_day_tokens": [{"date": "2024-05-01", "tokens": 30}, {"date": "2024-05-02", "tokens": 70}],
    "models_tipped_2weeks_list": ["model_a"],
}


def statbate_handler(requests):
    """Model lookups miss, member lookups hit."""

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if "/model/" in request.url.path:
            return httpx.Response(404, json={"message": "not found"})
        return httpx.Response(200, json={"data": MEMBER_DATA})

    return handler


class TestStatbateClient:
    """Tests for StatbateClient."""

    @pytest.mark.asyncio
    async def test_requests_and_not_found(self):
        """Bearer auth and timezone are sent; 404 maps to None."""
        requests = []
        client = StatbateClient("secret", transport=httpx.MockTransport(statbate_handler(requests)))

        assert await client.get_model_info("chaturbate", "someone") is None
        member = await client.get_member_info("chaturbate", "someone")

        assert member == {"data": MEMBER_DATA}
        assert requests[1].url.path == "/api/members/chaturbate/someone/info"
        assert requests[1].url.params["timezone"] == "UTC"
        assert requests[1].headers["Authorization"] == "Bearer secret"

    @pytest.mark.asyncio
    async def test_server_error_raises(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(500, text="boom"))
        client = StatbateClient("secret", transport=transport)

        with pytest.raises(httpx.HTTPStatusError):
            await client.get_member_info("chaturbate", "someone")

    def test_normalizers(self):
        """Per-day tokens are summed and tags flattened."""
        member = normalize_member_info(MEMBER_DATA)
        assert member["tokens_last_period"] == 100
        assert member["models_tipped_2weeks_list"] == ["model_a"]
        assert member["models_messaged_2weeks"] == 0

        model = normalize_model_info(
            {"rid": 7, "sessions": {"count": 3}, "income": {"usd": 12.5}, "tags": [{"name": "chill"}, {}]}
        )
        assert model["rid"] == 7
        assert model["sessions_count"] == 3
        assert model["income_usd"] == 12.5
        assert model["tags"] == ["chill"]


class TestChaturbateStatsClient:
    """Tests for ChaturbateStatsClient."""

    @pytest.mark.asyncio
    async def test_get_stats(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"num_followers": 900, "last_broadcast": -1})

        client = ChaturbateStatsClient(transport=httpx.MockTransport(handler))

        stats = await client.get_stats("hudson_cage", "token")

        assert stats["num_followers"] == 900
        assert seen[0].url.path == "/statsapi/"
        assert seen[0].url.params["username"] == "hudson_cage"

    @pytest.mark.asyncio
    async def test_unknown_user(self):
        client = ChaturbateStatsClient(transport=httpx.MockTransport(lambda request: httpx.Response(404)))

        assert await client.get_stats("nobody", "token") is None

    def test_normalize_stats_sentinels(self):
        """-1 means unknown for last_broadcast and time_online."""
        metrics = normalize_stats({"last_broadcast": -1, "time_online": -1, "num_viewers": 12})

        assert metrics["last_broadcast"] is None
        assert metrics["time_online_minutes"] is None
        assert metrics["num_viewers"] == 12


class TestLookupWithStatbate:
    """Tests for LookupService with a Statbate client."""

    @pytest.mark.asyncio
    async def test_member_snapshot_stored(self, db):
        """A member hit becomes a snapshot and marks the person a viewer."""
        persons = PersonService(db)
        snapshots = SnapshotService(db)
        statbate = StatbateClient("secret", transport=httpx.MockTransport(statbate_handler([])))
        lookup = LookupService(persons, snapshots, InteractionService(db), statbate=statbate)

        result = await lookup.lookup(username="Someone", include_statbate=True)

        assert result["person"]["role"] == "VIEWER"
        assert result["person"]["did"] == 4242
        assert result["latestSnapshot"]["source"] == "statbate_member"
        assert result["latestSnapshot"]["normalized_metrics"]["all_time_tokens"] == 12000
        assert result["delta"] is None
        assert result["statbateApiUrl"].endswith("/members/chaturbate/someone/info?timezone=UTC")

    @pytest.mark.asyncio
    async def test_stored_snapshot_without_statbate(self, db):
        """Without Statbate the latest stored snapshot is returned."""
        persons = PersonService(db)
        snapshots = SnapshotService(db)
        person = await persons.find_or_create("someone")
        await snapshots.create(person.id, "manual", {"note": "x"}, {"followers": 10})
        lookup = LookupService(persons, snapshots, InteractionService(db))

        result = await lookup.lookup(username="someone", include_statbate=True)

        assert result["latestSnapshot"]["normalized_metrics"] == {"followers": 10}
        assert result["statbateApiUrl"] is None
