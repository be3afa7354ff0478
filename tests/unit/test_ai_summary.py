"""
Unit tests for AI summary generation.

Tests cover:
- Generation with a stubbed OpenAI client
- Markdown post-processing (friends, known streamers)
- Preview without persistence
- Error cases (no client, no transcript, unknown broadcast)
"""

from datetime import timedelta

import pytest

from mhc_panel.errors import NotFoundError, ServiceUnavailableError, ValidationError
from mhc_panel.services import AISummaryService, BroadcastService, SettingsService, SummaryStore, TranscriptParser
from mhc_panel.services.ai_summary import estimate_cost, extract_theme, post_process
from mhc_panel.store import utcnow

TRANSCRIPT = """
User alice has joined the room.
bob tipped 100 tokens
@carol has followed you
*** Warning *** A Chaturbate User @streamer_x is currently broadcasting
aliceLove the music!
User alice has left the room.
"""


class TestPostProcess:
    """Tests for markdown helpers."""

    def test_extract_theme(self):
        """Theme comes from the S: heading."""
        assert extract_theme("# S: 2024-05-01 Stream - Late Night") == "Late Night"
        assert extract_theme("no heading here") is None

    def test_streamers_not_starred_in_own_section(self):
        """Known streamers get a star everywhere except their section."""
        markdown = "## Overall Vibe\nstreamer_x came by\n## Known Streamers\nstreamer_x\n"

        result = post_process(markdown, friends=["bob"], known_streamers=["streamer_x"])

        assert "streamer_x* came by" in result
        assert result.endswith("## Known Streamers\nstreamer_x\n")

    def test_friends_bolded_once(self):
        """Already bolded friends are left alone."""
        result = post_process("bob and **bob**", friends=["bob"], known_streamers=[])

        assert result == "**bob** and **bob**"

    def test_estimate_cost(self):
        assert estimate_cost(1_000_000, 0) == pytest.approx(0.4)


class TestAISummaryService:
    """Tests for AISummaryService."""

    @pytest.fixture
    def broadcasts(self, db):
        return BroadcastService(db)

    @pytest.fixture
    def summaries(self, db):
        return SummaryStore(db)

    @pytest.fixture
    def settings(self, db):
        return SettingsService(db)

    @pytest.fixture
    def service(self, broadcasts, summaries, settings, fake_openai):
        return AISummaryService(
            broadcasts=broadcasts,
            summaries=summaries,
            settings=settings,
            parser=TranscriptParser(broadcaster="hudson_cage"),
            client=fake_openai,
        )

    @pytest.mark.asyncio
    async def test_generate_stores_summary(self, service, broadcasts, settings, fake_openai):
        """Generation stores numbers, markdown and the transcript."""
        await settings.set("summary_friends", ["alice"])
        await settings.set("summary_instructions", "Keep it short.")
        start = utcnow() - timedelta(hours=2)
        broadcast = await broadcasts.create(start, ended_at=start + timedelta(minutes=60), peak_viewers=30)

        summary = await service.generate(broadcast.id, TRANSCRIPT)

        assert summary["theme"] == "Rainy Day Chill"
        assert summary["tokens_received"] == 100
        assert summary["tokens_per_hour"] == 100
        assert summary["max_viewers"] == 30
        assert summary["new_followers"] == 1
        assert summary["top_tippers"] == [{"username": "bob", "tokens": 100}]
        assert summary["generation_tokens_used"] == 1500
        assert summary["transcript_text"] == TRANSCRIPT
        assert "**alice**" in summary["full_markdown"]
        assert "streamer_x* lurked" in summary["full_markdown"]

        request = fake_openai.calls[0]
        assert request["model"] == "gpt-4o-mini"
        assert "Keep it short." in request["messages"][0]["content"]
        assert "bob tipped 100 tokens" in request["messages"][1]["content"]

    @pytest.mark.asyncio
    async def test_regenerate_uses_stored_transcript(self, service, broadcasts, fake_openai):
        """Regenerate reruns the model on the saved transcript."""
        broadcast = await broadcasts.create(utcnow(), duration_minutes=30)
        await service.generate(broadcast.id, TRANSCRIPT)

        await service.regenerate(broadcast.id)

        assert len(fake_openai.calls) == 2

    @pytest.mark.asyncio
    async def test_regenerate_without_transcript(self, service, broadcasts):
        """Nothing to regenerate from is a validation error."""
        broadcast = await broadcasts.create(utcnow())

        with pytest.raises(ValidationError):
            await service.regenerate(broadcast.id)

    @pytest.mark.asyncio
    async def test_preview_does_not_persist(self, service, summaries):
        """Preview returns parsed data and cost without writing."""
        result = await service.preview(TRANSCRIPT)

        assert result["parsedData"]["tokensReceived"] == 100
        assert result["parsedData"]["knownStreamers"] == ["streamer_x"]
        assert result["tokensUsed"] == 1500
        assert result["cost"] == pytest.approx(0.00096)
        assert await summaries.get("preview") is None

    @pytest.mark.asyncio
    async def test_errors(self, service, broadcasts, summaries, settings):
        """Empty transcript, unknown broadcast and missing client are rejected."""
        with pytest.raises(ValidationError):
            await service.generate("anything", "   ")
        with pytest.raises(NotFoundError):
            await service.generate("missing", TRANSCRIPT)

        offline = AISummaryService(
            broadcasts=broadcasts,
            summaries=summaries,
            settings=settings,
            parser=TranscriptParser(),
        )
        assert offline.is_available() is False
        with pytest.raises(ServiceUnavailableError):
            await offline.preview(TRANSCRIPT)
