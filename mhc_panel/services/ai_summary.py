"""
AI stream summaries.

Collects broadcast numbers and the parsed chat transcript, asks an OpenAI
chat model for a markdown recap, post-processes the markdown and stores the
result through SummaryStore.

Invariants:
    - Friends are bolded (**name**) everywhere in the markdown
    - Known streamers get a trailing * except inside the Known Streamers section
    - preview() never writes to the database

How to change safely:
    - Keep the markdown heading "# S: YYYY-MM-DD Stream - Theme" in the prompt,
      extract_theme() depends on it
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import asdict
from typing import Any

from openai import OpenAI

from ..config import OpenAIConfig
from ..errors import NotFoundError, PanelError, ServiceUnavailableError, ValidationError
from ..store import parse_iso
from .broadcasts import BroadcastService
from .settings import SettingsService
from .summaries import SummaryStore
from .transcript import ParsedTranscript, TranscriptParser

logger = logging.getLogger(__name__)

FRIENDS_SETTING_KEY = "summary_friends"
INSTRUCTIONS_SETTING_KEY = "summary_instructions"
PREVIEW_DURATION_MINUTES = 60

INPUT_TOKEN_COST = 0.0000004
OUTPUT_TOKEN_COST = 0.0000016

THEME_PATTERN = re.compile(r"#?\s*S:\s*\d{4}-\d{2}-\d{2}[/\d]*\s+Stream\s*[–-]\s*(.+)")
SECTION_SPLIT = re.compile(r"(?m)^(?=## )")

SYSTEM_PROMPT = """You write post-stream recaps for a Chaturbate broadcaster.
Write markdown with these sections, in order:
# S: <date> Stream - <short theme>
## Overall Vibe
## Engagement Summary
## Top Tippers
## Tracking Notes
## Private Dynamics
## Opportunities
## Known Streamers
Be concise and factual. Use only names that appear in the data."""


def build_client(config: OpenAIConfig) -> OpenAI | None:
    """Create the OpenAI client, or None when no API key is configured."""
    if not config.api_key:
        logger.info("OpenAI API key not set, AI summaries disabled")
        return None
    return OpenAI(api_key=config.api_key)


def extract_theme(markdown: str) -> str | None:
    match = THEME_PATTERN.search(markdown)
    return match.group(1).strip() if match else None


def _bold_friends(text: str, friends: list[str]) -> str:
    for name in friends:
        text = re.sub(rf"(?<![\w*]){re.escape(name)}(?![\w*])", f"**{name}**", text)
    return text


def _star_streamers(text: str, streamers: list[str]) -> str:
    for name in streamers:
        text = re.sub(rf"(?<!\w){re.escape(name)}(?![\w*])", f"{name}*", text)
    return text


def post_process(markdown: str, friends: list[str], known_streamers: list[str]) -> str:
    """Bold friends and star known streamers."""
    sections = []
    for section in SECTION_SPLIT.split(markdown):
        section = _bold_friends(section, friends)
        if not section.startswith("## Known Streamers"):
            section = _star_streamers(section, known_streamers)
        sections.append(section)
    return "".join(sections)


def estimate_cost(prompt_tokens: int, completion_tokens: int) -> float:
    return round(prompt_tokens * INPUT_TOKEN_COST + completion_tokens * OUTPUT_TOKEN_COST, 6)


class AISummaryService:
    """Generate, regenerate and preview broadcast summaries.

    Args:
        broadcasts: Broadcast lookup for duration and peak viewers
        summaries: Summary persistence
        settings: Source of the friends list and extra instructions
        parser: Transcript parser configured with the owner and exclusions
        client: OpenAI client, None disables generation
        model: Chat model name
        max_tokens: Completion token cap
    """

    def __init__(
        self,
        broadcasts: BroadcastService,
        summaries: SummaryStore,
        settings: SettingsService,
        parser: TranscriptParser,
        client: OpenAI | None = None,
        model: str = "gpt-4o-mini",
        max_tokens: int = 4000,
    ) -> None:
        self.broadcasts = broadcasts
        self.summaries = summaries
        self.settings = settings
        self.parser = parser
        self.client = client
        self.model = model
        self.max_tokens = max_tokens

    def is_available(self) -> bool:
        return self.client is not None

    async def collect(self, broadcast_id: str, transcript: str) -> dict[str, Any]:
        broadcast = await self.broadcasts.get_by_id(broadcast_id)
        if broadcast is None:
            raise NotFoundError("Broadcast not found", details={"broadcastId": broadcast_id})

        duration = broadcast.duration_minutes
        if not duration and broadcast.ended_at:
            elapsed = parse_iso(broadcast.ended_at) - parse_iso(broadcast.started_at)
            duration = round(elapsed.total_seconds() / 60)

        data = await self._collect(transcript, duration or 0, broadcast.peak_viewers)
        data["broadcastId"] = broadcast_id
        data["startedAt"] = broadcast.started_at
        return data

    async def collect_for_preview(self, transcript: str) -> dict[str, Any]:
        data = await self._collect(transcript, PREVIEW_DURATION_MINUTES, 0)
        data["broadcastId"] = "preview"
        data["startedAt"] = None
        return data

    async def _collect(self, transcript: str, duration_minutes: int, max_viewers: int) -> dict[str, Any]:
        parsed = self.parser.parse(transcript)
        tokens = parsed.total_tokens
        tokens_per_hour = (tokens / duration_minutes) * 60 if duration_minutes > 0 else 0
        return {
            "parsed": parsed,
            "durationMinutes": duration_minutes,
            "visitorCategories": self.parser.categorize_visitors(parsed.visitors, 1),
            "tokensReceived": tokens,
            "tokensPerHour": round(tokens_per_hour, 2),
            "uniqueViewers": len(parsed.unique_usernames),
            "avgWatchTimeSeconds": self.parser.average_watch_time(parsed.visitors),
            "netFollowers": len(parsed.follows) - len(parsed.unfollows),
            "maxViewers": max_viewers,
            "friends": await self.settings.get(FRIENDS_SETTING_KEY, []) or [],
            "instructions": await self.settings.get(INSTRUCTIONS_SETTING_KEY, "") or "",
        }

    def build_prompts(self, data: dict[str, Any]) -> tuple[str, str]:
        parsed: ParsedTranscript = data["parsed"]
        system = SYSTEM_PROMPT
        if data["instructions"]:
            system = f"{system}\n\n{data['instructions']}"
        system += (
            "\n\nFormatting: bold friends as **name**. Mark known streamers as name* "
            "everywhere except inside the ## Known Streamers section."
        )

        top_tippers = self.parser.aggregate_tips(parsed.tips)[:10]
        lines = [
            f"Broadcast started: {data['startedAt'] or 'unknown'}",
            f"Duration minutes: {data['durationMinutes']}",
            f"Tokens received: {data['tokensReceived']}",
            f"Tokens per hour: {data['tokensPerHour']}",
            f"Max viewers: {data['maxViewers']}",
            f"Unique viewers: {data['uniqueViewers']}",
            f"Average watch time (seconds): {data['avgWatchTimeSeconds']}",
            f"New followers: {len(parsed.follows)} ({', '.join(parsed.follows)})",
            f"Lost followers: {len(parsed.unfollows)} ({', '.join(parsed.unfollows)})",
            f"Room subjects: {' | '.join(parsed.room_subjects)}",
            "Top tippers: " + ", ".join(f"{t['username']} ({t['tokens']})" for t in top_tippers),
            "Top lovers board: "
            + ", ".join(f"{lover.rank}. {lover.username} ({lover.tokens})" for lover in parsed.top_lovers_board),
            f"Visitors who stayed: {', '.join(data['visitorCategories']['stayed'])}",
            f"Quick visitors: {', '.join(data['visitorCategories']['quick'])}",
            f"Private messages from: {', '.join(parsed.private_message_users)}",
            f"Known streamers: {', '.join(parsed.known_streamers)}",
            f"Friends: {', '.join(data['friends'])}",
            "",
            "Chat:",
            *parsed.filtered_chat_lines,
        ]
        return system, "\n".join(lines)

    async def _complete(self, system: str, user: str) -> tuple[str, dict[str, int]]:
        if self.client is None:
            raise ServiceUnavailableError("AI summary service not configured")
        client = self.client

        def _call_model() -> Any:
            return client.chat.completions.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
            )

        try:
            response = await asyncio.to_thread(_call_model)
        except Exception as e:
            logger.error("OpenAI request failed", extra={"error": str(e), "model": self.model})
            raise PanelError("AI summary generation failed", code="AI_ERROR") from e

        usage = response.usage
        tokens = {
            "prompt": getattr(usage, "prompt_tokens", 0) or 0,
            "completion": getattr(usage, "completion_tokens", 0) or 0,
            "total": getattr(usage, "total_tokens", 0) or 0,
        }
        return response.choices[0].message.content or "", tokens

    async def _summarize(self, data: dict[str, Any]) -> tuple[dict[str, Any], dict[str, int]]:
        system, user = self.build_prompts(data)
        markdown, tokens = await self._complete(system, user)
        parsed: ParsedTranscript = data["parsed"]
        markdown = post_process(markdown, data["friends"], parsed.known_streamers)

        fields = {
            "theme": extract_theme(markdown),
            "tokens_received": data["tokensReceived"],
            "tokens_per_hour": data["tokensPerHour"],
            "max_viewers": data["maxViewers"],
            "unique_viewers": data["uniqueViewers"],
            "avg_watch_time_seconds": data["avgWatchTimeSeconds"],
            "new_followers": len(parsed.follows),
            "lost_followers": len(parsed.unfollows),
            "net_followers": data["netFollowers"],
            "room_subject_variants": parsed.room_subjects,
            "visitors_stayed": data["visitorCategories"]["stayed"],
            "visitors_quick": data["visitorCategories"]["quick"],
            "top_tippers": self.parser.aggregate_tips(parsed.tips)[:10],
            "top_lovers_board": [asdict(lover) for lover in parsed.top_lovers_board],
            "full_markdown": markdown,
            "ai_model": self.model,
            "generation_tokens_used": tokens["total"],
        }
        return fields, tokens

    async def generate(self, broadcast_id: str, transcript: str) -> dict[str, Any]:
        """Generate and store the summary for a broadcast.

        Raises:
            ValidationError: Empty transcript
            ServiceUnavailableError: No OpenAI client
            NotFoundError: Unknown broadcast
        """
        if not transcript or not transcript.strip():
            raise ValidationError("Transcript is required")
        if not self.is_available():
            raise ServiceUnavailableError("AI summary service not configured")

        data = await self.collect(broadcast_id, transcript)
        fields, tokens = await self._summarize(data)
        fields["transcript_text"] = transcript

        summary = await self.summaries.save(broadcast_id, fields)
        logger.info(
            "Summary generated",
            extra={"broadcast_id": broadcast_id, "tokens_used": tokens["total"], "model": self.model},
        )
        return summary

    async def regenerate(self, broadcast_id: str) -> dict[str, Any]:
        existing = await self.summaries.get(broadcast_id)
        if not existing or not existing.get("transcript_text"):
            raise ValidationError("No transcript stored for this broadcast")
        return await self.generate(broadcast_id, existing["transcript_text"])

    async def preview(self, transcript: str) -> dict[str, Any]:
        """Run the full pipeline without persisting anything."""
        if not transcript or not transcript.strip():
            raise ValidationError("Transcript is required")
        if not self.is_available():
            raise ServiceUnavailableError("AI summary service not configured")

        data = await self.collect_for_preview(transcript)
        fields, tokens = await self._summarize(data)
        parsed: ParsedTranscript = data["parsed"]
        return {
            "summary": fields,
            "parsedData": {
                "tokensReceived": data["tokensReceived"],
                "uniqueViewers": data["uniqueViewers"],
                "avgWatchTimeSeconds": data["avgWatchTimeSeconds"],
                "follows": parsed.follows,
                "unfollows": parsed.unfollows,
                "roomSubjects": parsed.room_subjects,
                "privateMessageUsers": parsed.private_message_users,
                "knownStreamers": parsed.known_streamers,
                "chatLines": len(parsed.filtered_chat_lines),
            },
            "tokensUsed": tokens["total"],
            "cost": estimate_cost(tokens["prompt"], tokens["completion"]),
        }
