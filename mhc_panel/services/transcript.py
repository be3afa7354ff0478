"""
Chat transcript parser.

Turns a raw Chaturbate chat transcript (copied from the broadcaster page)
into structured data for AI summaries: tips, follows, visitors, room subject
variants, the top lovers board and the chat lines worth sending to the model.

Transcript lines have no timestamps, so visitor durations are measured in
line positions and converted to seconds with SECONDS_PER_LINE.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

SECONDS_PER_LINE = 5

PATTERNS = {
    "user_join": re.compile(r"^User (\S+) has joined the room"),
    "user_leave": re.compile(r"^User (\S+) has left the room"),
    "tip": re.compile(r"^(\S+) tipped (\d+) tokens?$"),
    "tip_note": re.compile(r"^Notice: (\S+) tipped for » (.+)$"),
    "room_subject": re.compile(r'^room subject changed to "(.+)"$'),
    "follow": re.compile(r"@(\S+) has followed you"),
    "unfollow": re.compile(r"@(\S+) has unfollowed you"),
    "top_lover": re.compile(r"^Notice: (\d+)\. (\S+) \((\d+) tks?\)"),
    "private_message": re.compile(r"^New private message from (\S+)"),
    "broadcaster_warning": re.compile(
        r"\*\*\* Warning \*\*\* A \w+ User @(\S+) is currently broadcasting"
    ),
    # username (lower-case) is glued to the message with no separator
    "chat_message": re.compile(r"^([a-z0-9_]+[a-z0-9])([A-Z@:!?'\".,].*)$"),
}

IGNORED_PREFIXES = (
    "Broadcaster Rules:",
    "Your cam is visible",
    "Notice: SmokerBot",
    "Notice: 🤖",
    "Notice: 💎",
    "Notice: ↣",
    "Notice: ⵗ≡",
    "Notice: :mtl",
    "Notice: :me_",
    "Notice: :neon",
    "Notice: Warning Online Model",
)

GOAL_PATTERN = re.compile(r"\[\d+\s*tokens?\s*(left|remaining|to go)?\]", re.IGNORECASE)


@dataclass
class Visitor:
    username: str
    join_line: int
    leave_line: int | None = None

    @property
    def duration_seconds(self) -> int | None:
        if self.leave_line is None:
            return None
        return (self.leave_line - self.join_line) * SECONDS_PER_LINE


@dataclass
class Tip:
    username: str
    tokens: int
    note: str | None = None


@dataclass
class ChatMessage:
    username: str
    message: str
    is_broadcaster: bool


@dataclass
class TopLover:
    rank: int
    username: str
    tokens: int


@dataclass
class ParsedTranscript:
    room_subjects: list[str] = field(default_factory=list)
    tips: list[Tip] = field(default_factory=list)
    visitors: list[Visitor] = field(default_factory=list)
    follows: list[str] = field(default_factory=list)
    unfollows: list[str] = field(default_factory=list)
    chat_messages: list[ChatMessage] = field(default_factory=list)
    private_message_users: list[str] = field(default_factory=list)
    known_streamers: list[str] = field(default_factory=list)
    top_lovers_board: list[TopLover] = field(default_factory=list)
    total_tokens: int = 0
    unique_usernames: list[str] = field(default_factory=list)
    filtered_chat_lines: list[str] = field(default_factory=list)


def normalize_room_subject(subject: str) -> str:
    """Collapse token-goal counters so subject variants de-duplicate."""
    return GOAL_PATTERN.sub("[GOAL]", subject).strip()


class TranscriptParser:
    """Line-oriented transcript parser.

    Args:
        broadcaster: Owner username, used to flag the owner's chat lines
        excluded_usernames: Accounts dropped from every list and stat
    """

    def __init__(self, broadcaster: str = "hudson_cage", excluded_usernames: tuple[str, ...] = ()) -> None:
        self.broadcaster = broadcaster.lower()
        self.excluded = {name.lower() for name in excluded_usernames}
        self.ignored_prefixes = IGNORED_PREFIXES + (
            f"Broadcaster {self.broadcaster} is running",
            f"Notice: Follow {self.broadcaster}",
        )

    def is_excluded(self, username: str) -> bool:
        return username.lower() in self.excluded

    def parse(self, transcript: str) -> ParsedTranscript:
        result = ParsedTranscript()
        open_visits: dict[str, Visitor] = {}
        top_lovers: dict[str, TopLover] = {}
        unique_users: dict[str, None] = {}
        known_streamers: dict[str, None] = {}
        seen_subjects: set[str] = set()

        lines = [line.strip() for line in transcript.splitlines() if line.strip()]
        for index, line in enumerate(lines):
            if line.startswith(self.ignored_prefixes):
                continue

            match = PATTERNS["user_join"].match(line)
            if match:
                username = match.group(1)
                if not self.is_excluded(username):
                    unique_users[username] = None
                    open_visits[username] = Visitor(username=username, join_line=index)
                continue

            match = PATTERNS["user_leave"].match(line)
            if match:
                visit = open_visits.pop(match.group(1), None)
                if visit is not None:
                    visit.leave_line = index
                    result.visitors.append(visit)
                continue

            match = PATTERNS["tip"].match(line)
            if match:
                username, tokens = match.group(1), int(match.group(2))
                if not self.is_excluded(username):
                    result.tips.append(Tip(username=username, tokens=tokens))
                    result.total_tokens += tokens
                    result.filtered_chat_lines.append(line)
                continue

            match = PATTERNS["tip_note"].match(line)
            if match:
                username, note = match.group(1), match.group(2)
                for tip in reversed(result.tips):
                    if tip.username == username and tip.note is None:
                        tip.note = note
                        break
                if not self.is_excluded(username):
                    result.filtered_chat_lines.append(line)
                continue

            match = PATTERNS["room_subject"].match(line)
            if match:
                subject = match.group(1)
                normalized = normalize_room_subject(subject)
                if normalized not in seen_subjects:
                    seen_subjects.add(normalized)
                    result.room_subjects.append(subject)
                continue

            match = PATTERNS["follow"].search(line)
            if match:
                if not self.is_excluded(match.group(1)):
                    result.follows.append(match.group(1))
                continue

            match = PATTERNS["unfollow"].search(line)
            if match:
                if not self.is_excluded(match.group(1)):
                    result.unfollows.append(match.group(1))
                continue

            match = PATTERNS["top_lover"].match(line)
            if match:
                rank, username, tokens = int(match.group(1)), match.group(2), int(match.group(3))
                if not self.is_excluded(username):
                    top_lovers[username] = TopLover(rank=rank, username=username, tokens=tokens)
                    result.filtered_chat_lines.append(line)
                continue

            match = PATTERNS["private_message"].match(line)
            if match:
                username = match.group(1)
                if not self.is_excluded(username) and username not in result.private_message_users:
                    result.private_message_users.append(username)
                continue

            match = PATTERNS["broadcaster_warning"].search(line)
            if match:
                known_streamers[match.group(1)] = None
                continue

            match = PATTERNS["chat_message"].match(line)
            if match and not line.startswith(("Notice:", "User ")):
                username, message = match.group(1), match.group(2)
                if not self.is_excluded(username):
                    result.chat_messages.append(
                        ChatMessage(
                            username=username,
                            message=message,
                            is_broadcaster=username.lower() == self.broadcaster,
                        )
                    )
                    unique_users[username] = None
                    result.filtered_chat_lines.append(f"{username}: {message}")

        # visitors still in the room at the end of the transcript
        result.visitors.extend(open_visits.values())
        result.top_lovers_board = sorted(top_lovers.values(), key=lambda lover: lover.rank)
        result.unique_usernames = list(unique_users)
        result.known_streamers = list(known_streamers)
        return result

    def categorize_visitors(
        self, visitors: list[Visitor], threshold_minutes: int = 1
    ) -> dict[str, list[str]]:
        """Split visitors into those who stayed past the threshold and quick leavers.

        Visits are summed per username; a visitor who never left counts as stayed.
        """
        threshold = threshold_minutes * 60
        totals: dict[str, int] = {}
        for visitor in visitors:
            if self.is_excluded(visitor.username):
                continue
            seconds = visitor.duration_seconds
            if seconds is None:
                seconds = threshold + 1
            totals[visitor.username] = totals.get(visitor.username, 0) + seconds

        return {
            "stayed": [name for name, total in totals.items() if total >= threshold],
            "quick": [name for name, total in totals.items() if total < threshold],
        }

    def average_watch_time(self, visitors: list[Visitor]) -> int:
        durations = [
            visitor.duration_seconds
            for visitor in visitors
            if visitor.duration_seconds is not None and not self.is_excluded(visitor.username)
        ]
        if not durations:
            return 0
        return round(sum(durations) / len(durations))

    def aggregate_tips(self, tips: list[Tip]) -> list[dict[str, int | str]]:
        totals: dict[str, int] = {}
        for tip in tips:
            if self.is_excluded(tip.username):
                continue
            totals[tip.username] = totals.get(tip.username, 0) + tip.tokens
        ranked = sorted(totals.items(), key=lambda item: item[1], reverse=True)
        return [{"username": username, "tokens": tokens} for username, tokens in ranked]
