"""
Unit tests for the chat transcript parser.

Tests cover:
- Tips, notes and token totals
- Visitor durations and categories
- Follows, subjects and the top lovers board
- Excluded usernames
"""

import pytest

from mhc_panel.services.transcript import SECONDS_PER_LINE, TranscriptParser, normalize_room_subject

TRANSCRIPT = """
Broadcaster Rules: be nice
room subject changed to "Chill stream [500 tokens left]"
User alice has joined the room.
User bob has joined the room.
aliceHello there!
bob tipped 50 tokens
Notice: bob tipped for » Song request
room subject changed to "Chill stream [200 tokens left]"
@carol has followed you
@dave has unfollowed you
User bob has left the room.
smk_lover tipped 999 tokens
New private message from alice
*** Warning *** A Chaturbate User @streamer_x is currently broadcasting
Notice: 1. bob (50 tks)
hudson_cageThanks bob!
alice tipped 25 tokens
"""


class TestTranscriptParser:
    """Tests for TranscriptParser."""

    @pytest.fixture
    def parser(self):
        return TranscriptParser(broadcaster="hudson_cage", excluded_usernames=("smk_lover",))

    def test_tips_and_totals(self, parser):
        """Tips are collected with notes; excluded tippers are ignored."""
        parsed = parser.parse(TRANSCRIPT)

        assert parsed.total_tokens == 75
        assert [(tip.username, tip.tokens) for tip in parsed.tips] == [("bob", 50), ("alice", 25)]
        assert parsed.tips[0].note == "Song request"

    def test_room_subject_variants(self, parser):
        """Subjects differing only in goal counters collapse to one."""
        parsed = parser.parse(TRANSCRIPT)

        assert parsed.room_subjects == ["Chill stream [500 tokens left]"]
        assert normalize_room_subject("Goal [12 tokens remaining]") == "Goal [GOAL]"

    def test_follows_and_private_messages(self, parser):
        """Follows, unfollows, PMs and streamer warnings are extracted."""
        parsed = parser.parse(TRANSCRIPT)

        assert parsed.follows == ["carol"]
        assert parsed.unfollows == ["dave"]
        assert parsed.private_message_users == ["alice"]
        assert parsed.known_streamers == ["streamer_x"]
        assert [(lover.rank, lover.username, lover.tokens) for lover in parsed.top_lovers_board] == [
            (1, "bob", 50)
        ]

    def test_chat_messages(self, parser):
        """Glued username/message lines are split and owner lines flagged."""
        parsed = parser.parse(TRANSCRIPT)

        messages = [(msg.username, msg.message, msg.is_broadcaster) for msg in parsed.chat_messages]
        assert ("alice", "Hello there!", False) in messages
        assert ("hudson_cage", "Thanks bob!", True) in messages
        assert "alice: Hello there!" in parsed.filtered_chat_lines

    def test_visitor_durations(self, parser):
        """Durations are measured in lines; open visits count as stayed."""
        parsed = parser.parse(TRANSCRIPT)
        by_name = {visitor.username: visitor for visitor in parsed.visitors}

        assert by_name["bob"].duration_seconds == 7 * SECONDS_PER_LINE
        assert by_name["alice"].duration_seconds is None

        categories = parser.categorize_visitors(parsed.visitors, threshold_minutes=1)
        assert "alice" in categories["stayed"]
        assert categories["quick"] == ["bob"]

    def test_aggregate_tips(self, parser):
        """Tips are summed per user and ranked."""
        parsed = parser.parse(TRANSCRIPT + "bob tipped 10 tokens\n")

        assert parser.aggregate_tips(parsed.tips) == [
            {"username": "bob", "tokens": 60},
            {"username": "alice", "tokens": 25},
        ]
