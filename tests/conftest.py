"""
Shared fixtures: a throwaway SQLite database and a matching configuration.
"""

import os
import tempfile
from types import SimpleNamespace

import pytest

from mhc_panel.config import ChaturbateConfig, DatabaseConfig, PanelConfig
from mhc_panel.store import Database


@pytest.fixture
def data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def db_path(data_dir):
    return os.path.join(data_dir, "mhc.db")


@pytest.fixture
async def db(db_path):
    """Initialized database."""
    database = Database(db_path, wal_mode=False)
    await database.initialize()
    return database


@pytest.fixture
def config(db_path):
    """Panel configuration pointing at the temporary database."""
    return PanelConfig(
        database=DatabaseConfig(path=db_path, wal_mode=False),
        chaturbate=ChaturbateConfig(username="hudson_cage", excluded_usernames=("smk_lover",)),
    )


class FakeCompletions:
    """Stands in for client.chat.completions; records every request."""

    def __init__(self, content):
        self.content = content
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=self.content))],
            usage=SimpleNamespace(prompt_tokens=1200, completion_tokens=300, total_tokens=1500),
        )


class FakeOpenAI:
    def __init__(self, content):
        self.chat = SimpleNamespace(completions=FakeCompletions(content))

    @property
    def calls(self):
        return self.chat.completions.calls


SUMMARY_MARKDOWN = """# S: 2024-05-01 Stream - Rainy Day Chill
## Overall Vibe
Relaxed evening, bob and alice kept chat going while streamer_x lurked.
## Known Streamers
streamer_x stopped by.
"""


@pytest.fixture
def fake_openai():
    """OpenAI client double returning a fixed recap."""
    return FakeOpenAI(SUMMARY_MARKDOWN)
