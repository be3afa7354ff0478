"""
Domain services.

Each service wraps one area of the SQLite store and is constructed with the
shared Database handle. Services are async so route handlers can await them
uniformly; the SQLite calls inside are short and synchronous.
"""

from .ai_summary import AISummaryService
from .broadcasts import Broadcast, BroadcastService
from .dashboard import DashboardService
from .events import EventLogService
from .followers import FollowerHistoryService, FollowHistoryService
from .interactions import Interaction, InteractionService, InteractionSource, InteractionType
from .lookup import LookupService, extract_usernames
from .media import MediaService
from .persons import Person, PersonRole, PersonService
from .presence import RoomPresence
from .sessions import StreamSession, StreamSessionService
from .settings import SettingsService
from .snapshots import Snapshot, SnapshotService
from .summaries import SummaryStore
from .transcript import ParsedTranscript, TranscriptParser

__all__ = [
    "AISummaryService",
    "Broadcast",
    "BroadcastService",
    "DashboardService",
    "EventLogService",
    "FollowHistoryService",
    "FollowerHistoryService",
    "Interaction",
    "InteractionService",
    "InteractionSource",
    "InteractionType",
    "LookupService",
    "MediaService",
    "ParsedTranscript",
    "Person",
    "PersonRole",
    "PersonService",
    "RoomPresence",
    "SettingsService",
    "Snapshot",
    "SnapshotService",
    "StreamSession",
    "StreamSessionService",
    "SummaryStore",
    "TranscriptParser",
    "extract_usernames",
]
