"""
Service wiring.

Builds every service from a PanelConfig around one Database handle. The API
lifespan and the worker entrypoint both go through build_services() so the
two process roles see identical wiring.

How to change safely:
    - New services get a field here and are built in build_services()
    - Keep optional integrations (Statbate, Stats API, OpenAI) None-able;
      callers check for None rather than catching import or auth errors
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from .auth import AuthFlow, SecretBox, SessionManager, TotpService, UserService
from .clients import ChaturbateStatsClient, StatbateClient
from .config import PanelConfig
from .ingest import EventsListener
from .services import (
    AISummaryService,
    BroadcastService,
    DashboardService,
    EventLogService,
    FollowerHistoryService,
    FollowHistoryService,
    InteractionService,
    LookupService,
    MediaService,
    PersonService,
    RoomPresence,
    SettingsService,
    SnapshotService,
    StreamSessionService,
    SummaryStore,
    TranscriptParser,
)
from .services.ai_summary import build_client
from .store import Database

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Every service the API and the listener need, sharing one Database."""

    config: PanelConfig
    db: Database
    persons: PersonService
    snapshots: SnapshotService
    interactions: InteractionService
    sessions: StreamSessionService
    events: EventLogService
    broadcasts: BroadcastService
    summaries: SummaryStore
    settings: SettingsService
    ai_summary: AISummaryService
    follower_history: FollowerHistoryService
    follow_history: FollowHistoryService
    media: MediaService
    lookup: LookupService
    dashboard: DashboardService
    presence: RoomPresence
    users: UserService
    auth_sessions: SessionManager
    totp: TotpService
    auth_flow: AuthFlow


def build_services(
    config: PanelConfig,
    ai_client: Any | None = None,
    http_transport: httpx.AsyncBaseTransport | None = None,
) -> Services:
    """Construct the service graph.

    Args:
        config: Panel configuration
        ai_client: OpenAI client override; when None one is built from config
        http_transport: httpx transport for the Statbate and Stats API clients

    Returns:
        Wired Services (the database is not initialized yet)
    """
    db = Database(
        path=config.database.path,
        wal_mode=config.database.wal_mode,
        busy_timeout_ms=config.database.busy_timeout_ms,
    )
    owner = config.chaturbate.username
    excluded = config.chaturbate.excluded_usernames

    persons = PersonService(db, owner_username=owner, excluded_usernames=excluded)
    snapshots = SnapshotService(db)
    interactions = InteractionService(db)
    sessions = StreamSessionService(db)
    broadcasts = BroadcastService(db)
    summaries = SummaryStore(db)
    settings = SettingsService(db)

    statbate = None
    if config.statbate.api_token:
        statbate = StatbateClient(
            api_token=config.statbate.api_token,
            base_url=config.statbate.base_url,
            timeout_seconds=config.statbate.timeout_seconds,
            transport=http_transport,
        )

    stats_client = None
    if config.chaturbate.stats_token:
        stats_client = ChaturbateStatsClient(transport=http_transport)

    client = ai_client if ai_client is not None else build_client(config.openai)

    users = UserService(db)
    auth_sessions = SessionManager(
        db,
        session_days=config.auth.session_days,
        renewal_hours=config.auth.renewal_hours,
    )
    totp = TotpService(
        db,
        SecretBox(config.auth.totp_encryption_key),
        issuer=config.auth.totp_issuer,
        trusted_device_days=config.auth.trusted_device_days,
    )

    services = Services(
        config=config,
        db=db,
        persons=persons,
        snapshots=snapshots,
        interactions=interactions,
        sessions=sessions,
        events=EventLogService(db),
        broadcasts=broadcasts,
        summaries=summaries,
        settings=settings,
        ai_summary=AISummaryService(
            broadcasts=broadcasts,
            summaries=summaries,
            settings=settings,
            parser=TranscriptParser(broadcaster=owner, excluded_usernames=excluded),
            client=client,
            model=config.openai.model,
            max_tokens=config.openai.max_tokens,
        ),
        follower_history=FollowerHistoryService(db),
        follow_history=FollowHistoryService(db, persons),
        media=MediaService(db),
        lookup=LookupService(persons, snapshots, interactions, statbate=statbate),
        dashboard=DashboardService(
            persons,
            snapshots,
            interactions,
            sessions,
            owner_username=owner,
            stats_client=stats_client,
            stats_token=config.chaturbate.stats_token,
        ),
        presence=RoomPresence(excluded_usernames=excluded),
        users=users,
        auth_sessions=auth_sessions,
        totp=totp,
        auth_flow=AuthFlow(users, auth_sessions, totp),
    )
    logger.debug(
        "Services built",
        extra={"statbate": statbate is not None, "stats_api": stats_client is not None, "ai": client is not None},
    )
    return services


def build_listener(
    services: Services,
    transport: httpx.AsyncBaseTransport | None = None,
) -> EventsListener:
    """Create the Events API listener for the configured broadcaster.

    Raises:
        ValueError: No events token configured
    """
    token = services.config.chaturbate.events_token
    if not token:
        raise ValueError("CHATURBATE_EVENTS_TOKEN is not configured")
    return EventsListener(
        username=services.config.chaturbate.username,
        token=token,
        persons=services.persons,
        interactions=services.interactions,
        sessions=services.sessions,
        events=services.events,
        follow_history=services.follow_history,
        presence=services.presence,
        transport=transport,
    )
