"""
SQLite store for the MHC Control Panel.

This module owns the single SQLite database that stores:
- Persons, aliases, snapshots and interactions
- Stream sessions, raw event logs and broadcasts with their summaries
- Follower count history and follow/unfollow history
- Profile images (media) with favorite flags and soft deletes
- Application settings
- Users, auth sessions, TOTP devices, recovery codes and trusted devices

Invariants:
    - One connection per operation; SQLite handles concurrent readers in WAL mode
    - Multi-statement writes run inside BEGIN IMMEDIATE ... COMMIT
    - Timestamps are ISO-8601 UTC strings, so lexical order is time order
    - JSON columns are TEXT and decoded by the owning service

How to change safely:
    - Only add tables/columns with CREATE ... IF NOT EXISTS or defaults
    - Bump SCHEMA_VERSION when the layout changes
    - Keep ON DELETE CASCADE on person-owned tables
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS: dict[str, tuple[Any, str]] = {
    "broadcast_merge_gap_minutes": (
        30,
        "Broadcasts starting within this many minutes of the previous one are merged",
    ),
    "ai_summary_delay_minutes": (
        None,
        "Minutes to wait after a broadcast ends before generating the AI summary (null = merge gap)",
    ),
}


def utcnow() -> datetime:
    """Current time, timezone-aware UTC."""
    return datetime.now(timezone.utc)


def to_iso(value: datetime) -> str:
    """Format a datetime the way every timestamp column stores it."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def now_iso() -> str:
    return to_iso(utcnow())


def parse_iso(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def new_id() -> str:
    return str(uuid.uuid4())


def dumps(value: Any) -> str:
    return json.dumps(value, default=str)


def loads(value: str | None, default: Any = None) -> Any:
    if value is None:
        return default
    return json.loads(value)


class Database:
    """SQLite database handle shared by all services.

    Thread safety:
        Each database connection is created per-operation.
        SQLite handles concurrent access via WAL mode.

    Example:
        >>> db = Database("/var/lib/mhc/mhc.db")
        >>> await db.initialize()
        >>> with db.connection() as conn:
        ...     conn.execute("SELECT COUNT(*) FROM persons").fetchone()
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        path: str,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the database handle.

        Args:
            path: SQLite database file path
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
        """
        self.path = Path(path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection.

        Yields:
            SQLite connection in autocommit mode
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            str(self.path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.execute("PRAGMA foreign_keys = ON")

            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Open a connection inside BEGIN IMMEDIATE; commit on success."""
        with self.connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
                conn.execute("COMMIT")
            except Exception:
                conn.execute("ROLLBACK")
                raise

    async def initialize(self) -> None:
        """Create schema and seed default settings (idempotent)."""
        with self.connection() as conn:
            self._create_schema(conn)
            conn.execute(
                "INSERT OR IGNORE INTO schema_version (version, applied_at) VALUES (?, ?)",
                (self.SCHEMA_VERSION, int(time.time() * 1000)),
            )
            for key, (value, description) in DEFAULT_SETTINGS.items():
                conn.execute(
                    """
                    INSERT OR IGNORE INTO app_settings (key, value, description, updated_at)
                    VALUES (?, ?, ?, ?)
                    """,
                    (key, dumps(value), description, now_iso()),
                )
        logger.info("Database initialized", extra={"path": str(self.path)})

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        """Create database schema."""
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER NOT NULL
            );

            -- People
            CREATE TABLE IF NOT EXISTS persons (
                id TEXT PRIMARY KEY,
                username TEXT NOT NULL,
                platform TEXT NOT NULL DEFAULT 'chaturbate',
                role TEXT NOT NULL DEFAULT 'UNKNOWN'
                    CHECK (role IN ('MODEL', 'VIEWER', 'BOTH', 'UNKNOWN')),
                rid INTEGER,
                did INTEGER,
                first_seen_at TEXT NOT NULL,
                last_seen_at TEXT NOT NULL,
                is_excluded INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE (username, platform)
            );

            CREATE INDEX IF NOT EXISTS idx_persons_last_seen ON persons(last_seen_at DESC);

            CREATE TABLE IF NOT EXISTS person_aliases (
                id TEXT PRIMARY KEY,
                person_id TEXT NOT NULL REFERENCES persons(id) ON DELETE CASCADE,
                alias TEXT NOT NULL,
                platform TEXT NOT NULL DEFAULT 'chaturbate',
                valid_from TEXT NOT NULL,
                valid_to TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_aliases_alias ON person_aliases(alias);

            CREATE TABLE IF NOT EXISTS snapshots (
                id TEXT PRIMARY KEY,
                person_id TEXT NOT NULL REFERENCES persons(id) ON DELETE CASCADE,
                source TEXT NOT NULL
                    CHECK (source IN ('statbate_member', 'statbate_model', 'cb_stats', 'manual')),
                captured_at TEXT NOT NULL,
                raw_payload TEXT NOT NULL DEFAULT '{}',
                normalized_metrics TEXT,
                created_at TEXT NOT NULL,
                UNIQUE (person_id, source, captured_at)
            );

            CREATE INDEX IF NOT EXISTS idx_snapshots_person
                ON snapshots(person_id, source, captured_at DESC);

            -- Sessions and events
            CREATE TABLE IF NOT EXISTS stream_sessions (
                id TEXT PRIMARY KEY,
                platform TEXT NOT NULL DEFAULT 'chaturbate',
                broadcaster TEXT NOT NULL,
                started_at TEXT NOT NULL,
                ended_at TEXT,
                status TEXT NOT NULL DEFAULT 'LIVE' CHECK (status IN ('LIVE', 'ENDED')),
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_sessions_broadcaster
                ON stream_sessions(broadcaster, started_at DESC);

            CREATE TABLE IF NOT EXISTS interactions (
                id TEXT PRIMARY KEY,
                person_id TEXT NOT NULL REFERENCES persons(id) ON DELETE CASCADE,
                stream_session_id TEXT REFERENCES stream_sessions(id) ON DELETE SET NULL,
                type TEXT NOT NULL,
                content TEXT,
                timestamp TEXT NOT NULL,
                source TEXT NOT NULL CHECK (source IN ('cb_events', 'statbate_plus', 'manual')),
                metadata TEXT,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_interactions_person
                ON interactions(person_id, timestamp DESC);
            CREATE INDEX IF NOT EXISTS idx_interactions_session ON interactions(stream_session_id);
            CREATE INDEX IF NOT EXISTS idx_interactions_source
                ON interactions(source, timestamp DESC);

            CREATE TABLE IF NOT EXISTS event_logs (
                id TEXT PRIMARY KEY,
                timestamp TEXT NOT NULL,
                method TEXT NOT NULL,
                broadcaster TEXT,
                username TEXT,
                raw_event TEXT NOT NULL DEFAULT '{}'
            );

            CREATE INDEX IF NOT EXISTS idx_event_logs_time ON event_logs(timestamp DESC);
            CREATE INDEX IF NOT EXISTS idx_event_logs_method ON event_logs(method);

            -- Broadcasts
            CREATE TABLE IF NOT EXISTS my_broadcasts (
                id TEXT PRIMARY KEY,
                started_at TEXT NOT NULL,
                ended_at TEXT,
                duration_minutes INTEGER,
                peak_viewers INTEGER NOT NULL DEFAULT 0,
                total_tokens INTEGER NOT NULL DEFAULT 0,
                followers_gained INTEGER NOT NULL DEFAULT 0,
                summary TEXT,
                notes TEXT,
                tags TEXT NOT NULL DEFAULT '[]',
                room_subject TEXT,
                auto_detected INTEGER NOT NULL DEFAULT 0,
                source TEXT NOT NULL DEFAULT 'manual',
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_broadcasts_started ON my_broadcasts(started_at DESC);

            CREATE TABLE IF NOT EXISTS broadcast_summaries (
                id TEXT PRIMARY KEY,
                broadcast_id TEXT NOT NULL UNIQUE REFERENCES my_broadcasts(id) ON DELETE CASCADE,
                theme TEXT,
                tokens_received INTEGER NOT NULL DEFAULT 0,
                tokens_per_hour REAL NOT NULL DEFAULT 0,
                max_viewers INTEGER NOT NULL DEFAULT 0,
                unique_viewers INTEGER NOT NULL DEFAULT 0,
                avg_watch_time_seconds INTEGER NOT NULL DEFAULT 0,
                new_followers INTEGER NOT NULL DEFAULT 0,
                lost_followers INTEGER NOT NULL DEFAULT 0,
                net_followers INTEGER NOT NULL DEFAULT 0,
                room_subject_variants TEXT NOT NULL DEFAULT '[]',
                visitors_stayed TEXT NOT NULL DEFAULT '[]',
                visitors_quick TEXT NOT NULL DEFAULT '[]',
                visitors_banned TEXT NOT NULL DEFAULT '[]',
                top_tippers TEXT NOT NULL DEFAULT '[]',
                top_lovers_board TEXT NOT NULL DEFAULT '[]',
                overall_vibe TEXT,
                engagement_summary TEXT,
                tracking_notes TEXT,
                private_dynamics TEXT,
                opportunities TEXT,
                full_markdown TEXT,
                transcript_text TEXT,
                ai_model TEXT,
                generation_tokens_used INTEGER,
                generated_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            -- Followers
            CREATE TABLE IF NOT EXISTS follower_count_history (
                id TEXT PRIMARY KEY,
                person_id TEXT NOT NULL REFERENCES persons(id) ON DELETE CASCADE,
                follower_count INTEGER NOT NULL,
                previous_count INTEGER,
                delta INTEGER NOT NULL DEFAULT 0,
                recorded_at TEXT NOT NULL,
                source TEXT NOT NULL DEFAULT 'manual'
            );

            CREATE INDEX IF NOT EXISTS idx_follower_history_person
                ON follower_count_history(person_id, recorded_at DESC);
            CREATE INDEX IF NOT EXISTS idx_follower_history_recorded
                ON follower_count_history(recorded_at DESC);

            CREATE TABLE IF NOT EXISTS follow_history (
                id TEXT PRIMARY KEY,
                person_id TEXT NOT NULL REFERENCES persons(id) ON DELETE CASCADE,
                direction TEXT NOT NULL CHECK (direction IN ('following', 'follower')),
                action TEXT NOT NULL CHECK (action IN ('follow', 'unfollow')),
                source TEXT NOT NULL,
                created_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_follow_history_person
                ON follow_history(person_id, created_at DESC);

            -- Media
            CREATE TABLE IF NOT EXISTS profile_images (
                id TEXT PRIMARY KEY,
                person_id TEXT REFERENCES persons(id) ON DELETE CASCADE,
                file_path TEXT UNIQUE,
                source TEXT NOT NULL DEFAULT 'manual_upload',
                media_type TEXT NOT NULL DEFAULT 'image' CHECK (media_type IN ('image', 'video')),
                is_favorite INTEGER NOT NULL DEFAULT 0,
                is_primary INTEGER NOT NULL DEFAULT 0,
                file_size INTEGER,
                storage_provider TEXT NOT NULL DEFAULT 's3',
                uploaded_at TEXT NOT NULL,
                deleted_at TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_profile_images_person ON profile_images(person_id);
            CREATE INDEX IF NOT EXISTS idx_profile_images_favorite
                ON profile_images(is_favorite, uploaded_at DESC);

            -- Settings
            CREATE TABLE IF NOT EXISTS app_settings (
                key TEXT PRIMARY KEY,
                value TEXT,
                description TEXT,
                updated_at TEXT NOT NULL
            );

            -- Auth
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                email TEXT UNIQUE,
                username TEXT UNIQUE,
                subscriber_id TEXT UNIQUE,
                password_hash TEXT NOT NULL,
                display_name TEXT,
                role TEXT NOT NULL DEFAULT 'member',
                totp_enabled INTEGER NOT NULL DEFAULT 0,
                is_active INTEGER NOT NULL DEFAULT 1,
                last_login_at TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS auth_sessions (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                token_hash TEXT NOT NULL UNIQUE,
                csrf_token TEXT NOT NULL,
                ip_address TEXT,
                user_agent TEXT,
                device_fingerprint TEXT,
                totp_verified INTEGER NOT NULL DEFAULT 0,
                totp_verified_at TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                revoked_at TEXT,
                revoke_reason TEXT,
                created_at TEXT NOT NULL,
                last_active_at TEXT NOT NULL,
                expires_at TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_auth_sessions_user ON auth_sessions(user_id, is_active);

            CREATE TABLE IF NOT EXISTS totp_devices (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                name TEXT NOT NULL,
                secret_encrypted TEXT NOT NULL,
                is_verified INTEGER NOT NULL DEFAULT 0,
                last_used_at TEXT,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS recovery_codes (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                batch_id TEXT NOT NULL,
                code_hash TEXT NOT NULL,
                used_at TEXT,
                used_ip TEXT,
                created_at TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS trusted_devices (
                id TEXT PRIMARY KEY,
                user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
                token_hash TEXT NOT NULL UNIQUE,
                name TEXT,
                user_agent TEXT,
                ip_address TEXT,
                created_at TEXT NOT NULL,
                last_used_at TEXT,
                expires_at TEXT NOT NULL,
                revoked_at TEXT
            );
        """)
