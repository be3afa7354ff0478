"""
Configuration management for the MHC Control Panel.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Keep env var names stable, deployments set them directly
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class RunMode(Enum):
    """Process roles: API only, events listener only, or both in one process."""

    WEB = "web"
    WORKER = "worker"
    ALL = "all"


def _split_list(value: str | None) -> tuple[str, ...]:
    if not value:
        return ()
    return tuple(item.strip().lower() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class DatabaseConfig:
    """SQLite storage configuration.

    Attributes:
        path: Path to the SQLite database file
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
    """

    path: str = "./data/mhc.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000

    @classmethod
    def from_env(cls) -> DatabaseConfig:
        """Load configuration from environment variables."""
        return cls(
            path=os.getenv("DATABASE_PATH", "./data/mhc.db"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
        )


@dataclass(frozen=True)
class ChaturbateConfig:
    """Chaturbate Events/Stats API configuration.

    Attributes:
        username: Broadcaster account that owns this panel
        events_token: Events API token (long-poll feed)
        stats_token: Stats API token
        excluded_usernames: Owner alt accounts, auto-excluded from people lists
    """

    username: str = "hudson_cage"
    events_token: str | None = None
    stats_token: str | None = None
    excluded_usernames: tuple[str, ...] = ("smk_lover",)

    @classmethod
    def from_env(cls) -> ChaturbateConfig:
        """Load configuration from environment variables."""
        return cls(
            username=os.getenv("CHATURBATE_USERNAME", "hudson_cage").lower(),
            events_token=os.getenv("CHATURBATE_EVENTS_TOKEN"),
            stats_token=os.getenv("CHATURBATE_STATS_TOKEN"),
            excluded_usernames=_split_list(os.getenv("EXCLUDED_USERNAMES", "smk_lover")),
        )


@dataclass(frozen=True)
class StatbateConfig:
    """Statbate Plus API configuration."""

    api_token: str | None = None
    base_url: str = "https://plus.statbate.com/api"
    timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> StatbateConfig:
        """Load configuration from environment variables."""
        return cls(
            api_token=os.getenv("STATBATE_API_TOKEN"),
            base_url=os.getenv("STATBATE_BASE_URL", "https://plus.statbate.com/api"),
            timeout_seconds=float(os.getenv("STATBATE_TIMEOUT_SECONDS", "30")),
        )


@dataclass(frozen=True)
class OpenAIConfig:
    """OpenAI configuration for stream summaries.

    Attributes:
        api_key: API key; summaries are disabled when unset
        model: Chat completion model name
        max_tokens: Completion token cap
    """

    api_key: str | None = None
    model: str = "gpt-4o-mini"
    max_tokens: int = 4000

    @classmethod
    def from_env(cls) -> OpenAIConfig:
        """Load configuration from environment variables."""
        return cls(
            api_key=os.getenv("OPENAI_API_KEY"),
            model=os.getenv("OPENAI_MODEL", "gpt-4o-mini"),
            max_tokens=int(os.getenv("OPENAI_MAX_TOKENS", "4000")),
        )


@dataclass(frozen=True)
class AuthConfig:
    """Session and 2FA configuration.

    Attributes:
        totp_encryption_key: Secret used to derive the TOTP secret encryption key
        session_days: Session lifetime
        trusted_device_days: Trusted device cookie lifetime
        renewal_hours: Rolling renewal threshold for idle sessions
        totp_issuer: Issuer shown in authenticator apps
    """

    totp_encryption_key: str = "dev-only-change-me"
    session_days: int = 7
    trusted_device_days: int = 30
    renewal_hours: int = 1
    totp_issuer: str = "MHC Control Panel"

    @classmethod
    def from_env(cls) -> AuthConfig:
        """Load configuration from environment variables."""
        return cls(
            totp_encryption_key=os.getenv("TOTP_ENCRYPTION_KEY", "dev-only-change-me"),
            session_days=int(os.getenv("SESSION_DAYS", "7")),
            trusted_device_days=int(os.getenv("TRUSTED_DEVICE_DAYS", "30")),
            renewal_hours=int(os.getenv("SESSION_RENEWAL_HOURS", "1")),
            totp_issuer=os.getenv("TOTP_ISSUER", "MHC Control Panel"),
        )


@dataclass(frozen=True)
class S3Config:
    """S3 configuration for media storage.

    Attributes:
        bucket: S3 bucket name
        region: AWS region
        prefix: Key prefix in front of every media relative path
        endpoint_url: Custom endpoint URL (for MinIO)
        access_key_id: AWS access key ID (optional, uses AWS credential chain)
        secret_access_key: AWS secret access key (optional)
    """

    bucket: str = "mhc-media-prod"
    region: str = "us-east-2"
    prefix: str = "mhc/media/"
    endpoint_url: str | None = None
    access_key_id: str | None = None
    secret_access_key: str | None = None

    @classmethod
    def from_env(cls) -> S3Config:
        """Load configuration from environment variables."""
        return cls(
            bucket=os.getenv("S3_BUCKET", "mhc-media-prod"),
            region=os.getenv("S3_REGION", os.getenv("AWS_REGION", "us-east-2")),
            prefix=os.getenv("S3_PREFIX", "mhc/media/"),
            endpoint_url=os.getenv("S3_ENDPOINT"),
            access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class PanelConfig:
    """Complete panel configuration.

    Attributes:
        run_mode: Whether this process serves HTTP or runs the events listener
        database: SQLite configuration
        chaturbate: Chaturbate API configuration
        statbate: Statbate API configuration
        openai: OpenAI configuration
        auth: Session/2FA configuration
        s3: S3 configuration
        observability: Logging configuration
    """

    run_mode: RunMode = RunMode.WEB
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    chaturbate: ChaturbateConfig = field(default_factory=ChaturbateConfig)
    statbate: StatbateConfig = field(default_factory=StatbateConfig)
    openai: OpenAIConfig = field(default_factory=OpenAIConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)
    s3: S3Config = field(default_factory=S3Config)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> PanelConfig:
        """Load complete configuration from environment variables.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        mode_str = os.getenv("RUN_MODE", "web").lower()
        try:
            run_mode = RunMode(mode_str)
        except ValueError:
            raise ValueError(f"Invalid RUN_MODE '{mode_str}'. Must be one of: web, worker, all")

        config = cls(
            run_mode=run_mode,
            database=DatabaseConfig.from_env(),
            chaturbate=ChaturbateConfig.from_env(),
            statbate=StatbateConfig.from_env(),
            openai=OpenAIConfig.from_env(),
            auth=AuthConfig.from_env(),
            s3=S3Config.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if not self.chaturbate.username:
            raise ValueError("CHATURBATE_USERNAME must not be empty")

        if self.run_mode in (RunMode.WORKER, RunMode.ALL) and not self.chaturbate.events_token:
            raise ValueError("CHATURBATE_EVENTS_TOKEN is required when RUN_MODE is worker or all")

        if self.auth.session_days <= 0:
            raise ValueError("SESSION_DAYS must be positive")

        if self.auth.totp_encryption_key == "dev-only-change-me":
            logger.warning("TOTP_ENCRYPTION_KEY is not set; using the development key")

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Panel configuration loaded",
            extra={
                "run_mode": self.run_mode.value,
                "database_path": self.database.path,
                "broadcaster": self.chaturbate.username,
                "events_api": self.chaturbate.events_token is not None,
                "stats_api": self.chaturbate.stats_token is not None,
                "statbate": self.statbate.api_token is not None,
                "openai_model": self.openai.model if self.openai.api_key else None,
                "s3_bucket": self.s3.bucket,
                "log_level": self.observability.log_level,
            },
        )
