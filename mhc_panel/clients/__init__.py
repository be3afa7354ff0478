"""HTTP clients for third-party data sources."""

from .chaturbate import ChaturbateStatsClient, normalize_stats
from .statbate import StatbateClient, normalize_member_info, normalize_model_info

__all__ = [
    "ChaturbateStatsClient",
    "StatbateClient",
    "normalize_member_info",
    "normalize_model_info",
    "normalize_stats",
]
