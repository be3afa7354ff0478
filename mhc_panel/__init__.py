"""
MHC Control Panel - broadcaster analytics API.

This package implements the backend for a Chaturbate broadcaster's control panel:
- Persons (viewers/models) with profile snapshots from Statbate and the Stats API
- Interactions captured from the Chaturbate Events API
- Stream sessions and manually curated broadcasts with AI summaries
- Follower count history and follow/unfollow tracking
- Media favorites over the profile image catalogue
- Cookie sessions with TOTP 2FA, recovery codes and trusted devices

Architecture:
    ┌─────────────┐     ┌──────────────┐     ┌──────────────┐
    │  Dashboard  │────▶│ FastAPI app  │────▶│   Services   │
    │    (SPA)    │     │  (/api/...)  │     │              │
    └─────────────┘     └──────────────┘     └──────┬───────┘
                                                    │
         ┌──────────────────┐                       ▼
         │  Events listener │─────────────▶  ┌─────────────┐
         │   (long-poll)    │                │   SQLite    │
         └──────────────────┘                └─────────────┘
                                                    ▲
         ┌──────────────────┐                       │
         │ S3 maintenance   │───────────────────────┘
         │ CLIs             │
         └──────────────────┘

Invariants:
    - Usernames are stored lower-cased
    - file_path is unique across profile_images
    - Every interaction references an existing person

How to change safely:
    - Add columns with defaults; never repurpose an existing column
    - Keep response keys stable, the dashboard reads them directly
"""

from ._version import __version__

__all__ = ["__version__"]
