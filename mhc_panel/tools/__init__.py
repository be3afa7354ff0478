"""
CLI tools for media maintenance.

This module provides command-line tools for:
- import_orphans: Create profile_images rows for S3 objects without one
- quarantine: Move objects of soft-deleted media out of the live tree

Invariants:
    - Tools work offline (no running server required)
    - Operations are idempotent where possible
"""

from .import_orphans import ImportStats, parse_media_key
from .quarantine import QuarantineStats
from .s3 import S3Storage

__all__ = ["ImportStats", "QuarantineStats", "S3Storage", "parse_media_key"]
