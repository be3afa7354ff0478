"""
Move the S3 objects of soft-deleted media into a quarantine folder.

A media row with deleted_at set keeps its object in place until this tool
copies it to {S3_PREFIX}QUARANTINE/duplicates/{file_path} and removes the
original.

Usage:
    mhc-quarantine analyze
    mhc-quarantine quarantine [--dry-run]

Invariants:
    - Rows are never modified; only objects move
    - An object is deleted only after its copy succeeded
    - One failing object never stops the run
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import dataclass
from typing import Any

from ..config import DatabaseConfig, S3Config
from ..store import Database
from .s3 import S3Storage

logger = logging.getLogger(__name__)

QUARANTINE_FOLDER = "QUARANTINE/duplicates/"
PROGRESS_EVERY = 500


@dataclass
class QuarantineStats:
    processed: int = 0
    moved: int = 0
    not_found: int = 0
    errors: int = 0


def quarantine_key(prefix: str, file_path: str) -> str:
    return f"{prefix}{QUARANTINE_FOLDER}{file_path}"


def analyze(db: Database, s3_config: S3Config) -> dict[str, Any]:
    with db.connection() as conn:
        total = conn.execute("SELECT COUNT(*) FROM profile_images WHERE deleted_at IS NOT NULL").fetchone()[0]
        with_path = conn.execute(
            "SELECT COUNT(*) FROM profile_images WHERE deleted_at IS NOT NULL AND file_path IS NOT NULL"
        ).fetchone()[0]
        samples = [
            row["file_path"]
            for row in conn.execute(
                """
                SELECT file_path FROM profile_images
                WHERE deleted_at IS NOT NULL AND file_path IS NOT NULL
                ORDER BY deleted_at LIMIT 5
                """
            ).fetchall()
        ]

    print(f"Soft-deleted media rows: {total}")
    print(f"  With file_path: {with_path}")
    print(f"  Without file_path: {total - with_path}")
    if samples:
        print("Sample paths:")
        for path in samples:
            print(f"  {path}")
    print(f"Bucket: {s3_config.bucket}")
    print(f"Prefix: {s3_config.prefix}")

    return {"total": total, "withPath": with_path, "withoutPath": total - with_path, "samples": samples}


async def quarantine(storage: Any, db: Database, prefix: str, dry_run: bool = False) -> QuarantineStats:
    """Move objects of soft-deleted rows into the quarantine folder.

    Args:
        storage: Object with async exists/copy/delete
        db: Database holding profile_images
        prefix: S3 key prefix in front of every file_path
        dry_run: Only check which objects exist

    Returns:
        Quarantine counters
    """
    with db.connection() as conn:
        paths = [
            row["file_path"]
            for row in conn.execute(
                """
                SELECT file_path FROM profile_images
                WHERE deleted_at IS NOT NULL AND file_path IS NOT NULL
                ORDER BY deleted_at
                """
            ).fetchall()
        ]

    stats = QuarantineStats()
    for file_path in paths:
        stats.processed += 1
        source_key = f"{prefix}{file_path}"
        try:
            if not await storage.exists(source_key):
                stats.not_found += 1
            elif dry_run:
                stats.moved += 1
            elif not await storage.copy(source_key, quarantine_key(prefix, file_path)):
                stats.errors += 1
            elif not await storage.delete(source_key):
                stats.errors += 1
            else:
                stats.moved += 1
        except Exception as e:
            logger.error("Quarantine failed", extra={"file_path": file_path, "error": str(e)})
            stats.errors += 1

        if stats.processed % PROGRESS_EVERY == 0:
            print(f"Progress: {stats.processed}/{len(paths)}")

    return stats


def _print_summary(stats: QuarantineStats, dry_run: bool) -> None:
    print("")
    print("Quarantine summary")
    print(f"  Processed: {stats.processed}")
    print(f"  {'Would move' if dry_run else 'Moved'}: {stats.moved}")
    print(f"  Not found: {stats.not_found}")
    print(f"  Errors: {stats.errors}")


def main(
    argv: list[str] | None = None,
    storage: Any | None = None,
    db: Database | None = None,
    s3_config: S3Config | None = None,
) -> int:
    """CLI entry point for the quarantine tool."""
    parser = argparse.ArgumentParser(
        prog="mhc-quarantine",
        description="Move objects of soft-deleted media into QUARANTINE/duplicates/",
    )
    parser.add_argument("command", nargs="?", help="analyze | quarantine")
    parser.add_argument("--dry-run", action="store_true", help="Only check existence")
    args = parser.parse_args(argv)

    if args.command not in ("analyze", "quarantine"):
        parser.print_usage()
        return 1

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")

    s3_config = s3_config or S3Config.from_env()
    if db is None:
        db_config = DatabaseConfig.from_env()
        db = Database(db_config.path, wal_mode=db_config.wal_mode, busy_timeout_ms=db_config.busy_timeout_ms)
    asyncio.run(db.initialize())

    if args.command == "analyze":
        analyze(db, s3_config)
        return 0

    async def run() -> QuarantineStats:
        if storage is not None:
            return await quarantine(storage, db, s3_config.prefix, dry_run=args.dry_run)
        async with S3Storage(s3_config) as s3:
            return await quarantine(s3, db, s3_config.prefix, dry_run=args.dry_run)

    stats = asyncio.run(run())
    _print_summary(stats, args.dry_run)
    return 0


if __name__ == "__main__":
    sys.exit(main())
