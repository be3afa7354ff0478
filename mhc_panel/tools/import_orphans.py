"""
Import S3 media objects that have no profile_images row.

Objects live at {S3_PREFIX}people/{username}/{folder}/{filename}. The row's
file_path is the key relative to S3_PREFIX.

Usage:
    mhc-import-orphans analyze
    mhc-import-orphans import [--dry-run]

Invariants:
    - Importing twice is a no-op (ON CONFLICT(file_path) DO NOTHING)
    - Only the auto, profile and snaps folders are imported
    - Rows are only created for usernames that already have a person

How to change safely:
    - Add folders to IMPORT_SOURCES rather than widening the key parser
    - Keep the printed summary lines stable; operators grep them
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from ..config import DatabaseConfig, S3Config
from ..store import Database, new_id, now_iso
from .s3 import S3Storage

logger = logging.getLogger(__name__)

IMPORT_SOURCES = {
    "auto": "affiliate_api",
    "profile": "profile",
    "snaps": "screensnap",
}
ANALYZE_FOLDERS = ("auto", "profile", "snaps", "all", "migrated")
VIDEO_EXTENSIONS = (".mp4", ".webm", ".mov", ".m4v")
BATCH_SIZE = 1000
PROGRESS_EVERY = 10_000


@dataclass
class MediaKey:
    """A parsed people/{username}/{folder}/{filename} key."""

    relative_path: str
    username: str
    folder: str
    filename: str


@dataclass
class ImportStats:
    candidates: int = 0
    imported: int = 0
    skipped: int = 0
    errors: int = 0
    no_person_id: int = 0
    by_folder: Counter = field(default_factory=Counter)


def parse_media_key(key: str, prefix: str) -> MediaKey | None:
    """Parse a full object key; None for anything that is not a media file."""
    relative = key[len(prefix) :] if key.startswith(prefix) else key
    if relative.endswith("/"):
        return None

    parts = relative.split("/")
    if len(parts) < 4 or parts[0] != "people":
        return None

    username, folder = parts[1], parts[2]
    filename = "/".join(parts[3:])
    if not username or not filename or parts[-1] in ("", ".DS_Store"):
        return None

    return MediaKey(relative_path=relative, username=username.lower(), folder=folder, filename=filename)


def media_type_for(filename: str) -> str:
    return "video" if filename.lower().endswith(VIDEO_EXTENSIONS) else "image"


def _known_paths(db: Database) -> set[str]:
    with db.connection() as conn:
        rows = conn.execute("SELECT file_path FROM profile_images WHERE file_path IS NOT NULL").fetchall()
    return {row["file_path"] for row in rows}


def _person_ids(db: Database) -> dict[str, str]:
    with db.connection() as conn:
        rows = conn.execute("SELECT id, username FROM persons").fetchall()
    return {row["username"].lower(): row["id"] for row in rows}


async def find_orphans(storage: Any, db: Database, prefix: str) -> tuple[list[MediaKey], list[MediaKey]]:
    """List every media key under people/ and return (all keys, orphans)."""
    known = _known_paths(db)
    keys: list[MediaKey] = []
    orphans: list[MediaKey] = []

    async for key in storage.list_keys(f"{prefix}people/"):
        media_key = parse_media_key(key, prefix)
        if media_key is None:
            continue
        keys.append(media_key)
        if media_key.relative_path not in known:
            orphans.append(media_key)

    return keys, orphans


async def analyze(storage: Any, db: Database, prefix: str) -> dict[str, Any]:
    keys, orphans = await find_orphans(storage, db, prefix)
    totals = Counter(key.folder for key in keys)
    orphaned = Counter(orphan.folder for orphan in orphans)

    print(f"Total media objects: {len(keys)}")
    print(f"Orphaned (no database row): {len(orphans)}")
    by_folder = {}
    for folder in ANALYZE_FOLDERS:
        by_folder[folder] = {"orphaned": orphaned.get(folder, 0), "total": totals.get(folder, 0)}
        print(f"  {folder}: {orphaned.get(folder, 0)} orphaned of {totals.get(folder, 0)} total")

    return {"total": len(keys), "orphaned": len(orphans), "byFolder": by_folder}


def _insert_batch(db: Database, rows: list[tuple]) -> int:
    """Insert rows, returning how many were actually written."""
    with db.transaction() as conn:
        before = conn.total_changes
        conn.executemany(
            """
            INSERT INTO profile_images (id, person_id, file_path, source, media_type,
                                        storage_provider, uploaded_at)
            VALUES (?, ?, ?, ?, ?, 's3', ?)
            ON CONFLICT(file_path) DO NOTHING
            """,
            rows,
        )
        return conn.total_changes - before


async def import_orphans(storage: Any, db: Database, prefix: str, dry_run: bool = False) -> ImportStats:
    """Create profile_images rows for orphaned objects in the import folders.

    Args:
        storage: Object with an async list_keys(prefix) generator
        db: Initialized database
        prefix: S3 key prefix in front of people/
        dry_run: Count what would be imported without writing

    Returns:
        Import counters
    """
    _, orphans = await find_orphans(storage, db, prefix)
    person_ids = _person_ids(db)
    stats = ImportStats()

    pending: list[tuple] = []
    processed = 0

    def flush() -> None:
        if not pending:
            return
        try:
            written = _insert_batch(db, pending)
            stats.imported += written
            stats.skipped += len(pending) - written
        except Exception as e:
            logger.error("Batch insert failed", extra={"rows": len(pending), "error": str(e)})
            stats.errors += len(pending)
        pending.clear()

    for orphan in orphans:
        source = IMPORT_SOURCES.get(orphan.folder)
        if source is None:
            continue

        stats.candidates += 1
        person_id = person_ids.get(orphan.username)
        if person_id is None:
            stats.no_person_id += 1
            continue

        stats.by_folder[orphan.folder] += 1
        processed += 1
        if dry_run:
            stats.imported += 1
        else:
            pending.append(
                (
                    new_id(),
                    person_id,
                    orphan.relative_path,
                    source,
                    media_type_for(orphan.filename),
                    now_iso(),
                )
            )
            if len(pending) >= BATCH_SIZE:
                flush()

        if processed % PROGRESS_EVERY == 0:
            print(f"Progress: {processed} processed")

    flush()
    print(f"Progress: {processed} processed (done)")
    return stats


def _print_summary(stats: ImportStats, db: Database, dry_run: bool) -> None:
    label = "Would import" if dry_run else "Imported"
    print("")
    print("Import summary")
    print(f"  Candidates: {stats.candidates}")
    print(f"  {label}: {stats.imported}")
    for folder, count in sorted(stats.by_folder.items()):
        print(f"    {folder} ({IMPORT_SOURCES[folder]}): {count}")
    print(f"  Skipped (already present): {stats.skipped}")
    print(f"  No person ID: {stats.no_person_id}")
    print(f"  Errors: {stats.errors}")

    with db.connection() as conn:
        row_count = conn.execute("SELECT COUNT(*) FROM profile_images").fetchone()[0]
    print(f"profile_images rows: {row_count}")


async def _run(command: str, dry_run: bool, storage: Any, db: Database, prefix: str) -> int:
    await db.initialize()

    if command == "analyze":
        await analyze(storage, db, prefix)
    else:
        stats = await import_orphans(storage, db, prefix, dry_run=dry_run)
        _print_summary(stats, db, dry_run)
    return 0


def main(
    argv: list[str] | None = None,
    storage: Any | None = None,
    db: Database | None = None,
    s3_config: S3Config | None = None,
) -> int:
    """CLI entry point for the orphan import tool."""
    parser = argparse.ArgumentParser(
        prog="mhc-import-orphans",
        description="Import S3 media objects that have no database row",
    )
    parser.add_argument("command", nargs="?", help="analyze | import")
    parser.add_argument("--dry-run", action="store_true", help="Count without writing")
    args = parser.parse_args(argv)

    if args.command not in ("analyze", "import"):
        parser.print_usage()
        return 1

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")

    s3_config = s3_config or S3Config.from_env()
    if db is None:
        db_config = DatabaseConfig.from_env()
        db = Database(db_config.path, wal_mode=db_config.wal_mode, busy_timeout_ms=db_config.busy_timeout_ms)

    async def run() -> int:
        if storage is not None:
            return await _run(args.command, args.dry_run, storage, db, s3_config.prefix)
        async with S3Storage(s3_config) as s3:
            return await _run(args.command, args.dry_run, s3, db, s3_config.prefix)

    return asyncio.run(run())


if __name__ == "__main__":
    sys.exit(main())
