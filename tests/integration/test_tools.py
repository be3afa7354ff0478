"""
Integration tests for the S3 maintenance commands.

Tests cover:
- Media key parsing
- Orphan analysis and import (including dry runs and re-runs)
- Quarantine of soft-deleted media
- Command line handling
"""

import asyncio

import pytest

from mhc_panel.config import S3Config
from mhc_panel.services import MediaService, PersonService
from mhc_panel.store import Database
from mhc_panel.tools import import_orphans, parse_media_key, quarantine

PREFIX = "mhc/media/"


class FakeStorage:
    """In-memory bucket with the S3Storage surface the tools use."""

    def __init__(self, keys=(), fail_copy=False):
        self.objects = set(keys)
        self.fail_copy = fail_copy

    async def list_keys(self, prefix):
        for key in sorted(self.objects):
            if key.startswith(prefix):
                yield key

    async def exists(self, key):
        return key in self.objects

    async def copy(self, source_key, dest_key):
        if self.fail_copy:
            return False
        self.objects.add(dest_key)
        return True

    async def delete(self, key):
        self.objects.discard(key)
        return True


@pytest.fixture
def tool_db(db_path):
    database = Database(db_path, wal_mode=False)
    asyncio.run(database.initialize())
    return database


@pytest.fixture
def s3_config():
    return S3Config(bucket="test-bucket", prefix=PREFIX)


def row_count(db):
    with db.connection() as conn:
        return conn.execute("SELECT COUNT(*) FROM profile_images").fetchone()[0]


class TestParseMediaKey:
    """Tests for parse_media_key."""

    def test_valid_key(self):
        key = parse_media_key(f"{PREFIX}people/Alice/auto/1.jpg", PREFIX)

        assert key.relative_path == "people/Alice/auto/1.jpg"
        assert key.username == "alice"
        assert (key.folder, key.filename) == ("auto", "1.jpg")

    def test_rejected_keys(self):
        """Folder markers, short keys, other roots and .DS_Store are skipped."""
        assert parse_media_key(f"{PREFIX}people/alice/auto/", PREFIX) is None
        assert parse_media_key(f"{PREFIX}people/alice/1.jpg", PREFIX) is None
        assert parse_media_key(f"{PREFIX}models/alice/auto/1.jpg", PREFIX) is None
        assert parse_media_key(f"{PREFIX}people/alice/auto/.DS_Store", PREFIX) is None


class TestImportOrphans:
    """Tests for the mhc-import-orphans command."""

    KEYS = (
        f"{PREFIX}people/alice/auto/1.jpg",
        f"{PREFIX}people/alice/snaps/clip.mp4",
        f"{PREFIX}people/Alice/profile/p.jpg",
        f"{PREFIX}people/ghost/auto/2.jpg",
        f"{PREFIX}people/alice/all/3.jpg",
        f"{PREFIX}people/alice/auto/known.jpg",
        f"{PREFIX}people/alice/auto/",
    )

    @pytest.fixture
    def seeded_db(self, tool_db):
        """alice exists and already has one media row."""
        person = asyncio.run(PersonService(tool_db).find_or_create("alice"))
        asyncio.run(MediaService(tool_db).add(person.id, "people/alice/auto/known.jpg"))
        return tool_db

    def test_analyze(self, seeded_db, s3_config, capsys):
        """Analyze counts orphans per folder and writes nothing."""
        code = import_orphans.main(["analyze"], storage=FakeStorage(self.KEYS), db=seeded_db, s3_config=s3_config)

        out = capsys.readouterr().out
        assert code == 0
        assert "Total media objects: 6" in out
        assert "Orphaned (no database row): 5" in out
        assert "  auto: 2 orphaned of 3 total" in out
        assert "  all: 1 orphaned of 1 total" in out
        assert "  migrated: 0 orphaned of 0 total" in out
        assert row_count(seeded_db) == 1

    def test_analyze_by_folder(self, seeded_db):
        """Per-folder counts cover every object, not just orphans."""
        report = asyncio.run(import_orphans.analyze(FakeStorage(self.KEYS), seeded_db, PREFIX))

        assert report["byFolder"]["auto"] == {"orphaned": 2, "total": 3}
        assert report["byFolder"]["profile"] == {"orphaned": 1, "total": 1}
        assert report["total"] == 6

    def test_import(self, seeded_db, s3_config, capsys):
        """Known users in import folders get rows; unknown users are counted."""
        code = import_orphans.main(["import"], storage=FakeStorage(self.KEYS), db=seeded_db, s3_config=s3_config)

        out = capsys.readouterr().out
        assert code == 0
        assert "Candidates: 4" in out
        assert "Imported: 3" in out
        assert "No person ID: 1" in out
        assert "snaps (screensnap): 1" in out
        assert "profile_images rows: 4" in out

        with seeded_db.connection() as conn:
            rows = {
                row["file_path"]: (row["source"], row["media_type"])
                for row in conn.execute("SELECT file_path, source, media_type FROM profile_images")
            }
        assert rows["people/alice/auto/1.jpg"] == ("affiliate_api", "image")
        assert rows["people/alice/snaps/clip.mp4"] == ("screensnap", "video")
        assert rows["people/Alice/profile/p.jpg"] == ("profile", "image")

    def test_import_is_repeatable(self, seeded_db):
        """A second run finds nothing new to import."""
        storage = FakeStorage(self.KEYS)
        asyncio.run(import_orphans.import_orphans(storage, seeded_db, PREFIX))

        stats = asyncio.run(import_orphans.import_orphans(storage, seeded_db, PREFIX))

        assert stats.imported == 0
        assert stats.candidates == 1
        assert stats.no_person_id == 1
        assert row_count(seeded_db) == 4

    def test_dry_run(self, seeded_db, s3_config, capsys):
        code = import_orphans.main(
            ["import", "--dry-run"], storage=FakeStorage(self.KEYS), db=seeded_db, s3_config=s3_config
        )

        out = capsys.readouterr().out
        assert code == 0
        assert "Would import: 3" in out
        assert row_count(seeded_db) == 1

    def test_unknown_command(self, capsys):
        assert import_orphans.main(["explode"]) == 1
        assert import_orphans.main([]) == 1
        assert "usage:" in capsys.readouterr().out


class TestQuarantine:
    """Tests for the mhc-quarantine command."""

    @pytest.fixture
    def deleted_media(self, tool_db):
        """Two soft-deleted rows (one with an object) and one live row."""
        media = MediaService(tool_db)
        present = asyncio.run(media.add(None, "people/x/auto/a.jpg"))
        missing = asyncio.run(media.add(None, "people/x/auto/b.jpg"))
        asyncio.run(media.add(None, "people/x/auto/c.jpg"))
        asyncio.run(media.soft_delete(present["id"]))
        asyncio.run(media.soft_delete(missing["id"]))
        return tool_db

    def test_moves_existing_objects(self, deleted_media, s3_config, capsys):
        """Existing objects are copied to quarantine and removed."""
        storage = FakeStorage([f"{PREFIX}people/x/auto/a.jpg", f"{PREFIX}people/x/auto/c.jpg"])

        code = quarantine.main(["quarantine"], storage=storage, db=deleted_media, s3_config=s3_config)

        out = capsys.readouterr().out
        assert code == 0
        assert "Processed: 2" in out
        assert "Moved: 1" in out
        assert "Not found: 1" in out
        assert storage.objects == {
            f"{PREFIX}QUARANTINE/duplicates/people/x/auto/a.jpg",
            f"{PREFIX}people/x/auto/c.jpg",
        }

    def test_dry_run_leaves_objects(self, deleted_media, s3_config, capsys):
        storage = FakeStorage([f"{PREFIX}people/x/auto/a.jpg"])

        quarantine.main(["quarantine", "--dry-run"], storage=storage, db=deleted_media, s3_config=s3_config)

        assert "Would move: 1" in capsys.readouterr().out
        assert storage.objects == {f"{PREFIX}people/x/auto/a.jpg"}

    def test_failed_copy_keeps_original(self, deleted_media):
        """The original is only deleted after a successful copy."""
        storage = FakeStorage([f"{PREFIX}people/x/auto/a.jpg"], fail_copy=True)

        stats = asyncio.run(quarantine.quarantine(storage, deleted_media, PREFIX))

        assert stats.errors == 1
        assert stats.moved == 0
        assert storage.objects == {f"{PREFIX}people/x/auto/a.jpg"}

    def test_analyze(self, deleted_media, s3_config, capsys):
        code = quarantine.main(["analyze"], db=deleted_media, s3_config=s3_config)

        out = capsys.readouterr().out
        assert code == 0
        assert "Soft-deleted media rows: 2" in out
        assert "  people/x/auto/a.jpg" in out
        assert "Bucket: test-bucket" in out

    def test_analyze_fresh_database(self, db_path, s3_config, capsys):
        """The schema is created before the report query runs."""
        code = quarantine.main(["analyze"], db=Database(db_path, wal_mode=False), s3_config=s3_config)

        assert code == 0
        assert "Soft-deleted media rows: 0" in capsys.readouterr().out

    def test_unknown_command(self):
        assert quarantine.main(["purge"]) == 1
