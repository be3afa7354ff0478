"""
Media records (profile_images) and favorites.

Rows point at objects in S3 by relative file_path. Deleting a media item is a
soft delete (deleted_at); the quarantine tool later moves the object itself.

Invariants:
    - file_path is unique
    - Soft-deleted rows behave as missing for every read and favorite toggle
"""

from __future__ import annotations

import logging
import math
import sqlite3
from typing import Any

from ..errors import PanelError, ValidationError
from ..store import Database, new_id, now_iso

logger = logging.getLogger(__name__)

MEDIA_TYPES = ("image", "video")


def _row_to_media(row: sqlite3.Row) -> dict[str, Any]:
    record = dict(row)
    record["is_favorite"] = bool(record["is_favorite"])
    record["is_primary"] = bool(record["is_primary"])
    return record


class MediaService:
    def __init__(self, db: Database) -> None:
        self.db = db

    async def add(
        self,
        person_id: str | None,
        file_path: str,
        source: str = "manual_upload",
        media_type: str = "image",
        file_size: int | None = None,
        is_primary: bool = False,
        storage_provider: str = "s3",
    ) -> dict[str, Any]:
        if media_type not in MEDIA_TYPES:
            raise ValidationError(f"Unknown media type: {media_type}")

        media_id = new_id()
        with self.db.connection() as conn:
            conn.execute(
                """
                INSERT INTO profile_images (id, person_id, file_path, source, media_type,
                                            is_primary, file_size, storage_provider, uploaded_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    media_id,
                    person_id,
                    file_path,
                    source,
                    media_type,
                    int(is_primary),
                    file_size,
                    storage_provider,
                    now_iso(),
                ),
            )
        logger.debug("Media added", extra={"media_id": media_id, "file_path": file_path})
        added = await self.get(media_id)
        if added is None:
            raise PanelError(f"Media {media_id} was not stored")
        return added

    async def get(self, media_id: str) -> dict[str, Any] | None:
        with self.db.connection() as conn:
            row = conn.execute(
                """
                SELECT m.*, p.username FROM profile_images m
                LEFT JOIN persons p ON p.id = m.person_id
                WHERE m.id = ? AND m.deleted_at IS NULL
                """,
                (media_id,),
            ).fetchone()
        return _row_to_media(row) if row else None

    async def get_favorites(
        self, page: int = 1, page_size: int = 50, media_type: str | None = None
    ) -> dict[str, Any]:
        page = max(page, 1)
        where = "m.is_favorite = 1 AND m.deleted_at IS NULL"
        params: list[Any] = []
        if media_type:
            where += " AND m.media_type = ?"
            params.append(media_type)

        with self.db.connection() as conn:
            total = conn.execute(
                f"SELECT COUNT(*) FROM profile_images m WHERE {where}", params
            ).fetchone()[0]
            rows = conn.execute(
                f"""
                SELECT m.*, p.username FROM profile_images m
                LEFT JOIN persons p ON p.id = m.person_id
                WHERE {where}
                ORDER BY m.uploaded_at DESC
                LIMIT ? OFFSET ?
                """,
                (*params, page_size, (page - 1) * page_size),
            ).fetchall()

        return {
            "records": [_row_to_media(row) for row in rows],
            "total": total,
            "page": page,
            "pageSize": page_size,
            "totalPages": math.ceil(total / page_size) if page_size else 0,
        }

    async def get_favorite_stats(self) -> dict[str, int]:
        with self.db.connection() as conn:
            row = conn.execute(
                """
                SELECT
                    COUNT(*) AS total,
                    COALESCE(SUM(CASE WHEN media_type = 'image' THEN 1 ELSE 0 END), 0) AS images,
                    COALESCE(SUM(CASE WHEN media_type = 'video' THEN 1 ELSE 0 END), 0) AS videos
                FROM profile_images
                WHERE is_favorite = 1 AND deleted_at IS NULL
                """
            ).fetchone()
        return {"totalFavorites": row["total"], "imageCount": row["images"], "videoCount": row["videos"]}

    async def toggle_favorite(self, media_id: str) -> dict[str, Any] | None:
        """Flip is_favorite; None when the item is missing or deleted."""
        with self.db.connection() as conn:
            cursor = conn.execute(
                """
                UPDATE profile_images SET is_favorite = 1 - is_favorite
                WHERE id = ? AND deleted_at IS NULL
                """,
                (media_id,),
            )
        if cursor.rowcount == 0:
            return None
        record = await self.get(media_id)
        logger.info(
            "Toggled media favorite",
            extra={"media_id": media_id, "is_favorite": record["is_favorite"] if record else None},
        )
        return record

    async def set_favorite(self, media_id: str, is_favorite: bool) -> dict[str, Any] | None:
        with self.db.connection() as conn:
            cursor = conn.execute(
                "UPDATE profile_images SET is_favorite = ? WHERE id = ? AND deleted_at IS NULL",
                (int(is_favorite), media_id),
            )
        if cursor.rowcount == 0:
            return None
        logger.info("Set media favorite", extra={"media_id": media_id, "is_favorite": is_favorite})
        return await self.get(media_id)

    async def soft_delete(self, media_id: str) -> bool:
        with self.db.connection() as conn:
            cursor = conn.execute(
                "UPDATE profile_images SET deleted_at = ? WHERE id = ? AND deleted_at IS NULL",
                (now_iso(), media_id),
            )
        return cursor.rowcount > 0
