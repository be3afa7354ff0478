"""Media favorites routes."""

from typing import Any

from fastapi import APIRouter, Body, Depends, Query

from ...container import Services
from ...errors import NotFoundError, ValidationError
from ...services.media import MEDIA_TYPES
from ..deps import get_services

router = APIRouter(tags=["Media"])


@router.get("/favorites")
async def list_favorites(
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500, alias="pageSize"),
    media_type: str | None = Query(None, alias="mediaType"),
    services: Services = Depends(get_services),
):
    if media_type is not None and media_type not in MEDIA_TYPES:
        raise ValidationError(f"mediaType must be one of: {', '.join(MEDIA_TYPES)}")
    return await services.media.get_favorites(page=page, page_size=page_size, media_type=media_type)


@router.get("/favorites/stats")
async def favorite_stats(services: Services = Depends(get_services)):
    return await services.media.get_favorite_stats()


@router.post("/{media_id}/favorite")
async def toggle_favorite(media_id: str, services: Services = Depends(get_services)):
    record = await services.media.toggle_favorite(media_id)
    if record is None:
        raise NotFoundError("Media not found")
    return record


@router.put("/{media_id}/favorite")
async def set_favorite(
    media_id: str,
    body: dict[str, Any] = Body(default_factory=dict),
    services: Services = Depends(get_services),
):
    is_favorite = body.get("is_favorite")
    if not isinstance(is_favorite, bool):
        raise ValidationError("is_favorite must be a boolean")
    record = await services.media.set_favorite(media_id, is_favorite)
    if record is None:
        raise NotFoundError("Media not found")
    return record
