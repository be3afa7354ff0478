"""
Broadcast routes: CRUD, stats, merge and AI summaries.

Static paths (/stats, /current, /ai/*, /merge) are registered before the
/{broadcast_id} routes so they are not captured as ids.
"""

import logging
from datetime import datetime
from typing import Any

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel

from ...container import Services
from ...errors import NotFoundError, ServiceUnavailableError, ValidationError
from ...store import utcnow
from ..deps import get_services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Broadcasts"])


# --- Request Models ---


class BroadcastFields(BaseModel):
    """Broadcast columns accepted from clients."""

    started_at: datetime | None = None
    ended_at: datetime | None = None
    duration_minutes: int | None = None
    peak_viewers: int | None = None
    total_tokens: int | None = None
    followers_gained: int | None = None
    summary: str | None = None
    notes: str | None = None
    tags: list[str] | None = None
    room_subject: str | None = None


class BroadcastCreateRequest(BroadcastFields):
    auto_detected: bool = False
    source: str = "manual"


class BroadcastEndRequest(BaseModel):
    peak_viewers: int | None = None
    total_tokens: int | None = None
    followers_gained: int | None = None


class MergeRequest(BaseModel):
    id1: str | None = None
    id2: str | None = None


class TranscriptRequest(BaseModel):
    transcript: str | None = None


def _require_ai(services: Services) -> None:
    if not services.ai_summary.is_available():
        raise ServiceUnavailableError("AI summary service is not configured")


async def _get_or_404(services: Services, broadcast_id: str):
    broadcast = await services.broadcasts.get_by_id(broadcast_id)
    if broadcast is None:
        raise NotFoundError("Broadcast not found")
    return broadcast


# --- Collection routes ---


@router.get("/")
async def list_broadcasts(
    limit: int = Query(20, ge=1, le=200),
    offset: int = Query(0, ge=0),
    services: Services = Depends(get_services),
):
    result = await services.broadcasts.list_with_count(limit=limit, offset=offset)
    return {**result, "broadcasts": [item.to_dict() for item in result["broadcasts"]]}


@router.get("/stats")
async def broadcast_stats(
    days: int = Query(30, ge=1, le=3650),
    services: Services = Depends(get_services),
):
    return await services.broadcasts.get_stats(days=days)


@router.get("/current")
async def current_broadcast(services: Services = Depends(get_services)):
    """The broadcast without an end time, or null."""
    broadcast = await services.broadcasts.get_current()
    return broadcast.to_dict() if broadcast else None


@router.get("/ai/status")
async def ai_status(services: Services = Depends(get_services)):
    return {"available": services.ai_summary.is_available(), "model": services.ai_summary.model}


@router.post("/ai/preview")
async def ai_preview(body: TranscriptRequest, services: Services = Depends(get_services)):
    """Summarize an arbitrary transcript without storing anything."""
    if not body.transcript or not body.transcript.strip():
        raise ValidationError("Transcript is required")
    _require_ai(services)
    return await services.ai_summary.preview(body.transcript)


@router.post("/merge")
async def merge_broadcasts(body: MergeRequest, services: Services = Depends(get_services)):
    if not body.id1 or not body.id2:
        raise ValidationError("Both id1 and id2 are required")
    if body.id1 == body.id2:
        raise ValidationError("Cannot merge a broadcast with itself")
    merged = await services.broadcasts.merge(body.id1, body.id2)
    if merged is None:
        raise NotFoundError("One or both broadcasts not found")
    return merged.to_dict()


@router.post("/", status_code=201)
async def create_broadcast(body: BroadcastCreateRequest, services: Services = Depends(get_services)):
    broadcast = await services.broadcasts.create(
        started_at=body.started_at or utcnow(),
        ended_at=body.ended_at,
        duration_minutes=body.duration_minutes,
        peak_viewers=body.peak_viewers or 0,
        total_tokens=body.total_tokens or 0,
        followers_gained=body.followers_gained or 0,
        summary=body.summary,
        notes=body.notes,
        tags=body.tags,
        room_subject=body.room_subject,
        auto_detected=body.auto_detected,
        source=body.source,
    )
    return broadcast.to_dict()


# --- Item routes ---


@router.get("/{broadcast_id}")
async def get_broadcast(broadcast_id: str, services: Services = Depends(get_services)):
    return (await _get_or_404(services, broadcast_id)).to_dict()


@router.put("/{broadcast_id}")
async def update_broadcast(
    broadcast_id: str,
    body: BroadcastFields,
    services: Services = Depends(get_services),
):
    """Apply only the fields present in the request body."""
    changes = body.model_dump(exclude_unset=True)
    if changes.get("started_at") is None:
        changes.pop("started_at", None)
    broadcast = await services.broadcasts.update(broadcast_id, **changes)
    if broadcast is None:
        raise NotFoundError("Broadcast not found")
    return broadcast.to_dict()


@router.post("/{broadcast_id}/end")
async def end_broadcast(
    broadcast_id: str,
    body: BroadcastEndRequest | None = None,
    services: Services = Depends(get_services),
):
    stats = body or BroadcastEndRequest()
    broadcast = await services.broadcasts.end(
        broadcast_id,
        peak_viewers=stats.peak_viewers,
        total_tokens=stats.total_tokens,
        followers_gained=stats.followers_gained,
    )
    if broadcast is None:
        raise NotFoundError("Broadcast not found")
    return broadcast.to_dict()


@router.delete("/{broadcast_id}")
async def delete_broadcast(broadcast_id: str, services: Services = Depends(get_services)):
    if not await services.broadcasts.delete(broadcast_id):
        raise NotFoundError("Broadcast not found")
    return {"success": True}


# --- Summary routes ---


@router.get("/{broadcast_id}/summary")
async def get_summary(broadcast_id: str, services: Services = Depends(get_services)):
    summary = await services.summaries.get(broadcast_id)
    if summary is None:
        raise NotFoundError("Summary not found")
    return summary


@router.post("/{broadcast_id}/summary/generate")
async def generate_summary(
    broadcast_id: str,
    body: TranscriptRequest,
    services: Services = Depends(get_services),
):
    if not body.transcript or not body.transcript.strip():
        raise ValidationError("Transcript is required")
    _require_ai(services)
    return await services.ai_summary.generate(broadcast_id, body.transcript)


@router.post("/{broadcast_id}/summary/regenerate")
async def regenerate_summary(broadcast_id: str, services: Services = Depends(get_services)):
    _require_ai(services)
    return await services.ai_summary.regenerate(broadcast_id)


@router.put("/{broadcast_id}/summary")
async def update_summary(
    broadcast_id: str,
    body: dict[str, Any] = Body(default_factory=dict),
    services: Services = Depends(get_services),
):
    """Hand edits to a stored summary; unknown keys are ignored."""
    summary = await services.summaries.update(broadcast_id, body)
    if summary is None:
        raise NotFoundError("Summary not found")
    return summary


@router.delete("/{broadcast_id}/summary")
async def delete_summary(broadcast_id: str, services: Services = Depends(get_services)):
    if not await services.summaries.delete(broadcast_id):
        raise NotFoundError("Summary not found")
    return {"success": True}
