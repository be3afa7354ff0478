"""Lookup, owner dashboard and room presence routes."""

import json
import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from ...container import Services
from ..deps import get_services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Lookup"])
dashboard_router = APIRouter(tags=["Dashboard"])
room_router = APIRouter(tags=["Room"])

SSE_RETRY_MS = 3000


class LookupRequest(BaseModel):
    """Look up a username, optionally with pasted profile text."""

    username: str | None = None
    role: str | None = None
    pasted_text: str | None = Field(None, alias="pastedText")
    include_statbate: bool = Field(False, alias="includeStatbate")

    model_config = {"populate_by_name": True}


@router.post("")
@router.post("/", include_in_schema=False)
async def lookup(body: LookupRequest, services: Services = Depends(get_services)):
    """
    Resolve a person and return snapshots, delta and recent interactions.

    With includeStatbate the Statbate model and member endpoints are queried
    first and any results are stored as snapshots.
    """
    return await services.lookup.lookup(
        username=body.username,
        role=body.role,
        pasted_text=body.pasted_text,
        include_statbate=body.include_statbate,
    )


@dashboard_router.get("")
@dashboard_router.get("/", include_in_schema=False)
async def owner_dashboard(services: Services = Depends(get_services)):
    """Owner overview: Stats API numbers, current session, recent room activity."""
    return await services.dashboard.get_overview()


@room_router.get("/presence")
async def presence(services: Services = Depends(get_services)):
    return services.presence.snapshot()


@room_router.get("/presence/stream")
async def presence_stream(request: Request, services: Services = Depends(get_services)):
    """Server-Sent Events: a presence_sync snapshot, then enter/leave/clear events."""

    async def event_stream() -> AsyncIterator[str]:
        yield f"retry: {SSE_RETRY_MS}\n\n"
        async for event in services.presence.subscribe():
            if await request.is_disconnected():
                break
            yield f"event: {event['type']}\ndata: {json.dumps(event)}\n\n"

    logger.debug("Presence stream opened", extra={"subscribers": services.presence.subscriber_count})
    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
