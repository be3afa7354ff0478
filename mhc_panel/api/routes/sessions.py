"""Stream session and raw event routes."""

from fastapi import APIRouter, Depends, Query

from ...container import Services
from ...errors import NotFoundError
from ..deps import get_services

router = APIRouter(tags=["Sessions"])
events_router = APIRouter(tags=["Events"])


def _broadcaster(services: Services) -> str:
    return services.config.chaturbate.username


@router.post("/start")
async def start_session(services: Services = Depends(get_services)):
    """Manually start a stream session."""
    session = await services.sessions.start(_broadcaster(services))
    return {"session": session.to_dict()}


@router.post("/end")
async def end_session(services: Services = Depends(get_services)):
    current = await services.sessions.get_current(_broadcaster(services))
    if current is None:
        raise NotFoundError("No active session found")
    session = await services.sessions.end(current.id)
    return {"session": session.to_dict() if session else None}


@router.get("/current")
async def current_session(services: Services = Depends(get_services)):
    session = await services.sessions.get_current(_broadcaster(services))
    if session is None:
        raise NotFoundError("No active session")
    stats = await services.sessions.get_stats(session.id)
    return {"session": session.to_dict(), "stats": stats}


@router.get("/")
async def list_sessions(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    services: Services = Depends(get_services),
):
    """Sessions for the owner, newest first, each with its stats."""
    sessions = await services.sessions.list_sessions(_broadcaster(services), limit=limit, offset=offset)
    items = []
    for session in sessions:
        items.append({**session.to_dict(), "stats": await services.sessions.get_stats(session.id)})
    return {"sessions": items}


@router.get("/{session_id}")
async def get_session(session_id: str, services: Services = Depends(get_services)):
    session = await services.sessions.get_by_id(session_id)
    if session is None:
        raise NotFoundError("Session not found")
    stats = await services.sessions.get_stats(session_id)
    interactions = await services.interactions.list_for_session(session_id)
    return {
        "session": session.to_dict(),
        "stats": stats,
        "interactions": [item.to_dict() for item in interactions],
    }


@events_router.get("/recent")
async def recent_events(
    limit: int = Query(100, ge=1, le=1000),
    method: list[str] | None = Query(None, description="Repeat to filter on several methods"),
    services: Services = Depends(get_services),
):
    """Raw Events API log, newest first."""
    return {"events": await services.events.recent(limit=limit, methods=method)}
