"""Follower count trends and follow/unfollow list routes."""

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from ...container import Services
from ...errors import NotFoundError, ValidationError
from ..deps import get_services

router = APIRouter(tags=["Followers"])


class RecordCountRequest(BaseModel):
    person_id: str | None = Field(None, alias="personId")
    count: int | None = None
    source: str = "manual"

    model_config = {"populate_by_name": True}


class UsernameListRequest(BaseModel):
    usernames: list[str] | None = None


# --- Trends ---


@router.get("/trends")
async def trends(
    days: int = Query(7, ge=1, le=365),
    services: Services = Depends(get_services),
):
    """Top gainers/losers, big recent changes and tracking totals."""
    return await services.follower_history.get_dashboard_summary(days=days)


@router.get("/trends/top-movers")
async def top_movers(
    days: int = Query(7, ge=1, le=365),
    limit: int = Query(10, ge=1, le=100),
    direction: str = Query("gainers"),
    services: Services = Depends(get_services),
):
    if direction not in ("gainers", "losers"):
        raise ValidationError("direction must be gainers or losers")
    movers = await services.follower_history.get_top_movers(days=days, limit=limit, direction=direction)
    return {"movers": movers, "direction": direction, "days": days}


@router.get("/trends/recent-changes")
async def recent_changes(
    limit: int = Query(20, ge=1, le=500),
    offset: int = Query(0, ge=0),
    sort_by: str = Query("date", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder"),
    min_delta: int = Query(0, ge=0, alias="minDelta"),
    services: Services = Depends(get_services),
):
    if sort_by not in ("date", "change"):
        raise ValidationError("sortBy must be date or change")
    if sort_order not in ("asc", "desc"):
        raise ValidationError("sortOrder must be asc or desc")
    result = await services.follower_history.get_recent_changes_paginated(
        limit=limit, offset=offset, sort_by=sort_by, sort_order=sort_order, min_delta=min_delta
    )
    return {**result, "limit": limit, "offset": offset}


@router.get("/trends/person/{person_id}")
async def person_history(
    person_id: str,
    days: int = Query(30, ge=1, le=3650),
    limit: int = Query(100, ge=1, le=1000),
    services: Services = Depends(get_services),
):
    history = await services.follower_history.get_history(person_id, days=days, limit=limit)
    return {"history": history}


@router.get("/trends/person/{person_id}/growth")
async def person_growth(
    person_id: str,
    days: int = Query(30, ge=1, le=3650),
    services: Services = Depends(get_services),
):
    return await services.follower_history.get_growth_stats(person_id, days=days)


@router.post("/record")
async def record_count(body: RecordCountRequest, services: Services = Depends(get_services)):
    """Store a follower count; unchanged counts are not written."""
    if not body.person_id or body.count is None:
        raise ValidationError("personId and count are required")
    if await services.persons.get_by_id(body.person_id) is None:
        raise NotFoundError("Person not found")
    record = await services.follower_history.record_count(body.person_id, body.count, body.source)
    return {"recorded": record is not None, "record": record}


# --- Follow lists ---


@router.post("/update-following")
async def update_following(body: UsernameListRequest, services: Services = Depends(get_services)):
    if body.usernames is None:
        raise ValidationError("usernames array required")
    return await services.follow_history.update_following(body.usernames)


@router.post("/update-followers")
async def update_followers(body: UsernameListRequest, services: Services = Depends(get_services)):
    if body.usernames is None:
        raise ValidationError("usernames array required")
    return await services.follow_history.update_followers(body.usernames)


@router.get("/following")
async def following(services: Services = Depends(get_services)):
    names = sorted(await services.follow_history.current_set("following"))
    return {"following": names, "total": len(names)}


@router.get("/followers")
async def followers(services: Services = Depends(get_services)):
    names = sorted(await services.follow_history.current_set("follower"))
    return {"followers": names, "total": len(names)}


@router.get("/history/{person_id}")
async def follow_history(
    person_id: str,
    direction: str | None = Query(None),
    services: Services = Depends(get_services),
):
    return {"history": await services.follow_history.get_for_person(person_id, direction=direction)}
