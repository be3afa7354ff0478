"""Person directory routes."""

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from ...container import Services
from ...errors import NotFoundError, ValidationError
from ...services import PersonRole
from ..deps import get_services

router = APIRouter(tags=["Persons"])


class NoteRequest(BaseModel):
    content: str | None = None


class PersonUpdateRequest(BaseModel):
    """Fields that may be changed on a person."""

    role: str | None = None
    rid: int | None = None
    did: int | None = None
    is_excluded: bool | None = Field(None, alias="isExcluded")

    model_config = {"populate_by_name": True}


async def _get_person_or_404(services: Services, person_id: str):
    person = await services.persons.get_by_id(person_id)
    if person is None:
        raise NotFoundError("Person not found")
    return person


@router.get("/search")
async def search_persons(
    q: str | None = Query(None, description="Username prefix"),
    limit: int = Query(10, ge=1, le=100),
    services: Services = Depends(get_services),
):
    """Username autocomplete."""
    if q is None:
        raise ValidationError('Query parameter "q" required')
    return {"usernames": await services.persons.search(q, limit=limit)}


@router.get("/all")
async def list_persons(
    limit: int = Query(500, ge=1, le=5000),
    offset: int = Query(0, ge=0),
    services: Services = Depends(get_services),
):
    persons, total = await services.persons.list_all(limit=limit, offset=offset)
    return {"persons": [person.to_dict() for person in persons], "total": total}


@router.get("/{person_id}")
async def get_person(person_id: str, services: Services = Depends(get_services)):
    person = await _get_person_or_404(services, person_id)
    aliases = await services.persons.get_aliases(person_id)
    return {"person": person.to_dict(), "aliases": aliases}


@router.get("/{person_id}/snapshots")
async def list_snapshots(
    person_id: str,
    source: str | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    services: Services = Depends(get_services),
):
    snapshots = await services.snapshots.list_for_person(person_id, source=source, limit=limit, offset=offset)
    return {"snapshots": [snapshot.to_dict() for snapshot in snapshots]}


@router.get("/{person_id}/interactions")
async def list_interactions(
    person_id: str,
    type: str | None = Query(None),
    source: str | None = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    services: Services = Depends(get_services),
):
    interactions = await services.interactions.list_for_person(
        person_id, type=type, source=source, limit=limit, offset=offset
    )
    return {"interactions": [item.to_dict() for item in interactions]}


@router.post("/{person_id}/note")
async def add_note(person_id: str, body: NoteRequest, services: Services = Depends(get_services)):
    """Attach a MANUAL_NOTE interaction."""
    if not body.content or not body.content.strip():
        raise ValidationError("content required")
    await _get_person_or_404(services, person_id)
    interaction = await services.interactions.create(
        person_id=person_id,
        type="MANUAL_NOTE",
        source="manual",
        content=body.content,
    )
    return {"interaction": interaction.to_dict()}


@router.put("/{person_id}")
async def update_person(
    person_id: str,
    body: PersonUpdateRequest,
    services: Services = Depends(get_services),
):
    if body.role is not None:
        try:
            PersonRole(body.role)
        except ValueError:
            raise ValidationError(f"Invalid role '{body.role}'")

    person = await services.persons.update(
        person_id,
        role=body.role,
        rid=body.rid,
        did=body.did,
        is_excluded=body.is_excluded,
    )
    if person is None:
        raise NotFoundError("Person not found")
    return {"person": person.to_dict()}


@router.delete("/{person_id}")
async def delete_person(person_id: str, services: Services = Depends(get_services)):
    if not await services.persons.delete(person_id):
        raise NotFoundError("Person not found")
    return {"success": True}
