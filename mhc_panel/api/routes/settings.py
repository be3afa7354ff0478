"""Application settings routes."""

from typing import Any

from fastapi import APIRouter, Body, Depends

from ...container import Services
from ...errors import NotFoundError, ValidationError
from ..deps import get_services

router = APIRouter(tags=["Settings"])


@router.get("/")
async def list_settings(services: Services = Depends(get_services)):
    return await services.settings.get_all()


@router.get("/broadcast/config")
async def broadcast_config(services: Services = Depends(get_services)):
    """Merge gap and summary delays with their fallbacks applied."""
    return await services.settings.get_broadcast_config()


@router.get("/{key}")
async def get_setting(key: str, services: Services = Depends(get_services)):
    if not await services.settings.exists(key):
        raise NotFoundError("Setting not found")
    return {"key": key, "value": await services.settings.get(key)}


@router.put("/{key}")
async def put_setting(
    key: str,
    body: dict[str, Any] = Body(default_factory=dict),
    services: Services = Depends(get_services),
):
    """Upsert a setting. A JSON null value is allowed; a missing one is not."""
    if "value" not in body:
        raise ValidationError("Value is required")
    description = body.get("description")
    await services.settings.set(key, body["value"], description)
    stored = (await services.settings.get_all())[key]
    return {"key": key, **stored}


@router.delete("/{key}")
async def delete_setting(key: str, services: Services = Depends(get_services)):
    if not await services.settings.delete(key):
        raise NotFoundError("Setting not found")
    return {"success": True}
