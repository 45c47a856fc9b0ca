from typing import Any

from fastapi import APIRouter

from ha_dashboard.core import settings
from ha_dashboard.models.schemas import AssistantConfigView
from ha_dashboard.services.config_service import get_assistant_config_view

router = APIRouter(tags=["system"])


@router.get("/health")
async def health() -> dict[str, Any]:
    return {
        "service": settings.APP_NAME,
        "status": "ok",
        "ha_base_url": settings.HA_BASE_URL,
    }


@router.get("/api/test")
async def api_test() -> dict[str, Any]:
    return {
        "message": "API working",
        "hasHaUrl": bool(settings.HA_BASE_URL),
        "hasHaToken": bool(settings.HA_TOKEN),
        "hasApiKey": bool(settings.ANTHROPIC_API_KEY),
    }


@router.get("/v1/config", response_model=AssistantConfigView)
async def get_config() -> AssistantConfigView:
    return get_assistant_config_view()
