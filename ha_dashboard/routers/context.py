from typing import Any

from fastapi import APIRouter, Query

from ha_dashboard.services.config_service import require_ha_config
from ha_dashboard.services.context_renderer import render_home_context
from ha_dashboard.services.snapshot_service import build_home_snapshot

router = APIRouter(prefix="/v1/context", tags=["context"])


@router.get("/snapshot")
async def get_home_snapshot() -> dict[str, Any]:
    require_ha_config()
    snapshot = await build_home_snapshot()
    return snapshot.model_dump(mode="json", by_alias=True)


@router.get("/render")
async def get_rendered_context(
    activity_limit: int | None = Query(default=None, ge=0, le=1000, description="Override recent activity cap"),
) -> dict[str, Any]:
    require_ha_config()
    snapshot = await build_home_snapshot()
    return {
        "context": render_home_context(snapshot, activity_limit=activity_limit),
        "generated_at": snapshot.generated_at,
        "errors": snapshot.errors,
    }
