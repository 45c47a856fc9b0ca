import httpx
from fastapi import APIRouter, Request, Response
from fastapi.responses import JSONResponse

from ha_dashboard.core import settings
from ha_dashboard.core.errors import ConfigurationError, MalformedInput
from ha_dashboard.services.ha_service import ha_request

router = APIRouter(prefix="/api/ha", tags=["ha"])

PROXY_METHODS = ["GET", "POST", "PUT", "DELETE"]


def _require_proxy_config() -> None:
    flags = {"hasUrl": bool(settings.HA_BASE_URL), "hasToken": bool(settings.HA_TOKEN)}
    if not all(flags.values()):
        raise ConfigurationError("Home Assistant not configured", flags=flags)


async def proxy_to_ha(request: Request, api_path: str) -> Response:
    _require_proxy_config()
    api_path = api_path.strip("/")
    if not api_path or ".." in api_path.split("/"):
        raise MalformedInput(details=f"invalid Home Assistant path: {api_path!r}")

    params = {k: v for k, v in request.query_params.items() if k != "path"}
    body = await request.body() if request.method != "GET" else None

    try:
        upstream = await ha_request(
            request.method,
            f"/api/{api_path}",
            context="proxy",
            params=params or None,
            content=body or None,
        )
    except httpx.HTTPError as ex:
        return JSONResponse(
            status_code=500,
            content={"error": "Failed to connect to Home Assistant", "details": str(ex)},
        )

    return Response(
        content=upstream.content,
        status_code=upstream.status_code,
        media_type=upstream.headers.get("content-type", "text/plain"),
    )


@router.api_route("", methods=PROXY_METHODS)
async def proxy_by_query(request: Request, path: str = "") -> Response:
    return await proxy_to_ha(request, path)


@router.api_route("/{api_path:path}", methods=PROXY_METHODS)
async def proxy_by_path(request: Request, api_path: str) -> Response:
    return await proxy_to_ha(request, api_path)
