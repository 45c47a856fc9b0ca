import json
from datetime import datetime, timedelta, timezone
from time import perf_counter
from typing import Any
from urllib.parse import quote

import httpx

from ha_dashboard.core import settings
from ha_dashboard.core.errors import BackendRejected
from ha_dashboard.services.config_service import auth_headers
from ha_dashboard.services.log_service import elapsed_ms, log_operation


AREA_LIST_TEMPLATE = "{{ areas() | list | tojson }}"


def _ha_client(timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=timeout)


def _log_ha_request(
    *,
    method: str,
    path: str,
    status_code: int,
    started: float,
    context: str,
    trace_id: str | None = None,
    message: str | None = None,
) -> None:
    detail: dict[str, Any] = {
        "context": context,
        "request": {
            "base_url": settings.HA_BASE_URL,
            "path": path,
        },
    }
    if message:
        detail["message"] = message
    log_operation(
        event_type="ha_request",
        source="system",
        action="ha.request",
        method=method,
        path=path,
        status_code=status_code,
        duration_ms=elapsed_ms(started),
        trace_id=trace_id,
        success=0 < status_code < 400,
        detail=detail,
    )


async def ha_request(
    method: str,
    path: str,
    *,
    context: str,
    json_body: Any = None,
    params: dict[str, str] | None = None,
    content: bytes | None = None,
    timeout: float | None = None,
    trace_id: str | None = None,
) -> httpx.Response:
    """Send one request to ``{HA_BASE_URL}{path}`` and log it.

    Transport errors are logged and re-raised; status handling is left to the caller.
    """
    started = perf_counter()
    request_kwargs: dict[str, Any] = {"headers": auth_headers()}
    if params:
        request_kwargs["params"] = params
    if content is not None:
        request_kwargs["content"] = content
    elif json_body is not None:
        request_kwargs["json"] = json_body

    try:
        async with _ha_client(timeout or settings.HA_TIMEOUT_SEC) as client:
            response = await client.request(method, f"{settings.HA_BASE_URL}{path}", **request_kwargs)
    except httpx.HTTPError as ex:
        _log_ha_request(
            method=method,
            path=path,
            status_code=0,
            started=started,
            context=context,
            trace_id=trace_id,
            message=str(ex),
        )
        raise

    _log_ha_request(
        method=method,
        path=path,
        status_code=response.status_code,
        started=started,
        context=context,
        trace_id=trace_id,
    )
    return response


def _json_or_text(response: httpx.Response) -> Any:
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


def _raise_for_backend(response: httpx.Response, path: str) -> None:
    if response.status_code >= 400:
        raise BackendRejected(path=path, status=response.status_code, body=response.text.strip())


async def call_service(
    domain: str,
    service: str,
    service_data: dict[str, Any],
    *,
    trace_id: str | None = None,
) -> Any:
    path = f"/api/services/{domain}/{service}"
    response = await ha_request("POST", path, context="tool.call_service", json_body=service_data, trace_id=trace_id)
    _raise_for_backend(response, path)
    return _json_or_text(response)


async def save_automation_config(automation_id: str, config: dict[str, Any], *, trace_id: str | None = None) -> Any:
    path = f"/api/config/automation/config/{quote(automation_id, safe='')}"
    response = await ha_request("POST", path, context="tool.create_automation", json_body=config, trace_id=trace_id)
    _raise_for_backend(response, path)
    return _json_or_text(response)


async def reload_automations(*, trace_id: str | None = None) -> Any:
    # HA does not pick up configs written through the REST API until reloaded.
    path = "/api/services/automation/reload"
    response = await ha_request("POST", path, context="tool.reload_automations", json_body={}, trace_id=trace_id)
    _raise_for_backend(response, path)
    return _json_or_text(response)


async def _fetch_json(method: str, path: str, *, context: str, json_body: Any = None) -> dict[str, Any]:
    if not settings.HA_TOKEN:
        return {"ok": False, "error": "HA token missing", "data": None}

    try:
        response = await ha_request(
            method,
            path,
            context=context,
            json_body=json_body,
            timeout=settings.HA_CONTEXT_TIMEOUT_SEC,
        )
        response.raise_for_status()
    except httpx.HTTPError as ex:
        return {"ok": False, "error": f"{context}_failed: {ex}", "data": None}

    text = response.text.strip()
    if not text:
        return {"ok": True, "data": None}
    try:
        return {"ok": True, "data": json.loads(text)}
    except json.JSONDecodeError:
        return {"ok": True, "data": text}


async def fetch_ha_states_raw() -> dict[str, Any]:
    result = await _fetch_json("GET", "/api/states", context="fetch_ha_states")
    if result["ok"] and not isinstance(result["data"], list):
        return {"ok": False, "error": "unexpected states payload", "data": []}
    if not result["ok"]:
        result["data"] = []
    return result


async def fetch_ha_services() -> dict[str, Any]:
    result = await _fetch_json("GET", "/api/services", context="fetch_ha_services")
    services: dict[str, list[str]] = {}
    for row in result.get("data") or []:
        if not isinstance(row, dict):
            continue
        domain = str(row.get("domain", "")).strip()
        service_map = row.get("services", {})
        if not domain or not isinstance(service_map, dict):
            continue
        services[domain] = sorted(service_map.keys())

    result["data"] = dict(sorted(services.items()))
    return result


async def fetch_ha_config() -> dict[str, Any]:
    result = await _fetch_json("GET", "/api/config", context="fetch_ha_config")
    if not isinstance(result.get("data"), dict):
        result["data"] = {}
    return result


async def fetch_ha_areas() -> dict[str, Any]:
    result = await _fetch_json("POST", "/api/template", context="fetch_ha_areas", json_body={"template": AREA_LIST_TEMPLATE})
    data = result.get("data")
    result["data"] = [str(x) for x in data] if isinstance(data, list) else []
    return result


async def fetch_logbook(*, hours_back: int, now: datetime | None = None) -> dict[str, Any]:
    end = now or datetime.now(timezone.utc)
    start = end - timedelta(hours=hours_back)
    path = f"/api/logbook/{quote(start.isoformat())}?end_time={quote(end.isoformat())}"
    result = await _fetch_json("GET", path, context="fetch_logbook")
    if not isinstance(result.get("data"), list):
        result["data"] = []
    return result


async def fetch_automation_config(automation_id: str) -> dict[str, Any]:
    path = f"/api/config/automation/config/{quote(automation_id, safe='')}"
    result = await _fetch_json("GET", path, context="fetch_automation_config")
    if not isinstance(result.get("data"), dict):
        result["data"] = {}
    return result
