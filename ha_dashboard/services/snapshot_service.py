import asyncio
from datetime import datetime, timezone
from typing import Any

from ha_dashboard.core import settings
from ha_dashboard.models.schemas import (
    ActivityEvent,
    Automation,
    Entity,
    HomeSnapshot,
    SceneInfo,
    ScriptInfo,
    SnapshotSummary,
    SystemConfig,
)
from ha_dashboard.services import ha_service


# These domains get their own snapshot sections instead of entity rows.
SECTION_DOMAINS = ("automation", "script", "scene")
ACTIVE_CLIMATE_ACTIONS = {"heating", "cooling", "drying", "fan", "preheating", "defrosting"}


def _friendly_name(row: dict[str, Any]) -> str:
    attrs = row.get("attributes") if isinstance(row.get("attributes"), dict) else {}
    name = attrs.get("friendly_name")
    return str(name).strip() if name else ""


def _domain_of(entity_id: str) -> str:
    return entity_id.split(".", 1)[0] if "." in entity_id else ""


def group_entities(rows: list[dict[str, Any]]) -> dict[str, list[Entity]]:
    grouped: dict[str, list[Entity]] = {}
    for row in sorted(rows, key=lambda x: str(x.get("entity_id", ""))):
        entity_id = str(row.get("entity_id", "")).strip()
        domain = _domain_of(entity_id)
        if not domain or domain in SECTION_DOMAINS:
            continue
        attrs = row.get("attributes") if isinstance(row.get("attributes"), dict) else {}
        grouped.setdefault(domain, []).append(
            Entity(id=entity_id, display_name=_friendly_name(row), state=row.get("state"), attributes=attrs)
        )
    return dict(sorted(grouped.items()))


def _rows_for_domain(rows: list[dict[str, Any]], domain: str) -> list[dict[str, Any]]:
    return sorted(
        (x for x in rows if _domain_of(str(x.get("entity_id", ""))) == domain),
        key=lambda x: str(x.get("entity_id", "")),
    )


def build_automation(row: dict[str, Any], config: dict[str, Any]) -> Automation:
    attrs = row.get("attributes") if isinstance(row.get("attributes"), dict) else {}
    return Automation(
        id=str(row.get("entity_id")),
        name=_friendly_name(row) or str(config.get("alias") or ""),
        state=row.get("state"),
        last_triggered_timestamp=attrs.get("last_triggered"),
        mode=config.get("mode") or attrs.get("mode"),
        trigger_spec=config.get("triggers", config.get("trigger")),
        condition_spec=config.get("conditions", config.get("condition")),
        action_spec=config.get("actions", config.get("action")),
    )


def build_activity(entries: list[Any], *, limit: int) -> list[ActivityEvent]:
    events: list[ActivityEvent] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        message = entry.get("message")
        if not message and entry.get("state") is not None:
            message = f"changed to {entry.get('state')}"
        events.append(
            ActivityEvent(
                entity_id=entry.get("entity_id"),
                name=str(entry.get("name") or ""),
                message=str(message or ""),
                timestamp=entry.get("when"),
                caused_by_entity_id=entry.get("context_entity_id"),
                cause_display_name=entry.get("context_entity_id_name") or entry.get("context_name"),
            )
        )
    events.sort(key=lambda x: x.timestamp or "")
    return events[-limit:]


def summarize(entities: dict[str, list[Entity]], automations: list[Automation], scripts: list[ScriptInfo], scenes: list[SceneInfo]) -> SnapshotSummary:
    lights = entities.get("light", [])
    switches = entities.get("switch", [])
    climate = entities.get("climate", [])
    doors = [
        x
        for x in entities.get("binary_sensor", [])
        if x.attributes.get("device_class") in {"door", "garage_door"} and x.state == "on"
    ]
    return SnapshotSummary(
        total_entities=sum(len(x) for x in entities.values()),
        lights_on=sum(1 for x in lights if x.state == "on"),
        total_lights=len(lights),
        switches_on=sum(1 for x in switches if x.state == "on"),
        total_switches=len(switches),
        climate_active=sum(1 for x in climate if x.attributes.get("hvac_action") in ACTIVE_CLIMATE_ACTIONS),
        total_climate=len(climate),
        doors_open=len(doors),
        automations_on=sum(1 for x in automations if x.state == "on"),
        total_automations=len(automations),
        total_scripts=len(scripts),
        total_scenes=len(scenes),
    )


def build_system_config(raw: dict[str, Any]) -> SystemConfig | None:
    if not raw:
        return None
    return SystemConfig(
        location_name=raw.get("location_name"),
        time_zone=raw.get("time_zone"),
        version=raw.get("version"),
        unit_system=raw.get("unit_system"),
    )


async def _automation_configs(rows: list[dict[str, Any]]) -> tuple[dict[str, dict[str, Any]], list[str]]:
    # The stored config is keyed by the automation's `id` attribute, not its entity id.
    targets = []
    for row in rows:
        attrs = row.get("attributes") if isinstance(row.get("attributes"), dict) else {}
        config_id = attrs.get("id")
        if config_id:
            targets.append((str(row.get("entity_id")), str(config_id)))

    results = await asyncio.gather(*(ha_service.fetch_automation_config(config_id) for _, config_id in targets))
    configs: dict[str, dict[str, Any]] = {}
    errors: list[str] = []
    for (entity_id, _), result in zip(targets, results):
        if result.get("ok"):
            configs[entity_id] = result.get("data") or {}
        elif result.get("error"):
            errors.append(f"{entity_id}: {result['error']}")
    return configs, errors


async def build_home_snapshot(*, now: datetime | None = None) -> HomeSnapshot:
    """Read everything the assistant needs from Home Assistant in one pass.

    Failed reads leave their section empty and are listed in ``errors``.
    """
    now = now or datetime.now(timezone.utc)
    states_result, services_result, config_result, areas_result, logbook_result = await asyncio.gather(
        ha_service.fetch_ha_states_raw(),
        ha_service.fetch_ha_services(),
        ha_service.fetch_ha_config(),
        ha_service.fetch_ha_areas(),
        ha_service.fetch_logbook(hours_back=settings.CHAT_ACTIVITY_LOOKBACK_HOURS, now=now),
    )

    rows = [x for x in states_result.get("data", []) if isinstance(x, dict)]
    automation_rows = _rows_for_domain(rows, "automation")
    configs, config_errors = await _automation_configs(automation_rows)

    entities = group_entities(rows)
    automations = [build_automation(x, configs.get(str(x.get("entity_id")), {})) for x in automation_rows]
    scripts = [
        ScriptInfo(id=str(x.get("entity_id")), name=_friendly_name(x), state=x.get("state"))
        for x in _rows_for_domain(rows, "script")
    ]
    scenes = [
        SceneInfo(id=str(x.get("entity_id")), name=_friendly_name(x), state=x.get("state"))
        for x in _rows_for_domain(rows, "scene")
    ]

    errors = [
        x
        for x in (
            states_result.get("error"),
            services_result.get("error"),
            config_result.get("error"),
            areas_result.get("error"),
            logbook_result.get("error"),
        )
        if x
    ]
    errors.extend(config_errors)

    return HomeSnapshot(
        entities=entities,
        automations=automations,
        scripts=scripts,
        scenes=scenes,
        areas=sorted(areas_result.get("data", [])),
        services=services_result.get("data", {}),
        config=build_system_config(config_result.get("data", {})),
        recent_activity=build_activity(logbook_result.get("data", []), limit=settings.CHAT_ACTIVITY_LIMIT),
        summary=summarize(entities, automations, scripts, scenes),
        generated_at=now.isoformat(timespec="seconds"),
        errors=errors,
    )
