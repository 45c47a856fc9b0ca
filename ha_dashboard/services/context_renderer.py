"""Render a HomeSnapshot into the text block embedded in the assistant's system prompt.

The output is deterministic for a given snapshot: sections always appear in the
same order, and an empty section still prints its header so downstream readers
can rely on the layout.
"""

import json
from typing import Any

from ha_dashboard.core import settings
from ha_dashboard.models.schemas import Automation, Entity, HomeSnapshot, SnapshotSummary, SystemConfig


NO_DATA_SENTINEL = "No home data available."
UNKNOWN = "Unknown"

# Attribute keys worth surfacing per entity; everything else stays out of the prompt.
SUMMARY_ATTRIBUTE_KEYS = (
    "device_class",
    "unit_of_measurement",
    "brightness",
    "hvac_action",
    "current_temperature",
    "temperature",
)

SUMMARY_COUNTERS: tuple[tuple[str, str, str | None], ...] = (
    ("Entities", "total_entities", None),
    ("Lights on", "lights_on", "total_lights"),
    ("Switches on", "switches_on", "total_switches"),
    ("Climate active", "climate_active", "total_climate"),
    ("Doors open", "doors_open", None),
    ("Automations enabled", "automations_on", "total_automations"),
    ("Scripts", "total_scripts", None),
    ("Scenes", "total_scenes", None),
)


def _literal(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(", ", ": "))


def _or_unknown(value: Any) -> str:
    if value is None or value == "":
        return UNKNOWN
    return str(value)


def brightness_percent(raw: Any) -> int | None:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        return None
    return round(raw / 2.55)


def attribute_summary(entity: Entity) -> str:
    attrs = entity.attributes
    parts: list[str] = []
    for key in SUMMARY_ATTRIBUTE_KEYS:
        value = attrs.get(key)
        if value is None or value == "":
            continue
        if key == "device_class":
            parts.append(f"class {value}")
        elif key == "unit_of_measurement":
            parts.append(f"unit {value}")
        elif key == "brightness":
            percent = brightness_percent(value)
            if percent is not None:
                parts.append(f"brightness {percent}%")
        elif key == "hvac_action":
            parts.append(f"hvac {value}")
        elif key == "current_temperature":
            parts.append(f"current {value}")
        elif key == "temperature":
            parts.append(f"target {value}")
    return ", ".join(parts)


def render_entity(entity: Entity) -> str:
    line = f'{entity.id}: "{entity.display_name or entity.id}" = {_or_unknown(entity.state)}'
    summary = attribute_summary(entity)
    if summary:
        line += f" ({summary})"
    return line


def _render_unit_system(raw: Any) -> str:
    if isinstance(raw, dict):
        return ", ".join(f"{key}={value}" for key, value in raw.items()) or UNKNOWN
    return _or_unknown(raw)


def _render_system(config: SystemConfig | None) -> list[str]:
    config = config or SystemConfig()
    return [
        "HOME SYSTEM",
        f"Location: {_or_unknown(config.location_name)}",
        f"Timezone: {_or_unknown(config.time_zone)}",
        f"Version: {_or_unknown(config.version)}",
        f"Unit system: {_render_unit_system(config.unit_system)}",
    ]


def _render_summary(summary: SnapshotSummary | None, areas: list[str]) -> list[str]:
    lines = ["SUMMARY"]
    for label, count_field, total_field in SUMMARY_COUNTERS:
        count = getattr(summary, count_field) if summary else None
        if total_field is None:
            lines.append(f"{label}: {_or_unknown(count)}")
            continue
        total = getattr(summary, total_field) if summary else None
        if count is None and total is None:
            lines.append(f"{label}: {UNKNOWN}")
        else:
            lines.append(f"{label}: {_or_unknown(count)}/{_or_unknown(total)}")
    lines.append(f"Areas: {', '.join(areas) if areas else 'none'}")
    return lines


def _render_entities(entities: dict[str, list[Entity]]) -> list[str]:
    lines = ["ENTITIES"]
    for domain, rows in entities.items():
        lines.append(f"[{domain}] ({len(rows)})")
        lines.extend(render_entity(x) for x in rows)
    return lines


def render_automation(automation: Automation) -> list[str]:
    header = f'{automation.id}: "{automation.name or automation.id}" = {_or_unknown(automation.state)}'
    header += f", last triggered {automation.last_triggered_timestamp or 'never'}"
    if automation.mode:
        header += f", mode {automation.mode}"
    lines = [header]
    for label, body in (
        ("trigger", automation.trigger_spec),
        ("condition", automation.condition_spec),
        ("action", automation.action_spec),
    ):
        if body is not None:
            lines.append(f"  {label}: {_literal(body)}")
    return lines


def _render_automations(automations: list[Automation]) -> list[str]:
    lines = [f"AUTOMATIONS ({len(automations)})"]
    for automation in automations:
        lines.extend(render_automation(automation))
    return lines


def _render_named(title: str, rows: list[Any]) -> list[str]:
    lines = [f"{title} ({len(rows)})"]
    for row in rows:
        lines.append(f'{row.id}: "{row.name or row.id}" = {_or_unknown(row.state)}')
    return lines


def _render_services(services: dict[str, list[str]]) -> list[str]:
    lines = ["SERVICES"]
    for domain, names in services.items():
        lines.append(f"{domain}: {', '.join(names)}")
    return lines


def _render_activity(snapshot: HomeSnapshot, limit: int) -> list[str]:
    # Keep the newest `limit` events but print them oldest first.
    events = snapshot.recent_activity[-limit:] if limit > 0 else []
    lines = [f"RECENT ACTIVITY ({len(events)})"]
    for event in events:
        subject = event.name or event.entity_id or UNKNOWN
        line = f"{_or_unknown(event.timestamp)}: {subject} {event.message}".rstrip()
        if event.entity_id and event.name:
            line += f" [{event.entity_id}]"
        cause_id = event.caused_by_entity_id
        cause_name = event.cause_display_name
        if cause_id and cause_name:
            line += f' (caused by {cause_id} "{cause_name}")'
        elif cause_id or cause_name:
            line += f" (caused by {cause_id or cause_name})"
        lines.append(line)
    return lines


def render_home_context(snapshot: HomeSnapshot | None, *, activity_limit: int | None = None) -> str:
    if snapshot is None:
        return NO_DATA_SENTINEL

    limit = settings.CHAT_ACTIVITY_LIMIT if activity_limit is None else activity_limit
    sections = [
        _render_system(snapshot.config),
        _render_summary(snapshot.summary, snapshot.areas),
        _render_entities(snapshot.entities),
        _render_automations(snapshot.automations),
        _render_named("SCRIPTS", snapshot.scripts),
        _render_named("SCENES", snapshot.scenes),
        _render_services(snapshot.services),
        _render_activity(snapshot, limit),
    ]
    if snapshot.errors:
        sections.append(["DATA GAPS", *snapshot.errors])
    return "\n\n".join("\n".join(lines) for lines in sections)
