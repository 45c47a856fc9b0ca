from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, JsonValue, ValidationError

from ha_dashboard.core.errors import ToolArgumentError
from ha_dashboard.models.schemas import AutomationMode, ToolInvocation


SAFE_IDENTIFIER_PATTERN = r"^[A-Za-z0-9_]+$"
SERVICE_SEGMENT_PATTERN = r"^[a-z0-9_]+$"


class ToolKind(str, Enum):
    CREATE_AUTOMATION = "create_automation"
    CALL_SERVICE = "call_service"


class CreateAutomationArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(
        min_length=1,
        max_length=128,
        pattern=SAFE_IDENTIFIER_PATTERN,
        description="Unique automation id, letters/digits/underscores, e.g. mister_hourly",
    )
    alias: str = Field(min_length=1, description="Human-readable automation name")
    trigger: list[JsonValue] = Field(description="Home Assistant trigger list")
    action: list[JsonValue] = Field(description="Home Assistant action list")
    condition: list[JsonValue] = Field(default_factory=list, description="Optional condition list")
    mode: AutomationMode = Field(default="single", description="Run mode when re-triggered")
    description: str = Field(default="", description="Optional longer description")

    def confirmation_target(self) -> str:
        return self.id

    def to_config(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "alias": self.alias,
            "description": self.description,
            "trigger": self.trigger,
            "condition": self.condition,
            "action": self.action,
            "mode": self.mode,
        }


class CallServiceArgs(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    domain: str = Field(min_length=1, pattern=SERVICE_SEGMENT_PATTERN, description="Service domain, e.g. light")
    service: str = Field(min_length=1, pattern=SERVICE_SEGMENT_PATTERN, description="Service name, e.g. turn_on")
    entity_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("entity_id", "entityId"),
        description="Target entity id, e.g. light.kitchen",
    )
    data: dict[str, JsonValue] = Field(default_factory=dict, description="Extra service data, e.g. brightness")

    def confirmation_target(self) -> str:
        return self.entity_id or f"{self.domain}.{self.service}"

    def to_service_data(self) -> dict[str, Any]:
        payload = dict(self.data)
        if self.entity_id:
            payload["entity_id"] = self.entity_id
        return payload


@dataclass(frozen=True)
class ToolSpec:
    kind: ToolKind
    description: str
    args_model: type[BaseModel]
    mutating: bool = True

    def declaration(self) -> dict[str, Any]:
        schema = self.args_model.model_json_schema()
        input_schema: dict[str, Any] = {
            "type": "object",
            "properties": schema.get("properties", {}),
            "required": schema.get("required", []),
        }
        if "$defs" in schema:
            input_schema["$defs"] = schema["$defs"]
        return {
            "name": self.kind.value,
            "description": self.description,
            "input_schema": input_schema,
        }


@dataclass(frozen=True)
class ResolvedTool:
    spec: ToolSpec
    invocation: ToolInvocation
    args: BaseModel

    @property
    def kind(self) -> ToolKind:
        return self.spec.kind

    @property
    def target(self) -> str:
        return self.args.confirmation_target()


TOOL_SPECS: dict[ToolKind, ToolSpec] = {
    ToolKind.CREATE_AUTOMATION: ToolSpec(
        kind=ToolKind.CREATE_AUTOMATION,
        description=(
            "Create a new Home Assistant automation and reload automations so it is live immediately. "
            "Only call after the user has explicitly confirmed the exact automation."
        ),
        args_model=CreateAutomationArgs,
    ),
    ToolKind.CALL_SERVICE: ToolSpec(
        kind=ToolKind.CALL_SERVICE,
        description=(
            "Call a Home Assistant service, e.g. light.turn_on for light.kitchen. "
            "Only call after the user has explicitly confirmed the action."
        ),
        args_model=CallServiceArgs,
    ),
}


def tool_declarations() -> list[dict[str, Any]]:
    return [spec.declaration() for spec in TOOL_SPECS.values()]


def get_tool_spec(tool_name: str) -> ToolSpec:
    try:
        return TOOL_SPECS[ToolKind(tool_name)]
    except ValueError:
        raise ToolArgumentError(tool_name=tool_name, message=f"unknown tool: {tool_name}") from None


def _validation_errors(ex: ValidationError) -> list[dict[str, Any]]:
    return [
        {"field": ".".join(str(x) for x in err.get("loc", ())) or "arguments", "message": err.get("msg", "")}
        for err in ex.errors()
    ]


def resolve_invocation(invocation: ToolInvocation) -> ResolvedTool:
    spec = get_tool_spec(invocation.tool_name)
    try:
        args = spec.args_model.model_validate(invocation.arguments)
    except ValidationError as ex:
        raise ToolArgumentError(
            tool_name=invocation.tool_name,
            message="invalid arguments",
            errors=_validation_errors(ex),
        ) from ex
    return ResolvedTool(spec=spec, invocation=invocation, args=args)
