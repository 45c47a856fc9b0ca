from typing import Annotated, Any, Literal

from pydantic import AliasChoices, BaseModel, BeforeValidator, ConfigDict, Field, JsonValue
from pydantic.alias_generators import to_camel


MessageRole = Literal["user", "assistant"]
SessionMode = Literal["chat", "agent"]
AutomationMode = Literal["single", "restart", "queued", "parallel"]


class SnapshotModel(BaseModel):
    # Dashboard payloads are camelCase; HA-side names are accepted too.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


def _state_text(raw: Any) -> str | None:
    if raw is None:
        return None
    return str(raw)


StateText = Annotated[str | None, BeforeValidator(_state_text)]


class Entity(SnapshotModel):
    id: str = Field(min_length=1, validation_alias=AliasChoices("id", "entityId", "entity_id"))
    display_name: str = Field(default="", validation_alias=AliasChoices("displayName", "display_name", "name"))
    state: StateText = None
    attributes: dict[str, JsonValue] = Field(default_factory=dict)

    @property
    def domain(self) -> str:
        return self.id.split(".", 1)[0] if "." in self.id else ""


class Automation(SnapshotModel):
    id: str = Field(min_length=1)
    name: str = ""
    state: StateText = None
    last_triggered_timestamp: str | None = Field(
        default=None,
        validation_alias=AliasChoices("lastTriggeredTimestamp", "lastTriggered", "last_triggered_timestamp", "last_triggered"),
    )
    mode: str | None = None
    trigger_spec: JsonValue = Field(
        default=None,
        validation_alias=AliasChoices("triggerSpec", "trigger_spec", "trigger", "triggers"),
    )
    condition_spec: JsonValue = Field(
        default=None,
        validation_alias=AliasChoices("conditionSpec", "condition_spec", "condition", "conditions"),
    )
    action_spec: JsonValue = Field(
        default=None,
        validation_alias=AliasChoices("actionSpec", "action_spec", "action", "actions"),
    )


class ScriptInfo(SnapshotModel):
    id: str = Field(min_length=1)
    name: str = ""
    state: StateText = None


class SceneInfo(SnapshotModel):
    id: str = Field(min_length=1)
    name: str = ""
    state: StateText = None


class ActivityEvent(SnapshotModel):
    entity_id: str | None = None
    name: str = ""
    message: str = ""
    timestamp: str | None = Field(default=None, validation_alias=AliasChoices("timestamp", "when"))
    caused_by_entity_id: str | None = None
    cause_display_name: str | None = None


class SystemConfig(SnapshotModel):
    location_name: str | None = None
    time_zone: str | None = None
    version: str | None = None
    unit_system: JsonValue = None


class SnapshotSummary(SnapshotModel):
    total_entities: int | None = None
    lights_on: int | None = None
    total_lights: int | None = None
    switches_on: int | None = None
    total_switches: int | None = None
    climate_active: int | None = None
    total_climate: int | None = None
    doors_open: int | None = None
    automations_on: int | None = None
    total_automations: int | None = None
    total_scripts: int | None = None
    total_scenes: int | None = None


class HomeSnapshot(SnapshotModel):
    entities: dict[str, list[Entity]] = Field(default_factory=dict)
    automations: list[Automation] = Field(default_factory=list)
    scripts: list[ScriptInfo] = Field(default_factory=list)
    scenes: list[SceneInfo] = Field(default_factory=list)
    areas: list[str] = Field(default_factory=list)
    services: dict[str, list[str]] = Field(default_factory=dict)
    config: SystemConfig | None = None
    recent_activity: list[ActivityEvent] = Field(default_factory=list)
    summary: SnapshotSummary | None = None
    generated_at: str | None = None
    errors: list[str] = Field(default_factory=list)


class ConversationMessage(BaseModel):
    role: MessageRole
    content: str = Field(min_length=1)


class ChatRequest(BaseModel):
    messages: list[ConversationMessage] = Field(min_length=1, description="Full conversation history, oldest first")
    home_data: HomeSnapshot | None = Field(default=None, description="Snapshot built by the dashboard")
    context: str | None = Field(default=None, description="Pre-rendered context text, used when no snapshot is available")
    mode: SessionMode = Field(default="agent", description="chat: read-only answers, agent: may call tools")

    model_config = {
        "alias_generator": to_camel,
        "populate_by_name": True,
        "json_schema_extra": {
            "example": {
                "messages": [{"role": "user", "content": "What lights are on?"}],
                "homeData": {
                    "entities": {"light": [{"id": "light.kitchen", "displayName": "Kitchen", "state": "on"}]},
                    "summary": {"lightsOn": 1, "totalLights": 1},
                },
                "mode": "agent",
            }
        },
    }


class ChatResponse(BaseModel):
    message: str


class ToolInvocation(BaseModel):
    invocation_id: str = Field(min_length=1)
    tool_name: str
    arguments: dict[str, JsonValue] = Field(default_factory=dict)


class ToolResult(BaseModel):
    invocation_id: str
    tool_name: str
    success: bool
    payload: dict[str, Any] = Field(default_factory=dict)


class CompletionResult(BaseModel):
    stop_reason: str | None = None
    text_segments: list[str] = Field(default_factory=list)
    tool_invocations: list[ToolInvocation] = Field(default_factory=list)
    content: list[dict[str, Any]] = Field(default_factory=list, description="Raw content blocks, replayed verbatim")
    usage: dict[str, Any] = Field(default_factory=dict)

    @property
    def wants_tools(self) -> bool:
        return self.stop_reason == "tool_use" and bool(self.tool_invocations)

    @property
    def text(self) -> str:
        return "\n".join(x for x in self.text_segments if x)


class AssistantConfigView(BaseModel):
    ha_base_url: str
    ha_token_set: bool
    ha_token_preview: str | None = None
    ha_timeout_sec: float
    ha_context_timeout_sec: float
    anthropic_base_url: str
    anthropic_model: str
    anthropic_version: str
    anthropic_key_set: bool
    anthropic_key_preview: str | None = None
    chat_max_tokens: int
    agent_max_tokens: int
    max_tool_rounds: int
    turn_deadline_sec: float
    activity_limit: int
    confirmation_guard: bool


class OperationLogItem(BaseModel):
    event_id: str
    created_at: str
    event_type: str
    source: str
    action: str
    method: str | None = None
    path: str | None = None
    status_code: int | None = None
    duration_ms: float | None = None
    client_ip: str | None = None
    trace_id: str | None = None
    success: bool | None = None
    detail: dict[str, Any] = Field(default_factory=dict)
