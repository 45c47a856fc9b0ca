"""Assistant session loop.

One turn runs AWAITING_COMPLETION -> (EXECUTING_TOOLS -> AWAITING_COMPLETION)* -> DONE.
Nothing is kept between turns: the caller resends the whole conversation and a
fresh snapshot every time, which is also what lets the model (and the
confirmation gate) see an earlier confirmation request.
"""

import asyncio
import json
from dataclasses import dataclass, field
from enum import Enum
from time import perf_counter
from typing import Any

from ha_dashboard.core import settings
from ha_dashboard.core.errors import AssistantError, MalformedInput, ToolLoopExceeded, TurnDeadlineExceeded
from ha_dashboard.models.schemas import (
    ChatRequest,
    ChatResponse,
    CompletionResult,
    ConversationMessage,
    HomeSnapshot,
    SessionMode,
    ToolResult,
)
from ha_dashboard.services.completion_client import CompletionBackend, CompletionClient
from ha_dashboard.services.config_service import require_completion_config
from ha_dashboard.services.confirmation import ConfirmationGate
from ha_dashboard.services.context_renderer import render_home_context
from ha_dashboard.services.log_service import elapsed_ms, log_operation
from ha_dashboard.services.snapshot_service import build_home_snapshot
from ha_dashboard.services.tool_executor import execute_tool_round
from ha_dashboard.services.tool_registry import tool_declarations


EMPTY_RESPONSE_TEXT = "No response"

CHAT_PROMPT = """You are a helpful home assistant AI integrated into a smart home dashboard. You can help the user with:
- Understanding their home automation setup
- Suggesting automations and improvements
- Answering questions about their devices and sensors
- General home and lifestyle questions

{context_block}

Be concise and helpful. Use emoji sparingly. Format responses for easy reading."""

AGENT_PROMPT = """You are a home assistant AI integrated into a smart home dashboard, with access to tools that control the user's Home Assistant installation.

You can:
- Explain what is on, what changed recently and which automation or device caused it (see RECENT ACTIVITY)
- Call Home Assistant services with call_service
- Create new automations with create_automation

Rules for actions:
- Never call a tool on the same turn the user first asks for an action. Reply in plain text describing exactly what you will do (entity ids, service, automation id and body) and ask the user to confirm.
- Only call the tool after the user's next message confirms. If they decline or change the request, do not act.
- Use entity ids, services and automation ids exactly as listed in the home context.
- If a tool result reports an error, tell the user what failed and why.

{context_block}

Be clear and helpful. Format responses for easy reading."""


class SessionState(str, Enum):
    AWAITING_COMPLETION = "awaiting_completion"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"


@dataclass(frozen=True)
class SessionProfile:
    mode: SessionMode
    max_tokens: int
    with_tools: bool
    prompt_template: str


def get_profile(mode: SessionMode) -> SessionProfile:
    if mode == "chat":
        return SessionProfile(mode="chat", max_tokens=settings.CHAT_MAX_TOKENS, with_tools=False, prompt_template=CHAT_PROMPT)
    return SessionProfile(mode="agent", max_tokens=settings.AGENT_MAX_TOKENS, with_tools=True, prompt_template=AGENT_PROMPT)


def build_system_prompt(profile: SessionProfile, home_context: str) -> str:
    return profile.prompt_template.format(context_block=f"Current home context:\n{home_context}")


@dataclass
class TurnOutcome:
    message: str
    rounds: int = 0
    completions: int = 0
    tool_results: list[ToolResult] = field(default_factory=list)
    states: list[SessionState] = field(default_factory=list)


def _tool_result_block(result: ToolResult) -> dict[str, Any]:
    block: dict[str, Any] = {
        "type": "tool_result",
        "tool_use_id": result.invocation_id,
        "content": json.dumps(result.payload, ensure_ascii=False, default=str),
    }
    if not result.success:
        block["is_error"] = True
    return block


def validate_history(messages: list[ConversationMessage]) -> None:
    if not messages:
        raise MalformedInput(details="messages must contain at least one message")
    if messages[-1].role != "user":
        raise MalformedInput(details="the last message must come from the user")


def home_context_block(snapshot: HomeSnapshot | None, context_text: str | None = None) -> str:
    if snapshot is None and context_text and context_text.strip():
        return context_text.strip()
    return render_home_context(snapshot)


async def _run_loop(
    *,
    completion: CompletionBackend,
    system_prompt: str,
    working: list[dict[str, Any]],
    profile: SessionProfile,
    gate: ConfirmationGate | None,
    max_rounds: int,
    outcome: TurnOutcome,
    trace_id: str | None,
) -> TurnOutcome:
    tools = tool_declarations() if profile.with_tools else None
    state = SessionState.AWAITING_COMPLETION

    while True:
        outcome.states.append(state)
        result: CompletionResult = await completion.complete(
            system_prompt,
            working,
            max_tokens=profile.max_tokens,
            tools=tools,
            trace_id=trace_id,
        )
        outcome.completions += 1

        if not (tools and result.wants_tools):
            outcome.states.append(SessionState.DONE)
            outcome.message = result.text or EMPTY_RESPONSE_TEXT
            return outcome

        if outcome.rounds >= max_rounds:
            raise ToolLoopExceeded(outcome.rounds)

        state = SessionState.EXECUTING_TOOLS
        outcome.states.append(state)
        results = await execute_tool_round(result.tool_invocations, gate=gate, trace_id=trace_id)
        if gate is not None and gate.confirmed:
            # One confirmation covers one round.
            gate = gate.consumed()
        outcome.rounds += 1
        outcome.tool_results.extend(results)

        working.append({"role": "assistant", "content": result.content})
        working.append({"role": "user", "content": [_tool_result_block(x) for x in results]})
        state = SessionState.AWAITING_COMPLETION


async def run_session(
    messages: list[ConversationMessage],
    snapshot: HomeSnapshot | None,
    *,
    mode: SessionMode = "agent",
    context_text: str | None = None,
    completion: CompletionBackend | None = None,
    max_rounds: int | None = None,
    deadline_sec: float | None = None,
    trace_id: str | None = None,
) -> TurnOutcome:
    validate_history(messages)
    profile = get_profile(mode)
    system_prompt = build_system_prompt(profile, home_context_block(snapshot, context_text))
    working: list[dict[str, Any]] = [{"role": m.role, "content": m.content} for m in messages]
    gate = (
        ConfirmationGate.from_history(messages, enabled=settings.CHAT_CONFIRMATION_GUARD)
        if profile.with_tools
        else None
    )
    deadline = settings.CHAT_TURN_DEADLINE_SEC if deadline_sec is None else deadline_sec
    outcome = TurnOutcome(message="")

    loop = _run_loop(
        completion=completion or CompletionClient(),
        system_prompt=system_prompt,
        working=working,
        profile=profile,
        gate=gate,
        max_rounds=settings.CHAT_MAX_TOOL_ROUNDS if max_rounds is None else max_rounds,
        outcome=outcome,
        trace_id=trace_id,
    )
    try:
        return await asyncio.wait_for(loop, timeout=deadline if deadline > 0 else None)
    except asyncio.TimeoutError:
        raise TurnDeadlineExceeded(deadline) from None


async def resolve_snapshot(req: ChatRequest) -> HomeSnapshot | None:
    if req.home_data is not None:
        return req.home_data
    if not settings.HA_TOKEN:
        return None
    return await build_home_snapshot()


def _context_source(req: ChatRequest) -> str:
    if req.home_data is not None:
        return "request"
    if settings.HA_TOKEN:
        return "server"
    return "text" if req.context else "none"


async def handle_chat(req: ChatRequest, *, trace_id: str | None = None) -> ChatResponse:
    profile = get_profile(req.mode)
    validate_history(req.messages)
    require_completion_config(with_tools=profile.with_tools)

    started = perf_counter()
    outcome: TurnOutcome | None = None
    error: AssistantError | None = None
    try:
        snapshot = await resolve_snapshot(req)
        outcome = await run_session(
            req.messages,
            snapshot,
            mode=req.mode,
            context_text=req.context,
            trace_id=trace_id,
        )
        return ChatResponse(message=outcome.message)
    except AssistantError as ex:
        error = ex
        raise
    finally:
        log_operation(
            event_type="chat_turn",
            source="assistant",
            action=f"chat.{profile.mode}",
            duration_ms=elapsed_ms(started),
            trace_id=trace_id,
            success=error is None and outcome is not None,
            detail={
                "message_count": len(req.messages),
                "home_data": _context_source(req),
                "rounds": outcome.rounds if outcome else None,
                "completions": outcome.completions if outcome else None,
                "tool_calls": [x.tool_name for x in outcome.tool_results] if outcome else [],
                "error": type(error).__name__ if error else None,
            },
        )
