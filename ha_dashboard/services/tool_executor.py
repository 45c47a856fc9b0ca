import asyncio
from typing import Any

from ha_dashboard.core.errors import BackendRejected, ToolArgumentError
from ha_dashboard.models.schemas import ToolInvocation, ToolResult
from ha_dashboard.services import ha_service
from ha_dashboard.services.confirmation import ConfirmationGate, action_fingerprint
from ha_dashboard.services.log_service import log_operation
from ha_dashboard.services.tool_registry import (
    CallServiceArgs,
    CreateAutomationArgs,
    ResolvedTool,
    ToolKind,
    resolve_invocation,
)


async def _save_and_reload(args: CreateAutomationArgs, *, trace_id: str | None) -> None:
    await ha_service.save_automation_config(args.id, args.to_config(), trace_id=trace_id)
    await ha_service.reload_automations(trace_id=trace_id)


async def _create_automation(args: CreateAutomationArgs, *, trace_id: str | None) -> dict[str, Any]:
    # A saved automation is always reloaded, even when the turn is cancelled mid-call.
    await asyncio.shield(_save_and_reload(args, trace_id=trace_id))
    return {"success": True, "id": args.id}


async def _call_service(args: CallServiceArgs, *, trace_id: str | None) -> dict[str, Any]:
    await ha_service.call_service(args.domain, args.service, args.to_service_data(), trace_id=trace_id)
    return {"success": True}


async def run_resolved_tool(resolved: ResolvedTool, *, trace_id: str | None = None) -> dict[str, Any]:
    if resolved.kind is ToolKind.CREATE_AUTOMATION:
        return await _create_automation(resolved.args, trace_id=trace_id)
    if resolved.kind is ToolKind.CALL_SERVICE:
        return await _call_service(resolved.args, trace_id=trace_id)
    raise ToolArgumentError(tool_name=resolved.kind.value, message="tool has no executor")


def _log_tool_call(invocation: ToolInvocation, *, success: bool, trace_id: str | None, detail: dict[str, Any]) -> None:
    log_operation(
        event_type="tool_call",
        source="assistant",
        action=f"tool.{invocation.tool_name or 'unknown'}",
        trace_id=trace_id,
        success=success,
        detail={
            "invocation_id": invocation.invocation_id,
            "fingerprint": action_fingerprint(invocation),
            "arguments": invocation.arguments,
            **detail,
        },
    )


async def execute_tool_invocation(
    invocation: ToolInvocation,
    *,
    gate: ConfirmationGate | None = None,
    trace_id: str | None = None,
) -> ToolResult:
    """Run one model-requested tool and always return a ToolResult.

    Argument errors, confirmation refusals, backend rejections and transport
    failures all come back as error payloads for the model to read.
    """
    try:
        resolved = resolve_invocation(invocation)
    except ToolArgumentError as ex:
        payload = {"success": False, **ex.to_error_detail()}
        _log_tool_call(invocation, success=False, trace_id=trace_id, detail={"error": payload})
        return ToolResult(invocation_id=invocation.invocation_id, tool_name=invocation.tool_name, success=False, payload=payload)

    if gate is not None and resolved.spec.mutating:
        refusal = gate.refusal(invocation, target=resolved.target)
        if refusal is not None:
            _log_tool_call(invocation, success=False, trace_id=trace_id, detail={"error": refusal})
            return ToolResult(invocation_id=invocation.invocation_id, tool_name=invocation.tool_name, success=False, payload=refusal)

    try:
        payload = await run_resolved_tool(resolved, trace_id=trace_id)
    except asyncio.CancelledError:
        _log_tool_call(invocation, success=False, trace_id=trace_id, detail={"error": "cancelled"})
        raise
    except BackendRejected as ex:
        payload = {
            "success": False,
            "error": "backend_rejected",
            "status": ex.status,
            "message": ex.body or ex.message,
            "path": ex.path,
        }
    except Exception as ex:
        payload = {"success": False, "error": "tool_failed", "message": f"HA bridge error: {ex}"}

    success = bool(payload.get("success"))
    _log_tool_call(invocation, success=success, trace_id=trace_id, detail={"result": payload})
    return ToolResult(invocation_id=invocation.invocation_id, tool_name=invocation.tool_name, success=success, payload=payload)


async def execute_tool_round(
    invocations: list[ToolInvocation],
    *,
    gate: ConfirmationGate | None = None,
    trace_id: str | None = None,
) -> list[ToolResult]:
    # Invocations are independent; all of them finish before the next completion.
    return list(
        await asyncio.gather(
            *(execute_tool_invocation(x, gate=gate, trace_id=trace_id) for x in invocations)
        )
    )
