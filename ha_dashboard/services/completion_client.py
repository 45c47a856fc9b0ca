from time import perf_counter
from typing import Any, Protocol

import httpx

from ha_dashboard.core import settings
from ha_dashboard.core.errors import UpstreamError
from ha_dashboard.models.schemas import CompletionResult, ToolInvocation
from ha_dashboard.services.config_service import completion_headers
from ha_dashboard.services.log_service import elapsed_ms, log_operation


MESSAGES_PATH = "/v1/messages"


class CompletionBackend(Protocol):
    async def complete(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        *,
        max_tokens: int,
        tools: list[dict[str, Any]] | None = None,
        trace_id: str | None = None,
    ) -> CompletionResult: ...


def _completion_client(timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=timeout)


def parse_completion(payload: dict[str, Any]) -> CompletionResult:
    content = payload.get("content")
    blocks = [x for x in content if isinstance(x, dict)] if isinstance(content, list) else []

    texts: list[str] = []
    invocations: list[ToolInvocation] = []
    for index, block in enumerate(blocks):
        block_type = block.get("type")
        if block_type == "text":
            text = str(block.get("text") or "")
            if text:
                texts.append(text)
        elif block_type == "tool_use":
            raw_input = block.get("input")
            invocations.append(
                ToolInvocation(
                    invocation_id=str(block.get("id") or f"tool_use_{index}"),
                    tool_name=str(block.get("name") or ""),
                    arguments=raw_input if isinstance(raw_input, dict) else {},
                )
            )

    usage = payload.get("usage")
    return CompletionResult(
        stop_reason=payload.get("stop_reason"),
        text_segments=texts,
        tool_invocations=invocations,
        content=blocks,
        usage=usage if isinstance(usage, dict) else {},
    )


class CompletionClient:
    """Blocking request/response wrapper around the messages endpoint."""

    def __init__(
        self,
        *,
        base_url: str | None = None,
        model: str | None = None,
        timeout_sec: float | None = None,
    ) -> None:
        self.base_url = (base_url or settings.ANTHROPIC_BASE_URL).rstrip("/")
        self.model = model or settings.ANTHROPIC_MODEL
        self.timeout_sec = timeout_sec or settings.ANTHROPIC_TIMEOUT_SEC

    def build_body(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        *,
        max_tokens: int,
        tools: list[dict[str, Any]] | None,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens,
            "system": system_prompt,
            "messages": messages,
        }
        if tools:
            body["tools"] = tools
        return body

    async def complete(
        self,
        system_prompt: str,
        messages: list[dict[str, Any]],
        *,
        max_tokens: int,
        tools: list[dict[str, Any]] | None = None,
        trace_id: str | None = None,
    ) -> CompletionResult:
        body = self.build_body(system_prompt, messages, max_tokens=max_tokens, tools=tools)
        started = perf_counter()
        detail: dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens,
            "message_count": len(messages),
            "tool_count": len(tools or []),
        }

        try:
            async with _completion_client(self.timeout_sec) as client:
                response = await client.post(
                    f"{self.base_url}{MESSAGES_PATH}",
                    headers=completion_headers(),
                    json=body,
                )
        except httpx.HTTPError as ex:
            log_operation(
                event_type="completion_request",
                source="completion",
                action="completion.request",
                method="POST",
                path=MESSAGES_PATH,
                status_code=0,
                duration_ms=elapsed_ms(started),
                trace_id=trace_id,
                success=False,
                detail={**detail, "message": str(ex)},
            )
            raise UpstreamError(status=0, body=str(ex)) from ex

        if response.status_code >= 400:
            response_text = response.text.strip()
            log_operation(
                event_type="completion_request",
                source="completion",
                action="completion.request",
                method="POST",
                path=MESSAGES_PATH,
                status_code=response.status_code,
                duration_ms=elapsed_ms(started),
                trace_id=trace_id,
                success=False,
                detail={**detail, "body": response_text},
            )
            raise UpstreamError(status=response.status_code, body=response_text)

        try:
            payload = response.json()
        except ValueError as ex:
            raise UpstreamError(status=response.status_code, body=f"invalid JSON: {response.text[:500]}") from ex
        if not isinstance(payload, dict):
            raise UpstreamError(status=response.status_code, body="unexpected completion payload")

        result = parse_completion(payload)
        log_operation(
            event_type="completion_request",
            source="completion",
            action="completion.request",
            method="POST",
            path=MESSAGES_PATH,
            status_code=response.status_code,
            duration_ms=elapsed_ms(started),
            trace_id=trace_id,
            success=True,
            detail={
                **detail,
                "stop_reason": result.stop_reason,
                "tool_invocations": [x.tool_name for x in result.tool_invocations],
                "usage": result.usage,
            },
        )
        return result
