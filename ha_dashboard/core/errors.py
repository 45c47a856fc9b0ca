from __future__ import annotations

from typing import Any


class AssistantError(Exception):
    status_code = 500
    error = "Assistant request failed"

    def __init__(self, message: str | None = None, *, details: str | None = None) -> None:
        self.message = message or self.error
        self.details = details
        super().__init__(self.message)

    def to_error_detail(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class ConfigurationError(AssistantError):
    status_code = 500
    error = "Assistant not configured"

    def __init__(self, message: str | None = None, *, flags: dict[str, bool] | None = None) -> None:
        self.flags = dict(flags or {})
        missing = sorted(name for name, present in self.flags.items() if not present)
        super().__init__(message, details=f"missing: {', '.join(missing)}" if missing else None)

    def to_error_detail(self) -> dict[str, Any]:
        payload = super().to_error_detail()
        payload.update(self.flags)
        return payload


class MalformedInput(AssistantError):
    status_code = 400
    error = "Malformed request"


class UpstreamError(AssistantError):
    """Completion backend answered with a non-2xx status or could not be reached.

    ``status`` is 0 for transport failures.
    """

    status_code = 502
    error = "Failed to get response"

    def __init__(self, *, status: int, body: str) -> None:
        self.status = status
        self.body = body
        if status:
            details = f"Completion API error {status}: {body}"
        else:
            details = f"Completion API unreachable: {body}"
        super().__init__(details=details)


class BackendRejected(AssistantError):
    """Home Assistant refused a mutation. Reported to the model, never to the caller."""

    status_code = 502
    error = "Home Assistant rejected the request"

    def __init__(self, *, path: str, status: int, body: str) -> None:
        self.path = path
        self.status = status
        self.body = body
        super().__init__(f"HA call failed: {status} {body}".strip(), details=path)


class ToolLoopExceeded(AssistantError):
    status_code = 500
    error = "Assistant exceeded the tool-use limit"

    def __init__(self, rounds: int) -> None:
        self.rounds = rounds
        super().__init__(details=f"stopped after {rounds} tool rounds without a final answer")


class TurnDeadlineExceeded(AssistantError):
    status_code = 504
    error = "Assistant took too long to respond"

    def __init__(self, deadline_sec: float) -> None:
        self.deadline_sec = deadline_sec
        super().__init__(details=f"turn deadline of {deadline_sec:g}s exceeded")


class ToolArgumentError(ValueError):
    def __init__(self, *, tool_name: str, message: str, errors: list[dict[str, Any]] | None = None) -> None:
        self.tool_name = tool_name
        self.message = message
        self.errors = list(errors or [])
        super().__init__(f"{tool_name}: {message}")

    def to_error_detail(self) -> dict[str, Any]:
        detail: dict[str, Any] = {
            "error_code": "invalid_tool_arguments",
            "tool": self.tool_name,
            "message": self.message,
        }
        if self.errors:
            detail["errors"] = self.errors
        return detail
