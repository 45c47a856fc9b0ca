from ha_dashboard.core import settings
from ha_dashboard.core.errors import ConfigurationError
from ha_dashboard.models.schemas import AssistantConfigView


def mask_token(token: str) -> str | None:
    if not token:
        return None
    if len(token) <= 8:
        return "*" * len(token)
    return f"{token[:4]}...{token[-4:]}"


def ha_config_flags() -> dict[str, bool]:
    return {
        "hasHaUrl": bool(settings.HA_BASE_URL),
        "hasHaToken": bool(settings.HA_TOKEN),
    }


def completion_config_flags() -> dict[str, bool]:
    return {"hasApiKey": bool(settings.ANTHROPIC_API_KEY)}


def require_ha_config() -> None:
    flags = ha_config_flags()
    if not all(flags.values()):
        raise ConfigurationError("Home Assistant not configured", flags=flags)


def require_completion_config(*, with_tools: bool) -> None:
    flags = completion_config_flags()
    if with_tools:
        # Tools mutate the backend, so the agent profile needs both sides up front.
        flags.update(ha_config_flags())
    if not all(flags.values()):
        message = "Anthropic API key not configured" if not flags["hasApiKey"] else "Home Assistant not configured"
        raise ConfigurationError(message, flags=flags)


def auth_headers() -> dict[str, str]:
    return {
        "Authorization": f"Bearer {settings.HA_TOKEN}",
        "Content-Type": "application/json",
    }


def completion_headers() -> dict[str, str]:
    return {
        "x-api-key": settings.ANTHROPIC_API_KEY,
        "anthropic-version": settings.ANTHROPIC_VERSION,
        "Content-Type": "application/json",
    }


def get_assistant_config_view() -> AssistantConfigView:
    return AssistantConfigView(
        ha_base_url=settings.HA_BASE_URL,
        ha_token_set=bool(settings.HA_TOKEN),
        ha_token_preview=mask_token(settings.HA_TOKEN),
        ha_timeout_sec=settings.HA_TIMEOUT_SEC,
        ha_context_timeout_sec=settings.HA_CONTEXT_TIMEOUT_SEC,
        anthropic_base_url=settings.ANTHROPIC_BASE_URL,
        anthropic_model=settings.ANTHROPIC_MODEL,
        anthropic_version=settings.ANTHROPIC_VERSION,
        anthropic_key_set=bool(settings.ANTHROPIC_API_KEY),
        anthropic_key_preview=mask_token(settings.ANTHROPIC_API_KEY),
        chat_max_tokens=settings.CHAT_MAX_TOKENS,
        agent_max_tokens=settings.AGENT_MAX_TOKENS,
        max_tool_rounds=settings.CHAT_MAX_TOOL_ROUNDS,
        turn_deadline_sec=settings.CHAT_TURN_DEADLINE_SEC,
        activity_limit=settings.CHAT_ACTIVITY_LIMIT,
        confirmation_guard=settings.CHAT_CONFIRMATION_GUARD,
    )
