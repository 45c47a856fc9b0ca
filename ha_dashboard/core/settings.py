import os
from pathlib import Path
from threading import RLock


APP_NAME = "ha_dashboard_assistant"
PROJECT_ROOT = Path(__file__).resolve().parents[2]
ENV_FILE_PATH = PROJECT_ROOT / ".env"


def load_local_env(env_path: Path) -> None:
    if not env_path.exists():
        return

    for raw in env_path.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip()
        if not key:
            continue

        if (value.startswith('"') and value.endswith('"')) or (value.startswith("'") and value.endswith("'")):
            value = value[1:-1]

        os.environ.setdefault(key, value)


load_local_env(ENV_FILE_PATH)


def env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def env_path(name: str, default: str) -> Path:
    raw = os.getenv(name, default)
    path = Path(raw)
    if path.is_absolute():
        return path
    return (Path.cwd() / path).resolve()


def env_str(name: str, default: str) -> str:
    raw = os.getenv(name)
    if raw is None:
        return default
    value = raw.strip()
    if not value:
        return default
    return value


def env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    normalized = raw.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


HA_BASE_URL = os.getenv("HA_BASE_URL", "http://homeassistant.local:8123").strip().rstrip("/")
HA_TOKEN = os.getenv("HA_TOKEN", "").strip()
HA_TIMEOUT_SEC = env_float("HA_TIMEOUT_SEC", 6.0)
HA_CONTEXT_TIMEOUT_SEC = env_float("HA_CONTEXT_TIMEOUT_SEC", 8.0)

ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "").strip()
ANTHROPIC_BASE_URL = env_str("ANTHROPIC_BASE_URL", "https://api.anthropic.com").rstrip("/")
ANTHROPIC_MODEL = env_str("ANTHROPIC_MODEL", "claude-sonnet-4-20250514")
ANTHROPIC_VERSION = env_str("ANTHROPIC_VERSION", "2023-06-01")
ANTHROPIC_TIMEOUT_SEC = env_float("ANTHROPIC_TIMEOUT_SEC", 60.0)

# Output budgets per session profile.
CHAT_MAX_TOKENS = max(1, env_int("CHAT_MAX_TOKENS", 1024))
AGENT_MAX_TOKENS = max(1, env_int("AGENT_MAX_TOKENS", 4096))

CHAT_MAX_TOOL_ROUNDS = max(1, env_int("CHAT_MAX_TOOL_ROUNDS", 5))
CHAT_TURN_DEADLINE_SEC = env_float("CHAT_TURN_DEADLINE_SEC", 120.0)
CHAT_ACTIVITY_LIMIT = max(1, env_int("CHAT_ACTIVITY_LIMIT", 100))
CHAT_ACTIVITY_LOOKBACK_HOURS = max(1, env_int("CHAT_ACTIVITY_LOOKBACK_HOURS", 24))
CHAT_CONFIRMATION_GUARD = env_bool("CHAT_CONFIRMATION_GUARD", True)

APP_DIR = Path(__file__).resolve().parent.parent
APP_LOG_PATH = env_path("APP_LOG_PATH", str(APP_DIR / "logs" / "operations.jsonl"))
APP_LOG_MAX_BYTES = env_int("APP_LOG_MAX_BYTES", 5 * 1024 * 1024)
APP_LOG_BACKUP_COUNT = max(1, env_int("APP_LOG_BACKUP_COUNT", 10))
APP_LOG_RETENTION_DAYS = max(1, env_int("APP_LOG_RETENTION_DAYS", 14))
APP_LOG_QUEUE_MAX = max(100, env_int("APP_LOG_QUEUE_MAX", 5000))

log_lock = RLock()
