import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from dotenv import load_dotenv

load_dotenv()

# Secret - stays in .env (ANTHROPIC_API_KEY, plus any provider keys such as BRAVE_API_KEY)

# User config - loaded from ~/.mcp-inspector/config.json (primary)
# or project-root config.json (fallback).
CONFIG_PATH = Path.home() / ".mcp-inspector" / "config.json"
_LOCAL_CONFIG_PATH = Path(__file__).resolve().parent / "config.json"
_user_config: dict = {}


def _load_config() -> dict:
    # Project-local config.json as base, user home config overlaid on top
    merged: dict = {}
    for path in (_LOCAL_CONFIG_PATH, CONFIG_PATH):
        if path is not None and path.exists():
            try:
                with open(path, "r", encoding="utf-8") as f:
                    merged.update(json.load(f))
            except (json.JSONDecodeError, OSError):
                pass
    return merged


def get(key: str, default=None):
    """Get a config value by dot-separated key. E.g. get('limits.max_iterations', 20)"""
    keys = key.split(".")
    val = _user_config
    for k in keys:
        if isinstance(val, dict):
            val = val.get(k)
        else:
            return default
    return val if val is not None else default


_user_config = _load_config()


# ---- Data directory -----------------------------------------------------------
# Base directory for logs. Priority: MCP_INSPECTOR_DIR env var > "data_dir"
# config key > ~/.mcp-inspector

_data_dir: Optional[Path] = None


def get_data_dir() -> Path:
    """Return the resolved base data directory.

    Resolution order:
    1. ``MCP_INSPECTOR_DIR`` environment variable
    2. ``"data_dir"`` key in config.json
    3. ``~/.mcp-inspector`` (default)
    """
    global _data_dir
    if _data_dir is not None:
        return _data_dir
    env_val = os.environ.get("MCP_INSPECTOR_DIR")
    if env_val:
        _data_dir = Path(env_val).expanduser().resolve()
    else:
        configured = get("data_dir")
        if configured:
            _data_dir = Path(configured).expanduser().resolve()
        else:
            _data_dir = Path.home() / ".mcp-inspector"
    return _data_dir


def _reset_data_dir() -> None:
    """Reset the cached data directory (for testing only)."""
    global _data_dir
    _data_dir = None


def get_api_key() -> str | None:
    """Return the Anthropic API key from the environment."""
    return os.getenv("ANTHROPIC_API_KEY")


# ---- Loop limits -------------------------------------------------------------

DEFAULT_MODEL = "claude-sonnet-4-20250514"


@dataclass(frozen=True)
class AppConfig:
    """Limits consumed by the orchestrator and the connection manager.

    All durations are milliseconds, matching the event stream units.
    """
    max_iterations: int = 20
    tool_timeout_ms: int = 30_000
    task_timeout_ms: int = 300_000
    health_check_interval_ms: int = 30_000
    rate_limit_backoff_ms: int = 5_000
    rate_limit_max_retries: int = 3
    model: str = DEFAULT_MODEL
    max_tokens: int = 4096

    @property
    def tool_timeout_s(self) -> float:
        return self.tool_timeout_ms / 1000.0

    @property
    def health_check_interval_s(self) -> float:
        return self.health_check_interval_ms / 1000.0

    @property
    def rate_limit_backoff_s(self) -> float:
        return self.rate_limit_backoff_ms / 1000.0


def load_app_config(**overrides) -> AppConfig:
    """Build an AppConfig from the ``"limits"`` section plus keyword overrides."""
    defaults = AppConfig()
    values = {
        "max_iterations": int(get("limits.max_iterations", defaults.max_iterations)),
        "tool_timeout_ms": int(get("limits.tool_timeout_ms", defaults.tool_timeout_ms)),
        "task_timeout_ms": int(get("limits.task_timeout_ms", defaults.task_timeout_ms)),
        "health_check_interval_ms": int(
            get("limits.health_check_interval_ms", defaults.health_check_interval_ms)
        ),
        "rate_limit_backoff_ms": int(
            get("limits.rate_limit_backoff_ms", defaults.rate_limit_backoff_ms)
        ),
        "rate_limit_max_retries": int(
            get("limits.rate_limit_max_retries", defaults.rate_limit_max_retries)
        ),
        "model": get("model", defaults.model),
        "max_tokens": int(get("max_tokens", defaults.max_tokens)),
    }
    values.update({k: v for k, v in overrides.items() if v is not None})
    return AppConfig(**values)


# ---- Provider definitions ----------------------------------------------------
# Built-in MCP servers, used when config.json has no "providers" list.
# Env values of the form "$NAME" are resolved from the process environment.

_DEFAULT_PROVIDERS: list[dict] = [
    {
        "id": "filesystem",
        "name": "Filesystem",
        "command": "npx",
        "args": ["-y", "@modelcontextprotocol/server-filesystem", "/tmp"],
        "transport": "stdio",
    },
    {
        "id": "brave-search",
        "name": "Brave Search",
        "command": "npx",
        "args": ["-y", "@modelcontextprotocol/server-brave-search"],
        "env": {"BRAVE_API_KEY": "$BRAVE_API_KEY"},
        "transport": "stdio",
    },
]


def _resolve_env(env: dict | None) -> dict[str, str]:
    resolved = {}
    for key, value in (env or {}).items():
        value = str(value)
        if value.startswith("$"):
            value = os.getenv(value[1:], "")
        resolved[str(key)] = value
    return resolved


def load_provider_definitions() -> list:
    """Return ProviderDefinition objects from config (or the built-in defaults)."""
    from inspector.providers import ProviderDefinition

    raw = get("providers") or _DEFAULT_PROVIDERS
    definitions = []
    for entry in raw:
        definitions.append(
            ProviderDefinition(
                id=entry["id"],
                name=entry.get("name", entry["id"]),
                command=entry["command"],
                args=tuple(entry.get("args", ())),
                env=_resolve_env(entry.get("env")),
                transport=entry.get("transport", "stdio"),
            )
        )
    return definitions


# ---- Setting descriptions -----------------------------------------------------
CONFIG_DESCRIPTIONS: dict[str, str] = {
    "model": "Anthropic model used for every task unless the request names one.",
    "max_tokens": "Maximum output tokens per model call.",
    "limits.max_iterations": "Model calls allowed per task before it ends with status 'timeout'.",
    "limits.tool_timeout_ms": "Per tool-call timeout. A timed-out call is reported to the model as an error; the loop continues.",
    "limits.task_timeout_ms": "Wall-clock budget for one task.",
    "limits.health_check_interval_ms": "Interval between provider liveness probes. Failed providers are restarted.",
    "limits.rate_limit_backoff_ms": "Wait before retrying a rate-limited model call. Retries do not consume iterations.",
    "limits.rate_limit_max_retries": "Consecutive rate-limit retries before the task fails.",
    "providers": "List of MCP servers: {id, name, command, args, env, transport}. Env values starting with '$' are read from the environment.",
    "console_format": "Console log format: 'full', 'simple' (default) or 'clean'.",
    "truncation": "Override console preview limits (e.g. 'console.result'). Trace limits are fixed.",
    "server.host": "Bind address for api_server.py (default 127.0.0.1).",
    "server.port": "Port for api_server.py (default 8000).",
}


def reload_config() -> None:
    """Re-read config from disk.

    Values are pulled through ``get()`` / ``load_app_config()`` on demand, so
    only the cached data directory and truncation overrides need resetting.
    """
    global _user_config

    load_dotenv(override=True)

    _user_config = _load_config()
    _reset_data_dir()

    from inspector.truncation import reload as _reload_truncation
    _reload_truncation()
