"""Runtime option parsing for the agent loop and its sub-agents."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv


BOOL_TRUE = {"1", "true", "yes", "y", "on"}
BOOL_FALSE = {"0", "false", "no", "n", "off"}

THINKING_LEVELS = {"none", "low", "medium", "high", "xhigh"}
PROVIDER_IDS = ("anthropic", "codex")
AUTH_MODES = {"api_key", "oauth"}

MAX_TOKENS_RANGE = (256, 128000)
MAX_TOOL_STEPS_RANGE = (1, 100)
SUB_AGENT_TOOL_STEPS_RANGE = (1, 50)
MAX_CONCURRENT_TASKS_RANGE = (1, 10)


@dataclass
class ProviderConfig:
    """One configured model provider."""

    id: str
    enabled: bool = True
    auth_mode: str = "api_key"
    model: str = ""


@dataclass
class AgentSettings:
    """Limits and switches merged from CLI and environment variables."""

    max_tokens: int = 16384
    max_tool_steps: int = 25
    sub_agent_model: str = ""
    sub_agent_max_tokens: int = 8192
    sub_agent_max_tool_steps: int = 15
    max_concurrent_tasks: int = 3
    thinking_level: str = "none"
    command_timeout: float = 90.0
    show_llm_response: bool = False
    providers: List[ProviderConfig] = field(default_factory = list)

    def __post_init__(self):
        self.max_tokens = _clamp(self.max_tokens, *MAX_TOKENS_RANGE)
        self.max_tool_steps = _clamp(self.max_tool_steps, *MAX_TOOL_STEPS_RANGE)
        self.sub_agent_max_tokens = _clamp(self.sub_agent_max_tokens, *MAX_TOKENS_RANGE)
        self.sub_agent_max_tool_steps = _clamp(self.sub_agent_max_tool_steps, *SUB_AGENT_TOOL_STEPS_RANGE)
        self.max_concurrent_tasks = _clamp(self.max_concurrent_tasks, *MAX_CONCURRENT_TASKS_RANGE)
        if self.thinking_level not in THINKING_LEVELS:
            self.thinking_level = "none"
        self.command_timeout = max(1.0, float(self.command_timeout))

    def first_enabled_provider(self) -> Optional[ProviderConfig]:
        """Providers are tried in configuration order."""
        for provider in self.providers:
            if provider.enabled:
                return provider
        return None

    def as_dict(self) -> Dict[str, Any]:
        """Return JSON-serializable dict form for logs."""
        return {
            "max_tokens": self.max_tokens,
            "max_tool_steps": self.max_tool_steps,
            "sub_agent_model": self.sub_agent_model,
            "sub_agent_max_tokens": self.sub_agent_max_tokens,
            "sub_agent_max_tool_steps": self.sub_agent_max_tool_steps,
            "max_concurrent_tasks": self.max_concurrent_tasks,
            "thinking_level": self.thinking_level,
            "command_timeout": self.command_timeout,
            "show_llm_response": self.show_llm_response,
            "providers": [provider.id for provider in self.providers if provider.enabled],
        }


def add_runtime_args(parser: Any) -> None:
    """Attach shared runtime flags to an argparse parser."""
    import argparse

    parser.add_argument(
        "--show-llm-response",
        dest = "show_llm_response",
        action = argparse.BooleanOptionalAction,
        default = None,
        help = "Log each assistant step with its tool calls and token usage.",
    )
    parser.add_argument(
        "--max-tokens",
        dest = "max_tokens",
        type = int,
        default = None,
        help = "Output token limit per provider request.",
    )
    parser.add_argument(
        "--max-tool-steps",
        dest = "max_tool_steps",
        type = int,
        default = None,
        help = "Maximum tool round trips per run.",
    )
    parser.add_argument(
        "--thinking",
        dest = "thinking_level",
        choices = sorted(THINKING_LEVELS),
        default = None,
        help = "Requested reasoning level.",
    )
    parser.add_argument(
        "--sub-agent-model",
        dest = "sub_agent_model",
        default = None,
        help = "Model used by delegated sub-agents (default: main model).",
    )
    parser.add_argument(
        "--sub-agent-max-tokens",
        dest = "sub_agent_max_tokens",
        type = int,
        default = None,
        help = "Output token limit for sub-agent requests.",
    )
    parser.add_argument(
        "--sub-agent-max-tool-steps",
        dest = "sub_agent_max_tool_steps",
        type = int,
        default = None,
        help = "Maximum tool round trips per sub-agent.",
    )
    parser.add_argument(
        "--max-concurrent-tasks",
        dest = "max_concurrent_tasks",
        type = int,
        default = None,
        help = "Maximum sub-agents running at once.",
    )
    parser.add_argument(
        "--command-timeout",
        dest = "command_timeout",
        type = float,
        default = None,
        help = "Seconds before a shell command is killed.",
    )


def settings_from_args(args: Any, env_file: Optional[Path] = None) -> AgentSettings:
    """Build agent settings with CLI > ENV > default precedence."""
    load_dotenv(env_file)

    provider_id = _resolve_enum(
        cli_value = getattr(args, "provider", None),
        env_name = "CODELOOP_PROVIDER",
        default = "anthropic",
        allowed = set(PROVIDER_IDS),
    )
    provider = ProviderConfig(
        id = provider_id,
        enabled = True,
        auth_mode = _resolve_enum(
            cli_value = getattr(args, "auth_mode", None),
            env_name = "CODELOOP_AUTH_MODE",
            default = "api_key",
            allowed = AUTH_MODES,
        ),
        model = _resolve_str(
            cli_value = getattr(args, "model", None),
            env_name = "CODELOOP_MODEL",
            default = "",
        ),
    )

    return AgentSettings(
        max_tokens = _resolve_int(
            cli_value = getattr(args, "max_tokens", None),
            env_name = "CODELOOP_MAX_TOKENS",
            default = 16384,
        ),
        max_tool_steps = _resolve_int(
            cli_value = getattr(args, "max_tool_steps", None),
            env_name = "CODELOOP_MAX_TOOL_STEPS",
            default = 25,
        ),
        sub_agent_model = _resolve_str(
            cli_value = getattr(args, "sub_agent_model", None),
            env_name = "CODELOOP_SUB_AGENT_MODEL",
            default = "",
        ),
        sub_agent_max_tokens = _resolve_int(
            cli_value = getattr(args, "sub_agent_max_tokens", None),
            env_name = "CODELOOP_SUB_AGENT_MAX_TOKENS",
            default = 8192,
        ),
        sub_agent_max_tool_steps = _resolve_int(
            cli_value = getattr(args, "sub_agent_max_tool_steps", None),
            env_name = "CODELOOP_SUB_AGENT_MAX_TOOL_STEPS",
            default = 15,
        ),
        max_concurrent_tasks = _resolve_int(
            cli_value = getattr(args, "max_concurrent_tasks", None),
            env_name = "CODELOOP_MAX_CONCURRENT_TASKS",
            default = 3,
        ),
        thinking_level = _resolve_enum(
            cli_value = getattr(args, "thinking_level", None),
            env_name = "CODELOOP_THINKING_LEVEL",
            default = "none",
            allowed = THINKING_LEVELS,
        ),
        command_timeout = _resolve_float(
            cli_value = getattr(args, "command_timeout", None),
            env_name = "CODELOOP_COMMAND_TIMEOUT",
            default = 90.0,
        ),
        show_llm_response = _resolve_bool(
            cli_value = getattr(args, "show_llm_response", None),
            env_name = "CODELOOP_SHOW_LLM_RESPONSE",
            default = False,
        ),
        providers = [provider],
    )


def _clamp(value: int, low: int, high: int) -> int:
    return max(low, min(high, int(value)))


def _resolve_bool(cli_value: Any, env_name: str, default: bool) -> bool:
    """Resolve bool with CLI > ENV > default precedence."""
    if cli_value is not None:
        return bool(cli_value)

    raw_env = os.getenv(env_name)
    if raw_env is None:
        return default

    normalized = raw_env.strip().lower()
    if normalized in BOOL_TRUE:
        return True
    if normalized in BOOL_FALSE:
        return False
    return default


def _resolve_enum(cli_value: Any, env_name: str, default: str, allowed: set) -> str:
    """Resolve enum option with validation."""
    if cli_value is not None and str(cli_value) in allowed:
        return str(cli_value)

    raw_env = os.getenv(env_name)
    if raw_env is not None:
        normalized = raw_env.strip().lower()
        if normalized in allowed:
            return normalized

    return default


def _resolve_int(cli_value: Any, env_name: str, default: int) -> int:
    """Resolve int option with fallback to default on parse failure."""
    if cli_value is not None:
        return int(cli_value)

    raw_env = os.getenv(env_name)
    if raw_env is None:
        return default

    try:
        return int(raw_env.strip())
    except ValueError:
        return default


def _resolve_float(cli_value: Any, env_name: str, default: float) -> float:
    """Resolve float option with fallback to default on parse failure."""
    if cli_value is not None:
        return float(cli_value)

    raw_env = os.getenv(env_name)
    if raw_env is None:
        return default

    try:
        return float(raw_env.strip())
    except ValueError:
        return default


def _resolve_str(cli_value: Any, env_name: str, default: str) -> str:
    """Resolve string option with CLI > ENV > default precedence."""
    if cli_value is not None and str(cli_value).strip():
        return str(cli_value)

    raw_env = os.getenv(env_name)
    if raw_env is not None and raw_env.strip():
        return raw_env.strip()

    return default
