"""Streaming tool-call agent core with sandboxed project tools and sub-agents."""

from .agent_loop import MAX_STEPS_MESSAGE, AgentLoop, AgentStep
from .cancellation import CancelToken
from .credentials import (
    BearerCredential,
    CredentialManager,
    EnvCredentialStore,
    MemoryCredentialStore,
    OAuthRecord,
)
from .dispatcher import ToolDispatcher
from .environment import EnvironmentInfo, get_environment_info
from .errors import (
    CodeloopError,
    CommandTimeoutError,
    CredentialMissingError,
    CredentialRefreshError,
    EditAmbiguousError,
    EditNotFoundError,
    FileTooLargeError,
    NotAFileError,
    PathEscapeError,
    ProviderTransportError,
    RpcProcessExitError,
    RpcRemoteError,
    RpcTimeoutError,
    RunAlreadyActiveError,
    RunCancelled,
    ToolError,
    ToolValidationError,
)
from .messages import AgentResult, ConversationMessage, ImageAttachment, ToolCall, ToolResult, TrailEntry
from .observer import AgentObserver, format_tool_detail
from .rpc import ToolProviderClient, ToolProviderConfig, ToolProviderManager
from .runner import RunOutcome, RunRegistry, build_agent, run_agent
from .runtime_config import AgentSettings, ProviderConfig, add_runtime_args, settings_from_args
from .skills import LoadedSkill, StaticSkillLoader
from .sub_agent_runner import SubAgentRunner
from .subagent import SubAgentScheduler, SubAgentTask
from .tool_specs import ToolSpec, build_catalogue, tools_for_sub_agent
from .trace_logger import TraceLogger

__all__ = [
    "MAX_STEPS_MESSAGE",
    "AgentLoop",
    "AgentStep",
    "CancelToken",
    "BearerCredential",
    "CredentialManager",
    "EnvCredentialStore",
    "MemoryCredentialStore",
    "OAuthRecord",
    "ToolDispatcher",
    "EnvironmentInfo",
    "get_environment_info",
    "CodeloopError",
    "CommandTimeoutError",
    "CredentialMissingError",
    "CredentialRefreshError",
    "EditAmbiguousError",
    "EditNotFoundError",
    "FileTooLargeError",
    "NotAFileError",
    "PathEscapeError",
    "ProviderTransportError",
    "RpcProcessExitError",
    "RpcRemoteError",
    "RpcTimeoutError",
    "RunAlreadyActiveError",
    "RunCancelled",
    "ToolError",
    "ToolValidationError",
    "AgentResult",
    "ConversationMessage",
    "ImageAttachment",
    "ToolCall",
    "ToolResult",
    "TrailEntry",
    "AgentObserver",
    "format_tool_detail",
    "ToolProviderClient",
    "ToolProviderConfig",
    "ToolProviderManager",
    "RunOutcome",
    "RunRegistry",
    "build_agent",
    "run_agent",
    "AgentSettings",
    "ProviderConfig",
    "add_runtime_args",
    "settings_from_args",
    "LoadedSkill",
    "StaticSkillLoader",
    "SubAgentRunner",
    "SubAgentScheduler",
    "SubAgentTask",
    "ToolSpec",
    "build_catalogue",
    "tools_for_sub_agent",
    "TraceLogger",
]
