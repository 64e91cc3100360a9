"""Builds and runs the nested agent loop behind spawn_task."""

import logging
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from .agent_loop import AgentLoop
from .cancellation import CancelToken
from .credentials import BearerCredential, CredentialManager
from .dispatcher import ToolDispatcher
from .environment import EnvironmentInfo, get_environment_info
from .errors import CredentialError, CredentialMissingError
from .llm import ProviderAdapter, StepSettings, build_adapter, default_model
from .messages import ConversationMessage
from .observer import AgentObserver
from .prompts import build_sub_agent_prompt
from .runtime_config import AgentSettings
from .tool_specs import ToolSpec, tools_for_sub_agent
from .trace_logger import TraceLogger

logger = logging.getLogger("Subagent-Runner")

AdapterFactory = Callable[[str, BearerCredential], ProviderAdapter]


class _ProgressObserver(AgentObserver):
    """Forwards one summary per nested tool call; nested text stays private."""

    def __init__(self, on_progress: Optional[Callable[[str], None]]):
        self.on_progress = on_progress

    def on_tool_start(self, name: str, detail: str, args: Dict[str, Any]) -> str:
        if self.on_progress is not None:
            self.on_progress(detail)
        return uuid.uuid4().hex[:12]


class SubAgentRunner:
    """
    Run one delegated task as a restricted nested AgentLoop.

    Parameters:
        settings: Sub-agent model, token and step limits plus provider list.
        credentials: Resolves the provider credential for each task.
        project_root: Sandbox root shared with the parent.
        catalogue: Parent catalogue, filtered per task type.
        cancel_token: Parent run cancellation.
        environment: Host facts for the prompt.
        rpc_manager: Serves provider tools for general tasks.
        adapter_factory: Builds the provider adapter.
        trace_logger: Shared trace logger.
        shell: Shell override for run_command.
    """

    def __init__(
        self,
        settings: AgentSettings,
        credentials: CredentialManager,
        project_root: Path,
        catalogue: List[ToolSpec],
        cancel_token: CancelToken,
        environment: Optional[EnvironmentInfo] = None,
        rpc_manager: Any = None,
        adapter_factory: AdapterFactory = build_adapter,
        trace_logger: Optional[TraceLogger] = None,
        shell: Optional[str] = None,
    ):
        self.settings = settings
        self.credentials = credentials
        self.project_root = Path(project_root)
        self.catalogue = list(catalogue)
        self.cancel_token = cancel_token
        self.environment = environment or get_environment_info()
        self.rpc_manager = rpc_manager
        self.adapter_factory = adapter_factory
        self.tracer = trace_logger
        self.shell = shell

    async def run(
        self,
        prompt: str,
        task_type: str = "general",
        on_progress: Optional[Callable[[str], None]] = None,
    ) -> str:
        """Return the sub-agent's final text, or an `Error: ...` string when it cannot start."""
        provider = self.settings.first_enabled_provider()
        if provider is None:
            return "Error: No provider enabled."

        try:
            credential = await self.credentials.resolve(provider.id, auth_mode = provider.auth_mode)
        except CredentialMissingError:
            return f"Error: {provider.id} credential not configured."
        except CredentialError as exc:
            return f"Error: {exc}"

        adapter = self.adapter_factory(provider.id, credential)
        tools = tools_for_sub_agent(task_type, self.catalogue)
        dispatcher = ToolDispatcher(
            project_root = self.project_root,
            tools = tools,
            cancel_token = self.cancel_token,
            command_timeout = self.settings.command_timeout,
            rpc_manager = self.rpc_manager,
            shell = self.shell,
        )
        model = self.settings.sub_agent_model or provider.model or default_model(provider.id)
        loop = AgentLoop(
            adapter = adapter,
            dispatcher = dispatcher,
            tools = tools,
            settings = StepSettings(model = model, max_tokens = self.settings.sub_agent_max_tokens),
            system_prompt = build_sub_agent_prompt(self.environment, self.project_root, task_type),
            max_tool_steps = self.settings.sub_agent_max_tool_steps,
            cancel_token = self.cancel_token,
            observer = _ProgressObserver(on_progress),
            trace_logger = self.tracer,
            actor = f"sub-{task_type}",
        )

        logger.info(f"Starting {task_type} sub-agent on {provider.id}/{model}")
        result = await loop.run([ConversationMessage.user(prompt)])
        return result.text or "(no output)"
