"""Run boundary: registry of active runs, agent assembly and outcome reporting."""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from .agent_loop import AgentLoop
from .cancellation import CancelToken
from .credentials import CredentialManager
from .dispatcher import ToolDispatcher
from .environment import EnvironmentInfo, get_environment_info
from .errors import CodeloopError, RunAlreadyActiveError, RunCancelled
from .llm import StepSettings, build_adapter, default_model
from .messages import ConversationMessage, TrailEntry
from .observer import AgentObserver
from .prompts import build_system_prompt
from .runtime_config import AgentSettings
from .skills import LoadedSkill, SkillLoader
from .sub_agent_runner import AdapterFactory, SubAgentRunner
from .tool_specs import build_catalogue
from .trace_logger import TraceLogger

logger = logging.getLogger("Agent-Runner")


class RunRegistry:
    """Active runs keyed by run id, each with its own cancellation token."""

    def __init__(self):
        self._tokens: Dict[str, CancelToken] = {}

    @contextmanager
    def acquire(self, run_id: str) -> Iterator[CancelToken]:
        """Register a run for the duration of the block. A second acquire for an active id fails."""
        if run_id in self._tokens:
            raise RunAlreadyActiveError(run_id)
        token = CancelToken()
        self._tokens[run_id] = token
        try:
            yield token
        finally:
            self._tokens.pop(run_id, None)

    def cancel(self, run_id: str) -> bool:
        token = self._tokens.get(run_id)
        if token is None:
            return False
        token.cancel()
        return True

    def is_active(self, run_id: str) -> bool:
        return run_id in self._tokens

    def active_runs(self) -> List[str]:
        return list(self._tokens)


@dataclass
class RunOutcome:
    """
    How a run ended.

    Parameters:
        status: completed, cancelled or error.
        text: Final answer, or the single failure message.
        partial_text: Assistant text streamed before the run ended.
    """

    status: str
    text: str
    partial_text: str = ""
    input_tokens: int = 0
    output_tokens: int = 0
    steps: int = 0


class _RecordingObserver(AgentObserver):
    """Forwards every callback and keeps the streamed text for failure reports."""

    def __init__(self, inner: AgentObserver):
        self.inner = inner
        self.chunks: List[str] = []

    @property
    def text(self) -> str:
        return "".join(self.chunks)

    def on_text_chunk(self, text: str) -> None:
        self.chunks.append(text)
        self.inner.on_text_chunk(text)

    def on_tool_start(self, name: str, detail: str, args: Dict[str, Any]) -> str:
        return self.inner.on_tool_start(name, detail, args)

    def on_tool_end(self, correlation_id: str, name: str, detail: str, result: str, duration_ms: int) -> None:
        self.inner.on_tool_end(correlation_id, name, detail, result, duration_ms)

    def on_intermediate_text(self, text: str, metadata: Dict[str, Any]) -> None:
        self.inner.on_intermediate_text(text, metadata)

    def on_sub_agent_progress(self, correlation_id: str, entry: TrailEntry) -> None:
        self.inner.on_sub_agent_progress(correlation_id, entry)


async def build_agent(
    settings: AgentSettings,
    credentials: CredentialManager,
    project_root: Path,
    cancel_token: CancelToken,
    observer: Optional[AgentObserver] = None,
    environment: Optional[EnvironmentInfo] = None,
    skill_loader: Optional[SkillLoader] = None,
    enabled_skills: Optional[List[LoadedSkill]] = None,
    rpc_manager: Any = None,
    adapter_factory: AdapterFactory = build_adapter,
    trace_logger: Optional[TraceLogger] = None,
    shell: Optional[str] = None,
) -> AgentLoop:
    """
    Resolve the credential and wire adapter, catalogue, dispatcher and sub-agent runner.

    Raises CredentialError before any provider request is made.
    """
    provider = settings.first_enabled_provider()
    if provider is None:
        raise CodeloopError("No provider enabled.")
    credential = await credentials.resolve(provider.id, auth_mode = provider.auth_mode)
    adapter = adapter_factory(provider.id, credential)

    environment = environment or get_environment_info()
    available_skills = skill_loader.available() if skill_loader is not None else []
    remote_tools = rpc_manager.all_tools() if rpc_manager is not None else []
    catalogue = build_catalogue(
        include_skills = bool(available_skills),
        include_tasks = True,
        extra_tools = remote_tools,
    )
    tracer = trace_logger or TraceLogger(enabled = settings.show_llm_response, logger = logger)

    sub_agent_runner = SubAgentRunner(
        settings = settings,
        credentials = credentials,
        project_root = project_root,
        catalogue = catalogue,
        cancel_token = cancel_token,
        environment = environment,
        rpc_manager = rpc_manager,
        adapter_factory = adapter_factory,
        trace_logger = tracer,
        shell = shell,
    )
    dispatcher = ToolDispatcher(
        project_root = project_root,
        tools = catalogue,
        cancel_token = cancel_token,
        command_timeout = settings.command_timeout,
        skill_loader = skill_loader,
        sub_agent_runner = sub_agent_runner,
        rpc_manager = rpc_manager,
        shell = shell,
    )
    return AgentLoop(
        adapter = adapter,
        dispatcher = dispatcher,
        tools = catalogue,
        settings = StepSettings(
            model = provider.model or default_model(provider.id),
            max_tokens = settings.max_tokens,
            thinking_level = settings.thinking_level,
        ),
        system_prompt = build_system_prompt(environment, Path(project_root), available_skills, enabled_skills),
        max_tool_steps = settings.max_tool_steps,
        max_concurrent_tasks = settings.max_concurrent_tasks,
        cancel_token = cancel_token,
        observer = observer,
        trace_logger = tracer,
    )


async def run_agent(
    registry: RunRegistry,
    run_id: str,
    history: List[ConversationMessage],
    settings: AgentSettings,
    credentials: CredentialManager,
    project_root: Path,
    observer: Optional[AgentObserver] = None,
    **agent_options: Any,
) -> RunOutcome:
    """
    Run one agent turn under the registry and report how it ended.

    Parameters:
        registry: Registry used by whoever issues cancellation.
        run_id: Identifier of the conversation or thread.
        history: Conversation ending with the new user message.
        settings: Agent settings.
        credentials: Credential manager.
        project_root: Sandbox root.
        observer: Host callbacks.
        agent_options: Extra keyword arguments for build_agent.
    """
    recorder = _RecordingObserver(observer or AgentObserver())
    with registry.acquire(run_id) as token:
        try:
            loop = await build_agent(
                settings = settings,
                credentials = credentials,
                project_root = project_root,
                cancel_token = token,
                observer = recorder,
                **agent_options,
            )
            result = await loop.run(history)
        except RunCancelled:
            logger.info(f"Run {run_id} cancelled")
            return RunOutcome(status = "cancelled", text = "Run cancelled.", partial_text = recorder.text)
        except CodeloopError as exc:
            logger.error(f"Run {run_id} failed: {exc}")
            return RunOutcome(status = "error", text = f"Agent failed: {exc}", partial_text = recorder.text)
        except Exception as exc:
            logger.exception(f"Run {run_id} failed unexpectedly")
            return RunOutcome(status = "error", text = f"Agent failed: {exc}", partial_text = recorder.text)

    return RunOutcome(
        status = "completed",
        text = result.text,
        partial_text = recorder.text,
        input_tokens = result.input_tokens,
        output_tokens = result.output_tokens,
        steps = result.steps,
    )
