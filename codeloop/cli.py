"""Command-line host for the agent loop."""

import asyncio
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from .credentials import CredentialManager, EnvCredentialStore
from .errors import CodeloopError
from .messages import ConversationMessage, TrailEntry
from .observer import AgentObserver
from .rpc import ToolProviderManager, load_tool_provider_configs
from .runner import RunRegistry, run_agent
from .runtime_config import AUTH_MODES, PROVIDER_IDS, AgentSettings, add_runtime_args, settings_from_args
from .skills import StaticSkillLoader, skill_from_file

logger = logging.getLogger("Codeloop-CLI")

RUN_ID = "cli"


class ConsoleObserver(AgentObserver):
    """Streams text to stdout and logs tool activity."""

    def on_text_chunk(self, text: str) -> None:
        sys.stdout.write(text)
        sys.stdout.flush()

    def on_tool_start(self, name: str, detail: str, args: Dict[str, Any]) -> str:
        correlation_id = super().on_tool_start(name, detail, args)
        sys.stdout.write("\n")
        logger.info(f"[tool:{correlation_id}] {detail}")
        return correlation_id

    def on_tool_end(self, correlation_id: str, name: str, detail: str, result: str, duration_ms: int) -> None:
        first_line = result.strip().splitlines()[0] if result.strip() else "(empty)"
        logger.info(f"[tool:{correlation_id}] done in {duration_ms} ms: {first_line[:120]}")

    def on_sub_agent_progress(self, correlation_id: str, entry: TrailEntry) -> None:
        logger.info(f"[task:{correlation_id}] {entry.summary}")


def parse_args(argv: Optional[List[str]] = None):
    """
    Parse command line arguments.
    """
    import argparse

    parser = argparse.ArgumentParser(
        description = "Coding agent with sandboxed project tools and sub-agents."
    )
    parser.add_argument(
        "prompt",
        nargs = "?",
        help = "User prompt for single-shot mode",
    )
    parser.add_argument(
        "--project-root",
        dest = "project_root",
        default = ".",
        help = "Directory every tool is confined to.",
    )
    parser.add_argument(
        "--provider",
        dest = "provider",
        choices = list(PROVIDER_IDS),
        default = None,
        help = "Model provider.",
    )
    parser.add_argument(
        "--auth-mode",
        dest = "auth_mode",
        choices = sorted(AUTH_MODES),
        default = None,
        help = "Kind of stored credential the provider requires (api_key or oauth).",
    )
    parser.add_argument(
        "--model",
        dest = "model",
        default = None,
        help = "Model id (default: provider default).",
    )
    parser.add_argument(
        "--tool-providers",
        dest = "tool_providers",
        default = None,
        help = "JSON file listing tool-provider servers to connect.",
    )
    parser.add_argument(
        "--skill",
        dest = "skills",
        action = "append",
        default = [],
        metavar = "ID=PATH",
        help = "Offer a markdown skill file to load_skill. Repeatable.",
    )
    add_runtime_args(parser)

    args = parser.parse_args(argv)
    args.settings = settings_from_args(args)
    return args


def _build_skill_loader(specs: List[str]) -> Optional[StaticSkillLoader]:
    if not specs:
        return None
    loader = StaticSkillLoader()
    for spec in specs:
        skill_id, _, raw_path = spec.partition("=")
        if not raw_path:
            raise ValueError(f"--skill expects ID=PATH, got {spec!r}")
        loader.add(skill_from_file(skill_id.strip(), Path(raw_path.strip())))
    return loader


async def _run_turn(
    registry: RunRegistry,
    history: List[ConversationMessage],
    settings: AgentSettings,
    credentials: CredentialManager,
    project_root: Path,
    **agent_options: Any,
) -> str:
    loop = asyncio.get_running_loop()
    handler_installed = False
    if sys.platform != "win32":
        loop.add_signal_handler(signal.SIGINT, registry.cancel, RUN_ID)
        handler_installed = True
    try:
        outcome = await run_agent(
            registry = registry,
            run_id = RUN_ID,
            history = history,
            settings = settings,
            credentials = credentials,
            project_root = project_root,
            observer = ConsoleObserver(),
            **agent_options,
        )
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)

    sys.stdout.write("\n")
    if outcome.status != "completed":
        logger.error(outcome.text)
        return ""
    logger.info(f"Tokens: in={outcome.input_tokens} out={outcome.output_tokens}, steps={outcome.steps}")
    return outcome.text


async def _main_async(args) -> int:
    settings: AgentSettings = args.settings
    project_root = Path(args.project_root).resolve()
    credentials = CredentialManager(EnvCredentialStore())
    registry = RunRegistry()
    skill_loader = _build_skill_loader(args.skills)

    rpc_manager = None
    if args.tool_providers:
        rpc_manager = ToolProviderManager()
        connected = await rpc_manager.connect_enabled(load_tool_provider_configs(Path(args.tool_providers)))
        logger.info(f"Connected tool providers: {', '.join(connected) or '(none)'}")

    agent_options = {"skill_loader": skill_loader, "rpc_manager": rpc_manager}
    history: List[ConversationMessage] = []
    try:
        if args.prompt:
            logger.info("=" * 80)
            logger.info(f"Single-shot run in {project_root}")
            logger.info("=" * 80)
            history.append(ConversationMessage.user(args.prompt))
            answer = await _run_turn(registry, history, settings, credentials, project_root, **agent_options)
            return 0 if answer else 1

        logger.info("=" * 80)
        logger.info(f"Interactive mode in {project_root}. Type 'exit' or 'quit' to end.")
        logger.info("=" * 80)
        while True:
            try:
                user_input = (await asyncio.to_thread(input, "\nYou: ")).strip()
            except EOFError:
                break
            if user_input.lower() in {"exit", "quit"}:
                logger.info("Conversation ended.")
                break
            if not user_input:
                continue
            history.append(ConversationMessage.user(user_input))
            answer = await _run_turn(registry, history, settings, credentials, project_root, **agent_options)
            if answer:
                history.append(ConversationMessage.assistant(answer))
            else:
                history.pop()
        return 0
    finally:
        if rpc_manager is not None:
            await rpc_manager.disconnect_all()


def main() -> int:
    """
    CLI entrypoint for single-shot and interactive modes.
    """
    args = parse_args()

    logging.basicConfig(
        level = logging.INFO,
        format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers = [logging.StreamHandler()],
    )
    logger.info(f"Settings: {args.settings.as_dict()}")

    try:
        return asyncio.run(_main_async(args))
    except KeyboardInterrupt:
        logger.info("Conversation interrupted.")
        return 130
    except (CodeloopError, ValueError, OSError) as exc:
        logger.error(f"Error: {exc}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
