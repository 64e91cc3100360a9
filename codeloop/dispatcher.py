"""Routes validated tool calls to their implementation and returns text."""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from . import project_tools
from .cancellation import CancelToken
from .errors import RunCancelled, ToolValidationError
from .skills import SkillLoader, format_skill_content
from .tool_specs import LOAD_SKILL, SPAWN_TASK, ToolSpec, parse_tool_arguments

logger = logging.getLogger("Tool-Dispatcher")


class ToolDispatcher:
    """
    Execute tool calls for one agent and turn every failure except cancellation into text.

    Parameters:
        project_root: Sandbox root for file and command tools.
        tools: Catalogue this agent was offered; other names are unknown tools.
        cancel_token: Run cancellation, forwarded to shell commands.
        command_timeout: Seconds before run_command is killed.
        skill_loader: Serves load_skill.
        sub_agent_runner: Serves spawn_task; must provide `async run(prompt, task_type, on_progress)`.
        rpc_manager: Serves tools that carry a server_id.
        shell: Shell executable override for run_command.
    """

    def __init__(
        self,
        project_root: Path,
        tools: List[ToolSpec],
        cancel_token: Optional[CancelToken] = None,
        command_timeout: float = project_tools.DEFAULT_COMMAND_TIMEOUT,
        skill_loader: Optional[SkillLoader] = None,
        sub_agent_runner: Any = None,
        rpc_manager: Any = None,
        shell: Optional[str] = None,
    ):
        self.project_root = Path(project_root)
        self.tools = list(tools)
        self.cancel_token = cancel_token
        self.command_timeout = command_timeout
        self.skill_loader = skill_loader
        self.sub_agent_runner = sub_agent_runner
        self.rpc_manager = rpc_manager
        self.shell = shell
        self._allowed = {spec.name: spec for spec in self.tools}

    async def execute(
        self,
        name: str,
        arguments: Dict[str, Any],
        on_progress: Optional[Callable[[str], None]] = None,
    ) -> str:
        """
        Run one tool call and return its textual result.

        Parameters:
            name: Tool name from the model.
            arguments: Argument map from the adapter.
            on_progress: Receives one summary per nested tool call of a spawned task.
        """
        spec = self._allowed.get(name)
        if spec is None:
            return f"Unknown tool: {name}"

        try:
            return await self._execute_tool_call(spec, arguments, on_progress)
        except (RunCancelled, asyncio.CancelledError):
            raise
        except Exception as exc:
            logger.warning(f"Tool '{name}' failed: {exc}")
            return f"Tool error: {exc}"

    async def _execute_tool_call(
        self,
        spec: ToolSpec,
        arguments: Dict[str, Any],
        on_progress: Optional[Callable[[str], None]],
    ) -> str:
        if spec.server_id is not None:
            if self.rpc_manager is None:
                raise ToolValidationError(f"No tool provider manager for {spec.name}", tool_name = spec.name)
            if not isinstance(arguments, dict):
                raise ToolValidationError(f"Arguments for {spec.name} must be an object", tool_name = spec.name)
            return await self.rpc_manager.call_tool(spec.server_id, spec.name, arguments)

        args = parse_tool_arguments(spec.name, arguments)
        root = self.project_root

        if spec.name == "list_files":
            entries = project_tools.list_files(root, args.path)
            return json.dumps(entries, ensure_ascii = False, indent = 2)

        if spec.name == "read_file":
            return project_tools.read_text_file(root, args.path)

        if spec.name == "write_file":
            project_tools.write_text_file(root, args.path, args.content)
            return f"Successfully wrote {args.path}"

        if spec.name == "edit_file":
            count = project_tools.edit_file(
                root,
                args.path,
                old_string = args.old_string,
                new_string = args.new_string,
                replace_all = args.replace_all,
            )
            return f"Replaced {count} occurrence(s) in {args.path}"

        if spec.name == "glob":
            result = await asyncio.to_thread(project_tools.glob_files, root, args.pattern, args.path)
            if not result.matches:
                return "No files matched the pattern."
            output = "\n".join(result.matches)
            if result.truncated:
                output += f"\n... (truncated at {len(result.matches)} results)"
            return output

        if spec.name == "grep":
            result = await asyncio.to_thread(
                project_tools.grep_files,
                root,
                args.pattern,
                args.include,
                args.path,
            )
            if not result.matches:
                return "No matches found."
            lines = [f"{match.file}:{match.line}: {match.content}" for match in result.matches]
            if result.truncated:
                lines.append(
                    f"\n... (truncated at {len(result.matches)} matches across {result.file_count} files)"
                )
            else:
                lines.append(f"\n{len(result.matches)} matches in {result.file_count} files")
            return "\n".join(lines)

        if spec.name == "run_command":
            output = await project_tools.run_command(
                root,
                args.command,
                timeout = self.command_timeout,
                cancel_token = self.cancel_token,
                shell = self.shell,
            )
            return project_tools.format_command_output(output)

        if spec.name == LOAD_SKILL:
            skill = self.skill_loader.load_by_name(args.skill_id) if self.skill_loader else None
            if skill is None:
                return f"Skill not found: {args.skill_id}"
            return format_skill_content(skill)

        if spec.name == SPAWN_TASK:
            if self.sub_agent_runner is None:
                raise ToolValidationError("Sub-agents are not available here", tool_name = spec.name)
            return await self.sub_agent_runner.run(
                prompt = args.prompt,
                task_type = args.type,
                on_progress = on_progress,
            )

        return f"Unknown tool: {spec.name}"
