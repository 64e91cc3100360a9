"""Observer callbacks a host implements to follow a run."""

import uuid
from typing import Any, Dict

from .messages import TrailEntry


class AgentObserver:
    """No-op observer. Hosts override the callbacks they care about."""

    def on_text_chunk(self, text: str) -> None:
        pass

    def on_tool_start(self, name: str, detail: str, args: Dict[str, Any]) -> str:
        """Return the correlation id used for the matching on_tool_end."""
        return uuid.uuid4().hex[:12]

    def on_tool_end(self, correlation_id: str, name: str, detail: str, result: str, duration_ms: int) -> None:
        pass

    def on_intermediate_text(self, text: str, metadata: Dict[str, Any]) -> None:
        pass

    def on_sub_agent_progress(self, correlation_id: str, entry: TrailEntry) -> None:
        pass


def format_tool_detail(name: str, args: Dict[str, Any]) -> str:
    """Short human-readable label for a tool call."""
    args = args if isinstance(args, dict) else {}
    if name == "list_files":
        return f"Listing {args.get('path') or '.'}"
    if name == "read_file":
        return f"Reading {args.get('path', '')}"
    if name == "write_file":
        return f"Writing {args.get('path', '')}"
    if name == "edit_file":
        return f"Editing {args.get('path', '')}"
    if name == "glob":
        return f"Finding {args.get('pattern', '')}"
    if name == "grep":
        return f"Searching for {args.get('pattern', '')}"
    if name == "run_command":
        return f"Running: {args.get('command', '')}"
    if name == "load_skill":
        return f"Loading skill: {args.get('skill_id', '')}"
    if name == "spawn_task":
        return f"Task: {args.get('description', '')}"
    return name
