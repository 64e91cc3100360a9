"""Per-step LLM response trace logger."""

import json
import logging
from typing import List, Optional

from .messages import ToolCall


class TraceLogger:
    """Conditional trace logging for assistant steps and tool calls."""

    def __init__(self, enabled: bool, logger: Optional[logging.Logger] = None):
        self.enabled = bool(enabled)
        self.logger = logger or logging.getLogger("TraceLogger")

    def log_step(
        self,
        actor: str,
        step_number: int,
        assistant_content: str,
        tool_calls: Optional[List[ToolCall]] = None,
        input_tokens: int = 0,
        output_tokens: int = 0,
    ) -> None:
        """Log assistant text, tool-call summaries, and token usage."""
        if not self.enabled:
            return

        content_preview = _shorten(assistant_content or "", 400)
        self.logger.info(f"[LLM:{actor}#{step_number}] assistant: {content_preview or '(empty)'}")

        if tool_calls:
            summary = "; ".join(_summarize_tool_call(tool_call) for tool_call in tool_calls)
            self.logger.info(f"[LLM:{actor}#{step_number}] tool_calls: {summary}")

        self.logger.info(f"[LLM:{actor}#{step_number}] usage: in={input_tokens} out={output_tokens}")


def _summarize_tool_call(tool_call: ToolCall) -> str:
    """Build compact 'name(args)' summary from a tool call."""
    try:
        args_preview = json.dumps(tool_call.arguments, ensure_ascii = False)
    except (TypeError, ValueError):
        args_preview = str(tool_call.arguments)
    return f"{tool_call.name or 'unknown'}({_shorten(args_preview, 160)})"


def _shorten(text: str, max_chars: int) -> str:
    """Trim long text for concise logs."""
    normalized = text.replace("\n", "\\n").strip()
    if len(normalized) <= max_chars:
        return normalized
    return normalized[:max_chars] + "..."
