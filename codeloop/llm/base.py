"""Provider-agnostic step events and the adapter interface.

The agent loop depends only on these types; each vendor module turns its own
stream into the same event sequence.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Union

from ..messages import ConversationMessage
from ..tool_specs import ToolSpec

logger = logging.getLogger("LLM-Adapter")


@dataclass
class TextDelta:
    text: str


@dataclass
class ToolCallStarted:
    index: int
    call_id: str
    name: str


@dataclass
class ToolCallArgumentDelta:
    index: int
    fragment: str


@dataclass
class ToolCallCompleted:
    call_id: str
    name: str
    arguments: Dict[str, Any]


@dataclass
class UsageUpdate:
    """Token usage increment. The loop adds these, it never overwrites."""

    input_tokens: int = 0
    output_tokens: int = 0


@dataclass
class ReasoningBlock:
    """Opaque provider block that must be echoed back with the assistant turn."""

    block: Dict[str, Any]


StepEvent = Union[TextDelta, ToolCallStarted, ToolCallArgumentDelta, ToolCallCompleted, UsageUpdate, ReasoningBlock]


@dataclass
class StepSettings:
    """
    Generation settings for one provider request.

    Parameters:
        model: Model id.
        max_tokens: Output token limit.
        thinking_level: none, low, medium, high or xhigh.
    """

    model: str
    max_tokens: int = 16384
    thinking_level: str = "none"
    extra: Dict[str, Any] = field(default_factory = dict)


class ProviderAdapter(ABC):
    """One vendor protocol behind a uniform streaming interface."""

    provider_id: str = ""

    @abstractmethod
    def stream_step(
        self,
        messages: List[ConversationMessage],
        tools: List[ToolSpec],
        settings: StepSettings,
        system_prompt: str = "",
    ) -> AsyncIterator[StepEvent]:
        """Issue one request and yield its events. The iterator is finite and not restartable."""


def parse_arguments(raw: str, call_name: str = "") -> Dict[str, Any]:
    """
    Parse accumulated argument JSON.

    Parameters:
        raw: Concatenated argument fragments.
        call_name: Tool name, for the warning only.
    """
    if not raw or not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        cleaned = "".join(ch for ch in raw if ch >= " " or ch in "\t\n\r")
        try:
            parsed = json.loads(cleaned, strict = False)
        except json.JSONDecodeError as exc:
            logger.warning(f"Failed to parse arguments for {call_name or 'tool call'}: {exc}")
            return {}
    if not isinstance(parsed, dict):
        logger.warning(f"Arguments for {call_name or 'tool call'} are not an object")
        return {}
    return parsed


def read_obj(obj: Any, key: str) -> Any:
    """Read key from object or dict safely."""
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def history_for_provider(messages: List[ConversationMessage]) -> List[ConversationMessage]:
    """Drop host-only records: tool rows without results and pending placeholders."""
    kept = []
    for message in messages:
        if message.role == "tool" and not message.tool_results:
            continue
        if message.metadata.get("pending"):
            continue
        kept.append(message)
    return kept
