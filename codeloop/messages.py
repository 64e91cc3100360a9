"""Conversation records passed between the loop, adapters and observers."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


@dataclass
class ImageAttachment:
    """Base64 image attached to a user message."""

    data: str
    media_type: str = "image/png"
    name: str = ""


@dataclass
class ToolCall:
    """A committed tool invocation requested by the model."""

    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory = dict)


@dataclass
class ToolResult:
    """Text output for exactly one ToolCall."""

    call_id: str
    content: str


@dataclass
class ConversationMessage:
    """
    One message in the conversation history.

    Parameters:
        role: user, assistant or tool.
        content: Message text.
        images: Attachments sent with user messages.
        metadata: Token counts, pending flags and task descriptors for the host.
        tool_calls: Calls requested by an assistant message.
        tool_results: Results carried by a tool message, in call order.
    """

    role: str
    content: str = ""
    images: List[ImageAttachment] = field(default_factory = list)
    metadata: Dict[str, Any] = field(default_factory = dict)
    tool_calls: List[ToolCall] = field(default_factory = list)
    tool_results: List[ToolResult] = field(default_factory = list)

    @classmethod
    def user(cls, content: str, images: Optional[List[ImageAttachment]] = None) -> "ConversationMessage":
        return cls(role = "user", content = content, images = list(images or []))

    @classmethod
    def assistant(cls, content: str, tool_calls: Optional[List[ToolCall]] = None) -> "ConversationMessage":
        return cls(role = "assistant", content = content, tool_calls = list(tool_calls or []))

    @classmethod
    def tool(cls, results: List[ToolResult]) -> "ConversationMessage":
        return cls(role = "tool", tool_results = list(results))


@dataclass
class TrailEntry:
    """One progress record of a delegated task."""

    kind: str
    summary: str
    timestamp: str = ""

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).isoformat()


@dataclass
class AgentResult:
    """Final output of a completed agent run."""

    text: str
    input_tokens: int = 0
    output_tokens: int = 0
    tool_calls: List[ToolCall] = field(default_factory = list)
    steps: int = 0
    reached_step_limit: bool = False
