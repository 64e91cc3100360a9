"""Anthropic Messages API adapter with per-block tool argument assembly."""

import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import anthropic
import httpx
from anthropic import AsyncAnthropic

from ..credentials import BearerCredential
from ..errors import CredentialMissingError, ProviderTransportError
from ..messages import ConversationMessage
from ..tool_specs import ToolSpec
from .base import (
    ProviderAdapter,
    ReasoningBlock,
    StepEvent,
    StepSettings,
    TextDelta,
    ToolCallArgumentDelta,
    ToolCallCompleted,
    ToolCallStarted,
    UsageUpdate,
    history_for_provider,
    parse_arguments,
    read_obj,
)

logger = logging.getLogger("Anthropic-Adapter")

THINKING_BUDGETS = {
    "low": 2048,
    "medium": 8192,
    "high": 16384,
    "xhigh": 16384,
}

OAUTH_BETA_HEADER = "oauth-2025-04-20,interleaved-thinking-2025-05-14"


class AnthropicAdapter(ProviderAdapter):
    """
    Streams raw Messages API events.

    Tool input arrives either as `input_json_delta` fragments, committed at
    `content_block_stop`, or whole on `content_block_start`.

    Parameters:
        credential: Resolved bearer credential. OAuth tokens use bearer auth.
        base_url: Optional API endpoint.
        client: Pre-built client, mainly for tests.
    """

    provider_id = "anthropic"

    def __init__(
        self,
        credential: Optional[BearerCredential],
        base_url: Optional[str] = None,
        client: Any = None,
    ):
        if client is None:
            if credential is None or not credential.token:
                raise CredentialMissingError(self.provider_id)
            if credential.is_oauth:
                client = AsyncAnthropic(
                    auth_token = credential.token,
                    base_url = base_url,
                    default_headers = {"anthropic-beta": OAUTH_BETA_HEADER},
                )
            else:
                client = AsyncAnthropic(api_key = credential.token, base_url = base_url)
        self.client = client

    def build_request(
        self,
        messages: List[ConversationMessage],
        tools: List[ToolSpec],
        settings: StepSettings,
        system_prompt: str = "",
    ) -> Dict[str, Any]:
        wire_messages = []
        for message in history_for_provider(messages):
            wire = _to_wire_message(message)
            if wire is not None:
                wire_messages.append(wire)

        request: Dict[str, Any] = {
            "model": settings.model,
            "messages": wire_messages,
            "max_tokens": settings.max_tokens,
            "stream": True,
        }
        if system_prompt:
            request["system"] = system_prompt
        if tools:
            request["tools"] = [spec.to_anthropic() for spec in tools]

        budget = THINKING_BUDGETS.get(settings.thinking_level)
        if budget:
            request["max_tokens"] = settings.max_tokens + budget
            request["thinking"] = {"type": "enabled", "budget_tokens": budget}
        request.update(settings.extra)
        return request

    async def stream_step(
        self,
        messages: List[ConversationMessage],
        tools: List[ToolSpec],
        settings: StepSettings,
        system_prompt: str = "",
    ) -> AsyncIterator[StepEvent]:
        request = self.build_request(messages, tools, settings, system_prompt)
        blocks: Dict[int, Dict[str, Any]] = {}
        reported = {"input": 0, "output": 0}

        try:
            stream = await self.client.messages.create(**request)
            async for event in stream:
                event_type = read_obj(event, "type")

                if event_type == "message_start":
                    usage = read_obj(read_obj(event, "message"), "usage")
                    update = _usage_increment(usage, reported)
                    if update is not None:
                        yield update

                elif event_type == "content_block_start":
                    index = read_obj(event, "index") or 0
                    block = read_obj(event, "content_block")
                    block_type = read_obj(block, "type")
                    blocks[index] = {"type": block_type, "fragments": [], "signature": ""}
                    if block_type == "tool_use":
                        blocks[index].update({
                            "id": read_obj(block, "id") or "",
                            "name": read_obj(block, "name") or "",
                            "input": read_obj(block, "input") or {},
                        })
                        yield ToolCallStarted(index = index, call_id = blocks[index]["id"], name = blocks[index]["name"])
                    elif block_type == "thinking":
                        blocks[index]["fragments"].append(read_obj(block, "thinking") or "")
                        blocks[index]["signature"] = read_obj(block, "signature") or ""
                    elif block_type == "redacted_thinking":
                        blocks[index]["data"] = read_obj(block, "data") or ""
                    elif block_type == "text":
                        initial = read_obj(block, "text")
                        if initial:
                            yield TextDelta(text = initial)

                elif event_type == "content_block_delta":
                    index = read_obj(event, "index") or 0
                    delta = read_obj(event, "delta")
                    delta_type = read_obj(delta, "type")
                    state = blocks.setdefault(index, {"type": None, "fragments": [], "signature": ""})
                    if delta_type == "text_delta":
                        text = read_obj(delta, "text") or ""
                        if text:
                            yield TextDelta(text = text)
                    elif delta_type == "input_json_delta":
                        fragment = read_obj(delta, "partial_json") or ""
                        if fragment:
                            state["fragments"].append(fragment)
                            yield ToolCallArgumentDelta(index = index, fragment = fragment)
                    elif delta_type == "thinking_delta":
                        state["fragments"].append(read_obj(delta, "thinking") or "")
                    elif delta_type == "signature_delta":
                        state["signature"] += read_obj(delta, "signature") or ""

                elif event_type == "content_block_stop":
                    index = read_obj(event, "index") or 0
                    state = blocks.pop(index, None)
                    if state is None:
                        continue
                    committed = _commit_block(state)
                    if committed is not None:
                        yield committed

                elif event_type == "message_delta":
                    update = _usage_increment(read_obj(event, "usage"), reported)
                    if update is not None:
                        yield update
        except (anthropic.APIError, httpx.HTTPError) as exc:
            raise ProviderTransportError(self.provider_id, str(exc) or type(exc).__name__) from exc


def _commit_block(state: Dict[str, Any]) -> Optional[StepEvent]:
    block_type = state.get("type")
    if block_type == "tool_use":
        if not state.get("id") or not state.get("name"):
            logger.warning("Dropping tool_use block without id or name")
            return None
        if state["fragments"]:
            arguments = parse_arguments("".join(state["fragments"]), state["name"])
        else:
            arguments = state["input"] if isinstance(state["input"], dict) else {}
        return ToolCallCompleted(call_id = state["id"], name = state["name"], arguments = arguments)
    if block_type == "thinking":
        return ReasoningBlock(block = {
            "type": "thinking",
            "thinking": "".join(state["fragments"]),
            "signature": state["signature"],
        })
    if block_type == "redacted_thinking":
        return ReasoningBlock(block = {"type": "redacted_thinking", "data": state.get("data", "")})
    return None


def _usage_increment(usage: Any, reported: Dict[str, int]) -> Optional[UsageUpdate]:
    """
    Turn cumulative usage counters into an increment over what was already reported.

    Parameters:
        usage: Usage object from message_start or message_delta.
        reported: Running totals already emitted for this message; updated in place.
    """
    if usage is None:
        return None
    input_total = read_obj(usage, "input_tokens")
    output_total = read_obj(usage, "output_tokens")

    input_delta = 0
    if input_total is not None and input_total > reported["input"]:
        input_delta = input_total - reported["input"]
        reported["input"] = input_total
    output_delta = 0
    if output_total is not None and output_total > reported["output"]:
        output_delta = output_total - reported["output"]
        reported["output"] = output_total

    if not input_delta and not output_delta:
        return None
    return UsageUpdate(input_tokens = input_delta, output_tokens = output_delta)


def _to_wire_message(message: ConversationMessage) -> Optional[Dict[str, Any]]:
    if message.role == "tool":
        return {
            "role": "user",
            "content": [
                {"type": "tool_result", "tool_use_id": result.call_id, "content": result.content}
                for result in message.tool_results
            ],
        }

    if message.role == "assistant":
        blocks: List[Dict[str, Any]] = list(message.metadata.get("reasoning_blocks") or [])
        if message.content:
            blocks.append({"type": "text", "text": message.content})
        for call in message.tool_calls:
            blocks.append({"type": "tool_use", "id": call.id, "name": call.name, "input": call.arguments})
        if not blocks:
            return None
        return {"role": "assistant", "content": blocks}

    if message.images:
        content: List[Dict[str, Any]] = [
            {
                "type": "image",
                "source": {"type": "base64", "media_type": image.media_type, "data": image.data},
            }
            for image in message.images
        ]
        if message.content:
            content.append({"type": "text", "text": message.content})
        return {"role": "user", "content": content}

    return {"role": "user", "content": message.content}
