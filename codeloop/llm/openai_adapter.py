"""OpenAI-compatible chat completions adapter (used for the codex provider)."""

import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx
import openai
from openai import AsyncOpenAI

from ..credentials import BearerCredential
from ..errors import CredentialMissingError, ProviderTransportError
from ..messages import ConversationMessage
from ..tool_specs import ToolSpec
from .base import (
    ProviderAdapter,
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

logger = logging.getLogger("OpenAI-Adapter")

REASONING_EFFORT = {
    "low": "low",
    "medium": "medium",
    "high": "high",
    "xhigh": "high",
}


class OpenAIAdapter(ProviderAdapter):
    """
    Streams chat completions and assembles tool calls from indexed fragments.

    Parameters:
        credential: Resolved bearer credential.
        base_url: Optional OpenAI-compatible endpoint.
        client: Pre-built client, mainly for tests.
    """

    provider_id = "codex"

    def __init__(
        self,
        credential: Optional[BearerCredential],
        base_url: Optional[str] = None,
        client: Any = None,
    ):
        if client is None:
            if credential is None or not credential.token:
                raise CredentialMissingError(self.provider_id)
            client = AsyncOpenAI(api_key = credential.token, base_url = base_url)
        self.client = client

    def build_request(
        self,
        messages: List[ConversationMessage],
        tools: List[ToolSpec],
        settings: StepSettings,
        system_prompt: str = "",
    ) -> Dict[str, Any]:
        wire_messages: List[Dict[str, Any]] = []
        if system_prompt:
            wire_messages.append({"role": "system", "content": system_prompt})
        for message in history_for_provider(messages):
            wire_messages.extend(_to_wire_messages(message))

        request: Dict[str, Any] = {
            "model": settings.model,
            "messages": wire_messages,
            "max_completion_tokens": settings.max_tokens,
            "stream": True,
            "stream_options": {"include_usage": True},
        }
        if tools:
            request["tools"] = [spec.to_openai() for spec in tools]
        effort = REASONING_EFFORT.get(settings.thinking_level)
        if effort:
            request["reasoning_effort"] = effort
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
        tool_buffers: Dict[int, Dict[str, Any]] = {}

        try:
            stream = await self.client.chat.completions.create(**request)
            async for chunk in stream:
                usage = read_obj(chunk, "usage")
                if usage is not None:
                    yield UsageUpdate(
                        input_tokens = read_obj(usage, "prompt_tokens") or 0,
                        output_tokens = read_obj(usage, "completion_tokens") or 0,
                    )

                choices = read_obj(chunk, "choices") or []
                if not choices:
                    continue
                delta = read_obj(choices[0], "delta")
                if delta is None:
                    continue

                content = read_obj(delta, "content")
                if isinstance(content, str) and content:
                    yield TextDelta(text = content)

                delta_tool_calls = read_obj(delta, "tool_calls")
                if delta_tool_calls:
                    for event in _merge_stream_tool_calls(tool_buffers, delta_tool_calls):
                        yield event
        except (openai.APIError, httpx.HTTPError) as exc:
            raise ProviderTransportError(self.provider_id, str(exc) or type(exc).__name__) from exc

        for index in sorted(tool_buffers.keys()):
            buffer = tool_buffers[index]
            if not buffer["name"]:
                logger.warning(f"Dropping tool call at index {index}: no name streamed")
                continue
            yield ToolCallCompleted(
                call_id = buffer["id"],
                name = buffer["name"],
                arguments = parse_arguments(buffer["arguments"], buffer["name"]),
            )


def _merge_stream_tool_calls(tool_buffers: Dict[int, Dict[str, Any]], delta_tool_calls: Any) -> List[StepEvent]:
    """Merge incremental stream tool-call chunks by index and report what changed."""
    events: List[StepEvent] = []
    for delta_tool_call in delta_tool_calls:
        raw_index = read_obj(delta_tool_call, "index")
        index = int(raw_index) if raw_index is not None else len(tool_buffers)

        if index not in tool_buffers:
            tool_buffers[index] = {
                "id": f"call_{index}",
                "name": "",
                "arguments": "",
                "announced": False,
            }

        buffer = tool_buffers[index]
        tool_id = read_obj(delta_tool_call, "id")
        if tool_id:
            buffer["id"] = tool_id

        function_payload = read_obj(delta_tool_call, "function")
        if not function_payload:
            continue

        name_piece = read_obj(function_payload, "name")
        if name_piece:
            existing_name = buffer["name"]
            if not existing_name:
                buffer["name"] = name_piece
            elif not existing_name.endswith(name_piece):
                buffer["name"] += name_piece

        if buffer["name"] and not buffer["announced"]:
            buffer["announced"] = True
            events.append(ToolCallStarted(index = index, call_id = buffer["id"], name = buffer["name"]))

        args_piece = read_obj(function_payload, "arguments")
        if args_piece:
            buffer["arguments"] += args_piece
            events.append(ToolCallArgumentDelta(index = index, fragment = args_piece))
    return events


def _to_wire_messages(message: ConversationMessage) -> List[Dict[str, Any]]:
    if message.role == "tool":
        return [
            {"role": "tool", "tool_call_id": result.call_id, "content": result.content}
            for result in message.tool_results
        ]

    if message.role == "assistant":
        wire: Dict[str, Any] = {"role": "assistant", "content": message.content or ""}
        if message.tool_calls:
            wire["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {
                        "name": call.name,
                        "arguments": json.dumps(call.arguments, ensure_ascii = False),
                    },
                }
                for call in message.tool_calls
            ]
        return [wire]

    if message.images:
        parts: List[Dict[str, Any]] = []
        if message.content:
            parts.append({"type": "text", "text": message.content})
        for image in message.images:
            parts.append({
                "type": "image_url",
                "image_url": {"url": f"data:{image.media_type};base64,{image.data}"},
            })
        return [{"role": "user", "content": parts}]

    return [{"role": "user", "content": message.content}]
