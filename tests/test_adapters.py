"""Tests for the OpenAI and Anthropic stream adapters with fake vendor clients."""

import asyncio
import os
import sys
from types import SimpleNamespace

import httpx

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from tests.utils import run_tests, step_settings

from codeloop.errors import CredentialMissingError, ProviderTransportError
from codeloop.llm import build_adapter
from codeloop.llm.anthropic_adapter import AnthropicAdapter
from codeloop.llm.base import (
    ReasoningBlock,
    StepSettings,
    TextDelta,
    ToolCallArgumentDelta,
    ToolCallCompleted,
    ToolCallStarted,
    UsageUpdate,
)
from codeloop.llm.openai_adapter import OpenAIAdapter
from codeloop.messages import ConversationMessage, ImageAttachment, ToolCall, ToolResult
from codeloop.tool_specs import build_catalogue


class FakeStream:
    def __init__(self, items, error = None):
        self.items = list(items)
        self.error = error

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for item in self.items:
            yield item
        if self.error is not None:
            raise self.error


class FakeCreate:
    def __init__(self, stream):
        self.stream = stream
        self.requests = []

    async def __call__(self, **request):
        self.requests.append(request)
        return self.stream


def _openai_client(stream):
    create = FakeCreate(stream)
    return SimpleNamespace(chat = SimpleNamespace(completions = SimpleNamespace(create = create))), create


def _anthropic_client(stream):
    create = FakeCreate(stream)
    return SimpleNamespace(messages = SimpleNamespace(create = create)), create


def _collect(adapter, messages = None, settings = None, tools = None, system_prompt = ""):
    async def consume():
        return [
            event async for event in adapter.stream_step(
                messages or [ConversationMessage.user("hi")],
                tools if tools is not None else build_catalogue(),
                settings or step_settings(),
                system_prompt,
            )
        ]
    return asyncio.run(consume())


def _chunk(content = None, tool_calls = None, usage = None):
    delta = {}
    if content is not None:
        delta["content"] = content
    if tool_calls is not None:
        delta["tool_calls"] = tool_calls
    return {"choices": [{"delta": delta}] if delta else [], "usage": usage}


def test_openai_fragments_merge_by_index():
    """Argument fragments split across chunks form one call per index."""
    stream = FakeStream([
        _chunk(content = "Let me check."),
        _chunk(tool_calls = [{"index": 0, "id": "call_a", "function": {"name": "read_file", "arguments": '{"pa'}}]),
        _chunk(tool_calls = [{"index": 1, "id": "call_b", "function": {"name": "glob", "arguments": ""}}]),
        _chunk(tool_calls = [{"index": 0, "function": {"arguments": 'th": "a.txt"}'}}]),
        _chunk(tool_calls = [{"index": 1, "function": {"arguments": '{"pattern": "*.py"}'}}]),
        _chunk(usage = {"prompt_tokens": 120, "completion_tokens": 30}),
    ])
    client, create = _openai_client(stream)
    events = _collect(OpenAIAdapter(None, client = client), system_prompt = "sys")

    completed = [event for event in events if isinstance(event, ToolCallCompleted)]
    assert completed == [
        ToolCallCompleted(call_id = "call_a", name = "read_file", arguments = {"path": "a.txt"}),
        ToolCallCompleted(call_id = "call_b", name = "glob", arguments = {"pattern": "*.py"}),
    ], completed
    started = [event for event in events if isinstance(event, ToolCallStarted)]
    assert [(event.index, event.name) for event in started] == [(0, "read_file"), (1, "glob")]
    assert events[0] == TextDelta(text = "Let me check.")
    assert UsageUpdate(input_tokens = 120, output_tokens = 30) in events
    assert sum(isinstance(event, ToolCallArgumentDelta) for event in events) == 3

    request = create.requests[0]
    assert request["messages"][0] == {"role": "system", "content": "sys"}
    assert request["stream"] is True and request["stream_options"] == {"include_usage": True}
    assert request["tools"][0]["type"] == "function"
    assert "reasoning_effort" not in request
    print("PASS: test_openai_fragments_merge_by_index")


def test_openai_missing_id_and_bad_arguments():
    stream = FakeStream([
        _chunk(tool_calls = [{"index": 0, "function": {"name": "list_files", "arguments": "{not json"}}]),
        _chunk(tool_calls = [{"index": 1, "id": "nameless", "function": {"arguments": "{}"}}]),
    ])
    client, _ = _openai_client(stream)
    events = _collect(OpenAIAdapter(None, client = client))
    completed = [event for event in events if isinstance(event, ToolCallCompleted)]
    assert completed == [ToolCallCompleted(call_id = "call_0", name = "list_files", arguments = {})], completed
    print("PASS: test_openai_missing_id_and_bad_arguments")


def test_openai_request_shape():
    client, create = _openai_client(FakeStream([]))
    history = [
        ConversationMessage.user("look", images = [ImageAttachment(data = "QUJD", media_type = "image/png")]),
        ConversationMessage.assistant("", [ToolCall(id = "c1", name = "read_file", arguments = {"path": "a"})]),
        ConversationMessage.tool([ToolResult(call_id = "c1", content = "alpha")]),
        ConversationMessage(role = "assistant", content = "typing...", metadata = {"pending": True}),
    ]
    settings = StepSettings(model = "gpt-5.3-codex", max_tokens = 512, thinking_level = "xhigh")
    _collect(OpenAIAdapter(None, client = client), messages = history, settings = settings, tools = [])

    request = create.requests[0]
    assert request["model"] == "gpt-5.3-codex" and request["max_completion_tokens"] == 512
    assert request["reasoning_effort"] == "high"
    assert "tools" not in request
    wire = request["messages"]
    assert len(wire) == 3, f"Pending placeholder must be dropped: {wire}"
    assert wire[0]["content"][1]["image_url"]["url"] == "data:image/png;base64,QUJD"
    assert wire[1]["tool_calls"][0]["function"] == {"name": "read_file", "arguments": '{"path": "a"}'}
    assert wire[2] == {"role": "tool", "tool_call_id": "c1", "content": "alpha"}
    print("PASS: test_openai_request_shape")


def test_openai_transport_error_is_wrapped():
    request = httpx.Request("POST", "https://example.invalid")
    stream = FakeStream([_chunk(content = "par")], error = httpx.ReadError("reset", request = request))
    client, _ = _openai_client(stream)
    try:
        _collect(OpenAIAdapter(None, client = client))
    except ProviderTransportError as exc:
        assert exc.provider_id == "codex"
    else:
        raise AssertionError("Expected ProviderTransportError")
    print("PASS: test_openai_transport_error_is_wrapped")


def _anthropic_events():
    return [
        {"type": "message_start", "message": {"usage": {"input_tokens": 50, "output_tokens": 1}}},
        {"type": "content_block_start", "index": 0, "content_block": {"type": "thinking", "thinking": ""}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "thinking_delta", "thinking": "plan it"}},
        {"type": "content_block_delta", "index": 0, "delta": {"type": "signature_delta", "signature": "sig"}},
        {"type": "content_block_stop", "index": 0},
        {"type": "content_block_start", "index": 1, "content_block": {"type": "text", "text": ""}},
        {"type": "content_block_delta", "index": 1, "delta": {"type": "text_delta", "text": "Reading."}},
        {"type": "content_block_stop", "index": 1},
        {"type": "content_block_start", "index": 2, "content_block": {"type": "tool_use", "id": "tu_1", "name": "read_file", "input": {}}},
        {"type": "content_block_delta", "index": 2, "delta": {"type": "input_json_delta", "partial_json": '{"path": '}},
        {"type": "content_block_delta", "index": 2, "delta": {"type": "input_json_delta", "partial_json": '"a.txt"}'}},
        {"type": "content_block_stop", "index": 2},
        {"type": "content_block_start", "index": 3, "content_block": {"type": "tool_use", "id": "tu_2", "name": "glob", "input": {"pattern": "*.md"}}},
        {"type": "content_block_stop", "index": 3},
        {"type": "message_delta", "usage": {"output_tokens": 40}},
        {"type": "message_stop"},
    ]


def test_anthropic_blocks_become_events():
    """Fragmented and atomic tool input, thinking blocks and cumulative usage."""
    client, create = _anthropic_client(FakeStream(_anthropic_events()))
    events = _collect(AnthropicAdapter(None, client = client), system_prompt = "sys")

    completed = [event for event in events if isinstance(event, ToolCallCompleted)]
    assert completed == [
        ToolCallCompleted(call_id = "tu_1", name = "read_file", arguments = {"path": "a.txt"}),
        ToolCallCompleted(call_id = "tu_2", name = "glob", arguments = {"pattern": "*.md"}),
    ], completed

    reasoning = [event for event in events if isinstance(event, ReasoningBlock)]
    assert reasoning == [ReasoningBlock(block = {"type": "thinking", "thinking": "plan it", "signature": "sig"})]

    text = "".join(event.text for event in events if isinstance(event, TextDelta))
    assert text == "Reading."

    usage = [event for event in events if isinstance(event, UsageUpdate)]
    assert sum(event.input_tokens for event in usage) == 50
    assert sum(event.output_tokens for event in usage) == 40, usage

    request = create.requests[0]
    assert request["system"] == "sys" and "thinking" not in request
    assert request["tools"][0]["input_schema"]["type"] == "object"
    print("PASS: test_anthropic_blocks_become_events")


def test_anthropic_thinking_budget_and_history():
    client, create = _anthropic_client(FakeStream([]))
    block = {"type": "thinking", "thinking": "t", "signature": "s"}
    assistant = ConversationMessage.assistant("ok", [ToolCall(id = "tu_1", name = "glob", arguments = {"pattern": "*"})])
    assistant.metadata["reasoning_blocks"] = [block]
    history = [
        ConversationMessage.user("hi", images = [ImageAttachment(data = "QUJD", media_type = "image/jpeg")]),
        assistant,
        ConversationMessage.tool([ToolResult(call_id = "tu_1", content = "a.md")]),
    ]
    settings = StepSettings(model = "claude-sonnet-4-5", max_tokens = 1000, thinking_level = "medium")
    _collect(AnthropicAdapter(None, client = client), messages = history, settings = settings)

    request = create.requests[0]
    assert request["thinking"] == {"type": "enabled", "budget_tokens": 8192}
    assert request["max_tokens"] == 1000 + 8192
    wire = request["messages"]
    assert wire[0]["content"][0]["source"]["media_type"] == "image/jpeg"
    assert wire[1]["content"][0] == block, "Reasoning blocks lead the assistant turn"
    assert wire[1]["content"][2] == {"type": "tool_use", "id": "tu_1", "name": "glob", "input": {"pattern": "*"}}
    assert wire[2] == {
        "role": "user",
        "content": [{"type": "tool_result", "tool_use_id": "tu_1", "content": "a.md"}],
    }
    print("PASS: test_anthropic_thinking_budget_and_history")


def test_build_adapter_requires_credential():
    for provider_id in ("anthropic", "codex"):
        try:
            build_adapter(provider_id, None)
        except CredentialMissingError as exc:
            assert exc.provider_id == provider_id
        else:
            raise AssertionError(f"{provider_id} adapter without credential must fail")
    print("PASS: test_build_adapter_requires_credential")


if __name__ == "__main__":
    sys.exit(0 if run_tests([
        test_openai_fragments_merge_by_index,
        test_openai_missing_id_and_bad_arguments,
        test_openai_request_shape,
        test_openai_transport_error_is_wrapped,
        test_anthropic_blocks_become_events,
        test_anthropic_thinking_budget_and_history,
        test_build_adapter_requires_credential,
    ]) else 1)
