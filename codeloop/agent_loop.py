"""Vendor-agnostic streaming tool-call loop."""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .cancellation import CancelToken
from .dispatcher import ToolDispatcher
from .llm.base import (
    ProviderAdapter,
    ReasoningBlock,
    StepSettings,
    TextDelta,
    ToolCallCompleted,
    UsageUpdate,
)
from .messages import AgentResult, ConversationMessage, ToolCall, ToolResult
from .observer import AgentObserver, format_tool_detail
from .subagent import SubAgentScheduler
from .tool_specs import SPAWN_TASK, ToolSpec
from .trace_logger import TraceLogger

logger = logging.getLogger("Agent-Loop")

MAX_STEPS_MESSAGE = "Reached maximum tool steps. Please continue with a follow-up message."


@dataclass
class AgentStep:
    """What one provider round trip produced."""

    text: str = ""
    tool_calls: List[ToolCall] = field(default_factory = list)
    reasoning_blocks: List[Dict[str, Any]] = field(default_factory = list)
    input_tokens: int = 0
    output_tokens: int = 0


class AgentLoop:
    """
    Drive provider steps and tool execution until a final answer.

    Parameters:
        adapter: Provider adapter used for every step.
        dispatcher: Executes tool calls.
        tools: Catalogue offered to the model.
        settings: Model, token budget and reasoning level.
        system_prompt: System prompt sent with each step.
        max_tool_steps: Step budget.
        max_concurrent_tasks: Batch size for spawn_task calls.
        cancel_token: Run cancellation, shared with nested loops.
        observer: Host callbacks.
        trace_logger: Per-step trace logging.
        actor: Label used in trace logs.
    """

    def __init__(
        self,
        adapter: ProviderAdapter,
        dispatcher: ToolDispatcher,
        tools: List[ToolSpec],
        settings: StepSettings,
        system_prompt: str = "",
        max_tool_steps: int = 25,
        max_concurrent_tasks: int = 3,
        cancel_token: Optional[CancelToken] = None,
        observer: Optional[AgentObserver] = None,
        trace_logger: Optional[TraceLogger] = None,
        actor: str = "main",
    ):
        self.adapter = adapter
        self.dispatcher = dispatcher
        self.tools = list(tools)
        self.settings = settings
        self.system_prompt = system_prompt
        self.max_tool_steps = max(1, int(max_tool_steps))
        self.max_concurrent_tasks = max_concurrent_tasks
        self.cancel_token = cancel_token or CancelToken()
        self.observer = observer or AgentObserver()
        self.tracer = trace_logger or TraceLogger(enabled = False, logger = logger)
        self.actor = actor

    async def run(self, history: List[ConversationMessage]) -> AgentResult:
        """
        Run until the model answers without tools or the step budget runs out.

        Parameters:
            history: Conversation so far, ending with the user message. Not mutated.
        """
        messages = list(history)
        result = AgentResult(text = "")

        for step_number in range(1, self.max_tool_steps + 1):
            self.cancel_token.raise_if_cancelled()
            step = await self._stream_step(messages)
            result.steps = step_number
            result.input_tokens += step.input_tokens
            result.output_tokens += step.output_tokens
            self.tracer.log_step(self.actor, step_number, step.text, step.tool_calls, step.input_tokens, step.output_tokens)

            if not step.tool_calls:
                result.text = step.text
                return result

            if step.text.strip():
                self.observer.on_intermediate_text(
                    step.text,
                    {"input_tokens": step.input_tokens, "output_tokens": step.output_tokens},
                )

            assistant = ConversationMessage.assistant(step.text, step.tool_calls)
            if step.reasoning_blocks:
                assistant.metadata["reasoning_blocks"] = step.reasoning_blocks
            messages.append(assistant)
            result.tool_calls.extend(step.tool_calls)

            outputs = await self._handle_tool_calls(step.tool_calls)
            messages.append(ConversationMessage.tool([
                ToolResult(call_id = call.id, content = outputs[call.id])
                for call in step.tool_calls
            ]))

        logger.warning(f"[{self.actor}] stopped after {self.max_tool_steps} tool steps")
        result.text = MAX_STEPS_MESSAGE
        result.reached_step_limit = True
        return result

    async def _stream_step(self, messages: List[ConversationMessage]) -> AgentStep:
        step = AgentStep()
        text_parts: List[str] = []
        events = self.adapter.stream_step(messages, self.tools, self.settings, self.system_prompt)

        async for event in self.cancel_token.iterate(events):
            if isinstance(event, TextDelta):
                text_parts.append(event.text)
                self.observer.on_text_chunk(event.text)
            elif isinstance(event, ToolCallCompleted):
                step.tool_calls.append(ToolCall(id = event.call_id, name = event.name, arguments = event.arguments))
            elif isinstance(event, UsageUpdate):
                step.input_tokens += event.input_tokens
                step.output_tokens += event.output_tokens
            elif isinstance(event, ReasoningBlock):
                step.reasoning_blocks.append(event.block)

        step.text = "".join(text_parts)
        return step

    async def _handle_tool_calls(self, tool_calls: List[ToolCall]) -> Dict[str, str]:
        """Sequential calls first, then spawn_task calls in batches; results keyed by call id."""
        outputs: Dict[str, str] = {}
        delegated = [call for call in tool_calls if call.name == SPAWN_TASK]

        for call in tool_calls:
            if call.name == SPAWN_TASK:
                continue
            self.cancel_token.raise_if_cancelled()
            outputs[call.id] = await self._execute_tool_call(call)

        if delegated:
            scheduler = SubAgentScheduler(
                max_concurrent = self.max_concurrent_tasks,
                observer = self.observer,
                cancel_token = self.cancel_token,
            )
            outputs.update(await scheduler.run(delegated, self._execute_delegated))
        return outputs

    async def _execute_tool_call(self, call: ToolCall) -> str:
        detail = format_tool_detail(call.name, call.arguments)
        correlation_id = self.observer.on_tool_start(call.name, detail, call.arguments)
        started = time.monotonic()
        output = await self.dispatcher.execute(call.name, call.arguments)
        duration_ms = int((time.monotonic() - started) * 1000)
        self.observer.on_tool_end(correlation_id, call.name, detail, output, duration_ms)
        return output

    async def _execute_delegated(self, call: ToolCall, on_progress: Callable[[str], None]) -> str:
        return await self.dispatcher.execute(call.name, call.arguments, on_progress = on_progress)
