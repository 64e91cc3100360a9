"""
Shared test utilities for this repository.

Provides:
1) Scripted provider adapter that replays step events
2) Recording observer
3) Settings and credential helpers for offline runs
4) Common test runner
"""

import copy
import os
import sys
import traceback
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from codeloop.llm.base import (
    ProviderAdapter,
    StepSettings,
    TextDelta,
    ToolCallCompleted,
    UsageUpdate,
)
from codeloop.messages import ConversationMessage, TrailEntry
from codeloop.observer import AgentObserver
from codeloop.runtime_config import AgentSettings, ProviderConfig

FAKE_TOOL_SERVER = PROJECT_ROOT / "tests" / "fixtures" / "fake_tool_server.py"

Script = Union[List[Any], Callable[[List[ConversationMessage]], List[Any]]]


class ScriptedAdapter(ProviderAdapter):
    """
    Replay one scripted event list per stream_step call.

    Parameters:
        scripts: Event lists, or callables receiving the messages and returning events.
        provider_id: Reported provider id.
    """

    def __init__(self, scripts: List[Script], provider_id: str = "anthropic"):
        self.scripts = list(scripts)
        self.provider_id = provider_id
        self.requests: List[Dict[str, Any]] = []

    async def stream_step(self, messages, tools, settings, system_prompt = ""):
        self.requests.append(
            {
                "messages": copy.deepcopy(messages),
                "tools": [spec.name for spec in tools],
                "settings": settings,
                "system_prompt": system_prompt,
            }
        )
        if not self.scripts:
            raise AssertionError("ScriptedAdapter ran out of scripted steps")
        script = self.scripts.pop(0)
        events = script(messages) if callable(script) else script
        for event in events:
            if isinstance(event, BaseException):
                raise event
            yield event


def text_step(text: str, input_tokens: int = 10, output_tokens: int = 5) -> List[Any]:
    """Events of a plain text answer."""
    return [
        UsageUpdate(input_tokens = input_tokens, output_tokens = 0),
        TextDelta(text = text),
        UsageUpdate(input_tokens = 0, output_tokens = output_tokens),
    ]


def tool_step(calls: List[Dict[str, Any]], text: str = "") -> List[Any]:
    """
    Events of a step requesting tools.

    Parameters:
        calls: Dicts with id, name and arguments.
        text: Optional narration streamed before the calls.
    """
    events: List[Any] = [UsageUpdate(input_tokens = 10, output_tokens = 0)]
    if text:
        events.append(TextDelta(text = text))
    for call in calls:
        events.append(
            ToolCallCompleted(
                call_id = call["id"],
                name = call["name"],
                arguments = call.get("arguments", {}),
            )
        )
    events.append(UsageUpdate(input_tokens = 0, output_tokens = 7))
    return events


class RecordingObserver(AgentObserver):
    """Keeps every callback in order as (kind, payload) tuples."""

    def __init__(self):
        self.events: List[tuple] = []
        self._counter = 0

    def on_text_chunk(self, text: str) -> None:
        self.events.append(("text", text))

    def on_tool_start(self, name: str, detail: str, args: Dict[str, Any]) -> str:
        self._counter += 1
        correlation_id = f"c{self._counter}"
        self.events.append(("start", correlation_id, name, detail))
        return correlation_id

    def on_tool_end(self, correlation_id: str, name: str, detail: str, result: str, duration_ms: int) -> None:
        self.events.append(("end", correlation_id, name, result))

    def on_intermediate_text(self, text: str, metadata: Dict[str, Any]) -> None:
        self.events.append(("intermediate", text, metadata))

    def on_sub_agent_progress(self, correlation_id: str, entry: TrailEntry) -> None:
        self.events.append(("progress", correlation_id, entry.summary))

    def kinds(self) -> List[str]:
        return [event[0] for event in self.events]


def make_settings(**overrides: Any) -> AgentSettings:
    """Settings with one enabled anthropic provider unless overridden."""
    values: Dict[str, Any] = {
        "providers": [ProviderConfig(id = "anthropic", enabled = True, model = "test-model")],
    }
    values.update(overrides)
    return AgentSettings(**values)


def step_settings(model: str = "test-model") -> StepSettings:
    return StepSettings(model = model, max_tokens = 1024)


def write_files(root: Path, files: Dict[str, Union[str, bytes]]) -> None:
    """Create files under root, making parent directories."""
    for relative, content in files.items():
        target = Path(root) / relative
        target.parent.mkdir(parents = True, exist_ok = True)
        if isinstance(content, bytes):
            target.write_bytes(content)
        else:
            target.write_text(content, encoding = "utf-8")


def set_env(overrides: Dict[str, Optional[str]]) -> Dict[str, Optional[str]]:
    """Set env variables and return previous snapshot for restoration."""
    before = {}
    for key, value in overrides.items():
        before[key] = os.environ.get(key)
        if value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = value
    return before


def restore_env(snapshot: Dict[str, Optional[str]]) -> None:
    """Restore env variables from snapshot."""
    for key, value in snapshot.items():
        if value is None:
            os.environ.pop(key, None)
        else:
            os.environ[key] = value


def run_tests(test_functions):
    """
    Run test callables and print a compact summary.

    A test passes when it returns without raising.

    Parameters:
        test_functions: List of test functions.
    """
    failed = []
    for test_function in test_functions:
        print(f"\n{'=' * 60}")
        print(f"Running: {test_function.__name__}")
        print("=" * 60)
        try:
            test_function()
        except Exception as exc:
            print(f"FAILED: {exc}")
            traceback.print_exc()
            failed.append(test_function.__name__)

    passed = len(test_functions) - len(failed)
    print(f"\n{'=' * 60}")
    print(f"Results: {passed}/{len(test_functions)} passed")
    print("=" * 60)
    if failed:
        print(f"FAILED: {failed}")
        return False
    print("All tests passed!")
    return True
