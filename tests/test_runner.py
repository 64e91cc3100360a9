"""Tests for the run boundary: registry, agent assembly and outcomes."""

import asyncio
import os
import sys
import tempfile
from pathlib import Path

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from tests.utils import (
    RecordingObserver,
    ScriptedAdapter,
    make_settings,
    run_tests,
    text_step,
    tool_step,
    write_files,
)

from codeloop.credentials import CredentialManager, MemoryCredentialStore
from codeloop.environment import EnvironmentInfo
from codeloop.errors import ProviderTransportError, RunAlreadyActiveError
from codeloop.llm.base import ProviderAdapter, TextDelta
from codeloop.llm.models import default_model, provider_for_model, smallest_available_model
from codeloop.messages import ConversationMessage
from codeloop.prompts import build_sub_agent_prompt, build_system_prompt
from codeloop.runner import RunRegistry, run_agent
from codeloop.runtime_config import ProviderConfig
from codeloop.skills import LoadedSkill, StaticSkillLoader

LINUX = EnvironmentInfo(platform = "linux", shell = "/bin/bash", home = "/home/dev", arch = "x86_64")


class AdapterQueue:
    """adapter_factory handing out prepared adapters in order."""

    def __init__(self, adapters):
        self.adapters = list(adapters)
        self.built = []

    def __call__(self, provider_id, credential):
        self.built.append((provider_id, credential.token))
        return self.adapters.pop(0)


def _credentials(secrets = None):
    return CredentialManager(MemoryCredentialStore({"anthropic": "sk-test"} if secrets is None else secrets))


def _run(registry, root, adapters, observer = None, run_id = "thread-1", settings = None, credentials = None, **options):
    return run_agent(
        registry = registry,
        run_id = run_id,
        history = [ConversationMessage.user("go")],
        settings = settings or make_settings(),
        credentials = credentials or _credentials(),
        project_root = root,
        observer = observer,
        environment = LINUX,
        adapter_factory = adapters,
        **options,
    )


def test_completed_run_reports_usage():
    with tempfile.TemporaryDirectory() as tmp:
        registry = RunRegistry()
        adapters = AdapterQueue([ScriptedAdapter([text_step("All done", input_tokens = 40, output_tokens = 9)])])
        outcome = asyncio.run(_run(registry, Path(tmp), adapters))

        assert outcome.status == "completed" and outcome.text == "All done", outcome
        assert (outcome.input_tokens, outcome.output_tokens, outcome.steps) == (40, 9, 1)
        assert outcome.partial_text == "All done"
        assert adapters.built == [("anthropic", "sk-test")]
        assert not registry.is_active("thread-1"), "Run must leave the registry"
    print("PASS: test_completed_run_reports_usage")


def test_credential_problems_fail_before_provider():
    with tempfile.TemporaryDirectory() as tmp:
        adapters = AdapterQueue([])
        outcome = asyncio.run(_run(RunRegistry(), Path(tmp), adapters, credentials = _credentials({})))
        assert outcome.status == "error"
        assert outcome.text == "Agent failed: anthropic credential not configured.", outcome.text
        assert adapters.built == [], "No adapter without a credential"

        outcome = asyncio.run(_run(RunRegistry(), Path(tmp), adapters, settings = make_settings(providers = [])))
        assert outcome.text == "Agent failed: No provider enabled.", outcome.text

        oauth_only = make_settings(providers = [ProviderConfig(id = "anthropic", enabled = True, auth_mode = "oauth")])
        outcome = asyncio.run(_run(RunRegistry(), Path(tmp), adapters, settings = oauth_only))
        assert outcome.text == "Agent failed: anthropic is configured for oauth but the stored credential is an API key.", \
            outcome.text
        assert adapters.built == [], "A mismatched credential never reaches the provider"
    print("PASS: test_credential_problems_fail_before_provider")


def test_provider_error_keeps_partial_text():
    with tempfile.TemporaryDirectory() as tmp:
        adapter = ScriptedAdapter([[TextDelta(text = "Half an ans"), ProviderTransportError("anthropic", "overloaded")]])
        outcome = asyncio.run(_run(RunRegistry(), Path(tmp), AdapterQueue([adapter])))
        assert outcome.status == "error"
        assert outcome.text == "Agent failed: anthropic: overloaded", outcome.text
        assert outcome.partial_text == "Half an ans"
    print("PASS: test_provider_error_keeps_partial_text")


class StallingAdapter(ProviderAdapter):
    provider_id = "anthropic"

    async def stream_step(self, messages, tools, settings, system_prompt = ""):
        yield TextDelta(text = "thinking out loud")
        await asyncio.sleep(30)


def test_cancel_through_registry():
    """registry.cancel ends the run with the cancelled outcome and keeps streamed text."""
    with tempfile.TemporaryDirectory() as tmp:
        registry = RunRegistry()

        async def scenario():
            task = asyncio.ensure_future(_run(registry, Path(tmp), AdapterQueue([StallingAdapter()])))
            await asyncio.sleep(0.1)
            assert registry.active_runs() == ["thread-1"]
            assert registry.cancel("thread-1") is True
            return await task

        outcome = asyncio.run(scenario())
        assert outcome.status == "cancelled" and outcome.text == "Run cancelled.", outcome
        assert outcome.partial_text == "thinking out loud"
        assert registry.active_runs() == []
        assert registry.cancel("thread-1") is False
    print("PASS: test_cancel_through_registry")


def test_second_run_for_same_id_is_rejected():
    with tempfile.TemporaryDirectory() as tmp:
        registry = RunRegistry()
        with registry.acquire("thread-1"):
            try:
                asyncio.run(_run(registry, Path(tmp), AdapterQueue([ScriptedAdapter([text_step("x")])])))
            except RunAlreadyActiveError as exc:
                assert exc.run_id == "thread-1"
            else:
                raise AssertionError("Expected RunAlreadyActiveError")
        assert not registry.is_active("thread-1")
    print("PASS: test_second_run_for_same_id_is_rejected")


def test_explore_task_runs_restricted_sub_agent():
    """spawn_task builds a read-only nested loop and its answer becomes the tool result."""
    with tempfile.TemporaryDirectory() as tmp:
        root = Path(tmp)
        write_files(root, {"a.txt": "alpha"})
        main = ScriptedAdapter([
            tool_step([{
                "id": "t1",
                "name": "spawn_task",
                "arguments": {"prompt": "What is in a.txt?", "description": "inspect a.txt", "type": "explore"},
            }]),
            text_step("a.txt says alpha"),
        ])
        sub = ScriptedAdapter([
            tool_step([{"id": "s1", "name": "read_file", "arguments": {"path": "a.txt"}}]),
            text_step("It contains alpha."),
        ])
        observer = RecordingObserver()
        settings = make_settings(sub_agent_model = "claude-haiku-4-5", sub_agent_max_tokens = 2048)
        outcome = asyncio.run(_run(RunRegistry(), root, AdapterQueue([main, sub]), observer = observer, settings = settings))

        assert outcome.status == "completed" and outcome.text == "a.txt says alpha", outcome
        assert sorted(sub.requests[0]["tools"]) == ["glob", "grep", "list_files", "read_file"], sub.requests[0]["tools"]
        assert "READ-ONLY" in sub.requests[0]["system_prompt"]
        assert sub.requests[0]["settings"].model == "claude-haiku-4-5"
        assert sub.requests[0]["settings"].max_tokens == 2048

        tool_message = main.requests[1]["messages"][2]
        assert tool_message.tool_results[0].content == "It contains alpha."
        assert ("progress", "c1", "Reading a.txt") in observer.events, observer.events
        assert "It contains alpha." not in "".join(event[1] for event in observer.events if event[0] == "text"), \
            "Sub-agent text must not stream to the host"
    print("PASS: test_explore_task_runs_restricted_sub_agent")


def test_skills_offer_load_skill():
    with tempfile.TemporaryDirectory() as tmp:
        loader = StaticSkillLoader([LoadedSkill(name = "Release", text = "Tag it.", id = "release", description = "Ship it")])
        adapter = ScriptedAdapter([text_step("ok")])
        asyncio.run(_run(RunRegistry(), Path(tmp), AdapterQueue([adapter]), skill_loader = loader))
        assert "load_skill" in adapter.requests[0]["tools"]
        assert "<id>release</id>" in adapter.requests[0]["system_prompt"]

        bare = ScriptedAdapter([text_step("ok")])
        asyncio.run(_run(RunRegistry(), Path(tmp), AdapterQueue([bare])))
        assert "load_skill" not in bare.requests[0]["tools"]
        assert "spawn_task" in bare.requests[0]["tools"]
    print("PASS: test_skills_offer_load_skill")


def test_prompts_follow_platform():
    windows = EnvironmentInfo(platform = "win32", shell = "pwsh.exe", home = "C:\\Users\\dev", arch = "AMD64")
    windows_prompt = build_system_prompt(windows, Path("C:/work"))
    assert "Platform: Windows (AMD64)" in windows_prompt and "PowerShell" in windows_prompt

    linux_prompt = build_system_prompt(
        LINUX,
        Path("/work"),
        enabled_skills = [LoadedSkill(name = "Style", text = "Use tabs.")],
    )
    assert "Platform: Linux (x86_64)" in linux_prompt and "--exclude-dir=node_modules" in linux_prompt
    assert linux_prompt.endswith('<skill_content name="Style">\nUse tabs.\n</skill_content>')

    assert "READ-ONLY" not in build_sub_agent_prompt(LINUX, Path("/work"), "general")
    print("PASS: test_prompts_follow_platform")


def test_model_catalogue_lookups():
    assert provider_for_model("claude-haiku-4-5") == "anthropic"
    assert provider_for_model("unknown") is None
    assert default_model("codex") == "gpt-5.3-codex"
    assert smallest_available_model(["codex"]) == "gpt-5.1-codex-mini"
    assert smallest_available_model([]) is None
    print("PASS: test_model_catalogue_lookups")


if __name__ == "__main__":
    sys.exit(0 if run_tests([
        test_completed_run_reports_usage,
        test_credential_problems_fail_before_provider,
        test_provider_error_keeps_partial_text,
        test_cancel_through_registry,
        test_second_run_for_same_id_is_rejected,
        test_explore_task_runs_restricted_sub_agent,
        test_skills_offer_load_skill,
        test_prompts_follow_platform,
        test_model_catalogue_lookups,
    ]) else 1)
