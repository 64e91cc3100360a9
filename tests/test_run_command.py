"""Tests for run_command: output capture, timeout kill and cancellation."""

import asyncio
import os
import sys
import tempfile
import time
from pathlib import Path

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))
from tests.utils import run_tests

import pytest

from codeloop.cancellation import CancelToken
from codeloop.errors import CommandTimeoutError, RunCancelled
from codeloop.project_tools import format_command_output, run_command

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason = "POSIX shell semantics")

SHELL = "/bin/sh"


def _process_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def _wait_for_pid_file(path: Path, deadline: float = 5.0) -> int:
    start = time.monotonic()
    while time.monotonic() - start < deadline:
        if path.exists():
            text = path.read_text(encoding = "utf-8").strip()
            if text:
                return int(text)
        time.sleep(0.02)
    raise AssertionError("pid file never appeared")


def test_command_output_and_exit_code():
    """stdout, stderr and the exit code come back in one result."""
    with tempfile.TemporaryDirectory() as tmp:
        output = asyncio.run(
            run_command(Path(tmp), "echo out; echo err 1>&2; exit 3", timeout = 10, shell = SHELL)
        )
        assert output["stdout"] == "out\n", f"Unexpected stdout: {output['stdout']!r}"
        assert output["stderr"] == "err\n", f"Unexpected stderr: {output['stderr']!r}"
        assert output["code"] == 3, f"Unexpected code: {output['code']}"
        assert '"code": 3' in format_command_output(output)
    print("PASS: test_command_output_and_exit_code")


def test_command_runs_in_project_root():
    with tempfile.TemporaryDirectory() as tmp:
        root = Path(tmp).resolve()
        output = asyncio.run(run_command(root, "pwd", timeout = 10, shell = SHELL))
        assert Path(output["stdout"].strip()).resolve() == root, f"Wrong cwd: {output['stdout']!r}"
    print("PASS: test_command_runs_in_project_root")


def test_timeout_kills_process():
    """A command outliving its timeout fails and leaves no process behind."""
    with tempfile.TemporaryDirectory() as tmp:
        root = Path(tmp)
        started = time.monotonic()
        try:
            asyncio.run(
                run_command(
                    root,
                    "echo $$ > pid.txt; exec sleep 30",
                    timeout = 0.5,
                    shell = SHELL,
                    kill_grace = 0.5,
                )
            )
        except CommandTimeoutError as exc:
            assert str(exc) == "Command timed out", f"Unexpected message: {exc}"
        else:
            raise AssertionError("Expected CommandTimeoutError")
        elapsed = time.monotonic() - started
        assert elapsed < 10, f"Timeout took too long: {elapsed:.1f}s"

        pid = _wait_for_pid_file(root / "pid.txt")
        assert not _process_alive(pid), f"Process {pid} still running after timeout"
    print("PASS: test_timeout_kills_process")


def test_cancellation_kills_running_command():
    """Cancelling the token stops the command and raises RunCancelled, not a timeout."""
    with tempfile.TemporaryDirectory() as tmp:
        root = Path(tmp)

        async def scenario():
            token = CancelToken()
            task = asyncio.ensure_future(
                run_command(
                    root,
                    "echo $$ > pid.txt; exec sleep 30",
                    timeout = 20,
                    cancel_token = token,
                    shell = SHELL,
                    kill_grace = 0.5,
                )
            )
            await asyncio.sleep(0.3)
            token.cancel()
            await task

        started = time.monotonic()
        try:
            asyncio.run(scenario())
        except RunCancelled:
            pass
        else:
            raise AssertionError("Expected RunCancelled")
        assert time.monotonic() - started < 10, "Cancellation must not wait for the timeout"

        pid = _wait_for_pid_file(root / "pid.txt")
        assert not _process_alive(pid), f"Process {pid} still running after cancellation"
    print("PASS: test_cancellation_kills_running_command")


def test_cancelled_token_prevents_spawn():
    with tempfile.TemporaryDirectory() as tmp:
        root = Path(tmp)

        async def scenario():
            token = CancelToken()
            token.cancel()
            await run_command(root, "touch spawned.txt", timeout = 5, cancel_token = token, shell = SHELL)

        try:
            asyncio.run(scenario())
        except RunCancelled:
            pass
        else:
            raise AssertionError("Expected RunCancelled")
        assert not (root / "spawned.txt").exists(), "Command must not start once cancelled"
    print("PASS: test_cancelled_token_prevents_spawn")


def test_recursive_grep_is_rewritten_before_execution():
    """Files under node_modules are invisible to a recursive grep."""
    with tempfile.TemporaryDirectory() as tmp:
        root = Path(tmp)
        (root / "node_modules").mkdir()
        (root / "node_modules" / "dep.js").write_text("needle\n", encoding = "utf-8")
        (root / "app.js").write_text("needle\n", encoding = "utf-8")
        output = asyncio.run(run_command(root, "grep -rl needle .", timeout = 10, shell = SHELL))
        found = sorted(line for line in output["stdout"].splitlines() if line)
        assert found == ["./app.js"], f"Unexpected grep output: {found}"
    print("PASS: test_recursive_grep_is_rewritten_before_execution")


if __name__ == "__main__":
    sys.exit(0 if run_tests([
        test_command_output_and_exit_code,
        test_command_runs_in_project_root,
        test_timeout_kills_process,
        test_cancellation_kills_running_command,
        test_cancelled_token_prevents_spawn,
        test_recursive_grep_is_rewritten_before_execution,
    ]) else 1)
