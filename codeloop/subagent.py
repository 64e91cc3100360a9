"""Bounded-concurrency execution of delegated spawn_task calls."""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional

from .cancellation import CancelToken
from .errors import RunCancelled
from .messages import ToolCall, TrailEntry
from .observer import AgentObserver, format_tool_detail

logger = logging.getLogger("Subagent-Scheduler")

TASK_TYPES = {"general", "explore"}

ExecuteTask = Callable[[ToolCall, Callable[[str], None]], Awaitable[str]]


@dataclass
class SubAgentTask:
    """
    Live record of one delegated task.

    Parameters:
        call: The spawn_task call that created it.
        correlation_id: Id returned by the observer's on_tool_start.
        status: pending, running, completed, error or cancelled.
        trail: Progress entries in arrival order.
    """

    call: ToolCall
    correlation_id: str
    status: str = "pending"
    trail: List[TrailEntry] = field(default_factory = list)
    result: str = ""
    started_at: Optional[float] = None
    ended_at: Optional[float] = None

    @property
    def id(self) -> str:
        return self.call.id

    @property
    def task_type(self) -> str:
        task_type = self.call.arguments.get("type") if isinstance(self.call.arguments, dict) else None
        return task_type if task_type in TASK_TYPES else "general"

    @property
    def description(self) -> str:
        return str(self.call.arguments.get("description", "")) if isinstance(self.call.arguments, dict) else ""

    @property
    def prompt(self) -> str:
        return str(self.call.arguments.get("prompt", "")) if isinstance(self.call.arguments, dict) else ""

    @property
    def duration_ms(self) -> int:
        if self.started_at is None:
            return 0
        end = self.ended_at if self.ended_at is not None else time.monotonic()
        return int((end - self.started_at) * 1000)


class SubAgentScheduler:
    """
    Run delegated calls in fixed-size batches.

    Every call gets its pending marker before the first batch starts, and batch
    N+1 starts only after every task of batch N has settled.

    Parameters:
        max_concurrent: Batch size.
        observer: Receives start, progress and end callbacks.
        cancel_token: Checked before each batch.
    """

    def __init__(
        self,
        max_concurrent: int,
        observer: Optional[AgentObserver] = None,
        cancel_token: Optional[CancelToken] = None,
    ):
        self.max_concurrent = max(1, int(max_concurrent))
        self.observer = observer or AgentObserver()
        self.cancel_token = cancel_token
        self.running_count = 0
        self.peak_running = 0
        self.tasks: List[SubAgentTask] = []

    async def run(self, calls: List[ToolCall], execute: ExecuteTask) -> Dict[str, str]:
        """
        Execute delegated calls and return results keyed by call id.

        Parameters:
            calls: spawn_task calls in issue order.
            execute: Runs one call; receives the call and a progress callback.
        """
        tasks = []
        for call in calls:
            detail = format_tool_detail(call.name, call.arguments)
            correlation_id = self.observer.on_tool_start(call.name, detail, call.arguments)
            tasks.append(SubAgentTask(call = call, correlation_id = correlation_id))
        self.tasks.extend(tasks)

        results: Dict[str, str] = {}
        for start in range(0, len(tasks), self.max_concurrent):
            if self.cancel_token is not None:
                self.cancel_token.raise_if_cancelled()

            batch = tasks[start:start + self.max_concurrent]
            logger.info(f"Running {len(batch)} sub-agent task(s), {start + len(batch)}/{len(tasks)} scheduled")
            outcomes = await asyncio.gather(
                *(self._run_task(task, execute) for task in batch),
                return_exceptions = True,
            )

            cancelled = False
            for task, outcome in zip(batch, outcomes):
                if isinstance(outcome, (RunCancelled, asyncio.CancelledError)):
                    cancelled = True
                elif isinstance(outcome, BaseException):
                    raise outcome
                results[task.id] = task.result
            if cancelled:
                raise RunCancelled()
        return results

    async def _run_task(self, task: SubAgentTask, execute: ExecuteTask) -> None:
        task.status = "running"
        task.started_at = time.monotonic()
        self.running_count += 1
        self.peak_running = max(self.peak_running, self.running_count)

        def on_progress(summary: str) -> None:
            entry = TrailEntry(kind = "tool", summary = summary)
            task.trail.append(entry)
            self.observer.on_sub_agent_progress(task.correlation_id, entry)

        try:
            task.result = await execute(task.call, on_progress)
            task.status = "error" if task.result.startswith(("Error:", "Tool error:")) else "completed"
        except (RunCancelled, asyncio.CancelledError):
            task.status = "cancelled"
            task.result = "Run cancelled"
            raise
        except Exception as exc:
            logger.error(f"Sub-agent task {task.id} failed: {exc}")
            task.status = "error"
            task.result = f"Tool error: {exc}"
        finally:
            task.ended_at = time.monotonic()
            self.running_count -= 1
            detail = format_tool_detail(task.call.name, task.call.arguments)
            self.observer.on_tool_end(task.correlation_id, task.call.name, detail, task.result, task.duration_ms)
