"""Task runner driving a reconciliation run.

Tasks run strictly one after another in dependency order, since each one
reads references written by its predecessors:

    shared-object lookups -> tier-1 gateway -> locale service -> segment
    -> SNAT address allocation -> SNAT address realization -> SNAT rule

Teardown calls ensure_deleted on the owned objects in the reverse order so
dependents go before their dependencies.

The runner stops at the first failure and reports it in the RunResult; the
state document keeps everything completed before. ``on_progress`` is called
with the state after every completed task so callers can persist
incrementally. Cancellation is cooperative and only takes effect between
tasks.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from azure.core.exceptions import AzureError

from .config import Action
from .errors import InfraError, api_error_message
from .lookup_tasks import (
    LookupEdgeClusterTask,
    LookupSnatIpPoolTask,
    LookupTier0GatewayTask,
    LookupTransportZoneTask,
)
from .models import InfraSpec, InfraState
from .recovery import try_recover
from .resource_tasks import (
    SegmentTask,
    SnatIpAddressAllocationTask,
    SnatIpAddressRealizationTask,
    SnatRuleTask,
    Tier1GatewayLocaleServiceTask,
    Tier1GatewayTask,
)
from .tasks import Deletable, Outcome, Task, TaskContext

logger = logging.getLogger(__name__)


def default_tasks() -> list[Task]:
    """All tasks in creation order."""
    return [
        LookupTier0GatewayTask(),
        LookupEdgeClusterTask(),
        LookupTransportZoneTask(),
        LookupSnatIpPoolTask(),
        Tier1GatewayTask(),
        Tier1GatewayLocaleServiceTask(),
        SegmentTask(),
        SnatIpAddressAllocationTask(),
        SnatIpAddressRealizationTask(),
        SnatRuleTask(),
    ]


class RunCancelled(Exception):
    """Raised internally when cancellation is observed between tasks."""

    pass


@dataclass
class TaskResult:
    """Outcome of one task within a run."""

    label: str
    outcome: Outcome | None = None
    deleted: bool = False
    recovered: bool = False
    duration_seconds: float = 0.0


@dataclass
class RunResult:
    """Result of one ensure or teardown run."""

    action: Action
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    tasks: list[TaskResult] = field(default_factory=list)
    cancelled: bool = False
    error: Exception | None = None

    @property
    def changed(self) -> bool:
        """Whether any remote object was created, updated or deleted."""
        return any(
            (r.outcome is not None and r.outcome.changed) or r.deleted for r in self.tasks
        )

    @property
    def success(self) -> bool:
        return self.error is None and not self.cancelled

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()


class TaskRunner:
    """Runs the ordered task list against one cluster's state.

    The caller must guarantee that no other run operates on the same state
    concurrently.
    """

    def __init__(
        self,
        ctx: TaskContext,
        tasks: Sequence[Task] | None = None,
        *,
        on_progress: Callable[[InfraState], None] | None = None,
        recover: bool = True,
    ) -> None:
        self._ctx = ctx
        self._tasks = list(tasks) if tasks is not None else default_tasks()
        self._on_progress = on_progress
        self._recover = recover
        self._cancel_event = asyncio.Event()

    @property
    def tasks(self) -> list[Task]:
        return list(self._tasks)

    def cancel(self) -> None:
        """Request the run to stop before its next task."""
        logger.info("Cancellation requested")
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    async def ensure(self, spec: InfraSpec, state: InfraState) -> RunResult:
        """Run every task's ensure step in creation order."""
        result = RunResult(action=Action.ENSURE)

        async def step(task: Task) -> TaskResult:
            started = time.monotonic()
            task_result = TaskResult(label=task.label)
            if self._recover:
                task_result.recovered = await self._call(
                    try_recover, self._ctx, task, spec, state
                )
            task_result.outcome = await self._call(task.ensure, self._ctx, spec, state)
            logger.info(
                "Task complete",
                extra={
                    "task": task.label,
                    "object_name": task.name_to_log(spec),
                    "outcome": task_result.outcome.value,
                    "recovered": task_result.recovered,
                    "duration_seconds": time.monotonic() - started,
                },
            )
            return task_result

        await self._run(result, self._tasks, state, step)
        return result

    async def ensure_deleted(self, state: InfraState) -> RunResult:
        """Delete owned objects in reverse creation order."""
        result = RunResult(action=Action.DELETE)
        deletable = [t for t in reversed(self._tasks) if isinstance(t, Deletable)]

        async def step(task: Task) -> TaskResult:
            assert isinstance(task, Deletable)
            deleted = await self._call(task.ensure_deleted, self._ctx, state)
            logger.info("Task complete", extra={"task": task.label, "deleted": deleted})
            return TaskResult(label=task.label, deleted=deleted)

        await self._run(result, deletable, state, step)
        return result

    async def _run(
        self,
        result: RunResult,
        tasks: Sequence[Task],
        state: InfraState,
        step: Callable[[Task], Any],
    ) -> None:
        try:
            for task in tasks:
                if self._cancel_event.is_set():
                    raise RunCancelled()
                started = time.monotonic()
                task_result: TaskResult = await step(task)
                task_result.duration_seconds = time.monotonic() - started
                result.tasks.append(task_result)
                if self._on_progress is not None:
                    self._on_progress(state)
        except RunCancelled:
            logger.warning(
                "Run cancelled",
                extra={"action": result.action.value, "completed_tasks": len(result.tasks)},
            )
            result.cancelled = True
        except InfraError as e:
            logger.error(
                "Task failed",
                extra={
                    "action": result.action.value,
                    "task": self._current_label(tasks, result),
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "retryable": e.retryable,
                },
            )
            result.error = e
        except AzureError as e:
            logger.error(
                "Policy API error",
                extra={
                    "action": result.action.value,
                    "task": self._current_label(tasks, result),
                    "error": api_error_message(e),
                },
            )
            result.error = e
        except Exception as e:
            logger.exception("Unexpected error during run")
            result.error = e

        result.end_time = datetime.now(UTC)
        self._log_result(result)

    async def _call(self, fn: Callable[..., Any], *args: Any) -> Any:
        """Run a blocking task call in the default executor."""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(None, functools.partial(fn, *args))

    @staticmethod
    def _current_label(tasks: Sequence[Task], result: RunResult) -> str:
        index = len(result.tasks)
        return tasks[index].label if index < len(tasks) else ""

    def _log_result(self, result: RunResult) -> None:
        extra: dict[str, Any] = {
            "action": result.action.value,
            "duration_seconds": result.duration_seconds,
            "changed": result.changed,
            "completed_tasks": len(result.tasks),
            "cancelled": result.cancelled,
        }
        if result.error is not None:
            extra["error"] = str(result.error)
            logger.error("Run failed", extra=extra)
        else:
            logger.info("Run result", extra=extra)
