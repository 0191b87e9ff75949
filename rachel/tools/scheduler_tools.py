"""Scheduler tools — create, list, and cancel scheduled tasks from chat."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from pydantic import Field

from rachel.scheduler.models import TaskKind, TaskValidationError
from rachel.tools.registry import ToolParams, ToolResult, registry

if TYPE_CHECKING:
    from rachel.scheduler.engine import SchedulerEngine

logger = logging.getLogger(__name__)

_CATEGORY = "scheduler"

# One-off delays beyond this are almost certainly a unit mistake
_MAX_DELAY_SECONDS = 100 * 365 * 24 * 60 * 60

# Set by init_scheduler_tools() during startup.
_engine: SchedulerEngine | None = None


def init_scheduler_tools(engine: SchedulerEngine | None) -> None:
    """Wire the scheduler engine into the tool functions.

    Called once during startup, after the engine is constructed.
    """
    global _engine  # noqa: PLW0603
    _engine = engine


def _get_engine() -> SchedulerEngine:
    if _engine is None:
        msg = "Scheduler not initialised — call init_scheduler_tools() first"
        raise RuntimeError(msg)
    return _engine


def build_payload(kind: TaskKind, content: str) -> dict[str, Any]:
    """Turn the free-text *content* into the payload *kind* expects.

    Cleanup targets are given comma-separated.
    """
    if kind is TaskKind.BASH:
        return {"command": content}
    if kind is TaskKind.REMINDER:
        return {"message": content}
    if kind is TaskKind.AGENT:
        return {"prompt": content}
    return {"targets": [target.strip() for target in content.split(",") if target.strip()]}


# -- schedule_task -------------------------------------------------------------


class ScheduleTaskParams(ToolParams):
    name: str = Field(description="Name for this task, used later to cancel it")
    kind: str = Field(
        description=(
            '"reminder" to send a message, "agent" to run a prompt through the agent '
            'and send the answer, "bash" to run a shell command, or "cleanup" to kill '
            "processes by name"
        )
    )
    content: str = Field(
        description=(
            "The message (reminder), prompt (agent), shell command (bash), or "
            "comma-separated process names (cleanup)"
        )
    )
    cron: str | None = Field(
        default=None,
        description=(
            "5-field cron pattern in UTC for recurring tasks (e.g. '0 9 * * 1' for "
            "Mondays at 09:00). Omit for a one-off task."
        ),
    )
    delay_seconds: float | None = Field(
        default=None,
        ge=0,
        le=_MAX_DELAY_SECONDS,
        description="For one-off tasks, how many seconds from now to run (default: now)",
    )


@registry.tool(
    name="schedule_task",
    description=(
        "Schedule a task once after an optional delay, or on a recurring cron "
        "schedule (UTC)."
    ),
    category=_CATEGORY,
    params_model=ScheduleTaskParams,
    requires_confirmation=True,
)
async def schedule_task(
    name: str,
    kind: str,
    content: str,
    cron: str | None = None,
    delay_seconds: float | None = None,
) -> ToolResult:
    engine = _get_engine()

    delay_ms = int(delay_seconds * 1000) if delay_seconds is not None else None
    try:
        task_kind = TaskKind.parse(kind)
        task = await engine.add(
            name,
            task_kind,
            build_payload(task_kind, content),
            cron=cron,
            delay_ms=delay_ms,
        )
    except TaskValidationError as exc:
        return ToolResult(error=str(exc))

    return ToolResult(
        data={
            "scheduled": True,
            "task_id": task.id,
            "name": task.name,
            "kind": task.kind.value,
            "cron": task.cron,
            "next_run_at": task.next_run_at.isoformat(),
        }
    )


# -- list_scheduled_tasks ------------------------------------------------------


@registry.tool(
    name="list_scheduled_tasks",
    description="List all active scheduled tasks, soonest first.",
    category=_CATEGORY,
)
async def list_scheduled_tasks() -> ToolResult:
    engine = _get_engine()
    tasks = await engine.list_tasks()
    return ToolResult(data={"tasks": tasks, "count": len(tasks)})


# -- cancel_scheduled_task -----------------------------------------------------


class CancelScheduledTaskParams(ToolParams):
    name: str = Field(description="Name of the task to cancel")


@registry.tool(
    name="cancel_scheduled_task",
    description="Cancel every scheduled task with the given name.",
    category=_CATEGORY,
    params_model=CancelScheduledTaskParams,
    requires_confirmation=True,
)
async def cancel_scheduled_task(name: str) -> ToolResult:
    engine = _get_engine()
    removed = await engine.remove(name)
    if not removed:
        return ToolResult(data={"cancelled": False, "message": f"No task named '{name}'"})
    return ToolResult(data={"cancelled": True, "name": name, "removed": removed})
