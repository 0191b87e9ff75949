"""SchedulerEngine — the polling loop and the task management API."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from rachel.config import settings
from rachel.scheduler.cron import InvalidCronError, next_occurrence, validate_cron
from rachel.scheduler.models import TaskKind, TaskValidationError, now_ms

if TYPE_CHECKING:
    from rachel.scheduler.executor import TaskExecutor
    from rachel.scheduler.models import Task
    from rachel.scheduler.store import TaskStore

logger = logging.getLogger(__name__)

_POLL_JOB_ID = "task-poller"

# Payload key each kind cannot run without
_REQUIRED_PAYLOAD_KEYS = {
    TaskKind.BASH: "command",
    TaskKind.REMINDER: "message",
    TaskKind.CLEANUP: "targets",
    TaskKind.AGENT: "prompt",
}


class SchedulerEngine:
    """Polls the store for due tasks and hands them to the executor.

    Every pass dispatches each due task without waiting for it to finish and
    immediately reschedules it: recurring tasks move to their next cron
    occurrence, one-off tasks are retired. The decision depends only on the
    task being due, never on how its execution went, so delivery is
    at-least-once.

    Args:
        store: TaskStore for persistence.
        executor: TaskExecutor to run tasks.
        poll_interval: Seconds between passes (default from settings).
    """

    def __init__(
        self,
        store: TaskStore,
        executor: TaskExecutor,
        poll_interval: float | None = None,
    ) -> None:
        self._store = store
        self._executor = executor
        self._poll_interval = poll_interval or settings.poll_interval_seconds
        self._scheduler: AsyncIOScheduler | None = None
        self._running = False
        self._in_flight: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def store(self) -> TaskStore:
        return self._store

    @property
    def in_flight(self) -> int:
        """Executions dispatched but not yet finished."""
        return len(self._in_flight)

    # -- Lifecycle -------------------------------------------------------------

    async def start(self) -> None:
        """Run one pass straight away, then poll on a fixed interval."""
        if self._running:
            return
        await self._store.initialise()

        active = await self._store.list_active()
        now = now_ms()
        overdue = sum(1 for task in active if task.next_run <= now)
        if overdue:
            logger.info("Catching up on %d overdue task(s)", overdue)

        await self.run_pass(now)

        self._scheduler = AsyncIOScheduler(timezone="UTC")
        self._scheduler.add_job(
            self.run_pass,
            trigger=IntervalTrigger(seconds=self._poll_interval, timezone="UTC"),
            id=_POLL_JOB_ID,
            name="Task poller",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.start()
        self._running = True
        logger.info(
            "Task poller started (%gs interval, %d active task(s))",
            self._poll_interval,
            len(active),
        )

    async def stop(self) -> None:
        """Stop polling. Executions already running are left to finish."""
        if not self._running:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        self._running = False
        if self._in_flight:
            logger.info("Leaving %d task execution(s) running", len(self._in_flight))
        try:
            await self._store.close()
        except Exception:
            logger.exception("Failed to close task store cleanly")
        logger.info("Task poller stopped")

    # -- Polling ---------------------------------------------------------------

    async def run_pass(self, now: int | None = None) -> list[asyncio.Task]:
        """Dispatch every due task and reschedule it.

        Returns the spawned executions so callers can observe them; the pass
        itself never waits for them.
        """
        now = now_ms() if now is None else now
        try:
            due = await self._store.due_tasks(now)
        except Exception:
            logger.exception("Failed to query due tasks; retrying next tick")
            return []

        dispatched = []
        for task in due:
            dispatched.append(self._dispatch(task))
            await self._reschedule(task, now)

        if dispatched:
            logger.info("Dispatched %d due task(s)", len(dispatched))
        return dispatched

    def _dispatch(self, task: Task) -> asyncio.Task:
        execution = asyncio.create_task(self._executor.execute(task), name=f"task-{task.id}")
        self._in_flight.add(execution)
        execution.add_done_callback(self._in_flight.discard)
        return execution

    async def _reschedule(self, task: Task, now: int) -> None:
        try:
            if task.is_one_off:
                await self._store.retire(task.id)
                return
            try:
                next_run = next_occurrence(task.cron, now)
            except InvalidCronError:
                logger.error(
                    "Task '%s' (%s) has an unusable cron pattern %r; retiring it",
                    task.name,
                    task.id,
                    task.cron,
                )
                await self._store.retire(task.id)
                return
            await self._store.advance(task.id, next_run)
            logger.debug("Next run for '%s': %s", task.name, next_run)
        except Exception:
            logger.exception("Failed to reschedule task '%s' (%s)", task.name, task.id)

    # -- Task management -------------------------------------------------------

    async def add(
        self,
        name: str,
        kind: str | TaskKind,
        payload: dict[str, Any],
        *,
        cron: str | None = None,
        delay_ms: int | None = None,
    ) -> Task:
        """Validate and persist a new task.

        Raises a TaskValidationError subclass, before anything is written,
        for an unknown kind, a malformed cron pattern, a missing payload
        field, a negative delay, or both *cron* and *delay_ms* at once.
        """
        kind = TaskKind.parse(kind)
        if cron is not None and delay_ms is not None:
            raise TaskValidationError("Give either cron or delay_ms, not both")
        if cron is not None:
            validate_cron(cron)
        if not isinstance(payload, dict):
            raise TaskValidationError("Task payload must be a JSON object")
        required = _REQUIRED_PAYLOAD_KEYS[kind]
        if not payload.get(required):
            raise TaskValidationError(f"{kind.value} tasks need a '{required}' in their payload")
        return await self._store.insert(name, kind, payload, cron=cron, delay_ms=delay_ms or 0)

    async def remove(self, name: str) -> int:
        """Delete every task called *name*. Removing nothing is not an error."""
        return await self._store.remove(name)

    async def list_tasks(self) -> list[dict[str, Any]]:
        """Active tasks, soonest first, in a display-friendly shape."""
        tasks = await self._store.list_active()
        return [
            {
                "id": task.id,
                "name": task.name,
                "kind": task.kind.value,
                "cron": task.cron,
                "next_run": task.next_run,
                "next_run_at": task.next_run_at.isoformat(),
            }
            for task in tasks
        ]
