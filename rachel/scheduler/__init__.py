"""Scheduled task system — cron evaluation, persistence, execution, and polling."""

from rachel.scheduler.cron import InvalidCronError, next_occurrence
from rachel.scheduler.engine import SchedulerEngine
from rachel.scheduler.executor import TaskExecutor
from rachel.scheduler.models import InvalidKindError, Task, TaskKind, TaskValidationError
from rachel.scheduler.store import SchemaVersionError, TaskStore

__all__ = [
    "InvalidCronError",
    "InvalidKindError",
    "SchedulerEngine",
    "SchemaVersionError",
    "Task",
    "TaskExecutor",
    "TaskKind",
    "TaskStore",
    "TaskValidationError",
    "next_occurrence",
]
