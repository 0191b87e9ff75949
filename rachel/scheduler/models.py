"""Task data model and input validation errors."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Any


class TaskKind(str, Enum):
    """The closed set of task kinds. Each kind has exactly one executor."""

    BASH = "bash"
    REMINDER = "reminder"
    CLEANUP = "cleanup"
    AGENT = "agent"

    @classmethod
    def parse(cls, value: str | TaskKind) -> TaskKind:
        """Return the member for *value*, raising InvalidKindError if unknown."""
        try:
            return cls(value)
        except ValueError:
            raise InvalidKindError(value) from None


class TaskValidationError(ValueError):
    """Input rejected at the management API boundary."""


class InvalidKindError(TaskValidationError):
    def __init__(self, kind: object) -> None:
        allowed = ", ".join(k.value for k in TaskKind)
        super().__init__(f"Invalid task kind: {kind!r} (expected one of: {allowed})")
        self.kind = kind


_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

# Latest next_run a datetime can represent
MAX_NEXT_RUN_MS = (datetime.max.replace(tzinfo=UTC) - _EPOCH) // timedelta(milliseconds=1)


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return time.time_ns() // 1_000_000


@dataclass
class Task:
    """A unit of schedulable work.

    Attributes:
        id: Store-assigned identity (``None`` until inserted).
        name: Caller-supplied label. Not unique; removal by name removes
            every task carrying it.
        kind: Which executor handles the task.
        payload: Kind-specific document — ``{"command"}`` for bash,
            ``{"message"}`` for reminder, ``{"targets": [...]}`` for cleanup,
            ``{"prompt"}`` for agent.
        cron: 5-field cron pattern. Present for recurring tasks, ``None`` for
            one-off tasks.
        next_run: Epoch milliseconds at which the task becomes due.
        enabled: False once a one-off task has run (the row is kept).
        created_at: Epoch milliseconds, set once.
    """

    id: int | None
    name: str
    kind: TaskKind
    payload: dict[str, Any] = field(default_factory=dict)
    cron: str | None = None
    next_run: int = 0
    enabled: bool = True
    created_at: int = 0

    def __post_init__(self) -> None:
        self.kind = TaskKind.parse(self.kind)
        if not self.created_at:
            self.created_at = now_ms()

    # -- Convenience properties ------------------------------------------------

    @property
    def is_recurring(self) -> bool:
        return self.cron is not None

    @property
    def is_one_off(self) -> bool:
        return self.cron is None

    @property
    def next_run_at(self) -> datetime:
        """``next_run`` as an aware UTC datetime, for display."""
        return _EPOCH + timedelta(milliseconds=self.next_run)

    # -- Serialization ---------------------------------------------------------

    def to_row(self) -> tuple:
        """Serialize to a tuple matching the ``tasks`` column order."""
        return (
            self.id,
            self.name,
            self.kind.value,
            json.dumps(self.payload),
            self.cron,
            self.next_run,
            int(self.enabled),
            self.created_at,
        )

    @classmethod
    def from_row(cls, row: tuple) -> Task:
        """Deserialize from a SQLite row tuple."""
        return cls(
            id=row[0],
            name=row[1],
            kind=row[2],
            payload=json.loads(row[3] or "{}"),
            cron=row[4],
            next_run=row[5],
            enabled=bool(row[6]),
            created_at=row[7],
        )
