"""TaskStore — aiosqlite persistence for scheduled tasks."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import aiosqlite

from rachel.config import settings
from rachel.scheduler.cron import next_occurrence
from rachel.scheduler.models import (
    MAX_NEXT_RUN_MS,
    Task,
    TaskKind,
    TaskValidationError,
    now_ms,
)

if TYPE_CHECKING:
    from pathlib import Path

logger = logging.getLogger(__name__)

# Bump when the table definition changes and add a step to _MIGRATIONS.
# 1: columns named type/data, bash/reminder/cleanup kinds only
# 2: adds the agent kind
SCHEMA_VERSION = 2

_KIND_VALUES = ", ".join(f"'{kind.value}'" for kind in TaskKind)

_CREATE_TABLE = f"""
CREATE TABLE tasks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    kind TEXT NOT NULL CHECK(kind IN ({_KIND_VALUES})),
    payload TEXT NOT NULL DEFAULT '{{}}',
    cron TEXT,
    next_run INTEGER NOT NULL,
    enabled INTEGER NOT NULL DEFAULT 1,
    created_at INTEGER NOT NULL
)
"""

_CREATE_INDEX = "CREATE INDEX IF NOT EXISTS idx_tasks_due ON tasks(enabled, next_run)"

_COLUMNS = "id, name, kind, payload, cron, next_run, enabled, created_at"


class SchemaVersionError(RuntimeError):
    """The database was written by a newer version of the scheduler."""


async def _rebuild_table(db: aiosqlite.Connection) -> None:
    """Recreate ``tasks`` with the current definition, keeping every row.

    SQLite cannot alter a CHECK constraint in place, so widening the kind
    constraint means copying into a fresh table. Columns are copied by
    position; v1 tables named them ``type`` and ``data``.
    """
    await db.execute("ALTER TABLE tasks RENAME TO tasks_old")
    await db.execute(_CREATE_TABLE)
    await db.execute(f"INSERT INTO tasks ({_COLUMNS}) SELECT * FROM tasks_old")
    await db.execute("DROP TABLE tasks_old")


# target version -> migration step
_MIGRATIONS = {
    2: _rebuild_table,
}


class TaskStore:
    """Persists tasks in SQLite.

    Every operation opens its own connection and commits before returning,
    so each mutation is a single atomic statement and nothing is buffered in
    memory between calls.

    Singleton accessed via ``TaskStore.get()``.  Pass an explicit *db_path*
    for test isolation (e.g. ``tmp_path / "test.db"``).
    """

    _instance: TaskStore | None = None

    def __init__(self, db_path: Path | None = None) -> None:
        self._db_path = db_path or settings.database_path
        self._initialised = False
        self._init_lock = asyncio.Lock()

    @classmethod
    def get(cls) -> TaskStore:
        """Return the shared TaskStore instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def _reset(cls) -> None:
        """Reset the singleton (for testing)."""
        cls._instance = None

    @property
    def db_path(self) -> Path:
        return self._db_path

    # -- Internal helpers ------------------------------------------------------

    async def _open(self, **kwargs: Any) -> aiosqlite.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        db = await aiosqlite.connect(str(self._db_path), **kwargs)
        await db.execute("PRAGMA journal_mode=WAL")
        await db.execute("PRAGMA busy_timeout=5000")
        return db

    async def _connect(self) -> aiosqlite.Connection:
        if not self._initialised:
            await self.initialise()
        return await self._open()

    async def _ensure_schema(self) -> None:
        # Autocommit mode so the migration runs in our own explicit transaction.
        db = await self._open(isolation_level=None)
        try:
            cursor = await db.execute("PRAGMA user_version")
            (version,) = await cursor.fetchone()
            cursor = await db.execute(
                "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'tasks'"
            )
            has_table = await cursor.fetchone() is not None

            if version > SCHEMA_VERSION:
                msg = (
                    f"{self._db_path} has schema version {version}; "
                    f"this build supports up to {SCHEMA_VERSION}"
                )
                raise SchemaVersionError(msg)

            if not has_table:
                await db.execute("BEGIN IMMEDIATE")
                await db.execute(_CREATE_TABLE)
                await db.execute(_CREATE_INDEX)
                await db.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
                await db.execute("COMMIT")
                logger.info("Created tasks table (schema v%d) at %s", SCHEMA_VERSION, self._db_path)
                return

            # A table without a recorded version predates versioning (v1).
            version = max(version, 1)
            if version == SCHEMA_VERSION:
                await db.execute(_CREATE_INDEX)
                return

            await db.execute("BEGIN IMMEDIATE")
            try:
                for target in range(version + 1, SCHEMA_VERSION + 1):
                    await _MIGRATIONS[target](db)
                await db.execute(_CREATE_INDEX)
                await db.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
                await db.execute("COMMIT")
            except Exception:
                await db.execute("ROLLBACK")
                raise
            logger.info(
                "Migrated tasks table from schema v%d to v%d (%s)",
                version,
                SCHEMA_VERSION,
                self._db_path,
            )
        finally:
            await db.close()

    # -- Lifecycle -------------------------------------------------------------

    async def initialise(self) -> None:
        """Create or migrate the schema. Errors here are fatal to the caller."""
        async with self._init_lock:
            if self._initialised:
                return
            await self._ensure_schema()
            self._initialised = True

    async def close(self) -> None:
        """Fold the write-ahead log back into the database file."""
        if not self._initialised:
            return
        db = await self._open()
        try:
            await db.execute("PRAGMA wal_checkpoint(TRUNCATE)")
        finally:
            await db.close()
        logger.info("Task store closed: %s", self._db_path)

    # -- CRUD ------------------------------------------------------------------

    async def insert(
        self,
        name: str,
        kind: str | TaskKind,
        payload: dict[str, Any],
        cron: str | None = None,
        delay_ms: int = 0,
        *,
        now: int | None = None,
    ) -> Task:
        """Insert a task and return it with its assigned id.

        ``next_run`` is the next cron occurrence when *cron* is given,
        otherwise ``now + delay_ms``.
        """
        kind = TaskKind.parse(kind)
        if not name or not name.strip():
            raise TaskValidationError("Task name must not be empty")
        if not isinstance(payload, dict):
            raise TaskValidationError("Task payload must be a JSON object")
        if delay_ms < 0:
            raise TaskValidationError(f"delay_ms must not be negative (got {delay_ms})")

        now = now_ms() if now is None else now
        next_run = next_occurrence(cron, now) if cron is not None else now + delay_ms
        if next_run > MAX_NEXT_RUN_MS:
            raise TaskValidationError(f"delay_ms is too large (got {delay_ms})")
        task = Task(
            id=None,
            name=name,
            kind=kind,
            payload=payload,
            cron=cron,
            next_run=next_run,
            created_at=now,
        )

        db = await self._connect()
        try:
            cursor = await db.execute(
                "INSERT INTO tasks (name, kind, payload, cron, next_run, enabled, created_at)"
                " VALUES (?, ?, ?, ?, ?, ?, ?)",
                task.to_row()[1:],
            )
            await db.commit()
            task.id = cursor.lastrowid
        finally:
            await db.close()

        logger.info(
            "Task added: %s (id=%s kind=%s cron=%s next_run=%s)",
            task.name,
            task.id,
            task.kind.value,
            task.cron,
            task.next_run_at.isoformat(),
        )
        return task

    async def get_task(self, task_id: int) -> Task | None:
        """Fetch a task by id, or None if not found."""
        db = await self._connect()
        try:
            cursor = await db.execute(f"SELECT {_COLUMNS} FROM tasks WHERE id = ?", (task_id,))
            row = await cursor.fetchone()
            return Task.from_row(row) if row else None
        finally:
            await db.close()

    async def remove(self, name: str) -> int:
        """Delete every task called *name*. Returns how many were deleted."""
        db = await self._connect()
        try:
            cursor = await db.execute("DELETE FROM tasks WHERE name = ?", (name,))
            await db.commit()
            removed = cursor.rowcount
        finally:
            await db.close()
        if removed:
            logger.info("Task removed: %s (%d row(s))", name, removed)
        else:
            logger.info("No task named %s to remove", name)
        return removed

    async def list_active(self) -> list[Task]:
        """Return enabled tasks, soonest due first."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT {_COLUMNS} FROM tasks WHERE enabled = 1 ORDER BY next_run, id"
            )
            rows = await cursor.fetchall()
            return [Task.from_row(row) for row in rows]
        finally:
            await db.close()

    async def due_tasks(self, now: int) -> list[Task]:
        """Return enabled tasks with ``next_run <= now``, oldest due first."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                f"SELECT {_COLUMNS} FROM tasks"
                " WHERE enabled = 1 AND next_run <= ? ORDER BY next_run, id",
                (now,),
            )
            rows = await cursor.fetchall()
            return [Task.from_row(row) for row in rows]
        finally:
            await db.close()

    async def advance(self, task_id: int, next_run: int) -> bool:
        """Reschedule a recurring task. Returns True if a row was updated."""
        db = await self._connect()
        try:
            cursor = await db.execute(
                "UPDATE tasks SET next_run = ? WHERE id = ?", (next_run, task_id)
            )
            await db.commit()
            return cursor.rowcount > 0
        finally:
            await db.close()

    async def retire(self, task_id: int) -> bool:
        """Disable a one-off task, keeping its row. Returns True if it exists."""
        db = await self._connect()
        try:
            cursor = await db.execute("UPDATE tasks SET enabled = 0 WHERE id = ?", (task_id,))
            await db.commit()
            updated = cursor.rowcount > 0
            if updated:
                logger.debug("Retired task: %s", task_id)
            return updated
        finally:
            await db.close()
