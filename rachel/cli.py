"""Command-line interface for managing and running scheduled tasks.

Usage examples:
    # One-off reminder in 10 minutes
    rachel-tasks once stretch reminder "Stand up and stretch" --delay-ms 600000

    # Every Monday at 09:00 UTC
    rachel-tasks recurring weekly-review "0 9 * * 1" agent "Summarise last week's notes"

    # Kill stray browser processes every night
    rachel-tasks recurring nightly-cleanup "0 3 * * *" cleanup "chromium,playwright"

    # Show the schedule, remove a task
    rachel-tasks list
    rachel-tasks remove stretch

    # Run the poller in the foreground (messages are printed to stdout)
    rachel-tasks run

The poller re-reads the database on every tick, so tasks added or removed
while it is running are picked up without a restart.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from rachel.app import build_engine, console_send, serve
from rachel.config import settings
from rachel.scheduler.engine import SchedulerEngine
from rachel.scheduler.executor import TaskExecutor
from rachel.scheduler.models import TaskKind, TaskValidationError
from rachel.scheduler.store import TaskStore
from rachel.tools.scheduler_tools import build_payload

_KINDS = [kind.value for kind in TaskKind]


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="rachel-tasks", description="Manage scheduled tasks")
    parser.add_argument("--db", type=Path, help=f"Database path (default: {settings.database_path})")
    sub = parser.add_subparsers(dest="command", required=True)

    once = sub.add_parser("once", help="Schedule a one-off task")
    once.add_argument("name")
    once.add_argument("kind", choices=_KINDS)
    once.add_argument("content", help="Message, prompt, command, or comma-separated targets")
    once.add_argument("--delay-ms", type=int, default=0, help="Delay before running (default: 0)")

    recurring = sub.add_parser("recurring", help="Schedule a recurring task")
    recurring.add_argument("name")
    recurring.add_argument("cron", help="5-field cron pattern, UTC")
    recurring.add_argument("kind", choices=_KINDS)
    recurring.add_argument("content", help="Message, prompt, command, or comma-separated targets")

    remove = sub.add_parser("remove", help="Remove every task with this name")
    remove.add_argument("name")

    sub.add_parser("list", help="List active tasks, soonest first")
    sub.add_parser("run", help="Run the poller until interrupted")
    return parser


def _format_row(row: dict) -> str:
    schedule = row["cron"] or "once"
    return f"{row['id']:>5}  {row['next_run_at']}  {row['kind']:<8}  {schedule:<15}  {row['name']}"


async def _run_command(args: argparse.Namespace) -> int:
    store = TaskStore(db_path=args.db) if args.db else TaskStore.get()

    if args.command == "run":
        await serve(build_engine(send_message=console_send, store=store))
        return 0

    engine = SchedulerEngine(store=store, executor=TaskExecutor())
    try:
        if args.command in ("once", "recurring"):
            kind = TaskKind.parse(args.kind)
            payload = build_payload(kind, args.content)
            if args.command == "once":
                task = await engine.add(args.name, kind, payload, delay_ms=args.delay_ms)
            else:
                task = await engine.add(args.name, kind, payload, cron=args.cron)
            print(f"Scheduled '{task.name}' (id {task.id}), next run {task.next_run_at.isoformat()}")
        elif args.command == "remove":
            removed = await engine.remove(args.name)
            print(f"Removed {removed} task(s) named '{args.name}'")
        elif args.command == "list":
            rows = await engine.list_tasks()
            if not rows:
                print("No active tasks")
            for row in rows:
                print(_format_row(row))
    finally:
        await store.close()
    return 0


def main(argv: list[str] | None = None) -> int:
    """Entry point for ``rachel-tasks``. Returns the process exit status."""
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
    )
    args = _build_parser().parse_args(argv)
    try:
        return asyncio.run(_run_command(args))
    except TaskValidationError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
