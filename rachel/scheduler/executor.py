"""TaskExecutor — dispatches tasks to a handler per kind."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from rachel.config import settings
from rachel.scheduler.models import TaskKind

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from rachel.scheduler.models import Task

logger = logging.getLogger(__name__)

# pkill exits 1 when no process matched
_PKILL_NO_MATCH = 1


class TaskExecutor:
    """Executes tasks by dispatching on ``task.kind``.

    A handler failure never leaves :meth:`execute`; it is logged and, for the
    kinds that talk to the user, reported back through *send_message*.

    Args:
        send_message: Async callable ``(text) -> bool`` delivering a message
            to the owner. Needed by reminder and agent tasks.
        invoke_agent: Async callable ``(prompt) -> str`` running the
            autonomous agent. Needed by agent tasks. May raise.
        shell: Shell used for bash tasks (default from settings).
        output_log_chars: How much command output to keep in log lines.
    """

    def __init__(
        self,
        send_message: Callable[[str], Awaitable[bool]] | None = None,
        invoke_agent: Callable[[str], Awaitable[str]] | None = None,
        *,
        shell: str | None = None,
        output_log_chars: int | None = None,
    ) -> None:
        self._send_message = send_message
        self._invoke_agent = invoke_agent
        self._shell = shell or settings.shell_path
        self._output_log_chars = (
            settings.task_output_log_chars if output_log_chars is None else output_log_chars
        )
        self._handlers: dict[TaskKind, Callable[[Task], Awaitable[bool]]] = {
            TaskKind.BASH: self._handle_bash,
            TaskKind.REMINDER: self._handle_reminder,
            TaskKind.CLEANUP: self._handle_cleanup,
            TaskKind.AGENT: self._handle_agent,
        }

    async def execute(self, task: Task) -> bool:
        """Run *task*. Returns True if its handler completed the work."""
        logger.info("Executing task: '%s' (%s) kind=%s", task.name, task.id, task.kind.value)
        handler = self._handlers[task.kind]
        try:
            return await handler(task)
        except Exception:
            logger.exception("Task execution failed: '%s' (%s)", task.name, task.id)
            return False

    def _truncate(self, text: str) -> str:
        return text.strip()[: self._output_log_chars]

    # -- Handlers --------------------------------------------------------------

    async def _handle_bash(self, task: Task) -> bool:
        """Run ``payload.command`` through the shell and log its output."""
        command = task.payload.get("command", "")
        if not command:
            logger.warning("bash task has empty command: '%s' (%s)", task.name, task.id)
            return False

        try:
            proc = await asyncio.create_subprocess_exec(
                self._shell,
                "-c",
                command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
            output, _ = await proc.communicate()
        except OSError:
            logger.exception("Bash task could not start: '%s'", task.name)
            return False

        text = self._truncate(output.decode(errors="replace"))
        if proc.returncode != 0:
            logger.error(
                "Bash task failed: '%s' (exit %s) output=%r", task.name, proc.returncode, text
            )
            return False
        logger.info("Bash task done: '%s' output=%r", task.name, text)
        return True

    async def _handle_reminder(self, task: Task) -> bool:
        """Deliver ``payload.message`` to the owner."""
        if self._send_message is None:
            logger.warning("Cannot send reminder '%s': message sender not configured", task.name)
            return False
        message = task.payload.get("message", "")
        if not message:
            logger.warning("reminder task has empty message: '%s' (%s)", task.name, task.id)
            return False

        delivered = await self._send_message(message)
        if delivered is False:
            logger.warning("Reminder not delivered: '%s'", task.name)
            return False
        logger.info("Reminder sent: '%s' (%d chars)", task.name, len(message))
        return True

    async def _handle_cleanup(self, task: Task) -> bool:
        """Kill processes matching each of ``payload.targets``.

        Targets are independent: one that matches nothing, or whose pkill
        fails, does not stop the rest.
        """
        targets = task.payload.get("targets") or []
        if isinstance(targets, str):
            targets = [targets]

        for target in targets:
            if not isinstance(target, str) or not target:
                logger.warning("Skipping invalid cleanup target %r in '%s'", target, task.name)
                continue
            try:
                proc = await asyncio.create_subprocess_exec(
                    "pkill",
                    "-f",
                    target,
                    stdout=asyncio.subprocess.DEVNULL,
                    stderr=asyncio.subprocess.PIPE,
                )
                _, stderr = await proc.communicate()
            except OSError:
                logger.warning("Cleanup could not run pkill for: %s", target, exc_info=True)
                continue

            if proc.returncode == 0:
                logger.info("Cleaned up: %s", target)
            elif proc.returncode == _PKILL_NO_MATCH:
                logger.debug("Nothing to clean for: %s", target)
            else:
                logger.warning(
                    "pkill failed for %s (exit %s): %s",
                    target,
                    proc.returncode,
                    self._truncate(stderr.decode(errors="replace")),
                )
        return True

    async def _handle_agent(self, task: Task) -> bool:
        """Run ``payload.prompt`` through the agent and send back the result."""
        if self._invoke_agent is None or self._send_message is None:
            logger.warning(
                "Cannot run agent task '%s': agent invoker or message sender not configured",
                task.name,
            )
            return False
        prompt = task.payload.get("prompt", "")
        if not prompt:
            logger.warning("agent task has empty prompt: '%s' (%s)", task.name, task.id)
            return False

        logger.info("Agent task starting: '%s' (prompt: %d chars)", task.name, len(prompt))
        try:
            result = await self._invoke_agent(prompt)
            delivered = await self._send_message(result)
        except Exception as exc:
            logger.exception("Agent task failed: '%s' (%s)", task.name, task.id)
            await self._send_failure(task, exc)
            return False
        if delivered is False:
            logger.warning("Agent result not delivered: '%s'", task.name)
            return False
        logger.info("Agent task completed: '%s' (%d chars)", task.name, len(result))
        return True

    async def _send_failure(self, task: Task, exc: Exception) -> None:
        """Tell the owner a task failed instead of failing silently."""
        notice = f'Agent task "{task.name}" failed: {str(exc) or type(exc).__name__}'
        try:
            await self._send_message(notice)
        except Exception:
            logger.exception("Could not deliver failure notice for '%s'", task.name)
