"""Process wiring — builds the scheduler and runs it until signalled."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from typing import TYPE_CHECKING

from rachel.scheduler.engine import SchedulerEngine
from rachel.scheduler.executor import TaskExecutor
from rachel.scheduler.store import TaskStore
from rachel.tools.scheduler_tools import init_scheduler_tools

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


async def console_send(text: str) -> bool:
    """Message sender that writes to stdout, for running without a chat front-end."""
    print(f"[rachel] {text}", flush=True)
    return True


def build_engine(
    send_message: Callable[[str], Awaitable[bool]] | None = None,
    invoke_agent: Callable[[str], Awaitable[str]] | None = None,
    store: TaskStore | None = None,
    poll_interval: float | None = None,
) -> SchedulerEngine:
    """Create the scheduler engine and wire it into the tool functions.

    The message sender and agent invoker are whatever the host process
    provides; either may be None, in which case tasks needing it are
    skipped with a warning.
    """
    store = store or TaskStore.get()
    executor = TaskExecutor(send_message=send_message, invoke_agent=invoke_agent)
    engine = SchedulerEngine(store=store, executor=executor, poll_interval=poll_interval)

    init_scheduler_tools(engine)

    if send_message is None:
        logger.warning("No message sender configured — reminder and agent tasks will be skipped")
    elif invoke_agent is None:
        logger.warning("No agent invoker configured — agent tasks will be skipped")
    return engine


async def serve(engine: SchedulerEngine, stop: asyncio.Event | None = None) -> None:
    """Run *engine* until *stop* is set or the process gets SIGINT/SIGTERM.

    Shutdown stops the poller and closes the store; no task is deleted.
    """
    stop = stop or asyncio.Event()
    loop = asyncio.get_running_loop()
    signals = (signal.SIGINT, signal.SIGTERM)
    for sig in signals:
        # Not available on every platform/loop
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, stop.set)

    await engine.start()
    try:
        await stop.wait()
        logger.info("Shutting down...")
    finally:
        await engine.stop()
        for sig in signals:
            with contextlib.suppress(NotImplementedError, RuntimeError):
                loop.remove_signal_handler(sig)
