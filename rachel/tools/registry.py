"""Tool registry: the chat-command catalog for the scheduler."""

from __future__ import annotations

import inspect
import json
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class ToolParams(BaseModel):
    """Argument model for a tool; its JSON schema is what callers see."""


@dataclass
class ToolResult:
    """What a tool hands back: *data* on success, *error* otherwise."""

    data: dict[str, Any] | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None

    def to_content(self) -> str:
        """JSON text for the chat layer. Timestamps and paths are stringified."""
        body = {"error": self.error} if self.error else (self.data or {})
        return json.dumps(body, default=str)


@dataclass
class ToolEntry:
    """A registered tool handler and how to call it."""

    name: str
    description: str
    category: str
    handler: Callable[..., Awaitable[ToolResult]]
    params_model: type[ToolParams] | None = None
    requires_confirmation: bool = False

    def bind(self, arguments: dict[str, Any]) -> dict[str, Any]:
        """Validate *arguments* and return the handler's keyword arguments."""
        if self.params_model is None:
            return dict(arguments)
        return self.params_model(**arguments).model_dump()

    def schema(self) -> dict[str, Any]:
        if self.params_model is not None:
            input_schema = self.params_model.model_json_schema()
        else:
            input_schema = {"type": "object", "properties": {}}
        return {"name": self.name, "description": self.description, "input_schema": input_schema}


class ToolRegistry:
    """Maps tool names to async handlers.

    Handlers register with :meth:`tool`. Tools that change the schedule are
    registered with ``requires_confirmation=True``; :meth:`execute` will not
    run them until the caller passes ``confirmed=True`` and instead returns
    a result describing what would happen.
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolEntry] = {}

    def tool(
        self,
        *,
        name: str,
        description: str,
        category: str,
        params_model: type[ToolParams] | None = None,
        requires_confirmation: bool = False,
    ) -> Callable:
        """Decorator registering an async function under *name*."""

        def decorator(fn: Callable[..., Awaitable[ToolResult]]) -> Callable:
            if not inspect.iscoroutinefunction(fn):
                msg = f"Tool handler '{name}' must be an async function"
                raise TypeError(msg)
            if name in self._tools:
                logger.warning("Tool '%s' registered twice; keeping the newer handler", name)
            self._tools[name] = ToolEntry(
                name=name,
                description=description,
                category=category,
                handler=fn,
                params_model=params_model,
                requires_confirmation=requires_confirmation,
            )
            return fn

        return decorator

    def get(self, name: str) -> ToolEntry | None:
        return self._tools.get(name)

    @property
    def tool_names(self) -> list[str]:
        return list(self._tools)

    def by_category(self, category: str) -> list[ToolEntry]:
        return [entry for entry in self._tools.values() if entry.category == category]

    def get_schemas(self) -> list[dict[str, Any]]:
        """Name, description and JSON input schema of every tool."""
        return [entry.schema() for entry in self._tools.values()]

    async def execute(
        self,
        name: str,
        arguments: dict[str, Any],
        *,
        confirmed: bool = False,
    ) -> ToolResult:
        """Run the tool called *name*.

        Invalid arguments and handler exceptions come back as an error
        result; nothing raised by a tool escapes.
        """
        entry = self._tools.get(name)
        if entry is None:
            return ToolResult(error=f"Unknown tool: {name}")

        if entry.requires_confirmation and not confirmed:
            logger.info("Tool '%s' held for confirmation: %s", name, arguments)
            return ToolResult(
                data={"confirmation_required": True, "tool": name, "arguments": arguments}
            )

        logger.info("Tool '%s' called with %s", name, arguments)
        started = time.monotonic()
        try:
            result = await entry.handler(**entry.bind(arguments))
        except Exception:
            logger.exception("Tool '%s' failed after %.2fs", name, time.monotonic() - started)
            return ToolResult(error=f"Tool '{name}' failed. Check logs for details.")

        elapsed = time.monotonic() - started
        if result.success:
            logger.info("Tool '%s' succeeded in %.2fs", name, elapsed)
        else:
            logger.warning("Tool '%s' returned error in %.2fs: %s", name, elapsed, result.error)
        return result


# Shared registry; tool modules register into it on import.
registry = ToolRegistry()
