"""Tests for the tool registry."""

import json
from datetime import UTC, datetime

import pytest
from pydantic import Field

from rachel.tools.registry import ToolParams, ToolRegistry, ToolResult

# -- Fixtures ----------------------------------------------------------------


@pytest.fixture
def reg() -> ToolRegistry:
    """Fresh registry for each test."""
    return ToolRegistry()


# -- Decorator registration --------------------------------------------------


def test_register_via_decorator(reg: ToolRegistry) -> None:
    @reg.tool(name="ping", description="Ping", category="test")
    async def ping() -> ToolResult:
        return ToolResult(data={"pong": True})

    assert "ping" in reg.tool_names
    assert reg.get("ping") is not None
    assert reg.get("ping").category == "test"


def test_decorator_rejects_sync_function(reg: ToolRegistry) -> None:
    with pytest.raises(TypeError, match="must be an async function"):

        @reg.tool(name="bad", description="Bad", category="test")
        def bad() -> ToolResult:
            return ToolResult()


def test_get_unknown(reg: ToolRegistry) -> None:
    assert reg.get("nope") is None


# -- Execution ---------------------------------------------------------------


class _EchoParams(ToolParams):
    text: str = Field(description="Text to echo")
    times: int = Field(default=1, ge=1)


async def test_execute_with_params(reg: ToolRegistry) -> None:
    @reg.tool(name="echo", description="Echo", category="test", params_model=_EchoParams)
    async def echo(text: str, times: int) -> ToolResult:
        return ToolResult(data={"echo": text * times})

    result = await reg.execute("echo", {"text": "ab", "times": 2})
    assert result.data == {"echo": "abab"}


async def test_execute_invalid_params(reg: ToolRegistry) -> None:
    @reg.tool(name="echo", description="Echo", category="test", params_model=_EchoParams)
    async def echo(text: str, times: int) -> ToolResult:
        return ToolResult(data={"echo": text})

    result = await reg.execute("echo", {"times": 0})
    assert not result.success
    assert "echo" in result.error


async def test_execute_handler_exception(reg: ToolRegistry) -> None:
    @reg.tool(name="boom", description="Boom", category="test")
    async def boom() -> ToolResult:
        raise RuntimeError("kaboom")

    result = await reg.execute("boom", {})
    assert result.error == "Tool 'boom' failed. Check logs for details."


async def test_execute_unknown_tool(reg: ToolRegistry) -> None:
    result = await reg.execute("missing", {})
    assert result.error == "Unknown tool: missing"


# -- Confirmation ------------------------------------------------------------


async def test_confirmation_required_holds_call(reg: ToolRegistry) -> None:
    calls = []

    @reg.tool(name="drop", description="Drop", category="test", requires_confirmation=True)
    async def drop() -> ToolResult:
        calls.append(1)
        return ToolResult(data={"dropped": True})

    held = await reg.execute("drop", {})
    assert held.data == {"confirmation_required": True, "tool": "drop", "arguments": {}}
    assert calls == []

    result = await reg.execute("drop", {}, confirmed=True)
    assert result.data == {"dropped": True}
    assert calls == [1]


def test_by_category(reg: ToolRegistry) -> None:
    @reg.tool(name="a", description="A", category="scheduler")
    async def a() -> ToolResult:
        return ToolResult()

    @reg.tool(name="b", description="B", category="other")
    async def b() -> ToolResult:
        return ToolResult()

    assert [entry.name for entry in reg.by_category("scheduler")] == ["a"]


def test_duplicate_registration_keeps_newer(reg: ToolRegistry, caplog) -> None:
    @reg.tool(name="dup", description="First", category="test")
    async def first() -> ToolResult:
        return ToolResult()

    @reg.tool(name="dup", description="Second", category="test")
    async def second() -> ToolResult:
        return ToolResult()

    assert reg.get("dup").description == "Second"
    assert any("registered twice" in r.getMessage() for r in caplog.records)


# -- Schemas -----------------------------------------------------------------


def test_schema_with_params(reg: ToolRegistry) -> None:
    @reg.tool(name="echo", description="Echo", category="test", params_model=_EchoParams)
    async def echo(text: str, times: int) -> ToolResult:
        return ToolResult()

    (schema,) = reg.get_schemas()
    assert schema["name"] == "echo"
    assert schema["description"] == "Echo"
    assert "text" in schema["input_schema"]["properties"]
    assert schema["input_schema"]["required"] == ["text"]


def test_schema_without_params(reg: ToolRegistry) -> None:
    @reg.tool(name="ping", description="Ping", category="test")
    async def ping() -> ToolResult:
        return ToolResult()

    (schema,) = reg.get_schemas()
    assert schema["input_schema"] == {"type": "object", "properties": {}}


# -- ToolResult --------------------------------------------------------------


def test_tool_result_content() -> None:
    assert json.loads(ToolResult(data={"a": 1}).to_content()) == {"a": 1}
    assert json.loads(ToolResult(error="bad").to_content()) == {"error": "bad"}
    assert ToolResult().to_content() == "{}"
    assert ToolResult().success is True


def test_tool_result_content_stringifies_datetimes() -> None:
    result = ToolResult(data={"next_run_at": datetime(2025, 3, 10, 9, 0, tzinfo=UTC)})
    assert json.loads(result.to_content()) == {"next_run_at": "2025-03-10 09:00:00+00:00"}
