"""Tests for the tool contract and ToolManager."""

from unittest.mock import MagicMock

import pytest

from openjragent.core.events import EventType
from openjragent.core.state import ToolCall, ToolResult
from openjragent.core.types import ToolsConfig
from openjragent.tools.base import ToolDefinition, ToolParameter, validate_arguments
from openjragent.tools.manager import CANCELLED_MESSAGE, ToolManager


PATH_PARAMS = (
    ToolParameter(name="path", type="string", required=True),
    ToolParameter(name="mode", type="string", enum=("r", "w")),
    ToolParameter(name="count", type="number"),
)


class TestValidateArguments:
    """Tests for argument validation."""

    def test_valid(self):
        assert validate_arguments(PATH_PARAMS, {"path": "a.txt", "mode": "r", "count": 2}).valid

    def test_missing_required(self):
        result = validate_arguments(PATH_PARAMS, {})
        assert not result.valid
        assert result.errors == ("Missing required parameter: path",)

    def test_wrong_type_and_enum(self):
        result = validate_arguments(PATH_PARAMS, {"path": 3, "mode": "x"})
        assert len(result.errors) == 2

    def test_bool_is_not_a_number(self):
        assert not validate_arguments(PATH_PARAMS, {"path": "p", "count": True}).valid


def test_definition_json_schema():
    schema = ToolDefinition(name="read", description="Read a file", parameters=PATH_PARAMS).to_json_schema()
    function = schema["function"]
    assert schema["type"] == "function"
    assert function["name"] == "read"
    assert function["parameters"]["required"] == ["path"]
    assert function["parameters"]["properties"]["mode"]["enum"] == ["r", "w"]


class TestRegistry:
    """Tests for registration and lookup."""

    def test_register_and_lookup(self, tool_factory):
        manager = ToolManager(tools=[tool_factory("a"), tool_factory("b")])
        assert manager.has_tool("a")
        assert manager.tool_names() == ["a", "b"]
        assert manager.get_tool("missing") is None

    def test_duplicate_registration_rejected(self, tool_factory):
        manager = ToolManager(tools=[tool_factory("a")])
        with pytest.raises(ValueError):
            manager.register(tool_factory("a"))

    def test_unregister(self, tool_factory):
        manager = ToolManager(tools=[tool_factory("a")])
        assert manager.unregister("a")
        assert not manager.unregister("a")

    def test_enabled_filter(self, tool_factory):
        manager = ToolManager(ToolsConfig(enabled=["b"]), tools=[tool_factory("a"), tool_factory("b")])
        assert manager.tool_names() == ["b"]
        assert [s["function"]["name"] for s in manager.get_schemas()] == ["b"]


class TestExecute:
    """Tests for ToolManager.execute."""

    @pytest.mark.asyncio
    async def test_success_records_metadata_and_events(self, tool_factory, emitter, recorded_events):
        manager = ToolManager(emitter=emitter, tools=[tool_factory("echo")])

        result = await manager.execute(ToolCall(id="c1", name="echo", arguments={"x": 1}))

        assert result.success
        assert result.data == {"x": 1}
        assert result.metadata["tool_name"] == "echo"
        assert result.metadata["tool_call_id"] == "c1"
        assert result.metadata["execution_time"] >= 0
        assert [e.type for e in recorded_events] == [EventType.TOOL_CALLED, EventType.TOOL_COMPLETED]

    @pytest.mark.asyncio
    async def test_unknown_tool(self):
        result = await ToolManager().execute(ToolCall(name="nope"))
        assert not result.success
        assert result.error == "Tool not found: nope"

    @pytest.mark.asyncio
    async def test_validation_failure_skips_execution(self, tool_factory):
        tool = tool_factory("read", parameters=PATH_PARAMS)
        result = await ToolManager(tools=[tool]).execute(ToolCall(name="read", arguments={}))

        assert not result.success
        assert result.error.startswith("Validation failed:")
        assert tool.calls == []

    @pytest.mark.asyncio
    async def test_raising_validator_becomes_failed_result(self, tool_factory, emitter, recorded_events):
        tool = tool_factory("read")
        tool.validate = MagicMock(side_effect=ValueError("schema is broken"))
        manager = ToolManager(emitter=emitter, tools=[tool])

        result = await manager.execute(ToolCall(id="c1", name="read", arguments={"path": "a.txt"}))

        assert not result.success
        assert result.error == "Validation failed: schema is broken"
        assert result.metadata == {"tool_name": "read", "tool_call_id": "c1"}
        assert tool.calls == []
        assert recorded_events == []

    @pytest.mark.asyncio
    async def test_dangerous_without_callback_is_refused(self, tool_factory, emitter, recorded_events):
        tool = tool_factory("shell_exec", dangerous=True)
        manager = ToolManager(emitter=emitter, tools=[tool])

        result = await manager.execute(ToolCall(name="shell_exec", arguments={"cmd": "rm -rf /"}))

        assert not result.success
        assert result.error == CANCELLED_MESSAGE
        assert result.metadata["cancelled"] is True
        assert tool.calls == []
        assert recorded_events[0].type == EventType.USER_CONFIRMATION_REQUIRED
        assert recorded_events[0].data["kind"] == "tool"

    @pytest.mark.asyncio
    async def test_dangerous_with_approval_runs(self, tool_factory):
        confirmed = []

        async def confirm(call, definition):
            confirmed.append(definition.name)
            return True

        manager = ToolManager(confirm=confirm, tools=[tool_factory("shell_exec", dangerous=True)])
        result = await manager.execute(ToolCall(name="shell_exec"))

        assert result.success
        assert confirmed == ["shell_exec"]

    @pytest.mark.asyncio
    async def test_dangerous_without_confirmation_policy_runs(self, tool_factory):
        manager = ToolManager(ToolsConfig(confirm_dangerous=False), tools=[tool_factory("rm", dangerous=True)])
        assert (await manager.execute(ToolCall(name="rm"))).success

    @pytest.mark.asyncio
    async def test_timeout_becomes_failed_result(self, tool_factory):
        manager = ToolManager(ToolsConfig(timeout=0.01), tools=[tool_factory("slow", delay=1.0)])

        result = await manager.execute(ToolCall(name="slow"))

        assert not result.success
        assert "timed out" in result.error

    @pytest.mark.asyncio
    async def test_exception_becomes_failed_result(self, tool_factory):
        manager = ToolManager(tools=[tool_factory("boom", raises=RuntimeError("kaboom"))])
        result = await manager.execute(ToolCall(name="boom"))
        assert not result.success
        assert result.error == "kaboom"

    @pytest.mark.asyncio
    async def test_failed_result_passes_through(self, tool_factory):
        failed = ToolResult(success=False, error="disk full")
        manager = ToolManager(tools=[tool_factory("write", result=failed)])
        result = await manager.execute(ToolCall(name="write"))
        assert result.error == "disk full"
        assert "execution_time" in result.metadata

    @pytest.mark.asyncio
    async def test_execute_many_in_order(self, tool_factory):
        manager = ToolManager(tools=[tool_factory("echo")])
        results = await manager.execute_many(
            [ToolCall(name="echo", arguments={"n": 1}), ToolCall(name="missing"), ToolCall(name="echo", arguments={"n": 2})]
        )
        assert [r.success for r in results] == [True, False, True]
        assert results[2].data == {"n": 2}


def test_tool_result_content():
    assert ToolResult(success=True, data="text").to_content() == "text"
    assert ToolResult(success=True, data={"a": 1}).to_content() == '{"a": 1}'
    assert ToolResult(success=False, error="bad").to_content() == "Error: bad"
