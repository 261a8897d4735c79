# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Tool registry and dispatcher."""
import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from typing import Any

from loguru import logger

from openjragent.core.events import EventEmitter, EventType
from openjragent.core.state import ToolCall, ToolResult
from openjragent.core.types import ToolsConfig
from openjragent.tools.base import Tool, ToolDefinition


ConfirmCallback = Callable[[ToolCall, ToolDefinition], Awaitable[bool]]

CANCELLED_MESSAGE = "Operation cancelled by user"


class ToolManager:
    """Registry mapping tool names to implementations.

    ``execute`` never raises for tool-level problems: unknown tools,
    invalid arguments, refused confirmations, timeouts and exceptions
    raised by the tool all become failed ``ToolResult`` values.

    Attributes:
        config: Tool policy (enabled subset, confirmation, timeout).
        emitter: Event emitter for tool lifecycle events.
    """

    def __init__(
        self,
        config: ToolsConfig | None = None,
        confirm: ConfirmCallback | None = None,
        emitter: EventEmitter | None = None,
        tools: Iterable[Tool] = (),
    ) -> None:
        """Initialize the manager.

        Args:
            config: Tool policy. Defaults to ``ToolsConfig()``.
            confirm: Async callback asked before running a dangerous tool.
                When absent, dangerous calls are refused.
            emitter: Event emitter shared with the other components.
            tools: Tools to register immediately.
        """
        self.config = config or ToolsConfig()
        self.emitter = emitter or EventEmitter()
        self._confirm = confirm
        self._tools: dict[str, Tool] = {}
        for tool in tools:
            self.register(tool)

    @property
    def tools(self) -> Mapping[str, Tool]:
        """Read-only view of the registry."""
        return dict(self._tools)

    def register(self, tool: Tool) -> None:
        """Register a tool.

        Raises:
            ValueError: If a tool with the same name is already registered.
        """
        if tool.name in self._tools:
            raise ValueError(f"Tool already registered: {tool.name}")
        self._tools[tool.name] = tool
        logger.debug("Tool registered", tool_name=tool.name, dangerous=tool.dangerous)

    def unregister(self, name: str) -> bool:
        """Remove a tool. Returns whether it was registered."""
        return self._tools.pop(name, None) is not None

    def clear(self) -> None:
        """Remove every tool."""
        self._tools.clear()

    def has_tool(self, name: str) -> bool:
        """Whether ``name`` is registered."""
        return name in self._tools

    def get_tool(self, name: str) -> Tool | None:
        """Look up a tool by name."""
        return self._tools.get(name)

    def tool_names(self) -> list[str]:
        """Names of the exposed tools in registration order."""
        return [d.name for d in self.get_definitions()]

    def get_definitions(self) -> list[ToolDefinition]:
        """Catalogue of exposed tools.

        When ``config.enabled`` is non-empty only those tools are exposed.
        """
        enabled = set(self.config.enabled)
        return [
            tool.get_definition()
            for name, tool in self._tools.items()
            if not enabled or name in enabled
        ]

    def get_schemas(self) -> list[dict[str, Any]]:
        """Catalogue rendered as function schemas for a model request."""
        return [d.to_json_schema() for d in self.get_definitions()]

    async def execute(self, call: ToolCall) -> ToolResult:
        """Validate, confirm and run a tool call.

        Args:
            call: Tool call requested by the model.

        Returns:
            The tool result with ``execution_time`` (seconds), ``tool_name``
            and ``tool_call_id`` in its metadata.
        """
        base_meta = {"tool_name": call.name, "tool_call_id": call.id}
        tool = self._tools.get(call.name)
        if tool is None or (self.config.enabled and call.name not in self.config.enabled):
            logger.warning("Tool not found", tool_name=call.name)
            return ToolResult(success=False, error=f"Tool not found: {call.name}", metadata=base_meta)

        try:
            validation = tool.validate(call.arguments)
        except Exception as exc:
            logger.exception("Tool validation raised exception", tool_name=call.name, error=str(exc))
            error = f"Validation failed: {str(exc) or type(exc).__name__}"
            return ToolResult(success=False, error=error, metadata=base_meta)
        if not validation.valid:
            error = "Validation failed: " + "; ".join(validation.errors)
            logger.warning("Tool arguments invalid", tool_name=call.name, errors=list(validation.errors))
            return ToolResult(success=False, error=error, metadata=base_meta)

        if tool.dangerous and self.config.confirm_dangerous and not await self._ask_confirmation(call, tool):
            logger.info("Dangerous tool call refused", tool_name=call.name)
            return ToolResult(
                success=False, error=CANCELLED_MESSAGE, metadata={**base_meta, "cancelled": True}
            )

        self.emitter.emit(
            EventType.TOOL_CALLED,
            {"tool_name": call.name, "tool_call_id": call.id, "arguments": call.arguments},
        )
        started = time.perf_counter()
        try:
            async with asyncio.timeout(self.config.timeout):
                result = await tool.execute(call.arguments)
        except TimeoutError:
            result = ToolResult(success=False, error=f"Tool timed out after {self.config.timeout}s")
        except Exception as exc:
            logger.exception("Tool raised exception", tool_name=call.name, error=str(exc))
            result = ToolResult(success=False, error=str(exc) or type(exc).__name__)
        elapsed = time.perf_counter() - started

        result = result.model_copy(
            update={"metadata": {**result.metadata, **base_meta, "execution_time": elapsed}}
        )
        self.emitter.emit(
            EventType.TOOL_COMPLETED,
            {
                "tool_name": call.name,
                "tool_call_id": call.id,
                "success": result.success,
                "execution_time": elapsed,
                "error": result.error,
            },
        )
        logger.debug("Tool executed", tool_name=call.name, success=result.success, execution_time=round(elapsed, 3))
        return result

    async def execute_many(self, calls: Iterable[ToolCall]) -> list[ToolResult]:
        """Execute calls one after another, in order."""
        return [await self.execute(call) for call in calls]

    async def _ask_confirmation(self, call: ToolCall, tool: Tool) -> bool:
        self.emitter.emit(
            EventType.USER_CONFIRMATION_REQUIRED,
            {"kind": "tool", "tool_name": call.name, "arguments": call.arguments},
        )
        if self._confirm is None:
            return False
        return await self._confirm(call, tool.get_definition())
