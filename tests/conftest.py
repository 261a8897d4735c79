# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Shared fixtures and helpers for all tests.

This module provides factory fixtures for creating plans, chat clients,
tools and settings used throughout the test suite.
"""
import asyncio
import json
from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from openjragent.core.events import AgentEvent, EventEmitter
from openjragent.core.plan import normalize_plan
from openjragent.core.state import Plan, Task, TaskStatus, ToolCall, ToolResult
from openjragent.core.state_manager import StateManager
from openjragent.core.types import AgentConfig, RetryConfig, Settings
from openjragent.drivers.base import ChatResponse, TokenUsage
from openjragent.tools.base import BaseTool, ToolParameter


def chat_response(
    content: str | dict[str, Any] = "",
    tool_calls: list[ToolCall] | None = None,
    total_tokens: int = 10,
) -> ChatResponse:
    """Build a ChatResponse, serializing dict content as JSON."""
    if isinstance(content, dict):
        content = json.dumps(content)
    return ChatResponse(
        content=content,
        tool_calls=tuple(tool_calls or ()),
        finish_reason="tool_calls" if tool_calls else "stop",
        usage=TokenUsage(total_tokens=total_tokens),
    )


@pytest.fixture
def response_factory() -> Callable[..., ChatResponse]:
    """Factory fixture for ChatResponse instances."""
    return chat_response


@pytest.fixture
def mock_chat_client_factory() -> Callable[..., MagicMock]:
    """Factory fixture for chat clients returning scripted responses in order.

    Items may be ChatResponse instances, dicts (sent as JSON content),
    strings, or exceptions to raise.
    """
    def _create(*responses: ChatResponse | dict[str, Any] | str | Exception) -> MagicMock:
        scripted = [
            r if isinstance(r, ChatResponse | Exception) else chat_response(r)
            for r in responses
        ]
        client = MagicMock()
        client.chat = AsyncMock(side_effect=scripted)
        return client
    return _create


@pytest.fixture
def mock_task_factory() -> Callable[..., Task]:
    """Factory fixture for creating test Task instances with sensible defaults."""
    def _create(
        id: str = "task-1",
        title: str = "Test task",
        description: str = "Test task description",
        status: TaskStatus = TaskStatus.PENDING,
        priority: int = 3,
        dependencies: tuple[str, ...] = (),
    ) -> Task:
        return Task(
            id=id,
            title=title,
            description=description,
            status=status,
            priority=priority,
            dependencies=dependencies,
        )
    return _create


@pytest.fixture
def mock_plan_factory() -> Callable[..., Plan]:
    """Factory fixture for normalised plans.

    Tasks are given as (id, dependencies) tuples or full mappings.
    Priorities default to 3 so that failures are not critical.
    """
    def _create(
        tasks: list[tuple[str, list[str]] | dict[str, Any]],
        goal: str = "Test goal",
    ) -> Plan:
        raw_tasks = []
        for entry in tasks:
            if isinstance(entry, dict):
                raw_tasks.append({"priority": 3, **entry})
            else:
                task_id, deps = entry
                raw_tasks.append({"id": task_id, "title": task_id.upper(), "dependencies": deps, "priority": 3})
        return normalize_plan({"goal": goal, "tasks": raw_tasks})
    return _create


@pytest.fixture
def emitter() -> EventEmitter:
    """Fresh event emitter."""
    return EventEmitter()


@pytest.fixture
def recorded_events(emitter: EventEmitter) -> list[AgentEvent]:
    """Every event emitted on the ``emitter`` fixture, in order."""
    events: list[AgentEvent] = []
    emitter.on(None, events.append)
    return events


@pytest.fixture
def state_manager(emitter: EventEmitter) -> StateManager:
    """State manager wired to the ``emitter`` fixture."""
    return StateManager(emitter, max_iterations=10)


@pytest.fixture
def mock_settings_factory(tmp_path) -> Callable[..., Settings]:
    """Factory fixture for Settings with fast retries and a temp state dir."""
    def _create(**agent_overrides: Any) -> Settings:
        agent = AgentConfig(
            **{
                "require_confirmation": False,
                "classify_goals": False,
                "auto_save": False,
                "state_dir": str(tmp_path / "logs"),
                **agent_overrides,
            }
        )
        return Settings(
            agent=agent,
            retry=RetryConfig(max_retries=0, base_delay=0.0, jitter=0.0),
        )
    return _create


@pytest.fixture
def tool_factory() -> Callable[..., BaseTool]:
    """Factory fixture for tools with scripted behaviour.

    Args (of the returned callable):
        name: Tool name.
        result: ToolResult returned by execute. Defaults to a success echoing the args.
        raises: Exception raised by execute instead of returning.
        delay: Seconds to sleep before returning.
        dangerous: Whether the tool requires confirmation.
        parameters: Declared parameters.
    """
    def _create(
        name: str = "echo",
        result: ToolResult | None = None,
        raises: Exception | None = None,
        delay: float = 0.0,
        dangerous: bool = False,
        parameters: tuple[ToolParameter, ...] = (),
    ) -> BaseTool:
        class _ScriptedTool(BaseTool):
            description = f"Scripted {name} tool"

            def __init__(self) -> None:
                self.calls: list[dict[str, Any]] = []

            async def execute(self, args: dict[str, Any]) -> ToolResult:
                self.calls.append(args)
                if delay:
                    await asyncio.sleep(delay)
                if raises is not None:
                    raise raises
                return result or ToolResult(success=True, data=args)

        _ScriptedTool.name = name
        _ScriptedTool.dangerous = dangerous
        _ScriptedTool.parameters = parameters
        return _ScriptedTool()
    return _create
