# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Process-local event emitter for agent lifecycle events."""
import contextlib
from collections import defaultdict
from collections.abc import Callable
from datetime import datetime
from enum import StrEnum
from typing import Any

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from openjragent.core.state import utc_now


class EventType(StrEnum):
    """Kinds of events emitted by the agent core.

    Attributes:
        PHASE_CHANGED: The agent moved to a new phase. Payload: from, to.
        ITERATION_STARTED: A loop iteration began. Payload: iteration, max_iterations.
        ITERATION_COMPLETED: A loop iteration ended. Payload: iteration, completed, failed.
        TASK_STARTED: A task began executing. Payload: task_id, title.
        TASK_COMPLETED: A task finished. Payload: task_id, success, error.
        TOOL_CALLED: A tool call is about to run. Payload: tool_name, tool_call_id, arguments.
        TOOL_COMPLETED: A tool call finished. Payload: tool_name, tool_call_id, success, execution_time.
        ERROR_OCCURRED: An error was caught. Payload: error, phase.
        USER_CONFIRMATION_REQUIRED: User input is needed. Payload: kind and context.
    """

    PHASE_CHANGED = "phase_changed"
    ITERATION_STARTED = "iteration_started"
    ITERATION_COMPLETED = "iteration_completed"
    TASK_STARTED = "task_started"
    TASK_COMPLETED = "task_completed"
    TOOL_CALLED = "tool_called"
    TOOL_COMPLETED = "tool_completed"
    ERROR_OCCURRED = "error_occurred"
    USER_CONFIRMATION_REQUIRED = "user_confirmation_required"


class AgentEvent(BaseModel):
    """An emitted event."""

    model_config = ConfigDict(frozen=True)

    type: EventType
    timestamp: datetime = Field(default_factory=utc_now)
    data: dict[str, Any] = Field(default_factory=dict)


Listener = Callable[[AgentEvent], None]


class EventEmitter:
    """Synchronous typed publish/subscribe.

    Listeners are called in registration order. Exceptions raised by a
    listener are logged and never reach the emitter or other listeners.
    Listeners must not block: they run in the caller's context.
    """

    def __init__(self) -> None:
        self._listeners: dict[EventType | None, list[Listener]] = defaultdict(list)
        self._once: set[tuple[EventType | None, int]] = set()

    def on(self, event_type: EventType | None, listener: Listener) -> None:
        """Register a listener.

        Args:
            event_type: Event kind to listen for, or None for every event.
            listener: Callback receiving the event.
        """
        self._listeners[event_type].append(listener)

    def once(self, event_type: EventType | None, listener: Listener) -> None:
        """Register a listener that is removed after its first call."""
        self.on(event_type, listener)
        self._once.add((event_type, id(listener)))

    def off(self, event_type: EventType | None, listener: Listener) -> None:
        """Remove a previously registered listener. Unknown listeners are ignored."""
        with contextlib.suppress(ValueError):
            self._listeners[event_type].remove(listener)
        self._once.discard((event_type, id(listener)))

    def remove_all_listeners(self, event_type: EventType | None = None) -> None:
        """Remove every listener for one event kind, or all listeners."""
        if event_type is None:
            self._listeners.clear()
            self._once.clear()
        else:
            self._listeners.pop(event_type, None)
            self._once = {key for key in self._once if key[0] != event_type}

    def listener_count(self, event_type: EventType | None) -> int:
        """Number of listeners registered for ``event_type``."""
        return len(self._listeners.get(event_type, []))

    def emit(self, event_type: EventType, data: dict[str, Any] | None = None) -> AgentEvent:
        """Emit an event to its listeners, then to catch-all listeners.

        Args:
            event_type: Kind of event.
            data: Event payload.

        Returns:
            The emitted event.
        """
        event = AgentEvent(type=event_type, data=data or {})
        for key in (event_type, None):
            for listener in list(self._listeners.get(key, [])):
                if (key, id(listener)) in self._once:
                    self.off(key, listener)
                try:
                    listener(event)
                except Exception as exc:
                    listener_name = getattr(listener, "__name__", repr(listener))
                    logger.exception(
                        "Event listener raised exception",
                        listener=listener_name,
                        event_type=str(event_type),
                        error=str(exc),
                    )
        return event
