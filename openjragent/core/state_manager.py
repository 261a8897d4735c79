# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Single owner of the mutable agent state.

``StateManager`` holds the current ``AgentState`` and is the only component
allowed to replace it. Every mutation builds a new frozen state with
``model_copy`` and every reader gets a deep copy, so no locks are needed as
long as one manager is driven by one loop at a time.
"""
import asyncio
from pathlib import Path
from typing import Any

from loguru import logger
from pydantic import ValidationError

from openjragent.core.events import EventEmitter, EventType
from openjragent.core.exceptions import StorageError
from openjragent.core.state import (
    AgentMetadata,
    AgentPhase,
    AgentState,
    ChatMessage,
    Plan,
    utc_now,
    validate_transition,
)


class StateManager:
    """Owns and mutates the ``AgentState`` of one run.

    Attributes:
        emitter: Event emitter used for phase and iteration events.
    """

    def __init__(self, emitter: EventEmitter | None = None, max_iterations: int = 10) -> None:
        """Initialize with a fresh planning state.

        Args:
            emitter: Event emitter shared with the other components.
            max_iterations: Iteration bound stored on the state.
        """
        self.emitter = emitter or EventEmitter()
        self._state = AgentState(max_iterations=max_iterations)

    def get_state(self) -> AgentState:
        """Return a deep copy of the current state."""
        return self._state.model_copy(deep=True)

    @property
    def phase(self) -> AgentPhase:
        """Current phase."""
        return self._state.phase

    def reset(self, max_iterations: int | None = None) -> AgentState:
        """Start over with a fresh state, keeping the iteration bound unless given.

        Returns:
            Copy of the new state.
        """
        bound = max_iterations if max_iterations is not None else self._state.max_iterations
        self._state = AgentState(max_iterations=bound)
        return self.get_state()

    def replace_state(self, state: AgentState) -> None:
        """Replace the whole state, e.g. when restoring a snapshot or session."""
        self._state = state.model_copy(deep=True)
        logger.debug("State replaced", phase=str(state.phase), iteration=state.current_iteration)

    def _update(self, **fields: Any) -> None:
        self._state = self._state.model_copy(update=fields)

    def update_phase(self, phase: AgentPhase) -> None:
        """Transition to ``phase`` and emit ``phase_changed``.

        Raises:
            InvalidStateTransitionError: If the transition is not allowed.
        """
        previous = self._state.phase
        validate_transition(previous, phase)
        self._update(phase=phase)
        logger.debug("Phase changed", from_phase=str(previous), to_phase=str(phase))
        self.emitter.emit(EventType.PHASE_CHANGED, {"from": str(previous), "to": str(phase)})

    def set_plan(self, plan: Plan | None) -> None:
        """Commit a (normalised) plan."""
        self._update(plan=plan)
        if plan is not None:
            logger.debug("Plan set", plan_id=plan.id, task_count=len(plan.tasks))

    def increment_iteration(self) -> int:
        """Advance the iteration counter and emit ``iteration_started``.

        Returns:
            The new iteration number.
        """
        iteration = self._state.current_iteration + 1
        self._update(current_iteration=iteration)
        self.emitter.emit(
            EventType.ITERATION_STARTED,
            {"iteration": iteration, "max_iterations": self._state.max_iterations},
        )
        return iteration

    def is_max_iterations_reached(self) -> bool:
        """Whether the iteration counter has reached its bound."""
        return self._state.current_iteration >= self._state.max_iterations

    def add_message(self, message: ChatMessage) -> None:
        """Append a message to the conversation."""
        conversation = self._state.conversation
        self._update(
            conversation=conversation.model_copy(
                update={"messages": (*conversation.messages, message), "updated_at": utc_now()}
            )
        )

    def update_metadata(self, **fields: Any) -> None:
        """Overwrite selected metadata fields."""
        self._update(metadata=self._state.metadata.model_copy(update=fields))

    def add_usage(self, tokens: int = 0, tool_calls: int = 0, cost: float = 0.0) -> None:
        """Increment the usage counters."""
        current = self._state.metadata
        self._update(
            metadata=AgentMetadata(
                total_tokens=current.total_tokens + tokens,
                total_cost=current.total_cost + cost,
                tool_calls_count=current.tool_calls_count + tool_calls,
            )
        )

    def mark_completed(self) -> None:
        """Set the end time and move to the completed phase."""
        self.update_phase(AgentPhase.COMPLETED)
        self._update(end_time=utc_now())

    def mark_failed(self, error: str | None = None) -> None:
        """Set the end time and move to the failed phase."""
        if self._state.phase == AgentPhase.FAILED:
            return
        self.update_phase(AgentPhase.FAILED)
        self._update(end_time=utc_now())
        if error:
            logger.warning("Run marked failed", error=error)

    async def save(self, path: Path | str) -> Path:
        """Serialize the full state to a JSON file.

        Args:
            path: Destination file. Parent directories are created.

        Returns:
            The written path.

        Raises:
            StorageError: If the file cannot be written.
        """
        target = Path(path)
        payload = self._state.model_dump_json(indent=2)

        def _write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(payload, encoding="utf-8")

        try:
            await asyncio.to_thread(_write)
        except OSError as e:
            raise StorageError(f"Failed to save state to {target}: {e}", details={"path": str(target)}) from e
        logger.debug("State saved", path=str(target))
        return target

    async def load(self, path: Path | str) -> AgentState:
        """Load state from a JSON file written by ``save`` and adopt it.

        Raises:
            StorageError: If the file is missing, unreadable or invalid.
        """
        source = Path(path)
        try:
            raw = await asyncio.to_thread(source.read_text, encoding="utf-8")
            state = AgentState.model_validate_json(raw)
        except (OSError, ValidationError) as e:
            raise StorageError(f"Failed to load state from {source}: {e}", details={"path": str(source)}) from e
        self._state = state
        logger.debug("State loaded", path=str(source), phase=str(state.phase))
        return self.get_state()
