"""Tests for StateManager."""

import pytest

from openjragent.core.events import EventType
from openjragent.core.exceptions import StorageError
from openjragent.core.state import (
    AgentPhase,
    ChatMessage,
    InvalidStateTransitionError,
    MessageRole,
    validate_transition,
)
from openjragent.core.state_manager import StateManager


class TestPhaseTransitions:
    """Tests for phase updates."""

    def test_update_phase_emits_event(self, state_manager: StateManager, recorded_events):
        state_manager.update_phase(AgentPhase.EXECUTING)

        assert state_manager.phase == AgentPhase.EXECUTING
        assert recorded_events[-1].type == EventType.PHASE_CHANGED
        assert recorded_events[-1].data == {"from": "planning", "to": "executing"}

    def test_invalid_transition_raises(self, state_manager: StateManager):
        state_manager.update_phase(AgentPhase.FAILED)
        with pytest.raises(InvalidStateTransitionError):
            state_manager.update_phase(AgentPhase.PLANNING)

    def test_same_phase_is_allowed(self):
        validate_transition(AgentPhase.EXECUTING, AgentPhase.EXECUTING)

    def test_answering_only_from_planning(self):
        validate_transition(AgentPhase.PLANNING, AgentPhase.ANSWERING)
        with pytest.raises(InvalidStateTransitionError):
            validate_transition(AgentPhase.EXECUTING, AgentPhase.ANSWERING)

    def test_mark_completed_sets_end_time(self, state_manager: StateManager):
        state_manager.mark_completed()
        state = state_manager.get_state()
        assert state.phase == AgentPhase.COMPLETED
        assert state.end_time is not None
        assert state.is_terminal

    def test_mark_failed_is_idempotent(self, state_manager: StateManager, recorded_events):
        state_manager.mark_failed("first")
        state_manager.mark_failed("second")
        phase_events = [e for e in recorded_events if e.type == EventType.PHASE_CHANGED]
        assert len(phase_events) == 1


class TestStateMutation:
    """Tests for iteration, messages and usage."""

    def test_increment_iteration(self, state_manager: StateManager, recorded_events):
        assert state_manager.increment_iteration() == 1
        assert recorded_events[-1].type == EventType.ITERATION_STARTED
        assert recorded_events[-1].data == {"iteration": 1, "max_iterations": 10}

    def test_max_iterations_reached(self):
        manager = StateManager(max_iterations=2)
        manager.increment_iteration()
        assert not manager.is_max_iterations_reached()
        manager.increment_iteration()
        assert manager.is_max_iterations_reached()

    def test_get_state_returns_copy(self, state_manager: StateManager):
        state_manager.add_message(ChatMessage(role=MessageRole.USER, content="hi"))
        first = state_manager.get_state()
        state_manager.add_message(ChatMessage(role=MessageRole.ASSISTANT, content="hello"))

        assert len(first.conversation.messages) == 1
        assert len(state_manager.get_state().conversation.messages) == 2

    def test_add_usage_accumulates(self, state_manager: StateManager):
        state_manager.add_usage(tokens=10)
        state_manager.add_usage(tokens=5, tool_calls=2, cost=0.5)

        metadata = state_manager.get_state().metadata
        assert metadata.total_tokens == 15
        assert metadata.tool_calls_count == 2
        assert metadata.total_cost == 0.5

    def test_reset_keeps_bound(self):
        manager = StateManager(max_iterations=4)
        manager.increment_iteration()
        state = manager.reset()
        assert state.current_iteration == 0
        assert state.max_iterations == 4
        assert manager.reset(7).max_iterations == 7


class TestPersistence:
    """Tests for save and load."""

    @pytest.mark.asyncio
    async def test_save_and_load(self, state_manager: StateManager, tmp_path):
        state_manager.add_message(ChatMessage(role=MessageRole.USER, content="goal"))
        state_manager.increment_iteration()
        path = await state_manager.save(tmp_path / "nested" / "state.json")

        other = StateManager()
        loaded = await other.load(path)

        assert loaded == state_manager.get_state()

    @pytest.mark.asyncio
    async def test_load_missing_file_raises(self, state_manager: StateManager, tmp_path):
        with pytest.raises(StorageError):
            await state_manager.load(tmp_path / "missing.json")

    @pytest.mark.asyncio
    async def test_load_invalid_file_raises(self, state_manager: StateManager, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json")
        with pytest.raises(StorageError):
            await state_manager.load(path)
