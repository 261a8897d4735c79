# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Agent main loop.

Wires StateManager, Planner, Executor and Reflector into the
plan -> confirm -> execute -> reflect cycle. Every run ends in a terminal
phase and is persisted, whatever subsystem failed.
"""
import asyncio
from collections.abc import Awaitable, Callable, Iterable
from enum import StrEnum
from pathlib import Path

from loguru import logger
from pydantic import BaseModel, ConfigDict

from openjragent.agents.executor import Executor
from openjragent.agents.planner import Planner
from openjragent.agents.reflector import Reflector
from openjragent.core.events import EventEmitter, EventType
from openjragent.core.exceptions import PlanningError, StorageError
from openjragent.core.plan import normalize_plan
from openjragent.core.state import (
    AgentPhase,
    AgentState,
    ChatMessage,
    ConfirmationAction,
    ConfirmationResult,
    DirectAnswer,
    MessageRole,
    NextAction,
    Plan,
    ReflectionStatus,
    new_id,
    utc_now,
)
from openjragent.core.state_manager import StateManager
from openjragent.core.types import LLMConfig, Settings
from openjragent.drivers.base import ChatClient
from openjragent.drivers.factory import create_chat_client
from openjragent.drivers.openai import OpenAIChatClient
from openjragent.resilience.error_handler import ErrorContext, ErrorHandler
from openjragent.resilience.retry import RetryManager
from openjragent.resilience.snapshot import StateSnapshotManager
from openjragent.sessions.manager import SessionManager
from openjragent.tools.base import Tool
from openjragent.tools.manager import ConfirmCallback, ToolManager


ConfirmPlanCallback = Callable[[Plan], Awaitable[ConfirmationResult]]
AskUserCallback = Callable[[str], Awaitable[str]]


class RunStatus(StrEnum):
    """How a run ended."""

    ANSWERED = "answered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    BLOCKED = "blocked"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"
    HALTED = "halted"
    FAILED = "failed"


class AgentRunResult(BaseModel):
    """Outcome of ``Agent.run``.

    Attributes:
        status: How the run ended.
        answer: Direct answer, for answered runs.
        summary: Reflection summary or termination reason.
        error: Failure message, for failed runs.
        session_id: Id of the persisted session, if a session manager is configured.
        state: Final agent state.
    """

    model_config = ConfigDict(frozen=True)

    status: RunStatus
    answer: str | None = None
    summary: str | None = None
    error: str | None = None
    session_id: str | None = None
    state: AgentState


class _Outcome(BaseModel):
    status: RunStatus
    answer: str | None = None
    summary: str | None = None


class Agent:
    """Top-level orchestrator.

    Attributes:
        settings: Global settings.
        state_manager: Owner of the run's state.
        planner: Planner agent.
        executor: Executor agent.
        reflector: Reflector agent.
        error_handler: Classifies failures that escape the loop.
        snapshots: Snapshot store for explicit rollback via ``snapshot``/``restore``.
        session_manager: Optional session persistence.
        owned_clients: Chat clients created for this agent, closed by ``aclose``.
    """

    def __init__(
        self,
        settings: Settings,
        state_manager: StateManager,
        planner: Planner,
        executor: Executor,
        reflector: Reflector,
        confirm_plan: ConfirmPlanCallback | None = None,
        ask_user: AskUserCallback | None = None,
        session_manager: SessionManager | None = None,
        owned_clients: Iterable[OpenAIChatClient] = (),
    ) -> None:
        self.settings = settings
        self.state_manager = state_manager
        self.planner = planner
        self.executor = executor
        self.reflector = reflector
        self.session_manager = session_manager
        self.error_handler = ErrorHandler(settings.retry, settings.error_handling, state_manager.emitter)
        self.snapshots = StateSnapshotManager(settings.error_handling.max_snapshots)
        self._confirm_plan = confirm_plan
        self._ask_user = ask_user
        self.owned_clients = list(owned_clients)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: ChatClient | None = None,
        *,
        planner_client: ChatClient | None = None,
        executor_client: ChatClient | None = None,
        reflector_client: ChatClient | None = None,
        tools: Iterable[Tool] = (),
        confirm_plan: ConfirmPlanCallback | None = None,
        ask_user: AskUserCallback | None = None,
        confirm_tool: ConfirmCallback | None = None,
        session_manager: SessionManager | None = None,
        emitter: EventEmitter | None = None,
    ) -> "Agent":
        """Build an agent and all of its collaborators from settings.

        Role-specific clients take precedence over ``client``; roles without
        a client get one from ``create_chat_client``; those are closed by
        ``aclose``.

        Args:
            settings: Global settings.
            client: Chat client shared by all roles.
            planner_client: Client for the planner role.
            executor_client: Client for the executor role.
            reflector_client: Client for the reflector role.
            tools: Tools to register.
            confirm_plan: Callback asked to confirm new plans.
            ask_user: Callback asked when the reflector needs user input.
            confirm_tool: Callback asked before running dangerous tools.
            session_manager: Optional session persistence.
            emitter: Event emitter, a new one when None.

        Returns:
            Configured agent.
        """
        emitter = emitter or EventEmitter()
        state_manager = StateManager(emitter, settings.agent.max_iterations)
        retry = RetryManager(settings.retry) if settings.error_handling.enable_auto_retry else None
        tool_manager = ToolManager(settings.tools, confirm=confirm_tool, emitter=emitter, tools=tools)
        owned: list[OpenAIChatClient] = []

        def client_for(role_client: ChatClient | None, config: LLMConfig) -> ChatClient:
            if role_client is not None:
                return role_client
            if client is not None:
                return client
            created = create_chat_client(config)
            owned.append(created)
            return created

        planner = Planner(
            client_for(planner_client, settings.llm.planner),
            settings.llm.planner,
            retry=retry,
            state_manager=state_manager,
        )
        executor = Executor(
            client_for(executor_client, settings.llm.executor),
            tool_manager,
            state_manager,
            settings.llm.executor,
            critical_priority_threshold=settings.agent.critical_priority_threshold,
            critical_tools=settings.tools.critical_tools,
            retry=retry,
        )
        reflector = Reflector(
            client_for(reflector_client, settings.llm.reflector),
            settings.llm.reflector,
            retry=retry,
            state_manager=state_manager,
        )
        return cls(
            settings,
            state_manager,
            planner,
            executor,
            reflector,
            confirm_plan=confirm_plan,
            ask_user=ask_user,
            session_manager=session_manager,
            owned_clients=owned,
        )

    async def aclose(self) -> None:
        """Close the chat clients this agent created."""
        for created in self.owned_clients:
            await created.close()
        self.owned_clients.clear()

    async def __aenter__(self) -> "Agent":
        """Enter async context manager."""
        return self

    async def __aexit__(self, *_: object) -> None:
        """Exit async context manager and close owned clients."""
        await self.aclose()

    @property
    def emitter(self) -> EventEmitter:
        """Event emitter shared by every component."""
        return self.state_manager.emitter

    def snapshot(self, label: str = "manual") -> str:
        """Store a snapshot of the current state and return its id."""
        self.snapshots.cleanup(self.settings.error_handling.max_snapshot_age)
        return self.snapshots.create_snapshot(self.state_manager.get_state(), label)

    def restore(self, snapshot_id: str) -> bool:
        """Roll the state back to a snapshot. Returns False for an unknown id."""
        state = self.snapshots.restore_snapshot(snapshot_id)
        if state is None:
            return False
        self.state_manager.replace_state(state)
        return True

    async def run(self, goal: str) -> AgentRunResult:
        """Run the agent on ``goal`` until a terminal phase is reached.

        Failures inside the loop mark the run failed and are reported in the
        result. Storage failures while persisting the final state propagate
        after the run has been marked failed.

        Args:
            goal: The user's goal.

        Returns:
            The run outcome with the final state.

        Raises:
            StorageError: If the final session or state could not be persisted.
        """
        cfg = self.settings.agent
        sm = self.state_manager
        sm.reset(cfg.max_iterations)
        sm.add_message(ChatMessage(role=MessageRole.USER, content=goal))
        session_id = new_id() if self.session_manager is not None else None
        logger.info("Agent started", goal=goal[:100], session_id=session_id)

        if self.session_manager is not None and session_id is not None and cfg.auto_save:
            self.session_manager.start_auto_save(sm.get_state, lambda: self.settings, session_id, cfg.save_interval)

        outcome = _Outcome(status=RunStatus.FAILED)
        error: str | None = None
        try:
            try:
                outcome = await self._run_loop(goal)
            except Exception as e:
                error = str(e) or type(e).__name__
                state = sm.get_state()
                self.error_handler.handle(e, ErrorContext(phase=state.phase, iteration=state.current_iteration))
                logger.exception("Agent execution failed", error=error)
                sm.mark_failed(error)
        finally:
            if self.session_manager is not None:
                self.session_manager.stop_auto_save()
            if not sm.get_state().is_terminal:
                error = error or "Run interrupted"
                sm.mark_failed(error)
            await self._persist(session_id)

        final = sm.get_state()
        logger.info("Agent finished", status=str(outcome.status), phase=str(final.phase), iterations=final.current_iteration)
        return AgentRunResult(
            status=outcome.status if error is None else RunStatus.FAILED,
            answer=outcome.answer,
            summary=outcome.summary,
            error=error,
            session_id=session_id,
            state=final,
        )

    async def _run_loop(self, goal: str) -> _Outcome:
        cfg = self.settings.agent
        sm = self.state_manager
        sm.increment_iteration()

        if cfg.classify_goals:
            classification = await self.planner.classify(goal)
            if classification.is_simple:
                return self._finish_with_answer(classification.answer or "")

        planned = await self._plan(goal)
        if isinstance(planned, DirectAnswer):
            return self._finish_with_answer(planned.answer)
        if await self._confirm(planned) is None:
            return self._finish(RunStatus.CANCELLED, "Cancelled by user")

        while True:
            sm.update_phase(AgentPhase.EXECUTING)
            state = sm.get_state()
            assert state.plan is not None
            result = await self.executor.execute(state.plan, state)
            plan = result.plan or state.plan
            sm.set_plan(plan)
            self.emitter.emit(
                EventType.ITERATION_COMPLETED,
                {
                    "iteration": state.current_iteration,
                    "completed": result.completed_tasks,
                    "failed": result.failed_tasks,
                },
            )

            if result.halted:
                reason = "Critical task failed"
                sm.mark_failed(reason)
                return _Outcome(status=RunStatus.HALTED, summary=reason)

            stalled = result.completed_tasks == 0 and result.failed_tasks == 0
            if not plan.all_terminal and not stalled:
                if sm.is_max_iterations_reached():
                    return self._finish(RunStatus.MAX_ITERATIONS_REACHED, "Maximum iterations reached")
                sm.increment_iteration()
                continue

            if not cfg.enable_reflection:
                summary = "All tasks finished" if plan.all_terminal else "No runnable tasks left"
                return self._finish(RunStatus.COMPLETED, summary)

            sm.update_phase(AgentPhase.REFLECTING)
            reflection = await self.reflector.reflect(plan, result, sm.get_state())

            if reflection.next_action == NextAction.FINISH:
                status = (
                    RunStatus.COMPLETED
                    if reflection.status == ReflectionStatus.COMPLETED
                    else RunStatus.MAX_ITERATIONS_REACHED
                )
                return self._finish(status, reflection.summary)

            if sm.is_max_iterations_reached():
                return self._finish(RunStatus.MAX_ITERATIONS_REACHED, reflection.summary)

            if reflection.next_action == NextAction.ASK_USER:
                feedback = await self._ask(reflection.question or "")
                if feedback is None:
                    return self._finish(RunStatus.BLOCKED, reflection.question)
                goal = f"{goal}\n\nUser feedback: {feedback}"
                sm.add_message(ChatMessage(role=MessageRole.USER, content=feedback))
                sm.increment_iteration()
                planned = await self._plan(goal)
                if isinstance(planned, DirectAnswer):
                    return self._finish_with_answer(planned.answer)
                if await self._confirm(planned) is None:
                    return self._finish(RunStatus.CANCELLED, "Cancelled by user")
                continue

            if reflection.issues:
                logger.info("Replanning", issues=list(reflection.issues))
            new_plan = self._adopt_plan(reflection.new_plan, plan.goal)
            if new_plan is None:
                planned = await self._plan(goal)
                if isinstance(planned, DirectAnswer):
                    raise PlanningError("Planner did not return a plan during replan")
                new_plan = planned
            sm.set_plan(new_plan)
            sm.increment_iteration()

    async def _plan(self, goal: str) -> Plan | DirectAnswer:
        sm = self.state_manager
        sm.update_phase(AgentPhase.PLANNING)
        outcome = await self.planner.plan(goal, sm.get_state())
        if isinstance(outcome, DirectAnswer):
            return outcome
        sm.set_plan(outcome.plan)
        return outcome.plan

    async def _confirm(self, plan: Plan) -> Plan | None:
        """Ask the user to confirm ``plan``. Returns the plan to run, or None if cancelled."""
        if not self.settings.agent.require_confirmation:
            return plan
        sm = self.state_manager
        sm.update_phase(AgentPhase.CONFIRMING)
        self.emitter.emit(
            EventType.USER_CONFIRMATION_REQUIRED,
            {"kind": "plan", "plan_id": plan.id, "goal": plan.goal, "task_count": len(plan.tasks)},
        )
        if self._confirm_plan is None:
            logger.warning("No plan confirmation callback configured, confirming automatically")
            return plan

        decision = await self._confirm_plan(plan.model_copy(deep=True))
        if decision.action == ConfirmationAction.CANCEL:
            logger.info("User cancelled execution")
            return None
        if decision.action == ConfirmationAction.REPLAN and decision.plan is not None:
            plan = normalize_plan(decision.plan, plan.goal)
            sm.set_plan(plan)
            logger.info("User modified plan", task_count=len(plan.tasks))
        return plan

    async def _ask(self, question: str) -> str | None:
        self.emitter.emit(EventType.USER_CONFIRMATION_REQUIRED, {"kind": "question", "question": question})
        if self._ask_user is None:
            logger.warning("No ask_user callback configured, stopping as blocked")
            return None
        return await self._ask_user(question)

    def _adopt_plan(self, raw: dict | None, goal: str) -> Plan | None:
        if not raw or not isinstance(raw.get("tasks"), list):
            if raw:
                logger.warning("Reflector proposed a plan without a task list, replanning")
            return None
        return normalize_plan(raw, goal)

    def _finish(self, status: RunStatus, summary: str | None) -> _Outcome:
        self.state_manager.mark_completed()
        return _Outcome(status=status, summary=summary)

    def _finish_with_answer(self, answer: str) -> _Outcome:
        sm = self.state_manager
        sm.update_phase(AgentPhase.ANSWERING)
        sm.add_message(ChatMessage(role=MessageRole.ASSISTANT, content=answer))
        sm.mark_completed()
        return _Outcome(status=RunStatus.ANSWERED, answer=answer)

    async def _persist(self, session_id: str | None) -> None:
        """Save the final session and state file.

        Raises:
            StorageError: After marking the run failed and retrying once on a best-effort basis.
        """
        sm = self.state_manager
        state_dir = self.settings.agent.state_dir
        state_path = (
            Path(state_dir) / f"session-{utc_now().strftime('%Y%m%dT%H%M%S%f')}.json" if state_dir else None
        )
        try:
            if self.session_manager is not None:
                await self.session_manager.save_session(sm.get_state(), self.settings, session_id)
            if state_path is not None:
                await sm.save(state_path)
        except StorageError as e:
            logger.error("Failed to persist final state", error=str(e))
            sm.mark_failed(str(e))
            try:
                if state_path is not None:
                    await sm.save(state_path)
                if self.session_manager is not None:
                    await self.session_manager.save_session(sm.get_state(), self.settings, session_id)
            except StorageError as retry_error:
                logger.error("Best-effort state save failed", error=str(retry_error))
            raise


async def run_agent(agent: Agent, goal: str, timeout: float | None = None) -> AgentRunResult:
    """Run ``agent`` with an optional overall timeout.

    On timeout the run is cancelled; it still ends failed and persisted.
    """
    if timeout is None:
        return await agent.run(goal)
    async with asyncio.timeout(timeout):
        return await agent.run(goal)
