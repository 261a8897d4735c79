# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""State models for the agent core.

All value types here are frozen pydantic models. Use
``model_copy(update={...})`` to derive modified copies; ``StateManager`` is
the only component that commits a new ``AgentState``.
"""
import json
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from openjragent.core.exceptions import AgentError


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def new_id() -> str:
    """Return a fresh random identifier."""
    return str(uuid4())


class AgentPhase(StrEnum):
    """Phase of the agent main loop."""

    PLANNING = "planning"
    CONFIRMING = "confirming"
    EXECUTING = "executing"
    REFLECTING = "reflecting"
    ANSWERING = "answering"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_PHASES = frozenset({AgentPhase.COMPLETED, AgentPhase.FAILED})

# A completed run may still be failed afterwards when persisting its outcome fails.
VALID_TRANSITIONS: dict[AgentPhase, set[AgentPhase]] = {
    AgentPhase.PLANNING: {AgentPhase.CONFIRMING, AgentPhase.EXECUTING, AgentPhase.ANSWERING, AgentPhase.COMPLETED, AgentPhase.FAILED},
    AgentPhase.CONFIRMING: {AgentPhase.PLANNING, AgentPhase.EXECUTING, AgentPhase.COMPLETED, AgentPhase.FAILED},
    AgentPhase.EXECUTING: {AgentPhase.PLANNING, AgentPhase.REFLECTING, AgentPhase.COMPLETED, AgentPhase.FAILED},
    AgentPhase.REFLECTING: {AgentPhase.PLANNING, AgentPhase.CONFIRMING, AgentPhase.EXECUTING, AgentPhase.COMPLETED, AgentPhase.FAILED},
    AgentPhase.ANSWERING: {AgentPhase.COMPLETED, AgentPhase.FAILED},
    AgentPhase.COMPLETED: {AgentPhase.FAILED},
    AgentPhase.FAILED: set(),
}


class InvalidStateTransitionError(AgentError):
    """Raised when attempting an invalid phase transition.

    Attributes:
        current: The current phase.
        target: The attempted target phase.
    """

    code = "STATE_ERROR"

    def __init__(self, current: AgentPhase, target: AgentPhase):
        self.current = current
        self.target = target
        super().__init__(
            f"Cannot transition from '{current}' to '{target}'",
            details={"current": str(current), "target": str(target)},
        )


def validate_transition(current: AgentPhase, target: AgentPhase) -> None:
    """Validate that a phase transition is allowed.

    Re-entering the current phase is always allowed.

    Args:
        current: The current phase.
        target: The desired new phase.

    Raises:
        InvalidStateTransitionError: If the transition is not allowed.
    """
    if current != target and target not in VALID_TRANSITIONS[current]:
        raise InvalidStateTransitionError(current, target)


class TaskStatus(StrEnum):
    """Lifecycle status of a single task."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    BLOCKED = "blocked"


class MessageRole(StrEnum):
    """Author of a conversation message."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ToolCall(BaseModel):
    """A tool invocation requested by the model.

    Attributes:
        id: Identifier assigned by the model, echoed in the tool result message.
        name: Registered tool name.
        arguments: Argument map passed to the tool.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class ToolResult(BaseModel):
    """Outcome of a tool invocation. Immutable once produced.

    Attributes:
        success: Whether the tool completed without error.
        data: Tool-specific payload.
        error: Error message when ``success`` is False.
        metadata: Execution metadata, including ``execution_time`` in seconds.
    """

    model_config = ConfigDict(frozen=True)

    success: bool
    data: Any = None
    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def to_content(self) -> str:
        """Render the result as the text fed back to the model."""
        if self.success:
            if isinstance(self.data, str):
                return self.data
            return json.dumps(self.data, default=str)
        return f"Error: {self.error}"


class ChatMessage(BaseModel):
    """One entry in the conversation transcript."""

    model_config = ConfigDict(frozen=True)

    role: MessageRole
    content: str = ""
    timestamp: datetime = Field(default_factory=utc_now)
    tool_calls: tuple[ToolCall, ...] = ()
    tool_call_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class Task(BaseModel):
    """A single unit of work inside a plan.

    Attributes:
        id: Unique identifier within the plan.
        title: Short title, also usable as a dependency reference before normalisation.
        description: What needs to be done.
        status: Current lifecycle status.
        priority: Execution rank, lower is more important.
        dependencies: Ids of tasks that must complete first.
        result: Final output when completed.
        error: Failure reason when failed.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    title: str
    description: str = ""
    status: TaskStatus = TaskStatus.PENDING
    priority: int = 1
    dependencies: tuple[str, ...] = ()
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    result: str | None = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        """Whether the task has finished, successfully or not."""
        return self.status in (TaskStatus.COMPLETED, TaskStatus.FAILED)


class Plan(BaseModel):
    """An ordered set of dependent tasks derived from a goal."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    goal: str
    tasks: tuple[Task, ...] = ()
    current_task_id: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def get_task(self, task_id: str) -> Task | None:
        """Look up a task by id."""
        return next((t for t in self.tasks if t.id == task_id), None)

    def with_task(self, task_id: str, **updates: Any) -> "Plan":
        """Return a copy of the plan with one task updated.

        Args:
            task_id: Id of the task to update.
            **updates: Field values to set on the task.

        Returns:
            New plan containing the updated task.

        Raises:
            KeyError: If no task has the given id.
        """
        if self.get_task(task_id) is None:
            raise KeyError(task_id)
        now = utc_now()
        tasks = tuple(
            t.model_copy(update={**updates, "updated_at": now}) if t.id == task_id else t
            for t in self.tasks
        )
        return self.model_copy(update={"tasks": tasks, "updated_at": now})

    @property
    def all_terminal(self) -> bool:
        """Whether every task is completed or failed."""
        return all(t.is_terminal for t in self.tasks)

    def count(self, status: TaskStatus) -> int:
        """Count tasks with the given status."""
        return sum(1 for t in self.tasks if t.status == status)


class Conversation(BaseModel):
    """Ordered transcript of the run."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=new_id)
    messages: tuple[ChatMessage, ...] = ()
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class AgentMetadata(BaseModel):
    """Usage counters for the run."""

    model_config = ConfigDict(frozen=True)

    total_tokens: int = 0
    total_cost: float = 0.0
    tool_calls_count: int = 0


class AgentState(BaseModel):
    """Complete state of one agent run.

    This is the persisted interchange layout for snapshots and sessions.
    """

    model_config = ConfigDict(frozen=True)

    phase: AgentPhase = AgentPhase.PLANNING
    plan: Plan | None = None
    conversation: Conversation = Field(default_factory=Conversation)
    current_iteration: int = 0
    max_iterations: int = 10
    start_time: datetime = Field(default_factory=utc_now)
    end_time: datetime | None = None
    metadata: AgentMetadata = Field(default_factory=AgentMetadata)

    @property
    def is_terminal(self) -> bool:
        """Whether the run has finished."""
        return self.phase in TERMINAL_PHASES

    def completed_tasks(self) -> list[Task]:
        """Tasks of the current plan that have completed."""
        if self.plan is None:
            return []
        return [t for t in self.plan.tasks if t.status == TaskStatus.COMPLETED]


class TaskResult(BaseModel):
    """Outcome of executing one task."""

    model_config = ConfigDict(frozen=True)

    task_id: str
    success: bool
    output: str | None = None
    error: str | None = None


class ExecutionResult(BaseModel):
    """Outcome of one executor pass over a plan.

    Attributes:
        completed_tasks: Number of tasks completed during this pass.
        failed_tasks: Number of tasks failed during this pass.
        results: Per-task results in execution order.
        halted: True when a critical task failure stopped the pass.
        plan: The plan with task statuses as they stood at the end of the pass.
    """

    model_config = ConfigDict(frozen=True)

    completed_tasks: int = 0
    failed_tasks: int = 0
    results: tuple[TaskResult, ...] = ()
    halted: bool = False
    plan: Plan | None = None


class ReflectionStatus(StrEnum):
    """Verdict of a reflection."""

    COMPLETED = "completed"
    BLOCKED = "blocked"
    NEEDS_IMPROVEMENT = "needs_improvement"
    MAX_ITERATIONS_REACHED = "max_iterations_reached"


class NextAction(StrEnum):
    """What the main loop should do after reflecting."""

    FINISH = "finish"
    ASK_USER = "ask_user"
    REPLAN = "replan"


class ReflectionResult(BaseModel):
    """Decision produced by the reflector.

    ``new_plan`` is the raw structure proposed by the model and must be
    normalised before it is committed.
    """

    model_config = ConfigDict(frozen=True)

    status: ReflectionStatus
    next_action: NextAction
    summary: str = ""
    issues: tuple[str, ...] = ()
    suggestions: tuple[str, ...] = ()
    question: str | None = None
    new_plan: dict[str, Any] | None = None


class DirectAnswer(BaseModel):
    """Planner outcome for goals that need no task breakdown."""

    model_config = ConfigDict(frozen=True)

    type: Literal["direct_answer"] = "direct_answer"
    answer: str


class PlanResult(BaseModel):
    """Planner outcome carrying a normalised plan."""

    model_config = ConfigDict(frozen=True)

    type: Literal["plan"] = "plan"
    plan: Plan


PlannerOutcome = DirectAnswer | PlanResult


class ConfirmationAction(StrEnum):
    """User response to a proposed plan."""

    CONFIRM = "confirm"
    CANCEL = "cancel"
    REPLAN = "replan"


class ConfirmationResult(BaseModel):
    """User decision on a proposed plan.

    ``plan`` carries the user-modified plan (a ``Plan`` or raw mapping)
    when ``action`` is ``replan``.
    """

    model_config = ConfigDict(frozen=True)

    action: ConfirmationAction
    plan: Plan | dict[str, Any] | None = None
