# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Planner agent: turns a goal into a direct answer or a task plan."""
from typing import Literal

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from openjragent.core.extraction import DecodeFailure, decode_model
from openjragent.core.plan import normalize_plan
from openjragent.core.state import (
    AgentState,
    ChatMessage,
    DirectAnswer,
    MessageRole,
    PlannerOutcome,
    PlanResult,
    TaskStatus,
)
from openjragent.core.state_manager import StateManager
from openjragent.core.types import LLMConfig
from openjragent.drivers.base import ChatClient, ChatRequest, ChatResponse
from openjragent.resilience.retry import RetryManager


SIMPLE_TYPES = frozenset({"simple", "direct_answer"})


class TaskSpec(BaseModel):
    """Task as proposed by the model."""

    title: str
    description: str = ""
    dependencies: list[str] = Field(default_factory=list)


class PlannerResponse(BaseModel):
    """Schema the planner asks the model to produce."""

    type: str = "complex"
    answer: str | None = None
    tasks: list[TaskSpec] = Field(default_factory=list)


class ClassificationResponse(BaseModel):
    """Schema the classification prompt asks the model to produce."""

    complexity: Literal["simple", "complex"]
    answer: str | None = None


class Classification(BaseModel):
    """Whether a goal can be answered directly.

    Attributes:
        complexity: "simple" goals are answered in one turn, "complex" ones are planned.
        answer: Direct answer for simple goals.
    """

    model_config = ConfigDict(frozen=True)

    complexity: Literal["simple", "complex"]
    answer: str | None = None

    @property
    def is_simple(self) -> bool:
        """Whether the goal was answered directly."""
        return self.complexity == "simple" and bool(self.answer)


class Planner:
    """Analyzes a goal and produces a dependency-annotated plan.

    Attributes:
        client: Chat client used for planning calls.
        config: Sampling parameters for the planner role.
    """

    SYSTEM_PROMPT = """You are a task planner. Your job is to:

1. Analyze how complex the user's task is.
2. For simple tasks (lookups, explanations, short questions) answer directly.
3. For complex tasks (programming, multi-step operations, anything needing tools
   or file changes) produce a detailed execution plan.

Respond with JSON only:
{
  "type": "simple" | "complex",
  "answer": "direct answer (simple tasks only)",
  "tasks": [
    {"title": "short title", "description": "detailed steps", "dependencies": ["title of a prerequisite task"]}
  ]
}

Guidelines:
- Keep titles short and unambiguous; dependencies refer to other tasks by title.
- Break the work into small units that can each be completed on their own.
- List tasks in the order they should run."""

    CLASSIFY_PROMPT = """Decide whether the user's request can be answered in a single reply
without tools. Respond with JSON only:
{"complexity": "simple" | "complex", "answer": "the full answer when simple, otherwise null"}"""

    def __init__(
        self,
        client: ChatClient,
        config: LLMConfig | None = None,
        retry: RetryManager | None = None,
        state_manager: StateManager | None = None,
        prompts: dict[str, str] | None = None,
    ):
        """Initialize the Planner agent.

        Args:
            client: Chat client for the planner role.
            config: Sampling parameters. Defaults to temperature 0.7, 4096 tokens.
            retry: Retry manager wrapped around model calls.
            state_manager: Receives token usage of planner calls.
            prompts: Optional dict of prompt_id -> content for customization.
        """
        self.client = client
        self.config = config or LLMConfig(temperature=0.7, max_tokens=4096)
        self._retry = retry
        self._state_manager = state_manager
        self._prompts = prompts or {}

    @property
    def system_prompt(self) -> str:
        """Planning system prompt, custom if configured."""
        return self._prompts.get("planner.system", self.SYSTEM_PROMPT)

    async def _chat(self, system: str, user: str, max_tokens: int | None = None) -> ChatResponse:
        request = ChatRequest(
            messages=(
                ChatMessage(role=MessageRole.SYSTEM, content=system),
                ChatMessage(role=MessageRole.USER, content=user),
            ),
            temperature=self.config.temperature,
            max_tokens=max_tokens or self.config.max_tokens,
        )
        if self._retry is not None:
            response = await self._retry.with_retry(lambda: self.client.chat(request), operation_name="planner")
        else:
            response = await self.client.chat(request)
        if self._state_manager is not None:
            self._state_manager.add_usage(tokens=response.usage.total_tokens)
        return response

    async def classify(self, goal: str) -> Classification:
        """Cheaply decide whether ``goal`` needs a plan.

        Undecodable responses classify the goal as complex.
        """
        response = await self._chat(self._prompts.get("planner.classify", self.CLASSIFY_PROMPT), goal)
        decoded = decode_model(response.content, ClassificationResponse)
        if isinstance(decoded, DecodeFailure):
            logger.debug("Classification response not decodable, assuming complex", error=decoded.error)
            return Classification(complexity="complex")
        logger.info("Goal classified", complexity=decoded.value.complexity)
        return Classification(complexity=decoded.value.complexity, answer=decoded.value.answer)

    def _build_prompt(self, goal: str, state: AgentState) -> str:
        parts = [f"## Task\n\n{goal}"]

        if state.plan is not None:
            completed = [t for t in state.plan.tasks if t.status == TaskStatus.COMPLETED]
            parts.append(
                "## Context\n\n"
                f"- Completed tasks: {len(completed)}/{len(state.plan.tasks)}\n"
                f"- Iteration: {state.current_iteration}/{state.max_iterations}"
            )
            if completed:
                lines = []
                for task in completed:
                    summary = (task.result or "")[:200]
                    lines.append(f"- {task.title}" + (f": {summary}" if summary else ""))
                parts.append("## Already completed\n\n" + "\n".join(lines))

        parts.append(
            "Analyze the task. Answer directly if it is simple, otherwise produce the task list."
        )
        return "\n\n".join(parts)

    async def plan(self, goal: str, state: AgentState) -> PlannerOutcome:
        """Produce a direct answer or a normalised plan for ``goal``.

        A response that cannot be decoded is treated as a direct answer.

        Args:
            goal: The user's goal.
            state: Current agent state, for context from earlier iterations.

        Returns:
            ``DirectAnswer`` or ``PlanResult``.
        """
        logger.info("Planning started", goal=goal[:100])
        response = await self._chat(self.system_prompt, self._build_prompt(goal, state))
        decoded = decode_model(response.content, PlannerResponse)

        if isinstance(decoded, DecodeFailure):
            logger.warning("Planner response not decodable, treating as direct answer", error=decoded.error)
            return DirectAnswer(answer=response.content)

        parsed = decoded.value
        if parsed.type in SIMPLE_TYPES:
            logger.info("Simple task detected, returning direct answer")
            return DirectAnswer(answer=parsed.answer or response.content)

        plan = normalize_plan({"goal": goal, "tasks": [t.model_dump() for t in parsed.tasks]}, goal)
        logger.info("Plan generated", plan_id=plan.id, task_count=len(plan.tasks))
        return PlanResult(plan=plan)
