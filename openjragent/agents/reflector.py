# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Reflector agent: evaluates an execution pass and decides what comes next."""
from collections import Counter
from collections.abc import Iterable
from typing import Any

from loguru import logger
from pydantic import AliasChoices, BaseModel, Field

from openjragent.core.extraction import DecodeFailure, decode_model
from openjragent.core.state import (
    AgentState,
    ChatMessage,
    ExecutionResult,
    MessageRole,
    NextAction,
    Plan,
    ReflectionResult,
    ReflectionStatus,
)
from openjragent.core.state_manager import StateManager
from openjragent.core.types import LLMConfig
from openjragent.drivers.base import ChatClient, ChatRequest
from openjragent.resilience.retry import RetryManager


DEFAULT_QUESTION = "Execution ran into a problem. Please provide more information or guidance."
UNPARSED_ISSUE = "Could not parse the reflection result"
UNPARSED_SUGGESTION = "Review the execution results and replan"


class ReflectionResponse(BaseModel):
    """Schema the reflector asks the model to produce."""

    goal_achieved: bool = Field(default=False, validation_alias=AliasChoices("goal_achieved", "goalAchieved"))
    blocked: bool = False
    summary: str = ""
    issues: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    question: str | None = None
    improved_plan: dict[str, Any] | None = Field(
        default=None, validation_alias=AliasChoices("improved_plan", "improvedPlan")
    )


def count_tool_usage(messages: Iterable[ChatMessage]) -> Counter[str]:
    """Count tool calls requested in assistant messages, by tool name."""
    usage: Counter[str] = Counter()
    for message in messages:
        if message.role == MessageRole.ASSISTANT:
            usage.update(call.name for call in message.tool_calls)
    return usage


class Reflector:
    """Judges whether the goal was achieved and picks finish, ask_user or replan.

    Attributes:
        client: Chat client for the reflector role.
        config: Sampling parameters for the reflector role.
    """

    SYSTEM_PROMPT = """You are a reflection evaluator. Your job is to:

1. Judge whether the execution achieved the user's original goal.
2. Identify problems and gaps in what was done.
3. Suggest concrete improvements.
4. Decide whether a new plan is needed.

Respond with JSON only:
{
  "goal_achieved": true | false,
  "blocked": true | false,
  "summary": "summary of the execution",
  "issues": ["issue"],
  "suggestions": ["suggestion"],
  "question": "question for the user (only when blocked)",
  "improved_plan": {
    "goal": "original goal",
    "tasks": [{"title": "title", "description": "details", "dependencies": ["title or id of a prerequisite"]}]
  }
}

Guidelines:
- Be objective: neither optimistic nor pessimistic.
- Set blocked to true only for problems that cannot be solved without the user
  (missing permissions, missing key information, conflicting requirements).
- If work is unfinished but can continue, set blocked to false, goal_achieved to false
  and provide an improved_plan."""

    def __init__(
        self,
        client: ChatClient,
        config: LLMConfig | None = None,
        retry: RetryManager | None = None,
        state_manager: StateManager | None = None,
        watched_tools: Iterable[str] = ("file_write",),
        prompts: dict[str, str] | None = None,
    ):
        """Initialize the Reflector agent.

        Args:
            client: Chat client for the reflector role.
            config: Sampling parameters. Defaults to temperature 0.5, 2048 tokens.
            retry: Retry manager wrapped around model calls.
            state_manager: Receives token usage of reflection calls.
            watched_tools: Tools whose absence from the run is flagged in the prompt.
            prompts: Optional dict of prompt_id -> content for customization.
        """
        self.client = client
        self.config = config or LLMConfig(temperature=0.5, max_tokens=2048)
        self.watched_tools = tuple(watched_tools)
        self._retry = retry
        self._state_manager = state_manager
        self._prompts = prompts or {}

    @property
    def system_prompt(self) -> str:
        """Reflection system prompt, custom if configured."""
        return self._prompts.get("reflector.system", self.SYSTEM_PROMPT)

    def _build_prompt(self, plan: Plan, result: ExecutionResult, state: AgentState) -> str:
        lines = [
            f"## Original goal\n\n{plan.goal}",
            "## Execution result\n",
            f"- Completed tasks: {result.completed_tasks}",
            f"- Failed tasks: {result.failed_tasks}",
            f"- Total tool calls: {state.metadata.tool_calls_count}",
        ]

        usage = count_tool_usage(state.conversation.messages)
        lines.append("\n## Tool usage\n")
        lines.extend(f"- {name}: {count}" for name, count in usage.most_common())
        if not usage:
            lines.append("- no tools were used")
        for tool_name in self.watched_tools:
            if usage[tool_name] == 0:
                lines.append(f"\nWarning: {tool_name} was never used.")

        lines.append("\n## Task details\n")
        for task_result in result.results:
            task = plan.get_task(task_result.task_id)
            if task is None:
                continue
            lines.append(f"- {task.title}: {'succeeded' if task_result.success else 'failed'}")
            if task_result.success and task_result.output:
                output = task_result.output
                lines.append(f"  Output: {output[:300]}{'...' if len(output) > 300 else ''}")
            elif not task_result.success and task_result.error:
                lines.append(f"  Error: {task_result.error}")

        lines.append(f"\nIteration: {state.current_iteration}/{state.max_iterations}")
        lines.append("\nEvaluate the result, decide whether the goal is achieved and suggest improvements.")
        return "\n".join(lines)

    async def _evaluate(self, prompt: str) -> ReflectionResponse:
        request = ChatRequest(
            messages=(
                ChatMessage(role=MessageRole.SYSTEM, content=self.system_prompt),
                ChatMessage(role=MessageRole.USER, content=prompt),
            ),
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
        )
        if self._retry is not None:
            response = await self._retry.with_retry(lambda: self.client.chat(request), operation_name="reflector")
        else:
            response = await self.client.chat(request)
        if self._state_manager is not None:
            self._state_manager.add_usage(tokens=response.usage.total_tokens)

        decoded = decode_model(response.content, ReflectionResponse)
        if isinstance(decoded, DecodeFailure):
            logger.warning("Reflection response not decodable, using default", error=decoded.error)
            return ReflectionResponse(
                summary=response.content,
                issues=[UNPARSED_ISSUE],
                suggestions=[UNPARSED_SUGGESTION],
            )
        return decoded.value

    async def reflect(self, plan: Plan, result: ExecutionResult, state: AgentState) -> ReflectionResult:
        """Evaluate an execution pass.

        Decision order: goal achieved, blocked, iteration bound reached,
        otherwise replan.

        Args:
            plan: Plan as it stood after execution.
            result: Outcome of the execution pass.
            state: Current agent state.

        Returns:
            The reflection decision. ``new_plan`` is raw and must be normalised.
        """
        logger.info("Reflection started", completed=result.completed_tasks, failed=result.failed_tasks)
        verdict = await self._evaluate(self._build_prompt(plan, result, state))

        if verdict.goal_achieved:
            logger.info("Goal achieved")
            return ReflectionResult(
                status=ReflectionStatus.COMPLETED,
                next_action=NextAction.FINISH,
                summary=verdict.summary,
            )

        if verdict.blocked:
            logger.warning("Execution blocked, need user input")
            return ReflectionResult(
                status=ReflectionStatus.BLOCKED,
                next_action=NextAction.ASK_USER,
                summary=verdict.summary,
                issues=tuple(verdict.issues),
                question=verdict.question or DEFAULT_QUESTION,
            )

        if state.current_iteration >= state.max_iterations:
            logger.warning("Max iterations reached", iteration=state.current_iteration)
            return ReflectionResult(
                status=ReflectionStatus.MAX_ITERATIONS_REACHED,
                next_action=NextAction.FINISH,
                summary=verdict.summary,
                issues=tuple(verdict.issues),
            )

        logger.info("Needs improvement, will replan", issue_count=len(verdict.issues))
        return ReflectionResult(
            status=ReflectionStatus.NEEDS_IMPROVEMENT,
            next_action=NextAction.REPLAN,
            summary=verdict.summary,
            issues=tuple(verdict.issues),
            suggestions=tuple(verdict.suggestions),
            new_plan=verdict.improved_plan,
        )
