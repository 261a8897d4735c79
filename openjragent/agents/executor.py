# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""Executor agent: runs the ready tasks of a plan through the model and tools.

Tasks run strictly one at a time; every tool call of a task completes before
the next call or task starts.
"""
from collections.abc import Iterable, Sequence

from loguru import logger

from openjragent.core.events import EventType
from openjragent.core.exceptions import AgentError, ErrorCategory
from openjragent.core.plan import get_next_task, is_critical
from openjragent.core.state import (
    AgentState,
    ChatMessage,
    ExecutionResult,
    MessageRole,
    Plan,
    Task,
    TaskResult,
    TaskStatus,
    ToolResult,
)
from openjragent.core.state_manager import StateManager
from openjragent.core.types import LLMConfig
from openjragent.drivers.base import ChatClient, ChatRequest, ChatResponse
from openjragent.resilience.retry import RetryManager
from openjragent.tools.manager import ToolManager


class Executor:
    """Executes plan tasks in dependency order.

    A failed task whose priority is at or below ``critical_priority_threshold``
    halts the pass; other failures are recorded and execution moves on to the
    next eligible task.

    Attributes:
        client: Chat client for the executor role.
        tool_manager: Registry used to run tool calls.
        state_manager: Receives plan updates, messages and usage counters.
    """

    SYSTEM_PROMPT = """You are a task executor. Your job is to:

1. Understand the goal of the current task.
2. Pick the right tools to accomplish it and call them with complete arguments.
3. Inspect tool results and recover from problems where possible.
4. Report concretely what was done, including files created or modified.

Rules:
- Focus on the current task only.
- Do not just describe a plan: perform the work with tools and report the outcome.
- Read a file before modifying it; write new files directly."""

    def __init__(
        self,
        client: ChatClient,
        tool_manager: ToolManager,
        state_manager: StateManager,
        config: LLMConfig | None = None,
        critical_priority_threshold: int = 2,
        critical_tools: Iterable[str] = ("file_write", "shell_exec"),
        retry: RetryManager | None = None,
        prompts: dict[str, str] | None = None,
    ):
        """Initialize the Executor agent.

        Args:
            client: Chat client for the executor role.
            tool_manager: Registry used to run tool calls.
            state_manager: Owner of the agent state.
            config: Sampling parameters. Defaults to temperature 0.3.
            critical_priority_threshold: Priority at or below which a failure halts the pass.
            critical_tools: Tools whose failure fails the calling task.
            retry: Retry manager wrapped around model calls.
            prompts: Optional dict of prompt_id -> content for customization.
        """
        self.client = client
        self.tool_manager = tool_manager
        self.state_manager = state_manager
        self.config = config or LLMConfig(temperature=0.3)
        self.critical_priority_threshold = critical_priority_threshold
        self.critical_tools = frozenset(critical_tools)
        self._retry = retry
        self._prompts = prompts or {}

    @property
    def system_prompt(self) -> str:
        """Execution system prompt, custom if configured."""
        return self._prompts.get("executor.system", self.SYSTEM_PROMPT)

    async def execute(self, plan: Plan, state: AgentState) -> ExecutionResult:
        """Run every eligible task of ``plan``.

        Args:
            plan: The committed plan.
            state: Agent state at the start of the pass.

        Returns:
            Counts, per-task results and the plan with updated statuses.

        Raises:
            AgentError: Only for critical errors, which abort the run.
        """
        results: list[TaskResult] = []
        halted = False
        emitter = self.state_manager.emitter
        logger.info("Execution started", task_count=len(plan.tasks), iteration=state.current_iteration)

        while (task := get_next_task(plan)) is not None:
            logger.info("Executing task", task_id=task.id, title=task.title, priority=task.priority)
            plan = plan.with_task(task.id, status=TaskStatus.IN_PROGRESS).model_copy(
                update={"current_task_id": task.id}
            )
            self.state_manager.set_plan(plan)
            emitter.emit(EventType.TASK_STARTED, {"task_id": task.id, "title": task.title, "priority": task.priority})

            try:
                result = await self._execute_task(task, plan)
            except AgentError as e:
                if e.category == ErrorCategory.CRITICAL:
                    self.state_manager.set_plan(
                        plan.with_task(task.id, status=TaskStatus.FAILED, error=e.message)
                    )
                    raise
                logger.warning("Task raised error", task_id=task.id, error=e.message)
                result = TaskResult(task_id=task.id, success=False, error=e.message)
            except Exception as e:
                logger.exception("Task execution failed", task_id=task.id, error=str(e))
                result = TaskResult(task_id=task.id, success=False, error=str(e) or type(e).__name__)

            results.append(result)
            if result.success:
                plan = plan.with_task(task.id, status=TaskStatus.COMPLETED, result=result.output)
            else:
                plan = plan.with_task(task.id, status=TaskStatus.FAILED, error=result.error)
            plan = plan.model_copy(update={"current_task_id": None})
            self.state_manager.set_plan(plan)
            emitter.emit(
                EventType.TASK_COMPLETED,
                {"task_id": task.id, "title": task.title, "success": result.success, "error": result.error},
            )

            if not result.success:
                if is_critical(task, self.critical_priority_threshold):
                    logger.warning("Critical task failed, stopping execution", task_id=task.id, priority=task.priority)
                    halted = True
                    break
                logger.info("Non-critical task failed, continuing", task_id=task.id)

        completed = sum(1 for r in results if r.success)
        logger.info("Execution finished", executed=len(results), completed=completed, halted=halted)
        return ExecutionResult(
            completed_tasks=completed,
            failed_tasks=len(results) - completed,
            results=tuple(results),
            halted=halted,
            plan=plan,
        )

    async def _chat(self, messages: Sequence[ChatMessage], with_tools: bool) -> ChatResponse:
        request = ChatRequest(
            messages=tuple(messages),
            tools=tuple(self.tool_manager.get_schemas()) if with_tools else (),
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
        )
        if self._retry is not None:
            response = await self._retry.with_retry(lambda: self.client.chat(request), operation_name="executor")
        else:
            response = await self.client.chat(request)
        self.state_manager.add_usage(tokens=response.usage.total_tokens)
        return response

    def _build_prompt(self, task: Task, plan: Plan) -> str:
        parts = [
            f"## Overall goal\n\n{plan.goal}",
            f"## Current task\n\n**{task.title}**\n\n{task.description}",
        ]
        finished = [plan.get_task(dep) for dep in task.dependencies]
        summaries = [f"- {t.title}: {(t.result or '')[:300]}" for t in finished if t is not None]
        if summaries:
            parts.append("## Results of prerequisite tasks\n\n" + "\n".join(summaries))
        tool_names = self.tool_manager.tool_names()
        if tool_names:
            parts.append("## Available tools\n\n" + ", ".join(tool_names))
        return "\n\n".join(parts)

    async def _execute_task(self, task: Task, plan: Plan) -> TaskResult:
        system = ChatMessage(role=MessageRole.SYSTEM, content=self.system_prompt)
        history = self.state_manager.get_state().conversation.messages
        user = ChatMessage(role=MessageRole.USER, content=self._build_prompt(task, plan), metadata={"task_id": task.id})

        response = await self._chat((system, *history, user), with_tools=True)
        assistant = ChatMessage(
            role=MessageRole.ASSISTANT,
            content=response.content,
            tool_calls=response.tool_calls,
            metadata={"task_id": task.id},
        )

        if not response.tool_calls:
            self.state_manager.add_message(user)
            self.state_manager.add_message(assistant)
            return TaskResult(task_id=task.id, success=True, output=response.content)

        tool_results: list[ToolResult] = []
        tool_messages: list[ChatMessage] = []
        for call in response.tool_calls:
            result = await self.tool_manager.execute(call)
            self.state_manager.add_usage(tool_calls=1)
            tool_results.append(result)
            tool_messages.append(
                ChatMessage(
                    role=MessageRole.TOOL,
                    content=result.to_content(),
                    tool_call_id=call.id,
                    metadata={"tool_name": call.name, "success": result.success},
                )
            )

        final = await self._chat((system, *history, user, assistant, *tool_messages), with_tools=False)
        final_message = ChatMessage(role=MessageRole.ASSISTANT, content=final.content, metadata={"task_id": task.id})
        for message in (user, assistant, *tool_messages, final_message):
            self.state_manager.add_message(message)

        failed_critical = [
            call.name
            for call, result in zip(response.tool_calls, tool_results, strict=True)
            if not result.success and call.name in self.critical_tools
        ]
        if failed_critical:
            return TaskResult(
                task_id=task.id,
                success=False,
                output=final.content,
                error=f"Critical tool(s) failed: {', '.join(failed_critical)}",
            )
        return TaskResult(task_id=task.id, success=True, output=final.content)
