# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""CLI command that runs the agent on a single goal."""

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.table import Table

from openjragent.cli.sessions import console, safe_load_settings
from openjragent.core.exceptions import AgentError
from openjragent.core.orchestrator import Agent, AgentRunResult, RunStatus, run_agent
from openjragent.core.state import ConfirmationAction, ConfirmationResult, Plan
from openjragent.logging import configure_logging, log_events
from openjragent.sessions.manager import SessionManager
from openjragent.sessions.storage import FileSessionStorage


FAILED_STATUSES = frozenset({RunStatus.FAILED, RunStatus.HALTED})


def _print_plan(plan: Plan) -> None:
    table = Table(title=f"Plan: {plan.goal[:60]}")
    table.add_column("#", justify="right")
    table.add_column("Title", style="cyan")
    table.add_column("Priority", justify="right")
    table.add_column("Depends on")
    titles = {task.id: task.title for task in plan.tasks}
    for index, task in enumerate(plan.tasks, start=1):
        deps = ", ".join(titles.get(dep, dep) for dep in task.dependencies)
        table.add_row(str(index), task.title, str(task.priority), deps)
    console.print(table)


async def _confirm_plan(plan: Plan) -> ConfirmationResult:
    _print_plan(plan)
    if typer.confirm("Execute this plan?", default=True):
        return ConfirmationResult(action=ConfirmationAction.CONFIRM)
    return ConfirmationResult(action=ConfirmationAction.CANCEL)


async def _ask_user(question: str) -> str:
    return typer.prompt(question)


async def _run_and_close(agent: Agent, goal: str, timeout: float | None) -> AgentRunResult:
    async with agent:
        return await run_agent(agent, goal, timeout)


def _print_result(result: AgentRunResult) -> None:
    color = "red" if result.status in FAILED_STATUSES else "green"
    console.print(f"\n[bold {color}]Run {result.status}[/bold {color}]")
    if result.answer:
        console.print(result.answer)
    if result.summary:
        console.print(f"  Summary: {result.summary}")
    if result.error:
        console.print(f"  [red]Error:[/red] {result.error}")
    metadata = result.state.metadata
    console.print(
        f"  Iterations: {result.state.current_iteration}/{result.state.max_iterations}"
        f"  Tokens: {metadata.total_tokens}  Tool calls: {metadata.tool_calls_count}"
    )
    if result.session_id:
        console.print(f"  Session: {result.session_id}")


def run_command(
    ctx: typer.Context,
    goal: Annotated[str, typer.Argument(help="Goal for the agent")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Execute plans without confirmation")] = False,
    timeout: Annotated[
        float | None, typer.Option("--timeout", help="Overall timeout in seconds")
    ] = None,
    max_iterations: Annotated[
        int | None, typer.Option("--max-iterations", help="Override agent.max_iterations")
    ] = None,
    show_events: Annotated[bool, typer.Option("--events", help="Log every agent event")] = False,
    config: Annotated[Path | None, typer.Option("--config", "-c", help="Path to the settings file.")] = None,
) -> None:
    """Run the agent on GOAL and persist the session."""
    settings = safe_load_settings(config)
    if not (ctx.obj or {}).get("log_level"):
        configure_logging(settings.logging.level)
    overrides = {}
    if yes:
        overrides["require_confirmation"] = False
    if max_iterations is not None:
        overrides["max_iterations"] = max_iterations
    if overrides:
        settings = settings.model_copy(update={"agent": settings.agent.model_copy(update=overrides)})

    try:
        agent = Agent.from_settings(
            settings,
            confirm_plan=_confirm_plan,
            ask_user=_ask_user,
            session_manager=SessionManager(FileSessionStorage(settings.storage.session_dir)),
        )
    except AgentError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(code=1) from None
    if show_events:
        log_events(agent.emitter, level="INFO")

    try:
        result = asyncio.run(_run_and_close(agent, goal, timeout))
    except TimeoutError:
        console.print(f"[red]Run timed out after {timeout}s.[/red]")
        raise typer.Exit(code=1) from None
    except AgentError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(code=1) from None

    _print_result(result)
    if result.status in FAILED_STATUSES:
        raise typer.Exit(code=1)
