# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""CLI commands for inspecting and maintaining persisted sessions."""

import asyncio
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.table import Table

from openjragent.config import load_settings
from openjragent.core.exceptions import AgentError
from openjragent.core.types import Settings
from openjragent.sessions.manager import SessionManager
from openjragent.sessions.storage import FileSessionStorage


console = Console()

sessions_app = typer.Typer(
    name="sessions",
    help="Session management commands.",
)


def safe_load_settings(config_path: Path | None = None) -> Settings:
    """Load settings, exiting with an error message on failure.

    Raises:
        typer.Exit: If settings cannot be loaded.
    """
    try:
        return load_settings(config_path)
    except FileNotFoundError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(code=1) from None
    except Exception as e:
        console.print(f"[red]Error loading settings:[/red] {e}")
        raise typer.Exit(code=1) from None


def get_session_manager(config_path: Path | None = None) -> SessionManager:
    """Create a SessionManager over the configured session directory."""
    settings = safe_load_settings(config_path)
    return SessionManager(FileSessionStorage(settings.storage.session_dir))


ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", "-c", help="Path to the settings file."),
]


@sessions_app.command("list")
def list_sessions(config: ConfigOption = None) -> None:
    """List stored sessions, newest first."""
    manager = get_session_manager(config)
    try:
        sessions = asyncio.run(manager.list_sessions())
    except AgentError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(code=1) from None

    if not sessions:
        console.print("[yellow]No sessions found.[/yellow]")
        return

    table = Table(title="Sessions")
    table.add_column("ID", style="cyan")
    table.add_column("Phase")
    table.add_column("Goal")
    table.add_column("Iterations", justify="right")
    table.add_column("Tokens", justify="right")
    table.add_column("Updated", style="dim")

    for session in sessions:
        state = session.state
        goal = state.plan.goal if state.plan else ""
        table.add_row(
            session.id,
            str(state.phase),
            goal[:60],
            f"{state.current_iteration}/{state.max_iterations}",
            str(state.metadata.total_tokens),
            session.updated_at.strftime("%Y-%m-%d %H:%M:%S"),
        )
    console.print(table)


@sessions_app.command("show")
def show_session(
    session_id: Annotated[str, typer.Argument(help="Session ID")],
    config: ConfigOption = None,
) -> None:
    """Show a session's state and plan."""
    manager = get_session_manager(config)
    try:
        session = asyncio.run(manager.load_session(session_id))
    except AgentError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(code=1) from None

    if session is None:
        console.print(f"[red]Session '{session_id}' not found.[/red]")
        raise typer.Exit(code=1)

    state = session.state
    console.print(f"\n[bold]Session: {session.id}[/bold]\n")
    console.print(f"  Phase: {state.phase}")
    console.print(f"  Iteration: {state.current_iteration}/{state.max_iterations}")
    console.print(f"  Messages: {len(state.conversation.messages)}")
    console.print(f"  Tokens: {state.metadata.total_tokens}")
    console.print(f"  Tool calls: {state.metadata.tool_calls_count}")
    console.print(f"  Created: {session.created_at.isoformat()}")
    console.print(f"  Updated: {session.updated_at.isoformat()}")

    if state.plan is None:
        return

    console.print(f"\n  Goal: {state.plan.goal}")
    table = Table(title="Tasks")
    table.add_column("#", justify="right")
    table.add_column("Title")
    table.add_column("Status")
    table.add_column("Priority", justify="right")
    table.add_column("Error", style="red")
    for index, task in enumerate(state.plan.tasks, start=1):
        table.add_row(str(index), task.title, str(task.status), str(task.priority), task.error or "")
    console.print(table)


@sessions_app.command("delete")
def delete_session(
    session_id: Annotated[str, typer.Argument(help="Session ID")],
    force: Annotated[bool, typer.Option("--force", "-f", help="Skip confirmation")] = False,
    config: ConfigOption = None,
) -> None:
    """Delete a session."""
    manager = get_session_manager(config)
    if not force and not typer.confirm(f"Delete session '{session_id}'?"):
        console.print("[yellow]Cancelled.[/yellow]")
        raise typer.Exit(0)

    try:
        deleted = asyncio.run(manager.delete_session(session_id))
    except AgentError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(code=1) from None

    if not deleted:
        console.print(f"[red]Session '{session_id}' not found.[/red]")
        raise typer.Exit(code=1)
    console.print(f"[green]Session '{session_id}' deleted.[/green]")


@sessions_app.command("cleanup")
def cleanup_sessions(
    max_age_days: Annotated[
        float, typer.Option("--max-age-days", help="Delete sessions not updated for this many days")
    ] = 7.0,
    config: ConfigOption = None,
) -> None:
    """Delete sessions older than the given age."""
    manager = get_session_manager(config)
    try:
        result = asyncio.run(manager.cleanup_old_sessions(max_age_days * 24 * 3600))
    except AgentError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(code=1) from None
    console.print(
        f"[green]Deleted {result.sessions_deleted} session(s) "
        f"last updated before {result.cutoff.strftime('%Y-%m-%d %H:%M:%S')}.[/green]"
    )


@sessions_app.command("export")
def export_session(
    session_id: Annotated[str, typer.Argument(help="Session ID")],
    output: Annotated[
        Path | None, typer.Option("--output", "-o", help="Write to this file instead of stdout")
    ] = None,
    config: ConfigOption = None,
) -> None:
    """Export a session as JSON."""
    manager = get_session_manager(config)
    try:
        payload = asyncio.run(manager.export_session(session_id))
    except AgentError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(code=1) from None

    if payload is None:
        console.print(f"[red]Session '{session_id}' not found.[/red]")
        raise typer.Exit(code=1)
    if output is None:
        typer.echo(payload)
        return
    output.write_text(payload, encoding="utf-8")
    console.print(f"[green]Session exported to {output}.[/green]")


@sessions_app.command("import")
def import_session(
    path: Annotated[Path, typer.Argument(help="File produced by 'sessions export'")],
    config: ConfigOption = None,
) -> None:
    """Import an exported session under a new ID."""
    manager = get_session_manager(config)
    if not path.exists():
        console.print(f"[red]File not found: {path}[/red]")
        raise typer.Exit(code=1)
    try:
        session_id = asyncio.run(manager.import_session(path.read_text(encoding="utf-8")))
    except AgentError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(code=1) from None
    console.print(f"[green]Session imported as '{session_id}'.[/green]")


@sessions_app.command("stats")
def session_stats(config: ConfigOption = None) -> None:
    """Show aggregate statistics over stored sessions."""
    manager = get_session_manager(config)
    try:
        stats = asyncio.run(manager.get_statistics())
    except AgentError as e:
        console.print(f"[red]Error:[/red] {e.message}")
        raise typer.Exit(code=1) from None

    table = Table(title="Session Statistics")
    table.add_column("Metric", style="bold")
    table.add_column("Value")
    table.add_row("Sessions", str(stats.total_sessions))
    table.add_row("Total size (bytes)", str(stats.total_size))
    table.add_row("Total tokens", str(stats.total_tokens))
    table.add_row("Oldest", stats.oldest_session.isoformat() if stats.oldest_session else "-")
    table.add_row("Newest", stats.newest_session.isoformat() if stats.newest_session else "-")
    for phase, count in sorted(stats.by_phase.items()):
        table.add_row(f"Phase: {phase}", str(count))
    console.print(table)
