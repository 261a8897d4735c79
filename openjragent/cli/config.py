# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""CLI commands for configuration inspection."""

from pathlib import Path
from typing import Annotated, Any

import typer
import yaml
from rich.console import Console
from rich.table import Table

from openjragent.cli.sessions import safe_load_settings
from openjragent.sessions.manager import strip_secrets


console = Console()

config_app = typer.Typer(
    name="config",
    help="Configuration commands.",
)


def _flatten(data: dict[str, Any], prefix: str = "") -> list[tuple[str, Any]]:
    rows: list[tuple[str, Any]] = []
    for key, value in data.items():
        name = f"{prefix}.{key}" if prefix else key
        if isinstance(value, dict):
            rows.extend(_flatten(value, name))
        else:
            rows.append((name, value))
    return rows


@config_app.command("show")
def show_config(
    config: Annotated[Path | None, typer.Option("--config", "-c", help="Path to the settings file.")] = None,
    as_yaml: Annotated[bool, typer.Option("--yaml", help="Print as YAML instead of a table")] = False,
) -> None:
    """Show the effective configuration with secrets removed."""
    settings = safe_load_settings(config)
    data = strip_secrets(settings.model_dump(mode="json"))

    if as_yaml:
        typer.echo(yaml.safe_dump(data, sort_keys=False))
        return

    table = Table(title="Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    for name, value in _flatten(data):
        table.add_row(name, "-" if value is None else str(value))
    console.print(table)
