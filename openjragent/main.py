# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
import typer

from openjragent.cli.config import config_app
from openjragent.cli.run import run_command
from openjragent.cli.sessions import sessions_app
from openjragent.logging import configure_logging


app = typer.Typer(help="openjragent agent execution core CLI")
app.add_typer(sessions_app, name="sessions")
app.add_typer(config_app, name="config")
app.command(name="run", help="Run the agent on a goal.")(run_command)


@app.callback()
def main_callback(
    ctx: typer.Context,
    log_level: str | None = typer.Option(
        None,
        "--log-level",
        envvar="OPENJRAGENT_LOG_LEVEL",
        help="Minimum log level (DEBUG, INFO, WARNING, ERROR). Overrides logging.level for runs.",
    ),
) -> None:
    """
    openjragent: plan, execute and reflect agent core.
    """
    ctx.obj = {"log_level": log_level}
    configure_logging(log_level or "WARNING")


if __name__ == "__main__":
    app()
