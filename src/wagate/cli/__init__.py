"""
wagate CLI.

This package splits CLI commands into focused modules:
- main:      start
- sessions:  list, status, delete, send
- recovery:  stats, run, clean
- resources: show, check
"""

import typer

from wagate.cli.main import configure_logging, register_commands
from wagate.cli.recovery import recovery_app
from wagate.cli.resources import resources_app
from wagate.cli.sessions import sessions_app

app = typer.Typer(help="wagate - WhatsApp session gateway")


@app.callback()
def main(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose logging (DEBUG level)"
    ),
):
    """
    wagate - WhatsApp session gateway.
    """
    configure_logging(verbose)


register_commands(app)

app.add_typer(sessions_app, name="sessions")
app.add_typer(recovery_app, name="recovery")
app.add_typer(resources_app, name="resources")

if __name__ == "__main__":
    app()
