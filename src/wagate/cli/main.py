"""
Top-level CLI commands: start.
"""

import os
from typing import Optional

import psutil
import typer


def configure_logging(verbose: bool = False):
    """Configure logging for the CLI."""
    from wagate.logger import setup_logging

    log_level = "DEBUG" if verbose else "WARNING"
    setup_logging(level=log_level)


def get_pid_on_port(port: int) -> Optional[int]:
    """Get the PID of the process listening on the specified port."""
    try:
        for conn in psutil.net_connections(kind="inet"):
            if conn.laddr and conn.laddr.port == port and conn.status == psutil.CONN_LISTEN:
                return conn.pid
    except (psutil.AccessDenied, PermissionError):
        return None
    return None


def register_commands(app: typer.Typer):
    """Register top-level commands on the given Typer app."""

    @app.command()
    def start(
        host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
        port: Optional[int] = typer.Option(None, "--port", "-p", help="Port to listen on"),
        debug: bool = typer.Option(False, "--debug", help="Run server in debug mode"),
        no_recovery: bool = typer.Option(
            False, "--no-recovery", help="Skip restoring sessions from disk"
        ),
    ):
        """Start the wagate server."""
        from wagate.config import CONFIG

        if debug:
            os.environ["LOG_LEVEL"] = "DEBUG"
        if no_recovery:
            os.environ["WAGATE_RECOVER_ON_STARTUP"] = "false"
            CONFIG.recover_on_startup = False

        effective_port = port or CONFIG.port
        pid = get_pid_on_port(effective_port)
        if pid:
            typer.echo(f"⚠️  Port {effective_port} is already in use by PID {pid}.")
            raise typer.Exit(code=1)

        typer.echo(f"🚀 Starting wagate on {host or CONFIG.host}:{effective_port}...")

        from wagate import server

        if no_recovery:
            server.app.state.recover_on_startup = False

        exit_code = server.run(host=host, port=effective_port)
        raise typer.Exit(code=exit_code)
