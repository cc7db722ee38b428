"""
CLI subcommands for disk recovery.

Usage:
    wagate recovery stats
    wagate recovery run
    wagate recovery clean
"""

import typer

from wagate.cli._http import _http_get, _http_post

recovery_app = typer.Typer(help="Restore sessions from disk")

STATUS_ICONS = {"active": "🟢", "recoverable": "💾", "invalid": "❌"}


@recovery_app.command("stats")
def recovery_stats():
    """Show which session directories are active, recoverable or invalid."""
    data = _http_get("/recovery/stats")

    typer.echo(
        f"💾 Session directories: {data.get('total', 0)} "
        f"(valid {data.get('valid', 0)}, invalid {data.get('invalid', 0)}, "
        f"active {data.get('active', 0)}, need recovery {data.get('need_recovery', 0)})"
    )
    for s in data.get("sessions", []):
        icon = STATUS_ICONS.get(s.get("status"), "⚪")
        typer.echo(f"  {icon} {s['session_id']} [{s['status']}]")


@recovery_app.command("run")
def recovery_run():
    """Recover every persisted session that is not active."""
    data = _http_post("/recovery/run")
    typer.echo(
        f"🔄 Recovery: {data.get('recovered', 0)} recovered, "
        f"{data.get('skipped', 0)} skipped, {data.get('failed', 0)} failed"
    )
    for result in data.get("sessions", []):
        icon = "✅" if result.get("success") else "❌"
        detail = f" ({result['error']})" if result.get("error") else ""
        typer.echo(f"  {icon} {result['session_id']}: {result['reason']}{detail}")


@recovery_app.command("clean")
def recovery_clean():
    """Delete session directories that hold no usable data."""
    data = _http_post("/recovery/clean")
    typer.echo(f"🧹 Removed {data.get('removed', 0)} invalid session director(ies)")
