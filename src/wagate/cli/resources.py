"""
CLI subcommands for resource monitoring.

Usage:
    wagate resources show
    wagate resources check
"""

import typer

from wagate.cli._http import _http_get, _http_post

resources_app = typer.Typer(help="Inspect memory and session limits")


@resources_app.command("show")
def resources_show():
    """Show memory usage, limits and recommendations."""
    data = _http_get("/resources")
    memory = data.get("memory", {})
    limits = data.get("limits", {})

    typer.echo(
        f"🧠 Memory: {memory.get('rss_mb', 0)} MB RSS "
        f"(warning {limits.get('memory_warning_mb')} MB, "
        f"critical {limits.get('memory_critical_mb')} MB)"
    )
    typer.echo(
        f"📱 Sessions: {data.get('session_count', 0)}/{limits.get('max_total_sessions')}"
        f"  Messages: {data.get('total_messages', 0)}"
    )

    recommendations = data.get("recommendations", [])
    if recommendations:
        typer.echo("\n💡 Recommendations:")
        for rec in recommendations:
            typer.echo(f"   • {rec}")


@resources_app.command("check")
def resources_check():
    """Run a resource evaluation now."""
    data = _http_post("/resources/check")
    typer.echo(f"🔎 Status: {data.get('status')}")
    for action in data.get("actions", []):
        typer.echo(f"   • {action}")
