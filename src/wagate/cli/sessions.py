"""
CLI subcommands for managing sessions.

Usage:
    wagate sessions list
    wagate sessions status <session_id>
    wagate sessions delete <session_id> [--delete-data]
    wagate sessions send <session_id> <to> <message>
"""

import typer

from wagate.cli._http import _http_delete, _http_get, _http_post

sessions_app = typer.Typer(help="Manage WhatsApp sessions")

STATUS_ICONS = {
    "connected": "🟢",
    "authenticated": "🟡",
    "waiting_qr": "📷",
    "initializing": "⏳",
    "auth_failed": "🔴",
    "disconnected": "🔴",
}


@sessions_app.command("list")
def sessions_list():
    """List all active sessions."""
    data = _http_get("/sessions")
    sessions = data.get("sessions", [])

    if not sessions:
        typer.echo("No active sessions.")
        return

    typer.echo(f"📱 Sessions ({len(sessions)}):\n")
    for s in sessions:
        icon = STATUS_ICONS.get(s.get("status"), "⚪")
        typer.echo(
            f"  {icon} {s['session_id']} [{s['status']}]\n"
            f"     Messages: {s.get('message_count', 0)}  "
            f"Last activity: {s.get('last_activity', 'unknown')}\n"
        )


@sessions_app.command("status")
def sessions_status(
    session_id: str = typer.Argument(help="Session ID"),
):
    """Show details for one session."""
    data = _http_get(f"/sessions/{session_id}")
    s = data.get("session", {})

    icon = STATUS_ICONS.get(s.get("status"), "⚪")
    typer.echo(f"{icon} Session: {s.get('session_id', session_id)}")
    typer.echo(f"   Status: {s.get('status')}")
    typer.echo(f"   Created: {s.get('created_at')}")
    typer.echo(f"   Last activity: {s.get('last_activity')}")
    typer.echo(f"   Messages: {s.get('message_count', 0)}")
    if s.get("has_qr"):
        typer.echo("   QR code waiting to be scanned")
    if s.get("error"):
        typer.echo(f"   Error: {s['error']}")


@sessions_app.command("delete")
def sessions_delete(
    session_id: str = typer.Argument(help="Session ID"),
    delete_data: bool = typer.Option(
        False, "--delete-data", help="Also delete the session's data on disk"
    ),
):
    """Close a session, keeping its data on disk unless --delete-data is given."""
    suffix = "?delete_data=true" if delete_data else ""
    _http_delete(f"/sessions/{session_id}{suffix}")
    note = " (data deleted)" if delete_data else ""
    typer.echo(f"✅ Session {session_id} closed{note}")


@sessions_app.command("send")
def sessions_send(
    session_id: str = typer.Argument(help="Session ID"),
    to: str = typer.Argument(help="Phone number or chat id"),
    message: str = typer.Argument(help="Message text"),
):
    """Send a text message through a connected session."""
    data = _http_post(f"/sessions/{session_id}/send", {"to": to, "message": message})
    record = data.get("message", {})
    typer.echo(f"✅ Sent to {record.get('peer', to)}")
