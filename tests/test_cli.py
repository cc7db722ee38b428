"""
Unit tests for the CLI subcommands (sessions, recovery, resources).
"""

from unittest.mock import patch

import httpx
import pytest
import typer
from typer.testing import CliRunner

from wagate.cli import app
from wagate.cli._http import _request, get_server_url

runner = CliRunner()


class TestCLIRoot:
    def test_help_shows_all_commands(self):
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "start" in result.output
        assert "sessions" in result.output
        assert "recovery" in result.output
        assert "resources" in result.output

    @patch("wagate.cli.main.get_pid_on_port", return_value=4321)
    def test_start_refuses_busy_port(self, _mock_pid):
        result = runner.invoke(app, ["start", "--port", "3999"])
        assert result.exit_code == 1
        assert "already in use by PID 4321" in result.output


class TestSessionsSubcommand:
    def test_sessions_help(self):
        result = runner.invoke(app, ["sessions", "--help"])
        assert result.exit_code == 0
        for command in ("list", "status", "delete", "send"):
            assert command in result.output

    @patch("wagate.cli.sessions._http_get")
    def test_list_empty(self, mock_get):
        mock_get.return_value = {"success": True, "sessions": [], "count": 0}
        result = runner.invoke(app, ["sessions", "list"])
        assert result.exit_code == 0
        assert "No active sessions" in result.output

    @patch("wagate.cli.sessions._http_get")
    def test_list_with_sessions(self, mock_get):
        mock_get.return_value = {
            "sessions": [
                {
                    "session_id": "sales-01",
                    "status": "connected",
                    "message_count": 12,
                    "last_activity": "2024-03-05T09:30:00+00:00",
                },
                {"session_id": "support", "status": "waiting_qr", "message_count": 0},
            ],
            "count": 2,
        }
        result = runner.invoke(app, ["sessions", "list"])
        assert result.exit_code == 0
        assert "Sessions (2)" in result.output
        assert "sales-01 [connected]" in result.output
        assert "Messages: 12" in result.output
        assert "support [waiting_qr]" in result.output

    @patch("wagate.cli.sessions._http_get")
    def test_status(self, mock_get):
        mock_get.return_value = {
            "session": {
                "session_id": "sales-01",
                "status": "disconnected",
                "message_count": 3,
                "error": "LOGOUT",
            }
        }
        result = runner.invoke(app, ["sessions", "status", "sales-01"])
        assert result.exit_code == 0
        mock_get.assert_called_once_with("/sessions/sales-01")
        assert "Status: disconnected" in result.output
        assert "Error: LOGOUT" in result.output

    @patch("wagate.cli.sessions._http_delete")
    def test_delete_keeps_data(self, mock_delete):
        mock_delete.return_value = {"success": True}
        result = runner.invoke(app, ["sessions", "delete", "sales-01"])
        assert result.exit_code == 0
        mock_delete.assert_called_once_with("/sessions/sales-01")
        assert "closed" in result.output
        assert "data deleted" not in result.output

    @patch("wagate.cli.sessions._http_delete")
    def test_delete_with_data(self, mock_delete):
        mock_delete.return_value = {"success": True}
        result = runner.invoke(app, ["sessions", "delete", "sales-01", "--delete-data"])
        assert result.exit_code == 0
        mock_delete.assert_called_once_with("/sessions/sales-01?delete_data=true")
        assert "data deleted" in result.output

    @patch("wagate.cli.sessions._http_post")
    def test_send(self, mock_post):
        mock_post.return_value = {"success": True, "message": {"peer": "573001234567@c.us"}}
        result = runner.invoke(app, ["sessions", "send", "sales-01", "573001234567", "hola"])
        assert result.exit_code == 0
        mock_post.assert_called_once_with(
            "/sessions/sales-01/send", {"to": "573001234567", "message": "hola"}
        )
        assert "573001234567@c.us" in result.output


class TestRecoverySubcommand:
    @patch("wagate.cli.recovery._http_get")
    def test_stats(self, mock_get):
        mock_get.return_value = {
            "total": 2,
            "valid": 1,
            "invalid": 1,
            "active": 0,
            "need_recovery": 1,
            "sessions": [
                {"session_id": "saved", "status": "recoverable"},
                {"session_id": "junk", "status": "invalid"},
            ],
        }
        result = runner.invoke(app, ["recovery", "stats"])
        assert result.exit_code == 0
        assert "need recovery 1" in result.output
        assert "saved [recoverable]" in result.output
        assert "junk [invalid]" in result.output

    @patch("wagate.cli.recovery._http_post")
    def test_run(self, mock_post):
        mock_post.return_value = {
            "recovered": 1,
            "skipped": 1,
            "failed": 0,
            "sessions": [
                {"session_id": "saved", "success": True, "reason": "recovered"},
                {"session_id": "junk", "success": False, "reason": "invalid_data"},
            ],
        }
        result = runner.invoke(app, ["recovery", "run"])
        assert result.exit_code == 0
        assert "1 recovered" in result.output
        assert "junk: invalid_data" in result.output

    @patch("wagate.cli.recovery._http_post")
    def test_clean(self, mock_post):
        mock_post.return_value = {"success": True, "removed": 2}
        result = runner.invoke(app, ["recovery", "clean"])
        assert result.exit_code == 0
        assert "Removed 2" in result.output


class TestResourcesSubcommand:
    @patch("wagate.cli.resources._http_get")
    def test_show(self, mock_get):
        mock_get.return_value = {
            "memory": {"rss_mb": 210.5},
            "session_count": 3,
            "total_messages": 40,
            "limits": {
                "memory_warning_mb": 512,
                "memory_critical_mb": 1024,
                "max_total_sessions": 50,
            },
            "recommendations": ["System is operating normally"],
        }
        result = runner.invoke(app, ["resources", "show"])
        assert result.exit_code == 0
        assert "210.5 MB" in result.output
        assert "Sessions: 3/50" in result.output
        assert "System is operating normally" in result.output

    @patch("wagate.cli.resources._http_post")
    def test_check(self, mock_post):
        mock_post.return_value = {"status": "warning", "actions": ["trimmed 4 message(s)"]}
        result = runner.invoke(app, ["resources", "check"])
        assert result.exit_code == 0
        assert "Status: warning" in result.output
        assert "trimmed 4 message(s)" in result.output


class TestHttpHelpers:
    def test_server_url_from_env(self, monkeypatch):
        monkeypatch.setenv("WAGATE_SERVER_URL", "http://gateway:9000/")
        assert get_server_url() == "http://gateway:9000"

    def test_server_url_default(self, monkeypatch):
        monkeypatch.delenv("WAGATE_SERVER_URL", raising=False)
        monkeypatch.setenv("WAGATE_HOST", "0.0.0.0")
        monkeypatch.setenv("WAGATE_PORT", "3100")
        assert get_server_url() == "http://localhost:3100"

    @patch("wagate.cli._http.httpx.request")
    def test_connect_error_exits(self, mock_request):
        mock_request.side_effect = httpx.ConnectError("refused")
        with pytest.raises(typer.Exit) as exc_info:
            _request("GET", "/sessions")
        assert exc_info.value.exit_code == 1

    @patch("wagate.cli._http.httpx.request")
    def test_access_key_header_sent(self, mock_request, monkeypatch):
        monkeypatch.setenv("WAGATE_ACCESS_KEY", "4821")
        mock_request.return_value = httpx.Response(
            200, json={"ok": True}, request=httpx.Request("GET", "http://x/sessions")
        )

        assert _request("GET", "/sessions") == {"ok": True}
        assert mock_request.call_args.kwargs["headers"] == {"X-Access-Key": "4821"}
