"""
Shared HTTP helpers for CLI commands that talk to the running server.
"""

import os
from typing import Optional

import httpx
import typer


def get_server_url() -> str:
    """Get the server URL from environment or default."""
    url = os.getenv("WAGATE_SERVER_URL")
    if url:
        return url.rstrip("/")

    host = os.getenv("WAGATE_HOST", "localhost")
    if host == "0.0.0.0":
        host = "localhost"
    port = os.getenv("WAGATE_PORT", "3000")
    return f"http://{host}:{port}"


def _headers() -> dict:
    key = os.getenv("WAGATE_ACCESS_KEY")
    return {"X-Access-Key": key} if key else {}


def _error_detail(response: httpx.Response) -> str:
    try:
        return response.json().get("error", response.reason_phrase)
    except Exception:
        return f"{response.status_code} {response.reason_phrase}"


def _request(method: str, path: str, data: Optional[dict] = None, timeout: float = 10.0) -> dict:
    url = f"{get_server_url()}{path}"
    try:
        resp = httpx.request(
            method,
            url,
            json=data if method in ("POST", "PUT") else None,
            headers=_headers(),
            timeout=timeout,
        )
        resp.raise_for_status()
        return resp.json()
    except httpx.ConnectError:
        typer.echo("❌ Cannot connect to wagate server. Is it running?")
        raise typer.Exit(code=1)
    except httpx.HTTPStatusError as e:
        typer.echo(f"❌ Server error ({e.response.status_code}): {_error_detail(e.response)}")
        raise typer.Exit(code=1)
    except httpx.HTTPError as e:
        typer.echo(f"❌ Error: {e}")
        raise typer.Exit(code=1)


def _http_get(path: str) -> dict:
    """Make a GET request to the running server."""
    return _request("GET", path)


def _http_post(path: str, data: dict = None) -> dict:
    """Make a POST request to the running server."""
    return _request("POST", path, data or {}, timeout=60.0)


def _http_put(path: str, data: dict = None) -> dict:
    """Make a PUT request to the running server."""
    return _request("PUT", path, data or {})


def _http_delete(path: str) -> dict:
    """Make a DELETE request to the running server."""
    return _request("DELETE", path)
