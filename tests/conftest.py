"""Shared pytest fixtures and configuration."""

import asyncio
from pathlib import Path
from typing import Optional

import pytest

from wagate.clients.base import ChatClient, ChatSummary
from wagate.sessions.lifecycle import SessionLifecycle
from wagate.sessions.store import SessionStore


class FakeChatClient(ChatClient):
    """In-memory chat client; tests drive it by emitting events."""

    def __init__(
        self,
        session_id: str,
        profile_dir: Optional[Path] = None,
        start_error: Optional[Exception] = None,
        stop_delay: float = 0.0,
        stop_error: Optional[Exception] = None,
        send_error: Optional[Exception] = None,
    ):
        super().__init__(session_id)
        self.profile_dir = profile_dir
        self.start_error = start_error
        self.stop_delay = stop_delay
        self.stop_error = stop_error
        self.send_error = send_error
        self.started = False
        self.stopped = False
        self.sent = []
        self.chats = [
            ChatSummary("573001234567@c.us", "Alice"),
            ChatSummary("120363000000@g.us", "Team", is_group=True, unread_count=2),
        ]

    async def start(self):
        self.started = True
        if self.start_error:
            raise self.start_error
        if self.profile_dir is not None:
            # Same layout a Chromium profile leaves behind.
            default = self.profile_dir / "Default"
            default.mkdir(parents=True, exist_ok=True)
            (default / "Cookies").write_text("cookies")

    async def stop(self):
        if self.stop_delay:
            await asyncio.sleep(self.stop_delay)
        if self.stop_error:
            raise self.stop_error
        self.stopped = True

    async def send_message(self, chat_id, body):
        if self.send_error:
            raise self.send_error
        self.sent.append((chat_id, body))

    async def list_chats(self):
        return list(self.chats)

    async def get_chat(self, chat_id):
        return next((c for c in self.chats if c.chat_id == chat_id), None)

    async def emit(self, event, *args):
        await self._emit(event, *args)


class FakeClientFactory:
    """ClientFactory that records every client it builds."""

    def __init__(self, sessions_root: Optional[Path] = None, **client_kwargs):
        self.sessions_root = sessions_root
        self.client_kwargs = client_kwargs
        self.clients = {}
        self.calls = []

    def __call__(self, session_id: str) -> FakeChatClient:
        profile_dir = self.sessions_root / session_id if self.sessions_root else None
        client = FakeChatClient(session_id, profile_dir=profile_dir, **self.client_kwargs)
        self.clients[session_id] = client
        self.calls.append(session_id)
        return client


async def flush_tasks(rounds: int = 5):
    """Let pending background tasks (client starts) run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def sessions_root(tmp_path):
    root = tmp_path / "sessions"
    root.mkdir()
    return root


@pytest.fixture
def store():
    return SessionStore()


@pytest.fixture
def factory(sessions_root):
    return FakeClientFactory(sessions_root)


@pytest.fixture
def lifecycle(store, factory, sessions_root):
    return SessionLifecycle(
        store,
        factory,
        sessions_root,
        destroy_timeout=0.2,
        qr_wait_attempts=10,
        qr_wait_interval=0.02,
    )


def make_profile(root: Path, session_id: str, marker: str = "Default/Preferences") -> Path:
    """Create a session directory holding one marker file."""
    path = root / session_id / marker
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("{}")
    return root / session_id
