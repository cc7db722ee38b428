"""
Base classes and data models for external chat clients.

A chat client wraps one WhatsApp Web identity driven by an external process
(a headless browser). The session subsystem never talks to the protocol
directly: it starts and stops the client, issues sends and chat queries, and
learns about state changes exclusively through subscribed events.
"""

import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from wagate.logger import get_logger

logger = get_logger(__name__)

# Events a client may emit, with their callback arguments.
EVENT_QR = "qr"  # (payload: str)
EVENT_AUTHENTICATED = "authenticated"  # ()
EVENT_READY = "ready"  # ()
EVENT_AUTH_FAILURE = "auth_failure"  # (detail: str)
EVENT_DISCONNECTED = "disconnected"  # (reason: str)
EVENT_MESSAGE = "message"  # (message: IncomingMessage)

CLIENT_EVENTS = (
    EVENT_QR,
    EVENT_AUTHENTICATED,
    EVENT_READY,
    EVENT_AUTH_FAILURE,
    EVENT_DISCONNECTED,
    EVENT_MESSAGE,
)


@dataclass
class IncomingMessage:
    """A message received by the client."""

    sender: str
    body: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    is_group: bool = False
    message_id: Optional[str] = None


@dataclass
class ChatSummary:
    """Minimal description of a chat visible to the client."""

    chat_id: str
    name: str = ""
    is_group: bool = False
    unread_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "chat_id": self.chat_id,
            "name": self.name,
            "is_group": self.is_group,
            "unread_count": self.unread_count,
        }


class ChatClient(ABC):
    """
    Abstract external chat client.

    Implementations call ``_emit`` when the underlying process reports a
    state change. Subscribers register with ``on``.
    """

    def __init__(self, session_id: str):
        self.session_id = session_id
        self._listeners: dict[str, list[Callable[..., Any]]] = {
            event: [] for event in CLIENT_EVENTS
        }

    def on(self, event: str, callback: Callable[..., Any]) -> None:
        """Subscribe a callback to one event kind."""
        if event not in self._listeners:
            raise ValueError(f"Unknown client event: {event}")
        self._listeners[event].append(callback)

    async def _emit(self, event: str, *args: Any) -> None:
        """Deliver an event to every subscriber; listener errors are logged."""
        for callback in list(self._listeners.get(event, [])):
            try:
                result = callback(*args)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.error(f"[{self.session_id}] '{event}' listener failed: {e}")

    @abstractmethod
    async def start(self) -> None:
        """Begin the connection/auth handshake."""
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Tear down the underlying process."""
        pass

    @abstractmethod
    async def send_message(self, chat_id: str, body: str) -> None:
        """Send a text message to a chat id (``...@c.us`` or ``...@g.us``)."""
        pass

    @abstractmethod
    async def list_chats(self) -> list[ChatSummary]:
        """Return the chats currently visible to the client."""
        pass

    @abstractmethod
    async def get_chat(self, chat_id: str) -> Optional[ChatSummary]:
        """Return one chat by id, or None."""
        pass


ClientFactory = Callable[[str], ChatClient]
