"""
Data model for chat sessions.

A Session is one WhatsApp identity tracked by the gateway, backed by exactly
one external client. Its status only moves in response to client events.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from wagate.clients.base import ChatClient


class SessionStatus(str, Enum):
    INITIALIZING = "initializing"
    WAITING_QR = "waiting_qr"
    AUTHENTICATED = "authenticated"
    CONNECTED = "connected"
    AUTH_FAILED = "auth_failed"
    DISCONNECTED = "disconnected"


TERMINAL_STATUSES = frozenset({SessionStatus.AUTH_FAILED, SessionStatus.DISCONNECTED})

DIRECTION_SENT = "sent"
DIRECTION_RECEIVED = "received"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class MessageRecord:
    """One logged message, inbound or outbound."""

    direction: str
    peer: str
    body: str
    timestamp: datetime = field(default_factory=utcnow)
    is_group: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "direction": self.direction,
            "peer": self.peer,
            "body": self.body,
            "timestamp": self.timestamp.isoformat(),
            "is_group": self.is_group,
        }


@dataclass
class Session:
    session_id: str
    client: ChatClient = field(repr=False)
    status: SessionStatus = SessionStatus.INITIALIZING
    qr_payload: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    last_activity: datetime = field(default_factory=utcnow)
    messages: list[MessageRecord] = field(default_factory=list)
    error_detail: Optional[str] = None

    def touch(self) -> None:
        self.last_activity = utcnow()

    def transition(
        self,
        status: SessionStatus,
        qr_payload: Optional[str] = None,
        error_detail: Optional[str] = None,
    ) -> None:
        """
        Move to a new status.

        The QR payload is kept only for ``waiting_qr``. The error detail is
        replaced when one is given and left alone otherwise.
        """
        self.status = status
        self.qr_payload = qr_payload if status == SessionStatus.WAITING_QR else None
        if error_detail is not None:
            self.error_detail = error_detail
        self.touch()

    def log_message(self, record: MessageRecord) -> None:
        self.messages.append(record)
        self.touch()

    @property
    def is_connected(self) -> bool:
        return self.status == SessionStatus.CONNECTED

    def to_summary(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "last_activity": self.last_activity.isoformat(),
            "message_count": len(self.messages),
            "has_qr": self.qr_payload is not None,
        }

    def to_dict(self, include_messages: bool = False) -> dict[str, Any]:
        data = self.to_summary()
        data["error"] = self.error_detail
        if include_messages:
            data["messages"] = [m.to_dict() for m in self.messages]
        return data
