"""
In-memory registry of active sessions.

The store is a plain object handed to every component that needs it; there is
no module-level instance. All methods are synchronous, so each call is atomic
with respect to the event loop.
"""

from typing import Optional

from wagate.logger import get_logger
from wagate.sessions.errors import SessionAlreadyExistsError
from wagate.sessions.models import Session

logger = get_logger(__name__)


class SessionStore:
    """Registry of Session objects keyed by session id."""

    def __init__(self):
        self._sessions: dict[str, Session] = {}

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def contains(self, session_id: str) -> bool:
        return session_id in self._sessions

    def __contains__(self, session_id: str) -> bool:
        return self.contains(session_id)

    def __len__(self) -> int:
        return len(self._sessions)

    @property
    def count(self) -> int:
        return len(self._sessions)

    def add(self, session: Session) -> None:
        """
        Register a session.

        Raises:
            SessionAlreadyExistsError: If the id is already registered.
        """
        if session.session_id in self._sessions:
            raise SessionAlreadyExistsError(session.session_id)
        self._sessions[session.session_id] = session
        logger.debug(f"Registered session {session.session_id} ({len(self)} active)")

    def pop(self, session_id: str) -> Optional[Session]:
        session = self._sessions.pop(session_id, None)
        if session:
            logger.debug(f"Removed session {session_id} ({len(self)} active)")
        return session

    def is_current(self, session: Session) -> bool:
        """True if this exact object is the registered entry for its id."""
        return self._sessions.get(session.session_id) is session

    def ids(self) -> list[str]:
        return list(self._sessions.keys())

    def sessions(self) -> list[Session]:
        return list(self._sessions.values())

    def clear(self) -> None:
        self._sessions.clear()
