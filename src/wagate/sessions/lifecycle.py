"""
Session lifecycle: create, query, send and destroy chat sessions.

The lifecycle owns the translation from external client events to Session
status transitions:

    initializing --qr--> waiting_qr --authenticated--> authenticated --ready--> connected
    initializing --ready (restored profile)--> connected
    any --auth_failure--> auth_failed
    any --disconnected--> disconnected

There is no automatic reconnection; a failed session has to be destroyed and
created again (which is what disk recovery does).
"""

import asyncio
import shutil
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Any, Optional

from wagate.clients.base import (
    EVENT_AUTH_FAILURE,
    EVENT_AUTHENTICATED,
    EVENT_DISCONNECTED,
    EVENT_MESSAGE,
    EVENT_QR,
    EVENT_READY,
    ChatSummary,
    ClientFactory,
    IncomingMessage,
)
from wagate.logger import get_logger
from wagate.sessions.errors import (
    ExternalClientError,
    SessionNotConnectedError,
    SessionNotFoundError,
)
from wagate.sessions.models import (
    DIRECTION_RECEIVED,
    DIRECTION_SENT,
    TERMINAL_STATUSES,
    MessageRecord,
    Session,
    SessionStatus,
)
from wagate.sessions.store import SessionStore
from wagate.validation import (
    is_group_chat,
    normalize_peer,
    validate_message_body,
    validate_session_id,
)

logger = get_logger(__name__)

DEFAULT_DESTROY_TIMEOUT = 5.0
DEFAULT_QR_WAIT_ATTEMPTS = 60
DEFAULT_QR_WAIT_INTERVAL = 0.5
QR_RETRY_AFTER = 5


@dataclass
class QrWaitResult:
    """Outcome of a bounded wait for a QR payload or a connection."""

    session_id: str
    outcome: str  # ready | connected | failed | not_found | cancelled | timeout
    status: Optional[str] = None
    qr_payload: Optional[str] = None
    waited_seconds: float = 0.0
    retry_after: Optional[int] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.outcome in ("ready", "connected")

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "session_id": self.session_id,
            "outcome": self.outcome,
            "status": self.status,
            "qr_code": self.qr_payload,
            "waited_seconds": round(self.waited_seconds, 2),
            "retry_after": self.retry_after,
            "error": self.error,
        }


class SessionLifecycle:
    """
    Creates and tears down sessions and wires client events into them.

    Args:
        store: The shared session registry.
        client_factory: Builds a ChatClient for a session id.
        sessions_root: Directory holding one data folder per session.
        destroy_timeout: Ceiling for a client's graceful stop, in seconds.
    """

    def __init__(
        self,
        store: SessionStore,
        client_factory: ClientFactory,
        sessions_root: Path,
        destroy_timeout: float = DEFAULT_DESTROY_TIMEOUT,
        qr_wait_attempts: int = DEFAULT_QR_WAIT_ATTEMPTS,
        qr_wait_interval: float = DEFAULT_QR_WAIT_INTERVAL,
    ):
        self.store = store
        self.client_factory = client_factory
        self.sessions_root = Path(sessions_root)
        self.destroy_timeout = destroy_timeout
        self.qr_wait_attempts = qr_wait_attempts
        self.qr_wait_interval = qr_wait_interval
        self._start_tasks: dict[str, asyncio.Task] = {}

    # -- Queries -------------------------------------------------------------

    def get(self, session_id: str) -> Optional[Session]:
        return self.store.get(session_id)

    def list_sessions(self) -> list[dict[str, Any]]:
        return [session.to_summary() for session in self.store.sessions()]

    def session_path(self, session_id: str) -> Path:
        return self.sessions_root / session_id

    # -- Create --------------------------------------------------------------

    async def create(self, session_id: str) -> Session:
        """
        Create a session, or return the existing one for this id.

        The client is started in a background task; callers observe progress
        through ``get`` or ``wait_for_qr``.
        """
        validate_session_id(session_id)

        existing = self.store.get(session_id)
        if existing is not None:
            logger.debug(f"[{session_id}] Session already exists ({existing.status.value})")
            return existing

        client = self.client_factory(session_id)
        session = Session(session_id=session_id, client=client)
        self._wire_events(session)
        self.store.add(session)

        task = asyncio.create_task(self._start_client(session))
        self._start_tasks[session_id] = task

        logger.info(f"[{session_id}] Session created, starting client")
        return session

    async def _start_client(self, session: Session) -> None:
        try:
            await session.client.start()
        except asyncio.CancelledError:
            logger.debug(f"[{session.session_id}] Client start cancelled")
            raise
        except Exception as e:
            logger.error(f"[{session.session_id}] Client failed to start: {e}")
            if self.store.is_current(session):
                session.transition(
                    SessionStatus.DISCONNECTED, error_detail=f"Client start failed: {e}"
                )
        finally:
            if self._start_tasks.get(session.session_id) is asyncio.current_task():
                self._start_tasks.pop(session.session_id, None)

    # -- Client events -------------------------------------------------------

    def _wire_events(self, session: Session) -> None:
        client = session.client
        client.on(EVENT_QR, partial(self._on_qr, session))
        client.on(EVENT_AUTHENTICATED, partial(self._on_authenticated, session))
        client.on(EVENT_READY, partial(self._on_ready, session))
        client.on(EVENT_AUTH_FAILURE, partial(self._on_auth_failure, session))
        client.on(EVENT_DISCONNECTED, partial(self._on_disconnected, session))
        client.on(EVENT_MESSAGE, partial(self._on_message, session))

    def _accepts(self, session: Session, event: str) -> bool:
        if not self.store.is_current(session):
            logger.debug(f"[{session.session_id}] Dropping '{event}' for removed session")
            return False
        return True

    def _on_qr(self, session: Session, payload: str) -> None:
        if not self._accepts(session, EVENT_QR):
            return
        if session.status not in (SessionStatus.INITIALIZING, SessionStatus.WAITING_QR):
            logger.warning(
                f"[{session.session_id}] Ignoring QR while {session.status.value}"
            )
            return
        logger.info(f"[{session.session_id}] New QR generated")
        session.transition(SessionStatus.WAITING_QR, qr_payload=payload)

    def _on_authenticated(self, session: Session) -> None:
        if not self._accepts(session, EVENT_AUTHENTICATED):
            return
        if session.status in TERMINAL_STATUSES:
            return
        logger.info(f"[{session.session_id}] Authenticated")
        session.transition(SessionStatus.AUTHENTICATED)

    def _on_ready(self, session: Session) -> None:
        if not self._accepts(session, EVENT_READY):
            return
        if session.status in TERMINAL_STATUSES:
            return
        logger.info(f"[{session.session_id}] Client connected")
        session.transition(SessionStatus.CONNECTED)

    def _on_auth_failure(self, session: Session, detail: str = "") -> None:
        if not self._accepts(session, EVENT_AUTH_FAILURE):
            return
        logger.error(f"[{session.session_id}] Authentication failed: {detail}")
        session.transition(
            SessionStatus.AUTH_FAILED, error_detail=detail or "authentication failed"
        )

    def _on_disconnected(self, session: Session, reason: str = "") -> None:
        if not self._accepts(session, EVENT_DISCONNECTED):
            return
        logger.warning(f"[{session.session_id}] Disconnected: {reason}")
        session.transition(
            SessionStatus.DISCONNECTED, error_detail=reason or "disconnected"
        )

    def _on_message(self, session: Session, message: IncomingMessage) -> None:
        if not self._accepts(session, EVENT_MESSAGE):
            return
        logger.debug(f"[{session.session_id}] Message received from {message.sender}")
        session.log_message(
            MessageRecord(
                direction=DIRECTION_RECEIVED,
                peer=message.sender,
                body=message.body,
                timestamp=message.timestamp,
                is_group=message.is_group or is_group_chat(message.sender),
            )
        )

    # -- Client operations ---------------------------------------------------

    def _require(self, session_id: str) -> Session:
        session = self.store.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    def _require_connected(self, session_id: str) -> Session:
        session = self._require(session_id)
        if not session.is_connected:
            raise SessionNotConnectedError(session_id, session.status.value)
        return session

    async def send(self, session_id: str, peer: str, body: str) -> MessageRecord:
        """
        Send a text message through a connected session.

        Raises:
            SessionNotFoundError: No such session.
            SessionNotConnectedError: Session is not in ``connected``.
            ValidationError: Bad recipient or empty body.
            ExternalClientError: The client rejected the send.
        """
        session = self._require_connected(session_id)
        chat_id = normalize_peer(peer)
        validate_message_body(body)

        try:
            await session.client.send_message(chat_id, body)
        except Exception as e:
            logger.error(f"[{session_id}] Failed to send message to {chat_id}: {e}")
            session.error_detail = f"Send failed: {e}"
            raise ExternalClientError(
                f"Failed to send message: {e}", session_id=session_id, peer=chat_id
            ) from e

        record = MessageRecord(
            direction=DIRECTION_SENT,
            peer=chat_id,
            body=body,
            is_group=is_group_chat(chat_id),
        )
        if self.store.is_current(session):
            session.log_message(record)
        logger.info(f"[{session_id}] Message sent to {chat_id}")
        return record

    async def list_chats(self, session_id: str) -> list[ChatSummary]:
        session = self._require_connected(session_id)
        try:
            return await session.client.list_chats()
        except Exception as e:
            logger.error(f"[{session_id}] Failed to list chats: {e}")
            raise ExternalClientError(
                f"Failed to list chats: {e}", session_id=session_id
            ) from e

    async def get_chat(self, session_id: str, chat_id: str) -> Optional[ChatSummary]:
        session = self._require_connected(session_id)
        try:
            return await session.client.get_chat(chat_id)
        except Exception as e:
            logger.error(f"[{session_id}] Failed to fetch chat {chat_id}: {e}")
            raise ExternalClientError(
                f"Failed to fetch chat: {e}", session_id=session_id, chat_id=chat_id
            ) from e

    # -- Destroy -------------------------------------------------------------

    async def destroy(self, session_id: str, preserve_disk_data: bool = True) -> None:
        """
        Remove a session and stop its client.

        The store entry is removed before anything else, so ``get`` returns
        None once this call returns, whatever happened during teardown.
        """
        session = self.store.pop(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)

        logger.info(
            f"[{session_id}] Destroying session "
            f"({'keeping' if preserve_disk_data else 'deleting'} disk data)"
        )

        start_task = self._start_tasks.pop(session_id, None)
        if start_task and not start_task.done():
            start_task.cancel()

        try:
            await asyncio.wait_for(session.client.stop(), timeout=self.destroy_timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"[{session_id}] Client did not stop within {self.destroy_timeout}s"
            )
        except Exception as e:
            logger.error(f"[{session_id}] Error stopping client: {e}")

        if not preserve_disk_data:
            self.remove_session_data(session_id)

    def remove_session_data(self, session_id: str) -> bool:
        """Delete a session's data directory. Errors are logged, not raised."""
        path = self.session_path(session_id)
        if not path.exists():
            return False
        try:
            shutil.rmtree(path)
            logger.info(f"[{session_id}] Removed session data at {path}")
            return True
        except OSError as e:
            logger.error(f"[{session_id}] Failed to remove session data at {path}: {e}")
            return False

    # -- Bounded QR wait -----------------------------------------------------

    async def wait_for_qr(
        self,
        session_id: str,
        max_attempts: Optional[int] = None,
        interval: Optional[float] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> QrWaitResult:
        """
        Poll a session until it has a QR payload or is connected.

        Sleeps ``interval`` seconds between samples, for at most
        ``max_attempts`` samples. Setting ``cancel`` ends the wait early.
        """
        max_attempts = self.qr_wait_attempts if max_attempts is None else max_attempts
        interval = self.qr_wait_interval if interval is None else interval

        loop = asyncio.get_running_loop()
        started = loop.time()
        attempts = 0

        while True:
            waited = loop.time() - started
            session = self.store.get(session_id)

            if session is None:
                return QrWaitResult(
                    session_id, "not_found", waited_seconds=waited, error="Session not found"
                )
            if session.qr_payload:
                return QrWaitResult(
                    session_id,
                    "ready",
                    status=session.status.value,
                    qr_payload=session.qr_payload,
                    waited_seconds=waited,
                )
            if session.status in (SessionStatus.CONNECTED, SessionStatus.AUTHENTICATED):
                return QrWaitResult(
                    session_id, "connected", status=session.status.value, waited_seconds=waited
                )
            if session.status in TERMINAL_STATUSES:
                return QrWaitResult(
                    session_id,
                    "failed",
                    status=session.status.value,
                    waited_seconds=waited,
                    error=session.error_detail,
                )
            if attempts >= max_attempts:
                return QrWaitResult(
                    session_id,
                    "timeout",
                    status=session.status.value,
                    waited_seconds=waited,
                    retry_after=QR_RETRY_AFTER,
                    error="Timed out waiting for QR",
                )

            attempts += 1
            if cancel is None:
                await asyncio.sleep(interval)
                continue
            try:
                await asyncio.wait_for(cancel.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue
            return QrWaitResult(
                session_id,
                "cancelled",
                status=session.status.value,
                waited_seconds=loop.time() - started,
            )
