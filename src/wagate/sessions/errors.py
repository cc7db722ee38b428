"""
Error taxonomy for the session subsystem.

Every error carries a machine-readable ``code`` and enough structured detail
for an automated caller to decide whether to retry, wait or give up.
"""

from typing import Any, Dict, Optional


class SessionError(Exception):
    """Base class for session subsystem failures."""

    code = "session_error"

    def __init__(self, message: str, session_id: Optional[str] = None, **detail: Any):
        super().__init__(message)
        self.message = message
        self.session_id = session_id
        self.detail = detail

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "success": False,
            "error": self.message,
            "code": self.code,
        }
        if self.session_id is not None:
            payload["session_id"] = self.session_id
        payload.update(self.detail)
        return payload


class SessionNotFoundError(SessionError):
    code = "not_found"

    def __init__(self, session_id: str):
        super().__init__(f"Session not found: {session_id}", session_id=session_id)


class SessionAlreadyExistsError(SessionError):
    code = "already_active"

    def __init__(self, session_id: str):
        super().__init__(f"Session already active: {session_id}", session_id=session_id)


class InvalidSessionDataError(SessionError):
    code = "invalid_data"

    def __init__(self, session_id: str):
        super().__init__(
            f"No recognizable session data on disk for: {session_id}",
            session_id=session_id,
        )


class SessionNotConnectedError(SessionError):
    code = "not_connected"

    def __init__(self, session_id: str, status: str):
        super().__init__(
            f"Session '{session_id}' is not connected (status: {status})",
            session_id=session_id,
            status=status,
        )
        self.status = status


class ExternalClientError(SessionError):
    """The external chat client reported a failure."""

    code = "external_failure"


class OperationTimeoutError(SessionError):
    code = "timeout"

    def __init__(self, message: str, session_id: Optional[str] = None, retry_after: int = 5):
        super().__init__(message, session_id=session_id, retry_after=retry_after)
        self.retry_after = retry_after


class CapacityError(SessionError):
    """Admission refused: too many sessions or memory is critical."""

    code = "capacity"

    def __init__(self, message: str, reason: str, current: Any, limit: Any):
        super().__init__(message, reason=reason, current=current, limit=limit)
        self.reason = reason
        self.current = current
        self.limit = limit
