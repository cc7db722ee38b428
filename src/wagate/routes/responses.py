"""
Shared helpers for route handlers: error-to-status mapping and app state access.
"""

from typing import Any

from starlette.requests import Request
from starlette.responses import JSONResponse

from wagate.logger import get_logger
from wagate.sessions.errors import (
    CapacityError,
    ExternalClientError,
    OperationTimeoutError,
    SessionAlreadyExistsError,
    SessionError,
    SessionNotConnectedError,
    SessionNotFoundError,
)
from wagate.validation import ValidationError

logger = get_logger(__name__)

STATUS_BY_ERROR = (
    (SessionNotFoundError, 404),
    (SessionNotConnectedError, 409),
    (SessionAlreadyExistsError, 409),
    (ExternalClientError, 502),
    (CapacityError, 503),
    (OperationTimeoutError, 504),
)


def get_component(request: Request, name: str) -> Any:
    """Return a component stored on app.state, or None."""
    return getattr(request.app.state, name, None)


def not_initialized(name: str) -> JSONResponse:
    return JSONResponse(
        {"success": False, "error": f"{name} not initialized", "code": "unavailable"},
        status_code=503,
    )


def bad_request(message: str) -> JSONResponse:
    return JSONResponse(
        {"success": False, "error": message, "code": "invalid_request"},
        status_code=400,
    )


def error_response(exc: Exception) -> JSONResponse:
    """Map an exception to a JSON error response."""
    if isinstance(exc, ValidationError):
        return bad_request(str(exc))

    if isinstance(exc, SessionError):
        status_code = 500
        for error_type, code in STATUS_BY_ERROR:
            if isinstance(exc, error_type):
                status_code = code
                break
        headers = None
        if isinstance(exc, OperationTimeoutError):
            headers = {"Retry-After": str(exc.retry_after)}
        return JSONResponse(exc.to_dict(), status_code=status_code, headers=headers)

    logger.error(f"Unhandled error: {exc}")
    return JSONResponse(
        {"success": False, "error": f"Internal error: {exc}", "code": "internal"},
        status_code=500,
    )
