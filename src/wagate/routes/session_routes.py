"""
Session API routes.

Public:
- GET /api/qr/{session_id}       QR for a session, created on demand
- GET /api/status/{session_id}   Session status

Key-gated:
- GET/POST /sessions, GET/DELETE /sessions/{session_id}
- POST /sessions/{session_id}/send
- GET /sessions/{session_id}/chats[/{chat_id}]
"""

from pydantic import ValidationError as PydanticValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse

from wagate.logger import get_logger
from wagate.routes.models import CreateSessionRequest, SendMessageRequest
from wagate.routes.responses import (
    bad_request,
    error_response,
    get_component,
    not_initialized,
)
from wagate.sessions.errors import (
    CapacityError,
    OperationTimeoutError,
    SessionNotFoundError,
)
from wagate.sessions.lifecycle import QR_RETRY_AFTER
from wagate.sessions.models import SessionStatus
from wagate.validation import validate_session_id

logger = get_logger(__name__)

INITIALIZING_RETRY_AFTER = 3
PENDING_STATUSES = (SessionStatus.INITIALIZING, SessionStatus.WAITING_QR)


def _flag(request: Request, name: str) -> bool:
    return request.query_params.get(name, "").lower() in ("1", "true", "yes")


def _admit(request: Request) -> None:
    coordinator = get_component(request, "coordinator")
    if coordinator is not None:
        coordinator.check_accepting()
    governor = get_component(request, "governor")
    if governor is not None:
        governor.check_admission()


async def _json_body(request: Request, model):
    try:
        body = await request.json()
    except Exception:
        return None, bad_request("Invalid JSON body")
    try:
        return model(**body), None
    except (PydanticValidationError, TypeError) as e:
        return None, bad_request(str(e))


# -- Public ------------------------------------------------------------------


async def get_qr(request: Request) -> JSONResponse:
    """
    GET /api/qr/{session_id}?wait=true

    Creates the session if needed. With ``wait`` the request holds for up to
    the configured QR wait budget.
    """
    lifecycle = get_component(request, "lifecycle")
    if lifecycle is None:
        return not_initialized("Session lifecycle")

    session_id = request.path_params["session_id"]
    wait = _flag(request, "wait")

    try:
        validate_session_id(session_id)
        session = lifecycle.get(session_id)
        if session is None:
            _admit(request)
            session = await lifecycle.create(session_id)
            if not wait:
                return JSONResponse(
                    {
                        "success": False,
                        "session_id": session_id,
                        "status": session.status.value,
                        "message": "Session created, generating QR",
                        "retry_after": INITIALIZING_RETRY_AFTER,
                    }
                )
    except Exception as e:
        return error_response(e)

    if wait and not session.qr_payload and session.status in PENDING_STATUSES:
        result = await lifecycle.wait_for_qr(session_id)
        if result.outcome == "not_found":
            return error_response(SessionNotFoundError(session_id))
        if result.outcome == "ready":
            return JSONResponse(
                {
                    "success": True,
                    "session_id": session_id,
                    "qr_code": result.qr_payload,
                    "status": result.status,
                    "generated_in": f"{result.waited_seconds:.1f}s",
                }
            )
        if result.outcome == "timeout":
            return error_response(
                OperationTimeoutError(
                    "Timed out waiting for QR, try again",
                    session_id=session_id,
                    retry_after=result.retry_after,
                )
            )
        session = lifecycle.get(session_id) or session

    if session.qr_payload:
        return JSONResponse(
            {
                "success": True,
                "session_id": session_id,
                "qr_code": session.qr_payload,
                "status": session.status.value,
            }
        )

    if session.status in PENDING_STATUSES:
        return JSONResponse(
            {
                "success": False,
                "session_id": session_id,
                "status": session.status.value,
                "message": "Generating QR, try again in a few seconds",
                "retry_after": INITIALIZING_RETRY_AFTER,
            }
        )

    return JSONResponse(
        {
            "success": False,
            "session_id": session_id,
            "status": session.status.value,
            "message": f"QR not available (status: {session.status.value})",
            "error": session.error_detail,
            "retry_after": None if session.is_connected else QR_RETRY_AFTER,
        }
    )


async def get_status(request: Request) -> JSONResponse:
    """GET /api/status/{session_id}"""
    lifecycle = get_component(request, "lifecycle")
    if lifecycle is None:
        return not_initialized("Session lifecycle")

    session_id = request.path_params["session_id"]
    session = lifecycle.get(session_id)
    if session is None:
        return error_response(SessionNotFoundError(session_id))

    return JSONResponse({"success": True, **session.to_summary()})


# -- Key-gated ---------------------------------------------------------------


async def list_sessions(request: Request) -> JSONResponse:
    """GET /sessions"""
    lifecycle = get_component(request, "lifecycle")
    if lifecycle is None:
        return not_initialized("Session lifecycle")

    sessions = lifecycle.list_sessions()
    return JSONResponse({"success": True, "sessions": sessions, "count": len(sessions)})


async def create_session(request: Request) -> JSONResponse:
    """
    POST /sessions

    Body: {"session_id": "sales-01"}
    """
    lifecycle = get_component(request, "lifecycle")
    if lifecycle is None:
        return not_initialized("Session lifecycle")

    payload, error = await _json_body(request, CreateSessionRequest)
    if error:
        return error

    session_id = payload.session_id
    try:
        validate_session_id(session_id)
        existing = lifecycle.get(session_id)
        if existing is not None:
            return JSONResponse(
                {
                    "success": False,
                    "error": f"Session already active: {session_id}",
                    "code": "already_active",
                    "session": existing.to_summary(),
                },
                status_code=409,
            )
        _admit(request)
        session = await lifecycle.create(session_id)
    except CapacityError as e:
        logger.warning(f"[{session_id}] Session refused: {e.message}")
        return error_response(e)
    except Exception as e:
        return error_response(e)

    return JSONResponse({"success": True, "session": session.to_summary()}, status_code=201)


async def get_session(request: Request) -> JSONResponse:
    """GET /sessions/{session_id}?messages=true"""
    lifecycle = get_component(request, "lifecycle")
    if lifecycle is None:
        return not_initialized("Session lifecycle")

    session_id = request.path_params["session_id"]
    session = lifecycle.get(session_id)
    if session is None:
        return error_response(SessionNotFoundError(session_id))

    return JSONResponse(
        {
            "success": True,
            "session": session.to_dict(include_messages=_flag(request, "messages")),
        }
    )


async def delete_session(request: Request) -> JSONResponse:
    """DELETE /sessions/{session_id}?delete_data=true"""
    lifecycle = get_component(request, "lifecycle")
    if lifecycle is None:
        return not_initialized("Session lifecycle")

    session_id = request.path_params["session_id"]
    delete_data = _flag(request, "delete_data")
    try:
        await lifecycle.destroy(session_id, preserve_disk_data=not delete_data)
    except Exception as e:
        return error_response(e)

    return JSONResponse(
        {"success": True, "session_id": session_id, "data_deleted": delete_data}
    )


async def send_message(request: Request) -> JSONResponse:
    """
    POST /sessions/{session_id}/send

    Body: {"to": "573001234567", "message": "hello"}
    """
    lifecycle = get_component(request, "lifecycle")
    if lifecycle is None:
        return not_initialized("Session lifecycle")

    payload, error = await _json_body(request, SendMessageRequest)
    if error:
        return error

    session_id = request.path_params["session_id"]
    try:
        record = await lifecycle.send(session_id, payload.to, payload.message)
    except Exception as e:
        return error_response(e)

    return JSONResponse({"success": True, "session_id": session_id, "message": record.to_dict()})


async def list_chats(request: Request) -> JSONResponse:
    """GET /sessions/{session_id}/chats"""
    lifecycle = get_component(request, "lifecycle")
    if lifecycle is None:
        return not_initialized("Session lifecycle")

    session_id = request.path_params["session_id"]
    try:
        chats = await lifecycle.list_chats(session_id)
    except Exception as e:
        return error_response(e)

    return JSONResponse(
        {"success": True, "chats": [c.to_dict() for c in chats], "count": len(chats)}
    )


async def get_chat(request: Request) -> JSONResponse:
    """GET /sessions/{session_id}/chats/{chat_id}"""
    lifecycle = get_component(request, "lifecycle")
    if lifecycle is None:
        return not_initialized("Session lifecycle")

    session_id = request.path_params["session_id"]
    chat_id = request.path_params["chat_id"]
    try:
        chat = await lifecycle.get_chat(session_id, chat_id)
    except Exception as e:
        return error_response(e)

    if chat is None:
        return JSONResponse(
            {"success": False, "error": f"Chat not found: {chat_id}", "code": "not_found"},
            status_code=404,
        )
    return JSONResponse({"success": True, "chat": chat.to_dict()})
