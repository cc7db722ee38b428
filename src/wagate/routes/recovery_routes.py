"""
Disk recovery API routes.
"""

from starlette.requests import Request
from starlette.responses import JSONResponse

from wagate.routes.responses import error_response, get_component, not_initialized
from wagate.validation import validate_session_id


async def get_recovery_stats(request: Request) -> JSONResponse:
    """GET /recovery/stats"""
    if not (recovery := get_component(request, "recovery")):
        return not_initialized("Disk recovery")
    return JSONResponse({"success": True, **recovery.stats()})


async def run_recovery(request: Request) -> JSONResponse:
    """POST /recovery/run: recover every persisted session not yet active."""
    if not (recovery := get_component(request, "recovery")):
        return not_initialized("Disk recovery")
    report = await recovery.recover_all()
    return JSONResponse({"success": True, **report.to_dict()})


async def clean_invalid(request: Request) -> JSONResponse:
    """POST /recovery/clean: delete directories without usable session data."""
    if not (recovery := get_component(request, "recovery")):
        return not_initialized("Disk recovery")
    removed = recovery.clean_invalid()
    return JSONResponse({"success": True, "removed": removed})


async def recover_session(request: Request) -> JSONResponse:
    """POST /recovery/{session_id}"""
    if not (recovery := get_component(request, "recovery")):
        return not_initialized("Disk recovery")

    session_id = request.path_params["session_id"]
    try:
        validate_session_id(session_id)
    except Exception as e:
        return error_response(e)

    result = await recovery.recover_one(session_id)
    status_code = 200 if result.success else 422
    return JSONResponse(result.to_dict(), status_code=status_code)
