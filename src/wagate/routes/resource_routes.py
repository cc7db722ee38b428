"""
Resource governor API routes.
"""

from pydantic import ValidationError as PydanticValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse

from wagate.logger import get_logger
from wagate.routes.models import LimitsUpdateRequest
from wagate.routes.responses import bad_request, get_component, not_initialized

logger = get_logger(__name__)


async def get_resources(request: Request) -> JSONResponse:
    """GET /resources: memory, per-session usage, limits and recommendations."""
    if not (governor := get_component(request, "governor")):
        return not_initialized("Resource governor")
    return JSONResponse(
        {"success": True, **governor.detailed_stats(), "timer": governor.get_status()}
    )


async def check_resources(request: Request) -> JSONResponse:
    """POST /resources/check: run one evaluation now."""
    if not (governor := get_component(request, "governor")):
        return not_initialized("Resource governor")
    evaluation = await governor.trigger_now()
    return JSONResponse({"success": True, **evaluation.to_dict()})


async def update_limits(request: Request) -> JSONResponse:
    """
    PUT /resources/limits

    Body: any subset of the limit fields, e.g. {"max_total_sessions": 20}
    """
    if not (governor := get_component(request, "governor")):
        return not_initialized("Resource governor")

    try:
        body = await request.json()
    except Exception:
        return bad_request("Invalid JSON body")

    try:
        changes = LimitsUpdateRequest(**body).changes()
    except (PydanticValidationError, TypeError) as e:
        return bad_request(str(e))

    if not changes:
        return bad_request("No limits provided")

    try:
        limits = await governor.update_limits(**changes)
    except ValueError as e:
        logger.warning(f"Rejected limits update {changes}: {e}")
        return bad_request(str(e))

    return JSONResponse({"success": True, "limits": limits.model_dump()})


async def trim_messages(request: Request) -> JSONResponse:
    """POST /resources/trim"""
    if not (governor := get_component(request, "governor")):
        return not_initialized("Resource governor")
    removed = governor.trim_all()
    return JSONResponse({"success": True, "removed": removed})
