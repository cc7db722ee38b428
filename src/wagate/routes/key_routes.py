"""
Daily access key routes.
"""

from pydantic import ValidationError as PydanticValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse

from wagate.access_key import AccessKeyError
from wagate.routes.models import ValidateKeyRequest
from wagate.routes.responses import bad_request, get_component, not_initialized


async def validate_key(request: Request) -> JSONResponse:
    """
    POST /auth/validate-key

    Body: {"key": "..."}
    """
    if not (service := get_component(request, "key_service")):
        return not_initialized("Key service")

    try:
        body = await request.json()
        payload = ValidateKeyRequest(**body)
    except (PydanticValidationError, TypeError) as e:
        return bad_request(str(e))
    except Exception:
        return bad_request("Invalid JSON body")

    result = await service.validate_key(payload.key)
    expose = bool(getattr(request.app.state, "expose_expected_key", False))
    return JSONResponse(
        {"success": result.valid, **result.to_dict(expose_expected=expose)},
        status_code=200 if result.valid else 401,
    )


async def get_key_cache(request: Request) -> JSONResponse:
    """GET /auth/key-cache?auto_load=true"""
    if not (service := get_component(request, "key_service")):
        return not_initialized("Key service")

    auto_load = request.query_params.get("auto_load", "").lower() in ("1", "true", "yes")
    info = await service.cache_info(auto_load=auto_load)
    return JSONResponse({"success": True, "cache": info, "keys": service.cache_keys()})


async def refresh_key_cache(request: Request) -> JSONResponse:
    """POST /auth/key-cache/refresh"""
    if not (service := get_component(request, "key_service")):
        return not_initialized("Key service")

    try:
        await service.refresh()
    except AccessKeyError as e:
        return JSONResponse(
            {"success": False, "error": str(e), "code": "external_failure"},
            status_code=502,
        )

    cleaned = service.clean_expired()
    return JSONResponse(
        {"success": True, "cache": await service.cache_info(), "cleaned": cleaned}
    )
