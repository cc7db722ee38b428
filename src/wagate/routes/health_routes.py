"""
Health check endpoint.
"""
import time
from datetime import datetime

from starlette.requests import Request
from starlette.responses import JSONResponse

start_time = time.time()


async def health_check(request: Request) -> JSONResponse:
    """
    Basic health check endpoint.

    Returns 200 while the service is running, 503 once shutdown has begun.
    """
    store = getattr(request.app.state, "store", None)
    coordinator = getattr(request.app.state, "coordinator", None)
    shutting_down = bool(coordinator and coordinator.shutting_down)

    return JSONResponse(
        {
            "status": "shutting_down" if shutting_down else "healthy",
            "timestamp": datetime.now().isoformat(),
            "uptime_seconds": int(time.time() - start_time),
            "sessions": store.count if store is not None else 0,
        },
        status_code=503 if shutting_down else 200,
    )
