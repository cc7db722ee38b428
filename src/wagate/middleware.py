"""
HTTP middleware for wagate.

Provides the daily access key gate and request logging.
"""
import time
from typing import Callable, Iterable, Optional

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from wagate.access_key import DailyKeyService
from wagate.logger import get_logger

logger = get_logger(__name__)

PUBLIC_PATHS = ("/health", "/auth/validate-key")
PUBLIC_PREFIXES = ("/api/qr/", "/api/status/")


class DailyKeyMiddleware(BaseHTTPMiddleware):
    """
    Require today's access key on management routes.

    The key is read from, in order:
    1. Authorization header: "Bearer <key>"
    2. X-Access-Key header: "<key>"
    3. Query parameter: "key=<key>"
    """

    def __init__(
        self,
        app,
        key_service: DailyKeyService,
        enabled: bool = True,
        public_paths: Optional[Iterable[str]] = None,
        public_prefixes: Optional[Iterable[str]] = None,
    ):
        super().__init__(app)
        self.key_service = key_service
        self.enabled = enabled
        self.public_paths = set(public_paths or PUBLIC_PATHS)
        self.public_prefixes = tuple(public_prefixes or PUBLIC_PREFIXES)

    def _is_public(self, path: str) -> bool:
        return path in self.public_paths or path.startswith(self.public_prefixes)

    def _extract_key(self, request: Request) -> Optional[str]:
        auth = request.headers.get("Authorization", "")
        if auth.startswith("Bearer "):
            return auth[7:]

        key = request.headers.get("X-Access-Key")
        if key:
            return key

        return request.query_params.get("key")

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not self.enabled or self._is_public(request.url.path):
            return await call_next(request)

        # CORS preflight
        if request.method == "OPTIONS":
            return await call_next(request)

        key = self._extract_key(request)
        if not key:
            logger.warning(f"Missing access key for {request.url.path}")
            return JSONResponse(
                {
                    "success": False,
                    "error": "Access key required",
                    "code": "unauthorized",
                },
                status_code=401,
            )

        result = await self.key_service.validate_key(key)
        if not result.valid:
            logger.warning(f"Invalid access key for {request.url.path}")
            body = {"success": False, "error": "Invalid access key", "code": "forbidden"}
            if result.error:
                body["detail"] = result.error
            return JSONResponse(body, status_code=403)

        return await call_next(request)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Log all requests with timing information.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()

        logger.info(
            f"Request: {request.method} {request.url.path} "
            f"from {request.client.host if request.client else 'unknown'}"
        )

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(f"Request failed: {e}")
            raise

        duration = time.time() - start_time
        logger.info(f"Response: {response.status_code} in {duration*1000:.2f}ms")
        response.headers["X-Response-Time"] = f"{duration*1000:.2f}ms"

        return response
