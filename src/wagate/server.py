"""
Starlette-based web server for the wagate WhatsApp session gateway.

This server provides a REST API with the following endpoints:
- /health: Liveness check
- /api/qr, /api/status: Public QR and status lookups
- /auth: Daily access key validation and cache management
- /sessions: Create, list, inspect, message and delete sessions
- /recovery: Disk recovery statistics and actions
- /resources: Memory and session limits

Components are built once per app in ``create_app`` and stored on
``app.state``; route handlers read them from there.
"""

import asyncio
import os
import signal
import sys
from contextlib import asynccontextmanager
from typing import Callable, Optional

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.routing import Route

from wagate.access_key import DailyKeyService
from wagate.clients.base import ClientFactory
from wagate.clients.browser import browser_client_factory
from wagate.config import CONFIG, AppConfig
from wagate.logger import get_logger, setup_logging
from wagate.middleware import DailyKeyMiddleware, RequestLoggingMiddleware
from wagate.routes.health_routes import health_check
from wagate.routes.key_routes import get_key_cache, refresh_key_cache, validate_key
from wagate.routes.recovery_routes import (
    clean_invalid,
    get_recovery_stats,
    recover_session,
    run_recovery,
)
from wagate.routes.resource_routes import (
    check_resources,
    get_resources,
    trim_messages,
    update_limits,
)
from wagate.routes.session_routes import (
    create_session,
    delete_session,
    get_chat,
    get_qr,
    get_session,
    get_status,
    list_chats,
    list_sessions,
    send_message,
)
from wagate.sessions.governor import MemorySnapshot, ResourceGovernor, ResourceLimits
from wagate.sessions.lifecycle import SessionLifecycle
from wagate.sessions.recovery import DiskRecovery
from wagate.sessions.shutdown import ShutdownCoordinator
from wagate.sessions.store import SessionStore

# Setup logging
if "--debug" in sys.argv:
    os.environ["LOG_LEVEL"] = "DEBUG"

log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE")
setup_logging(level=log_level, log_file=log_file)

logger = get_logger(__name__)


ROUTES = [
    Route("/health", health_check, methods=["GET"]),
    # Public
    Route("/api/qr/{session_id}", get_qr, methods=["GET"]),
    Route("/api/status/{session_id}", get_status, methods=["GET"]),
    Route("/auth/validate-key", validate_key, methods=["POST"]),
    # Key-gated
    Route("/auth/key-cache", get_key_cache, methods=["GET"]),
    Route("/auth/key-cache/refresh", refresh_key_cache, methods=["POST"]),
    Route("/sessions", list_sessions, methods=["GET"]),
    Route("/sessions", create_session, methods=["POST"]),
    Route("/sessions/{session_id}", get_session, methods=["GET"]),
    Route("/sessions/{session_id}", delete_session, methods=["DELETE"]),
    Route("/sessions/{session_id}/send", send_message, methods=["POST"]),
    Route("/sessions/{session_id}/chats", list_chats, methods=["GET"]),
    Route("/sessions/{session_id}/chats/{chat_id}", get_chat, methods=["GET"]),
    Route("/recovery/stats", get_recovery_stats, methods=["GET"]),
    Route("/recovery/run", run_recovery, methods=["POST"]),
    Route("/recovery/clean", clean_invalid, methods=["POST"]),
    Route("/recovery/{session_id}", recover_session, methods=["POST"]),
    Route("/resources", get_resources, methods=["GET"]),
    Route("/resources/check", check_resources, methods=["POST"]),
    Route("/resources/limits", update_limits, methods=["PUT"]),
    Route("/resources/trim", trim_messages, methods=["POST"]),
]


async def startup(app: Starlette) -> None:
    """Initialize services on application startup."""
    state = app.state
    config: AppConfig = state.config
    logger.info("Application startup - initializing services")

    try:
        config.sessions_path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error(f"Failed to create sessions directory {config.sessions_path}: {e}")

    if state.recover_on_startup:
        state.recovery_task = asyncio.create_task(state.recovery.recover_all())
        logger.info("Disk recovery scheduled")

    if state.governor_enabled:
        await state.governor.start()


async def shutdown(app: Starlette) -> None:
    """Cleanup services on application shutdown."""
    state = app.state
    logger.info("Application shutdown - cleaning up services")

    await state.governor.stop()

    task = getattr(state, "recovery_task", None)
    if task and not task.done():
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    report = await state.coordinator.drain()
    logger.info(f"Sessions drained: {report.to_dict()}")


def create_app(
    config: AppConfig = CONFIG,
    client_factory: Optional[ClientFactory] = None,
    key_service: Optional[DailyKeyService] = None,
    memory_probe: Optional[Callable[[], MemorySnapshot]] = None,
    recover_on_startup: Optional[bool] = None,
    governor_enabled: Optional[bool] = None,
) -> Starlette:
    """Build the application and its session components."""
    store = SessionStore()
    lifecycle = SessionLifecycle(
        store,
        client_factory or browser_client_factory(config),
        config.sessions_path,
        destroy_timeout=config.destroy_timeout_seconds,
        qr_wait_attempts=config.qr_wait_attempts,
        qr_wait_interval=config.qr_wait_interval_seconds,
    )
    recovery = DiskRecovery(
        store, lifecycle, config.sessions_path, delay=config.recovery_delay_seconds
    )
    governor_kwargs = {"memory_probe": memory_probe} if memory_probe else {}
    governor = ResourceGovernor(
        store,
        lifecycle,
        limits=ResourceLimits(**config.resource_limits()),
        **governor_kwargs,
    )
    coordinator = ShutdownCoordinator(
        store, lifecycle, timeout=config.shutdown_timeout_seconds
    )
    key_service = key_service or DailyKeyService(
        api_url=config.access_key_api_url,
        key_field=config.access_key_field,
        ttl_hours=config.access_key_ttl_hours,
        timeout=config.access_key_timeout_seconds,
    )

    @asynccontextmanager
    async def lifespan(app: Starlette):
        await startup(app)
        yield
        await shutdown(app)

    app = Starlette(
        debug=config.debug,
        routes=ROUTES,
        middleware=[
            Middleware(
                CORSMiddleware,
                allow_origins=["*"],
                allow_methods=["*"],
                allow_headers=["*"],
            ),
            Middleware(RequestLoggingMiddleware),
            Middleware(
                DailyKeyMiddleware,
                key_service=key_service,
                enabled=config.access_key_required,
            ),
        ],
        lifespan=lifespan,
    )

    app.state.config = config
    app.state.store = store
    app.state.lifecycle = lifecycle
    app.state.recovery = recovery
    app.state.governor = governor
    app.state.coordinator = coordinator
    app.state.key_service = key_service
    app.state.expose_expected_key = config.expose_expected_key or config.debug
    app.state.recover_on_startup = (
        config.recover_on_startup if recover_on_startup is None else recover_on_startup
    )
    app.state.governor_enabled = (
        config.governor_enabled if governor_enabled is None else governor_enabled
    )
    return app


app = create_app()


def run(host: Optional[str] = None, port: Optional[int] = None) -> int:
    """Serve ``app`` with uvicorn and return the process exit code."""
    import uvicorn

    host = host or CONFIG.host
    port = port or CONFIG.port
    coordinator: ShutdownCoordinator = app.state.coordinator

    class GatewayServer(uvicorn.Server):
        """Routes termination signals through the shutdown coordinator."""

        def handle_exit(self, sig: int, frame) -> None:
            coordinator.handle_signal(signal.Signals(sig).name)

    async def main() -> None:
        config = uvicorn.Config(app, host=host, port=port, log_level=log_level.lower())
        server = GatewayServer(config)

        loop = asyncio.get_running_loop()
        coordinator.attach(loop)
        coordinator.exit_callback = lambda _code: setattr(server, "should_exit", True)
        loop.set_exception_handler(coordinator.handle_fatal)

        await server.serve()

    logger.info(f"Starting wagate server on http://{host}:{port}")
    asyncio.run(main())
    return coordinator.exit_code or 0


if __name__ == "__main__":
    sys.exit(run())
