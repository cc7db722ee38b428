"""
Graceful shutdown: drain every session within a global time ceiling.

The first termination signal starts a drain; a second one while draining
forces an immediate exit. Uncaught errors on the event loop go through the
same drain with exit code 1.
"""

import asyncio
import os
import signal
from dataclasses import dataclass
from typing import Any, Callable, Optional

from wagate.logger import get_logger
from wagate.sessions.errors import CapacityError
from wagate.sessions.lifecycle import SessionLifecycle
from wagate.sessions.store import SessionStore

logger = get_logger(__name__)

DEFAULT_SHUTDOWN_TIMEOUT = 8.0
FORCED_EXIT_CODE = 1


@dataclass
class DrainReport:
    total: int = 0
    closed: int = 0
    failed: int = 0
    timed_out: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "closed": self.closed,
            "failed": self.failed,
            "timed_out": self.timed_out,
        }


class ShutdownCoordinator:
    """
    Orchestrates bounded-time teardown of all sessions.

    Args:
        store: Shared session registry.
        lifecycle: Used to destroy sessions (disk data is preserved).
        timeout: Global ceiling for the drain, in seconds.
        exit_callback: Called with the exit code once the drain resolves.
            Defaults to stopping the running event loop.
        force_exit: Called with 1 on a second signal. Defaults to os._exit.
    """

    def __init__(
        self,
        store: SessionStore,
        lifecycle: SessionLifecycle,
        timeout: float = DEFAULT_SHUTDOWN_TIMEOUT,
        exit_callback: Optional[Callable[[int], None]] = None,
        force_exit: Callable[[int], None] = os._exit,
    ):
        self.store = store
        self.lifecycle = lifecycle
        self.timeout = timeout
        self.exit_callback = exit_callback or self._stop_loop
        self.force_exit = force_exit

        self.shutting_down = False
        self.exit_code: Optional[int] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._drain_task: Optional[asyncio.Task] = None
        self._shutdown_task: Optional[asyncio.Task] = None

    # -- Entry points --------------------------------------------------------

    def handle_signal(self, signame: str = "SIGTERM") -> None:
        """React to a termination signal."""
        if self.shutting_down:
            logger.warning(f"Received {signame} during shutdown, forcing exit")
            self.force_exit(FORCED_EXIT_CODE)
            return

        self.shutting_down = True
        logger.info(f"Received {signame}, starting graceful shutdown")
        self._schedule(f"signal {signame}", 0)

    def handle_fatal(self, loop: asyncio.AbstractEventLoop, context: dict) -> None:
        """Event loop exception handler: log and shut down with exit code 1."""
        exc = context.get("exception")
        message = context.get("message", "Unhandled error")
        logger.opt(exception=exc).critical(f"Fatal error: {message}")

        if self.shutting_down:
            return
        self.shutting_down = True
        self._schedule("fatal error", 1, loop)

    def install(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """
        Register SIGINT/SIGTERM handlers and the loop exception handler.

        For embedding the coordinator in a loop without uvicorn; under uvicorn,
        ``server.run`` routes its exit handler to ``handle_signal`` instead.
        Must be called from a coroutine when no loop is given.
        """
        loop = loop or asyncio.get_running_loop()
        self._loop = loop
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.handle_signal, sig.name)
            except (NotImplementedError, RuntimeError):
                signal.signal(sig, lambda s, _f: self.handle_signal(signal.Signals(s).name))
        loop.set_exception_handler(self.handle_fatal)
        logger.debug("Shutdown handlers installed")

    def check_accepting(self) -> None:
        """
        Refuse new sessions once shutdown has started.

        Raises:
            CapacityError: The server is shutting down.
        """
        if self.shutting_down:
            raise CapacityError(
                "Server is shutting down",
                reason="shutting_down",
                current=self.store.count,
                limit=None,
            )

    @property
    def shutdown_task(self) -> Optional[asyncio.Task]:
        return self._shutdown_task

    def attach(self, loop: asyncio.AbstractEventLoop) -> None:
        """Remember the loop that shutdown work must run on."""
        self._loop = loop

    def _schedule(
        self,
        reason: str,
        exit_code: int,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        loop = loop or self._loop
        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                logger.error("No event loop available for shutdown, exiting immediately")
                self.exit_callback(exit_code)
                return
        loop.call_soon_threadsafe(self._start_shutdown, loop, reason, exit_code)

    def _start_shutdown(
        self, loop: asyncio.AbstractEventLoop, reason: str, exit_code: int
    ) -> None:
        self._shutdown_task = loop.create_task(self.shutdown(reason, exit_code))

    # -- Drain ---------------------------------------------------------------

    async def shutdown(self, reason: str, exit_code: int = 0) -> DrainReport:
        """Drain all sessions, then invoke the exit callback."""
        self.shutting_down = True
        logger.info(f"Shutting down ({reason})")

        report = await self.drain()
        logger.info(
            f"Shutdown drain complete: {report.closed}/{report.total} closed, "
            f"{report.failed} failed{', timed out' if report.timed_out else ''}"
        )

        self.exit_code = exit_code
        self.exit_callback(exit_code)
        return report

    async def drain(self) -> DrainReport:
        """
        Destroy every session concurrently, bounded by the global timeout.

        Concurrent callers share one drain. Once it has finished, a new call
        returns the same report unless sessions are still registered, in
        which case another drain runs for them.
        """
        if self._drain_task is None or (self._drain_task.done() and self.store.count):
            self._drain_task = asyncio.ensure_future(self._drain())
        return await asyncio.shield(self._drain_task)

    async def _drain(self) -> DrainReport:
        report = DrainReport()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout
        attempted: list = []

        # Sessions registered while a pass runs are picked up by the next one.
        while True:
            batch = [
                s for s in self.store.sessions() if not any(s is a for a in attempted)
            ]
            if not batch:
                break
            remaining = deadline - loop.time()
            if remaining <= 0:
                report.timed_out = True
                break

            attempted.extend(batch)
            report.total += len(batch)
            logger.info(f"Closing {len(batch)} session(s)")
            tasks = [asyncio.ensure_future(self._close(s.session_id)) for s in batch]
            done, pending = await asyncio.wait(tasks, timeout=remaining)

            for task in done:
                if task.result():
                    report.closed += 1
                else:
                    report.failed += 1

            if pending:
                report.timed_out = True
                logger.warning(
                    f"Shutdown timed out after {self.timeout}s with "
                    f"{len(pending)} session(s) still closing"
                )
                for task in pending:
                    task.cancel()
                break

        if report.timed_out and self.store.count:
            logger.warning(f"{self.store.count} session(s) left open at shutdown")
        return report

    async def _close(self, session_id: str) -> bool:
        try:
            await self.lifecycle.destroy(session_id, preserve_disk_data=True)
            logger.info(f"[{session_id}] Closed")
            return True
        except Exception as e:
            logger.error(f"[{session_id}] Error closing session: {e}")
            return False

    # -- Default exit --------------------------------------------------------

    def _stop_loop(self, exit_code: int) -> None:
        loop = self._loop
        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                return
        logger.info(f"Stopping event loop (exit code {exit_code})")
        loop.stop()
