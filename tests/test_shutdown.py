"""
Unit tests for ShutdownCoordinator.
"""

import asyncio
import signal
import time

import pytest

from conftest import FakeClientFactory, flush_tasks
from wagate.sessions.errors import CapacityError
from wagate.sessions.lifecycle import SessionLifecycle
from wagate.sessions.shutdown import ShutdownCoordinator


class ExitRecorder:
    def __init__(self):
        self.codes = []

    def __call__(self, code):
        self.codes.append(code)


@pytest.fixture
def exits():
    return ExitRecorder()


@pytest.fixture
def forced():
    return ExitRecorder()


@pytest.fixture
def coordinator(store, lifecycle, exits, forced):
    return ShutdownCoordinator(
        store, lifecycle, timeout=1.0, exit_callback=exits, force_exit=forced
    )


async def wait_for_shutdown(coordinator):
    await flush_tasks()
    assert coordinator.shutdown_task is not None
    return await coordinator.shutdown_task


class TestDrain:
    @pytest.mark.asyncio
    async def test_closes_every_session_and_keeps_data(
        self, coordinator, lifecycle, factory, store, sessions_root
    ):
        for sid in ("one", "two", "three"):
            await lifecycle.create(sid)
        await flush_tasks()

        report = await coordinator.drain()

        assert report.total == 3
        assert report.closed == 3
        assert not report.timed_out
        assert store.count == 0
        assert all(client.stopped for client in factory.clients.values())
        assert (sessions_root / "one").is_dir()

    @pytest.mark.asyncio
    async def test_empty_registry(self, coordinator):
        report = await coordinator.drain()
        assert report.total == 0
        assert report.closed == 0

    @pytest.mark.asyncio
    async def test_drain_is_idempotent(self, coordinator, lifecycle):
        await lifecycle.create("one")

        first = await coordinator.drain()
        second = await coordinator.drain()

        assert first is second

    @pytest.mark.asyncio
    async def test_session_created_mid_drain_is_closed(self, store, sessions_root, exits, forced):
        factory = FakeClientFactory(stop_delay=0.1)
        lifecycle = SessionLifecycle(store, factory, sessions_root, destroy_timeout=1.0)
        coordinator = ShutdownCoordinator(
            store, lifecycle, timeout=2.0, exit_callback=exits, force_exit=forced
        )
        await lifecycle.create("old_1")

        draining = asyncio.ensure_future(coordinator.drain())
        await asyncio.sleep(0.03)
        await lifecycle.create("new_1")
        report = await draining

        assert report.total == 2
        assert report.closed == 2
        assert store.count == 0
        assert factory.clients["new_1"].stopped

    @pytest.mark.asyncio
    async def test_drain_again_closes_late_sessions(self, coordinator, lifecycle, store):
        await lifecycle.create("one")
        first = await coordinator.drain()

        await lifecycle.create("late")
        second = await coordinator.drain()

        assert second is not first
        assert second.total == 1
        assert second.closed == 1
        assert store.count == 0

    @pytest.mark.asyncio
    async def test_global_timeout_bounds_drain(self, store, sessions_root, exits, forced):
        factory = FakeClientFactory(stop_delay=10.0)
        lifecycle = SessionLifecycle(store, factory, sessions_root, destroy_timeout=10.0)
        coordinator = ShutdownCoordinator(
            store, lifecycle, timeout=0.1, exit_callback=exits, force_exit=forced
        )
        await lifecycle.create("slow_1")
        await lifecycle.create("slow_2")

        started = time.monotonic()
        report = await coordinator.shutdown("test")

        assert time.monotonic() - started < 1.0
        assert report.timed_out
        assert report.closed == 0
        assert exits.codes == [0]
        assert store.count == 0


class TestSignals:
    @pytest.mark.asyncio
    async def test_refuses_new_sessions_once_shutting_down(self, coordinator):
        coordinator.check_accepting()

        coordinator.handle_signal("SIGTERM")

        with pytest.raises(CapacityError) as exc_info:
            coordinator.check_accepting()
        assert exc_info.value.reason == "shutting_down"
        await wait_for_shutdown(coordinator)

    @pytest.mark.asyncio
    async def test_signal_drains_then_exits_zero(self, coordinator, lifecycle, store, exits):
        await lifecycle.create("one")

        coordinator.handle_signal("SIGTERM")
        assert coordinator.shutting_down
        report = await wait_for_shutdown(coordinator)

        assert report.closed == 1
        assert store.count == 0
        assert exits.codes == [0]
        assert coordinator.exit_code == 0

    @pytest.mark.asyncio
    async def test_second_signal_forces_exit(self, coordinator, forced, exits):
        coordinator.handle_signal("SIGINT")
        coordinator.handle_signal("SIGINT")

        assert forced.codes == [1]
        await wait_for_shutdown(coordinator)
        assert exits.codes == [0]

    @pytest.mark.asyncio
    async def test_fatal_error_exits_one(self, coordinator, lifecycle, exits, store):
        await lifecycle.create("one")
        loop = asyncio.get_running_loop()

        coordinator.handle_fatal(
            loop, {"message": "Task exception was never retrieved", "exception": RuntimeError("x")}
        )
        await wait_for_shutdown(coordinator)

        assert exits.codes == [1]
        assert coordinator.exit_code == 1
        assert store.count == 0

    @pytest.mark.asyncio
    async def test_fatal_during_shutdown_is_logged_only(self, coordinator, exits, forced):
        coordinator.handle_signal("SIGTERM")
        coordinator.handle_fatal(asyncio.get_running_loop(), {"message": "late"})

        await wait_for_shutdown(coordinator)

        assert exits.codes == [0]
        assert forced.codes == []

    def test_no_loop_exits_immediately(self, store, lifecycle, exits, forced):
        coordinator = ShutdownCoordinator(
            store, lifecycle, exit_callback=exits, force_exit=forced
        )

        coordinator.handle_signal("SIGTERM")

        assert exits.codes == [0]


@pytest.mark.asyncio
async def test_install_registers_handlers(coordinator):
    loop = asyncio.get_running_loop()
    previous = loop.get_exception_handler()
    try:
        coordinator.install()
        assert loop.get_exception_handler() == coordinator.handle_fatal
        assert coordinator._loop is loop
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        loop.set_exception_handler(previous)
