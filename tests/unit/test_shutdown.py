"""Tests for the shutdown coordinator."""

import asyncio
import os
import signal

import pytest

from tickfeed.shutdown import ShutdownCoordinator


class TestShutdownCoordinator:
    """Cancellation signal."""

    @pytest.mark.asyncio
    async def test_first_trigger_wins(self):
        coordinator = ShutdownCoordinator()

        assert coordinator.trigger("operator") is True
        assert coordinator.trigger("second") is False
        assert coordinator.is_set()
        assert coordinator.reason == "operator"

    @pytest.mark.asyncio
    async def test_wait_returns_after_trigger(self):
        coordinator = ShutdownCoordinator()
        waiter = asyncio.create_task(coordinator.wait())
        await asyncio.sleep(0)
        assert not waiter.done()

        coordinator.trigger()
        await asyncio.wait_for(waiter, timeout=1.0)

    @pytest.mark.asyncio
    async def test_process_signal_triggers(self):
        coordinator = ShutdownCoordinator()
        loop = asyncio.get_running_loop()
        coordinator.install_signal_handlers(loop, signals=(signal.SIGUSR1,))

        try:
            os.kill(os.getpid(), signal.SIGUSR1)
            await asyncio.wait_for(coordinator.wait(), timeout=1.0)
        finally:
            loop.remove_signal_handler(signal.SIGUSR1)

        assert coordinator.reason == "received SIGUSR1"
