"""Tests for the heartbeat scheduler."""

import asyncio
import json

import pytest

from tickfeed.config.settings import KeepaliveConfig, ProtocolConfig
from tickfeed.correlator import Correlator
from tickfeed.errors import SendError
from tickfeed.keepalive import KeepaliveScheduler
from tickfeed.protocol.codec import WireCodec
from tickfeed.protocol.messages import Response
from tickfeed.shutdown import ShutdownCoordinator


class AckingTransport:
    """Transport that records frames and acknowledges them through a correlator."""

    def __init__(self, correlator: Correlator, ack: bool = True):
        self.correlator = correlator
        self.ack = ack
        self.fail = False
        self.sent = []

    async def send(self, data):
        if self.fail:
            raise SendError("Connection is not open")
        self.sent.append(data)
        if self.ack:
            request_id = json.loads(data)["id"]
            asyncio.get_running_loop().call_soon(self.correlator.resolve, Response(id=request_id))


@pytest.fixture
def correlator():
    return Correlator(reserved_ids={3})


@pytest.fixture
def acking_transport(correlator):
    return AckingTransport(correlator)


def make_scheduler(transport, correlator, interval=0.02, timeout=0.05, shutdown=None):
    return KeepaliveScheduler(
        transport=transport,
        codec=WireCodec(),
        correlator=correlator,
        config=KeepaliveConfig(interval_seconds=interval, timeout_seconds=timeout),
        protocol=ProtocolConfig(),
        shutdown=shutdown,
    )


class TestBeat:
    """Single heartbeats."""

    @pytest.mark.asyncio
    async def test_acknowledged_heartbeat(self, acking_transport, correlator):
        scheduler = make_scheduler(acking_transport, correlator)

        assert await scheduler.beat() is True
        assert json.loads(acking_transport.sent[0]) == {"method": 7, "id": 3}
        assert scheduler.stats['heartbeats_acknowledged'] == 1
        assert correlator.pending == 0

    @pytest.mark.asyncio
    async def test_every_heartbeat_uses_the_fixed_id(self, acking_transport, correlator):
        scheduler = make_scheduler(acking_transport, correlator)

        for _ in range(3):
            assert await scheduler.beat() is True

        assert acking_transport.sent == ['{"method":7,"id":3}'] * 3

    @pytest.mark.asyncio
    async def test_missing_acknowledgement_is_not_an_error(self, correlator):
        transport = AckingTransport(correlator, ack=False)
        scheduler = make_scheduler(transport, correlator, timeout=0.02)

        assert await scheduler.beat() is False
        assert scheduler.stats['heartbeats_sent'] == 1
        assert scheduler.stats['heartbeats_failed'] == 1
        assert correlator.pending == 0

        # The id is free again for the next heartbeat
        transport.ack = True
        assert await scheduler.beat() is True

    @pytest.mark.asyncio
    async def test_send_failure_is_logged(self, acking_transport, correlator, caplog):
        acking_transport.fail = True
        scheduler = make_scheduler(acking_transport, correlator)

        assert await scheduler.beat() is False
        assert scheduler.stats['heartbeats_failed'] == 1
        assert correlator.pending == 0
        assert "Heartbeat failed" in caplog.text


class TestSchedule:
    """The periodic loop."""

    @pytest.mark.asyncio
    async def test_periodic_heartbeats(self, acking_transport, correlator, wait_until):
        scheduler = make_scheduler(acking_transport, correlator)
        scheduler.start()
        assert scheduler.running

        await wait_until(lambda: len(acking_transport.sent) >= 3)
        await scheduler.stop()

        assert not scheduler.running
        assert scheduler.stats['heartbeats_sent'] >= 3

    @pytest.mark.asyncio
    async def test_no_heartbeat_after_stop(self, acking_transport, correlator, wait_until):
        scheduler = make_scheduler(acking_transport, correlator)
        scheduler.start()
        await wait_until(lambda: len(acking_transport.sent) >= 1)

        await scheduler.stop()
        sent = len(acking_transport.sent)
        await asyncio.sleep(0.1)

        assert len(acking_transport.sent) == sent
        assert await scheduler.beat() is False
        assert len(acking_transport.sent) == sent

    @pytest.mark.asyncio
    async def test_stop_before_start(self, acking_transport, correlator):
        scheduler = make_scheduler(acking_transport, correlator)
        await scheduler.stop()
        assert acking_transport.sent == []


class TestShutdownSignal:
    """The scheduler observes the shutdown signal directly."""

    @pytest.mark.asyncio
    async def test_no_beat_after_signal(self, acking_transport, correlator):
        shutdown = ShutdownCoordinator()
        scheduler = make_scheduler(acking_transport, correlator, shutdown=shutdown)

        shutdown.trigger("operator")

        assert await scheduler.beat() is False
        assert acking_transport.sent == []
        assert correlator.pending == 0

    @pytest.mark.asyncio
    async def test_loop_ends_on_signal_before_stop(self, acking_transport, correlator, wait_until):
        shutdown = ShutdownCoordinator()
        scheduler = make_scheduler(acking_transport, correlator, interval=0.05, shutdown=shutdown)
        scheduler.start()
        await wait_until(lambda: len(acking_transport.sent) >= 1)

        shutdown.trigger("operator")
        sent = len(acking_transport.sent)
        await wait_until(lambda: not scheduler.running)
        await asyncio.sleep(0.12)

        assert len(acking_transport.sent) == sent
        await scheduler.stop()
