"""Periodic heartbeat sender."""

import asyncio
import logging
from typing import Any, Dict, Optional

from .clients.transport import WebSocketTransport
from .config.settings import KeepaliveConfig, ProtocolConfig
from .correlator import Correlator
from .errors import TickFeedError
from .protocol.codec import WireCodec
from .protocol.messages import Request
from .shutdown import ShutdownCoordinator

logger = logging.getLogger(__name__)


class KeepaliveScheduler:
    """
    Sends a heartbeat every ``interval_seconds`` while a connection streams.

    Heartbeats reuse one fixed request id and are fire-and-forget: the
    acknowledgement is read through the correlator and only its arrival is
    checked. A failed heartbeat is logged and never ends the session.

    Once either ``stop()`` is called or the shutdown signal is delivered no
    new heartbeat is written.
    """

    def __init__(
        self,
        transport: WebSocketTransport,
        codec: WireCodec,
        correlator: Correlator,
        config: KeepaliveConfig,
        protocol: ProtocolConfig,
        shutdown: Optional[ShutdownCoordinator] = None,
    ):
        self.transport = transport
        self.codec = codec
        self.correlator = correlator
        self.config = config
        self.protocol = protocol
        self.shutdown = shutdown

        self._stop_event = asyncio.Event()
        self._task: Optional[asyncio.Task] = None
        self._inflight_send: Optional[asyncio.Future] = None

        self.stats = {
            'heartbeats_sent': 0,
            'heartbeats_acknowledged': 0,
            'heartbeats_failed': 0,
        }

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the heartbeat loop."""
        if self.running:
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name="keepalive")
        logger.info(f"Keepalive started (interval={self.config.interval_seconds}s)")

    async def stop(self) -> None:
        """Stop the loop. No heartbeat is written once this returns."""
        self._stop_event.set()
        task = self._task
        if task is None:
            return

        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        self._task = None

        # A frame write already handed to the transport is allowed to finish
        send = self._inflight_send
        if send is not None and not send.done():
            try:
                await send
            except TickFeedError as e:
                logger.debug(f"Heartbeat write interrupted by stop: {e}")
        self._inflight_send = None

        logger.info("Keepalive stopped")

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set() or (self.shutdown is not None and self.shutdown.is_set())

    async def _run(self) -> None:
        while not self.stopped:
            if await self._sleep_interval():
                break
            await self.beat()

    async def _sleep_interval(self) -> bool:
        """Wait one interval. Returns True if stopped in the meantime."""
        waiters = [asyncio.ensure_future(self._stop_event.wait())]
        if self.shutdown is not None:
            waiters.append(asyncio.ensure_future(self.shutdown.wait()))
        try:
            await asyncio.wait(
                waiters, timeout=self.config.interval_seconds, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            for waiter in waiters:
                waiter.cancel()
        return self.stopped

    async def beat(self) -> bool:
        """Send one heartbeat and read its acknowledgement."""
        if self.stopped:
            return False

        request_id = self.protocol.heartbeat_id
        request = Request(id=request_id, method=self.protocol.heartbeat_method)

        try:
            data = self.codec.encode(request)
            future = self.correlator.register(request_id)
        except (ValueError, TickFeedError) as e:
            self.stats['heartbeats_failed'] += 1
            logger.warning(f"Heartbeat skipped: {e}")
            return False

        try:
            self._inflight_send = asyncio.ensure_future(self.transport.send(data))
            # Shielded so that stop() never interrupts a frame mid-write
            await asyncio.shield(self._inflight_send)
            self.stats['heartbeats_sent'] += 1
            await self.correlator.wait(request_id, self.config.timeout_seconds, future)
        except TickFeedError as e:
            self.correlator.clear_waiter(request_id)
            self.stats['heartbeats_failed'] += 1
            logger.warning(f"Heartbeat failed: {e}")
            return False

        self.stats['heartbeats_acknowledged'] += 1
        logger.debug("Heartbeat acknowledged")
        return True

    def get_stats(self) -> Dict[str, Any]:
        return {**self.stats, 'running': self.running}
