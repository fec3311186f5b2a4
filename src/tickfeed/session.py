"""Connection lifecycle: connect, authenticate, subscribe, stream, reconnect."""

import asyncio
import logging
import random
from typing import Any, Awaitable, Dict, List, Optional

from .clients.transport import WebSocketTransport
from .config.settings import TickFeedSettings
from .correlator import Correlator
from .dispatcher import Presenter, StreamDispatcher
from .errors import (
    ConnectError,
    DecodeError,
    FatalSessionError,
    InvalidTransition,
    ProtocolError,
    SessionClosed,
    TickFeedError,
)
from .keepalive import KeepaliveScheduler
from .protocol.codec import WireCodec
from .protocol.messages import (
    AuthResult,
    CloseNotification,
    Request,
    Response,
    SessionState,
)
from .shutdown import ShutdownCoordinator
from .utils.logging import log_with_context
from .utils.retry import ExponentialBackoff, sleep_unless

logger = logging.getLogger(__name__)

S = SessionState

_TRANSITIONS = {
    S.DISCONNECTED: {S.CONNECTING, S.CLOSING},
    S.CONNECTING: {S.AUTHENTICATING, S.TERMINATED, S.CLOSING},
    S.AUTHENTICATING: {S.SUBSCRIBING, S.TERMINATED, S.CLOSING},
    S.SUBSCRIBING: {S.STREAMING, S.CONNECTING, S.TERMINATED, S.CLOSING},
    S.STREAMING: {S.CONNECTING, S.TERMINATED, S.CLOSING},
    S.CLOSING: {S.TERMINATED},
    S.TERMINATED: set(),
}


class _ShutdownRequested(Exception):
    """Raised on the control task when the shutdown signal wins a race."""


class TickFeedSession:
    """
    Drives one logical session over a sequence of connections.

    All state changes happen on the task that runs ``run()``. Per connection
    it owns a correlator, a receive task (the only reader of the transport)
    and, while streaming, a keepalive scheduler. Before a new connection is
    opened the previous one is closed and both tasks have finished, so at
    most one connection is ever live.

    Failures are sorted into three outcomes:

    - fatal (connect, auth, non-reconnectable subscribe failure):
      ``run()`` reaches TERMINATED and raises ``FatalSessionError``
    - reconnect (server close with ``reconnect=true``): back to CONNECTING
      after a backoff delay
    - transient (bad frame, unmatched response, failed heartbeat):
      logged, no state change
    """

    def __init__(
        self,
        settings: TickFeedSettings,
        presenter: Presenter,
        shutdown: ShutdownCoordinator,
        transport: Optional[WebSocketTransport] = None,
        codec: Optional[WireCodec] = None,
        rng: Optional[random.Random] = None,
    ):
        self.settings = settings
        self.shutdown = shutdown
        self.codec = codec or WireCodec()
        self.transport = transport or WebSocketTransport(settings.endpoint)
        self.dispatcher = StreamDispatcher(presenter, channel=settings.endpoint.channel)
        self.backoff = ExponentialBackoff(settings.reconnect, rng=rng)

        self.state = S.DISCONNECTED
        self.history: List[SessionState] = [S.DISCONNECTED]
        self.auth_result: Optional[AuthResult] = None
        self.last_close: Optional[CloseNotification] = None

        self._correlator: Optional[Correlator] = None
        self._receive_task: Optional[asyncio.Task] = None
        self._keepalive: Optional[KeepaliveScheduler] = None

        self.stats = {
            'reconnects': 0,
            'decode_errors': 0,
            'unmatched_responses': 0,
            'heartbeats_sent': 0,
            'heartbeats_failed': 0,
        }

    # Lifecycle

    async def run(self) -> SessionState:
        """
        Run until shutdown, a terminal close or a fatal error.

        Returns:
            SessionState.TERMINATED

        Raises:
            FatalSessionError: For connect, authentication or subscription failures
        """
        if self.state is not S.DISCONNECTED:
            raise InvalidTransition(f"Session already started (state={self.state.value})")

        try:
            return await self._run()
        finally:
            if self.state is not S.TERMINATED:
                await self._release_connection()
                self._transition(S.TERMINATED, force=True)

    async def _run(self) -> SessionState:
        reconnecting = False

        while not self.shutdown.is_set():
            self._transition(S.CONNECTING)
            await self._release_connection()

            if reconnecting and await self._wait_before_reconnect():
                break

            notification = await self._run_connection()
            if notification is None:
                break

            if notification.reconnect and self.settings.reconnect.enabled:
                logger.info(f"Server closed the connection: {notification.reason}; reconnecting")
                reconnecting = True
                continue

            self.last_close = notification
            logger.error(f"Server closed the stream: {notification.reason}; reconnect not permitted")
            await self._release_connection()
            self._transition(S.TERMINATED)
            return self.state

        await self._close_for_shutdown()
        return self.state

    async def _wait_before_reconnect(self) -> bool:
        """Back off before a reconnect. Returns True if shutdown interrupted the wait."""
        if self.backoff.exhausted:
            await self._fatal(
                f"Giving up after {self.backoff.attempts} consecutive reconnect attempts"
            )

        delay = self.backoff.next_delay()
        self.stats['reconnects'] += 1
        logger.info(f"Reconnect attempt {self.backoff.attempts} in {delay:.2f}s")
        return await sleep_unless(self.shutdown, delay)

    async def _run_connection(self) -> Optional[CloseNotification]:
        """
        Take one connection from CONNECTING to the end of its stream.

        Returns the close notification that ended it, or None on shutdown.
        """
        try:
            await self._until_shutdown(self.transport.connect(self.settings.endpoint.url))
        except _ShutdownRequested:
            return None
        except ConnectError as e:
            await self._fatal("Connect failed", e)

        correlator = Correlator(reserved_ids={self.settings.protocol.heartbeat_id})
        self._correlator = correlator
        self._receive_task = asyncio.create_task(self._receive_loop(correlator), name="receive")

        self._transition(S.AUTHENTICATING)
        try:
            self.auth_result = await self._authenticate()
        except _ShutdownRequested:
            return None
        except TickFeedError as e:
            if self.shutdown.is_set():
                return None
            await self._fatal("Authentication failed", e)

        self._transition(S.SUBSCRIBING)
        try:
            await self._subscribe()
        except _ShutdownRequested:
            return None
        except SessionClosed as e:
            if self.shutdown.is_set():
                return None
            if e.notification.reconnect and self.settings.reconnect.enabled:
                logger.info(f"Subscription rejected: {e.notification.reason}; server permits reconnect")
                return e.notification
            await self._fatal("Subscription failed", e)
        except TickFeedError as e:
            if self.shutdown.is_set():
                return None
            await self._fatal("Subscription failed", e)

        self._transition(S.STREAMING)
        self.backoff.reset()
        self._start_keepalive(correlator)

        stop_task = asyncio.ensure_future(self.shutdown.wait())
        try:
            await asyncio.wait({self._receive_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not stop_task.done():
                stop_task.cancel()

        if self.shutdown.is_set():
            return None
        return self._receive_task.result()

    async def _close_for_shutdown(self) -> None:
        if self._keepalive is not None:
            await self._stop_keepalive()
        self._transition(S.CLOSING)
        await self._release_connection()
        self._transition(S.TERMINATED)
        logger.info(f"Session closed ({self.shutdown.reason or 'shutdown'})")

    async def _fatal(self, reason: str, cause: Optional[BaseException] = None) -> None:
        error = FatalSessionError(reason, cause)
        logger.error(f"Fatal: {error}")
        await self._release_connection()
        self._transition(S.TERMINATED)
        raise error

    # Protocol

    async def _authenticate(self) -> AuthResult:
        request = Request(
            id=self._correlator.next_id(),
            params={"token": self.settings.endpoint.token},
        )
        response = await self._call(request, self.settings.protocol.request_timeout_seconds)

        if response.error is not None:
            raise ProtocolError(f"Authentication rejected: {response.error}")
        try:
            result = AuthResult.from_result(response.result)
        except (TypeError, ValueError) as e:
            raise ProtocolError(f"Malformed authentication response: {e}") from e

        logger.info(f"Authentication successful. Client ID: {result.client}")
        return result

    async def _subscribe(self) -> Response:
        channel = self.settings.endpoint.channel
        request = Request(
            id=self._correlator.next_id(),
            method=self.settings.protocol.subscribe_method,
            params={"channel": channel},
        )
        response = await self._call(request, self.settings.protocol.request_timeout_seconds)

        if response.error is not None:
            raise ProtocolError(f"Subscription to {channel} rejected: {response.error}")

        logger.info(f"Subscribed to channel: {channel}")
        return response

    async def _call(self, request: Request, timeout: float) -> Response:
        """Send a correlated request and wait for its response."""
        correlator = self._correlator
        data = self.codec.encode(request)
        future = correlator.register(request.id)
        try:
            await self.transport.send(data)
            return await self._until_shutdown(correlator.wait(request.id, timeout, future))
        except BaseException:
            correlator.clear_waiter(request.id)
            raise

    async def _until_shutdown(self, awaitable: Awaitable[Any]) -> Any:
        """Await ``awaitable`` unless the shutdown signal arrives first."""
        work = asyncio.ensure_future(awaitable)
        stop_task = asyncio.ensure_future(self.shutdown.wait())
        try:
            done, _ = await asyncio.wait({work, stop_task}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in (work, stop_task):
                if not task.done():
                    task.cancel()

        if work in done:
            return work.result()

        try:
            await work
        except asyncio.CancelledError:
            pass
        raise _ShutdownRequested()

    # Receive path

    async def _receive_loop(self, correlator: Correlator) -> CloseNotification:
        """Single reader: route frames until the connection closes."""
        while True:
            try:
                frame = await self.transport.receive()
            except Exception as e:
                logger.error(f"Receive failed: {e}", exc_info=True)
                notification = CloseNotification.transport_closed()
                break

            try:
                message = self.codec.decode(frame)
            except DecodeError as e:
                self.stats['decode_errors'] += 1
                logger.warning(f"Discarding undecodable frame: {e}")
                continue

            if isinstance(message, CloseNotification):
                notification = message
                break
            if isinstance(message, Response):
                correlator.resolve(message)
            else:
                self.dispatcher.on_frame(message)

        log_with_context(
            logger, logging.INFO,
            f"Receive loop ended: {notification.reason} (reconnect: {notification.reconnect})",
            reason=notification.reason, reconnect=notification.reconnect,
        )
        correlator.fail_all(SessionClosed(notification))
        return notification

    # Connection resources

    def _start_keepalive(self, correlator: Correlator) -> None:
        if not self.settings.keepalive.enabled:
            return
        self._keepalive = KeepaliveScheduler(
            transport=self.transport,
            codec=self.codec,
            correlator=correlator,
            config=self.settings.keepalive,
            protocol=self.settings.protocol,
            shutdown=self.shutdown,
        )
        self._keepalive.start()

    async def _stop_keepalive(self) -> None:
        keepalive = self._keepalive
        self._keepalive = None
        await keepalive.stop()
        self.stats['heartbeats_sent'] += keepalive.stats['heartbeats_sent']
        self.stats['heartbeats_failed'] += keepalive.stats['heartbeats_failed']

    async def _release_connection(self) -> None:
        """Stop keepalive, close the transport and wait for the receive task."""
        if self._keepalive is not None:
            await self._stop_keepalive()

        await self.transport.close()

        task = self._receive_task
        self._receive_task = None
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.debug(f"Receive task ended with error: {e}")

        if self._correlator is not None:
            self.stats['unmatched_responses'] += self._correlator.unmatched_responses
            self._correlator = None

    def _transition(self, new_state: SessionState, force: bool = False) -> None:
        old_state = self.state
        if not force and new_state not in _TRANSITIONS[old_state]:
            raise InvalidTransition(f"Illegal transition {old_state.value} -> {new_state.value}")

        self.state = new_state
        self.history.append(new_state)
        log_with_context(
            logger, logging.INFO,
            f"Session state {old_state.value} -> {new_state.value}",
            from_state=old_state.value, to_state=new_state.value,
        )

    # Introspection

    def get_stats(self) -> Dict[str, Any]:
        """Get session, transport and dispatcher statistics."""
        stats = {
            **self.stats,
            'state': self.state.value,
            'reconnect_attempts': self.backoff.attempts,
            'transport': self.transport.get_stats(),
            'dispatcher': self.dispatcher.get_stats(),
        }
        if self._keepalive is not None:
            stats['keepalive'] = self._keepalive.get_stats()
        return stats

    async def health_check(self) -> Dict[str, Any]:
        """Evaluate session health."""
        stats = self.get_stats()
        issues = []

        if self.state is S.STREAMING:
            age = stats['dispatcher']['last_record_age_seconds']
            stale_after = self.settings.health.stale_after_seconds
            if age is not None and age > stale_after:
                issues.append(f"No ticks for {age:.1f}s")
            status = 'degraded' if issues else 'healthy'
        elif self.state in (S.CLOSING, S.TERMINATED):
            issues.append(f"Session {self.state.value}")
            status = 'unhealthy'
        else:
            issues.append(f"Session {self.state.value}")
            status = 'degraded'

        return {'status': status, 'issues': issues, 'stats': stats}
