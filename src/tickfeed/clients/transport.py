"""WebSocket transport owning the single duplex connection."""

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Union

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidURI, WebSocketException

from ..config.settings import EndpointConfig
from ..errors import ConnectError, SendError
from ..protocol.messages import CloseSignal

logger = logging.getLogger(__name__)

Connector = Callable[..., Awaitable[Any]]


class WebSocketTransport:
    """
    One websocket connection at a time, with a serialized send path.

    Every writer in the process goes through ``send``, which holds a lock for
    the whole frame write. ``receive`` has a single caller, the session's
    receive loop. ``close`` may be called from any task and any number of
    times; once it starts no further frame is written.
    """

    def __init__(self, config: EndpointConfig, connector: Optional[Connector] = None):
        self.config = config
        self._connector = connector or websockets.connect
        self._websocket = None
        self._send_lock = asyncio.Lock()
        self._closing = False

        self.stats = {
            'connection_count': 0,
            'frames_sent': 0,
            'frames_received': 0,
            'send_errors': 0,
            'last_frame_time': None,
        }

    @property
    def is_open(self) -> bool:
        return self._websocket is not None and not self._closing

    async def connect(self, endpoint: Optional[str] = None) -> None:
        """
        Open the connection.

        Raises:
            ConnectError: On dial or handshake failure, or if a connection is already open
        """
        if self._websocket is not None:
            raise ConnectError("A connection is already open; close it before reconnecting")

        url = endpoint or self.config.url
        logger.info(f"Connecting to {url}")

        try:
            websocket = await self._connector(
                url,
                open_timeout=self.config.open_timeout_seconds,
                close_timeout=self.config.close_timeout_seconds,
                ping_interval=self.config.ping_interval_seconds,
                max_size=self.config.max_message_bytes,
            )
        except (OSError, asyncio.TimeoutError, InvalidURI, InvalidHandshake, WebSocketException) as e:
            raise ConnectError(f"Failed to connect to {url}: {e}") from e

        self._websocket = websocket
        self._closing = False
        self.stats['connection_count'] += 1
        logger.info(f"Connected to {url}")

    async def send(self, data: Union[str, bytes]) -> None:
        """
        Write one frame.

        Raises:
            SendError: If the connection is not open or closes during the write
        """
        async with self._send_lock:
            if not self.is_open:
                self.stats['send_errors'] += 1
                raise SendError("Connection is not open")
            try:
                await self._websocket.send(data)
            except ConnectionClosed as e:
                self.stats['send_errors'] += 1
                raise SendError(f"Connection closed during send: {e}") from e
            self.stats['frames_sent'] += 1

    async def receive(self) -> Union[str, bytes, CloseSignal]:
        """Wait for the next frame, or a ``CloseSignal`` once the connection closes."""
        websocket = self._websocket
        if websocket is None:
            return CloseSignal()

        try:
            frame = await websocket.recv()
        except ConnectionClosed as e:
            rcvd = e.rcvd
            if rcvd is None:
                return CloseSignal()
            return CloseSignal(code=rcvd.code, reason=rcvd.reason)

        self.stats['frames_received'] += 1
        self.stats['last_frame_time'] = time.time()
        return frame

    async def close(self) -> None:
        """Close the connection. Idempotent."""
        if self._websocket is None or self._closing:
            return

        self._closing = True
        # Waits for an in-flight frame write to finish
        async with self._send_lock:
            websocket = self._websocket

        try:
            await websocket.close()
        except WebSocketException as e:
            logger.debug(f"Ignoring error while closing websocket: {e}")
        finally:
            if self._websocket is websocket:
                self._websocket = None
            logger.info("Connection closed")

    def get_stats(self) -> Dict[str, Any]:
        """Get connection statistics."""
        last_frame_age = None
        if self.stats['last_frame_time']:
            last_frame_age = time.time() - self.stats['last_frame_time']

        return {
            **self.stats,
            'last_frame_age_seconds': last_frame_age,
            'is_connected': self.is_open,
        }
