"""Request/response correlation by request id."""

import asyncio
import logging
from typing import Dict, Iterable, Optional

from .errors import RequestTimeout
from .protocol.messages import Response

logger = logging.getLogger(__name__)


class Correlator:
    """
    Matches responses to outstanding requests.

    One correlator lives for exactly one connection, so ids are never reused
    within a connection. Ids in ``reserved_ids`` (the fixed heartbeat id) are
    never handed out by ``next_id`` but may still be registered explicitly.

    A waiter is registered before its request is sent so that a response
    arriving before ``wait`` is called is not lost.
    """

    def __init__(self, reserved_ids: Iterable[int] = ()):
        self._reserved = frozenset(reserved_ids)
        self._last_id = 0
        self._waiters: Dict[int, asyncio.Future] = {}
        self._closed: Optional[BaseException] = None
        self.unmatched_responses = 0

    def next_id(self) -> int:
        """Return the next unused request id."""
        self._last_id += 1
        while self._last_id in self._reserved:
            self._last_id += 1
        return self._last_id

    @property
    def pending(self) -> int:
        return len(self._waiters)

    def register(self, request_id: int) -> asyncio.Future:
        """
        Register interest in the response to ``request_id``.

        Raises:
            ValueError: If a waiter for the id is still outstanding
            SessionClosed: If the connection has already closed
        """
        if self._closed is not None:
            raise self._closed

        existing = self._waiters.get(request_id)
        if existing is not None and not existing.done():
            raise ValueError(f"Request id={request_id} already has an outstanding waiter")

        future = asyncio.get_running_loop().create_future()
        self._waiters[request_id] = future
        return future

    async def wait(
        self,
        request_id: int,
        timeout: float,
        future: Optional[asyncio.Future] = None,
    ) -> Response:
        """
        Wait for the response to a registered request.

        Pass the future returned by ``register`` when there is one; it still
        holds the response if the connection closed right after delivering it.

        Raises:
            RequestTimeout: If no matching response arrives within ``timeout``
            SessionClosed: If the connection closes first
        """
        if future is None:
            future = self._waiters.get(request_id)
        if future is None:
            future = self.register(request_id)

        try:
            return await asyncio.wait_for(future, timeout)
        except asyncio.TimeoutError:
            raise RequestTimeout(request_id, timeout) from None
        finally:
            if self._waiters.get(request_id) is future:
                del self._waiters[request_id]

    def resolve(self, response: Response) -> bool:
        """Hand a response to its waiter. Unmatched responses are dropped."""
        future = self._waiters.get(response.id)
        if future is None or future.done():
            self.unmatched_responses += 1
            logger.warning(f"Dropping response with no outstanding request: id={response.id}")
            return False

        future.set_result(response)
        return True

    def fail_all(self, exc: BaseException) -> int:
        """
        Fail every outstanding waiter with ``exc`` and refuse new ones.

        Waiters that already hold a response keep it until collected by ``wait``.
        """
        self._closed = exc
        failed = 0
        for request_id, future in list(self._waiters.items()):
            if future.done():
                continue
            future.set_exception(exc)
            del self._waiters[request_id]
            failed += 1

        if failed:
            logger.debug(f"Failed {failed} outstanding request(s): {exc}")
        return failed

    def clear_waiter(self, request_id: int) -> None:
        """Drop a registered waiter that will not be awaited."""
        future: Optional[asyncio.Future] = self._waiters.pop(request_id, None)
        if future is not None and not future.done():
            future.cancel()
