"""Bridges an external stop request into the session's cancellation signal."""

import asyncio
import logging
import signal
from typing import Iterable, Optional

logger = logging.getLogger(__name__)


class ShutdownCoordinator:
    """
    Single-shot cancellation signal.

    The first ``trigger`` wins; later calls are no-ops. The session, the
    receive loop and the keepalive scheduler all observe ``wait()``. Teardown
    itself is done by the session on its control task.
    """

    def __init__(self):
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    def trigger(self, reason: str = "shutdown requested") -> bool:
        """Deliver the cancellation signal. Returns False if already delivered."""
        if self._event.is_set():
            logger.debug(f"Ignoring repeated shutdown signal: {reason}")
            return False

        self.reason = reason
        self._event.set()
        logger.info(f"Shutdown signal received: {reason}")
        return True

    def is_set(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        await self._event.wait()

    def install_signal_handlers(
        self,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        signals: Iterable[signal.Signals] = (signal.SIGINT, signal.SIGTERM),
    ) -> None:
        """Route process signals to ``trigger``."""
        loop = loop or asyncio.get_running_loop()
        for sig in signals:
            try:
                loop.add_signal_handler(sig, self.trigger, f"received {sig.name}")
            except (NotImplementedError, RuntimeError):
                # Event loops without add_signal_handler (e.g. Windows)
                signal.signal(
                    sig,
                    lambda signum, frame: loop.call_soon_threadsafe(
                        self.trigger, f"received signal {signum}"
                    ),
                )
