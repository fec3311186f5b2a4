"""Exponential backoff with jitter for reconnect attempts."""

import asyncio
import logging
import random
from typing import Optional

from ..config.settings import ReconnectConfig

logger = logging.getLogger(__name__)


class ExponentialBackoff:
    """
    Delay schedule for consecutive reconnect attempts.

    The n-th delay is ``initial * multiplier ** (n - 1)`` with optional
    ±25% jitter, capped at ``max_backoff_seconds``. ``reset`` starts the
    schedule over once a connection reaches the streaming phase.
    """

    def __init__(self, config: ReconnectConfig, rng: Optional[random.Random] = None):
        self.config = config
        self._rng = rng or random.Random()
        self.attempts = 0

    @property
    def exhausted(self) -> bool:
        max_attempts = self.config.max_attempts
        return max_attempts is not None and self.attempts >= max_attempts

    def next_delay(self) -> float:
        """Record one more attempt and return the delay to wait before it."""
        self.attempts += 1
        delay = self.config.initial_backoff_seconds * (
            self.config.backoff_multiplier ** (self.attempts - 1)
        )

        if self.config.jitter:
            jitter_range = delay * 0.25
            delay = delay + self._rng.uniform(-jitter_range, jitter_range)

        return max(0.0, min(delay, self.config.max_backoff_seconds))

    def reset(self) -> None:
        self.attempts = 0


async def sleep_unless(stop, delay: float) -> bool:
    """
    Sleep for ``delay`` seconds, waking early once ``stop`` is set.

    ``stop`` is anything with ``is_set()`` and an awaitable ``wait()``, such
    as an ``asyncio.Event``. Returns True if the sleep was interrupted.
    """
    if stop.is_set():
        return True
    if delay <= 0:
        return False
    try:
        await asyncio.wait_for(stop.wait(), timeout=delay)
        return True
    except asyncio.TimeoutError:
        return False
