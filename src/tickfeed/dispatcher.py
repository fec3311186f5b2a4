"""Turns channel pushes into tick records for a presenter."""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Protocol

from .protocol.messages import RawFrame, TickRecord

logger = logging.getLogger(__name__)


class Presenter(Protocol):
    """Consumer of decoded tick records."""

    def present(self, record: TickRecord) -> None:
        ...


class LogPresenter:
    """Presenter that logs every record."""

    def __init__(self, name: str = "tickfeed.ticks"):
        self._logger = logging.getLogger(name)

    def present(self, record: TickRecord) -> None:
        self._logger.info(
            f"tick ts={record.timestamp} price={record.price} volume={record.volume}"
        )


class QueuedPresenter:
    """
    Decouples a slow presenter from the receive loop with a bounded queue.

    ``present`` never blocks. When the queue is full the oldest queued record
    is dropped so the presenter always catches up to recent prices.
    """

    def __init__(self, downstream: Presenter, maxsize: int = 1000):
        self.downstream = downstream
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._task: Optional[asyncio.Task] = None
        self.dropped = 0

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._consume(), name="presenter")

    async def stop(self) -> None:
        """Stop the consumer and hand any queued records to the presenter."""
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        while not self._queue.empty():
            self._present_safely(self._queue.get_nowait())

    def present(self, record: TickRecord) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
            logger.warning(f"Presenter queue full, dropped oldest record ({self.dropped} dropped)")
        self._queue.put_nowait(record)

    async def _consume(self) -> None:
        while True:
            record = await self._queue.get()
            self._present_safely(record)

    def _present_safely(self, record: TickRecord) -> None:
        try:
            self.downstream.present(record)
        except Exception as e:
            logger.error(f"Presenter failed for {record}: {e}", exc_info=True)


class StreamDispatcher:
    """
    Forwards the tick batch of each channel push, in order.

    Expected shape::

        {"result": {"channel": "...", "data": {"data": [[ts, _, price, volume], ...]}}}

    Frames of any other shape are ignored. Rows that cannot be turned into a
    ``TickRecord`` are skipped one by one; the rest of the batch still goes
    through.
    """

    def __init__(self, presenter: Presenter, channel: Optional[str] = None):
        self.presenter = presenter
        self.channel = channel

        self.stats = {
            'frames_dispatched': 0,
            'frames_ignored': 0,
            'records_forwarded': 0,
            'rows_skipped': 0,
            'presenter_errors': 0,
            'last_record_time': None,
        }

    @staticmethod
    def extract_rows(payload: Dict[str, Any]) -> Optional[List[Any]]:
        """Return the row batch of a channel push, or None if the shape differs."""
        result = payload.get("result")
        if not isinstance(result, dict) or not isinstance(result.get("channel"), str):
            return None
        data = result.get("data")
        if not isinstance(data, dict):
            return None
        rows = data.get("data")
        if not isinstance(rows, list):
            return None
        return rows

    def on_frame(self, frame: RawFrame) -> int:
        """Dispatch one frame and return the number of records forwarded."""
        rows = self.extract_rows(frame.payload)
        if rows is None:
            self.stats['frames_ignored'] += 1
            logger.debug(f"Ignoring frame without a tick batch: {str(frame.payload)[:200]}")
            return 0

        channel = frame.payload["result"]["channel"]
        if self.channel and channel != self.channel:
            logger.debug(f"Tick batch for unexpected channel {channel!r}")

        self.stats['frames_dispatched'] += 1
        forwarded = 0
        for row in rows:
            try:
                record = TickRecord.from_row(row)
            except ValueError as e:
                self.stats['rows_skipped'] += 1
                logger.warning(f"Skipping malformed tick row: {e}")
                continue

            try:
                self.presenter.present(record)
            except Exception as e:
                self.stats['presenter_errors'] += 1
                logger.error(f"Presenter failed for {record}: {e}", exc_info=True)
                continue

            forwarded += 1

        if forwarded:
            self.stats['records_forwarded'] += forwarded
            self.stats['last_record_time'] = time.time()
        return forwarded

    def get_stats(self) -> Dict[str, Any]:
        last_record_age = None
        if self.stats['last_record_time']:
            last_record_age = time.time() - self.stats['last_record_time']
        return {**self.stats, 'last_record_age_seconds': last_record_age}
