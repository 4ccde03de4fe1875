"""Delivery loop: decoded records -> filter -> formatter -> sink, in order."""

import asyncio
import logging

from logread.filter import MessageFilter
from logread.formatter import RenderError
from logread.records import FrameError, RecordDecoder
from logread.sink import SinkOpenError
from logread.stats import DeliveryStats

logger = logging.getLogger(__name__)


class LogDelivery:
    """Owns the per-process delivery context and drives one record at a time.

    Per-record problems (malformed fields, filtered messages, render
    overflow, failed writes) are absorbed here. Only a sink that cannot be
    reopened stops delivery with an error.
    """

    def __init__(
        self,
        record_filter: MessageFilter,
        render,
        sink,
        stats: DeliveryStats | None = None,
        follow: bool = False,
    ):
        self._filter = record_filter
        self._render = render
        self._sink = sink
        self._stats = stats or DeliveryStats()
        self._follow = follow
        self._decoder = RecordDecoder()
        self._finished = asyncio.Event()
        self._error: BaseException | None = None

    @property
    def stats(self) -> DeliveryStats:
        return self._stats

    @property
    def finished(self) -> bool:
        return self._finished.is_set()

    @property
    def error(self) -> BaseException | None:
        return self._error

    def feed(self, chunk: bytes):
        """Decode and deliver every complete record now buffered."""
        if self.finished:
            return
        self._decoder.feed(chunk)
        try:
            for event in self._decoder.events():
                self._stats.record_received()
                self._deliver(event)
        except FrameError as e:
            logger.error("Corrupt record stream: %s", e)
        except SinkOpenError as e:
            self.stop(e)

    def _deliver(self, event):
        if not self._sink.connected:
            self._stats.record_dropped()
            return
        if event is None:
            logger.debug("Dropping record with missing or malformed fields")
            self._stats.record_dropped()
            return
        if not self._filter.accepts(event.message):
            self._stats.record_filtered()
            return

        try:
            text = self._render(event)
        except RenderError as e:
            logger.error("Dropping record %d: %s", event.id, e)
            self._stats.record_dropped()
            return

        if self._sink.write(text):
            self._stats.record_delivered()
        else:
            self._stats.record_failed()

    def end_of_stream(self):
        """The record source has no more data."""
        if self._decoder.pending:
            logger.debug(
                "Discarding %d bytes of incomplete record", self._decoder.pending
            )
        if self._follow:
            logger.warning("Log source closed the stream while following")
        else:
            logger.info("End of log stream")
        self.stop()

    def stop(self, error: BaseException | None = None):
        """Finish delivery, optionally with a fatal error."""
        if self.finished:
            return
        self._error = error
        self._finished.set()

    async def wait(self):
        """Block until delivery finishes; re-raise a fatal error."""
        await self._finished.wait()
        if self._error is not None:
            raise self._error
