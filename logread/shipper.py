"""Wires config, source, delivery loop and sink together for one run."""

import asyncio
import logging
import os
import signal

from logread.config import Config
from logread.filter import MessageFilter
from logread.formatter import build_formatter
from logread.pipeline import LogDelivery
from logread.sink import build_sink
from logread.source import RecordSource, SourceUnavailableError
from logread.stats import DeliveryStats, StatsReporter, format_stats

logger = logging.getLogger(__name__)


def write_pid_file(path: str):
    """Write our PID; failure is logged, never fatal."""
    try:
        with open(path, "w", encoding="utf-8") as f:
            f.write(str(os.getpid()))
    except OSError as e:
        logger.warning("Failed to write PID file %s: %s", path, e)


class LogShipper:
    """Reads framed records from the log source and ships them to one sink."""

    def __init__(self, config: Config, source: RecordSource | None = None):
        self._config = config
        self._source = source or RecordSource(
            config.socket_path, lines=config.lines, follow=config.follow
        )
        self._stats = DeliveryStats()
        self._delivery: LogDelivery | None = None

    @property
    def stats(self) -> DeliveryStats:
        return self._stats

    def stop(self):
        """Request shutdown (signal handler)."""
        if self._delivery is not None:
            logger.info("Shutdown requested")
            self._delivery.stop()

    async def run(self):
        """Ship records until the stream ends or stop() is called.

        Raises:
            SinkOpenError: If the log file cannot be opened.
            SourceUnavailableError: If the log source cannot be reached.
        """
        config = self._config
        if config.follow and config.pid_file:
            write_pid_file(config.pid_file)

        sink = build_sink(config, self._stats)
        self._delivery = LogDelivery(
            MessageFilter(config.filter_pattern),
            build_formatter(config),
            sink,
            stats=self._stats,
            follow=config.follow,
        )

        reporter = None
        if config.stats_interval > 0:
            reporter = StatsReporter(self._stats, config.stats_interval)
            reporter.start()

        pump = asyncio.get_running_loop().create_task(self._pump())
        try:
            await self._delivery.wait()
        finally:
            pump.cancel()
            try:
                await pump
            except asyncio.CancelledError:
                pass
            sink.close()
            if reporter:
                await reporter.stop()
            logger.info("Shipper finished: %s", format_stats(self._stats.totals))

    async def _pump(self):
        try:
            await self._source.run(self._delivery)
        except SourceUnavailableError as e:
            self._delivery.stop(e)


def install_signal_handlers(shipper: LogShipper):
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shipper.stop)
