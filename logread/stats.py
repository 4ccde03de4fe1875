"""Delivery counters and periodic reporting on the event loop."""

import asyncio
import logging

logger = logging.getLogger(__name__)

COUNTERS = (
    "received",
    "delivered",
    "filtered",
    "dropped",
    "failed",
    "rotations",
    "connects",
)


class DeliveryStats:
    """Counters for the delivery loop.

    Only touched from the event loop thread, so no locking.
    """

    def __init__(self):
        self._counts = dict.fromkeys(COUNTERS, 0)
        self._totals = dict.fromkeys(COUNTERS, 0)

    def record_received(self):
        self._bump("received")

    def record_delivered(self):
        self._bump("delivered")

    def record_filtered(self):
        self._bump("filtered")

    def record_dropped(self):
        """Record a message lost before reaching the sink."""
        self._bump("dropped")

    def record_failed(self):
        """Record a sink write that failed."""
        self._bump("failed")

    def record_rotation(self):
        self._bump("rotations")

    def record_connect(self):
        self._bump("connects")

    def _bump(self, counter: str):
        self._counts[counter] += 1
        self._totals[counter] += 1

    @property
    def totals(self) -> dict:
        """Counts since startup."""
        return dict(self._totals)

    def snapshot_and_reset(self) -> dict:
        """Read the counts since the last snapshot and reset them to zero."""
        snapshot = dict(self._counts)
        self._counts = dict.fromkeys(COUNTERS, 0)
        return snapshot


def format_stats(counts: dict) -> str:
    return " ".join(f"{name}={counts[name]}" for name in COUNTERS)


class StatsReporter:
    """Background task that periodically logs a stats summary."""

    def __init__(self, stats: DeliveryStats, interval: float):
        self._stats = stats
        self._interval = interval
        self._task: asyncio.Task | None = None

    def start(self):
        """Start the reporter task on the running loop."""
        self._task = asyncio.get_running_loop().create_task(self._report_loop())

    async def stop(self):
        """Cancel the reporter task and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _report_loop(self):
        while True:
            await asyncio.sleep(self._interval)
            logger.info("[stats] %s", format_stats(self._stats.snapshot_and_reset()))
