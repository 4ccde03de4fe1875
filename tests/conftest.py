"""Shared pytest fixtures and helpers for the logread test suite."""

from __future__ import annotations

import asyncio

import pytest

from logread.records import LogEvent, Source


def make_event(
    message: str = "link up",
    id: int = 1,
    priority: int = 134,
    source: int = Source.SYSLOG,
    timestamp_ms: int = 1700000000000,
) -> LogEvent:
    return LogEvent(
        message=message,
        id=id,
        priority=priority,
        source=source,
        timestamp_ms=timestamp_ms,
    )


async def wait_until(predicate, timeout: float = 3.0, interval: float = 0.01) -> bool:
    """Poll predicate on the running loop until it is true or timeout expires."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if predicate():
            return True
        await asyncio.sleep(interval)
    return predicate()


class FakeSink:
    """Collects written text; connectivity and write results are settable."""

    name = "fake"

    def __init__(self, connected: bool = True, accept: bool = True):
        self.connected = connected
        self.accept = accept
        self.written: list[str] = []
        self.closed = False

    def write(self, text: str) -> bool:
        if not self.accept:
            return False
        self.written.append(text)
        return True

    def close(self):
        self.closed = True


@pytest.fixture()
def link_up_event() -> LogEvent:
    """The syslog 'link up' record used across formatter tests."""
    return make_event()


@pytest.fixture()
def fake_sink() -> FakeSink:
    return FakeSink()
