"""Tests for the local log source client."""

import asyncio

import pytest

from logread import blobmsg
from logread.filter import MessageFilter
from logread.pipeline import LogDelivery
from logread.records import encode_record
from logread.source import RecordSource, SourceUnavailableError, build_request

from conftest import FakeSink, make_event


async def _read_request(reader: asyncio.StreamReader) -> dict:
    header = await reader.readexactly(blobmsg.HEADER_SIZE)
    raw_len, _, _ = blobmsg.decode_header(header)
    body = await reader.readexactly(raw_len - blobmsg.HEADER_SIZE)
    return blobmsg.decode_table(body)


class _FakeLogSource:
    """Unix socket server that answers a read request with canned records."""

    def __init__(self, path: str, payload: bytes, chunk: int = 5, hold_open: bool = False):
        self.path = path
        self.payload = payload
        self.chunk = chunk
        self.hold_open = hold_open
        self.requests: list[dict] = []
        self.release = asyncio.Event()
        self.server: asyncio.AbstractServer | None = None

    async def start(self):
        self.server = await asyncio.start_unix_server(self._handle, path=self.path)

    async def _handle(self, reader, writer):
        try:
            self.requests.append(await _read_request(reader))
        except asyncio.IncompleteReadError:
            writer.close()
            return
        for start in range(0, len(self.payload), self.chunk):
            writer.write(self.payload[start:start + self.chunk])
            await writer.drain()
        if self.hold_open:
            # Keep streaming after release, as a following source would
            await self.release.wait()
            writer.write(self.payload)
            await writer.drain()
        writer.close()

    async def stop(self):
        self.server.close()
        await self.server.wait_closed()


class TestBuildRequest:
    def test_stream_only(self):
        assert blobmsg.decode_table(build_request()[4:]) == {"stream": 1}

    def test_last_lines(self):
        assert blobmsg.decode_table(build_request(lines=5)[4:]) == {"stream": 1, "lines": 5}

    def test_follow_sends_zero_lines(self):
        assert blobmsg.decode_table(build_request(follow=True)[4:]) == {
            "stream": 1,
            "lines": 0,
        }

    def test_lines_take_precedence_when_following(self):
        request = blobmsg.decode_table(build_request(lines=3, follow=True)[4:])
        assert request["lines"] == 3


class TestRecordSource:
    @pytest.mark.asyncio
    async def test_streams_records_until_eof(self, tmp_path):
        events = [make_event(message=f"line {i}", id=i) for i in range(10)]
        path = str(tmp_path / "logd.sock")
        server = _FakeLogSource(path, b"".join(encode_record(e) for e in events))
        await server.start()
        sink = FakeSink()
        delivery = LogDelivery(MessageFilter(), lambda e: e.message, sink)
        try:
            await RecordSource(path, lines=5).run(delivery)
            await asyncio.wait_for(delivery.wait(), 3.0)
        finally:
            await server.stop()

        assert server.requests == [{"stream": 1, "lines": 5}]
        assert sink.written == [f"line {i}" for i in range(10)]
        assert delivery.finished

    @pytest.mark.asyncio
    async def test_stops_reading_once_delivery_finished(self, tmp_path):
        path = str(tmp_path / "logd.sock")
        server = _FakeLogSource(path, encode_record(make_event()), hold_open=True)
        await server.start()
        sink = FakeSink()
        delivery = LogDelivery(MessageFilter(), lambda e: e.message, sink)
        try:
            task = asyncio.create_task(RecordSource(path, follow=True).run(delivery))
            await asyncio.sleep(0.1)
            assert not task.done()
            assert sink.written == ["link up"]

            delivery.stop()
            server.release.set()
            await asyncio.wait_for(task, 3.0)
        finally:
            await server.stop()
        assert server.requests == [{"stream": 1, "lines": 0}]
        assert sink.written == ["link up"]

    @pytest.mark.asyncio
    async def test_unavailable_after_bounded_retries(self, tmp_path, caplog):
        source = RecordSource(
            str(tmp_path / "absent.sock"), lookup_retries=2, lookup_delay=0.01
        )
        with pytest.raises(SourceUnavailableError):
            await source.connect()
        assert "attempt 2/2" in caplog.text

    @pytest.mark.asyncio
    async def test_source_appearing_during_retries(self, tmp_path):
        path = str(tmp_path / "late.sock")
        server = _FakeLogSource(path, b"")
        source = RecordSource(path, lookup_retries=20, lookup_delay=0.02)

        async def start_late():
            await asyncio.sleep(0.05)
            await server.start()

        starter = asyncio.create_task(start_late())
        try:
            reader, writer = await source.connect()
            writer.close()
        finally:
            await starter
            await server.stop()
