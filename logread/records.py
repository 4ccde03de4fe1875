"""Log records: the LogEvent model and the length-framed stream decoder."""

import logging
from dataclasses import dataclass
from enum import IntEnum

from logread import blobmsg
from logread.blobmsg import BlobType

logger = logging.getLogger(__name__)


class Source(IntEnum):
    KERNEL = 0
    SYSLOG = 1
    INTERNAL = 2


# Field name on the wire -> required type
LOG_POLICY = {
    "msg": BlobType.STRING,
    "id": BlobType.INT32,
    "priority": BlobType.INT32,
    "source": BlobType.INT32,
    "time": BlobType.INT64,
}


class FrameError(ValueError):
    """The record stream is corrupt and cannot be resynchronised."""


@dataclass(frozen=True)
class LogEvent:
    message: str
    id: int
    priority: int
    source: int
    timestamp_ms: int

    @property
    def seconds(self) -> int:
        return self.timestamp_ms // 1000

    @property
    def millis(self) -> int:
        return self.timestamp_ms % 1000


def parse_event(payload: bytes) -> LogEvent | None:
    """Build a LogEvent from a record payload.

    Returns None if any of the five fields is missing, mistyped, or the
    payload is malformed.
    """
    try:
        fields = blobmsg.parse_table(payload, LOG_POLICY)
    except ValueError as e:
        logger.debug("Malformed record payload: %s", e)
        return None

    if len(fields) != len(LOG_POLICY):
        return None

    return LogEvent(
        message=fields["msg"],
        id=fields["id"],
        priority=fields["priority"],
        source=fields["source"],
        timestamp_ms=fields["time"],
    )


def encode_record(event: LogEvent) -> bytes:
    """Encode a LogEvent as one stream frame."""
    return blobmsg.encode_frame([
        ("msg", BlobType.STRING, event.message),
        ("id", BlobType.INT32, event.id),
        ("priority", BlobType.INT32, event.priority),
        ("source", BlobType.INT32, event.source),
        ("time", BlobType.INT64, event.timestamp_ms),
    ])


class RecordDecoder:
    """Accumulates stream bytes and splits off complete record frames.

    Each frame is one attribute whose header declares its total length.
    A short buffer is not an error: decoding just stops until more bytes
    arrive.
    """

    def __init__(self):
        self._buffer = bytearray()

    @property
    def pending(self) -> int:
        """Number of buffered bytes not yet consumed."""
        return len(self._buffer)

    def feed(self, chunk: bytes):
        self._buffer += chunk

    def frames(self):
        """Yield the payload of each complete frame, consuming it.

        Raises:
            FrameError: If a header declares a length shorter than itself.
                The buffer is discarded, since the next frame boundary can
                no longer be found.
        """
        while len(self._buffer) >= blobmsg.HEADER_SIZE:
            raw_len, _, _ = blobmsg.decode_header(
                bytes(self._buffer[:blobmsg.HEADER_SIZE])
            )
            if raw_len < blobmsg.HEADER_SIZE:
                discarded = len(self._buffer)
                self._buffer.clear()
                raise FrameError(
                    f"Frame declares length {raw_len}; discarded {discarded} bytes"
                )
            if len(self._buffer) < raw_len:
                return

            payload = bytes(self._buffer[blobmsg.HEADER_SIZE:raw_len])
            del self._buffer[:raw_len]
            yield payload

    def events(self):
        """Yield a LogEvent, or None for a malformed record, per complete frame."""
        for payload in self.frames():
            yield parse_event(payload)
