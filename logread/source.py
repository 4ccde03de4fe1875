"""Client for the local log source: connect, request the stream, pump bytes."""

import asyncio
import logging

from logread import blobmsg
from logread.blobmsg import BlobType

logger = logging.getLogger(__name__)

CHUNK_SIZE = 65536
LOOKUP_RETRIES = 5
LOOKUP_DELAY = 1.0


class SourceUnavailableError(ConnectionError):
    """The log source could not be reached after all connect attempts. Fatal."""


def build_request(lines: int = 0, follow: bool = False) -> bytes:
    """Encode the read request: stream, optionally limited to the last N lines."""
    items = [("stream", BlobType.INT8, 1)]
    if lines:
        items.append(("lines", BlobType.INT32, lines))
    elif follow:
        items.append(("lines", BlobType.INT32, 0))
    return blobmsg.encode_frame(items)


class RecordSource:
    """Streams framed log records from a Unix socket into a LogDelivery."""

    def __init__(
        self,
        socket_path: str,
        lines: int = 0,
        follow: bool = False,
        lookup_retries: int = LOOKUP_RETRIES,
        lookup_delay: float = LOOKUP_DELAY,
    ):
        self._socket_path = socket_path
        self._lines = lines
        self._follow = follow
        self._lookup_retries = lookup_retries
        self._lookup_delay = lookup_delay

    async def connect(self):
        """Open the source socket, retrying a bounded number of times.

        Returns:
            (reader, writer) stream pair.

        Raises:
            SourceUnavailableError: If every attempt failed.
        """
        for attempt in range(1, self._lookup_retries + 1):
            try:
                reader, writer = await asyncio.open_unix_connection(self._socket_path)
            except OSError as e:
                logger.warning(
                    "Failed to find log source at %s: %s (attempt %d/%d)",
                    self._socket_path, e, attempt, self._lookup_retries,
                )
                if attempt < self._lookup_retries:
                    await asyncio.sleep(self._lookup_delay)
                continue
            logger.info("Connected to log source at %s", self._socket_path)
            return reader, writer

        raise SourceUnavailableError(
            f"log source at {self._socket_path} unavailable "
            f"after {self._lookup_retries} attempts"
        )

    async def run(self, delivery):
        """Request the stream and feed chunks to delivery until it ends."""
        reader, writer = await self.connect()
        try:
            writer.write(build_request(self._lines, self._follow))
            try:
                await writer.drain()
            except OSError as e:
                logger.warning("Failed to send read request: %s", e)
                delivery.end_of_stream()
                return

            while not delivery.finished:
                try:
                    chunk = await reader.read(CHUNK_SIZE)
                except OSError as e:
                    logger.warning("Read from log source failed: %s", e)
                    chunk = b""
                if not chunk:
                    delivery.end_of_stream()
                    break
                delivery.feed(chunk)
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError:
                pass
