"""Output sinks: stdout, size-rotated file, and a reconnecting network socket."""

import asyncio
import enum
import logging
import os
import socket
import sys

from logread.stats import DeliveryStats

logger = logging.getLogger(__name__)

RETRY_DELAY = 1.0
CONNECT_TIMEOUT = 5.0
FILE_MODE = 0o600


class SinkOpenError(OSError):
    """The output file could not be opened. Fatal."""


def _write_all(fd: int, data: bytes):
    view = memoryview(data)
    while view:
        written = os.write(fd, view)
        view = view[written:]


class StdoutSink:
    """Unbuffered writes straight to the stdout descriptor."""

    name = "stdout"

    def __init__(self, fd: int | None = None):
        self._fd = sys.stdout.fileno() if fd is None else fd

    @property
    def connected(self) -> bool:
        return True

    def write(self, text: str) -> bool:
        try:
            _write_all(self._fd, text.encode("utf-8"))
        except OSError as e:
            logger.warning("Write to stdout failed: %s", e)
            return False
        return True

    def close(self):
        pass


class FileSink:
    """Appends to a file, rotating it to <path>.old past a size threshold.

    Every write is fsync'ed. The size is checked before each write, so the
    file can exceed the threshold by at most one record.
    """

    name = "file"

    def __init__(
        self,
        path: str,
        rotate_size: int = 0,
        stats: DeliveryStats | None = None,
    ):
        self._path = path
        self._rotate_size = rotate_size
        self._stats = stats
        self._fd: int | None = None

    @property
    def path(self) -> str:
        return self._path

    @property
    def old_path(self) -> str:
        return f"{self._path}.old"

    @property
    def connected(self) -> bool:
        return self._fd is not None

    def open(self):
        """Open (creating if needed) the file for appending.

        Raises:
            SinkOpenError: If the file cannot be opened.
        """
        try:
            self._fd = os.open(
                self._path, os.O_CREAT | os.O_WRONLY | os.O_APPEND, FILE_MODE
            )
        except OSError as e:
            raise SinkOpenError(
                e.errno, f"failed to open {self._path}: {e.strerror}"
            ) from e
        logger.debug("Opened %s (fd=%d)", self._path, self._fd)

    def close(self):
        if self._fd is not None:
            try:
                os.close(self._fd)
            except OSError:
                pass
            self._fd = None

    def _needs_rotation(self) -> bool:
        if not self._rotate_size:
            return False
        try:
            return os.stat(self._path).st_size > self._rotate_size
        except OSError:
            return False

    def rotate(self):
        """Close, rename to <path>.old (replacing it) and reopen empty."""
        self.close()
        try:
            os.replace(self._path, self.old_path)
        except OSError as e:
            logger.warning("Failed to rename %s to %s: %s", self._path, self.old_path, e)
        self.open()
        if self._stats:
            self._stats.record_rotation()
        logger.info("Rotated %s to %s", self._path, self.old_path)

    def write(self, text: str) -> bool:
        if self._fd is None:
            return False
        if self._needs_rotation():
            self.rotate()
        try:
            _write_all(self._fd, text.encode("utf-8"))
            os.fsync(self._fd)
        except OSError as e:
            logger.warning("Write to %s failed: %s", self._path, e)
            return False
        return True


class LinkState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class NetworkSink:
    """Ships rendered records to a TCP or UDP endpoint.

    The link is either fully connected (socket open and watched for
    readability on the event loop) or absent. Any send failure, read error,
    or peer close tears the socket down and arms a single reconnect timer;
    failed attempts re-arm it forever. Writes while disconnected drop the
    record.
    """

    name = "network"

    def __init__(
        self,
        host: str,
        port: int,
        udp: bool = False,
        null_trailer: bool = False,
        keep_trailer: bool = False,
        retry_delay: float = RETRY_DELAY,
        stats: DeliveryStats | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ):
        self._host = host
        self._port = port
        self._udp = udp
        self._trailer = b"\0" if null_trailer else b"\n"
        self._keep_trailer = keep_trailer
        self._retry_delay = retry_delay
        self._stats = stats
        self._loop = loop
        self._sock: socket.socket | None = None
        self._state = LinkState.DISCONNECTED
        self._retry: asyncio.TimerHandle | None = None
        self._closed = False

    @property
    def state(self) -> LinkState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._sock is not None

    @property
    def transport(self) -> str:
        return "udp" if self._udp else "tcp"

    @property
    def retry_pending(self) -> bool:
        return self._retry is not None

    def start(self):
        """Arm the first connect attempt, one retry delay from now."""
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        self._schedule_reconnect()

    def close(self):
        """Cancel any pending reconnect and drop the link for good."""
        self._closed = True
        if self._retry is not None:
            self._retry.cancel()
            self._retry = None
        self._teardown()

    def frame(self, text: str) -> bytes:
        """Encode text for the wire.

        TCP records always get the trailer, except that with keep_trailer
        (template output) text already ending in it is sent unchanged.
        UDP records go out as they are, one datagram each.
        """
        data = text.encode("utf-8")
        if self._udp:
            return data
        if not (self._keep_trailer and data.endswith(self._trailer)):
            data += self._trailer
        return data

    def write(self, text: str) -> bool:
        if self._sock is None:
            return False
        data = self.frame(text)
        try:
            if self._udp:
                self._sock.send(data)
            else:
                self._sock.sendall(data)
        except OSError as e:
            logger.warning(
                "Failed to send log data to %s:%d via %s: %s",
                self._host, self._port, self.transport, e,
            )
            self._drop_link()
            return False
        return True

    def _schedule_reconnect(self):
        if self._closed or self._retry is not None:
            return
        self._retry = self._loop.call_later(self._retry_delay, self._reconnect)

    def _reconnect(self):
        self._retry = None
        if self._closed or self._sock is not None:
            return

        self._state = LinkState.CONNECTING
        try:
            sock = self._open_socket()
        except (OSError, UnicodeError) as e:
            self._state = LinkState.DISCONNECTED
            logger.warning(
                "Failed to connect to %s:%d via %s: %s",
                self._host, self._port, self.transport, e,
            )
            self._schedule_reconnect()
            return

        self._sock = sock
        self._loop.add_reader(sock.fileno(), self._on_readable)
        self._state = LinkState.CONNECTED
        if self._stats:
            self._stats.record_connect()
        logger.info("Connected to %s:%d via %s", self._host, self._port, self.transport)

    def _open_socket(self) -> socket.socket:
        if not self._udp:
            sock = socket.create_connection(
                (self._host, self._port), timeout=CONNECT_TIMEOUT
            )
            # Sends block on the loop thread
            sock.settimeout(None)
            return sock

        last_error: OSError | None = None
        for family, sock_type, proto, _, addr in socket.getaddrinfo(
            self._host, self._port, type=socket.SOCK_DGRAM
        ):
            sock = socket.socket(family, sock_type, proto)
            try:
                sock.connect(addr)
            except OSError as e:
                sock.close()
                last_error = e
                continue
            return sock
        raise last_error or OSError(f"no address found for {self._host}")

    def _on_readable(self):
        """Peer data is discarded; EOF or a socket error drops the link."""
        if self._sock is None:
            return
        try:
            data = self._sock.recv(4096, socket.MSG_DONTWAIT)
        except (BlockingIOError, InterruptedError):
            return
        except OSError as e:
            logger.warning(
                "Connection to %s:%d via %s lost: %s",
                self._host, self._port, self.transport, e,
            )
            self._drop_link()
            return

        # An empty datagram is not an end of stream
        if not data and not self._udp:
            logger.warning("Connection to %s:%d closed by peer", self._host, self._port)
            self._drop_link()

    def _drop_link(self):
        self._teardown()
        self._schedule_reconnect()

    def _teardown(self):
        if self._sock is not None:
            try:
                self._loop.remove_reader(self._sock.fileno())
            except (OSError, ValueError):
                pass
            try:
                self._sock.close()
            except OSError:
                pass
            self._sock = None
        self._state = LinkState.DISCONNECTED


def build_sink(config, stats: DeliveryStats | None = None):
    """Create and open the sink selected by config.

    Raises:
        SinkOpenError: If the configured log file cannot be opened.
    """
    if config.sink_type == "network":
        sink = NetworkSink(
            config.remote_host,
            config.remote_port,
            udp=config.udp,
            null_trailer=config.null_trailer,
            keep_trailer=config.template is not None,
            retry_delay=config.retry_delay,
            stats=stats,
        )
        sink.start()
        return sink
    if config.sink_type == "file":
        sink = FileSink(config.log_file, rotate_size=config.log_size, stats=stats)
        sink.open()
        return sink
    return StdoutSink()
