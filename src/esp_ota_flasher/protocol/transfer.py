"""
ArduinoOTA TCP Transfer

After accepting the invitation the device connects back to the port named
in it. The image then goes out in fixed-size chunks, one in flight:

    1. Write chunk N (1024 bytes, last one short)
    2. Read one acknowledgment: empty or containing "OK" continues
    3. Report progress, pause 10 ms, write chunk N+1

A watchdog bounds the whole session (60 s by default). The listener
accepts a single connection and is closed right after it.
"""

import enum
import errno
import logging
import random
import socket
import time
from typing import Callable, Iterator, Optional, Tuple

from ..settings import DEFAULT_SETTINGS, OTASettings
from ..core.results import UploadResult
from .errors import OTAProtocolError, OTATimeoutError, OTATransportError
from .invitation import notify_log_sink

logger = logging.getLogger(__name__)

LISTEN_HOST = "0.0.0.0"
ACK_BUFSIZE = 64
ACK_OK = "OK"


class TransferStatus(enum.Enum):
    """Lifecycle of one transfer session."""
    IDLE = "idle"
    LISTENING = "listening"
    CONNECTED = "connected"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


def iter_chunks(payload: bytes, chunk_size: int) -> Iterator[Tuple[int, bytes]]:
    """
    Split payload into (offset, chunk) slices.

    Yields ceil(len(payload) / chunk_size) chunks; only the last may be short.
    """
    for offset in range(0, len(payload), chunk_size):
        yield offset, payload[offset:offset + chunk_size]


def is_positive_ack(data: bytes) -> bool:
    """An acknowledgment continues the transfer if empty or containing OK."""
    text = data.decode("ascii", errors="replace").strip()
    return text == "" or ACK_OK in text


def choose_local_port(settings: Optional[OTASettings] = None) -> int:
    """Pick a random port from the settings' local port range."""
    settings = settings or DEFAULT_SETTINGS
    low, high = settings.local_port_range
    return random.randrange(low, high)


class TransferServer:
    """
    One-shot TCP server streaming a firmware image to the device.

    Example:
        with TransferServer(40000) as server:
            server.listen()
            # ... invitation names server.port ...
            result = server.serve(image.data, image.size, on_progress=print)
    """

    def __init__(
        self,
        local_port: int,
        settings: Optional[OTASettings] = None,
        on_log: Optional[Callable[[str], None]] = None,
    ):
        """
        Args:
            local_port: TCP port to listen on (0 lets the OS choose)
            settings: Chunk size, delays and watchdog (default DEFAULT_SETTINGS)
            on_log: Optional sink for human-readable progress lines
        """
        self.local_port = local_port
        self.settings = settings or DEFAULT_SETTINGS
        self.on_log = on_log
        self.chunk_size = self.settings.chunk_size
        self.status = TransferStatus.IDLE
        self.bytes_sent = 0
        self.listener: Optional[socket.socket] = None
        self.conn: Optional[socket.socket] = None

    def __enter__(self) -> "TransferServer":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _log(self, message: str, level: int = logging.INFO) -> None:
        logger.log(level, message)
        notify_log_sink(self.on_log, message)

    @property
    def port(self) -> int:
        """Port announced to the device (the bound port once listening)."""
        return self.local_port

    @property
    def is_listening(self) -> bool:
        return self.listener is not None

    def listen(self) -> None:
        """
        Bind and listen on all interfaces.

        Raises:
            OTATransportError: If the port cannot be bound
        """
        if self.listener is not None:
            return

        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.bind((LISTEN_HOST, self.local_port))
            sock.listen(1)
        except OSError as e:
            sock.close()
            raise OTATransportError(
                f"Cannot listen on TCP port {self.local_port}: {e}"
            ) from e

        self.listener = sock
        self.local_port = sock.getsockname()[1]
        self.status = TransferStatus.LISTENING
        self._log(f"TCP server listening on port {self.port}")

    def close(self) -> None:
        """Close the connection and the listener. Safe to call repeatedly."""
        if self.conn is not None:
            try:
                self.conn.close()
            finally:
                self.conn = None
        if self.listener is not None:
            try:
                self.listener.close()
            finally:
                self.listener = None
                logger.debug(f"Closed listener on port {self.local_port}")

    def _remaining(self, deadline: float) -> float:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise socket.timeout()
        return remaining

    def _accept(self, deadline: float) -> socket.socket:
        self.listener.settimeout(self._remaining(deadline))
        conn, addr = self.listener.accept()
        # Only one session per listener; later connects are refused
        self.listener.close()
        self.listener = None
        self.status = TransferStatus.CONNECTED
        self._log(f"Device connected from {addr[0]}:{addr[1]}")
        return conn

    def _read_ack(self, deadline: float) -> bytes:
        self.conn.settimeout(self._remaining(deadline))
        return self.conn.recv(ACK_BUFSIZE)

    def serve(
        self,
        payload: bytes,
        size: Optional[int] = None,
        on_progress: Optional[Callable[[float], None]] = None,
    ) -> UploadResult:
        """
        Accept the device's connection and stream the payload.

        The watchdog starts here, so time spent in the invitation does not
        count against it.

        Args:
            payload: Image bytes
            size: Bytes to send (defaults to len(payload))
            on_progress: Optional callback(fraction 0.0-1.0) after each ack

        Returns:
            UploadResult with bytes_len == size

        Raises:
            OTATimeoutError: If the watchdog expires
            OTAProtocolError: If the device answers a chunk with anything else
            OTATransportError: If a write fails or the device disconnects early
        """
        size = len(payload) if size is None else size
        if size > len(payload):
            raise ValueError(f"size {size} exceeds payload length {len(payload)}")
        payload = payload[:size]

        self.listen()
        deadline = time.monotonic() + self.settings.transfer_timeout
        self.bytes_sent = 0

        try:
            self.conn = self._accept(deadline)
            self.status = TransferStatus.STREAMING

            for offset, chunk in iter_chunks(payload, self.chunk_size):
                self.conn.settimeout(self._remaining(deadline))
                try:
                    self.conn.sendall(chunk)
                except socket.timeout:
                    raise
                except OSError as e:
                    self._log(f"TCP write error: {e}", logging.ERROR)
                    raise OTATransportError(
                        f"Write failed at offset {offset}: {e}"
                    ) from e

                response = self._read_ack(deadline)
                is_last = offset + len(chunk) >= size

                if not response and not is_last:
                    raise OTATransportError(
                        f"Device closed the connection after {offset + len(chunk)}/{size} bytes"
                    )
                if response and not is_positive_ack(response):
                    text = response.decode("ascii", errors="replace").strip()
                    self._log(f"Unexpected response: {text}", logging.ERROR)
                    raise OTAProtocolError(
                        f"Upload failed at offset {offset}: unexpected acknowledgment {text!r}",
                        raw_message=text,
                    )

                self.bytes_sent += len(chunk)
                fraction = self.bytes_sent / size
                logger.debug(
                    "Chunk offset=%d acknowledged (%d/%d bytes)",
                    offset,
                    self.bytes_sent,
                    size,
                )
                self._log(
                    f"Uploaded: {self.bytes_sent}/{size} bytes ({round(fraction * 100)}%)",
                    logging.DEBUG,
                )
                if on_progress:
                    on_progress(fraction)

                if not is_last:
                    time.sleep(self.settings.chunk_delay)

        except socket.timeout:
            self.status = TransferStatus.FAILED
            self._log("TCP server timeout", logging.ERROR)
            raise OTATimeoutError(
                f"Transfer did not complete within {self.settings.transfer_timeout:g} seconds "
                f"({self.bytes_sent}/{size} bytes sent)"
            )
        except OSError as e:
            self.status = TransferStatus.FAILED
            self._log(f"TCP socket error: {e}", logging.ERROR)
            raise OTATransportError(f"TCP socket error: {e}") from e
        except Exception:
            self.status = TransferStatus.FAILED
            raise
        finally:
            self.close()

        self.status = TransferStatus.COMPLETED
        self._log("File upload completed successfully")
        return UploadResult.success(
            operation="transfer",
            bytes_len=self.bytes_sent,
            message="Upload completed successfully",
        )


def bind_random_port(
    settings: Optional[OTASettings] = None,
    on_log: Optional[Callable[[str], None]] = None,
) -> TransferServer:
    """
    Create a listening TransferServer on a random port from the range.

    Ports already in use are skipped, up to settings.port_bind_attempts.

    Raises:
        OTATransportError: If no port could be bound
    """
    settings = settings or DEFAULT_SETTINGS
    last_error: Optional[OTATransportError] = None

    for _ in range(settings.port_bind_attempts):
        server = TransferServer(choose_local_port(settings), settings=settings, on_log=on_log)
        try:
            server.listen()
            return server
        except OTATransportError as e:
            cause = e.__cause__
            if not isinstance(cause, OSError) or cause.errno not in (errno.EADDRINUSE, errno.EACCES):
                raise
            logger.warning(f"Port {server.local_port} unavailable, trying another")
            last_error = e

    raise OTATransportError(
        f"No free local port after {settings.port_bind_attempts} attempts"
    ) from last_error


def run_transfer(
    local_port: int,
    payload: bytes,
    size: Optional[int] = None,
    on_progress: Optional[Callable[[float], None]] = None,
    settings: Optional[OTASettings] = None,
    on_log: Optional[Callable[[str], None]] = None,
) -> UploadResult:
    """
    Listen on local_port and stream payload to the first connecting device.

    Returns:
        UploadResult on success (raises on failure)
    """
    with TransferServer(local_port, settings=settings, on_log=on_log) as server:
        return server.serve(payload, size, on_progress)
