"""
ArduinoOTA UDP Invitation

Announces an incoming transfer to the device and classifies its reply.

Protocol:
    1. Send "<command> <local_port> <size> <md5>\\n" as one UDP datagram
    2. Wait up to 1 s for a reply, re-send on silence (10 attempts total)
    3. Reply "OK"           -> transfer may start
       Reply "AUTH <nonce>" -> password challenge
       Anything else        -> rejected

Authentication (when the device answers AUTH):
    cnonce   = md5("<name><size><md5><target>")
    response = md5("<md5(password)>:<nonce>:<cnonce>")
    Send "200 <cnonce> <response>\\n", expect "OK"
"""

import enum
import hashlib
import logging
import socket
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Iterator, Optional, Union

from ..settings import DEFAULT_SETTINGS, OTASettings
from .errors import (
    OTAAuthenticationError,
    OTACancelledError,
    OTAProtocolError,
    OTATimeoutError,
    OTATransportError,
)

logger = logging.getLogger(__name__)

REPLY_BUFSIZE = 256
REPLY_OK = "OK"
REPLY_AUTH_PREFIX = "AUTH "


class OTACommand(enum.IntEnum):
    """Command codes understood by the device's OTA listener."""
    FLASH = 0
    SPIFFS = 100
    AUTH = 200


# Commands a caller may put in an invitation; AUTH is only the reply to a challenge
UPLOAD_COMMANDS = frozenset({OTACommand.FLASH, OTACommand.SPIFFS})


def notify_log_sink(on_log: Optional[Callable[[str], None]], message: str) -> None:
    """Pass a line to an optional caller sink. A failing sink is logged, never raised."""
    if on_log is None:
        return
    try:
        on_log(message)
    except Exception:
        logger.exception("Log sink raised; continuing")


@dataclass(frozen=True)
class InvitationRequest:
    """One invitation datagram. Built fresh for every call."""
    command: OTACommand
    local_port: int
    size: int
    md5: str

    def to_bytes(self) -> bytes:
        return f"{int(self.command)} {self.local_port} {self.size} {self.md5}\n".encode("ascii")


@dataclass(frozen=True)
class Accepted:
    """Device is ready to connect back for the transfer."""


@dataclass(frozen=True)
class AuthRequired:
    """Device wants a password challenge-response first."""
    nonce: str


InvitationOutcome = Union[Accepted, AuthRequired]


def parse_reply(data: bytes) -> InvitationOutcome:
    """
    Classify a reply datagram.

    Raises:
        OTAProtocolError: If the reply is neither "OK" nor "AUTH <nonce>"
    """
    text = data.decode("ascii", errors="replace").strip()
    if text == REPLY_OK:
        return Accepted()
    if text.startswith(REPLY_AUTH_PREFIX):
        tokens = text.split()
        if len(tokens) >= 2:
            return AuthRequired(nonce=tokens[1])
    raise OTAProtocolError(f"Bad invitation response: {text!r}", raw_message=text)


def build_auth_response(
    password: str,
    nonce: str,
    name: str,
    size: int,
    md5: str,
    target: str,
) -> tuple:
    """
    Compute the (cnonce, response) pair for the AUTH datagram.

    Returns:
        Tuple of (cnonce_hex, response_hex)
    """
    cnonce_text = f"{name}{size}{md5}{target}"
    cnonce = hashlib.md5(cnonce_text.encode()).hexdigest()
    password_md5 = hashlib.md5(password.encode()).hexdigest()
    response_text = f"{password_md5}:{nonce}:{cnonce}"
    response = hashlib.md5(response_text.encode()).hexdigest()
    return cnonce, response


class InvitationClient:
    """
    UDP handshake with an ArduinoOTA device.

    Used bare, every call opens its own socket and closes it on every exit
    path, so a reply that arrives after the call returned is never read.
    Used as a context manager, one socket serves every call inside the
    block. Password-protected uploads need that: the device answers the
    auth datagram on the source port the invitation came from.

    Example:
        with InvitationClient("192.168.1.50", 8266) as client:
            outcome = client.send_invitation(local_port=40000, size=len(fw), md5=digest)
            if isinstance(outcome, AuthRequired):
                client.authenticate(outcome.nonce, "secret", name, size, digest)
    """

    def __init__(
        self,
        target: str,
        port: int,
        settings: Optional[OTASettings] = None,
        on_log: Optional[Callable[[str], None]] = None,
        cancel: Optional[threading.Event] = None,
    ):
        """
        Args:
            target: Device IP address or host name
            port: Device OTA UDP port (3232 on ESP32, 8266 on ESP8266)
            settings: Timing settings (default DEFAULT_SETTINGS)
            on_log: Optional sink for human-readable progress lines
            cancel: Optional event; when set, the pending call stops
        """
        self.target = target
        self.port = port
        self.settings = settings or DEFAULT_SETTINGS
        self.on_log = on_log
        self.cancel = cancel
        self.attempts = 0
        self.sock: Optional[socket.socket] = None

    def __enter__(self) -> "InvitationClient":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def open(self) -> None:
        """Open the shared socket used by calls until close()."""
        if self.sock is None:
            self.sock = self._open_socket()

    def close(self) -> None:
        if self.sock is not None:
            try:
                self.sock.close()
            finally:
                self.sock = None

    def _log(self, message: str, level: int = logging.INFO) -> None:
        logger.log(level, message)
        notify_log_sink(self.on_log, message)

    def _open_socket(self) -> socket.socket:
        try:
            return socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        except OSError as e:
            raise OTATransportError(f"Cannot open UDP socket: {e}") from e

    @contextmanager
    def _socket(self) -> Iterator[socket.socket]:
        """The shared socket if open (drained of stale replies), else a scoped one."""
        if self.sock is not None:
            self._drain(self.sock)
            yield self.sock
            return
        sock = self._open_socket()
        try:
            yield sock
        finally:
            sock.close()

    def _drain(self, sock: socket.socket) -> None:
        # Replies to earlier retries must not answer the next request
        sock.setblocking(False)
        while True:
            try:
                data, _ = sock.recvfrom(REPLY_BUFSIZE)
            except OSError:
                break
            logger.debug(f"Discarding late reply: {data!r}")

    def _sendto(self, sock: socket.socket, data: bytes) -> None:
        try:
            sock.sendto(data, (self.target, self.port))
        except OSError as e:
            self._log(f"UDP send error: {e}", logging.ERROR)
            raise OTATransportError(
                f"Cannot send to {self.target}:{self.port}: {e}"
            ) from e
        logger.debug(f">>> {data!r}")

    def _wait_reply(self, sock: socket.socket, timeout: float) -> Optional[bytes]:
        """
        Wait up to timeout seconds for one datagram.

        Polls in short slices so the cancel event is honored promptly.

        Returns:
            Datagram payload, or None on silence
        """
        deadline = time.monotonic() + timeout
        while True:
            if self.cancel is not None and self.cancel.is_set():
                raise OTACancelledError("Invitation cancelled")
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            sock.settimeout(min(remaining, 0.1) if self.cancel is not None else remaining)
            try:
                data, addr = sock.recvfrom(REPLY_BUFSIZE)
            except socket.timeout:
                continue
            except OSError as e:
                # ICMP port unreachable surfaces here on some platforms
                logger.debug(f"Receive error while waiting for reply: {e}")
                continue
            self._log(f"Response from {addr[0]}: {data.decode('ascii', errors='replace').strip()}")
            return data

    def send_invitation(
        self,
        local_port: int,
        size: int,
        md5: str,
        command: OTACommand = OTACommand.FLASH,
    ) -> InvitationOutcome:
        """
        Send the invitation and wait for the first reply.

        Args:
            local_port: TCP port the device should connect back to
            size: Payload size in bytes
            md5: Payload MD5 hex digest
            command: FLASH or SPIFFS

        Returns:
            Accepted or AuthRequired

        Raises:
            ValueError: If command is not FLASH or SPIFFS
            OTATimeoutError: If no reply after all attempts
            OTAProtocolError: If the reply does not match the grammar
            OTATransportError: If the datagram cannot be sent
            OTACancelledError: If the cancel event was set
        """
        if command not in UPLOAD_COMMANDS:
            raise ValueError(f"Invalid invitation command: {command!r} (expected FLASH or SPIFFS)")
        request = InvitationRequest(OTACommand(command), local_port, size, md5)
        message = request.to_bytes()
        max_attempts = self.settings.invitation_attempts
        self.attempts = 0

        self._log(f"Sending invitation to {self.target}:{self.port}")
        self._log(f"Message: {message.decode('ascii').strip()}", logging.DEBUG)

        with self._socket() as sock:
            while self.attempts < max_attempts:
                self.attempts += 1
                self._log(f"Attempt {self.attempts}/{max_attempts}")
                self._sendto(sock, message)

                data = self._wait_reply(sock, self.settings.attempt_timeout)
                if data is not None:
                    return parse_reply(data)

        self._log(f"No response from {self.target} after {max_attempts} attempts", logging.ERROR)
        raise OTATimeoutError(
            f"No response from {self.target}:{self.port} after {max_attempts} attempts"
        )

    def authenticate(
        self,
        nonce: str,
        password: str,
        name: str,
        size: int,
        md5: str,
    ) -> None:
        """
        Answer an AUTH challenge.

        Call inside the same `with` block as send_invitation so the datagram
        leaves from the invitation's port. The response is sent once; the
        device gets settings.auth_timeout seconds to answer.

        Raises:
            OTAAuthenticationError: If the device rejects the password
            OTATimeoutError: If the device does not answer
        """
        cnonce, response = build_auth_response(password, nonce, name, size, md5, self.target)
        message = f"{int(OTACommand.AUTH)} {cnonce} {response}\n".encode("ascii")

        self._log("Authenticating...")
        with self._socket() as sock:
            self._sendto(sock, message)
            data = self._wait_reply(sock, self.settings.auth_timeout)

        if data is None:
            raise OTATimeoutError(f"No answer to authentication from {self.target}")

        text = data.decode("ascii", errors="replace").strip()
        if text != REPLY_OK:
            self._log(f"Authentication failed: {text}", logging.ERROR)
            raise OTAAuthenticationError(
                f"Authentication failed: {text!r}", raw_message=text
            )
        self._log("Authentication OK")


def send_invitation(
    target: str,
    port: int,
    local_port: int,
    size: int,
    md5: str,
    command: OTACommand = OTACommand.FLASH,
    settings: Optional[OTASettings] = None,
    on_log: Optional[Callable[[str], None]] = None,
) -> InvitationOutcome:
    """
    Convenience function for a one-off invitation.

    Returns:
        Accepted or AuthRequired
    """
    client = InvitationClient(target, port, settings=settings, on_log=on_log)
    return client.send_invitation(local_port, size, md5, command)
