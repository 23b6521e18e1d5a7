"""Simulated ArduinoOTA device for protocol tests."""

import hashlib
import select
import socket
import threading
import time

import pytest

from esp_ota_flasher.settings import OTASettings


class FakeDevice:
    """
    Minimal ArduinoOTA responder on 127.0.0.1.

    UDP side answers invitations; on acceptance the TCP side connects back,
    reads the image chunk by chunk and acknowledges each one.

    Args:
        reply: Text answered to invitations (None = stay silent)
        reply_on_attempt: Stay silent until this many invitations arrived
        password: If set, answer "AUTH <nonce>" and check the auth datagram
        connect_back: Connect to the announced TCP port after acceptance
        ack: Bytes sent after each chunk, or callable(index) -> bytes
        stall_after: Stop acknowledging after this many chunks
        chunk_size: Bytes read per chunk
        ack_delay: Pause before acknowledging (used to detect early writes)
        auth_reply_to_invitation: Answer the auth datagram at the address the
            invitation came from, as ESP8266 ArduinoOTA does (False answers
            the auth sender)
    """

    NONCE = "abc123"

    def __init__(
        self,
        reply="OK",
        reply_on_attempt=1,
        password=None,
        connect_back=True,
        ack=b"OK",
        stall_after=None,
        chunk_size=1024,
        ack_delay=0.0,
        auth_reply_to_invitation=True,
    ):
        self.reply = reply
        self.reply_on_attempt = reply_on_attempt
        self.password = password
        self.connect_back = connect_back
        self.ack = ack
        self.stall_after = stall_after
        self.chunk_size = chunk_size
        self.ack_delay = ack_delay
        self.auth_reply_to_invitation = auth_reply_to_invitation

        self.datagrams = []
        self.datagram_times = []
        self.chunks = []
        self.early_write = False
        self.received = bytearray()
        self.tcp_done = threading.Event()
        self.invitation = None
        self.invitation_addr = None
        self.auth_addr = None

        self._stop = threading.Event()
        self._udp = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        self._udp.bind(("127.0.0.1", 0))
        self._udp.settimeout(0.05)
        self.port = self._udp.getsockname()[1]
        self._threads = []

    def __enter__(self):
        t = threading.Thread(target=self._udp_loop, daemon=True)
        t.start()
        self._threads.append(t)
        return self

    def __exit__(self, *exc):
        self._stop.set()
        for t in self._threads:
            t.join(timeout=5)
        self._udp.close()

    def _udp_loop(self):
        while not self._stop.is_set():
            try:
                data, addr = self._udp.recvfrom(1024)
            except socket.timeout:
                continue
            except OSError:
                return
            text = data.decode()
            self.datagrams.append(text)
            self.datagram_times.append(time.monotonic())
            fields = text.split()

            if fields[0] == "200":
                self._handle_auth(fields, addr)
                continue

            if len(self.datagrams) < self.reply_on_attempt:
                continue

            self.invitation = fields
            self.invitation_addr = addr
            if self.password is not None:
                self._udp.sendto(f"AUTH {self.NONCE}".encode(), addr)
                continue
            if self.reply is None:
                continue
            self._udp.sendto(self.reply.encode(), addr)
            if self.reply == "OK":
                self._start_transfer()

    def _handle_auth(self, fields, addr):
        _, local_port, size, md5 = self.invitation
        cnonce, response = fields[1], fields[2]
        self.auth_addr = addr
        if self.auth_reply_to_invitation:
            addr = self.invitation_addr
        password_md5 = hashlib.md5(self.password.encode()).hexdigest()
        expected = hashlib.md5(f"{password_md5}:{self.NONCE}:{cnonce}".encode()).hexdigest()
        if response == expected:
            self._udp.sendto(b"OK", addr)
            self._start_transfer()
        else:
            self._udp.sendto(b"Authentication Failed", addr)

    def _start_transfer(self):
        _, local_port, size, _ = self.invitation
        if not self.connect_back or int(size) == 0:
            return
        t = threading.Thread(
            target=self._tcp_session, args=(int(local_port), int(size)), daemon=True
        )
        t.start()
        self._threads.append(t)

    def _tcp_session(self, local_port, size):
        try:
            with socket.create_connection(("127.0.0.1", local_port), timeout=5) as conn:
                index = 0
                while len(self.received) < size and not self._stop.is_set():
                    want = min(self.chunk_size, size - len(self.received))
                    chunk = bytearray()
                    while len(chunk) < want:
                        part = conn.recv(want - len(chunk))
                        if not part:
                            return
                        chunk.extend(part)
                    self.chunks.append(len(chunk))
                    self.received.extend(chunk)

                    if self.ack_delay:
                        readable, _, _ = select.select([conn], [], [], self.ack_delay)
                        if readable:
                            self.early_write = True

                    if self.stall_after is not None and index + 1 >= self.stall_after:
                        self._stop.wait(10)
                        return
                    ack = self.ack(index) if callable(self.ack) else self.ack
                    conn.sendall(ack)
                    index += 1
        except OSError:
            pass
        finally:
            self.tcp_done.set()


@pytest.fixture
def fast_settings():
    """Protocol settings with timeouts short enough for unit tests."""
    return OTASettings(
        attempt_timeout=0.05,
        auth_timeout=1.0,
        chunk_delay=0.001,
        transfer_timeout=5.0,
    )


@pytest.fixture
def firmware_bytes():
    """2500-byte image: two full chunks and a 452-byte tail."""
    return bytes(range(250)) * 10


@pytest.fixture
def fake_device():
    """The FakeDevice class, used as a context manager in tests."""
    return FakeDevice
