"""Tests for the UDP invitation handshake."""

import hashlib
import threading
import time

import pytest

from esp_ota_flasher.protocol.errors import (
    OTAAuthenticationError,
    OTACancelledError,
    OTAProtocolError,
    OTATimeoutError,
)
from esp_ota_flasher.protocol.invitation import (
    Accepted,
    AuthRequired,
    InvitationClient,
    InvitationRequest,
    OTACommand,
    build_auth_response,
    parse_reply,
    send_invitation,
)

MD5 = "0123456789abcdef0123456789abcdef"


def test_command_codes_match_arduino_ota() -> None:
    assert OTACommand.FLASH == 0
    assert OTACommand.SPIFFS == 100
    assert OTACommand.AUTH == 200


def test_invitation_request_wire_format() -> None:
    request = InvitationRequest(OTACommand.FLASH, 40000, 2500, MD5)
    assert request.to_bytes() == f"0 40000 2500 {MD5}\n".encode()


def test_spiffs_request_uses_command_100() -> None:
    request = InvitationRequest(OTACommand.SPIFFS, 12000, 10, MD5)
    assert request.to_bytes().startswith(b"100 12000 10 ")


class TestParseReply:
    """Reply grammar: OK, AUTH <nonce>, anything else rejected."""

    def test_ok(self):
        assert parse_reply(b"OK") == Accepted()

    def test_ok_with_trailing_newline(self):
        assert parse_reply(b"OK\n") == Accepted()

    def test_auth_nonce(self):
        assert parse_reply(b"AUTH abc123") == AuthRequired(nonce="abc123")

    def test_other_text_is_protocol_error(self):
        with pytest.raises(OTAProtocolError) as excinfo:
            parse_reply(b"ERR busy")
        assert excinfo.value.raw_message == "ERR busy"

    def test_ok_prefix_is_not_ok(self):
        with pytest.raises(OTAProtocolError):
            parse_reply(b"OKAY")

    def test_auth_without_nonce_is_rejected(self):
        with pytest.raises(OTAProtocolError):
            parse_reply(b"AUTH ")


def test_build_auth_response_matches_arduino_ota_formula() -> None:
    cnonce, response = build_auth_response("secret", "abc123", "fw.bin", 2500, MD5, "10.0.0.5")

    expected_cnonce = hashlib.md5(f"fw.bin2500{MD5}10.0.0.5".encode()).hexdigest()
    password_md5 = hashlib.md5(b"secret").hexdigest()
    expected = hashlib.md5(f"{password_md5}:abc123:{expected_cnonce}".encode()).hexdigest()

    assert cnonce == expected_cnonce
    assert response == expected


class TestInvitationClient:
    """Invitation against a simulated device on localhost."""

    def test_ok_on_first_attempt_resolves_accepted(self, fast_settings, fake_device):
        with fake_device(connect_back=False) as device:
            client = InvitationClient("127.0.0.1", device.port, settings=fast_settings)
            outcome = client.send_invitation(40000, 2500, MD5)

        assert outcome == Accepted()
        assert client.attempts == 1
        assert device.datagrams == [f"0 40000 2500 {MD5}\n"]

    def test_silent_device_times_out_after_ten_attempts(self, fast_settings, fake_device):
        with fake_device(reply=None) as device:
            client = InvitationClient("127.0.0.1", device.port, settings=fast_settings)
            with pytest.raises(OTATimeoutError):
                client.send_invitation(40000, 2500, MD5)
            time.sleep(0.1)

        assert client.attempts == 10
        assert len(device.datagrams) == 10
        gaps = [b - a for a, b in zip(device.datagram_times, device.datagram_times[1:])]
        assert all(gap >= fast_settings.attempt_timeout * 0.8 for gap in gaps)

    def test_timeout_is_builtin_timeout_error(self, fast_settings, fake_device):
        with fake_device(reply=None) as device:
            with pytest.raises(TimeoutError):
                send_invitation("127.0.0.1", device.port, 40000, 1, MD5, settings=fast_settings)

    def test_reply_on_third_attempt_stops_retrying(self, fast_settings, fake_device):
        with fake_device(reply_on_attempt=3, connect_back=False) as device:
            client = InvitationClient("127.0.0.1", device.port, settings=fast_settings)
            outcome = client.send_invitation(40000, 2500, MD5)
            time.sleep(0.2)

        assert outcome == Accepted()
        assert client.attempts == 3
        assert len(device.datagrams) == 3

    def test_auth_reply_resolves_auth_required(self, fast_settings, fake_device):
        with fake_device(reply="AUTH abc123", connect_back=False) as device:
            outcome = send_invitation("127.0.0.1", device.port, 40000, 2500, MD5, settings=fast_settings)

        assert outcome == AuthRequired(nonce="abc123")

    def test_garbage_reply_raises_protocol_error(self, fast_settings, fake_device):
        with fake_device(reply="NOPE") as device:
            with pytest.raises(OTAProtocolError) as excinfo:
                send_invitation("127.0.0.1", device.port, 40000, 2500, MD5, settings=fast_settings)

        assert excinfo.value.raw_message == "NOPE"

    def test_log_sink_receives_attempt_lines(self, fast_settings, fake_device):
        lines = []
        with fake_device(connect_back=False) as device:
            client = InvitationClient("127.0.0.1", device.port, settings=fast_settings, on_log=lines.append)
            client.send_invitation(40000, 2500, MD5)

        assert any("Attempt 1/10" in line for line in lines)
        assert any("Response from 127.0.0.1: OK" in line for line in lines)

    def test_auth_command_is_not_an_invitation(self, fast_settings, fake_device):
        with fake_device() as device:
            client = InvitationClient("127.0.0.1", device.port, settings=fast_settings)
            with pytest.raises(ValueError):
                client.send_invitation(40000, 2500, MD5, OTACommand.AUTH)

        assert device.datagrams == []

    def test_broken_log_sink_does_not_stop_the_call(self, fast_settings, fake_device):
        def broken(_line):
            raise RuntimeError("sink failed")

        with fake_device(connect_back=False) as device:
            client = InvitationClient("127.0.0.1", device.port, settings=fast_settings, on_log=broken)
            assert client.send_invitation(40000, 2500, MD5) == Accepted()

    def test_cancel_event_stops_the_call(self, fast_settings, fake_device):
        cancel = threading.Event()
        cancel.set()
        with fake_device(reply=None) as device:
            client = InvitationClient(
                "127.0.0.1", device.port, settings=fast_settings, cancel=cancel
            )
            with pytest.raises(OTACancelledError):
                client.send_invitation(40000, 2500, MD5)

        assert client.attempts == 1


class TestAuthenticate:
    """Challenge-response after an AUTH reply."""

    def test_correct_password_is_accepted(self, fast_settings, fake_device):
        with fake_device(password="secret", connect_back=False) as device:
            with InvitationClient("127.0.0.1", device.port, settings=fast_settings) as client:
                outcome = client.send_invitation(40000, 2500, MD5)
                assert isinstance(outcome, AuthRequired)
                client.authenticate(outcome.nonce, "secret", "fw.bin", 2500, MD5)

        assert device.datagrams[-1].startswith("200 ")

    def test_auth_leaves_from_the_invitation_port(self, fast_settings, fake_device):
        # ESP8266 answers the auth datagram at the invitation's source address
        with fake_device(password="secret", connect_back=False) as device:
            with InvitationClient("127.0.0.1", device.port, settings=fast_settings) as client:
                outcome = client.send_invitation(40000, 2500, MD5)
                client.authenticate(outcome.nonce, "secret", "fw.bin", 2500, MD5)

        assert device.auth_addr == device.invitation_addr

    def test_separate_sockets_work_when_device_answers_sender(self, fast_settings, fake_device):
        with fake_device(password="secret", connect_back=False, auth_reply_to_invitation=False) as device:
            client = InvitationClient("127.0.0.1", device.port, settings=fast_settings)
            outcome = client.send_invitation(40000, 2500, MD5)
            client.authenticate(outcome.nonce, "secret", "fw.bin", 2500, MD5)

        assert device.auth_addr != device.invitation_addr
        assert client.sock is None

    def test_wrong_password_raises(self, fast_settings, fake_device):
        with fake_device(password="secret", connect_back=False) as device:
            with InvitationClient("127.0.0.1", device.port, settings=fast_settings) as client:
                outcome = client.send_invitation(40000, 2500, MD5)
                with pytest.raises(OTAAuthenticationError) as excinfo:
                    client.authenticate(outcome.nonce, "wrong", "fw.bin", 2500, MD5)

        assert excinfo.value.raw_message == "Authentication Failed"

    def test_shared_socket_is_closed_on_exit(self, fast_settings, fake_device):
        with fake_device(connect_back=False) as device:
            with InvitationClient("127.0.0.1", device.port, settings=fast_settings) as client:
                client.send_invitation(40000, 2500, MD5)
                assert client.sock is not None

        assert client.sock is None
