"""Reachability probe built on the invitation handshake."""

import logging
from typing import Callable, Optional

from ..settings import DEFAULT_SETTINGS, OTASettings
from .invitation import InvitationClient, OTACommand, notify_log_sink

logger = logging.getLogger(__name__)

PROBE_SIZE = 0
PROBE_DIGEST = "test"


def test_connection(
    target: str,
    port: int,
    settings: Optional[OTASettings] = None,
    on_log: Optional[Callable[[str], None]] = None,
) -> bool:
    """
    Check whether the device answers OTA invitations.

    Sends a zero-size FLASH invitation naming the sentinel probe port. No
    transfer follows. Never raises; a failing on_log sink does not change
    the answer.

    Returns:
        True if the device answered OK or AUTH, False otherwise
    """
    settings = settings or DEFAULT_SETTINGS
    message = f"Testing connection to {target}:{port}"
    logger.info(message)
    notify_log_sink(on_log, message)

    try:
        client = InvitationClient(target, port, settings=settings, on_log=on_log)
        client.send_invitation(settings.probe_port, PROBE_SIZE, PROBE_DIGEST, OTACommand.FLASH)
        return True
    except Exception as e:
        message = f"Connection test failed: {e}"
        logger.warning(message)
        notify_log_sink(on_log, message)
        return False


# Not a pytest test despite the name
test_connection.__test__ = False
