"""
OTA protocol exceptions.

Every failure raised by the protocol layer derives from OTAError so callers
can catch the whole family in one place.
"""

from typing import Optional


class OTAError(Exception):
    """Base exception for OTA protocol errors"""
    pass


class OTATimeoutError(OTAError, TimeoutError):
    """Device stayed silent (invitation exhausted, watchdog expired)"""
    pass


class OTAProtocolError(OTAError):
    """
    Device answered with something outside the protocol grammar.

    Attributes:
        raw_message: Text received from the device, as decoded
    """
    def __init__(self, message: str, raw_message: Optional[str] = None):
        self.raw_message = raw_message
        super().__init__(message)


class OTAAuthenticationError(OTAProtocolError):
    """Device demanded a password, or refused the one supplied"""
    pass


class OTATransportError(OTAError):
    """Socket bind/listen/send/write failure"""
    pass


class OTACancelledError(OTAError):
    """Operation was cancelled through its cancel event"""
    pass


class FirmwareValidationError(OTAError, ValueError):
    """Firmware input is missing or unusable"""
    pass
