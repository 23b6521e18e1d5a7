"""
Standardized warning and message system for ESP OTA Flasher.

Provides structured warning items with stable codes that front ends can
display consistently.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List, Dict, Any


class MessageLevel(Enum):
    """Severity level for messages."""
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class WarningCode(Enum):
    """Stable warning codes for known conditions."""
    # Invitation
    W_NO_RESPONSE = "W_NO_RESPONSE"
    W_AUTH_REQUIRED = "W_AUTH_REQUIRED"
    W_AUTH_FAILED = "W_AUTH_FAILED"
    W_BAD_RESPONSE = "W_BAD_RESPONSE"

    # Transfer
    W_TRANSFER_TIMEOUT = "W_TRANSFER_TIMEOUT"
    W_TRANSPORT_ERROR = "W_TRANSPORT_ERROR"
    W_PORT_IN_USE = "W_PORT_IN_USE"

    # Input
    W_FIRMWARE_EMPTY = "W_FIRMWARE_EMPTY"
    W_FIRMWARE_NOT_FOUND = "W_FIRMWARE_NOT_FOUND"

    # Generic
    W_UNKNOWN = "W_UNKNOWN"


# Default remediation hints for each warning code
WARNING_REMEDIATIONS: Dict[WarningCode, str] = {
    WarningCode.W_NO_RESPONSE:
        "Check the IP address and port (3232 on ESP32, 8266 on ESP8266) and that the sketch calls ArduinoOTA.handle().",
    WarningCode.W_AUTH_REQUIRED:
        "The device has an OTA password. Pass it with --password.",
    WarningCode.W_AUTH_FAILED:
        "The password was rejected. Check ArduinoOTA.setPassword() in the sketch.",
    WarningCode.W_BAD_RESPONSE:
        "The device answered outside the OTA protocol. Is another service on that port?",
    WarningCode.W_TRANSFER_TIMEOUT:
        "The device never connected back or stalled. Allow inbound TCP through the local firewall.",
    WarningCode.W_TRANSPORT_ERROR:
        "Connection dropped during upload. Check Wi-Fi signal and power supply.",
    WarningCode.W_PORT_IN_USE:
        "No free local port was found. Close other uploaders and retry.",
    WarningCode.W_FIRMWARE_EMPTY:
        "Select a non-empty .bin image produced by the build.",
    WarningCode.W_FIRMWARE_NOT_FOUND:
        "Check the firmware path.",
    WarningCode.W_UNKNOWN:
        "Check logs for more details.",
}


@dataclass
class WarningItem:
    """
    Structured warning message with stable code.

    Attributes:
        level: Severity (INFO, WARN, ERROR)
        code: Stable warning code for programmatic handling
        title: Short, user-facing title
        detail: Longer explanation of the issue
        remediation: Suggested action to resolve the issue
    """
    level: MessageLevel
    code: WarningCode
    title: str
    detail: str = ""
    remediation: str = ""

    def __post_init__(self):
        """Set default remediation if not provided."""
        if not self.remediation and self.code in WARNING_REMEDIATIONS:
            self.remediation = WARNING_REMEDIATIONS[self.code]

    @classmethod
    def warn(cls, code: WarningCode, title: str, detail: str = "") -> "WarningItem":
        return cls(MessageLevel.WARN, code, title, detail)

    @classmethod
    def error(cls, code: WarningCode, title: str, detail: str = "") -> "WarningItem":
        return cls(MessageLevel.ERROR, code, title, detail)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON/display."""
        return {
            "level": self.level.value,
            "code": self.code.value,
            "title": self.title,
            "detail": self.detail,
            "remediation": self.remediation,
        }


def code_for_message(message: str) -> WarningCode:
    """
    Guess a warning code from a free-text error message.

    Matches the wording used by the protocol layer's exceptions.
    """
    msg = message.lower()

    if "no response" in msg:
        return WarningCode.W_NO_RESPONSE
    if "requires a password" in msg:
        return WarningCode.W_AUTH_REQUIRED
    if "authentication" in msg:
        return WarningCode.W_AUTH_FAILED
    if "did not complete within" in msg or "timeout" in msg:
        return WarningCode.W_TRANSFER_TIMEOUT
    if "bad invitation response" in msg or "unexpected acknowledgment" in msg:
        return WarningCode.W_BAD_RESPONSE
    if "no free local port" in msg or "cannot listen" in msg:
        return WarningCode.W_PORT_IN_USE
    if "firmware image is empty" in msg:
        return WarningCode.W_FIRMWARE_EMPTY
    if "firmware not found" in msg:
        return WarningCode.W_FIRMWARE_NOT_FOUND
    if "socket" in msg or "write failed" in msg or "closed the connection" in msg:
        return WarningCode.W_TRANSPORT_ERROR
    return WarningCode.W_UNKNOWN


def result_to_warnings(result: "UploadResult") -> List[WarningItem]:
    """
    Convert an UploadResult's warnings and errors to WarningItem list.

    Args:
        result: UploadResult from core operations

    Returns:
        List of WarningItem objects
    """
    items = []

    for msg in result.warnings:
        items.append(WarningItem.warn(code_for_message(msg), msg))

    for err in result.errors:
        items.append(WarningItem.error(code_for_message(err), err))

    return items
