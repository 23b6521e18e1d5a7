"""
Centralized parsing helpers for targets, ports and OTA commands.

Front ends must import these helpers rather than re-implement them.
"""

from typing import Optional, Tuple

from esp_ota_flasher.protocol.invitation import OTACommand
from esp_ota_flasher.settings import DEFAULT_OTA_PORT

COMMAND_ALIASES = {
    "flash": OTACommand.FLASH,
    "app": OTACommand.FLASH,
    "firmware": OTACommand.FLASH,
    "spiffs": OTACommand.SPIFFS,
    "fs": OTACommand.SPIFFS,
    "filesystem": OTACommand.SPIFFS,
}


def parse_port(value) -> int:
    """
    Parse a TCP/UDP port number.

    Raises:
        ValueError: If value is not an integer in 1-65535.
    """
    try:
        port = int(str(value).strip())
    except ValueError:
        raise ValueError(f"Invalid port '{value}'. Use a number between 1 and 65535.")
    if not 1 <= port <= 65535:
        raise ValueError(f"Invalid port '{value}'. Use a number between 1 and 65535.")
    return port


def parse_target(value: Optional[str], default_port: int = DEFAULT_OTA_PORT) -> Tuple[str, int]:
    """
    Parse a device target string.

    Accepts:
        - "192.168.1.50"        -> ("192.168.1.50", default_port)
        - "192.168.1.50:8266"   -> ("192.168.1.50", 8266)
        - "esp32.local:3232"

    Returns:
        Tuple of (host, port)

    Raises:
        ValueError: If the host is empty or the port is invalid.
    """
    if value is None or not value.strip():
        raise ValueError("Target address is required (e.g. 192.168.1.50 or 192.168.1.50:3232).")

    value = value.strip()
    host, sep, port_text = value.rpartition(":")
    if not sep:
        host, port = value, default_port
    else:
        port = parse_port(port_text)

    host = host.strip()
    if not host:
        raise ValueError(f"Invalid target '{value}': missing host.")
    return host, port


def parse_command(value: str) -> OTACommand:
    """
    Parse an OTA command from a name or numeric code.

    Accepts "flash", "spiffs" (and aliases) or "0", "100".

    Raises:
        ValueError: If command is not recognized. AUTH is not accepted here.
    """
    text = (value or "").strip().lower()
    if text in COMMAND_ALIASES:
        return COMMAND_ALIASES[text]
    if text.isdigit() and int(text) in (OTACommand.FLASH, OTACommand.SPIFFS):
        return OTACommand(int(text))
    valid = ", ".join(sorted(COMMAND_ALIASES))
    raise ValueError(f"Unknown OTA command '{value}'. Valid: {valid}, 0, 100.")
