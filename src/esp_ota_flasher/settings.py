"""
Protocol timing and sizing settings.

All tunables of the invitation and transfer phases live in one frozen
dataclass so tests and the CLI can shrink timeouts without touching
module constants.
"""

import os
import logging
from dataclasses import dataclass, fields, replace
from typing import Dict, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

# ArduinoOTA defaults: ESP32 listens on 3232, ESP8266 on 8266
DEFAULT_OTA_PORT = 3232
ESP8266_OTA_PORT = 8266

ENV_PREFIX = "ESP_OTA_"


@dataclass(frozen=True)
class OTASettings:
    """
    Settings for one OTA session.

    Attributes:
        invitation_attempts: UDP invitation datagrams sent before giving up
        attempt_timeout: Seconds to wait for a reply after each datagram
        auth_timeout: Seconds to wait for the reply to the auth datagram
        chunk_size: Bytes written per TCP chunk
        chunk_delay: Pause after each acknowledged chunk (seconds)
        transfer_timeout: Watchdog for the whole TCP session (seconds)
        local_port_range: Half-open range for the random local TCP port
        port_bind_attempts: Random ports tried before giving up on bind
        probe_port: Sentinel local port announced by the connectivity probe
    """
    invitation_attempts: int = 10
    attempt_timeout: float = 1.0
    auth_timeout: float = 10.0
    chunk_size: int = 1024
    chunk_delay: float = 0.01
    transfer_timeout: float = 60.0
    local_port_range: Tuple[int, int] = (10000, 60000)
    port_bind_attempts: int = 5
    probe_port: int = 12345

    def __post_init__(self):
        if self.invitation_attempts < 1:
            raise ValueError("invitation_attempts must be at least 1")
        if self.chunk_size < 1:
            raise ValueError("chunk_size must be positive")
        low, high = self.local_port_range
        if not (0 < low < high <= 65536):
            raise ValueError(f"Invalid local port range: {self.local_port_range}")

    def with_overrides(self, **overrides) -> "OTASettings":
        """Return a copy with the given fields replaced."""
        return replace(self, **overrides)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "OTASettings":
        """
        Build settings from ESP_OTA_* environment variables.

        ESP_OTA_ATTEMPT_TIMEOUT=0.5 overrides attempt_timeout, and so on.
        The port range is given as "LOW-HIGH".

        Raises:
            ValueError: If a variable cannot be parsed
        """
        environ = os.environ if environ is None else environ
        overrides: Dict[str, object] = {}

        for f in fields(cls):
            key = ENV_PREFIX + f.name.upper()
            raw = environ.get(key)
            if raw is None or not raw.strip():
                continue
            try:
                if f.name == "local_port_range":
                    low, high = raw.split("-", 1)
                    overrides[f.name] = (int(low), int(high))
                elif f.type in (int, "int"):
                    overrides[f.name] = int(raw)
                else:
                    overrides[f.name] = float(raw)
            except ValueError:
                raise ValueError(f"Invalid value for {key}: {raw!r}")
            logger.debug(f"{key} overrides {f.name} -> {overrides[f.name]}")

        return cls(**overrides)


DEFAULT_SETTINGS = OTASettings()
