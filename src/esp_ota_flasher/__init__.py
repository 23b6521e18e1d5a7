"""
ESP OTA Flasher - ArduinoOTA-compatible firmware uploader for ESP32/ESP8266

UDP invitation, acknowledgment-gated TCP streaming, and a reachability probe.
"""

__version__ = "0.1.0"

# core must load before protocol: protocol.transfer imports core.results
from esp_ota_flasher.core import UploadResult, flash_firmware, check_connection
from esp_ota_flasher.protocol import (
    OTACommand,
    OTAError,
    UploadOrchestrator,
    upload_firmware,
    test_connection,
)
from esp_ota_flasher.firmware import FirmwareImage, load_firmware
from esp_ota_flasher.settings import OTASettings, DEFAULT_SETTINGS

__all__ = [
    "UploadResult",
    "flash_firmware",
    "check_connection",
    "OTACommand",
    "OTAError",
    "UploadOrchestrator",
    "upload_firmware",
    "test_connection",
    "FirmwareImage",
    "load_firmware",
    "OTASettings",
    "DEFAULT_SETTINGS",
    "__version__",
]
