"""
Core workflow actions for ESP OTA Flasher.

This module exposes functions that front ends call. They never raise:
failures come back as UploadResult with errors and captured log lines.
"""

import logging
from contextlib import contextmanager
from typing import Callable, Optional

from esp_ota_flasher.firmware import FirmwareSource, load_firmware
from esp_ota_flasher.protocol.invitation import OTACommand
from esp_ota_flasher.protocol.uploader import UploadOrchestrator
from esp_ota_flasher.protocol.probe import test_connection as probe_connection
from esp_ota_flasher.settings import OTASettings

from .results import UploadResult

logger = logging.getLogger(__name__)


class _ListLogHandler(logging.Handler):
    """Capture log records into a list of formatted strings."""

    def __init__(self, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.records = []
        self.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(self.format(record))


@contextmanager
def _capture_logs(logger_name: str = "esp_ota_flasher"):
    """Capture logs for core operations into a list."""
    target_logger = logging.getLogger(logger_name)
    handler = _ListLogHandler()
    previous_level = target_logger.level
    if previous_level in (logging.NOTSET, logging.WARNING, logging.ERROR, logging.CRITICAL):
        target_logger.setLevel(logging.INFO)
    target_logger.addHandler(handler)
    try:
        yield handler.records
    finally:
        target_logger.removeHandler(handler)
        target_logger.setLevel(previous_level)


def flash_firmware(
    target: str,
    port: int,
    firmware_source: FirmwareSource,
    password: str = "",
    command: OTACommand = OTACommand.FLASH,
    on_progress: Optional[Callable[[float], None]] = None,
    on_log: Optional[Callable[[str], None]] = None,
    settings: Optional[OTASettings] = None,
) -> UploadResult:
    """
    Upload firmware to a device over OTA.

    Args:
        target: Device IP or host name
        port: Device OTA port
        firmware_source: Path, bytes, or binary file object
        password: OTA password (only used if the device asks)
        command: FLASH or SPIFFS
        on_progress: Optional callback(fraction)
        on_log: Optional callback(line)
        settings: Protocol settings override

    Returns:
        UploadResult with:
            - ok: True if the device received the whole image
            - bytes_len: image size
            - hashes["md5"]: image digest
            - metadata["state"]: final orchestrator state
            - logs: captured log lines
    """
    orchestrator = UploadOrchestrator(
        target,
        port,
        settings=settings,
        on_progress=on_progress,
        on_log=on_log,
    )

    with _capture_logs() as logs:
        try:
            result = orchestrator.upload_firmware(firmware_source, password, command)
        except Exception as e:
            logger.exception("flash_firmware failed")
            result = UploadResult.failure(
                operation="upload_firmware",
                error=str(e),
                target=f"{target}:{port}",
            )
            result.metadata["error_type"] = type(e).__name__

        result.metadata["state"] = orchestrator.state.value
        result.logs = logs
        return result


def check_connection(
    target: str,
    port: int,
    settings: Optional[OTASettings] = None,
    on_log: Optional[Callable[[str], None]] = None,
) -> UploadResult:
    """
    Probe a device without uploading anything.

    Returns:
        UploadResult with ok=True if the device answered the invitation
    """
    with _capture_logs() as logs:
        reachable = probe_connection(target, port, settings=settings, on_log=on_log)
        if reachable:
            result = UploadResult.success(
                operation="test_connection",
                target=f"{target}:{port}",
                message="Device answered the OTA invitation",
            )
        else:
            result = UploadResult.failure(
                operation="test_connection",
                error=f"No response from {target}:{port}",
                target=f"{target}:{port}",
            )
        result.logs = logs
        return result


def inspect_firmware(
    firmware_source: FirmwareSource,
    settings: Optional[OTASettings] = None,
) -> UploadResult:
    """
    Load an image and report size, digest and chunk count without sending.

    Returns:
        UploadResult with bytes_len, hashes["md5"] and metadata["chunks"]
    """
    try:
        image = load_firmware(firmware_source)
    except Exception as e:
        return UploadResult.failure(operation="inspect_firmware", error=str(e))

    chunk_size = (settings or OTASettings()).chunk_size
    result = UploadResult.success(
        operation="inspect_firmware",
        bytes_len=image.size,
        md5=image.md5,
    )
    result.metadata["file"] = image.name
    result.metadata["chunk_size"] = chunk_size
    result.metadata["chunks"] = image.chunk_count(chunk_size)
    return result
