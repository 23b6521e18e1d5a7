"""
OTA upload sequencing: digest -> invitation -> transfer.

An UploadOrchestrator is built fresh for each upload and carries the
caller's progress/log sinks for that upload only.
"""

import enum
import logging
import threading
from typing import Callable, Optional

from ..firmware import FirmwareSource, load_firmware
from ..settings import DEFAULT_SETTINGS, OTASettings
from ..core.results import UploadResult
from .errors import OTAAuthenticationError
from .invitation import UPLOAD_COMMANDS, AuthRequired, InvitationClient, OTACommand, notify_log_sink
from .transfer import bind_random_port

logger = logging.getLogger(__name__)


class UploadState(enum.Enum):
    """Per-upload state machine. COMPLETED and ABORTED are terminal."""
    IDLE = "idle"
    DIGEST_COMPUTED = "digest_computed"
    INVITATION_PENDING = "invitation_pending"
    INVITATION_ACCEPTED = "invitation_accepted"
    INVITATION_FAILED = "invitation_failed"
    TRANSFER_IN_PROGRESS = "transfer_in_progress"
    TRANSFER_FAILED = "transfer_failed"
    COMPLETED = "completed"
    ABORTED = "aborted"


TERMINAL_STATES = frozenset({UploadState.COMPLETED, UploadState.ABORTED})


class UploadOrchestrator:
    """
    Runs one firmware upload against one device.

    Not reusable: a second call raises RuntimeError. Callers must not run
    two uploads against the same device at once.

    Example:
        orchestrator = UploadOrchestrator("192.168.1.50", 3232, on_progress=bar.update)
        result = orchestrator.upload_firmware("build/firmware.bin", password="secret")
    """

    def __init__(
        self,
        target: str,
        port: int,
        settings: Optional[OTASettings] = None,
        on_progress: Optional[Callable[[float], None]] = None,
        on_log: Optional[Callable[[str], None]] = None,
        cancel: Optional[threading.Event] = None,
    ):
        self.target = target
        self.port = port
        self.settings = settings or DEFAULT_SETTINGS
        self.on_progress = on_progress
        self.on_log = on_log
        self.cancel = cancel
        self.state = UploadState.IDLE
        self.history = [UploadState.IDLE]

    def _log(self, message: str, level: int = logging.INFO) -> None:
        logger.log(level, message)
        notify_log_sink(self.on_log, message)

    def _set_state(self, state: UploadState) -> None:
        self.state = state
        self.history.append(state)
        logger.debug(f"Upload state -> {state.value}")

    def _abort(self, error: Exception, failed_state: Optional[UploadState] = None) -> None:
        if failed_state is not None:
            self._set_state(failed_state)
        self._set_state(UploadState.ABORTED)
        self._log(f"Upload failed: {error}", logging.ERROR)

    def upload_firmware(
        self,
        firmware_source: FirmwareSource,
        password: str = "",
        command: OTACommand = OTACommand.FLASH,
    ) -> UploadResult:
        """
        Upload a firmware image.

        Args:
            firmware_source: Path, bytes, or binary file object
            password: OTA password, needed only if the device asks for it
            command: FLASH (application) or SPIFFS (filesystem image)

        Returns:
            UploadResult with bytes_len and the MD5 digest

        Raises:
            OTAError: Any invitation or transfer failure (one terminal error)
            FileNotFoundError: If the firmware path does not exist
            ValueError: If command is not FLASH or SPIFFS

        Whatever is raised, the orchestrator ends in ABORTED.
        """
        if self.state is not UploadState.IDLE:
            raise RuntimeError("UploadOrchestrator instances are single-use")

        target = f"{self.target}:{self.port}"
        self._log(f"Starting ESP OTA upload to {target}")

        if command not in UPLOAD_COMMANDS:
            error = ValueError(f"Invalid OTA upload command: {command!r} (expected FLASH or SPIFFS)")
            self._abort(error)
            raise error
        command = OTACommand(command)

        try:
            image = load_firmware(firmware_source)
        except Exception as e:
            self._abort(e)
            raise
        self._set_state(UploadState.DIGEST_COMPUTED)
        self._log(f"File size: {image.size} bytes ({round(image.size / 1024)} KB)")
        self._log(f"File MD5: {image.md5}")

        try:
            server = bind_random_port(self.settings, on_log=self.on_log)
        except Exception as e:
            self._abort(e, UploadState.INVITATION_FAILED)
            raise

        with server:
            self._log(f"Using local port: {server.port}")
            self._set_state(UploadState.INVITATION_PENDING)

            client = InvitationClient(
                self.target,
                self.port,
                settings=self.settings,
                on_log=self.on_log,
                cancel=self.cancel,
            )
            try:
                # One socket for invitation and auth: the device answers the
                # auth datagram on the port the invitation came from
                with client:
                    outcome = client.send_invitation(server.port, image.size, image.md5, command)
                    if isinstance(outcome, AuthRequired):
                        if not password:
                            raise OTAAuthenticationError(
                                "Device requires a password but none was given",
                                raw_message=f"AUTH {outcome.nonce}",
                            )
                        client.authenticate(outcome.nonce, password, image.name, image.size, image.md5)
            except Exception as e:
                self._abort(e, UploadState.INVITATION_FAILED)
                raise

            self._set_state(UploadState.INVITATION_ACCEPTED)
            self._set_state(UploadState.TRANSFER_IN_PROGRESS)
            try:
                transfer = server.serve(image.data, image.size, self.on_progress)
            except Exception as e:
                self._abort(e, UploadState.TRANSFER_FAILED)
                raise

        self._set_state(UploadState.COMPLETED)
        self._log("Upload completed successfully!")

        result = UploadResult.success(
            operation="upload_firmware",
            target=target,
            bytes_len=image.size,
            md5=image.md5,
            message="Firmware uploaded successfully",
        )
        result.metadata["local_port"] = server.port
        result.metadata["command"] = OTACommand(command).name
        result.metadata["invitation_attempts"] = client.attempts
        result.metadata["bytes_sent"] = transfer.bytes_len
        if image.name:
            result.metadata["file"] = image.name
        return result


def upload_firmware(
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
    Convenience function: one upload with a fresh orchestrator.

    Raises:
        OTAError: On any protocol failure
    """
    orchestrator = UploadOrchestrator(
        target,
        port,
        settings=settings,
        on_progress=on_progress,
        on_log=on_log,
    )
    return orchestrator.upload_firmware(firmware_source, password, command)
