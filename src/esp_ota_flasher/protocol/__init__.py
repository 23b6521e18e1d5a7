"""OTA protocol layer - UDP invitation, TCP transfer, upload sequencing."""

from .errors import (
    OTAError,
    OTATimeoutError,
    OTAProtocolError,
    OTAAuthenticationError,
    OTATransportError,
    OTACancelledError,
    FirmwareValidationError,
)
from .invitation import (
    OTACommand,
    InvitationRequest,
    InvitationOutcome,
    Accepted,
    AuthRequired,
    InvitationClient,
    send_invitation,
    build_auth_response,
)
from .transfer import (
    TransferServer,
    TransferStatus,
    run_transfer,
    iter_chunks,
    choose_local_port,
)
from .uploader import UploadOrchestrator, UploadState, upload_firmware
from .probe import test_connection

__all__ = [
    # Errors
    "OTAError",
    "OTATimeoutError",
    "OTAProtocolError",
    "OTAAuthenticationError",
    "OTATransportError",
    "OTACancelledError",
    "FirmwareValidationError",
    # Invitation
    "OTACommand",
    "InvitationRequest",
    "InvitationOutcome",
    "Accepted",
    "AuthRequired",
    "InvitationClient",
    "send_invitation",
    "build_auth_response",
    # Transfer
    "TransferServer",
    "TransferStatus",
    "run_transfer",
    "iter_chunks",
    "choose_local_port",
    # Sequencing
    "UploadOrchestrator",
    "UploadState",
    "upload_firmware",
    "test_connection",
]
