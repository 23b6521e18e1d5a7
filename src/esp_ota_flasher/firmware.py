"""
Firmware image loading and digest computation.

An image is loaded once per upload; its size and MD5 are fixed at
construction and announced verbatim in the invitation.
"""

import hashlib
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO, Union

from esp_ota_flasher.protocol.errors import FirmwareValidationError

logger = logging.getLogger(__name__)

FirmwareSource = Union[str, Path, bytes, bytearray, BinaryIO]


def compute_digest(data: bytes) -> str:
    """
    MD5 hex digest of the raw image bytes.

    This is the digest ArduinoOTA compares after flashing. It is an
    integrity check, not authentication.
    """
    return hashlib.md5(data).hexdigest()


@dataclass(frozen=True)
class FirmwareImage:
    """
    Immutable firmware payload.

    Attributes:
        data: Raw image bytes
        name: Source file name (used in the auth cnonce), may be empty
        size: Length of data in bytes
        md5: Hex MD5 of data
    """
    data: bytes = field(repr=False)
    name: str = ""
    size: int = field(init=False)
    md5: str = field(init=False)

    def __post_init__(self):
        object.__setattr__(self, "size", len(self.data))
        object.__setattr__(self, "md5", compute_digest(self.data))

    @classmethod
    def from_bytes(cls, data: bytes, name: str = "") -> "FirmwareImage":
        return cls(bytes(data), name)

    def chunk_count(self, chunk_size: int) -> int:
        """Number of TCP chunks needed to send this image."""
        return math.ceil(self.size / chunk_size)


def load_firmware(source: FirmwareSource, name: str = "") -> FirmwareImage:
    """
    Read a firmware image to completion.

    Args:
        source: Path, raw bytes, or a binary file object
        name: Override for the image name (defaults to the file name)

    Returns:
        FirmwareImage with size and digest computed

    Raises:
        FileNotFoundError: If a path does not exist
        FirmwareValidationError: If the image is empty or source is unusable
    """
    if isinstance(source, (bytes, bytearray)):
        data = bytes(source)
    elif isinstance(source, (str, Path)):
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"Firmware not found: {source}")
        if not path.is_file():
            raise FirmwareValidationError(f"Firmware path is not a file: {source}")
        data = path.read_bytes()
        name = name or path.name
    elif hasattr(source, "read"):
        data = source.read()
        if not isinstance(data, (bytes, bytearray)):
            raise FirmwareValidationError("Firmware stream must be opened in binary mode")
        data = bytes(data)
        name = name or Path(str(getattr(source, "name", "") or "")).name
    else:
        raise FirmwareValidationError(
            f"Unsupported firmware source type: {type(source).__name__}"
        )

    if not data:
        raise FirmwareValidationError("Firmware image is empty")

    image = FirmwareImage(data, name)
    logger.info(f"Loaded firmware {image.name or '<memory>'}: {image.size} bytes, MD5 {image.md5}")
    return image
