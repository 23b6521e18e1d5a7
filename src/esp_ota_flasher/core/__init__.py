"""
Core module for ESP OTA Flasher.

This module provides the single source of truth for:
- Target/port/command parsing (parsing.py)
- Result objects (results.py)
- Standardized warnings/messages (messages.py)
- Never-raising upload/probe workflows (actions.py)

Front ends should call into this module rather than driving the protocol
layer themselves.
"""

from .results import UploadResult
from .messages import (
    MessageLevel,
    WarningCode,
    WarningItem,
    code_for_message,
    result_to_warnings,
)
from .parsing import parse_target, parse_port, parse_command
from .actions import flash_firmware, check_connection, inspect_firmware

__all__ = [
    # Results
    "UploadResult",
    # Messages
    "MessageLevel",
    "WarningCode",
    "WarningItem",
    "code_for_message",
    "result_to_warnings",
    # Parsing
    "parse_target",
    "parse_port",
    "parse_command",
    # Actions
    "flash_firmware",
    "check_connection",
    "inspect_firmware",
]
