"""
Core module for arduino-uploader.

This module provides the single source of truth for:
- Write gating / confirmation (safety.py)
- Address, baud rate and duration parsing (parsing.py)
- Result objects (results.py)
- Standardized warnings/messages (messages.py)
- Error taxonomy (errors.py)
- Firmware images and per-upload sessions (firmware.py, session.py)
- Upload diagnostics observers (diagnostics.py)
"""

from .safety import SafetyContext, require_write_permission, WritePermissionError
from .parsing import parse_offset, parse_baudrate, parse_seconds
from .results import OperationResult
from .messages import (
    MessageLevel,
    WarningCode,
    WarningItem,
    warnings_from_strings,
    result_to_warnings,
    COMMON_WARNINGS,
)
from .errors import (
    UploadError,
    NoResponseError,
    WrongBaudError,
    SyncFailureError,
    ManualInterventionRequired,
    UserCancelledError,
    AckTimeoutError,
    PostWriteUnresponsive,
    UnsupportedBoardError,
)
from .firmware import FirmwareImage, padded_length
from .session import Session
from .diagnostics import UploadObserver, LoggingObserver

__all__ = [
    # Safety
    "SafetyContext",
    "require_write_permission",
    "WritePermissionError",
    # Parsing
    "parse_offset",
    "parse_baudrate",
    "parse_seconds",
    # Results
    "OperationResult",
    # Messages
    "MessageLevel",
    "WarningCode",
    "WarningItem",
    "warnings_from_strings",
    "result_to_warnings",
    "COMMON_WARNINGS",
    # Errors
    "UploadError",
    "NoResponseError",
    "WrongBaudError",
    "SyncFailureError",
    "ManualInterventionRequired",
    "UserCancelledError",
    "AckTimeoutError",
    "PostWriteUnresponsive",
    "UnsupportedBoardError",
    # Data
    "FirmwareImage",
    "padded_length",
    "Session",
    # Diagnostics
    "UploadObserver",
    "LoggingObserver",
]
