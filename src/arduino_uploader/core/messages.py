"""
Structured warnings for upload results.

Warnings carry a stable code and a remediation hint so the CLI can show
the user what to do next.
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
    # Board / device
    W_BOARD_UNKNOWN = "W_BOARD_UNKNOWN"
    W_DEVICE_NOT_FOUND = "W_DEVICE_NOT_FOUND"

    # Bootloader detection
    W_NOT_IN_BOOTLOADER = "W_NOT_IN_BOOTLOADER"
    W_WRONG_BAUD = "W_WRONG_BAUD"
    W_SYNC_FAILED = "W_SYNC_FAILED"
    W_NO_VERSION_STRING = "W_NO_VERSION_STRING"
    W_USER_CANCELLED = "W_USER_CANCELLED"

    # Write phase
    W_ACK_TIMEOUT = "W_ACK_TIMEOUT"
    W_POST_WRITE_UNRESPONSIVE = "W_POST_WRITE_UNRESPONSIVE"
    W_RESET_UNACKNOWLEDGED = "W_RESET_UNACKNOWLEDGED"
    W_VERIFY_MISMATCH = "W_VERIFY_MISMATCH"
    W_DATA_PADDED = "W_DATA_PADDED"

    # Safety
    W_WRITE_DISABLED = "W_WRITE_DISABLED"
    W_CONFIRMATION_REQUIRED = "W_CONFIRMATION_REQUIRED"
    W_DRY_RUN = "W_DRY_RUN"

    # Connection
    W_SERIAL_ERROR = "W_SERIAL_ERROR"

    W_UNKNOWN = "W_UNKNOWN"


WARNING_REMEDIATIONS: Dict[WarningCode, str] = {
    WarningCode.W_BOARD_UNKNOWN:
        "Check supported boards with the 'list-boards' command.",
    WarningCode.W_DEVICE_NOT_FOUND:
        "Check the USB cable and run 'ports' to list available ports.",
    WarningCode.W_NOT_IN_BOOTLOADER:
        "Double-tap RESET (the LED should pulse) and upload within 8 seconds.",
    WarningCode.W_WRONG_BAUD:
        "Force a rate with --baud, or double-tap RESET and retry.",
    WarningCode.W_SYNC_FAILED:
        "Hold BOOT, tap EN/RESET, release BOOT, then retry.",
    WarningCode.W_NO_VERSION_STRING:
        "Not an error: the bootloader answered but sent no version text.",
    WarningCode.W_USER_CANCELLED:
        "Upload was cancelled at the manual reset prompt.",
    WarningCode.W_ACK_TIMEOUT:
        "Flash state is unknown. Double-tap RESET and upload again; do not unplug.",
    WarningCode.W_POST_WRITE_UNRESPONSIVE:
        "The new firmware may already be running. Check the board behaves as expected.",
    WarningCode.W_RESET_UNACKNOWLEDGED:
        "Boards often reset before answering. Press RESET if the sketch does not start.",
    WarningCode.W_VERIFY_MISMATCH:
        "Flash contents differ from the image. Upload again.",
    WarningCode.W_DATA_PADDED:
        "Image was padded with 0xFF to a whole number of chunks.",
    WarningCode.W_WRITE_DISABLED:
        "Add the --write flag to perform the actual upload.",
    WarningCode.W_CONFIRMATION_REQUIRED:
        "Type 'WRITE' to confirm, or pass --confirm WRITE.",
    WarningCode.W_DRY_RUN:
        "Dry run complete. Add --write to upload.",
    WarningCode.W_SERIAL_ERROR:
        "Close other serial apps (Arduino IDE, monitors). Check USB driver.",
    WarningCode.W_UNKNOWN:
        "Run again with --verbose for a protocol trace.",
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
        if not self.remediation and self.code in WARNING_REMEDIATIONS:
            self.remediation = WARNING_REMEDIATIONS[self.code]

    @classmethod
    def info(cls, code: WarningCode, title: str, detail: str = "", remediation: str = "") -> "WarningItem":
        return cls(MessageLevel.INFO, code, title, detail, remediation)

    @classmethod
    def warn(cls, code: WarningCode, title: str, detail: str = "", remediation: str = "") -> "WarningItem":
        return cls(MessageLevel.WARN, code, title, detail, remediation)

    @classmethod
    def error(cls, code: WarningCode, title: str, detail: str = "", remediation: str = "") -> "WarningItem":
        return cls(MessageLevel.ERROR, code, title, detail, remediation)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "level": self.level.value,
            "code": self.code.value,
            "title": self.title,
            "detail": self.detail,
            "remediation": self.remediation,
        }

    def to_cli_string(self, verbose: bool = False) -> str:
        """Format for CLI output."""
        icons = {
            MessageLevel.INFO: "ℹ️ ",
            MessageLevel.WARN: "⚠️ ",
            MessageLevel.ERROR: "❌",
        }
        icon = icons.get(self.level, "")

        if not verbose:
            return f"{icon} {self.title}"
        lines = [f"{icon} [{self.code.value}] {self.title}"]
        if self.detail:
            lines.append(f"   {self.detail}")
        if self.remediation:
            lines.append(f"   → {self.remediation}")
        return "\n".join(lines)


def classify_message(message: str) -> WarningCode:
    """Map a plain warning or error string onto a known code."""
    msg = message.lower()
    if "unknown board" in msg or "no upload strategy" in msg:
        return WarningCode.W_BOARD_UNKNOWN
    if "bootloader mode" in msg or "no response at" in msg:
        return WarningCode.W_NOT_IN_BOOTLOADER
    if "baud rate" in msg:
        return WarningCode.W_WRONG_BAUD
    if "sync" in msg:
        return WarningCode.W_SYNC_FAILED
    if "version string" in msg:
        return WarningCode.W_NO_VERSION_STRING
    if "cancelled" in msg:
        return WarningCode.W_USER_CANCELLED
    if "acknowledgement" in msg:
        return WarningCode.W_ACK_TIMEOUT
    if "unresponsive" in msg:
        return WarningCode.W_POST_WRITE_UNRESPONSIVE
    if "reset" in msg and "ack" in msg:
        return WarningCode.W_RESET_UNACKNOWLEDGED
    if "crc" in msg or "mismatch" in msg:
        return WarningCode.W_VERIFY_MISMATCH
    if "padded" in msg:
        return WarningCode.W_DATA_PADDED
    if "dry run" in msg:
        return WarningCode.W_DRY_RUN
    if "confirm" in msg:
        return WarningCode.W_CONFIRMATION_REQUIRED
    if "permission" in msg or "--write" in msg:
        return WarningCode.W_WRITE_DISABLED
    if "port" in msg:
        return WarningCode.W_SERIAL_ERROR
    return WarningCode.W_UNKNOWN


def warnings_from_strings(
    warning_strings: List[str],
    default_level: MessageLevel = MessageLevel.WARN,
) -> List[WarningItem]:
    """
    Convert plain warning strings to WarningItem list.

    Args:
        warning_strings: List of plain warning message strings
        default_level: Severity assigned to every item

    Returns:
        List of WarningItem objects
    """
    return [
        WarningItem(level=default_level, code=classify_message(msg), title=msg)
        for msg in warning_strings
    ]


def result_to_warnings(result: "OperationResult") -> List[WarningItem]:
    """Warnings and errors of a result as WarningItems, errors last."""
    items = warnings_from_strings(result.warnings, MessageLevel.WARN)
    items.extend(warnings_from_strings(result.errors, MessageLevel.ERROR))
    return items


COMMON_WARNINGS = {
    "dry_run": WarningItem.info(
        WarningCode.W_DRY_RUN,
        "Dry run - nothing was written",
        "The board was not touched. Add --write to perform the upload.",
    ),
    "write_disabled": WarningItem.warn(
        WarningCode.W_WRITE_DISABLED,
        "Write mode is disabled",
        "Uploading erases the board's current sketch.",
    ),
    "confirmation_required": WarningItem.warn(
        WarningCode.W_CONFIRMATION_REQUIRED,
        "Write confirmation required",
        "You must type 'WRITE' to confirm this operation.",
    ),
    "manual_reset": WarningItem.info(
        WarningCode.W_NOT_IN_BOOTLOADER,
        "Manual bootloader entry required",
        "Automatic detection did not find the bootloader.",
    ),
}
