"""
Upload error taxonomy.

Every failure raised out of a strategy is an ``UploadError`` subclass that
carries the last command sent, the elapsed time and whatever bytes were
received, so the failure can be diagnosed without a trace log.
"""

from typing import Optional


class UploadError(Exception):
    """
    Base exception for upload failures.

    Attributes:
        last_command: Last command written to the board, if any
        elapsed: Seconds spent in the failing step
        received: Bytes accumulated while waiting for a reply
    """
    def __init__(
        self,
        message: str,
        *,
        last_command: Optional[str] = None,
        elapsed: Optional[float] = None,
        received: bytes = b"",
    ):
        self.last_command = last_command
        self.elapsed = elapsed
        self.received = received
        super().__init__(message)

    def context(self) -> dict:
        """Diagnostic context as a plain dict."""
        details = {}
        if self.last_command is not None:
            details["last_command"] = self.last_command
        if self.elapsed is not None:
            details["elapsed"] = round(self.elapsed, 3)
        if self.received:
            details["received"] = self.received.hex()
        return details


class NoResponseError(UploadError):
    """The primary-rate probe saw no bytes: device not in bootloader mode."""


class WrongBaudError(UploadError):
    """The device answered with garbage at every candidate baud rate."""


class SyncFailureError(UploadError):
    """The ESP ROM bootloader never acknowledged SYNC."""


class ManualInterventionRequired(UploadError):
    """Automated bootloader detection is exhausted; the user must reset the board."""


class UserCancelledError(UploadError):
    """The user declined the manual bootloader entry prompt."""


class AckTimeoutError(UploadError):
    """An erase or write acknowledgement never arrived."""


class PostWriteUnresponsive(UploadError):
    """
    The board did not answer the post-write ping.

    Reported as a warning only; the reset is still attempted.
    """


class UnsupportedBoardError(UploadError):
    """No upload strategy is registered for the requested board."""
