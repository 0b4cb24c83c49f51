"""
Upload strategy contract.

Every bootloader protocol is driven by a strategy with two phases:

- prepare(transport, board): put the board into its bootloader
- flash(transport, firmware, on_progress, board, options): write the image

Both leave the transport closed on every exit path. Failures are raised as
UploadError subclasses; the returned FlashOutcome is the only proof of
success, progress values are informational.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from arduino_uploader.core.diagnostics import UploadObserver
from arduino_uploader.core.firmware import FirmwareImage
from arduino_uploader.models.registry import BoardConfig
from arduino_uploader.protocol.probe import DetectionResult
from arduino_uploader.protocol.transport import Clock, Transport

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, str], None]


class UserPrompt:
    """
    Asks the user a yes/no question.

    Injected into strategies so the engine stays headless; the CLI
    implements it with a terminal prompt.
    """

    def confirm(self, message: str) -> bool:
        raise NotImplementedError


class CallbackPrompt(UserPrompt):
    """Adapt a plain ``(message) -> bool`` callable."""

    def __init__(self, callback: Callable[[str], bool]):
        self.callback = callback

    def confirm(self, message: str) -> bool:
        return bool(self.callback(message))


@dataclass(frozen=True)
class FlashOptions:
    """
    Per-call options.

    Attributes:
        verify: Check the device CRC after writing (BOSSA only)
        skip_touch: Do not run bootloader entry before flashing
        dry_run: Resolve and plan the upload without touching the port
        flash_offset: Override the board's first write address
        commit_settle: Override the post-write settle delay (seconds)
        baud_rate: Override the primary / fixed baud rate
    """
    verify: bool = False
    skip_touch: bool = False
    dry_run: bool = False
    flash_offset: Optional[int] = None
    commit_settle: Optional[float] = None
    baud_rate: Optional[int] = None

    def apply(self, board: BoardConfig) -> BoardConfig:
        """Board config with these overrides applied."""
        return board.with_overrides(
            baud_rate=self.baud_rate,
            flash_offset=self.flash_offset,
            commit_settle=self.commit_settle,
        )


@dataclass
class FlashOutcome:
    """
    Result of a successful flash().

    Attributes:
        baudrate: Rate the upload ran at
        bytes_written: Image length after padding
        chunks: Number of chunks / blocks written
        version: Bootloader version string, if reported
        verified: CRC check result, None when not requested
        warnings: Non-fatal issues (unanswered ping, unacknowledged reset)
        elapsed: Seconds spent in flash()
        dry_run: Nothing was written
    """
    baudrate: int
    bytes_written: int
    chunks: int
    version: Optional[str] = None
    verified: Optional[bool] = None
    warnings: List[str] = field(default_factory=list)
    elapsed: float = 0.0
    dry_run: bool = False


class ProgressReporter:
    """
    Forward progress to a callback, clamped to a non-decreasing 0..100.
    """

    def __init__(self, callback: Optional[ProgressCallback] = None):
        self.callback = callback
        self.last = 0

    def __call__(self, percent: float, message: str) -> None:
        value = max(self.last, min(100, max(0, int(round(percent)))))
        self.last = value
        if self.callback is not None:
            self.callback(value, message)


class UploadStrategy:
    """
    Base class for bootloader strategies.

    Strategies hold configuration only; all per-upload state lives in a
    Session created inside flash().
    """

    name = "base"

    def __init__(
        self,
        clock: Optional[Clock] = None,
        observer: Optional[UploadObserver] = None,
        prompt: Optional[UserPrompt] = None,
    ):
        self.clock = clock or Clock()
        self.observer = observer or UploadObserver()
        self.prompt = prompt

    def prepare(self, transport: Transport, board: BoardConfig) -> None:
        raise NotImplementedError

    def flash(
        self,
        transport: Transport,
        firmware: FirmwareImage,
        on_progress: Optional[ProgressCallback],
        board: BoardConfig,
        options: Optional[FlashOptions] = None,
    ) -> FlashOutcome:
        raise NotImplementedError

    def probe(self, transport: Transport, board: BoardConfig) -> DetectionResult:
        """Find the bootloader without writing anything."""
        raise NotImplementedError
