"""
Upload dispatch.

Resolves an FQBN to its board family once, picks the matching strategy and
runs prepare() then flash(). ``UploadManager.upload`` raises typed errors;
``upload_firmware`` and ``probe_bootloader`` wrap the same flow into an
OperationResult for the CLI, with the operation's log lines attached.
"""

import logging
from contextlib import contextmanager
from typing import Dict, Optional, Union

from arduino_uploader.core.diagnostics import UploadObserver
from arduino_uploader.core.errors import UnsupportedBoardError, UploadError
from arduino_uploader.core.firmware import FirmwareImage
from arduino_uploader.core.results import OperationResult
from arduino_uploader.core.safety import (
    SafetyContext,
    WritePermissionError,
    require_write_permission,
)
from arduino_uploader.models.registry import BoardConfig, Protocol, resolve_board
from arduino_uploader.protocol.bossa_protocol import crc16
from arduino_uploader.protocol.transport import (
    Clock,
    SerialTransport,
    Transport,
    TransportError,
)
from arduino_uploader.strategies.base import (
    FlashOptions,
    FlashOutcome,
    ProgressCallback,
    UploadStrategy,
    UserPrompt,
)
from arduino_uploader.strategies.bossa import BossaStrategy
from arduino_uploader.strategies.esptool import EspToolStrategy

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
def _capture_logs(logger_name: str = "arduino_uploader"):
    """Capture logs for an operation into a list."""
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


class UploadManager:
    """
    Picks the strategy for a board and runs the two-phase upload.

    Example:
        manager = UploadManager(prompt=CallbackPrompt(typer.confirm))
        outcome = manager.upload(
            SerialTransport("/dev/ttyACM0"),
            FirmwareImage.from_file("sketch.bin"),
            "arduino:renesas_uno:unor4wifi",
        )
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        observer: Optional[UploadObserver] = None,
        prompt: Optional[UserPrompt] = None,
    ):
        self.strategies: Dict[Protocol, UploadStrategy] = {
            Protocol.BOSSA: BossaStrategy(clock, observer, prompt),
            Protocol.ESPTOOL: EspToolStrategy(clock, observer, prompt),
        }

    def resolve(self, fqbn: str) -> BoardConfig:
        """
        Raises:
            UnsupportedBoardError: No registered board matches ``fqbn``
        """
        board = resolve_board(fqbn)
        if board is None:
            raise UnsupportedBoardError(f"No upload strategy found for board: {fqbn or '(none)'}")
        return board

    def get_strategy(self, board: BoardConfig) -> UploadStrategy:
        strategy = self.strategies.get(board.protocol)
        if strategy is None:
            raise UnsupportedBoardError(f"No upload strategy for protocol {board.protocol.value}")
        return strategy

    def plan(self, firmware: FirmwareImage, board: BoardConfig) -> FlashOutcome:
        """What a flash would write, without touching the port."""
        chunk_size = board.layout.chunk_size
        return FlashOutcome(
            baudrate=board.baud_rate,
            bytes_written=len(firmware.pad(chunk_size)),
            chunks=firmware.chunk_count(chunk_size),
            dry_run=True,
        )

    def upload(
        self,
        transport: Transport,
        firmware: FirmwareImage,
        fqbn: str,
        on_progress: Optional[ProgressCallback] = None,
        options: Optional[FlashOptions] = None,
    ) -> FlashOutcome:
        """
        Enter the bootloader and flash ``firmware``.

        Raises:
            UnsupportedBoardError: Unknown FQBN
            UploadError: Any typed failure from the strategy
            TransportError: The port could not be opened or written
        """
        options = options or FlashOptions()
        board = options.apply(self.resolve(fqbn))
        if options.dry_run:
            return self.plan(firmware, board)

        strategy = self.get_strategy(board)
        logger.info(f"Using {strategy.name} for {fqbn}")
        if not options.skip_touch:
            strategy.prepare(transport, board)
        return strategy.flash(transport, firmware, on_progress, board, options)

    def probe(self, transport: Transport, fqbn: str, options: Optional[FlashOptions] = None):
        """Enter the bootloader (unless skipped) and detect it, writing nothing."""
        options = options or FlashOptions()
        board = options.apply(self.resolve(fqbn))
        strategy = self.get_strategy(board)
        if not options.skip_touch:
            strategy.prepare(transport, board)
        return strategy.probe(transport, board)


def upload_firmware(
    port: str,
    firmware: Union[str, FirmwareImage],
    fqbn: str,
    safety_ctx: SafetyContext,
    options: Optional[FlashOptions] = None,
    on_progress: Optional[ProgressCallback] = None,
    prompt: Optional[UserPrompt] = None,
    observer: Optional[UploadObserver] = None,
    transport: Optional[Transport] = None,
    clock: Optional[Clock] = None,
) -> OperationResult:
    """
    Gate, then upload a firmware image.

    Args:
        port: Serial port name
        firmware: Path to a .bin file, or an already loaded image
        fqbn: Board FQBN
        safety_ctx: Write gating context
        options: Flash options (verify, dry run, overrides)
        on_progress: Progress callback
        prompt: Manual reset prompt
        observer: Protocol trace observer
        transport: Transport to use instead of opening ``port`` with pyserial
        clock: Clock to use for every wait

    Returns:
        OperationResult; never raises for upload failures
    """
    options = options or FlashOptions()
    with _capture_logs() as logs:
        result = _upload(
            port, firmware, fqbn, safety_ctx, options,
            on_progress, prompt, observer, transport, clock,
        )
    result.logs = list(logs)
    return result


def _upload(port, firmware, fqbn, safety_ctx, options, on_progress, prompt, observer, transport, clock):
    operation = "dry_run" if options.dry_run else "upload"
    try:
        image = firmware if isinstance(firmware, FirmwareImage) else FirmwareImage.from_file(firmware)
    except (OSError, ValueError) as e:
        return OperationResult.failure(operation, f"Cannot load firmware: {e}", board=fqbn, port=port)

    manager = UploadManager(clock=clock, observer=observer, prompt=prompt)
    try:
        board = options.apply(manager.resolve(fqbn))
    except UnsupportedBoardError as e:
        return OperationResult.failure(operation, str(e), board=fqbn, port=port)

    safety_ctx.board = fqbn
    safety_ctx.board_known = True
    try:
        require_write_permission(
            safety_ctx,
            port=port,
            bytes_length=len(image),
            offset=board.layout.flash_write_offset,
        )
    except WritePermissionError as e:
        return OperationResult.failure(operation, e.reason, board=fqbn, port=port, metadata=e.details)

    padded = image.pad(board.layout.chunk_size)
    hashes = {"sha256": image.sha256, "crc16": f"{crc16(padded.data):04x}"}

    if transport is None and not options.dry_run:
        transport = SerialTransport(port)
    try:
        outcome = manager.upload(transport, image, fqbn, on_progress, options)
    except UploadError as e:
        logger.error(f"Upload failed: {e}")
        result = OperationResult.failure(operation, str(e), board=fqbn, port=port, hashes=hashes)
        result.metadata.update(e.context())
        result.metadata["error_type"] = type(e).__name__
        return result
    except TransportError as e:
        logger.error(f"Serial error: {e}")
        return OperationResult.failure(operation, f"Serial port error: {e}", board=fqbn, port=port)

    result = OperationResult.success(
        operation,
        board=fqbn,
        port=port,
        bytes_len=outcome.bytes_written,
        hashes=hashes,
        metadata={
            "baudrate": outcome.baudrate,
            "chunks": outcome.chunks,
            "chunk_size": board.layout.chunk_size,
            "flash_offset": f"0x{board.layout.flash_write_offset:08X}",
            "protocol": board.protocol.value,
            "family": board.family.value,
            "elapsed": round(outcome.elapsed, 3),
        },
    )
    if outcome.version:
        result.metadata["version"] = outcome.version
    if len(padded) != len(image):
        result.add_warning(f"Image padded from {len(image)} to {len(padded)} bytes")
    for warning in outcome.warnings:
        result.add_warning(warning)
    if outcome.dry_run:
        result.add_warning("Dry run - nothing was written")
    if outcome.verified is not None:
        result.metadata["verified"] = outcome.verified
        if not outcome.verified:
            result.add_error("Device CRC does not match the image")
    return result


def probe_bootloader(
    port: str,
    fqbn: str,
    options: Optional[FlashOptions] = None,
    prompt: Optional[UserPrompt] = None,
    observer: Optional[UploadObserver] = None,
    transport: Optional[Transport] = None,
    clock: Optional[Clock] = None,
) -> OperationResult:
    """
    Find the bootloader and report its baud rate and version.

    Nothing is erased or written; bootloader entry still resets the board.
    """
    with _capture_logs() as logs:
        manager = UploadManager(clock=clock, observer=observer, prompt=prompt)
        transport = transport or SerialTransport(port)
        try:
            detection = manager.probe(transport, fqbn, options)
        except UploadError as e:
            result = OperationResult.failure("probe", str(e), board=fqbn, port=port)
            result.metadata.update(e.context())
            result.metadata["error_type"] = type(e).__name__
        except TransportError as e:
            result = OperationResult.failure("probe", f"Serial port error: {e}", board=fqbn, port=port)
        else:
            result = OperationResult.success("probe", board=fqbn, port=port)
            result.metadata["baudrate"] = detection.baudrate
            if detection.version:
                result.metadata["version"] = detection.version
    result.logs = list(logs)
    return result
