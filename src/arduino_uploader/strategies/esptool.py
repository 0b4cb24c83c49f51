"""
ESP ROM loader upload strategy (ESP32 / ESP8266).

Bootloader entry drives DTR (IO0, boot select) and RTS (EN, reset) through
the usual dev-board transistor pair, which inverts both lines. Levels here
are the logical values to write, already inverted:

    1. DTR=0 RTS=1   hold the chip in reset
    2. DTR=1 RTS=0   select the ROM loader while releasing reset
    3. DTR=0 RTS=0   release boot select, chip keeps running the loader

The ROM loader runs at a fixed rate, so a failed SYNC is final; there is no
rate scan.
"""

import logging
from typing import Optional

from arduino_uploader.core.errors import AckTimeoutError, SyncFailureError, UploadError
from arduino_uploader.core.firmware import FirmwareImage
from arduino_uploader.models.registry import BoardConfig, EspTiming
from arduino_uploader.protocol.esptool_protocol import (
    EspProtocolError,
    EspRomProtocol,
    EspTimeout,
    pad_block,
)
from arduino_uploader.protocol.probe import DetectionResult
from arduino_uploader.protocol.transport import Transport, safe_close
from arduino_uploader.strategies.base import (
    FlashOptions,
    FlashOutcome,
    ProgressCallback,
    ProgressReporter,
    UploadStrategy,
)

logger = logging.getLogger(__name__)


class EspToolStrategy(UploadStrategy):
    """Upload strategy for the ESP32 / ESP8266 ROM loader."""

    name = "ESPTool (ESP32/ESP8266)"

    def _set(self, transport: Transport, dtr: bool, rts: bool, wait: float, purpose: str) -> None:
        self.observer.signal("DTR", dtr, purpose)
        self.observer.signal("RTS", rts)
        transport.set_signals(dtr=dtr, rts=rts)
        self.observer.wait(wait)
        self.clock.sleep(wait)

    def enter_bootloader(self, transport: Transport, timing: EspTiming) -> None:
        """Run the 3-step reset sequence on an open port."""
        self._set(transport, False, True, timing.reset_hold, "Hold chip in reset")
        self._set(transport, True, False, timing.boot_wait, "Select ROM loader, release reset")
        self._set(transport, False, False, timing.release_settle, "Release boot select")

    def reset_to_run(self, transport: Transport, timing: EspTiming) -> None:
        """Pulse EN so the chip boots the new application."""
        self._set(transport, False, True, timing.run_pulse, "Reset")
        self.observer.signal("RTS", False, "Run")
        transport.set_signals(dtr=False, rts=False)

    def prepare(self, transport: Transport, board: BoardConfig) -> None:
        self.observer.section("PREPARE: Entering ESP ROM loader")
        vendor_id, product_id = transport.get_device_id()
        self.observer.device(vendor_id, product_id, "USB-UART bridge")
        timing = board.esp_timing

        safe_close(transport, self.clock)
        try:
            transport.open(board.baud_rate)
            self.enter_bootloader(transport, timing)
        finally:
            safe_close(transport, self.clock)
        logger.info("Reset sequence complete, ESP should be in its ROM loader")

    def _sync(self, esp: EspRomProtocol, board: BoardConfig) -> None:
        start = self.clock.monotonic()
        if not esp.sync(board.esp_timing.sync_attempts):
            raise SyncFailureError(
                f"Failed to sync with the ESP ROM loader at {board.baud_rate} baud",
                last_command="SYNC",
                elapsed=self.clock.monotonic() - start,
            )
        logger.info("Synced with ESP ROM loader")

    def probe(self, transport: Transport, board: BoardConfig) -> DetectionResult:
        safe_close(transport, self.clock)
        try:
            transport.open(board.baud_rate)
            self._sync(EspRomProtocol(transport, self.clock, board.status_bytes, self.observer), board)
        finally:
            safe_close(transport, self.clock)
        return DetectionResult(baudrate=board.baud_rate)

    def flash(
        self,
        transport: Transport,
        firmware: FirmwareImage,
        on_progress: Optional[ProgressCallback],
        board: BoardConfig,
        options: Optional[FlashOptions] = None,
    ) -> FlashOutcome:
        """
        Sync with the ROM loader and write ``firmware``.

        Raises:
            SyncFailureError: ROM loader never answered SYNC
            AckTimeoutError: A flash command went unanswered
            UploadError: The loader reported a failure status
        """
        options = options or FlashOptions()
        board = options.apply(board)
        timing = board.esp_timing
        block_size = board.layout.chunk_size
        offset = board.layout.flash_write_offset
        progress = ProgressReporter(on_progress)
        warnings = []
        start = self.clock.monotonic()

        self.observer.section("FLASH: Uploading firmware via ESP ROM loader")
        blocks = firmware.chunk_count(block_size)

        safe_close(transport, self.clock)
        try:
            progress(5, f"Connecting at {board.baud_rate} baud...")
            transport.open(board.baud_rate)
            esp = EspRomProtocol(transport, self.clock, board.status_bytes, self.observer)
            self._sync(esp, board)
            progress(10, "Synced")

            try:
                self.observer.memory("FLASH_BEGIN", offset, len(firmware), f"{blocks} blocks of {block_size} bytes")
                progress(12, "Erasing...")
                esp.flash_begin(len(firmware), blocks, block_size, offset)
                self.observer.wait(timing.erase_settle, "Flash erase settle")
                self.clock.sleep(timing.erase_settle)

                progress(15, "Writing flash...")
                for sequence, (position, block) in enumerate(firmware.chunks(block_size)):
                    self.observer.chunk(sequence + 1, blocks, offset + position, len(block), sequence == blocks - 1)
                    esp.flash_data(pad_block(block, block_size), sequence)
                    progress(15 + (sequence + 1) / blocks * 80, f"Block {sequence + 1}/{blocks}")

                progress(96, "Finalizing...")
                if not esp.flash_finish(reboot=True):
                    warnings.append("No reply to FLASH_END; chip likely rebooted")
            except EspTimeout as e:
                raise AckTimeoutError(
                    str(e),
                    last_command=esp.last_command,
                    elapsed=self.clock.monotonic() - start,
                ) from e
            except EspProtocolError as e:
                raise UploadError(
                    str(e),
                    last_command=esp.last_command,
                    elapsed=self.clock.monotonic() - start,
                ) from e

            progress(98, "Resetting...")
            self.reset_to_run(transport, timing)
            progress(100, "Complete!")
            logger.info("ESP should now be running the new firmware")
            return FlashOutcome(
                baudrate=board.baud_rate,
                bytes_written=blocks * block_size,
                chunks=blocks,
                warnings=warnings,
                elapsed=self.clock.monotonic() - start,
            )
        finally:
            safe_close(transport, self.clock)
