"""
BOSSA / SAM-BA upload strategy (Renesas, SAMD and mbed Arduino boards).

Flow:
    Closed -> BootloaderEntry -> BaudProbing -> Handshake
    -> [ApplyFlashApplet] -> Erase -> WriteChunks(n) -> Commit
    -> VerifyResponsive -> Reset -> Closed

Bootloader entry is the 1200-baud touch: open at 1200, raise DTR and RTS,
reopen at 1200 to force a second SET_LINE_CODING, then drop DTR with RTS
still high. That DTR edge starts the bootloader. Boards already reporting
a bootloader PID are left alone.

Each chunk is staged into the same SRAM buffer offset with S#, selected as
the copy source with Y<buf>,0# and committed with Y<dst>,<size>#, whose
ack only arrives once the flash page has been written.
"""

import logging
from typing import Optional

from arduino_uploader.core.errors import (
    ManualInterventionRequired,
    NoResponseError,
    PostWriteUnresponsive,
    UserCancelledError,
    WrongBaudError,
)
from arduino_uploader.core.firmware import FirmwareImage
from arduino_uploader.core.session import Session
from arduino_uploader.models.registry import BoardConfig, BossaTiming, MemoryLayout
from arduino_uploader.protocol.bossa_protocol import BossaProtocol, BossaProtocolError
from arduino_uploader.protocol.probe import BaudDetector, DetectionResult, ProbeKind
from arduino_uploader.protocol.transport import Transport, safe_close
from arduino_uploader.strategies.base import (
    FlashOptions,
    FlashOutcome,
    ProgressCallback,
    ProgressReporter,
    UploadStrategy,
)

logger = logging.getLogger(__name__)

MANUAL_RESET_MESSAGE = (
    "MANUAL RESET REQUIRED\n\n"
    "The bootloader could not be reached automatically.\n\n"
    "1. Find the RESET button on your board\n"
    "2. Double-tap it quickly\n"
    "3. The built-in LED should start pulsing\n"
    "4. Continue within 8 seconds\n\n"
    "Continue when the LED is pulsing?"
)


class BossaStrategy(UploadStrategy):
    """
    Upload strategy for SAM-BA bootloaders.

    Example:
        strategy = BossaStrategy(prompt=CallbackPrompt(typer.confirm))
        board = resolve_board("arduino:renesas_uno:unor4wifi")
        strategy.prepare(transport, board)
        outcome = strategy.flash(transport, image, print_progress, board)
    """

    name = "BOSSA/SAM-BA"

    # ------------------------------------------------------------------
    # Bootloader entry
    # ------------------------------------------------------------------

    def prepare(self, transport: Transport, board: BoardConfig) -> None:
        self.observer.section("PREPARE: Bootloader entry for BOSSA/SAM-BA")
        vendor_id, product_id = transport.get_device_id()
        self.observer.device(vendor_id, product_id, "Checking for bootloader mode")

        if board.is_bootloader_pid(product_id):
            logger.info(f"Device already in bootloader mode (PID 0x{product_id:04X})")
            return

        self.touch(transport, board.bossa_timing)

    def touch(self, transport: Transport, timing: BossaTiming) -> None:
        """Run the 1200-baud touch and wait for the board to come back."""
        self.observer.section("1200 BAUD TOUCH SEQUENCE")
        safe_close(transport, self.clock, timing.os_settle)
        try:
            self.observer.serial_config(timing.touch_baud, "First SET_LINE_CODING")
            transport.open(timing.touch_baud)
            self.observer.signal("DTR", True, "Both control lines high")
            self.observer.signal("RTS", True)
            transport.set_signals(dtr=True, rts=True)

            self.observer.info("Forcing second SET_LINE_CODING by close/reopen")
            transport.close()
            self.clock.sleep(timing.touch_reopen_delay)
            transport.open(timing.touch_baud)

            self.observer.signal("DTR", False, "DTR falling edge resets into the bootloader")
            self.observer.signal("RTS", True)
            transport.set_signals(dtr=False, rts=True)
        finally:
            safe_close(transport, self.clock, timing.os_settle)

        self.observer.wait(timing.touch_settle, "Wait for the board to enter the bootloader")
        self.clock.sleep(timing.touch_settle)
        logger.info("1200 baud touch complete")

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def _detector(self, transport: Transport, board: BoardConfig) -> BaudDetector:
        timing = board.bossa_timing
        return BaudDetector(
            transport,
            self.clock,
            board.baud_rate,
            board.fallback_baud_rates,
            primary_timeout=timing.primary_timeout,
            fallback_timeout=timing.fallback_timeout,
            version_timeout=timing.version_timeout,
            observer=self.observer,
        )

    def detect(
        self,
        transport: Transport,
        board: BoardConfig,
        progress: Optional[ProgressReporter] = None,
    ) -> DetectionResult:
        """
        Find the bootloader, asking the user for a manual reset if needed.

        Raises:
            NoResponseError: Primary rate silent and no prompt available
            WrongBaudError: Scan exhausted and no prompt available
            UserCancelledError: User declined the manual reset prompt
            ManualInterventionRequired: Still nothing after the manual reset
        """
        progress = progress or ProgressReporter()
        detector = self._detector(transport, board)
        try:
            return detector.detect()
        except (NoResponseError, WrongBaudError) as e:
            if self.prompt is None:
                raise
            first_error = e

        timing = board.bossa_timing
        self.observer.section("MANUAL BOOTLOADER ENTRY REQUIRED")
        self.observer.warn(f"Automatic detection failed: {first_error}")
        if not self.prompt.confirm(MANUAL_RESET_MESSAGE):
            raise UserCancelledError(
                "Upload cancelled by user",
                last_command=first_error.last_command,
                elapsed=first_error.elapsed,
            )

        self.observer.wait(timing.manual_reset_wait, "Wait for the board to enter the bootloader")
        self.clock.sleep(timing.manual_reset_wait)
        progress(5, f"Retrying at {board.baud_rate}...")

        retry = detector.probe(board.baud_rate, timing.primary_timeout)
        if retry.kind is not ProbeKind.ASCII:
            raise ManualInterventionRequired(
                "Failed to connect to the bootloader after a manual reset. "
                "Double-tap RESET quickly (the LED should pulse) and upload "
                "within 8 seconds.",
                last_command=detector.probe_command.decode("ascii"),
                elapsed=retry.elapsed,
                received=retry.received,
            )
        return DetectionResult(baudrate=retry.baudrate, version=detector.read_version(), attempts=[retry])

    def probe(self, transport: Transport, board: BoardConfig) -> DetectionResult:
        try:
            return self.detect(transport, board)
        finally:
            safe_close(transport, self.clock, board.bossa_timing.os_settle)

    # ------------------------------------------------------------------
    # Flash
    # ------------------------------------------------------------------

    @staticmethod
    def new_session(layout: MemoryLayout, baudrate: int) -> Session:
        return Session(
            baudrate=baudrate,
            chunk_size=layout.chunk_size,
            flash_write_offset=layout.flash_write_offset,
            go_offset=layout.go_offset,
            sram_buffer_offset=layout.sram_buffer_offset,
            flash_base=layout.flash_base,
        )

    def apply_applet(self, bossa: BossaProtocol, layout: MemoryLayout) -> None:
        """Stage the family's flash applet and configure its registers."""
        self.observer.section("FLASH APPLET UPLOAD")
        self.observer.memory("APPLET", 0, len(layout.applet), "Stage applet at data_buffer[0]")
        bossa.write_binary(0x00, layout.applet)
        for address, value in layout.applet_registers:
            bossa.write_word(address, value)
        logger.info("Flash applet uploaded, registers configured")

    def write_chunks(
        self,
        bossa: BossaProtocol,
        session: Session,
        image: FirmwareImage,
        progress: ProgressReporter,
        timing: BossaTiming,
    ) -> Session:
        """
        Stage and commit every chunk in order.

        Returns:
            Session with the write offset advanced past the image
        """
        self.observer.section("FLASH WRITE")
        total = image.chunk_count(session.chunk_size)
        written = 0
        for index, (_, chunk) in enumerate(image.chunks(session.chunk_size), 1):
            is_last = index == total
            self.observer.chunk(
                index, total, session.physical(session.flash_write_offset), len(chunk), is_last
            )
            bossa.write_binary(session.sram_buffer_offset, chunk)
            bossa.write_buffer(
                session.sram_buffer_offset,
                session.flash_write_offset,
                len(chunk),
                fast_timeout=timing.fast_ack,
                commit_timeout=timing.commit_ack,
            )
            session = session.advanced(len(chunk))
            written += len(chunk)
            progress(15 + written / len(image) * 80, f"Chunk {index}/{total}")

            delay = timing.final_chunk if is_last else timing.inter_chunk
            self.observer.wait(delay, "Final chunk commit" if is_last else "Inter-chunk settle")
            self.clock.sleep(delay)
        return session

    def flash(
        self,
        transport: Transport,
        firmware: FirmwareImage,
        on_progress: Optional[ProgressCallback],
        board: BoardConfig,
        options: Optional[FlashOptions] = None,
    ) -> FlashOutcome:
        """
        Detect the bootloader and write ``firmware``.

        Raises:
            NoResponseError, WrongBaudError, UserCancelledError,
            ManualInterventionRequired: Bootloader not reached
            AckTimeoutError: Erase or commit not acknowledged
        """
        options = options or FlashOptions()
        board = options.apply(board)
        timing = board.bossa_timing
        layout = board.layout
        progress = ProgressReporter(on_progress)
        warnings = []
        start = self.clock.monotonic()

        self.observer.section("FLASH: Uploading firmware via SAM-BA")
        self.observer.info(f"Firmware size: {len(firmware)} bytes, board {board.fqbn_prefix}")

        try:
            progress(5, f"Connecting at {board.baud_rate} baud...")
            session = self.new_session(layout, board.baud_rate)
            detection = self.detect(transport, board, progress)
            session = session.with_baudrate(detection.baudrate, detection.version)
            if session.version is None:
                warnings.append("Bootloader sent no version string")

            bossa = BossaProtocol(transport, self.clock, session.baudrate, self.observer)
            bossa.read_info()
            progress(10, f"Connected at {session.baudrate}")

            image = firmware.pad(session.chunk_size)
            if len(image) != len(firmware):
                self.observer.info(
                    f"Firmware: {len(firmware)} bytes padded to {len(image)} "
                    f"({session.chunk_size}-byte boundary)"
                )
            self.observer.memory(
                "FLASH_WRITE",
                session.physical(session.flash_write_offset),
                len(image),
                f"Wire offset 0x{session.flash_write_offset:08X}",
            )

            if layout.needs_applet:
                progress(10, "Uploading flash applet...")
                self.apply_applet(bossa, layout)

            self.observer.section("FLASH ERASE")
            progress(12, "Erasing flash...")
            bossa.chip_erase(session.flash_write_offset, timeout=timing.erase_ack)

            progress(15, "Writing flash...")
            write_start = session.flash_write_offset
            session = self.write_chunks(bossa, session, image, progress, timing)

            self.observer.section("FLASH COMMIT")
            self.observer.wait(timing.commit_settle, "Let the flash controller finish every page")
            self.clock.sleep(timing.commit_settle)

            verified = None
            if bossa.ping(timing.fast_ack):
                logger.info("Bootloader still responsive after flash write")
                if options.verify:
                    try:
                        verified = bossa.verify(write_start, image.data)
                    except BossaProtocolError as e:
                        logger.warning(f"CRC verification failed: {e}")
                        verified = False
                    if not verified:
                        warnings.append("Device CRC mismatch after write")
            else:
                warning = PostWriteUnresponsive(
                    "Bootloader unresponsive after write; proceeding with reset",
                    last_command=bossa.last_command,
                )
                logger.warning(str(warning))
                warnings.append(str(warning))
                if options.verify:
                    warnings.append("CRC verification skipped: bootloader unresponsive")

            progress(96, "Finalizing...")
            self.observer.section("RESET DEVICE")
            progress(98, "Resetting...")
            if not bossa.reset():
                warnings.append("Reset command was not acknowledged")

            progress(100, "Complete!")
            logger.info("Firmware upload complete")
            return FlashOutcome(
                baudrate=session.baudrate,
                bytes_written=len(image),
                chunks=image.chunk_count(session.chunk_size),
                version=session.version,
                verified=verified,
                warnings=warnings,
                elapsed=self.clock.monotonic() - start,
            )
        finally:
            safe_close(transport, self.clock, timing.os_settle)
