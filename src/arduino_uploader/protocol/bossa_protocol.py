"""
SAM-BA / BOSSA Protocol Implementation

Text command protocol spoken by the Renesas and SAMD Arduino bootloaders.

Commands are a letter, optional 8-digit lower-case hex fields separated by
commas, and a terminating '#':

- N#                 ping / normal mode, reply "\\n\\r"
- V#                 version string
- I#                 info string (optional)
- X<addr>#           erase from buffer-relative offset, delayed ack "X\\n\\r"
- S<addr>,<size>#    stage raw payload into the SRAM buffer, no ack
- Y<addr>,0#         set copy source, fast ack "Y\\n\\r"
- Y<addr>,<size>#    commit buffer to flash, ack after the write completes
- W<addr>,<value>#   register write, no ack
- Z<addr>,<size>#    CRC16 of a flash range, reply "Z<hex8>#\\n\\r"
- K#                 system reset, ack "K\\n\\r"
- G<addr>#           jump to address, no ack

Flash addresses in X/Y/Z are relative to the bootloader's sketch base; the
bootloader adds that base itself.
"""

import logging
import math
import re
from typing import Optional

from arduino_uploader.core.diagnostics import UploadObserver, bytes_to_hex
from arduino_uploader.core.errors import AckTimeoutError
from arduino_uploader.protocol.probe import printable_text
from arduino_uploader.protocol.transport import (
    CR,
    READ_SLICE,
    Clock,
    TimedOut,
    Transport,
    collect,
)

logger = logging.getLogger(__name__)

# Payload written after S# in slices of this size
SUB_CHUNK_SIZE = 512

# Ack deadlines (seconds)
FAST_ACK_TIMEOUT = 1.0
COMMIT_ACK_TIMEOUT = 5.0
ERASE_ACK_TIMEOUT = 10.0
RESET_ACK_TIMEOUT = 1.0
CHECKSUM_TIMEOUT = 5.0

_CHECKSUM_RE = re.compile(rb"Z([0-9A-Fa-f]{8})#")


class BossaProtocolError(Exception):
    """Malformed or missing reply from a SAM-BA bootloader"""
    pass


def encode_command(letter: str, *fields: int) -> bytes:
    """
    Build a SAM-BA command.

    Example:
        encode_command("Y", 0x34, 0)  ->  b"Y00000034,00000000#"
    """
    body = ",".join(f"{value:08x}" for value in fields)
    return f"{letter}{body}#".encode("ascii")


def crc16(data: bytes, crc: int = 0) -> int:
    """CRC16/XMODEM (poly 0x1021, init 0), as computed by the Z# command."""
    for byte in data:
        crc ^= byte << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = ((crc << 1) ^ 0x1021) & 0xFFFF
            else:
                crc = (crc << 1) & 0xFFFF
    return crc


def transmit_time(size: int, baudrate: int) -> float:
    """Seconds needed to push ``size`` bytes at 10 bits per byte."""
    return math.ceil(size * 10 * 1000 / baudrate) / 1000


class BossaProtocol:
    """
    SAM-BA command codec over an open transport.

    Example:
        bossa = BossaProtocol(transport, Clock(), baudrate=230400)
        version = bossa.hello()
        bossa.chip_erase(0)
        bossa.write_binary(0x34, chunk)
        bossa.write_buffer(0x34, 0, len(chunk))
        bossa.reset()
    """

    def __init__(
        self,
        transport: Transport,
        clock: Clock,
        baudrate: int = 230400,
        observer: Optional[UploadObserver] = None,
    ):
        self.transport = transport
        self.clock = clock
        self.baudrate = baudrate
        self.observer = observer or UploadObserver()
        self.last_command: Optional[str] = None

    def _send(self, command: bytes, purpose: str = "") -> None:
        text = command.decode("ascii")
        self.last_command = text
        self.observer.command(text, purpose)
        self.transport.write(command)

    def flush(self, duration: float = 0.2) -> int:
        """
        Drain stray input for ``duration`` seconds.

        Returns:
            Number of bytes discarded
        """
        flushed = 0
        deadline = self.clock.monotonic() + duration
        while True:
            remaining = deadline - self.clock.monotonic()
            if remaining <= 0:
                break
            result = self.transport.read(min(remaining, READ_SLICE))
            if isinstance(result, TimedOut):
                continue
            if result.done or not result.value:
                break
            flushed += len(result.value)
        if flushed:
            logger.info(f"Flushed {flushed} stray byte{'s' if flushed != 1 else ''} from serial buffer")
        return flushed

    def read_ack(self, timeout: float) -> bytes:
        """
        Collect an acknowledgement such as ``Y\\n\\r``.

        Reads until three bytes or a CR arrive, or the deadline passes.

        Returns:
            The bytes received (possibly empty)
        """
        return collect(self.transport, self.clock, timeout, terminator=CR, max_bytes=3)

    @staticmethod
    def ack_matches(letter: str, received: bytes) -> bool:
        return ord(letter) in received

    def expect_ack(self, letter: str, timeout: float, what: str) -> float:
        """
        Wait for an acknowledgement and fail hard if it does not come.

        Returns:
            Seconds spent waiting

        Raises:
            AckTimeoutError: No matching acknowledgement before the deadline
        """
        start = self.clock.monotonic()
        received = self.read_ack(timeout)
        elapsed = self.clock.monotonic() - start
        if not self.ack_matches(letter, received):
            logger.error(f"{self.last_command} ACK missing: received [{bytes_to_hex(received)}]")
            raise AckTimeoutError(
                f"{what}: no '{letter}' acknowledgement after {elapsed * 1000:.0f}ms",
                last_command=self.last_command,
                elapsed=elapsed,
                received=received,
            )
        self.observer.response(f"{self.last_command} ACK", f"{what} in {elapsed * 1000:.0f}ms")
        return elapsed

    def read_until_terminator(self, timeout: float = 1.0, max_bytes: int = 256) -> bytes:
        """
        Read a CR-terminated reply.

        Raises:
            BossaProtocolError: Nothing arrived before the deadline
        """
        data = collect(self.transport, self.clock, timeout, terminator=CR, max_bytes=max_bytes)
        if not data:
            raise BossaProtocolError(f"Timeout waiting for reply to {self.last_command}")
        return data

    def ping(self, timeout: float = 1.0) -> bool:
        """Send N# and report whether anything came back."""
        self._send(encode_command("N"), "Ping bootloader")
        data = collect(self.transport, self.clock, timeout, terminator=CR, max_bytes=16)
        if data:
            self.observer.received("N# reply", data)
        return bool(data)

    def read_version(self, timeout: float = 2.0) -> str:
        """
        Request the version string with V#.

        Raises:
            BossaProtocolError: No reply, or nothing printable in it
        """
        self._send(encode_command("V"), "Request bootloader version string")
        version = printable_text(self.read_until_terminator(timeout, max_bytes=256))
        if not version:
            raise BossaProtocolError("Empty version string")
        self.observer.response(version, "Bootloader version string")
        return version

    def read_info(self, timeout: float = 0.5) -> Optional[str]:
        """Request the I# info string; many bootloaders do not answer."""
        self._send(encode_command("I"), "Request bootloader info string")
        data = collect(self.transport, self.clock, timeout, terminator=CR, max_bytes=64)
        info = printable_text(data)
        if info:
            self.observer.response(info, "Bootloader info string")
            return info
        return None

    def hello(self, attempts: int = 3) -> str:
        """
        Full N# / V# / I# handshake, retried with a flush between attempts.

        Returns:
            Bootloader version string

        Raises:
            BossaProtocolError: Every attempt failed
        """
        last_error = None
        for attempt in range(1, attempts + 1):
            try:
                if not self.ping():
                    logger.warning("No ACK received after N# handshake command")
                self.clock.sleep(0.2)
                version = self.read_version()
                self.clock.sleep(0.025)
                self.read_info()
                logger.info("Handshake successful")
                return version
            except BossaProtocolError as e:
                last_error = e
                logger.warning(f"Handshake attempt {attempt} failed: {e}")
                if attempt < attempts:
                    self.flush(0.1)
                    self.clock.sleep(0.2)
        raise last_error

    def chip_erase(self, start: int, timeout: float = ERASE_ACK_TIMEOUT) -> float:
        """
        Erase flash from a buffer-relative offset and wait for the ack.

        Returns:
            Seconds the erase took

        Raises:
            AckTimeoutError: Erase was not acknowledged
        """
        self._send(encode_command("X", start), "Chip erase")
        return self.expect_ack("X", timeout, "Chip erase")

    def write_binary(self, address: int, data: bytes) -> None:
        """
        Stage ``data`` into the bootloader SRAM buffer at ``address``.

        No acknowledgement is sent; the call waits for the bytes to leave
        the wire instead.
        """
        self._send(
            encode_command("S", address, len(data)),
            f"Write {len(data)} bytes to data_buffer[0x{address:08x}]",
        )
        self.clock.sleep(0.005)
        for offset in range(0, len(data), SUB_CHUNK_SIZE):
            self.transport.write(data[offset:offset + SUB_CHUNK_SIZE])
        self.clock.sleep(transmit_time(len(data), self.baudrate) + 0.02)

    def write_buffer(
        self,
        source: int,
        destination: int,
        size: int,
        fast_timeout: float = FAST_ACK_TIMEOUT,
        commit_timeout: float = COMMIT_ACK_TIMEOUT,
    ) -> float:
        """
        Copy the staged buffer into flash.

        Sends ``Y<source>,0#`` to set the copy source, then
        ``Y<destination>,<size>#`` whose ack only arrives once the page
        has been written.

        Returns:
            Seconds spent waiting for the commit ack

        Raises:
            AckTimeoutError: Either Y command was not acknowledged
        """
        self._send(encode_command("Y", source, 0), "Set copy source in data_buffer")
        self.expect_ack("Y", fast_timeout, "Copy source accepted")
        self.clock.sleep(0.002)
        self._send(encode_command("Y", destination, size), f"Commit {size} bytes to flash")
        return self.expect_ack("Y", commit_timeout, f"Copied {size} bytes to flash")

    def write_word(self, address: int, value: int) -> None:
        """Write a 32-bit register value (no ack)."""
        self._send(encode_command("W", address, value), "Register write")
        self.clock.sleep(0.002)

    def checksum(self, address: int, size: int, timeout: float = CHECKSUM_TIMEOUT) -> int:
        """
        Ask the bootloader for the CRC16 of a flash range.

        Raises:
            BossaProtocolError: Reply missing or not of the form Z<hex8>#
        """
        self.clock.sleep(0.1)
        self.flush(0.05)
        self._send(encode_command("Z", address, size), "Device CRC of flash range")
        reply = self.read_until_terminator(timeout, max_bytes=16)
        match = _CHECKSUM_RE.search(reply)
        if not match:
            raise BossaProtocolError(f"Unexpected Z# reply: {bytes_to_hex(reply)}")
        return int(match.group(1), 16)

    def verify(self, address: int, expected: bytes) -> bool:
        """Compare the device CRC of a range with the CRC of ``expected``."""
        device_crc = self.checksum(address, len(expected))
        expected_crc = crc16(expected)
        logger.info(f"Flash CRC: 0x{device_crc:04x}, expected: 0x{expected_crc:04x}")
        return device_crc == expected_crc

    def reset(self, timeout: float = RESET_ACK_TIMEOUT) -> bool:
        """
        Send K# so the bootloader resets and boots the new image.

        Returns:
            True if the reset was acknowledged; boards often reset too
            quickly to answer
        """
        self.flush(0.1)
        self._send(encode_command("K"), "System reset")
        received = self.read_ack(timeout)
        if self.ack_matches("K", received):
            self.observer.response("K# ACK", "Board acknowledged reset command")
            return True
        logger.warning("No ACK to K# (board likely reset immediately)")
        return False

    def go(self, address: int) -> None:
        """Jump to ``address`` without a reset (no ack)."""
        self._send(encode_command("G", address), f"Execute from 0x{address:08X}")
