"""
ESP ROM Bootloader Protocol

Binary command protocol of the ESP32 / ESP8266 mask-ROM loader, carried in
SLIP frames.

Request:   <BBHI  direction=0, opcode, payload length, checksum  + payload
Response:  <BBHI  direction=1, opcode, payload length, value     + payload

The response payload ends with status bytes (4 on ESP32, 2 on ESP8266);
the first is non-zero on failure and the second carries the error code.
"""

import logging
import struct
from dataclasses import dataclass
from typing import List, Optional

from arduino_uploader.core.diagnostics import UploadObserver
from arduino_uploader.protocol import slip
from arduino_uploader.protocol.transport import (
    READ_SLICE,
    Clock,
    TimedOut,
    Transport,
)

logger = logging.getLogger(__name__)

DIRECTION_REQUEST = 0x00
DIRECTION_RESPONSE = 0x01

OP_FLASH_BEGIN = 0x02
OP_FLASH_DATA = 0x03
OP_FLASH_END = 0x04
OP_SYNC = 0x08

SYNC_PAYLOAD = b"\x07\x07\x12\x20" + b"\x55" * 32
CHECKSUM_SEED = 0xEF
FLASH_BLOCK_SIZE = 0x400
PAD_BYTE = 0xFF

STATUS_BYTES_ESP32 = 4
STATUS_BYTES_ESP8266 = 2

# The ROM answers one SYNC with eight replies
SYNC_EXTRA_REPLIES = 7
SYNC_ATTEMPTS = 10
SYNC_TIMEOUT = 0.1

DEFAULT_TIMEOUT = 3.0
ERASE_TIMEOUT_PER_MB = 30.0

_HEADER = struct.Struct("<BBHI")


class EspProtocolError(Exception):
    """Malformed reply or failure status from the ESP ROM loader"""
    pass


class EspTimeout(EspProtocolError):
    """No reply to a command before its deadline"""
    pass


@dataclass(frozen=True)
class EspResponse:
    """A decoded response packet."""
    opcode: int
    value: int
    data: bytes
    failed: bool
    error: int


def checksum(data: bytes, seed: int = CHECKSUM_SEED) -> int:
    """XOR checksum over a FLASH_DATA payload."""
    for byte in data:
        seed ^= byte
    return seed


def erase_timeout(size: int) -> float:
    """Deadline for FLASH_BEGIN, which erases ``size`` bytes first."""
    return max(DEFAULT_TIMEOUT, ERASE_TIMEOUT_PER_MB * size / 1e6)


def build_command(opcode: int, data: bytes = b"", chk: int = 0) -> bytes:
    """Build an unframed request packet."""
    return _HEADER.pack(DIRECTION_REQUEST, opcode, len(data), chk) + data


def parse_response(packet: bytes, status_bytes: int = STATUS_BYTES_ESP32) -> Optional[EspResponse]:
    """
    Decode a response packet.

    Returns:
        EspResponse, or None if the packet is not a response

    Raises:
        EspProtocolError: Packet is truncated
    """
    if len(packet) < _HEADER.size:
        raise EspProtocolError(f"Short packet ({len(packet)} bytes)")
    direction, opcode, length, value = _HEADER.unpack_from(packet)
    if direction != DIRECTION_RESPONSE:
        return None
    body = packet[_HEADER.size:_HEADER.size + length]
    if len(body) < status_bytes:
        raise EspProtocolError(
            f"Response to 0x{opcode:02x} has {len(body)} data bytes, "
            f"expected at least {status_bytes} status bytes"
        )
    status = body[-status_bytes:]
    return EspResponse(
        opcode=opcode,
        value=value,
        data=body[:-status_bytes],
        failed=status[0] != 0,
        error=status[1],
    )


def flash_begin_payload(size: int, blocks: int, block_size: int, offset: int) -> bytes:
    return struct.pack("<IIII", size, blocks, block_size, offset)


def flash_data_payload(block: bytes, sequence: int) -> bytes:
    return struct.pack("<IIII", len(block), sequence, 0, 0) + block


def flash_end_payload(reboot: bool) -> bytes:
    # 0 = reboot into the app, 1 = stay in the loader
    return struct.pack("<I", int(not reboot))


def pad_block(block: bytes, block_size: int = FLASH_BLOCK_SIZE) -> bytes:
    """Right-fill a block with erased-flash bytes."""
    return block + bytes([PAD_BYTE]) * (block_size - len(block))


class EspRomProtocol:
    """
    ESP ROM loader codec over an open transport.

    Example:
        esp = EspRomProtocol(transport, Clock())
        if esp.sync():
            esp.flash_begin(len(image), blocks, 0x400, 0x10000)
            for seq, block in enumerate(blocks_of(image)):
                esp.flash_data(block, seq)
            esp.flash_finish(reboot=True)
    """

    def __init__(
        self,
        transport: Transport,
        clock: Clock,
        status_bytes: int = STATUS_BYTES_ESP32,
        observer: Optional[UploadObserver] = None,
    ):
        self.transport = transport
        self.clock = clock
        self.status_bytes = status_bytes
        self.observer = observer or UploadObserver()
        self.decoder = slip.SlipDecoder()
        self._pending: List[bytes] = []
        self.last_command: Optional[str] = None

    def send_command(self, opcode: int, data: bytes = b"", chk: int = 0) -> None:
        self.last_command = f"op=0x{opcode:02x} len={len(data)}"
        logger.debug(f"Sending op 0x{opcode:02x}, {len(data)} bytes")
        self.transport.write(slip.encode(build_command(opcode, data, chk)))

    def read_packet(self, timeout: float) -> bytes:
        """
        Return the next complete SLIP packet.

        Raises:
            EspTimeout: No complete packet before the deadline
        """
        deadline = self.clock.monotonic() + timeout
        while not self._pending:
            remaining = deadline - self.clock.monotonic()
            if remaining <= 0:
                raise EspTimeout(f"Timeout waiting for reply to {self.last_command}")
            result = self.transport.read(min(remaining, READ_SLICE))
            if isinstance(result, TimedOut):
                continue
            if result.done:
                raise EspTimeout(f"Port closed while waiting for reply to {self.last_command}")
            self._pending.extend(self.decoder.feed(result.value))
        return self._pending.pop(0)

    def read_response(self, opcode: int, timeout: float) -> EspResponse:
        """Wait for the response to ``opcode``, skipping unrelated packets."""
        deadline = self.clock.monotonic() + timeout
        while True:
            remaining = max(0.0, deadline - self.clock.monotonic())
            packet = self.read_packet(remaining)
            response = parse_response(packet, self.status_bytes)
            if response is not None and response.opcode == opcode:
                return response
            logger.debug(f"Ignoring packet {packet[:8].hex()}")

    def command(
        self,
        opcode: int,
        data: bytes = b"",
        chk: int = 0,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> EspResponse:
        """
        Send a command and check its status.

        Raises:
            EspTimeout: No reply
            EspProtocolError: Loader reported failure
        """
        self.send_command(opcode, data, chk)
        response = self.read_response(opcode, timeout)
        if response.failed:
            raise EspProtocolError(
                f"Command 0x{opcode:02x} failed with error 0x{response.error:02x}"
            )
        return response

    def flush_input(self) -> None:
        self.transport.reset_input_buffer()
        self.decoder.reset()
        self._pending = []

    def sync(self, attempts: int = SYNC_ATTEMPTS) -> bool:
        """
        Synchronise with the ROM loader.

        Returns:
            True once a SYNC reply arrives, False after ``attempts`` tries
        """
        for attempt in range(1, attempts + 1):
            self.flush_input()
            self.observer.command("SYNC", f"Attempt {attempt}/{attempts}")
            try:
                self.command(OP_SYNC, SYNC_PAYLOAD, timeout=SYNC_TIMEOUT)
            except EspProtocolError as e:
                logger.debug(f"Sync attempt {attempt} failed: {e}")
                continue
            for _ in range(SYNC_EXTRA_REPLIES):
                try:
                    self.read_response(OP_SYNC, SYNC_TIMEOUT)
                except EspTimeout:
                    break
            return True
        return False

    def flash_begin(self, size: int, blocks: int, block_size: int, offset: int) -> EspResponse:
        """Start a flash write; the loader erases the region before replying."""
        return self.command(
            OP_FLASH_BEGIN,
            flash_begin_payload(size, blocks, block_size, offset),
            timeout=erase_timeout(size),
        )

    def flash_data(self, block: bytes, sequence: int) -> EspResponse:
        """Write one block. ``block`` must already be padded to the block size."""
        return self.command(
            OP_FLASH_DATA,
            flash_data_payload(block, sequence),
            chk=checksum(block),
        )

    def flash_finish(self, reboot: bool = True) -> bool:
        """
        Finish the flash write.

        Returns:
            True if the loader acknowledged; when rebooting the chip may
            restart before it can answer, which is reported as False

        Raises:
            EspProtocolError: Loader reported failure, or no reply while
                staying in the loader
        """
        try:
            self.command(OP_FLASH_END, flash_end_payload(reboot))
        except EspTimeout:
            if not reboot:
                raise
            logger.warning("No reply to FLASH_END (chip likely rebooted)")
            return False
        return True
