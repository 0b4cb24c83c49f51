"""Shared fakes: a simulated clock and scripted bootloader transports."""

import re
import struct
from typing import Dict, List, Optional, Tuple

import pytest

from arduino_uploader.protocol import slip
from arduino_uploader.protocol.bossa_protocol import crc16
from arduino_uploader.protocol.transport import (
    Clock,
    Data,
    TimedOut,
    Transport,
    TransportError,
)

GARBAGE = b"\xf0\x8a\x13\xfe\x99"
VERSION = b"Arduino Bootloader (SAM-BA extended) 2.0 [Arduino:IKXYZ]\n\r"

_COMMAND_RE = re.compile(r"^([A-Z])([0-9a-f]{8})?(?:,([0-9a-f]{8}))?#$")


class FakeClock(Clock):
    """Simulated time; sleeping advances it instantly."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def monotonic(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            self.sleeps.append(seconds)
            self.now += seconds


class FakeTransport(Transport):
    """
    Records every call and answers from a scripted device model.

    A read with nothing pending advances the clock by its timeout and
    returns TimedOut, like a real port would after waiting.
    """

    def __init__(self, clock: FakeClock, device_baud: int, product_id: Optional[int] = None):
        self.clock = clock
        self.device_baud = device_baud
        self.product_id = product_id
        self.baudrate: Optional[int] = None
        self._open = False
        self.rx = bytearray()
        self.events: List[tuple] = []
        self.writes: List[bytes] = []
        # (due time, bytes) still on the wire
        self.pending: List[Tuple[float, bytes]] = []

    @property
    def is_open(self) -> bool:
        return self._open

    def open(self, baudrate: int) -> None:
        if self._open:
            raise TransportError("Port is still open")
        self._open = True
        self.baudrate = baudrate
        self.rx.clear()
        self.pending.clear()
        self.events.append(("open", baudrate))

    def close(self) -> None:
        self._open = False
        self.events.append(("close",))

    def set_signals(self, dtr: bool, rts: bool) -> None:
        if not self._open:
            raise TransportError("Serial port not open")
        self.events.append(("signals", dtr, rts))

    def get_device_id(self) -> Tuple[Optional[int], Optional[int]]:
        return (0x2341, self.product_id)

    def write(self, data: bytes) -> None:
        if not self._open:
            raise TransportError("Serial port not open")
        self.writes.append(bytes(data))
        self.handle(bytes(data))

    def read(self, timeout: float):
        if not self._open:
            return Data(done=True)
        if not self.rx and self.pending:
            due, data = self.pending[0]
            if due <= self.clock.now + timeout:
                self.pending.pop(0)
                self.clock.now = max(self.clock.now, due)
                self.rx.extend(data)
        if self.rx:
            data = bytes(self.rx)
            self.rx.clear()
            return Data(value=data)
        self.clock.now += timeout
        return TimedOut(waited=timeout)

    def reset_input_buffer(self) -> None:
        self.rx.clear()

    def handle(self, data: bytes) -> None:
        raise NotImplementedError

    @property
    def opened_bauds(self) -> List[int]:
        return [event[1] for event in self.events if event[0] == "open"]

    @property
    def signals(self) -> List[Tuple[bool, bool]]:
        return [(event[1], event[2]) for event in self.events if event[0] == "signals"]


class FakeBossaBoard(FakeTransport):
    """
    SAM-BA bootloader model.

    Answers at ``device_baud`` only; any other rate gets framing garbage.
    ``S#`` payload bytes are staged per buffer address and committed to a
    flash map by ``Y<dst>,<size>#`` so ``Z#`` returns a real CRC.
    """

    def __init__(
        self,
        clock: FakeClock,
        device_baud: int = 230400,
        product_id: Optional[int] = None,
        responsive: bool = True,
        version: bytes = VERSION,
        info: bytes = b"",
        erase_ack: bool = True,
        reset_ack: bool = True,
        silent_after_commit: bool = False,
        version_failures: int = 0,
        version_gap: Optional[float] = None,
        commit_ack_limit: Optional[int] = None,
    ):
        super().__init__(clock, device_baud, product_id)
        self.responsive = responsive
        self.version = version
        self.info = info
        self.erase_ack = erase_ack
        self.reset_ack = reset_ack
        self.silent_after_commit = silent_after_commit
        self.version_failures = version_failures
        self.version_gap = version_gap
        self.commit_ack_limit = commit_ack_limit
        self.commits = 0
        self.commands: List[str] = []
        self.sram: Dict[int, bytes] = {}
        self.flash: Dict[int, bytes] = {}
        self.registers: Dict[int, int] = {}
        self._source = 0
        self._payload_address = 0
        self._payload_remaining = 0
        self._payload = bytearray()
        self._committed = False

    def handle(self, data: bytes) -> None:
        if self._payload_remaining:
            self._payload.extend(data)
            self._payload_remaining -= len(data)
            if self._payload_remaining <= 0:
                self.sram[self._payload_address] = bytes(self._payload)
                self._payload_remaining = 0
            return

        text = data.decode("ascii")
        self.commands.append(text)
        if not self.responsive:
            return
        if self.baudrate != self.device_baud:
            self.rx.extend(GARBAGE)
            return

        match = _COMMAND_RE.match(text)
        assert match, f"malformed command {text!r}"
        letter = match.group(1)
        first = int(match.group(2), 16) if match.group(2) else None
        second = int(match.group(3), 16) if match.group(3) else None

        if letter == "N":
            if not (self.silent_after_commit and self._committed):
                self.rx.extend(b"\n\r")
        elif letter == "V":
            if self.version_failures:
                self.version_failures -= 1
            else:
                self.send_version()
        elif letter == "I":
            self.rx.extend(self.info)
        elif letter == "X":
            if self.erase_ack:
                self.rx.extend(b"X\n\r")
        elif letter == "S":
            self._payload_address = first
            self._payload_remaining = second
            self._payload = bytearray()
        elif letter == "Y":
            if second == 0:
                self._source = first
            else:
                self.commits += 1
                if self.commit_ack_limit is not None and self.commits > self.commit_ack_limit:
                    return
                self.flash[first] = self.sram[self._source][:second]
                self._committed = True
            self.rx.extend(b"Y\n\r")
        elif letter == "W":
            self.registers[first] = second
        elif letter == "Z":
            self.rx.extend(f"Z{crc16(self.read_flash(first, second)):08x}#\n\r".encode("ascii"))
        elif letter == "K":
            if self.reset_ack:
                self.rx.extend(b"K\n\r")

    def send_version(self) -> None:
        if self.version_gap is None:
            self.rx.extend(self.version)
            return
        # Second half arrives in a later USB packet
        cut = len(self.version) // 2
        self.rx.extend(self.version[:cut])
        self.pending.append((self.clock.now + self.version_gap, self.version[cut:]))

    def read_flash(self, address: int, size: int) -> bytes:
        data = b"".join(
            self.flash[key] for key in sorted(self.flash)
            if address <= key < address + size
        )
        return data[:size]

    def letters(self) -> str:
        """Command letters in the order they were sent."""
        return "".join(command[0] for command in self.commands)


class FakeEspBoard(FakeTransport):
    """
    ESP ROM loader model speaking SLIP framed packets.

    Each request is recorded as (opcode, payload, checksum). SYNC gets the
    eight replies the real ROM sends.
    """

    def __init__(
        self,
        clock: FakeClock,
        device_baud: int = 115200,
        status_bytes: int = 4,
        sync_ok: bool = True,
        silent_ops: Tuple[int, ...] = (),
        failing_ops: Tuple[int, ...] = (),
    ):
        super().__init__(clock, device_baud)
        self.status_bytes = status_bytes
        self.sync_ok = sync_ok
        self.silent_ops = silent_ops
        self.failing_ops = failing_ops
        self.decoder = slip.SlipDecoder()
        self.requests: List[Tuple[int, bytes, int]] = []

    def reply(self, opcode: int, failed: bool = False) -> bytes:
        status = bytearray(self.status_bytes)
        if failed:
            status[0] = 1
            status[1] = 0x05
        return slip.encode(struct.pack("<BBHI", 1, opcode, len(status), 0) + bytes(status))

    def handle(self, data: bytes) -> None:
        for packet in self.decoder.feed(data):
            _, opcode, length, chk = struct.unpack_from("<BBHI", packet)
            payload = packet[8:8 + length]
            self.requests.append((opcode, payload, chk))
            if self.baudrate != self.device_baud or opcode in self.silent_ops:
                continue
            if opcode == 0x08:
                if self.sync_ok:
                    self.rx.extend(self.reply(opcode) * 8)
                continue
            self.rx.extend(self.reply(opcode, failed=opcode in self.failing_ops))

    def opcodes(self) -> List[int]:
        return [request[0] for request in self.requests]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def bossa_board(clock):
    return FakeBossaBoard(clock)


@pytest.fixture
def esp_board(clock):
    return FakeEspBoard(clock)


@pytest.fixture
def firmware_file(tmp_path):
    """A 10000 byte sketch image on disk."""
    path = tmp_path / "sketch.bin"
    path.write_bytes(bytes(range(256)) * 39 + bytes(16))
    return path
