"""
Serial Transport Layer

Handles low-level serial communication with board bootloaders.

This module provides:
- The transport interface consumed by the protocol engines
- A pyserial-backed implementation
- Bounded reads with an explicit Data / TimedOut result
- Safe close/reopen handling between baud rate changes
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional, Tuple, Union

try:
    import serial
except ImportError:
    raise ImportError("PySerial required: pip install pyserial")

logger = logging.getLogger(__name__)

# Time the OS needs to release a port before it can be reopened
OS_SETTLE_DELAY = 0.1

# Reply terminator used by the text-mode bootloaders
CR = 0x0D

# Upper bound for a single read slice
READ_SLICE = 0.05


class TransportError(Exception):
    """Base exception for transport layer errors"""
    pass


@dataclass(frozen=True)
class Data:
    """Bytes returned by a read. ``done`` is set when the stream has ended."""
    value: bytes = b""
    done: bool = False


@dataclass(frozen=True)
class TimedOut:
    """The read deadline elapsed before any byte arrived."""
    waited: float = 0.0


ReadResult = Union[Data, TimedOut]


class Clock:
    """Wall clock used for every wait in the protocol engines."""

    def monotonic(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


class Transport:
    """
    Interface for a controllable serial port.

    Implementations must never block in ``read`` past the given timeout.
    """

    @property
    def is_open(self) -> bool:
        raise NotImplementedError

    def open(self, baudrate: int) -> None:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError

    def release(self) -> None:
        """Cancel any pending read or write so the port can be closed."""

    def set_signals(self, dtr: bool, rts: bool) -> None:
        raise NotImplementedError

    def get_device_id(self) -> Tuple[Optional[int], Optional[int]]:
        """Return (vendor_id, product_id); either may be None if unknown."""
        return (None, None)

    def write(self, data: bytes) -> None:
        raise NotImplementedError

    def read(self, timeout: float) -> ReadResult:
        raise NotImplementedError

    def reset_input_buffer(self) -> None:
        """Discard bytes already received but not yet read."""


class SerialTransport(Transport):
    """
    pyserial implementation of the transport interface.

    Example:
        transport = SerialTransport(port="/dev/ttyACM0")
        transport.open(230400)
        transport.write(b"N#")
        result = transport.read(timeout=1.0)
        transport.close()
    """

    def __init__(self, port: str, write_timeout: float = 2.0):
        """
        Initialize transport layer.

        Args:
            port: Serial port (e.g., "/dev/ttyACM0", "COM3")
            write_timeout: Write timeout in seconds (default 2.0)
        """
        self.port = port
        self.write_timeout = write_timeout
        self.baudrate: Optional[int] = None
        self.ser: Optional[serial.Serial] = None

    @property
    def is_open(self) -> bool:
        return bool(self.ser and self.ser.is_open)

    def open(self, baudrate: int) -> None:
        """
        Open serial port at the given baud rate.

        DTR and RTS are deasserted before the port opens so that opening
        alone never pulses a reset line.

        Raises:
            TransportError: If the port is already open or cannot be opened
        """
        if self.is_open:
            raise TransportError(
                f"Port {self.port} is still open; close it before reopening"
            )
        try:
            ser = serial.Serial()
            ser.port = self.port
            ser.baudrate = baudrate
            ser.bytesize = 8
            ser.parity = 'N'
            ser.stopbits = 1
            ser.timeout = READ_SLICE
            ser.write_timeout = self.write_timeout
            ser.dtr = False
            ser.rts = False
            ser.open()
            self.ser = ser
            self.baudrate = baudrate
            logger.debug(f"Opened {self.port} at {baudrate} bps")
        except serial.SerialException as e:
            raise TransportError(f"Cannot open port {self.port}: {e}")

    def close(self) -> None:
        """Close serial port."""
        if self.ser and self.ser.is_open:
            self.ser.close()
            logger.debug(f"Closed {self.port}")
        self.ser = None

    def release(self) -> None:
        if not self.is_open:
            return
        # cancel_* only exist on the POSIX and Windows backends
        for name in ("cancel_read", "cancel_write"):
            cancel = getattr(self.ser, name, None)
            if cancel is not None:
                try:
                    cancel()
                except serial.SerialException as e:
                    logger.debug(f"{name} failed on {self.port}: {e}")

    def set_signals(self, dtr: bool, rts: bool) -> None:
        if not self.is_open:
            raise TransportError("Serial port not open")
        try:
            self.ser.dtr = dtr
            self.ser.rts = rts
        except serial.SerialException as e:
            raise TransportError(f"Cannot set control lines: {e}")
        logger.debug(f"DTR={int(dtr)} RTS={int(rts)}")

    def get_device_id(self) -> Tuple[Optional[int], Optional[int]]:
        import serial.tools.list_ports

        for info in serial.tools.list_ports.comports():
            if info.device == self.port:
                return (info.vid, info.pid)
        return (None, None)

    def write(self, data: bytes) -> None:
        """
        Send raw bytes to the board.

        Raises:
            TransportError: If write fails or is incomplete
        """
        if not self.is_open:
            raise TransportError("Serial port not open")
        try:
            written = self.ser.write(data)
            self.ser.flush()
        except serial.SerialException as e:
            raise TransportError(f"Write error: {e}")
        if written != len(data):
            raise TransportError(
                f"Incomplete write: sent {written}/{len(data)} bytes"
            )
        logger.debug(f">>> {data[:32].hex().upper()}" + ("..." if len(data) > 32 else ""))

    def read(self, timeout: float) -> ReadResult:
        """
        Read whatever is available, waiting at most ``timeout`` seconds.

        Returns:
            Data with the received bytes, Data(done=True) if the device
            went away, or TimedOut if nothing arrived in time
        """
        if not self.is_open:
            return Data(done=True)
        try:
            self.ser.timeout = max(0.0, timeout)
            waiting = self.ser.in_waiting
            data = self.ser.read(waiting if waiting else 1)
        except serial.SerialException as e:
            logger.debug(f"Read ended on {self.port}: {e}")
            return Data(done=True)
        if not data:
            return TimedOut(waited=timeout)
        logger.debug(f"<<< {data.hex().upper()}")
        return Data(value=data)

    def reset_input_buffer(self) -> None:
        if self.is_open:
            self.ser.reset_input_buffer()


def safe_close(transport: Transport, clock: Clock, settle: float = OS_SETTLE_DELAY) -> None:
    """
    Release pending I/O, close the port and give the OS time to let go of it.

    Safe to call on a transport that is already closed.
    """
    if transport.is_open:
        transport.release()
        try:
            transport.close()
        except (TransportError, OSError) as e:
            logger.warning(f"Port close warning: {e}")
    clock.sleep(settle)


def collect(
    transport: Transport,
    clock: Clock,
    timeout: float,
    *,
    terminator: Optional[int] = None,
    max_bytes: int = 256,
) -> bytes:
    """
    Accumulate bytes until a deadline, a terminator byte or ``max_bytes``.

    Each iteration races a read against the remaining time and checks the
    outcome explicitly.

    Args:
        transport: Open transport
        clock: Clock used for the deadline
        timeout: Overall deadline in seconds
        terminator: Stop as soon as a chunk containing this byte arrives
        max_bytes: Stop once this many bytes are collected

    Returns:
        Collected bytes (possibly empty)
    """
    collected = bytearray()
    deadline = clock.monotonic() + timeout
    while True:
        remaining = deadline - clock.monotonic()
        if remaining <= 0:
            break
        result = transport.read(min(remaining, READ_SLICE))
        if isinstance(result, TimedOut):
            continue
        if result.done:
            break
        if result.value:
            collected.extend(result.value)
            if len(collected) >= max_bytes:
                break
            if terminator is not None and terminator in result.value:
                break
    return bytes(collected)
