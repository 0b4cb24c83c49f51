"""
Baud rate and handshake auto-detection.

Opening a CDC port at the wrong rate produces framing garbage rather than
an error, so the bootloader's rate is discovered by sending a no-op probe
command and classifying whatever comes back:

- ASCII: mostly printable text, the rate is right
- GARBAGE: bytes arrive but are not text, the device is answering at
  another rate
- TIMEOUT: nothing at all, the device is not listening
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from arduino_uploader.core.diagnostics import UploadObserver
from arduino_uploader.core.errors import NoResponseError, WrongBaudError
from arduino_uploader.protocol.transport import (
    CR,
    READ_SLICE,
    Clock,
    TimedOut,
    Transport,
    collect,
    safe_close,
)

logger = logging.getLogger(__name__)

ASCII_RATIO = 0.70

# Bytes needed before a sample may be called ASCII or GARBAGE early
MIN_ASCII_BYTES = 2
MIN_GARBAGE_BYTES = 4

PRIMARY_TIMEOUT = 2.0
FALLBACK_TIMEOUT = 0.5
VERSION_TIMEOUT = 1.0

# Gap between the reopen and the probe command, as seen in USB captures
PRIMARY_PROBE_DELAY = 0.11
FALLBACK_PROBE_DELAY = 0.1
REOPEN_DELAY = 0.01


class ProbeKind(Enum):
    """Classification of a probe reply."""
    ASCII = "ascii"
    GARBAGE = "garbage"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class ProbeResult:
    """
    Outcome of probing a single baud rate.

    When ``kind`` is ASCII the transport is left open at ``baudrate``;
    otherwise it has been closed.
    """
    kind: ProbeKind
    baudrate: int
    received: bytes = b""
    elapsed: float = 0.0


@dataclass
class DetectionResult:
    """Working baud rate plus the optional bootloader version string."""
    baudrate: int
    version: Optional[str] = None
    attempts: List[ProbeResult] = field(default_factory=list)


def is_printable(byte: int) -> bool:
    return 0x20 <= byte <= 0x7E or byte in (0x0A, 0x0D)


def printable_ratio(sample: bytes) -> float:
    """Share of printable bytes in ``sample`` (0.0 for an empty sample)."""
    if not sample:
        return 0.0
    return sum(1 for b in sample if is_printable(b)) / len(sample)


def classify_sample(sample: bytes) -> ProbeKind:
    """
    Classify a complete probe sample.

    Args:
        sample: Every byte received before the deadline

    Returns:
        TIMEOUT for an empty sample, ASCII when at least 70% of the bytes
        are printable, GARBAGE otherwise
    """
    if not sample:
        return ProbeKind.TIMEOUT
    if printable_ratio(sample) >= ASCII_RATIO:
        return ProbeKind.ASCII
    return ProbeKind.GARBAGE


def early_decision(sample: bytes) -> Optional[ProbeKind]:
    """
    Decide a probe before its deadline when the sample already says enough.

    Returns:
        ASCII or GARBAGE once enough bytes are in, None to keep reading
    """
    if len(sample) >= MIN_ASCII_BYTES and printable_ratio(sample) >= ASCII_RATIO:
        return ProbeKind.ASCII
    if len(sample) >= MIN_GARBAGE_BYTES:
        return ProbeKind.GARBAGE
    return None


def printable_text(data: bytes) -> str:
    """Keep only visible ASCII, dropping line endings and a trailing prompt."""
    text = "".join(chr(b) for b in data if 0x20 <= b <= 0x7E)
    return text.rstrip(">").strip()


class BaudDetector:
    """
    Find the rate a text-mode bootloader is listening on.

    The primary rate is probed with a long timeout. Silence there means the
    board is not in its bootloader and no scan is attempted. Garbage means
    the board is answering at another rate, so the fallback list is tried in
    order with a short timeout and the first ASCII reply wins.

    Example:
        detector = BaudDetector(transport, Clock(), 230400, [115200, 9600])
        result = detector.detect()
        print(result.baudrate, result.version)
    """

    def __init__(
        self,
        transport: Transport,
        clock: Clock,
        primary_baud: int,
        fallback_bauds: Sequence[int],
        *,
        probe_command: bytes = b"N#",
        version_command: bytes = b"V#",
        primary_timeout: float = PRIMARY_TIMEOUT,
        fallback_timeout: float = FALLBACK_TIMEOUT,
        version_timeout: float = VERSION_TIMEOUT,
        observer: Optional[UploadObserver] = None,
    ):
        self.transport = transport
        self.clock = clock
        self.primary_baud = primary_baud
        self.fallback_bauds = [b for b in fallback_bauds if b != primary_baud]
        self.probe_command = probe_command
        self.version_command = version_command
        self.primary_timeout = primary_timeout
        self.fallback_timeout = fallback_timeout
        self.version_timeout = version_timeout
        self.observer = observer or UploadObserver()

    def _open_for_probe(self, baudrate: int, reopen: bool) -> None:
        safe_close(self.transport, self.clock)
        self.observer.serial_config(baudrate, "Open for probe")
        self.transport.open(baudrate)
        self.transport.set_signals(dtr=True, rts=True)
        if reopen:
            # A second open makes the host send SET_LINE_CODING again
            self.observer.info("Forcing second SET_LINE_CODING by close/reopen")
            self.transport.close()
            self.clock.sleep(REOPEN_DELAY)
            self.transport.open(baudrate)
            self.transport.set_signals(dtr=True, rts=True)
            delay = PRIMARY_PROBE_DELAY
        else:
            delay = FALLBACK_PROBE_DELAY
        self.observer.wait(delay, "Let the line settle before probing")
        self.clock.sleep(delay)

    def probe(self, baudrate: int, timeout: float, reopen: bool = False) -> ProbeResult:
        """
        Probe one baud rate.

        Args:
            baudrate: Rate to open the port at
            timeout: Deadline for the reply
            reopen: Close and reopen once before probing

        Returns:
            ProbeResult; on ASCII the port stays open
        """
        logger.info(f"Probing at {baudrate} baud ({timeout * 1000:.0f}ms timeout)")
        self._open_for_probe(baudrate, reopen)

        start = self.clock.monotonic()
        self.observer.command(self.probe_command.decode("ascii"), "Probe bootloader")
        self.transport.write(self.probe_command)

        collected = bytearray()
        kind = None
        deadline = start + timeout
        while kind is None:
            remaining = deadline - self.clock.monotonic()
            if remaining <= 0:
                break
            result = self.transport.read(min(remaining, READ_SLICE))
            if isinstance(result, TimedOut):
                continue
            if result.done:
                break
            if result.value:
                collected.extend(result.value)
                self.observer.received(f"Probe reply at {baudrate}", result.value)
                kind = early_decision(bytes(collected))

        sample = bytes(collected)
        if kind is None:
            kind = classify_sample(sample)
        elapsed = self.clock.monotonic() - start

        if kind is ProbeKind.ASCII:
            self.observer.success(f"ASCII reply at {baudrate} baud ({len(sample)} bytes)")
        elif kind is ProbeKind.GARBAGE:
            self.observer.warn(f"Garbage at {baudrate} baud, wrong rate")
            safe_close(self.transport, self.clock)
        else:
            self.observer.warn(f"No response at {baudrate} baud")
            safe_close(self.transport, self.clock)
        return ProbeResult(kind=kind, baudrate=baudrate, received=sample, elapsed=elapsed)

    def read_version(self) -> Optional[str]:
        """
        Request the bootloader version string on the already open port.

        The reply may be split over several USB packets, so reading only
        stops at the CR terminator or the deadline.

        Returns:
            Version text, or None if nothing printable arrived in time
        """
        self.transport.reset_input_buffer()
        self.observer.command(self.version_command.decode("ascii"), "Request version string")
        self.transport.write(self.version_command)
        data = collect(self.transport, self.clock, self.version_timeout, terminator=CR)
        version = printable_text(data)
        if version:
            self.observer.response(version, "Bootloader version")
            return version
        return None

    def detect(self) -> DetectionResult:
        """
        Run the full detection sequence.

        Returns:
            DetectionResult with the port left open at the working rate

        Raises:
            NoResponseError: Primary rate was silent
            WrongBaudError: Every rate answered with garbage or silence
        """
        self.observer.section("BAUD RATE DETECTION")
        attempts = []
        start = self.clock.monotonic()

        primary = self.probe(self.primary_baud, self.primary_timeout, reopen=True)
        attempts.append(primary)
        if primary.kind is ProbeKind.TIMEOUT:
            raise NoResponseError(
                f"No response at {self.primary_baud} baud; "
                "device is likely not in bootloader mode",
                last_command=self.probe_command.decode("ascii"),
                elapsed=primary.elapsed,
            )

        found = primary if primary.kind is ProbeKind.ASCII else None
        if found is None:
            self.observer.info("Device answers at another rate, scanning fallback rates")
            for baudrate in self.fallback_bauds:
                result = self.probe(baudrate, self.fallback_timeout)
                attempts.append(result)
                if result.kind is ProbeKind.ASCII:
                    found = result
                    break

        if found is None:
            received = b"".join(a.received for a in attempts)
            raise WrongBaudError(
                "No baud rate produced a valid ASCII response",
                last_command=self.probe_command.decode("ascii"),
                elapsed=self.clock.monotonic() - start,
                received=received[-64:],
            )

        version = self.read_version()
        if version is None:
            self.observer.info(f"Connected at {found.baudrate} baud (no version string)")
        return DetectionResult(baudrate=found.baudrate, version=version, attempts=attempts)
