"""Bootloader protocol layer - serial transport, codecs and baud detection."""

from .transport import (
    Clock,
    Data,
    ReadResult,
    SerialTransport,
    TimedOut,
    Transport,
    TransportError,
    safe_close,
)
from .probe import (
    BaudDetector,
    DetectionResult,
    ProbeKind,
    ProbeResult,
    classify_sample,
)
from .bossa_protocol import BossaProtocol, BossaProtocolError, crc16, encode_command
from .esptool_protocol import EspRomProtocol, EspProtocolError, EspTimeout
from . import slip

__all__ = [
    # Transport
    "Clock",
    "Data",
    "ReadResult",
    "SerialTransport",
    "TimedOut",
    "Transport",
    "TransportError",
    "safe_close",
    # Detection
    "BaudDetector",
    "DetectionResult",
    "ProbeKind",
    "ProbeResult",
    "classify_sample",
    # SAM-BA
    "BossaProtocol",
    "BossaProtocolError",
    "crc16",
    "encode_command",
    # ESP ROM
    "EspRomProtocol",
    "EspProtocolError",
    "EspTimeout",
    "slip",
]
