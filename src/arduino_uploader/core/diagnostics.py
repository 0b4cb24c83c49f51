"""
Upload diagnostics sink.

Strategies report what they are doing (phases, commands, control line
changes, memory operations, waits) to an injected ``UploadObserver``.
Observers are purely observational and never affect control flow.
"""

import logging
from typing import Optional

trace_logger = logging.getLogger("arduino_uploader.trace")


def bytes_to_hex(data: bytes, max_bytes: int = 32) -> str:
    """Format bytes as spaced upper-case hex, truncated after ``max_bytes``."""
    if not data:
        return "(empty)"
    shown = " ".join(f"{b:02X}" for b in data[:max_bytes])
    if len(data) > max_bytes:
        return f"{shown}... (+{len(data) - max_bytes} more)"
    return shown


def bytes_to_ascii(data: bytes, max_bytes: int = 64) -> str:
    """Format bytes as ASCII with control characters spelled out."""
    if not data:
        return "(empty)"
    names = {0x0A: "<LF>", 0x0D: "<CR>", 0x00: "<NUL>"}
    out = []
    for b in data[:max_bytes]:
        if b in names:
            out.append(names[b])
        elif 0x20 <= b <= 0x7E:
            out.append(chr(b))
        else:
            out.append(f"<{b:02x}>")
    text = "".join(out)
    if len(data) > max_bytes:
        return f"{text}... (+{len(data) - max_bytes} more)"
    return text


def format_addr(addr: int) -> str:
    return f"0x{addr:08X}"


def format_size(size: int) -> str:
    if size >= 1024:
        return f"{size / 1024:.1f}KB ({size} bytes)"
    return f"{size} bytes"


class UploadObserver:
    """
    Observer interface for upload progress and protocol traces.

    The base class ignores every event; subclass and override the ones
    you care about.
    """

    def section(self, title: str) -> None:
        pass

    def info(self, message: str) -> None:
        pass

    def success(self, message: str) -> None:
        pass

    def warn(self, message: str) -> None:
        pass

    def error(self, message: str, exc: Optional[BaseException] = None) -> None:
        pass

    def command(self, command: str, purpose: str = "") -> None:
        pass

    def response(self, summary: str, purpose: str = "") -> None:
        pass

    def received(self, label: str, data: bytes) -> None:
        pass

    def signal(self, name: str, level: bool, purpose: str = "") -> None:
        pass

    def serial_config(self, baudrate: int, purpose: str = "") -> None:
        pass

    def device(self, vendor_id: Optional[int], product_id: Optional[int], purpose: str = "") -> None:
        pass

    def memory(self, operation: str, address: int, size: int, purpose: str = "") -> None:
        pass

    def chunk(self, index: int, total: int, address: int, size: int, is_last: bool) -> None:
        pass

    def wait(self, seconds: float, purpose: str = "") -> None:
        pass


class LoggingObserver(UploadObserver):
    """Forward upload events to the ``arduino_uploader.trace`` logger."""

    def __init__(self, prefix: str = "Upload", logger: Optional[logging.Logger] = None):
        self.prefix = prefix
        self.logger = logger or trace_logger

    def _log(self, level: int, message: str) -> None:
        self.logger.log(level, f"[{self.prefix}] {message}")

    def section(self, title: str) -> None:
        self._log(logging.INFO, f"=== {title} ===")

    def info(self, message: str) -> None:
        self._log(logging.INFO, message)

    def success(self, message: str) -> None:
        self._log(logging.INFO, f"OK {message}")

    def warn(self, message: str) -> None:
        self._log(logging.WARNING, message)

    def error(self, message: str, exc: Optional[BaseException] = None) -> None:
        if exc is not None:
            message = f"{message}: {exc}"
        self._log(logging.ERROR, message)

    def command(self, command: str, purpose: str = "") -> None:
        self._log(logging.DEBUG, f"TX {command}" + (f"  ({purpose})" if purpose else ""))

    def response(self, summary: str, purpose: str = "") -> None:
        self._log(logging.DEBUG, f"RX {summary}" + (f"  ({purpose})" if purpose else ""))

    def received(self, label: str, data: bytes) -> None:
        self._log(
            logging.DEBUG,
            f"RX {label}: {bytes_to_hex(data)} | {bytes_to_ascii(data)}",
        )

    def signal(self, name: str, level: bool, purpose: str = "") -> None:
        state = "HIGH" if level else "LOW"
        self._log(logging.DEBUG, f"SIGNAL {name}={state}" + (f"  ({purpose})" if purpose else ""))

    def serial_config(self, baudrate: int, purpose: str = "") -> None:
        self._log(logging.DEBUG, f"SERIAL {baudrate} baud" + (f"  ({purpose})" if purpose else ""))

    def device(self, vendor_id: Optional[int], product_id: Optional[int], purpose: str = "") -> None:
        vid = f"0x{vendor_id:04X}" if vendor_id is not None else "?"
        pid = f"0x{product_id:04X}" if product_id is not None else "?"
        self._log(logging.INFO, f"Device VID={vid} PID={pid}" + (f"  ({purpose})" if purpose else ""))

    def memory(self, operation: str, address: int, size: int, purpose: str = "") -> None:
        self._log(
            logging.INFO,
            f"{operation} @ {format_addr(address)} size {format_size(size)}"
            + (f"  ({purpose})" if purpose else ""),
        )

    def chunk(self, index: int, total: int, address: int, size: int, is_last: bool) -> None:
        marker = " [last]" if is_last else ""
        self._log(
            logging.DEBUG,
            f"Chunk {index}/{total} @ {format_addr(address)} ({size} bytes){marker}",
        )

    def wait(self, seconds: float, purpose: str = "") -> None:
        self._log(logging.DEBUG, f"WAIT {seconds * 1000:.0f}ms" + (f"  ({purpose})" if purpose else ""))
