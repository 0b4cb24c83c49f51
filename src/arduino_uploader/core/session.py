"""
Per-upload session state.

A Session is created at the start of ``flash()`` and discarded at the end.
It is immutable: each step returns a new Session instead of mutating
strategy attributes, so nothing leaks from one upload into the next.
"""

from dataclasses import dataclass, replace
from typing import Optional


@dataclass(frozen=True)
class Session:
    """
    Addressing and link state for one flash operation.

    Attributes:
        baudrate: Working baud rate (discovered, not assumed)
        chunk_size: Write granularity of the bootloader buffer
        flash_write_offset: Current flash-relative write address
        go_offset: Application entry point
        sram_buffer_offset: Staging buffer offset reused for every chunk
        flash_base: Base the bootloader adds to flash-relative addresses
            (used for logging only)
        version: Bootloader version string, if one was reported
    """
    baudrate: int
    chunk_size: int
    flash_write_offset: int
    go_offset: int
    sram_buffer_offset: int
    flash_base: int = 0
    version: Optional[str] = None

    def with_baudrate(self, baudrate: int, version: Optional[str] = None) -> "Session":
        return replace(self, baudrate=baudrate, version=version)

    def advanced(self, size: int) -> "Session":
        """Session with the write offset moved past ``size`` bytes."""
        return replace(self, flash_write_offset=self.flash_write_offset + size)

    def physical(self, address: int) -> int:
        """Physical flash address for a flash-relative one."""
        return self.flash_base + address
