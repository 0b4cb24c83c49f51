"""
Board registry for arduino-uploader.

Resolves FQBNs to protocol, memory layout and timing configuration.
"""

from .registry import (
    BoardConfig,
    BoardFamily,
    BossaTiming,
    EspTiming,
    MemoryLayout,
    Protocol,
    BOOTLOADER_PIDS,
    RENESAS_FLASH_APPLET,
    list_boards,
    get_board,
    resolve_board,
    get_boards_by_protocol,
    board_to_dict,
)

__all__ = [
    "BoardConfig",
    "BoardFamily",
    "BossaTiming",
    "EspTiming",
    "MemoryLayout",
    "Protocol",
    "BOOTLOADER_PIDS",
    "RENESAS_FLASH_APPLET",
    "list_boards",
    "get_board",
    "resolve_board",
    "get_boards_by_protocol",
    "board_to_dict",
]
