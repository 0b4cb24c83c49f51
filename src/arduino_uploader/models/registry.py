"""
Board registry.

Provides a single source of truth for:
- Which bootloader protocol a board speaks
- Baud rates (primary and fallback scan order)
- Memory layout (write offset, entry point, staging buffer, chunk size)
- Per-family timing (settle delays and ack deadlines)
- USB product IDs that mean "already in bootloader mode"

Boards are keyed by FQBN prefix (``vendor:architecture``). The family is
resolved once from the FQBN and strategies consume it as data.

Usage:
    from arduino_uploader.models import resolve_board, list_boards

    board = resolve_board("arduino:renesas_uno:unor4wifi")
    print(board.family, board.baud_rate, board.layout.chunk_size)
"""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, List, Optional, Tuple


class Protocol(Enum):
    """Bootloader protocol."""
    BOSSA = "bossa"         # SAM-BA text commands, 1200-baud touch entry
    ESPTOOL = "esptool"     # ESP ROM loader, SLIP framed, DTR/RTS entry


class BoardFamily(Enum):
    """Hardware family; selects layout and family-specific steps."""
    RENESAS_UNO = "renesas_uno"
    SAMD = "samd"
    MBED = "mbed"
    ESP32 = "esp32"
    ESP8266 = "esp8266"


# 52-byte ARM Thumb helper staged at data_buffer[0] by the IDE before an
# R4 upload, followed by two register writes.
RENESAS_FLASH_APPLET = bytes([
    0x09, 0x48, 0x0A, 0x49, 0x0A, 0x4A, 0x02, 0xE0,
    0x08, 0xC9, 0x08, 0xC0, 0x01, 0x3A, 0x00, 0x2A,
    0xFA, 0xD1, 0x04, 0x48, 0x00, 0x28, 0x01, 0xD1,
    0x01, 0x48, 0x85, 0x46, 0x70, 0x47, 0xC0, 0x46,
]) + bytes(20)

RENESAS_APPLET_REGISTERS = ((0x30, 0x400), (0x20, 0x0))

BOSSA_FALLBACK_BAUD_RATES = (115200, 921600, 460800, 57600, 38400, 19200, 9600)

# USB PIDs reported by Arduino boards while their bootloader is running
BOOTLOADER_PIDS = (0x006D, 0x0054, 0x0057, 0x0069, 0x0369)


@dataclass(frozen=True)
class BossaTiming:
    """
    SAM-BA timing, in seconds.

    The settle delays were measured from USB captures of the IDE and are
    tunable per family; ack deadlines bound the waits for real replies.
    """
    touch_baud: int = 1200
    touch_reopen_delay: float = 0.01
    touch_settle: float = 0.5
    os_settle: float = 0.1
    primary_timeout: float = 2.0
    fallback_timeout: float = 0.5
    version_timeout: float = 1.0
    fast_ack: float = 1.0
    commit_ack: float = 5.0
    erase_ack: float = 10.0
    inter_chunk: float = 0.25
    final_chunk: float = 1.0
    commit_settle: float = 10.0
    manual_reset_wait: float = 1.0


@dataclass(frozen=True)
class EspTiming:
    """ESP ROM loader timing, in seconds."""
    reset_hold: float = 0.1
    boot_wait: float = 1.2
    release_settle: float = 0.1
    erase_settle: float = 2.0
    run_pulse: float = 0.1
    sync_attempts: int = 10


@dataclass(frozen=True)
class MemoryLayout:
    """
    Where an image goes.

    Attributes:
        flash_write_offset: First write address as sent on the wire
        go_offset: Application entry point
        sram_buffer_offset: Staging buffer address reused for every chunk
        flash_base: Base the bootloader adds to wire addresses (logging only)
        chunk_size: Write granularity; must match the bootloader buffer
        applet: Helper blob staged at buffer offset 0 before erasing
        applet_registers: (address, value) register writes after the applet
    """
    flash_write_offset: int = 0
    go_offset: int = 0
    sram_buffer_offset: int = 0
    flash_base: int = 0
    chunk_size: int = 4096
    applet: bytes = b""
    applet_registers: Tuple[Tuple[int, int], ...] = ()

    @property
    def needs_applet(self) -> bool:
        return bool(self.applet)


@dataclass(frozen=True)
class BoardConfig:
    """
    Upload configuration for one board family.

    Attributes:
        fqbn_prefix: ``vendor:architecture`` this entry matches
        name: Human-readable name
        family: Hardware family
        protocol: Bootloader protocol
        baud_rate: Primary (BOSSA) or fixed (ESP) baud rate
        fallback_baud_rates: Scan order when the primary rate sees garbage
        layout: Memory layout
        bootloader_pids: PIDs meaning the board is already in its bootloader
        status_bytes: ESP response status length (4 on ESP32, 2 on ESP8266)
        bossa_timing: SAM-BA timing
        esp_timing: ESP timing
        notes: Free-form notes shown by ``show-board``
    """
    fqbn_prefix: str
    name: str
    family: BoardFamily
    protocol: Protocol
    baud_rate: int
    fallback_baud_rates: Tuple[int, ...] = ()
    layout: MemoryLayout = field(default_factory=MemoryLayout)
    bootloader_pids: Tuple[int, ...] = ()
    status_bytes: int = 4
    bossa_timing: BossaTiming = field(default_factory=BossaTiming)
    esp_timing: EspTiming = field(default_factory=EspTiming)
    notes: Tuple[str, ...] = ()

    def is_bootloader_pid(self, product_id: Optional[int]) -> bool:
        return product_id is not None and product_id in self.bootloader_pids

    def with_overrides(
        self,
        baud_rate: Optional[int] = None,
        flash_offset: Optional[int] = None,
        commit_settle: Optional[float] = None,
    ) -> "BoardConfig":
        """Copy with user overrides applied; None leaves a value as is."""
        config = self
        if baud_rate is not None:
            config = replace(config, baud_rate=baud_rate)
        if flash_offset is not None:
            config = replace(config, layout=replace(config.layout, flash_write_offset=flash_offset))
        if commit_settle is not None:
            config = replace(config, bossa_timing=replace(config.bossa_timing, commit_settle=commit_settle))
        return config


# ============================================================================
# BOARD REGISTRY
# ============================================================================

_BOARD_REGISTRY: Dict[str, BoardConfig] = {}


def _register_board(config: BoardConfig) -> None:
    _BOARD_REGISTRY[config.fqbn_prefix] = config


def _init_registry() -> None:
    """Initialize the registry with known boards."""

    # UNO R4 WiFi / Minima (Renesas RA4M1)
    # S writes into data_buffer[8192], Y copies to flash at 0x4000 + addr
    _register_board(BoardConfig(
        fqbn_prefix="arduino:renesas_uno",
        name="Arduino UNO R4 (Renesas RA4M1)",
        family=BoardFamily.RENESAS_UNO,
        protocol=Protocol.BOSSA,
        baud_rate=230400,
        fallback_baud_rates=BOSSA_FALLBACK_BAUD_RATES,
        layout=MemoryLayout(
            flash_write_offset=0x0000,
            go_offset=0x4000,
            sram_buffer_offset=0x34,
            flash_base=0x4000,
            chunk_size=4096,
            applet=RENESAS_FLASH_APPLET,
            applet_registers=RENESAS_APPLET_REGISTERS,
        ),
        bootloader_pids=BOOTLOADER_PIDS,
        notes=(
            "Wire addresses are relative to the 16 KiB bootloader; "
            "the bootloader adds 0x4000 itself.",
        ),
    ))

    # SAMD21 (MKR family, Nano 33 IoT, Zero)
    _register_board(BoardConfig(
        fqbn_prefix="arduino:samd",
        name="Arduino SAMD21 boards",
        family=BoardFamily.SAMD,
        protocol=Protocol.BOSSA,
        baud_rate=230400,
        fallback_baud_rates=BOSSA_FALLBACK_BAUD_RATES,
        layout=MemoryLayout(
            flash_write_offset=0x2000,
            go_offset=0x2000,
            sram_buffer_offset=0x20001000,
            chunk_size=4096,
        ),
        bootloader_pids=BOOTLOADER_PIDS,
        notes=("Absolute addressing; the 8 KiB bootloader sits below 0x2000.",),
    ))

    # mbed-based boards with a SAM-BA compatible bootloader
    for prefix, name in (
        ("arduino:mbed_nano", "Arduino Nano 33 BLE / Nano RP2040 Connect (mbed)"),
        ("arduino:mbed_portenta", "Arduino Portenta (mbed)"),
    ):
        _register_board(BoardConfig(
            fqbn_prefix=prefix,
            name=name,
            family=BoardFamily.MBED,
            protocol=Protocol.BOSSA,
            baud_rate=230400,
            fallback_baud_rates=BOSSA_FALLBACK_BAUD_RATES,
            layout=MemoryLayout(
                flash_write_offset=0x2000,
                go_offset=0x2000,
                sram_buffer_offset=0x20001000,
                chunk_size=4096,
            ),
            bootloader_pids=BOOTLOADER_PIDS,
        ))

    # ESP32 (Espressif core and Arduino core)
    for prefix in ("esp32:esp32", "arduino:esp32"):
        _register_board(BoardConfig(
            fqbn_prefix=prefix,
            name="ESP32",
            family=BoardFamily.ESP32,
            protocol=Protocol.ESPTOOL,
            baud_rate=115200,
            layout=MemoryLayout(flash_write_offset=0x10000, chunk_size=0x400),
            status_bytes=4,
            notes=("Application image only; bootloader and partition table are not written.",),
        ))

    _register_board(BoardConfig(
        fqbn_prefix="esp8266:esp8266",
        name="ESP8266",
        family=BoardFamily.ESP8266,
        protocol=Protocol.ESPTOOL,
        baud_rate=115200,
        layout=MemoryLayout(flash_write_offset=0x0, chunk_size=0x400),
        status_bytes=2,
    ))


_init_registry()


# ============================================================================
# PUBLIC API
# ============================================================================

def list_boards() -> List[str]:
    """
    List all registered FQBN prefixes.

    Returns:
        Sorted list of prefixes.
    """
    return sorted(_BOARD_REGISTRY.keys())


def get_board(fqbn_prefix: str) -> Optional[BoardConfig]:
    """
    Get configuration for an exact FQBN prefix.

    Returns:
        BoardConfig or None if not found.
    """
    return _BOARD_REGISTRY.get(fqbn_prefix)


def resolve_board(fqbn: str) -> Optional[BoardConfig]:
    """
    Resolve a full FQBN (``vendor:arch:board[:options]``) to its config.

    The ``vendor:arch`` part must match a registered prefix exactly.

    Returns:
        BoardConfig or None for unknown boards.
    """
    if not fqbn:
        return None
    parts = fqbn.strip().split(":")
    if len(parts) < 2:
        return None
    return _BOARD_REGISTRY.get(f"{parts[0]}:{parts[1]}")


def get_boards_by_protocol(protocol: Protocol) -> List[BoardConfig]:
    return [
        config for config in _BOARD_REGISTRY.values()
        if config.protocol == protocol
    ]


def board_to_dict(config: BoardConfig) -> Dict:
    """Convert to JSON-serializable dict."""
    layout = config.layout
    info = {
        "fqbn_prefix": config.fqbn_prefix,
        "name": config.name,
        "family": config.family.value,
        "protocol": config.protocol.value,
        "baud_rate": config.baud_rate,
        "fallback_baud_rates": list(config.fallback_baud_rates),
        "flash_write_offset": f"0x{layout.flash_write_offset:08X}",
        "go_offset": f"0x{layout.go_offset:08X}",
        "sram_buffer_offset": f"0x{layout.sram_buffer_offset:08X}",
        "flash_base": f"0x{layout.flash_base:08X}",
        "chunk_size": layout.chunk_size,
        "flash_applet": f"{len(layout.applet)} bytes" if layout.applet else "none",
        "bootloader_pids": [f"0x{pid:04X}" for pid in config.bootloader_pids],
        "notes": list(config.notes),
    }
    if config.protocol == Protocol.BOSSA:
        timing = config.bossa_timing
        info["timing"] = {
            "touch_settle": timing.touch_settle,
            "inter_chunk": timing.inter_chunk,
            "final_chunk": timing.final_chunk,
            "commit_settle": timing.commit_settle,
            "erase_ack": timing.erase_ack,
            "commit_ack": timing.commit_ack,
        }
    else:
        timing = config.esp_timing
        info["timing"] = {
            "boot_wait": timing.boot_wait,
            "erase_settle": timing.erase_settle,
            "sync_attempts": timing.sync_attempts,
        }
    return info
