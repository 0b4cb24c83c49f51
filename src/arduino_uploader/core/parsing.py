"""
Parsing helpers for CLI values (addresses, baud rates, durations).
"""

import math
from typing import Optional


def parse_offset(value: Optional[str]) -> Optional[int]:
    """
    Parse an address or offset.

    Accepts:
        - Decimal: "65536"
        - Hex with 0x prefix: "0x10000" or "0X10000"
        - Hex with h suffix: "10000h"
        - None or empty for "use the board default"

    Raises:
        ValueError: If value cannot be parsed or is negative
    """
    if value is None:
        return None

    value = value.strip()
    if not value:
        return None

    try:
        if value.lower().startswith("0x"):
            result = int(value, 16)
        elif value.lower().endswith("h"):
            result = int(value[:-1], 16)
        else:
            result = int(value)
    except ValueError:
        raise ValueError(
            f"Invalid offset '{value}'. Use decimal (65536), hex (0x10000), or suffix (10000h)."
        )
    if result < 0:
        raise ValueError(f"Offset must not be negative, got {value}")
    return result


def parse_baudrate(value: Optional[str]) -> Optional[int]:
    """
    Parse a baud rate. Non-standard rates are allowed but must be positive.

    Raises:
        ValueError: If value is not a positive integer
    """
    if value is None or not str(value).strip():
        return None
    try:
        rate = int(str(value).strip())
    except ValueError:
        raise ValueError(f"Invalid baud rate '{value}'. Example: 115200")
    if rate <= 0:
        raise ValueError(f"Baud rate must be positive, got {rate}")
    return rate


def parse_seconds(value: Optional[str]) -> Optional[float]:
    """
    Parse a duration: "10", "2.5", "2.5s" or "500ms".

    Raises:
        ValueError: If value is not a non-negative duration
    """
    if value is None:
        return None
    text = str(value).strip().lower()
    if not text:
        return None
    try:
        if text.endswith("ms"):
            seconds = float(text[:-2]) / 1000
        elif text.endswith("s"):
            seconds = float(text[:-1])
        else:
            seconds = float(text)
    except ValueError:
        raise ValueError(f"Invalid duration '{value}'. Use seconds (2.5) or milliseconds (500ms).")
    if not math.isfinite(seconds):
        raise ValueError(f"Duration must be a finite number, got {value}")
    if seconds < 0:
        raise ValueError(f"Duration must not be negative, got {value}")
    return seconds
