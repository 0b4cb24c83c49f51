"""
SLIP framing (RFC 1055) as used by the ESP ROM bootloader.

Each packet is wrapped in END (0xC0) bytes; END and ESC inside the payload
are escaped as ESC ESC_END and ESC ESC_ESC.
"""

from typing import List

END = 0xC0
ESC = 0xDB
ESC_END = 0xDC
ESC_ESC = 0xDD


def encode(packet: bytes) -> bytes:
    """Escape ``packet`` and wrap it in END delimiters."""
    out = bytearray([END])
    for byte in packet:
        if byte == END:
            out += bytes([ESC, ESC_END])
        elif byte == ESC:
            out += bytes([ESC, ESC_ESC])
        else:
            out.append(byte)
    out.append(END)
    return bytes(out)


class SlipDecoder:
    """
    Incremental SLIP decoder.

    Feed it raw bytes as they arrive; it returns every packet completed so
    far and keeps partial state between calls. Empty frames (back-to-back
    END bytes) are skipped.
    """

    def __init__(self):
        self._packet = bytearray()
        self._escape = False

    def feed(self, data: bytes) -> List[bytes]:
        packets = []
        for byte in data:
            if self._escape:
                if byte == ESC_END:
                    self._packet.append(END)
                elif byte == ESC_ESC:
                    self._packet.append(ESC)
                else:
                    # Invalid escape; keep the byte as-is
                    self._packet.append(byte)
                self._escape = False
            elif byte == END:
                if self._packet:
                    packets.append(bytes(self._packet))
                    self._packet = bytearray()
            elif byte == ESC:
                self._escape = True
            else:
                self._packet.append(byte)
        return packets

    def reset(self) -> None:
        self._packet = bytearray()
        self._escape = False


def decode(data: bytes) -> List[bytes]:
    """Decode every complete packet in ``data``."""
    return SlipDecoder().feed(data)
