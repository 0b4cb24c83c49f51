"""
Firmware image handling.

Images are padded with the erased-flash value (0xFF) up to a whole number
of chunks before any write begins.
"""

import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Tuple, Union

ERASED_BYTE = 0xFF


def padded_length(length: int, chunk_size: int) -> int:
    """Smallest multiple of ``chunk_size`` that is >= ``length``."""
    if chunk_size <= 0:
        raise ValueError(f"Chunk size must be positive, got {chunk_size}")
    return -(-length // chunk_size) * chunk_size


@dataclass(frozen=True)
class FirmwareImage:
    """
    Immutable firmware byte buffer.

    Attributes:
        data: Raw image bytes
        name: Where the image came from (file name or label)
    """
    data: bytes
    name: str = ""

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "FirmwareImage":
        """
        Load a raw binary image.

        Raises:
            FileNotFoundError: If the file does not exist
            ValueError: If the file is a hex or elf image
        """
        path = Path(path)
        if path.suffix.lower() in (".hex", ".elf"):
            raise ValueError(f"{path.name}: only raw .bin images are supported")
        return cls(data=path.read_bytes(), name=path.name)

    def __len__(self) -> int:
        return len(self.data)

    @property
    def sha256(self) -> str:
        return hashlib.sha256(self.data).hexdigest()

    def pad(self, chunk_size: int) -> "FirmwareImage":
        """
        Return a copy right-filled with 0xFF to a multiple of ``chunk_size``.

        Padding an already aligned image returns an equal image.
        """
        target = padded_length(len(self.data), chunk_size)
        if target == len(self.data):
            return self
        fill = bytes([ERASED_BYTE]) * (target - len(self.data))
        return FirmwareImage(data=self.data + fill, name=self.name)

    def chunk_count(self, chunk_size: int) -> int:
        return padded_length(len(self.data), chunk_size) // chunk_size

    def chunks(self, chunk_size: int) -> Iterator[Tuple[int, bytes]]:
        """
        Yield ``(offset, chunk)`` pairs covering the image contiguously.

        Offsets start at 0 and advance by ``chunk_size``; only the final
        chunk may be shorter, and only if the image is not padded.
        """
        if chunk_size <= 0:
            raise ValueError(f"Chunk size must be positive, got {chunk_size}")
        for offset in range(0, len(self.data), chunk_size):
            yield offset, self.data[offset:offset + chunk_size]
