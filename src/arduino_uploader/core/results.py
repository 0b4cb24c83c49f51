"""
Result objects for upload operations.

The CLI renders these; library callers can inspect them or serialize
them with ``to_dict``.
"""

from dataclasses import dataclass, field
from typing import List, Dict, Any


@dataclass
class OperationResult:
    """
    Outcome of an upload-level operation.

    Attributes:
        ok: Whether the operation completed successfully
        operation: Name of the operation (e.g., "upload", "probe")
        board: Board FQBN the operation targeted
        port: Serial port used
        bytes_len: Number of firmware bytes written (after padding)
        hashes: Digests of the image (sha256, crc16)
        warnings: Non-fatal issues encountered
        errors: Failures that stopped the operation
        metadata: Extra data (baud rate, bootloader version, chunks, ...)
        logs: Log lines captured while the operation ran
    """
    ok: bool
    operation: str
    board: str = ""
    port: str = ""
    bytes_len: int = 0
    hashes: Dict[str, str] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    logs: List[str] = field(default_factory=list)

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def add_error(self, message: str) -> None:
        """Add an error message and mark result as failed."""
        self.errors.append(message)
        self.ok = False

    def to_summary(self) -> str:
        """Human-readable multi-line summary for terminal output."""
        status = "SUCCESS" if self.ok else "FAILED"
        lines = [f"[{status}] {self.operation}"]

        if self.board:
            lines.append(f"  Board: {self.board}")
        if self.port:
            lines.append(f"  Port: {self.port}")
        if self.bytes_len:
            lines.append(f"  Bytes: {self.bytes_len:,}")
        if "baudrate" in self.metadata:
            lines.append(f"  Baud: {self.metadata['baudrate']}")
        if self.metadata.get("version"):
            lines.append(f"  Bootloader: {self.metadata['version']}")

        for name, value in self.hashes.items():
            lines.append(f"  {name}: {value[:16]}")

        if self.warnings:
            lines.append("  Warnings:")
            for warn in self.warnings:
                lines.append(f"    - {warn}")

        if self.errors:
            lines.append("  Errors:")
            for err in self.errors:
                lines.append(f"    - {err}")

        return "\n".join(lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "operation": self.operation,
            "board": self.board,
            "port": self.port,
            "bytes_len": self.bytes_len,
            "hashes": self.hashes,
            "warnings": self.warnings,
            "errors": self.errors,
            "metadata": self.metadata,
            "logs": self.logs,
        }

    @classmethod
    def success(
        cls,
        operation: str,
        board: str = "",
        port: str = "",
        bytes_len: int = 0,
        **kwargs,
    ) -> "OperationResult":
        return cls(
            ok=True,
            operation=operation,
            board=board,
            port=port,
            bytes_len=bytes_len,
            **kwargs,
        )

    @classmethod
    def failure(
        cls,
        operation: str,
        error: str,
        board: str = "",
        **kwargs,
    ) -> "OperationResult":
        result = cls(ok=False, operation=operation, board=board, **kwargs)
        result.errors.append(error)
        return result
