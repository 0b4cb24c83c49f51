"""
Write gating for uploads.

Flashing erases whatever sketch is on the board, so every upload must be
explicitly enabled and confirmed before the board is touched.
"""

import sys
from dataclasses import dataclass, field
from typing import Optional, List, Callable

# Confirmation token required for non-interactive writes
CONFIRMATION_TOKEN = "WRITE"


class WritePermissionError(Exception):
    """
    Raised when an upload is not permitted.

    Attributes:
        reason: Human-readable explanation of why the upload was denied
        details: Additional context (board, port, size)
    """
    def __init__(self, reason: str, details: Optional[dict] = None):
        self.reason = reason
        self.details = details or {}
        super().__init__(reason)


@dataclass
class SafetyContext:
    """
    Everything needed to decide whether an upload may proceed.

    Attributes:
        write_enabled: Whether the --write flag was given
        confirmation_token: Non-interactive confirmation, must equal "WRITE"
        interactive: Whether the user can be prompted
        board: Board FQBN being flashed
        board_known: Whether the board resolved to a registered family
        dry_run: Nothing will be written
        warnings: Warnings accumulated while gating
    """
    write_enabled: bool = False
    confirmation_token: Optional[str] = None
    interactive: bool = True
    board: str = ""
    board_known: bool = False
    dry_run: bool = False
    warnings: List[str] = field(default_factory=list)

    # Interactive hooks, set by the CLI
    prompt_confirmation: Optional[Callable[[str], str]] = None
    show_details: Optional[Callable[[dict], None]] = None

    def add_warning(self, message: str) -> None:
        self.warnings.append(message)

    def to_details_dict(
        self,
        port: str = "",
        bytes_length: int = 0,
        offset: Optional[int] = None,
    ) -> dict:
        """Create a details dictionary for display."""
        details = {
            "board": self.board or "Unknown",
            "port": port,
            "bytes_length": bytes_length,
        }
        if offset is not None:
            details["offset"] = f"0x{offset:08X}"
        if self.warnings:
            details["warnings"] = self.warnings
        return details


def require_write_permission(
    ctx: SafetyContext,
    port: str = "",
    bytes_length: int = 0,
    offset: Optional[int] = None,
) -> None:
    """
    Enforce upload permission rules.

    Rules, in order:
    1. Dry runs are always allowed
    2. --write must be given
    3. The board must be a registered one
    4. A confirmation token, if given, must match exactly
    5. Otherwise the user is prompted interactively

    Raises:
        WritePermissionError: If the upload is not permitted
    """
    details = ctx.to_details_dict(port, bytes_length, offset)

    if ctx.dry_run:
        return

    if not ctx.write_enabled:
        raise WritePermissionError(
            "Upload requires explicit permission: use the --write flag.",
            details=details,
        )

    if not ctx.board_known:
        raise WritePermissionError(
            f"Refusing to upload to unknown board '{ctx.board}'.",
            details=details,
        )

    if ctx.confirmation_token is not None:
        if ctx.confirmation_token.strip().upper() != CONFIRMATION_TOKEN:
            raise WritePermissionError(
                f"Confirmation token mismatch. Expected '{CONFIRMATION_TOKEN}'.",
                details=details,
            )
        return

    if not ctx.interactive:
        raise WritePermissionError(
            "Non-interactive mode requires --confirm WRITE.",
            details=details,
        )

    if ctx.show_details:
        ctx.show_details(details)

    if ctx.prompt_confirmation is None:
        raise WritePermissionError(
            "Interactive confirmation required but no prompt handler set. "
            "Pass --confirm WRITE for non-interactive mode.",
            details=details,
        )

    user_input = ctx.prompt_confirmation(
        f"Type '{CONFIRMATION_TOKEN}' to proceed, or anything else to abort"
    )
    if user_input.strip().upper() != CONFIRMATION_TOKEN:
        raise WritePermissionError(
            "Confirmation failed. Upload aborted by user.",
            details=details,
        )


def create_cli_safety_context(
    write_flag: bool,
    board: str = "",
    board_known: bool = True,
    dry_run: bool = False,
    confirmation_token: Optional[str] = None,
) -> SafetyContext:
    """
    Create a SafetyContext for CLI usage.

    Interactive only when stdin is a TTY and no token was passed.
    """
    interactive = sys.stdin.isatty() and confirmation_token is None

    return SafetyContext(
        write_enabled=write_flag,
        confirmation_token=confirmation_token,
        interactive=interactive,
        board=board,
        board_known=board_known,
        dry_run=dry_run,
    )
