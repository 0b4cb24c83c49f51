"""
Arduino Uploader CLI

Command-line interface for flashing compiled sketches through the board's
serial bootloader, with write gating and bootloader diagnostics.
"""

import sys
import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.logging import RichHandler
from rich.progress import Progress, BarColumn, TextColumn

from arduino_uploader import __version__
from arduino_uploader.core.parsing import (
    parse_offset as _parse_offset_core,
    parse_baudrate as _parse_baudrate_core,
    parse_seconds as _parse_seconds_core,
)
from arduino_uploader.core.safety import (
    CONFIRMATION_TOKEN,
    SafetyContext,
    WritePermissionError,
    create_cli_safety_context,
    require_write_permission,
)
from arduino_uploader.core.results import OperationResult
from arduino_uploader.core.messages import (
    WarningItem,
    MessageLevel,
    result_to_warnings,
    COMMON_WARNINGS,
)
from arduino_uploader.core.diagnostics import LoggingObserver
from arduino_uploader.models import (
    list_boards as registry_list_boards,
    get_board as registry_get_board,
    resolve_board as registry_resolve_board,
    board_to_dict,
    BoardConfig,
)
from arduino_uploader.strategies.base import CallbackPrompt, FlashOptions
from arduino_uploader.upload_manager import upload_firmware, probe_bootloader

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    handlers=[RichHandler(rich_tracebacks=True)],
)
logger = logging.getLogger("arduino_uploader")

# Setup Rich console
console = Console()

app = typer.Typer(help="🔌 Arduino Uploader - Flash sketches through native serial bootloaders")


def print_header(text: str) -> None:
    """Print fancy header."""
    console.print(Panel(text, expand=False, style="bold blue"))


def print_success(text: str) -> None:
    console.print(f"✓ {text}", style="green")


def print_warning(text: str) -> None:
    console.print(f"⚠️  {text}", style="yellow")


def print_error(text: str) -> None:
    console.print(f"❌ {text}", style="red")


def print_structured_warning(warning: WarningItem, verbose: bool = False) -> None:
    """Print a structured warning with optional remediation."""
    if warning.level == MessageLevel.ERROR:
        style = "red"
        icon = "❌"
    elif warning.level == MessageLevel.WARN:
        style = "yellow"
        icon = "⚠️"
    else:
        style = "blue"
        icon = "ℹ️"

    console.print(f"{icon} [{warning.code.value}] {warning.title}", style=style, markup=False)
    if verbose and warning.detail:
        console.print(f"   {warning.detail}", style="dim")
    if verbose and warning.remediation:
        console.print(f"   → {warning.remediation}", style="cyan")


def print_warnings_from_result(result: OperationResult, verbose: bool = False) -> None:
    """Print all warnings and errors from an OperationResult."""
    for warning in result_to_warnings(result):
        print_structured_warning(warning, verbose=verbose)


def parse_offset(value: Optional[str]) -> Optional[int]:
    """
    CLI wrapper around core.parsing.parse_offset that converts
    ValueError to typer.BadParameter.
    """
    try:
        return _parse_offset_core(value)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def parse_baudrate(value: Optional[str]) -> Optional[int]:
    try:
        return _parse_baudrate_core(value)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def parse_seconds(value: Optional[str]) -> Optional[float]:
    try:
        return _parse_seconds_core(value)
    except ValueError as e:
        raise typer.BadParameter(str(e))


def configure_verbosity(verbose: bool) -> Optional[LoggingObserver]:
    """Switch the package loggers to DEBUG and return a trace observer."""
    if not verbose:
        return None
    logger.setLevel(logging.DEBUG)
    return LoggingObserver()


def manual_reset_prompt(progress: Optional[Progress] = None) -> Optional[CallbackPrompt]:
    """Prompt for a double-tap reset, only when someone can answer."""
    if not sys.stdin.isatty():
        return None

    def ask(message: str) -> bool:
        # The live bar would redraw over the question
        if progress is not None:
            progress.stop()
        try:
            return typer.confirm(f"\n{message}", default=True)
        finally:
            if progress is not None:
                progress.start()

    return CallbackPrompt(ask)


def confirm_upload(
    safety_ctx: SafetyContext,
    port: str,
    firmware: str,
    board: Optional[BoardConfig],
    options: FlashOptions,
) -> Optional[OperationResult]:
    """
    Ask for the WRITE confirmation before any progress display starts.

    Returns:
        A failure result when the upload is refused, None to proceed
    """
    offset = options.flash_offset
    if offset is None and board is not None:
        offset = board.layout.flash_write_offset
    try:
        require_write_permission(
            safety_ctx,
            port=port,
            bytes_length=Path(firmware).stat().st_size,
            offset=offset,
        )
    except WritePermissionError as e:
        return OperationResult.failure(
            "upload", e.reason, board=safety_ctx.board, port=port, metadata=e.details
        )
    # Confirmed once; the gate inside upload_firmware must not ask again
    safety_ctx.confirmation_token = CONFIRMATION_TOKEN
    safety_ctx.interactive = False
    return None


def show_write_details(details: dict) -> None:
    """Render what is about to be written before asking for confirmation."""
    print_header("⚠️  UPLOAD CONFIRMATION")
    table = Table(title="Upload Details")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="yellow")
    table.add_row("Board", details.get("board", "Unknown"))
    table.add_row("Port", details.get("port", "-"))
    table.add_row("Firmware Size", f"{details.get('bytes_length', 0):,} bytes")
    if "offset" in details:
        table.add_row("Flash Offset", details["offset"])
    console.print(table)
    print_warning("The sketch currently on the board will be erased.")


def build_options(
    verify: bool,
    skip_touch: bool,
    dry_run: bool,
    offset: Optional[str],
    commit_wait: Optional[str],
    baud: Optional[str],
) -> FlashOptions:
    return FlashOptions(
        verify=verify,
        skip_touch=skip_touch,
        dry_run=dry_run,
        flash_offset=parse_offset(offset),
        commit_settle=parse_seconds(commit_wait),
        baud_rate=parse_baudrate(baud),
    )


def print_result_table(result: OperationResult) -> None:
    table = Table(title="Upload Results" if result.operation != "probe" else "Probe Results")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Board", result.board)
    table.add_row("Port", result.port or "-")
    if result.bytes_len:
        table.add_row("Bytes", f"{result.bytes_len:,}")
    for key in ("baudrate", "version", "protocol", "flash_offset", "chunks", "elapsed", "verified"):
        if key in result.metadata:
            table.add_row(key.replace("_", " ").title(), str(result.metadata[key]))
    for name, value in result.hashes.items():
        table.add_row(name.upper(), value)
    console.print(table)


@app.command()
def ports() -> None:
    """List available serial ports."""
    print_header("Available Serial Ports")

    import serial.tools.list_ports

    ports_list = list(serial.tools.list_ports.comports())
    if not ports_list:
        print_warning("No serial ports found")
        return

    table = Table(title="Serial Ports")
    table.add_column("Port", style="cyan")
    table.add_column("VID:PID", style="magenta")
    table.add_column("Description", style="green")

    for port in ports_list:
        if port.vid is not None and port.pid is not None:
            ids = f"{port.vid:04X}:{port.pid:04X}"
        else:
            ids = "-"
        table.add_row(port.device, ids, port.description or "-")

    console.print(table)


@app.command("list-boards")
def list_boards() -> None:
    """List supported boards and their upload protocol."""
    print_header("Supported Boards")

    table = Table(title="Board Registry")
    table.add_column("FQBN Prefix", style="cyan")
    table.add_column("Name", style="green")
    table.add_column("Protocol", style="blue")
    table.add_column("Baud", style="magenta")
    table.add_column("Flash Offset", style="yellow")

    for prefix in registry_list_boards():
        board = registry_get_board(prefix)
        table.add_row(
            prefix,
            board.name,
            board.protocol.value,
            str(board.baud_rate),
            f"0x{board.layout.flash_write_offset:08X}",
        )

    console.print(table)


@app.command("show-board")
def show_board(
    fqbn: str = typer.Argument(..., help="Board FQBN or prefix (e.g., arduino:renesas_uno:unor4wifi)"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON for scripting"),
) -> None:
    """Show the upload configuration used for a board."""
    board = registry_resolve_board(fqbn)
    if board is None:
        print_error(f"Board '{fqbn}' not found.")
        console.print()
        console.print("Available boards:")
        for prefix in registry_list_boards():
            console.print(f"  - {prefix}")
        sys.exit(1)

    info = board_to_dict(board)
    if output_json:
        typer.echo(json.dumps(info, indent=2))
        return

    print_header(f"Board Configuration: {board.name}")
    table = Table(title=f"{board.fqbn_prefix}")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")

    for key, value in info.items():
        if key in ("timing", "notes"):
            continue
        if isinstance(value, list):
            value = ", ".join(str(v) for v in value) or "-"
        table.add_row(key.replace("_", " ").title(), str(value))
    for key, value in info["timing"].items():
        table.add_row(f"Timing: {key}", f"{value}s" if isinstance(value, float) else str(value))

    console.print(table)
    for note in info["notes"]:
        console.print(f"  • {note}", style="dim")


@app.command()
def probe(
    port: str = typer.Option(..., "--port", "-p", help="Serial port"),
    fqbn: str = typer.Option(..., "--fqbn", "-b", help="Board FQBN"),
    baud: Optional[str] = typer.Option(None, "--baud", help="Override the primary baud rate"),
    skip_touch: bool = typer.Option(False, "--skip-touch", help="Board is already in its bootloader"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show the protocol trace"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON for scripting"),
) -> None:
    """
    Enter the bootloader and report its baud rate and version.

    Nothing is erased or written, but entering the bootloader resets the board.
    """
    observer = configure_verbosity(verbose)
    if not output_json:
        print_header("Probe Bootloader")
        console.print(f"Port: {port}")
        console.print(f"Board: {fqbn}")

    options = FlashOptions(skip_touch=skip_touch, baud_rate=parse_baudrate(baud))
    result = probe_bootloader(
        port,
        fqbn,
        options=options,
        prompt=None if output_json else manual_reset_prompt(),
        observer=observer,
    )

    if output_json:
        typer.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.ok else 1)

    if result.ok:
        print_result_table(result)
        print_success(f"Bootloader found at {result.metadata['baudrate']} baud")
        if "version" not in result.metadata:
            print_warning("Bootloader did not report a version string")
        return

    print_warnings_from_result(result, verbose=True)
    sys.exit(1)


@app.command()
def upload(
    firmware: str = typer.Argument(..., help="Compiled firmware image (.bin)"),
    port: str = typer.Option(..., "--port", "-p", help="Serial port"),
    fqbn: str = typer.Option(..., "--fqbn", "-b", help="Board FQBN"),
    baud: Optional[str] = typer.Option(None, "--baud", help="Override the primary baud rate"),
    offset: Optional[str] = typer.Option(
        None,
        "--offset",
        "-o",
        help="Flash offset: decimal (8192), hex (0x2000), or suffix (2000h)",
    ),
    commit_wait: Optional[str] = typer.Option(
        None,
        "--commit-wait",
        help="Settle time after the last chunk (e.g., 10, 2.5s, 500ms)",
    ),
    verify: bool = typer.Option(False, "--verify", help="Check the device CRC after writing (BOSSA boards)"),
    skip_touch: bool = typer.Option(False, "--skip-touch", help="Board is already in its bootloader"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Resolve and plan only, no write"),
    write: bool = typer.Option(False, "--write", help="Required flag to enable the actual upload"),
    confirm: Optional[str] = typer.Option(
        None,
        "--confirm",
        help=f"Non-interactive confirmation token (must be '{CONFIRMATION_TOKEN}')",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show the protocol trace"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON for scripting"),
) -> None:
    """
    Upload a compiled sketch to the board.

    Steps:
    1. Enter the bootloader (1200 baud touch or DTR/RTS reset)
    2. Find the bootloader and its baud rate
    3. Erase, write and commit the image in chunks
    4. Reset into the new sketch
    """
    observer = configure_verbosity(verbose)

    if not Path(firmware).exists():
        print_error(f"Firmware file not found: {firmware}")
        sys.exit(1)

    options = build_options(verify, skip_touch, dry_run, offset, commit_wait, baud)
    board = registry_resolve_board(fqbn)
    safety_ctx = create_cli_safety_context(
        write_flag=write,
        board=fqbn,
        board_known=board is not None,
        dry_run=dry_run,
        confirmation_token=confirm,
    )
    if output_json:
        # Prompts would corrupt the JSON on stdout
        safety_ctx.interactive = False
    safety_ctx.prompt_confirmation = lambda message: typer.prompt(message, default="", show_default=False)
    safety_ctx.show_details = show_write_details

    if not output_json:
        print_header("Upload Firmware")
        console.print(f"Port: {port}")
        console.print(f"Board: {fqbn}")
        console.print(f"Firmware: {firmware}")
        if options.flash_offset is not None:
            console.print(f"Offset: 0x{options.flash_offset:08X}")

    result = None
    if safety_ctx.interactive and not dry_run:
        result = confirm_upload(safety_ctx, port, firmware, board, options)

    if result is None and output_json:
        result = upload_firmware(port, firmware, fqbn, safety_ctx, options, observer=observer)
    elif result is None:
        with Progress(
            TextColumn("[{task.description}]"),
            BarColumn(),
            TextColumn("[{task.percentage:.0f}%]"),
            console=console,
        ) as progress:
            task = progress.add_task("Starting...", total=100)

            def on_progress(percent: int, message: str) -> None:
                progress.update(task, completed=percent, description=message)

            result = upload_firmware(
                port,
                firmware,
                fqbn,
                safety_ctx,
                options,
                on_progress=on_progress,
                prompt=manual_reset_prompt(progress),
                observer=observer,
            )

    if output_json:
        typer.echo(json.dumps(result.to_dict(), indent=2))
        sys.exit(0 if result.ok else 1)

    if not result.ok:
        print_warnings_from_result(result, verbose=True)
        if not write and not dry_run:
            print_structured_warning(COMMON_WARNINGS["write_disabled"], verbose=True)
        print_error(f"Upload failed: {result.errors[0]}")
        if verbose:
            for line in result.logs:
                console.print(line, style="dim", markup=False)
        sys.exit(1)

    print_result_table(result)
    print_warnings_from_result(result, verbose=verbose)
    if dry_run:
        print_success("Dry run complete: no data written")
    else:
        print_success("Firmware uploaded successfully!")


@app.command()
def version() -> None:
    """Show the arduino-uploader version."""
    console.print(f"arduino-uploader {__version__}")


def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        sys.exit(0)
    except Exception as e:
        console.print(f"\n[red bold]Fatal error:[/red bold] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
