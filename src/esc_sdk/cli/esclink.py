"""
esclink - ESC Configuration Command-Line Interface
==================================================

This module implements the command-line interface for reading and
writing the configuration of a brushless ESC through its serial
bootloader.

Usage Examples
--------------
Show the current settings:
    $ esclink read
    $ esclink read --json > settings.json

Change individual settings:
    $ esclink set timing=15 beep=40 reverse=on

Write settings from a JSON file:
    $ esclink write settings.json

Back up and restore the raw configuration block:
    $ esclink read --save backup.bin
    $ esclink restore backup.bin

Show a hex dump of the configuration block:
    $ esclink dump

Leave the bootloader and start the motor firmware:
    $ esclink run

Hardware Setup
--------------
Before using esclink, ensure:
1. The ESC signal lead is connected to a USB-serial adapter (or a flight
   controller in passthrough mode)
2. The serial port has proper permissions (dialout group on Linux)
   and is passed with --port or the ESC_PORT environment variable
3. The ESC has been powered up in bootloader mode

Failure Policy
--------------
A failed read is an error. With ``--defaults-on-failure`` the tool
instead continues with the safe default image; this is never done
without asking for it.

Exit Codes
----------
0 - Success
1 - Communication, protocol or settings error
2 - Invalid arguments or configuration error
"""

import json
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

import click

from esc_sdk import __version__
from esc_sdk.cli.errors import ExitCode, handle_cli_exception
from esc_sdk.comms import (
    PRESETS,
    VALID_BAUD_RATES,
    ProtocolConfig,
    SerialTransport,
    close_serial_port,
    get_preset,
    open_serial_port,
)
from esc_sdk.errors import IncompleteTransferError, SettingsError
from esc_sdk.session import Session
from esc_sdk.settings import (
    EXTENDED_OFFSETS,
    OFFSETS,
    SettingsRecord,
    changed_offsets,
    offset_name,
    parse_field,
    read_extended,
)

# Configure logging
logger = logging.getLogger(__name__)


# =============================================================================
# CLI Context and Utilities
# =============================================================================

class Context:
    """
    Shared context for CLI commands.

    Stores common options like port, baud rate, protocol and verbosity.
    """

    def __init__(self) -> None:
        self.port: Optional[str] = None
        self.baud: Optional[int] = None
        self.protocol: Optional[str] = None
        self.verbose: bool = False
        self.timeout: Optional[float] = None

    def setup_logging(self) -> None:
        """Configure logging based on verbosity."""
        level = logging.DEBUG if self.verbose else logging.INFO
        logging.basicConfig(
            level=level,
            format="%(levelname)s: %(message)s" if self.verbose else "%(message)s",
        )

    def protocol_config(self) -> ProtocolConfig:
        """Build the protocol configuration from options and environment."""
        base = get_preset(self.protocol) if self.protocol else None
        config = ProtocolConfig.from_env(base)
        if self.timeout is not None:
            config = config.replace(timeout=self.timeout)
        return config

    @contextmanager
    def session(self, init: bool = True, quiet: bool = False) -> Iterator[Session]:
        """
        Open the serial port, yield a Session, and close the port.

        Args:
            init: Send the bootloader handshake before yielding.
            quiet: Suppress the connection message (for JSON output).
        """
        config = self.protocol_config()

        if not self.port:
            click.echo("Error: No serial port given; use --port or set ESC_PORT.", err=True)
            raise SystemExit(ExitCode.INVALID_ARGS)

        baud = self.baud or config.baud_rate
        if not quiet:
            click.echo(f"Connecting to ESC on {self.port} at {baud} baud ({config.name})...")

        serial_port = open_serial_port(self.port, config, baud_rate=baud)
        try:
            session = Session(SerialTransport(serial_port), config)
            if init:
                session.init()
            yield session
        finally:
            close_serial_port(serial_port)


pass_context = click.make_pass_decorator(Context, ensure=True)


def progress_bar(current: int, total: int) -> None:
    """Simple text progress bar for chunked transfers."""
    if total == 0:
        return
    percent = current * 100 // total
    filled = percent // 2
    bar = "=" * filled + "-" * (50 - filled)
    click.echo(f"\r[{bar}] {percent:3d}% ({current}/{total} bytes)", nl=False)
    if current >= total:
        click.echo()  # Newline at end


def format_settings(record: SettingsRecord) -> str:
    """Format a settings record as an aligned two-column table."""
    lines = []
    for name in OFFSETS:
        value = getattr(record, name)
        if isinstance(value, bool):
            value = "on" if value else "off"
        lines.append(f"  {name:<18} {value}")
    return "\n".join(lines)


def format_hex_dump(image: bytes, base_address: int) -> str:
    """Format an image as 16-byte rows with absolute addresses."""
    lines = []
    for offset in range(0, len(image), 16):
        row = image[offset:offset + 16]
        lines.append(f"  {base_address + offset:04X}  {row.hex(' ')}")
    return "\n".join(lines)


def parse_assignments(assignments: tuple[str, ...]) -> dict:
    """
    Parse FIELD=VALUE arguments into typed setting values.

    Raises:
        click.BadParameter: If an argument is malformed or invalid.
    """
    changes = {}
    for item in assignments:
        name, sep, text = item.partition("=")
        if not sep or not name:
            raise click.BadParameter(
                f"expected FIELD=VALUE, got {item!r}", param_hint="FIELD=VALUE"
            )
        try:
            changes[name.strip()] = parse_field(name.strip(), text)
        except SettingsError as e:
            raise click.BadParameter(str(e), param_hint="FIELD=VALUE")
    return changes


def read_or_default(
    session: Session,
    defaults_on_failure: bool,
    progress=None,
) -> SettingsRecord:
    """
    Read the device settings, optionally falling back to defaults.

    The fallback is a caller policy: the session itself never
    substitutes data.
    """
    try:
        return session.read_all(progress=progress)
    except IncompleteTransferError as e:
        if not defaults_on_failure:
            raise
        click.echo(f"\nWarning: {e}", err=True)
        click.echo("Warning: continuing with default settings", err=True)
        return SettingsRecord()


def show_changes(old: SettingsRecord, new: SettingsRecord) -> int:
    """Print the settings that differ between two records."""
    count = 0
    for name in OFFSETS:
        before, after = getattr(old, name), getattr(new, name)
        if before != after:
            click.echo(f"  {name:<18} {before} -> {after}")
            count += 1
    if not count:
        click.echo("  (no changes)")
    return count


# =============================================================================
# Main CLI Group
# =============================================================================

@click.group()
@click.option(
    "-p", "--port",
    type=str,
    default=None,
    envvar="ESC_PORT",
    help="Serial port device, e.g. /dev/ttyUSB0 (default: $ESC_PORT)",
)
@click.option(
    "-b", "--baud",
    type=click.Choice([str(b) for b in VALID_BAUD_RATES]),
    default=None,
    help="Baud rate (default: the protocol's rate)",
)
@click.option(
    "-P", "--protocol",
    type=click.Choice(sorted(PRESETS), case_sensitive=False),
    default=None,
    help="Protocol dialect (default: $ESC_PROTOCOL or bootloader)",
)
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Enable verbose output (includes a hex trace of every packet)",
)
@click.option(
    "--timeout",
    type=float,
    default=None,
    help="Per-packet response timeout in seconds",
)
@click.version_option(version=__version__, prog_name="esclink")
@pass_context
def main(
    ctx: Context,
    port: Optional[str],
    baud: Optional[str],
    protocol: Optional[str],
    verbose: bool,
    timeout: Optional[float],
) -> None:
    """
    Read and write brushless ESC settings over the bootloader link.

    Power the ESC up in bootloader mode, then run a command such as
    'esclink --port /dev/ttyUSB0 read'. The port may also be given in
    $ESC_PORT.
    """
    ctx.port = port
    ctx.baud = int(baud) if baud else None
    ctx.protocol = protocol
    ctx.verbose = verbose
    ctx.timeout = timeout
    ctx.setup_logging()


# =============================================================================
# Read Command
# =============================================================================

@main.command()
@click.option(
    "--save", "-s",
    type=click.Path(dir_okay=False),
    default=None,
    help="Also save the raw configuration block to FILE",
)
@click.option(
    "--json", "as_json",
    is_flag=True,
    help="Print settings as JSON",
)
@click.option(
    "--defaults-on-failure",
    is_flag=True,
    help="Show default settings if the read fails",
)
@pass_context
def read(ctx: Context, save: Optional[str], as_json: bool, defaults_on_failure: bool) -> None:
    """
    Read and display the ESC settings.

    Example:
        esclink read
        esclink read --save backup.bin
        esclink --port /dev/ttyUSB0 read --json
    """
    try:
        with ctx.session(quiet=as_json) as session:
            record = read_or_default(
                session, defaults_on_failure,
                progress=None if as_json else progress_bar,
            )

            if save:
                if session.last_image is None:
                    click.echo("Warning: nothing read from device, not saving", err=True)
                else:
                    Path(save).write_bytes(session.last_image)
                    if not as_json:
                        click.echo(f"Saved {len(session.last_image)} bytes to {save}")

        if as_json:
            data = record.to_dict()
            del data["ramp"]
            click.echo(json.dumps(data, indent=2))
        else:
            click.echo("\nESC settings")
            click.echo("-" * 30)
            click.echo(format_settings(record))

    except Exception as e:
        handle_cli_exception(e, verbose=ctx.verbose, error_type="Read")


# =============================================================================
# Dump Command
# =============================================================================

@main.command()
@pass_context
def dump(ctx: Context) -> None:
    """
    Show a hex dump of the raw configuration block.

    Known setting bytes are listed after the dump, including bytes
    esclink reports but never writes.
    """
    try:
        with ctx.session() as session:
            image = session.read_image(progress=progress_bar)
            base = session.config.base_address

        click.echo(f"\nConfiguration block ({len(image)} bytes at 0x{base:04X})")
        click.echo(format_hex_dump(image, base))

        click.echo("\nSettings bytes:")
        for name, offset in sorted(OFFSETS.items(), key=lambda item: item[1]):
            click.echo(f"  0x{offset:02X}  {name:<18} {image[offset]:3d}")

        click.echo("\nRead-only bytes:")
        for name, value in read_extended(image).items():
            click.echo(f"  0x{EXTENDED_OFFSETS[name]:02X}  {name:<18} {value:3d}")

    except Exception as e:
        handle_cli_exception(e, verbose=ctx.verbose, error_type="Dump")


# =============================================================================
# Set Command
# =============================================================================

@main.command("set")
@click.argument("assignments", nargs=-1, required=True, metavar="FIELD=VALUE...")
@click.option(
    "--dry-run", "-n",
    is_flag=True,
    help="Show what would change without writing",
)
@click.option(
    "--defaults-on-failure",
    is_flag=True,
    help="Apply changes to default settings if the read fails",
)
@pass_context
def set_fields(
    ctx: Context,
    assignments: tuple[str, ...],
    dry_run: bool,
    defaults_on_failure: bool,
) -> None:
    """
    Change individual settings.

    The current block is read first so that bytes esclink does not
    manage are written back unchanged.

    Fields: power, range, stop_power, timing, beep, kv, poles,
    brake_on_stop, reverse, comp_pwm, var_pwm, stall_protection,
    anti_stuck. Booleans take on/off.

    Example:
        esclink set timing=15 beep=40
        esclink set reverse=on --dry-run
    """
    try:
        changes = parse_assignments(assignments)

        with ctx.session() as session:
            current = read_or_default(session, defaults_on_failure, progress=progress_bar)
            updated = current.replace(**changes)

            click.echo("\nChanges:")
            if not show_changes(current, updated):
                return
            if dry_run:
                click.echo("Dry run: nothing written.")
                return

            _write_record(session, updated)

    except Exception as e:
        handle_cli_exception(e, verbose=ctx.verbose, error_type="Write")


# =============================================================================
# Write Command
# =============================================================================

@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--defaults-on-failure",
    is_flag=True,
    help="Write onto the default block if the read fails",
)
@pass_context
def write(ctx: Context, file: str, defaults_on_failure: bool) -> None:
    """
    Write settings from a JSON file.

    FILE uses the format printed by 'esclink read --json'. Fields left
    out keep their default values.

    Example:
        esclink read --json > settings.json
        esclink write settings.json
    """
    try:
        record = SettingsRecord.from_dict(json.loads(Path(file).read_text()))

        with ctx.session() as session:
            current = read_or_default(session, defaults_on_failure, progress=progress_bar)
            click.echo("\nChanges:")
            show_changes(current, record)
            _write_record(session, record)

    except Exception as e:
        handle_cli_exception(e, verbose=ctx.verbose, error_type="Write")


def _write_record(session: Session, record: SettingsRecord) -> None:
    before = session.last_image
    image = session.write_all(record, progress=progress_bar)
    if before is not None:
        changed = changed_offsets(before, image)
        names = ", ".join(offset_name(o) or f"0x{o:02X}" for o in changed)
        click.echo(f"{len(changed)} byte(s) changed: {names or 'none'}")
    click.echo("Settings written.")


# =============================================================================
# Restore Command
# =============================================================================

@main.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@pass_context
def restore(ctx: Context, file: str) -> None:
    """
    Restore a raw configuration block saved with 'read --save'.

    Example:
        esclink restore backup.bin
    """
    try:
        image = Path(file).read_bytes()

        with ctx.session() as session:
            expected = session.config.region_length
            if len(image) != expected:
                raise SettingsError(
                    f"{file} is {len(image)} bytes, expected {expected}"
                )
            click.echo(f"Restoring {len(image)} bytes from {file}")
            session.write_image(image, progress=progress_bar)

        click.echo("Restore complete.")

    except Exception as e:
        handle_cli_exception(e, verbose=ctx.verbose, error_type="Restore")


# =============================================================================
# Run Command
# =============================================================================

@main.command()
@pass_context
def run(ctx: Context) -> None:
    """
    Leave the bootloader and start the ESC firmware.

    Example:
        esclink run
    """
    try:
        with ctx.session() as session:
            session.run_application()
        click.echo("ESC application started.")

    except Exception as e:
        handle_cli_exception(e, verbose=ctx.verbose, error_type="Run")


# =============================================================================
# Entry Point
# =============================================================================

if __name__ == "__main__":
    main()
