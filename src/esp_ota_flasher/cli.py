"""
ESP OTA Flasher CLI

Command-line front end for ArduinoOTA uploads: upload, ping, info.
"""

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

from esp_ota_flasher import __version__
from esp_ota_flasher.core.actions import check_connection, flash_firmware, inspect_firmware
from esp_ota_flasher.core.messages import MessageLevel, WarningItem, result_to_warnings
from esp_ota_flasher.core.parsing import parse_command, parse_target
from esp_ota_flasher.core.results import UploadResult
from esp_ota_flasher.settings import DEFAULT_OTA_PORT, ESP8266_OTA_PORT, OTASettings

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
)
logger = logging.getLogger("esp_ota_flasher")

# Setup Rich console
console = Console()

app = typer.Typer(help="📡 ESP OTA Flasher - ArduinoOTA firmware uploads over Wi-Fi")


def print_header(text: str) -> None:
    """Print fancy header."""
    console.print(Panel(text, expand=False, style="bold blue"))


def print_success(text: str) -> None:
    console.print(f"✓ {text}", style="green")


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

    console.print(f"{icon} [{warning.code.value}] {warning.title}", style=style)
    if verbose and warning.detail:
        console.print(f"   {warning.detail}", style="dim")
    if warning.remediation:
        console.print(f"   → {warning.remediation}", style="cyan")


def print_warnings_from_result(result: UploadResult, verbose: bool = False) -> None:
    """Print all warnings and errors from a result using structured format."""
    for warning in result_to_warnings(result):
        print_structured_warning(warning, verbose=verbose)


def resolve_target(target: str, port: Optional[int]) -> tuple:
    """
    Parse --target, letting an explicit --port win over HOST:PORT.

    Converts ValueError to typer.BadParameter for proper CLI error handling.
    """
    try:
        host, parsed_port = parse_target(target, DEFAULT_OTA_PORT)
    except ValueError as e:
        raise typer.BadParameter(str(e))
    return host, port if port is not None else parsed_port


def load_settings() -> OTASettings:
    try:
        return OTASettings.from_env()
    except ValueError as e:
        raise typer.BadParameter(str(e))


def set_verbosity(verbose: bool) -> None:
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)


@app.command()
def upload(
    firmware: Path = typer.Argument(..., help="Firmware image (.bin)"),
    target: str = typer.Option(..., "--target", "-t", help="Device address, HOST or HOST:PORT"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help=f"Device OTA port (default {DEFAULT_OTA_PORT}, ESP8266 uses {ESP8266_OTA_PORT})"),
    password: str = typer.Option("", "--password", "-a", help="OTA password, if the device has one"),
    command: str = typer.Option("flash", "--command", "-c", help="flash or spiffs"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output result as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Upload a firmware image to a device running ArduinoOTA."""
    set_verbosity(verbose)
    host, ota_port = resolve_target(target, port)
    try:
        ota_command = parse_command(command)
    except ValueError as e:
        raise typer.BadParameter(str(e))
    settings = load_settings()

    if output_json:
        result = flash_firmware(
            host, ota_port, firmware, password, ota_command, settings=settings
        )
        console.print_json(json.dumps(result.to_dict()))
        raise typer.Exit(code=0 if result.ok else 1)

    print_header(f"OTA upload: {firmware.name} → {host}:{ota_port} ({ota_command.name})")

    with Progress(
        TextColumn("[{task.description}]"),
        BarColumn(),
        TextColumn("[{task.percentage:.0f}%]"),
        console=console,
    ) as progress:
        task = progress.add_task("Uploading...", total=100)

        def on_progress(fraction: float) -> None:
            progress.update(task, completed=fraction * 100)

        result = flash_firmware(
            host,
            ota_port,
            firmware,
            password,
            ota_command,
            on_progress=on_progress,
            settings=settings,
        )

    if result.ok:
        table = Table(title="Upload Result")
        table.add_column("Property", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("Target", result.target)
        table.add_row("Bytes", f"{result.bytes_len:,}")
        table.add_row("MD5", result.digest)
        table.add_row("Local port", str(result.metadata.get("local_port", "")))
        console.print(table)
        print_success(result.message)
        return

    print_error(f"Upload failed (state: {result.metadata.get('state', 'unknown')})")
    print_warnings_from_result(result, verbose=verbose)
    raise typer.Exit(code=1)


@app.command()
def ping(
    target: str = typer.Option(..., "--target", "-t", help="Device address, HOST or HOST:PORT"),
    port: Optional[int] = typer.Option(None, "--port", "-p", help=f"Device OTA port (default {DEFAULT_OTA_PORT}, ESP8266 uses {ESP8266_OTA_PORT})"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    """Check that a device answers OTA invitations (nothing is uploaded)."""
    set_verbosity(verbose)
    host, ota_port = resolve_target(target, port)

    result = check_connection(host, ota_port, settings=load_settings())
    if result.ok:
        print_success(f"{host}:{ota_port} is ready for OTA")
        return

    print_error(f"{host}:{ota_port} did not answer the OTA invitation")
    print_warnings_from_result(result, verbose=verbose)
    raise typer.Exit(code=1)


@app.command()
def info(
    firmware: Path = typer.Argument(..., help="Firmware image (.bin)"),
    output_json: bool = typer.Option(False, "--json", "-j", help="Output as JSON for scripting"),
) -> None:
    """Show size, MD5 and chunk count of a firmware image."""
    result = inspect_firmware(firmware, settings=load_settings())

    if output_json:
        console.print_json(json.dumps(result.to_dict()))
        raise typer.Exit(code=0 if result.ok else 1)

    if not result.ok:
        print_warnings_from_result(result)
        raise typer.Exit(code=1)

    table = Table(title=f"Firmware: {firmware.name}")
    table.add_column("Property", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Size", f"{result.bytes_len:,} bytes")
    table.add_row("MD5", result.digest)
    table.add_row("Chunks", f"{result.metadata['chunks']} × {result.metadata['chunk_size']} bytes")
    console.print(table)


@app.command()
def version() -> None:
    """Show version."""
    console.print(f"esp-ota-flasher {__version__}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
