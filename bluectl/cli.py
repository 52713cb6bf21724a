"""Typer CLI entrypoint."""

from __future__ import annotations

import logging
from collections.abc import Callable

import typer

from bluectl.core.config import MAX_TIMEOUT_S
from bluectl.core.errors import BluectlError
from bluectl.core.model import Device, MatchSpec, Operation, OperationResult
from bluectl.core.service import BluetoothService

app = typer.Typer(help="Manage Bluetooth devices by name")

_DONE = {
    Operation.PAIR: "Paired",
    Operation.UNPAIR: "Unpaired",
    Operation.CONNECT: "Connected",
    Operation.DISCONNECT: "Disconnected",
}


def _check_timeout(value: float | None) -> float | None:
    if value is not None and not 0 <= value <= MAX_TIMEOUT_S:
        raise typer.BadParameter(f"must be between 0 and {MAX_TIMEOUT_S:g} seconds")
    return value


FilterArg = typer.Argument(..., metavar="FILTER", help="Device filter.")
PartialOpt = typer.Option(
    None,
    "--partial/--no-partial",
    "-p/-P",
    help="Match part of the device name (default) or the full name.",
    show_default=False,
)
RegexOpt = typer.Option(
    None,
    "--regex/--no-regex",
    "-r/-R",
    help="Interpret the filter as a regex pattern or apply it literally (default).",
    show_default=False,
)
AddressOpt = typer.Option(
    False,
    "--address",
    "-a",
    help="Filter is matched against the address instead of name.",
)
TimeoutOpt = typer.Option(
    None,
    "--timeout",
    "-t",
    callback=_check_timeout,
    help="Timeout for scanning and pairing attempts in seconds (default from BT_TIMEOUT).",
)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug output to stderr."),
) -> None:
    """Manage Bluetooth devices by name."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _build_service() -> BluetoothService:
    return BluetoothService()


def _print_warnings(service: BluetoothService) -> None:
    for warning in getattr(service, "runtime_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)


def _spec(
    service: BluetoothService,
    token: str,
    partial: bool | None,
    regex: bool | None,
    address: bool,
) -> MatchSpec:
    return service.match_spec(
        token,
        exact=None if partial is None else not partial,
        regex=regex,
        by_address=address,
    )


def _quoted(device: Device, quote: bool) -> str:
    if device.name is None:
        return device.address
    if quote and any(ch.isspace() for ch in device.name):
        return f"'{device.name}'"
    return device.name


def _yes_no(value: bool) -> str:
    return "yes" if value else "no"


def _run(action: Callable[[BluetoothService], None]) -> None:
    service: BluetoothService | None = None
    try:
        service = _build_service()
        action(service)
    except BluectlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None
    finally:
        if service is not None:
            _print_warnings(service)


def _control(
    operation: Operation,
    token: str,
    partial: bool | None,
    regex: bool | None,
    address: bool,
    timeout: float | None = None,
    scan: bool = False,
) -> None:
    def action(service: BluetoothService) -> None:
        spec = _spec(service, token, partial, regex, address)
        if operation is Operation.PAIR:
            typer.echo(f"Attempting to pair with '{token}'...")
        result: OperationResult = service.control(operation, spec, timeout_s=timeout, scan=scan)
        typer.echo(f"{_DONE[operation]} {result.device.label} ({result.device.address}).")

    _run(action)


@app.command("list")
def list_devices(
    long_output: bool = typer.Option(False, "--long", "-l", help="Use a long listing format."),
    linewise: bool = typer.Option(False, "--linewise", "-1", help="Only print one device per line."),
    all_devices: bool = typer.Option(
        False,
        "--all",
        "-a",
        help="Scan for nearby discoverable unpaired devices and include them in the output.",
    ),
    timeout: float | None = TimeoutOpt,
) -> None:
    """List paired Bluetooth devices."""
    if timeout is not None and not all_devices:
        raise typer.BadParameter("--timeout requires --all", param_hint="'--timeout'")

    def action(service: BluetoothService) -> None:
        devices = service.list_devices(scan=all_devices, timeout_s=timeout)
        if not devices:
            typer.echo("No Bluetooth devices found")
            return
        if long_output:
            for device in devices:
                typer.echo(f"{device.address} {_quoted(device, quote=True)}")
        elif linewise:
            for device in devices:
                typer.echo(_quoted(device, quote=True))
        else:
            typer.echo("  ".join(_quoted(device, quote=True) for device in devices))

    _run(action)


@app.command("info")
def info(
    token: str = FilterArg,
    partial: bool | None = PartialOpt,
    regex: bool | None = RegexOpt,
    address: bool = AddressOpt,
) -> None:
    """Get detailed information about a Bluetooth device."""

    def action(service: BluetoothService) -> None:
        device = service.info(_spec(service, token, partial, regex, address))
        lines = [
            f"{device.address} {device.label}",
            f"\tPaired: {_yes_no(device.paired)}",
            f"\tBonded: {_yes_no(device.bonded)}",
            f"\tTrusted: {_yes_no(device.trusted)}",
            f"\tBlocked: {_yes_no(device.blocked)}",
            f"\tConnected: {_yes_no(device.connected)}",
        ]
        if device.remote_name is not None:
            lines.append(f"\tRemote Name: {device.remote_name}")
        if device.battery is not None:
            lines.append(f"\tBattery Percentage: {device.battery}")
        if device.icon is not None:
            lines.append(f"\tIcon: {device.icon}")
        if device.rssi is not None:
            lines.append(f"\tRSSI: {device.rssi}")
        typer.echo("\n".join(lines))

    _run(action)


@app.command("connect")
def connect(
    token: str = FilterArg,
    partial: bool | None = PartialOpt,
    regex: bool | None = RegexOpt,
    address: bool = AddressOpt,
    timeout: float | None = TimeoutOpt,
) -> None:
    """Connect to a Bluetooth device."""
    _control(Operation.CONNECT, token, partial, regex, address, timeout)


@app.command("disconnect")
def disconnect(
    token: str = FilterArg,
    partial: bool | None = PartialOpt,
    regex: bool | None = RegexOpt,
    address: bool = AddressOpt,
) -> None:
    """Disconnect from a Bluetooth device."""
    _control(Operation.DISCONNECT, token, partial, regex, address)


@app.command("pair")
def pair(
    token: str = FilterArg,
    partial: bool | None = PartialOpt,
    regex: bool | None = RegexOpt,
    address: bool = AddressOpt,
    timeout: float | None = TimeoutOpt,
    scan: bool = typer.Option(True, "--scan/--no-scan", help="Scan for the device before pairing."),
) -> None:
    """Pair with a Bluetooth device.

    Scanning stops as soon as FILTER selects exactly one device; --timeout
    bounds both the scan and the pairing attempt.
    """
    _control(Operation.PAIR, token, partial, regex, address, timeout, scan=scan)


@app.command("unpair")
def unpair(
    token: str = FilterArg,
    partial: bool | None = PartialOpt,
    regex: bool | None = RegexOpt,
    address: bool = AddressOpt,
) -> None:
    """Unpair from a Bluetooth device."""
    _control(Operation.UNPAIR, token, partial, regex, address)


app.command("ls", hidden=True)(list_devices)
app.command("i", hidden=True)(info)
app.command("c", hidden=True)(connect)
app.command("dc", hidden=True)(disconnect)
app.command("p", hidden=True)(pair)
app.command("up", hidden=True)(unpair)


def run() -> None:
    app()


if __name__ == "__main__":
    run()
