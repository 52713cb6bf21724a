"""BlueZ stack implementation driving the ``bluetoothctl`` command line tool."""

from __future__ import annotations

import logging
import queue
import re
import subprocess
import threading
from collections.abc import Sequence

from bluectl.core.config import MAX_TIMEOUT_S
from bluectl.core.errors import StackCommandError, StackTimeoutError, StackUnavailableError
from bluectl.core.model import Device

LOGGER = logging.getLogger(__name__)

_ANSI_RE = re.compile(r"\x1b\[[0-9;]*[A-Za-z]|\x01|\x02")
_DEVICE_LINE_RE = re.compile(r"^Device\s+([0-9A-F:]{17})(?:\s+(.*))?$", re.IGNORECASE)
_EVENT_RE = re.compile(
    r"\[(NEW|CHG)\]\s+Device\s+([0-9A-F]{2}(?::[0-9A-F]{2}){5})\s*(.*)$",
    re.IGNORECASE,
)
_PROPERTY_RE = re.compile(r"^([A-Za-z][A-Za-z ]*):\s*(.*)$")
_NUMBER_RE = re.compile(r"\((-?\d+)\)\s*$|^(-?\d+)$")
_BLUEZ_ERROR_RE = re.compile(r"(org\.bluez\.Error\.\w+)")

_UNAVAILABLE_MARKERS = (
    "No default controller available",
    "Waiting to connect to bluetoothd",
    "org.freedesktop.DBus.Error",
)
_SUCCESS_MARKERS = {
    "pair": "Pairing successful",
    "remove": "Device has been removed",
    "connect": "Connection successful",
    "disconnect": "Successful disconnected",
}


def _strip(text: str) -> str:
    return _ANSI_RE.sub("", text)


def _placeholder_name(address: str) -> str:
    # BlueZ aliases unresolved peers as their address with dashes
    return address.replace(":", "-")


def _number(value: str) -> int | None:
    match = _NUMBER_RE.search(value.strip())
    if not match:
        return None
    return int(match.group(1) or match.group(2))


def _bounded(timeout_s: float) -> float:
    if not timeout_s >= 0:
        return 0.0
    return min(timeout_s, MAX_TIMEOUT_S)


def _yes(value: str) -> bool:
    return value.strip().lower() == "yes"


def parse_info(output: str) -> Device | None:
    """Parse ``bluetoothctl info ADDRESS`` output into a Device."""
    address: str | None = None
    props: dict[str, str] = {}
    for raw in _strip(output).splitlines():
        line = raw.strip()
        if address is None:
            match = _DEVICE_LINE_RE.match(line)
            if match:
                address = match.group(1).upper()
            continue
        match = _PROPERTY_RE.match(line)
        if match:
            props.setdefault(match.group(1), match.group(2).strip())
    if address is None:
        return None

    name = props.get("Alias") or props.get("Name")
    if name == _placeholder_name(address):
        name = None
    battery = props.get("Battery Percentage")
    rssi = props.get("RSSI")
    return Device(
        address=address,
        name=name,
        paired=_yes(props.get("Paired", "no")),
        connected=_yes(props.get("Connected", "no")),
        trusted=_yes(props.get("Trusted", "no")),
        bonded=_yes(props.get("Bonded", "no")),
        blocked=_yes(props.get("Blocked", "no")),
        rssi=_number(rssi) if rssi else None,
        remote_name=props.get("Name"),
        icon=props.get("Icon"),
        battery=_number(battery) if battery else None,
    )


def parse_event(line: str) -> Device | None:
    """Parse one interactive ``bluetoothctl`` line into a device observation.

    Only new devices and alias/RSSI changes are observations; other property
    changes are owned by the stack and picked up on refresh.
    """
    match = _EVENT_RE.search(_strip(line).strip())
    if not match:
        return None
    kind, address, rest = match.group(1).upper(), match.group(2).upper(), match.group(3).strip()
    if kind == "NEW":
        name = rest or None
        if name == _placeholder_name(address):
            name = None
        return Device(address=address, name=name)

    prop = _PROPERTY_RE.match(rest)
    if not prop:
        return None
    key, value = prop.group(1), prop.group(2).strip()
    if key == "Alias" and value and value != _placeholder_name(address):
        return Device(address=address, name=value)
    if key == "RSSI":
        rssi = _number(value)
        if rssi is not None:
            return Device(address=address, rssi=rssi)
    return None


class BluetoothctlStack:
    def __init__(
        self,
        *,
        executable: str = "bluetoothctl",
        command_timeout_s: float = 10.0,
    ) -> None:
        self.executable = executable
        self.command_timeout_s = _bounded(command_timeout_s)
        self._scan_process: subprocess.Popen[str] | None = None
        self._reader: threading.Thread | None = None
        self._events: queue.Queue[Device] = queue.Queue()
        self._discovery_ready = threading.Event()
        self._discovery_error: str | None = None

    def list_known_devices(self) -> list[Device]:
        try:
            result = self._run(["devices"])
        except StackTimeoutError as exc:
            raise StackUnavailableError(f"Bluetooth stack unavailable: {exc}") from exc
        output = _strip(result.stdout or "")
        self._check_available(result, output)

        devices: list[Device] = []
        seen: set[str] = set()
        for line in output.splitlines():
            match = _DEVICE_LINE_RE.match(line.strip())
            if not match:
                continue
            address = match.group(1).upper()
            if address in seen:
                continue
            seen.add(address)
            device = self.device_info(address)
            if device is None:
                name = (match.group(2) or "").strip() or None
                if name == _placeholder_name(address):
                    name = None
                device = Device(address=address, name=name)
            devices.append(device)
        return devices

    def device_info(self, address: str) -> Device | None:
        result = self._run(["info", address])
        if result.returncode != 0:
            return None
        return parse_info(result.stdout or "")

    def set_pairable(self, enabled: bool) -> bool:
        result = self._run(["pairable", "on" if enabled else "off"])
        return "succeeded" in _strip(result.stdout or "")

    def pair(self, address: str, *, timeout_s: float) -> bool:
        return self._device_command("pair", address, timeout_s)

    def unpair(self, address: str, *, timeout_s: float) -> bool:
        return self._device_command("remove", address, timeout_s)

    def connect(self, address: str, *, timeout_s: float) -> bool:
        return self._device_command("connect", address, timeout_s)

    def disconnect(self, address: str, *, timeout_s: float) -> bool:
        return self._device_command("disconnect", address, timeout_s)

    def start_discovery(self) -> None:
        if self._scan_process is not None:
            raise StackCommandError("Discovery is already running")
        try:
            process = subprocess.Popen(
                [self.executable],
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                bufsize=1,
            )
        except OSError as exc:
            raise StackUnavailableError(f"Could not run {self.executable}: {exc}") from exc

        self._scan_process = process
        self._events = queue.Queue()
        self._discovery_ready.clear()
        self._discovery_error = None
        self._reader = threading.Thread(
            target=self._read_scan_output,
            args=(process,),
            name="bluetoothctl-scan",
            daemon=True,
        )
        self._reader.start()

        try:
            self._send(process, "scan on")
        except OSError as exc:
            self._terminate()
            raise StackUnavailableError(f"Could not start discovery: {exc}") from exc
        if not self._discovery_ready.wait(self.command_timeout_s) or self._discovery_error:
            detail = self._discovery_error or "no confirmation from bluetoothctl"
            self._terminate()
            raise StackUnavailableError(f"Could not start discovery: {detail}")

    def next_event(self, *, timeout_s: float) -> Device | None:
        try:
            return self._events.get(timeout=_bounded(timeout_s))
        except queue.Empty:
            return None

    def stop_discovery(self) -> None:
        process = self._scan_process
        if process is None:
            return
        try:
            self._send(process, "scan off")
            self._send(process, "quit")
            process.wait(timeout=self.command_timeout_s)
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise StackCommandError(f"Could not stop discovery cleanly: {exc}") from exc
        finally:
            self._terminate()

    def _read_scan_output(self, process: subprocess.Popen[str]) -> None:
        assert process.stdout is not None
        for raw in process.stdout:
            line = _strip(raw).strip()
            if "Discovery started" in line or "Discovering: yes" in line:
                self._discovery_ready.set()
                continue
            if "org.bluez.Error.InProgress" in line:
                # another client is already scanning
                self._discovery_ready.set()
                continue
            if "Failed to start discovery" in line or any(m in line for m in _UNAVAILABLE_MARKERS):
                self._discovery_error = line
                self._discovery_ready.set()
                continue
            device = parse_event(line)
            if device is not None:
                self._events.put(device)

    def _terminate(self) -> None:
        process, self._scan_process = self._scan_process, None
        if process is not None and process.poll() is None:
            process.kill()
            process.wait()
        if self._reader is not None:
            self._reader.join(timeout=1.0)
            self._reader = None

    @staticmethod
    def _send(process: subprocess.Popen[str], command: str) -> None:
        assert process.stdin is not None
        process.stdin.write(command + "\n")
        process.stdin.flush()

    def _device_command(self, command: str, address: str, timeout_s: float) -> bool:
        result = self._run([command, address], timeout_s=timeout_s)

        output = _strip((result.stdout or "") + (result.stderr or ""))
        if _SUCCESS_MARKERS[command] in output:
            return True
        error = _BLUEZ_ERROR_RE.search(output)
        if error:
            raise StackCommandError(f"bluetoothctl {command} {address} failed", reason=error.group(1))
        if "not available" in output:
            raise StackCommandError(f"Device {address} not available", reason="not available")
        if result.returncode != 0:
            detail = output.strip().splitlines()[-1] if output.strip() else f"exit code {result.returncode}"
            raise StackCommandError(f"bluetoothctl {command} {address} failed: {detail}", reason=detail)
        return False

    def _check_available(self, result: subprocess.CompletedProcess[str], output: str) -> None:
        marker = next((m for m in _UNAVAILABLE_MARKERS if m in output), None)
        if result.returncode != 0 or marker is not None:
            stderr = _strip(result.stderr or "").strip()
            detail = stderr or marker or f"exit code {result.returncode}"
            raise StackUnavailableError(
                f"Bluetooth stack unavailable. Ensure a working D-Bus/BlueZ session. Details: {detail}"
            )

    def _run(self, args: Sequence[str], *, timeout_s: float | None = None) -> subprocess.CompletedProcess[str]:
        timeout = _bounded(timeout_s if timeout_s is not None else self.command_timeout_s)
        cmd = [self.executable, *args]
        LOGGER.debug("Running: %s", " ".join(cmd))
        try:
            return subprocess.run(
                cmd,
                check=False,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except FileNotFoundError as exc:
            raise StackUnavailableError(f"{self.executable} not found. Is BlueZ installed?") from exc
        except OSError as exc:
            raise StackUnavailableError(f"Could not run {self.executable}: {exc}") from exc
        except subprocess.TimeoutExpired as exc:
            command = " ".join(cmd)
            raise StackTimeoutError(f"{command} did not finish within {timeout:g}s") from exc
