from __future__ import annotations

import io
import subprocess

import pytest

from bluectl.core.config import MAX_TIMEOUT_S
from bluectl.core.errors import StackCommandError, StackTimeoutError, StackUnavailableError
from bluectl.stacks.bluetoothctl import BluetoothctlStack, parse_event, parse_info

SONY_INFO = """Device AA:BB:CC:00:00:01 (public)
\tName: WH-1000XM4
\tAlias: Sony WH-1000XM4
\tClass: 0x00240404
\tIcon: audio-headset
\tPaired: yes
\tBonded: yes
\tTrusted: yes
\tBlocked: no
\tConnected: no
\tLegacyPairing: no
\tUUID: Audio Sink                (0000110b-0000-1000-8000-00805f9b34fb)
\tRSSI: 0xffffffb3 (-77)
\tBattery Percentage: 0x50 (80)
"""


def _cp(cmd: list[str], rc: int, stdout: str = "", stderr: str = "") -> subprocess.CompletedProcess[str]:
    return subprocess.CompletedProcess(cmd, rc, stdout=stdout, stderr=stderr)


def test_parse_info_reads_flags_and_optional_fields() -> None:
    device = parse_info(SONY_INFO)
    assert device is not None
    assert device.address == "AA:BB:CC:00:00:01"
    assert device.name == "Sony WH-1000XM4"
    assert device.remote_name == "WH-1000XM4"
    assert (device.paired, device.bonded, device.trusted) == (True, True, True)
    assert (device.blocked, device.connected) == (False, False)
    assert device.rssi == -77
    assert device.battery == 80
    assert device.icon == "audio-headset"


def test_parse_info_treats_address_alias_as_unnamed() -> None:
    device = parse_info("Device 11:22:33:44:55:66 (random)\n\tAlias: 11-22-33-44-55-66\n\tPaired: no\n")
    assert device is not None
    assert device.name is None


@pytest.mark.parametrize(
    ("line", "address", "name", "rssi"),
    [
        ("[NEW] Device 11:22:33:44:55:66 Kitchen Speaker", "11:22:33:44:55:66", "Kitchen Speaker", None),
        ("\x1b[0;93m[CHG]\x1b[0m Device 11:22:33:44:55:66 RSSI: -48", "11:22:33:44:55:66", None, -48),
        ("[CHG] Device 11:22:33:44:55:66 RSSI: 0xffffffc4 (-60)", "11:22:33:44:55:66", None, -60),
        ("[bluetooth]# [CHG] Device 11:22:33:44:55:66 Alias: Speaker", "11:22:33:44:55:66", "Speaker", None),
        ("[NEW] Device 11:22:33:44:55:66 11-22-33-44-55-66", "11:22:33:44:55:66", None, None),
    ],
)
def test_parse_event_observations(line: str, address: str, name: str | None, rssi: int | None) -> None:
    device = parse_event(line)
    assert device is not None
    assert (device.address, device.name, device.rssi) == (address, name, rssi)


@pytest.mark.parametrize(
    "line",
    [
        "[CHG] Device 11:22:33:44:55:66 Connected: yes",
        "[DEL] Device 11:22:33:44:55:66 Kitchen Speaker",
        "[CHG] Controller 00:11:22:33:44:55 Discovering: yes",
        "Discovery started",
    ],
)
def test_parse_event_ignores_non_observations(line: str) -> None:
    assert parse_event(line) is None


def test_list_known_devices_uses_info_per_device(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(cmd, check, capture_output, text, timeout):
        if cmd[1:] == ["devices"]:
            return _cp(cmd, 0, stdout="Device AA:BB:CC:00:00:01 Sony WH-1000XM4\nDevice 11:22:33:44:55:66 Ghost\n")
        if cmd[1:] == ["info", "AA:BB:CC:00:00:01"]:
            return _cp(cmd, 0, stdout=SONY_INFO)
        if cmd[1:] == ["info", "11:22:33:44:55:66"]:
            return _cp(cmd, 1, stdout="Device 11:22:33:44:55:66 not available\n")
        raise AssertionError(f"Unexpected cmd: {cmd}")

    monkeypatch.setattr(subprocess, "run", fake_run)

    devices = BluetoothctlStack().list_known_devices()
    assert [d.address for d in devices] == ["AA:BB:CC:00:00:01", "11:22:33:44:55:66"]
    assert devices[0].paired is True
    assert devices[1].name == "Ghost"
    assert devices[1].paired is False


def test_missing_executable_is_stack_unavailable(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(cmd, check, capture_output, text, timeout):
        raise FileNotFoundError(cmd[0])

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(StackUnavailableError):
        BluetoothctlStack().list_known_devices()


def test_no_controller_is_stack_unavailable(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(cmd, check, capture_output, text, timeout):
        return _cp(cmd, 0, stdout="No default controller available\n")

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(StackUnavailableError, match="No default controller"):
        BluetoothctlStack().list_known_devices()


def test_device_command_success_and_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    outputs = {
        "pair": "Attempting to pair with AA:BB:CC:00:00:01\nPairing successful\n",
        "connect": "Attempting to connect to AA:BB:CC:00:00:01\nFailed to connect: org.bluez.Error.AlreadyConnected\n",
        "disconnect": "Attempting to disconnect from AA:BB:CC:00:00:01\n",
    }
    timeouts: list[float] = []

    def fake_run(cmd, check, capture_output, text, timeout):
        timeouts.append(timeout)
        return _cp(cmd, 0, stdout=outputs[cmd[1]])

    monkeypatch.setattr(subprocess, "run", fake_run)
    stack = BluetoothctlStack()

    assert stack.pair("AA:BB:CC:00:00:01", timeout_s=7) is True
    with pytest.raises(StackCommandError) as exc:
        stack.connect("AA:BB:CC:00:00:01", timeout_s=3)
    assert exc.value.reason == "org.bluez.Error.AlreadyConnected"
    # issued but not acknowledged
    assert stack.disconnect("AA:BB:CC:00:00:01", timeout_s=3) is False
    assert timeouts == [7, 3, 3]


def test_device_command_timeout(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(cmd, check, capture_output, text, timeout):
        raise subprocess.TimeoutExpired(cmd, timeout)

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(StackTimeoutError):
        BluetoothctlStack().pair("AA:BB:CC:00:00:01", timeout_s=1)


def test_set_pairable(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(cmd, check, capture_output, text, timeout):
        assert cmd[1:] == ["pairable", "on"]
        return _cp(cmd, 0, stdout="Changing pairable on succeeded\n")

    monkeypatch.setattr(subprocess, "run", fake_run)
    assert BluetoothctlStack().set_pairable(True) is True


def test_start_discovery_without_executable(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_popen(*args, **kwargs):
        raise FileNotFoundError("bluetoothctl")

    monkeypatch.setattr(subprocess, "Popen", fake_popen)

    stack = BluetoothctlStack()
    with pytest.raises(StackUnavailableError):
        stack.start_discovery()
    # nothing to stop after a failed start
    stack.stop_discovery()


def test_non_executable_bluetoothctl_is_stack_unavailable(monkeypatch: pytest.MonkeyPatch) -> None:
    def fake_run(cmd, check, capture_output, text, timeout):
        raise PermissionError(13, "Permission denied", cmd[0])

    monkeypatch.setattr(subprocess, "run", fake_run)

    with pytest.raises(StackUnavailableError, match="Permission denied"):
        BluetoothctlStack(executable="/opt/bluez/bluetoothctl").list_known_devices()


@pytest.mark.parametrize("requested", [float("inf"), 1e12, float("nan"), -5.0])
def test_command_timeouts_are_bounded(monkeypatch: pytest.MonkeyPatch, requested: float) -> None:
    timeouts: list[float] = []

    def fake_run(cmd, check, capture_output, text, timeout):
        timeouts.append(timeout)
        return _cp(cmd, 0, stdout="Connection successful\n")

    monkeypatch.setattr(subprocess, "run", fake_run)

    assert BluetoothctlStack().connect("AA:BB:CC:00:00:01", timeout_s=requested) is True
    assert 0 <= timeouts[0] <= MAX_TIMEOUT_S


class FakeScanProcess:
    """Interactive bluetoothctl stand-in replaying scripted output lines."""

    def __init__(self, lines: list[str], *, hang_on_exit: bool = False) -> None:
        self.stdin = io.StringIO()
        self.stdout = iter(lines)
        self.returncode: int | None = None
        self.hang_on_exit = hang_on_exit
        self.killed = False

    def poll(self) -> int | None:
        return self.returncode

    def wait(self, timeout: float | None = None) -> int:
        if self.hang_on_exit and not self.killed:
            raise subprocess.TimeoutExpired("bluetoothctl", timeout)
        if self.returncode is None:
            self.returncode = 0
        return self.returncode

    def kill(self) -> None:
        self.killed = True
        self.returncode = -9


def _spawn(monkeypatch: pytest.MonkeyPatch, process: FakeScanProcess) -> list[list[str]]:
    spawned: list[list[str]] = []

    def fake_popen(cmd, **kwargs):
        spawned.append(cmd)
        return process

    monkeypatch.setattr(subprocess, "Popen", fake_popen)
    return spawned


def test_discovery_session_queues_events_and_stops_cleanly(monkeypatch: pytest.MonkeyPatch) -> None:
    process = FakeScanProcess(
        [
            "Agent registered\n",
            "Discovery started\n",
            "[CHG] Controller 00:11:22:33:44:55 Discovering: yes\n",
            "[NEW] Device 11:22:33:44:55:66 Kitchen Speaker\n",
            "[CHG] Device 11:22:33:44:55:66 Connected: no\n",
            "[CHG] Device 11:22:33:44:55:66 RSSI: 0xffffffc4 (-60)\n",
        ]
    )
    spawned = _spawn(monkeypatch, process)
    stack = BluetoothctlStack(executable="/usr/bin/bluetoothctl")

    stack.start_discovery()
    first = stack.next_event(timeout_s=1)
    second = stack.next_event(timeout_s=1)
    stack.stop_discovery()

    assert spawned == [["/usr/bin/bluetoothctl"]]
    assert first is not None and (first.address, first.name) == ("11:22:33:44:55:66", "Kitchen Speaker")
    assert second is not None and second.rssi == -60
    assert stack.next_event(timeout_s=0) is None
    assert process.stdin.getvalue() == "scan on\nscan off\nquit\n"
    assert process.returncode == 0
    assert not process.killed
    # a second stop is a no-op once the session is reaped
    stack.stop_discovery()


def test_discovery_already_in_progress_counts_as_started(monkeypatch: pytest.MonkeyPatch) -> None:
    process = FakeScanProcess(["Failed to start discovery: org.bluez.Error.InProgress\n"])
    _spawn(monkeypatch, process)
    stack = BluetoothctlStack()

    stack.start_discovery()
    stack.stop_discovery()

    assert process.stdin.getvalue().startswith("scan on\n")


@pytest.mark.parametrize(
    ("line", "detail"),
    [
        ("Failed to start discovery: org.bluez.Error.NotReady\n", "Failed to start discovery"),
        ("No default controller available\n", "No default controller"),
    ],
)
def test_discovery_start_failure_is_stack_unavailable(
    monkeypatch: pytest.MonkeyPatch, line: str, detail: str
) -> None:
    process = FakeScanProcess([line])
    _spawn(monkeypatch, process)
    stack = BluetoothctlStack()

    with pytest.raises(StackUnavailableError, match=detail):
        stack.start_discovery()

    assert process.killed
    # the failed session was already torn down
    stack.stop_discovery()
    assert process.stdin.getvalue() == "scan on\n"


def test_discovery_without_confirmation_fails_fast(monkeypatch: pytest.MonkeyPatch) -> None:
    process = FakeScanProcess([])
    _spawn(monkeypatch, process)

    with pytest.raises(StackUnavailableError, match="no confirmation"):
        BluetoothctlStack(command_timeout_s=0.05).start_discovery()
    assert process.killed


def test_discovery_cannot_start_twice(monkeypatch: pytest.MonkeyPatch) -> None:
    _spawn(monkeypatch, FakeScanProcess(["Discovery started\n"]))
    stack = BluetoothctlStack()
    stack.start_discovery()

    with pytest.raises(StackCommandError):
        stack.start_discovery()
    stack.stop_discovery()


def test_stop_discovery_kills_unresponsive_session(monkeypatch: pytest.MonkeyPatch) -> None:
    process = FakeScanProcess(["Discovery started\n"], hang_on_exit=True)
    _spawn(monkeypatch, process)
    stack = BluetoothctlStack(command_timeout_s=0.05)
    stack.start_discovery()

    with pytest.raises(StackCommandError, match="Could not stop discovery"):
        stack.stop_discovery()

    assert process.killed
    assert process.stdin.getvalue() == "scan on\nscan off\nquit\n"
    stack.stop_discovery()
