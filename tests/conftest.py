from __future__ import annotations

from collections.abc import Callable, Iterable

import pytest

from bluectl.core.errors import StackUnavailableError
from bluectl.core.model import Device


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.now += seconds


class FakeStack:
    """Scripted stack: ``events`` are (delay_s, Device) pairs delivered in order."""

    def __init__(
        self,
        clock: FakeClock,
        devices: Iterable[Device] = (),
        events: Iterable[tuple[float, Device]] = (),
    ) -> None:
        self.clock = clock
        self.devices = {device.address: device for device in devices}
        self.events = list(events)
        self.calls: list[str] = []
        self.responses: dict[str, object] = {}
        self.unavailable = False
        self.start_error: Exception | None = None
        self.stop_error: Exception | None = None
        self.event_error: Exception | None = None

    def list_known_devices(self) -> list[Device]:
        self.calls.append("list_known_devices")
        if self.unavailable:
            raise StackUnavailableError("Bluetooth stack unavailable")
        return list(self.devices.values())

    def device_info(self, address: str) -> Device | None:
        self.calls.append(f"device_info {address}")
        return self.devices.get(address)

    def start_discovery(self) -> None:
        self.calls.append("start_discovery")
        if self.start_error is not None:
            raise self.start_error

    def stop_discovery(self) -> None:
        self.calls.append("stop_discovery")
        if self.stop_error is not None:
            raise self.stop_error

    def next_event(self, *, timeout_s: float) -> Device | None:
        self.calls.append("next_event")
        if self.event_error is not None:
            raise self.event_error
        if self.events and self.events[0][0] <= timeout_s:
            delay, device = self.events.pop(0)
            self.clock.now += delay
            return device
        self.clock.now += timeout_s
        return None

    def set_pairable(self, enabled: bool) -> bool:
        self.calls.append(f"pairable {'on' if enabled else 'off'}")
        return True

    def pair(self, address: str, *, timeout_s: float) -> bool:
        return self._operation("pair", address, timeout_s)

    def unpair(self, address: str, *, timeout_s: float) -> bool:
        return self._operation("unpair", address, timeout_s)

    def connect(self, address: str, *, timeout_s: float) -> bool:
        return self._operation("connect", address, timeout_s)

    def disconnect(self, address: str, *, timeout_s: float) -> bool:
        return self._operation("disconnect", address, timeout_s)

    def _operation(self, name: str, address: str, timeout_s: float) -> bool:
        self.calls.append(f"{name} {address}")
        outcome = self.responses.get(name, True)
        if isinstance(outcome, Exception):
            raise outcome
        if callable(outcome):
            return outcome(address, timeout_s)
        return bool(outcome)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_stack(clock: FakeClock) -> Callable[..., FakeStack]:
    def _make(
        devices: Iterable[Device] = (),
        events: Iterable[tuple[float, Device]] = (),
    ) -> FakeStack:
        return FakeStack(clock, devices, events)

    return _make


@pytest.fixture
def sony() -> Device:
    return Device(address="AA:BB:CC:00:00:01", name="Sony WH-1000XM4", paired=True)


@pytest.fixture
def airpods_pair() -> tuple[Device, Device]:
    return (
        Device(address="AA:BB:CC:00:00:02", name="AirPods"),
        Device(address="AA:BB:CC:00:00:03", name="AirPods", paired=True),
    )
