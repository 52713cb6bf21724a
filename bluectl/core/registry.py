"""Per-invocation snapshot of the devices known to the Bluetooth stack."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import replace

from bluectl.core.model import Device
from bluectl.stacks.base import BluetoothStack

LOGGER = logging.getLogger(__name__)


class DeviceRegistry:
    """Mapping from address to Device, rebuilt from the stack on refresh.

    Devices are never evicted once seen; ``merge`` only overwrites the fields
    an observation actually carries.
    """

    def __init__(self, stack: BluetoothStack) -> None:
        self._stack = stack
        self._devices: dict[str, Device] = {}

    def refresh(self) -> list[Device]:
        devices = self._stack.list_known_devices()
        self._devices = {device.address: device for device in devices}
        LOGGER.debug("Registry refreshed with %d known devices", len(self._devices))
        return self.devices()

    def merge(self, found: Iterable[Device]) -> None:
        for device in found:
            current = self._devices.get(device.address)
            if current is None:
                LOGGER.debug("New device %s (%s)", device.address, device.name)
                self._devices[device.address] = device
                continue
            self._devices[device.address] = replace(
                current,
                name=device.name if device.name is not None else current.name,
                rssi=device.rssi if device.rssi is not None else current.rssi,
            )

    def devices(self) -> list[Device]:
        return list(self._devices.values())

    def get(self, address: str) -> Device | None:
        return self._devices.get(address)

    def __len__(self) -> int:
        return len(self._devices)

    def __iter__(self) -> Iterator[Device]:
        return iter(self.devices())
