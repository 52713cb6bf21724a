"""Time-bounded, cancellable discovery window."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from bluectl.core.errors import BluectlError
from bluectl.core.model import Device, ScanConfig
from bluectl.core.registry import DeviceRegistry
from bluectl.stacks.base import BluetoothStack

LOGGER = logging.getLogger(__name__)


class Scanner:
    def __init__(
        self,
        stack: BluetoothStack,
        registry: DeviceRegistry,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._stack = stack
        self._registry = registry
        self._clock = clock

    def scan(
        self,
        config: ScanConfig,
        *,
        until: Callable[[DeviceRegistry], bool] | None = None,
        on_device: Callable[[Device], None] | None = None,
    ) -> DeviceRegistry:
        """Run one discovery window and merge what it finds into the registry.

        The window ends when ``config.timeout_s`` elapses or as soon as
        ``until(registry)`` returns true. Discovery is stopped on every exit
        path; a failing stop is logged and never replaces the scan outcome.
        """
        deadline = self._clock() + config.timeout_s
        self._stack.start_discovery()
        LOGGER.debug("Discovery started for %.1fs", config.timeout_s)
        try:
            if until is not None and until(self._registry):
                return self._registry
            while True:
                remaining = deadline - self._clock()
                if remaining <= 0:
                    break
                device = self._stack.next_event(timeout_s=remaining)
                if device is None:
                    continue
                self._registry.merge([device])
                if on_device is not None:
                    on_device(device)
                if until is not None and until(self._registry):
                    LOGGER.debug("Scan satisfied early by %s", device.address)
                    break
            return self._registry
        finally:
            self._stop()

    def _stop(self) -> None:
        try:
            self._stack.stop_discovery()
        except (BluectlError, OSError) as exc:
            LOGGER.warning("Could not stop discovery: %s", exc)
        else:
            LOGGER.debug("Discovery stopped")
