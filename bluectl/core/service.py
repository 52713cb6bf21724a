"""Service layer used by CLI and future UI frontends."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from bluectl.core import matcher
from bluectl.core.config import Settings, env_timeout, load_config
from bluectl.core.controller import DeviceController
from bluectl.core.model import Device, MatchSpec, Operation, OperationResult, ScanConfig
from bluectl.core.registry import DeviceRegistry
from bluectl.core.scanner import Scanner
from bluectl.stacks.base import BluetoothStack
from bluectl.stacks.bluetoothctl import BluetoothctlStack

LOGGER = logging.getLogger(__name__)

# Commands whose timeout can be overridden by -t/--timeout or BT_TIMEOUT
_TIMEOUT_COMMANDS = {"scan", "pair", "connect"}


class BluetoothService:
    """Composes registry, scanner, matcher and controller for one invocation."""

    def __init__(
        self,
        *,
        stack: BluetoothStack | None = None,
        settings: Settings | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.settings = settings or load_config().settings
        self.stack = stack or BluetoothctlStack(
            executable=self.settings.bluetoothctl,
            command_timeout_s=self.settings.command_timeout_s,
        )
        self.registry = DeviceRegistry(self.stack)
        self.scanner = Scanner(self.stack, self.registry, clock=clock)
        self.controller = DeviceController(
            self.stack,
            poll_interval_s=self.settings.poll_interval_s,
            clock=clock,
            sleep=sleep,
        )
        self.runtime_warnings: list[str] = []

    def timeout_for(self, command: str, override: float | None = None) -> float:
        if override is not None:
            return override
        default = getattr(self.settings.timeouts, command)
        if command not in _TIMEOUT_COMMANDS:
            return default
        value, warning = env_timeout(default)
        if warning and warning not in self.runtime_warnings:
            self.runtime_warnings.append(warning)
        return value

    def match_spec(
        self,
        token: str,
        *,
        exact: bool | None = None,
        regex: bool | None = None,
        by_address: bool = False,
    ) -> MatchSpec:
        return MatchSpec(
            token=token,
            exact=self.settings.exact if exact is None else exact,
            regex=self.settings.regex if regex is None else regex,
            field="address" if by_address else "name",
        )

    def list_devices(
        self,
        *,
        scan: bool = False,
        timeout_s: float | None = None,
        on_device: Callable[[Device], None] | None = None,
    ) -> list[Device]:
        self.registry.refresh()
        if not scan:
            return [device for device in self.registry.devices() if device.paired]
        config = ScanConfig(timeout_s=self.timeout_for("scan", timeout_s))
        self.scanner.scan(config, on_device=on_device)
        return self.registry.devices()

    def resolve(
        self,
        spec: MatchSpec,
        *,
        scan: bool = False,
        timeout_s: float | None = None,
    ) -> Device:
        """Resolve ``spec`` against a fresh snapshot, optionally scanning first.

        A scan ends as soon as ``spec`` selects exactly one device.
        """
        self.registry.refresh()
        if scan:
            config = ScanConfig(timeout_s=self.timeout_for("scan", timeout_s))
            self.scanner.scan(
                config,
                until=lambda registry: matcher.is_resolvable(registry, spec),
            )
        return matcher.resolve(self.registry, spec)

    def info(self, spec: MatchSpec) -> Device:
        return self.resolve(spec)

    def control(
        self,
        operation: Operation,
        spec: MatchSpec,
        *,
        timeout_s: float | None = None,
        scan: bool = False,
    ) -> OperationResult:
        timeout = self.timeout_for(operation.value, timeout_s)
        device = self.resolve(spec, scan=scan, timeout_s=timeout)
        LOGGER.debug("Resolved '%s' to %s", spec.token, device.address)
        result = self.controller.run(device, operation, timeout_s=timeout)
        return result.raise_for_state()

    def pair(self, spec: MatchSpec, *, timeout_s: float | None = None, scan: bool = True) -> OperationResult:
        return self.control(Operation.PAIR, spec, timeout_s=timeout_s, scan=scan)

    def unpair(self, spec: MatchSpec) -> OperationResult:
        return self.control(Operation.UNPAIR, spec)

    def connect(self, spec: MatchSpec, *, timeout_s: float | None = None) -> OperationResult:
        return self.control(Operation.CONNECT, spec, timeout_s=timeout_s)

    def disconnect(self, spec: MatchSpec) -> OperationResult:
        return self.control(Operation.DISCONNECT, spec)
