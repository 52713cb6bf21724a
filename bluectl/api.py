"""Stable public API for building tooling on top of bluectl.

This module is the supported integration surface for third-party callers.
Avoid importing from private/internal modules unless intentionally depending on
non-stable internals.
"""

from __future__ import annotations

from bluectl.core.config import Settings
from bluectl.core.errors import (
    AmbiguousMatchError,
    BluectlError,
    ConfigError,
    InvalidPatternError,
    NoMatchError,
    OperationError,
    OperationFailedError,
    OperationTimedOutError,
    ResolutionError,
    StackError,
    StackUnavailableError,
)
from bluectl.core.model import (
    Device,
    MatchSpec,
    Operation,
    OperationResult,
    OperationState,
    ScanConfig,
)
from bluectl.core.service import BluetoothService
from bluectl.stacks.base import BluetoothStack

__all__ = [
    "AmbiguousMatchError",
    "BluectlError",
    "ConfigError",
    "InvalidPatternError",
    "NoMatchError",
    "OperationError",
    "OperationFailedError",
    "OperationTimedOutError",
    "ResolutionError",
    "StackError",
    "StackUnavailableError",
    "BluetoothStack",
    "Device",
    "MatchSpec",
    "Operation",
    "OperationResult",
    "OperationState",
    "ScanConfig",
    "Settings",
    "Client",
]


class Client:
    """Public client for interacting with bluectl core capabilities.

    A `Client` instance wraps device listing, discovery, name resolution and
    control operations behind a stable API intended for third-party tools
    (GUI/TUI/services/scripts). Every call works on a fresh device snapshot.
    """

    def __init__(
        self,
        *,
        stack: BluetoothStack | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._service = BluetoothService(stack=stack, settings=settings)

    @property
    def runtime_warnings(self) -> tuple[str, ...]:
        return tuple(self._service.runtime_warnings)

    def list_devices(self, *, scan: bool = False, timeout_s: float | None = None) -> list[Device]:
        return self._service.list_devices(scan=scan, timeout_s=timeout_s)

    def resolve(
        self,
        token: str,
        *,
        exact: bool | None = None,
        regex: bool | None = None,
        by_address: bool = False,
        scan: bool = False,
        timeout_s: float | None = None,
    ) -> Device:
        spec = self._service.match_spec(token, exact=exact, regex=regex, by_address=by_address)
        return self._service.resolve(spec, scan=scan, timeout_s=timeout_s)

    def control(
        self,
        operation: Operation | str,
        token: str,
        *,
        exact: bool | None = None,
        regex: bool | None = None,
        by_address: bool = False,
        scan: bool = False,
        timeout_s: float | None = None,
    ) -> OperationResult:
        spec = self._service.match_spec(token, exact=exact, regex=regex, by_address=by_address)
        return self._service.control(Operation(operation), spec, timeout_s=timeout_s, scan=scan)
