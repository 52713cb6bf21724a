"""Core data models used across registry, scanner, controller, and CLI."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from bluectl.core.errors import OperationFailedError, OperationTimedOutError


@dataclass(frozen=True)
class Device:
    address: str
    name: str | None = None
    paired: bool = False
    connected: bool = False
    trusted: bool = False
    bonded: bool = False
    blocked: bool = False
    rssi: int | None = None
    # Unlike name this cannot be renamed locally
    remote_name: str | None = None
    icon: str | None = None
    battery: int | None = None

    @property
    def label(self) -> str:
        return self.name if self.name else self.address


@dataclass(frozen=True)
class MatchSpec:
    token: str
    exact: bool = False
    regex: bool = False
    field: str = "name"


@dataclass(frozen=True)
class ScanConfig:
    timeout_s: float


class Operation(str, Enum):
    PAIR = "pair"
    UNPAIR = "unpair"
    CONNECT = "connect"
    DISCONNECT = "disconnect"

    def reached(self, device: Device) -> bool:
        """Whether ``device`` is already in the state this operation produces."""
        if self is Operation.PAIR:
            return device.paired
        if self is Operation.UNPAIR:
            return not device.paired
        if self is Operation.CONNECT:
            return device.connected
        return not device.connected


class OperationState(str, Enum):
    IDLE = "idle"
    REQUESTED = "requested"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class OperationResult:
    device: Device
    operation: Operation
    state: OperationState
    detail: str | None = None
    transitions: tuple[OperationState, ...] = ()

    @property
    def ok(self) -> bool:
        return self.state is OperationState.SUCCEEDED

    def raise_for_state(self) -> OperationResult:
        if self.state is OperationState.FAILED:
            raise OperationFailedError(self)
        if self.state is OperationState.TIMED_OUT:
            raise OperationTimedOutError(self)
        return self
