"""Timeout-bounded pair/unpair/connect/disconnect against one device."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from bluectl.core.errors import StackCommandError, StackError, StackTimeoutError
from bluectl.core.model import Device, Operation, OperationResult, OperationState
from bluectl.stacks.base import BluetoothStack

LOGGER = logging.getLogger(__name__)

# Stack errors that mean the device is already in the requested state.
_ALREADY_IN_STATE = {
    Operation.PAIR: {"org.bluez.Error.AlreadyExists"},
    Operation.UNPAIR: {"org.bluez.Error.DoesNotExist"},
    Operation.CONNECT: {"org.bluez.Error.AlreadyConnected"},
    Operation.DISCONNECT: {"org.bluez.Error.NotConnected"},
}


class DeviceController:
    """Drives one operation through idle -> requested -> terminal state.

    There are no retries. The controller does not write state back into any
    registry; callers refresh if they need post-operation state.
    """

    def __init__(
        self,
        stack: BluetoothStack,
        *,
        poll_interval_s: float = 0.25,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._stack = stack
        self._poll_interval_s = poll_interval_s
        self._clock = clock
        self._sleep = sleep

    def run(self, device: Device, operation: Operation, *, timeout_s: float) -> OperationResult:
        transitions = [OperationState.IDLE]

        def finish(state: OperationState, detail: str | None = None) -> OperationResult:
            transitions.append(state)
            LOGGER.debug(
                "%s %s: %s", operation.value, device.address, " -> ".join(s.value for s in transitions)
            )
            return OperationResult(
                device=device,
                operation=operation,
                state=state,
                detail=detail,
                transitions=tuple(transitions),
            )

        if operation.reached(device):
            return finish(OperationState.SUCCEEDED, "already in requested state")

        deadline = self._clock() + timeout_s
        transitions.append(OperationState.REQUESTED)
        try:
            acknowledged = self._issue(device, operation, deadline)
            if not acknowledged and not self._await_state(device.address, operation, deadline):
                return finish(OperationState.TIMED_OUT, "no state change reported by the stack")
        except StackTimeoutError as exc:
            return finish(OperationState.TIMED_OUT, str(exc))
        except StackCommandError as exc:
            if exc.reason in _ALREADY_IN_STATE[operation]:
                return finish(OperationState.SUCCEEDED, exc.reason)
            return finish(OperationState.FAILED, exc.reason or str(exc))
        return finish(OperationState.SUCCEEDED)

    def _issue(self, device: Device, operation: Operation, deadline: float) -> bool:
        LOGGER.debug("Requesting %s for %s", operation.value, device.address)
        if operation is Operation.PAIR:
            self._set_pairable(True)
            try:
                return self._stack.pair(device.address, timeout_s=self._remaining(deadline))
            finally:
                self._set_pairable(False)
        if operation is Operation.UNPAIR:
            return self._stack.unpair(device.address, timeout_s=self._remaining(deadline))
        if operation is Operation.CONNECT:
            return self._stack.connect(device.address, timeout_s=self._remaining(deadline))
        return self._stack.disconnect(device.address, timeout_s=self._remaining(deadline))

    def _remaining(self, deadline: float) -> float:
        return max(deadline - self._clock(), 0.0)

    def _set_pairable(self, enabled: bool) -> None:
        try:
            changed = self._stack.set_pairable(enabled)
        except StackError as exc:
            LOGGER.warning("Could not set pairable %s: %s", "on" if enabled else "off", exc)
            return
        if not changed:
            LOGGER.warning("Could not set pairable %s", "on" if enabled else "off")

    def _await_state(self, address: str, operation: Operation, deadline: float) -> bool:
        while True:
            current = self._stack.device_info(address)
            if current is None:
                # A removed device is unpaired and disconnected.
                if operation in (Operation.UNPAIR, Operation.DISCONNECT):
                    return True
            elif operation.reached(current):
                return True
            remaining = deadline - self._clock()
            if remaining <= 0:
                return False
            self._sleep(min(self._poll_interval_s, remaining))
