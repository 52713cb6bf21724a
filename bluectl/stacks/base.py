"""Bluetooth stack interface."""

from __future__ import annotations

from typing import Protocol

from bluectl.core.model import Device


class BluetoothStack(Protocol):
    """Capabilities the core consumes from the OS Bluetooth service.

    Control methods return ``True`` when the stack acknowledged success and
    ``False`` when the request was issued without an acknowledgement. Explicit
    rejections raise ``StackCommandError``; unanswered requests raise
    ``StackTimeoutError``.
    """

    def list_known_devices(self) -> list[Device]:
        """Return every device the stack knows, in range or not."""

    def device_info(self, address: str) -> Device | None:
        """Return the current state of one device, or None if it is unknown."""

    def start_discovery(self) -> None:
        ...

    def stop_discovery(self) -> None:
        ...

    def next_event(self, *, timeout_s: float) -> Device | None:
        """Wait up to ``timeout_s`` for a found/updated device observation."""

    def set_pairable(self, enabled: bool) -> bool:
        ...

    def pair(self, address: str, *, timeout_s: float) -> bool:
        ...

    def unpair(self, address: str, *, timeout_s: float) -> bool:
        ...

    def connect(self, address: str, *, timeout_s: float) -> bool:
        ...

    def disconnect(self, address: str, *, timeout_s: float) -> bool:
        ...
