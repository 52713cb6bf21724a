"""Domain-specific errors for bluectl."""

from __future__ import annotations

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from bluectl.core.model import Device, OperationResult


class BluectlError(Exception):
    """Base error for bluectl."""


class ConfigError(BluectlError):
    """Base configuration error."""


class ConfigLoadError(ConfigError):
    """Raised when reading the configuration file fails."""


class ConfigValidationError(ConfigError):
    """Raised when the configuration does not conform to schema or semantics."""


class StackError(BluectlError):
    """Base error for the Bluetooth stack boundary."""


class StackUnavailableError(StackError):
    """Raised when the Bluetooth subsystem cannot be reached."""


class StackCommandError(StackError):
    """Raised when the stack explicitly rejects a request."""

    def __init__(self, message: str, *, reason: str | None = None) -> None:
        super().__init__(message)
        self.reason = reason


class StackTimeoutError(StackError):
    """Raised when the stack does not answer a request in time."""


class ResolutionError(BluectlError):
    """Raised when a match token cannot be resolved to a single device."""

    def __init__(self, message: str, *, token: str) -> None:
        super().__init__(message)
        self.token = token


class NoMatchError(ResolutionError):
    def __init__(self, token: str) -> None:
        super().__init__(f"No device found matching '{token}'", token=token)


class AmbiguousMatchError(ResolutionError):
    def __init__(self, token: str, candidates: Sequence[Device]) -> None:
        candidate_desc = ", ".join(f"{d.address} ({d.name or '<unnamed>'})" for d in candidates)
        super().__init__(
            f"Multiple devices match '{token}': {candidate_desc}. Use a more specific filter.",
            token=token,
        )
        self.candidates = tuple(candidates)


class InvalidPatternError(ResolutionError):
    def __init__(self, token: str, reason: str) -> None:
        super().__init__(f"Invalid pattern '{token}': {reason}", token=token)


class OperationError(BluectlError):
    """Raised when a control operation does not succeed."""

    def __init__(self, message: str, result: OperationResult) -> None:
        super().__init__(message)
        self.result = result


class OperationFailedError(OperationError):
    def __init__(self, result: OperationResult) -> None:
        detail = f": {result.detail}" if result.detail else ""
        super().__init__(
            f"Could not {result.operation.value} {result.device.label} "
            f"({result.device.address}){detail}",
            result,
        )


class OperationTimedOutError(OperationError):
    def __init__(self, result: OperationResult) -> None:
        super().__init__(
            f"Timed out trying to {result.operation.value} {result.device.label} "
            f"({result.device.address})",
            result,
        )
