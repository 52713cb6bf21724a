"""Name-to-device resolution logic."""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable

from bluectl.core.errors import AmbiguousMatchError, InvalidPatternError, NoMatchError
from bluectl.core.model import Device, MatchSpec

_FIELDS = ("name", "address")


def _predicate(spec: MatchSpec) -> Callable[[str], bool]:
    if spec.regex:
        try:
            pattern = re.compile(spec.token)
        except re.error as exc:
            raise InvalidPatternError(spec.token, str(exc)) from exc
        if spec.exact:
            return lambda value: pattern.fullmatch(value) is not None
        return lambda value: pattern.search(value) is not None
    if spec.exact:
        return lambda value: value == spec.token
    return lambda value: spec.token in value


def find_matches(devices: Iterable[Device], spec: MatchSpec) -> list[Device]:
    """Return every device whose name (or address) satisfies ``spec``.

    Comparison is case-sensitive on the raw stored value. Devices without a
    name never match by name.
    """
    if spec.field not in _FIELDS:
        raise ValueError(f"Unsupported match field '{spec.field}'")
    matches = _predicate(spec)
    found: list[Device] = []
    for device in devices:
        value = device.address if spec.field == "address" else device.name
        if value is not None and matches(value):
            found.append(device)
    return found


def resolve(devices: Iterable[Device], spec: MatchSpec) -> Device:
    found = find_matches(devices, spec)
    if not found:
        raise NoMatchError(spec.token)
    if len(found) > 1:
        raise AmbiguousMatchError(spec.token, found)
    return found[0]


def is_resolvable(devices: Iterable[Device], spec: MatchSpec) -> bool:
    """True when ``spec`` currently selects exactly one device."""
    return len(find_matches(devices, spec)) == 1
