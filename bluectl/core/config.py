"""Configuration loading and validation for the optional YAML config file."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field, replace
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from bluectl.core.errors import ConfigLoadError, ConfigValidationError

LOGGER = logging.getLogger(__name__)

TIMEOUT_ENV = "BT_TIMEOUT"
# Larger waits overflow the poll/select timeouts used by subprocess and queue.
MAX_TIMEOUT_S = 1_000_000.0


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


UniqueKeyLoader.yaml_implicit_resolvers = {
    key: list(value) for key, value in yaml.SafeLoader.yaml_implicit_resolvers.items()
}

for first_char, mappings in list(UniqueKeyLoader.yaml_implicit_resolvers.items()):
    UniqueKeyLoader.yaml_implicit_resolvers[first_char] = [
        (tag, regexp)
        for tag, regexp in mappings
        if tag != "tag:yaml.org,2002:bool"
    ]


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ConfigValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class Timeouts:
    scan: float = 30.0
    pair: float = 5.0
    connect: float = 10.0
    disconnect: float = 10.0
    unpair: float = 10.0


@dataclass(frozen=True)
class Settings:
    timeouts: Timeouts = field(default_factory=Timeouts)
    exact: bool = False
    regex: bool = False
    bluetoothctl: str = "bluetoothctl"
    command_timeout_s: float = 10.0
    poll_interval_s: float = 0.25


@dataclass(frozen=True)
class LoadedConfig:
    settings: Settings
    source: Path | None


def _load_schema_validator() -> Any:
    schema_text = resources.files("bluectl.schemas").joinpath("config.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def config_path() -> Path:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    return xdg_config / "bluectl/config.yaml"


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigLoadError(f"Could not read config file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ConfigValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ConfigValidationError(f"Config file {path} must contain a mapping at root")
    return loaded


def _normalize_bool(value: Any, *, context: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in {"true", "yes", "on"}:
            return True
        if lowered in {"false", "no", "off"}:
            return False
    raise ConfigValidationError(f"{context} must be boolean true/false")


def _build_settings(doc: dict[str, Any], source: Path) -> Settings:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ConfigValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    defaults = Settings()
    timeouts = replace(
        defaults.timeouts,
        **{name: float(value) for name, value in doc.get("timeouts", {}).items()},
    )
    match = doc.get("match", {})
    stack = doc.get("stack", {})
    return Settings(
        timeouts=timeouts,
        exact=_normalize_bool(match.get("exact", defaults.exact), context="match.exact"),
        regex=_normalize_bool(match.get("regex", defaults.regex), context="match.regex"),
        bluetoothctl=stack.get("bluetoothctl", defaults.bluetoothctl),
        command_timeout_s=float(stack.get("command_timeout_s", defaults.command_timeout_s)),
        poll_interval_s=float(stack.get("poll_interval_s", defaults.poll_interval_s)),
    )


def load_config(path: Path | None = None) -> LoadedConfig:
    """Load settings from ``path`` (or the XDG location), falling back to defaults."""
    source = path or config_path()
    if not source.exists():
        LOGGER.debug("No config file at %s, using defaults", source)
        return LoadedConfig(settings=Settings(), source=None)
    settings = _build_settings(_read_yaml(source), source)
    LOGGER.debug("Loaded config from %s", source)
    return LoadedConfig(settings=settings, source=source)


def env_timeout(default: float) -> tuple[float, str | None]:
    """Return the ``BT_TIMEOUT`` override, or ``default`` plus a warning if it is unusable."""
    raw = os.environ.get(TIMEOUT_ENV)
    if raw is None:
        return default, None
    try:
        value = float(raw.strip())
    except ValueError:
        value = -1.0
    if not 0 <= value <= MAX_TIMEOUT_S:
        warning = f"Ignoring invalid {TIMEOUT_ENV}={raw!r}; using {default:g}s"
        return default, warning
    return value, None
