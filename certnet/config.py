"""
certnet Configuration

Settings of the signer and of logging, read from YAML files and CERTNET_*
environment variables.

Precedence, highest first:
    1. environment variable bound to the setting
    2. value set at runtime or read from a file (later files win)
    3. default

Files read by `ConfigManager.load_defaults`, in order:
    ~/.certnet/config.yaml
    ./certnet.yaml

Example certnet.yaml:

    signer:
      aggregator_endpoint: https://aggregator.example/aggregator
      party_id: pool1abc
      registration_failure_policy: retry
    observability:
      log_format: text

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import dataclasses
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Generic, Iterator, List, Optional, Tuple, TypeVar, Union

import yaml

from certnet.core import load_yaml
from certnet.observability import Layer, LogLevel, get_logger

T = TypeVar("T")

logger = get_logger("config", Layer.CONFIG)

REGISTRATION_FAILURE_POLICIES = ("ignore", "log", "raise", "retry")

_TRUE_STRINGS = ("1", "true", "yes", "on")


class ConfigError(Exception):
    """Configuration cannot be read or addressed."""
    pass


class ValidationError(ConfigError):
    """A configuration value is rejected by its validator."""
    pass


@dataclass
class ConfigValue(Generic[T]):
    """A setting: default, optional environment binding, validator."""
    default: T
    env_var: Optional[str] = None
    description: str = ""
    validator: Optional[Callable[[T], bool]] = None
    _value: Optional[T] = field(default=None, repr=False)

    def get(self) -> T:
        raw = os.environ.get(self.env_var) if self.env_var else None
        if raw is not None:
            return self._from_env(raw)
        return self.default if self._value is None else self._value

    def set(self, value: T) -> None:
        if not self.is_valid(value):
            raise ValidationError(f"invalid value {value!r}: expected {self.description or 'a valid value'}")
        self._value = value

    def reset(self) -> None:
        self._value = None

    def is_valid(self, value: Any) -> bool:
        if self.validator is None:
            return True
        try:
            return bool(self.validator(value))
        except (TypeError, ValueError):
            return False

    def _from_env(self, raw: str) -> T:
        kind = type(self.default)
        if kind is bool:
            return raw.strip().lower() in _TRUE_STRINGS  # type: ignore[return-value]
        if kind in (int, float):
            try:
                return kind(raw)  # type: ignore[return-value]
            except ValueError as e:
                raise ValidationError(f"{self.env_var}={raw!r} is not a valid {kind.__name__}") from e
        return raw  # type: ignore[return-value]


def _setting(default: Any, env_var: str, description: str, validator: Callable[[Any], bool]) -> Any:
    return field(default_factory=lambda: ConfigValue(default, env_var, description, validator))


def _is_hex_seed(value: Any) -> bool:
    if not isinstance(value, str) or len(value) != 64:
        return False
    try:
        bytes.fromhex(value)
    except ValueError:
        return False
    return True


def _positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


@dataclass
class SignerConfig:
    aggregator_endpoint: ConfigValue[str] = _setting(
        "http://localhost:8080/aggregator", "CERTNET_AGGREGATOR_ENDPOINT",
        "an http(s) URL of the aggregator REST API",
        lambda x: isinstance(x, str) and x.startswith(("http://", "https://")),
    )
    party_id: ConfigValue[str] = _setting(
        "0", "CERTNET_PARTY_ID",
        "a non-empty party identifier",
        lambda x: isinstance(x, str) and x != "",
    )
    stake: ConfigValue[int] = _setting(
        1, "CERTNET_STAKE",
        "a positive stake",
        _positive_int,
    )
    key_seed: ConfigValue[str] = _setting(
        "", "CERTNET_KEY_SEED",
        "64 hex chars (32-byte Ed25519 seed), or empty for a fresh key",
        lambda x: x == "" or _is_hex_seed(x),
    )
    run_interval_seconds: ConfigValue[float] = _setting(
        5.0, "CERTNET_RUN_INTERVAL",
        "seconds between two ticks, > 0",
        lambda x: x > 0,
    )
    http_timeout_seconds: ConfigValue[float] = _setting(
        10.0, "CERTNET_HTTP_TIMEOUT",
        "aggregator HTTP timeout in seconds, > 0",
        lambda x: x > 0,
    )
    registration_failure_policy: ConfigValue[str] = _setting(
        "log", "CERTNET_REGISTRATION_FAILURE_POLICY",
        "one of " + ", ".join(REGISTRATION_FAILURE_POLICIES),
        lambda x: x in REGISTRATION_FAILURE_POLICIES,
    )
    registration_retry_attempts: ConfigValue[int] = _setting(
        3, "CERTNET_REGISTRATION_RETRY_ATTEMPTS",
        "attempts under the retry policy, >= 1",
        _positive_int,
    )


@dataclass
class ObservabilityConfig:
    log_level: ConfigValue[str] = _setting(
        "info", "CERTNET_LOG_LEVEL",
        "one of " + ", ".join(level.value for level in LogLevel),
        lambda x: x in {level.value for level in LogLevel},
    )
    log_format: ConfigValue[str] = _setting(
        "json", "CERTNET_LOG_FORMAT",
        "json or text",
        lambda x: x in ("json", "text"),
    )


@dataclass
class CertnetConfig:
    signer: SignerConfig = field(default_factory=SignerConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    def settings(self) -> Iterator[Tuple[str, ConfigValue]]:
        """Every (dotted path, ConfigValue) pair, in declaration order."""
        for section in dataclasses.fields(self):
            group = getattr(self, section.name)
            for item in dataclasses.fields(group):
                yield f"{section.name}.{item.name}", getattr(group, item.name)

    def to_dict(self) -> Dict[str, Any]:
        """Effective values, nested by section."""
        out: Dict[str, Dict[str, Any]] = {}
        for path, setting in self.settings():
            section, name = path.split(".", 1)
            out.setdefault(section, {})[name] = setting.get()
        return out

    def to_yaml(self) -> str:
        return yaml.safe_dump(self.to_dict(), default_flow_style=False, sort_keys=True)


class ConfigManager:
    """Process-wide holder of the certnet configuration."""

    _instance: Optional["ConfigManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "ConfigManager":
        with cls._lock:
            if cls._instance is None:
                instance = super().__new__(cls)
                instance._config = CertnetConfig()
                instance._config_paths = []
                cls._instance = instance
        return cls._instance

    @property
    def config(self) -> CertnetConfig:
        return self._config

    @property
    def config_paths(self) -> List[Path]:
        return list(self._config_paths)

    def reset(self) -> None:
        self._config = CertnetConfig()
        self._config_paths = []

    def load_from_file(self, path: Union[str, Path]) -> None:
        """Apply the settings of a YAML file. Unknown keys are logged and skipped."""
        path = Path(path)
        if not path.is_file():
            raise ConfigError(f"configuration file not found: {path}")
        try:
            data = load_yaml(path)
        except yaml.YAMLError as e:
            raise ConfigError(f"invalid YAML in {path}: {e}") from e

        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError(f"{path} must hold a mapping of sections")

        for section, values in data.items():
            if not isinstance(values, dict):
                logger.warning("Ignoring non-mapping configuration section", section=str(section), path=str(path))
                continue
            for name, value in values.items():
                dotted = f"{section}.{name}"
                try:
                    setting = self._lookup(dotted)
                except ConfigError:
                    logger.warning("Unknown configuration key ignored", key=dotted, path=str(path))
                    continue
                try:
                    setting.set(value)
                except ValidationError as e:
                    raise ValidationError(f"{path}: {dotted}: {e}") from e

        self._config_paths.append(path)
        logger.debug("Configuration loaded", path=str(path))

    def load_defaults(self) -> None:
        for path in (Path.home() / ".certnet" / "config.yaml", Path("certnet.yaml")):
            if path.is_file():
                self.load_from_file(path)

    def _lookup(self, path: str) -> ConfigValue:
        for candidate, setting in self._config.settings():
            if candidate == path:
                return setting
        raise ConfigError(f"unknown configuration key: {path}")

    def get(self, path: str) -> Any:
        """Effective value of a dotted key, e.g. "signer.party_id"."""
        return self._lookup(path).get()

    def set(self, path: str, value: Any) -> None:
        self._lookup(path).set(value)

    def validate(self) -> List[str]:
        """Problems with the effective configuration, one message per key."""
        errors: List[str] = []
        for path, setting in self._config.settings():
            try:
                value = setting.get()
            except ValidationError as e:
                errors.append(f"{path}: {e}")
                continue
            if not setting.is_valid(value):
                errors.append(f"{path}: {value!r} is not {setting.description}")
        return errors


def get_config() -> CertnetConfig:
    return ConfigManager().config


def get_config_manager() -> ConfigManager:
    return ConfigManager()
