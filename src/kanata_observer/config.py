"""Observer configuration: endpoint, action script, and tuning knobs."""

from __future__ import annotations

import dataclasses
import logging
import math
import os
import sys
import tomllib
from collections.abc import Mapping
from enum import StrEnum
from pathlib import Path
from typing import Any

from kanata_observer._constants import (
    BACKOFF_FACTOR,
    BACKOFF_INITIAL_S,
    BACKOFF_MAX_S,
    CONNECT_TIMEOUT_S,
    DEFAULT_HOST,
    DEFAULT_PORT,
    DEFAULT_SCRIPT_PATH,
    MAX_LINE_BYTES,
    STABLE_CONNECTION_S,
)
from kanata_observer._log import TRACE
from kanata_observer.exceptions import ObserverConfigError

_logger = logging.getLogger(__name__)


class LogLevel(StrEnum):
    INFO = "info"
    DEBUG = "debug"
    TRACE = "trace"

    @property
    def logging_level(self) -> int:
        """The matching :mod:`logging` level number."""
        return {
            LogLevel.INFO: logging.INFO,
            LogLevel.DEBUG: logging.DEBUG,
            LogLevel.TRACE: TRACE,
        }[self]

    @classmethod
    def parse(cls, value: Any) -> LogLevel:
        if isinstance(value, LogLevel):
            return value
        normalized = str(value).strip().lower()
        try:
            return cls(normalized)
        except ValueError:
            choices = ", ".join(level.value for level in cls)
            raise ObserverConfigError(f"log_level must be one of {choices}, got {value!r}") from None


def _parse_port(value: Any) -> int:
    if isinstance(value, bool):
        raise ObserverConfigError(f"port must be an integer, got {value!r}")
    if isinstance(value, str):
        value = value.strip()
        if not value.isdecimal() or not value.isascii():
            raise ObserverConfigError(f"port must be an integer, got {value!r}")
        return int(value)
    if isinstance(value, int):
        return value
    raise ObserverConfigError(f"port must be an integer, got {value!r}")


def _parse_positive(name: str, value: Any, *, integer: bool = False) -> float:
    if isinstance(value, bool):
        raise ObserverConfigError(f"{name} must be a number, got {value!r}")
    try:
        number = int(value) if integer else float(value)
    except (TypeError, ValueError, OverflowError):
        raise ObserverConfigError(f"{name} must be a number, got {value!r}") from None
    if not math.isfinite(number):
        raise ObserverConfigError(f"{name} must be finite, got {value!r}")
    if number <= 0:
        raise ObserverConfigError(f"{name} must be greater than zero, got {value!r}")
    return number


@dataclasses.dataclass(frozen=True)
class Endpoint:
    """Address of kanata's TCP server (``kanata --port``)."""

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT

    def __post_init__(self) -> None:
        if not isinstance(self.host, str) or not self.host.strip():
            raise ObserverConfigError("host must be a non-empty string")
        if isinstance(self.port, bool) or not isinstance(self.port, int) or not 0 < self.port <= 65535:
            raise ObserverConfigError(f"port must be between 1 and 65535, got {self.port!r}")

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


@dataclasses.dataclass(frozen=True)
class ActionSpec:
    """The script run on every layer transition.

    The script receives the new layer name as its first and only argument.
    """

    script_path: Path

    @classmethod
    def from_path(cls, raw: str | os.PathLike[str]) -> ActionSpec:
        text = os.fspath(raw).strip()
        if not text:
            raise ObserverConfigError("script_path must not be empty")
        return cls(script_path=Path(text).expanduser())

    def argv(self, layer: str) -> list[str]:
        return [str(self.script_path), layer]


@dataclasses.dataclass(frozen=True)
class ObserverConfig:
    """Observer configuration.

    Parameters
    ----------
    endpoint : Endpoint
        kanata TCP server address.
    action : ActionSpec
        Script executed on each layer transition.
    log_level : LogLevel
        Verbosity of the command-line entry point.
    connect_timeout : float
        Seconds allowed for a single connect attempt.
    backoff_initial : float
        First reconnect delay in seconds.
    backoff_max : float
        Ceiling for the reconnect delay in seconds.
    backoff_factor : float
        Multiplier applied to the delay after each failed attempt.
    stable_after : float
        A connection that stayed up at least this many seconds resets
        the reconnect delay to ``backoff_initial``.
    max_line_bytes : int
        Largest partial line buffered before it is dropped.
    """

    endpoint: Endpoint = dataclasses.field(default_factory=Endpoint)
    action: ActionSpec = dataclasses.field(default_factory=lambda: ActionSpec.from_path(DEFAULT_SCRIPT_PATH))
    log_level: LogLevel = LogLevel.INFO
    connect_timeout: float = CONNECT_TIMEOUT_S
    backoff_initial: float = BACKOFF_INITIAL_S
    backoff_max: float = BACKOFF_MAX_S
    backoff_factor: float = BACKOFF_FACTOR
    stable_after: float = STABLE_CONNECTION_S
    max_line_bytes: int = MAX_LINE_BYTES

    def __post_init__(self) -> None:
        if self.backoff_factor < 1:
            raise ObserverConfigError(f"backoff_factor must be at least 1, got {self.backoff_factor!r}")
        if self.backoff_max < self.backoff_initial:
            raise ObserverConfigError(
                f"backoff_max ({self.backoff_max}) must not be lower than backoff_initial ({self.backoff_initial})"
            )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> ObserverConfig:
        """Build a config from flat settings as found in the TOML file.

        Raises
        ------
        ObserverConfigError
            On unknown keys or invalid values.
        """
        unknown = set(data) - _SETTING_KEYS
        if unknown:
            raise ObserverConfigError(f"Unknown configuration keys: {', '.join(sorted(unknown))}")

        kwargs: dict[str, Any] = {
            "endpoint": Endpoint(
                host=str(data.get("host", DEFAULT_HOST)).strip(),
                port=_parse_port(data.get("port", DEFAULT_PORT)),
            ),
            "action": ActionSpec.from_path(data.get("script_path", DEFAULT_SCRIPT_PATH)),
            "log_level": LogLevel.parse(data.get("log_level", LogLevel.INFO)),
        }
        for key in _FLOAT_KEYS:
            if key in data:
                kwargs[key] = _parse_positive(key, data[key])
        if "max_line_bytes" in data:
            kwargs["max_line_bytes"] = _parse_positive("max_line_bytes", data["max_line_bytes"], integer=True)
        return cls(**kwargs)

    @classmethod
    def from_env(cls, base: Mapping[str, Any] | None = None, **overrides: Any) -> ObserverConfig:
        """Create configuration from *base* settings plus environment variables.

        Reads ``KANATA_OBSERVER_HOST``, ``KANATA_OBSERVER_PORT``,
        ``KANATA_OBSERVER_SCRIPT`` and ``KANATA_OBSERVER_LOG_LEVEL``.
        Explicit keyword arguments whose value is not ``None`` override
        both.
        """
        settings: dict[str, Any] = dict(base or {})
        env = os.environ
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None and val.strip():
                settings[field_name] = val
        settings.update({key: value for key, value in overrides.items() if value is not None})
        return cls.from_mapping(settings)


_FLOAT_KEYS: tuple[str, ...] = (
    "connect_timeout",
    "backoff_initial",
    "backoff_max",
    "backoff_factor",
    "stable_after",
)
_SETTING_KEYS: frozenset[str] = frozenset(
    {"host", "port", "script_path", "log_level", "max_line_bytes", *_FLOAT_KEYS}
)
_ENV_CONFIG_MAP = {
    "KANATA_OBSERVER_HOST": "host",
    "KANATA_OBSERVER_PORT": "port",
    "KANATA_OBSERVER_SCRIPT": "script_path",
    "KANATA_OBSERVER_LOG_LEVEL": "log_level",
}

_DEFAULT_CONFIG_TEMPLATE = """\
# kanata-observer configuration

# Port that kanata's TCP server is listening on (kanata --port)
port = {port}

# Host kanata's TCP server is bound to
host = "{host}"

# Path to the script to execute on layer change
# The layer name will be passed as the first argument
script_path = "{script_path}"

# Log level: "info", "debug", or "trace"
log_level = "{log_level}"
"""


def write_default_config(path: Path) -> None:
    """Write a commented default configuration file to *path*."""
    content = _DEFAULT_CONFIG_TEMPLATE.format(
        port=DEFAULT_PORT,
        host=DEFAULT_HOST,
        script_path=DEFAULT_SCRIPT_PATH,
        log_level=LogLevel.INFO.value,
    )
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    except OSError as exc:
        raise ObserverConfigError(f"Failed to create default config file {path}: {exc}") from exc


def read_config_file(path: str | os.PathLike[str], *, create_missing: bool = True) -> dict[str, Any]:
    """Read the TOML settings at *path*.

    A missing file is replaced by a freshly written default one when
    *create_missing* is set; the defaults are returned in that case.
    """
    config_path = Path(path).expanduser()
    try:
        with config_path.open("rb") as fh:
            return tomllib.load(fh)
    except FileNotFoundError:
        if not create_missing:
            raise ObserverConfigError(f"Config file not found: {config_path}") from None
        write_default_config(config_path)
        print(f"Created default config file at: {config_path}", file=sys.stderr)
        print("Please edit it with your desired settings.", file=sys.stderr)
        with config_path.open("rb") as fh:
            return tomllib.load(fh)
    except tomllib.TOMLDecodeError as exc:
        raise ObserverConfigError(f"Failed to parse config file {config_path}: {exc}") from exc
    except OSError as exc:
        raise ObserverConfigError(f"Failed to read config file {config_path}: {exc}") from exc


def load_config(
    path: str | os.PathLike[str],
    *,
    create_missing: bool = True,
    **overrides: Any,
) -> ObserverConfig:
    """Resolve the effective configuration.

    Precedence, lowest first: built-in defaults, the TOML file at
    *path*, ``KANATA_OBSERVER_*`` environment variables, *overrides*.
    """
    settings = read_config_file(path, create_missing=create_missing)
    config = ObserverConfig.from_env(settings, **overrides)
    _logger.debug(
        "Configuration resolved endpoint=%s script=%s log_level=%s",
        config.endpoint,
        config.action.script_path,
        config.log_level,
    )
    return config
