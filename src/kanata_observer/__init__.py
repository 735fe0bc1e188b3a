"""kanata_observer - Run a script whenever kanata changes layer."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("kanata-observer")
except PackageNotFoundError:
    __version__ = "0+local"
from kanata_observer._action import ActionInvoker, ActionOutcome
from kanata_observer._backoff import Backoff, backoff_delay
from kanata_observer._connection import ConnectionState, ConnectionSupervisor
from kanata_observer._protocol import LineFramer, ProtocolDecoder, decode_line, parse_message
from kanata_observer.config import ActionSpec, Endpoint, LogLevel, ObserverConfig, load_config
from kanata_observer.exceptions import (
    ObserverConfigError,
    ObserverConnectionError,
    ObserverError,
    ObserverProtocolError,
)
from kanata_observer.models import LayerChange, ServerMessage
from kanata_observer.observer import LayerObserver
from kanata_observer.state.transitions import Transition, TransitionFilter

__all__ = [
    "__version__",
    "ActionInvoker",
    "ActionOutcome",
    "ActionSpec",
    "Backoff",
    "ConnectionState",
    "ConnectionSupervisor",
    "Endpoint",
    "LayerChange",
    "LayerObserver",
    "LineFramer",
    "LogLevel",
    "ObserverConfig",
    "ObserverConfigError",
    "ObserverConnectionError",
    "ObserverError",
    "ObserverProtocolError",
    "ProtocolDecoder",
    "ServerMessage",
    "Transition",
    "TransitionFilter",
    "backoff_delay",
    "decode_line",
    "load_config",
    "parse_message",
]
