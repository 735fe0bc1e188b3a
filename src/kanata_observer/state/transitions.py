"""Layer transition filter.

This is the only component allowed to hold the last dispatched layer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Final

from kanata_observer._log import trace
from kanata_observer.models.messages import LayerChange, ServerMessage

_logger = logging.getLogger(__name__)


class _Unknown:
    def __repr__(self) -> str:
        return "<unknown>"


UNKNOWN_LAYER: Final = _Unknown()


@dataclass(frozen=True, slots=True)
class Transition:
    """A confirmed change of the active layer."""

    new_layer: str
    previous_layer: str | None
    sequence: int


class TransitionFilter:
    """Equality-keyed last-value debouncer over layer changes.

    Given the same sequence of messages it emits the same transitions, in
    arrival order.  The state survives reconnects, so a layer that is
    re-announced after a reconnect is not dispatched twice.
    """

    def __init__(self, *, logger: logging.Logger | None = None) -> None:
        self._logger = logger or _logger
        self._layer: str | _Unknown = UNKNOWN_LAYER
        self._sequence = 0

    @property
    def current_layer(self) -> str | None:
        """Last dispatched layer, or ``None`` before the first transition."""
        layer = self._layer
        return None if isinstance(layer, _Unknown) else layer

    @property
    def transitions(self) -> int:
        return self._sequence

    def offer(self, message: ServerMessage) -> Transition | None:
        """Return a transition if *message* changes the active layer."""
        if not isinstance(message, LayerChange):
            trace(self._logger, "Ignoring %s message", type(message).__name__)
            return None

        new_layer = message.new
        if new_layer == self._layer:
            trace(self._logger, "Layer %r already active", new_layer)
            return None

        previous = self.current_layer
        self._layer = new_layer
        self._sequence += 1
        self._logger.debug("Layer changed %r -> %r", previous, new_layer)
        return Transition(new_layer=new_layer, previous_layer=previous, sequence=self._sequence)
