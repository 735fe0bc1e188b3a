"""Capped exponential reconnect delay."""

from __future__ import annotations

from kanata_observer._constants import BACKOFF_FACTOR, BACKOFF_INITIAL_S, BACKOFF_MAX_S


def backoff_delay(attempt: int, *, initial: float, maximum: float, factor: float) -> float:
    """Delay before retry number *attempt* (0-based), capped at *maximum*."""
    if attempt < 0:
        raise ValueError(f"attempt must be non-negative, got {attempt}")
    delay = initial
    for _ in range(attempt):
        delay *= factor
        if delay >= maximum:
            return maximum
    return min(delay, maximum)


class Backoff:
    """Stateful wrapper around :func:`backoff_delay`.

    Each :meth:`next_delay` call advances one step; :meth:`reset` goes
    back to *initial*.
    """

    def __init__(
        self,
        *,
        initial: float = BACKOFF_INITIAL_S,
        maximum: float = BACKOFF_MAX_S,
        factor: float = BACKOFF_FACTOR,
    ) -> None:
        if initial <= 0 or maximum < initial or factor < 1:
            raise ValueError(f"invalid backoff parameters initial={initial} maximum={maximum} factor={factor}")
        self.initial = initial
        self.maximum = maximum
        self.factor = factor
        self._attempt = 0

    @property
    def attempt(self) -> int:
        return self._attempt

    def next_delay(self) -> float:
        delay = backoff_delay(self._attempt, initial=self.initial, maximum=self.maximum, factor=self.factor)
        self._attempt += 1
        return delay

    def reset(self) -> None:
        self._attempt = 0
