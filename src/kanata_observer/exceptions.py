"""Custom exception hierarchy for kanata_observer."""

from __future__ import annotations


class ObserverError(Exception):
    """Base exception for all kanata_observer errors."""


class ObserverConfigError(ObserverError):
    """Invalid or missing configuration."""


class ObserverConnectionError(ObserverError):
    """Non-transient failure reaching the kanata TCP server.

    Raised for errors that retrying cannot fix (malformed address,
    permission denied).  Refused or dropped connections are never
    reported this way; the supervisor retries those with backoff.
    """

    def __init__(self, message: str, *, endpoint: str = "") -> None:
        self.endpoint = endpoint
        super().__init__(message)


class ObserverProtocolError(ObserverError):
    """A line from the server could not be decoded into a known message."""

    def __init__(self, message: str, *, line: bytes = b"") -> None:
        self.line = line
        super().__init__(message)
