"""TCP connection supervision for the kanata event stream.

Owns:
- connecting to the kanata server, bounded by a timeout
- the read loop that hands raw chunks to the decoder
- reconnecting with capped exponential backoff after any failure
- prompt teardown when the observer shuts down
"""

from __future__ import annotations

import asyncio
import logging
import socket
import time
from collections.abc import Awaitable, Callable
from enum import StrEnum

from kanata_observer._backoff import Backoff
from kanata_observer._constants import CONNECT_TIMEOUT_S, READ_CHUNK_BYTES, STABLE_CONNECTION_S
from kanata_observer.config import Endpoint
from kanata_observer.exceptions import ObserverConnectionError, ObserverError

_logger = logging.getLogger(__name__)

Connector = Callable[[str, int], Awaitable[tuple[asyncio.StreamReader, asyncio.StreamWriter]]]


class ConnectionState(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    BACKING_OFF = "backing_off"


# Resolver answers that no amount of retrying changes.
_PERMANENT_GAI_ERRORS: frozenset[int] = frozenset(
    getattr(socket, name)
    for name in ("EAI_NONAME", "EAI_SERVICE", "EAI_FAMILY", "EAI_SOCKTYPE", "EAI_BADFLAGS")
    if hasattr(socket, name)
)


def _is_permanent_resolution_error(exc: socket.gaierror) -> bool:
    return exc.errno in _PERMANENT_GAI_ERRORS


async def _open_connection(host: str, port: int) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    return await asyncio.open_connection(host, port)


class ConnectionSupervisor:
    """Keep a connection to kanata alive until :meth:`stop` is called.

    Every chunk read from the socket is passed to *on_data* in arrival
    order.  *on_connected* runs after each successful connect, before the
    first chunk of that connection.

    Refused, reset and timed out connections are retried forever.  Only
    errors that retrying cannot fix raise :class:`ObserverConnectionError`
    out of :meth:`run`: permission errors and malformed addresses, plus
    a host the resolver reports as nonexistent before the first successful
    connection.  Temporary resolver failures are retried like any other
    network error.
    """

    def __init__(
        self,
        endpoint: Endpoint,
        *,
        on_data: Callable[[bytes], None],
        on_connected: Callable[[], None] | None = None,
        backoff: Backoff | None = None,
        connect_timeout: float = CONNECT_TIMEOUT_S,
        stable_after: float = STABLE_CONNECTION_S,
        connector: Connector | None = None,
        clock: Callable[[], float] = time.monotonic,
        logger: logging.Logger | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._on_data = on_data
        self._on_connected = on_connected
        self._backoff = backoff or Backoff()
        self._connect_timeout = connect_timeout
        self._stable_after = stable_after
        self._connector = connector or _open_connection
        self._clock = clock
        self._logger = logger or _logger

        self._state = ConnectionState.DISCONNECTED
        self._stop = asyncio.Event()
        self._writer: asyncio.StreamWriter | None = None
        self._running = False
        self._connections = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connections(self) -> int:
        """Number of successful connects so far."""
        return self._connections

    @property
    def stopping(self) -> bool:
        return self._stop.is_set()

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            self._logger.debug("Connection state %s -> %s", self._state, state)
            self._state = state

    async def run(self) -> None:
        """Connect, read, and reconnect until :meth:`stop` is called."""
        if self._running:
            raise ObserverError("Connection supervisor is already running")
        self._running = True
        try:
            while not self._stop.is_set():
                connected_for = await self._connect_and_read()
                if self._stop.is_set():
                    break
                if connected_for is not None and connected_for >= self._stable_after:
                    self._backoff.reset()
                delay = self._backoff.next_delay()
                self._set_state(ConnectionState.BACKING_OFF)
                self._logger.info("Retrying connection to kanata in %.1f seconds", delay)
                await self._wait(delay)
        finally:
            self._close_writer()
            self._set_state(ConnectionState.DISCONNECTED)
            self._running = False

    def stop(self) -> None:
        """Stop supervising; closes the active socket to unblock the read loop."""
        if self._stop.is_set():
            return
        self._logger.debug("Connection supervisor stop requested")
        self._stop.set()
        self._close_writer()

    async def _wait(self, delay: float) -> None:
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=delay)
        except TimeoutError:
            return

    def _close_writer(self) -> None:
        writer = self._writer
        self._writer = None
        if writer is not None and not writer.is_closing():
            writer.close()

    async def _open(self) -> tuple[asyncio.StreamReader, asyncio.StreamWriter] | None:
        """Open a connection, or return ``None`` on timeout or stop."""
        connect = asyncio.ensure_future(self._connector(self._endpoint.host, self._endpoint.port))
        stop_wait = asyncio.ensure_future(self._stop.wait())
        try:
            done, _pending = await asyncio.wait(
                {connect, stop_wait},
                timeout=self._connect_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            stop_wait.cancel()
            if not connect.done():
                connect.cancel()

        if connect not in done:
            if not self._stop.is_set():
                self._logger.error(
                    "Timed out connecting to kanata at %s after %.1f seconds",
                    self._endpoint,
                    self._connect_timeout,
                )
            return None
        return connect.result()

    async def _connect_and_read(self) -> float | None:
        """Run one connection; return how long it stayed up, ``None`` if never."""
        self._set_state(ConnectionState.CONNECTING)
        self._logger.info("Attempting to connect to kanata at %s", self._endpoint)
        try:
            opened = await self._open()
        except (PermissionError, ValueError, OverflowError) as exc:
            raise ObserverConnectionError(
                f"Cannot connect to kanata at {self._endpoint}: {exc}",
                endpoint=str(self._endpoint),
            ) from exc
        except socket.gaierror as exc:
            if self._connections == 0 and _is_permanent_resolution_error(exc):
                raise ObserverConnectionError(
                    f"Cannot resolve kanata host {self._endpoint.host!r}: {exc}",
                    endpoint=str(self._endpoint),
                ) from exc
            self._logger.error("Failed to resolve kanata host %s: %s", self._endpoint.host, exc)
            return None
        except OSError as exc:
            self._logger.error("Failed to connect to kanata at %s: %s", self._endpoint, exc)
            return None
        if opened is None:
            return None

        reader, writer = opened
        self._writer = writer
        if self._stop.is_set():
            self._close_writer()
            return None

        self._connections += 1
        connected_at = self._clock()
        self._set_state(ConnectionState.CONNECTED)
        self._logger.info("Successfully connected to kanata at %s", self._endpoint)
        if self._on_connected is not None:
            self._on_connected()

        try:
            while not self._stop.is_set():
                chunk = await reader.read(READ_CHUNK_BYTES)
                if not chunk:
                    if not self._stop.is_set():
                        self._logger.error("Connection lost: closed by kanata")
                    break
                self._on_data(chunk)
        except OSError as exc:
            if not self._stop.is_set():
                self._logger.error("Connection lost: %s", exc)
        finally:
            self._close_writer()
        return self._clock() - connected_at
