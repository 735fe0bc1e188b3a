"""Layer observer: the dispatch loop wiring connection, decoder, filter and action."""

from __future__ import annotations

import logging
from typing import Any

from kanata_observer._action import ActionInvoker
from kanata_observer._backoff import Backoff
from kanata_observer._connection import ConnectionState, ConnectionSupervisor, Connector
from kanata_observer._protocol import ProtocolDecoder
from kanata_observer.config import ObserverConfig
from kanata_observer.state.transitions import TransitionFilter

_logger = logging.getLogger(__name__)


class LayerObserver:
    """Run the layer-change script whenever kanata switches layers.

    Usage::

        async with LayerObserver(config) as observer:
            await observer.run()

    :meth:`run` returns once :meth:`request_shutdown` has been called and
    the socket is closed.  Leaving the context abandons scripts that are
    still running.
    """

    def __init__(
        self,
        config: ObserverConfig,
        *,
        invoker: ActionInvoker | None = None,
        connector: Connector | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._logger = logger or _logger
        self._decoder = ProtocolDecoder(max_line_bytes=config.max_line_bytes)
        self._filter = TransitionFilter()
        self._invoker = invoker or ActionInvoker(config.action)

        self._supervisor = ConnectionSupervisor(
            config.endpoint,
            on_data=self._on_data,
            on_connected=self._decoder.reset,
            backoff=Backoff(
                initial=config.backoff_initial,
                maximum=config.backoff_max,
                factor=config.backoff_factor,
            ),
            connect_timeout=config.connect_timeout,
            stable_after=config.stable_after,
            connector=connector,
        )
        self._shutdown_requested = False

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> LayerObserver:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self.request_shutdown()
        self._invoker.abandon()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def current_layer(self) -> str | None:
        return self._filter.current_layer

    @property
    def connection_state(self) -> ConnectionState:
        return self._supervisor.state

    @property
    def connections(self) -> int:
        return self._supervisor.connections

    @property
    def invoker(self) -> ActionInvoker:
        return self._invoker

    async def run(self) -> None:
        """Watch kanata until shutdown is requested."""
        if self._shutdown_requested:
            return
        self._logger.info(
            "Watching kanata at %s; running %s on layer change",
            self._config.endpoint,
            self._config.action.script_path,
        )
        await self._supervisor.run()
        self._logger.info("Observer stopped")

    def request_shutdown(self) -> None:
        """Begin graceful shutdown. Safe to call more than once."""
        if self._shutdown_requested:
            return
        self._shutdown_requested = True
        self._logger.info("Shutdown requested")
        self._supervisor.stop()

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _on_data(self, chunk: bytes) -> None:
        for message in self._decoder.feed(chunk):
            transition = self._filter.offer(message)
            if transition is None:
                continue
            self._logger.info("Layer changed to %r", transition.new_layer)
            self._invoker.dispatch(transition)
