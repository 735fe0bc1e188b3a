"""Fire-and-forget execution of the layer-change script.

Each invocation runs on its own daemon thread and reports back to the
event loop with ``call_soon_threadsafe``.  The dispatch loop never waits
for a script, and interpreter exit never waits for one either: scripts
still running at shutdown are left alone, not killed.
"""

from __future__ import annotations

import asyncio
import logging
import subprocess
import threading
from collections.abc import Callable
from dataclasses import dataclass

from kanata_observer._log import trace
from kanata_observer.config import ActionSpec
from kanata_observer.state.transitions import Transition

_logger = logging.getLogger(__name__)

Runner = Callable[[list[str]], subprocess.CompletedProcess[bytes]]


def _run_script(argv: list[str]) -> subprocess.CompletedProcess[bytes]:
    return subprocess.run(argv, stdin=subprocess.DEVNULL, capture_output=True, check=False)


def _text(value: bytes | str | None) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


@dataclass(frozen=True, slots=True)
class ActionOutcome:
    """Result of one script invocation."""

    layer: str
    returncode: int | None = None
    stdout: str = ""
    stderr: str = ""
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.returncode == 0


class ActionInvoker:
    """Launch the configured script once per transition."""

    def __init__(
        self,
        spec: ActionSpec,
        *,
        runner: Runner = _run_script,
        logger: logging.Logger | None = None,
    ) -> None:
        self._spec = spec
        self._runner = runner
        self._logger = logger or _logger
        self._inflight: set[asyncio.Future[ActionOutcome]] = set()

    @property
    def in_flight(self) -> int:
        return len(self._inflight)

    def dispatch(self, transition: Transition) -> asyncio.Future[ActionOutcome]:
        """Start the script for *transition* and return without waiting.

        The returned future resolves with the :class:`ActionOutcome`; it
        never raises for script failures.  Must be called from the event
        loop thread.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[ActionOutcome] = loop.create_future()
        self._inflight.add(future)
        future.add_done_callback(self._inflight.discard)

        layer = transition.new_layer
        self._logger.debug("Running %s for layer %r", self._spec.script_path, layer)
        worker = threading.Thread(
            target=self._work,
            args=(loop, future, layer),
            name=f"kanata-observer-action-{transition.sequence}",
            daemon=True,
        )
        worker.start()
        return future

    def abandon(self) -> None:
        """Stop tracking running scripts; they keep running on their own."""
        pending = [future for future in self._inflight if not future.done()]
        if pending:
            self._logger.info("Abandoning %d running action(s)", len(pending))
        for future in pending:
            future.cancel()
        self._inflight.clear()

    def _work(
        self,
        loop: asyncio.AbstractEventLoop,
        future: asyncio.Future[ActionOutcome],
        layer: str,
    ) -> None:
        argv = self._spec.argv(layer)
        try:
            completed = self._runner(argv)
            outcome = ActionOutcome(
                layer=layer,
                returncode=completed.returncode,
                stdout=_text(completed.stdout),
                stderr=_text(completed.stderr),
            )
        except (OSError, ValueError) as exc:
            outcome = ActionOutcome(layer=layer, error=str(exc))
        except Exception as exc:
            outcome = ActionOutcome(layer=layer, error=f"{type(exc).__name__}: {exc}")

        try:
            loop.call_soon_threadsafe(self._complete, future, outcome)
        except RuntimeError:
            # Loop already closed: the observer shut down meanwhile.
            self._logger.debug("Action for layer %r finished after shutdown", layer)

    def _complete(self, future: asyncio.Future[ActionOutcome], outcome: ActionOutcome) -> None:
        self._log_outcome(outcome)
        if not future.done():
            future.set_result(outcome)

    def _log_outcome(self, outcome: ActionOutcome) -> None:
        if outcome.error is not None:
            self._logger.error(
                "Failed to execute script %s for layer %r: %s",
                self._spec.script_path,
                outcome.layer,
                outcome.error,
            )
            return
        if outcome.returncode != 0:
            self._logger.error(
                "Script failed for layer %r (exit status %s): %s",
                outcome.layer,
                outcome.returncode,
                outcome.stderr.strip(),
            )
            return
        self._logger.debug("Script executed successfully for layer %r", outcome.layer)
        if outcome.stdout:
            trace(self._logger, "Script output for layer %r: %s", outcome.layer, outcome.stdout.strip())
