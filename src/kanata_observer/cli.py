"""Command-line entry point: ``kanata-observer``."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import signal
import sys
from collections.abc import Sequence
from typing import Any

from kanata_observer import __version__
from kanata_observer._constants import (
    DEFAULT_CONFIG_PATH,
    EXIT_CONFIG_ERROR,
    EXIT_CONNECTION_ERROR,
    EXIT_OK,
)
from kanata_observer._log import configure_logging
from kanata_observer.config import LogLevel, ObserverConfig, load_config
from kanata_observer.exceptions import ObserverConfigError, ObserverConnectionError
from kanata_observer.observer import LayerObserver

_logger = logging.getLogger("kanata_observer")

_SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="kanata-observer",
        description="Run a script whenever kanata switches to a different layer.",
    )
    parser.add_argument(
        "--config",
        "-c",
        default=DEFAULT_CONFIG_PATH,
        help="Path to configuration file (default: %(default)s).",
    )
    parser.add_argument(
        "--port",
        "-p",
        type=int,
        default=None,
        help="Port that kanata's TCP server is listening on (overrides config file).",
    )
    parser.add_argument(
        "--host",
        default=None,
        help="Host of kanata's TCP server (overrides config file).",
    )
    parser.add_argument(
        "--debug",
        "-d",
        action="store_true",
        help="Enable debug logging (overrides config file).",
    )
    parser.add_argument(
        "--trace",
        "-t",
        action="store_true",
        help="Enable trace logging (overrides config file).",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser.parse_args(argv)


def _log_level_override(args: argparse.Namespace) -> LogLevel | None:
    if args.trace:
        return LogLevel.TRACE
    if args.debug:
        return LogLevel.DEBUG
    return None


def _install_signal_handlers(loop: asyncio.AbstractEventLoop, observer: LayerObserver) -> None:
    def on_signal(signum: int) -> None:
        _logger.info("Received %s, shutting down", signal.Signals(signum).name)
        observer.request_shutdown()

    for sig in _SHUTDOWN_SIGNALS:
        try:
            loop.add_signal_handler(sig, on_signal, sig)
        except NotImplementedError:
            # Windows event loops have no add_signal_handler.
            def handler(signum: int, _frame: Any) -> None:
                loop.call_soon_threadsafe(on_signal, signum)

            signal.signal(sig, handler)


def _remove_signal_handlers(loop: asyncio.AbstractEventLoop) -> None:
    for sig in _SHUTDOWN_SIGNALS:
        try:
            loop.remove_signal_handler(sig)
        except NotImplementedError:
            signal.signal(sig, signal.SIG_DFL)


async def _observe(config: ObserverConfig) -> None:
    loop = asyncio.get_running_loop()
    async with LayerObserver(config) as observer:
        _install_signal_handlers(loop, observer)
        try:
            await observer.run()
        finally:
            _remove_signal_handlers(loop)


def main(argv: Sequence[str] | None = None) -> int:
    args = _parse_args(argv)

    try:
        config = load_config(
            args.config,
            port=args.port,
            host=args.host,
            log_level=_log_level_override(args),
        )
    except ObserverConfigError as exc:
        print(f"kanata-observer: {exc}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    configure_logging(config.log_level.logging_level)

    script = config.action.script_path
    if not os.access(script, os.X_OK):
        _logger.warning("Script %s does not exist or is not executable", script)

    try:
        asyncio.run(_observe(config))
    except ObserverConnectionError as exc:
        _logger.critical("%s", exc)
        return EXIT_CONNECTION_ERROR
    return EXIT_OK
