"""Logging setup and the extra ``TRACE`` level.

kanata_observer logs through plain :mod:`logging` module loggers.  The
stdlib has no level below ``DEBUG``, so raw wire traffic and other
high-volume records go out at :data:`TRACE` instead.
"""

from __future__ import annotations

import logging
from typing import Any

TRACE = 5

_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

logging.addLevelName(TRACE, "TRACE")


def trace(logger: logging.Logger, msg: str, *args: Any) -> None:
    """Emit *msg* at :data:`TRACE` level on *logger*."""
    if logger.isEnabledFor(TRACE):
        logger.log(TRACE, msg, *args)


def configure_logging(level: int) -> None:
    """Configure the root logger for the command-line entry point.

    Library users are expected to configure logging themselves; this
    is only called from :mod:`kanata_observer.cli`.
    """
    logging.basicConfig(level=level, format=_FORMAT, force=True)
