"""Line framing and decoding for kanata's TCP event stream."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterator
from typing import Any

from pydantic import ValidationError

from kanata_observer._constants import MAX_LINE_BYTES
from kanata_observer._log import trace
from kanata_observer.exceptions import ObserverProtocolError
from kanata_observer.models.messages import TAGGED_MESSAGES, ServerMessage, ServerResponse

_logger = logging.getLogger(__name__)


class LineFramer:
    """Split a byte stream into newline-terminated lines.

    Bytes after the last newline are kept until a later chunk completes
    the line.  A partial line that grows past *max_line_bytes* is dropped,
    and so is the rest of it up to the next newline.
    """

    def __init__(self, *, max_line_bytes: int = MAX_LINE_BYTES, logger: logging.Logger | None = None) -> None:
        self._max_line_bytes = max_line_bytes
        self._logger = logger or _logger
        self._buffer = bytearray()
        self._discarding = False

    @property
    def pending(self) -> int:
        """Number of buffered bytes belonging to an incomplete line."""
        return len(self._buffer)

    def reset(self) -> None:
        self._buffer.clear()
        self._discarding = False

    def feed(self, chunk: bytes) -> list[bytes]:
        """Consume *chunk* and return every line it completes (without ``\\n``)."""
        lines: list[bytes] = []
        start = 0
        while True:
            newline = chunk.find(b"\n", start)
            if newline == -1:
                break
            piece = chunk[start:newline]
            start = newline + 1
            if self._discarding:
                self._discarding = False
                self._buffer.clear()
                continue
            if self._buffer:
                self._buffer.extend(piece)
                piece = bytes(self._buffer)
                self._buffer.clear()
            if len(piece) > self._max_line_bytes:
                self._logger.warning("Dropping oversized line (%d bytes)", len(piece))
                continue
            lines.append(piece)

        tail = chunk[start:]
        if tail and not self._discarding:
            self._buffer.extend(tail)
            if len(self._buffer) > self._max_line_bytes:
                self._logger.warning(
                    "Dropping partial line exceeding %d bytes; skipping to next newline",
                    self._max_line_bytes,
                )
                self._buffer.clear()
                self._discarding = True
        return lines


def parse_message(line: bytes) -> ServerMessage:
    """Decode one line into a typed server message.

    Raises
    ------
    ObserverProtocolError
        If the line is not JSON, not a known record shape, or does not
        match the fields of its tag.
    """
    try:
        payload: Any = json.loads(line)
    except ValueError as exc:
        raise ObserverProtocolError(f"Line is not valid JSON: {exc}", line=line) from exc
    except RecursionError as exc:
        raise ObserverProtocolError("Line is nested too deeply to decode", line=line) from exc

    if not isinstance(payload, dict):
        raise ObserverProtocolError("Line is not a JSON object", line=line)

    try:
        if ServerResponse.TAG in payload:
            return ServerResponse.model_validate(payload)

        if len(payload) != 1:
            raise ObserverProtocolError(f"Expected exactly one tag, got {sorted(payload)}", line=line)
        tag, body = next(iter(payload.items()))
        model = TAGGED_MESSAGES.get(tag)
        if model is None:
            raise ObserverProtocolError(f"Unknown message tag {tag!r}", line=line)
        return model.model_validate(body)
    except ValidationError as exc:
        raise ObserverProtocolError(f"Message does not match its schema: {exc}", line=line) from exc


def decode_line(line: bytes, *, logger: logging.Logger | None = None) -> ServerMessage | None:
    """Decode one line, returning ``None`` for blank or undecodable input."""
    log = logger or _logger
    stripped = line.strip()
    if not stripped:
        return None
    trace(log, "Received line %r", stripped)
    try:
        return parse_message(stripped)
    except ObserverProtocolError as exc:
        log.debug("Skipping undecodable line: %s", exc)
        return None


class ProtocolDecoder:
    """Incremental decoder from raw socket chunks to server messages."""

    def __init__(self, *, max_line_bytes: int = MAX_LINE_BYTES, logger: logging.Logger | None = None) -> None:
        self._logger = logger or _logger
        self._framer = LineFramer(max_line_bytes=max_line_bytes, logger=self._logger)

    def reset(self) -> None:
        """Forget any partial line (call on every new connection)."""
        self._framer.reset()

    def feed(self, chunk: bytes) -> Iterator[ServerMessage]:
        """Frame *chunk* and lazily decode the completed lines."""
        lines = self._framer.feed(chunk)
        return self._decode(lines)

    def _decode(self, lines: list[bytes]) -> Iterator[ServerMessage]:
        for line in lines:
            message = decode_line(line, logger=self._logger)
            if message is not None:
                yield message
