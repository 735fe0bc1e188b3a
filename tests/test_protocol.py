from __future__ import annotations

import logging

import pytest

from kanata_observer._protocol import LineFramer, ProtocolDecoder, decode_line, parse_message
from kanata_observer.exceptions import ObserverProtocolError
from kanata_observer.models import (
    ConfigFileReload,
    CurrentLayerInfo,
    LayerChange,
    LayerNames,
    MessagePush,
    ServerErrorMessage,
    ServerResponse,
)


def test_framer_reassembles_line_split_across_reads() -> None:
    framer = LineFramer()

    assert framer.feed(b'{"LayerChange":{"ne') == []
    assert framer.pending > 0
    assert framer.feed(b'w":"nav"}}\n{"Lay') == [b'{"LayerChange":{"new":"nav"}}']
    assert framer.feed(b'erChange":{"new":"base"}}\n') == [b'{"LayerChange":{"new":"base"}}']
    assert framer.pending == 0


def test_framer_returns_every_complete_line_of_a_chunk() -> None:
    framer = LineFramer()

    assert framer.feed(b"a\nb\n\nc") == [b"a", b"b", b""]
    assert framer.feed(b"\n") == [b"c"]


def test_framer_drops_oversized_partial_line_and_its_tail() -> None:
    framer = LineFramer(max_line_bytes=16)

    assert framer.feed(b"x" * 20) == []
    assert framer.pending == 0
    # The rest of the oversized line is discarded up to the newline.
    assert framer.feed(b"yyyy\nok\n") == [b"ok"]


def test_framer_drops_oversized_complete_line() -> None:
    framer = LineFramer(max_line_bytes=4)

    assert framer.feed(b"toolong\nfine\n") == [b"fine"]


def test_framer_reset_forgets_partial_line() -> None:
    framer = LineFramer()
    framer.feed(b'{"LayerChange":')
    framer.reset()

    assert framer.feed(b'{"LayerChange":{"new":"a"}}\n') == [b'{"LayerChange":{"new":"a"}}']


def test_parse_layer_change_keeps_name_verbatim() -> None:
    message = parse_message(b'{"LayerChange":{"new":"Nav Layer "}}')

    assert isinstance(message, LayerChange)
    assert message.new == "Nav Layer "


@pytest.mark.parametrize(
    ("line", "expected"),
    [
        (b'{"LayerNames":{"names":["base","nav"]}}', LayerNames),
        (b'{"CurrentLayerInfo":{"name":"base","cfg_text":"(deflayer base)"}}', CurrentLayerInfo),
        (b'{"ConfigFileReload":{"new":"/tmp/kanata.kbd"}}', ConfigFileReload),
        (b'{"MessagePush":{"message":{"any":[1,2]}}}', MessagePush),
        (b'{"Error":{"msg":"boom"}}', ServerErrorMessage),
        (b'{"status":"Ok"}', ServerResponse),
    ],
)
def test_parse_recognizes_other_server_messages(line: bytes, expected: type) -> None:
    assert isinstance(parse_message(line), expected)


def test_parse_status_error_response() -> None:
    message = parse_message(b'{"status":"Error","msg":"unknown command"}')

    assert isinstance(message, ServerResponse)
    assert not message.ok
    assert message.msg == "unknown command"


@pytest.mark.parametrize(
    "line",
    [
        b"not json",
        b"[1, 2]",
        b'{"Unknown":{"x":1}}',
        b'{"LayerChange":{"new":"a"},"LayerNames":{"names":[]}}',
        b'{"LayerChange":{"old":"a"}}',
        b'{"LayerChange":{"new":42}}',
        b"\xff\xfe",
    ],
)
def test_parse_rejects_malformed_lines(line: bytes) -> None:
    with pytest.raises(ObserverProtocolError):
        parse_message(line)


def test_decode_line_skips_blank_and_malformed(caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.DEBUG, logger="kanata_observer._protocol")

    assert decode_line(b"   ") is None
    assert decode_line(b"{garbage") is None
    assert "Skipping undecodable line" in caplog.text


def test_decode_line_tolerates_crlf() -> None:
    message = decode_line(b'{"LayerChange":{"new":"base"}}\r')

    assert isinstance(message, LayerChange)
    assert message.new == "base"


def test_decoder_skips_malformed_line_between_valid_ones() -> None:
    decoder = ProtocolDecoder()

    messages = list(
        decoder.feed(b'{"LayerChange":{"new":"a"}}\n{"LayerChange":\n{"LayerChange":{"new":"b"}}\n')
    )

    assert [m.new for m in messages if isinstance(m, LayerChange)] == ["a", "b"]
    assert len(messages) == 2


def test_decoder_skips_deeply_nested_line_between_valid_ones() -> None:
    decoder = ProtocolDecoder()
    nested = b"[" * 60000

    messages = list(
        decoder.feed(b'{"LayerChange":{"new":"a"}}\n' + nested + b'\n{"LayerChange":{"new":"b"}}\n')
    )

    assert [m.new for m in messages if isinstance(m, LayerChange)] == ["a", "b"]


def test_parse_rejects_deeply_nested_line() -> None:
    with pytest.raises(ObserverProtocolError, match="nested too deeply"):
        parse_message(b"[" * 60000)


def test_decoder_split_frame_yields_one_event() -> None:
    decoder = ProtocolDecoder()

    first = list(decoder.feed(b'{"LayerChange":{"new":"sy'))
    second = list(decoder.feed(b'mbols"}}\n'))

    assert first == []
    assert second == [LayerChange(new="symbols")]


def test_decoder_framing_happens_even_if_iterator_is_not_consumed() -> None:
    decoder = ProtocolDecoder()

    decoder.feed(b'{"LayerChange":{"new":"a"}}\n{"LayerChange":{"new":')
    messages = list(decoder.feed(b'"b"}}\n'))

    assert messages == [LayerChange(new="b")]
