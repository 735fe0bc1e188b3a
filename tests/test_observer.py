from __future__ import annotations

import asyncio
import subprocess
from collections.abc import Callable
from dataclasses import dataclass, field

import pytest

from kanata_observer._action import ActionInvoker, ActionOutcome
from kanata_observer.config import ActionSpec, Endpoint, ObserverConfig
from kanata_observer.observer import LayerObserver
from kanata_observer.state.transitions import Transition


class _RecordingInvoker(ActionInvoker):
    """Records dispatch order; completions may finish in any order."""

    def __init__(self, *, failing: frozenset[str] = frozenset()) -> None:
        self.dispatched: list[str] = []
        self.outcomes: list[asyncio.Future[ActionOutcome]] = []
        self._failing = failing
        super().__init__(ActionSpec.from_path("/opt/layer-script"), runner=self._fake_run)

    def _fake_run(self, argv: list[str]) -> subprocess.CompletedProcess[bytes]:
        returncode = 1 if argv[1] in self._failing else 0
        return subprocess.CompletedProcess(argv, returncode, stdout=b"", stderr=b"")

    def dispatch(self, transition: Transition) -> asyncio.Future[ActionOutcome]:
        self.dispatched.append(transition.new_layer)
        future = super().dispatch(transition)
        self.outcomes.append(future)
        return future


@dataclass
class FakeKanataServer:
    """Plays one scripted list of chunks per accepted connection.

    Every session but the last is dropped after its chunks are sent; the
    last one stays open until the client disconnects.
    """

    sessions: list[list[bytes]]
    accepted: int = 0
    _server: asyncio.Server | None = field(default=None, repr=False)

    async def start(self) -> Endpoint:
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        port = self._server.sockets[0].getsockname()[1]
        return Endpoint(host="127.0.0.1", port=port)

    async def close(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        index = self.accepted
        self.accepted += 1
        chunks = self.sessions[index] if index < len(self.sessions) else []
        for chunk in chunks:
            writer.write(chunk)
            await writer.drain()
            await asyncio.sleep(0.02)
        if index < len(self.sessions) - 1:
            writer.close()
            return
        await reader.read()
        writer.close()


def _config(endpoint: Endpoint) -> ObserverConfig:
    return ObserverConfig(
        endpoint=endpoint,
        action=ActionSpec.from_path("/opt/layer-script"),
        backoff_initial=0.01,
        backoff_max=0.05,
        connect_timeout=1.0,
    )


async def _wait_until(predicate: Callable[[], bool], timeout: float = 3.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


async def _observe(server: FakeKanataServer, invoker: _RecordingInvoker, until: Callable[[], bool]) -> LayerObserver:
    endpoint = await server.start()
    try:
        async with LayerObserver(_config(endpoint), invoker=invoker) as observer:
            task = asyncio.create_task(observer.run())
            await _wait_until(until)
            observer.request_shutdown()
            await asyncio.wait_for(task, timeout=2.0)
        return observer
    finally:
        await server.close()


def _line(layer: str) -> bytes:
    return b'{"LayerChange":{"new":"' + layer.encode() + b'"}}\n'


@pytest.mark.asyncio
async def test_repeats_are_suppressed_and_order_is_kept() -> None:
    server = FakeKanataServer(sessions=[[_line("A"), _line("A"), _line("B")]])
    invoker = _RecordingInvoker()

    observer = await _observe(server, invoker, lambda: len(invoker.dispatched) >= 2)

    assert invoker.dispatched == ["A", "B"]
    assert observer.current_layer == "B"


@pytest.mark.asyncio
async def test_malformed_line_between_valid_lines_is_skipped() -> None:
    server = FakeKanataServer(
        sessions=[[_line("base"), b"{this is not json\n", b'{"LayerNames":{"names":["base"]}}\n', _line("nav")]]
    )
    invoker = _RecordingInvoker()

    await _observe(server, invoker, lambda: len(invoker.dispatched) >= 2)

    assert invoker.dispatched == ["base", "nav"]


@pytest.mark.asyncio
async def test_frame_split_across_reads_is_one_event() -> None:
    server = FakeKanataServer(sessions=[[b'{"LayerChange":{"ne', b'w":"symbols"}}\n', _line("base")]])
    invoker = _RecordingInvoker()

    await _observe(server, invoker, lambda: len(invoker.dispatched) >= 2)

    assert invoker.dispatched == ["symbols", "base"]


@pytest.mark.asyncio
async def test_reconnect_does_not_refire_active_layer() -> None:
    server = FakeKanataServer(
        sessions=[
            [_line("A"), _line("B"), b'{"LayerChange":{"new":"trunc'],
            [_line("B"), _line("C")],
        ]
    )
    invoker = _RecordingInvoker()

    observer = await _observe(server, invoker, lambda: len(invoker.dispatched) >= 3)

    assert invoker.dispatched == ["A", "B", "C"]
    assert observer.connections == 2
    assert server.accepted == 2


@pytest.mark.asyncio
async def test_failing_script_does_not_block_next_transition() -> None:
    server = FakeKanataServer(sessions=[[_line("broken"), _line("fine")]])
    invoker = _RecordingInvoker(failing=frozenset({"broken"}))

    async def both_done() -> list[ActionOutcome]:
        return list(await asyncio.gather(*invoker.outcomes))

    endpoint = await server.start()
    try:
        async with LayerObserver(_config(endpoint), invoker=invoker) as observer:
            task = asyncio.create_task(observer.run())
            await _wait_until(lambda: len(invoker.outcomes) >= 2)
            outcomes = await asyncio.wait_for(both_done(), timeout=2.0)
            observer.request_shutdown()
            await asyncio.wait_for(task, timeout=2.0)
    finally:
        await server.close()

    assert [o.layer for o in outcomes] == ["broken", "fine"]
    assert [o.succeeded for o in outcomes] == [False, True]


@pytest.mark.asyncio
async def test_observer_retries_until_server_appears() -> None:
    # Grab a free port, then release it so the first attempts are refused.
    probe = await asyncio.start_server(lambda _r, _w: None, "127.0.0.1", 0)
    port = probe.sockets[0].getsockname()[1]
    probe.close()
    await probe.wait_closed()

    invoker = _RecordingInvoker()
    observer = LayerObserver(_config(Endpoint(host="127.0.0.1", port=port)), invoker=invoker)
    task = asyncio.create_task(observer.run())
    await asyncio.sleep(0.1)
    assert invoker.dispatched == []

    handler_done = asyncio.Event()

    async def handle(reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        writer.write(_line("late"))
        await writer.drain()
        await reader.read()
        writer.close()
        handler_done.set()

    server = await asyncio.start_server(handle, "127.0.0.1", port)
    try:
        await _wait_until(lambda: invoker.dispatched == ["late"])
        observer.request_shutdown()
        await asyncio.wait_for(task, timeout=2.0)
        await asyncio.wait_for(handler_done.wait(), timeout=2.0)
    finally:
        server.close()
        await server.wait_closed()
        invoker.abandon()


@pytest.mark.asyncio
async def test_shutdown_before_run_returns_immediately() -> None:
    observer = LayerObserver(_config(Endpoint(host="127.0.0.1", port=9)), invoker=_RecordingInvoker())

    observer.request_shutdown()
    observer.request_shutdown()

    await asyncio.wait_for(observer.run(), timeout=1.0)
