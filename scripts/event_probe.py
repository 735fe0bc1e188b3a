#!/usr/bin/env python3
"""Passive probe for kanata's TCP event stream.

Connects once to kanata's TCP server and prints every record it pushes,
decoded with the same parser the observer uses.  Nothing is ever sent to
kanata.

Use this to check which records a running kanata emits (and how often)
before wiring up a layer-change script.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
import time
from dataclasses import dataclass
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from kanata_observer import Endpoint, LineFramer, ObserverProtocolError, parse_message  # noqa: E402
from kanata_observer._constants import DEFAULT_HOST, DEFAULT_PORT, READ_CHUNK_BYTES  # noqa: E402
from kanata_observer.models import LayerChange  # noqa: E402

_LOG = logging.getLogger("event_probe")


@dataclass
class ProbeStats:
    started_at: float
    total_lines: int = 0
    decode_ok: int = 0
    decode_failed: int = 0
    layer_changes: int = 0
    first_line_at: float | None = None
    last_line_at: float | None = None
    last_idle_report_at: float | None = None

    def on_line(self, now: float) -> float | None:
        previous = self.last_line_at
        self.total_lines += 1
        if self.first_line_at is None:
            self.first_line_at = now
        self.last_line_at = now
        return None if previous is None else now - previous


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Passive probe for kanata's TCP event stream.",
    )
    parser.add_argument("--host", default=DEFAULT_HOST, help="kanata TCP host.")
    parser.add_argument("--port", type=int, default=DEFAULT_PORT, help="kanata TCP port.")
    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        help="Maximum runtime in seconds (0 = run until Ctrl+C).",
    )
    parser.add_argument(
        "--idle-report-seconds",
        type=int,
        default=60,
        help="Print idle notice each N seconds without records.",
    )
    parser.add_argument(
        "--raw",
        action="store_true",
        help="Print each raw line before decoding.",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Pretty-print decoded records.",
    )
    parser.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable debug logs.",
    )
    return parser.parse_args()


def _print_summary(stats: ProbeStats) -> None:
    runtime = time.time() - stats.started_at
    print("[probe] Summary")
    print(f"[probe]   runtime_s     : {runtime:.1f}")
    print(f"[probe]   total_lines   : {stats.total_lines}")
    print(f"[probe]   decode_ok     : {stats.decode_ok}")
    print(f"[probe]   decode_failed : {stats.decode_failed}")
    print(f"[probe]   layer_changes : {stats.layer_changes}")
    if stats.first_line_at is not None:
        first_line = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(stats.first_line_at))
        print(f"[probe]   first_line    : {first_line}")
    if stats.last_line_at is not None:
        last_line = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(stats.last_line_at))
        print(f"[probe]   last_line     : {last_line}")


def _handle_line(line: bytes, stats: ProbeStats, args: argparse.Namespace) -> None:
    now = time.time()
    delta = stats.on_line(now)
    ts_text = time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(now))
    gap_text = "first" if delta is None else f"{delta:.1f}s"
    print(f"[probe] line#{stats.total_lines} at {ts_text} gap={gap_text} bytes={len(line)}")

    if args.raw:
        print(f"[probe] raw={line.decode('utf-8', errors='replace')}")

    try:
        message = parse_message(line.strip())
    except ObserverProtocolError as exc:
        stats.decode_failed += 1
        print(f"[probe] decode_failed: {exc}")
        return

    stats.decode_ok += 1
    if isinstance(message, LayerChange):
        stats.layer_changes += 1
    record = {type(message).__name__: message.model_dump()}
    if args.json:
        print(json.dumps(record, indent=2, ensure_ascii=False, sort_keys=True))
    else:
        print(json.dumps(record, ensure_ascii=False, sort_keys=True))


async def _probe(endpoint: Endpoint, args: argparse.Namespace, stats: ProbeStats) -> None:
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    print(f"[probe] Connecting to {endpoint}...")
    reader, writer = await asyncio.open_connection(endpoint.host, endpoint.port)
    print("[probe] Connected. Waiting for records")
    framer = LineFramer()

    try:
        while not stop.is_set():
            now = time.time()
            if args.duration > 0 and (now - stats.started_at) >= args.duration:
                print(f"[probe] Reached --duration={args.duration}s, stopping.")
                break

            if args.idle_report_seconds > 0:
                last_activity = stats.last_line_at or stats.started_at
                idle_seconds = now - last_activity
                last_report = stats.last_idle_report_at or stats.started_at
                should_report = (
                    idle_seconds >= args.idle_report_seconds and (now - last_report) >= args.idle_report_seconds
                )
                if should_report:
                    print(f"[probe] idle_for={idle_seconds:.1f}s without inbound records")
                    stats.last_idle_report_at = now

            try:
                chunk = await asyncio.wait_for(reader.read(READ_CHUNK_BYTES), timeout=1.0)
            except TimeoutError:
                continue
            if not chunk:
                print("[probe] Connection closed by kanata")
                break
            for line in framer.feed(chunk):
                if line.strip():
                    _handle_line(line, stats, args)
    finally:
        writer.close()


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    endpoint = Endpoint(host=args.host, port=args.port)
    stats = ProbeStats(started_at=time.time())
    try:
        asyncio.run(_probe(endpoint, args, stats))
    except OSError as exc:  # pragma: no cover - network/system interaction
        print(f"[probe] Connection failed: {exc}", file=sys.stderr)
        return 2

    _print_summary(stats)
    return 0


if __name__ == "__main__":
    raise SystemExit(_main())
