"""Route update sources.

A source is any iterable of ``RouteEvent`` objects in per-peer sequence
order.  In follow mode a source also yields ``None`` whenever a poll finds no
new data, so the consumer can run its timers while the feed is quiet.
"""

from __future__ import annotations

import heapq
import logging
import os
import threading
import time
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Any

from src.contracts.route import RouteEvent
from src.feed.filters import validate_event
from src.feed.parser import Sequencer, parse_line
from src.shared.timeutil import diff_sec

log = logging.getLogger(__name__)


class JsonlRouteSource:
    """Read (and optionally tail) a JSONL feed file.

    Lines that fail to parse or validate are quarantined: logged, counted
    and kept in ``quarantine`` (bounded) for inspection.
    """

    def __init__(
        self,
        path: str | Path,
        follow: bool = False,
        poll_interval_sec: float = 1.0,
        stop: threading.Event | None = None,
        max_quarantine: int = 1000,
    ) -> None:
        self.path = Path(path)
        self.follow = follow
        self.poll_interval_sec = poll_interval_sec
        self.stop = stop or threading.Event()
        self.max_quarantine = max_quarantine
        self.sequencer = Sequencer()
        self.quarantine: list[dict[str, Any]] = []
        self.stats: dict[str, int] = {"lines": 0, "events": 0, "quarantined": 0}
        self._offset = 0

    def __iter__(self) -> Iterator[RouteEvent | None]:
        if not self.follow:
            yield from self._read_new()
            log.info(
                "Feed %s: %d lines, %d events, %d quarantined",
                self.path, self.stats["lines"], self.stats["events"], self.stats["quarantined"],
            )
            return

        log.info("Following feed %s (poll %.1fs)", self.path, self.poll_interval_sec)
        while not self.stop.is_set():
            got = False
            for ev in self._read_new():
                got = True
                yield ev
            if not got:
                yield None
                self.stop.wait(self.poll_interval_sec)

    # ── file handling ────────────────────────────────────────────────────

    def _read_new(self) -> Iterator[RouteEvent]:
        if not self.path.is_file():
            if not self.follow:
                raise FileNotFoundError(f"Feed not found: {self.path}")
            return
        size = os.path.getsize(self.path)
        if size < self._offset:
            log.warning("Feed %s shrank (rotated?) — reading from start", self.path)
            self._offset = 0
        if size == self._offset:
            return

        with open(self.path, encoding="utf-8", errors="replace") as fh:
            fh.seek(self._offset)
            while True:
                line = fh.readline()
                if not line:
                    break
                if not line.endswith("\n") and self.follow:
                    # partial line still being written
                    break
                self._offset = fh.tell()
                self.stats["lines"] += 1
                yield from self._handle_line(line, self.stats["lines"])

    def _handle_line(self, line: str, line_no: int) -> Iterator[RouteEvent]:
        result = parse_line(line, self.sequencer)
        if isinstance(result, tuple):
            self._quarantine(line_no, result[0], result[1])
            return
        for ev in result:
            problems = validate_event(ev)
            if problems:
                self._quarantine(line_no, line.strip(), "; ".join(problems))
                continue
            self.stats["events"] += 1
            yield ev

    def _quarantine(self, line_no: int, raw: str, reason: str) -> None:
        self.stats["quarantined"] += 1
        log.warning("Quarantined feed line %d: %s", line_no, reason)
        if len(self.quarantine) < self.max_quarantine:
            self.quarantine.append({"line_no": line_no, "raw_line": raw, "reason": reason})


def _arrival_key(ev: RouteEvent) -> tuple[str, int, int]:
    return (ev.timestamp, ev.peer_asn, ev.sequence)


def merge_by_arrival(*streams: Iterable[RouteEvent]) -> Iterator[RouteEvent]:
    """Merge per-peer streams into one queue ordered by arrival time.

    Each input stream keeps its own order in the output, so per-peer
    sequence order survives the merge even when peer clocks disagree.
    """
    return heapq.merge(*streams, key=_arrival_key)


def split_by_peer(events: Iterable[RouteEvent]) -> dict[int, list[RouteEvent]]:
    """Partition a mixed event list into per-peer streams (order preserved)."""
    out: dict[int, list[RouteEvent]] = {}
    for ev in events:
        out.setdefault(ev.peer_asn, []).append(ev)
    return out


def replay(events: Iterable[RouteEvent], speed: float = 0.0) -> Iterator[RouteEvent]:
    """Yield events, optionally pacing them by their timestamps.

    ``speed`` 0 replays as fast as possible; 1.0 is real time.
    """
    prev: str | None = None
    for ev in events:
        if speed > 0 and prev is not None:
            gap = diff_sec(prev, ev.timestamp)
            if gap > 0:
                time.sleep(gap / speed)
        prev = ev.timestamp
        yield ev
