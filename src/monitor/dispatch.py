"""Dispatch — deliver alert snapshots to sinks without blocking ingestion.

Every notifying transition becomes one job per sink; each sink has its own
queue drained by its own worker thread.  A failing job is retried with
bounded exponential backoff (``base_delay * 2**n`` capped at ``max_delay``)
for at most ``max_attempts`` tries, delaying only its own sink.  Exhaustion is reported as ``DispatchFailed`` and the
alert is flagged ``pending_dispatch``; it keeps its state and the next
transition delivers again.  On shutdown, waiting retries are abandoned and
reported as ``ShutdownDuringRetry``.
"""

from __future__ import annotations

import json
import logging
import queue
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

import requests

from src.contracts.errors import DispatchFailed, ShutdownDuringRetry
from src.monitor.aggregator import Transition
from src.monitor.settings import DispatchConfig
from src.shared.timeutil import utc_now

log = logging.getLogger(__name__)


class Sink(Protocol):
    name: str

    def send(self, snapshot: dict[str, Any]) -> None:
        """Deliver one snapshot; raise DispatchFailed on failure."""
        ...


# ═══════════════════════════════════════════════════════════════════════════
#  Sinks
# ═══════════════════════════════════════════════════════════════════════════


class LogSink:
    """Writes one log line per alert snapshot."""

    def __init__(self, name: str = "log", level: str = "WARNING") -> None:
        self.name = name
        self.level = getattr(logging, level.upper(), logging.WARNING)
        self._log = logging.getLogger("src.monitor.alerts")

    def send(self, snapshot: dict[str, Any]) -> None:
        self._log.log(
            self.level,
            "ALERT %s [%s] %s %s %s: %s",
            snapshot["alert_id"],
            snapshot["severity"],
            snapshot["state"],
            snapshot["classifier"],
            snapshot["prefix"],
            snapshot["description"],
        )


class JsonlFileSink:
    """Appends snapshots to a JSONL delivery file (read by the dashboard)."""

    def __init__(self, path: str | Path, name: str = "jsonl") -> None:
        self.name = name
        self.path = Path(path)
        self._lock = threading.Lock()

    def send(self, snapshot: dict[str, Any]) -> None:
        line = json.dumps({**snapshot, "delivered_at": utc_now()}, separators=(",", ":"))
        try:
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as fh:
                    fh.write(line + "\n")
        except OSError as exc:
            raise DispatchFailed(f"{self.name}: cannot write {self.path}: {exc}") from exc


class WebhookSink:
    """POSTs the snapshot as JSON; any non-2xx answer is a failure."""

    def __init__(
        self,
        url: str,
        name: str = "webhook",
        timeout_sec: float = 5.0,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.name = name
        self.url = url
        self.timeout_sec = timeout_sec
        self.headers = headers or {}

    def send(self, snapshot: dict[str, Any]) -> None:
        try:
            resp = requests.post(
                self.url, json=snapshot, headers=self.headers, timeout=self.timeout_sec
            )
        except requests.RequestException as exc:
            raise DispatchFailed(f"{self.name}: {type(exc).__name__}: {exc}") from exc
        if not 200 <= resp.status_code < 300:
            raise DispatchFailed(f"{self.name}: HTTP {resp.status_code} from {self.url}")


def build_sinks(cfg: DispatchConfig, out_dir: str | Path = "out") -> list[Sink]:
    sinks: list[Sink] = []
    for i, s in enumerate(cfg.sinks):
        kind = s["type"]
        name = s.get("name", kind if i == 0 else f"{kind}-{i}")
        if kind == "log":
            sinks.append(LogSink(name=name, level=s.get("level", "WARNING")))
        elif kind == "jsonl":
            sinks.append(JsonlFileSink(s.get("path") or Path(out_dir) / "alerts.jsonl", name=name))
        elif kind == "webhook":
            sinks.append(
                WebhookSink(
                    s["url"],
                    name=name,
                    timeout_sec=float(s.get("timeout_sec", cfg.timeout_sec)),
                    headers=s.get("headers"),
                )
            )
    return sinks


# ═══════════════════════════════════════════════════════════════════════════
#  Dispatcher
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(slots=True)
class _Job:
    alert_id: str
    snapshot: dict[str, Any]
    sink: Sink


class _Lane:
    """One sink's queue and worker thread."""

    def __init__(self, sink: Sink) -> None:
        self.sink = sink
        self.queue: queue.Queue[_Job | None] = queue.Queue()
        self.thread: threading.Thread | None = None


class Dispatcher:
    """One queue + worker thread per sink, bounded exponential backoff per job.

    Jobs for one sink are delivered in submission order; a sink waiting out
    its backoff holds up only its own lane.
    """

    def __init__(
        self,
        sinks: list[Sink],
        cfg: DispatchConfig | None = None,
        on_success: Callable[[str, dict[str, Any]], None] | None = None,
        on_failure: Callable[[str], None] | None = None,
    ) -> None:
        self.sinks = sinks
        self.cfg = cfg or DispatchConfig()
        self.on_success = on_success or (lambda _id, _rec: None)
        self.on_failure = on_failure or (lambda _id: None)
        self._lanes = [_Lane(sink) for sink in sinks]
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self.delivered = 0
        self.failures: list[DispatchFailed] = []
        self.abandoned: list[ShutdownDuringRetry] = []

    # ── lifecycle ────────────────────────────────────────────────────────

    def start(self) -> Dispatcher:
        for lane in self._lanes:
            if lane.thread is None:
                lane.thread = threading.Thread(
                    target=self._run, args=(lane,), name=f"dispatch-{lane.sink.name}", daemon=True,
                )
                lane.thread.start()
        return self

    def submit(self, transition: Transition) -> None:
        """Queue a transition's snapshot for every sink; never blocks."""
        if not transition.notify:
            return
        for lane in self._lanes:
            lane.queue.put(_Job(transition.alert_id, transition.snapshot, lane.sink))

    def flush(self, timeout: float | None = None) -> bool:
        """Wait until every queued job finished; False on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        for lane in self._lanes:
            q = lane.queue
            with q.all_tasks_done:
                while q.unfinished_tasks:
                    remaining = None if deadline is None else deadline - time.monotonic()
                    if remaining is not None and remaining <= 0:
                        return False
                    q.all_tasks_done.wait(remaining)
        return True

    def shutdown(self, timeout: float = 5.0) -> None:
        """Stop retrying, give queued jobs one attempt each, then join."""
        self._stop.set()
        deadline = time.monotonic() + timeout
        for lane in self._lanes:
            if lane.thread is not None:
                lane.queue.put(None)
        for lane in self._lanes:
            if lane.thread is None:
                continue
            lane.thread.join(max(0.0, deadline - time.monotonic()))
            if lane.thread.is_alive():
                log.warning("Dispatch lane %s did not stop within %.1fs", lane.sink.name, timeout)
            lane.thread = None
        log.info(
            "Dispatcher stopped: delivered=%d failed=%d abandoned=%d",
            self.delivered, len(self.failures), len(self.abandoned),
        )

    # ── worker ───────────────────────────────────────────────────────────

    def _run(self, lane: _Lane) -> None:
        while True:
            job = lane.queue.get()
            try:
                if job is None:
                    return
                self.deliver(job)
            finally:
                lane.queue.task_done()

    def backoff(self, attempt: int) -> float:
        """Delay before retry number *attempt* (1-based)."""
        return min(self.cfg.base_delay_sec * 2 ** (attempt - 1), self.cfg.max_delay_sec)

    def deliver(self, job: _Job) -> bool:
        last_error = ""
        for attempt in range(1, self.cfg.max_attempts + 1):
            try:
                job.sink.send(job.snapshot)
            except (DispatchFailed, requests.RequestException, OSError) as exc:
                last_error = str(exc)
                log.debug("Delivery of %s to %s failed (attempt %d/%d): %s",
                          job.alert_id, job.sink.name, attempt, self.cfg.max_attempts, exc)
                if attempt == self.cfg.max_attempts:
                    break
                if self._stop.wait(self.backoff(attempt)):
                    cond = ShutdownDuringRetry(
                        f"{job.alert_id} → {job.sink.name} abandoned after {attempt} attempts"
                    )
                    with self._lock:
                        self.abandoned.append(cond)
                    log.warning("ShutdownDuringRetry: %s", cond)
                    self.on_failure(job.alert_id)
                    return False
                continue

            with self._lock:
                self.delivered += 1
            self.on_success(
                job.alert_id,
                {
                    "sink": job.sink.name,
                    "state": job.snapshot.get("state"),
                    "at": utc_now(),
                    "attempts": attempt,
                },
            )
            return True

        cond = DispatchFailed(
            f"{job.alert_id} → {job.sink.name} failed after {self.cfg.max_attempts} attempts: "
            f"{last_error}"
        )
        with self._lock:
            self.failures.append(cond)
        log.warning("DispatchFailed: %s", cond)
        self.on_failure(job.alert_id)
        return False
