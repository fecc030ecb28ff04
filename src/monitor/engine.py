"""Engine — orchestrator: RouteEvent → RIB diff → classifiers → aggregator → dispatch.

One ingestion loop consumes a merged, arrival-ordered event stream, so
per-peer order is preserved end to end and every diff is classified before
the aggregator sees anything derived from it.  Delivery runs on the
dispatcher's own thread; registry refreshes run on the refresher's thread
and never block lookups.

Clock
─────
  event   ``now`` is the newest event timestamp seen (replays, tests); while
          a following source is idle it runs on by the real time waited
  wall    ``now`` is the current UTC time; idle polls still advance timers
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable
from datetime import timedelta

from src.contracts.enums import EventKind
from src.contracts.errors import SequenceGap
from src.contracts.route import RouteEvent, StateDiff
from src.feed.filters import is_bogon
from src.monitor.aggregator import AlertAggregator, Transition
from src.monitor.classifiers import BaseClassifier, build_classifiers, classify
from src.monitor.dispatch import Dispatcher, build_sinks
from src.monitor.registry import (
    FileOwnershipSource,
    HttpRoaOwnershipSource,
    OwnershipRegistry,
    OwnershipSource,
    RegistryRefresher,
)
from src.monitor.rib import RibTracker
from src.monitor.settings import MonitorSettings
from src.monitor.status import EngineStatus
from src.shared.timeutil import format_ts, parse_ts, utc_now

log = logging.getLogger(__name__)

_PEER_KINDS = (EventKind.PEER_UP, EventKind.PEER_DOWN)


class MonitorEngine:
    """Wires the tracker, registry, classifiers, aggregator and dispatcher."""

    def __init__(
        self,
        settings: MonitorSettings,
        registry: OwnershipRegistry,
        classifiers: list[BaseClassifier],
        aggregator: AlertAggregator,
        dispatcher: Dispatcher,
        rib: RibTracker | None = None,
        refresher: RegistryRefresher | None = None,
    ) -> None:
        self.settings = settings
        self.registry = registry
        self.classifiers = classifiers
        self.aggregator = aggregator
        self.dispatcher = dispatcher
        self.rib = rib or RibTracker()
        self.refresher = refresher
        self.started_at = utc_now()
        self._started = time.monotonic()
        self._clock = ""
        self._idle_mark = time.monotonic()
        self._idle_carry = 0.0
        self.last_event_time = ""
        self.counters = {
            "events": 0,
            "filtered": 0,
            "gaps": 0,
            "candidates": 0,
            "transitions": 0,
        }

    # ── clock ────────────────────────────────────────────────────────────

    def now(self) -> str:
        if self.settings.engine.clock == "wall":
            return utc_now()
        return self._clock or utc_now()

    def advance(self, seconds: float) -> list[Transition]:
        """Move the event clock forward without input and run the timers."""
        base = self._clock or utc_now()
        self._clock = format_ts(parse_ts(base) + timedelta(seconds=seconds))
        return self.tick()

    def idle(self) -> list[Transition]:
        """Idle poll: run the timers, moving the event clock by the time waited."""
        mark = time.monotonic()
        if self.settings.engine.clock == "event" and self._clock:
            self._idle_carry += mark - self._idle_mark
        self._idle_mark = mark
        whole = int(self._idle_carry)
        if whole <= 0:
            return self.tick()
        self._idle_carry -= whole
        return self.advance(whole)

    # ── ingestion ────────────────────────────────────────────────────────

    def process(self, event: RouteEvent) -> list[Transition]:
        """Push one event through the whole chain; return the transitions it caused."""
        self.counters["events"] += 1
        if event.timestamp > self.last_event_time:
            self.last_event_time = event.timestamp
        if event.timestamp > self._clock:
            self._clock = event.timestamp
        self._idle_mark = time.monotonic()
        self._idle_carry = 0.0

        try:
            diffs = self._apply(event)
        except SequenceGap as exc:
            self.counters["gaps"] += 1
            log.warning("SequenceGap: %s", exc)
            diffs = []

        candidates = []
        for diff in diffs:
            ownership = self.registry.lookup(diff.prefix)
            if ownership is None and self.settings.engine.monitored_only:
                continue
            candidates.extend(classify(diff, ownership, self.classifiers))
        self.counters["candidates"] += len(candidates)

        now = self.now()
        transitions = self.aggregator.ingest(candidates, now)
        transitions.extend(self.aggregator.tick(now))
        self._emit(transitions)
        return transitions

    def tick(self) -> list[Transition]:
        """Run fade-off / close timers at the current clock."""
        transitions = self.aggregator.tick(self.now())
        self._emit(transitions)
        return transitions

    def run(
        self,
        events: Iterable[RouteEvent | None],
        stop: threading.Event | None = None,
        on_status: Callable[[EngineStatus], None] | None = None,
    ) -> EngineStatus:
        """Consume *events* until exhausted or *stop* is set.

        ``None`` items are idle polls from a following source; they only
        advance timers (see :meth:`idle`).  Shutdown finishes the event in
        hand, so no alert is left half-updated.
        """
        stop = stop or threading.Event()
        interval = self.settings.engine.status_interval_sec
        next_status = time.monotonic() + interval
        for event in events:
            if event is None:
                self.idle()
            else:
                self.process(event)
            if on_status is not None and time.monotonic() >= next_status:
                on_status(self.status())
                next_status = time.monotonic() + interval
            if stop.is_set():
                log.info("Stop requested — ingestion halted after %d events",
                         self.counters["events"])
                break
        status = self.status()
        if on_status is not None:
            on_status(status)
        return status

    def close(self, timeout: float = 5.0) -> None:
        """Let queued deliveries finish (bounded), then stop background threads."""
        if self.refresher is not None:
            self.refresher.stop()
        if not self.dispatcher.flush(timeout):
            log.warning("Dispatch queue not drained within %.1fs", timeout)
        self.dispatcher.shutdown(timeout)

    def _apply(self, event: RouteEvent) -> list[StateDiff]:
        if event.kind in _PEER_KINDS:
            return self.rib.handle_peer(event)
        if self.settings.engine.skip_bogons and is_bogon(event.prefix):
            self.counters["filtered"] += 1
            log.debug("Bogon %s from AS%d ignored", event.prefix, event.peer_asn)
            self.rib.skip(event)
            return []
        if self.settings.engine.monitored_only and not self.registry.covers(event.prefix):
            self.counters["filtered"] += 1
            self.rib.skip(event)
            return []
        diff = self.rib.apply(event)
        return [diff] if diff is not None else []

    def _emit(self, transitions: list[Transition]) -> None:
        self.counters["transitions"] += len(transitions)
        for t in transitions:
            self.dispatcher.submit(t)

    # ── status ───────────────────────────────────────────────────────────

    def status(self) -> EngineStatus:
        return EngineStatus(
            generated_at=utc_now(),
            uptime_sec=round(time.monotonic() - self._started, 1),
            last_event_time=self.last_event_time,
            open_alert_count=self.aggregator.active_count(),
            alerts_by_state=self.aggregator.count_by_state(),
            events_processed=self.counters["events"],
            events_filtered=self.counters["filtered"],
            sequence_gaps=self.counters["gaps"],
            candidates=self.counters["candidates"],
            transitions=self.counters["transitions"],
            dispatch_delivered=self.dispatcher.delivered,
            dispatch_failures=len(self.dispatcher.failures),
            dispatch_abandoned=len(self.dispatcher.abandoned),
            rib_size=len(self.rib),
            registry_size=len(self.registry),
            registry_refreshed_at=self.registry.refreshed_at,
            registry_error=self.registry.last_error,
        )


# ═══════════════════════════════════════════════════════════════════════════
#  Factory
# ═══════════════════════════════════════════════════════════════════════════


def ownership_source(settings: MonitorSettings) -> OwnershipSource:
    reg = settings.registry
    if reg.roas_url:
        return HttpRoaOwnershipSource(reg.prefixes, reg.roas_url, timeout_sec=settings.dispatch.timeout_sec)
    return FileOwnershipSource(reg.prefixes, reg.roas)


def build_engine(
    settings: MonitorSettings,
    out_dir: str = "out",
    source: OwnershipSource | None = None,
    background_refresh: bool = True,
) -> MonitorEngine:
    """Assemble a ready-to-run engine; the dispatcher thread is started here."""
    registry = OwnershipRegistry(source or ownership_source(settings))
    registry.refresh()
    if not len(registry):
        log.warning("Ownership registry is empty — no prefix is monitored")

    refresher = None
    if background_refresh and settings.registry.refresh_interval_sec > 0:
        refresher = RegistryRefresher(registry, settings.registry.refresh_interval_sec)
        refresher.start()

    aggregator = AlertAggregator(settings.aggregator, fade_off_for=settings.fade_off_for)
    dispatcher = Dispatcher(
        build_sinks(settings.dispatch, out_dir),
        settings.dispatch,
        on_success=aggregator.record_dispatch,
        on_failure=aggregator.mark_dispatch_failed,
    ).start()

    return MonitorEngine(
        settings=settings,
        registry=registry,
        classifiers=build_classifiers(settings.monitors),
        aggregator=aggregator,
        dispatcher=dispatcher,
        rib=RibTracker(visibility_window_sec=settings.visibility_window()),
        refresher=refresher,
    )
