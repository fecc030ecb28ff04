"""Aggregator — collapse AlertCandidates into Alerts with a lifecycle.

State machine per identity (prefix, classifier, key)
────────────────────────────────────────────────────
  (none) ──candidate──────────────────────────────▶ open        notify
  open / escalated ──higher severity──────────────▶ escalated   notify
  open / escalated ──no candidate for fade_off────▶ fading_off  notify
  open / escalated ──clearing candidate───────────▶ fading_off  notify
  fading_off ──candidate (same or lower severity)─▶ previous active state, silent
  fading_off ──higher severity────────────────────▶ escalated   notify
  fading_off ──no candidate for close_grace───────▶ closed      notify

``closed`` is terminal: the identity is freed and the next candidate for it
opens a new alert.  Candidates for one identity arriving in the same
evaluation cycle are merged first (max severity, union of evidence/peers).

Time is whatever ``now`` the caller passes (stream time during replays,
wall time in live mode), so the lifecycle is deterministic under test.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from src.contracts.alert import Alert, AlertCandidate, AlertIdentity
from src.contracts.enums import AlertState, Severity
from src.monitor.settings import AggregatorConfig
from src.shared.timeutil import diff_sec, format_ts, parse_ts

log = logging.getLogger(__name__)

_MAX_CLOSED = 500


@dataclass(slots=True)
class Transition:
    """One lifecycle step of one alert, with the snapshot to deliver."""

    alert_id: str
    identity: AlertIdentity
    from_state: AlertState | None
    to_state: AlertState
    timestamp: str
    reason: str
    snapshot: dict[str, Any]
    notify: bool = True


@dataclass(slots=True)
class _Merged:
    candidates: list[AlertCandidate] = field(default_factory=list)

    @property
    def first(self) -> AlertCandidate:
        return self.candidates[0]

    @property
    def severity(self) -> Severity:
        return Severity.highest(*(c.severity for c in self.signals))

    @property
    def signals(self) -> list[AlertCandidate]:
        real = [c for c in self.candidates if not c.clears]
        return real or self.candidates

    @property
    def clears(self) -> bool:
        return all(c.clears for c in self.candidates)

    @property
    def timestamp(self) -> str:
        return max(c.timestamp for c in self.candidates)


def merge_cycle(candidates: Iterable[AlertCandidate]) -> dict[AlertIdentity, _Merged]:
    """Group one cycle's candidates by identity, keeping arrival order."""
    groups: dict[AlertIdentity, _Merged] = {}
    for c in candidates:
        groups.setdefault(c.identity, _Merged()).candidates.append(c)
    return groups


class AlertAggregator:
    """Owns every Alert; thread-safe for the dispatcher's callbacks."""

    def __init__(
        self,
        cfg: AggregatorConfig | None = None,
        fade_off_for: Callable[[str], int] | None = None,
    ) -> None:
        self.cfg = cfg or AggregatorConfig()
        self._fade_off_for = fade_off_for or (lambda _classifier: self.cfg.fade_off_seconds)
        self._alerts: dict[AlertIdentity, Alert] = {}
        self._by_id: dict[str, Alert] = {}
        self._closed: list[Alert] = []
        self._counter = 0
        self._lock = threading.RLock()
        self.candidates_seen = 0

    # ── public API ───────────────────────────────────────────────────────

    def ingest(self, candidates: Iterable[AlertCandidate], now: str) -> list[Transition]:
        """Apply one evaluation cycle of candidates; return the transitions."""
        transitions: list[Transition] = []
        with self._lock:
            for identity, merged in merge_cycle(candidates).items():
                self.candidates_seen += len(merged.candidates)
                alert = self._alerts.get(identity)
                if merged.clears:
                    if alert is not None and alert.state.active:
                        transitions.append(
                            self._move(alert, AlertState.FADING_OFF, now, "cleared")
                        )
                    continue
                if alert is None:
                    transitions.append(self._open(identity, merged, now))
                else:
                    transitions.extend(self._continue(alert, merged, now))
        return transitions

    def tick(self, now: str) -> list[Transition]:
        """Advance timers: fade out quiet alerts, close expired fading ones."""
        transitions: list[Transition] = []
        with self._lock:
            for alert in list(self._alerts.values()):
                fade = self._fade_off_for(alert.classifier)
                if alert.state.active and diff_sec(alert.last_seen, now) >= fade:
                    faded_at = format_ts(parse_ts(alert.last_seen) + timedelta(seconds=fade))
                    transitions.append(
                        self._move(alert, AlertState.FADING_OFF, faded_at, "fade_off")
                    )
                if (
                    alert.state == AlertState.FADING_OFF
                    and diff_sec(alert.state_since, now) >= self.cfg.close_grace_seconds
                ):
                    closed_at = format_ts(
                        parse_ts(alert.state_since) + timedelta(seconds=self.cfg.close_grace_seconds)
                    )
                    transitions.append(self._move(alert, AlertState.CLOSED, closed_at, "grace_expired"))
                    self._retire(alert)
        return transitions

    def record_dispatch(self, alert_id: str, record: dict[str, Any]) -> None:
        with self._lock:
            alert = self._by_id.get(alert_id)
            if alert is None:
                log.debug("Dispatch record for forgotten alert %s dropped", alert_id)
                return
            alert.dispatches.append(record)
            alert.pending_dispatch = False

    def mark_dispatch_failed(self, alert_id: str) -> None:
        with self._lock:
            alert = self._by_id.get(alert_id)
            if alert is not None:
                alert.pending_dispatch = True

    def get(self, identity: AlertIdentity) -> Alert | None:
        with self._lock:
            return self._alerts.get(identity)

    def by_id(self, alert_id: str) -> Alert | None:
        with self._lock:
            return self._by_id.get(alert_id)

    def alerts(self, include_closed: bool = False) -> list[Alert]:
        with self._lock:
            out = list(self._alerts.values())
            if include_closed:
                out.extend(self._closed)
            return out

    def active_count(self) -> int:
        """Alerts not yet closed (open, escalated or fading off)."""
        with self._lock:
            return len(self._alerts)

    def count_by_state(self) -> dict[str, int]:
        with self._lock:
            counts: dict[str, int] = {}
            for a in self._alerts.values():
                counts[a.state.value] = counts.get(a.state.value, 0) + 1
            counts[AlertState.CLOSED.value] = len(self._closed)
            return counts

    # ── internals ────────────────────────────────────────────────────────

    def _open(self, identity: AlertIdentity, merged: _Merged, now: str) -> Transition:
        self._counter += 1
        first = merged.first
        alert = Alert(
            alert_id=f"ALR-{self._counter:04d}",
            prefix=identity[0],
            classifier=identity[1],
            key=identity[2],
            severity=merged.severity,
            first_seen=min(c.timestamp for c in merged.candidates),
            last_seen=merged.timestamp,
            description=first.description,
            state_since=now,
        )
        self._absorb(alert, merged)
        self._alerts[identity] = alert
        self._by_id[alert.alert_id] = alert
        return self._record(alert, None, AlertState.OPEN, now, "first_candidate")

    def _continue(self, alert: Alert, merged: _Merged, now: str) -> list[Transition]:
        self._absorb(alert, merged)
        alert.last_seen = max(alert.last_seen, merged.timestamp)

        sev = merged.severity
        if sev.rank > alert.severity.rank:
            alert.severity = sev
            alert.description = max(merged.signals, key=lambda c: c.severity.rank).description
            return [self._move(alert, AlertState.ESCALATED, now, "severity_increase")]

        if alert.state == AlertState.FADING_OFF:
            # continuation: back to the active state without notifying
            alert.state = alert.active_state
            alert.state_since = now
            alert.history.append({"state": alert.state.value, "at": now, "reason": "revived"})
            log.debug("%s revived from fading_off", alert.alert_id)
        return []

    def _absorb(self, alert: Alert, merged: _Merged) -> None:
        for c in merged.signals:
            alert.candidate_count += 1
            alert.peers.add(c.peer_asn)
            alert.evidence.append(c.evidence)
        overflow = len(alert.evidence) - self.cfg.max_evidence
        if overflow > 0:
            del alert.evidence[:overflow]

    def _move(self, alert: Alert, to: AlertState, at: str, reason: str) -> Transition:
        frm = alert.state
        alert.state = to
        alert.state_since = at
        if to.active:
            alert.active_state = to
        return self._record(alert, frm, to, at, reason)

    def _record(
        self,
        alert: Alert,
        frm: AlertState | None,
        to: AlertState,
        at: str,
        reason: str,
    ) -> Transition:
        alert.state = to
        alert.history.append({"state": to.value, "at": at, "reason": reason})
        notify = to in self.cfg.notify_states or alert.pending_dispatch
        log.info(
            "Alert %s %s → %s (%s) %s %s [%s]",
            alert.alert_id,
            frm.value if frm else "-",
            to.value,
            reason,
            alert.classifier,
            alert.prefix,
            alert.severity.value,
        )
        return Transition(
            alert_id=alert.alert_id,
            identity=alert.identity,
            from_state=frm,
            to_state=to,
            timestamp=at,
            reason=reason,
            snapshot=alert.snapshot(),
            notify=notify,
        )

    def _retire(self, alert: Alert) -> None:
        del self._alerts[alert.identity]
        self._closed.append(alert)
        if len(self._closed) > _MAX_CLOSED:
            old = self._closed.pop(0)
            self._by_id.pop(old.alert_id, None)
