"""Alert contracts: transient AlertCandidate and the lifecycle-tracked Alert."""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass, field
from typing import Any

from src.contracts.enums import AlertState, Severity

AlertIdentity = tuple[str, str, str]  # (prefix, classifier, key)

ALERT_CSV_COLUMNS: list[str] = [
    "alert_id",
    "prefix",
    "classifier",
    "key",
    "state",
    "severity",
    "first_seen",
    "last_seen",
    "candidate_count",
    "peers",
    "dispatch_count",
    "pending_dispatch",
]


@dataclass(slots=True, frozen=True)
class AlertCandidate:
    """Emitted by a classifier for one diff; consumed by the aggregator."""

    classifier: str         # hijack | rpki | path | visibility
    prefix: str
    peer_asn: int
    severity: Severity
    key: str                # completes the alert identity, e.g. "origin=64501"
    timestamp: str
    description: str = ""
    evidence: dict[str, Any] = field(default_factory=dict)
    clears: bool = False    # recovery signal for an already active alert

    @property
    def identity(self) -> AlertIdentity:
        return (self.prefix, self.classifier, self.key)


@dataclass(slots=True)
class Alert:
    """One alert identity tracked through open → escalated → fading_off → closed."""

    alert_id: str           # e.g. "ALR-0001"
    prefix: str
    classifier: str
    key: str
    severity: Severity
    first_seen: str
    last_seen: str
    description: str = ""
    state: AlertState = AlertState.OPEN
    candidate_count: int = 0
    peers: set[int] = field(default_factory=set)
    evidence: list[dict[str, Any]] = field(default_factory=list)
    history: list[dict[str, str]] = field(default_factory=list)
    dispatches: list[dict[str, Any]] = field(default_factory=list)
    pending_dispatch: bool = False
    state_since: str = ""
    active_state: AlertState = AlertState.OPEN

    @property
    def identity(self) -> AlertIdentity:
        return (self.prefix, self.classifier, self.key)

    @property
    def escalated(self) -> bool:
        return self.state == AlertState.ESCALATED

    def snapshot(self) -> dict[str, Any]:
        """JSON-safe copy handed to sinks; later mutation does not leak into it."""
        return {
            "alert_id": self.alert_id,
            "prefix": self.prefix,
            "classifier": self.classifier,
            "key": self.key,
            "state": self.state.value,
            "severity": self.severity.value,
            "escalated": self.escalated,
            "first_seen": self.first_seen,
            "last_seen": self.last_seen,
            "description": self.description,
            "candidate_count": self.candidate_count,
            "peers": sorted(self.peers),
            "evidence": [dict(e) for e in self.evidence],
            "history": [dict(h) for h in self.history],
        }

    # ── serialisation ────────────────────────────────────────────────────

    def to_csv_row(self) -> str:
        buf = io.StringIO()
        writer = csv.writer(buf)
        writer.writerow(
            [
                self.alert_id,
                self.prefix,
                self.classifier,
                self.key,
                self.state.value,
                self.severity.value,
                self.first_seen,
                self.last_seen,
                self.candidate_count,
                ";".join(str(p) for p in sorted(self.peers)),
                len(self.dispatches),
                self.pending_dispatch,
            ]
        )
        return buf.getvalue().rstrip("\r\n")

    @staticmethod
    def csv_header() -> str:
        return ",".join(ALERT_CSV_COLUMNS)
