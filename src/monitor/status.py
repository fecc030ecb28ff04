"""Status surface — read-only health snapshot of a running engine.

Fields
──────
  uptime_sec          wall seconds since the engine was built
  last_event_time     timestamp of the newest processed RouteEvent ("" if none)
  open_alert_count    alerts not yet closed (open, escalated, fading_off)

Everything else is operational detail for the dashboard and for tests:
ingestion counters, sequence gaps, dispatch outcomes and registry freshness.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

STATUS_CSV_COLUMNS = [
    "generated_at",
    "uptime_sec",
    "last_event_time",
    "open_alert_count",
    "events_processed",
    "events_filtered",
    "sequence_gaps",
    "candidates",
    "transitions",
    "dispatch_delivered",
    "dispatch_failures",
    "rib_size",
    "registry_size",
]


@dataclass
class EngineStatus:
    """Знімок стану рушія для status() і out/status.json."""

    generated_at: str
    uptime_sec: float
    last_event_time: str
    open_alert_count: int
    alerts_by_state: dict[str, int] = field(default_factory=dict)
    events_processed: int = 0
    events_filtered: int = 0
    sequence_gaps: int = 0
    candidates: int = 0
    transitions: int = 0
    dispatch_delivered: int = 0
    dispatch_failures: int = 0
    dispatch_abandoned: int = 0
    rib_size: int = 0
    registry_size: int = 0
    registry_refreshed_at: str = ""
    registry_error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    def to_csv_row(self) -> str:
        """Один рядок CSV у порядку STATUS_CSV_COLUMNS."""
        d = self.to_dict()
        return ",".join(
            f"{d[c]:.1f}" if isinstance(d[c], float) else str(d[c]) for c in STATUS_CSV_COLUMNS
        )

    @staticmethod
    def csv_header() -> str:
        return ",".join(STATUS_CSV_COLUMNS)

    @property
    def healthy(self) -> bool:
        """Ownership data is loaded and the last refresh succeeded."""
        return self.registry_size > 0 and self.registry_error is None
