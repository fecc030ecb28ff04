"""Звітування: атомарний запис out/status.json, out/alerts.csv, out/report.txt."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections import Counter
from pathlib import Path

from src.contracts.alert import Alert
from src.monitor.status import EngineStatus

log = logging.getLogger(__name__)


def _atomic_write(path: str | Path, content: str) -> None:
    """Атомарно записує content у файл path (dashboard never sees half a file)."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(
        dir=str(target.parent),
        prefix=f".{target.name}.",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(content)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, target)
    except BaseException:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise


def write_status_json(status: EngineStatus, path: str | Path) -> None:
    _atomic_write(path, json.dumps(status.to_dict(), indent=2, sort_keys=True) + "\n")
    log.debug("Wrote status → %s", path)


def write_alerts_csv(alerts: list[Alert], path: str | Path) -> None:
    lines = [Alert.csv_header()]
    for a in sorted(alerts, key=lambda a: a.alert_id):
        lines.append(a.to_csv_row())
    _atomic_write(path, "\n".join(lines) + "\n")
    log.info("Wrote alerts → %s (%d rows)", path, len(alerts))


# ═══════════════════════════════════════════════════════════════════════════
#  TXT report
# ═══════════════════════════════════════════════════════════════════════════


def write_report_txt(status: EngineStatus, alerts: list[Alert], path: str | Path) -> None:
    """Генерує текстовий підсумок прогону."""
    lines: list[str] = []
    lines.append("=" * 60)
    lines.append("  BGP Route Monitor — Run Summary")
    lines.append("=" * 60)
    lines.append("")
    lines.append(f"  Last event:        {status.last_event_time or '-'}")
    lines.append(f"  Events processed:  {status.events_processed}")
    lines.append(f"  Events filtered:   {status.events_filtered}")
    lines.append(f"  Sequence gaps:     {status.sequence_gaps}")
    lines.append(f"  Candidates:        {status.candidates}")
    lines.append(f"  Transitions:       {status.transitions}")
    lines.append(f"  Dispatch ok/fail:  {status.dispatch_delivered}/{status.dispatch_failures}")
    lines.append(f"  Open alerts:       {status.open_alert_count}")
    lines.append("")

    by_cls = Counter(a.classifier for a in alerts)
    by_sev = Counter(a.severity.value for a in alerts)
    lines.append("--- Alerts ---")
    lines.append(f"  Total:        {len(alerts)}")
    lines.append("  By classifier: " + ", ".join(f"{k}={v}" for k, v in sorted(by_cls.items())))
    lines.append("  By severity:   " + ", ".join(f"{k}={v}" for k, v in sorted(by_sev.items())))
    lines.append("")

    for a in sorted(alerts, key=lambda a: (-a.severity.rank, a.first_seen)):
        lines.append(
            f"  {a.alert_id}  [{a.severity.value:<8}] {a.state.value:<10} "
            f"{a.classifier:<10} {a.prefix:<20} {a.description}"
        )
    lines.append("")
    _atomic_write(path, "\n".join(lines) + "\n")
    log.info("Wrote report → %s", path)
