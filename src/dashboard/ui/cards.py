"""Білдери HTML KPI карток."""

from __future__ import annotations

from typing import Any

# ── canonical severity / state colours ──────────────────────────────────────

SEVERITY_COLORS: dict[str, str] = {
    "critical": "#ef4444",
    "high": "#f97316",
    "medium": "#f59e0b",
    "low": "#22c55e",
}

STATE_COLORS: dict[str, str] = {
    "open": "#ef4444",
    "escalated": "#a855f7",
    "fading_off": "#f59e0b",
    "closed": "#64748b",
}


def kpi_card(title: str, value: str, label: str, accent: str = "#8b5cf6", detail: str = "") -> str:
    """Побудова однієї KPI картки."""
    row = f'    <div class="kpi-row">{detail}</div>' if detail else ""
    return (
        f'<div class="kpi-card" style="border-top: 3px solid {accent}">'
        f'  <div class="kpi-card-header">{title}</div>'
        f'  <div class="kpi-card-body">'
        f'    <div class="kpi-main">{value}</div>'
        f'    <div class="kpi-label">{label}</div>'
        f"{row}"
        f"  </div>"
        f"</div>"
    )


def status_cards(status: dict[str, Any]) -> list[str]:
    """Картки для status(): open alerts, last event, ingestion, dispatch."""
    by_state = status.get("alerts_by_state", {})
    open_detail = " · ".join(
        f"{s}: {by_state.get(s, 0)}" for s in ("open", "escalated", "fading_off")
    )
    return [
        kpi_card(
            "Open alerts",
            str(status.get("open_alert_count", 0)),
            "not yet closed",
            accent=STATE_COLORS["open"],
            detail=open_detail,
        ),
        kpi_card(
            "Last event",
            status.get("last_event_time") or "—",
            f"uptime {status.get('uptime_sec', 0):.0f} s",
            accent="#38bdf8",
        ),
        kpi_card(
            "Events",
            f"{status.get('events_processed', 0):,}",
            "processed",
            detail=(
                f"filtered: {status.get('events_filtered', 0)} · "
                f"gaps: {status.get('sequence_gaps', 0)}"
            ),
        ),
        kpi_card(
            "Dispatch",
            f"{status.get('dispatch_delivered', 0)}",
            "delivered",
            accent=SEVERITY_COLORS["high"] if status.get("dispatch_failures") else "#22c55e",
            detail=f"failed: {status.get('dispatch_failures', 0)}",
        ),
    ]
