"""Головний файл дашборду BGP Route Monitor на Streamlit.

Run with:  streamlit run src/dashboard/app.py
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import streamlit as st

# ── page config (MUST be the first Streamlit call) ───────────────────────────

st.set_page_config(
    page_title="BGP Route Monitor",
    layout="wide",
    initial_sidebar_state="expanded",
)

# ── local imports (after page config) ───────────────────────────────────────

from src.dashboard.data_access import (  # noqa: E402
    DELIVERIES_PATH,
    STATUS_PATH,
    file_mtime_str,
    file_size,
    filter_alerts,
    latest_alerts,
    load_deliveries,
    load_status,
)
from src.dashboard.ui.cards import status_cards  # noqa: E402
from src.dashboard.ui.charts import (  # noqa: E402
    CHART_CONFIG,
    alerts_by_classifier,
    severity_donut,
    transitions_per_minute,
)
from src.dashboard.ui.layout import render_header, render_sidebar  # noqa: E402
from src.dashboard.ui.state import init_state  # noqa: E402
from src.dashboard.ui.tables import render_alert_table  # noqa: E402

init_state()

_initial = load_deliveries()
render_sidebar(latest_alerts(_initial) if _initial is not None else None)
render_header()


# ═════════════════════════════════════════════════════════════════════════════
#   LIVE DATA SECTION -- wrapped in @st.fragment for flicker-free refresh
# ═════════════════════════════════════════════════════════════════════════════

_auto = st.session_state.get("auto_refresh", False)
_interval = st.session_state.get("refresh_interval", 5)


@st.fragment(run_every=timedelta(seconds=_interval) if _auto else None)
def _live_data_section() -> None:
    st.session_state["refresh_tick"] = st.session_state.get("refresh_tick", 0) + 1

    status = load_status()
    deliveries = load_deliveries()

    if status is None:
        st.markdown(
            '<div class="no-data-box">'
            "<strong>No status yet. Run the monitor first.</strong><br>"
            "<code>python -m src.emulator --out data/feed.jsonl</code><br>"
            "<code>python -m src.monitor --input data/feed.jsonl --settle-sec 600</code>"
            "</div>",
            unsafe_allow_html=True,
        )
        return

    # ── KPI CARDS ───────────────────────────────────────────────────
    cards = status_cards(status)
    for col, card in zip(st.columns(len(cards)), cards):
        with col:
            st.markdown(card, unsafe_allow_html=True)

    if deliveries is None:
        st.info("No alerts delivered yet.")
        return

    alerts = filter_alerts(
        latest_alerts(deliveries),
        severities=st.session_state.get("f_severities") or None,
        classifiers=st.session_state.get("f_classifiers") or None,
        states=st.session_state.get("f_states") or None,
        prefix_query=st.session_state.get("f_prefix", ""),
    )

    # ── CHARTS ──────────────────────────────────────────────────────
    st.markdown('<div class="section-gap"></div>', unsafe_allow_html=True)
    if not alerts.empty:
        c1, c2 = st.columns(2)
        with c1:
            st.plotly_chart(alerts_by_classifier(alerts), width="stretch",
                            config=CHART_CONFIG, key="chart_cls")
        with c2:
            st.plotly_chart(severity_donut(alerts), width="stretch",
                            config=CHART_CONFIG, key="chart_sev")

    fig = transitions_per_minute(deliveries, tz=st.session_state.get("display_tz", "UTC"))
    if fig is not None:
        st.plotly_chart(fig, width="stretch", config=CHART_CONFIG, key="chart_tpm")

    # ── ALERT TABLE ─────────────────────────────────────────────────
    st.markdown('<p class="section-label">Alerts</p>', unsafe_allow_html=True)
    render_alert_table(alerts)

    # ── DIAGNOSTICS ─────────────────────────────────────────────────
    with st.expander("Diagnostics", expanded=False):
        _now = datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S UTC")
        st.markdown(
            f"""
| Metric | Value |
|---|---|
| **Refresh tick** | {st.session_state.get("refresh_tick", "?")} |
| **Last refresh (UI)** | {_now} |
| **status.json mtime** | {file_mtime_str(STATUS_PATH)} |
| **alerts.jsonl mtime** | {file_mtime_str(DELIVERIES_PATH)} |
| **alerts.jsonl size** | {file_size(DELIVERIES_PATH)} bytes |
| **Deliveries** | {len(deliveries)} |
| **Registry refreshed** | {status.get("registry_refreshed_at") or "N/A"} |
| **Registry error** | {status.get("registry_error") or "-"} |
""",
        )


_live_data_section()
