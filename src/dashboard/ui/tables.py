"""Відображення таблиці алертів."""

from __future__ import annotations

import pandas as pd
import streamlit as st
from streamlit import column_config as colcfg

from src.dashboard.data_access import SEVERITY_ORDER, STATE_ORDER

# columns to display (in order)
_DISPLAY_COLS = [
    "alert_id",
    "state",
    "severity",
    "classifier",
    "prefix",
    "key",
    "first_seen",
    "last_seen",
    "candidate_count",
    "peer_count",
    "description",
]

_COL_LABELS = {
    "alert_id": "ID",
    "state": "State",
    "severity": "Severity",
    "classifier": "Classifier",
    "prefix": "Prefix",
    "key": "Key",
    "first_seen": "First seen",
    "last_seen": "Last seen",
    "candidate_count": "Signals",
    "peer_count": "Peers",
    "description": "Description",
}

_COL_CONFIG = {
    "First seen": colcfg.DatetimeColumn("First seen", format="MMM DD, HH:mm:ss"),
    "Last seen": colcfg.DatetimeColumn("Last seen", format="MMM DD, HH:mm:ss"),
    "Signals": colcfg.NumberColumn("Signals", format="%d"),
    "Peers": colcfg.NumberColumn("Peers", format="%d"),
}


def render_alert_table(df: pd.DataFrame) -> None:
    """Render the alert table: active states first, then by severity, newest first."""
    if df.empty:
        st.info("No alerts to display.")
        return

    cols = [c for c in _DISPLAY_COLS if c in df.columns]
    view = df[cols].copy()

    view["_state_ord"] = view["state"].map(STATE_ORDER).fillna(99)
    view["_sev_ord"] = view["severity"].map(SEVERITY_ORDER).fillna(99)
    view = view.sort_values(["_state_ord", "_sev_ord", "last_seen"], ascending=[True, True, False])
    view = view.drop(columns=["_state_ord", "_sev_ord"])

    view = view.rename(columns=_COL_LABELS)
    st.caption(f"Total alerts: {len(view)}")

    st.dataframe(
        view,
        hide_index=True,
        use_container_width=True,
        height=min(len(view) * 36 + 42, 600),
        column_config=_COL_CONFIG,
        key="tbl_alerts",
    )
