"""Page layout — sidebar controls and main-area scaffolding.

``render_sidebar`` populates the left panel and stores the current filter
values in ``st.session_state``.  ``render_header`` draws the top title bar.
"""

from __future__ import annotations

from datetime import UTC, datetime

import pandas as pd
import streamlit as st

from src.dashboard.data_access import SEVERITY_ORDER


def render_header() -> None:
    st.markdown(
        '<h1 class="page-title">BGP Route Monitor</h1>'
        '<p class="page-subtitle">'
        "Hijack, RPKI, path and visibility alerts for monitored prefixes."
        "</p>",
        unsafe_allow_html=True,
    )


def _options(df: pd.DataFrame | None, col: str) -> list[str]:
    if df is None or col not in df.columns:
        return []
    return sorted(df[col].dropna().unique())


def render_sidebar(alerts_df: pd.DataFrame | None) -> None:
    """Draw sidebar controls; selections land in session_state (f_* keys)."""
    with st.sidebar:
        st.markdown('<p class="sidebar-brand">BGP Monitor</p>', unsafe_allow_html=True)
        st.caption("Route origin & path alerting")
        st.divider()

        st.markdown("##### Filter Alerts")
        sev_opts = sorted(_options(alerts_df, "severity"), key=lambda s: SEVERITY_ORDER.get(s, 9))
        st.session_state["f_severities"] = st.multiselect("Severity", sev_opts, default=sev_opts)

        cls_opts = _options(alerts_df, "classifier")
        st.session_state["f_classifiers"] = st.multiselect("Classifier", cls_opts, default=cls_opts)

        state_opts = ["open", "escalated", "fading_off", "closed"]
        st.session_state["f_states"] = st.multiselect("State", state_opts, default=state_opts)

        st.session_state["f_prefix"] = st.text_input("Prefix contains", value="")

        st.divider()

        st.markdown("##### Auto-refresh")
        st.session_state["auto_refresh"] = st.toggle(
            "Enable auto-refresh", value=bool(st.session_state.get("auto_refresh", False))
        )
        st.session_state["refresh_interval"] = st.slider(
            "Refresh interval (sec)",
            min_value=2,
            max_value=60,
            value=int(st.session_state.get("refresh_interval", 5)),
            step=1,
            disabled=not st.session_state["auto_refresh"],
        )

        now_str = datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S UTC")
        st.markdown(
            f'<p class="refresh-timestamp">Last refresh: {now_str}</p>',
            unsafe_allow_html=True,
        )
