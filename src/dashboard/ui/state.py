"""Ініціалізація стану сесії."""

from __future__ import annotations

import os

import streamlit as st

# Live mode (auto-refresh on by default) when the monitor runs with --follow.
_LIVE_MODE = os.environ.get("BGPMON_LIVE_MODE", "") == "1"

_DEFAULTS: dict[str, object] = {
    "f_severities": [],
    "f_classifiers": [],
    "f_states": [],
    "f_prefix": "",
    "auto_refresh": _LIVE_MODE,
    "refresh_interval": 5,
    "display_tz": "UTC",
}


def init_state() -> None:
    """Заповнює st.session_state значеннями за замовчуванням."""
    for key, value in _DEFAULTS.items():
        if key not in st.session_state:
            st.session_state[key] = value
