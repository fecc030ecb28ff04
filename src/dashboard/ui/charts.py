"""Білдери Plotly графіків."""

from __future__ import annotations

import pandas as pd
import plotly.graph_objects as go

from src.dashboard.ui.cards import SEVERITY_COLORS, STATE_COLORS

# ── chart config (hide toolbar by default) ──────────────────────────────────

CHART_CONFIG: dict = {"displayModeBar": False}

STATE_ORDER: list[str] = ["open", "escalated", "fading_off", "closed"]
SEVERITY_ORDER: list[str] = ["critical", "high", "medium", "low"]

# ── shared layout ───────────────────────────────────────────────────────────

_FONT = dict(family="-apple-system, Segoe UI, Roboto, sans-serif", size=13, color="#c9d1d9")

_LAYOUT: dict = dict(
    template="plotly_dark",
    paper_bgcolor="rgba(0,0,0,0)",
    plot_bgcolor="rgba(0,0,0,0)",
    margin=dict(l=48, r=16, t=44, b=36),
    font=_FONT,
    title=dict(font=dict(size=14, color="#e6edf3"), x=0, xanchor="left", y=0.98, yanchor="top"),
    legend=dict(
        orientation="h", yanchor="bottom", y=1.02, xanchor="right", x=1, font=dict(size=11)
    ),
    bargap=0.35,
    height=340,
)

_GRID_COLOR = "rgba(128,128,128,0.10)"


def _base(**overrides: object) -> dict:
    merged = {**_LAYOUT}
    for k, v in overrides.items():
        if isinstance(v, dict) and isinstance(merged.get(k), dict):
            merged[k] = {**merged[k], **v}
        else:
            merged[k] = v
    return merged


# ── alerts by classifier (stacked by state) ─────────────────────────────────


def alerts_by_classifier(df: pd.DataFrame) -> go.Figure:
    """Stacked bar: current alerts per classifier, one segment per state."""
    counts = df.groupby(["classifier", "state"]).size().unstack(fill_value=0)
    fig = go.Figure()
    for state in STATE_ORDER:
        if state not in counts.columns:
            continue
        fig.add_trace(
            go.Bar(
                x=list(counts.index),
                y=counts[state].tolist(),
                name=state,
                marker_color=STATE_COLORS.get(state, "#888"),
                marker_line_width=0,
                hovertemplate="%{x} · " + state + ": %{y}<extra></extra>",
            )
        )
    fig.update_layout(
        **_base(
            title=dict(text="Alerts by Classifier"),
            barmode="stack",
            yaxis=dict(title="", gridcolor=_GRID_COLOR, zeroline=False, dtick=1),
            xaxis=dict(title=""),
        )
    )
    return fig


# ── severity donut ──────────────────────────────────────────────────────────


def severity_donut(df: pd.DataFrame) -> go.Figure:
    counts = df["severity"].value_counts()
    labels = [s for s in SEVERITY_ORDER if s in counts.index]
    fig = go.Figure(
        go.Pie(
            labels=labels,
            values=[int(counts[s]) for s in labels],
            hole=0.55,
            marker=dict(colors=[SEVERITY_COLORS[s] for s in labels]),
            sort=False,
            textinfo="label+value",
            hovertemplate="%{label}: %{value}<extra></extra>",
        )
    )
    fig.update_layout(**_base(title=dict(text="Alerts by Severity"), showlegend=False))
    return fig


# -- transitions per minute -----------------------------------------------


def transitions_per_minute(
    deliveries: pd.DataFrame,
    *,
    tz: str = "UTC",
) -> go.Figure | None:
    """Line chart -- delivered alert transitions aggregated by minute.

    Returns *None* when the dataframe is empty or lacks ``delivered_at``,
    so the caller can show a placeholder instead.  Missing minute bins
    inside the range are filled with zeros so the line is continuous.
    """
    if deliveries is None or deliveries.empty or "delivered_at" not in deliveries.columns:
        return None

    tmp = deliveries[["delivered_at"]].dropna().copy()
    if tmp.empty:
        return None
    tmp["_local"] = tmp["delivered_at"].dt.tz_convert(tz).dt.tz_localize(None)
    tmp["minute"] = tmp["_local"].dt.floor("min")
    agg = tmp.groupby("minute").size().reset_index(name="count").sort_values("minute")

    full_range = pd.date_range(start=agg["minute"].min(), end=agg["minute"].max(), freq="min")
    agg = (
        agg.set_index("minute")
        .reindex(full_range, fill_value=0)
        .rename_axis("minute")
        .reset_index()
    )

    fig = go.Figure()
    fig.add_trace(
        go.Scatter(
            x=agg["minute"],
            y=agg["count"],
            mode="lines+markers",
            line=dict(color="#8b5cf6", width=2),
            marker=dict(color="#8b5cf6", size=6),
            hovertemplate="%{x|%H:%M}<br>%{y} transitions<extra></extra>",
        )
    )
    fig.update_layout(
        **_base(
            title=dict(text="Alert Transitions per Minute"),
            xaxis=dict(title="", gridcolor=_GRID_COLOR, tickformat="%H:%M"),
            yaxis=dict(title="", gridcolor=_GRID_COLOR, zeroline=False),
            showlegend=False,
        )
    )
    return fig
