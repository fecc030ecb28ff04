"""Шар завантаження та фільтрації даних."""

from __future__ import annotations

import json
import logging
import os
import time
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import pandas as pd

log = logging.getLogger(__name__)

# ── paths (relative to repo root) ───────────────────────────────────────────

ROOT = Path(__file__).resolve().parent.parent.parent
STATUS_PATH = ROOT / "out" / "status.json"
DELIVERIES_PATH = ROOT / "out" / "alerts.jsonl"

# ── retry / stability settings ──────────────────────────────────────────────

_MAX_READ_RETRIES = 3
_READ_RETRY_DELAY_SEC = 0.15  # 150 ms between retries

SEVERITY_ORDER = {"critical": 0, "high": 1, "medium": 2, "low": 3}
STATE_ORDER = {"open": 0, "escalated": 1, "fading_off": 2, "closed": 3}


# ── file info helpers ───────────────────────────────────────────────────────


def file_mtime(path: Path) -> float:
    """Повертає mtime як UNIX timestamp, або 0.0 якщо файл відсутній."""
    try:
        return os.path.getmtime(path) if path.exists() else 0.0
    except OSError:
        return 0.0


def file_mtime_str(path: Path) -> str:
    """Повертає людськочитаний mtime файлу, або 'N/A'."""
    ts = file_mtime(path)
    if ts == 0.0:
        return "N/A"
    return datetime.fromtimestamp(ts, tz=UTC).strftime("%Y-%m-%d %H:%M:%S UTC")


def file_size(path: Path) -> int:
    """Повертає розмір файлу в байтах, або 0."""
    try:
        return path.stat().st_size if path.exists() else 0
    except OSError:
        return 0


# ── loaders ─────────────────────────────────────────────────────────────────


def load_status(path: Path = STATUS_PATH) -> dict[str, Any] | None:
    """Завантажує out/status.json з повторними спробами. None якщо відсутній."""
    for attempt in range(1, _MAX_READ_RETRIES + 1):
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as fh:
                return json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            log.debug("Status read attempt %d/%d for %s failed: %s",
                      attempt, _MAX_READ_RETRIES, path, exc)
            if attempt < _MAX_READ_RETRIES:
                time.sleep(_READ_RETRY_DELAY_SEC)
    return None


def load_deliveries(path: Path = DELIVERIES_PATH) -> pd.DataFrame | None:
    """Завантажує out/alerts.jsonl: один рядок на доставлений перехід алерту.

    A trailing line that is still being written is skipped.
    """
    if not path.exists() or file_size(path) == 0:
        return None
    rows: list[dict[str, Any]] = []
    with open(path, encoding="utf-8") as fh:
        for line in fh:
            line = line.strip()
            if not line:
                continue
            try:
                rows.append(json.loads(line))
            except json.JSONDecodeError:
                log.debug("Skipping partial delivery line")
    if not rows:
        return None
    df = pd.DataFrame(rows)
    for col in ("first_seen", "last_seen", "delivered_at"):
        if col in df.columns:
            df[col] = pd.to_datetime(df[col], utc=True, errors="coerce")
    if "peers" in df.columns:
        df["peer_count"] = df["peers"].apply(lambda p: len(p) if isinstance(p, list) else 0)
    return df


def latest_alerts(deliveries: pd.DataFrame) -> pd.DataFrame:
    """Reduce the delivery log to the newest snapshot per alert_id."""
    if deliveries.empty:
        return deliveries.copy()
    order = deliveries.sort_values(["alert_id", "delivered_at"], kind="stable")
    return order.groupby("alert_id", as_index=False).tail(1).reset_index(drop=True)


# ── filtering ───────────────────────────────────────────────────────────────


def filter_alerts(
    df: pd.DataFrame,
    *,
    severities: list[str] | None = None,
    classifiers: list[str] | None = None,
    states: list[str] | None = None,
    prefix_query: str = "",
) -> pd.DataFrame:
    """Застосовує фільтри sidebar до алертів."""
    mask = pd.Series(True, index=df.index)
    if severities:
        mask &= df["severity"].isin(severities)
    if classifiers:
        mask &= df["classifier"].isin(classifiers)
    if states:
        mask &= df["state"].isin(states)
    if prefix_query:
        mask &= df["prefix"].str.contains(prefix_query, regex=False, na=False)
    return df.loc[mask].copy()
