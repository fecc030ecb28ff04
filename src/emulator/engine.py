"""Оркестратор емуляції: базові таблиці + фоновий churn + ін’єкція інцидентів."""

from __future__ import annotations

import json
import logging
import random as _random_mod
import threading
import time
from collections import defaultdict
from dataclasses import replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from src.contracts.enums import EventKind
from src.contracts.route import RouteEvent
from src.emulator.noise import ChurnGenerator, baseline
from src.emulator.peers import build_peer_index, monitored_origins
from src.emulator.scenarios.origin_hijack import OriginHijackScenario
from src.emulator.scenarios.route_leak import RouteLeakScenario
from src.emulator.scenarios.rpki_invalid import RpkiInvalidScenario
from src.emulator.scenarios.subprefix_hijack import SubprefixHijackScenario
from src.emulator.scenarios.visibility_loss import VisibilityLossScenario
from src.shared.timeutil import parse_ts

log = logging.getLogger(__name__)

# Registry: scenario name -> class
SCENARIO_REGISTRY: dict[str, type] = {
    "origin_hijack": OriginHijackScenario,
    "subprefix_hijack": SubprefixHijackScenario,
    "rpki_invalid": RpkiInvalidScenario,
    "route_leak": RouteLeakScenario,
    "visibility_loss": VisibilityLossScenario,
}


class EmulatorEngine:
    """Головний движок симуляції."""

    def __init__(
        self,
        peers_cfg: dict[str, Any],
        prefixes_cfg: dict[str, Any],
        scenarios_cfg: dict[str, Any],
        seed: int = 42,
        duration_sec: int | None = None,
        start_time: datetime | None = None,
        scenario_set: str = "all",
    ) -> None:
        self.seed = seed
        self.rng = _random_mod.Random(seed)

        self.peers = build_peer_index(peers_cfg)
        self.origins = monitored_origins(prefixes_cfg)

        sim = scenarios_cfg.get("simulation", {})
        self.duration_sec = int(duration_sec or sim.get("duration_sec", 1800))
        if start_time is not None:
            self.sim_start = start_time
        else:
            self.sim_start = parse_ts(sim.get("start_time", "2026-10-19T10:00:00Z"))

        self.bg_cfg = scenarios_cfg.get("background", {})
        self.attacks_cfg = scenarios_cfg.get("attacks", {})
        self.scenario_set = scenario_set

        log.info(
            "Engine init: duration=%ds, start=%s, seed=%d, peers=%d, prefixes=%d, scenarios=%s",
            self.duration_sec,
            self.sim_start.isoformat(),
            seed,
            len(self.peers),
            len(self.origins),
            scenario_set,
        )

    # ------------------------------------------------------------------
    # Incident scenarios
    # ------------------------------------------------------------------

    def _build_attacks(self) -> list[RouteEvent]:
        """Pre-generate all scenario events."""
        out: list[RouteEvent] = []
        wanted: set[str] = set()
        if self.scenario_set and self.scenario_set.lower() != "all":
            wanted = {s.strip() for s in self.scenario_set.split(",")}
            if "none" in wanted:
                return out

        for name, atk_cfg in self.attacks_cfg.items():
            if not atk_cfg.get("enabled", True):
                continue
            if wanted and name not in wanted:
                continue
            cls = SCENARIO_REGISTRY.get(name)
            if cls is None:
                log.warning("Unknown scenario '%s', skipping", name)
                continue
            scenario = cls(
                cfg=atk_cfg,
                peers=self.peers,
                origins=self.origins,
                rng=self.rng,
                sim_start=self.sim_start,
                sim_duration_sec=self.duration_sec,
            )
            out.extend(scenario.generate())

        log.info("Total scenario events pre-generated: %d", len(out))
        return out

    # ------------------------------------------------------------------
    # Main run
    # ------------------------------------------------------------------

    def run(self) -> list[RouteEvent]:
        """Execute the full simulation and return events in feed order."""
        events = baseline(self.peers, self.origins, self.sim_start, self.rng)
        attack_events = self._build_attacks()

        churn_cfg = self.bg_cfg.get("churn")
        bg_events: list[RouteEvent] = []
        if churn_cfg and churn_cfg.get("enabled", True):
            churn = ChurnGenerator(churn_cfg, self.peers, self.origins, self.rng)
            # time-step resolution: 1 second
            for offset in range(self.duration_sec):
                t = self.sim_start + timedelta(seconds=offset)
                bg_events.extend(churn.generate(t, float(offset)))
        log.info("Background churn events generated: %d", len(bg_events))

        events.extend(bg_events)
        events.extend(attack_events)
        ordered = number_events(events)
        log.info(
            "Total events: %d (baseline+churn=%d, scenarios=%d)",
            len(ordered), len(ordered) - len(attack_events), len(attack_events),
        )
        return ordered


def number_events(events: list[RouteEvent]) -> list[RouteEvent]:
    """Sort by time (stable) and assign per-peer sequence numbers from 1."""
    ordered = sorted(events, key=lambda e: e.timestamp)
    seq: dict[int, int] = defaultdict(int)
    out: list[RouteEvent] = []
    for ev in ordered:
        seq[ev.peer_asn] += 1
        out.append(replace(ev, sequence=seq[ev.peer_asn]))
    return out


# ------------------------------------------------------------------
# Writers
# ------------------------------------------------------------------


def to_ris_message(ev: RouteEvent) -> dict[str, Any]:
    """Render an event the way RIS Live streams it (``ris_message``)."""
    data: dict[str, Any] = {
        "timestamp": parse_ts(ev.timestamp).timestamp(),
        "peer_asn": str(ev.peer_asn),
        "host": ev.collector,
    }
    if ev.kind in (EventKind.PEER_UP, EventKind.PEER_DOWN):
        data["type"] = "RIS_PEER_STATE"
        data["state"] = "connected" if ev.kind == EventKind.PEER_UP else "down"
    elif ev.kind == EventKind.WITHDRAW:
        data.update(type="UPDATE", path=[], withdrawals=[ev.prefix], announcements=[])
    else:
        data.update(
            type="UPDATE",
            path=list(ev.as_path),
            announcements=[{"next_hop": ev.next_hop, "prefixes": [ev.prefix]}],
            withdrawals=[],
        )
    return {"type": "ris_message", "data": data}


def _line(ev: RouteEvent, fmt: str) -> str:
    if fmt == "ris":
        return json.dumps(to_ris_message(ev), separators=(",", ":"))
    return ev.to_json()


def write_jsonl(events: list[RouteEvent], path: Path, fmt: str = "canonical") -> None:
    """Write events to a JSONL file (one JSON per line)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fh:
        for ev in events:
            fh.write(_line(ev, fmt) + "\n")
    log.info("Wrote %d events to %s (%s)", len(events), path, fmt)


# ------------------------------------------------------------------
# Live streaming writer
# ------------------------------------------------------------------


def stream_jsonl(
    events: list[RouteEvent],
    path: Path,
    interval_sec: float = 1.0,
    fmt: str = "canonical",
    stop: threading.Event | None = None,
) -> int:
    """Append events to a JSONL file with real-time delays (live mode)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    stop = stop or threading.Event()
    log.info(
        "Live mode: streaming %d events to %s (interval=%.3fs)", len(events), path, interval_sec
    )

    count = 0
    with path.open("a", encoding="utf-8") as fh:
        for ev in events:
            if stop.is_set():
                break
            fh.write(_line(ev, fmt) + "\n")
            fh.flush()
            count += 1
            if count % 50 == 0:
                log.info("  streamed %d / %d events", count, len(events))
            if interval_sec > 0:
                time.sleep(interval_sec)

    log.info("Live streaming complete: %d events -> %s", count, path)
    return count
