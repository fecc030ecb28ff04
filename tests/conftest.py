"""Shared fixtures for BGP Route Monitor tests."""

from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from src.contracts.alert import AlertCandidate
from src.contracts.enums import DiffKind, EventKind, RpkiValidity, Severity
from src.contracts.ownership import OwnershipRecord, Roa
from src.contracts.route import RouteEvent, RouteState, StateDiff
from src.monitor.settings import AggregatorConfig, DispatchConfig

BASE_TS = "2026-10-19T10:00:00Z"

# ── Timestamp helpers ────────────────────────────────────────────────────


def ts_offset(base: str = BASE_TS, seconds: int = 0) -> str:
    """Return an ISO-8601 timestamp offset from *base* by *seconds*."""
    dt = datetime.fromisoformat(base.replace("Z", "+00:00"))
    dt += timedelta(seconds=seconds)
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")


# ── Helper: create contracts with sensible defaults ──────────────────────


def make_event(
    *,
    peer_asn: int = 3356,
    prefix: str = "203.0.113.0/24",
    timestamp: str = BASE_TS,
    sequence: int = 1,
    kind: EventKind = EventKind.ANNOUNCE,
    as_path: tuple[int, ...] | None = None,
    next_hop: str = "",
    collector: str = "rrc00",
) -> RouteEvent:
    if as_path is None:
        as_path = (peer_asn, 64500) if kind == EventKind.ANNOUNCE else ()
    return RouteEvent(
        peer_asn=peer_asn,
        prefix=prefix,
        timestamp=timestamp,
        sequence=sequence,
        kind=kind,
        as_path=as_path,
        next_hop=next_hop,
        collector=collector,
    )


def make_state(
    *,
    prefix: str = "203.0.113.0/24",
    peer_asn: int = 3356,
    as_path: tuple[int, ...] = (3356, 64500),
    last_seen: str = BASE_TS,
    sequence: int = 1,
    withdrawn: bool = False,
) -> RouteState:
    return RouteState(
        prefix=prefix,
        peer_asn=peer_asn,
        as_path=() if withdrawn else as_path,
        next_hop="",
        last_seen=last_seen,
        sequence=sequence,
        withdrawn=withdrawn,
    )


def make_diff(
    *,
    event: RouteEvent | None = None,
    change: DiffKind = DiffKind.NEW,
    origin_peers: frozenset[int] | None = None,
    visible_before: int = 0,
    visible_after: int = 1,
    visible_peak: int | None = None,
    unstable: bool = False,
    old: RouteState | None = None,
) -> StateDiff:
    """Diff for *event* as the tracker would produce it (no RIB needed)."""
    event = event or make_event()
    withdrawn = event.kind == EventKind.WITHDRAW
    new = make_state(
        prefix=event.prefix,
        peer_asn=event.peer_asn,
        as_path=event.as_path,
        last_seen=event.timestamp,
        sequence=event.sequence,
        withdrawn=withdrawn,
    )
    if origin_peers is None:
        origin_peers = frozenset() if withdrawn else frozenset({event.peer_asn})
    return StateDiff(
        event=event,
        change=DiffKind.WITHDRAWN if withdrawn else change,
        new=new,
        old=old,
        unstable=unstable,
        origin_peers=origin_peers,
        visible_before=visible_before,
        visible_after=visible_after,
        visible_peak=max(visible_before, visible_after) if visible_peak is None else visible_peak,
    )


def make_record(
    *,
    prefix: str = "203.0.113.0/24",
    origins: tuple[int, ...] = (64500,),
    roas: tuple[Roa, ...] | None = None,
    ignore_morespecifics: bool = False,
    roa_lost: bool = False,
) -> OwnershipRecord:
    if roas is None:
        roas = (Roa(prefix=prefix, max_length=24, asn=origins[0]),)
    return OwnershipRecord(
        prefix=prefix,
        origins=frozenset(origins),
        rpki=RpkiValidity.VALID if roas else RpkiValidity.NOT_FOUND,
        roas=roas,
        refreshed_at=BASE_TS,
        ignore_morespecifics=ignore_morespecifics,
        roa_lost=roa_lost,
    )


def make_candidate(
    *,
    classifier: str = "hijack",
    prefix: str = "203.0.113.0/24",
    peer_asn: int = 3356,
    severity: Severity = Severity.HIGH,
    key: str = "origin=64501",
    timestamp: str = BASE_TS,
    description: str = "test candidate",
    clears: bool = False,
) -> AlertCandidate:
    return AlertCandidate(
        classifier=classifier,
        prefix=prefix,
        peer_asn=peer_asn,
        severity=severity,
        key=key,
        timestamp=timestamp,
        description=description,
        evidence={"peer_asn": peer_asn, "timestamp": timestamp},
        clears=clears,
    )


# ── Static ownership source ──────────────────────────────────────────────


class StaticSource:
    """Ownership source returning a fixed list (or raising a given error)."""

    def __init__(self, records: list[OwnershipRecord], error: Exception | None = None) -> None:
        self.records = records
        self.error = error
        self.calls = 0

    def fetch_current(self) -> list[OwnershipRecord]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.records)


# ── Config fixtures ──────────────────────────────────────────────────────


@pytest.fixture
def agg_cfg() -> AggregatorConfig:
    return AggregatorConfig(fade_off_seconds=60, close_grace_seconds=300)


@pytest.fixture
def fast_dispatch_cfg() -> DispatchConfig:
    """Retries without real waiting."""
    return DispatchConfig(max_attempts=5, base_delay_sec=0.0, max_delay_sec=0.0)


@pytest.fixture
def config_dir(tmp_path):
    """A self-contained config/ directory with monitors, prefixes and ROAs."""
    cfg = tmp_path / "config"
    cfg.mkdir()
    (cfg / "prefixes.yaml").write_text(
        "prefixes:\n"
        "  203.0.113.0/24:\n"
        "    asn: [AS64500]\n"
        "  198.51.100.0/23:\n"
        "    asn: 64501\n",
        encoding="utf-8",
    )
    (cfg / "roas.json").write_text(
        '{"roas": ['
        '{"prefix": "203.0.113.0/24", "maxLength": 24, "asn": "AS64500"},'
        '{"prefix": "198.51.100.0/23", "maxLength": 24, "asn": 64501}'
        "]}",
        encoding="utf-8",
    )
    (cfg / "monitors.yaml").write_text(
        "monitors:\n"
        "  hijack:\n"
        "    threshold_min_peers: 2\n"
        "  rpki:\n"
        "    check_disappearing: true\n"
        "  path:\n"
        "    rules:\n"
        "      - name: leak-via-64510\n"
        "        match: '\\b64510\\b'\n"
        "        severity: high\n"
        "  visibility:\n"
        "    threshold_min_peers: 3\n"
        "aggregator:\n"
        "  fade_off_seconds: 60\n"
        "  close_grace_seconds: 300\n"
        "dispatch:\n"
        "  max_attempts: 2\n"
        "  base_delay_sec: 0\n"
        "  max_delay_sec: 0\n"
        "  sinks:\n"
        "    - type: jsonl\n"
        "registry:\n"
        "  prefixes: config/prefixes.yaml\n"
        "  roas: config/roas.json\n"
        "  refresh_interval_sec: 0\n",
        encoding="utf-8",
    )
    return cfg
