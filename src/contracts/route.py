"""Route contracts: RouteEvent (ingested), RouteState (RIB), StateDiff (RIB output)."""

from __future__ import annotations

import ipaddress
import json
from dataclasses import asdict, dataclass, field, replace
from typing import Any

from src.contracts.enums import DiffKind, EventKind
from src.shared.timeutil import format_ts, parse_ts


def normalize_prefix(prefix: str) -> str:
    """Return the canonical CIDR form (host bits cleared, compressed IPv6)."""
    return str(ipaddress.ip_network(prefix.strip(), strict=False))


@dataclass(slots=True, frozen=True)
class RouteEvent:
    """One observed announcement, withdrawal or peer state change.

    ``sequence`` is monotonic per peer; ``as_path`` is empty for withdrawals
    and peer state events.  Peer events carry an empty ``prefix``.
    """

    # ── mandatory ──
    peer_asn: int
    prefix: str             # canonical CIDR, "" for peer_up / peer_down
    timestamp: str          # ISO-8601 UTC  e.g. "2026-10-19T10:00:00Z"
    sequence: int
    kind: EventKind = EventKind.ANNOUNCE

    # ── optional ──
    as_path: tuple[int, ...] = ()
    next_hop: str = ""
    collector: str = ""

    @property
    def origin(self) -> int | None:
        return self.as_path[-1] if self.as_path else None

    @property
    def is_withdrawal(self) -> bool:
        return self.kind == EventKind.WITHDRAW

    # ── serialisation ─────────────────────────────────────────────────────

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["kind"] = self.kind.value
        d["as_path"] = list(self.as_path)
        return d

    def to_json(self) -> str:
        """Return compact JSON string (the canonical feed line)."""
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_dict(cls, row: dict[str, Any]) -> RouteEvent:
        kind = EventKind(row.get("kind", EventKind.ANNOUNCE.value))
        prefix = row.get("prefix", "")
        ts = row.get("timestamp", "")
        return cls(
            peer_asn=int(row["peer_asn"]),
            prefix=normalize_prefix(prefix) if prefix else "",
            timestamp=format_ts(parse_ts(ts)) if ts else "",
            sequence=int(row["sequence"]),
            kind=kind,
            as_path=tuple(int(a) for a in row.get("as_path") or ()),
            next_hop=row.get("next_hop", ""),
            collector=row.get("collector", ""),
        )


@dataclass(slots=True)
class RouteState:
    """Current RIB entry for one (prefix, peer) pair."""

    prefix: str
    peer_asn: int
    as_path: tuple[int, ...]
    next_hop: str
    last_seen: str
    sequence: int
    withdrawn: bool = False

    @property
    def origin(self) -> int | None:
        return self.as_path[-1] if self.as_path and not self.withdrawn else None

    def snapshot(self) -> RouteState:
        return replace(self)


@dataclass(slots=True, frozen=True)
class StateDiff:
    """What a single RouteEvent changed in the RIB.

    The cross-peer aggregates are computed by the tracker at apply time so
    that classifiers can stay pure functions of (diff, ownership).
    """

    event: RouteEvent
    change: DiffKind
    new: RouteState
    old: RouteState | None = None
    unstable: bool = False
    origin_peers: frozenset[int] = field(default_factory=frozenset)
    visible_before: int = 0
    visible_after: int = 0
    visible_peak: int = 0       # most visible peers within the tracker window

    @property
    def prefix(self) -> str:
        return self.new.prefix

    @property
    def peer_asn(self) -> int:
        return self.new.peer_asn

    @property
    def path_changed(self) -> bool:
        return self.change in (DiffKind.NEW, DiffKind.PATH_CHANGED)

    def evidence(self) -> dict[str, Any]:
        """Snapshot of the triggering event and state, safe to serialise."""
        return {
            "peer_asn": self.event.peer_asn,
            "prefix": self.prefix,
            "kind": self.event.kind.value,
            "sequence": self.event.sequence,
            "timestamp": self.event.timestamp,
            "as_path": list(self.new.as_path),
            "old_as_path": list(self.old.as_path) if self.old else None,
            "change": self.change.value,
        }
