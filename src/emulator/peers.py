"""Peering model: builds the collector-peer index from peers.yaml."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

log = logging.getLogger(__name__)


@dataclass(slots=True)
class Peer:
    """One BGP session at a route collector."""
    asn: int
    name: str
    collector: str          # rrc00 | route-views2 | …
    address: str
    transit: tuple[int, ...]  # hops from the peer towards the origin, peer first

    def path_to(self, origin: int, via: tuple[int, ...] = ()) -> tuple[int, ...]:
        """AS path as this peer would see it for *origin*, optionally via extra hops."""
        return self.transit + via + (origin,)


def build_peer_index(peers_cfg: dict[str, Any]) -> dict[int, Peer]:
    """Parse the ``peers`` list and return a dict keyed by peer ASN."""
    index: dict[int, Peer] = {}
    for raw in peers_cfg.get("peers", []):
        asn = int(raw["asn"])
        transit = tuple(int(a) for a in raw.get("transit", [asn]))
        if not transit or transit[0] != asn:
            transit = (asn,) + transit
        index[asn] = Peer(
            asn=asn,
            name=str(raw.get("name", f"AS{asn}")),
            collector=str(raw.get("collector", "rrc00")),
            address=str(raw.get("address", "")),
            transit=transit,
        )
    log.info("Peer index built: %d peers across %d collectors",
             len(index), len({p.collector for p in index.values()}))
    return index


def monitored_origins(prefixes_cfg: dict[str, Any]) -> dict[str, int]:
    """prefixes.yaml → {prefix: legitimate origin} (first listed ASN)."""
    out: dict[str, int] = {}
    for prefix, spec in (prefixes_cfg.get("prefixes") or {}).items():
        asns = (spec or {}).get("asn", [])
        asns = asns if isinstance(asns, list) else [asns]
        if asns:
            out[str(prefix)] = int(str(asns[0]).upper().removeprefix("AS"))
    return out
