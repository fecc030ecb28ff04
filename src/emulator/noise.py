"""Background (normal) routing churn.

Each generator, given the current simulation offset, returns zero or more
``RouteEvent`` objects representing benign activity: baseline tables,
periodic re-announcements, path changes through alternate upstreams and
short withdraw/re-announce flaps.  Origins never change, so churn alone
should not raise hijack alerts.
"""

from __future__ import annotations

import logging
import random as _random_mod
from datetime import datetime, timedelta
from typing import Any

from src.contracts.enums import EventKind
from src.contracts.route import RouteEvent
from src.emulator.peers import Peer
from src.shared.timeutil import format_ts

log = logging.getLogger(__name__)


def baseline(
    peers: dict[int, Peer],
    origins: dict[str, int],
    sim_start: datetime,
    rng: _random_mod.Random,
) -> list[RouteEvent]:
    """Session start: peer_up, then every monitored prefix from every peer."""
    events: list[RouteEvent] = []
    for peer in sorted(peers.values(), key=lambda p: p.asn):
        t0 = sim_start + timedelta(seconds=rng.uniform(0, 5))
        events.append(
            RouteEvent(
                peer_asn=peer.asn, prefix="", timestamp=format_ts(t0), sequence=0,
                kind=EventKind.PEER_UP, collector=peer.collector,
            )
        )
        for prefix, origin in sorted(origins.items()):
            events.append(
                RouteEvent(
                    peer_asn=peer.asn,
                    prefix=prefix,
                    timestamp=format_ts(t0 + timedelta(seconds=rng.uniform(1, 10))),
                    sequence=0,
                    kind=EventKind.ANNOUNCE,
                    as_path=peer.path_to(origin),
                    next_hop=peer.address,
                    collector=peer.collector,
                )
            )
    log.info("Baseline: %d events (%d peers × %d prefixes)",
             len(events), len(peers), len(origins))
    return events


class ChurnGenerator:
    """Per-peer random path changes and flaps on monitored prefixes."""

    def __init__(
        self,
        cfg: dict[str, Any],
        peers: dict[int, Peer],
        origins: dict[str, int],
        rng: _random_mod.Random,
    ) -> None:
        self.rng = rng
        self.peers = peers
        self.origins = origins
        self.interval = cfg.get("interval_sec", [60, 180])
        self.flap_probability = float(cfg.get("flap_probability", 0.2))
        self.flap_down = cfg.get("flap_down_sec", [5, 20])
        self.alternates = [int(a) for a in cfg.get("alternate_upstreams", [1299, 6939])]
        # warm-up: no churn before the baseline has converged
        self._next_fire: dict[int, float] = {
            asn: 30 + rng.uniform(0, self.interval[1]) for asn in peers
        }

    def generate(self, t: datetime, offset_sec: float) -> list[RouteEvent]:
        events: list[RouteEvent] = []
        if not self.origins:
            return events
        for asn, peer in self.peers.items():
            if offset_sec < self._next_fire[asn]:
                continue
            self._next_fire[asn] = offset_sec + self.rng.uniform(self.interval[0], self.interval[1])
            prefix = self.rng.choice(sorted(self.origins))
            origin = self.origins[prefix]

            if self.rng.random() < self.flap_probability:
                back = t + timedelta(seconds=self.rng.uniform(self.flap_down[0], self.flap_down[1]))
                events.append(self._event(peer, prefix, t, EventKind.WITHDRAW))
                events.append(self._event(peer, prefix, back, EventKind.ANNOUNCE,
                                          peer.path_to(origin)))
            else:
                via = (self.rng.choice(self.alternates),) if self.alternates else ()
                if self.rng.random() < 0.5:
                    via = ()
                events.append(self._event(peer, prefix, t, EventKind.ANNOUNCE,
                                          peer.path_to(origin, via=via)))
        return events

    @staticmethod
    def _event(
        peer: Peer,
        prefix: str,
        t: datetime,
        kind: EventKind,
        path: tuple[int, ...] = (),
    ) -> RouteEvent:
        return RouteEvent(
            peer_asn=peer.asn,
            prefix=prefix,
            timestamp=format_ts(t),
            sequence=0,
            kind=kind,
            as_path=path,
            next_hop=peer.address if kind == EventKind.ANNOUNCE else "",
            collector=peer.collector,
        )
