"""Base class for all injectable routing-incident scenarios."""

from __future__ import annotations

import abc
import ipaddress
import logging
import random as _random_mod
from datetime import datetime, timedelta
from typing import Any

from src.contracts.enums import EventKind
from src.contracts.route import RouteEvent
from src.emulator.peers import Peer
from src.shared.timeutil import format_ts

log = logging.getLogger(__name__)


def _randint_range(rng: _random_mod.Random, r: list[int]) -> int:
    """Return random int from a two-element [lo, hi] list."""
    return rng.randint(int(r[0]), int(r[1]))


class BaseScenario(abc.ABC):
    """Abstract base class for injectable scenarios.

    Each scenario reads its definition from the ``attacks`` section of
    ``scenarios.yaml`` and pre-generates a batch of ``RouteEvent`` objects
    (sequence 0) that the engine merges into the main timeline and numbers
    per peer.
    """

    name: str = "base"

    def __init__(
        self,
        cfg: dict[str, Any],
        peers: dict[int, Peer],
        origins: dict[str, int],
        rng: _random_mod.Random,
        sim_start: datetime,
        sim_duration_sec: int,
    ) -> None:
        self.cfg = cfg
        self.peers = peers
        self.origins = origins
        self.rng = rng
        self.sim_start = sim_start
        self.sim_duration_sec = sim_duration_sec

        sched = cfg.get("schedule", {})
        self.start_offset = _randint_range(rng, sched.get("start_offset_sec", [60, 120]))
        self.duration = _randint_range(rng, sched.get("duration_sec", [120, 300]))
        self.target = self._pick_target()

    @abc.abstractmethod
    def generate(self) -> list[RouteEvent]:
        """Return the scenario's events (unsorted, sequence 0)."""
        ...

    # helpers available to subclasses

    def _pick_target(self) -> str:
        target = self.cfg.get("target")
        if target:
            return str(ipaddress.ip_network(target, strict=False))
        return self.rng.choice(sorted(self.origins))

    def _chosen_peers(self) -> list[Peer]:
        """Pick ``peer_fraction`` of the peers (at least one)."""
        frac = float(self.cfg.get("peer_fraction", 0.5))
        pool = sorted(self.peers.values(), key=lambda p: p.asn)
        k = max(1, min(len(pool), round(len(pool) * frac)))
        return self.rng.sample(pool, k)

    def _at(self, offset_sec: float) -> str:
        return format_ts(self.sim_start + timedelta(seconds=offset_sec))

    def _jitter(self) -> float:
        return self.rng.uniform(0, float(self.cfg.get("propagation_sec", 10)))

    def _announce(
        self, peer: Peer, prefix: str, path: tuple[int, ...], offset_sec: float
    ) -> RouteEvent:
        return RouteEvent(
            peer_asn=peer.asn,
            prefix=prefix,
            timestamp=self._at(offset_sec),
            sequence=0,
            kind=EventKind.ANNOUNCE,
            as_path=path,
            next_hop=peer.address,
            collector=peer.collector,
        )

    def _withdraw(self, peer: Peer, prefix: str, offset_sec: float) -> RouteEvent:
        return RouteEvent(
            peer_asn=peer.asn,
            prefix=prefix,
            timestamp=self._at(offset_sec),
            sequence=0,
            kind=EventKind.WITHDRAW,
            collector=peer.collector,
        )

    def _log_done(self, events: list[RouteEvent]) -> None:
        log.info(
            "%s: generated %d events for %s, offset=%ds, duration=%ds",
            self.name, len(events), self.target, self.start_offset, self.duration,
        )
