"""Сценарій: втрата видимості префікса (outage at the origin's upstreams)."""

from __future__ import annotations

import logging

from src.contracts.route import RouteEvent
from src.emulator.scenarios.base import BaseScenario

log = logging.getLogger(__name__)


class VisibilityLossScenario(BaseScenario):
    """Most peers withdraw the prefix, then re-announce it after the outage."""

    name = "visibility_loss"

    def generate(self) -> list[RouteEvent]:
        events: list[RouteEvent] = []
        legit = self.origins[self.target]
        end = self.start_offset + self.duration
        spread = float(self.cfg.get("withdraw_spread_sec", 30))

        for peer in self._chosen_peers():
            events.append(
                self._withdraw(peer, self.target,
                               self.start_offset + self.rng.uniform(0, spread))
            )
            if self.cfg.get("recover", True):
                events.append(
                    self._announce(peer, self.target, peer.path_to(legit), end + self._jitter())
                )

        self._log_done(events)
        return events
