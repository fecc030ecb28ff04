"""Сценарій: перехоплення префікса (exact-prefix origin hijack)."""

from __future__ import annotations

import logging

from src.contracts.route import RouteEvent
from src.emulator.scenarios.base import BaseScenario

log = logging.getLogger(__name__)


class OriginHijackScenario(BaseScenario):
    """A foreign AS originates the monitored prefix; part of the peers prefer it.

    At the end of the incident the affected peers converge back to the
    legitimate origin.
    """

    name = "origin_hijack"

    def generate(self) -> list[RouteEvent]:
        events: list[RouteEvent] = []
        attacker = int(self.cfg.get("attacker_asn", 64666))
        legit = self.origins[self.target]
        end = self.start_offset + self.duration

        for peer in self._chosen_peers():
            events.append(
                self._announce(peer, self.target, peer.path_to(attacker),
                               self.start_offset + self._jitter())
            )
            events.append(
                self._announce(peer, self.target, peer.path_to(legit), end + self._jitter())
            )

        self._log_done(events)
        return events
