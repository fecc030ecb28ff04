"""Сценарій: перехоплення більш специфічного префікса."""

from __future__ import annotations

import ipaddress
import logging

from src.contracts.route import RouteEvent
from src.emulator.scenarios.base import BaseScenario

log = logging.getLogger(__name__)


class SubprefixHijackScenario(BaseScenario):
    """A foreign AS announces a more-specific inside the monitored prefix, then withdraws it."""

    name = "subprefix_hijack"

    def generate(self) -> list[RouteEvent]:
        events: list[RouteEvent] = []
        attacker = int(self.cfg.get("attacker_asn", 64667))
        sub = self._subprefix()
        end = self.start_offset + self.duration

        for peer in self._chosen_peers():
            events.append(
                self._announce(peer, sub, peer.path_to(attacker), self.start_offset + self._jitter())
            )
            events.append(self._withdraw(peer, sub, end + self._jitter()))

        self._log_done(events)
        return events

    def _subprefix(self) -> str:
        net = ipaddress.ip_network(self.target)
        cap = 24 if net.version == 4 else 48
        new_len = int(self.cfg.get("length", min(net.prefixlen + 1, cap)))
        if new_len <= net.prefixlen:
            new_len = net.prefixlen + 1
        subnets = list(net.subnets(new_prefix=new_len))
        return str(self.rng.choice(subnets[:16]))
