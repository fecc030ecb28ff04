"""Сценарій: анонс, що порушує maxLength ROA (RPKI invalid)."""

from __future__ import annotations

import ipaddress
import logging

from src.contracts.route import RouteEvent
from src.emulator.scenarios.base import BaseScenario

log = logging.getLogger(__name__)


class RpkiInvalidScenario(BaseScenario):
    """The legitimate origin de-aggregates beyond the ROA maxLength.

    The origin is expected, so no hijack fires; route origin validation
    marks the more-specific invalid (length).  ``origin_asn`` in the
    scenario config turns it into an invalid-origin case instead.
    """

    name = "rpki_invalid"

    def generate(self) -> list[RouteEvent]:
        events: list[RouteEvent] = []
        origin = int(self.cfg.get("origin_asn", self.origins[self.target]))
        net = ipaddress.ip_network(self.target)
        length = int(self.cfg.get("length", net.prefixlen + 1))
        prefix = str(next(net.subnets(new_prefix=max(length, net.prefixlen))))
        end = self.start_offset + self.duration

        for peer in self._chosen_peers():
            events.append(
                self._announce(peer, prefix, peer.path_to(origin), self.start_offset + self._jitter())
            )
            events.append(self._withdraw(peer, prefix, end + self._jitter()))

        self._log_done(events)
        return events
