"""Сценарій: витік маршруту через клієнтську AS (route leak)."""

from __future__ import annotations

import logging

from src.contracts.route import RouteEvent
from src.emulator.scenarios.base import BaseScenario

log = logging.getLogger(__name__)


class RouteLeakScenario(BaseScenario):
    """Peers start seeing the prefix through a leaking AS.

    The origin stays legitimate; only the path changes, so this is caught by
    path rules (e.g. ``match: "\\b64510\\b"``).  With ``loop: true`` the
    leaked path also revisits a transit AS.
    """

    name = "route_leak"

    def generate(self) -> list[RouteEvent]:
        events: list[RouteEvent] = []
        leaker = int(self.cfg.get("leaker_asn", 64510))
        legit = self.origins[self.target]
        end = self.start_offset + self.duration

        for peer in self._chosen_peers():
            via: tuple[int, ...] = (leaker,)
            if self.cfg.get("loop", False):
                via = (leaker, peer.asn)
            events.append(
                self._announce(peer, self.target, peer.path_to(legit, via=via),
                               self.start_offset + self._jitter())
            )
            events.append(
                self._announce(peer, self.target, peer.path_to(legit), end + self._jitter())
            )

        self._log_done(events)
        return events
