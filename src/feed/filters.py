"""Post-parse filters: validation and bogon checks.

These run *after* lines have been parsed into RouteEvents but *before* the
events reach the RIB tracker.
"""

from __future__ import annotations

import ipaddress
import logging

from src.contracts.enums import EventKind
from src.contracts.route import RouteEvent

log = logging.getLogger(__name__)

MAX_ASN = 4294967295

BOGON_PREFIXES = [
    ipaddress.ip_network(p)
    for p in (
        "0.0.0.0/8",        # RFC 1122: This network
        "10.0.0.0/8",       # RFC 1918
        "100.64.0.0/10",    # RFC 6598: Shared Address Space
        "127.0.0.0/8",      # RFC 1122: Loopback
        "169.254.0.0/16",   # RFC 3927: Link Local
        "172.16.0.0/12",    # RFC 1918
        "192.168.0.0/16",   # RFC 1918
        "224.0.0.0/4",      # RFC 5771: Multicast
        "240.0.0.0/4",      # RFC 1112: Reserved
        "fc00::/7",         # RFC 4193: Unique Local
        "fe80::/10",        # RFC 4291: Link Local
    )
]


def is_bogon(prefix: str) -> bool:
    net = ipaddress.ip_network(prefix, strict=False)
    return any(net.version == b.version and net.subnet_of(b) for b in BOGON_PREFIXES)


def validate_event(event: RouteEvent) -> list[str]:
    """Return a list of validation warnings (empty = valid).

    Currently checks:
      - timestamp is non-empty and sequence positive
      - peer / path ASNs are in the 32-bit range
      - route events carry a parseable prefix
      - announcements have a path, withdrawals and peer events do not
    """
    warnings: list[str] = []

    if not event.timestamp:
        warnings.append("empty timestamp")
    if event.sequence < 1:
        warnings.append(f"non-positive sequence {event.sequence}")
    if not 0 < event.peer_asn <= MAX_ASN:
        warnings.append(f"peer ASN out of range: {event.peer_asn}")

    if event.kind in (EventKind.PEER_UP, EventKind.PEER_DOWN):
        if event.as_path:
            warnings.append("peer state event carries a path")
        return warnings

    try:
        ipaddress.ip_network(event.prefix, strict=False)
    except ValueError:
        warnings.append(f"unparseable prefix '{event.prefix}'")

    if event.kind == EventKind.ANNOUNCE and not event.as_path:
        warnings.append("announcement without AS path")
    if event.kind == EventKind.WITHDRAW and event.as_path:
        warnings.append("withdrawal carries an AS path")
    bad = [a for a in event.as_path if not 0 < a <= MAX_ASN]
    if bad:
        warnings.append(f"AS path has out-of-range ASNs: {bad}")

    return warnings
