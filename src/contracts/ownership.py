"""Ownership contracts: ROA and the per-prefix OwnershipRecord."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass

from src.contracts.enums import RpkiValidity


@dataclass(slots=True, frozen=True)
class Roa:
    """One validated ROA payload (prefix, maxLength, origin ASN)."""

    prefix: str
    max_length: int
    asn: int

    def covers(self, prefix: str) -> bool:
        net = ipaddress.ip_network(prefix, strict=False)
        own = ipaddress.ip_network(self.prefix, strict=False)
        return net.version == own.version and net.subnet_of(own)

    def matches(self, prefix: str, origin: int) -> bool:
        net = ipaddress.ip_network(prefix, strict=False)
        return self.covers(prefix) and net.prefixlen <= self.max_length and origin == self.asn


@dataclass(slots=True, frozen=True)
class OwnershipRecord:
    """Expected origin(s) and RPKI coverage of one monitored prefix.

    ``rpki`` is the validity of the prefix announced by its expected origin;
    ``validate`` answers the same question for any (prefix, origin) pair.
    """

    prefix: str
    origins: frozenset[int]
    rpki: RpkiValidity = RpkiValidity.NOT_FOUND
    roas: tuple[Roa, ...] = ()
    refreshed_at: str = ""
    description: str = ""
    ignore_morespecifics: bool = False
    roa_lost: bool = False

    def validate(self, prefix: str, origin: int | None) -> RpkiValidity:
        """Route origin validation: valid, invalid or not_found (RFC 6811)."""
        covering = [r for r in self.roas if r.covers(prefix)]
        if not covering:
            return RpkiValidity.NOT_FOUND
        if origin is not None and any(r.matches(prefix, origin) for r in covering):
            return RpkiValidity.VALID
        return RpkiValidity.INVALID

    def same_content(self, other: OwnershipRecord) -> bool:
        """Equality ignoring the refresh timestamp."""
        return (
            self.prefix == other.prefix
            and self.origins == other.origins
            and self.rpki == other.rpki
            and set(self.roas) == set(other.roas)
            and self.description == other.description
            and self.ignore_morespecifics == other.ignore_morespecifics
            and self.roa_lost == other.roa_lost
        )
