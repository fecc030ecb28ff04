"""Prefix Ownership Registry — who may originate each monitored prefix.

Records come from an ownership source (``fetch_current()``): the operator's
``prefixes.yaml`` joined with the validated ROA payloads (VRPs) exported by
an RPKI validator.  A refresh builds a complete new snapshot and swaps it in
with a single reference assignment, so ``lookup`` never blocks and never
sees a half-updated record.  A failed refresh keeps the old snapshot.
"""

from __future__ import annotations

import ipaddress
import json
import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass, replace
from pathlib import Path
from types import MappingProxyType
from typing import Any, Protocol

import requests
import yaml

from src.contracts.enums import RpkiValidity
from src.contracts.errors import RegistryRefreshError
from src.contracts.ownership import OwnershipRecord, Roa
from src.contracts.route import normalize_prefix
from src.shared.config_loader import load_yaml
from src.shared.timeutil import utc_now

log = logging.getLogger(__name__)

Network = ipaddress.IPv4Network | ipaddress.IPv6Network


class OwnershipSource(Protocol):
    def fetch_current(self) -> list[OwnershipRecord]: ...


# ═══════════════════════════════════════════════════════════════════════════
#  Sources
# ═══════════════════════════════════════════════════════════════════════════


def parse_asn(raw: Any) -> int:
    """Accept 64500, "64500" or "AS64500"."""
    text = str(raw).strip().upper()
    if text.startswith("AS"):
        text = text[2:]
    return int(text)


def parse_vrps(doc: dict[str, Any]) -> list[Roa]:
    """Parse a validator VRP export: ``{"roas": [{prefix, maxLength, asn}]}``."""
    if not isinstance(doc, dict) or not isinstance(doc.get("roas", []), list):
        raise RegistryRefreshError("VRP export must be an object with a \"roas\" list")
    roas: list[Roa] = []
    for row in doc.get("roas", []):
        prefix = normalize_prefix(row["prefix"])
        max_len = int(row.get("maxLength", ipaddress.ip_network(prefix).prefixlen))
        roas.append(Roa(prefix=prefix, max_length=max_len, asn=parse_asn(row["asn"])))
    return roas


def build_records(
    prefixes_cfg: dict[str, Any],
    roas: list[Roa],
    refreshed_at: str,
) -> list[OwnershipRecord]:
    """Join the prefixes config with VRPs into one record per monitored prefix."""
    if not isinstance(prefixes_cfg, dict):
        raise RegistryRefreshError("prefixes file must be a mapping")
    monitored = prefixes_cfg.get("prefixes") or {}
    if not isinstance(monitored, dict):
        raise RegistryRefreshError("\"prefixes\" must map CIDR -> {asn, description}")
    records: list[OwnershipRecord] = []
    for raw_prefix, spec in monitored.items():
        spec = spec or {}
        if not isinstance(spec, dict):
            raise RegistryRefreshError(f"{raw_prefix}: entry must be a mapping")
        prefix = normalize_prefix(str(raw_prefix))
        asns = spec.get("asn", [])
        origins = frozenset(parse_asn(a) for a in (asns if isinstance(asns, list) else [asns]))
        net = ipaddress.ip_network(prefix)
        # ROAs that can decide any announcement inside the monitored prefix
        relevant = tuple(
            r for r in roas
            if ipaddress.ip_network(r.prefix).version == net.version
            and (net.subnet_of(ipaddress.ip_network(r.prefix))
                 or ipaddress.ip_network(r.prefix).subnet_of(net))
        )
        rec = OwnershipRecord(
            prefix=prefix,
            origins=origins,
            roas=relevant,
            refreshed_at=refreshed_at,
            description=str(spec.get("description", "")),
            ignore_morespecifics=bool(spec.get("ignore_morespecifics", False)),
        )
        records.append(replace(rec, rpki=_expected_validity(rec)))
    return records


def _expected_validity(rec: OwnershipRecord) -> RpkiValidity:
    results = {rec.validate(rec.prefix, asn) for asn in rec.origins}
    if RpkiValidity.VALID in results:
        return RpkiValidity.VALID
    if RpkiValidity.INVALID in results:
        return RpkiValidity.INVALID
    return RpkiValidity.NOT_FOUND


class FileOwnershipSource:
    """prefixes.yaml + optional VRP JSON file."""

    def __init__(self, prefixes_path: str | Path, roas_path: str | Path | None = None) -> None:
        self.prefixes_path = Path(prefixes_path)
        self.roas_path = Path(roas_path) if roas_path else None

    def fetch_current(self) -> list[OwnershipRecord]:
        prefixes_cfg = load_yaml(self.prefixes_path)
        roas: list[Roa] = []
        if self.roas_path is not None:
            with self.roas_path.open(encoding="utf-8") as fh:
                roas = parse_vrps(json.load(fh))
        return build_records(prefixes_cfg, roas, utc_now())


class HttpRoaOwnershipSource:
    """prefixes.yaml + VRPs fetched from a validator's JSON endpoint."""

    def __init__(self, prefixes_path: str | Path, url: str, timeout_sec: float = 10.0) -> None:
        self.prefixes_path = Path(prefixes_path)
        self.url = url
        self.timeout_sec = timeout_sec

    def fetch_current(self) -> list[OwnershipRecord]:
        prefixes_cfg = load_yaml(self.prefixes_path)
        resp = requests.get(self.url, timeout=self.timeout_sec)
        resp.raise_for_status()
        roas = parse_vrps(resp.json())
        log.debug("Fetched %d VRPs from %s", len(roas), self.url)
        return build_records(prefixes_cfg, roas, utc_now())


# ═══════════════════════════════════════════════════════════════════════════
#  Registry
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(slots=True, frozen=True)
class _Snapshot:
    records: Mapping[str, OwnershipRecord]
    # (network, prefix) sorted most-specific first for covering lookups
    nets: tuple[tuple[Network, str], ...]


_EMPTY = _Snapshot(records=MappingProxyType({}), nets=())


class OwnershipRegistry:
    """Copy-on-write map prefix → OwnershipRecord."""

    def __init__(self, source: OwnershipSource | None = None) -> None:
        self.source = source
        self._snap: _Snapshot = _EMPTY
        self._refresh_lock = threading.Lock()
        self.refreshed_at: str = ""
        self.last_error: str | None = None
        self.refresh_count = 0

    def lookup(self, prefix: str) -> OwnershipRecord | None:
        """Exact record, else the most specific covering record.

        Covering records flagged ``ignore_morespecifics`` do not match
        sub-prefixes.  Returns None when no record applies.
        """
        snap = self._snap
        rec = snap.records.get(prefix)
        if rec is not None:
            return rec
        try:
            net = ipaddress.ip_network(prefix, strict=False)
        except ValueError:
            return None
        for own_net, own_prefix in snap.nets:
            if own_net.version == net.version and net.subnet_of(own_net):
                cand = snap.records[own_prefix]
                if cand.ignore_morespecifics:
                    return None
                return cand
        return None

    def covers(self, prefix: str) -> bool:
        return self.lookup(prefix) is not None

    def records(self) -> list[OwnershipRecord]:
        return list(self._snap.records.values())

    def __len__(self) -> int:
        return len(self._snap.records)

    def refresh(self, source: OwnershipSource | None = None) -> int:
        """Replace the snapshot from *source*; return how many prefixes changed.

        On any failure the previous snapshot stays in effect, the error is
        logged and kept in ``last_error``, and 0 is returned.
        """
        src = source or self.source
        if src is None:
            raise RegistryRefreshError("no ownership source configured")

        with self._refresh_lock:
            try:
                fetched = src.fetch_current()
                new = self._build_snapshot(fetched)
            except (OSError, ValueError, KeyError, TypeError, yaml.YAMLError,
                    requests.RequestException, RegistryRefreshError) as exc:
                self.last_error = f"{type(exc).__name__}: {exc}"
                log.error("Ownership refresh failed, keeping previous snapshot: %s", self.last_error)
                return 0

            old = self._snap
            changed = sum(
                1 for p, rec in new.records.items()
                if p not in old.records or not old.records[p].same_content(rec)
            )
            changed += sum(1 for p in old.records if p not in new.records)

            self._snap = new
            self.refreshed_at = utc_now()
            self.last_error = None
            self.refresh_count += 1

        lost = [r.prefix for r in new.records.values() if r.roa_lost]
        if lost:
            log.warning("ROA coverage lost for %d prefixes: %s", len(lost), ", ".join(lost[:10]))
        log.info("Ownership refreshed: %d records, %d changed", len(new.records), changed)
        return changed

    def _build_snapshot(self, fetched: list[OwnershipRecord]) -> _Snapshot:
        old = self._snap.records
        records: dict[str, OwnershipRecord] = {}
        for rec in fetched:
            if not rec.origins:
                raise RegistryRefreshError(f"{rec.prefix}: no expected origin")
            prefix = normalize_prefix(rec.prefix)
            if prefix in records:
                raise RegistryRefreshError(f"{prefix}: duplicate ownership record")
            prev = old.get(prefix)
            lost = not rec.roas and prev is not None and (bool(prev.roas) or prev.roa_lost)
            records[prefix] = replace(rec, prefix=prefix, roa_lost=lost)

        nets = sorted(
            ((ipaddress.ip_network(p), p) for p in records),
            key=lambda item: item[0].prefixlen,
            reverse=True,
        )
        return _Snapshot(records=MappingProxyType(records), nets=tuple(nets))


class RegistryRefresher(threading.Thread):
    """Background timer that refreshes the registry every *interval_sec*."""

    def __init__(
        self,
        registry: OwnershipRegistry,
        interval_sec: float,
        stop: threading.Event | None = None,
    ) -> None:
        super().__init__(name="registry-refresher", daemon=True)
        self.registry = registry
        self.interval_sec = interval_sec
        self.stop_event = stop or threading.Event()

    def run(self) -> None:
        while not self.stop_event.wait(self.interval_sec):
            try:
                self.registry.refresh()
            except Exception as exc:
                self.registry.last_error = f"{type(exc).__name__}: {exc}"
                log.exception("Ownership refresh crashed; retrying in %.0fs", self.interval_sec)

    def stop(self) -> None:
        self.stop_event.set()
