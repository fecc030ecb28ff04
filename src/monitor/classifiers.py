"""Classifiers — rule-based monitors: StateDiff (+ ownership) → AlertCandidates.

Every classifier implements one capability, ``evaluate(diff, ownership)``,
and keeps no state between calls: everything it needs travels in the diff
(the RIB tracker pre-computes the cross-peer counts) or in the ownership
record.  Thresholds come from ``ClassifierConfig`` at construction.

Defined classifiers
───────────────────
  hijack      — origin ∉ expected origins, seen by ≥ threshold_min_peers
  rpki        — ROV invalid; optionally not-found and ROA disappearance
  path        — configured path rules (regex / length / required transit)
                and AS-path loops, independent of origin
  visibility  — prefix drops below threshold_min_peers observing peers;
                recovery above the threshold emits a clearing candidate

New classifiers subclass ``BaseClassifier`` and register in
``CLASSIFIER_REGISTRY``.
"""

from __future__ import annotations

import abc
import ipaddress
import logging
import re
from dataclasses import dataclass
from typing import Any

from src.contracts.alert import AlertCandidate
from src.contracts.enums import ClassifierKind, DiffKind, EventKind, RpkiValidity, Severity
from src.contracts.errors import ConfigError
from src.contracts.ownership import OwnershipRecord
from src.contracts.route import StateDiff
from src.monitor.settings import ClassifierConfig

log = logging.getLogger(__name__)


class BaseClassifier(abc.ABC):
    """Pure evaluator; subclasses implement ``_evaluate``."""

    kind: ClassifierKind

    def __init__(self, cfg: ClassifierConfig | None = None) -> None:
        self.cfg = cfg or ClassifierConfig()

    @property
    def name(self) -> str:
        return self.kind.value

    def evaluate(
        self,
        diff: StateDiff,
        ownership: OwnershipRecord | None,
    ) -> list[AlertCandidate]:
        """Return zero or more candidates for *diff*.

        Diffs flagged unstable (sequence gap on the prefix) are skipped for
        their evaluation cycle.
        """
        if not self.cfg.enabled or diff.unstable:
            return []
        return self._evaluate(diff, ownership)

    @abc.abstractmethod
    def _evaluate(
        self,
        diff: StateDiff,
        ownership: OwnershipRecord | None,
    ) -> list[AlertCandidate]: ...

    def _candidate(
        self,
        diff: StateDiff,
        severity: Severity,
        key: str,
        description: str,
        clears: bool = False,
        **extra: Any,
    ) -> AlertCandidate:
        evidence = diff.evidence()
        evidence.update(extra)
        return AlertCandidate(
            classifier=self.name,
            prefix=diff.prefix,
            peer_asn=diff.peer_asn,
            severity=severity,
            key=key,
            timestamp=diff.event.timestamp,
            description=description,
            evidence=evidence,
            clears=clears,
        )


def _announced(diff: StateDiff) -> bool:
    return diff.event.kind == EventKind.ANNOUNCE and diff.change != DiffKind.WITHDRAWN


# ═══════════════════════════════════════════════════════════════════════════
#  Hijack
# ═══════════════════════════════════════════════════════════════════════════


class HijackClassifier(BaseClassifier):
    """Unexpected origin for a monitored prefix (exact or more-specific)."""

    kind = ClassifierKind.HIJACK

    def _evaluate(self, diff, ownership):
        if ownership is None or not _announced(diff):
            return []
        origin = diff.new.origin
        if origin is None or origin in ownership.origins:
            return []
        observers = len(diff.origin_peers)
        if observers < self.cfg.threshold_min_peers:
            log.debug(
                "Hijack suppressed: %s origin AS%d seen by %d < %d peers",
                diff.prefix, origin, observers, self.cfg.threshold_min_peers,
            )
            return []

        exact = diff.prefix == ownership.prefix
        if exact:
            severity = self.cfg.severity or Severity.CRITICAL
            what = f"origin hijack: {diff.prefix} announced by AS{origin}"
        else:
            severity = self.cfg.severity or Severity.HIGH
            what = f"sub-prefix hijack: {diff.prefix} (within {ownership.prefix}) announced by AS{origin}"
        expected = ", ".join(f"AS{a}" for a in sorted(ownership.origins))
        return [
            self._candidate(
                diff,
                severity,
                key=f"origin={origin}",
                description=f"{what}; expected {expected}; seen by {observers} peers",
                origin=origin,
                expected_origins=sorted(ownership.origins),
                observers=sorted(diff.origin_peers),
            )
        ]


# ═══════════════════════════════════════════════════════════════════════════
#  RPKI
# ═══════════════════════════════════════════════════════════════════════════


class RpkiClassifier(BaseClassifier):
    """Route origin validation of new announcements against the ROA set."""

    kind = ClassifierKind.RPKI

    def _evaluate(self, diff, ownership):
        out: list[AlertCandidate] = []

        # new or changed announcements only
        if (
            ownership is not None
            and ownership.roa_lost
            and self.cfg.check_disappearing
            and _announced(diff)
            and diff.change != DiffKind.REFRESHED
        ):
            out.append(
                self._candidate(
                    diff,
                    Severity.MEDIUM,
                    key="roa-disappeared",
                    description=f"ROA coverage for {ownership.prefix} disappeared",
                )
            )

        if not _announced(diff) or len(diff.origin_peers) < self.cfg.threshold_min_peers:
            return out
        origin = diff.new.origin
        validity = (
            ownership.validate(diff.prefix, origin)
            if ownership is not None
            else RpkiValidity.NOT_FOUND
        )

        if validity == RpkiValidity.INVALID:
            out.append(
                self._candidate(
                    diff,
                    self.cfg.severity or Severity.HIGH,
                    key=f"invalid origin={origin}",
                    description=f"RPKI invalid: {diff.prefix} originated by AS{origin}",
                    origin=origin,
                    validity=validity.value,
                )
            )
        elif validity == RpkiValidity.NOT_FOUND and self.cfg.check_uncovered:
            out.append(
                self._candidate(
                    diff,
                    Severity.MEDIUM,
                    key="not-found",
                    description=f"RPKI not-found: no ROA covers {diff.prefix}",
                    origin=origin,
                    validity=validity.value,
                )
            )
        return out


# ═══════════════════════════════════════════════════════════════════════════
#  Path
# ═══════════════════════════════════════════════════════════════════════════


@dataclass(slots=True)
class PathRule:
    """Compiled path rule; all configured conditions must hold to fire."""

    name: str
    match: re.Pattern[str] | None
    not_match: re.Pattern[str] | None
    max_length: int | None
    min_length: int | None
    must_include: frozenset[int]
    prefixes: tuple[ipaddress.IPv4Network | ipaddress.IPv6Network, ...]
    severity: Severity

    def applies_to(self, prefix: str) -> bool:
        if not self.prefixes:
            return True
        net = ipaddress.ip_network(prefix, strict=False)
        return any(net.version == p.version and net.subnet_of(p) for p in self.prefixes)

    def fires(self, path: tuple[int, ...]) -> bool:
        text = " ".join(str(a) for a in path)
        length = len(_collapse_prepends(path))
        if self.match is not None and not self.match.search(text):
            return False
        if self.not_match is not None and self.not_match.search(text):
            return False
        if self.max_length is not None and length <= self.max_length:
            return False
        if self.min_length is not None and length >= self.min_length:
            return False
        if self.must_include and self.must_include.intersection(path):
            return False
        return True


def compile_rule(raw: dict[str, Any], default_severity: Severity) -> PathRule:
    name = raw.get("name")
    if not name:
        raise ConfigError("path rule without a name")
    conditions = ("match", "not_match", "max_length", "min_length", "must_include")
    if not any(raw.get(c) is not None for c in conditions):
        raise ConfigError(f"path rule '{name}' has no condition")
    try:
        return PathRule(
            name=name,
            match=re.compile(raw["match"]) if raw.get("match") else None,
            not_match=re.compile(raw["not_match"]) if raw.get("not_match") else None,
            max_length=int(raw["max_length"]) if raw.get("max_length") is not None else None,
            min_length=int(raw["min_length"]) if raw.get("min_length") is not None else None,
            must_include=frozenset(int(a) for a in raw.get("must_include") or ()),
            prefixes=tuple(ipaddress.ip_network(p, strict=False) for p in raw.get("prefixes") or ()),
            severity=Severity(raw["severity"]) if raw.get("severity") else default_severity,
        )
    except (re.error, ValueError) as exc:
        raise ConfigError(f"path rule '{name}': {exc}") from exc


def _collapse_prepends(path: tuple[int, ...]) -> list[int]:
    out: list[int] = []
    for asn in path:
        if not out or out[-1] != asn:
            out.append(asn)
    return out


def has_loop(path: tuple[int, ...]) -> bool:
    """True when an ASN recurs non-consecutively (prepending is not a loop)."""
    collapsed = _collapse_prepends(path)
    return len(set(collapsed)) < len(collapsed)


class PathClassifier(BaseClassifier):
    """Suspicious AS-path shapes on new or changed announcements."""

    kind = ClassifierKind.PATH

    def __init__(self, cfg: ClassifierConfig | None = None) -> None:
        super().__init__(cfg)
        default = self.cfg.severity or Severity.MEDIUM
        self.rules = [compile_rule(r, default) for r in self.cfg.rules]

    def _evaluate(self, diff, ownership):
        if not _announced(diff) or not diff.path_changed:
            return []
        path = diff.new.as_path
        out: list[AlertCandidate] = []

        if self.cfg.detect_loops and has_loop(path):
            out.append(
                self._candidate(
                    diff,
                    Severity.HIGH,
                    key="loop",
                    description=f"AS-path loop for {diff.prefix}: {' '.join(map(str, path))}",
                )
            )

        for rule in self.rules:
            if rule.applies_to(diff.prefix) and rule.fires(path):
                out.append(
                    self._candidate(
                        diff,
                        rule.severity,
                        key=f"rule={rule.name}",
                        description=(
                            f"path rule '{rule.name}' matched for {diff.prefix}: "
                            f"{' '.join(map(str, path))}"
                        ),
                        rule=rule.name,
                    )
                )
        return out


# ═══════════════════════════════════════════════════════════════════════════
#  Visibility
# ═══════════════════════════════════════════════════════════════════════════


class VisibilityClassifier(BaseClassifier):
    """Loss (and recovery) of multi-peer visibility for a monitored prefix.

    A prefix counts as lost once fewer than ``threshold_min_peers`` see it
    and at least ``min_drop_peers`` dropped away from the peak of the
    tracker's window (``window_seconds``).  The candidate is emitted on the
    withdrawal that first meets both conditions, so a drop from 6 to 2 peers
    with threshold 5 yields exactly one; a slow drift across the threshold
    never meets the drop condition inside one window.
    """

    kind = ClassifierKind.VISIBILITY

    def _evaluate(self, diff, ownership):
        if ownership is None:
            return []
        thr = self.cfg.threshold_min_peers
        peak = max(diff.visible_peak, diff.visible_before)

        def lost(count: int) -> bool:
            return peak >= thr > count and peak - count >= self.cfg.min_drop_peers

        if diff.change == DiffKind.WITHDRAWN and lost(diff.visible_after) and not lost(diff.visible_before):
            return [
                self._candidate(
                    diff,
                    self.cfg.severity or Severity.HIGH,
                    key="visibility",
                    description=(
                        f"visibility loss: {diff.prefix} seen by {diff.visible_after} peers "
                        f"(peak {peak} within {self.cfg.window_seconds}s, threshold {thr})"
                    ),
                    visible_peers=diff.visible_after,
                    visible_peak=peak,
                )
            ]

        if diff.change == DiffKind.NEW and diff.visible_before < thr <= diff.visible_after:
            return [
                self._candidate(
                    diff,
                    Severity.LOW,
                    key="visibility",
                    description=f"visibility restored: {diff.prefix} seen by {diff.visible_after} peers",
                    clears=True,
                    visible_peers=diff.visible_after,
                )
            ]
        return []


# ═══════════════════════════════════════════════════════════════════════════
#  Registry / helpers
# ═══════════════════════════════════════════════════════════════════════════

CLASSIFIER_REGISTRY: dict[str, type[BaseClassifier]] = {
    ClassifierKind.HIJACK.value: HijackClassifier,
    ClassifierKind.RPKI.value: RpkiClassifier,
    ClassifierKind.PATH.value: PathClassifier,
    ClassifierKind.VISIBILITY.value: VisibilityClassifier,
}


def build_classifiers(monitors: dict[str, ClassifierConfig]) -> list[BaseClassifier]:
    """Instantiate the enabled classifiers; an empty mapping enables all defaults."""
    if not monitors:
        return [cls() for cls in CLASSIFIER_REGISTRY.values()]
    out: list[BaseClassifier] = []
    for name, cfg in monitors.items():
        if not cfg.enabled:
            log.info("Monitor '%s' disabled", name)
            continue
        cls = CLASSIFIER_REGISTRY.get(name)
        if cls is None:
            raise ConfigError(f"unknown monitor '{name}'")
        out.append(cls(cfg))
    log.info("Built %d classifiers: %s", len(out), ", ".join(c.name for c in out))
    return out


def classify(
    diff: StateDiff,
    ownership: OwnershipRecord | None,
    classifiers: list[BaseClassifier],
) -> list[AlertCandidate]:
    """Run every classifier on *diff*; a failing classifier only loses its output."""
    out: list[AlertCandidate] = []
    for c in classifiers:
        try:
            out.extend(c.evaluate(diff, ownership))
        except (ValueError, TypeError, KeyError, IndexError) as exc:
            log.error("Classifier %s failed on %s from AS%d: %s",
                      c.name, diff.prefix, diff.peer_asn, exc)
    return out
