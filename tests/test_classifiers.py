"""Tests for src.monitor.classifiers — hijack, RPKI, path and visibility monitors."""

from __future__ import annotations

import pytest

from src.contracts.enums import DiffKind, EventKind, Severity
from src.contracts.errors import ConfigError
from src.monitor.classifiers import (
    BaseClassifier,
    HijackClassifier,
    PathClassifier,
    RpkiClassifier,
    VisibilityClassifier,
    build_classifiers,
    classify,
    compile_rule,
    has_loop,
)
from src.monitor.rib import RibTracker
from src.monitor.settings import ClassifierConfig
from tests.conftest import make_diff, make_event, make_record, ts_offset

P = "203.0.113.0/24"

# ═══════════════════════════════════════════════════════════════════════════
#  Hijack
# ═══════════════════════════════════════════════════════════════════════════

class TestHijack:
    def _clf(self, threshold: int = 2) -> HijackClassifier:
        return HijackClassifier(ClassifierConfig(threshold_min_peers=threshold))

    def test_expected_origin_is_quiet(self):
        diff = make_diff(event=make_event(as_path=(3356, 64500)), origin_peers=frozenset({1, 2, 3}))
        assert self._clf().evaluate(diff, make_record()) == []

    def test_foreign_origin_above_threshold(self):
        diff = make_diff(event=make_event(as_path=(3356, 64666)), origin_peers=frozenset({3356, 174}))
        (cand,) = self._clf().evaluate(diff, make_record())
        assert cand.classifier == "hijack"
        assert cand.severity == Severity.CRITICAL
        assert cand.key == "origin=64666"
        assert cand.evidence["expected_origins"] == [64500]
        assert cand.evidence["observers"] == [174, 3356]

    def test_below_threshold_suppressed(self):
        diff = make_diff(event=make_event(as_path=(3356, 64666)), origin_peers=frozenset({3356}))
        assert self._clf().evaluate(diff, make_record()) == []

    def test_subprefix_is_high(self):
        ev = make_event(prefix="203.0.113.0/25", as_path=(3356, 64666))
        diff = make_diff(event=ev, origin_peers=frozenset({3356, 174}))
        (cand,) = self._clf().evaluate(diff, make_record())
        assert cand.severity == Severity.HIGH
        assert "sub-prefix" in cand.description

    def test_unmonitored_prefix_ignored(self):
        diff = make_diff(event=make_event(as_path=(3356, 64666)), origin_peers=frozenset({1, 2}))
        assert self._clf().evaluate(diff, None) == []

    def test_withdrawal_ignored(self):
        diff = make_diff(event=make_event(kind=EventKind.WITHDRAW))
        assert self._clf(1).evaluate(diff, make_record()) == []

    def test_unstable_diff_skipped(self):
        diff = make_diff(event=make_event(as_path=(3356, 64666)),
                         origin_peers=frozenset({1, 2}), unstable=True)
        assert self._clf().evaluate(diff, make_record()) == []

    def test_disabled(self):
        clf = HijackClassifier(ClassifierConfig(enabled=False))
        diff = make_diff(event=make_event(as_path=(3356, 64666)))
        assert clf.evaluate(diff, make_record()) == []

    def test_threshold_through_rib(self):
        """Two peers must see the foreign origin before exactly one candidate appears."""
        rib = RibTracker()
        clf = self._clf(2)
        own = make_record()
        cands = []
        for peer in (3356, 174, 1299):
            diff = rib.apply(make_event(peer_asn=peer, as_path=(peer, 64500)))
            cands += clf.evaluate(diff, own)
        assert cands == []
        first = rib.apply(make_event(peer_asn=3356, sequence=2, as_path=(3356, 64666)))
        assert clf.evaluate(first, own) == []
        second = rib.apply(make_event(peer_asn=174, sequence=2, as_path=(174, 64666)))
        out = clf.evaluate(second, own)
        assert len(out) == 1
        assert out[0].severity == Severity.CRITICAL


# ═══════════════════════════════════════════════════════════════════════════
#  RPKI
# ═══════════════════════════════════════════════════════════════════════════

class TestRpki:
    def test_valid_is_quiet(self):
        diff = make_diff(event=make_event(as_path=(3356, 64500)))
        assert RpkiClassifier().evaluate(diff, make_record()) == []

    def test_invalid_origin(self):
        diff = make_diff(event=make_event(as_path=(3356, 64666)))
        (cand,) = RpkiClassifier().evaluate(diff, make_record())
        assert cand.key == "invalid origin=64666"
        assert cand.severity == Severity.HIGH
        assert cand.evidence["validity"] == "invalid"

    def test_invalid_length_with_legit_origin(self):
        diff = make_diff(event=make_event(prefix="203.0.113.0/25", as_path=(3356, 64500)))
        (cand,) = RpkiClassifier().evaluate(diff, make_record())
        assert cand.key == "invalid origin=64500"

    def test_not_found_only_when_enabled(self):
        diff = make_diff(event=make_event())
        rec = make_record(roas=())
        assert RpkiClassifier().evaluate(diff, rec) == []
        (cand,) = RpkiClassifier(ClassifierConfig(check_uncovered=True)).evaluate(diff, rec)
        assert cand.key == "not-found"
        assert cand.severity == Severity.MEDIUM

    def test_roa_disappeared(self):
        clf = RpkiClassifier(ClassifierConfig(check_disappearing=True))
        diff = make_diff(event=make_event())
        out = clf.evaluate(diff, make_record(roas=(), roa_lost=True))
        assert [c.key for c in out] == ["roa-disappeared"]

    def test_roa_disappeared_not_repeated_on_withdrawal_or_refresh(self):
        clf = RpkiClassifier(ClassifierConfig(check_disappearing=True))
        rec = make_record(roas=(), roa_lost=True)
        withdrawn = make_diff(event=make_event(kind=EventKind.WITHDRAW))
        refreshed = make_diff(event=make_event(sequence=2), change=DiffKind.REFRESHED)
        changed = make_diff(event=make_event(sequence=3, as_path=(3356, 174, 64500)),
                            change=DiffKind.PATH_CHANGED)
        assert clf.evaluate(withdrawn, rec) == []
        assert clf.evaluate(refreshed, rec) == []
        assert [c.key for c in clf.evaluate(changed, rec)] == ["roa-disappeared"]

    def test_severity_override(self):
        clf = RpkiClassifier(ClassifierConfig(severity=Severity.CRITICAL))
        diff = make_diff(event=make_event(as_path=(3356, 64666)))
        assert clf.evaluate(diff, make_record())[0].severity == Severity.CRITICAL


# ═══════════════════════════════════════════════════════════════════════════
#  Path
# ═══════════════════════════════════════════════════════════════════════════

class TestPath:
    def test_loop_detection(self):
        assert has_loop((3356, 174, 3356, 64500))
        assert not has_loop((3356, 3356, 3356, 64500))

    def test_loop_candidate(self):
        diff = make_diff(event=make_event(as_path=(3356, 174, 3356, 64500)))
        (cand,) = PathClassifier().evaluate(diff, make_record())
        assert cand.key == "loop"

    def test_regex_rule(self):
        clf = PathClassifier(ClassifierConfig(rules=[
            {"name": "leak", "match": r"\b64510\b", "severity": "high"},
        ]))
        hit = make_diff(event=make_event(as_path=(3356, 64510, 64500)))
        miss = make_diff(event=make_event(as_path=(3356, 645100, 64500)))
        (cand,) = clf.evaluate(hit, make_record())
        assert cand.key == "rule=leak"
        assert cand.severity == Severity.HIGH
        assert clf.evaluate(miss, make_record()) == []

    def test_max_length_counts_unique_hops(self):
        clf = PathClassifier(ClassifierConfig(rules=[{"name": "long", "max_length": 3}]))
        prepended = make_diff(event=make_event(as_path=(3356, 64500, 64500, 64500, 64500)))
        long_path = make_diff(event=make_event(as_path=(3356, 174, 1299, 64500)))
        assert clf.evaluate(prepended, make_record()) == []
        (cand,) = clf.evaluate(long_path, make_record())
        assert cand.severity == Severity.MEDIUM

    def test_must_include(self):
        clf = PathClassifier(ClassifierConfig(rules=[{"name": "via-transit", "must_include": [174]}]))
        assert clf.evaluate(make_diff(event=make_event(as_path=(174, 64500))), None) == []
        assert len(clf.evaluate(make_diff(event=make_event(as_path=(3356, 64500))), None)) == 1

    def test_rule_prefix_scope(self):
        clf = PathClassifier(ClassifierConfig(rules=[
            {"name": "scoped", "match": "3356", "prefixes": ["198.51.100.0/23"]},
        ]))
        assert clf.evaluate(make_diff(event=make_event()), None) == []

    def test_refresh_not_reevaluated(self):
        clf = PathClassifier()
        diff = make_diff(event=make_event(as_path=(3356, 174, 3356, 64500)),
                         change=DiffKind.REFRESHED)
        assert clf.evaluate(diff, None) == []

    def test_rule_without_condition_rejected(self):
        with pytest.raises(ConfigError):
            compile_rule({"name": "empty"}, Severity.LOW)

    def test_bad_regex_rejected(self):
        with pytest.raises(ConfigError):
            compile_rule({"name": "bad", "match": "("}, Severity.LOW)


# ═══════════════════════════════════════════════════════════════════════════
#  Visibility
# ═══════════════════════════════════════════════════════════════════════════

class TestVisibility:
    def test_drop_six_to_two_yields_one_candidate(self):
        rib = RibTracker()
        clf = VisibilityClassifier(ClassifierConfig(threshold_min_peers=5))
        own = make_record()
        peers = [1, 2, 3, 4, 5, 6]
        initial = []
        for p in peers:
            initial += clf.evaluate(rib.apply(make_event(peer_asn=p, as_path=(p, 64500))), own)
        # crossing the threshold upwards only ever produces a clearing signal
        assert all(c.clears for c in initial)

        cands = []
        for p in peers[:4]:
            diff = rib.apply(make_event(peer_asn=p, sequence=2, kind=EventKind.WITHDRAW))
            cands += clf.evaluate(diff, own)
        assert len(cands) == 1
        assert cands[0].key == "visibility"
        assert cands[0].evidence["visible_peers"] == 4

        # recovery above the threshold clears
        recovered = []
        for p in peers[:4]:
            diff = rib.apply(make_event(peer_asn=p, sequence=3, as_path=(p, 64500)))
            recovered += clf.evaluate(diff, own)
        assert len(recovered) == 1
        assert recovered[0].clears

    def test_slow_drift_below_threshold_stays_quiet(self):
        # one peer lost per day: each step leaves the window with a single-peer drop
        rib = RibTracker(visibility_window_sec=300)
        clf = VisibilityClassifier(ClassifierConfig(threshold_min_peers=5, window_seconds=300))
        own = make_record()
        peers = [1, 2, 3, 4, 5, 6]
        for p in peers:
            rib.apply(make_event(peer_asn=p, as_path=(p, 64500)))

        cands = []
        for day, p in enumerate(peers[:4], start=1):
            diff = rib.apply(make_event(peer_asn=p, sequence=2, kind=EventKind.WITHDRAW,
                                        timestamp=ts_offset(seconds=86400 * day)))
            cands += clf.evaluate(diff, own)
        assert len(rib.visible_peers(P)) == 2
        assert cands == []

    def test_sudden_drop_after_quiet_period_fires_once(self):
        rib = RibTracker(visibility_window_sec=300)
        clf = VisibilityClassifier(ClassifierConfig(threshold_min_peers=5, window_seconds=300))
        own = make_record()
        peers = [1, 2, 3, 4, 5, 6]
        for p in peers:
            rib.apply(make_event(peer_asn=p, as_path=(p, 64500)))

        cands = []
        for i, p in enumerate(peers[:4]):
            diff = rib.apply(make_event(peer_asn=p, sequence=2, kind=EventKind.WITHDRAW,
                                        timestamp=ts_offset(seconds=86400 + 10 * i)))
            cands += clf.evaluate(diff, own)
        assert len(cands) == 1
        assert cands[0].evidence["visible_peak"] == 6
        assert cands[0].evidence["visible_peers"] == 4

    def test_single_peer_dip_under_threshold_is_not_loss(self):
        diff = make_diff(event=make_event(kind=EventKind.WITHDRAW), visible_before=5, visible_after=4)
        clf = VisibilityClassifier(ClassifierConfig(threshold_min_peers=5))
        assert clf.evaluate(diff, make_record()) == []
        diff = make_diff(event=make_event(kind=EventKind.WITHDRAW), visible_before=5, visible_after=4,
                         visible_peak=7)
        assert len(clf.evaluate(diff, make_record())) == 1

    def test_unmonitored_ignored(self):
        diff = make_diff(event=make_event(kind=EventKind.WITHDRAW), visible_before=5, visible_after=0)
        assert VisibilityClassifier(ClassifierConfig(threshold_min_peers=3)).evaluate(diff, None) == []


# ═══════════════════════════════════════════════════════════════════════════
#  Registry / classify()
# ═══════════════════════════════════════════════════════════════════════════

class TestBuild:
    def test_defaults_build_all(self):
        names = [c.name for c in build_classifiers({})]
        assert names == ["hijack", "rpki", "path", "visibility"]

    def test_disabled_skipped(self):
        out = build_classifiers({"hijack": ClassifierConfig(), "rpki": ClassifierConfig(enabled=False)})
        assert [c.name for c in out] == ["hijack"]

    def test_failing_classifier_isolated(self):
        class Broken(BaseClassifier):
            kind = HijackClassifier.kind

            def _evaluate(self, diff, ownership):
                raise KeyError("boom")

        diff = make_diff(event=make_event(as_path=(3356, 174, 3356, 64500)))
        out = classify(diff, make_record(), [Broken(), PathClassifier()])
        assert [c.key for c in out] == ["loop"]

    def test_classify_combines_outputs(self):
        diff = make_diff(event=make_event(as_path=(3356, 64666)), origin_peers=frozenset({3356}),
                         visible_before=3, visible_after=3)
        out = classify(diff, make_record(), build_classifiers({}))
        assert {c.classifier for c in out} == {"hijack", "rpki"}
        assert P in {c.prefix for c in out}
