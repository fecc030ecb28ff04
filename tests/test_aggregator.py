"""Tests for src.monitor.aggregator — candidate merging and the alert lifecycle."""

from __future__ import annotations

from src.contracts.enums import AlertState, Severity
from src.monitor.aggregator import AlertAggregator, merge_cycle
from src.monitor.settings import AggregatorConfig
from tests.conftest import make_candidate, ts_offset


def _feed(agg: AlertAggregator, seconds: int, **kw):
    """One evaluation cycle at BASE+seconds, followed by the timer tick."""
    now = ts_offset(seconds=seconds)
    out = agg.ingest([make_candidate(timestamp=now, **kw)], now)
    out += agg.tick(now)
    return out


# ═══════════════════════════════════════════════════════════════════════════
#  Merging
# ═══════════════════════════════════════════════════════════════════════════

class TestMergeCycle:
    def test_groups_by_identity(self):
        groups = merge_cycle([
            make_candidate(peer_asn=1),
            make_candidate(peer_asn=2, severity=Severity.CRITICAL),
            make_candidate(key="origin=64999"),
        ])
        assert len(groups) == 2
        merged = groups[("203.0.113.0/24", "hijack", "origin=64501")]
        assert merged.severity == Severity.CRITICAL
        assert not merged.clears

    def test_same_cycle_opens_once(self, agg_cfg):
        agg = AlertAggregator(agg_cfg)
        now = ts_offset(seconds=0)
        out = agg.ingest([make_candidate(peer_asn=1), make_candidate(peer_asn=2)], now)
        assert len(out) == 1
        alert = agg.by_id(out[0].alert_id)
        assert alert.candidate_count == 2
        assert alert.peers == {1, 2}


# ═══════════════════════════════════════════════════════════════════════════
#  Lifecycle
# ═══════════════════════════════════════════════════════════════════════════

class TestLifecycle:
    def test_sustained_stream_open_escalate_fade_close(self, agg_cfg):
        agg = AlertAggregator(agg_cfg)
        transitions = []
        for t in range(0, 181, 10):
            sev = Severity.CRITICAL if t >= 90 else Severity.HIGH
            transitions += _feed(agg, t, severity=sev)

        assert [tr.to_state for tr in transitions] == [AlertState.OPEN, AlertState.ESCALATED]
        assert transitions[1].timestamp == ts_offset(seconds=90)

        assert agg.tick(ts_offset(seconds=239)) == []
        faded = agg.tick(ts_offset(seconds=240))
        assert [tr.to_state for tr in faded] == [AlertState.FADING_OFF]
        assert faded[0].from_state == AlertState.ESCALATED

        assert agg.tick(ts_offset(seconds=539)) == []
        closed = agg.tick(ts_offset(seconds=540))
        assert [tr.to_state for tr in closed] == [AlertState.CLOSED]
        assert closed[0].timestamp == ts_offset(seconds=540)

        all_tr = transitions + faded + closed
        assert all(tr.notify for tr in all_tr)
        assert len({tr.alert_id for tr in all_tr}) == 1
        assert agg.active_count() == 0
        assert agg.count_by_state()["closed"] == 1

    def test_history_records_every_state(self, agg_cfg):
        agg = AlertAggregator(agg_cfg)
        (opened,) = _feed(agg, 0)
        agg.tick(ts_offset(seconds=1000))
        alert = agg.by_id(opened.alert_id)
        assert [h["state"] for h in alert.history] == ["open", "fading_off", "closed"]
        # fade and close are stamped at their due times, not at the late tick
        assert alert.history[1]["at"] == ts_offset(seconds=60)
        assert alert.history[2]["at"] == ts_offset(seconds=360)

    def test_no_escalation_for_same_or_lower_severity(self, agg_cfg):
        agg = AlertAggregator(agg_cfg)
        _feed(agg, 0, severity=Severity.HIGH)
        assert _feed(agg, 10, severity=Severity.HIGH) == []
        assert _feed(agg, 20, severity=Severity.LOW) == []

    def test_fading_alert_revives_silently(self, agg_cfg):
        agg = AlertAggregator(agg_cfg)
        _feed(agg, 0)
        faded = agg.tick(ts_offset(seconds=60))
        assert faded[0].to_state == AlertState.FADING_OFF
        assert _feed(agg, 100) == []
        alert = agg.by_id(faded[0].alert_id)
        assert alert.state == AlertState.OPEN
        assert alert.history[-1]["reason"] == "revived"

    def test_revive_with_higher_severity_escalates(self, agg_cfg):
        agg = AlertAggregator(agg_cfg)
        _feed(agg, 0, severity=Severity.MEDIUM)
        agg.tick(ts_offset(seconds=60))
        out = _feed(agg, 100, severity=Severity.CRITICAL)
        assert [tr.to_state for tr in out] == [AlertState.ESCALATED]
        assert out[0].from_state == AlertState.FADING_OFF

    def test_revived_escalated_alert_returns_to_escalated(self, agg_cfg):
        agg = AlertAggregator(agg_cfg)
        _feed(agg, 0, severity=Severity.HIGH)
        _feed(agg, 10, severity=Severity.CRITICAL)
        agg.tick(ts_offset(seconds=70))
        _feed(agg, 80, severity=Severity.HIGH)
        (alert,) = agg.alerts()
        assert alert.state == AlertState.ESCALATED

    def test_closed_identity_opens_new_alert(self, agg_cfg):
        agg = AlertAggregator(agg_cfg)
        (first,) = _feed(agg, 0)
        agg.tick(ts_offset(seconds=1000))
        (second,) = _feed(agg, 1010)
        assert second.to_state == AlertState.OPEN
        assert second.alert_id != first.alert_id
        assert len(agg.alerts(include_closed=True)) == 2

    def test_independent_identities(self, agg_cfg):
        agg = AlertAggregator(agg_cfg)
        _feed(agg, 0, key="origin=64666")
        _feed(agg, 0, key="origin=64667")
        _feed(agg, 0, classifier="rpki", key="invalid origin=64666")
        assert agg.active_count() == 3


# ═══════════════════════════════════════════════════════════════════════════
#  Clearing candidates
# ═══════════════════════════════════════════════════════════════════════════

class TestClears:
    def test_clear_moves_active_alert_to_fading(self, agg_cfg):
        agg = AlertAggregator(agg_cfg)
        _feed(agg, 0, classifier="visibility", key="visibility")
        out = _feed(agg, 20, classifier="visibility", key="visibility",
                    severity=Severity.LOW, clears=True)
        assert [tr.to_state for tr in out] == [AlertState.FADING_OFF]
        assert out[0].reason == "cleared"

    def test_clear_without_alert_is_ignored(self, agg_cfg):
        agg = AlertAggregator(agg_cfg)
        assert _feed(agg, 0, clears=True) == []
        assert agg.active_count() == 0

    def test_real_signal_wins_over_clear_in_same_cycle(self, agg_cfg):
        agg = AlertAggregator(agg_cfg)
        now = ts_offset(seconds=0)
        out = agg.ingest([make_candidate(clears=True), make_candidate(peer_asn=174)], now)
        assert [tr.to_state for tr in out] == [AlertState.OPEN]
        assert agg.alerts()[0].peers == {174}


# ═══════════════════════════════════════════════════════════════════════════
#  Configuration / dispatch bookkeeping
# ═══════════════════════════════════════════════════════════════════════════

class TestConfig:
    def test_per_classifier_fade_off(self, agg_cfg):
        agg = AlertAggregator(agg_cfg, fade_off_for=lambda c: 300 if c == "visibility" else 60)
        _feed(agg, 0, classifier="visibility", key="visibility")
        _feed(agg, 0)
        out = agg.tick(ts_offset(seconds=120))
        assert [tr.identity[1] for tr in out] == ["hijack"]

    def test_notify_states_filter(self):
        cfg = AggregatorConfig(notify_states=frozenset({AlertState.OPEN, AlertState.ESCALATED}))
        agg = AlertAggregator(cfg)
        (opened,) = _feed(agg, 0)
        (faded,) = agg.tick(ts_offset(seconds=60))
        assert opened.notify
        assert not faded.notify

    def test_pending_dispatch_forces_notify(self):
        cfg = AggregatorConfig(notify_states=frozenset({AlertState.OPEN}))
        agg = AlertAggregator(cfg)
        (opened,) = _feed(agg, 0)
        agg.mark_dispatch_failed(opened.alert_id)
        (faded,) = agg.tick(ts_offset(seconds=60))
        assert faded.notify

    def test_record_dispatch_clears_pending(self, agg_cfg):
        agg = AlertAggregator(agg_cfg)
        (opened,) = _feed(agg, 0)
        agg.mark_dispatch_failed(opened.alert_id)
        agg.record_dispatch(opened.alert_id, {"sink": "log", "state": "open"})
        alert = agg.by_id(opened.alert_id)
        assert not alert.pending_dispatch
        assert alert.dispatches == [{"sink": "log", "state": "open"}]

    def test_unknown_alert_ids_ignored(self, agg_cfg):
        agg = AlertAggregator(agg_cfg)
        agg.record_dispatch("ALR-9999", {})
        agg.mark_dispatch_failed("ALR-9999")

    def test_evidence_capped(self):
        agg = AlertAggregator(AggregatorConfig(max_evidence=3))
        for t in range(0, 50, 10):
            _feed(agg, t)
        (alert,) = agg.alerts()
        assert len(alert.evidence) == 3
        assert alert.candidate_count == 5
        assert alert.evidence[-1]["timestamp"] == ts_offset(seconds=40)

    def test_snapshot_taken_at_transition_time(self, agg_cfg):
        agg = AlertAggregator(agg_cfg)
        (opened,) = _feed(agg, 0)
        _feed(agg, 10, peer_asn=174)
        assert opened.snapshot["peers"] == [3356]
        assert opened.snapshot["state"] == "open"
