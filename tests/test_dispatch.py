"""Tests for src.monitor.dispatch — sinks, retry/backoff and shutdown behaviour."""

from __future__ import annotations

import json
import logging
import threading
import time

import pytest
import requests

from src.contracts.enums import AlertState
from src.contracts.errors import DispatchFailed
from src.monitor.aggregator import AlertAggregator, Transition
from src.monitor.dispatch import (
    Dispatcher,
    JsonlFileSink,
    LogSink,
    WebhookSink,
    _Job,
    build_sinks,
)
from src.monitor.settings import DispatchConfig
from tests.conftest import make_candidate, ts_offset

SNAP = {
    "alert_id": "ALR-0001",
    "prefix": "203.0.113.0/24",
    "classifier": "hijack",
    "key": "origin=64666",
    "state": "open",
    "severity": "critical",
    "description": "origin hijack",
}


class FlakySink:
    """Fails the first *failures* sends, then succeeds."""

    def __init__(self, failures: int, name: str = "flaky") -> None:
        self.name = name
        self.failures = failures
        self.calls = 0
        self.delivered: list[dict] = []

    def send(self, snapshot):
        self.calls += 1
        if self.calls <= self.failures:
            raise DispatchFailed(f"{self.name}: attempt {self.calls} refused")
        self.delivered.append(snapshot)


def _transition(alert_id: str = "ALR-0001", notify: bool = True, state: str = "open") -> Transition:
    return Transition(
        alert_id=alert_id,
        identity=("203.0.113.0/24", "hijack", "origin=64666"),
        from_state=None,
        to_state=AlertState(state),
        timestamp=ts_offset(seconds=0),
        reason="first_candidate",
        snapshot={**SNAP, "alert_id": alert_id, "state": state},
        notify=notify,
    )


# ═══════════════════════════════════════════════════════════════════════════
#  Backoff / retries
# ═══════════════════════════════════════════════════════════════════════════

class TestRetry:
    def test_backoff_doubles_and_caps(self):
        d = Dispatcher([], DispatchConfig(base_delay_sec=1.0, max_delay_sec=5.0))
        assert [d.backoff(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_success_after_failures_records_once(self, fast_dispatch_cfg):
        sink = FlakySink(failures=3)
        records = []
        d = Dispatcher([sink], fast_dispatch_cfg, on_success=lambda i, r: records.append((i, r)))
        assert d.deliver(_Job("ALR-0001", SNAP, sink))
        assert sink.calls == 4
        assert len(sink.delivered) == 1
        assert len(records) == 1
        assert records[0][0] == "ALR-0001"
        assert records[0][1]["attempts"] == 4
        assert records[0][1]["sink"] == "flaky"
        assert d.failures == []

    def test_exhaustion_reports_dispatch_failed(self, fast_dispatch_cfg, caplog):
        sink = FlakySink(failures=99)
        failed = []
        d = Dispatcher([sink], fast_dispatch_cfg, on_failure=failed.append)
        with caplog.at_level(logging.WARNING, logger="src.monitor.dispatch"):
            assert not d.deliver(_Job("ALR-0001", SNAP, sink))
        assert sink.calls == fast_dispatch_cfg.max_attempts
        assert failed == ["ALR-0001"]
        assert len(d.failures) == 1
        assert isinstance(d.failures[0], DispatchFailed)
        assert "DispatchFailed" in caplog.text

    def test_exhaustion_flags_alert_pending(self, fast_dispatch_cfg):
        agg = AlertAggregator()
        now = ts_offset(seconds=0)
        (tr,) = agg.ingest([make_candidate(timestamp=now)], now)
        d = Dispatcher([FlakySink(failures=99)], fast_dispatch_cfg,
                       on_success=agg.record_dispatch, on_failure=agg.mark_dispatch_failed).start()
        d.submit(tr)
        assert d.flush(timeout=5.0)
        d.shutdown()
        alert = agg.by_id(tr.alert_id)
        assert alert.pending_dispatch
        assert alert.state == AlertState.OPEN
        assert alert.dispatches == []

    def test_one_sink_failing_does_not_block_another(self):
        # bad sink spends 0.1 + 0.2 s in backoff per alert
        cfg = DispatchConfig(max_attempts=3, base_delay_sec=0.1, max_delay_sec=1.0)
        good, bad = FlakySink(0, "good"), FlakySink(99, "bad")
        arrived: dict[str, float] = {}
        original = good.send

        def send(snapshot):
            original(snapshot)
            arrived[snapshot["alert_id"]] = time.monotonic()

        good.send = send
        d = Dispatcher([bad, good], cfg).start()
        submitted = time.monotonic()
        d.submit(_transition())
        d.submit(_transition(alert_id="ALR-0002"))
        assert d.flush(timeout=5.0)
        d.shutdown()
        assert [s["alert_id"] for s in good.delivered] == ["ALR-0001", "ALR-0002"]
        assert max(arrived.values()) - submitted < 0.25
        assert d.delivered == 2
        assert len(d.failures) == 2
        assert bad.calls == 6


# ═══════════════════════════════════════════════════════════════════════════
#  Worker lifecycle
# ═══════════════════════════════════════════════════════════════════════════

class TestWorker:
    def test_submit_skips_silent_transitions(self, fast_dispatch_cfg):
        sink = FlakySink(0)
        d = Dispatcher([sink], fast_dispatch_cfg).start()
        d.submit(_transition(notify=False))
        d.submit(_transition(alert_id="ALR-0002"))
        assert d.flush(timeout=5.0)
        d.shutdown()
        assert [s["alert_id"] for s in sink.delivered] == ["ALR-0002"]

    def test_delivery_order_preserved(self, fast_dispatch_cfg):
        sink = FlakySink(0)
        d = Dispatcher([sink], fast_dispatch_cfg).start()
        for state in ("open", "escalated", "fading_off", "closed"):
            d.submit(_transition(state=state))
        assert d.flush(timeout=5.0)
        d.shutdown()
        assert [s["state"] for s in sink.delivered] == ["open", "escalated", "fading_off", "closed"]

    def test_flush_times_out_without_worker(self, fast_dispatch_cfg):
        d = Dispatcher([FlakySink(0)], fast_dispatch_cfg)
        d.submit(_transition())
        assert not d.flush(timeout=0.05)

    def test_shutdown_during_retry(self):
        cfg = DispatchConfig(max_attempts=5, base_delay_sec=30.0, max_delay_sec=30.0)
        sink = FlakySink(failures=99)
        failed = []
        first_call = threading.Event()
        original = sink.send

        def send(snapshot):
            first_call.set()
            original(snapshot)

        sink.send = send
        d = Dispatcher([sink], cfg, on_failure=failed.append).start()
        d.submit(_transition())
        assert first_call.wait(5.0)
        d.shutdown(timeout=5.0)
        assert sink.calls == 1
        assert len(d.abandoned) == 1
        assert "abandoned" in str(d.abandoned[0])
        assert failed == ["ALR-0001"]
        assert d.failures == []


# ═══════════════════════════════════════════════════════════════════════════
#  Sinks
# ═══════════════════════════════════════════════════════════════════════════

class TestSinks:
    def test_log_sink(self, caplog):
        with caplog.at_level(logging.WARNING, logger="src.monitor.alerts"):
            LogSink().send(SNAP)
        assert "ALR-0001" in caplog.text
        assert "203.0.113.0/24" in caplog.text

    def test_jsonl_sink_appends(self, tmp_path):
        path = tmp_path / "sub" / "alerts.jsonl"
        sink = JsonlFileSink(path)
        sink.send(SNAP)
        sink.send({**SNAP, "state": "closed"})
        rows = [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]
        assert [r["state"] for r in rows] == ["open", "closed"]
        assert all("delivered_at" in r for r in rows)

    def test_jsonl_sink_unwritable(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x", encoding="utf-8")
        with pytest.raises(DispatchFailed):
            JsonlFileSink(blocker / "alerts.jsonl").send(SNAP)

    def test_webhook_posts_json(self, monkeypatch):
        seen = {}

        class _Resp:
            status_code = 204

        def fake_post(url, json, headers, timeout):
            seen.update(url=url, body=json, headers=headers, timeout=timeout)
            return _Resp()

        monkeypatch.setattr(requests, "post", fake_post)
        WebhookSink("http://hooks/alerts", headers={"X-Token": "t"}, timeout_sec=2.0).send(SNAP)
        assert seen["url"] == "http://hooks/alerts"
        assert seen["body"]["alert_id"] == "ALR-0001"
        assert seen["headers"] == {"X-Token": "t"}
        assert seen["timeout"] == 2.0

    def test_webhook_non_2xx_fails(self, monkeypatch):
        class _Resp:
            status_code = 503

        monkeypatch.setattr(requests, "post", lambda *a, **kw: _Resp())
        with pytest.raises(DispatchFailed, match="HTTP 503"):
            WebhookSink("http://hooks/alerts").send(SNAP)

    def test_webhook_connection_error_fails(self, monkeypatch):
        def boom(*a, **kw):
            raise requests.ConnectionError("refused")

        monkeypatch.setattr(requests, "post", boom)
        with pytest.raises(DispatchFailed, match="ConnectionError"):
            WebhookSink("http://hooks/alerts").send(SNAP)

    def test_webhook_retried_until_success(self, monkeypatch, fast_dispatch_cfg):
        codes = iter([500, 502, 200])

        class _Resp:
            def __init__(self):
                self.status_code = next(codes)

        monkeypatch.setattr(requests, "post", lambda *a, **kw: _Resp())
        sink = WebhookSink("http://hooks/alerts")
        records = []
        d = Dispatcher([sink], fast_dispatch_cfg, on_success=lambda i, r: records.append(r))
        assert d.deliver(_Job("ALR-0001", SNAP, sink))
        assert records[0]["attempts"] == 3

    def test_build_sinks(self, tmp_path):
        cfg = DispatchConfig(sinks=[
            {"type": "log"},
            {"type": "jsonl"},
            {"type": "webhook", "url": "http://hooks/a", "name": "ops"},
        ])
        sinks = build_sinks(cfg, out_dir=tmp_path)
        assert [s.name for s in sinks] == ["log", "jsonl-1", "ops"]
        assert sinks[1].path == tmp_path / "alerts.jsonl"
        assert sinks[2].timeout_sec == cfg.timeout_sec
