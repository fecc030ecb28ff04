"""CLI entry-point for the BGP Route Monitor.

Usage examples
--------------
# Batch replay of a recorded or emulated feed:
python -m src.monitor --input data/feed.jsonl

# Replay, then let the event clock run on so quiet alerts fade and close:
python -m src.monitor --input data/feed.jsonl --settle-sec 600

# Live mode (tail the JSONL written by the live emulator or a collector):
python -m src.monitor --input data/feed_live.jsonl --follow
"""

from __future__ import annotations

import argparse
import logging
import signal
import sys
import threading
from pathlib import Path

from src.contracts.errors import ConfigError
from src.feed.source import JsonlRouteSource
from src.monitor.engine import build_engine
from src.monitor.reporter import write_alerts_csv, write_report_txt, write_status_json
from src.monitor.settings import load_settings
from src.shared.logger import setup_logging

log = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="monitor",
        description="BGP Route Monitor — track routes, classify anomalies, dispatch alerts",
    )
    p.add_argument(
        "--input",
        default="data/feed.jsonl",
        help="Feed file (canonical JSONL or RIS Live messages). Default: data/feed.jsonl",
    )
    p.add_argument(
        "--config-dir",
        default="config",
        help="Directory with monitors.yaml (and prefixes/ROA data). Default: config/",
    )
    p.add_argument(
        "--out-dir",
        default="out",
        help="Output directory for status.json, alerts.csv, report.txt. Default: out/",
    )
    p.add_argument(
        "--follow",
        action="store_true",
        default=False,
        help="Tail the input file and keep running until interrupted.",
    )
    p.add_argument(
        "--poll-interval-ms",
        type=int,
        default=1000,
        help="Poll interval for follow mode, ms (default: 1000).",
    )
    p.add_argument(
        "--settle-sec",
        type=float,
        default=0.0,
        help="After a batch replay, advance the event clock by this many seconds "
             "so fade-off and close timers can fire. Default: 0",
    )
    p.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level. Default: INFO",
    )
    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    try:
        settings = load_settings(args.config_dir)
    except (ConfigError, FileNotFoundError) as exc:
        log.error("Configuration error: %s", exc)
        return 2

    out = Path(args.out_dir)
    out.mkdir(parents=True, exist_ok=True)
    status_path = out / "status.json"

    stop = threading.Event()

    def _on_signal(signum, _frame):
        log.info("Signal %d received — draining and stopping", signum)
        stop.set()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    engine = build_engine(settings, out_dir=str(out), background_refresh=args.follow)
    source = JsonlRouteSource(
        args.input,
        follow=args.follow,
        poll_interval_sec=args.poll_interval_ms / 1000.0,
        stop=stop,
    )

    print(f"Monitor -> {args.input} ({'follow' if args.follow else 'batch'})")
    print(f"  prefixes monitored: {len(engine.registry)}, "
          f"classifiers: {', '.join(c.name for c in engine.classifiers)}")
    if args.follow:
        print("  Press Ctrl+C to stop.")

    try:
        engine.run(source, stop=stop, on_status=lambda st: write_status_json(st, status_path))
    except FileNotFoundError as exc:
        log.error("%s", exc)
        engine.close()
        return 1

    if args.settle_sec > 0 and not stop.is_set():
        engine.advance(args.settle_sec)
    engine.close()

    status = engine.status()
    alerts = engine.aggregator.alerts(include_closed=True)
    write_status_json(status, status_path)
    write_alerts_csv(alerts, out / "alerts.csv")
    write_report_txt(status, alerts, out / "report.txt")

    print(
        f"Done: {status.events_processed} events, {len(alerts)} alerts "
        f"({status.open_alert_count} open), quarantined={source.stats['quarantined']}"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
