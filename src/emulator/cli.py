"""Командний інтерфейс емулятора BGP-фіду.

Usage examples
--------------
# Batch: 30 minutes of feed with every enabled scenario:
python -m src.emulator --out data/feed.jsonl

# Only hijacks, RIS Live message format:
python -m src.emulator --scenario_set origin_hijack,subprefix_hijack --format ris

# Live: append one event per 200 ms for the monitor to follow:
python -m src.emulator --out data/feed_live.jsonl --live --live-interval-ms 200
"""

from __future__ import annotations

import argparse
from pathlib import Path

from src.emulator.engine import EmulatorEngine, stream_jsonl, write_jsonl
from src.shared.config_loader import load_yaml
from src.shared.logger import setup_logging
from src.shared.timeutil import parse_ts


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="bgp-emulator",
        description="Generate a synthetic multi-peer BGP update feed (batch or live mode).",
    )
    p.add_argument(
        "--duration-sec",
        type=int,
        default=None,
        help="Simulation length in seconds. Overrides scenarios.yaml duration_sec.",
    )
    p.add_argument(
        "--seed",
        type=int,
        default=42,
        help="Random seed for deterministic output (default: 42).",
    )
    p.add_argument(
        "--out",
        type=str,
        default="data/feed.jsonl",
        help="Output file path (default: data/feed.jsonl).",
    )
    p.add_argument(
        "--format",
        type=str,
        choices=["canonical", "ris"],
        default="canonical",
        help="Line format: canonical RouteEvent JSON (default) or RIS Live messages.",
    )
    p.add_argument(
        "--scenario_set",
        type=str,
        default="all",
        help="Comma-separated scenario names to inject, 'all' (default) or 'none'.",
    )
    p.add_argument(
        "--start_time",
        type=str,
        default=None,
        help="Simulation start time in ISO-8601 (e.g. 2026-10-19T10:00:00Z). "
        "Defaults to value in scenarios.yaml.",
    )
    p.add_argument(
        "--peers",
        type=str,
        default="config/peers.yaml",
        help="Path to peers.yaml (default: config/peers.yaml).",
    )
    p.add_argument(
        "--prefixes",
        type=str,
        default="config/prefixes.yaml",
        help="Path to prefixes.yaml (default: config/prefixes.yaml).",
    )
    p.add_argument(
        "--scenarios",
        type=str,
        default="config/scenarios.yaml",
        help="Path to scenarios.yaml (default: config/scenarios.yaml).",
    )
    p.add_argument(
        "--live",
        action="store_true",
        default=False,
        help="Enable live streaming mode (events appended to JSONL with delays).",
    )
    p.add_argument(
        "--live-interval-ms",
        type=int,
        default=1000,
        help="Interval between event writes in live mode, ms (default: 1000).",
    )
    p.add_argument(
        "--max-events",
        type=int,
        default=None,
        help="Maximum number of events to write (optional cap).",
    )
    p.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO).",
    )
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = _parse_args(argv)
    setup_logging(args.log_level)

    engine = EmulatorEngine(
        peers_cfg=load_yaml(args.peers),
        prefixes_cfg=load_yaml(args.prefixes),
        scenarios_cfg=load_yaml(args.scenarios),
        seed=args.seed,
        duration_sec=args.duration_sec,
        start_time=parse_ts(args.start_time) if args.start_time else None,
        scenario_set=args.scenario_set,
    )

    out_path = Path(args.out)
    if out_path.suffix not in (".jsonl", ".ndjson"):
        out_path = out_path.with_suffix(".jsonl")

    events = engine.run()
    if args.max_events and len(events) > args.max_events:
        events = events[: args.max_events]

    if args.live:
        print(f"Emulator live mode -> {out_path}")
        print(f"  interval: {args.live_interval_ms} ms, events: {len(events)}")
        print("  Press Ctrl+C to stop.")
        try:
            count = stream_jsonl(
                events, out_path, interval_sec=args.live_interval_ms / 1000.0, fmt=args.format
            )
            print(f"Emulator live mode complete: {count} events -> {out_path}")
        except KeyboardInterrupt:
            print("\nEmulator stopped by user.")
    else:
        write_jsonl(events, out_path, fmt=args.format)
        print(f"Emulator batch complete: {len(events)} events -> {out_path}")


if __name__ == "__main__":
    main()
