"""BGP Route Monitor — real-time route tracking and alerting engine.

Modules
───────
  rib         — RouteEvent → RouteState table + StateDiff (per-peer sequencing)
  registry    — prefix ownership records (expected origins + ROAs), copy-on-write
  classifiers — hijack / rpki / path / visibility: StateDiff → AlertCandidate
  aggregator  — AlertCandidate → Alert lifecycle (open → escalated → fading_off → closed)
  dispatch    — deliver alert snapshots to sinks with bounded retry/backoff
  settings    — monitors.yaml → typed option sets
  status      — read-only health snapshot
  reporter    — write status.json, alerts.csv, report.txt
  engine      — orchestrate the full flow
  cli         — argparse entry-point
"""
