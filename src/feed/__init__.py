"""Route update feed — parse, validate and stream RouteEvents.

Modules
───────
  parser   — JSON line (canonical or RIS Live) → RouteEvent(s)
  filters  — validation and bogon checks
  source   — JSONL file source (batch / follow) and per-peer merge
"""
