"""Line parser: one JSON feed line → RouteEvent(s).

Two line formats are accepted:

  canonical  — ``RouteEvent.to_json()`` output (what the emulator writes);
  RIS Live   — ``{"type": "ris_message", "data": {...}}`` as streamed by the
               RIPE RIS Live websocket, including RIS_PEER_STATE messages.

RIS messages carry no per-peer sequence numbers, so a ``Sequencer`` assigns
them in arrival order.  One RIS UPDATE may announce and withdraw several
prefixes and therefore expands into several events.
"""

from __future__ import annotations

import json
import logging
from collections import defaultdict
from typing import Any

from src.contracts.enums import EventKind
from src.contracts.route import RouteEvent, normalize_prefix
from src.shared.timeutil import format_ts, from_epoch, parse_ts

log = logging.getLogger(__name__)

ParseResult = list[RouteEvent] | tuple[str, str]


class Sequencer:
    """Per-peer monotonic sequence numbers for feeds that do not carry them."""

    def __init__(self) -> None:
        self._last: dict[int, int] = defaultdict(int)

    def next(self, peer_asn: int) -> int:
        self._last[peer_asn] += 1
        return self._last[peer_asn]

    def observe(self, peer_asn: int, sequence: int) -> None:
        """Keep the counter ahead of explicitly numbered events."""
        if sequence > self._last[peer_asn]:
            self._last[peer_asn] = sequence


def parse_line(line: str, sequencer: Sequencer | None = None) -> ParseResult:
    """Parse one feed line.

    Returns a (possibly empty) list of RouteEvents, or a ``(line, reason)``
    tuple when the line has to be quarantined.
    """
    text = line.strip()
    if not text:
        return []
    try:
        obj = json.loads(text)
    except json.JSONDecodeError as exc:
        return (text, f"invalid json: {exc.msg}")
    if not isinstance(obj, dict):
        return (text, "not a json object")

    seq = sequencer or Sequencer()
    try:
        if obj.get("type") == "ris_message" or "data" in obj:
            return _parse_ris(obj.get("data", {}), seq)
        return _parse_canonical(obj, seq)
    except (KeyError, TypeError, ValueError) as exc:
        return (text, f"{type(exc).__name__}: {exc}")


# ═══════════════════════════════════════════════════════════════════════════
#  Format handlers
# ═══════════════════════════════════════════════════════════════════════════


def _parse_canonical(obj: dict[str, Any], seq: Sequencer) -> list[RouteEvent]:
    if "sequence" not in obj:
        obj = {**obj, "sequence": seq.next(int(obj["peer_asn"]))}
    ev = RouteEvent.from_dict(obj)
    seq.observe(ev.peer_asn, ev.sequence)
    return [ev]


def _parse_ris(data: dict[str, Any], seq: Sequencer) -> list[RouteEvent]:
    peer_asn = int(data["peer_asn"])
    ts = data.get("timestamp")
    timestamp = from_epoch(float(ts)) if isinstance(ts, (int, float)) else format_ts(parse_ts(str(ts)))
    collector = data.get("host", "")
    msg_type = data.get("type", "UPDATE")

    if msg_type == "RIS_PEER_STATE":
        state = str(data.get("state", "")).lower()
        kind = EventKind.PEER_UP if state in ("connected", "up", "established") else EventKind.PEER_DOWN
        return [
            RouteEvent(
                peer_asn=peer_asn,
                prefix="",
                timestamp=timestamp,
                sequence=seq.next(peer_asn),
                kind=kind,
                collector=collector,
            )
        ]

    if msg_type != "UPDATE":
        log.debug("Ignoring RIS message type %s", msg_type)
        return []

    events: list[RouteEvent] = []
    for prefix in data.get("withdrawals", []):
        events.append(
            RouteEvent(
                peer_asn=peer_asn,
                prefix=normalize_prefix(prefix),
                timestamp=timestamp,
                sequence=seq.next(peer_asn),
                kind=EventKind.WITHDRAW,
                collector=collector,
            )
        )

    path = _flatten_path(data.get("path", []))
    for ann in data.get("announcements", []):
        if path is None:
            log.debug("AS_SET origin from AS%d skipped (%d prefixes)",
                      peer_asn, len(ann.get("prefixes", [])))
            continue
        for prefix in ann.get("prefixes", []):
            events.append(
                RouteEvent(
                    peer_asn=peer_asn,
                    prefix=normalize_prefix(prefix),
                    timestamp=timestamp,
                    sequence=seq.next(peer_asn),
                    kind=EventKind.ANNOUNCE,
                    as_path=path,
                    next_hop=ann.get("next_hop", ""),
                    collector=collector,
                )
            )
    return events


def _flatten_path(raw: list[Any]) -> tuple[int, ...] | None:
    """Flatten a RIS path; AS_SETs are kept only when they hold a single ASN.

    Returns None when the origin is an ambiguous AS_SET.
    """
    out: list[int] = []
    for i, hop in enumerate(raw):
        if isinstance(hop, list):
            if len(hop) == 1:
                out.append(int(hop[0]))
            elif i == len(raw) - 1:
                return None
            else:
                out.extend(int(a) for a in hop)
        else:
            out.append(int(hop))
    return tuple(out)
