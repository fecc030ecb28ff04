"""RIB Tracker — RouteEvent stream → RouteState table + StateDiff per event.

Sequence discipline (per peer)
──────────────────────────────
  sequence == last       replay of an applied event: no-op, returns None
  sequence <  last       stale: rejected with SequenceGap, prefix marked
                         unstable for its next evaluation cycle
  sequence >  last + 1   events were lost upstream: logged, the event is
                         trusted (resync) and its diff is flagged unstable
  peer_up                starts a new session; its sequence becomes the
                         new baseline even if lower than the old one

Locking
───────
  Writers take a striped lock chosen by prefix, so updates for different
  prefixes never contend on one global lock.  Per-peer sequence state uses
  a second stripe keyed by peer ASN.  The prefix and per-peer indexes are
  shared by all stripes and change only under the short index lock.

Visibility history
──────────────────
  Each prefix keeps (timestamp, visible peers) for the last
  ``visibility_window_sec``; a diff reports the peak of that window as
  ``visible_peak`` so a sudden drop can be told apart from a slow drift.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict, deque

from src.contracts.enums import DiffKind, EventKind
from src.contracts.errors import SequenceGap
from src.contracts.route import RouteEvent, RouteState, StateDiff
from src.shared.timeutil import diff_sec

log = logging.getLogger(__name__)

_DEFAULT_STRIPES = 64
_DEFAULT_VISIBILITY_WINDOW_SEC = 300.0


class RibTracker:
    """Holds the current RouteState for every (prefix, peer) pair."""

    def __init__(
        self,
        stripes: int = _DEFAULT_STRIPES,
        visibility_window_sec: float = _DEFAULT_VISIBILITY_WINDOW_SEC,
    ) -> None:
        self._rib: dict[str, dict[int, RouteState]] = {}
        self._visibility: dict[str, deque[tuple[str, int]]] = {}
        self.visibility_window_sec = visibility_window_sec
        self._index_lock = threading.Lock()
        self._by_peer: dict[int, set[str]] = defaultdict(set)
        self._last_seq: dict[int, int] = {}
        self._unstable: set[str] = set()
        self._prefix_locks = [threading.RLock() for _ in range(stripes)]
        self._peer_locks = [threading.Lock() for _ in range(stripes)]
        self.gaps = 0

    # ── locking helpers ──────────────────────────────────────────────────

    def _prefix_lock(self, prefix: str) -> threading.RLock:
        return self._prefix_locks[hash(prefix) % len(self._prefix_locks)]

    def _peer_lock(self, peer_asn: int) -> threading.Lock:
        return self._peer_locks[peer_asn % len(self._peer_locks)]

    # ── public API ───────────────────────────────────────────────────────

    def apply(self, event: RouteEvent) -> StateDiff | None:
        """Apply one announcement or withdrawal.

        Returns the resulting diff, or None when the event changed nothing
        (replay, or withdrawal of a route that was not announced).

        Raises:
            SequenceGap: the event is older than the peer's last applied one.
        """
        if event.kind not in (EventKind.ANNOUNCE, EventKind.WITHDRAW):
            raise ValueError(f"apply() takes route events, got {event.kind.value}")

        gap = self._check_sequence(event)
        if gap is None:
            return None

        with self._prefix_lock(event.prefix):
            unstable = gap or self._take_unstable(event.prefix)
            if event.kind == EventKind.WITHDRAW:
                return self._withdraw(event, unstable)
            return self._announce(event, unstable)

    def skip(self, event: RouteEvent) -> None:
        """Consume the sequence number of an event that never reaches the table.

        Filtered events still count towards per-peer ordering.
        """
        self._check_sequence(event)

    def handle_peer(self, event: RouteEvent) -> list[StateDiff]:
        """Apply a peer_up / peer_down event.

        A disconnect is an implicit withdrawal of every prefix the peer
        currently announces; one diff is returned per withdrawn prefix.
        """
        if event.kind == EventKind.PEER_UP:
            with self._peer_lock(event.peer_asn):
                self._last_seq[event.peer_asn] = event.sequence
            log.info("Peer AS%d up (session baseline seq=%d)", event.peer_asn, event.sequence)
            return []
        if event.kind != EventKind.PEER_DOWN:
            raise ValueError(f"handle_peer() takes peer events, got {event.kind.value}")
        if self._check_sequence(event) is None:
            return []
        return self.withdraw_peer(event.peer_asn, event.timestamp, event.sequence)

    def withdraw_peer(self, peer_asn: int, timestamp: str, sequence: int = 0) -> list[StateDiff]:
        diffs: list[StateDiff] = []
        with self._index_lock:
            announced = sorted(self._by_peer.get(peer_asn, ()))
        for prefix in announced:
            implicit = RouteEvent(
                peer_asn=peer_asn,
                prefix=prefix,
                timestamp=timestamp,
                sequence=sequence,
                kind=EventKind.WITHDRAW,
            )
            with self._prefix_lock(prefix):
                diff = self._withdraw(implicit, self._take_unstable(prefix))
            if diff is not None:
                diffs.append(diff)
        log.info("Peer AS%d down: %d prefixes implicitly withdrawn", peer_asn, len(diffs))
        return diffs

    def state(self, prefix: str, peer_asn: int) -> RouteState | None:
        with self._prefix_lock(prefix):
            st = self._rib.get(prefix, {}).get(peer_asn)
            return st.snapshot() if st else None

    def peers_for(self, prefix: str) -> dict[int, RouteState]:
        with self._prefix_lock(prefix):
            return {p: s.snapshot() for p, s in self._rib.get(prefix, {}).items()}

    def visible_peers(self, prefix: str) -> set[int]:
        with self._prefix_lock(prefix):
            return {p for p, s in self._rib.get(prefix, {}).items() if not s.withdrawn}

    def prefixes(self) -> list[str]:
        with self._index_lock:
            return sorted(self._rib)

    def last_sequence(self, peer_asn: int) -> int | None:
        return self._last_seq.get(peer_asn)

    def is_unstable(self, prefix: str) -> bool:
        return prefix in self._unstable

    def __len__(self) -> int:
        with self._index_lock:
            tables = list(self._rib.values())
        return sum(len(peers) for peers in tables)

    # ── internals ────────────────────────────────────────────────────────

    def _check_sequence(self, event: RouteEvent) -> bool | None:
        """Return None for a replay, True for a forward gap, False when in order."""
        with self._peer_lock(event.peer_asn):
            last = self._last_seq.get(event.peer_asn)
            if last is not None:
                if event.sequence == last:
                    log.debug("Replay of AS%d seq=%d ignored", event.peer_asn, event.sequence)
                    return None
                if event.sequence < last:
                    self.gaps += 1
                    if event.prefix:
                        self._unstable.add(event.prefix)
                    raise SequenceGap(event.peer_asn, event.prefix, last + 1, event.sequence)
            gap = last is not None and event.sequence > last + 1
            self._last_seq[event.peer_asn] = event.sequence

        if gap:
            self.gaps += 1
            log.warning(
                "SequenceGap: AS%d jumped %d → %d; resyncing on %s",
                event.peer_asn, last, event.sequence, event.prefix or "peer event",
            )
        return gap

    def _take_unstable(self, prefix: str) -> bool:
        if prefix in self._unstable:
            self._unstable.discard(prefix)
            return True
        return False

    def _visible(self, prefix: str) -> int:
        return sum(1 for s in self._rib.get(prefix, {}).values() if not s.withdrawn)

    def _table(self, prefix: str) -> dict[int, RouteState]:
        with self._index_lock:
            peers = self._rib.get(prefix)
            if peers is None:
                peers = self._rib[prefix] = {}
                self._visibility[prefix] = deque()
            return peers

    def _index(self, peer_asn: int, prefix: str, announced: bool) -> None:
        with self._index_lock:
            if announced:
                self._by_peer[peer_asn].add(prefix)
            else:
                self._by_peer[peer_asn].discard(prefix)

    def _visible_peak(self, prefix: str, at: str, before: int, after: int) -> int:
        """Most peers that saw *prefix* during the window ending at *at*.

        Caller holds the prefix lock.
        """
        history = self._visibility[prefix]
        # keep the entry in effect at the window start
        while len(history) >= 2 and diff_sec(history[1][0], at) >= self.visibility_window_sec:
            history.popleft()
        peak = max([before] + [count for _, count in history])
        if after != before:
            history.append((at, after))
        return peak

    def _announce(self, event: RouteEvent, unstable: bool) -> StateDiff:
        peers = self._table(event.prefix)
        visible_before = self._visible(event.prefix)
        cur = peers.get(event.peer_asn)
        old = cur.snapshot() if cur else None

        if cur is None:
            change = DiffKind.NEW
            cur = RouteState(
                prefix=event.prefix,
                peer_asn=event.peer_asn,
                as_path=event.as_path,
                next_hop=event.next_hop,
                last_seen=event.timestamp,
                sequence=event.sequence,
            )
            peers[event.peer_asn] = cur
        else:
            if cur.withdrawn:
                change = DiffKind.NEW
            elif cur.as_path != event.as_path:
                change = DiffKind.PATH_CHANGED
            else:
                change = DiffKind.REFRESHED
            cur.as_path = event.as_path
            cur.next_hop = event.next_hop
            cur.last_seen = event.timestamp
            cur.sequence = event.sequence
            cur.withdrawn = False
        self._index(event.peer_asn, event.prefix, announced=True)
        visible_after = self._visible(event.prefix)

        origin = event.origin
        origin_peers = frozenset(
            p for p, s in peers.items() if not s.withdrawn and s.as_path and s.as_path[-1] == origin
        )
        return StateDiff(
            event=event,
            change=change,
            new=cur.snapshot(),
            old=old,
            unstable=unstable,
            origin_peers=origin_peers,
            visible_before=visible_before,
            visible_after=visible_after,
            visible_peak=self._visible_peak(event.prefix, event.timestamp, visible_before, visible_after),
        )

    def _withdraw(self, event: RouteEvent, unstable: bool) -> StateDiff | None:
        peers = self._rib.get(event.prefix, {})
        cur = peers.get(event.peer_asn)
        if cur is None or cur.withdrawn:
            log.debug("Withdrawal of unknown route %s from AS%d", event.prefix, event.peer_asn)
            return None

        visible_before = self._visible(event.prefix)
        old = cur.snapshot()
        cur.as_path = ()
        cur.withdrawn = True
        cur.last_seen = event.timestamp
        cur.sequence = event.sequence
        self._index(event.peer_asn, event.prefix, announced=False)
        visible_after = self._visible(event.prefix)

        return StateDiff(
            event=event,
            change=DiffKind.WITHDRAWN,
            new=cur.snapshot(),
            old=old,
            unstable=unstable,
            visible_before=visible_before,
            visible_after=visible_after,
            visible_peak=self._visible_peak(event.prefix, event.timestamp, visible_before, visible_after),
        )
