"""Canonical enumerations shared by the feed, monitor and dashboard."""

from __future__ import annotations

from enum import Enum


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEV_RANK[self]

    @classmethod
    def highest(cls, *sevs: Severity | str) -> Severity:
        return max((cls(s) for s in sevs), key=lambda s: s.rank)


_SEV_RANK = {Severity.LOW: 0, Severity.MEDIUM: 1, Severity.HIGH: 2, Severity.CRITICAL: 3}


class EventKind(str, Enum):
    ANNOUNCE = "announce"
    WITHDRAW = "withdraw"
    PEER_DOWN = "peer_down"
    PEER_UP = "peer_up"


class DiffKind(str, Enum):
    NEW = "new"
    PATH_CHANGED = "path_changed"
    REFRESHED = "refreshed"
    WITHDRAWN = "withdrawn"


class RpkiValidity(str, Enum):
    VALID = "valid"
    INVALID = "invalid"
    NOT_FOUND = "not_found"


class AlertState(str, Enum):
    OPEN = "open"
    ESCALATED = "escalated"
    FADING_OFF = "fading_off"
    CLOSED = "closed"

    @property
    def active(self) -> bool:
        return self in (AlertState.OPEN, AlertState.ESCALATED)


class ClassifierKind(str, Enum):
    HIJACK = "hijack"
    RPKI = "rpki"
    PATH = "path"
    VISIBILITY = "visibility"
