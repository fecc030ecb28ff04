"""Route monitor contracts — canonical data structures shared by all modules."""

from src.contracts.alert import Alert, AlertCandidate
from src.contracts.enums import (
    AlertState,
    ClassifierKind,
    DiffKind,
    EventKind,
    RpkiValidity,
    Severity,
)
from src.contracts.ownership import OwnershipRecord, Roa
from src.contracts.route import RouteEvent, RouteState, StateDiff

__all__ = [
    "Alert",
    "AlertCandidate",
    "AlertState",
    "ClassifierKind",
    "DiffKind",
    "EventKind",
    "OwnershipRecord",
    "Roa",
    "RouteEvent",
    "RouteState",
    "RpkiValidity",
    "Severity",
    "StateDiff",
]
