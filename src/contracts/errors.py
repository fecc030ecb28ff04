"""Conditions raised and reported by the monitor.

None of these is fatal to a running engine except ``ConfigError``, which can
only surface at start-up.
"""

from __future__ import annotations


class MonitorError(Exception):
    """Base class for every monitor condition."""


class ConfigError(MonitorError):
    """Invalid or incomplete configuration."""


class SequenceGap(MonitorError):
    """A route event arrived out of per-peer sequence order."""

    def __init__(self, peer_asn: int, prefix: str, expected: int, got: int) -> None:
        super().__init__(
            f"peer AS{peer_asn} {prefix}: expected sequence > {expected - 1}, got {got}"
        )
        self.peer_asn = peer_asn
        self.prefix = prefix
        self.expected = expected
        self.got = got


class DispatchFailed(MonitorError):
    """A sink could not deliver an alert snapshot."""


class ShutdownDuringRetry(MonitorError):
    """Delivery retries were abandoned because the engine is stopping."""


class RegistryRefreshError(MonitorError):
    """An ownership refresh was rejected; the previous snapshot stays active."""
