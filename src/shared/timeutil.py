"""ISO-8601 timestamp helpers shared by the feed, monitor and emulator."""

from __future__ import annotations

from datetime import UTC, datetime

ISO_FMT = "%Y-%m-%dT%H:%M:%SZ"


def parse_ts(iso: str) -> datetime:
    """Parse an ISO-8601 timestamp (``Z`` or offset suffix) to an aware datetime."""
    dt = datetime.fromisoformat(iso.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def format_ts(dt: datetime) -> str:
    return dt.astimezone(UTC).strftime(ISO_FMT)


def from_epoch(seconds: float) -> str:
    return format_ts(datetime.fromtimestamp(seconds, tz=UTC))


def utc_now() -> str:
    return format_ts(datetime.now(UTC))


def diff_sec(a: str, b: str) -> float:
    """Seconds from *a* to *b* (negative when *b* is earlier)."""
    return (parse_ts(b) - parse_ts(a)).total_seconds()
