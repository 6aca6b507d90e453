"""Datetime helpers shared across the project."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def ensure_utc(ts: datetime) -> datetime:
    """Force a naive datetime into UTC for API compatibility."""

    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def parse_iso8601(value: str) -> datetime:
    """Parse an ISO8601 timestamp or plain date and return it as UTC."""

    normalized = value.strip()
    if normalized.endswith("Z"):
        normalized = f"{normalized[:-1]}+00:00"

    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise ValueError(f"Invalid ISO8601 datetime: {value}") from exc

    return ensure_utc(parsed)


def to_epoch_millis(ts: datetime) -> int:
    """Millisecond epoch timestamp, the unit most REST kline endpoints expect."""

    return int(ensure_utc(ts).timestamp() * 1000)


def from_epoch_millis(value: int | float | str) -> datetime:
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)


def floor_to_grid(ts: datetime, step: timedelta) -> datetime:
    """Latest multiple of ``step`` since the UTC epoch at or before ``ts``.

    Naive datetimes are treated as UTC and stay naive.
    """

    epoch = _EPOCH if ts.tzinfo is not None else _EPOCH.replace(tzinfo=None)
    return ts - (ts - epoch) % step


def ceil_to_grid(ts: datetime, step: timedelta) -> datetime:
    floored = floor_to_grid(ts, step)
    return floored if floored == ts else floored + step
