from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol

# Room kept at both ends of the datetime range for offsets and dedup tolerance.
_RANGE_MARGIN = timedelta(days=1)
MIN_SUPPORTED_TIMESTAMP = datetime.min.replace(tzinfo=timezone.utc) + _RANGE_MARGIN
MAX_SUPPORTED_TIMESTAMP = datetime.max.replace(tzinfo=timezone.utc) - _RANGE_MARGIN


class Clock(Protocol):
    def now(self) -> datetime: ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    def __init__(self, instant: datetime) -> None:
        self._instant = ensure_utc(instant)

    def now(self) -> datetime:
        return self._instant

    def set(self, instant: datetime) -> None:
        self._instant = ensure_utc(instant)


def ensure_utc(value: datetime) -> datetime:
    # Naive timestamps are treated as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def ensure_supported_utc(value: datetime) -> datetime:
    """Normalize to UTC, raising ``ValueError`` for instants too close to the datetime limits."""
    try:
        normalized = ensure_utc(value)
    except OverflowError as exc:
        raise ValueError("timestamp is outside the supported range") from exc
    if not MIN_SUPPORTED_TIMESTAMP <= normalized <= MAX_SUPPORTED_TIMESTAMP:
        raise ValueError("timestamp is outside the supported range")
    return normalized
