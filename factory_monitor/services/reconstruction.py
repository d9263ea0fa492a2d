from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Protocol

from factory_monitor.clock import Clock, ensure_supported_utc, ensure_utc
from factory_monitor.errors import InvalidWindowError
from factory_monitor.models import EventType


class EventLike(Protocol):
    timestamp: datetime
    event_type: EventType
    count: int


@dataclass(frozen=True, slots=True)
class Window:
    start: datetime | None
    end: datetime

    def span_minutes(self, first_event_at: datetime | None) -> float:
        origin = self.start or first_event_at
        if origin is None:
            return 0.0
        return max(0.0, _minutes_between(origin, self.end))


@dataclass(frozen=True, slots=True)
class ReconstructionResult:
    active_minutes: float = 0.0
    idle_minutes: float = 0.0
    occupied_minutes: float = 0.0
    units_produced: int = 0
    event_count: int = 0
    first_event_at: datetime | None = None

    @property
    def utilization_percentage(self) -> float:
        tracked = self.active_minutes + self.idle_minutes
        if tracked <= 0:
            return 0.0
        return self.active_minutes / tracked * 100

    @property
    def units_per_hour(self) -> float:
        if self.active_minutes <= 0:
            return 0.0
        return self.units_produced / self.active_minutes * 60

    @property
    def throughput_rate(self) -> float:
        if self.occupied_minutes <= 0:
            return 0.0
        return self.units_produced / self.occupied_minutes * 60


EMPTY_RESULT = ReconstructionResult()

_TIE_BREAK_RANK = {
    EventType.PRODUCT_COUNT: 0,
    EventType.WORKING: 1,
    EventType.IDLE: 1,
    EventType.ABSENT: 1,
}


def window_bound(value: datetime, field: str) -> datetime:
    try:
        return ensure_supported_utc(value)
    except ValueError as exc:
        raise InvalidWindowError(f"{field} is outside the supported range.", field=field) from exc


def resolve_window(start: datetime | None, end: datetime | None, clock: Clock) -> Window:
    resolved_start = window_bound(start, "start_date") if start is not None else None
    resolved_end = window_bound(end, "end_date") if end is not None else clock.now()
    if resolved_start is not None and resolved_start >= resolved_end:
        raise InvalidWindowError("start_date must be earlier than end_date.")
    return Window(start=resolved_start, end=resolved_end)


def round_metric(value: float) -> float:
    """Round to 2 decimals, halves away from zero (66.665 -> 66.67)."""
    return float(Decimal(repr(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def chronological(events: Iterable[EventLike]) -> list[EventLike]:
    # At equal timestamps a product_count goes first so the state event that
    # shares its instant decides what the following interval accrues to.
    return sorted(
        events,
        key=lambda event: (
            ensure_utc(event.timestamp),
            _TIE_BREAK_RANK.get(EventType(event.event_type), 1),
            EventType(event.event_type).value,
            event.count or 0,
        ),
    )


def reconstruct(
    events: Iterable[EventLike],
    *,
    window_end: datetime,
    product_count_marks_state: bool = True,
) -> ReconstructionResult:
    """Rebuild active, idle and occupied minutes from point-in-time events.

    Every event opens a state that lasts until the next event; the last one is
    extrapolated to ``window_end``. Working time counts as active, idle time as
    idle, and anything but ``absent`` counts as occupied. ``product_count`` adds
    its ``count`` to the unit total wherever it occurs.

    With ``product_count_marks_state`` left on, a ``product_count`` event also
    becomes the current state, so the interval after it is neither active nor
    idle (it is still occupied). Turning it off makes ``product_count`` a pure
    annotation and the previous state keeps accruing across it.
    """
    ordered = chronological(events)
    if not ordered:
        return EMPTY_RESULT

    end = ensure_utc(window_end)
    active = 0.0
    idle = 0.0
    occupied = 0.0
    units = 0

    first = ordered[0]
    last_timestamp = ensure_utc(first.timestamp)
    last_state = EventType(first.event_type)
    is_occupied = last_state != EventType.ABSENT
    if last_state == EventType.PRODUCT_COUNT:
        units += first.count or 0

    for event in ordered[1:]:
        timestamp = ensure_utc(event.timestamp)
        event_type = EventType(event.event_type)
        delta = _minutes_between(last_timestamp, timestamp)

        if last_state == EventType.WORKING:
            active += delta
        elif last_state == EventType.IDLE:
            idle += delta
        if is_occupied:
            occupied += delta

        if event_type == EventType.PRODUCT_COUNT:
            units += event.count or 0

        last_timestamp = timestamp
        if event_type != EventType.PRODUCT_COUNT or product_count_marks_state:
            last_state = event_type
            is_occupied = event_type != EventType.ABSENT

    tail = max(0.0, _minutes_between(last_timestamp, end))
    if last_state == EventType.WORKING:
        active += tail
    elif last_state == EventType.IDLE:
        idle += tail
    if is_occupied:
        occupied += tail

    return ReconstructionResult(
        active_minutes=active,
        idle_minutes=idle,
        occupied_minutes=occupied,
        units_produced=units,
        event_count=len(ordered),
        first_event_at=ensure_utc(first.timestamp),
    )


def _minutes_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 60
