from __future__ import annotations

import logging
import random
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from factory_monitor.clock import Clock, ensure_utc
from factory_monitor.errors import ApiError
from factory_monitor.models import EventType
from factory_monitor.services.ingestion import compute_fingerprint
from factory_monitor.store import EntityRef, EventStore

logger = logging.getLogger("factory_monitor.seed")

DEFAULT_WORKERS: tuple[EntityRef, ...] = (
    EntityRef(id="W1", name="John Smith", kind="operator"),
    EntityRef(id="W2", name="Sarah Johnson", kind="operator"),
    EntityRef(id="W3", name="Mike Williams", kind="operator"),
    EntityRef(id="W4", name="Emily Brown", kind="operator"),
    EntityRef(id="W5", name="David Davis", kind="operator"),
    EntityRef(id="W6", name="Lisa Anderson", kind="operator"),
)

DEFAULT_WORKSTATIONS: tuple[EntityRef, ...] = (
    EntityRef(id="S1", name="Assembly Line 1", kind="assembly"),
    EntityRef(id="S2", name="Assembly Line 2", kind="assembly"),
    EntityRef(id="S3", name="Quality Check Station", kind="quality"),
    EntityRef(id="S4", name="Packaging Station 1", kind="packaging"),
    EntityRef(id="S5", name="Packaging Station 2", kind="packaging"),
    EntityRef(id="S6", name="Testing Station", kind="testing"),
)

SAMPLE_INTERVAL = timedelta(minutes=5)
# Working is listed twice so it comes up about two thirds of the time.
STATE_CHOICES = (EventType.WORKING, EventType.IDLE, EventType.WORKING)


@dataclass(frozen=True, slots=True)
class SeedSummary:
    workers: int
    workstations: int
    events: int


def generate_events(
    workers: Sequence[EntityRef],
    workstations: Sequence[EntityRef],
    *,
    start: datetime,
    end: datetime,
    rng: random.Random,
) -> list[dict[str, Any]]:
    """Simulate one state sample every 5 minutes per worker.

    A worker holds a state for 15 to 45 minutes, sometimes moves to another
    station when it changes, and while working now and then reports 1 to 3
    finished units.
    """
    if not workers or not workstations:
        return []
    start = ensure_utc(start)
    end = ensure_utc(end)
    rows: list[dict[str, Any]] = []

    for worker in workers:
        current_time = start
        station = rng.choice(workstations)
        state = EventType.WORKING
        last_change = current_time
        hold = timedelta(minutes=15 + rng.random() * 30)

        while current_time < end:
            if current_time - last_change > hold:
                state = rng.choice(STATE_CHOICES)
                last_change = current_time
                hold = timedelta(minutes=15 + rng.random() * 30)
                if rng.random() > 0.7:
                    station = rng.choice(workstations)

            if state == EventType.WORKING and rng.random() > 0.85:
                rows.append(
                    _row(
                        current_time,
                        worker.id,
                        station.id,
                        EventType.PRODUCT_COUNT,
                        confidence=0.90 + rng.random() * 0.10,
                        count=rng.randint(1, 3),
                    )
                )
            rows.append(
                _row(
                    current_time,
                    worker.id,
                    station.id,
                    state,
                    confidence=0.85 + rng.random() * 0.15,
                    count=1,
                )
            )
            current_time += SAMPLE_INTERVAL

    rows.sort(key=lambda row: row["timestamp"])
    return rows


def seed_initial_data(
    store: EventStore,
    clock: Clock,
    *,
    hours: float = 8,
    seed: int | None = None,
) -> SeedSummary:
    rng = random.Random(seed)
    end = clock.now()
    start = end - timedelta(hours=hours)

    store.reset()
    store.add_reference_data(DEFAULT_WORKERS, DEFAULT_WORKSTATIONS)
    rows = generate_events(DEFAULT_WORKERS, DEFAULT_WORKSTATIONS, start=start, end=end, rng=rng)
    inserted = store.add_events(rows)
    logger.info(
        "seed_initialized",
        extra={"workers": len(DEFAULT_WORKERS), "workstations": len(DEFAULT_WORKSTATIONS), "events": inserted},
    )
    return SeedSummary(workers=len(DEFAULT_WORKERS), workstations=len(DEFAULT_WORKSTATIONS), events=inserted)


def seed_additional_events(
    store: EventStore,
    clock: Clock,
    *,
    hours: float = 2,
    workers_count: int = 6,
    seed: int | None = None,
) -> tuple[int, datetime, datetime]:
    workers = store.registered_workers()[:workers_count]
    workstations = store.registered_workstations()
    if not workers or not workstations:
        raise ApiError(400, "SEED_REQUIRED", "Please seed initial data first.")

    latest = store.latest_event_at()
    start = latest + timedelta(minutes=1) if latest is not None else clock.now()
    end = start + timedelta(hours=hours)
    rows = generate_events(workers, workstations, start=start, end=end, rng=random.Random(seed))
    inserted = store.add_events(rows)
    logger.info(
        "seed_events_added",
        extra={"events": inserted, "start": start.isoformat(), "end": end.isoformat()},
    )
    return inserted, start, end


def _row(
    timestamp: datetime,
    worker_id: str,
    workstation_id: str,
    event_type: EventType,
    *,
    confidence: float,
    count: int,
) -> dict[str, Any]:
    return {
        "timestamp": timestamp,
        "worker_id": worker_id,
        "workstation_id": workstation_id,
        "event_type": event_type,
        "confidence": round(confidence, 4),
        "count": count,
        "fingerprint": compute_fingerprint(
            timestamp=timestamp,
            worker_id=worker_id,
            workstation_id=workstation_id,
            event_type=event_type,
            count=count,
        ),
    }
