from fastapi import APIRouter, Body, Depends

from factory_monitor.clock import Clock
from factory_monitor.dependencies import get_clock, get_event_store
from factory_monitor.schemas import (
    SeedAddEventsRequest,
    SeedAddEventsResponse,
    SeedInitRequest,
    SeedInitResponse,
    SeedTimeRangeRead,
)
from factory_monitor.services.seed import seed_additional_events, seed_initial_data
from factory_monitor.store import EventStore

router = APIRouter(prefix="/seed", tags=["seed"])


@router.post("/init", response_model=SeedInitResponse)
def init_seed(
    payload: SeedInitRequest | None = Body(default=None),
    store: EventStore = Depends(get_event_store),
    clock: Clock = Depends(get_clock),
) -> SeedInitResponse:
    options = payload or SeedInitRequest()
    summary = seed_initial_data(store, clock, hours=options.hours, seed=options.seed)
    return SeedInitResponse(
        message="Database seeded successfully",
        workers=summary.workers,
        workstations=summary.workstations,
        events=summary.events,
    )


@router.post("/add-events", response_model=SeedAddEventsResponse)
def add_events(
    payload: SeedAddEventsRequest | None = Body(default=None),
    store: EventStore = Depends(get_event_store),
    clock: Clock = Depends(get_clock),
) -> SeedAddEventsResponse:
    options = payload or SeedAddEventsRequest()
    inserted, start, end = seed_additional_events(
        store,
        clock,
        hours=options.hours,
        workers_count=options.workers_count,
        seed=options.seed,
    )
    return SeedAddEventsResponse(
        message=f"Added {inserted} new events",
        events_added=inserted,
        time_range=SeedTimeRangeRead(start=start, end=end),
    )
