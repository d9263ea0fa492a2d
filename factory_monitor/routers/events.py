from datetime import datetime, timedelta

from fastapi import APIRouter, Depends, Query, Request, Response, status

from factory_monitor.dependencies import get_dedup_tolerance, get_event_store
from factory_monitor.errors import InvalidWindowError
from factory_monitor.models import EventType
from factory_monitor.schemas import (
    BatchIngestRequest,
    BatchIngestResponse,
    EventCreate,
    EventIngestResponse,
    EventRead,
)
from factory_monitor.services.ingestion import ingest_batch, ingest_event
from factory_monitor.services.reconstruction import window_bound
from factory_monitor.store import EventFilter, EventStore

router = APIRouter(prefix="/events", tags=["events"])


@router.post(
    "/ingest",
    response_model=EventIngestResponse,
    status_code=status.HTTP_201_CREATED,
)
def ingest(
    payload: EventCreate,
    request: Request,
    response: Response,
    store: EventStore = Depends(get_event_store),
    tolerance: timedelta = Depends(get_dedup_tolerance),
) -> EventIngestResponse:
    outcome = ingest_event(store, payload, tolerance=tolerance)
    request.state.worker_id = outcome.event.worker_id
    request.state.event_id = outcome.event.id
    if outcome.duplicate:
        response.status_code = status.HTTP_200_OK
        return EventIngestResponse(
            message="Duplicate event detected, skipped",
            duplicate=True,
            event=EventRead.model_validate(outcome.event),
        )
    return EventIngestResponse(
        message="Event ingested successfully",
        duplicate=False,
        event=EventRead.model_validate(outcome.event),
    )


@router.post("/ingest/batch", response_model=BatchIngestResponse)
def ingest_many(
    payload: BatchIngestRequest,
    store: EventStore = Depends(get_event_store),
    tolerance: timedelta = Depends(get_dedup_tolerance),
) -> BatchIngestResponse:
    result = ingest_batch(store, payload.events, tolerance=tolerance)
    return BatchIngestResponse.model_validate(result.to_dict())


@router.get("", response_model=list[EventRead])
def list_events(
    worker_id: str | None = Query(default=None),
    workstation_id: str | None = Query(default=None),
    event_type: EventType | None = Query(default=None),
    start_date: datetime | None = Query(default=None),
    end_date: datetime | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=1000),
    store: EventStore = Depends(get_event_store),
) -> list[EventRead]:
    start = window_bound(start_date, "start_date") if start_date is not None else None
    end = window_bound(end_date, "end_date") if end_date is not None else None
    if start is not None and end is not None and start >= end:
        raise InvalidWindowError("start_date must be earlier than end_date.")
    events = store.list_events(
        EventFilter(
            worker_id=worker_id,
            workstation_id=workstation_id,
            event_type=event_type,
            start=start,
            end=end,
        ),
        limit=limit,
    )
    return [EventRead.model_validate(event) for event in events]
