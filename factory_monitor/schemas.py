from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from factory_monitor.clock import ensure_supported_utc
from factory_monitor.models import EventType


class EventCreate(BaseModel):
    timestamp: datetime
    worker_id: str = Field(min_length=1, max_length=64)
    workstation_id: str = Field(min_length=1, max_length=64)
    event_type: EventType
    confidence: float = Field(ge=0, le=1)
    count: int | None = Field(default=1, ge=0)

    @field_validator("timestamp")
    @classmethod
    def _normalize_timestamp(cls, value: datetime) -> datetime:
        return ensure_supported_utc(value)

    @field_validator("worker_id", "workstation_id")
    @classmethod
    def _strip_identifier(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("must not be blank")
        return stripped


class EventRead(BaseModel):
    id: int
    timestamp: datetime
    worker_id: str
    workstation_id: str
    event_type: EventType
    confidence: float
    count: int
    fingerprint: str
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class EventIngestResponse(BaseModel):
    message: str
    duplicate: bool
    event: EventRead


class BatchIngestRequest(BaseModel):
    # Items stay untyped so one malformed entry is reported, not rejected.
    events: list[Any] = Field(default_factory=list)


class BatchIngestErrorRead(BaseModel):
    index: int
    event: Any = None
    error: str


class BatchIngestResponse(BaseModel):
    success: int
    duplicates: int
    errors: int
    errors_list: list[BatchIngestErrorRead] = Field(default_factory=list)


class WorkerMetricsRead(BaseModel):
    worker_id: str
    name: str | None = None
    total_active_time: float
    total_idle_time: float
    utilization_percentage: float
    total_units_produced: int
    units_per_hour: float


class WorkstationMetricsRead(BaseModel):
    station_id: str
    name: str | None = None
    occupancy_time: float
    utilization_percentage: float
    total_units_produced: int
    throughput_rate: float


class FactoryMetricsRead(BaseModel):
    total_productive_time: float
    total_production_count: int
    average_production_rate: float
    average_utilization: float
    active_workers: int = 0
    total_workers: int = 0


class SeedInitRequest(BaseModel):
    hours: float = Field(default=8, gt=0, le=72)
    seed: int | None = None


class SeedInitResponse(BaseModel):
    message: str
    workers: int
    workstations: int
    events: int


class SeedAddEventsRequest(BaseModel):
    hours: float = Field(default=2, gt=0, le=72)
    workers_count: int = Field(default=6, ge=1)
    seed: int | None = None


class SeedTimeRangeRead(BaseModel):
    start: datetime
    end: datetime


class SeedAddEventsResponse(BaseModel):
    message: str
    events_added: int
    time_range: SeedTimeRangeRead


class DatabaseStatusRead(BaseModel):
    status: str


class HealthResponse(BaseModel):
    status: str
    message: str
    database: DatabaseStatusRead
    schema_guard: dict[str, Any]
