from fastapi import APIRouter, Depends

from factory_monitor.dependencies import get_event_store, get_metrics_config, get_window
from factory_monitor.schemas import FactoryMetricsRead, WorkerMetricsRead, WorkstationMetricsRead
from factory_monitor.services.metrics import (
    MetricsConfig,
    compute_all_worker_metrics,
    compute_all_workstation_metrics,
    compute_factory_metrics,
    compute_worker_metrics,
    compute_workstation_metrics,
)
from factory_monitor.services.reconstruction import Window
from factory_monitor.store import EventStore

router = APIRouter(prefix="/metrics", tags=["metrics"])


@router.get("/worker/{worker_id}", response_model=WorkerMetricsRead)
def worker_metrics(
    worker_id: str,
    window: Window = Depends(get_window),
    store: EventStore = Depends(get_event_store),
    config: MetricsConfig = Depends(get_metrics_config),
) -> WorkerMetricsRead:
    return WorkerMetricsRead(**compute_worker_metrics(store, worker_id, window, config))


@router.get("/workstation/{station_id}", response_model=WorkstationMetricsRead)
def workstation_metrics(
    station_id: str,
    window: Window = Depends(get_window),
    store: EventStore = Depends(get_event_store),
    config: MetricsConfig = Depends(get_metrics_config),
) -> WorkstationMetricsRead:
    return WorkstationMetricsRead(**compute_workstation_metrics(store, station_id, window, config))


@router.get("/factory", response_model=FactoryMetricsRead)
async def factory_metrics(
    window: Window = Depends(get_window),
    store: EventStore = Depends(get_event_store),
    config: MetricsConfig = Depends(get_metrics_config),
) -> FactoryMetricsRead:
    return FactoryMetricsRead(**await compute_factory_metrics(store, window, config))


@router.get("/workers", response_model=list[WorkerMetricsRead])
async def all_worker_metrics(
    window: Window = Depends(get_window),
    store: EventStore = Depends(get_event_store),
    config: MetricsConfig = Depends(get_metrics_config),
) -> list[WorkerMetricsRead]:
    rows = await compute_all_worker_metrics(store, window, config)
    return [WorkerMetricsRead(**row) for row in rows]


@router.get("/workstations", response_model=list[WorkstationMetricsRead])
async def all_workstation_metrics(
    window: Window = Depends(get_window),
    store: EventStore = Depends(get_event_store),
    config: MetricsConfig = Depends(get_metrics_config),
) -> list[WorkstationMetricsRead]:
    rows = await compute_all_workstation_metrics(store, window, config)
    return [WorkstationMetricsRead(**row) for row in rows]
