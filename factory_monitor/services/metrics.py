from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import Any, TypeVar

from factory_monitor.errors import StoreUnavailableError
from factory_monitor.services.reconstruction import (
    ReconstructionResult,
    Window,
    reconstruct,
    round_metric,
)
from factory_monitor.store import EntityRef, EventStore

logger = logging.getLogger("factory_monitor.metrics")

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True, slots=True)
class MetricsConfig:
    max_workers: int = 4
    timeout_seconds: float = 10.0
    product_count_marks_state: bool = True


def reconstruct_worker(
    store: EventStore,
    worker_id: str,
    window: Window,
    config: MetricsConfig,
) -> ReconstructionResult:
    events = store.worker_events(worker_id, start=window.start, end=window.end)
    return reconstruct(
        events,
        window_end=window.end,
        product_count_marks_state=config.product_count_marks_state,
    )


def reconstruct_workstation(
    store: EventStore,
    station_id: str,
    window: Window,
    config: MetricsConfig,
) -> ReconstructionResult:
    events = store.workstation_events(station_id, start=window.start, end=window.end)
    return reconstruct(
        events,
        window_end=window.end,
        product_count_marks_state=config.product_count_marks_state,
    )


def worker_summary(worker_id: str, result: ReconstructionResult, *, name: str | None = None) -> dict[str, Any]:
    return {
        "worker_id": worker_id,
        "name": name,
        "total_active_time": round_metric(result.active_minutes),
        "total_idle_time": round_metric(result.idle_minutes),
        "utilization_percentage": round_metric(result.utilization_percentage),
        "total_units_produced": result.units_produced,
        "units_per_hour": round_metric(result.units_per_hour),
    }


def workstation_summary(
    station_id: str,
    result: ReconstructionResult,
    window: Window,
    *,
    name: str | None = None,
) -> dict[str, Any]:
    span = window.span_minutes(result.first_event_at) if result.event_count else 0.0
    utilization = result.occupied_minutes / span * 100 if span > 0 else 0.0
    return {
        "station_id": station_id,
        "name": name,
        "occupancy_time": round_metric(result.occupied_minutes),
        "utilization_percentage": round_metric(min(100.0, utilization)),
        "total_units_produced": result.units_produced,
        "throughput_rate": round_metric(result.throughput_rate),
    }


def compute_worker_metrics(
    store: EventStore,
    worker_id: str,
    window: Window,
    config: MetricsConfig,
) -> dict[str, Any]:
    worker = store.get_worker(worker_id)
    result = reconstruct_worker(store, worker_id, window, config)
    return worker_summary(worker_id, result, name=worker.name if worker else None)


def compute_workstation_metrics(
    store: EventStore,
    station_id: str,
    window: Window,
    config: MetricsConfig,
) -> dict[str, Any]:
    station = store.get_workstation(station_id)
    result = reconstruct_workstation(store, station_id, window, config)
    return workstation_summary(station_id, result, window, name=station.name if station else None)


async def compute_all_worker_metrics(
    store: EventStore,
    window: Window,
    config: MetricsConfig,
) -> list[dict[str, Any]]:
    workers = await asyncio.to_thread(store.known_workers)
    results = await fan_out(
        workers,
        lambda worker: reconstruct_worker(store, worker.id, window, config),
        config,
    )
    return [
        worker_summary(worker.id, result, name=worker.name)
        for worker, result in zip(workers, results)
    ]


async def compute_all_workstation_metrics(
    store: EventStore,
    window: Window,
    config: MetricsConfig,
) -> list[dict[str, Any]]:
    stations = await asyncio.to_thread(store.known_workstations)
    results = await fan_out(
        stations,
        lambda station: reconstruct_workstation(store, station.id, window, config),
        config,
    )
    return [
        workstation_summary(station.id, result, window, name=station.name)
        for station, result in zip(stations, results)
    ]


async def compute_factory_metrics(
    store: EventStore,
    window: Window,
    config: MetricsConfig,
) -> dict[str, Any]:
    """Roll every known worker up into factory totals.

    Average utilization is a plain mean over workers that have events in the
    window, so a worker with a handful of events weighs as much as one with a
    full shift. The production rate divides by the whole window, from the
    explicit start or the earliest event in it.
    """
    workers: Sequence[EntityRef] = await asyncio.to_thread(store.known_workers)
    results = await fan_out(
        workers,
        lambda worker: reconstruct_worker(store, worker.id, window, config),
        config,
    )
    observed = [result for result in results if result.event_count > 0]
    if not observed:
        return _empty_factory_metrics(total_workers=len(workers))

    total_active = sum(result.active_minutes for result in observed)
    total_units = sum(result.units_produced for result in observed)
    average_utilization = sum(result.utilization_percentage for result in observed) / len(observed)

    earliest = await asyncio.to_thread(store.earliest_event_at, start=window.start, end=window.end)
    span = window.span_minutes(earliest)
    production_rate = total_units / span * 60 if span > 0 else 0.0

    return {
        "total_productive_time": round_metric(total_active),
        "total_production_count": total_units,
        "average_production_rate": round_metric(production_rate),
        "average_utilization": round_metric(average_utilization),
        "active_workers": len(observed),
        "total_workers": len(workers),
    }


async def fan_out(
    items: Sequence[T],
    task: Callable[[T], R],
    config: MetricsConfig,
) -> list[R]:
    """Run ``task`` for every item on worker threads, at most ``max_workers`` at a time."""
    if not items:
        return []
    semaphore = asyncio.Semaphore(max(1, config.max_workers))

    async def _run(item: T) -> R:
        async with semaphore:
            return await asyncio.to_thread(task, item)

    gathered: Awaitable[list[R]] = asyncio.gather(*(_run(item) for item in items))
    try:
        return await asyncio.wait_for(gathered, timeout=config.timeout_seconds)
    except asyncio.TimeoutError as exc:
        logger.error(
            "metrics_fanout_timeout",
            extra={"entities": len(items), "timeout_seconds": config.timeout_seconds},
        )
        raise StoreUnavailableError(
            "Event store did not answer in time.",
            code="STORE_TIMEOUT",
            cause="TimeoutError",
        ) from exc


def _empty_factory_metrics(*, total_workers: int) -> dict[str, Any]:
    return {
        "total_productive_time": 0.0,
        "total_production_count": 0,
        "average_production_rate": 0.0,
        "average_utilization": 0.0,
        "active_workers": 0,
        "total_workers": total_workers,
    }
