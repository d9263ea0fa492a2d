from __future__ import annotations

from datetime import datetime, timedelta

from fastapi import Depends, Query, Request

from factory_monitor.clock import Clock
from factory_monitor.services.metrics import MetricsConfig
from factory_monitor.services.reconstruction import Window, resolve_window
from factory_monitor.settings import Settings, get_metrics_max_workers
from factory_monitor.store import EventStore


def get_event_store(request: Request) -> EventStore:
    return request.app.state.event_store


def get_clock(request: Request) -> Clock:
    return request.app.state.clock


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_metrics_config(settings: Settings = Depends(get_app_settings)) -> MetricsConfig:
    return MetricsConfig(
        max_workers=get_metrics_max_workers(settings),
        timeout_seconds=settings.store_timeout_seconds,
        product_count_marks_state=settings.product_count_marks_state,
    )


def get_dedup_tolerance(settings: Settings = Depends(get_app_settings)) -> timedelta:
    return timedelta(seconds=max(0.0, settings.dedup_tolerance_seconds))


def get_window(
    start_date: datetime | None = Query(default=None),
    end_date: datetime | None = Query(default=None),
    clock: Clock = Depends(get_clock),
) -> Window:
    return resolve_window(start_date, end_date, clock)
