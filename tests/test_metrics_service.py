from __future__ import annotations

import tempfile
import threading
import time
import unittest
from datetime import datetime, timedelta, timezone

from factory_monitor.errors import StoreUnavailableError
from factory_monitor.models import EventType
from factory_monitor.services.ingestion import compute_fingerprint
from factory_monitor.services.metrics import (
    MetricsConfig,
    compute_all_worker_metrics,
    compute_all_workstation_metrics,
    compute_factory_metrics,
    compute_worker_metrics,
    compute_workstation_metrics,
    fan_out,
)
from factory_monitor.services.reconstruction import Window
from factory_monitor.store import EntityRef, EventStore

T0 = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)
CONFIG = MetricsConfig(max_workers=4, timeout_seconds=10)


def _row(minutes: float, worker_id: str, station_id: str, event_type: EventType, count: int = 1) -> dict:
    timestamp = T0 + timedelta(minutes=minutes)
    return {
        "timestamp": timestamp,
        "worker_id": worker_id,
        "workstation_id": station_id,
        "event_type": event_type,
        "confidence": 0.9,
        "count": count,
        "fingerprint": compute_fingerprint(
            timestamp=timestamp,
            worker_id=worker_id,
            workstation_id=station_id,
            event_type=event_type,
            count=count,
        ),
    }


def _build_store(tmp_dir: str) -> EventStore:
    store = EventStore.from_url(f"sqlite:///{tmp_dir}/events.db", timeout_seconds=5)
    store.create_schema()
    return store


class _SeededStoreMixin:
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.store = _build_store(self._tmp.name)
        self.store.add_reference_data(
            [EntityRef(id="W1", name="John Smith"), EntityRef(id="W2", name="Sarah Johnson")],
            [EntityRef(id="S1", name="Assembly Line 1"), EntityRef(id="S2", name="Assembly Line 2")],
        )
        self.store.add_events(
            [
                _row(0, "W1", "S1", EventType.WORKING),
                _row(10, "W1", "S1", EventType.IDLE),
                _row(20, "W1", "S1", EventType.WORKING),
                _row(0, "W2", "S2", EventType.WORKING),
                _row(15, "W2", "S2", EventType.PRODUCT_COUNT, count=3),
                _row(15, "W2", "S2", EventType.WORKING),
            ]
        )
        self.window = Window(start=T0, end=T0 + timedelta(minutes=30))

    def tearDown(self) -> None:
        self.store.dispose()
        self._tmp.cleanup()


class WorkerAndStationMetricsTests(_SeededStoreMixin, unittest.TestCase):
    def test_worker_metrics(self) -> None:
        metrics = compute_worker_metrics(self.store, "W1", self.window, CONFIG)

        self.assertEqual(
            metrics,
            {
                "worker_id": "W1",
                "name": "John Smith",
                "total_active_time": 20.0,
                "total_idle_time": 10.0,
                "utilization_percentage": 66.67,
                "total_units_produced": 0,
                "units_per_hour": 0.0,
            },
        )

    def test_worker_metrics_with_production(self) -> None:
        metrics = compute_worker_metrics(self.store, "W2", self.window, CONFIG)

        self.assertEqual(metrics["total_active_time"], 30.0)
        self.assertEqual(metrics["utilization_percentage"], 100.0)
        self.assertEqual(metrics["total_units_produced"], 3)
        self.assertEqual(metrics["units_per_hour"], 6.0)

    def test_unknown_worker_gets_zero_metrics(self) -> None:
        metrics = compute_worker_metrics(self.store, "W9", self.window, CONFIG)

        self.assertIsNone(metrics["name"])
        for key in ("total_active_time", "total_idle_time", "utilization_percentage", "units_per_hour"):
            self.assertEqual(metrics[key], 0.0)
        self.assertEqual(metrics["total_units_produced"], 0)

    def test_window_excludes_events_at_end(self) -> None:
        window = Window(start=T0, end=T0 + timedelta(minutes=15))

        metrics = compute_worker_metrics(self.store, "W2", window, CONFIG)

        self.assertEqual(metrics["total_units_produced"], 0)
        self.assertEqual(metrics["total_active_time"], 15.0)

    def test_workstation_metrics(self) -> None:
        metrics = compute_workstation_metrics(self.store, "S2", self.window, CONFIG)

        self.assertEqual(
            metrics,
            {
                "station_id": "S2",
                "name": "Assembly Line 2",
                "occupancy_time": 30.0,
                "utilization_percentage": 100.0,
                "total_units_produced": 3,
                "throughput_rate": 6.0,
            },
        )

    def test_workstation_absent_time_lowers_utilization(self) -> None:
        self.store.add_events(
            [
                _row(0, "W3", "S3", EventType.WORKING),
                _row(10, "W3", "S3", EventType.ABSENT),
                _row(20, "W3", "S3", EventType.WORKING),
            ]
        )
        window = Window(start=T0, end=T0 + timedelta(minutes=40))

        metrics = compute_workstation_metrics(self.store, "S3", window, CONFIG)

        self.assertEqual(metrics["occupancy_time"], 30.0)
        self.assertEqual(metrics["utilization_percentage"], 75.0)
        self.assertIsNone(metrics["name"])

    def test_workstation_open_start_spans_from_first_event(self) -> None:
        self.store.add_events([_row(10, "W3", "S3", EventType.WORKING), _row(20, "W3", "S3", EventType.ABSENT)])
        window = Window(start=None, end=T0 + timedelta(minutes=30))

        metrics = compute_workstation_metrics(self.store, "S3", window, CONFIG)

        self.assertEqual(metrics["occupancy_time"], 10.0)
        self.assertEqual(metrics["utilization_percentage"], 50.0)

    def test_workstation_without_events_is_zero(self) -> None:
        metrics = compute_workstation_metrics(self.store, "S1", Window(start=None, end=T0), CONFIG)

        self.assertEqual(metrics["occupancy_time"], 0.0)
        self.assertEqual(metrics["utilization_percentage"], 0.0)
        self.assertEqual(metrics["throughput_rate"], 0.0)


class FanOutMetricsTests(_SeededStoreMixin, unittest.IsolatedAsyncioTestCase):
    async def test_factory_metrics(self) -> None:
        metrics = await compute_factory_metrics(self.store, self.window, CONFIG)

        self.assertEqual(
            metrics,
            {
                "total_productive_time": 50.0,
                "total_production_count": 3,
                "average_production_rate": 6.0,
                "average_utilization": 83.33,
                "active_workers": 2,
                "total_workers": 2,
            },
        )

    async def test_factory_metrics_without_start_span_from_earliest_event(self) -> None:
        self.store.add_events([_row(100, "W2", "S2", EventType.PRODUCT_COUNT, count=2)])
        window = Window(start=None, end=T0 + timedelta(minutes=45))

        metrics = await compute_factory_metrics(self.store, window, CONFIG)

        # 3 units over the 45 minutes since the first event at T0.
        self.assertEqual(metrics["average_production_rate"], 4.0)
        self.assertEqual(metrics["total_production_count"], 3)
        self.assertEqual(metrics["total_productive_time"], 80.0)
        self.assertEqual(metrics["average_utilization"], 88.89)

    async def test_factory_metrics_without_start_only_count_events_before_window_end(self) -> None:
        window = Window(start=None, end=T0 - timedelta(minutes=30))
        self.store.add_events(
            [
                _row(-90, "W1", "S1", EventType.WORKING),
                _row(-60, "W1", "S1", EventType.PRODUCT_COUNT, count=3),
                _row(-60, "W1", "S1", EventType.WORKING),
            ]
        )

        metrics = await compute_factory_metrics(self.store, window, CONFIG)

        # Span runs from the first event (T0-90) to the window end (T0-30).
        self.assertEqual(metrics["total_productive_time"], 60.0)
        self.assertEqual(metrics["average_production_rate"], 3.0)
        self.assertEqual(metrics["active_workers"], 1)

    async def test_factory_metrics_for_empty_window(self) -> None:
        window = Window(start=T0 - timedelta(days=2), end=T0 - timedelta(days=1))

        metrics = await compute_factory_metrics(self.store, window, CONFIG)

        self.assertEqual(metrics["total_productive_time"], 0.0)
        self.assertEqual(metrics["total_production_count"], 0)
        self.assertEqual(metrics["average_production_rate"], 0.0)
        self.assertEqual(metrics["average_utilization"], 0.0)
        self.assertEqual(metrics["active_workers"], 0)
        self.assertEqual(metrics["total_workers"], 2)

    async def test_idle_worker_without_events_is_left_out_of_average(self) -> None:
        self.store.add_reference_data([EntityRef(id="W4", name="Emily Brown")], [])

        metrics = await compute_factory_metrics(self.store, self.window, CONFIG)

        self.assertEqual(metrics["average_utilization"], 83.33)
        self.assertEqual(metrics["active_workers"], 2)
        self.assertEqual(metrics["total_workers"], 3)

    async def test_all_worker_metrics_cover_known_workers(self) -> None:
        self.store.add_reference_data([EntityRef(id="W4", name="Emily Brown")], [])
        self.store.add_events([_row(5, "W5", "S1", EventType.IDLE)])

        rows = await compute_all_worker_metrics(self.store, self.window, CONFIG)

        self.assertEqual([row["worker_id"] for row in rows], ["W1", "W2", "W4", "W5"])
        by_id = {row["worker_id"]: row for row in rows}
        self.assertEqual(by_id["W1"]["utilization_percentage"], 66.67)
        self.assertEqual(by_id["W4"]["total_active_time"], 0.0)
        self.assertEqual(by_id["W5"]["name"], "W5")
        self.assertEqual(by_id["W5"]["total_idle_time"], 25.0)

    async def test_all_workstation_metrics(self) -> None:
        rows = await compute_all_workstation_metrics(self.store, self.window, CONFIG)

        self.assertEqual([row["station_id"] for row in rows], ["S1", "S2"])
        self.assertEqual(rows[0]["occupancy_time"], 30.0)
        self.assertEqual(rows[1]["total_units_produced"], 3)

    async def test_fan_out_is_bounded(self) -> None:
        lock = threading.Lock()
        state = {"running": 0, "peak": 0}

        def _task(item: int) -> int:
            with lock:
                state["running"] += 1
                state["peak"] = max(state["peak"], state["running"])
            time.sleep(0.05)
            with lock:
                state["running"] -= 1
            return item * 2

        results = await fan_out(list(range(6)), _task, MetricsConfig(max_workers=2, timeout_seconds=5))

        self.assertEqual(results, [0, 2, 4, 6, 8, 10])
        self.assertLessEqual(state["peak"], 2)

    async def test_fan_out_timeout_is_retryable_store_error(self) -> None:
        def _slow(_item: int) -> int:
            time.sleep(0.3)
            return 0

        with self.assertRaises(StoreUnavailableError) as exc:
            await fan_out([1], _slow, MetricsConfig(max_workers=1, timeout_seconds=0.05))

        self.assertEqual(exc.exception.status_code, 503)
        self.assertEqual(exc.exception.code, "STORE_TIMEOUT")
