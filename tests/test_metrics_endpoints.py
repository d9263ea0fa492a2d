from __future__ import annotations

import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from fastapi.testclient import TestClient

from factory_monitor.clock import FixedClock
from factory_monitor.main import create_app
from factory_monitor.settings import Settings
from factory_monitor.store import EntityRef, EventStore

T0 = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


def _iso(minutes: float = 0) -> str:
    return (T0 + timedelta(minutes=minutes)).strftime("%Y-%m-%dT%H:%M:%SZ")


def _event(minutes: float, worker_id: str, station_id: str, event_type: str, count: int = 1) -> dict:
    return {
        "timestamp": _iso(minutes),
        "worker_id": worker_id,
        "workstation_id": station_id,
        "event_type": event_type,
        "confidence": 0.95,
        "count": count,
    }


class MetricsEndpointsTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        database_url = f"sqlite:///{self._tmp.name}/events.db"
        self.store = EventStore.from_url(database_url, timeout_seconds=5)
        self.store.create_schema()
        self.store.add_reference_data(
            [EntityRef(id="W1", name="John Smith"), EntityRef(id="W2", name="Sarah Johnson")],
            [EntityRef(id="S1", name="Assembly Line 1"), EntityRef(id="S2", name="Assembly Line 2")],
        )
        self.clock = FixedClock(T0 + timedelta(minutes=30))
        self.app = create_app(
            Settings(database_url=database_url, environment="test", metrics_max_workers=2),
            store=self.store,
            clock=self.clock,
            configure_logging=False,
        )
        self.client = TestClient(self.app)
        response = self.client.post(
            "/events/ingest/batch",
            json={
                "events": [
                    _event(0, "W1", "S1", "working"),
                    _event(10, "W1", "S1", "idle"),
                    _event(20, "W1", "S1", "working"),
                    _event(0, "W2", "S2", "working"),
                    _event(15, "W2", "S2", "product_count", count=3),
                    _event(15, "W2", "S2", "working"),
                ]
            },
        )
        self.assertEqual(response.json()["success"], 6)

    def tearDown(self) -> None:
        self.client.close()
        self.store.dispose()
        self._tmp.cleanup()

    def _window(self) -> dict[str, str]:
        return {"start_date": _iso(0), "end_date": _iso(30)}

    def test_worker_metrics(self) -> None:
        response = self.client.get("/metrics/worker/W1", params=self._window())

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
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

    def test_open_window_ends_at_clock_now(self) -> None:
        response = self.client.get("/metrics/worker/W1")

        self.assertEqual(response.json()["total_active_time"], 20.0)
        self.assertEqual(response.json()["utilization_percentage"], 66.67)

    def test_workstation_metrics(self) -> None:
        response = self.client.get("/metrics/workstation/S2", params=self._window())

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["station_id"], "S2")
        self.assertEqual(body["occupancy_time"], 30.0)
        self.assertEqual(body["utilization_percentage"], 100.0)
        self.assertEqual(body["total_units_produced"], 3)
        self.assertEqual(body["throughput_rate"], 6.0)

    def test_factory_metrics(self) -> None:
        response = self.client.get("/metrics/factory", params=self._window())

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            {
                "total_productive_time": 50.0,
                "total_production_count": 3,
                "average_production_rate": 6.0,
                "average_utilization": 83.33,
                "active_workers": 2,
                "total_workers": 2,
            },
        )

    def test_all_workers_and_workstations(self) -> None:
        workers = self.client.get("/metrics/workers", params=self._window()).json()
        stations = self.client.get("/metrics/workstations", params=self._window()).json()

        self.assertEqual([row["worker_id"] for row in workers], ["W1", "W2"])
        self.assertEqual(workers[1]["units_per_hour"], 6.0)
        self.assertEqual([row["station_id"] for row in stations], ["S1", "S2"])
        self.assertEqual(stations[0]["name"], "Assembly Line 1")

    def test_empty_window_returns_zero_metrics_everywhere(self) -> None:
        params = {"start_date": "2026-01-01T00:00:00Z", "end_date": "2026-01-02T00:00:00Z"}
        paths = [
            "/metrics/worker/W1",
            "/metrics/workstation/S1",
            "/metrics/factory",
            "/metrics/workers",
            "/metrics/workstations",
        ]

        for path in paths:
            response = self.client.get(path, params=params)
            self.assertEqual(response.status_code, 200, path)
            body = response.json()
            rows = body if isinstance(body, list) else [body]
            for row in rows:
                for key, value in row.items():
                    if key in {"worker_id", "station_id", "name", "total_workers"}:
                        continue
                    self.assertEqual(value, 0, f"{path} {key}")

    def test_inverted_window_is_a_validation_error(self) -> None:
        response = self.client.get(
            "/metrics/worker/W1",
            params={"start_date": _iso(30), "end_date": _iso(0)},
        )

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["code"], "VALIDATION_ERROR")
        self.assertEqual(response.json()["error"]["details"][0]["field"], "start_date")

    def test_malformed_date_is_a_validation_error(self) -> None:
        response = self.client.get("/metrics/factory", params={"start_date": "not-a-date"})

        self.assertEqual(response.status_code, 400)

    def test_date_at_datetime_limit_is_a_validation_error(self) -> None:
        response = self.client.get("/metrics/factory", params={"start_date": "0001-01-01T00:00:00+01:00"})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"]["code"], "VALIDATION_ERROR")
        self.assertEqual(response.json()["error"]["details"][0]["field"], "start_date")

    def test_factory_metrics_without_start_span_from_earliest_event(self) -> None:
        response = self.client.get("/metrics/factory", params={"end_date": _iso(45)})

        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            {
                "total_productive_time": 80.0,
                "total_production_count": 3,
                "average_production_rate": 4.0,
                "average_utilization": 88.89,
                "active_workers": 2,
                "total_workers": 2,
            },
        )

    def test_product_count_annotation_setting_changes_active_time(self) -> None:
        self.client.post("/events/ingest", json=_event(22, "W1", "S1", "product_count", count=2))
        self.app.state.settings = self.app.state.settings.model_copy(
            update={"product_count_marks_state": False}
        )

        response = self.client.get("/metrics/worker/W1", params=self._window())

        self.assertEqual(response.json()["total_active_time"], 20.0)
        self.assertEqual(response.json()["total_units_produced"], 2)


class HealthEndpointTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        database_url = f"sqlite:///{self._tmp.name}/events.db"
        self.store = EventStore.from_url(database_url, timeout_seconds=5)
        self.app = create_app(
            Settings(database_url=database_url, environment="test"),
            store=self.store,
            clock=FixedClock(T0),
            configure_logging=False,
        )

    def tearDown(self) -> None:
        self.store.dispose()
        self._tmp.cleanup()

    def test_health_reports_store_and_schema(self) -> None:
        with TestClient(self.app) as client:
            response = client.get("/health")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["status"], "ok")
        self.assertEqual(body["database"]["status"], "connected")
        self.assertTrue(body["schema_guard"]["ok"])

    def test_health_reports_disconnected_store(self) -> None:
        client = TestClient(self.app)
        with patch.object(self.store, "ping", return_value=False):
            response = client.get("/health")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["database"]["status"], "disconnected")
        self.assertEqual(response.json()["schema_guard"]["issues"], ["SCHEMA_GUARD_NOT_RUN"])
