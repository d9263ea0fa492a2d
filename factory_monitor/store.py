from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import delete, func, select, text, union
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from factory_monitor.db import Base, build_engine, build_session_factory
from factory_monitor.errors import StoreUnavailableError
from factory_monitor.models import Event, EventType, Worker, Workstation

logger = logging.getLogger("factory_monitor.store")


class DuplicateFingerprintError(Exception):
    def __init__(self, fingerprint: str):
        super().__init__(fingerprint)
        self.fingerprint = fingerprint


@dataclass(frozen=True, slots=True)
class EntityRef:
    id: str
    name: str
    kind: str | None = None


@dataclass(frozen=True, slots=True)
class EventFilter:
    worker_id: str | None = None
    workstation_id: str | None = None
    event_type: EventType | None = None
    start: datetime | None = None
    end: datetime | None = None


class EventStore:
    """Append-only event log with per-entity range queries.

    Built once by the process entry point and handed to the routers and
    services; it owns the engine and its connection pool.
    """

    def __init__(self, engine: Engine, *, session_factory: sessionmaker[Session] | None = None):
        self.engine = engine
        self._session_factory = session_factory or build_session_factory(engine)

    @classmethod
    def from_url(cls, database_url: str, *, timeout_seconds: float) -> EventStore:
        return cls(build_engine(database_url, timeout_seconds=timeout_seconds))

    def create_schema(self) -> None:
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise _unavailable(exc) from exc

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
        except IntegrityError:
            session.rollback()
            raise
        except (DBAPIError, SQLAlchemyError) as exc:
            session.rollback()
            raise _unavailable(exc) from exc
        finally:
            session.close()

    def ping(self) -> bool:
        try:
            with self.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            logger.warning("store_ping_failed", extra={"error": exc.__class__.__name__})
            return False
        return True

    def find_duplicate(self, fingerprint: str, timestamp: datetime, tolerance: timedelta) -> Event | None:
        stmt = (
            select(Event)
            .where(
                Event.fingerprint == fingerprint,
                Event.timestamp >= timestamp - tolerance,
                Event.timestamp <= timestamp + tolerance,
            )
            .order_by(Event.id.asc())
            .limit(1)
        )
        with self.session() as session:
            return session.scalar(stmt)

    def get_by_fingerprint(self, fingerprint: str) -> Event | None:
        with self.session() as session:
            return session.scalar(select(Event).where(Event.fingerprint == fingerprint))

    def add_event(self, values: dict[str, Any]) -> Event:
        event = Event(**values)
        with self.session() as session:
            session.add(event)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise DuplicateFingerprintError(values["fingerprint"]) from exc
            session.refresh(event)
            return event

    def add_events(self, rows: Iterable[dict[str, Any]], *, batch_size: int = 500) -> int:
        inserted = 0
        batch: list[Event] = []
        with self.session() as session:
            for row in rows:
                batch.append(Event(**row))
                if len(batch) >= batch_size:
                    session.add_all(batch)
                    session.flush()
                    inserted += len(batch)
                    batch = []
            if batch:
                session.add_all(batch)
                inserted += len(batch)
            session.commit()
        return inserted

    def list_events(self, filters: EventFilter, *, limit: int) -> list[Event]:
        stmt = select(Event).order_by(Event.timestamp.desc(), Event.id.desc()).limit(limit)
        if filters.worker_id:
            stmt = stmt.where(Event.worker_id == filters.worker_id)
        if filters.workstation_id:
            stmt = stmt.where(Event.workstation_id == filters.workstation_id)
        if filters.event_type is not None:
            stmt = stmt.where(Event.event_type == filters.event_type)
        if filters.start is not None:
            stmt = stmt.where(Event.timestamp >= filters.start)
        if filters.end is not None:
            stmt = stmt.where(Event.timestamp < filters.end)
        with self.session() as session:
            return list(session.scalars(stmt).all())

    def worker_events(self, worker_id: str, *, start: datetime | None, end: datetime) -> list[Event]:
        return self._range(Event.worker_id == worker_id, start=start, end=end)

    def workstation_events(self, station_id: str, *, start: datetime | None, end: datetime) -> list[Event]:
        return self._range(Event.workstation_id == station_id, start=start, end=end)

    def earliest_event_at(self, *, start: datetime | None, end: datetime) -> datetime | None:
        stmt = select(func.min(Event.timestamp)).where(Event.timestamp < end)
        if start is not None:
            stmt = stmt.where(Event.timestamp >= start)
        with self.session() as session:
            return session.scalar(stmt)

    def latest_event_at(self) -> datetime | None:
        with self.session() as session:
            return session.scalar(select(func.max(Event.timestamp)))

    def count_events(self) -> int:
        with self.session() as session:
            return int(session.scalar(select(func.count(Event.id))) or 0)

    def get_worker(self, worker_id: str) -> EntityRef | None:
        with self.session() as session:
            worker = session.get(Worker, worker_id)
            if worker is None:
                return None
            return EntityRef(id=worker.id, name=worker.display_name, kind=worker.kind)

    def get_workstation(self, station_id: str) -> EntityRef | None:
        with self.session() as session:
            station = session.get(Workstation, station_id)
            if station is None:
                return None
            return EntityRef(id=station.id, name=station.display_name, kind=station.kind)

    def registered_workers(self) -> list[EntityRef]:
        with self.session() as session:
            rows = session.scalars(select(Worker).order_by(Worker.id.asc())).all()
            return [EntityRef(id=row.id, name=row.display_name, kind=row.kind) for row in rows]

    def registered_workstations(self) -> list[EntityRef]:
        with self.session() as session:
            rows = session.scalars(select(Workstation).order_by(Workstation.id.asc())).all()
            return [EntityRef(id=row.id, name=row.display_name, kind=row.kind) for row in rows]

    def known_workers(self) -> list[EntityRef]:
        return self._known(Worker, Event.worker_id)

    def known_workstations(self) -> list[EntityRef]:
        return self._known(Workstation, Event.workstation_id)

    def reset(self) -> None:
        with self.session() as session:
            session.execute(delete(Event))
            session.execute(delete(Worker))
            session.execute(delete(Workstation))
            session.commit()

    def add_reference_data(self, workers: Iterable[EntityRef], workstations: Iterable[EntityRef]) -> None:
        with self.session() as session:
            for item in workers:
                session.add(Worker(id=item.id, display_name=item.name, kind=item.kind or "operator"))
            for item in workstations:
                session.add(Workstation(id=item.id, display_name=item.name, kind=item.kind or "assembly"))
            session.commit()

    def _range(self, condition, *, start: datetime | None, end: datetime) -> list[Event]:  # type: ignore[no-untyped-def]
        stmt = select(Event).where(condition, Event.timestamp < end)
        if start is not None:
            stmt = stmt.where(Event.timestamp >= start)
        stmt = stmt.order_by(Event.timestamp.asc(), Event.id.asc())
        with self.session() as session:
            return list(session.scalars(stmt).all())

    def _known(self, model, event_column) -> list[EntityRef]:  # type: ignore[no-untyped-def]
        ids_stmt = union(select(model.id), select(event_column).distinct())
        with self.session() as session:
            ids = sorted(str(value) for value in session.scalars(ids_stmt).all())
            names = {
                row.id: (row.display_name, row.kind)
                for row in session.scalars(select(model)).all()
            }
        refs: list[EntityRef] = []
        for entity_id in ids:
            name, kind = names.get(entity_id, (entity_id, None))
            refs.append(EntityRef(id=entity_id, name=name, kind=kind))
        return refs


def _unavailable(exc: Exception) -> StoreUnavailableError:
    logger.error(
        "store_unavailable",
        extra={"error": exc.__class__.__name__, "detail": str(exc).splitlines()[0] if str(exc) else ""},
    )
    return StoreUnavailableError(cause=exc.__class__.__name__)
