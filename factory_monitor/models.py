from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import CheckConstraint, Enum, Float, Index, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from factory_monitor.db import Base, UTCDateTime


class EventType(str, enum.Enum):
    WORKING = "working"
    IDLE = "idle"
    ABSENT = "absent"
    PRODUCT_COUNT = "product_count"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class Worker(Base):
    __tablename__ = "workers"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    kind: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="operator",
        server_default=text("'operator'"),
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )


class Workstation(Base):
    __tablename__ = "workstations"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    kind: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default="assembly",
        server_default=text("'assembly'"),
    )
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )


class Event(Base):
    __tablename__ = "events"
    __table_args__ = (
        Index("ix_events_worker_id_timestamp", "worker_id", "timestamp"),
        Index("ix_events_workstation_id_timestamp", "workstation_id", "timestamp"),
        Index("ix_events_event_type_timestamp", "event_type", "timestamp"),
        CheckConstraint(
            "event_type IN ('working', 'idle', 'absent', 'product_count')",
            name="ck_events_event_type",
        ),
        CheckConstraint("confidence >= 0 AND confidence <= 1", name="ck_events_confidence"),
        CheckConstraint("count >= 0", name="ck_events_count"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    timestamp: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)
    worker_id: Mapped[str] = mapped_column(String(64), nullable=False)
    workstation_id: Mapped[str] = mapped_column(String(64), nullable=False)
    event_type: Mapped[EventType] = mapped_column(
        Enum(
            EventType,
            name="event_type",
            values_callable=_enum_values,
            native_enum=False,
            validate_strings=True,
        ),
        nullable=False,
    )
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    count: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default=text("1"))
    # Unique index is the backstop for concurrent duplicate submissions.
    fingerprint: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
