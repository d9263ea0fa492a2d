from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from pydantic import ValidationError

from factory_monitor.clock import ensure_utc
from factory_monitor.errors import ApiError, validation_details
from factory_monitor.models import Event, EventType
from factory_monitor.schemas import EventCreate
from factory_monitor.store import DuplicateFingerprintError, EventStore

logger = logging.getLogger("factory_monitor.ingest")

DEFAULT_DEDUP_TOLERANCE = timedelta(seconds=1)


@dataclass(frozen=True, slots=True)
class IngestOutcome:
    event: Event
    duplicate: bool


@dataclass(slots=True)
class BatchIngestResult:
    success: int = 0
    duplicates: int = 0
    errors: int = 0
    errors_list: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "duplicates": self.duplicates,
            "errors": self.errors,
            "errors_list": list(self.errors_list),
        }


def format_fingerprint_timestamp(value: datetime) -> str:
    utc_value = ensure_utc(value).astimezone(timezone.utc)
    return utc_value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc_value.microsecond // 1000:03d}Z"


def compute_fingerprint(
    *,
    timestamp: datetime,
    worker_id: str,
    workstation_id: str,
    event_type: EventType | str,
    count: int,
) -> str:
    kind = event_type.value if isinstance(event_type, EventType) else str(event_type)
    material = "_".join(
        [
            format_fingerprint_timestamp(timestamp),
            worker_id,
            workstation_id,
            kind,
            str(count),
        ]
    )
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def build_event_values(payload: EventCreate) -> dict[str, Any]:
    timestamp = ensure_utc(payload.timestamp)
    count = payload.count if payload.count is not None else 1
    return {
        "timestamp": timestamp,
        "worker_id": payload.worker_id,
        "workstation_id": payload.workstation_id,
        "event_type": payload.event_type,
        "confidence": payload.confidence,
        "count": count,
        "fingerprint": compute_fingerprint(
            timestamp=timestamp,
            worker_id=payload.worker_id,
            workstation_id=payload.workstation_id,
            event_type=payload.event_type,
            count=count,
        ),
    }


def ingest_event(
    store: EventStore,
    payload: EventCreate,
    *,
    tolerance: timedelta = DEFAULT_DEDUP_TOLERANCE,
) -> IngestOutcome:
    # Check-then-insert is not atomic; the unique fingerprint index catches
    # the concurrent case and it is reported as a duplicate too.
    values = build_event_values(payload)
    existing = store.find_duplicate(values["fingerprint"], values["timestamp"], tolerance)
    if existing is not None:
        logger.info(
            "event_duplicate_skipped",
            extra={"event_id": existing.id, "worker_id": existing.worker_id, "fingerprint": existing.fingerprint},
        )
        return IngestOutcome(event=existing, duplicate=True)

    try:
        event = store.add_event(values)
    except DuplicateFingerprintError:
        existing = store.get_by_fingerprint(values["fingerprint"])
        if existing is None:
            raise
        logger.info(
            "event_duplicate_race",
            extra={"event_id": existing.id, "fingerprint": existing.fingerprint},
        )
        return IngestOutcome(event=existing, duplicate=True)

    logger.info(
        "event_ingested",
        extra={
            "event_id": event.id,
            "worker_id": event.worker_id,
            "workstation_id": event.workstation_id,
            "event_type": event.event_type.value,
        },
    )
    return IngestOutcome(event=event, duplicate=False)


def ingest_batch(
    store: EventStore,
    items: list[Any],
    *,
    tolerance: timedelta = DEFAULT_DEDUP_TOLERANCE,
) -> BatchIngestResult:
    result = BatchIngestResult()
    for index, item in enumerate(items):
        try:
            payload = EventCreate.model_validate(item)
            outcome = ingest_event(store, payload, tolerance=tolerance)
        except ValidationError as exc:
            result.errors += 1
            result.errors_list.append(
                {
                    "index": index,
                    "event": item,
                    "error": "; ".join(
                        f"{detail['field']}: {detail['message']}"
                        for detail in validation_details(exc.errors())
                    ),
                }
            )
            continue
        except (ApiError, DuplicateFingerprintError) as exc:
            result.errors += 1
            result.errors_list.append(
                {
                    "index": index,
                    "event": item,
                    "error": exc.message if isinstance(exc, ApiError) else "Fingerprint conflict.",
                }
            )
            continue

        if outcome.duplicate:
            result.duplicates += 1
        else:
            result.success += 1

    logger.info(
        "batch_ingest_complete",
        extra={
            "received": len(items),
            "success": result.success,
            "duplicates": result.duplicates,
            "errors": result.errors,
        },
    )
    return result
