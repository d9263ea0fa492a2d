from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError


@dataclass(frozen=True, slots=True)
class SchemaGuardResult:
    ok: bool
    checked_at_utc: datetime
    issues: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "checked_at_utc": self.checked_at_utc.isoformat(),
            "issues": list(self.issues),
            "warnings": list(self.warnings),
            "issue_count": len(self.issues),
            "warning_count": len(self.warnings),
        }


REQUIRED_TABLE_COLUMNS: dict[str, set[str]] = {
    "events": {"id", "timestamp", "worker_id", "workstation_id", "event_type", "confidence", "count", "fingerprint"},
    "workers": {"id", "display_name", "kind"},
    "workstations": {"id", "display_name", "kind"},
}

REQUIRED_UNIQUE_COLUMNS: dict[str, str] = {
    "events": "fingerprint",
}


def not_run_result() -> SchemaGuardResult:
    return SchemaGuardResult(
        ok=False,
        checked_at_utc=datetime.now(timezone.utc),
        issues=["SCHEMA_GUARD_NOT_RUN"],
        warnings=[],
    )


def verify_runtime_schema(engine: Engine) -> SchemaGuardResult:
    issues: list[str] = []
    warnings: list[str] = []
    checked_at_utc = datetime.now(timezone.utc)
    try:
        inspector = inspect(engine)
    except SQLAlchemyError as exc:
        return SchemaGuardResult(
            ok=False,
            checked_at_utc=checked_at_utc,
            issues=[f"STORE_UNREACHABLE:{exc.__class__.__name__}"],
        )

    for table_name, required_columns in REQUIRED_TABLE_COLUMNS.items():
        try:
            column_names = {str(item.get("name")) for item in inspector.get_columns(table_name)}
        except SQLAlchemyError as exc:
            issues.append(f"TABLE_UNREADABLE:{table_name}:{exc.__class__.__name__}")
            continue

        missing_columns = sorted(item for item in required_columns if item not in column_names)
        if missing_columns:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing_columns)}")

    for table_name, column_name in REQUIRED_UNIQUE_COLUMNS.items():
        try:
            indexes = inspector.get_indexes(table_name) or []
            constraints = inspector.get_unique_constraints(table_name) or []
        except SQLAlchemyError as exc:
            warnings.append(f"INDEX_INSPECTION_FAILED:{table_name}:{exc.__class__.__name__}")
            continue
        unique_sets = [
            list(item.get("column_names") or [])
            for item in indexes
            if item.get("unique")
        ] + [list(item.get("column_names") or []) for item in constraints]
        if [column_name] not in unique_sets:
            warnings.append(f"MISSING_UNIQUE:{table_name}:{column_name}")

    try:
        with engine.connect() as connection:
            row = connection.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).scalar()
            if not str(row or "").strip():
                warnings.append("ALEMBIC_VERSION_EMPTY")
    except SQLAlchemyError:
        # Schemas bootstrapped with create_all carry no alembic stamp.
        warnings.append("ALEMBIC_VERSION_MISSING")

    return SchemaGuardResult(
        ok=len(issues) == 0,
        checked_at_utc=checked_at_utc,
        issues=issues,
        warnings=warnings,
    )
