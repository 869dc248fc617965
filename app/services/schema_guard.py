from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import bindparam, inspect, text
from sqlalchemy.engine import Engine


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
    "office_locations": {"id", "geofence_radius_m", "office_hours_start"},
    "office_qr_codes": {"id", "code_value", "expires_at", "scan_count"},
    "qr_scans": {"id", "employee_id", "qr_code_id", "counted"},
    "attendance_records": {"id", "primary_verification_method", "check_in_method_count"},
    "verification_attempts": {"id", "method", "success"},
    "room_bookings": {"id", "status", "checked_in_at", "release_reason"},
    "parking_reservations": {"id", "status", "arrived_at", "release_reason"},
    "wfh_approvals": {"id", "status", "urgency", "expires_at", "review_required"},
    "alembic_version": {"version_num"},
}

REQUIRED_ENUM_VALUES: dict[str, set[str]] = {
    "verification_method": {"GPS", "WIFI", "QR_CODE", "MANUAL"},
    "room_booking_status": {"CONFIRMED", "CANCELLED", "COMPLETED"},
    "parking_reservation_status": {"ACTIVE", "COMPLETED", "CANCELLED"},
    "wfh_status": {"PENDING", "APPROVED", "REJECTED", "AUTO_APPROVED", "EXPIRED"},
}

# Mutual-exclusion invariants live in the database; bookings are unsafe without them.
REQUIRED_CONSTRAINTS: set[str] = {"ex_room_bookings_no_overlap"}
REQUIRED_INDEXES: set[str] = {
    "uq_parking_reservations_employee_date_active",
    "uq_parking_reservations_spot_date_active",
    "uq_wfh_approvals_employee_date_live",
}

_CONSTRAINT_QUERY = text("SELECT conname FROM pg_constraint WHERE conname IN :names").bindparams(
    bindparam("names", expanding=True)
)
_INDEX_QUERY = text("SELECT indexname FROM pg_indexes WHERE indexname IN :names").bindparams(
    bindparam("names", expanding=True)
)


def verify_runtime_schema(engine: Engine) -> SchemaGuardResult:
    issues: list[str] = []
    warnings: list[str] = []
    checked_at_utc = datetime.now(timezone.utc)
    inspector = inspect(engine)

    for table_name, required_columns in REQUIRED_TABLE_COLUMNS.items():
        try:
            column_names = {str(item.get("name")) for item in inspector.get_columns(table_name)}
        except Exception as exc:  # pragma: no cover - defensive
            issues.append(f"TABLE_UNREADABLE:{table_name}:{exc.__class__.__name__}")
            continue

        missing_columns = sorted(item for item in required_columns if item not in column_names)
        if missing_columns:
            issues.append(f"MISSING_COLUMNS:{table_name}:{','.join(missing_columns)}")

    try:
        enums = inspector.get_enums() or []
    except Exception as exc:  # pragma: no cover - defensive
        warnings.append(f"ENUM_INSPECTION_FAILED:{exc.__class__.__name__}")
        enums = []

    enum_values_by_name: dict[str, set[str]] = {}
    for enum_item in enums:
        name = str(enum_item.get("name") or "").strip()
        if not name:
            continue
        labels = enum_item.get("labels")
        if isinstance(labels, list):
            enum_values_by_name[name] = {str(label) for label in labels}

    for enum_name, required_values in REQUIRED_ENUM_VALUES.items():
        if enum_name not in enum_values_by_name:
            warnings.append(f"ENUM_NOT_FOUND:{enum_name}")
            continue
        missing_values = sorted(item for item in required_values if item not in enum_values_by_name[enum_name])
        if missing_values:
            issues.append(f"MISSING_ENUM_VALUES:{enum_name}:{','.join(missing_values)}")

    try:
        with engine.connect() as connection:
            row = connection.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).scalar()
            version = str(row).strip() if row is not None else ""
            if not version:
                issues.append("ALEMBIC_VERSION_EMPTY")

            found_constraints = set(
                connection.execute(_CONSTRAINT_QUERY, {"names": sorted(REQUIRED_CONSTRAINTS)}).scalars().all()
            )
            for name in sorted(REQUIRED_CONSTRAINTS - found_constraints):
                issues.append(f"MISSING_CONSTRAINT:{name}")

            found_indexes = set(
                connection.execute(_INDEX_QUERY, {"names": sorted(REQUIRED_INDEXES)}).scalars().all()
            )
            for name in sorted(REQUIRED_INDEXES - found_indexes):
                issues.append(f"MISSING_INDEX:{name}")
    except Exception as exc:  # pragma: no cover - defensive
        issues.append(f"DATABASE_CHECK_FAILED:{exc.__class__.__name__}")

    return SchemaGuardResult(
        ok=len(issues) == 0,
        checked_at_utc=checked_at_utc,
        issues=issues,
        warnings=warnings,
    )
