from __future__ import annotations

import logging
from datetime import date, datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.audit import log_audit
from app.errors import ApiError
from app.models import (
    AttendanceRecord,
    AttendanceStatus,
    AuditActorType,
    OfficeLocation,
    VerificationAttempt,
    VerificationMethod,
)
from app.services.bookings import mark_parking_arrival
from app.services.employees import resolve_active_employee
from app.services.office_time import local_date, normalize_ts
from app.services.verification import VerificationResult, VerificationSignals, describe_reason, verify
from app.services.wfh import find_granted_approval
from app.settings import get_settings

logger = logging.getLogger("app.attendance")


def _find_record(db: Session, *, employee_id: int, day: date) -> AttendanceRecord | None:
    return db.scalar(
        select(AttendanceRecord).where(
            AttendanceRecord.employee_id == employee_id,
            AttendanceRecord.attendance_date == day,
        )
    )


def _attempt_rows(
    result: VerificationResult,
    *,
    employee_id: int,
    attendance_record_id: int | None,
) -> list[VerificationAttempt]:
    return [
        VerificationAttempt(
            employee_id=employee_id,
            attendance_record_id=attendance_record_id,
            office_location_id=result.office_location_id,
            method=evaluation.method,
            success=evaluation.passed,
            confidence=evaluation.confidence,
            reason=evaluation.reason,
            evidence=evaluation.evidence,
            attempted_at=result.timestamp,
        )
        for evaluation in result.evaluations
    ]


def _already_checked_in() -> ApiError:
    return ApiError(
        status_code=409,
        code="ALREADY_CHECKED_IN",
        message="Attendance for today has already been recorded.",
    )


def _insert_record(db: Session, record: AttendanceRecord) -> None:
    db.add(record)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise _already_checked_in() from exc


def _resolve_office_location_id(employee_office_id: int | None, requested: int | None) -> int:
    office_location_id = requested if requested is not None else employee_office_id
    if office_location_id is None:
        raise ApiError(
            status_code=422,
            code="OFFICE_LOCATION_REQUIRED",
            message="office_location_id is required for an office check-in.",
        )
    return office_location_id


def check_in(
    db: Session,
    *,
    employee_id: int,
    status: AttendanceStatus,
    signals: VerificationSignals | None = None,
    office_location_id: int | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> tuple[AttendanceRecord | None, VerificationResult | None]:
    """First check-in of the day.

    Office check-ins are verified; a failed verification writes no record but
    its attempts are still kept. WFH needs a granted approval for the day.
    """
    now_utc = normalize_ts(now)
    today = local_date(now_utc)
    employee = resolve_active_employee(db, employee_id)
    if _find_record(db, employee_id=employee.id, day=today) is not None:
        raise _already_checked_in()

    if status == AttendanceStatus.OFFICE:
        return _office_check_in(
            db,
            employee_id=employee.id,
            office_location_id=_resolve_office_location_id(employee.primary_office_location_id, office_location_id),
            signals=signals or VerificationSignals(),
            notes=notes,
            now=now_utc,
        )

    wfh_approval_id = None
    if status == AttendanceStatus.WFH:
        approval = find_granted_approval(db, employee_id=employee.id, day=today)
        if approval is None:
            raise ApiError(
                status_code=409,
                code="WFH_APPROVAL_REQUIRED",
                message="No approved WFH request exists for today.",
            )
        wfh_approval_id = approval.id

    record = AttendanceRecord(
        employee_id=employee.id,
        attendance_date=today,
        status=status,
        check_in_at=now_utc,
        wfh_approval_id=wfh_approval_id,
        notes=notes,
    )
    _insert_record(db, record)
    log_audit(
        db,
        actor_type=AuditActorType.EMPLOYEE,
        actor_id=employee.id,
        action="ATTENDANCE_CHECK_IN",
        entity_type="attendance_record",
        entity_id=record.id,
        details={"status": status.value},
        commit=False,
    )
    db.commit()
    db.refresh(record)
    return record, None


def _office_check_in(
    db: Session,
    *,
    employee_id: int,
    office_location_id: int,
    signals: VerificationSignals,
    notes: str | None,
    now: datetime,
) -> tuple[AttendanceRecord | None, VerificationResult]:
    result = verify(
        db,
        employee_id=employee_id,
        office_location_id=office_location_id,
        signals=signals,
        now=now,
    )

    if not result.success:
        db.add_all(_attempt_rows(result, employee_id=employee_id, attendance_record_id=None))
        db.commit()
        logger.info(
            "office_check_in_rejected",
            extra={"employee_id": employee_id, "error": result.error, "error_message": describe_reason(result.error)},
        )
        return None, result

    record = AttendanceRecord(
        employee_id=employee_id,
        attendance_date=local_date(now),
        status=AttendanceStatus.OFFICE,
        check_in_at=now,
        office_location_id=office_location_id,
        primary_verification_method=result.method,
        verification_confidence=result.confidence,
        check_in_method_count=result.method_count,
        is_verified=True,
        notes=notes,
    )
    _insert_record(db, record)
    db.add_all(_attempt_rows(result, employee_id=employee_id, attendance_record_id=record.id))
    parking_reservation_id = mark_parking_arrival(
        db,
        employee_id=employee_id,
        reservation_date=record.attendance_date,
        now=now,
    )
    log_audit(
        db,
        actor_type=AuditActorType.EMPLOYEE,
        actor_id=employee_id,
        action="ATTENDANCE_CHECK_IN",
        entity_type="attendance_record",
        entity_id=record.id,
        details={
            "status": AttendanceStatus.OFFICE.value,
            "method": result.method.value,
            "confidence": result.confidence,
            "method_count": result.method_count,
            "parking_reservation_id": parking_reservation_id,
        },
        commit=False,
    )
    db.commit()
    db.refresh(record)
    return record, result


def check_out(db: Session, *, employee_id: int, now: datetime | None = None) -> AttendanceRecord:
    now_utc = normalize_ts(now)
    record = _find_record(db, employee_id=employee_id, day=local_date(now_utc))
    if record is None:
        raise ApiError(status_code=404, code="NO_CHECK_IN_TODAY", message="No check-in recorded for today.")

    result = db.execute(
        update(AttendanceRecord)
        .where(AttendanceRecord.id == record.id, AttendanceRecord.check_out_at.is_(None))
        .values(check_out_at=now_utc)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise ApiError(status_code=409, code="ALREADY_CHECKED_OUT", message="Already checked out for today.")

    log_audit(
        db,
        actor_type=AuditActorType.EMPLOYEE,
        actor_id=employee_id,
        action="ATTENDANCE_CHECK_OUT",
        entity_type="attendance_record",
        entity_id=record.id,
        commit=False,
    )
    db.commit()
    db.refresh(record)
    return record


def get_today_record(db: Session, *, employee_id: int, now: datetime | None = None) -> AttendanceRecord | None:
    return _find_record(db, employee_id=employee_id, day=local_date(normalize_ts(now)))


def create_manual_attendance(
    db: Session,
    *,
    employee_id: int,
    attendance_date: date,
    status: AttendanceStatus,
    office_location_id: int | None,
    notes: str | None,
    actor_id: str,
    now: datetime | None = None,
) -> AttendanceRecord:
    """Admin override: the manual-approval fallback when no signal verified."""
    now_utc = normalize_ts(now)
    employee = resolve_active_employee(db, employee_id)
    if office_location_id is not None and db.get(OfficeLocation, office_location_id) is None:
        raise ApiError(status_code=404, code="OFFICE_LOCATION_NOT_FOUND", message="Office location not found.")

    values = {
        "status": status,
        "office_location_id": office_location_id,
        "primary_verification_method": VerificationMethod.MANUAL,
        "verification_confidence": get_settings().manual_override_confidence,
        "is_verified": True,
        "notes": notes,
    }
    record = _find_record(db, employee_id=employee.id, day=attendance_date)
    created = record is None
    if record is None:
        record = AttendanceRecord(
            employee_id=employee.id,
            attendance_date=attendance_date,
            check_in_at=now_utc,
            check_in_method_count=0,
            **values,
        )
        _insert_record(db, record)
    else:
        for key, value in values.items():
            setattr(record, key, value)
        db.flush()

    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=actor_id,
        action="ATTENDANCE_MANUAL_OVERRIDE",
        entity_type="attendance_record",
        entity_id=record.id,
        details={"employee_id": employee.id, "status": status.value, "created": created},
        commit=False,
    )
    db.commit()
    db.refresh(record)
    return record
