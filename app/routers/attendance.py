from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from app.db import get_db
from app.schemas import (
    AttendanceRecordRead,
    CheckInRequest,
    CheckInResponse,
    CheckOutRequest,
    MethodEvaluationRead,
    TodayAttendanceResponse,
    VerificationResultRead,
    VerificationSignalsPayload,
    VerifyRequest,
)
from app.services.attendance import check_in, check_out, get_today_record
from app.services.office_time import local_date
from app.services.verification import (
    GpsSignal,
    VerificationResult,
    VerificationSignals,
    describe_reason,
    verify,
)

router = APIRouter(tags=["attendance"])


def _signals_from_payload(payload: VerificationSignalsPayload) -> VerificationSignals:
    gps = None
    if payload.gps is not None:
        gps = GpsSignal(
            lat=payload.gps.lat,
            lon=payload.gps.lon,
            accuracy_m=payload.gps.accuracy_m,
            error=payload.gps.error,
        )
    return VerificationSignals(gps=gps, wifi_ssid=payload.wifi_ssid, qr_payload=payload.qr_payload)


def _verification_read(result: VerificationResult) -> VerificationResultRead:
    return VerificationResultRead(
        success=result.success,
        method=result.method,
        confidence=result.confidence,
        error=result.error,
        error_message=describe_reason(result.error),
        error_kind=result.error_kind.value if result.error_kind else None,
        method_count=result.method_count,
        evaluations=[
            MethodEvaluationRead(
                method=item.method,
                passed=item.passed,
                confidence=item.confidence,
                reason=item.reason,
                error_kind=item.error_kind.value if item.error_kind else None,
                evidence=item.evidence,
            )
            for item in result.evaluations
        ],
        timestamp=result.timestamp,
    )


@router.post("/api/attendance/verify", response_model=VerificationResultRead)
def verify_presence(
    payload: VerifyRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> VerificationResultRead:
    request.state.actor = "employee"
    request.state.employee_id = payload.employee_id
    result = verify(
        db,
        employee_id=payload.employee_id,
        office_location_id=payload.office_location_id,
        signals=_signals_from_payload(payload),
    )
    return _verification_read(result)


@router.post("/api/attendance/check-in", response_model=CheckInResponse)
def attendance_check_in(
    payload: CheckInRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> CheckInResponse:
    request.state.actor = "employee"
    request.state.employee_id = payload.employee_id
    record, result = check_in(
        db,
        employee_id=payload.employee_id,
        status=payload.status,
        signals=_signals_from_payload(payload),
        office_location_id=payload.office_location_id,
        notes=payload.notes,
    )
    return CheckInResponse(
        checked_in=record is not None,
        record=AttendanceRecordRead.model_validate(record) if record is not None else None,
        verification=_verification_read(result) if result is not None else None,
    )


@router.post("/api/attendance/check-out", response_model=AttendanceRecordRead)
def attendance_check_out(
    payload: CheckOutRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> AttendanceRecordRead:
    request.state.actor = "employee"
    request.state.employee_id = payload.employee_id
    return check_out(db, employee_id=payload.employee_id)


@router.get("/api/attendance/today", response_model=TodayAttendanceResponse)
def attendance_today(
    employee_id: int = Query(ge=1),
    db: Session = Depends(get_db),
) -> TodayAttendanceResponse:
    now_utc = datetime.now(timezone.utc)
    record = get_today_record(db, employee_id=employee_id, now=now_utc)
    return TodayAttendanceResponse(
        employee_id=employee_id,
        date=local_date(now_utc),
        record=AttendanceRecordRead.model_validate(record) if record is not None else None,
    )
