import secrets
from dataclasses import asdict
from datetime import date, datetime, timedelta, timezone
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.audit import log_audit
from app.db import get_db
from app.errors import ApiError
from app.models import AuditActorType, OfficeLocation, ParkingSpot, QRCode, Room, WifiNetwork
from app.schemas import (
    ActiveUpdateRequest,
    AdminAuthResponse,
    AdminLoginRequest,
    AttendanceRecordRead,
    BookingConflictRead,
    ManualAttendanceRequest,
    OfficeLocationCreate,
    OfficeLocationRead,
    ParkingSpotCreate,
    ParkingSpotRead,
    QRCodeCreate,
    QRCodeRead,
    ReleaseCandidateRead,
    ReleasedResourceRead,
    RoomCreate,
    RoomRead,
    WFHApprovalRead,
    WFHDecisionRequest,
    WFHDecisionResponse,
    WFHExpireResponse,
    WifiNetworkCreate,
    WifiNetworkRead,
)
from app.security import issue_admin_token, login_lockout, require_admin, verify_admin_credentials
from app.services.attendance import create_manual_attendance
from app.services.auto_release import find_release_candidates, release_eligible_now
from app.services.conflicts import detect_conflicts
from app.services.office_time import local_date, normalize_ts
from app.services.wfh import decide_wfh_request, expire_stale_wfh_requests, list_pending_wfh_requests

router = APIRouter(tags=["admin"])


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None


def _actor_id(claims: dict[str, Any]) -> str:
    return str(claims.get("sub") or "admin")


@router.post("/api/admin/auth/login", response_model=AdminAuthResponse)
def admin_login(
    payload: AdminLoginRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> AdminAuthResponse:
    username = payload.username.strip()
    client = _client_ip(request) or "unknown"
    request.state.actor = "system"
    login_lockout.ensure_allowed(client)

    if not verify_admin_credentials(username, payload.password):
        login_lockout.record_failure(client)
        log_audit(
            db,
            actor_type=AuditActorType.SYSTEM,
            actor_id=username or "unknown",
            action="ADMIN_LOGIN_FAIL",
            success=False,
            details={"reason": "INVALID_CREDENTIALS"},
            request=request,
        )
        raise ApiError(status_code=401, code="INVALID_CREDENTIALS", message="Invalid credentials.")

    login_lockout.reset(client)
    access_token, expires_in = issue_admin_token(username=username)
    request.state.actor = "admin"
    request.state.actor_id = username
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=username,
        action="ADMIN_LOGIN_SUCCESS",
        request=request,
    )
    return AdminAuthResponse(access_token=access_token, expires_in=expires_in)


@router.get("/api/admin/conflicts", response_model=list[BookingConflictRead])
def list_conflicts(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    room_id: int | None = Query(default=None, ge=1),
    office_location_id: int | None = Query(default=None, ge=1),
    _claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> list[BookingConflictRead]:
    first_day = start_date or local_date(datetime.now(timezone.utc))
    last_day = end_date or first_day + timedelta(days=7)
    conflicts = detect_conflicts(
        db,
        start_date=first_day,
        end_date=last_day,
        room_id=room_id,
        office_location_id=office_location_id,
    )
    return [BookingConflictRead(**asdict(item)) for item in conflicts]


@router.get("/api/admin/auto-release/eligible", response_model=list[ReleaseCandidateRead])
def list_auto_release_candidates(
    _claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> list[ReleaseCandidateRead]:
    return [ReleaseCandidateRead(**asdict(item)) for item in find_release_candidates(db)]


@router.post("/api/admin/auto-release/run", response_model=list[ReleasedResourceRead])
def run_auto_release(
    request: Request,
    claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> list[ReleasedResourceRead]:
    released = release_eligible_now(db)
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=_actor_id(claims),
        action="AUTO_RELEASE_TRIGGERED",
        details={"released_count": len(released)},
        request=request,
    )
    return [ReleasedResourceRead(**asdict(item)) for item in released]


@router.get("/api/admin/wfh/pending", response_model=list[WFHApprovalRead])
def list_pending_wfh(
    manager_id: int | None = Query(default=None, ge=1),
    _claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> list[WFHApprovalRead]:
    return [WFHApprovalRead.model_validate(item) for item in list_pending_wfh_requests(db, manager_id=manager_id)]


@router.post("/api/admin/wfh/{approval_id}/decision", response_model=WFHDecisionResponse)
def decide_wfh(
    approval_id: int,
    payload: WFHDecisionRequest,
    claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> WFHDecisionResponse:
    approval, already_processed = decide_wfh_request(
        db,
        approval_id=approval_id,
        decision=payload.decision,
        decided_by=payload.manager_id,
        comment=payload.comment,
        actor_id=_actor_id(claims),
    )
    return WFHDecisionResponse(
        approval=WFHApprovalRead.model_validate(approval),
        already_processed=already_processed,
    )


@router.post("/api/admin/wfh/expire", response_model=WFHExpireResponse)
def expire_wfh(
    _claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> WFHExpireResponse:
    return WFHExpireResponse(expired_ids=expire_stale_wfh_requests(db))


@router.post("/api/admin/attendance/manual", response_model=AttendanceRecordRead)
def manual_attendance(
    payload: ManualAttendanceRequest,
    claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> AttendanceRecordRead:
    return create_manual_attendance(
        db,
        employee_id=payload.employee_id,
        attendance_date=payload.attendance_date,
        status=payload.status,
        office_location_id=payload.office_location_id,
        notes=payload.notes,
        actor_id=_actor_id(claims),
    )


def _get_office(db: Session, office_location_id: int) -> OfficeLocation:
    office = db.get(OfficeLocation, office_location_id)
    if office is None:
        raise ApiError(status_code=404, code="OFFICE_LOCATION_NOT_FOUND", message="Office location not found.")
    return office


@router.get("/api/admin/offices", response_model=list[OfficeLocationRead])
def list_offices(
    _claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> list[OfficeLocationRead]:
    return list(db.scalars(select(OfficeLocation).order_by(OfficeLocation.id)).all())


@router.post("/api/admin/offices", response_model=OfficeLocationRead, status_code=status.HTTP_201_CREATED)
def create_office(
    payload: OfficeLocationCreate,
    request: Request,
    claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> OfficeLocationRead:
    office = OfficeLocation(**payload.model_dump())
    db.add(office)
    db.commit()
    db.refresh(office)
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=_actor_id(claims),
        action="OFFICE_LOCATION_CREATED",
        entity_type="office_location",
        entity_id=office.id,
        details={"name": office.name, "radius_m": office.geofence_radius_m},
        request=request,
    )
    return office


@router.put("/api/admin/offices/{office_location_id}", response_model=OfficeLocationRead)
def update_office(
    office_location_id: int,
    payload: OfficeLocationCreate,
    request: Request,
    claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> OfficeLocationRead:
    office = _get_office(db, office_location_id)
    for key, value in payload.model_dump().items():
        setattr(office, key, value)
    db.commit()
    db.refresh(office)
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=_actor_id(claims),
        action="OFFICE_LOCATION_UPDATED",
        entity_type="office_location",
        entity_id=office.id,
        request=request,
    )
    return office


@router.get("/api/admin/offices/{office_location_id}/wifi-networks", response_model=list[WifiNetworkRead])
def list_wifi_networks(
    office_location_id: int,
    _claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> list[WifiNetworkRead]:
    return list(
        db.scalars(
            select(WifiNetwork).where(WifiNetwork.office_location_id == office_location_id).order_by(WifiNetwork.id)
        ).all()
    )


@router.post(
    "/api/admin/offices/{office_location_id}/wifi-networks",
    response_model=WifiNetworkRead,
    status_code=status.HTTP_201_CREATED,
)
def create_wifi_network(
    office_location_id: int,
    payload: WifiNetworkCreate,
    request: Request,
    claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> WifiNetworkRead:
    office = _get_office(db, office_location_id)
    network = WifiNetwork(
        office_location_id=office.id,
        ssid=payload.ssid.strip(),
        security_level=payload.security_level,
        description=payload.description,
    )
    db.add(network)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ApiError(
            status_code=409,
            code="WIFI_NETWORK_EXISTS",
            message="This SSID is already registered for the office.",
        ) from exc
    db.refresh(network)
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=_actor_id(claims),
        action="WIFI_NETWORK_CREATED",
        entity_type="wifi_network",
        entity_id=network.id,
        details={"ssid": network.ssid, "security_level": network.security_level.value},
        request=request,
    )
    return network


@router.patch("/api/admin/wifi-networks/{network_id}/active", response_model=WifiNetworkRead)
def set_wifi_network_active(
    network_id: int,
    payload: ActiveUpdateRequest,
    request: Request,
    claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> WifiNetworkRead:
    network = db.get(WifiNetwork, network_id)
    if network is None:
        raise ApiError(status_code=404, code="WIFI_NETWORK_NOT_FOUND", message="WiFi network not found.")
    network.is_active = payload.is_active
    db.commit()
    db.refresh(network)
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=_actor_id(claims),
        action="WIFI_NETWORK_ACTIVE_UPDATED",
        entity_type="wifi_network",
        entity_id=network.id,
        details={"is_active": network.is_active},
        request=request,
    )
    return network


@router.get("/api/admin/offices/{office_location_id}/qr-codes", response_model=list[QRCodeRead])
def list_qr_codes(
    office_location_id: int,
    _claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> list[QRCodeRead]:
    return list(
        db.scalars(select(QRCode).where(QRCode.office_location_id == office_location_id).order_by(QRCode.id)).all()
    )


@router.post(
    "/api/admin/offices/{office_location_id}/qr-codes",
    response_model=QRCodeRead,
    status_code=status.HTTP_201_CREATED,
)
def create_qr_code(
    office_location_id: int,
    payload: QRCodeCreate,
    request: Request,
    claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> QRCodeRead:
    office = _get_office(db, office_location_id)
    now_utc = datetime.now(timezone.utc)
    expires_at = normalize_ts(payload.expires_at) if payload.expires_at is not None else None
    if expires_at is not None and expires_at <= now_utc:
        raise ApiError(status_code=422, code="INVALID_EXPIRY", message="expires_at must be in the future.")

    qr_code = QRCode(
        office_location_id=office.id,
        code_value=(payload.code_value or "").strip() or secrets.token_urlsafe(24),
        location_description=payload.location_description.strip(),
        expires_at=expires_at,
        created_at=now_utc,
    )
    db.add(qr_code)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ApiError(status_code=409, code="QR_CODE_EXISTS", message="QR code value already exists.") from exc
    db.refresh(qr_code)
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=_actor_id(claims),
        action="QR_CODE_CREATED",
        entity_type="qr_code",
        entity_id=qr_code.id,
        details={"office_location_id": office.id},
        request=request,
    )
    return qr_code


@router.patch("/api/admin/qr-codes/{qr_code_id}/active", response_model=QRCodeRead)
def set_qr_code_active(
    qr_code_id: int,
    payload: ActiveUpdateRequest,
    request: Request,
    claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> QRCodeRead:
    qr_code = db.get(QRCode, qr_code_id)
    if qr_code is None:
        raise ApiError(status_code=404, code="QR_CODE_NOT_FOUND", message="QR code not found.")
    qr_code.is_active = payload.is_active
    db.commit()
    db.refresh(qr_code)
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=_actor_id(claims),
        action="QR_CODE_ACTIVE_UPDATED",
        entity_type="qr_code",
        entity_id=qr_code.id,
        details={"is_active": qr_code.is_active},
        request=request,
    )
    return qr_code


@router.post(
    "/api/admin/offices/{office_location_id}/rooms",
    response_model=RoomRead,
    status_code=status.HTTP_201_CREATED,
)
def create_room(
    office_location_id: int,
    payload: RoomCreate,
    claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> RoomRead:
    office = _get_office(db, office_location_id)
    room = Room(office_location_id=office.id, **payload.model_dump())
    db.add(room)
    db.commit()
    db.refresh(room)
    return room


@router.post(
    "/api/admin/offices/{office_location_id}/parking-spots",
    response_model=ParkingSpotRead,
    status_code=status.HTTP_201_CREATED,
)
def create_parking_spot(
    office_location_id: int,
    payload: ParkingSpotCreate,
    claims: dict[str, Any] = Depends(require_admin),
    db: Session = Depends(get_db),
) -> ParkingSpotRead:
    office = _get_office(db, office_location_id)
    spot = ParkingSpot(office_location_id=office.id, **payload.model_dump())
    db.add(spot)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise ApiError(
            status_code=409,
            code="PARKING_SPOT_EXISTS",
            message="Parking spot number already exists for this type.",
        ) from exc
    db.refresh(spot)
    return spot
