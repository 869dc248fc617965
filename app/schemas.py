import datetime as dt
from datetime import date, datetime, time
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.models import (
    AttendanceStatus,
    BookingStatus,
    ParkingSpotType,
    ReservationStatus,
    VerificationMethod,
    WFHStatus,
    WFHUrgency,
    WifiSecurityLevel,
)


class AdminLoginRequest(BaseModel):
    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class AdminAuthResponse(BaseModel):
    access_token: str
    token_type: Literal["bearer"] = "bearer"
    expires_in: int


class GpsReading(BaseModel):
    lat: float | None = Field(default=None, ge=-90, le=90)
    lon: float | None = Field(default=None, ge=-180, le=180)
    accuracy_m: float | None = Field(default=None, ge=0)
    error: Literal["permission_denied", "unavailable", "timeout"] | None = None


class VerificationSignalsPayload(BaseModel):
    gps: GpsReading | None = None
    wifi_ssid: str | None = Field(default=None, max_length=100)
    qr_payload: str | None = Field(default=None, max_length=255)


class VerifyRequest(VerificationSignalsPayload):
    employee_id: int = Field(ge=1)
    office_location_id: int = Field(ge=1)


class MethodEvaluationRead(BaseModel):
    method: VerificationMethod
    passed: bool
    confidence: float
    reason: str | None = None
    error_kind: str | None = None
    evidence: dict[str, Any] = Field(default_factory=dict)


class VerificationResultRead(BaseModel):
    success: bool
    method: VerificationMethod
    confidence: float
    error: str | None = None
    error_message: str | None = None
    error_kind: str | None = None
    method_count: int
    evaluations: list[MethodEvaluationRead] = Field(default_factory=list)
    timestamp: datetime


class CheckInRequest(VerificationSignalsPayload):
    employee_id: int = Field(ge=1)
    status: AttendanceStatus = AttendanceStatus.OFFICE
    office_location_id: int | None = Field(default=None, ge=1)
    notes: str | None = Field(default=None, max_length=1000)


class CheckOutRequest(BaseModel):
    employee_id: int = Field(ge=1)


class AttendanceRecordRead(BaseModel):
    id: int
    employee_id: int
    attendance_date: date
    status: AttendanceStatus
    check_in_at: datetime | None
    check_out_at: datetime | None
    office_location_id: int | None
    primary_verification_method: VerificationMethod | None
    verification_confidence: float | None
    check_in_method_count: int
    is_verified: bool
    wfh_approval_id: int | None = None
    notes: str | None = None

    model_config = ConfigDict(from_attributes=True)


class CheckInResponse(BaseModel):
    checked_in: bool
    record: AttendanceRecordRead | None = None
    verification: VerificationResultRead | None = None


class TodayAttendanceResponse(BaseModel):
    employee_id: int
    date: dt.date
    record: AttendanceRecordRead | None = None


class ManualAttendanceRequest(BaseModel):
    employee_id: int = Field(ge=1)
    attendance_date: date
    status: AttendanceStatus
    office_location_id: int | None = Field(default=None, ge=1)
    notes: str | None = Field(default=None, max_length=1000)


class RoomBookingCreate(BaseModel):
    employee_id: int = Field(ge=1)
    room_id: int = Field(ge=1)
    booking_date: date
    start_time: time
    end_time: time
    purpose: str = Field(min_length=1, max_length=1000)

    @model_validator(mode="after")
    def validate_time_order(self) -> "RoomBookingCreate":
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class RoomBookingRead(BaseModel):
    id: int
    employee_id: int
    room_id: int
    booking_date: date
    start_time: time
    end_time: time
    purpose: str
    status: BookingStatus
    checked_in_at: datetime | None = None
    cancelled_at: datetime | None = None
    release_reason: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class BookingActionRequest(BaseModel):
    employee_id: int = Field(ge=1)


class RoomBookingActionResponse(BaseModel):
    booking: RoomBookingRead
    already_processed: bool = False


class ParkingReservationCreate(BaseModel):
    employee_id: int = Field(ge=1)
    parking_spot_id: int = Field(ge=1)
    reservation_date: date
    start_time: time | None = None
    end_time: time | None = None


class ParkingReservationRead(BaseModel):
    id: int
    employee_id: int
    parking_spot_id: int
    reservation_date: date
    start_time: time
    end_time: time
    status: ReservationStatus
    arrived_at: datetime | None = None
    cancelled_at: datetime | None = None
    release_reason: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ParkingReservationActionResponse(BaseModel):
    reservation: ParkingReservationRead
    already_processed: bool = False


class WFHRequestCreate(BaseModel):
    employee_id: int = Field(ge=1)
    manager_id: int | None = Field(default=None, ge=1)
    requested_date: date
    reason: str = Field(min_length=1, max_length=2000)
    urgency: WFHUrgency = WFHUrgency.NORMAL

    @field_validator("reason")
    @classmethod
    def reason_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("reason must not be blank")
        return value


class WFHApprovalRead(BaseModel):
    approval_id: int = Field(validation_alias="id")
    employee_id: int
    manager_id: int | None = None
    requested_date: date
    reason: str
    urgency: WFHUrgency
    status: WFHStatus
    review_required: bool
    expires_at: datetime | None = None
    decided_at: datetime | None = None
    decided_by: int | None = None
    manager_comment: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class WFHDecisionRequest(BaseModel):
    decision: Literal["approve", "reject"]
    manager_id: int | None = Field(default=None, ge=1)
    comment: str | None = Field(default=None, max_length=2000)


class WFHDecisionResponse(BaseModel):
    approval: WFHApprovalRead
    already_processed: bool


class WFHExpireResponse(BaseModel):
    expired_ids: list[int]


class WFHEligibilityRead(BaseModel):
    employee_id: int
    month: str
    max_days: int
    used_days: int
    remaining_days: int
    eligible: bool
    reason: str | None = None


class SuggestedResolutionRead(BaseModel):
    keep_booking_id: int
    reassign_booking_ids: list[int]
    alternate_room_ids: list[int]
    summary: str


class BookingConflictRead(BaseModel):
    room_id: int
    room_name: str
    date: dt.date
    booking_ids: list[int]
    overlap_minutes: int
    severity: Literal["low", "medium", "high"]
    suggested_resolution: SuggestedResolutionRead


class ReleaseCandidateRead(BaseModel):
    resource_type: Literal["room", "parking"]
    resource_id: int
    booking_id: int
    employee_id: int
    due_at: datetime
    minutes_overdue: int


class ReleasedResourceRead(BaseModel):
    resource_type: Literal["room", "parking"]
    resource_id: int
    booking_id: int
    employee_id: int
    minutes_overdue: int
    released_at: datetime


class OfficeLocationCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    address: str | None = None
    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)
    geofence_radius_m: int = Field(default=100, gt=0, le=1000)
    office_hours_start: time = time(9, 0)
    office_hours_end: time = time(18, 0)
    office_days: list[Literal["mon", "tue", "wed", "thu", "fri", "sat", "sun"]] = Field(
        default_factory=lambda: ["mon", "tue", "wed", "thu", "fri"]
    )
    is_active: bool = True

    @model_validator(mode="after")
    def validate_hours(self) -> "OfficeLocationCreate":
        if self.office_hours_end <= self.office_hours_start:
            raise ValueError("office_hours_end must be after office_hours_start")
        return self


class OfficeLocationRead(BaseModel):
    id: int
    name: str
    address: str | None
    lat: float
    lon: float
    geofence_radius_m: int
    office_hours_start: time
    office_hours_end: time
    office_days: list[str]
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class WifiNetworkCreate(BaseModel):
    ssid: str = Field(min_length=1, max_length=100)
    security_level: WifiSecurityLevel = WifiSecurityLevel.SECURE
    description: str | None = None


class WifiNetworkRead(BaseModel):
    id: int
    office_location_id: int
    ssid: str
    security_level: WifiSecurityLevel
    description: str | None
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class QRCodeCreate(BaseModel):
    location_description: str = Field(min_length=1, max_length=100)
    code_value: str | None = Field(default=None, min_length=8, max_length=255)
    expires_at: datetime | None = None


class QRCodeRead(BaseModel):
    id: int
    office_location_id: int
    code_value: str
    location_description: str
    expires_at: datetime | None
    scan_count: int
    last_scanned_at: datetime | None
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ActiveUpdateRequest(BaseModel):
    is_active: bool


class RoomCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    floor: str | None = Field(default=None, max_length=10)
    capacity: int = Field(default=4, ge=1)


class RoomRead(BaseModel):
    id: int
    office_location_id: int
    name: str
    floor: str | None
    capacity: int
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class ParkingSpotCreate(BaseModel):
    spot_number: int = Field(ge=1)
    spot_type: ParkingSpotType = ParkingSpotType.CAR
    section: str | None = Field(default=None, max_length=10)


class ParkingSpotRead(BaseModel):
    id: int
    office_location_id: int
    spot_number: int
    spot_type: ParkingSpotType
    section: str | None
    is_active: bool

    model_config = ConfigDict(from_attributes=True)
