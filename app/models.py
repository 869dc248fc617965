from __future__ import annotations

import enum
from datetime import date, datetime, time, timezone
from typing import Any

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base


class AuditActorType(str, enum.Enum):
    EMPLOYEE = "EMPLOYEE"
    ADMIN = "ADMIN"
    SYSTEM = "SYSTEM"


class VerificationMethod(str, enum.Enum):
    GPS = "gps"
    WIFI = "wifi"
    QR_CODE = "qr_code"
    MANUAL = "manual"


class AttendanceStatus(str, enum.Enum):
    OFFICE = "office"
    WFH = "wfh"
    LEAVE = "leave"


class WifiSecurityLevel(str, enum.Enum):
    OPEN = "open"
    SECURE = "secure"
    ENTERPRISE = "enterprise"


class BookingStatus(str, enum.Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class ReservationStatus(str, enum.Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ParkingSpotType(str, enum.Enum):
    CAR = "car"
    BIKE = "bike"


class WFHUrgency(str, enum.Enum):
    NORMAL = "normal"
    URGENT = "urgent"
    EMERGENCY = "emergency"


class WFHStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    AUTO_APPROVED = "auto_approved"
    EXPIRED = "expired"


class Employee(Base):
    __tablename__ = "employees"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    manager_id: Mapped[int | None] = mapped_column(
        ForeignKey("employees.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    can_approve_wfh: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    max_wfh_days_per_month: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=10,
        server_default=text("10"),
    )
    primary_office_location_id: Mapped[int | None] = mapped_column(
        ForeignKey("office_locations.id", ondelete="SET NULL"),
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    manager: Mapped[Employee | None] = relationship(remote_side="Employee.id")
    attendance_records: Mapped[list[AttendanceRecord]] = relationship(back_populates="employee")


class OfficeLocation(Base):
    __tablename__ = "office_locations"
    __table_args__ = (
        CheckConstraint(
            "geofence_radius_m > 0 AND geofence_radius_m <= 1000",
            name="ck_office_locations_radius",
        ),
        CheckConstraint(
            "lat BETWEEN -90 AND 90 AND lon BETWEEN -180 AND 180",
            name="ck_office_locations_coordinates",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    address: Mapped[str | None] = mapped_column(Text, nullable=True)
    lat: Mapped[float] = mapped_column(Float, nullable=False)
    lon: Mapped[float] = mapped_column(Float, nullable=False)
    geofence_radius_m: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=100,
        server_default=text("100"),
    )
    office_hours_start: Mapped[time] = mapped_column(
        Time,
        nullable=False,
        default=time(9, 0),
        server_default=text("'09:00'"),
    )
    office_hours_end: Mapped[time] = mapped_column(
        Time,
        nullable=False,
        default=time(18, 0),
        server_default=text("'18:00'"),
    )
    office_days: Mapped[list[str]] = mapped_column(
        JSONB,
        nullable=False,
        default=lambda: ["mon", "tue", "wed", "thu", "fri"],
        server_default=text("'[\"mon\",\"tue\",\"wed\",\"thu\",\"fri\"]'::jsonb"),
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    wifi_networks: Mapped[list[WifiNetwork]] = relationship(back_populates="office_location")
    qr_codes: Mapped[list[QRCode]] = relationship(back_populates="office_location")
    rooms: Mapped[list[Room]] = relationship(back_populates="office_location")
    parking_spots: Mapped[list[ParkingSpot]] = relationship(back_populates="office_location")


class WifiNetwork(Base):
    __tablename__ = "office_wifi_networks"
    __table_args__ = (
        UniqueConstraint("office_location_id", "ssid", name="uq_office_wifi_networks_location_ssid"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    office_location_id: Mapped[int] = mapped_column(
        ForeignKey("office_locations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    ssid: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    security_level: Mapped[WifiSecurityLevel] = mapped_column(
        Enum(WifiSecurityLevel, name="wifi_security_level"),
        nullable=False,
        default=WifiSecurityLevel.SECURE,
        server_default=text("'SECURE'"),
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    office_location: Mapped[OfficeLocation] = relationship(back_populates="wifi_networks")


class QRCode(Base):
    __tablename__ = "office_qr_codes"
    __table_args__ = (
        CheckConstraint(
            "expires_at IS NULL OR expires_at > created_at",
            name="ck_office_qr_codes_expiration",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    office_location_id: Mapped[int] = mapped_column(
        ForeignKey("office_locations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    code_value: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    location_description: Mapped[str] = mapped_column(String(100), nullable=False)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    scan_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    last_scanned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    office_location: Mapped[OfficeLocation] = relationship(back_populates="qr_codes")


class QRScan(Base):
    __tablename__ = "qr_scans"
    __table_args__ = (
        Index("ix_qr_scans_employee_code_ts", "employee_id", "qr_code_id", "scanned_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), nullable=False)
    qr_code_id: Mapped[int] = mapped_column(ForeignKey("office_qr_codes.id", ondelete="CASCADE"), nullable=False)
    scanned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    counted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))


class AttendanceRecord(Base):
    __tablename__ = "attendance_records"
    __table_args__ = (
        UniqueConstraint("employee_id", "attendance_date", name="uq_attendance_records_employee_date"),
        CheckConstraint(
            "verification_confidence IS NULL OR verification_confidence BETWEEN 0 AND 1",
            name="ck_attendance_records_confidence",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    attendance_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    status: Mapped[AttendanceStatus] = mapped_column(
        Enum(AttendanceStatus, name="attendance_status"),
        nullable=False,
    )
    check_in_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    check_out_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    office_location_id: Mapped[int | None] = mapped_column(
        ForeignKey("office_locations.id", ondelete="RESTRICT"),
        nullable=True,
        index=True,
    )
    primary_verification_method: Mapped[VerificationMethod | None] = mapped_column(
        Enum(VerificationMethod, name="verification_method"),
        nullable=True,
    )
    verification_confidence: Mapped[float | None] = mapped_column(Float, nullable=True)
    check_in_method_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    wfh_approval_id: Mapped[int | None] = mapped_column(
        ForeignKey("wfh_approvals.id", ondelete="SET NULL"),
        nullable=True,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    employee: Mapped[Employee] = relationship(back_populates="attendance_records")
    office_location: Mapped[OfficeLocation | None] = relationship()
    verification_attempts: Mapped[list[VerificationAttempt]] = relationship(back_populates="attendance_record")


class VerificationAttempt(Base):
    __tablename__ = "verification_attempts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    attendance_record_id: Mapped[int | None] = mapped_column(
        ForeignKey("attendance_records.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    office_location_id: Mapped[int | None] = mapped_column(
        ForeignKey("office_locations.id", ondelete="SET NULL"),
        nullable=True,
    )
    method: Mapped[VerificationMethod] = mapped_column(
        Enum(VerificationMethod, name="verification_method"),
        nullable=False,
        index=True,
    )
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    reason: Mapped[str | None] = mapped_column(String(100), nullable=True)
    evidence: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        server_default=text("'{}'::jsonb"),
    )
    attempted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    attendance_record: Mapped[AttendanceRecord | None] = relationship(back_populates="verification_attempts")


class Room(Base):
    __tablename__ = "rooms"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    office_location_id: Mapped[int] = mapped_column(
        ForeignKey("office_locations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    floor: Mapped[str | None] = mapped_column(String(10), nullable=True)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=4)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))

    office_location: Mapped[OfficeLocation] = relationship(back_populates="rooms")
    bookings: Mapped[list[RoomBooking]] = relationship(back_populates="room")


class RoomBooking(Base):
    # The no-overlap rule for confirmed bookings is the exclusion constraint
    # ex_room_bookings_no_overlap, created in migration 0002.
    __tablename__ = "room_bookings"
    __table_args__ = (
        CheckConstraint("end_time > start_time", name="ck_room_bookings_time_order"),
        Index("ix_room_bookings_date_room", "booking_date", "room_id"),
        Index("ix_room_bookings_employee_date", "employee_id", "booking_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), nullable=False)
    room_id: Mapped[int] = mapped_column(ForeignKey("rooms.id", ondelete="CASCADE"), nullable=False)
    booking_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    purpose: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[BookingStatus] = mapped_column(
        Enum(BookingStatus, name="room_booking_status"),
        nullable=False,
        default=BookingStatus.CONFIRMED,
        server_default=text("'CONFIRMED'"),
    )
    checked_in_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    release_reason: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    room: Mapped[Room] = relationship(back_populates="bookings")


class ParkingSpot(Base):
    __tablename__ = "parking_spots"
    __table_args__ = (
        UniqueConstraint("office_location_id", "spot_number", "spot_type", name="uq_parking_spots_number_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    office_location_id: Mapped[int] = mapped_column(
        ForeignKey("office_locations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    spot_number: Mapped[int] = mapped_column(Integer, nullable=False)
    spot_type: Mapped[ParkingSpotType] = mapped_column(
        Enum(ParkingSpotType, name="parking_spot_type"),
        nullable=False,
    )
    section: Mapped[str | None] = mapped_column(String(10), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))

    office_location: Mapped[OfficeLocation] = relationship(back_populates="parking_spots")
    reservations: Mapped[list[ParkingReservation]] = relationship(back_populates="parking_spot")


class ParkingReservation(Base):
    __tablename__ = "parking_reservations"
    __table_args__ = (
        Index(
            "uq_parking_reservations_employee_date_active",
            "employee_id",
            "reservation_date",
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
        ),
        Index(
            "uq_parking_reservations_spot_date_active",
            "parking_spot_id",
            "reservation_date",
            unique=True,
            postgresql_where=text("status = 'ACTIVE'"),
        ),
        Index("ix_parking_reservations_date", "reservation_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), nullable=False)
    parking_spot_id: Mapped[int] = mapped_column(
        ForeignKey("parking_spots.id", ondelete="CASCADE"),
        nullable=False,
    )
    reservation_date: Mapped[date] = mapped_column(Date, nullable=False)
    start_time: Mapped[time] = mapped_column(
        Time,
        nullable=False,
        default=time(0, 0),
        server_default=text("'00:00:00'"),
    )
    end_time: Mapped[time] = mapped_column(
        Time,
        nullable=False,
        default=time(23, 59, 59),
        server_default=text("'23:59:59'"),
    )
    status: Mapped[ReservationStatus] = mapped_column(
        Enum(ReservationStatus, name="parking_reservation_status"),
        nullable=False,
        default=ReservationStatus.ACTIVE,
        server_default=text("'ACTIVE'"),
    )
    arrived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    release_reason: Mapped[str | None] = mapped_column(String(50), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    parking_spot: Mapped[ParkingSpot] = relationship(back_populates="reservations")


class WFHApproval(Base):
    __tablename__ = "wfh_approvals"
    __table_args__ = (
        Index(
            "uq_wfh_approvals_employee_date_live",
            "employee_id",
            "requested_date",
            unique=True,
            postgresql_where=text("status IN ('PENDING', 'APPROVED', 'AUTO_APPROVED')"),
        ),
        Index("ix_wfh_approvals_manager_status", "manager_id", "status"),
        Index("ix_wfh_approvals_status_expires", "status", "expires_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(ForeignKey("employees.id", ondelete="CASCADE"), nullable=False)
    manager_id: Mapped[int | None] = mapped_column(
        ForeignKey("employees.id", ondelete="SET NULL"),
        nullable=True,
    )
    requested_date: Mapped[date] = mapped_column(Date, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    urgency: Mapped[WFHUrgency] = mapped_column(
        Enum(WFHUrgency, name="wfh_urgency"),
        nullable=False,
        default=WFHUrgency.NORMAL,
        server_default=text("'NORMAL'"),
    )
    status: Mapped[WFHStatus] = mapped_column(
        Enum(WFHStatus, name="wfh_status"),
        nullable=False,
        default=WFHStatus.PENDING,
        server_default=text("'PENDING'"),
    )
    review_required: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default=text("false"),
    )
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    decided_by: Mapped[int | None] = mapped_column(
        ForeignKey("employees.id", ondelete="SET NULL"),
        nullable=True,
    )
    manager_comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )
    actor_type: Mapped[AuditActorType] = mapped_column(
        Enum(AuditActorType, name="audit_actor_type"),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ip: Mapped[str | None] = mapped_column(String(128), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    details: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        server_default=text("'{}'::jsonb"),
    )
