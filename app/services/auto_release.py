from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from app.audit import log_audit
from app.db import SessionLocal
from app.models import (
    AttendanceRecord,
    AttendanceStatus,
    AuditActorType,
    BookingStatus,
    OfficeLocation,
    ParkingReservation,
    ParkingSpot,
    ReservationStatus,
    RoomBooking,
)
from app.services.bookings import booking_ends_at, booking_starts_at, parking_expected_arrival
from app.services.notifications import notify_resource_released
from app.services.office_time import local_date, minutes_between, normalize_ts
from app.settings import get_settings

logger = logging.getLogger("app.auto_release")

RESOURCE_ROOM = "room"
RESOURCE_PARKING = "parking"
RELEASE_REASON_NO_SHOW = "AUTO_RELEASED_NO_SHOW"
RELEASE_REASON_NOT_IN_OFFICE = "AUTO_RELEASED_NOT_IN_OFFICE"


@dataclass(frozen=True)
class ReleaseCandidate:
    resource_type: str
    resource_id: int
    booking_id: int
    employee_id: int
    due_at: datetime
    minutes_overdue: int


@dataclass(frozen=True)
class ReleasedResource:
    resource_type: str
    resource_id: int
    booking_id: int
    employee_id: int
    minutes_overdue: int
    released_at: datetime


def _due_through(now: datetime) -> date:
    """Last office-local day that can hold an overdue booking at ``now``.

    There is no lower bound: a row missed by earlier sweeps stays eligible
    until it is released.
    """
    return local_date(now)


def _room_candidates(db: Session, now: datetime) -> list[ReleaseCandidate]:
    last_day = _due_through(now)
    grace = timedelta(minutes=get_settings().room_release_grace_minutes)
    bookings = db.scalars(
        select(RoomBooking)
        .where(
            RoomBooking.status == BookingStatus.CONFIRMED,
            RoomBooking.checked_in_at.is_(None),
            RoomBooking.booking_date <= last_day,
        )
        .order_by(RoomBooking.booking_date.asc(), RoomBooking.start_time.asc(), RoomBooking.id.asc())
    ).all()

    candidates: list[ReleaseCandidate] = []
    for booking in bookings:
        starts_at = booking_starts_at(booking)
        if starts_at + grace > now:
            continue
        candidates.append(
            ReleaseCandidate(
                resource_type=RESOURCE_ROOM,
                resource_id=booking.room_id,
                booking_id=booking.id,
                employee_id=booking.employee_id,
                due_at=starts_at + grace,
                minutes_overdue=minutes_between(starts_at, now),
            )
        )
    return candidates


def _attendance_status(db: Session, *, employee_id: int, day: date) -> AttendanceStatus | None:
    return db.scalar(
        select(AttendanceRecord.status).where(
            AttendanceRecord.employee_id == employee_id,
            AttendanceRecord.attendance_date == day,
        )
    )


def _parking_candidates(db: Session, now: datetime) -> list[ReleaseCandidate]:
    last_day = _due_through(now)
    overdue = timedelta(minutes=get_settings().parking_release_overdue_minutes)
    rows = db.execute(
        select(ParkingReservation, OfficeLocation)
        .join(ParkingSpot, ParkingSpot.id == ParkingReservation.parking_spot_id)
        .join(OfficeLocation, OfficeLocation.id == ParkingSpot.office_location_id)
        .where(
            ParkingReservation.status == ReservationStatus.ACTIVE,
            ParkingReservation.arrived_at.is_(None),
            ParkingReservation.reservation_date <= last_day,
        )
        .order_by(ParkingReservation.reservation_date.asc(), ParkingReservation.id.asc())
    ).all()

    candidates: list[ReleaseCandidate] = []
    for reservation, office in rows:
        expected_at = parking_expected_arrival(reservation, office)
        if expected_at + overdue > now:
            continue
        status = _attendance_status(db, employee_id=reservation.employee_id, day=reservation.reservation_date)
        if status == AttendanceStatus.OFFICE:
            continue
        candidates.append(
            ReleaseCandidate(
                resource_type=RESOURCE_PARKING,
                resource_id=reservation.parking_spot_id,
                booking_id=reservation.id,
                employee_id=reservation.employee_id,
                due_at=expected_at + overdue,
                minutes_overdue=minutes_between(expected_at, now),
            )
        )
    return candidates


def find_release_candidates(db: Session, now: datetime | None = None) -> list[ReleaseCandidate]:
    """Everything a sweep at ``now`` would try to release. Read-only."""
    now_utc = normalize_ts(now)
    return _room_candidates(db, now_utc) + _parking_candidates(db, now_utc)


def _release_room_booking(db: Session, booking_id: int, now: datetime) -> bool:
    result = db.execute(
        update(RoomBooking)
        .where(
            RoomBooking.id == booking_id,
            RoomBooking.status == BookingStatus.CONFIRMED,
            RoomBooking.checked_in_at.is_(None),
        )
        .values(status=BookingStatus.CANCELLED, cancelled_at=now, release_reason=RELEASE_REASON_NO_SHOW)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _release_parking_reservation(db: Session, reservation_id: int, now: datetime) -> bool:
    result = db.execute(
        update(ParkingReservation)
        .where(
            ParkingReservation.id == reservation_id,
            ParkingReservation.status == ReservationStatus.ACTIVE,
            ParkingReservation.arrived_at.is_(None),
        )
        .values(
            status=ReservationStatus.CANCELLED,
            cancelled_at=now,
            release_reason=RELEASE_REASON_NOT_IN_OFFICE,
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def sweep(db: Session, now: datetime | None = None) -> list[ReleasedResource]:
    """Release abandoned bookings as of ``now``.

    Each release is its own compare-and-set transaction; a row that changed
    state in the meantime is skipped, and a failed write is rolled back and
    left for the next run.
    """
    now_utc = normalize_ts(now)
    released: list[ReleasedResource] = []
    for candidate in find_release_candidates(db, now_utc):
        try:
            if candidate.resource_type == RESOURCE_ROOM:
                changed = _release_room_booking(db, candidate.booking_id, now_utc)
            else:
                changed = _release_parking_reservation(db, candidate.booking_id, now_utc)
            if not changed:
                db.rollback()
                continue
            log_audit(
                db,
                actor_type=AuditActorType.SYSTEM,
                actor_id="auto_release",
                action="RESOURCE_AUTO_RELEASED",
                entity_type=f"{candidate.resource_type}_booking",
                entity_id=candidate.booking_id,
                details={"resource_id": candidate.resource_id, "minutes_overdue": candidate.minutes_overdue},
                commit=False,
            )
            db.commit()
        except Exception:
            db.rollback()
            logger.exception(
                "auto_release_item_failed",
                extra={"resource_type": candidate.resource_type, "booking_id": candidate.booking_id},
            )
            continue

        released.append(
            ReleasedResource(
                resource_type=candidate.resource_type,
                resource_id=candidate.resource_id,
                booking_id=candidate.booking_id,
                employee_id=candidate.employee_id,
                minutes_overdue=candidate.minutes_overdue,
                released_at=now_utc,
            )
        )
        notify_resource_released(
            employee_id=candidate.employee_id,
            resource_type=candidate.resource_type,
            booking_id=candidate.booking_id,
            minutes_overdue=candidate.minutes_overdue,
        )

    logger.info(
        "auto_release_sweep",
        extra={"released_count": len(released), "now_utc": now_utc.isoformat()},
    )
    return released


def release_eligible_now(db: Session) -> list[ReleasedResource]:
    return sweep(db, datetime.now(timezone.utc))


def complete_finished_bookings(db: Session, now: datetime | None = None) -> int:
    """Close out occupied room bookings that have ended and past-day parking that was used.

    A parking reservation counts as used when arrival was stamped or the
    holder checked in as office that day.
    """
    now_utc = normalize_ts(now)
    today = _due_through(now_utc)
    completed = 0
    holder_in_office = (
        select(AttendanceRecord.id)
        .where(
            AttendanceRecord.employee_id == ParkingReservation.employee_id,
            AttendanceRecord.attendance_date == ParkingReservation.reservation_date,
            AttendanceRecord.status == AttendanceStatus.OFFICE,
        )
        .exists()
    )

    occupied = db.scalars(
        select(RoomBooking).where(
            RoomBooking.status == BookingStatus.CONFIRMED,
            RoomBooking.checked_in_at.is_not(None),
            RoomBooking.booking_date <= today,
        )
    ).all()
    for booking in occupied:
        if booking_ends_at(booking) > now_utc:
            continue
        result = db.execute(
            update(RoomBooking)
            .where(RoomBooking.id == booking.id, RoomBooking.status == BookingStatus.CONFIRMED)
            .values(status=BookingStatus.COMPLETED)
            .execution_options(synchronize_session=False)
        )
        completed += result.rowcount

    result = db.execute(
        update(ParkingReservation)
        .where(
            ParkingReservation.status == ReservationStatus.ACTIVE,
            ParkingReservation.reservation_date < today,
            or_(ParkingReservation.arrived_at.is_not(None), holder_in_office),
        )
        .values(status=ReservationStatus.COMPLETED)
        .execution_options(synchronize_session=False)
    )
    completed += result.rowcount
    db.commit()
    return completed


def run_scheduled_sweep(now: datetime | None = None) -> list[ReleasedResource]:
    with SessionLocal() as session:
        released = sweep(session, now)
        complete_finished_bookings(session, now)
        return released
