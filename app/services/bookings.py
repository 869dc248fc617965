from __future__ import annotations

import logging
from datetime import date, datetime, time, timedelta

from sqlalchemy import and_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.audit import log_audit
from app.errors import ApiError, PastCutoffError, ResourceConflictError
from app.models import (
    AttendanceRecord,
    AttendanceStatus,
    AuditActorType,
    BookingStatus,
    OfficeLocation,
    ParkingReservation,
    ParkingSpot,
    ReservationStatus,
    Room,
    RoomBooking,
)
from app.services.employees import resolve_active_employee
from app.services.office_time import local_to_utc, normalize_ts
from app.settings import get_settings

logger = logging.getLogger("app.bookings")

FULL_DAY_START = time(0, 0)
FULL_DAY_END = time(23, 59, 59)


def booking_starts_at(booking: RoomBooking) -> datetime:
    return local_to_utc(booking.booking_date, booking.start_time)


def booking_ends_at(booking: RoomBooking) -> datetime:
    return local_to_utc(booking.booking_date, booking.end_time)


def parking_expected_arrival(reservation: ParkingReservation, office: OfficeLocation | None) -> datetime:
    """Explicit start time, or the office-hours start for full-day reservations."""
    start = reservation.start_time
    if start == FULL_DAY_START and office is not None:
        start = office.office_hours_start
    return local_to_utc(reservation.reservation_date, start)


def _resolve_room(db: Session, room_id: int) -> Room:
    room = db.get(Room, room_id)
    if room is None or not room.is_active:
        raise ApiError(status_code=404, code="ROOM_NOT_FOUND", message="Room not found.")
    return room


def _resolve_spot(db: Session, spot_id: int) -> ParkingSpot:
    spot = db.get(ParkingSpot, spot_id)
    if spot is None or not spot.is_active:
        raise ApiError(status_code=404, code="PARKING_SPOT_NOT_FOUND", message="Parking spot not found.")
    return spot


def _find_overlapping_booking_id(
    db: Session,
    *,
    room_id: int,
    booking_date: date,
    start_time: time,
    end_time: time,
) -> int | None:
    return db.scalar(
        select(RoomBooking.id)
        .where(
            RoomBooking.room_id == room_id,
            RoomBooking.booking_date == booking_date,
            RoomBooking.status == BookingStatus.CONFIRMED,
            RoomBooking.start_time < end_time,
            RoomBooking.end_time > start_time,
        )
        .order_by(RoomBooking.start_time.asc())
        .limit(1)
    )


def create_room_booking(
    db: Session,
    *,
    employee_id: int,
    room_id: int,
    booking_date: date,
    start_time: time,
    end_time: time,
    purpose: str,
    now: datetime | None = None,
) -> RoomBooking:
    now_utc = normalize_ts(now)
    if end_time <= start_time:
        raise ApiError(status_code=422, code="INVALID_TIME_RANGE", message="end_time must be after start_time.")
    if local_to_utc(booking_date, end_time) <= now_utc:
        raise ApiError(status_code=422, code="BOOKING_IN_PAST", message="Cannot book a slot that has ended.")

    resolve_active_employee(db, employee_id)
    room = _resolve_room(db, room_id)

    booking = RoomBooking(
        employee_id=employee_id,
        room_id=room.id,
        booking_date=booking_date,
        start_time=start_time,
        end_time=end_time,
        purpose=purpose.strip(),
        status=BookingStatus.CONFIRMED,
        created_at=now_utc,
    )
    db.add(booking)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        conflicting_id = _find_overlapping_booking_id(
            db,
            room_id=room.id,
            booking_date=booking_date,
            start_time=start_time,
            end_time=end_time,
        )
        logger.info(
            "room_booking_conflict",
            extra={"room_id": room.id, "booking_date": booking_date.isoformat(), "conflicting_id": conflicting_id},
        )
        raise ResourceConflictError(
            "Room is already booked for an overlapping slot.",
            resource_type="room",
            resource_id=room.id,
            conflicting_id=conflicting_id,
        ) from exc

    log_audit(
        db,
        actor_type=AuditActorType.EMPLOYEE,
        actor_id=employee_id,
        action="ROOM_BOOKING_CREATED",
        entity_type="room_booking",
        entity_id=booking.id,
        details={"room_id": room.id, "date": booking_date.isoformat()},
        commit=False,
    )
    db.commit()
    db.refresh(booking)
    return booking


def _load_room_booking(db: Session, booking_id: int) -> RoomBooking:
    booking = db.get(RoomBooking, booking_id)
    if booking is None:
        raise ApiError(status_code=404, code="BOOKING_NOT_FOUND", message="Booking not found.")
    return booking


def _cas_room_booking(db: Session, booking_id: int, *, expected: BookingStatus, values: dict) -> bool:
    result = db.execute(
        update(RoomBooking)
        .where(RoomBooking.id == booking_id, RoomBooking.status == expected)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _ensure_owner(owner_id: int, employee_id: int) -> None:
    if owner_id != employee_id:
        raise ApiError(status_code=403, code="FORBIDDEN", message="Booking belongs to another employee.")


def _ensure_before_cutoff(*, starts_at: datetime, cutoff_minutes: int, now: datetime, label: str) -> None:
    cutoff_at = starts_at - timedelta(minutes=cutoff_minutes)
    if now > cutoff_at:
        raise PastCutoffError(
            f"{label} can only be cancelled until {cutoff_at.isoformat()}.",
            cutoff_at=cutoff_at,
            starts_at=starts_at,
        )


def cancel_room_booking(
    db: Session,
    *,
    booking_id: int,
    employee_id: int,
    now: datetime | None = None,
) -> tuple[RoomBooking, bool]:
    """Cancel a confirmed booking; returns (booking, already_processed)."""
    now_utc = normalize_ts(now)
    booking = _load_room_booking(db, booking_id)
    _ensure_owner(booking.employee_id, employee_id)

    if booking.status == BookingStatus.CANCELLED:
        return booking, True
    if booking.status != BookingStatus.CONFIRMED:
        raise ApiError(status_code=409, code="BOOKING_NOT_ACTIVE", message="Booking is no longer active.")

    _ensure_before_cutoff(
        starts_at=booking_starts_at(booking),
        cutoff_minutes=get_settings().room_cancel_cutoff_minutes,
        now=now_utc,
        label="Room booking",
    )

    changed = _cas_room_booking(
        db,
        booking.id,
        expected=BookingStatus.CONFIRMED,
        values={"status": BookingStatus.CANCELLED, "cancelled_at": now_utc, "release_reason": "CANCELLED_BY_USER"},
    )
    if not changed:
        db.rollback()
        db.refresh(booking)
        if booking.status == BookingStatus.CANCELLED:
            return booking, True
        raise ApiError(status_code=409, code="BOOKING_NOT_ACTIVE", message="Booking is no longer active.")

    log_audit(
        db,
        actor_type=AuditActorType.EMPLOYEE,
        actor_id=employee_id,
        action="ROOM_BOOKING_CANCELLED",
        entity_type="room_booking",
        entity_id=booking.id,
        commit=False,
    )
    db.commit()
    db.refresh(booking)
    return booking, False


def confirm_room_occupancy(
    db: Session,
    *,
    booking_id: int,
    employee_id: int,
    now: datetime | None = None,
) -> RoomBooking:
    """Record the occupancy signal that keeps a booking from being auto-released."""
    now_utc = normalize_ts(now)
    booking = _load_room_booking(db, booking_id)
    _ensure_owner(booking.employee_id, employee_id)

    if booking.status != BookingStatus.CONFIRMED:
        raise ApiError(status_code=409, code="BOOKING_NOT_ACTIVE", message="Booking is no longer active.")
    if booking.checked_in_at is not None:
        return booking

    opens_at = booking_starts_at(booking) - timedelta(minutes=get_settings().room_checkin_open_minutes_before)
    if now_utc < opens_at or now_utc >= booking_ends_at(booking):
        raise ApiError(
            status_code=409,
            code="CHECKIN_WINDOW_CLOSED",
            message=f"Room check-in opens at {opens_at.isoformat()} and closes at the booking end.",
        )

    result = db.execute(
        update(RoomBooking)
        .where(
            RoomBooking.id == booking.id,
            RoomBooking.status == BookingStatus.CONFIRMED,
            RoomBooking.checked_in_at.is_(None),
        )
        .values(checked_in_at=now_utc)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        db.refresh(booking)
        if booking.status != BookingStatus.CONFIRMED:
            raise ApiError(status_code=409, code="BOOKING_NOT_ACTIVE", message="Booking is no longer active.")
        return booking

    db.commit()
    db.refresh(booking)
    return booking


def list_room_bookings(
    db: Session,
    *,
    employee_id: int | None = None,
    room_id: int | None = None,
    booking_date: date | None = None,
    status: BookingStatus | None = None,
) -> list[RoomBooking]:
    stmt = select(RoomBooking)
    if employee_id is not None:
        stmt = stmt.where(RoomBooking.employee_id == employee_id)
    if room_id is not None:
        stmt = stmt.where(RoomBooking.room_id == room_id)
    if booking_date is not None:
        stmt = stmt.where(RoomBooking.booking_date == booking_date)
    if status is not None:
        stmt = stmt.where(RoomBooking.status == status)
    stmt = stmt.order_by(RoomBooking.booking_date.asc(), RoomBooking.start_time.asc(), RoomBooking.id.asc())
    return list(db.scalars(stmt).all())


def _find_active_reservation_id(
    db: Session,
    *,
    reservation_date: date,
    employee_id: int | None = None,
    spot_id: int | None = None,
) -> int | None:
    conditions = [
        ParkingReservation.reservation_date == reservation_date,
        ParkingReservation.status == ReservationStatus.ACTIVE,
    ]
    if employee_id is not None:
        conditions.append(ParkingReservation.employee_id == employee_id)
    if spot_id is not None:
        conditions.append(ParkingReservation.parking_spot_id == spot_id)
    return db.scalar(select(ParkingReservation.id).where(and_(*conditions)).limit(1))


def _holder_in_office(db: Session, *, employee_id: int, day: date) -> bool:
    status = db.scalar(
        select(AttendanceRecord.status).where(
            AttendanceRecord.employee_id == employee_id,
            AttendanceRecord.attendance_date == day,
        )
    )
    return status == AttendanceStatus.OFFICE


def create_parking_reservation(
    db: Session,
    *,
    employee_id: int,
    parking_spot_id: int,
    reservation_date: date,
    start_time: time | None = None,
    end_time: time | None = None,
    now: datetime | None = None,
) -> ParkingReservation:
    now_utc = normalize_ts(now)
    start = start_time or FULL_DAY_START
    end = end_time or FULL_DAY_END
    if end <= start:
        raise ApiError(status_code=422, code="INVALID_TIME_RANGE", message="end_time must be after start_time.")
    if local_to_utc(reservation_date, end) <= now_utc:
        raise ApiError(status_code=422, code="BOOKING_IN_PAST", message="Cannot reserve a slot that has ended.")

    resolve_active_employee(db, employee_id)
    spot = _resolve_spot(db, parking_spot_id)

    reservation = ParkingReservation(
        employee_id=employee_id,
        parking_spot_id=spot.id,
        reservation_date=reservation_date,
        start_time=start,
        end_time=end,
        status=ReservationStatus.ACTIVE,
        created_at=now_utc,
    )
    # An earlier office check-in had no reservation to stamp.
    if _holder_in_office(db, employee_id=employee_id, day=reservation_date):
        reservation.arrived_at = now_utc
    db.add(reservation)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        own_id = _find_active_reservation_id(db, reservation_date=reservation_date, employee_id=employee_id)
        if own_id is not None:
            raise ResourceConflictError(
                "Employee already holds an active parking reservation for this date.",
                resource_type="employee",
                resource_id=employee_id,
                conflicting_id=own_id,
            ) from exc
        raise ResourceConflictError(
            "Parking spot is already reserved for this date.",
            resource_type="parking_spot",
            resource_id=spot.id,
            conflicting_id=_find_active_reservation_id(db, reservation_date=reservation_date, spot_id=spot.id),
        ) from exc

    log_audit(
        db,
        actor_type=AuditActorType.EMPLOYEE,
        actor_id=employee_id,
        action="PARKING_RESERVATION_CREATED",
        entity_type="parking_reservation",
        entity_id=reservation.id,
        details={"parking_spot_id": spot.id, "date": reservation_date.isoformat()},
        commit=False,
    )
    db.commit()
    db.refresh(reservation)
    return reservation


def _load_parking_reservation(db: Session, reservation_id: int) -> ParkingReservation:
    reservation = db.get(ParkingReservation, reservation_id)
    if reservation is None:
        raise ApiError(status_code=404, code="RESERVATION_NOT_FOUND", message="Reservation not found.")
    return reservation


def _reservation_office(db: Session, reservation: ParkingReservation) -> OfficeLocation | None:
    spot = db.get(ParkingSpot, reservation.parking_spot_id)
    if spot is None:
        return None
    return db.get(OfficeLocation, spot.office_location_id)


def cancel_parking_reservation(
    db: Session,
    *,
    reservation_id: int,
    employee_id: int,
    now: datetime | None = None,
) -> tuple[ParkingReservation, bool]:
    now_utc = normalize_ts(now)
    reservation = _load_parking_reservation(db, reservation_id)
    _ensure_owner(reservation.employee_id, employee_id)

    if reservation.status == ReservationStatus.CANCELLED:
        return reservation, True
    if reservation.status != ReservationStatus.ACTIVE:
        raise ApiError(status_code=409, code="BOOKING_NOT_ACTIVE", message="Reservation is no longer active.")

    _ensure_before_cutoff(
        starts_at=parking_expected_arrival(reservation, _reservation_office(db, reservation)),
        cutoff_minutes=get_settings().parking_cancel_cutoff_minutes,
        now=now_utc,
        label="Parking reservation",
    )

    result = db.execute(
        update(ParkingReservation)
        .where(
            ParkingReservation.id == reservation.id,
            ParkingReservation.status == ReservationStatus.ACTIVE,
        )
        .values(
            status=ReservationStatus.CANCELLED,
            cancelled_at=now_utc,
            release_reason="CANCELLED_BY_USER",
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        db.refresh(reservation)
        if reservation.status == ReservationStatus.CANCELLED:
            return reservation, True
        raise ApiError(status_code=409, code="BOOKING_NOT_ACTIVE", message="Reservation is no longer active.")

    log_audit(
        db,
        actor_type=AuditActorType.EMPLOYEE,
        actor_id=employee_id,
        action="PARKING_RESERVATION_CANCELLED",
        entity_type="parking_reservation",
        entity_id=reservation.id,
        commit=False,
    )
    db.commit()
    db.refresh(reservation)
    return reservation, False


def mark_parking_arrival(db: Session, *, employee_id: int, reservation_date: date, now: datetime) -> int | None:
    """Stamp arrival on the employee's active reservation for the day, if any."""
    result = db.execute(
        update(ParkingReservation)
        .where(
            ParkingReservation.employee_id == employee_id,
            ParkingReservation.reservation_date == reservation_date,
            ParkingReservation.status == ReservationStatus.ACTIVE,
            ParkingReservation.arrived_at.is_(None),
        )
        .values(arrived_at=now)
        .returning(ParkingReservation.id)
        .execution_options(synchronize_session=False)
    )
    return result.scalar_one_or_none()


def list_parking_reservations(
    db: Session,
    *,
    employee_id: int | None = None,
    reservation_date: date | None = None,
    status: ReservationStatus | None = None,
) -> list[ParkingReservation]:
    stmt = select(ParkingReservation)
    if employee_id is not None:
        stmt = stmt.where(ParkingReservation.employee_id == employee_id)
    if reservation_date is not None:
        stmt = stmt.where(ParkingReservation.reservation_date == reservation_date)
    if status is not None:
        stmt = stmt.where(ParkingReservation.status == status)
    stmt = stmt.order_by(ParkingReservation.reservation_date.asc(), ParkingReservation.id.asc())
    return list(db.scalars(stmt).all())
