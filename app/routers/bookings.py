from datetime import date

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from app.db import get_db
from app.models import BookingStatus, ReservationStatus
from app.schemas import (
    BookingActionRequest,
    ParkingReservationActionResponse,
    ParkingReservationCreate,
    ParkingReservationRead,
    RoomBookingActionResponse,
    RoomBookingCreate,
    RoomBookingRead,
)
from app.services.bookings import (
    cancel_parking_reservation,
    cancel_room_booking,
    confirm_room_occupancy,
    create_parking_reservation,
    create_room_booking,
    list_parking_reservations,
    list_room_bookings,
)

router = APIRouter(tags=["bookings"])


@router.post("/api/bookings/rooms", response_model=RoomBookingRead, status_code=status.HTTP_201_CREATED)
def book_room(
    payload: RoomBookingCreate,
    request: Request,
    db: Session = Depends(get_db),
) -> RoomBookingRead:
    request.state.actor = "employee"
    request.state.employee_id = payload.employee_id
    return create_room_booking(
        db,
        employee_id=payload.employee_id,
        room_id=payload.room_id,
        booking_date=payload.booking_date,
        start_time=payload.start_time,
        end_time=payload.end_time,
        purpose=payload.purpose,
    )


@router.post("/api/bookings/rooms/{booking_id}/cancel", response_model=RoomBookingActionResponse)
def cancel_room(
    booking_id: int,
    payload: BookingActionRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> RoomBookingActionResponse:
    request.state.actor = "employee"
    request.state.employee_id = payload.employee_id
    booking, already_processed = cancel_room_booking(db, booking_id=booking_id, employee_id=payload.employee_id)
    return RoomBookingActionResponse(
        booking=RoomBookingRead.model_validate(booking),
        already_processed=already_processed,
    )


@router.post("/api/bookings/rooms/{booking_id}/check-in", response_model=RoomBookingRead)
def check_in_room(
    booking_id: int,
    payload: BookingActionRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> RoomBookingRead:
    request.state.actor = "employee"
    request.state.employee_id = payload.employee_id
    return confirm_room_occupancy(db, booking_id=booking_id, employee_id=payload.employee_id)


@router.get("/api/bookings/rooms", response_model=list[RoomBookingRead])
def list_rooms_bookings(
    employee_id: int | None = Query(default=None, ge=1),
    room_id: int | None = Query(default=None, ge=1),
    booking_date: date | None = Query(default=None),
    booking_status: BookingStatus | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
) -> list[RoomBookingRead]:
    return list_room_bookings(
        db,
        employee_id=employee_id,
        room_id=room_id,
        booking_date=booking_date,
        status=booking_status,
    )


@router.post("/api/bookings/parking", response_model=ParkingReservationRead, status_code=status.HTTP_201_CREATED)
def reserve_parking(
    payload: ParkingReservationCreate,
    request: Request,
    db: Session = Depends(get_db),
) -> ParkingReservationRead:
    request.state.actor = "employee"
    request.state.employee_id = payload.employee_id
    return create_parking_reservation(
        db,
        employee_id=payload.employee_id,
        parking_spot_id=payload.parking_spot_id,
        reservation_date=payload.reservation_date,
        start_time=payload.start_time,
        end_time=payload.end_time,
    )


@router.post("/api/bookings/parking/{reservation_id}/cancel", response_model=ParkingReservationActionResponse)
def cancel_parking(
    reservation_id: int,
    payload: BookingActionRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> ParkingReservationActionResponse:
    request.state.actor = "employee"
    request.state.employee_id = payload.employee_id
    reservation, already_processed = cancel_parking_reservation(
        db,
        reservation_id=reservation_id,
        employee_id=payload.employee_id,
    )
    return ParkingReservationActionResponse(
        reservation=ParkingReservationRead.model_validate(reservation),
        already_processed=already_processed,
    )


@router.get("/api/bookings/parking", response_model=list[ParkingReservationRead])
def list_parking(
    employee_id: int | None = Query(default=None, ge=1),
    reservation_date: date | None = Query(default=None),
    reservation_status: ReservationStatus | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
) -> list[ParkingReservationRead]:
    return list_parking_reservations(
        db,
        employee_id=employee_id,
        reservation_date=reservation_date,
        status=reservation_status,
    )
