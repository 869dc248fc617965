"""Read-only scan for overlapping confirmed room bookings.

The exclusion constraint keeps new bookings from overlapping, but rows written
before it existed or through manual fixes can still collide. This module only
reports such clusters and proposes a resolution; it never modifies bookings.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, time

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.errors import ApiError
from app.models import BookingStatus, Room, RoomBooking

SEVERITY_HIGH = "high"
SEVERITY_MEDIUM = "medium"
SEVERITY_LOW = "low"


@dataclass
class SuggestedResolution:
    keep_booking_id: int
    reassign_booking_ids: list[int]
    alternate_room_ids: list[int] = field(default_factory=list)
    summary: str = ""


@dataclass
class BookingConflict:
    room_id: int
    room_name: str
    date: date
    booking_ids: list[int]
    overlap_minutes: int
    severity: str
    suggested_resolution: SuggestedResolution


def _minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def _overlap_minutes(a: RoomBooking, b: RoomBooking) -> int:
    start = max(_minutes(a.start_time), _minutes(b.start_time))
    end = min(_minutes(a.end_time), _minutes(b.end_time))
    return max(end - start, 0)


def cluster_overlapping(bookings: list[RoomBooking]) -> list[list[RoomBooking]]:
    """Group bookings of one room and date into transitively overlapping clusters.

    Intervals are half-open, so 10:00-11:00 and 11:00-12:00 do not overlap.
    """
    ordered = sorted(bookings, key=lambda item: (item.start_time, item.end_time, item.id))
    clusters: list[list[RoomBooking]] = []
    current: list[RoomBooking] = []
    current_end: time | None = None
    for booking in ordered:
        if current and current_end is not None and booking.start_time < current_end:
            current.append(booking)
            current_end = max(current_end, booking.end_time)
            continue
        if len(current) >= 2:
            clusters.append(current)
        current = [booking]
        current_end = booking.end_time
    if len(current) >= 2:
        clusters.append(current)
    return clusters


def classify_severity(booking_count: int, overlap_minutes: int) -> str:
    if booking_count >= 3 or overlap_minutes >= 60:
        return SEVERITY_HIGH
    if overlap_minutes >= 15:
        return SEVERITY_MEDIUM
    return SEVERITY_LOW


def _max_pairwise_overlap(cluster: list[RoomBooking]) -> int:
    best = 0
    for index, first in enumerate(cluster):
        for second in cluster[index + 1 :]:
            best = max(best, _overlap_minutes(first, second))
    return best


def _find_alternate_rooms(
    db: Session,
    *,
    room: Room,
    booking_date: date,
    start_time: time,
    end_time: time,
) -> list[int]:
    busy_room_ids = set(
        db.scalars(
            select(RoomBooking.room_id).where(
                RoomBooking.booking_date == booking_date,
                RoomBooking.status == BookingStatus.CONFIRMED,
                RoomBooking.start_time < end_time,
                RoomBooking.end_time > start_time,
            )
        ).all()
    )
    candidates = db.scalars(
        select(Room)
        .where(
            Room.office_location_id == room.office_location_id,
            Room.is_active.is_(True),
            Room.id != room.id,
        )
        .order_by(Room.capacity.asc(), Room.id.asc())
    ).all()
    return [candidate.id for candidate in candidates if candidate.id not in busy_room_ids]


def _suggest_resolution(db: Session, room: Room, cluster: list[RoomBooking]) -> SuggestedResolution:
    keep = min(cluster, key=lambda item: (item.created_at, item.id))
    others = [item for item in cluster if item.id != keep.id]
    span_start = min(item.start_time for item in others)
    span_end = max(item.end_time for item in others)
    alternates = _find_alternate_rooms(
        db,
        room=room,
        booking_date=keep.booking_date,
        start_time=span_start,
        end_time=span_end,
    )
    summary = f"Keep booking {keep.id} (earliest created); move {len(others)} other booking(s)"
    if alternates:
        summary += f" to a free room such as {alternates[0]} or to another time."
    else:
        summary += " to another time; no other room is free for that slot."
    return SuggestedResolution(
        keep_booking_id=keep.id,
        reassign_booking_ids=[item.id for item in others],
        alternate_room_ids=alternates,
        summary=summary,
    )


def _load_confirmed_bookings(
    db: Session,
    *,
    start_date: date,
    end_date: date,
    room_id: int | None,
    office_location_id: int | None,
) -> list[RoomBooking]:
    stmt = select(RoomBooking).where(
        RoomBooking.status == BookingStatus.CONFIRMED,
        RoomBooking.booking_date >= start_date,
        RoomBooking.booking_date <= end_date,
    )
    if room_id is not None:
        stmt = stmt.where(RoomBooking.room_id == room_id)
    if office_location_id is not None:
        stmt = stmt.join(Room, Room.id == RoomBooking.room_id).where(Room.office_location_id == office_location_id)
    return list(db.scalars(stmt).all())


def detect_conflicts(
    db: Session,
    *,
    start_date: date,
    end_date: date,
    room_id: int | None = None,
    office_location_id: int | None = None,
) -> list[BookingConflict]:
    if end_date < start_date:
        raise ApiError(status_code=422, code="INVALID_DATE_RANGE", message="end_date must not precede start_date.")

    grouped: dict[tuple[int, date], list[RoomBooking]] = defaultdict(list)
    for booking in _load_confirmed_bookings(
        db,
        start_date=start_date,
        end_date=end_date,
        room_id=room_id,
        office_location_id=office_location_id,
    ):
        grouped[(booking.room_id, booking.booking_date)].append(booking)

    conflicts: list[BookingConflict] = []
    rooms: dict[int, Room | None] = {}
    for (conflict_room_id, booking_date), bookings in sorted(grouped.items(), key=lambda item: (item[0][1], item[0][0])):
        for cluster in cluster_overlapping(bookings):
            if conflict_room_id not in rooms:
                rooms[conflict_room_id] = db.get(Room, conflict_room_id)
            room = rooms[conflict_room_id]
            if room is None:
                continue
            overlap = _max_pairwise_overlap(cluster)
            conflicts.append(
                BookingConflict(
                    room_id=room.id,
                    room_name=room.name,
                    date=booking_date,
                    booking_ids=sorted(item.id for item in cluster),
                    overlap_minutes=overlap,
                    severity=classify_severity(len(cluster), overlap),
                    suggested_resolution=_suggest_resolution(db, room, cluster),
                )
            )
    return conflicts
