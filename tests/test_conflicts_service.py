from __future__ import annotations

import unittest
from datetime import date, datetime, time, timezone
from unittest.mock import patch

from app.errors import ApiError
from app.models import BookingStatus, Room, RoomBooking
from app.services.conflicts import classify_severity, cluster_overlapping, detect_conflicts

DAY = date(2026, 3, 2)


class _RoomDB:
    def __init__(self, rooms: dict[int, Room]):
        self.rooms = rooms
        self.writes = 0

    def get(self, _model, key):  # type: ignore[no-untyped-def]
        return self.rooms.get(key)

    def add(self, _item):  # type: ignore[no-untyped-def]
        self.writes += 1

    def commit(self) -> None:
        self.writes += 1


def _booking(
    booking_id: int,
    start: time,
    end: time,
    *,
    room_id: int = 1,
    created_minute: int = 0,
) -> RoomBooking:
    return RoomBooking(
        id=booking_id,
        employee_id=100 + booking_id,
        room_id=room_id,
        booking_date=DAY,
        start_time=start,
        end_time=end,
        purpose="Sync",
        status=BookingStatus.CONFIRMED,
        created_at=datetime(2026, 3, 1, 8, created_minute, tzinfo=timezone.utc),
    )


class ClusterTests(unittest.TestCase):
    def test_half_open_intervals_do_not_touch(self) -> None:
        clusters = cluster_overlapping(
            [
                _booking(1, time(10, 0), time(11, 0)),
                _booking(2, time(11, 0), time(12, 0)),
            ]
        )
        self.assertEqual(clusters, [])

    def test_transitive_overlap_forms_single_cluster(self) -> None:
        clusters = cluster_overlapping(
            [
                _booking(1, time(9, 0), time(10, 0)),
                _booking(2, time(9, 30), time(10, 30)),
                _booking(3, time(10, 15), time(11, 0)),
                _booking(4, time(13, 0), time(14, 0)),
            ]
        )
        self.assertEqual(len(clusters), 1)
        self.assertEqual([item.id for item in clusters[0]], [1, 2, 3])

    def test_severity_thresholds(self) -> None:
        self.assertEqual(classify_severity(2, 5), "low")
        self.assertEqual(classify_severity(2, 30), "medium")
        self.assertEqual(classify_severity(2, 60), "high")
        self.assertEqual(classify_severity(3, 5), "high")


class DetectConflictsTests(unittest.TestCase):
    def test_falcon_double_booking_reported_once(self) -> None:
        falcon = Room(id=1, office_location_id=1, name="Falcon", capacity=6, is_active=True)
        db = _RoomDB({1: falcon})
        bookings = [
            _booking(11, time(10, 30), time(11, 30), created_minute=5),
            _booking(10, time(10, 0), time(11, 0), created_minute=1),
        ]

        with (
            patch("app.services.conflicts._load_confirmed_bookings", return_value=bookings),
            patch("app.services.conflicts._find_alternate_rooms", return_value=[3]),
        ):
            conflicts = detect_conflicts(db, start_date=DAY, end_date=DAY)  # type: ignore[arg-type]

        self.assertEqual(len(conflicts), 1)
        conflict = conflicts[0]
        self.assertEqual(conflict.room_name, "Falcon")
        self.assertEqual(conflict.date, DAY)
        self.assertEqual(conflict.booking_ids, [10, 11])
        self.assertEqual(conflict.overlap_minutes, 30)
        self.assertEqual(conflict.severity, "medium")
        self.assertEqual(conflict.suggested_resolution.keep_booking_id, 10)
        self.assertEqual(conflict.suggested_resolution.reassign_booking_ids, [11])
        self.assertEqual(conflict.suggested_resolution.alternate_room_ids, [3])
        self.assertEqual(db.writes, 0)

    def test_separate_rooms_do_not_conflict(self) -> None:
        db = _RoomDB(
            {
                1: Room(id=1, office_location_id=1, name="Falcon", capacity=6, is_active=True),
                2: Room(id=2, office_location_id=1, name="Osprey", capacity=4, is_active=True),
            }
        )
        bookings = [
            _booking(1, time(10, 0), time(11, 0), room_id=1),
            _booking(2, time(10, 0), time(11, 0), room_id=2),
        ]
        with patch("app.services.conflicts._load_confirmed_bookings", return_value=bookings):
            conflicts = detect_conflicts(db, start_date=DAY, end_date=DAY)  # type: ignore[arg-type]

        self.assertEqual(conflicts, [])

    def test_inverted_range_rejected(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            detect_conflicts(object(), start_date=DAY, end_date=date(2026, 3, 1))  # type: ignore[arg-type]
        self.assertEqual(ctx.exception.code, "INVALID_DATE_RANGE")


if __name__ == "__main__":
    unittest.main()
