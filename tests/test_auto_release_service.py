from __future__ import annotations

import unittest
from datetime import date, datetime, time, timezone
from unittest.mock import patch

from app.models import (
    AttendanceStatus,
    BookingStatus,
    OfficeLocation,
    ParkingReservation,
    ReservationStatus,
    RoomBooking,
)
from app.services.auto_release import (
    RESOURCE_PARKING,
    RESOURCE_ROOM,
    ReleaseCandidate,
    _parking_candidates,
    _room_candidates,
    complete_finished_bookings,
    sweep,
)

DAY = date(2026, 3, 2)


class _Rows:
    def __init__(self, rows):  # type: ignore[no-untyped-def]
        self._rows = rows

    def all(self):  # type: ignore[no-untyped-def]
        return list(self._rows)


class _CandidateDB:
    def __init__(self, *, bookings=None, parking_rows=None, attendance_status=None):  # type: ignore[no-untyped-def]
        self.bookings = bookings or []
        self.parking_rows = parking_rows or []
        self.attendance_status = attendance_status
        self.statements: list[object] = []

    def scalars(self, statement):  # type: ignore[no-untyped-def]
        self.statements.append(statement)
        return _Rows(self.bookings)

    def execute(self, statement):  # type: ignore[no-untyped-def]
        self.statements.append(statement)
        return _Rows(self.parking_rows)

    def scalar(self, _statement):  # type: ignore[no-untyped-def]
        return self.attendance_status


class _SweepDB:
    def __init__(self) -> None:
        self.commits = 0
        self.rollbacks = 0

    def commit(self) -> None:
        self.commits += 1

    def rollback(self) -> None:
        self.rollbacks += 1


def _office() -> OfficeLocation:
    return OfficeLocation(
        id=1,
        name="HQ",
        lat=41.0,
        lon=29.0,
        geofence_radius_m=100,
        office_hours_start=time(9, 0),
        office_hours_end=time(18, 0),
        is_active=True,
    )


def _reservation() -> ParkingReservation:
    return ParkingReservation(
        id=40,
        employee_id=8,
        parking_spot_id=12,
        reservation_date=DAY,
        start_time=time(0, 0),
        end_time=time(23, 59, 59),
        status=ReservationStatus.ACTIVE,
    )


def _room_booking() -> RoomBooking:
    return RoomBooking(
        id=30,
        employee_id=5,
        room_id=3,
        booking_date=DAY,
        start_time=time(10, 0),
        end_time=time(11, 0),
        purpose="Planning",
        status=BookingStatus.CONFIRMED,
    )


def _candidate(resource_type: str, booking_id: int) -> ReleaseCandidate:
    return ReleaseCandidate(
        resource_type=resource_type,
        resource_id=booking_id + 1000,
        booking_id=booking_id,
        employee_id=5,
        due_at=datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc),
        minutes_overdue=35,
    )


class ParkingCandidateTests(unittest.TestCase):
    def test_wfh_holder_35_minutes_after_office_start_is_released(self) -> None:
        db = _CandidateDB(parking_rows=[(_reservation(), _office())], attendance_status=AttendanceStatus.WFH)
        now = datetime(2026, 3, 2, 9, 35, tzinfo=timezone.utc)

        candidates = _parking_candidates(db, now)  # type: ignore[arg-type]

        self.assertEqual(len(candidates), 1)
        self.assertEqual(candidates[0].resource_type, RESOURCE_PARKING)
        self.assertEqual(candidates[0].resource_id, 12)
        self.assertGreaterEqual(candidates[0].minutes_overdue, 30)

    def test_holder_with_no_check_in_is_released(self) -> None:
        db = _CandidateDB(parking_rows=[(_reservation(), _office())], attendance_status=None)
        now = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)

        self.assertEqual(len(_parking_candidates(db, now)), 1)  # type: ignore[arg-type]

    def test_holder_in_office_is_kept(self) -> None:
        db = _CandidateDB(parking_rows=[(_reservation(), _office())], attendance_status=AttendanceStatus.OFFICE)
        now = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)

        self.assertEqual(_parking_candidates(db, now), [])  # type: ignore[arg-type]

    def test_not_yet_overdue_is_kept(self) -> None:
        db = _CandidateDB(parking_rows=[(_reservation(), _office())], attendance_status=AttendanceStatus.WFH)
        now = datetime(2026, 3, 2, 9, 20, tzinfo=timezone.utc)

        self.assertEqual(_parking_candidates(db, now), [])  # type: ignore[arg-type]


class RoomCandidateTests(unittest.TestCase):
    def test_no_show_past_grace_is_released(self) -> None:
        db = _CandidateDB(bookings=[_room_booking()])
        now = datetime(2026, 3, 2, 10, 20, tzinfo=timezone.utc)

        candidates = _room_candidates(db, now)  # type: ignore[arg-type]

        self.assertEqual(len(candidates), 1)
        self.assertEqual(candidates[0].resource_type, RESOURCE_ROOM)
        self.assertEqual(candidates[0].booking_id, 30)
        self.assertEqual(candidates[0].minutes_overdue, 20)

    def test_inside_grace_period_is_kept(self) -> None:
        db = _CandidateDB(bookings=[_room_booking()])
        now = datetime(2026, 3, 2, 10, 10, tzinfo=timezone.utc)

        self.assertEqual(_room_candidates(db, now), [])  # type: ignore[arg-type]


class SweepTests(unittest.TestCase):
    def test_sweep_reports_released_resources(self) -> None:
        db = _SweepDB()
        now = datetime(2026, 3, 2, 10, 20, tzinfo=timezone.utc)
        candidates = [_candidate(RESOURCE_ROOM, 30), _candidate(RESOURCE_PARKING, 40)]

        with (
            patch("app.services.auto_release.find_release_candidates", return_value=candidates),
            patch("app.services.auto_release._release_room_booking", return_value=True),
            patch("app.services.auto_release._release_parking_reservation", return_value=True),
            patch("app.services.auto_release.log_audit") as audit_mock,
            patch("app.services.auto_release.notify_resource_released") as notify_mock,
        ):
            released = sweep(db, now)  # type: ignore[arg-type]

        self.assertEqual([(item.resource_type, item.booking_id) for item in released], [("room", 30), ("parking", 40)])
        self.assertTrue(all(item.released_at == now for item in released))
        self.assertEqual(db.commits, 2)
        self.assertEqual(audit_mock.call_count, 2)
        self.assertFalse(audit_mock.call_args.kwargs["commit"])
        self.assertEqual(notify_mock.call_count, 2)

    def test_second_sweep_is_a_no_op(self) -> None:
        db = _SweepDB()
        candidates = [_candidate(RESOURCE_ROOM, 30)]

        with (
            patch("app.services.auto_release.find_release_candidates", return_value=candidates),
            patch("app.services.auto_release._release_room_booking", return_value=False),
            patch("app.services.auto_release.log_audit") as audit_mock,
            patch("app.services.auto_release.notify_resource_released") as notify_mock,
        ):
            released = sweep(db)  # type: ignore[arg-type]

        self.assertEqual(released, [])
        self.assertEqual(db.commits, 0)
        audit_mock.assert_not_called()
        notify_mock.assert_not_called()

    def test_failed_item_is_logged_and_others_continue(self) -> None:
        db = _SweepDB()
        candidates = [_candidate(RESOURCE_PARKING, 40), _candidate(RESOURCE_ROOM, 30)]

        with (
            patch("app.services.auto_release.find_release_candidates", return_value=candidates),
            patch(
                "app.services.auto_release._release_parking_reservation",
                side_effect=RuntimeError("db down"),
            ),
            patch("app.services.auto_release._release_room_booking", return_value=True),
            patch("app.services.auto_release.log_audit"),
            patch("app.services.auto_release.notify_resource_released"),
            self.assertLogs("app.auto_release", level="ERROR") as captured,
        ):
            released = sweep(db)  # type: ignore[arg-type]

        self.assertEqual([item.booking_id for item in released], [30])
        self.assertEqual(db.rollbacks, 1)
        self.assertTrue(any("auto_release_item_failed" in line for line in captured.output))

class _CompletionResult:
    def __init__(self, rowcount: int) -> None:
        self.rowcount = rowcount


class _CompletionDB:
    def __init__(self, occupied=None) -> None:  # type: ignore[no-untyped-def]
        self.occupied = occupied or []
        self.statements: list[object] = []
        self.commits = 0

    def scalars(self, statement):  # type: ignore[no-untyped-def]
        self.statements.append(statement)
        return _Rows(self.occupied)

    def execute(self, statement):  # type: ignore[no-untyped-def]
        self.statements.append(statement)
        return _CompletionResult(1)

    def commit(self) -> None:
        self.commits += 1


def _sql(statement) -> str:  # type: ignore[no-untyped-def]
    return str(statement).lower()


class MissedSweepTests(unittest.TestCase):
    def test_three_day_old_no_show_is_still_released(self) -> None:
        db = _CandidateDB(bookings=[_room_booking()])
        now = datetime(2026, 3, 5, 12, 0, tzinfo=timezone.utc)

        candidates = _room_candidates(db, now)  # type: ignore[arg-type]

        self.assertEqual([item.booking_id for item in candidates], [30])
        self.assertEqual(candidates[0].minutes_overdue, 3 * 24 * 60 + 120)
        query = _sql(db.statements[0])
        self.assertIn("room_bookings.booking_date <=", query)
        self.assertNotIn("room_bookings.booking_date >=", query)

    def test_old_parking_reservation_has_no_lower_date_bound(self) -> None:
        db = _CandidateDB(parking_rows=[(_reservation(), _office())], attendance_status=None)
        now = datetime(2026, 3, 5, 12, 0, tzinfo=timezone.utc)

        candidates = _parking_candidates(db, now)  # type: ignore[arg-type]

        self.assertEqual([item.booking_id for item in candidates], [40])
        query = _sql(db.statements[0])
        self.assertIn("parking_reservations.reservation_date <=", query)
        self.assertNotIn("parking_reservations.reservation_date >=", query)


class CompleteFinishedBookingsTests(unittest.TestCase):
    def test_occupied_room_from_days_ago_is_completed(self) -> None:
        booking = _room_booking()
        booking.checked_in_at = datetime(2026, 3, 2, 9, 55, tzinfo=timezone.utc)
        db = _CompletionDB(occupied=[booking])

        completed = complete_finished_bookings(db, datetime(2026, 3, 5, 12, 0, tzinfo=timezone.utc))  # type: ignore[arg-type]

        self.assertEqual(completed, 2)
        self.assertEqual(db.commits, 1)
        self.assertNotIn("room_bookings.booking_date >=", _sql(db.statements[0]))

    def test_parking_used_by_office_attendee_is_completed(self) -> None:
        db = _CompletionDB()

        complete_finished_bookings(db, datetime(2026, 3, 5, 12, 0, tzinfo=timezone.utc))  # type: ignore[arg-type]

        parking_update = _sql(db.statements[-1])
        self.assertIn("update parking_reservations", parking_update)
        self.assertIn("arrived_at is not null", parking_update)
        self.assertIn("exists", parking_update)
        self.assertIn("attendance_records.status", parking_update)



if __name__ == "__main__":
    unittest.main()
