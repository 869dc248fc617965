from __future__ import annotations

import unittest
from collections.abc import Generator
from datetime import date, datetime, timezone
from unittest.mock import patch

from fastapi.testclient import TestClient

from app.db import get_db
from app.errors import AlreadyDecidedError, PastCutoffError, ResourceConflictError
from app.main import app
from app.models import OfficeLocation, VerificationMethod, WFHApproval, WFHStatus, WFHUrgency
from app.security import ADMIN_SCOPE, require_admin
from app.services.auto_release import ReleasedResource
from app.services.conflicts import BookingConflict, SuggestedResolution
from app.services.verification import (
    MethodEvaluation,
    VerificationErrorKind,
    VerificationResult,
)

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
ADMIN_CLAIMS = {"sub": "admin", "scope": ADMIN_SCOPE}


class _FakeDB:
    def commit(self) -> None:
        return None

    def rollback(self) -> None:
        return None

    def add(self, _obj) -> None:  # type: ignore[no-untyped-def]
        return None


def _override_get_db(fake_db: _FakeDB):
    def _override() -> Generator[_FakeDB, None, None]:
        yield fake_db

    return _override


def _approval(status: WFHStatus, urgency: WFHUrgency) -> WFHApproval:
    return WFHApproval(
        id=77,
        employee_id=5,
        manager_id=9,
        requested_date=date(2026, 3, 4),
        reason="Burst pipe",
        urgency=urgency,
        status=status,
        review_required=status == WFHStatus.AUTO_APPROVED,
        created_at=NOW,
    )


class _ApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        app.dependency_overrides[get_db] = _override_get_db(_FakeDB())
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()


class AttendanceEndpointTests(_ApiTestCase):
    def test_verify_returns_primary_method(self) -> None:
        result = VerificationResult(
            success=True,
            method=VerificationMethod.QR_CODE,
            confidence=1.0,
            timestamp=NOW,
            office_location_id=1,
            method_count=2,
            evaluations=[
                MethodEvaluation(method=VerificationMethod.QR_CODE, passed=True, confidence=1.0),
                MethodEvaluation(method=VerificationMethod.GPS, passed=True, confidence=0.6),
            ],
        )
        with patch("app.routers.attendance.verify", return_value=result) as verify_mock:
            response = self.client.post(
                "/api/attendance/verify",
                json={
                    "employee_id": 5,
                    "office_location_id": 1,
                    "gps": {"lat": 41.0, "lon": 29.0, "accuracy_m": 8},
                    "qr_payload": "HQ-LOBBY-0001",
                },
            )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["success"])
        self.assertEqual(body["method"], "qr_code")
        self.assertEqual(body["method_count"], 2)
        signals = verify_mock.call_args.kwargs["signals"]
        self.assertEqual(signals.qr_payload, "HQ-LOBBY-0001")
        self.assertIsNone(signals.wifi_ssid)

    def test_rejected_check_in_reports_reason(self) -> None:
        result = VerificationResult(
            success=False,
            method=VerificationMethod.GPS,
            confidence=0.0,
            timestamp=NOW,
            office_location_id=1,
            error="GPS_OUT_OF_RANGE",
            error_kind=VerificationErrorKind.OUT_OF_RANGE,
        )
        with patch("app.routers.attendance.check_in", return_value=(None, result)):
            response = self.client.post(
                "/api/attendance/check-in",
                json={"employee_id": 5, "office_location_id": 1, "gps": {"lat": 41.1, "lon": 29.0}},
            )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertFalse(body["checked_in"])
        self.assertIsNone(body["record"])
        self.assertEqual(body["verification"]["error"], "GPS_OUT_OF_RANGE")
        self.assertEqual(body["verification"]["error_kind"], "out_of_range")
        self.assertEqual(body["verification"]["error_message"], "Location is outside the office geofence.")


class BookingEndpointTests(_ApiTestCase):
    def test_overlapping_room_booking_returns_conflict(self) -> None:
        error = ResourceConflictError(
            "Room is already booked for an overlapping slot.",
            resource_type="room",
            resource_id=3,
            conflicting_id=55,
        )
        with patch("app.routers.bookings.create_room_booking", side_effect=error):
            response = self.client.post(
                "/api/bookings/rooms",
                json={
                    "employee_id": 5,
                    "room_id": 3,
                    "booking_date": "2026-03-02",
                    "start_time": "10:30:00",
                    "end_time": "11:30:00",
                    "purpose": "Retro",
                },
            )

        self.assertEqual(response.status_code, 409)
        error_body = response.json()["error"]
        self.assertEqual(error_body["code"], "RESOURCE_CONFLICT")
        self.assertEqual(error_body["details"]["conflicting_id"], 55)

    def test_inverted_booking_times_rejected(self) -> None:
        response = self.client.post(
            "/api/bookings/rooms",
            json={
                "employee_id": 5,
                "room_id": 3,
                "booking_date": "2026-03-02",
                "start_time": "11:00:00",
                "end_time": "10:00:00",
                "purpose": "Retro",
            },
        )
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "VALIDATION_ERROR")

    def test_late_cancel_reports_cutoff(self) -> None:
        error = PastCutoffError(
            "Room booking can only be cancelled until 2026-03-02T09:00:00+00:00.",
            cutoff_at=datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc),
            starts_at=datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc),
        )
        with patch("app.routers.bookings.cancel_room_booking", side_effect=error):
            response = self.client.post("/api/bookings/rooms/30/cancel", json={"employee_id": 5})

        self.assertEqual(response.status_code, 409)
        error_body = response.json()["error"]
        self.assertEqual(error_body["code"], "PAST_CUTOFF")
        self.assertEqual(error_body["details"]["cutoff_at"], "2026-03-02T09:00:00+00:00")


class WfhEndpointTests(_ApiTestCase):
    def test_emergency_request_is_auto_approved(self) -> None:
        approval = _approval(WFHStatus.AUTO_APPROVED, WFHUrgency.EMERGENCY)
        with patch("app.routers.wfh.create_wfh_request", return_value=approval):
            response = self.client.post(
                "/api/wfh/requests",
                json={
                    "employee_id": 5,
                    "requested_date": "2026-03-04",
                    "reason": "Burst pipe",
                    "urgency": "emergency",
                },
            )

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["approval_id"], 77)
        self.assertEqual(body["status"], "auto_approved")

    def test_blank_reason_rejected(self) -> None:
        response = self.client.post(
            "/api/wfh/requests",
            json={"employee_id": 5, "requested_date": "2026-03-04", "reason": "   "},
        )
        self.assertEqual(response.status_code, 422)


class AdminEndpointTests(_ApiTestCase):
    def test_admin_routes_require_token(self) -> None:
        response = self.client.post("/api/admin/auto-release/run")
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"]["code"], "INVALID_TOKEN")

    def test_release_eligible_now(self) -> None:
        app.dependency_overrides[require_admin] = lambda: ADMIN_CLAIMS
        released = [
            ReleasedResource(
                resource_type="parking",
                resource_id=12,
                booking_id=40,
                employee_id=8,
                minutes_overdue=35,
                released_at=NOW,
            )
        ]
        with (
            patch("app.routers.admin.release_eligible_now", return_value=released),
            patch("app.routers.admin.log_audit") as audit_mock,
        ):
            response = self.client.post("/api/admin/auto-release/run")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body[0]["resource_type"], "parking")
        self.assertEqual(body[0]["minutes_overdue"], 35)
        self.assertEqual(audit_mock.call_args.kwargs["details"], {"released_count": 1})

    def test_conflict_listing(self) -> None:
        app.dependency_overrides[require_admin] = lambda: ADMIN_CLAIMS
        conflict = BookingConflict(
            room_id=1,
            room_name="Falcon",
            date=date(2026, 3, 2),
            booking_ids=[10, 11],
            overlap_minutes=30,
            severity="medium",
            suggested_resolution=SuggestedResolution(
                keep_booking_id=10,
                reassign_booking_ids=[11],
                alternate_room_ids=[],
                summary="Keep booking 10",
            ),
        )
        with patch("app.routers.admin.detect_conflicts", return_value=[conflict]) as detect_mock:
            response = self.client.get("/api/admin/conflicts?start_date=2026-03-02&end_date=2026-03-02")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body[0]["booking_ids"], [10, 11])
        self.assertEqual(body[0]["suggested_resolution"]["keep_booking_id"], 10)
        self.assertEqual(detect_mock.call_args.kwargs["start_date"], date(2026, 3, 2))

    def test_decision_on_decided_request_is_conflict(self) -> None:
        app.dependency_overrides[require_admin] = lambda: ADMIN_CLAIMS
        with patch(
            "app.routers.admin.decide_wfh_request",
            side_effect=AlreadyDecidedError(approval_id=77, current_status="rejected"),
        ):
            response = self.client.post("/api/admin/wfh/77/decision", json={"decision": "approve"})

        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["error"]["code"], "ALREADY_DECIDED")

    def test_repeated_decision_is_idempotent(self) -> None:
        app.dependency_overrides[require_admin] = lambda: ADMIN_CLAIMS
        approval = _approval(WFHStatus.APPROVED, WFHUrgency.NORMAL)
        with patch("app.routers.admin.decide_wfh_request", return_value=(approval, True)):
            response = self.client.post("/api/admin/wfh/77/decision", json={"decision": "approve"})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["already_processed"])
        self.assertEqual(body["approval"]["status"], "approved")


class _OfficeAdminDB(_FakeDB):
    def __init__(self) -> None:
        self.added: list[object] = []

    def get(self, model, key):  # type: ignore[no-untyped-def]
        if model is OfficeLocation and key == 1:
            return OfficeLocation(id=1, name="HQ", lat=41.0, lon=29.0, geofence_radius_m=100)
        return None

    def add(self, obj) -> None:  # type: ignore[no-untyped-def]
        self.added.append(obj)

    def refresh(self, obj) -> None:  # type: ignore[no-untyped-def]
        obj.id = obj.id or 21
        if obj.scan_count is None:
            obj.scan_count = 0
        if obj.is_active is None:
            obj.is_active = True


class QrCodeAdminEndpointTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = _OfficeAdminDB()
        app.dependency_overrides[get_db] = _override_get_db(self.db)
        app.dependency_overrides[require_admin] = lambda: ADMIN_CLAIMS
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()

    def test_expiry_without_offset_is_read_as_utc(self) -> None:
        with patch("app.routers.admin.log_audit"):
            response = self.client.post(
                "/api/admin/offices/1/qr-codes",
                json={"location_description": "Lobby", "expires_at": "2030-01-01T09:00:00"},
            )

        self.assertEqual(response.status_code, 201)
        stored = self.db.added[0]
        self.assertEqual(stored.expires_at, datetime(2030, 1, 1, 9, 0, tzinfo=timezone.utc))
        self.assertEqual(response.json()["office_location_id"], 1)

    def test_past_expiry_without_offset_rejected(self) -> None:
        response = self.client.post(
            "/api/admin/offices/1/qr-codes",
            json={"location_description": "Lobby", "expires_at": "2001-01-01T09:00:00"},
        )

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"]["code"], "INVALID_EXPIRY")
        self.assertEqual(self.db.added, [])


class HealthEndpointTests(_ApiTestCase):
    def test_health_reports_schema_guard(self) -> None:
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertIn("schema_guard", response.json())


if __name__ == "__main__":
    unittest.main()
