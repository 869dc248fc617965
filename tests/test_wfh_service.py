from __future__ import annotations

import unittest
from datetime import date, datetime, timedelta, timezone
from unittest.mock import patch

from app.errors import AlreadyDecidedError, ApiError
from app.models import Employee, WFHApproval, WFHStatus, WFHUrgency
from app.services.wfh import (
    create_wfh_request,
    decide_wfh_request,
    expire_stale_wfh_requests,
    get_wfh_eligibility,
    sla_window,
)

NOW = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


class _FakeDB:
    def __init__(self, on_refresh=None):  # type: ignore[no-untyped-def]
        self.on_refresh = on_refresh
        self.added: list[object] = []
        self.commits = 0
        self.rollbacks = 0

    def add(self, item):  # type: ignore[no-untyped-def]
        self.added.append(item)

    def flush(self) -> None:
        for item in self.added:
            if getattr(item, "id", None) is None:
                item.id = 77

    def commit(self) -> None:
        self.commits += 1

    def rollback(self) -> None:
        self.rollbacks += 1

    def refresh(self, item):  # type: ignore[no-untyped-def]
        if self.on_refresh is not None:
            self.on_refresh(item)


def _employee() -> Employee:
    return Employee(id=5, full_name="Ada Yilmaz", manager_id=9, is_active=True, max_wfh_days_per_month=10)


def _approval(status: WFHStatus, *, expires_at: datetime | None = None) -> WFHApproval:
    return WFHApproval(
        id=77,
        employee_id=5,
        manager_id=9,
        requested_date=date(2026, 3, 4),
        reason="Plumber visit",
        urgency=WFHUrgency.NORMAL,
        status=status,
        review_required=status == WFHStatus.AUTO_APPROVED,
        expires_at=expires_at,
        created_at=NOW,
    )


class CreateWfhRequestTests(unittest.TestCase):
    def test_emergency_is_auto_approved_with_review_flag(self) -> None:
        db = _FakeDB()
        with (
            patch("app.services.wfh.resolve_active_employee", return_value=_employee()),
            patch("app.services.wfh.log_audit"),
            patch("app.services.wfh.notify_wfh_auto_approved") as auto_mock,
            patch("app.services.wfh.notify_wfh_submitted") as submitted_mock,
        ):
            approval = create_wfh_request(
                db,  # type: ignore[arg-type]
                employee_id=5,
                requested_date=date(2026, 3, 2),
                reason="Burst pipe at home",
                urgency=WFHUrgency.EMERGENCY,
                now=NOW,
            )

        self.assertEqual(approval.status, WFHStatus.AUTO_APPROVED)
        self.assertTrue(approval.review_required)
        self.assertIsNone(approval.expires_at)
        self.assertEqual(approval.decided_at, NOW)
        self.assertEqual(approval.manager_id, 9)
        auto_mock.assert_called_once()
        submitted_mock.assert_not_called()

    def test_normal_request_stays_pending_with_sla(self) -> None:
        db = _FakeDB()
        with (
            patch("app.services.wfh.resolve_active_employee", return_value=_employee()),
            patch("app.services.wfh.log_audit"),
            patch("app.services.wfh.notify_wfh_auto_approved"),
            patch("app.services.wfh.notify_wfh_submitted") as submitted_mock,
        ):
            approval = create_wfh_request(
                db,  # type: ignore[arg-type]
                employee_id=5,
                requested_date=date(2026, 3, 6),
                reason="Focus day",
                now=NOW,
            )

        self.assertEqual(approval.status, WFHStatus.PENDING)
        self.assertEqual(approval.expires_at, NOW + timedelta(hours=48))
        self.assertFalse(approval.review_required)
        submitted_mock.assert_called_once()

    def test_blank_reason_rejected(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            create_wfh_request(
                _FakeDB(),  # type: ignore[arg-type]
                employee_id=5,
                requested_date=date(2026, 3, 6),
                reason="   ",
                now=NOW,
            )
        self.assertEqual(ctx.exception.code, "REASON_REQUIRED")

    def test_sla_windows(self) -> None:
        self.assertEqual(sla_window(WFHUrgency.URGENT), timedelta(hours=4))
        self.assertEqual(sla_window(WFHUrgency.NORMAL), timedelta(hours=48))
        self.assertIsNone(sla_window(WFHUrgency.EMERGENCY))


class DecideWfhRequestTests(unittest.TestCase):
    def test_approve_pending_request(self) -> None:
        approval = _approval(WFHStatus.PENDING, expires_at=NOW + timedelta(hours=10))

        def _refresh(item):  # type: ignore[no-untyped-def]
            item.status = WFHStatus.APPROVED

        db = _FakeDB(on_refresh=_refresh)
        with (
            patch("app.services.wfh._load_approval", return_value=approval),
            patch("app.services.wfh._cas_status", return_value=True) as cas_mock,
            patch("app.services.wfh.log_audit"),
            patch("app.services.wfh.notify_wfh_decision") as notify_mock,
        ):
            result, already_processed = decide_wfh_request(
                db,  # type: ignore[arg-type]
                approval_id=77,
                decision="approve",
                now=NOW,
            )

        self.assertFalse(already_processed)
        self.assertEqual(result.status, WFHStatus.APPROVED)
        self.assertEqual(cas_mock.call_args.kwargs["expected"], WFHStatus.PENDING)
        self.assertEqual(db.commits, 1)
        notify_mock.assert_called_once()

    def test_repeating_same_decision_is_idempotent(self) -> None:
        with (
            patch("app.services.wfh._load_approval", return_value=_approval(WFHStatus.APPROVED)),
            patch("app.services.wfh._cas_status") as cas_mock,
        ):
            _result, already_processed = decide_wfh_request(
                _FakeDB(),  # type: ignore[arg-type]
                approval_id=77,
                decision="approve",
                now=NOW,
            )

        self.assertTrue(already_processed)
        cas_mock.assert_not_called()

    def test_opposite_decision_on_decided_request_raises(self) -> None:
        with patch("app.services.wfh._load_approval", return_value=_approval(WFHStatus.REJECTED)):
            with self.assertRaises(AlreadyDecidedError) as ctx:
                decide_wfh_request(_FakeDB(), approval_id=77, decision="approve", now=NOW)  # type: ignore[arg-type]

        self.assertEqual(ctx.exception.code, "ALREADY_DECIDED")
        self.assertEqual(ctx.exception.current_status, "rejected")

    def test_decision_after_sla_expires_request(self) -> None:
        approval = _approval(WFHStatus.PENDING, expires_at=NOW - timedelta(minutes=1))

        def _refresh(item):  # type: ignore[no-untyped-def]
            item.status = WFHStatus.EXPIRED

        db = _FakeDB(on_refresh=_refresh)
        with (
            patch("app.services.wfh._load_approval", return_value=approval),
            patch("app.services.wfh._cas_status", return_value=True),
        ):
            with self.assertRaises(AlreadyDecidedError) as ctx:
                decide_wfh_request(db, approval_id=77, decision="approve", now=NOW)  # type: ignore[arg-type]

        self.assertEqual(ctx.exception.current_status, "expired")
        self.assertEqual(db.commits, 1)

    def test_unknown_decision_rejected(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            decide_wfh_request(_FakeDB(), approval_id=77, decision="maybe")  # type: ignore[arg-type]
        self.assertEqual(ctx.exception.code, "INVALID_DECISION")

    def test_manager_can_downgrade_auto_approved_request(self) -> None:
        approval = _approval(WFHStatus.AUTO_APPROVED)

        def _refresh(item):  # type: ignore[no-untyped-def]
            item.status = WFHStatus.REJECTED
            item.review_required = False

        db = _FakeDB(on_refresh=_refresh)
        with (
            patch("app.services.wfh._load_approval", return_value=approval),
            patch("app.services.wfh._cas_status", return_value=True) as cas_mock,
            patch("app.services.wfh.log_audit") as audit_mock,
            patch("app.services.wfh.notify_wfh_decision") as notify_mock,
        ):
            result, already_processed = decide_wfh_request(
                db,  # type: ignore[arg-type]
                approval_id=77,
                decision="reject",
                comment="Please come in for the audit",
                now=NOW,
            )

        self.assertFalse(already_processed)
        self.assertEqual(result.status, WFHStatus.REJECTED)
        self.assertEqual(cas_mock.call_args.kwargs["expected"], WFHStatus.AUTO_APPROVED)
        values = cas_mock.call_args.kwargs["values"]
        self.assertEqual(values["status"], WFHStatus.REJECTED)
        self.assertFalse(values["review_required"])
        self.assertEqual(values["manager_comment"], "Please come in for the audit")
        self.assertEqual(audit_mock.call_args.kwargs["details"]["from"], "auto_approved")
        self.assertEqual(notify_mock.call_args.kwargs["status"], "rejected")

    def test_expired_request_is_never_reactivated(self) -> None:
        with (
            patch("app.services.wfh._load_approval", return_value=_approval(WFHStatus.EXPIRED)),
            patch("app.services.wfh._cas_status") as cas_mock,
        ):
            with self.assertRaises(AlreadyDecidedError) as ctx:
                decide_wfh_request(_FakeDB(), approval_id=77, decision="approve", now=NOW)  # type: ignore[arg-type]

        self.assertEqual(ctx.exception.current_status, "expired")
        cas_mock.assert_not_called()


class _ExpiredIds:
    def __init__(self, ids: list[int]) -> None:
        self._ids = ids

    def scalars(self):  # type: ignore[no-untyped-def]
        return self

    def all(self) -> list[int]:
        return list(self._ids)


class _ExpiryDB(_FakeDB):
    def __init__(self, ids: list[int]) -> None:
        super().__init__()
        self._ids = ids
        self.statements: list[object] = []

    def execute(self, statement):  # type: ignore[no-untyped-def]
        self.statements.append(statement)
        return _ExpiredIds(self._ids)


class ExpireStaleWfhRequestsTests(unittest.TestCase):
    def test_pending_requests_past_sla_are_expired(self) -> None:
        db = _ExpiryDB([81, 77])

        with self.assertLogs("app.wfh", level="INFO") as captured:
            expired = expire_stale_wfh_requests(db, NOW)  # type: ignore[arg-type]

        self.assertEqual(expired, [77, 81])
        self.assertEqual(db.commits, 1)
        self.assertTrue(any("wfh_requests_expired" in line for line in captured.output))

        statement = db.statements[0]
        sql = str(statement).lower()
        self.assertIn("update wfh_approvals", sql)
        self.assertIn("wfh_approvals.expires_at <=", sql)
        params = statement.compile().params
        self.assertIn(WFHStatus.PENDING, params.values())
        self.assertIn(WFHStatus.EXPIRED, params.values())
        self.assertNotIn(WFHStatus.AUTO_APPROVED, params.values())

    def test_nothing_due_still_commits_quietly(self) -> None:
        db = _ExpiryDB([])

        self.assertEqual(expire_stale_wfh_requests(db, NOW), [])  # type: ignore[arg-type]
        self.assertEqual(db.commits, 1)

    def test_expired_request_frees_the_date_for_resubmission(self) -> None:
        live_index = next(
            index for index in WFHApproval.__table__.indexes if index.name == "uq_wfh_approvals_employee_date_live"
        )
        where = str(live_index.dialect_options["postgresql"]["where"])

        self.assertIn("PENDING", where)
        self.assertNotIn("EXPIRED", where)
        self.assertNotIn("REJECTED", where)


class WfhEligibilityTests(unittest.TestCase):
    def test_cap_reached(self) -> None:
        employee = _employee()
        employee.max_wfh_days_per_month = 2
        with (
            patch("app.services.wfh.resolve_active_employee", return_value=employee),
            patch("app.services.wfh.count_granted_wfh_days", return_value=2),
        ):
            eligibility = get_wfh_eligibility(object(), employee_id=5, day=date(2026, 3, 10))  # type: ignore[arg-type]

        self.assertFalse(eligibility.eligible)
        self.assertEqual(eligibility.month, "2026-03")
        self.assertEqual(eligibility.remaining_days, 0)
        self.assertEqual(eligibility.reason, "MONTHLY_WFH_LIMIT_REACHED")


if __name__ == "__main__":
    unittest.main()
