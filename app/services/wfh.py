from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.audit import log_audit
from app.db import SessionLocal
from app.errors import AlreadyDecidedError, ApiError, ResourceConflictError
from app.models import AuditActorType, Employee, WFHApproval, WFHStatus, WFHUrgency
from app.services.employees import resolve_active_employee
from app.services.notifications import notify_wfh_auto_approved, notify_wfh_decision, notify_wfh_submitted
from app.services.office_time import local_date, normalize_ts
from app.settings import get_settings

logger = logging.getLogger("app.wfh")

DECISION_APPROVE = "approve"
DECISION_REJECT = "reject"
LIVE_STATUSES = (WFHStatus.PENDING, WFHStatus.APPROVED, WFHStatus.AUTO_APPROVED)
GRANTED_STATUSES = (WFHStatus.APPROVED, WFHStatus.AUTO_APPROVED)
DECIDABLE_STATUSES = (WFHStatus.PENDING, WFHStatus.AUTO_APPROVED)


@dataclass(frozen=True)
class WFHEligibility:
    employee_id: int
    month: str
    max_days: int
    used_days: int
    remaining_days: int
    eligible: bool
    reason: str | None


def sla_window(urgency: WFHUrgency) -> timedelta | None:
    settings = get_settings()
    if urgency == WFHUrgency.URGENT:
        return timedelta(hours=settings.wfh_urgent_sla_hours)
    if urgency == WFHUrgency.NORMAL:
        return timedelta(hours=settings.wfh_normal_sla_hours)
    return None


def _find_live_request_id(db: Session, *, employee_id: int, requested_date: date) -> int | None:
    return db.scalar(
        select(WFHApproval.id)
        .where(
            WFHApproval.employee_id == employee_id,
            WFHApproval.requested_date == requested_date,
            WFHApproval.status.in_(LIVE_STATUSES),
        )
        .limit(1)
    )


def create_wfh_request(
    db: Session,
    *,
    employee_id: int,
    requested_date: date,
    reason: str,
    urgency: WFHUrgency = WFHUrgency.NORMAL,
    manager_id: int | None = None,
    now: datetime | None = None,
) -> WFHApproval:
    now_utc = normalize_ts(now)
    cleaned_reason = (reason or "").strip()
    if not cleaned_reason:
        raise ApiError(status_code=422, code="REASON_REQUIRED", message="A reason is required.")
    if requested_date < local_date(now_utc):
        raise ApiError(status_code=422, code="REQUESTED_DATE_IN_PAST", message="Requested date has passed.")

    employee = resolve_active_employee(db, employee_id)
    resolved_manager_id = manager_id if manager_id is not None else employee.manager_id

    if urgency == WFHUrgency.EMERGENCY:
        status = WFHStatus.AUTO_APPROVED
        expires_at = None
        review_required = True
    else:
        status = WFHStatus.PENDING
        expires_at = now_utc + sla_window(urgency)
        review_required = False

    approval = WFHApproval(
        employee_id=employee.id,
        manager_id=resolved_manager_id,
        requested_date=requested_date,
        reason=cleaned_reason,
        urgency=urgency,
        status=status,
        review_required=review_required,
        expires_at=expires_at,
        decided_at=now_utc if status == WFHStatus.AUTO_APPROVED else None,
        created_at=now_utc,
    )
    db.add(approval)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise ResourceConflictError(
            "A WFH request for this date is already pending or approved.",
            resource_type="employee",
            resource_id=employee.id,
            conflicting_id=_find_live_request_id(db, employee_id=employee.id, requested_date=requested_date),
        ) from exc

    log_audit(
        db,
        actor_type=AuditActorType.EMPLOYEE,
        actor_id=employee.id,
        action="WFH_REQUEST_CREATED",
        entity_type="wfh_approval",
        entity_id=approval.id,
        details={"urgency": urgency.value, "status": status.value, "requested_date": requested_date.isoformat()},
        commit=False,
    )
    db.commit()
    db.refresh(approval)

    if approval.status == WFHStatus.AUTO_APPROVED:
        notify_wfh_auto_approved(approval_id=approval.id, employee_id=employee.id, manager_id=resolved_manager_id)
    else:
        notify_wfh_submitted(
            approval_id=approval.id,
            employee_id=employee.id,
            manager_id=resolved_manager_id,
            urgency=urgency.value,
        )
    return approval


def _load_approval(db: Session, approval_id: int) -> WFHApproval:
    approval = db.get(WFHApproval, approval_id)
    if approval is None:
        raise ApiError(status_code=404, code="WFH_REQUEST_NOT_FOUND", message="WFH request not found.")
    return approval


def _is_overdue(approval: WFHApproval, now: datetime) -> bool:
    if approval.status != WFHStatus.PENDING:
        return False
    if approval.expires_at is not None and normalize_ts(approval.expires_at) <= now:
        return True
    return approval.requested_date < local_date(now)


def _cas_status(
    db: Session,
    approval_id: int,
    *,
    expected: WFHStatus,
    values: dict,
) -> bool:
    result = db.execute(
        update(WFHApproval)
        .where(WFHApproval.id == approval_id, WFHApproval.status == expected)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def _ensure_can_decide(db: Session, approval: WFHApproval, decided_by: int | None) -> None:
    if decided_by is None:
        return
    approver = db.get(Employee, decided_by)
    if approver is None:
        raise ApiError(status_code=404, code="EMPLOYEE_NOT_FOUND", message="Approver not found.")
    if approver.id != approval.manager_id and not approver.can_approve_wfh:
        raise ApiError(status_code=403, code="FORBIDDEN", message="Approver cannot decide this request.")


def decide_wfh_request(
    db: Session,
    *,
    approval_id: int,
    decision: str,
    decided_by: int | None = None,
    comment: str | None = None,
    actor_id: str = "admin",
    now: datetime | None = None,
) -> tuple[WFHApproval, bool]:
    """Apply a manager decision; returns (approval, already_processed).

    Repeating the decision already recorded is reported idempotently; any
    other decision on a request that has left pending/auto_approved raises
    AlreadyDecidedError.
    """
    if decision not in (DECISION_APPROVE, DECISION_REJECT):
        raise ApiError(status_code=422, code="INVALID_DECISION", message="decision must be approve or reject.")

    now_utc = normalize_ts(now)
    target = WFHStatus.APPROVED if decision == DECISION_APPROVE else WFHStatus.REJECTED
    approval = _load_approval(db, approval_id)
    _ensure_can_decide(db, approval, decided_by)

    if approval.status == target:
        return approval, True

    if _is_overdue(approval, now_utc):
        if _cas_status(db, approval.id, expected=WFHStatus.PENDING, values={"status": WFHStatus.EXPIRED}):
            db.commit()
            logger.info("wfh_request_expired_on_decision", extra={"approval_id": approval.id})
        else:
            db.rollback()
        db.refresh(approval)
        raise AlreadyDecidedError(approval_id=approval.id, current_status=approval.status.value)

    if approval.status not in DECIDABLE_STATUSES:
        raise AlreadyDecidedError(approval_id=approval.id, current_status=approval.status.value)

    previous = approval.status
    changed = _cas_status(
        db,
        approval.id,
        expected=previous,
        values={
            "status": target,
            "decided_at": now_utc,
            "decided_by": decided_by,
            "manager_comment": (comment or "").strip() or None,
            "review_required": False,
        },
    )
    if not changed:
        db.rollback()
        db.refresh(approval)
        if approval.status == target:
            return approval, True
        raise AlreadyDecidedError(approval_id=approval.id, current_status=approval.status.value)

    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=actor_id,
        action="WFH_REQUEST_DECIDED",
        entity_type="wfh_approval",
        entity_id=approval.id,
        details={"from": previous.value, "to": target.value, "decided_by": decided_by},
        commit=False,
    )
    db.commit()
    db.refresh(approval)
    notify_wfh_decision(
        approval_id=approval.id,
        employee_id=approval.employee_id,
        status=approval.status.value,
        comment=approval.manager_comment,
    )
    return approval, False


def expire_stale_wfh_requests(db: Session, now: datetime | None = None) -> list[int]:
    now_utc = normalize_ts(now)
    result = db.execute(
        update(WFHApproval)
        .where(
            WFHApproval.status == WFHStatus.PENDING,
            or_(
                WFHApproval.expires_at <= now_utc,
                WFHApproval.requested_date < local_date(now_utc),
            ),
        )
        .values(status=WFHStatus.EXPIRED)
        .returning(WFHApproval.id)
        .execution_options(synchronize_session=False)
    )
    expired_ids = sorted(result.scalars().all())
    db.commit()
    if expired_ids:
        logger.info("wfh_requests_expired", extra={"count": len(expired_ids), "approval_ids": expired_ids})
    return expired_ids


def _month_bounds(day: date) -> tuple[date, date]:
    last = calendar.monthrange(day.year, day.month)[1]
    return day.replace(day=1), day.replace(day=last)


def count_granted_wfh_days(db: Session, *, employee_id: int, day: date) -> int:
    first_day, last_day = _month_bounds(day)
    used = db.scalar(
        select(func.count(func.distinct(WFHApproval.requested_date))).where(
            WFHApproval.employee_id == employee_id,
            WFHApproval.status.in_(GRANTED_STATUSES),
            WFHApproval.requested_date >= first_day,
            WFHApproval.requested_date <= last_day,
        )
    )
    return int(used or 0)


def get_wfh_eligibility(db: Session, *, employee_id: int, day: date) -> WFHEligibility:
    """Monthly usage against the employee's cap. Advisory only; nothing is blocked on it."""
    employee = resolve_active_employee(db, employee_id)
    max_days = employee.max_wfh_days_per_month
    if max_days is None:
        max_days = get_settings().wfh_default_max_days_per_month
    used = count_granted_wfh_days(db, employee_id=employee.id, day=day)
    remaining = max(max_days - used, 0)
    eligible = remaining > 0
    return WFHEligibility(
        employee_id=employee.id,
        month=day.strftime("%Y-%m"),
        max_days=max_days,
        used_days=used,
        remaining_days=remaining,
        eligible=eligible,
        reason=None if eligible else "MONTHLY_WFH_LIMIT_REACHED",
    )


def find_granted_approval(db: Session, *, employee_id: int, day: date) -> WFHApproval | None:
    return db.scalar(
        select(WFHApproval)
        .where(
            WFHApproval.employee_id == employee_id,
            WFHApproval.requested_date == day,
            WFHApproval.status.in_(GRANTED_STATUSES),
        )
        .limit(1)
    )


def list_pending_wfh_requests(db: Session, *, manager_id: int | None = None) -> list[WFHApproval]:
    stmt = select(WFHApproval).where(
        or_(
            WFHApproval.status == WFHStatus.PENDING,
            (WFHApproval.status == WFHStatus.AUTO_APPROVED) & WFHApproval.review_required.is_(True),
        )
    )
    if manager_id is not None:
        stmt = stmt.where(WFHApproval.manager_id == manager_id)
    stmt = stmt.order_by(WFHApproval.expires_at.asc().nulls_first(), WFHApproval.id.asc())
    return list(db.scalars(stmt).all())


def run_scheduled_expiry(now: datetime | None = None) -> list[int]:
    with SessionLocal() as session:
        return expire_stale_wfh_requests(session, now)
