from dataclasses import asdict
from datetime import date, datetime, timezone

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from app.db import get_db
from app.schemas import WFHApprovalRead, WFHEligibilityRead, WFHRequestCreate
from app.services.office_time import local_date
from app.services.wfh import create_wfh_request, get_wfh_eligibility

router = APIRouter(tags=["wfh"])


@router.post("/api/wfh/requests", response_model=WFHApprovalRead, status_code=status.HTTP_201_CREATED)
def submit_wfh_request(
    payload: WFHRequestCreate,
    request: Request,
    db: Session = Depends(get_db),
) -> WFHApprovalRead:
    request.state.actor = "employee"
    request.state.employee_id = payload.employee_id
    approval = create_wfh_request(
        db,
        employee_id=payload.employee_id,
        manager_id=payload.manager_id,
        requested_date=payload.requested_date,
        reason=payload.reason,
        urgency=payload.urgency,
    )
    return WFHApprovalRead.model_validate(approval)


@router.get("/api/wfh/eligibility", response_model=WFHEligibilityRead)
def wfh_eligibility(
    employee_id: int = Query(ge=1),
    day: date | None = Query(default=None, alias="date"),
    db: Session = Depends(get_db),
) -> WFHEligibilityRead:
    target_day = day or local_date(datetime.now(timezone.utc))
    eligibility = get_wfh_eligibility(db, employee_id=employee_id, day=target_day)
    return WFHEligibilityRead(**asdict(eligibility))
