"""
HR administration: manual triggers for the scheduled jobs and policy cache control.
"""
from typing import List
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from leave_engine.core.config import settings
from leave_engine.core.schemas import ApiResponse
from leave_engine.database import get_db
from leave_engine.dependencies import require_hr
from leave_engine.models.employee import Employee
from leave_engine.models.leave_policy import LeavePolicy
from leave_engine.schemas.accrual import (
    AnnualAllocationTrigger, BatchResult, CompOffExpiryTrigger, MonthlyAccrualTrigger, YearEndTrigger,
)
from leave_engine.schemas.policy import PolicyConfig
from leave_engine.services import policy_store, scheduler

router = APIRouter(prefix="/admin", tags=["Administration"])


def _triggers_enabled():
    if not settings.enable_admin_triggers:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Admin triggers are disabled")


@router.post("/jobs/monthly-accrual", response_model=ApiResponse[BatchResult], dependencies=[Depends(_triggers_enabled)])
def trigger_monthly_accrual(
    body: MonthlyAccrualTrigger,
    db: Session = Depends(get_db),
    hr: Employee = Depends(require_hr),
):
    result = scheduler.run_monthly_accrual(body.year, body.month, body.regions, db=db)
    return ApiResponse.ok(result, metadata={"triggered_by": hr.id})


@router.post("/jobs/annual-allocation", response_model=ApiResponse[BatchResult], dependencies=[Depends(_triggers_enabled)])
def trigger_annual_allocation(
    body: AnnualAllocationTrigger,
    db: Session = Depends(get_db),
    hr: Employee = Depends(require_hr),
):
    result = scheduler.run_annual_allocation(body.year, body.regions, db=db)
    return ApiResponse.ok(result, metadata={"triggered_by": hr.id})


@router.post("/jobs/year-end", response_model=ApiResponse[BatchResult], dependencies=[Depends(_triggers_enabled)])
def trigger_year_end(
    body: YearEndTrigger,
    db: Session = Depends(get_db),
    hr: Employee = Depends(require_hr),
):
    result = scheduler.run_year_end_carry_forward(body.from_year, body.regions, db=db)
    return ApiResponse.ok(result, metadata={"triggered_by": hr.id})


@router.post("/jobs/comp-off-expiry", response_model=ApiResponse[BatchResult], dependencies=[Depends(_triggers_enabled)])
def trigger_comp_off_expiry(
    body: CompOffExpiryTrigger,
    db: Session = Depends(get_db),
    hr: Employee = Depends(require_hr),
):
    result = scheduler.run_comp_off_expiry(body.as_of, db=db)
    return ApiResponse.ok(result, metadata={"triggered_by": hr.id})


@router.get("/policies", response_model=List[PolicyConfig])
def list_policies(db: Session = Depends(get_db), hr: Employee = Depends(require_hr)):
    rows = db.query(LeavePolicy).filter(LeavePolicy.is_active.is_(True)).order_by(
        LeavePolicy.region, LeavePolicy.leave_type,
    ).all()
    return [PolicyConfig.model_validate(row) for row in rows]


@router.post("/policies/reload")
def reload_policies(hr: Employee = Depends(require_hr)):
    """Drop cached policy snapshots so edited rows take effect immediately."""
    policy_store.invalidate()
    return {"success": True, "message": "Policy cache cleared"}
