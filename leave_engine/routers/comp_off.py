from typing import List, Optional
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from leave_engine.database import get_db
from leave_engine.dependencies import get_actor_id
from leave_engine.models.comp_off import WorkLogEntry
from leave_engine.schemas.comp_off import (
    CompOffApplication, CompOffRequestResponse, WorkLogCreate, WorkLogResponse, WorkLogVerification,
)
from leave_engine.services.comp_off import CompOffService

router = APIRouter(prefix="/comp-off", tags=["Compensatory Off"])


@router.post("/work-logs", response_model=WorkLogResponse, status_code=status.HTTP_201_CREATED)
def log_extra_work(
    body: WorkLogCreate,
    actor_id: int = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    return CompOffService(db).log_work(actor_id, body.work_date, body.hours_worked, body.work_type, body.description)


@router.get("/work-logs", response_model=List[WorkLogResponse])
def list_work_logs(employee_id: Optional[int] = None, status: Optional[str] = None, db: Session = Depends(get_db)):
    query = db.query(WorkLogEntry)
    if employee_id is not None:
        query = query.filter(WorkLogEntry.employee_id == employee_id)
    if status:
        query = query.filter(WorkLogEntry.status == status.upper())
    return query.order_by(WorkLogEntry.work_date.desc()).all()


@router.post("/work-logs/{work_log_id}/verify", response_model=WorkLogResponse)
def verify_work_log(
    work_log_id: int,
    body: WorkLogVerification,
    actor_id: int = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    return CompOffService(db).verify_work_log(work_log_id, actor_id, body.approve, body.comments)


@router.post("/requests", response_model=CompOffRequestResponse, status_code=status.HTTP_201_CREATED)
def apply_for_comp_off(
    body: CompOffApplication,
    actor_id: int = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    return CompOffService(db).apply_for_comp_off(
        actor_id, body.work_log_id, body.hours_to_redeem, body.start_date, body.end_date, body.reason,
    )
