from typing import List, Optional
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from leave_engine.database import get_db
from leave_engine.dependencies import get_actor_id
from leave_engine.schemas.leave import (
    ApprovalChainView, ApprovalDecisionRequest, ApprovalResult, BalanceSnapshot, LeaveApplication,
    LeaveCandidate, LeaveModifyRequest, LeaveRequestResponse, PendingApprovalInbox, SubmissionResult,
    ValidationVerdict,
)
from leave_engine.services.approval import ApprovalWorkflow
from leave_engine.services.leave_service import LeaveRequestService
import logging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/leave", tags=["Leave"])


def _candidate(body: LeaveApplication, actor_id: int) -> LeaveCandidate:
    return LeaveCandidate(employee_id=actor_id, **body.model_dump())


@router.post("/requests", response_model=SubmissionResult, status_code=status.HTTP_201_CREATED)
def submit_leave_request(
    body: LeaveApplication,
    actor_id: int = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    return LeaveRequestService(db).submit_request(_candidate(body, actor_id))


@router.post("/validate", response_model=ValidationVerdict)
def validate_leave_request(
    body: LeaveApplication,
    actor_id: int = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    """Dry run: evaluate policy rules without persisting anything."""
    return LeaveRequestService(db).validate(_candidate(body, actor_id))


@router.get("/requests", response_model=List[LeaveRequestResponse])
def list_leave_requests(
    employee_id: Optional[int] = None,
    status: Optional[str] = None,
    actor_id: int = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    return LeaveRequestService(db).list_requests(employee_id, status)


@router.get("/requests/{request_id}", response_model=LeaveRequestResponse)
def get_leave_request(request_id: int, actor_id: int = Depends(get_actor_id), db: Session = Depends(get_db)):
    return LeaveRequestService(db).get_request(request_id)


@router.put("/requests/{request_id}", response_model=LeaveRequestResponse)
def modify_leave_request(
    request_id: int,
    body: LeaveModifyRequest,
    actor_id: int = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    return LeaveRequestService(db).modify_request(
        request_id, actor_id, body.start_date, body.end_date, body.is_half_day,
    )


@router.post("/requests/{request_id}/cancel", response_model=LeaveRequestResponse)
def cancel_leave_request(
    request_id: int,
    actor_id: int = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    return LeaveRequestService(db).cancel_request(request_id, actor_id)


# Approval endpoints
@router.get("/approvals/pending", response_model=PendingApprovalInbox)
def list_pending_approvals(actor_id: int = Depends(get_actor_id), db: Session = Depends(get_db)):
    """Requests whose current approval level waits on the caller."""
    return ApprovalWorkflow(db).pending_for_approver(actor_id)


@router.post("/requests/{request_id}/decision", response_model=ApprovalResult)
def decide_leave_request(
    request_id: int,
    body: ApprovalDecisionRequest,
    actor_id: int = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    return ApprovalWorkflow(db).process_approval(request_id, actor_id, body.decision, body.comments)


@router.get("/requests/{request_id}/approval-chain", response_model=ApprovalChainView)
def get_approval_chain(request_id: int, actor_id: int = Depends(get_actor_id), db: Session = Depends(get_db)):
    return ApprovalWorkflow(db).get_approval_chain(request_id)


@router.get("/balances/{employee_id}", response_model=List[BalanceSnapshot])
def get_leave_balances(
    employee_id: int,
    year: Optional[int] = None,
    actor_id: int = Depends(get_actor_id),
    db: Session = Depends(get_db),
):
    return LeaveRequestService(db).balances(employee_id, year)
