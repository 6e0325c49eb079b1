"""
Leave Request Service

Entry point for employees: submit, cancel, and modify leave requests.
Validation is delegated to the policy engine, approvals to the workflow,
and every balance change goes through the ledger in the same transaction
as the status change that causes it.
"""
from datetime import date, datetime, timezone
from typing import Optional

from leave_engine.core.exceptions import AlreadyProcessed, LeaveRequestNotFound, NotAuthorizedApprover, ValidationFailure
from leave_engine.models.leave_balance import LeaveBalance
from leave_engine.models.leave_policy import LeaveType
from leave_engine.models.leave_request import LeaveRequest, LeaveStatus
from leave_engine.schemas.leave import LeaveCandidate, LeaveRequestResponse, SubmissionResult
from leave_engine.services.approval import ApprovalWorkflow, current_level
from leave_engine.services.base import BaseService
from leave_engine.services.comp_off import CompOffService
from leave_engine.services.directory import EmployeeDirectory
from leave_engine.services.ledger import BalanceLedger, CreditKind
from leave_engine.services.notification import NotificationService
from leave_engine.services.policy_engine import PolicyValidator

COMP_OFF = LeaveType.COMPENSATORY_OFF.value


class LeaveRequestService(BaseService):
    def __init__(self, db):
        super().__init__(db)
        self.validator = PolicyValidator(db)
        self.workflow = ApprovalWorkflow(db)
        self.ledger = BalanceLedger(db)
        self.directory = EmployeeDirectory(db)

    def _load_owned(self, request_id: int, actor_id: int) -> LeaveRequest:
        request = self.db.query(LeaveRequest).filter(
            LeaveRequest.id == request_id,
        ).populate_existing().with_for_update().first()
        if request is None:
            raise LeaveRequestNotFound(request_id)
        if request.employee_id != actor_id:
            raise NotAuthorizedApprover(
                "Only the requester may change this leave request",
                details={"request_id": request_id, "actor_id": actor_id},
            )
        return request

    def validate(self, candidate: LeaveCandidate, today: Optional[date] = None):
        verdict, _, _ = self.validator.evaluate(candidate, today=today)
        return verdict

    def submit_request(self, candidate: LeaveCandidate, today: Optional[date] = None) -> SubmissionResult:
        """
        Validate and persist a leave request.

        Auto-approvable requests are stored APPROVED with their debit; all
        others are stored PENDING together with their approval chain.
        """
        if candidate.leave_type.upper() == COMP_OFF:
            raise ValidationFailure([{
                "field": "leave_type", "code": "USE_COMP_OFF_APPLICATION",
                "message": "Compensatory off is redeemed against a verified work log",
            }])

        verdict, employee, policy = self.validator.evaluate(candidate, today=today)
        if not verdict.is_valid:
            raise ValidationFailure([e.model_dump() for e in verdict.errors])

        specs = None
        if not verdict.auto_approval_eligible:
            # Resolve approvers before writing anything
            specs = self.workflow.build_approval_chain(employee.id, policy.leave_type)

        try:
            request = LeaveRequest(
                employee_id=employee.id,
                leave_type=policy.leave_type,
                start_date=candidate.start_date,
                end_date=candidate.end_date,
                total_days=verdict.duration,
                is_half_day=candidate.is_half_day,
                reason=candidate.reason,
                status=LeaveStatus.PENDING.value,
                required_documentation=verdict.required_documentation,
            )
            self.db.add(request)
            self.db.flush()
            if specs is None:
                request.status = LeaveStatus.APPROVED.value
                request.auto_approved = True
                request.decided_at = datetime.now(timezone.utc)
                self.ledger.debit(employee.id, policy.leave_type, request.balance_year, request.total_days, policy)
            else:
                self.workflow.create_chain(request, specs)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(request)
        self.log_info(
            f"Leave request {request.id} submitted ({request.status})",
            employee_id=employee.id, leave_type=policy.leave_type, days=request.total_days,
        )

        notifier = NotificationService(self.db)
        if specs:
            notifier.emit(
                "leave.submitted", specs[0].approver_id, "Leave approval required",
                f"{policy.leave_type} request for {request.total_days} days awaits your decision",
                {"leave_request_id": request.id, "level": 1},
            )
        else:
            notifier.emit(
                "leave.approved", employee.id, "Leave approved",
                f"Your {policy.leave_type} request was approved automatically",
                {"leave_request_id": request.id},
            )
        return SubmissionResult(request=LeaveRequestResponse.model_validate(request), verdict=verdict)

    def cancel_request(self, request_id: int, actor_id: int) -> LeaveRequestResponse:
        """
        Withdraw a request. An approved request gives its days back to
        the balance it was charged to.
        """
        request = self._load_owned(request_id, actor_id)
        previous = request.status
        if previous not in (LeaveStatus.PENDING.value, LeaveStatus.APPROVED.value):
            raise AlreadyProcessed(
                f"Leave request {request_id} is already {previous}",
                details={"request_id": request_id, "status": previous},
            )
        pending_level = current_level(request.levels) if previous == LeaveStatus.PENDING.value else None

        try:
            request.status = LeaveStatus.CANCELLED.value
            request.decided_at = datetime.now(timezone.utc)
            if request.leave_type == COMP_OFF:
                CompOffService(self.db).release_for_request(request)
            elif previous == LeaveStatus.APPROVED.value:
                self.ledger.credit(
                    request.employee_id, request.leave_type, request.balance_year,
                    request.total_days, CreditKind.REVERSAL,
                )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(request)
        self.log_info(f"Leave request {request_id} cancelled (was {previous})", employee_id=actor_id)

        if pending_level is not None:
            NotificationService(self.db).emit(
                "leave.cancelled", pending_level.approver_id, "Leave request withdrawn",
                f"{request.leave_type} request {request.id} was cancelled by the requester",
                {"leave_request_id": request.id},
            )
        return LeaveRequestResponse.model_validate(request)

    def modify_request(self, request_id: int, actor_id: int, start_date: date, end_date: date,
                       is_half_day: bool = False, today: Optional[date] = None) -> LeaveRequestResponse:
        """
        Change the dates of a PENDING or APPROVED request. For an approved
        request only the difference in days is debited or given back.
        """
        request = self._load_owned(request_id, actor_id)
        if request.status not in (LeaveStatus.PENDING.value, LeaveStatus.APPROVED.value):
            raise AlreadyProcessed(
                f"Leave request {request_id} is already {request.status}",
                details={"request_id": request_id, "status": request.status},
            )
        if request.leave_type == COMP_OFF:
            raise ValidationFailure([{
                "field": "leave_type", "code": "COMP_OFF_NOT_MODIFIABLE",
                "message": "Cancel the comp-off request and apply again",
            }])

        was_approved = request.status == LeaveStatus.APPROVED.value
        old_days = request.total_days
        old_year = request.balance_year
        new_year = start_date.year
        credited = old_days if was_approved and old_year == new_year else 0.0

        candidate = LeaveCandidate(
            employee_id=request.employee_id,
            leave_type=request.leave_type,
            start_date=start_date,
            end_date=end_date,
            is_half_day=is_half_day,
            reason=request.reason,
        )
        verdict, employee, policy = self.validator.evaluate(
            candidate, today=today, exclude_request_id=request.id, credited_days=credited,
        )
        if not verdict.is_valid:
            raise ValidationFailure([e.model_dump() for e in verdict.errors])

        new_days = verdict.duration
        try:
            request.start_date = start_date
            request.end_date = end_date
            request.is_half_day = is_half_day
            request.total_days = new_days
            request.required_documentation = verdict.required_documentation
            if was_approved:
                if old_year == new_year:
                    delta = new_days - old_days
                    if delta > 0:
                        self.ledger.debit(employee.id, policy.leave_type, new_year, delta, policy)
                    elif delta < 0:
                        self.ledger.credit(employee.id, policy.leave_type, new_year, -delta, CreditKind.REVERSAL)
                else:
                    self.ledger.credit(employee.id, policy.leave_type, old_year, old_days, CreditKind.REVERSAL)
                    self.ledger.debit(employee.id, policy.leave_type, new_year, new_days, policy)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(request)
        self.log_info(
            f"Leave request {request_id} modified: {old_days} -> {new_days} days",
            employee_id=actor_id,
        )
        return LeaveRequestResponse.model_validate(request)

    def get_request(self, request_id: int) -> LeaveRequest:
        request = self.db.get(LeaveRequest, request_id)
        if request is None:
            raise LeaveRequestNotFound(request_id)
        return request

    def list_requests(self, employee_id: Optional[int] = None, status: Optional[str] = None):
        query = self.db.query(LeaveRequest)
        if employee_id is not None:
            query = query.filter(LeaveRequest.employee_id == employee_id)
        if status:
            query = query.filter(LeaveRequest.status == status.upper())
        return query.order_by(LeaveRequest.start_date.desc()).all()

    def balances(self, employee_id: int, year: Optional[int] = None):
        self.directory.get_employee(employee_id)
        year = year or date.today().year
        return self.db.query(LeaveBalance).filter(
            LeaveBalance.employee_id == employee_id,
            LeaveBalance.year == year,
        ).order_by(LeaveBalance.leave_type).all()
