"""
Approval Workflow

Builds the ordered approver chain for a request and drives it level by
level. Each level is claimed with a conditional UPDATE so two concurrent
decisions on the same level cannot both succeed. The final approval and
its ledger debit commit together.

State machine per request:
    PENDING --reject any level--> REJECTED
    PENDING --approve level k < N--> PENDING (level k+1 current)
    PENDING --approve level N--> APPROVED (one debit)
"""
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from leave_engine.core.exceptions import (
    AlreadyProcessed, IncompleteApprovalChain, LeaveRequestNotFound, NotAuthorizedApprover,
)
from leave_engine.models.approval import ApprovalLevel, ApprovalStatus, ApproverRole
from leave_engine.models.employee import Employee
from leave_engine.models.leave_policy import LeaveType
from leave_engine.models.leave_request import LeaveRequest, LeaveStatus
from leave_engine.schemas.leave import (
    ApprovalChainView, ApprovalLevelView, ApprovalResult, ApproverSpec, PendingApproval, PendingApprovalInbox,
)
from leave_engine.services import policy_store
from leave_engine.services.base import BaseService
from leave_engine.services.directory import EmployeeDirectory
from leave_engine.services.ledger import BalanceLedger
from leave_engine.services.notification import NotificationService

DEFAULT_CHAIN = [ApproverRole.DIRECT_MANAGER.value]

CHAIN_ROLES = {
    LeaveType.COMPENSATORY_OFF.value: [
        ApproverRole.DIRECT_MANAGER.value,
        ApproverRole.SKIP_LEVEL_MANAGER.value,
        ApproverRole.HR.value,
    ],
    LeaveType.LEAVE_WITHOUT_PAY.value: [
        ApproverRole.DIRECT_MANAGER.value,
        ApproverRole.HR.value,
    ],
}


def chain_roles_for(leave_type: str) -> List[str]:
    return list(CHAIN_ROLES.get(leave_type.upper(), DEFAULT_CHAIN))


def derive_overall_status(levels: Sequence[ApprovalLevel]) -> str:
    statuses = [lvl.status for lvl in levels]
    if ApprovalStatus.REJECTED.value in statuses:
        return ApprovalStatus.REJECTED.value
    if statuses and all(s == ApprovalStatus.APPROVED.value for s in statuses):
        return ApprovalStatus.APPROVED.value
    return ApprovalStatus.PENDING.value


def current_level(levels: Sequence[ApprovalLevel]) -> Optional[ApprovalLevel]:
    """First PENDING level whose predecessors all approved; None once the chain is decided."""
    for lvl in levels:
        if lvl.status == ApprovalStatus.APPROVED.value:
            continue
        if lvl.status == ApprovalStatus.PENDING.value:
            return lvl
        return None
    return None


class ApprovalWorkflow(BaseService):
    def __init__(self, db):
        super().__init__(db)
        self.directory = EmployeeDirectory(db)
        self.ledger = BalanceLedger(db)

    # --- Chain construction ---

    def _resolve(self, role: str, employee: Employee) -> Optional[Employee]:
        if role == ApproverRole.DIRECT_MANAGER.value:
            return self.directory.get_manager(employee)
        if role == ApproverRole.SKIP_LEVEL_MANAGER.value:
            manager = self.directory.get_manager(employee)
            return self.directory.get_manager(manager) if manager else None
        if role == ApproverRole.HR.value:
            return self.directory.find_hr_approver(employee.region, exclude_id=employee.id)
        raise ValueError(f"Unknown approver role {role}")

    def build_approval_chain(self, employee_id: int, leave_type: str) -> List[ApproverSpec]:
        """
        Resolve every approver for the leave type's chain.

        Raises:
            EmployeeNotFound: unknown requester.
            IncompleteApprovalChain: a required role has no active holder.
        """
        employee = self.directory.get_employee(employee_id)
        specs = []
        for index, role in enumerate(chain_roles_for(leave_type), start=1):
            approver = self._resolve(role, employee)
            if approver is None:
                raise IncompleteApprovalChain(role, employee_id, leave_type)
            specs.append(ApproverSpec(level=index, approver_id=approver.id, approver_role=role))
        return specs

    def create_chain(self, request: LeaveRequest, specs: List[ApproverSpec]) -> List[ApprovalLevel]:
        """Attach levels to a request in the caller's transaction."""
        levels = [
            ApprovalLevel(level=s.level, approver_id=s.approver_id, approver_role=s.approver_role)
            for s in specs
        ]
        request.levels.extend(levels)
        self.db.flush()
        return levels

    # --- Decisions ---

    def _load_request(self, request_id: int, lock: bool = False) -> LeaveRequest:
        query = self.db.query(LeaveRequest).filter(LeaveRequest.id == request_id).populate_existing()
        if lock:
            query = query.with_for_update()
        request = query.first()
        if request is None:
            raise LeaveRequestNotFound(request_id)
        return request

    def _load_levels(self, request_id: int) -> List[ApprovalLevel]:
        return self.db.query(ApprovalLevel).filter(
            ApprovalLevel.leave_request_id == request_id,
        ).order_by(ApprovalLevel.level).populate_existing().all()

    def _claim_level(self, level_id: int, status: str, comments: Optional[str]) -> None:
        """Move a level out of PENDING; a level decided by someone else raises AlreadyProcessed."""
        updated = self.db.query(ApprovalLevel).filter(
            ApprovalLevel.id == level_id,
            ApprovalLevel.status == ApprovalStatus.PENDING.value,
        ).update(
            {
                ApprovalLevel.status: status,
                ApprovalLevel.comments: comments,
                ApprovalLevel.decided_at: datetime.now(timezone.utc),
            },
            synchronize_session="fetch",
        )
        if updated == 0:
            raise AlreadyProcessed("Approval level was already decided", details={"level_id": level_id})

    def _settle_final(self, request: LeaveRequest, employee: Employee) -> None:
        if request.leave_type == LeaveType.COMPENSATORY_OFF.value:
            from leave_engine.services.comp_off import CompOffService
            CompOffService(self.db).settle_approval(request)
            return
        policy = policy_store.get_policy(self.db, request.leave_type, employee.region)
        self.ledger.debit(request.employee_id, request.leave_type, request.balance_year, request.total_days, policy)

    def _release_comp_off(self, request: LeaveRequest) -> None:
        if request.leave_type == LeaveType.COMPENSATORY_OFF.value:
            from leave_engine.services.comp_off import CompOffService
            CompOffService(self.db).release_for_request(request)

    def process_approval(self, request_id: int, approver_id: int, decision: str,
                         comments: Optional[str] = None) -> ApprovalResult:
        """
        Apply one approver's decision to the current level.

        Raises:
            NotAuthorizedApprover: the approver does not hold the current level.
            AlreadyProcessed: the level or the request is already decided.
            InsufficientBalance / NegativeBalanceLimitExceeded: the final
                debit failed; nothing is changed.
        """
        decision = decision.strip().upper()
        if decision not in ("APPROVE", "REJECT"):
            raise ValueError(f"Unknown decision {decision}")

        request = self._load_request(request_id, lock=True)
        levels = self._load_levels(request_id)
        held = [lvl for lvl in levels if lvl.approver_id == approver_id]
        if not held:
            raise NotAuthorizedApprover(details={"request_id": request_id, "approver_id": approver_id})
        if request.status != LeaveStatus.PENDING.value:
            raise AlreadyProcessed(
                f"Leave request {request_id} is already {request.status}",
                details={"request_id": request_id, "status": request.status},
            )

        level = current_level(levels)
        if level is None:
            raise AlreadyProcessed("Approval chain is already complete", details={"request_id": request_id})
        if level.approver_id != approver_id:
            if any(lvl.status != ApprovalStatus.PENDING.value for lvl in held):
                raise AlreadyProcessed(
                    "Approver has already decided this request",
                    details={"request_id": request_id, "approver_id": approver_id},
                )
            raise NotAuthorizedApprover(
                f"Level {level.level} must be decided before this approver",
                details={"request_id": request_id, "current_level": level.level},
            )

        is_final = level.level == levels[-1].level
        employee = self.directory.get_employee(request.employee_id)
        try:
            if decision == "REJECT":
                self._claim_level(level.id, ApprovalStatus.REJECTED.value, comments)
                request.status = LeaveStatus.REJECTED.value
                request.decided_at = datetime.now(timezone.utc)
                self._release_comp_off(request)
            else:
                self._claim_level(level.id, ApprovalStatus.APPROVED.value, comments)
                if is_final:
                    request.status = LeaveStatus.APPROVED.value
                    request.decided_at = datetime.now(timezone.utc)
                    self._settle_final(request, employee)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        levels = self._load_levels(request_id)
        overall = derive_overall_status(levels)
        nxt = current_level(levels)
        completed = request.status != LeaveStatus.PENDING.value
        self.log_info(
            f"Request {request_id} level {level.level} {decision}",
            request_id=request_id, approver_id=approver_id, overall_status=overall,
        )
        self._notify(request, decision, level.level, nxt)

        if decision == "REJECT":
            message = f"Rejected at level {level.level}"
        elif completed:
            message = "Leave request fully approved"
        else:
            message = f"Level {level.level} approved; awaiting level {nxt.level}"
        return ApprovalResult(
            completed=completed,
            next_level=nxt.level if nxt and not completed else None,
            overall_status=overall,
            request_status=request.status,
            message=message,
        )

    def _notify(self, request: LeaveRequest, decision: str, level: int, nxt: Optional[ApprovalLevel]) -> None:
        notifier = NotificationService(self.db)
        payload = {"leave_request_id": request.id, "level": level}
        if request.status == LeaveStatus.PENDING.value and nxt is not None:
            notifier.emit(
                "approval.level_approved", nxt.approver_id, "Leave approval required",
                f"{request.leave_type} request {request.id} awaits your decision", payload,
            )
            return
        event = "leave.approved" if request.status == LeaveStatus.APPROVED.value else "leave.rejected"
        notifier.emit(
            event, request.employee_id, f"Leave {request.status.lower()}",
            f"Your {request.leave_type} request {request.id} was {request.status.lower()}", payload,
        )

    def get_approval_chain(self, request_id: int) -> ApprovalChainView:
        request = self._load_request(request_id)
        levels = self._load_levels(request_id)
        nxt = current_level(levels) if request.status == LeaveStatus.PENDING.value else None
        overall = derive_overall_status(levels)
        if request.status == LeaveStatus.CANCELLED.value:
            overall = LeaveStatus.CANCELLED.value
        return ApprovalChainView(
            leave_request_id=request.id,
            levels=[ApprovalLevelView.model_validate(lvl) for lvl in levels],
            current_level=nxt.level if nxt else None,
            overall_status=overall,
        )

    def pending_for_approver(self, approver_id: int) -> PendingApprovalInbox:
        """Pending requests whose current level belongs to this approver, oldest first."""
        requests = self.db.query(LeaveRequest).join(
            ApprovalLevel, ApprovalLevel.leave_request_id == LeaveRequest.id,
        ).filter(
            LeaveRequest.status == LeaveStatus.PENDING.value,
            ApprovalLevel.approver_id == approver_id,
            ApprovalLevel.status == ApprovalStatus.PENDING.value,
        ).distinct().order_by(LeaveRequest.created_at, LeaveRequest.id).all()

        items = []
        for request in requests:
            # Later PENDING levels stay hidden until everything before them approves
            level = current_level(self._load_levels(request.id))
            if level is None or level.approver_id != approver_id:
                continue
            items.append(PendingApproval(
                leave_request_id=request.id,
                employee_id=request.employee_id,
                leave_type=request.leave_type,
                start_date=request.start_date,
                end_date=request.end_date,
                total_days=request.total_days,
                is_half_day=request.is_half_day,
                reason=request.reason,
                level=level.level,
                approver_role=level.approver_role,
                submitted_at=request.created_at,
            ))
        comp_off = sum(1 for item in items if item.leave_type == LeaveType.COMPENSATORY_OFF.value)
        return PendingApprovalInbox(approver_id=approver_id, items=items, total=len(items), comp_off_count=comp_off)
