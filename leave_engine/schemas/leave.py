from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import date, datetime
from typing import List, Optional


class LeaveCandidate(BaseModel):
    employee_id: int
    leave_type: str
    start_date: date
    end_date: date
    is_half_day: bool = False
    reason: Optional[str] = None


class LeaveApplication(BaseModel):
    """Submission body; the employee comes from the caller identity."""
    leave_type: str
    start_date: date
    end_date: date
    is_half_day: bool = False
    reason: Optional[str] = None


class LeaveModifyRequest(BaseModel):
    start_date: date
    end_date: date
    is_half_day: bool = False


class ValidationIssue(BaseModel):
    field: str
    code: str
    message: str


class ApproverSpec(BaseModel):
    level: int
    approver_id: int
    approver_role: str


class ValidationVerdict(BaseModel):
    is_valid: bool = True
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    required_documentation: bool = False
    auto_approval_eligible: bool = False
    # Ordered approver roles the request will need
    approval_chain_spec: List[str] = Field(default_factory=list)
    duration: float = 0.0

    def add_error(self, field: str, code: str, message: str) -> None:
        self.errors.append(ValidationIssue(field=field, code=code, message=message))
        self.is_valid = False


class BalanceSnapshot(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    employee_id: int
    leave_type: str
    year: int
    total_entitlement: float = 0.0
    used: float = 0.0
    available: float = 0.0
    carry_forward: float = 0.0
    forfeited: float = 0.0


class LeaveRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    employee_id: int
    leave_type: str
    start_date: date
    end_date: date
    total_days: float
    is_half_day: bool
    reason: Optional[str] = None
    status: str
    required_documentation: bool = False
    auto_approved: bool = False
    created_at: Optional[datetime] = None
    decided_at: Optional[datetime] = None


class SubmissionResult(BaseModel):
    request: LeaveRequestResponse
    verdict: ValidationVerdict


class ApprovalDecisionRequest(BaseModel):
    decision: str  # APPROVE | REJECT
    comments: Optional[str] = None

    @field_validator("decision")
    @classmethod
    def _normalize(cls, v: str) -> str:
        v = v.strip().upper()
        if v not in ("APPROVE", "REJECT"):
            raise ValueError("decision must be APPROVE or REJECT")
        return v


class ApprovalLevelView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    level: int
    approver_id: int
    approver_role: str
    status: str
    comments: Optional[str] = None
    decided_at: Optional[datetime] = None


class ApprovalChainView(BaseModel):
    leave_request_id: int
    levels: List[ApprovalLevelView]
    current_level: Optional[int] = None
    overall_status: str


class ApprovalResult(BaseModel):
    success: bool = True
    completed: bool
    next_level: Optional[int] = None
    overall_status: str
    request_status: str
    message: str


class PendingApproval(BaseModel):
    """A request whose current level waits on this approver."""
    leave_request_id: int
    employee_id: int
    leave_type: str
    start_date: date
    end_date: date
    total_days: float
    is_half_day: bool = False
    reason: Optional[str] = None
    level: int
    approver_role: str
    submitted_at: Optional[datetime] = None


class PendingApprovalInbox(BaseModel):
    approver_id: int
    items: List[PendingApproval]
    total: int
    comp_off_count: int
