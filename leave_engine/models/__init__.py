# Models package
# Importing modules here ensures they are registered with SQLAlchemy Base
from . import (
    employee, holiday, leave_policy, leave_balance, accrual,
    leave_request, approval, comp_off, notification
)

# Explicit class exports for cleaner imports
from .employee import Employee, EmployeeRole, EmployeeStatus, Region
from .holiday import Holiday
from .leave_policy import LeavePolicy, LeaveType, AccrualMethod, RoundingMethod
from .leave_balance import LeaveBalance
from .accrual import AccrualGrant, YearEndTransition, CarryForwardMode, ANNUAL_GRANT_MONTH
from .leave_request import LeaveRequest, LeaveStatus, OPEN_STATUSES
from .approval import ApprovalLevel, ApprovalStatus, ApproverRole
from .comp_off import WorkLogEntry, CompOffRequest, WorkType, WorkLogStatus, CompOffRequestStatus
from .notification import Notification

__all__ = [
    "Employee",
    "EmployeeRole",
    "EmployeeStatus",
    "Region",
    "Holiday",
    "LeavePolicy",
    "LeaveType",
    "AccrualMethod",
    "RoundingMethod",
    "LeaveBalance",
    "AccrualGrant",
    "YearEndTransition",
    "CarryForwardMode",
    "ANNUAL_GRANT_MONTH",
    "LeaveRequest",
    "LeaveStatus",
    "OPEN_STATUSES",
    "ApprovalLevel",
    "ApprovalStatus",
    "ApproverRole",
    "WorkLogEntry",
    "CompOffRequest",
    "WorkType",
    "WorkLogStatus",
    "CompOffRequestStatus",
    "Notification",
]
