from typing import Any, Dict, List, Optional


class AppException(Exception):
    def __init__(
        self,
        message: str,
        status_code: int = 400,
        error_code: str = "BUSINESS_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.details = details
        super().__init__(self.message)


class ValidationFailure(AppException):
    """Policy violations. Always recoverable; carries one entry per failed rule."""
    def __init__(self, errors: List[Dict[str, Any]], message: str = "Leave request failed policy validation"):
        self.errors = errors
        super().__init__(
            message=message,
            status_code=422,
            error_code="VALIDATION_FAILED",
            details={"errors": errors}
        )


class InsufficientBalance(AppException):
    def __init__(self, leave_type: str, requested: float, available: float):
        shortfall = round(requested - available, 2)
        super().__init__(
            message=f"Insufficient {leave_type} balance: requested {requested}, available {available} (short by {shortfall})",
            status_code=409,
            error_code="INSUFFICIENT_BALANCE",
            details={"leave_type": leave_type, "requested": requested, "available": available, "shortfall": shortfall}
        )


class NegativeBalanceLimitExceeded(AppException):
    def __init__(self, leave_type: str, requested: float, available: float, limit: float):
        resulting = round(available - requested, 2)
        super().__init__(
            message=f"Debit of {requested} {leave_type} would leave {resulting}, below the negative limit of -{limit}",
            status_code=409,
            error_code="NEGATIVE_BALANCE_LIMIT_EXCEEDED",
            details={
                "leave_type": leave_type,
                "requested": requested,
                "available": available,
                "limit": limit,
                "excess": round(-limit - resulting, 2),
            }
        )


class IncompleteApprovalChain(AppException):
    def __init__(self, missing_role: str, employee_id: int, leave_type: str):
        super().__init__(
            message=f"Cannot build approval chain for {leave_type}: no {missing_role} configured for employee {employee_id}",
            status_code=422,
            error_code="INCOMPLETE_APPROVAL_CHAIN",
            details={"missing_role": missing_role, "employee_id": employee_id, "leave_type": leave_type}
        )


class NotAuthorizedApprover(AppException):
    def __init__(self, message: str = "Approver is not authorized for the current approval level", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=403,
            error_code="NOT_AUTHORIZED_APPROVER",
            details=details
        )


class AlreadyProcessed(AppException):
    def __init__(self, message: str = "This item has already been processed", details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=409,
            error_code="ALREADY_PROCESSED",
            details=details
        )


class SelfVerificationNotAllowed(AppException):
    def __init__(self, work_log_id: int):
        super().__init__(
            message="A manager cannot verify their own work log",
            status_code=403,
            error_code="SELF_VERIFICATION_NOT_ALLOWED",
            details={"work_log_id": work_log_id}
        )


class RedemptionBoundsError(AppException):
    def __init__(self, message: str, hours_requested: float, min_hours: float, max_hours: float, remaining_hours: float):
        super().__init__(
            message=message,
            status_code=422,
            error_code="REDEMPTION_OUT_OF_BOUNDS",
            details={
                "hours_requested": hours_requested,
                "min_hours": min_hours,
                "max_hours": max_hours,
                "remaining_hours": remaining_hours,
            }
        )


class EmployeeNotFound(AppException):
    def __init__(self, employee_id: Any):
        super().__init__(
            message=f"Employee {employee_id} not found",
            status_code=404,
            error_code="EMPLOYEE_NOT_FOUND",
            details={"employee_id": employee_id}
        )


class InactiveEmployee(AppException):
    def __init__(self, employee_id: Any, status: str):
        super().__init__(
            message=f"Employee {employee_id} is not active (status: {status})",
            status_code=409,
            error_code="INACTIVE_EMPLOYEE",
            details={"employee_id": employee_id, "status": status}
        )


class PolicyNotFound(AppException):
    def __init__(self, leave_type: str, region: str, reason: str = "no active policy"):
        super().__init__(
            message=f"Leave policy for {leave_type} in {region} is unavailable: {reason}",
            status_code=404,
            error_code="POLICY_NOT_FOUND",
            details={"leave_type": leave_type, "region": region, "reason": reason}
        )


class LeaveRequestNotFound(AppException):
    def __init__(self, request_id: int):
        super().__init__(
            message=f"Leave request {request_id} not found",
            status_code=404,
            error_code="LEAVE_REQUEST_NOT_FOUND",
            details={"request_id": request_id}
        )


class WorkLogNotFound(AppException):
    def __init__(self, work_log_id: int):
        super().__init__(
            message=f"Work log {work_log_id} not found",
            status_code=404,
            error_code="WORK_LOG_NOT_FOUND",
            details={"work_log_id": work_log_id}
        )


class LedgerConflict(AppException):
    """Another writer changed the balance row between read and write."""
    def __init__(self, employee_id: int, leave_type: str, year: int):
        super().__init__(
            message=f"Concurrent update on {leave_type} balance for employee {employee_id} ({year}); retry",
            status_code=409,
            error_code="LEDGER_CONFLICT",
            details={"employee_id": employee_id, "leave_type": leave_type, "year": year}
        )
