"""
Compensatory Off Service

Employees log extra work (weekend, holiday, extended hours); a manager or
HR verifies it, which credits the earned days to the COMPENSATORY_OFF
balance of the verification year. Redemption reserves hours on the log and
runs as a COMPENSATORY_OFF leave request through the approval chain
(manager -> manager's manager -> HR). Unredeemed days lapse at expiry.

Hour thresholds (defaults when the policy leaves them unset):
- below half_day_hours (5h): nothing earned
- half_day_hours..full_day_hours: half a day
- each full_day_hours (8h): one day, remainder rounded the same way
"""
import math
from datetime import date, datetime, timezone
from typing import Optional

from dateutil.relativedelta import relativedelta

from leave_engine.core.exceptions import (
    AlreadyProcessed, AppException, NotAuthorizedApprover, RedemptionBoundsError,
    SelfVerificationNotAllowed, ValidationFailure, WorkLogNotFound,
)
from leave_engine.models.comp_off import CompOffRequest, CompOffRequestStatus, WorkLogEntry, WorkLogStatus, WorkType
from leave_engine.models.leave_policy import LeaveType
from leave_engine.models.leave_request import LeaveRequest, LeaveStatus
from leave_engine.schemas.accrual import BatchResult, EmployeeJobResult
from leave_engine.schemas.leave import LeaveCandidate
from leave_engine.schemas.policy import PolicyConfig
from leave_engine.services import policy_store
from leave_engine.services.approval import ApprovalWorkflow
from leave_engine.services.base import BaseService
from leave_engine.services.calendar import is_holiday, is_weekend
from leave_engine.services.directory import EmployeeDirectory
from leave_engine.services.ledger import BalanceLedger, CreditKind
from leave_engine.services.notification import NotificationService
from leave_engine.services.policy_engine import PolicyValidator, calculate_duration

COMP_OFF = LeaveType.COMPENSATORY_OFF.value

DEFAULT_MIN_HOURS = 5.0
DEFAULT_MAX_HOURS = 12.0
DEFAULT_HALF_DAY_HOURS = 5.0
DEFAULT_FULL_DAY_HOURS = 8.0
DEFAULT_EXPIRY_MONTHS = 3
DEFAULT_MAX_LOG_AGE_DAYS = 30

# Work log statuses that block another log for the same date
ACTIVE_LOG_STATUSES = (WorkLogStatus.PENDING.value, WorkLogStatus.VERIFIED.value, WorkLogStatus.CONSUMED.value)

_EPSILON = 1e-9


def _or(value, default):
    return default if value is None else value


def hours_to_days(hours: float, policy: Optional[PolicyConfig] = None) -> float:
    full = _or(policy.comp_off_full_day_hours if policy else None, DEFAULT_FULL_DAY_HOURS)
    half = _or(policy.comp_off_half_day_hours if policy else None, DEFAULT_HALF_DAY_HOURS)
    whole = math.floor(hours / full)
    remainder = hours - whole * full
    return whole + (0.5 if remainder >= half else 0.0)


def _hour_bounds(policy: PolicyConfig):
    return (
        _or(policy.comp_off_min_hours, DEFAULT_MIN_HOURS),
        _or(policy.comp_off_max_hours, DEFAULT_MAX_HOURS),
    )


class CompOffService(BaseService):
    def __init__(self, db):
        super().__init__(db)
        self.directory = EmployeeDirectory(db)
        self.ledger = BalanceLedger(db)

    def _policy(self, region: Optional[str]) -> PolicyConfig:
        return policy_store.get_policy(self.db, COMP_OFF, region)

    def _lock_log(self, work_log_id: int) -> WorkLogEntry:
        log = self.db.query(WorkLogEntry).filter(
            WorkLogEntry.id == work_log_id,
        ).populate_existing().with_for_update().first()
        if log is None:
            raise WorkLogNotFound(work_log_id)
        return log

    # --- Logging extra work ---

    def log_work(self, employee_id: int, work_date: date, hours_worked: float, work_type: str,
                 description: Optional[str] = None, today: Optional[date] = None) -> WorkLogEntry:
        today = today or date.today()
        employee = self.directory.require_active(employee_id)
        policy = self._policy(employee.region)
        min_hours, max_hours = _hour_bounds(policy)
        max_age = _or(policy.comp_off_max_log_age_days, DEFAULT_MAX_LOG_AGE_DAYS)
        work_type = (work_type or "").upper()

        errors = []
        if work_type not in WorkType.__members__:
            errors.append({"field": "work_type", "code": "INVALID_WORK_TYPE",
                           "message": f"Work type must be one of {', '.join(WorkType.__members__)}"})
        if hours_worked <= 0 or hours_worked > max_hours:
            errors.append({"field": "hours_worked", "code": "HOURS_OUT_OF_RANGE",
                           "message": f"Hours worked must be between 0 and {max_hours}"})
        elif hours_worked < min_hours:
            errors.append({"field": "hours_worked", "code": "HOURS_BELOW_MINIMUM",
                           "message": f"At least {min_hours} hours are required to earn comp-off"})
        if work_date > today:
            errors.append({"field": "work_date", "code": "FUTURE_DATE",
                           "message": "Work date cannot be in the future"})
        elif (today - work_date).days > max_age:
            errors.append({"field": "work_date", "code": "LOG_TOO_OLD",
                           "message": f"Work must be logged within {max_age} days"})
        if work_type == WorkType.WEEKEND.value and not is_weekend(work_date):
            errors.append({"field": "work_date", "code": "NOT_A_WEEKEND",
                           "message": f"{work_date} is not a Saturday or Sunday"})
        if work_type == WorkType.HOLIDAY.value and not is_holiday(self.db, work_date, employee.region):
            errors.append({"field": "work_date", "code": "NOT_A_HOLIDAY",
                           "message": f"{work_date} is not a declared holiday"})

        duplicate = self.db.query(WorkLogEntry).filter(
            WorkLogEntry.employee_id == employee_id,
            WorkLogEntry.work_date == work_date,
            WorkLogEntry.status.in_(ACTIVE_LOG_STATUSES),
        ).first()
        if duplicate:
            errors.append({"field": "work_date", "code": "DUPLICATE_LOG",
                           "message": f"Work on {work_date} is already logged (entry {duplicate.id})"})
        if errors:
            raise ValidationFailure(errors, message="Work log rejected")

        log = WorkLogEntry(
            employee_id=employee_id,
            work_date=work_date,
            hours_worked=hours_worked,
            work_type=work_type,
            description=description,
            status=WorkLogStatus.PENDING.value,
            days_earned=hours_to_days(hours_worked, policy),
        )
        self.db.add(log)
        self._commit()
        self.db.refresh(log)
        self.log_info(f"Work log {log.id} created", employee_id=employee_id, hours=hours_worked)

        manager = self.directory.get_manager(employee)
        if manager:
            NotificationService(self.db).emit(
                "comp_off.logged", manager.id, "Work log awaiting verification",
                f"{employee.full_name or employee.id} logged {hours_worked}h on {work_date}",
                {"work_log_id": log.id},
            )
        return log

    def verify_work_log(self, work_log_id: int, verifier_id: int, approve: bool,
                        comments: Optional[str] = None, today: Optional[date] = None) -> WorkLogEntry:
        """
        Verify or reject a PENDING work log. Verification credits the
        earned days and starts the expiry clock.
        """
        today = today or date.today()
        log = self._lock_log(work_log_id)
        if log.employee_id == verifier_id:
            raise SelfVerificationNotAllowed(work_log_id)
        verifier = self.directory.require_active(verifier_id)
        employee = self.directory.get_employee(log.employee_id)
        if not self.directory.can_verify_for(verifier, employee):
            raise NotAuthorizedApprover(
                "Only the reporting manager or HR may verify this work log",
                details={"work_log_id": work_log_id, "verifier_id": verifier_id},
            )
        if log.status != WorkLogStatus.PENDING.value:
            raise AlreadyProcessed(
                f"Work log {work_log_id} is already {log.status}",
                details={"work_log_id": work_log_id, "status": log.status},
            )

        try:
            log.verified_by = verifier_id
            log.verified_at = datetime.now(timezone.utc)
            log.verification_comments = comments
            if approve:
                policy = self._policy(employee.region)
                months = _or(policy.comp_off_expiry_months, DEFAULT_EXPIRY_MONTHS)
                log.status = WorkLogStatus.VERIFIED.value
                log.credit_year = today.year
                log.expires_on = today + relativedelta(months=months)
                if log.days_earned > 0:
                    self.ledger.credit(employee.id, COMP_OFF, log.credit_year, log.days_earned, CreditKind.COMP_OFF)
            else:
                log.status = WorkLogStatus.REJECTED.value
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(log)
        self.log_info(f"Work log {work_log_id} {log.status}", verifier_id=verifier_id)

        NotificationService(self.db).emit(
            f"comp_off.{log.status.lower()}", log.employee_id, f"Work log {log.status.lower()}",
            f"Your work on {log.work_date} was {log.status.lower()}",
            {"work_log_id": log.id, "days_earned": log.days_earned if approve else 0},
        )
        return log

    # --- Redemption ---

    def apply_for_comp_off(self, employee_id: int, work_log_id: int, hours_to_redeem: float,
                           start_date: date, end_date: date, reason: Optional[str] = None,
                           today: Optional[date] = None) -> CompOffRequest:
        """
        Redeem hours from a verified work log as a COMPENSATORY_OFF leave
        request. The hours stay reserved on the log until the request is
        decided.

        Raises:
            WorkLogNotFound: the log does not exist or belongs to someone else.
            RedemptionBoundsError: hours outside the policy bounds or above
                what remains on the log; the log is left untouched.
            ValidationFailure: the log is not redeemable or the dates fail
                policy validation.
            IncompleteApprovalChain: the three-level chain cannot be built.
        """
        today = today or date.today()
        employee = self.directory.require_active(employee_id)
        policy = self._policy(employee.region)
        log = self._lock_log(work_log_id)
        if log.employee_id != employee_id:
            raise WorkLogNotFound(work_log_id)

        if log.status != WorkLogStatus.VERIFIED.value:
            raise ValidationFailure(
                [{"field": "work_log_id", "code": "WORK_LOG_NOT_REDEEMABLE",
                  "message": f"Work log {work_log_id} is {log.status}"}],
                message="Work log cannot be redeemed",
            )
        if log.expires_on is not None and log.expires_on <= today:
            raise ValidationFailure(
                [{"field": "work_log_id", "code": "WORK_LOG_EXPIRED",
                  "message": f"Work log {work_log_id} expired on {log.expires_on}"}],
                message="Work log cannot be redeemed",
            )

        min_hours, max_hours = _hour_bounds(policy)
        remaining = log.remaining_hours
        if hours_to_redeem < min_hours or hours_to_redeem > max_hours:
            raise RedemptionBoundsError(
                f"Redeemable hours must be between {min_hours} and {max_hours}",
                hours_to_redeem, min_hours, max_hours, remaining,
            )
        if hours_to_redeem > remaining + _EPSILON:
            raise RedemptionBoundsError(
                f"Only {remaining} unredeemed hours remain on work log {work_log_id}",
                hours_to_redeem, min_hours, max_hours, remaining,
            )
        days = hours_to_days(hours_to_redeem, policy)
        if days <= 0 or days > log.remaining_days + _EPSILON:
            raise RedemptionBoundsError(
                f"{hours_to_redeem} hours convert to {days} days; {log.remaining_days} days remain",
                hours_to_redeem, min_hours, max_hours, remaining,
            )

        span = calculate_duration(start_date, end_date)
        if start_date <= end_date and span != math.ceil(days):
            raise ValidationFailure(
                [{"field": "end_date", "code": "DATE_SPAN_MISMATCH",
                  "message": f"{days} comp-off days must span {math.ceil(days)} calendar days, got {span:g}"}],
            )

        candidate = LeaveCandidate(
            employee_id=employee_id,
            leave_type=COMP_OFF,
            start_date=start_date,
            end_date=end_date,
            is_half_day=days == 0.5,
            reason=reason,
        )
        verdict, _, _ = PolicyValidator(self.db).evaluate(
            candidate, today=today, balance_year=log.credit_year, duration=days,
        )
        if not verdict.is_valid:
            raise ValidationFailure([e.model_dump() for e in verdict.errors])

        workflow = ApprovalWorkflow(self.db)
        specs = workflow.build_approval_chain(employee_id, COMP_OFF)

        try:
            leave_request = LeaveRequest(
                employee_id=employee_id,
                leave_type=COMP_OFF,
                start_date=start_date,
                end_date=end_date,
                total_days=days,
                is_half_day=days == 0.5,
                reason=reason,
                status=LeaveStatus.PENDING.value,
                required_documentation=verdict.required_documentation,
            )
            self.db.add(leave_request)
            self.db.flush()
            workflow.create_chain(leave_request, specs)

            comp_request = CompOffRequest(
                employee_id=employee_id,
                work_log_id=log.id,
                leave_request_id=leave_request.id,
                hours_to_redeem=hours_to_redeem,
                days_requested=days,
                start_date=start_date,
                end_date=end_date,
                reason=reason,
                status=CompOffRequestStatus.PENDING.value,
            )
            self.db.add(comp_request)
            log.hours_reserved += hours_to_redeem
            log.days_reserved += days
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise
        self.db.refresh(comp_request)
        self.log_info(
            f"Comp-off request {comp_request.id} for {days} days",
            employee_id=employee_id, work_log_id=work_log_id,
        )

        NotificationService(self.db).emit(
            "leave.submitted", specs[0].approver_id, "Comp-off approval required",
            f"Comp-off request for {days} days from {start_date} awaits your decision",
            {"leave_request_id": comp_request.leave_request_id, "level": 1},
        )
        return comp_request

    def _request_for(self, leave_request: LeaveRequest) -> CompOffRequest:
        comp_request = self.db.query(CompOffRequest).filter(
            CompOffRequest.leave_request_id == leave_request.id,
        ).populate_existing().first()
        if comp_request is None:
            raise AppException(
                f"Leave request {leave_request.id} has no comp-off redemption",
                status_code=409, error_code="COMP_OFF_LINK_MISSING",
            )
        return comp_request

    def settle_approval(self, leave_request: LeaveRequest) -> None:
        """
        Final approval of a redemption: debit the days from the balance they
        were credited to and move the hours from reserved to redeemed.
        Runs inside the approval transaction; does not commit.
        """
        comp_request = self._request_for(leave_request)
        log = self._lock_log(comp_request.work_log_id)
        employee = self.directory.get_employee(log.employee_id)
        policy = self._policy(employee.region)

        self.ledger.debit(log.employee_id, COMP_OFF, log.credit_year, comp_request.days_requested, policy)
        log.hours_reserved -= comp_request.hours_to_redeem
        log.days_reserved -= comp_request.days_requested
        log.hours_redeemed += comp_request.hours_to_redeem
        log.days_redeemed += comp_request.days_requested
        if log.days_reserved <= _EPSILON and log.remaining_days <= _EPSILON:
            log.status = WorkLogStatus.CONSUMED.value
        comp_request.status = CompOffRequestStatus.APPROVED.value
        self.db.flush()

    def release_for_request(self, leave_request: LeaveRequest, today: Optional[date] = None) -> None:
        """
        Undo a redemption when its leave request is rejected or cancelled.
        Pending hours are released; approved days are credited back.
        Released days on a log already past expiry lapse at once.
        Does not commit.
        """
        today = today or date.today()
        comp_request = self._request_for(leave_request)
        log = self._lock_log(comp_request.work_log_id)

        if comp_request.status == CompOffRequestStatus.PENDING.value:
            log.hours_reserved -= comp_request.hours_to_redeem
            log.days_reserved -= comp_request.days_requested
        elif comp_request.status == CompOffRequestStatus.APPROVED.value:
            log.hours_redeemed -= comp_request.hours_to_redeem
            log.days_redeemed -= comp_request.days_requested
            self.ledger.credit(log.employee_id, COMP_OFF, log.credit_year,
                               comp_request.days_requested, CreditKind.REVERSAL)
            if log.status == WorkLogStatus.CONSUMED.value:
                log.status = WorkLogStatus.VERIFIED.value
        else:
            raise AlreadyProcessed(
                f"Comp-off request {comp_request.id} is already {comp_request.status}",
                details={"comp_off_request_id": comp_request.id},
            )

        comp_request.status = (
            CompOffRequestStatus.REJECTED.value
            if leave_request.status == LeaveStatus.REJECTED.value
            else CompOffRequestStatus.CANCELLED.value
        )
        if log.expires_on is not None and log.expires_on <= today:
            self._expire_log(log)
        self.db.flush()

    # --- Expiry ---

    def _expire_log(self, log: WorkLogEntry) -> float:
        """Lapse the unreserved remainder of a log past its expiry date."""
        lapsed = 0.0
        remaining = log.remaining_days
        if remaining > _EPSILON:
            lapsed = self.ledger.lapse(log.employee_id, COMP_OFF, log.credit_year, remaining)
            # Record the full remainder so the log is settled even if the balance was lower
            log.days_expired += remaining
        if log.days_reserved <= _EPSILON and log.status == WorkLogStatus.VERIFIED.value:
            log.status = WorkLogStatus.EXPIRED.value
        return lapsed

    def expire_work_logs(self, as_of: Optional[date] = None) -> BatchResult:
        as_of = as_of or date.today()
        batch = BatchResult(job=f"comp_off_expiry:{as_of.isoformat()}")
        log_ids = [
            row.id for row in self.db.query(WorkLogEntry.id).filter(
                WorkLogEntry.status == WorkLogStatus.VERIFIED.value,
                WorkLogEntry.expires_on <= as_of,
            ).order_by(WorkLogEntry.id).all()
        ]
        for log_id in log_ids:
            log = self._lock_log(log_id)
            employee_id = log.employee_id
            try:
                remaining = log.remaining_days
                lapsed = self._expire_log(log)
                self.db.commit()
                batch.record(EmployeeJobResult(
                    employee_id=employee_id, success=True,
                    detail=[{"work_log_id": log_id, "days_expired": remaining, "days_lapsed": lapsed}],
                ))
            except AppException as e:
                self.db.rollback()
                self.log_warning(f"Comp-off expiry failed for work log {log_id}: {e.message}")
                batch.record(EmployeeJobResult(
                    employee_id=employee_id, success=False, error=e.message, error_code=e.error_code,
                ))
            except Exception:
                self.db.rollback()
                raise
        self.log_info(f"Comp-off expiry as of {as_of}: {batch.success_count} logs processed")
        return batch
