"""
Policy Validation Engine

`validate_leave_request` is a pure function: it decides whether a candidate
request satisfies the leave policy given everything it needs as arguments,
and never touches the database. `PolicyValidator` gathers those inputs
for a session.

Checks run in order and every failure is collected, so a caller sees
the full list of problems at once.
"""
from datetime import date, timedelta
from typing import AbstractSet, Iterable, Optional, Tuple

from dateutil.relativedelta import relativedelta

from leave_engine.models.employee import Employee
from leave_engine.models.leave_request import OPEN_STATUSES, LeaveRequest, LeaveStatus
from leave_engine.schemas.leave import BalanceSnapshot, LeaveCandidate, ValidationVerdict
from leave_engine.schemas.policy import PolicyConfig
from leave_engine.services import policy_store
from leave_engine.services.approval import chain_roles_for
from leave_engine.services.base import BaseService
from leave_engine.services.calendar import holidays_between, is_weekend
from leave_engine.services.directory import EmployeeDirectory
from leave_engine.services.ledger import BalanceLedger


def tenure_months(joining_date: date, today: date) -> int:
    """Whole months of service; partial months do not count."""
    delta = relativedelta(today, joining_date)
    return delta.years * 12 + delta.months


def calculate_duration(start_date: date, end_date: date, is_half_day: bool = False,
                       exclude_non_working_days: bool = False,
                       holidays: AbstractSet[date] = frozenset()) -> float:
    """
    Days charged for a request. A half-day is always 0.5. Otherwise the
    inclusive calendar span, minus weekends and holidays when excluded.
    """
    if is_half_day:
        return 0.5
    if end_date < start_date:
        return 0.0
    if not exclude_non_working_days:
        return float((end_date - start_date).days + 1)
    days = 0
    current = start_date
    while current <= end_date:
        if not is_weekend(current) and current not in holidays:
            days += 1
        current += timedelta(days=1)
    return float(days)


def _overlaps(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    return a_start <= b_end and b_start <= a_end


def _gap_days(a_start: date, a_end: date, b_start: date, b_end: date) -> Optional[int]:
    """Free days between two disjoint ranges."""
    if a_end < b_start:
        return (b_start - a_end).days - 1
    if b_end < a_start:
        return (a_start - b_end).days - 1
    return None


def validate_leave_request(
    candidate: LeaveCandidate,
    employee: Employee,
    policy: PolicyConfig,
    balance: BalanceSnapshot,
    existing_requests: Iterable[LeaveRequest],
    today: date,
    holidays: AbstractSet[date] = frozenset(),
    duration: Optional[float] = None,
    credited_days: float = 0.0,
) -> ValidationVerdict:
    """
    Evaluate a candidate request. `duration` overrides the computed day
    count when the caller has already sized the request (comp-off redemption).
    `credited_days` are days the request being modified already holds in
    the same balance.
    """
    verdict = ValidationVerdict(approval_chain_spec=chain_roles_for(policy.leave_type))
    start, end = candidate.start_date, candidate.end_date
    existing = [r for r in existing_requests if r.status in OPEN_STATUSES]

    if duration is None:
        duration = calculate_duration(start, end, candidate.is_half_day, policy.exclude_non_working_days, holidays)
    verdict.duration = duration
    if candidate.is_half_day and start != end:
        verdict.warnings.append("Half-day request spans more than one day; charged as 0.5 days")

    # 1. Date sanity
    if start > end:
        verdict.add_error("end_date", "INVALID_DATE_RANGE", "End date must be on or after start date")
    if (start - today).days > policy.max_advance_booking_days:
        verdict.add_error(
            "start_date", "BEYOND_BOOKING_HORIZON",
            f"Leave cannot be booked more than {policy.max_advance_booking_days} days in advance",
        )
    if start < today - timedelta(days=policy.backdate_limit_days):
        verdict.add_error(
            "start_date", "BACKDATE_LIMIT_EXCEEDED",
            f"Leave cannot start more than {policy.backdate_limit_days} days in the past",
        )
    if start >= today and (start - today).days < policy.min_advance_notice_days:
        verdict.add_error(
            "start_date", "INSUFFICIENT_NOTICE",
            f"{policy.leave_type} requires {policy.min_advance_notice_days} days advance notice",
        )
    if start <= end and duration == 0:
        verdict.add_error("start_date", "NO_WORKING_DAYS", "Requested range contains no working days")

    # 2. Eligibility
    if policy.eligible_genders and (employee.gender or "").upper() not in [g.upper() for g in policy.eligible_genders]:
        verdict.add_error("leave_type", "GENDER_NOT_ELIGIBLE", f"{policy.leave_type} is not available for this gender")
    if policy.eligible_marital_statuses and \
            (employee.marital_status or "").upper() not in [m.upper() for m in policy.eligible_marital_statuses]:
        verdict.add_error(
            "leave_type", "MARITAL_STATUS_NOT_ELIGIBLE",
            f"{policy.leave_type} is not available for this marital status",
        )
    if policy.eligible_designations and \
            (employee.designation or "").upper() not in [d.upper() for d in policy.eligible_designations]:
        verdict.add_error(
            "leave_type", "DESIGNATION_NOT_ELIGIBLE",
            f"{policy.leave_type} is not available for designation {employee.designation}",
        )
    if policy.min_tenure_months > 0:
        if employee.joining_date is None:
            verdict.add_error("leave_type", "TENURE_UNKNOWN", "Joining date is required to check tenure")
        else:
            months = tenure_months(employee.joining_date, today)
            if months < policy.min_tenure_months:
                verdict.add_error(
                    "leave_type", "TENURE_NOT_MET",
                    f"{policy.leave_type} requires {policy.min_tenure_months} months of service; have {months}",
                )

    # 3. Overlap
    overlapping = [r for r in existing if _overlaps(start, end, r.start_date, r.end_date)]
    if overlapping:
        first = overlapping[0]
        verdict.add_error(
            "start_date", "OVERLAPPING_REQUEST",
            f"Overlaps {first.leave_type} request {first.id} ({first.start_date} to {first.end_date})",
        )

    # 4. Consecutive days and gap
    if policy.max_consecutive_days is not None and duration > policy.max_consecutive_days:
        verdict.add_error(
            "end_date", "MAX_CONSECUTIVE_EXCEEDED",
            f"{policy.leave_type} allows at most {policy.max_consecutive_days} consecutive days",
        )
    if policy.min_gap_days > 0:
        for other in existing:
            if other.leave_type != policy.leave_type:
                continue
            gap = _gap_days(start, end, other.start_date, other.end_date)
            if gap is not None and gap < policy.min_gap_days:
                verdict.add_error(
                    "start_date", "MIN_GAP_NOT_MET",
                    f"At least {policy.min_gap_days} days are required between {policy.leave_type} requests",
                )
                break

    # 5. Balance
    remaining = balance.available + credited_days - duration
    if remaining < policy.negative_floor:
        if policy.allow_negative_balance:
            verdict.add_error(
                "leave_type", "NEGATIVE_BALANCE_LIMIT_EXCEEDED",
                f"Request would take {policy.leave_type} below the negative limit of -{policy.negative_balance_limit}",
            )
        else:
            verdict.add_error(
                "leave_type", "INSUFFICIENT_BALANCE",
                f"Insufficient {policy.leave_type} balance: requested {duration}, available {balance.available}",
            )
    pending_days = sum(
        r.total_days for r in existing
        if r.leave_type == policy.leave_type and r.status == LeaveStatus.PENDING.value
    )
    if pending_days > 0:
        verdict.warnings.append(f"{pending_days} {policy.leave_type} days are already pending approval")

    # 6. Documentation
    if policy.documentation_threshold is not None and duration >= policy.documentation_threshold:
        verdict.required_documentation = True

    verdict.auto_approval_eligible = (
        verdict.is_valid
        and policy.auto_approve
        and (policy.auto_approve_max_days is None or duration <= policy.auto_approve_max_days)
    )
    return verdict


class PolicyValidator(BaseService):
    """Loads the inputs for `validate_leave_request` from the database."""

    def __init__(self, db):
        super().__init__(db)
        self.directory = EmployeeDirectory(db)
        self.ledger = BalanceLedger(db)

    def evaluate(
        self,
        candidate: LeaveCandidate,
        today: Optional[date] = None,
        exclude_request_id: Optional[int] = None,
        balance_year: Optional[int] = None,
        duration: Optional[float] = None,
        credited_days: float = 0.0,
    ) -> Tuple[ValidationVerdict, Employee, PolicyConfig]:
        today = today or date.today()
        employee = self.directory.require_active(candidate.employee_id)
        policy = policy_store.get_policy(self.db, candidate.leave_type, employee.region)

        query = self.db.query(LeaveRequest).filter(
            LeaveRequest.employee_id == employee.id,
            LeaveRequest.status.in_(OPEN_STATUSES),
        )
        if exclude_request_id is not None:
            query = query.filter(LeaveRequest.id != exclude_request_id)
        existing = query.all()

        balance = self.ledger.read_snapshot(
            employee.id, policy.leave_type, balance_year or candidate.start_date.year,
        )
        holidays = frozenset()
        if policy.exclude_non_working_days and candidate.start_date <= candidate.end_date:
            holidays = frozenset(
                holidays_between(self.db, candidate.start_date, candidate.end_date, employee.region)
            )

        verdict = validate_leave_request(
            candidate, employee, policy, balance, existing, today, holidays,
            duration=duration, credited_days=credited_days,
        )
        self._logger.info(
            f"Validated {policy.leave_type} request: valid={verdict.is_valid}",
            extra={"employee_id": employee.id, "errors": [e.code for e in verdict.errors]},
        )
        return verdict, employee, policy
