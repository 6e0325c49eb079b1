"""
Accrual Engine

Periodic entitlement: pro-rated monthly grants, lump annual allocations
by designation, and the year-end carry-forward/expiry roll. Every grant and
transition is keyed so that re-running a period is a no-op.

Per-employee methods flush through the ledger and leave the commit to the
caller; the run_* batch methods commit once per employee.
"""
import math
from datetime import date
from typing import Callable, Iterable, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError

from leave_engine.core.config import settings
from leave_engine.core.exceptions import AlreadyProcessed, AppException, LedgerConflict, ValidationFailure
from leave_engine.models.accrual import ANNUAL_GRANT_MONTH, AccrualGrant, CarryForwardMode, YearEndTransition
from leave_engine.models.employee import Employee
from leave_engine.models.leave_balance import LeaveBalance
from leave_engine.models.leave_policy import AccrualMethod, LeaveType, RoundingMethod
from leave_engine.schemas.accrual import AccrualResult, BatchResult, EmployeeJobResult, YearEndResult
from leave_engine.schemas.policy import PolicyConfig
from leave_engine.services import policy_store
from leave_engine.services.base import BaseService
from leave_engine.services.directory import EmployeeDirectory
from leave_engine.services.ledger import BalanceLedger, CreditKind

# Joining on or before this day of the month earns the full monthly credit
FULL_CREDIT_CUTOFF_DAY = 15

# Comp-off balances lapse per work log, never at the year boundary
YEAR_END_EXEMPT = {LeaveType.COMPENSATORY_OFF.value}


def apply_rounding(value: float, method: str) -> float:
    method = RoundingMethod(method)
    if method == RoundingMethod.UP:
        return float(math.ceil(value))
    if method == RoundingMethod.DOWN:
        return float(math.floor(value))
    if method == RoundingMethod.HALF_DAY:
        return math.floor(value * 2 + 0.5) / 2
    # half-up, not banker's rounding
    return float(math.floor(value + 0.5))


def monthly_grant_amount(joining_date: date, year: int, month: int, rate: float = 1.0) -> Optional[float]:
    """
    Credit for one month of service. None when the employee had not joined
    by the target month.
    """
    target = (year, month)
    joined = (joining_date.year, joining_date.month)
    if target < joined:
        return None
    if target == joined and joining_date.day > FULL_CREDIT_CUTOFF_DAY:
        return rate / 2
    return rate


def tier_for(policy: PolicyConfig, designation: Optional[str]):
    """Designation tier matching the employee, else the catch-all tier (empty list)."""
    if not policy.designation_tiers:
        return None
    key = (designation or "").strip().upper()
    fallback = None
    for tier in policy.designation_tiers:
        if not tier.designations:
            fallback = tier
        elif key in tier.designations:
            return tier
    return fallback


def annual_entitlement_for(policy: PolicyConfig, designation: Optional[str]) -> float:
    tier = tier_for(policy, designation)
    return tier.days if tier is not None else policy.annual_entitlement


def max_carry_forward_for(policy: PolicyConfig, designation: Optional[str]) -> float:
    tier = tier_for(policy, designation)
    if tier is not None and tier.max_carry_forward is not None:
        return tier.max_carry_forward
    return policy.max_carry_forward


def prorate_annual(full: float, joining_date: date, year: int, rounding: str) -> Tuple[Optional[float], bool]:
    """
    Annual allocation for the given year as (amount, pro_rated).
    Joiners during the year get full * remaining_months / 12, counting the
    joining month. Amount is None when the employee joins after the year.
    """
    if joining_date.year > year:
        return None, False
    if joining_date.year < year or joining_date.month == 1:
        return full, False
    remaining_months = 12 - joining_date.month + 1
    return apply_rounding(full * remaining_months / 12, rounding), True


def _require_joining_date(employee: Employee) -> date:
    if employee.joining_date is None:
        raise ValidationFailure(
            [{"field": "joining_date", "code": "MISSING_PROFILE_DATA",
              "message": f"Employee {employee.id} has no joining date"}],
            message="Employee profile is incomplete",
        )
    return employee.joining_date


class AccrualEngine(BaseService):
    def __init__(self, db):
        super().__init__(db)
        self.ledger = BalanceLedger(db)
        self.directory = EmployeeDirectory(db)

    def _existing_grant(self, employee_id: int, year: int, month: int, leave_type: str) -> Optional[AccrualGrant]:
        return self.db.query(AccrualGrant).filter(
            AccrualGrant.employee_id == employee_id,
            AccrualGrant.year == year,
            AccrualGrant.month == month,
            AccrualGrant.leave_type == leave_type,
        ).first()

    def _record_grant(self, employee: Employee, policy: PolicyConfig, year: int, month: int,
                      amount: float, pro_rated: bool, reason: str) -> AccrualResult:
        grant = AccrualGrant(
            employee_id=employee.id,
            year=year,
            month=month,
            leave_type=policy.leave_type,
            amount_granted=amount,
            pro_rated=pro_rated,
            reason=reason,
        )
        self.db.add(grant)
        try:
            self.db.flush()
        except IntegrityError:
            raise AlreadyProcessed(
                f"{policy.leave_type} grant for {year}-{month:02d} was recorded concurrently",
                details={"employee_id": employee.id, "year": year, "month": month},
            )
        if amount > 0:
            self.ledger.credit(employee.id, policy.leave_type, year, amount, CreditKind.ACCRUAL)
        return AccrualResult(
            employee_id=employee.id, year=year, month=month, leave_type=policy.leave_type,
            amount_granted=amount, pro_rated=pro_rated, reason=reason,
        )

    def _replay(self, grant: AccrualGrant) -> AccrualResult:
        return AccrualResult(
            employee_id=grant.employee_id, year=grant.year, month=grant.month,
            leave_type=grant.leave_type, amount_granted=grant.amount_granted,
            pro_rated=grant.pro_rated, reason=grant.reason or "", already_processed=True,
        )

    def grant_monthly(self, employee: Employee, policy: PolicyConfig, year: int, month: int) -> AccrualResult:
        """Pro-rated monthly grant of one leave type for one employee."""
        existing = self._existing_grant(employee.id, year, month, policy.leave_type)
        if existing is not None:
            return self._replay(existing)

        joining_date = _require_joining_date(employee)
        amount = monthly_grant_amount(joining_date, year, month, policy.accrual_rate)
        if amount is None:
            return AccrualResult(
                employee_id=employee.id, year=year, month=month, leave_type=policy.leave_type,
                amount_granted=0.0, reason="Not yet joined",
            )
        pro_rated = amount < policy.accrual_rate
        reason = "Joined after mid-month" if pro_rated else "Full month"
        return self._record_grant(employee, policy, year, month, amount, pro_rated, reason)

    def allocate_annual(self, employee: Employee, policy: PolicyConfig, year: int) -> AccrualResult:
        """Lump allocation by designation tier, pro-rated for mid-year joiners."""
        existing = self._existing_grant(employee.id, year, ANNUAL_GRANT_MONTH, policy.leave_type)
        if existing is not None:
            return self._replay(existing)

        joining_date = _require_joining_date(employee)
        full = annual_entitlement_for(policy, employee.designation)
        amount, pro_rated = prorate_annual(full, joining_date, year, policy.rounding)
        if amount is None:
            return AccrualResult(
                employee_id=employee.id, year=year, month=ANNUAL_GRANT_MONTH, leave_type=policy.leave_type,
                amount_granted=0.0, reason="Not yet joined",
            )
        reason = f"Annual allocation ({employee.designation or 'default tier'})"
        return self._record_grant(employee, policy, year, ANNUAL_GRANT_MONTH, amount, pro_rated, reason)

    def close_year(self, employee: Employee, policy: PolicyConfig, from_year: int) -> YearEndResult:
        """
        Roll one balance across the year boundary.

        The closing year's positive balance is lapsed in full; in carry mode
        up to the cap reappears as next year's carry_forward.
        """
        leave_type = policy.leave_type
        existing = self.db.query(YearEndTransition).filter(
            YearEndTransition.employee_id == employee.id,
            YearEndTransition.leave_type == leave_type,
            YearEndTransition.from_year == from_year,
        ).first()
        if existing is not None:
            return YearEndResult(
                employee_id=employee.id, leave_type=leave_type, from_year=from_year,
                mode=existing.mode, available_at_close=existing.available_at_close,
                carried_forward=existing.carried_forward, forfeited=existing.forfeited,
                already_processed=True,
            )

        mode = CarryForwardMode.CARRY if policy.carry_forward_allowed else CarryForwardMode.EXPIRE
        available = self.ledger.read_snapshot(employee.id, leave_type, from_year).available
        carried = 0.0
        forfeited = 0.0

        if available > 0:
            if mode == CarryForwardMode.CARRY:
                carried = min(available, max_carry_forward_for(policy, employee.designation))
            self.ledger.lapse(employee.id, leave_type, from_year, available)
            if carried > 0:
                self.ledger.credit(employee.id, leave_type, from_year + 1, carried, CreditKind.CARRY_FORWARD)
            forfeited = available - carried

        transition = YearEndTransition(
            employee_id=employee.id,
            leave_type=leave_type,
            from_year=from_year,
            mode=mode.value,
            available_at_close=available,
            carried_forward=carried,
            forfeited=forfeited,
        )
        self.db.add(transition)
        try:
            self.db.flush()
        except IntegrityError:
            raise AlreadyProcessed(
                f"{leave_type} year-end for {from_year} was recorded concurrently",
                details={"employee_id": employee.id, "from_year": from_year},
            )
        return YearEndResult(
            employee_id=employee.id, leave_type=leave_type, from_year=from_year, mode=mode.value,
            available_at_close=available, carried_forward=carried, forfeited=forfeited,
        )

    # --- Batch processing ---

    def _run_for_employee(self, employee: Employee, work: Callable[[Employee], List[dict]]) -> EmployeeJobResult:
        """
        Run one employee's share of a batch in its own transaction.
        Business failures are recorded on the result; anything else propagates.
        """
        attempts = max(settings.ledger_max_retries, 1)
        for attempt in range(1, attempts + 1):
            try:
                detail = work(employee)
                self._commit()
                return EmployeeJobResult(employee_id=employee.id, success=True, detail=detail)
            except LedgerConflict as e:
                self.db.rollback()
                if attempt == attempts:
                    return EmployeeJobResult(employee_id=employee.id, success=False, error=e.message, error_code=e.error_code)
                self.log_warning(f"Ledger conflict for employee {employee.id}, retry {attempt}")
            except AppException as e:
                self.db.rollback()
                self.log_warning(f"Skipping employee {employee.id}: {e.message}", error_code=e.error_code)
                return EmployeeJobResult(employee_id=employee.id, success=False, error=e.message, error_code=e.error_code)
            except Exception:
                self.db.rollback()
                raise

    def run_monthly(self, year: int, month: int, regions: Optional[Iterable[str]] = None) -> BatchResult:
        regions = list(regions or settings.scheduler.monthly_accrual_regions)
        batch = BatchResult(job=f"monthly_accrual:{year}-{month:02d}")

        def work(employee: Employee) -> List[dict]:
            policies = policy_store.policies_for_region(self.db, employee.region, AccrualMethod.MONTHLY.value)
            return [self.grant_monthly(employee, p, year, month).model_dump() for p in policies]

        for employee in self.directory.list_active(regions):
            batch.record(self._run_for_employee(employee, work))
        self.log_info(f"Monthly accrual {year}-{month:02d}: {batch.success_count} ok, {batch.failure_count} failed")
        return batch

    def run_annual(self, year: int, regions: Optional[Iterable[str]] = None) -> BatchResult:
        regions = list(regions or settings.scheduler.annual_allocation_regions)
        batch = BatchResult(job=f"annual_allocation:{year}")

        def work(employee: Employee) -> List[dict]:
            policies = policy_store.policies_for_region(self.db, employee.region, AccrualMethod.ANNUAL.value)
            return [self.allocate_annual(employee, p, year).model_dump() for p in policies]

        for employee in self.directory.list_active(regions):
            batch.record(self._run_for_employee(employee, work))
        self.log_info(f"Annual allocation {year}: {batch.success_count} ok, {batch.failure_count} failed")
        return batch

    def run_year_end(self, from_year: int, regions: Optional[Iterable[str]] = None) -> BatchResult:
        batch = BatchResult(job=f"year_end:{from_year}")

        def work(employee: Employee) -> List[dict]:
            leave_types = [
                row.leave_type for row in self.db.query(LeaveBalance.leave_type).filter(
                    LeaveBalance.employee_id == employee.id,
                    LeaveBalance.year == from_year,
                ).order_by(LeaveBalance.leave_type).all()
            ]
            results = []
            for leave_type in leave_types:
                if leave_type in YEAR_END_EXEMPT:
                    continue
                policy = policy_store.get_policy(self.db, leave_type, employee.region)
                results.append(self.close_year(employee, policy, from_year).model_dump())
            return results

        for employee in self.directory.list_active(regions):
            batch.record(self._run_for_employee(employee, work))
        self.log_info(f"Year-end {from_year}: {batch.success_count} ok, {batch.failure_count} failed")
        return batch
