"""
Balance Ledger

The only writer of LeaveBalance rows. Every mutation re-reads the row
(populate_existing) under a row lock where the backend supports one and
flushes through the mapper's version check, so
`available == total_entitlement + carry_forward - used` holds after each call.

The ledger flushes but never commits; the calling service owns the
transaction.
"""
import enum
import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from leave_engine.core.exceptions import InsufficientBalance, LedgerConflict, NegativeBalanceLimitExceeded
from leave_engine.models.leave_balance import LeaveBalance
from leave_engine.schemas.leave import BalanceSnapshot
from leave_engine.schemas.policy import PolicyConfig

logger = logging.getLogger(__name__)


class CreditKind(str, enum.Enum):
    ACCRUAL = "ACCRUAL"
    CARRY_FORWARD = "CARRY_FORWARD"
    COMP_OFF = "COMP_OFF"
    REVERSAL = "REVERSAL"


def _recompute(row: LeaveBalance) -> None:
    row.available = round(row.total_entitlement + row.carry_forward - row.used, 4)


class BalanceLedger:
    def __init__(self, db: Session):
        self.db = db

    def _fetch(self, employee_id: int, leave_type: str, year: int, lock: bool = True) -> Optional[LeaveBalance]:
        query = self.db.query(LeaveBalance).filter(
            LeaveBalance.employee_id == employee_id,
            LeaveBalance.leave_type == leave_type,
            LeaveBalance.year == year,
        ).populate_existing()
        if lock:
            query = query.with_for_update()
        return query.one_or_none()

    def _get_or_create(self, employee_id: int, leave_type: str, year: int) -> LeaveBalance:
        row = self._fetch(employee_id, leave_type, year)
        if row is not None:
            return row
        row = LeaveBalance(
            employee_id=employee_id,
            leave_type=leave_type,
            year=year,
            total_entitlement=0.0,
            used=0.0,
            available=0.0,
            carry_forward=0.0,
            forfeited=0.0,
        )
        self.db.add(row)
        try:
            self.db.flush()
        except IntegrityError:
            # Another writer created the row first
            raise LedgerConflict(employee_id, leave_type, year)
        return row

    def _flush(self, row: LeaveBalance) -> BalanceSnapshot:
        _recompute(row)
        try:
            self.db.flush()
        except StaleDataError:
            logger.warning(
                "Ledger version conflict",
                extra={"employee_id": row.employee_id, "leave_type": row.leave_type, "year": row.year},
            )
            raise LedgerConflict(row.employee_id, row.leave_type, row.year)
        return BalanceSnapshot.model_validate(row)

    def credit(self, employee_id: int, leave_type: str, year: int, amount: float, kind: CreditKind) -> BalanceSnapshot:
        """
        Add days to a balance.

        ACCRUAL and COMP_OFF raise the entitlement, CARRY_FORWARD raises
        carry_forward, and REVERSAL gives back previously used days.
        """
        if amount < 0:
            raise ValueError(f"Credit amount must be non-negative, got {amount}")
        kind = CreditKind(kind)
        row = self._get_or_create(employee_id, leave_type, year)

        if kind == CreditKind.CARRY_FORWARD:
            row.carry_forward += amount
        elif kind == CreditKind.REVERSAL:
            if amount > row.used + 1e-9:
                raise ValueError(f"Cannot reverse {amount} days; only {row.used} used")
            row.used -= amount
        else:
            row.total_entitlement += amount

        snapshot = self._flush(row)
        logger.info(
            f"Ledger credit {kind.value} {amount} {leave_type}",
            extra={"employee_id": employee_id, "year": year, "available": snapshot.available},
        )
        return snapshot

    def debit(self, employee_id: int, leave_type: str, year: int, amount: float, policy: PolicyConfig) -> BalanceSnapshot:
        """
        Charge used days against a balance.

        Raises:
            InsufficientBalance: the debit would overdraw a policy without
                negative balance.
            NegativeBalanceLimitExceeded: the debit would pass the policy's
                negative floor.
        """
        if amount < 0:
            raise ValueError(f"Debit amount must be non-negative, got {amount}")
        row = self._get_or_create(employee_id, leave_type, year)
        available = row.available
        resulting = available - amount

        if resulting < 0:
            if not policy.allow_negative_balance:
                raise InsufficientBalance(leave_type, amount, available)
            if resulting < policy.negative_floor:
                raise NegativeBalanceLimitExceeded(leave_type, amount, available, policy.negative_balance_limit)

        row.used += amount
        snapshot = self._flush(row)
        logger.info(
            f"Ledger debit {amount} {leave_type}",
            extra={"employee_id": employee_id, "year": year, "available": snapshot.available},
        )
        return snapshot

    def lapse(self, employee_id: int, leave_type: str, year: int, amount: float) -> float:
        """
        Remove unused days (expiry) and record them as forfeited.

        Carried-forward days lapse before entitlement. Never lapses more
        than the positive available balance. Returns the days lapsed.
        """
        row = self._fetch(employee_id, leave_type, year)
        if row is None:
            return 0.0
        amount = min(amount, max(row.available, 0.0))
        if amount <= 0:
            return 0.0

        from_carry = min(amount, row.carry_forward)
        row.carry_forward -= from_carry
        row.total_entitlement -= amount - from_carry
        row.forfeited += amount
        self._flush(row)
        logger.info(
            f"Ledger lapse {amount} {leave_type}",
            extra={"employee_id": employee_id, "year": year},
        )
        return amount

    def read_snapshot(self, employee_id: int, leave_type: str, year: int) -> BalanceSnapshot:
        """Current balance; an untouched balance reads as all zeros."""
        row = self._fetch(employee_id, leave_type, year, lock=False)
        if row is None:
            return BalanceSnapshot(employee_id=employee_id, leave_type=leave_type, year=year)
        return BalanceSnapshot.model_validate(row)
