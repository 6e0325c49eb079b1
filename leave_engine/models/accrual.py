from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.sql import func
from leave_engine.database import Base
import enum

# month value used for lump annual allocations
ANNUAL_GRANT_MONTH = 0


class CarryForwardMode(str, enum.Enum):
    EXPIRE = "EXPIRE"
    CARRY = "CARRY"


class AccrualGrant(Base):
    """One credited grant. The unique key makes reprocessing a no-op."""
    __tablename__ = "accrual_grants"

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    year = Column(Integer, nullable=False)
    month = Column(Integer, nullable=False)
    leave_type = Column(String, nullable=False)
    amount_granted = Column(Float, nullable=False)
    pro_rated = Column(Boolean, default=False)
    reason = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("employee_id", "year", "month", "leave_type", name="uq_accrual_grant_key"),
    )


class YearEndTransition(Base):
    """Record of one year-boundary roll for an (employee, leave type)."""
    __tablename__ = "year_end_transitions"

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    leave_type = Column(String, nullable=False)
    from_year = Column(Integer, nullable=False)
    mode = Column(String, nullable=False)
    available_at_close = Column(Float, default=0.0)
    carried_forward = Column(Float, default=0.0)
    forfeited = Column(Float, default=0.0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("employee_id", "leave_type", "from_year", name="uq_year_end_key"),
    )
