from sqlalchemy import Column, Integer, String, Float, DateTime, UniqueConstraint, ForeignKey
from sqlalchemy.sql import func
from leave_engine.database import Base


class LeaveBalance(Base):
    """
    Running totals for one (employee, leave type, year).

    available == total_entitlement + carry_forward - used, maintained by
    BalanceLedger. `version` is bumped on every UPDATE and checked by the
    ORM, so a stale writer fails instead of overwriting.
    """
    __tablename__ = "leave_balances"

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    leave_type = Column(String, nullable=False, index=True)
    year = Column(Integer, nullable=False)
    total_entitlement = Column(Float, default=0.0, nullable=False)
    used = Column(Float, default=0.0, nullable=False)
    available = Column(Float, default=0.0, nullable=False)
    carry_forward = Column(Float, default=0.0, nullable=False)
    forfeited = Column(Float, default=0.0, nullable=False)
    version = Column(Integer, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("employee_id", "leave_type", "year", name="uq_balance_employee_type_year"),
    )
    __mapper_args__ = {"version_id_col": version}
