from sqlalchemy import Column, Integer, String, Date, Float, Boolean, ForeignKey, DateTime
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from leave_engine.database import Base
import enum


class LeaveStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


# Statuses that hold calendar days and count toward overlap checks
OPEN_STATUSES = (LeaveStatus.PENDING.value, LeaveStatus.APPROVED.value)


class LeaveRequest(Base):
    __tablename__ = "leave_requests"

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    leave_type = Column(String, nullable=False, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    total_days = Column(Float, nullable=False)
    is_half_day = Column(Boolean, default=False)
    reason = Column(String, nullable=True)
    status = Column(String, default=LeaveStatus.PENDING.value, nullable=False, index=True)
    required_documentation = Column(Boolean, default=False)
    auto_approved = Column(Boolean, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    decided_at = Column(DateTime(timezone=True), nullable=True)

    levels = relationship(
        "ApprovalLevel",
        back_populates="leave_request",
        order_by="ApprovalLevel.level",
        cascade="all, delete-orphan",
    )

    @property
    def balance_year(self) -> int:
        """Requests are charged against the balance year of their first day."""
        return self.start_date.year
