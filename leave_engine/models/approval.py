from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text, UniqueConstraint
from sqlalchemy.orm import relationship
from leave_engine.database import Base
import enum


class ApprovalStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class ApproverRole(str, enum.Enum):
    DIRECT_MANAGER = "DIRECT_MANAGER"
    SKIP_LEVEL_MANAGER = "SKIP_LEVEL_MANAGER"
    HR = "HR"


class ApprovalLevel(Base):
    """One step of a request's approval chain. Levels run 1..N with no gaps."""
    __tablename__ = "approval_levels"

    id = Column(Integer, primary_key=True, index=True)
    leave_request_id = Column(Integer, ForeignKey("leave_requests.id"), nullable=False, index=True)
    level = Column(Integer, nullable=False)
    approver_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    approver_role = Column(String, nullable=False)
    status = Column(String, default=ApprovalStatus.PENDING.value, nullable=False)
    comments = Column(Text, nullable=True)
    decided_at = Column(DateTime(timezone=True), nullable=True)

    leave_request = relationship("LeaveRequest", back_populates="levels")

    __table_args__ = (
        UniqueConstraint("leave_request_id", "level", name="uq_approval_level"),
    )
