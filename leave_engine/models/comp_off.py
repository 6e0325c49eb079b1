"""
Comp-off models
"""
from sqlalchemy import Column, Integer, String, Date, Float, DateTime, ForeignKey, Text, Index
from sqlalchemy.sql import func
from leave_engine.database import Base
import enum


class WorkType(str, enum.Enum):
    WEEKEND = "WEEKEND"
    HOLIDAY = "HOLIDAY"
    EXTENDED_HOURS = "EXTENDED_HOURS"


class WorkLogStatus(str, enum.Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"
    CONSUMED = "CONSUMED"
    EXPIRED = "EXPIRED"


class CompOffRequestStatus(str, enum.Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class WorkLogEntry(Base):
    __tablename__ = "comp_off_work_logs"

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    work_date = Column(Date, nullable=False)
    hours_worked = Column(Float, nullable=False)
    work_type = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String, default=WorkLogStatus.PENDING.value, nullable=False)

    verified_by = Column(Integer, ForeignKey("employees.id"), nullable=True)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    verification_comments = Column(Text, nullable=True)
    # Balance year the earned days were credited to
    credit_year = Column(Integer, nullable=True)
    expires_on = Column(Date, nullable=True)

    days_earned = Column(Float, default=0.0, nullable=False)
    hours_reserved = Column(Float, default=0.0, nullable=False)
    hours_redeemed = Column(Float, default=0.0, nullable=False)
    days_reserved = Column(Float, default=0.0, nullable=False)
    days_redeemed = Column(Float, default=0.0, nullable=False)
    days_expired = Column(Float, default=0.0, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_comp_off_work_logs_status_expiry", "status", "expires_on"),
    )

    @property
    def remaining_hours(self) -> float:
        return max(self.hours_worked - self.hours_reserved - self.hours_redeemed, 0.0)

    @property
    def remaining_days(self) -> float:
        return max(self.days_earned - self.days_reserved - self.days_redeemed - self.days_expired, 0.0)


class CompOffRequest(Base):
    __tablename__ = "comp_off_requests"

    id = Column(Integer, primary_key=True, index=True)
    employee_id = Column(Integer, ForeignKey("employees.id"), nullable=False, index=True)
    work_log_id = Column(Integer, ForeignKey("comp_off_work_logs.id"), nullable=False, index=True)
    leave_request_id = Column(Integer, ForeignKey("leave_requests.id"), nullable=True, unique=True)
    hours_to_redeem = Column(Float, nullable=False)
    days_requested = Column(Float, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    reason = Column(Text, nullable=True)
    status = Column(String, default=CompOffRequestStatus.PENDING.value, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
