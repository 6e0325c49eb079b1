from sqlalchemy import Column, Integer, String, Float, Boolean, JSON, DateTime, UniqueConstraint
from sqlalchemy.sql import func
from leave_engine.database import Base
import enum


class LeaveType(str, enum.Enum):
    CASUAL_LEAVE = "CASUAL_LEAVE"
    EARNED_LEAVE = "EARNED_LEAVE"
    SICK_LEAVE = "SICK_LEAVE"
    MATERNITY_LEAVE = "MATERNITY_LEAVE"
    PATERNITY_LEAVE = "PATERNITY_LEAVE"
    COMPENSATORY_OFF = "COMPENSATORY_OFF"
    BEREAVEMENT_LEAVE = "BEREAVEMENT_LEAVE"
    MARRIAGE_LEAVE = "MARRIAGE_LEAVE"
    LEAVE_WITHOUT_PAY = "LEAVE_WITHOUT_PAY"
    PTO = "PTO"


class AccrualMethod(str, enum.Enum):
    MONTHLY = "MONTHLY"  # pro-rated monthly grant
    ANNUAL = "ANNUAL"    # lump allocation by designation
    NONE = "NONE"        # granted elsewhere (comp-off) or unpaid


class RoundingMethod(str, enum.Enum):
    NEAREST = "NEAREST"
    HALF_DAY = "HALF_DAY"
    UP = "UP"
    DOWN = "DOWN"


class LeavePolicy(Base):
    """
    Rule set for one leave type in one region. Region GLOBAL is the fallback
    when no region-specific row exists.
    """
    __tablename__ = "leave_policies"

    id = Column(Integer, primary_key=True, index=True)
    leave_type = Column(String, nullable=False, index=True)
    region = Column(String, default="GLOBAL", nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)

    # Entitlement & accrual
    annual_entitlement = Column(Float, default=0.0)
    accrual_method = Column(String, default=AccrualMethod.NONE.value, nullable=False)
    accrual_rate = Column(Float, default=1.0)  # days per month for MONTHLY
    rounding = Column(String, default=RoundingMethod.NEAREST.value)
    # [{"designations": ["VP", "SVP"], "days": 20}, {"designations": [], "days": 15}]
    # An empty designation list marks the default tier.
    designation_tiers = Column(JSON, nullable=True)

    # Year end
    carry_forward_allowed = Column(Boolean, default=False)
    max_carry_forward = Column(Float, default=0.0)

    # Request rules
    max_consecutive_days = Column(Float, nullable=True)
    min_advance_notice_days = Column(Integer, default=0)
    max_advance_booking_days = Column(Integer, default=365)
    backdate_limit_days = Column(Integer, default=30)
    min_gap_days = Column(Integer, default=0)
    documentation_threshold = Column(Float, nullable=True)
    exclude_non_working_days = Column(Boolean, default=False)

    # Eligibility filters (null = no restriction)
    eligible_genders = Column(JSON, nullable=True)
    eligible_marital_statuses = Column(JSON, nullable=True)
    eligible_designations = Column(JSON, nullable=True)
    min_tenure_months = Column(Integer, default=0)

    # Balance rules
    allow_negative_balance = Column(Boolean, default=False)
    negative_balance_limit = Column(Float, default=0.0)

    # Auto approval whitelist
    auto_approve = Column(Boolean, default=False)
    auto_approve_max_days = Column(Float, nullable=True)

    # Comp-off rules (COMPENSATORY_OFF only)
    comp_off_min_hours = Column(Float, nullable=True)
    comp_off_max_hours = Column(Float, nullable=True)
    comp_off_half_day_hours = Column(Float, nullable=True)
    comp_off_full_day_hours = Column(Float, nullable=True)
    comp_off_expiry_months = Column(Integer, nullable=True)
    comp_off_max_log_age_days = Column(Integer, nullable=True)

    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("leave_type", "region", name="uq_leave_policy_type_region"),
    )
