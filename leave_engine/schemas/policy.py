from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import List, Optional


class DesignationTier(BaseModel):
    designations: List[str] = Field(default_factory=list)
    days: float
    # Overrides the policy's max_carry_forward for this tier
    max_carry_forward: Optional[float] = None

    @field_validator("designations")
    @classmethod
    def _upper(cls, v: List[str]) -> List[str]:
        return [d.strip().upper() for d in v]


class PolicyConfig(BaseModel):
    """Immutable snapshot of a LeavePolicy row, safe to cache across sessions."""
    model_config = ConfigDict(from_attributes=True, frozen=True)

    leave_type: str
    region: str
    annual_entitlement: float = 0.0
    accrual_method: str = "NONE"
    accrual_rate: float = 1.0
    rounding: str = "NEAREST"
    designation_tiers: Optional[List[DesignationTier]] = None

    carry_forward_allowed: bool = False
    max_carry_forward: float = 0.0

    max_consecutive_days: Optional[float] = None
    min_advance_notice_days: int = 0
    max_advance_booking_days: int = 365
    backdate_limit_days: int = 30
    min_gap_days: int = 0
    documentation_threshold: Optional[float] = None
    exclude_non_working_days: bool = False

    eligible_genders: Optional[List[str]] = None
    eligible_marital_statuses: Optional[List[str]] = None
    eligible_designations: Optional[List[str]] = None
    min_tenure_months: int = 0

    allow_negative_balance: bool = False
    negative_balance_limit: float = 0.0

    auto_approve: bool = False
    auto_approve_max_days: Optional[float] = None

    comp_off_min_hours: Optional[float] = None
    comp_off_max_hours: Optional[float] = None
    comp_off_half_day_hours: Optional[float] = None
    comp_off_full_day_hours: Optional[float] = None
    comp_off_expiry_months: Optional[int] = None
    comp_off_max_log_age_days: Optional[int] = None

    @field_validator(
        "min_advance_notice_days", "max_advance_booking_days", "backdate_limit_days",
        "min_gap_days", "min_tenure_months", mode="before",
    )
    @classmethod
    def _int_defaults(cls, v, info):
        # NULL columns fall back to the field default
        if v is None:
            return cls.model_fields[info.field_name].default
        return v

    @field_validator(
        "annual_entitlement", "accrual_rate", "max_carry_forward", "negative_balance_limit", mode="before",
    )
    @classmethod
    def _float_defaults(cls, v, info):
        if v is None:
            return cls.model_fields[info.field_name].default
        return v

    @field_validator("carry_forward_allowed", "exclude_non_working_days", "allow_negative_balance", "auto_approve", mode="before")
    @classmethod
    def _bool_defaults(cls, v):
        return bool(v)

    @field_validator("accrual_method", "rounding", mode="before")
    @classmethod
    def _str_defaults(cls, v, info):
        if v is None:
            return cls.model_fields[info.field_name].default
        return v

    @property
    def negative_floor(self) -> float:
        """Lowest value `available` may reach after a debit."""
        return -self.negative_balance_limit if self.allow_negative_balance else 0.0
