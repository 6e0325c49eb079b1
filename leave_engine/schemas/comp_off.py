from pydantic import BaseModel, ConfigDict, Field
from datetime import date, datetime
from typing import Optional


class WorkLogCreate(BaseModel):
    work_date: date
    hours_worked: float = Field(gt=0)
    work_type: str
    description: Optional[str] = None


class WorkLogVerification(BaseModel):
    approve: bool
    comments: Optional[str] = None


class WorkLogResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    employee_id: int
    work_date: date
    hours_worked: float
    work_type: str
    status: str
    verified_by: Optional[int] = None
    verified_at: Optional[datetime] = None
    expires_on: Optional[date] = None
    days_earned: float = 0.0
    hours_reserved: float = 0.0
    hours_redeemed: float = 0.0
    days_expired: float = 0.0


class CompOffApplication(BaseModel):
    work_log_id: int
    hours_to_redeem: float = Field(gt=0)
    start_date: date
    end_date: date
    reason: Optional[str] = None


class CompOffRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    employee_id: int
    work_log_id: int
    leave_request_id: Optional[int] = None
    hours_to_redeem: float
    days_requested: float
    start_date: date
    end_date: date
    status: str
