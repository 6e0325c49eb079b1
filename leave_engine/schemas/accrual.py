from pydantic import BaseModel, Field
from datetime import date
from typing import Any, Dict, List, Optional


class AccrualResult(BaseModel):
    employee_id: int
    year: int
    month: int
    leave_type: str
    amount_granted: float
    pro_rated: bool = False
    reason: str
    already_processed: bool = False


class YearEndResult(BaseModel):
    employee_id: int
    leave_type: str
    from_year: int
    mode: str
    available_at_close: float
    carried_forward: float
    forfeited: float
    already_processed: bool = False


class EmployeeJobResult(BaseModel):
    """Outcome of a batch job for one employee (or one work log)."""
    employee_id: int
    success: bool
    detail: List[Dict[str, Any]] = Field(default_factory=list)
    error: Optional[str] = None
    error_code: Optional[str] = None


class BatchResult(BaseModel):
    job: str
    results: List[EmployeeJobResult] = Field(default_factory=list)
    success_count: int = 0
    failure_count: int = 0

    def record(self, result: EmployeeJobResult) -> None:
        self.results.append(result)
        if result.success:
            self.success_count += 1
        else:
            self.failure_count += 1


class MonthlyAccrualTrigger(BaseModel):
    year: int
    month: int = Field(ge=1, le=12)
    regions: Optional[List[str]] = None


class AnnualAllocationTrigger(BaseModel):
    year: int
    regions: Optional[List[str]] = None


class YearEndTrigger(BaseModel):
    from_year: int
    regions: Optional[List[str]] = None


class CompOffExpiryTrigger(BaseModel):
    as_of: Optional[date] = None
