"""
Request-scoped dependencies.

Authentication is handled upstream (API gateway / SSO); the gateway forwards
the authenticated employee id in the X-Employee-ID header.
"""
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from leave_engine.core.exceptions import NotAuthorizedApprover
from leave_engine.database import get_db
from leave_engine.models.employee import Employee
from leave_engine.services.directory import EmployeeDirectory


def get_actor_id(x_employee_id: Optional[str] = Header(default=None)) -> int:
    if not x_employee_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing X-Employee-ID header")
    try:
        return int(x_employee_id)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="X-Employee-ID must be an integer")


def get_current_employee(actor_id: int = Depends(get_actor_id), db: Session = Depends(get_db)) -> Employee:
    return EmployeeDirectory(db).require_active(actor_id)


def require_hr(employee: Employee = Depends(get_current_employee)) -> Employee:
    if not employee.is_hr:
        raise NotAuthorizedApprover("HR role required", details={"employee_id": employee.id})
    return employee
