from typing import Iterable, List, Optional

from leave_engine.core.config import settings
from leave_engine.core.exceptions import EmployeeNotFound, InactiveEmployee
from leave_engine.models.employee import Employee, EmployeeStatus
from leave_engine.services.base import BaseService


class EmployeeDirectory(BaseService):
    """Read access to employee profiles and the reporting hierarchy."""

    def get_employee(self, employee_id: int) -> Employee:
        employee = self.db.get(Employee, employee_id)
        if employee is None:
            raise EmployeeNotFound(employee_id)
        return employee

    def require_active(self, employee_id: int) -> Employee:
        employee = self.get_employee(employee_id)
        if employee.status != EmployeeStatus.ACTIVE.value:
            raise InactiveEmployee(employee_id, employee.status)
        return employee

    def list_active(self, regions: Optional[Iterable[str]] = None) -> List[Employee]:
        query = self.db.query(Employee).filter(Employee.status == EmployeeStatus.ACTIVE.value)
        if regions is not None:
            query = query.filter(Employee.region.in_([r.upper() for r in regions]))
        return query.order_by(Employee.id).all()

    def get_manager(self, employee: Employee) -> Optional[Employee]:
        """Active reporting manager, or None when unset or no longer active."""
        if not employee.reporting_manager_id:
            return None
        manager = self.db.get(Employee, employee.reporting_manager_id)
        if manager is None or not manager.is_active:
            return None
        return manager

    def find_hr_approver(self, region: Optional[str] = None, exclude_id: Optional[int] = None) -> Optional[Employee]:
        """
        Pick the HR approver: same region first, then any region.
        The requester is never their own HR approver.
        """
        query = self.db.query(Employee).filter(
            Employee.role == settings.hr_approver_role,
            Employee.status == EmployeeStatus.ACTIVE.value,
        )
        if exclude_id is not None:
            query = query.filter(Employee.id != exclude_id)
        if region:
            in_region = query.filter(Employee.region == region).order_by(Employee.id).first()
            if in_region:
                return in_region
        return query.order_by(Employee.id).first()

    def can_verify_for(self, verifier: Employee, employee: Employee) -> bool:
        """Reporting manager or HR may verify an employee's extra work."""
        return employee.reporting_manager_id == verifier.id or verifier.is_hr
