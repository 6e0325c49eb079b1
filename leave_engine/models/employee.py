"""
Employee directory record.

The engine reads employees through EmployeeDirectory; this table is the
directory's persistent form for deployments without an external HRIS.
"""
from sqlalchemy import Column, Integer, String, Date, DateTime, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum
from leave_engine.database import Base


class EmployeeRole(str, enum.Enum):
    """
    Roles relevant to leave approvals.

    - HR_ADMIN: final approver for multi-level chains, may verify any work log
    - MANAGER: approves direct reports
    - EMPLOYEE: self-service
    """
    HR_ADMIN = "HR_ADMIN"
    MANAGER = "MANAGER"
    EMPLOYEE = "EMPLOYEE"


class EmployeeStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    ON_NOTICE = "ON_NOTICE"
    INACTIVE = "INACTIVE"
    TERMINATED = "TERMINATED"


class Region(str, enum.Enum):
    INDIA = "INDIA"
    USA = "USA"
    GLOBAL = "GLOBAL"


class Employee(Base):
    __tablename__ = "employees"

    id = Column(Integer, primary_key=True, index=True)
    full_name = Column(String, nullable=True)
    email = Column(String, unique=True, index=True, nullable=True)

    joining_date = Column(Date, nullable=True)
    department = Column(String, nullable=True)
    designation = Column(String, nullable=True)
    gender = Column(String, nullable=True)  # MALE, FEMALE, OTHER
    marital_status = Column(String, nullable=True)  # SINGLE, MARRIED, ...
    region = Column(String, default=Region.INDIA.value, nullable=False, index=True)
    status = Column(String, default=EmployeeStatus.ACTIVE.value, nullable=False, index=True)
    role = Column(String, default=EmployeeRole.EMPLOYEE.value, nullable=False)

    reporting_manager_id = Column(Integer, ForeignKey("employees.id"), nullable=True, index=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    reporting_manager = relationship("Employee", remote_side=[id])

    def __repr__(self):
        return f"<Employee {self.id} ({self.role}, {self.region})>"

    @property
    def is_active(self) -> bool:
        return self.status == EmployeeStatus.ACTIVE.value

    @property
    def is_hr(self) -> bool:
        return self.role == EmployeeRole.HR_ADMIN.value
