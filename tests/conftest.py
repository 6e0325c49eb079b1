import pytest
import os
from datetime import date
from types import SimpleNamespace
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set env before importing app components
os.environ["APP_ENV"] = "testing"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["SEED_DEFAULT_POLICIES"] = "false"

from leave_engine.database import Base, get_db
from leave_engine.main import app
from leave_engine.core.init_system import seed_default_policies
from leave_engine.models import Employee, EmployeeRole, LeavePolicy
from leave_engine.services import policy_store
from fastapi.testclient import TestClient


@pytest.fixture(scope="function")
def engine():
    """A fresh in-memory database per test; services open side sessions on the same bind."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(engine):
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def clear_policy_cache():
    policy_store.invalidate()
    yield
    policy_store.invalidate()


@pytest.fixture(scope="function")
def policies(db_session):
    """Default policy set (India CL/EL, USA PTO, global types)."""
    seed_default_policies(db_session)
    return db_session


@pytest.fixture(scope="function")
def make_employee(db_session):
    counter = {"n": 0}

    def _make(**kwargs):
        counter["n"] += 1
        defaults = dict(
            full_name=f"Employee {counter['n']}",
            email=f"employee{counter['n']}@example.com",
            joining_date=date(2020, 1, 6),
            designation="ENGINEER",
            gender="FEMALE",
            marital_status="SINGLE",
            region="INDIA",
            status="ACTIVE",
            role=EmployeeRole.EMPLOYEE.value,
        )
        defaults.update(kwargs)
        employee = Employee(**defaults)
        db_session.add(employee)
        db_session.commit()
        return employee
    return _make


@pytest.fixture(scope="function")
def org(make_employee):
    """HR admin, senior manager -> manager -> employee."""
    hr = make_employee(full_name="Hannah HR", role=EmployeeRole.HR_ADMIN.value)
    senior = make_employee(full_name="Sam Senior", role=EmployeeRole.MANAGER.value)
    manager = make_employee(full_name="Maya Manager", role=EmployeeRole.MANAGER.value,
                            reporting_manager_id=senior.id)
    employee = make_employee(full_name="Eli Employee", reporting_manager_id=manager.id)
    return SimpleNamespace(hr=hr, senior=senior, manager=manager, employee=employee)


@pytest.fixture(scope="function")
def make_policy(db_session):
    def _make(**kwargs):
        defaults = dict(region="GLOBAL", accrual_method="NONE")
        defaults.update(kwargs)
        policy = LeavePolicy(**defaults)
        db_session.add(policy)
        db_session.commit()
        policy_store.invalidate()
        return policy
    return _make


@pytest.fixture(scope="function")
def client(db_session):
    """Get a TestClient that uses the test database session via dependency override."""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
