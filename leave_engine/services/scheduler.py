"""
Scheduler entry points.

Each job runs in its own session (or a caller-supplied one, for the admin
HTTP triggers and tests) with a job_id set on the logging context, and
returns a BatchResult. External schedulers (cron, Celery beat, k8s
CronJob) call these functions directly.
"""
import logging
import uuid
from contextlib import contextmanager
from datetime import date
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from leave_engine.core.logging import job_id_var
from leave_engine.database import session_scope
from leave_engine.schemas.accrual import BatchResult
from leave_engine.services.accrual import AccrualEngine
from leave_engine.services.comp_off import CompOffService

logger = logging.getLogger(__name__)


@contextmanager
def _job(name: str, db: Optional[Session]):
    token = job_id_var.set(f"{name}-{uuid.uuid4().hex[:8]}")
    logger.info(f"Job {name} started")
    try:
        with session_scope(db) as session:
            yield session
    except Exception:
        logger.exception(f"Job {name} aborted")
        raise
    finally:
        logger.info(f"Job {name} finished")
        job_id_var.reset(token)


def run_monthly_accrual(year: int, month: int, regions: Optional[Iterable[str]] = None,
                        db: Optional[Session] = None) -> BatchResult:
    if not 1 <= month <= 12:
        raise ValueError(f"Month must be 1-12, got {month}")
    with _job("monthly_accrual", db) as session:
        return AccrualEngine(session).run_monthly(year, month, regions)


def run_annual_allocation(year: int, regions: Optional[Iterable[str]] = None,
                          db: Optional[Session] = None) -> BatchResult:
    with _job("annual_allocation", db) as session:
        return AccrualEngine(session).run_annual(year, regions)


def run_year_end_carry_forward(from_year: int, regions: Optional[Iterable[str]] = None,
                               db: Optional[Session] = None) -> BatchResult:
    with _job("year_end", db) as session:
        return AccrualEngine(session).run_year_end(from_year, regions)


def run_comp_off_expiry(as_of: Optional[date] = None, db: Optional[Session] = None) -> BatchResult:
    with _job("comp_off_expiry", db) as session:
        return CompOffService(session).expire_work_logs(as_of)
