from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from leave_engine.core.config import settings


def _build_engine(url: str):
    if url.startswith("postgresql"):
        # Dead pooled connections are dropped before checkout
        return create_engine(url, pool_pre_ping=True)
    return create_engine(url, connect_args={"check_same_thread": False})


engine = _build_engine(settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    """
    One session per request. Services commit their own units of work;
    the session is only closed here.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope(db=None):
    """Use the caller's session if given, otherwise open and close a fresh one."""
    if db is not None:
        yield db
        return
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def init_db(bind=None):
    """Create every leave table. Called from the application lifespan and the scripts."""
    from leave_engine.models import (  # noqa: F401
        employee, holiday, leave_policy, leave_balance, accrual,
        leave_request, approval, comp_off, notification,
    )
    Base.metadata.create_all(bind=bind or engine)
