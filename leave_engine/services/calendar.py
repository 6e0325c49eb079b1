from datetime import date
from typing import Optional, Set

from sqlalchemy.orm import Session

from leave_engine.models.employee import Region
from leave_engine.models.holiday import Holiday


def _regions(region: Optional[str]):
    regions = {Region.GLOBAL.value}
    if region:
        regions.add(region.upper())
    return regions


def holidays_between(db: Session, start: date, end: date, region: Optional[str] = None) -> Set[date]:
    """Declared holidays in [start, end] for a region, GLOBAL ones included."""
    rows = db.query(Holiday.date).filter(
        Holiday.date >= start,
        Holiday.date <= end,
        Holiday.region.in_(_regions(region)),
    ).all()
    return {row.date for row in rows}


def is_holiday(db: Session, day: date, region: Optional[str] = None) -> bool:
    return bool(holidays_between(db, day, day, region))


def is_weekend(day: date) -> bool:
    return day.weekday() >= 5
