from sqlalchemy import Column, Integer, String, Date, UniqueConstraint
from leave_engine.database import Base


class Holiday(Base):
    __tablename__ = "holidays"

    id = Column(Integer, primary_key=True, index=True)
    date = Column(Date, nullable=False, index=True)
    name = Column(String, nullable=False)
    region = Column(String, default="GLOBAL", nullable=False)  # GLOBAL applies everywhere

    __table_args__ = (
        UniqueConstraint("date", "region", name="uq_holiday_date_region"),
    )
