import uuid
from datetime import datetime
from decimal import Decimal
from sqlalchemy import String, Integer, Numeric, Boolean, DateTime, JSON, func
from sqlalchemy.orm import Mapped, mapped_column
from luba.database import Base


class DriverShift(Base):
    __tablename__ = "driver_shifts"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    driver_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    end_time: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    total_earnings: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    completed_rides: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # set by the weekly rollover once exported to a report
    archived: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)


class ShiftReport(Base):
    __tablename__ = "shift_reports"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    driver_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    week_key: Mapped[str] = mapped_column(String(10), nullable=False)
    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    rows: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    completed_rides: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_earnings: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))


class RolloverMarker(Base):
    __tablename__ = "rollover_markers"

    driver_id: Mapped[str] = mapped_column(String, primary_key=True)
    last_week_key: Mapped[str] = mapped_column(String(10), nullable=False)
    ran_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
