from datetime import datetime
from sqlalchemy import String, Boolean, DateTime, func
from sqlalchemy.orm import Mapped, mapped_column
from luba.database import Base


class DriverProfile(Base):
    __tablename__ = "driver_profiles"

    driver_id: Mapped[str] = mapped_column(String, primary_key=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone_number: Mapped[str] = mapped_column(String(20), nullable=False)
    address: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    # not_applied | pending | approved
    approval_status: Mapped[str] = mapped_column(String(20), nullable=False, default="not_applied", index=True)
    driver_image_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    license_photo_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    car_image_url: Mapped[str | None] = mapped_column(String(512), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class DriverPresence(Base):
    """Per-driver online-status record; holds the active shift across restarts."""

    __tablename__ = "driver_presence"

    driver_id: Mapped[str] = mapped_column(String, primary_key=True)
    is_online: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    active_shift_id: Mapped[str | None] = mapped_column(String, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
