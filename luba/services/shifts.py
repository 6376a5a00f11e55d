"""
Driver shifts and earnings.

A shift opens when a driver goes online and closes when they go offline.
Completed rides add to the active shift with a single UPDATE so concurrent
completions never lose an increment.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

import redis.asyncio as aioredis
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from luba.database import safe_commit
from luba.errors import NotFound, ValidationError
from luba.models.driver import DriverPresence
from luba.models.shift import DriverShift, ShiftReport
from luba.redis_client import publish_presence_change

logger = logging.getLogger(__name__)

WEEK = timedelta(days=7)


@dataclass
class WeeklySummary:
    rides: int
    earnings: Decimal
    shifts: int


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def get_presence(db: AsyncSession, driver_id: str) -> Optional[DriverPresence]:
    return await db.get(DriverPresence, driver_id, populate_existing=True)


async def is_online(db: AsyncSession, driver_id: str) -> bool:
    presence = await get_presence(db, driver_id)
    return bool(presence and presence.is_online)


async def active_shift(db: AsyncSession, driver_id: str) -> Optional[DriverShift]:
    presence = await get_presence(db, driver_id)
    if presence is None or not presence.active_shift_id:
        return None
    shift = await db.get(DriverShift, presence.active_shift_id, populate_existing=True)
    if shift is None or shift.end_time is not None:
        return None
    return shift


async def start_shift(
    db: AsyncSession,
    redis: aioredis.Redis,
    driver_id: str,
    now: Optional[datetime] = None,
) -> DriverShift:
    """Go online. Returns the already open shift if there is one."""
    existing = await active_shift(db, driver_id)
    if existing is not None:
        return existing

    shift = DriverShift(
        driver_id=driver_id,
        start_time=now or _utcnow(),
        total_earnings=Decimal("0"),
        completed_rides=0,
    )
    db.add(shift)
    await db.flush()

    presence = await get_presence(db, driver_id)
    if presence is None:
        presence = DriverPresence(driver_id=driver_id)
        db.add(presence)
    presence.is_online = True
    presence.active_shift_id = shift.id
    await safe_commit(db, f"starting shift for driver={driver_id}")

    logger.info("Driver=%s online, shift=%s", driver_id, shift.id)
    await publish_presence_change(redis, driver_id, True)
    return shift


async def end_shift(
    db: AsyncSession,
    redis: aioredis.Redis,
    driver_id: str,
    shift_id: str,
    now: Optional[datetime] = None,
) -> DriverShift:
    """Stamp end_time and take the driver offline. The shift is kept."""
    shift = await db.get(DriverShift, shift_id, populate_existing=True)
    if shift is None or shift.driver_id != driver_id:
        raise NotFound("Shift not found.")
    if shift.end_time is None:
        shift.end_time = now or _utcnow()

    presence = await get_presence(db, driver_id)
    if presence is not None and presence.active_shift_id == shift_id:
        presence.is_online = False
        presence.active_shift_id = None
    await safe_commit(db, f"closing shift={shift_id}")

    logger.info("Driver=%s offline, shift=%s closed", driver_id, shift_id)
    await publish_presence_change(redis, driver_id, False)
    return shift


async def go_offline(
    db: AsyncSession,
    redis: aioredis.Redis,
    driver_id: str,
    now: Optional[datetime] = None,
) -> Optional[DriverShift]:
    shift = await active_shift(db, driver_id)
    if shift is not None:
        return await end_shift(db, redis, driver_id, shift.id, now=now)

    presence = await get_presence(db, driver_id)
    if presence is not None and presence.is_online:
        presence.is_online = False
        presence.active_shift_id = None
        await safe_commit(db, f"taking driver={driver_id} offline")
        await publish_presence_change(redis, driver_id, False)
    return None


async def record_completion(
    db: AsyncSession,
    shift_id: str,
    ride_price: Decimal,
    *,
    commit: bool = True,
) -> bool:
    """
    total_earnings += ride_price, completed_rides += 1, evaluated by the
    database. Returns False if the shift does not exist.
    """
    ride_price = Decimal(str(ride_price))
    if ride_price < 0:
        raise ValidationError("Ride price must not be negative.")
    result = await db.execute(
        update(DriverShift)
        .where(DriverShift.id == shift_id)
        .values(
            total_earnings=DriverShift.total_earnings + ride_price,
            completed_rides=DriverShift.completed_rides + 1,
        )
        .execution_options(synchronize_session=False)
    )
    if commit:
        await safe_commit(db, f"crediting shift={shift_id}")
    return result.rowcount == 1


async def weekly_summary(
    db: AsyncSession,
    driver_id: str,
    now: Optional[datetime] = None,
) -> WeeklySummary:
    """Shifts started in the last 7 days that the rollover has not archived."""
    cutoff = (now or _utcnow()) - WEEK
    row = (
        await db.execute(
            select(
                func.count(DriverShift.id),
                func.coalesce(func.sum(DriverShift.completed_rides), 0),
                func.coalesce(func.sum(DriverShift.total_earnings), 0),
            ).where(
                DriverShift.driver_id == driver_id,
                DriverShift.start_time >= cutoff,
                DriverShift.archived.is_(False),
            )
        )
    ).one()
    shifts, rides, earnings = row
    return WeeklySummary(
        rides=int(rides),
        earnings=Decimal(str(earnings)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP),
        shifts=int(shifts),
    )


async def list_shifts(db: AsyncSession, driver_id: str) -> list[DriverShift]:
    result = await db.execute(
        select(DriverShift)
        .where(DriverShift.driver_id == driver_id)
        .order_by(DriverShift.start_time.desc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def list_reports(db: AsyncSession, driver_id: str) -> list[ShiftReport]:
    result = await db.execute(
        select(ShiftReport)
        .where(ShiftReport.driver_id == driver_id)
        .order_by(ShiftReport.generated_at.desc())
    )
    return list(result.scalars().all())
