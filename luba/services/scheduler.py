"""
Weekly shift rollover.

At Sunday 23:59 (report timezone) each driver's shifts from the past week
are exported to a ShiftReport and archived out of the weekly window. The
last rolled-over ISO week is stored per driver, so the rollover runs once
per week even across restarts, and becomes due again on Monday when the
week key changes.
"""
import asyncio
import logging
import time as _time
from collections.abc import Callable
from datetime import datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from luba.config import get_settings
from luba.database import safe_commit
from luba.models.shift import DriverShift, RolloverMarker, ShiftReport

logger = logging.getLogger(__name__)
settings = get_settings()

RESET_WEEKDAY = 6  # Sunday
RESET_TIME = time(23, 59)
WINDOW = timedelta(days=7)


def week_key(local_dt: datetime) -> str:
    year, week, _ = local_dt.isocalendar()
    return f"{year}-W{week:02d}"


def is_rollover_due(local_now: datetime, last_week_key: Optional[str]) -> bool:
    return (
        local_now.weekday() == RESET_WEEKDAY
        and local_now.time() >= RESET_TIME
        and last_week_key != week_key(local_now)
    )


def _report_zone() -> ZoneInfo:
    return ZoneInfo(settings.report_timezone)


async def run_rollover(
    db: AsyncSession,
    driver_id: str,
    now: Optional[datetime] = None,
    tz: Optional[ZoneInfo] = None,
) -> Optional[ShiftReport]:
    """
    Export and archive one driver's week if the rollover is due.
    Returns the report, or None when not due or nothing was worked.
    """
    now = now or datetime.now(timezone.utc)
    local_now = now.astimezone(tz or _report_zone())
    key = week_key(local_now)

    marker = await db.get(RolloverMarker, driver_id, populate_existing=True)
    if not is_rollover_due(local_now, marker.last_week_key if marker else None):
        return None

    result = await db.execute(
        select(DriverShift)
        .where(
            DriverShift.driver_id == driver_id,
            DriverShift.archived.is_(False),
            DriverShift.start_time >= now - WINDOW,
        )
        .order_by(DriverShift.start_time.asc())
        .execution_options(populate_existing=True)
    )
    week_shifts = list(result.scalars().all())

    report = None
    if week_shifts:
        rows = [
            {
                "shift_id": s.id,
                "start_time": s.start_time.isoformat(),
                "completed_rides": s.completed_rides,
                "total_earnings": str(s.total_earnings),
            }
            for s in week_shifts
        ]
        report = ShiftReport(
            driver_id=driver_id,
            week_key=key,
            generated_at=now,
            rows=rows,
            completed_rides=sum(s.completed_rides for s in week_shifts),
            total_earnings=sum((s.total_earnings for s in week_shifts), Decimal("0")),
        )
        db.add(report)
        await db.execute(
            update(DriverShift)
            .where(DriverShift.id.in_([s.id for s in week_shifts]))
            .values(archived=True)
            .execution_options(synchronize_session=False)
        )

    if marker is None:
        db.add(RolloverMarker(driver_id=driver_id, last_week_key=key, ran_at=now))
    else:
        marker.last_week_key = key
        marker.ran_at = now
    await safe_commit(db, f"rolling over {key} for driver={driver_id}")

    logger.info("Rollover %s for driver=%s: %d shifts exported", key, driver_id, len(week_shifts))
    return report


async def rollover_all(
    session_factory: async_sessionmaker[AsyncSession],
    now: Optional[datetime] = None,
) -> int:
    """Run the rollover for every driver with unarchived shifts. Returns reports written."""
    now = now or datetime.now(timezone.utc)
    tz = _report_zone()
    if not is_rollover_due(now.astimezone(tz), None):
        return 0

    async with session_factory() as db:
        driver_ids = (
            await db.execute(
                select(DriverShift.driver_id).where(DriverShift.archived.is_(False)).distinct()
            )
        ).scalars().all()

    written = 0
    for driver_id in driver_ids:
        async with session_factory() as db:
            if await run_rollover(db, driver_id, now=now, tz=tz) is not None:
                written += 1
    return written


class RolloverScheduler:
    """Ticks on every minute boundary and runs ``rollover_all``."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        interval_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._session_factory = session_factory
        self._interval = interval_seconds or settings.rollover_poll_seconds
        self._clock = clock
        self._task: Optional[asyncio.Task] = None

    async def tick(self) -> int:
        return await rollover_all(self._session_factory, now=self._clock())

    async def _run(self) -> None:
        while True:
            # align to the boundary so a tick always lands inside 23:59
            await asyncio.sleep(self._interval - (_time.time() % self._interval))
            try:
                written = await self.tick()
                if written:
                    logger.info("Weekly rollover wrote %d reports", written)
            except Exception as exc:
                logger.error("Weekly rollover tick failed: %s", exc, exc_info=True)

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
