"""
Integration tests for shifts, earnings and the weekly rollover.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from luba.errors import NetworkError, NotFound, ValidationError
from luba.models.shift import DriverShift, RolloverMarker
from luba.services import scheduler, shifts

SAST = ZoneInfo("Africa/Johannesburg")
# Sunday 18 Oct 2026, 23:59 in Johannesburg
ROLLOVER_AT = datetime(2026, 10, 18, 23, 59, 10, tzinfo=SAST).astimezone(timezone.utc)


async def _worked_shift(db, redis, driver_id, start, rides):
    shift = await shifts.start_shift(db, redis, driver_id, now=start)
    for price in rides:
        await shifts.record_completion(db, shift.id, Decimal(price))
    await shifts.end_shift(db, redis, driver_id, shift.id, now=start + timedelta(hours=8))
    return shift


@pytest.mark.asyncio
class TestPresence:
    async def test_start_shift_is_idempotent(self, db, redis):
        first = await shifts.start_shift(db, redis, "drv-1")
        second = await shifts.start_shift(db, redis, "drv-1")
        assert first.id == second.id
        assert await shifts.is_online(db, "drv-1")

    async def test_go_offline_closes_shift(self, db, redis):
        shift = await shifts.start_shift(db, redis, "drv-1")
        closed = await shifts.go_offline(db, redis, "drv-1")
        assert closed.id == shift.id
        assert closed.end_time is not None
        assert not await shifts.is_online(db, "drv-1")
        assert await shifts.active_shift(db, "drv-1") is None

    async def test_go_offline_without_shift(self, db, redis):
        assert await shifts.go_offline(db, redis, "drv-1") is None

    async def test_end_someone_elses_shift(self, db, redis):
        shift = await shifts.start_shift(db, redis, "drv-1")
        with pytest.raises(NotFound):
            await shifts.end_shift(db, redis, "drv-2", shift.id)

    async def test_end_shift_keeps_first_end_time(self, db, redis):
        start = datetime(2026, 10, 12, 8, 0, tzinfo=timezone.utc)
        shift = await shifts.start_shift(db, redis, "drv-1", now=start)
        await shifts.end_shift(db, redis, "drv-1", shift.id, now=start + timedelta(hours=2))
        again = await shifts.end_shift(db, redis, "drv-1", shift.id, now=start + timedelta(hours=5))
        assert again.end_time.replace(tzinfo=None) == (start + timedelta(hours=2)).replace(tzinfo=None)


@pytest.mark.asyncio
class TestEarnings:
    async def test_concurrent_completions_all_counted(self, redis, session_factory):
        async with session_factory() as s:
            shift = await shifts.start_shift(s, redis, "drv-1")

        async def complete_one():
            async with session_factory() as s:
                return await shifts.record_completion(s, shift.id, Decimal("15"))

        results = await asyncio.gather(*(complete_one() for _ in range(10)))
        assert all(results)

        async with session_factory() as s:
            fresh = await s.get(DriverShift, shift.id)
        assert fresh.completed_rides == 10
        assert fresh.total_earnings == Decimal("150.00")

    async def test_negative_price_rejected(self, db, redis):
        shift = await shifts.start_shift(db, redis, "drv-1")
        with pytest.raises(ValidationError):
            await shifts.record_completion(db, shift.id, Decimal("-1"))

    async def test_unknown_shift(self, db):
        assert await shifts.record_completion(db, "missing", Decimal("10")) is False

    async def test_weekly_window(self, db, redis):
        now = datetime(2026, 10, 16, 12, 0, tzinfo=timezone.utc)
        await _worked_shift(db, redis, "drv-1", now - timedelta(days=10), ["100"])
        await _worked_shift(db, redis, "drv-1", now - timedelta(days=2), ["150", "50"])
        await _worked_shift(db, redis, "drv-2", now - timedelta(days=1), ["999"])

        summary = await shifts.weekly_summary(db, "drv-1", now=now)
        assert summary.shifts == 1
        assert summary.rides == 2
        assert summary.earnings == Decimal("200.00")

    async def test_empty_week(self, db):
        summary = await shifts.weekly_summary(db, "nobody")
        assert (summary.rides, summary.earnings, summary.shifts) == (0, Decimal("0.00"), 0)


@pytest.mark.asyncio
class TestRollover:
    async def test_exports_and_archives_once(self, db, redis, session_factory):
        await _worked_shift(db, redis, "drv-1", ROLLOVER_AT - timedelta(days=3), ["150"])
        await _worked_shift(db, redis, "drv-1", ROLLOVER_AT - timedelta(days=1), ["80", "20"])

        report = await scheduler.run_rollover(db, "drv-1", now=ROLLOVER_AT)
        assert report is not None
        assert report.week_key == "2026-W42"
        assert report.completed_rides == 3
        assert report.total_earnings == Decimal("250")
        assert len(report.rows) == 2

        # archived shifts leave the weekly window
        summary = await shifts.weekly_summary(db, "drv-1", now=ROLLOVER_AT)
        assert summary.shifts == 0

        # a second tick in the same minute, or after a restart, does nothing
        assert await scheduler.run_rollover(db, "drv-1", now=ROLLOVER_AT + timedelta(seconds=30)) is None
        async with session_factory() as fresh:
            assert await scheduler.run_rollover(fresh, "drv-1", now=ROLLOVER_AT) is None
            marker = await fresh.get(RolloverMarker, "drv-1")
        assert marker.last_week_key == "2026-W42"

        reports = await shifts.list_reports(db, "drv-1")
        assert len(reports) == 1

    async def test_not_due_outside_window(self, db, redis):
        await _worked_shift(db, redis, "drv-1", ROLLOVER_AT - timedelta(days=1), ["150"])
        assert await scheduler.run_rollover(db, "drv-1", now=ROLLOVER_AT - timedelta(minutes=5)) is None
        assert await db.get(RolloverMarker, "drv-1") is None

    async def test_runs_again_next_week(self, db, redis):
        await _worked_shift(db, redis, "drv-1", ROLLOVER_AT - timedelta(days=1), ["150"])
        assert await scheduler.run_rollover(db, "drv-1", now=ROLLOVER_AT) is not None

        next_week = ROLLOVER_AT + timedelta(days=7)
        await _worked_shift(db, redis, "drv-1", next_week - timedelta(days=2), ["60"])
        report = await scheduler.run_rollover(db, "drv-1", now=next_week)
        assert report.week_key == "2026-W43"
        assert report.total_earnings == Decimal("60")

    async def test_rollover_all_and_scheduler_tick(self, db, redis, session_factory):
        await _worked_shift(db, redis, "drv-1", ROLLOVER_AT - timedelta(days=1), ["150"])
        await _worked_shift(db, redis, "drv-2", ROLLOVER_AT - timedelta(days=2), ["90"])

        assert await scheduler.rollover_all(session_factory, now=ROLLOVER_AT - timedelta(hours=1)) == 0

        ticker = scheduler.RolloverScheduler(session_factory, clock=lambda: ROLLOVER_AT)
        assert await ticker.tick() == 2
        assert await ticker.tick() == 0

        remaining = (
            await db.execute(select(DriverShift).where(DriverShift.archived.is_(False)))
        ).scalars().all()
        assert remaining == []

    async def test_scheduler_start_stop(self, session_factory):
        ticker = scheduler.RolloverScheduler(session_factory, interval_seconds=3600)
        ticker.start()
        await asyncio.sleep(0)
        await ticker.stop()
        assert ticker._task is None


async def _failing_commit(self):
    raise OperationalError("COMMIT", {}, Exception("database is locked"))


@pytest.mark.asyncio
class TestStoreFailures:
    async def test_start_shift_commit_failure_is_network_error(self, db, redis, session_factory, monkeypatch):
        monkeypatch.setattr(AsyncSession, "commit", _failing_commit)
        with pytest.raises(NetworkError):
            await shifts.start_shift(db, redis, "drv-1")

        # rolled back: no shift, driver still offline
        async with session_factory() as fresh:
            rows = (await fresh.execute(select(DriverShift))).scalars().all()
            assert rows == []
            assert not await shifts.is_online(fresh, "drv-1")

    async def test_record_completion_commit_failure_is_network_error(self, db, redis, session_factory, monkeypatch):
        shift = await shifts.start_shift(db, redis, "drv-1")
        monkeypatch.setattr(AsyncSession, "commit", _failing_commit)
        with pytest.raises(NetworkError):
            await shifts.record_completion(db, shift.id, Decimal("90"))

        async with session_factory() as fresh:
            stored = await fresh.get(DriverShift, shift.id)
        assert stored.completed_rides == 0
        assert stored.total_earnings == Decimal("0")
