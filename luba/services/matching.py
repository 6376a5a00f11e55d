"""
Driver matching surface.

Flow:
  1. Approved, online drivers see every pending request (snapshot or live feed)
  2. accept  -> conditional pending->accepted; losing a race raises AlreadyTaken
  3. decline -> pending->declined (customer sees driver_declined); no re-queue
  4. complete -> accepted->completed and the active shift's earnings, in one transaction
  5. resync  -> retry the customer's copy after a partial write (207)
"""
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from typing import Optional

import redis.asyncio as aioredis
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from luba.errors import NotApproved, NotFound
from luba.models.driver import DriverProfile
from luba.models.ride import RideRequest
from luba.redis_client import DISPATCH_CHANNEL, presence_channel
from luba.schemas.schemas import ApprovalStatus, RideStatus
from luba.services import lifecycle, shifts

logger = logging.getLogger(__name__)

AWAITING_APPROVAL = "Your driver application is being reviewed. Please wait for approval."
_CLOSED = (RideStatus.completed.value, RideStatus.declined.value)


@dataclass
class CompletionResult:
    transition: lifecycle.TransitionResult
    shift_id: Optional[str]


async def ensure_approved(db: AsyncSession, driver_id: str) -> DriverProfile:
    profile = await db.get(DriverProfile, driver_id, populate_existing=True)
    if profile is None or profile.approval_status != ApprovalStatus.approved.value or not profile.active:
        raise NotApproved(AWAITING_APPROVAL)
    return profile


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------

async def list_pending(db: AsyncSession, driver_online: bool) -> list[RideRequest]:
    """Pending requests, oldest first. Always empty for an offline driver."""
    if not driver_online:
        return []
    result = await db.execute(
        select(RideRequest)
        .where(RideRequest.status == RideStatus.pending.value)
        .order_by(RideRequest.booking_time.asc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def list_assigned(db: AsyncSession, driver_id: str) -> list[RideRequest]:
    result = await db.execute(
        select(RideRequest)
        .where(RideRequest.driver_id == driver_id, RideRequest.status.not_in(_CLOSED))
        .order_by(RideRequest.accepted_at.asc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def pending_for_driver(db: AsyncSession, driver_id: str) -> list[RideRequest]:
    await ensure_approved(db, driver_id)
    return await list_pending(db, await shifts.is_online(db, driver_id))


# ---------------------------------------------------------------------------
# Live feeds
# ---------------------------------------------------------------------------

async def _watch(
    session_factory: async_sessionmaker[AsyncSession],
    redis: aioredis.Redis,
    driver_id: str,
    snapshot,
) -> AsyncIterator[list[RideRequest]]:
    async with session_factory() as db:
        await ensure_approved(db, driver_id)

    # subscribe before the first read so no change slips in between
    pubsub = redis.pubsub()
    await pubsub.subscribe(DISPATCH_CHANNEL, presence_channel(driver_id))
    try:
        async with session_factory() as db:
            rides = await snapshot(db, driver_id)
        yield rides
        async for message in pubsub.listen():
            if message["type"] != "message":
                continue
            async with session_factory() as db:
                rides = await snapshot(db, driver_id)
            yield rides
    finally:
        await pubsub.unsubscribe()
        await pubsub.aclose()
        logger.debug("Driver=%s feed closed", driver_id)


async def _pending_snapshot(db: AsyncSession, driver_id: str) -> list[RideRequest]:
    return await list_pending(db, await shifts.is_online(db, driver_id))


def watch_pending(
    session_factory: async_sessionmaker[AsyncSession],
    redis: aioredis.Redis,
    driver_id: str,
) -> AsyncIterator[list[RideRequest]]:
    """
    Yields the full pending list now and again after every dispatch or
    presence change. Each delivery replaces the previous one. Closing the
    iterator unsubscribes.
    """
    return _watch(session_factory, redis, driver_id, _pending_snapshot)


def watch_assigned(
    session_factory: async_sessionmaker[AsyncSession],
    redis: aioredis.Redis,
    driver_id: str,
) -> AsyncIterator[list[RideRequest]]:
    return _watch(session_factory, redis, driver_id, list_assigned)


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------

async def accept(
    db: AsyncSession,
    redis: aioredis.Redis,
    request_id: str,
    driver_id: str,
    driver_name: str,
) -> lifecycle.TransitionResult:
    await ensure_approved(db, driver_id)
    return await lifecycle.transition(
        db,
        redis,
        request_id,
        RideStatus.accepted,
        actor=driver_id,
        expected_status=RideStatus.pending,
        driver_id=driver_id,
        driver_name=driver_name,
    )


async def decline(
    db: AsyncSession,
    redis: aioredis.Redis,
    request_id: str,
    driver_id: str,
) -> lifecycle.TransitionResult:
    await ensure_approved(db, driver_id)
    return await lifecycle.transition(
        db,
        redis,
        request_id,
        RideStatus.declined,
        actor=driver_id,
        expected_status=RideStatus.pending,
        declined_by=driver_id,
    )


async def complete(
    db: AsyncSession,
    redis: aioredis.Redis,
    request_id: str,
    driver_id: str,
) -> CompletionResult:
    await ensure_approved(db, driver_id)
    result = await lifecycle.apply_transition(
        db,
        request_id,
        RideStatus.completed,
        actor=driver_id,
        expected_status=RideStatus.accepted,
        expected_driver_id=driver_id,
    )

    shift = await shifts.active_shift(db, driver_id)
    shift_id = None
    if shift is None:
        logger.warning("Driver=%s completed request=%s with no active shift", driver_id, request_id)
    elif await shifts.record_completion(db, shift.id, result.ride.price, commit=False):
        shift_id = shift.id

    await lifecycle.commit_transition(db, redis, result)
    return CompletionResult(transition=result, shift_id=shift_id)


async def resync(
    db: AsyncSession,
    redis: aioredis.Redis,
    request_id: str,
    driver_id: str,
) -> lifecycle.TransitionResult:
    """
    Retry mirroring a request the driver acted on after a partial write.
    Raises PartialWriteDivergence while the customer's copy is still missing.
    """
    await ensure_approved(db, driver_id)
    ride = await lifecycle.get_request(db, request_id)
    if driver_id not in (ride.driver_id, ride.declined_by):
        raise NotFound("Ride request not found.")
    result = await lifecycle.resync(db, redis, request_id)
    result.raise_for_divergence()
    return result
