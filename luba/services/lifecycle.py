"""
Ride lifecycle engine.

A ride request is stored twice:
  - RideRequest   the shared dispatch-queue copy drivers act on
  - CustomerRide  the customer's private copy (history, rebooking)

Creation and every transition write both copies in one transaction.
Transitions are conditional on the status and version the caller observed,
so two drivers racing for the same request cannot both win.

    pending ──► accepted ──► completed
       │
       └──► declined            (private copy: driver_declined)
"""
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional

import redis.asyncio as aioredis
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from luba.database import safe_commit
from luba.errors import (
    AlreadyTaken,
    InvalidTransition,
    NotFound,
    PartialWriteDivergence,
    ValidationError,
)
from luba.models.ride import CustomerRide, RideRequest
from luba.redis_client import publish_ride_change
from luba.schemas.schemas import (
    Coordinates,
    CustomerRideStatus,
    PaymentMethodEnum,
    RideStatus,
    VehicleEnum,
)
from luba.services import pricing

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[RideStatus, frozenset[RideStatus]] = {
    RideStatus.pending: frozenset({RideStatus.accepted, RideStatus.declined}),
    RideStatus.accepted: frozenset({RideStatus.completed}),
    RideStatus.completed: frozenset(),
    RideStatus.declined: frozenset(),
}

_STAMPED_AT = {
    RideStatus.accepted: "accepted_at",
    RideStatus.completed: "completed_at",
    RideStatus.declined: "declined_at",
}

# fields a transition may set besides status and its timestamp
_ACTOR_FIELDS = frozenset({"driver_id", "driver_name", "declined_by"})


@dataclass
class TransitionResult:
    ride: RideRequest
    previous_status: RideStatus
    partially_applied: bool = False

    def raise_for_divergence(self) -> None:
        if self.partially_applied:
            raise PartialWriteDivergence(
                "The request was updated but the customer's copy could not be.",
                request_id=self.ride.id,
            )


def is_valid_transition(current: RideStatus, target: RideStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def parse_status(value: str | RideStatus) -> RideStatus:
    try:
        return RideStatus(value)
    except ValueError:
        raise ValidationError(f"Unknown ride status: {value!r}")


def _rejection(current: RideStatus, target: RideStatus) -> InvalidTransition:
    if target is RideStatus.accepted and current in (RideStatus.accepted, RideStatus.completed):
        return AlreadyTaken("This request has already been taken by another driver.", current.value)
    if current is RideStatus.declined:
        return InvalidTransition("This request was declined and is no longer available.", current.value)
    return InvalidTransition(
        f"Cannot move a {current.value} request to {target.value}.", current.value
    )


async def _load_shared(db: AsyncSession, request_id: str) -> Optional[RideRequest]:
    result = await db.execute(
        select(RideRequest)
        .where(RideRequest.id == request_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------

async def create_request(
    db: AsyncSession,
    redis: aioredis.Redis,
    customer_id: str,
    pickup: str,
    dropoff: str,
    vehicle: str,
    price: Decimal,
    *,
    pickup_coords: Optional[Coordinates] = None,
    dropoff_coords: Optional[Coordinates] = None,
    payment_method: str = PaymentMethodEnum.cash.value,
    help_with_loading: bool = False,
    scheduled_for: Optional[datetime] = None,
) -> RideRequest:
    """Create the private copy and the dispatch-queue copy, cross-linked."""
    pickup = (pickup or "").strip()
    dropoff = (dropoff or "").strip()
    if not pickup or not dropoff:
        raise ValidationError("Pickup and dropoff addresses are required.")
    try:
        vehicle = VehicleEnum(vehicle).value
        payment_method = PaymentMethodEnum(payment_method).value
    except ValueError as exc:
        raise ValidationError(str(exc))
    try:
        price = Decimal(str(price))
    except InvalidOperation:
        raise ValidationError("Price must be a number.")
    if price <= 0:
        raise ValidationError("Price must be positive.")

    now = datetime.now(timezone.utc)
    request_id = str(uuid.uuid4())
    booking_id = str(uuid.uuid4())
    common = dict(
        customer_id=customer_id,
        pickup=pickup,
        dropoff=dropoff,
        pickup_lat=pickup_coords.lat if pickup_coords else None,
        pickup_lng=pickup_coords.lng if pickup_coords else None,
        dropoff_lat=dropoff_coords.lat if dropoff_coords else None,
        dropoff_lng=dropoff_coords.lng if dropoff_coords else None,
        vehicle=vehicle,
        price=price,
        payment_method=payment_method,
        help_with_loading=help_with_loading,
        scheduled_for=scheduled_for,
        booking_time=now,
    )
    private = CustomerRide(
        id=booking_id,
        request_id=request_id,
        status=CustomerRideStatus.pending.value,
        synced_version=1,
        **common,
    )
    shared = RideRequest(
        id=request_id,
        customer_booking_id=booking_id,
        status=RideStatus.pending.value,
        version=1,
        **common,
    )
    db.add_all([private, shared])
    await safe_commit(db, f"creating request for customer={customer_id}")

    logger.info("Created request=%s booking=%s vehicle=%s price=%s", request_id, booking_id, vehicle, price)
    await publish_ride_change(redis, request_id, shared.status)
    return shared


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

async def _mirror(db: AsyncSession, ride: RideRequest) -> bool:
    """
    Copy the shared copy's status and driver fields onto the private copy.
    Guarded by synced_version so replaying an already applied version is a
    no-op. Returns False when the private copy no longer exists.
    """
    if not ride.customer_booking_id:
        return False
    result = await db.execute(
        update(CustomerRide)
        .where(
            CustomerRide.id == ride.customer_booking_id,
            CustomerRide.synced_version < ride.version,
        )
        .values(
            status=CustomerRideStatus.mirror_of(RideStatus(ride.status)).value,
            synced_version=ride.version,
            driver_id=ride.driver_id,
            driver_name=ride.driver_name,
            accepted_at=ride.accepted_at,
            completed_at=ride.completed_at,
            declined_at=ride.declined_at,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        return True
    exists = await db.scalar(
        select(CustomerRide.id).where(CustomerRide.id == ride.customer_booking_id)
    )
    return exists is not None


async def apply_transition(
    db: AsyncSession,
    request_id: str,
    new_status: str | RideStatus,
    actor: str,
    *,
    expected_status: Optional[RideStatus] = None,
    expected_driver_id: Optional[str] = None,
    **fields,
) -> TransitionResult:
    """
    Write a transition to both copies without committing.

    Callers that need extra writes in the same transaction (completion
    earnings) use this directly and then call ``commit_transition``.
    """
    target = parse_status(new_status)
    unknown = set(fields) - _ACTOR_FIELDS
    if unknown:
        raise ValueError(f"Unsupported transition fields: {sorted(unknown)}")

    ride = await _load_shared(db, request_id)
    if ride is None:
        raise NotFound("Ride request not found.")
    current = RideStatus(ride.status)

    if expected_status is not None and current is not expected_status:
        raise _rejection(current, target)
    if not is_valid_transition(current, target):
        raise _rejection(current, target)
    if expected_driver_id is not None and ride.driver_id != expected_driver_id:
        raise InvalidTransition("Only the assigned driver can do that.", current.value)

    observed_version = ride.version
    values = {
        "status": target.value,
        "version": RideRequest.version + 1,
        _STAMPED_AT[target]: datetime.now(timezone.utc),
        **fields,
    }
    conditions = [
        RideRequest.id == request_id,
        RideRequest.status == current.value,
        RideRequest.version == observed_version,
    ]
    if expected_driver_id is not None:
        conditions.append(RideRequest.driver_id == expected_driver_id)

    result = await db.execute(
        update(RideRequest)
        .where(*conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        fresh = await _load_shared(db, request_id)
        now_status = RideStatus(fresh.status) if fresh else current
        logger.warning(
            "Lost write race on request=%s actor=%s (%s -> %s, now %s)",
            request_id, actor, current.value, target.value, now_status.value,
        )
        if now_status is current:
            raise InvalidTransition("The request changed while you were updating it.", now_status.value)
        raise _rejection(now_status, target)

    ride = await _load_shared(db, request_id)
    mirrored = await _mirror(db, ride)
    if not mirrored:
        logger.warning(
            "Request=%s moved to %s but private copy %s is missing",
            request_id, target.value, ride.customer_booking_id,
        )
    logger.info("Request=%s %s -> %s by %s", request_id, current.value, target.value, actor)
    return TransitionResult(ride=ride, previous_status=current, partially_applied=not mirrored)


async def commit_transition(
    db: AsyncSession,
    redis: aioredis.Redis,
    result: TransitionResult,
) -> TransitionResult:
    await safe_commit(db, f"moving request={result.ride.id} to {result.ride.status}")
    await publish_ride_change(redis, result.ride.id, result.ride.status)
    return result


async def transition(
    db: AsyncSession,
    redis: aioredis.Redis,
    request_id: str,
    new_status: str | RideStatus,
    actor: str,
    *,
    expected_status: Optional[RideStatus] = None,
    expected_driver_id: Optional[str] = None,
    **fields,
) -> TransitionResult:
    """Validate, conditionally write both copies, commit and announce."""
    result = await apply_transition(
        db,
        request_id,
        new_status,
        actor,
        expected_status=expected_status,
        expected_driver_id=expected_driver_id,
        **fields,
    )
    return await commit_transition(db, redis, result)


async def resync(db: AsyncSession, redis: aioredis.Redis, request_id: str) -> TransitionResult:
    """Re-apply the shared copy's state to the private copy."""
    ride = await _load_shared(db, request_id)
    if ride is None:
        raise NotFound("Ride request not found.")
    mirrored = await _mirror(db, ride)
    await safe_commit(db, f"resyncing request={request_id}")
    if mirrored:
        await publish_ride_change(redis, ride.id, ride.status)
    return TransitionResult(
        ride=ride,
        previous_status=RideStatus(ride.status),
        partially_applied=not mirrored,
    )


# ---------------------------------------------------------------------------
# Reads and customer history
# ---------------------------------------------------------------------------

async def get_request(db: AsyncSession, request_id: str) -> RideRequest:
    ride = await _load_shared(db, request_id)
    if ride is None:
        raise NotFound("Ride request not found.")
    return ride


async def get_customer_ride(db: AsyncSession, customer_id: str, booking_id: str) -> CustomerRide:
    ride = await db.get(CustomerRide, booking_id, populate_existing=True)
    if ride is None or ride.customer_id != customer_id:
        raise NotFound("Booking not found.")
    return ride


async def customer_history(
    db: AsyncSession,
    customer_id: str,
    search: Optional[str] = None,
    vehicle: Optional[str] = None,
    limit: Optional[int] = None,
) -> list[CustomerRide]:
    """Newest first. ``search`` matches pickup or dropoff, case-insensitively."""
    stmt = select(CustomerRide).where(CustomerRide.customer_id == customer_id)
    if search and search.strip():
        needle = search.strip().lower()
        stmt = stmt.where(
            or_(
                func.lower(CustomerRide.pickup).contains(needle, autoescape=True),
                func.lower(CustomerRide.dropoff).contains(needle, autoescape=True),
            )
        )
    if vehicle and vehicle != "All":
        stmt = stmt.where(CustomerRide.vehicle == vehicle)
    stmt = stmt.order_by(CustomerRide.booking_time.desc()).execution_options(populate_existing=True)
    if limit is not None:
        stmt = stmt.limit(limit)
    result = await db.execute(stmt)
    return list(result.scalars().all())


async def delete_history_entry(
    db: AsyncSession,
    redis: aioredis.Redis,
    customer_id: str,
    booking_id: str,
) -> None:
    """Remove a private copy. The dispatch-queue copy is left untouched."""
    ride = await get_customer_ride(db, customer_id, booking_id)
    await db.delete(ride)
    await safe_commit(db, f"deleting booking={booking_id}")
    logger.info("Customer=%s deleted booking=%s", customer_id, booking_id)
    if ride.request_id:
        await publish_ride_change(redis, ride.request_id, ride.status)


async def clear_history(db: AsyncSession, redis: aioredis.Redis, customer_id: str) -> int:
    result = await db.execute(
        delete(CustomerRide)
        .where(CustomerRide.customer_id == customer_id)
        .execution_options(synchronize_session=False)
    )
    await safe_commit(db, f"clearing history for customer={customer_id}")
    logger.info("Customer=%s cleared %d bookings", customer_id, result.rowcount)
    return result.rowcount


async def rebook(
    db: AsyncSession,
    redis: aioredis.Redis,
    customer_id: str,
    booking_id: str,
    payment_method: Optional[str] = None,
) -> RideRequest:
    """Book the same trip again as a brand new request, priced at today's rates."""
    previous = await get_customer_ride(db, customer_id, booking_id)
    pickup_coords = dropoff_coords = None
    if previous.pickup_lat is not None and previous.pickup_lng is not None:
        pickup_coords = Coordinates(lat=previous.pickup_lat, lng=previous.pickup_lng)
    if previous.dropoff_lat is not None and previous.dropoff_lng is not None:
        dropoff_coords = Coordinates(lat=previous.dropoff_lat, lng=previous.dropoff_lng)
    q = pricing.quote(previous.vehicle, pickup_coords, dropoff_coords)
    return await create_request(
        db,
        redis,
        customer_id,
        previous.pickup,
        previous.dropoff,
        previous.vehicle,
        q["price"],
        pickup_coords=pickup_coords,
        dropoff_coords=dropoff_coords,
        payment_method=payment_method or previous.payment_method,
        help_with_loading=previous.help_with_loading,
    )
