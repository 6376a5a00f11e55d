"""
Rides router: quote, book, history and rebooking for customers.
"""
import logging
from typing import Optional

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, Header, Query, status
from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import AsyncSession

from luba.config import get_settings
from luba.database import get_db
from luba.middleware.auth import get_current_customer
from luba.middleware.idempotency import check_idempotency, store_idempotency_result
from luba.redis_client import get_redis
from luba.schemas.schemas import (
    CustomerRideResponse,
    QuoteRequest,
    QuoteResponse,
    RebookRequest,
    RideCreateRequest,
    RideRequestResponse,
)
from luba.services import geocoding, lifecycle, pricing

logger = logging.getLogger(__name__)
settings = get_settings()
router = APIRouter(prefix="/v1/rides", tags=["Rides"])
places_router = APIRouter(prefix="/v1/places", tags=["Places"])


async def _resolve(pickup: str, dropoff: str, pickup_coords=None, dropoff_coords=None):
    if pickup_coords is None:
        pickup_coords = await geocoding.geocode(pickup)
    if dropoff_coords is None:
        dropoff_coords = await geocoding.geocode(dropoff)
    return pickup_coords, dropoff_coords


@router.post("/quote", response_model=QuoteResponse)
async def quote_ride(
    payload: QuoteRequest,
    customer_id: str = Depends(get_current_customer),
):
    pickup_coords, dropoff_coords = await _resolve(payload.pickup, payload.dropoff)
    q = pricing.quote(payload.vehicle.value, pickup_coords, dropoff_coords)
    return QuoteResponse(
        pickup_coords=pickup_coords,
        dropoff_coords=dropoff_coords,
        distance_km=q["distance_km"],
        base_price=float(q["base_price"]),
        distance_fee=float(q["distance_fee"]),
        price=float(q["price"]),
        currency=settings.currency,
    )


@router.post("", status_code=status.HTTP_201_CREATED, response_model=RideRequestResponse)
async def create_ride(
    payload: RideCreateRequest,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
    customer_id: str = Depends(get_current_customer),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    # 1. Idempotency check
    cached = await check_idempotency(redis, customer_id, idempotency_key)
    if cached:
        return cached

    # 2. Resolve addresses and price the trip
    pickup_coords, dropoff_coords = await _resolve(
        payload.pickup, payload.dropoff, payload.pickup_coords, payload.dropoff_coords
    )
    q = pricing.quote(payload.vehicle.value, pickup_coords, dropoff_coords)

    # 3. Write both copies
    ride = await lifecycle.create_request(
        db,
        redis,
        customer_id,
        payload.pickup,
        payload.dropoff,
        payload.vehicle.value,
        q["price"],
        pickup_coords=pickup_coords,
        dropoff_coords=dropoff_coords,
        payment_method=payload.payment_method.value,
        help_with_loading=payload.help_with_loading,
        scheduled_for=payload.scheduled_for,
    )
    resp = RideRequestResponse.model_validate(ride)

    # 4. Store idempotency result
    if idempotency_key:
        await store_idempotency_result(
            redis, customer_id, idempotency_key, status.HTTP_201_CREATED, jsonable_encoder(resp)
        )
    return resp


@router.get("", response_model=list[CustomerRideResponse])
async def list_history(
    search: Optional[str] = None,
    vehicle: Optional[str] = None,
    limit: Optional[int] = Query(default=None, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
    customer_id: str = Depends(get_current_customer),
):
    rides = await lifecycle.customer_history(db, customer_id, search=search, vehicle=vehicle, limit=limit)
    return [CustomerRideResponse.model_validate(r) for r in rides]


@router.get("/{booking_id}", response_model=CustomerRideResponse)
async def get_booking(
    booking_id: str,
    db: AsyncSession = Depends(get_db),
    customer_id: str = Depends(get_current_customer),
):
    ride = await lifecycle.get_customer_ride(db, customer_id, booking_id)
    return CustomerRideResponse.model_validate(ride)


@router.delete("/{booking_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_booking(
    booking_id: str,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
    customer_id: str = Depends(get_current_customer),
):
    await lifecycle.delete_history_entry(db, redis, customer_id, booking_id)


@router.delete("", status_code=status.HTTP_200_OK)
async def clear_history(
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
    customer_id: str = Depends(get_current_customer),
):
    removed = await lifecycle.clear_history(db, redis, customer_id)
    return {"deleted": removed}


@router.post("/{booking_id}/rebook", status_code=status.HTTP_201_CREATED, response_model=RideRequestResponse)
async def rebook_ride(
    booking_id: str,
    payload: RebookRequest | None = None,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
    customer_id: str = Depends(get_current_customer),
):
    method = payload.payment_method.value if payload and payload.payment_method else None
    ride = await lifecycle.rebook(db, redis, customer_id, booking_id, payment_method=method)
    return RideRequestResponse.model_validate(ride)


@places_router.get("/autocomplete", response_model=list[str])
async def autocomplete(
    q: str = Query(default=""),
    customer_id: str = Depends(get_current_customer),
):
    return await geocoding.autocomplete(q)
