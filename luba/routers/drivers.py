"""
Drivers router: onboarding, presence, the request queue and earnings.

Live feeds are served as Server-Sent Events; every event carries the full
current list, replacing the previous one.
"""
import json
import logging

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, File, Form, Response, UploadFile, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from luba.config import get_settings
from luba.database import get_db, get_session_factory
from luba.errors import NotFound, ValidationError
from luba.middleware.auth import get_current_driver, require_admin
from luba.redis_client import get_redis
from luba.schemas.schemas import (
    ApprovalRequest,
    DriverApplicationRequest,
    DriverProfileResponse,
    DriverProfileUpdate,
    RideRequestResponse,
    ShiftReportResponse,
    ShiftResponse,
    TransitionResponse,
    WeeklySummaryResponse,
)
from luba.services import accounts, image_host, lifecycle, matching, shifts

logger = logging.getLogger(__name__)
settings = get_settings()
router = APIRouter(prefix="/v1/drivers", tags=["Drivers"])

_PHOTO_KINDS = {"driver", "license", "car"}


def _transition_response(result: lifecycle.TransitionResult, response: Response, shift_id=None):
    if result.partially_applied:
        response.status_code = status.HTTP_207_MULTI_STATUS
    return TransitionResponse(
        request=RideRequestResponse.model_validate(result.ride),
        previous_status=result.previous_status,
        partially_applied=result.partially_applied,
        shift_id=shift_id,
    )


def _sse(feed):
    async def events():
        try:
            async for rides in feed:
                body = [jsonable_encoder(RideRequestResponse.model_validate(r)) for r in rides]
                yield f"data: {json.dumps(body)}\n\n"
        finally:
            await feed.aclose()

    return StreamingResponse(events(), media_type="text/event-stream")


# ---------------------------------------------------------------------------
# Onboarding
# ---------------------------------------------------------------------------

@router.post("/photos", status_code=status.HTTP_201_CREATED)
async def upload_photo(
    kind: str = Form(...),
    file: UploadFile = File(...),
    driver: dict = Depends(get_current_driver),
):
    """Upload an application photo; the returned URL goes into the application."""
    if kind not in _PHOTO_KINDS:
        raise ValidationError("Unknown photo kind.")
    content = await file.read()
    url = await image_host.upload_image(content, content_type=file.content_type or "image/jpeg")
    logger.info("Driver=%s uploaded %s photo", driver["id"], kind)
    return {"kind": kind, "url": url}


@router.post("/application", status_code=status.HTTP_201_CREATED, response_model=DriverProfileResponse)
async def submit_application(
    payload: DriverApplicationRequest,
    db: AsyncSession = Depends(get_db),
    driver: dict = Depends(get_current_driver),
):
    email = None
    try:
        email = (await accounts.get_account(db, driver["id"])).email
    except NotFound:
        pass
    profile = await accounts.submit_application(
        db,
        driver["id"],
        payload.full_name,
        payload.phone_number,
        payload.address,
        payload.driver_image_url,
        payload.license_photo_url,
        payload.car_image_url,
        email=email,
    )
    return DriverProfileResponse.model_validate(profile)


@router.get("/me", response_model=DriverProfileResponse)
async def get_me(
    db: AsyncSession = Depends(get_db),
    driver: dict = Depends(get_current_driver),
):
    return DriverProfileResponse.model_validate(await accounts.get_driver_profile(db, driver["id"]))


@router.patch("/me", response_model=DriverProfileResponse)
async def update_me(
    payload: DriverProfileUpdate,
    db: AsyncSession = Depends(get_db),
    driver: dict = Depends(get_current_driver),
):
    profile = await accounts.update_driver_profile(db, driver["id"], **payload.model_dump(exclude_unset=True))
    return DriverProfileResponse.model_validate(profile)


@router.patch("/{driver_id}/approval", response_model=DriverProfileResponse)
async def set_approval(
    driver_id: str,
    payload: ApprovalRequest,
    db: AsyncSession = Depends(get_db),
    admin_id: str = Depends(require_admin),
):
    profile = await accounts.set_approval(db, driver_id, payload.approval_status)
    logger.info("Admin=%s set driver=%s to %s", admin_id, driver_id, payload.approval_status.value)
    return DriverProfileResponse.model_validate(profile)


# ---------------------------------------------------------------------------
# Presence and shifts
# ---------------------------------------------------------------------------

@router.post("/me/online", response_model=ShiftResponse)
async def go_online(
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
    driver: dict = Depends(get_current_driver),
):
    await matching.ensure_approved(db, driver["id"])
    shift = await shifts.start_shift(db, redis, driver["id"])
    return ShiftResponse.model_validate(shift)


@router.post("/me/offline", response_model=ShiftResponse | None)
async def go_offline(
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
    driver: dict = Depends(get_current_driver),
):
    shift = await shifts.go_offline(db, redis, driver["id"])
    return ShiftResponse.model_validate(shift) if shift else None


@router.get("/me/shifts", response_model=list[ShiftResponse])
async def my_shifts(
    db: AsyncSession = Depends(get_db),
    driver: dict = Depends(get_current_driver),
):
    return [ShiftResponse.model_validate(s) for s in await shifts.list_shifts(db, driver["id"])]


@router.get("/me/earnings/weekly", response_model=WeeklySummaryResponse)
async def weekly_earnings(
    db: AsyncSession = Depends(get_db),
    driver: dict = Depends(get_current_driver),
):
    summary = await shifts.weekly_summary(db, driver["id"])
    return WeeklySummaryResponse(
        driver_id=driver["id"],
        rides=summary.rides,
        earnings=summary.earnings,
        shifts=summary.shifts,
        currency=settings.currency,
    )


@router.get("/me/reports", response_model=list[ShiftReportResponse])
async def my_reports(
    db: AsyncSession = Depends(get_db),
    driver: dict = Depends(get_current_driver),
):
    return [ShiftReportResponse.model_validate(r) for r in await shifts.list_reports(db, driver["id"])]


# ---------------------------------------------------------------------------
# Request queue
# ---------------------------------------------------------------------------

@router.get("/me/requests/pending", response_model=list[RideRequestResponse])
async def pending_requests(
    db: AsyncSession = Depends(get_db),
    driver: dict = Depends(get_current_driver),
):
    rides = await matching.pending_for_driver(db, driver["id"])
    return [RideRequestResponse.model_validate(r) for r in rides]


@router.get("/me/requests/pending/stream")
async def stream_pending(
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    driver: dict = Depends(get_current_driver),
):
    # reject before the stream starts; afterwards the status line is gone
    await matching.ensure_approved(db, driver["id"])
    return _sse(matching.watch_pending(session_factory, redis, driver["id"]))


@router.get("/me/requests/assigned", response_model=list[RideRequestResponse])
async def assigned_requests(
    db: AsyncSession = Depends(get_db),
    driver: dict = Depends(get_current_driver),
):
    await matching.ensure_approved(db, driver["id"])
    rides = await matching.list_assigned(db, driver["id"])
    return [RideRequestResponse.model_validate(r) for r in rides]


@router.get("/me/requests/assigned/stream")
async def stream_assigned(
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    driver: dict = Depends(get_current_driver),
):
    await matching.ensure_approved(db, driver["id"])
    return _sse(matching.watch_assigned(session_factory, redis, driver["id"]))


@router.post("/me/requests/{request_id}/accept", response_model=TransitionResponse)
async def accept_request(
    request_id: str,
    response: Response,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
    driver: dict = Depends(get_current_driver),
):
    profile = await matching.ensure_approved(db, driver["id"])
    name = driver["name"] or profile.full_name
    result = await matching.accept(db, redis, request_id, driver["id"], name)
    return _transition_response(result, response)


@router.post("/me/requests/{request_id}/decline", response_model=TransitionResponse)
async def decline_request(
    request_id: str,
    response: Response,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
    driver: dict = Depends(get_current_driver),
):
    result = await matching.decline(db, redis, request_id, driver["id"])
    return _transition_response(result, response)


@router.post("/me/requests/{request_id}/complete", response_model=TransitionResponse)
async def complete_request(
    request_id: str,
    response: Response,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
    driver: dict = Depends(get_current_driver),
):
    completion = await matching.complete(db, redis, request_id, driver["id"])
    return _transition_response(completion.transition, response, shift_id=completion.shift_id)


@router.post("/me/requests/{request_id}/resync", response_model=TransitionResponse)
async def resync_request(
    request_id: str,
    response: Response,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
    driver: dict = Depends(get_current_driver),
):
    """Retry updating the customer's copy after a 207. Still 207 while it is missing."""
    result = await matching.resync(db, redis, request_id, driver["id"])
    return _transition_response(result, response)
