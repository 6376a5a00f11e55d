"""
Payments router: PayFast checkout, web-view callback and ITN notify.
"""
import logging
from decimal import Decimal

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, Header, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from luba.database import get_db, safe_commit
from luba.errors import NotFound, ValidationError
from luba.middleware.auth import get_current_customer
from luba.middleware.idempotency import check_idempotency, store_idempotency_result
from luba.models.payment import Payment
from luba.redis_client import get_redis
from luba.schemas.schemas import (
    CallbackRequest,
    CheckoutRequest,
    CheckoutResponse,
    PaymentResponse,
    PaymentStatusEnum,
)
from luba.services import lifecycle
from luba.services.payment import (
    CALLBACK_CANCEL,
    CALLBACK_ERROR,
    CALLBACK_SUCCESS,
    build_checkout,
    classify_callback,
    new_reference,
    verify_notification,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/payments", tags=["Payments"])

_CALLBACK_STATUS = {
    CALLBACK_SUCCESS: PaymentStatusEnum.callback_success,
    CALLBACK_CANCEL: PaymentStatusEnum.cancelled,
    CALLBACK_ERROR: PaymentStatusEnum.failed,
}


def _to_response(payment: Payment) -> PaymentResponse:
    return PaymentResponse(
        payment_id=payment.id,
        reference=payment.reference,
        status=payment.status,
        amount=float(payment.amount),
        currency=payment.currency,
        verified=payment.status == PaymentStatusEnum.verified.value,
    )


async def _by_reference(db: AsyncSession, reference: str) -> Payment:
    result = await db.execute(select(Payment).where(Payment.reference == reference))
    payment = result.scalar_one_or_none()
    if payment is None:
        raise NotFound("Payment not found.")
    return payment


@router.post("/checkout", status_code=status.HTTP_201_CREATED, response_model=CheckoutResponse)
async def checkout(
    payload: CheckoutRequest,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
    customer_id: str = Depends(get_current_customer),
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    """
    Start a card payment for one of the customer's requests.
    The amount always comes from the stored request, never from the client.
    """
    # 1. Idempotency check
    cached = await check_idempotency(redis, customer_id, idempotency_key)
    if cached:
        return cached

    # 2. Load the request and check ownership
    ride = await lifecycle.get_request(db, payload.request_id)
    if ride.customer_id != customer_id:
        raise NotFound("Ride request not found.")

    # 3. Build the signed redirect URL
    reference = new_reference()
    checkout_data = build_checkout(
        ride.price,
        f"Luba {ride.vehicle} trip",
        reference,
        name_first=payload.name_first,
        name_last=payload.name_last,
        email=payload.email,
        cell_number=payload.cell_number,
    )

    payment = Payment(
        request_id=ride.id,
        customer_id=customer_id,
        amount=ride.price,
        status=PaymentStatusEnum.initiated.value,
        reference=reference,
    )
    db.add(payment)
    await safe_commit(db, f"creating payment ref={reference}")

    response_body = {
        "payment_id": payment.id,
        "payment_url": checkout_data["payment_url"],
        "reference": reference,
        "amount": checkout_data["amount"],
    }
    if idempotency_key:
        await store_idempotency_result(
            redis, customer_id, idempotency_key, status.HTTP_201_CREATED, response_body
        )
    return CheckoutResponse(**response_body)


@router.post("/callback", response_model=PaymentResponse)
async def callback(
    payload: CallbackRequest,
    db: AsyncSession = Depends(get_db),
    customer_id: str = Depends(get_current_customer),
):
    """Record where the web view landed. A success redirect is not verification."""
    outcome = classify_callback(payload.url)
    if outcome is None:
        raise ValidationError("Not a payment callback URL.")
    payment = await _by_reference(db, payload.reference)
    if payment.customer_id != customer_id:
        raise NotFound("Payment not found.")

    # the ITN may already have verified it
    if payment.status != PaymentStatusEnum.verified.value:
        payment.status = _CALLBACK_STATUS[outcome].value
        await safe_commit(db, f"recording callback for ref={payment.reference}")
    logger.info("Payment ref=%s callback=%s", payment.reference, outcome)
    return _to_response(payment)


@router.post("/notify", status_code=status.HTTP_200_OK)
async def notify(request: Request, db: AsyncSession = Depends(get_db)):
    """Gateway server-to-server notification (ITN). Unauthenticated; the signature is the check."""
    form = dict(await request.form())
    payment = await _by_reference(db, form.get("m_payment_id", ""))
    # a verified payment is final; replays cannot undo it
    if payment.status == PaymentStatusEnum.verified.value:
        logger.warning("Ignoring notification for verified payment ref=%s", payment.reference)
        return {"status": payment.status}

    valid = await verify_notification(form)
    if not valid:
        payment.status = PaymentStatusEnum.failed.value
    elif abs(Decimal(str(form.get("amount_gross", "0"))) - payment.amount) > Decimal("0.01"):
        logger.warning("Amount mismatch for ref=%s: %s", payment.reference, form.get("amount_gross"))
        payment.status = PaymentStatusEnum.failed.value
    elif form.get("payment_status") == "COMPLETE":
        payment.status = PaymentStatusEnum.verified.value
        payment.gateway_payment_id = form.get("pf_payment_id")
    else:
        payment.status = PaymentStatusEnum.cancelled.value
    await safe_commit(db, f"recording notification for ref={payment.reference}")
    return {"status": payment.status}


@router.get("/{payment_id}", response_model=PaymentResponse)
async def get_payment(
    payment_id: str,
    db: AsyncSession = Depends(get_db),
    customer_id: str = Depends(get_current_customer),
):
    payment = await db.get(Payment, payment_id)
    if payment is None or payment.customer_id != customer_id:
        raise NotFound("Payment not found.")
    return _to_response(payment)
