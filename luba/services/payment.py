"""
PayFast redirect-checkout adapter.

The app opens ``payment_url`` in a web view and watches navigation for one
of the configured callback URLs. Reaching the return URL is NOT proof of
payment; only a validated ITN (``verify_notification``) is.
"""
import hashlib
import hmac
import logging
import time
import uuid
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Optional
from urllib.parse import quote_plus, urlencode

import httpx

from luba.config import get_settings
from luba.errors import AuthError, NetworkError, ValidationError

logger = logging.getLogger(__name__)
settings = get_settings()

CALLBACK_SUCCESS = "success"
CALLBACK_CANCEL = "cancel"
CALLBACK_ERROR = "error"


def generate_signature(data: dict, passphrase: Optional[str] = None) -> str:
    """MD5 over the url-encoded non-empty fields in their given order."""
    parts = [
        f"{key}={quote_plus(str(value).strip())}"
        for key, value in data.items()
        if value not in ("", None) and key != "signature"
    ]
    payload = "&".join(parts)
    if passphrase:
        payload += f"&passphrase={quote_plus(passphrase.strip())}"
    return hashlib.md5(payload.encode("utf-8")).hexdigest()


def new_reference() -> str:
    return f"trip-{int(time.time() * 1000)}-{uuid.uuid4().hex[:6]}"


def build_checkout(
    amount,
    item_name: str,
    reference: str,
    *,
    name_first: Optional[str] = None,
    name_last: Optional[str] = None,
    email: Optional[str] = None,
    cell_number: Optional[str] = None,
) -> dict:
    """Returns {"payment_url", "reference", "amount"}."""
    errors = []
    if not item_name:
        errors.append("item_name is required")
    try:
        value = Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
        if value <= 0:
            errors.append("Amount must be positive")
    except InvalidOperation:
        errors.append("Amount must be a number")
    if errors:
        raise ValidationError("; ".join(errors))

    data = {
        "merchant_id": settings.payfast_merchant_id,
        "merchant_key": settings.payfast_merchant_key,
        "return_url": settings.payfast_return_url,
        "cancel_url": settings.payfast_cancel_url,
        "notify_url": settings.payfast_notify_url,
        "name_first": (name_first or "")[:100],
        "name_last": (name_last or "")[:100],
        "email_address": (email or "")[:100],
        "cell_number": cell_number or "",
        "m_payment_id": reference,
        "amount": f"{value:.2f}",
        "item_name": item_name[:100],
        "item_description": item_name[:255],
    }
    data = {k: v for k, v in data.items() if v != ""}
    data["signature"] = generate_signature(data, settings.payfast_passphrase)

    logger.info("Payment initiated: ref=%s amount=%s", reference, data["amount"])
    return {
        "payment_url": f"{settings.payfast_process_url}?{urlencode(data)}",
        "reference": reference,
        "amount": data["amount"],
    }


def classify_callback(url: str) -> Optional[str]:
    """Map a web-view navigation to success/cancel/error, or None to keep going."""
    if not url:
        return None
    for prefix, outcome in (
        (settings.payfast_return_url, CALLBACK_SUCCESS),
        (settings.payfast_cancel_url, CALLBACK_CANCEL),
        (settings.payfast_error_url, CALLBACK_ERROR),
    ):
        if prefix and url.startswith(prefix):
            return outcome
    return None


async def verify_notification(form: dict, client: Optional[httpx.AsyncClient] = None) -> bool:
    """
    Validate a gateway ITN: local signature check, then a server-to-server
    confirmation. Only a "VALID" answer counts.
    """
    if not form.get("m_payment_id") or not form.get("signature"):
        raise ValidationError("Invalid payment notification")

    expected = generate_signature(form, settings.payfast_passphrase)
    if not hmac.compare_digest(expected, str(form["signature"])):
        logger.warning("Signature mismatch for ref=%s", form.get("m_payment_id"))
        raise AuthError("Invalid signature")

    body = urlencode({k: v for k, v in form.items()})
    headers = {"Content-Type": "application/x-www-form-urlencoded"}
    try:
        if client is not None:
            resp = await client.post(settings.payfast_validate_url, content=body, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=settings.payfast_timeout_seconds) as own:
                resp = await own.post(settings.payfast_validate_url, content=body, headers=headers)
    except httpx.HTTPError as exc:
        logger.error("Payment validation request failed: %s", exc)
        raise NetworkError("Could not confirm the payment with the gateway.") from exc

    valid = resp.status_code == 200 and resp.text.strip() == "VALID"
    if valid:
        logger.info(
            "Payment verified: ref=%s pf_payment_id=%s status=%s",
            form.get("m_payment_id"), form.get("pf_payment_id"), form.get("payment_status"),
        )
    else:
        logger.warning("Gateway rejected notification ref=%s: %s", form.get("m_payment_id"), resp.text)
    return valid
