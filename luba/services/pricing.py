"""
Price quotes: vehicle base price plus a distance fee.
"""
from decimal import Decimal, ROUND_HALF_UP
from math import radians, sin, cos, sqrt, atan2
from typing import Optional

from luba.config import get_settings
from luba.errors import ValidationError
from luba.schemas.schemas import Coordinates

settings = get_settings()

CENTS = Decimal("0.01")


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Approximate straight-line distance in km (good enough for a quote)."""
    R = 6371
    phi1, phi2 = radians(lat1), radians(lat2)
    dphi = radians(lat2 - lat1)
    dlambda = radians(lng2 - lng1)
    a = sin(dphi / 2) ** 2 + cos(phi1) * cos(phi2) * sin(dlambda / 2) ** 2
    return 2 * R * atan2(sqrt(a), sqrt(1 - a))


def _to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


def base_price(vehicle: str, base_prices: Optional[dict[str, Decimal]] = None) -> Decimal:
    prices = base_prices if base_prices is not None else settings.vehicle_base_prices
    if vehicle not in prices:
        raise ValidationError(f"Unknown vehicle category: {vehicle!r}")
    return _to_money(prices[vehicle])


def calculate_price(
    vehicle: str,
    distance_km: float,
    base_prices: Optional[dict[str, Decimal]] = None,
    rate_per_km: Optional[Decimal] = None,
) -> tuple[Decimal, Decimal, Decimal]:
    """
    Returns (base_price, distance_fee, total) as Decimals.
    total = base + rate_per_km * distance_km
    """
    if distance_km < 0:
        raise ValidationError("Distance must not be negative")
    rate = rate_per_km if rate_per_km is not None else settings.rate_per_km
    base = base_price(vehicle, base_prices)
    fee = _to_money(Decimal(str(rate)) * Decimal(str(round(distance_km, 3))))
    return base, fee, base + fee


def quote(
    vehicle: str,
    pickup: Optional[Coordinates],
    dropoff: Optional[Coordinates],
) -> dict:
    """Distance counts as zero when either side could not be resolved."""
    distance_km = 0.0
    if pickup is not None and dropoff is not None:
        distance_km = haversine_km(pickup.lat, pickup.lng, dropoff.lat, dropoff.lng)
    base, fee, total = calculate_price(vehicle, distance_km)
    return {
        "distance_km": round(distance_km, 3),
        "base_price": base,
        "distance_fee": fee,
        "price": total,
    }
