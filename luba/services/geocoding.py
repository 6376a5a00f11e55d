"""
LocationIQ geocoding adapter: free-text address -> coordinates.
"""
import logging
from typing import Optional

import httpx

from luba.config import get_settings
from luba.errors import NetworkError, ValidationError
from luba.schemas.schemas import Coordinates

logger = logging.getLogger(__name__)
settings = get_settings()

INVALID_ADDRESS = "Please enter a valid address."
MIN_AUTOCOMPLETE_CHARS = 3


async def _get(path: str, params: dict, client: Optional[httpx.AsyncClient]) -> httpx.Response:
    params = {
        "key": settings.geocoder_api_key,
        "countrycodes": settings.geocoder_countrycodes,
        "format": "json",
        **params,
    }
    url = f"{settings.geocoder_base_url}{path}"
    try:
        if client is not None:
            return await client.get(url, params=params)
        async with httpx.AsyncClient(timeout=settings.geocoder_timeout_seconds) as own:
            return await own.get(url, params=params)
    except httpx.HTTPError as exc:
        logger.error("Geocoder request failed: %s", exc)
        raise NetworkError("Could not reach the address lookup service. Please try again.") from exc


async def geocode(address: str, client: Optional[httpx.AsyncClient] = None) -> Coordinates:
    """
    Resolve an address to its best match.
    An empty candidate list is a user input problem, not an outage.
    """
    query = (address or "").strip()
    if not query:
        raise ValidationError(INVALID_ADDRESS)

    resp = await _get("/search", {"q": query, "limit": 1}, client)
    # LocationIQ answers 404 {"error": "Unable to geocode"} for no match
    if resp.status_code == 404:
        raise ValidationError(INVALID_ADDRESS)
    if resp.status_code >= 400:
        logger.error("Geocoder error %s: %s", resp.status_code, resp.text)
        raise NetworkError("Address lookup failed. Please try again.")

    candidates = resp.json()
    if not candidates:
        raise ValidationError(INVALID_ADDRESS)
    best = candidates[0]
    try:
        return Coordinates(lat=float(best["lat"]), lng=float(best["lon"]))
    except (KeyError, TypeError, ValueError) as exc:
        logger.error("Malformed geocoder candidate %r", best)
        raise NetworkError("Address lookup returned an unexpected response.") from exc


async def autocomplete(query: str, client: Optional[httpx.AsyncClient] = None) -> list[str]:
    text = (query or "").strip()
    if len(text) < MIN_AUTOCOMPLETE_CHARS:
        return []
    resp = await _get("/autocomplete", {"q": text, "limit": settings.geocoder_limit}, client)
    if resp.status_code == 404:
        return []
    if resp.status_code >= 400:
        logger.error("Autocomplete error %s: %s", resp.status_code, resp.text)
        raise NetworkError("Address suggestions are unavailable right now.")
    return [item["display_name"] for item in resp.json() if "display_name" in item]
