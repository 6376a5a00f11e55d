import json
from typing import Optional

import redis.asyncio as aioredis
from fastapi import Response
from fastapi.responses import JSONResponse

from luba.config import get_settings

settings = get_settings()


def _cache_key(owner: str, key: str) -> str:
    return f"idempotency:{owner}:{key}"


async def check_idempotency(
    redis: aioredis.Redis,
    owner: str,
    key: Optional[str],
) -> Optional[Response]:
    """
    Returns the stored response if this owner already used the
    Idempotency-Key, otherwise None (proceed normally).
    """
    if not key:
        return None
    cached = await redis.get(_cache_key(owner, key))
    if cached:
        data = json.loads(cached)
        return JSONResponse(
            content=data["body"],
            status_code=data["status_code"],
            headers={"X-Idempotency-Replay": "true"},
        )
    return None


async def store_idempotency_result(
    redis: aioredis.Redis,
    owner: str,
    key: str,
    status_code: int,
    body: dict,
) -> None:
    await redis.setex(
        _cache_key(owner, key),
        settings.idempotency_ttl_seconds,
        json.dumps({"status_code": status_code, "body": body}),
    )
