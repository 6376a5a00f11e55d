import json
import logging

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from luba.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

_redis_pool: aioredis.Redis | None = None

# Every committed ride mutation is announced here; subscribers re-read the queue.
DISPATCH_CHANNEL = "dispatch:changes"


async def get_redis() -> aioredis.Redis:
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = aioredis.from_url(
            settings.redis_url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=100,
        )
    return _redis_pool


async def close_redis() -> None:
    global _redis_pool
    if _redis_pool:
        await _redis_pool.aclose()
        _redis_pool = None


# ---------------------------------------------------------------------------
# Change feed
# ---------------------------------------------------------------------------

def presence_channel(driver_id: str) -> str:
    return f"driver:{driver_id}:presence"


async def publish_ride_change(redis: aioredis.Redis, request_id: str, status: str) -> None:
    """
    Announce a committed ride mutation on the dispatch channel. The write is
    already durable, so a publish failure is logged and not raised.
    """
    message = json.dumps({"request_id": request_id, "status": status})
    try:
        await redis.publish(DISPATCH_CHANNEL, message)
    except RedisError as exc:
        logger.error("Failed to publish change for request=%s: %s", request_id, exc)


async def publish_presence_change(redis: aioredis.Redis, driver_id: str, is_online: bool) -> None:
    try:
        await redis.publish(presence_channel(driver_id), json.dumps({"online": is_online}))
    except RedisError as exc:
        logger.error("Failed to publish presence for driver=%s: %s", driver_id, exc)

