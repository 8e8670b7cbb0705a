import logging
from typing import Optional

import redis.asyncio as redis

logger = logging.getLogger(__name__)

redis_client: Optional[redis.Redis] = None


async def init_redis(redis_url: str) -> Optional[redis.Redis]:
    """Initialize a global Redis client (async). Safe to call multiple times."""
    global redis_client

    if not redis_url:
        logger.warning("REDIS_URL not set; viewer presence kept in process memory.")
        redis_client = None
        return None

    client = redis.from_url(
        redis_url,
        encoding="utf-8",
        decode_responses=True,
    )

    # Connection test
    try:
        await client.ping()
    except Exception as e:
        logger.exception("Redis connection failed: %s", e)
        await client.aclose()
        redis_client = None
        return None

    redis_client = client
    logger.info("Redis connected")
    return redis_client


async def close_redis() -> None:
    global redis_client
    if redis_client is None:
        return
    try:
        await redis_client.aclose()
    finally:
        redis_client = None
