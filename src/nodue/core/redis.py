"""
Redis Connection

Shared async client backing `RedisLockManager`. Only opened when
`use_redis_locks` is enabled; without it the registry locks in-process.
"""

import logging

from redis.asyncio import Redis, from_url

from nodue.core.config import settings

logger = logging.getLogger(__name__)

redis_client: Redis | None = None


async def init_redis(url: str | None = None) -> Redis:
    """
    Open the shared client and check it answers.

    A client that fails its ping is closed again, so `get_redis()` never
    hands out a dead connection.
    """
    global redis_client
    client = from_url(url or settings.redis_url, decode_responses=True)
    try:
        await client.ping()
    except Exception:
        await client.aclose()
        raise
    redis_client = client
    logger.info("Redis client connected")
    return client


async def get_redis() -> Redis | None:
    """The shared client, or None when Redis locking is not in use."""
    return redis_client


async def close_redis() -> None:
    global redis_client
    if redis_client is None:
        return
    await redis_client.aclose()
    redis_client = None
    logger.info("Redis client closed")
