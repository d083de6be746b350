"""
Redis client utilities for basecore.

Provides a lazily initialized asyncio Redis client to avoid import-time
connections. One connection pool per process.
"""

import functools
import logging

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from basecore.settings import get_settings

logger = logging.getLogger(__name__)


@functools.lru_cache()
def get_redis_url() -> str:
    """Get Redis URL from settings."""
    return get_settings().redis_url


@functools.lru_cache()
def get_redis_client() -> aioredis.Redis:
    """
    Get Redis client (cached).

    This function lazily initializes the Redis client to avoid import-time connections.
    """
    url = get_redis_url()
    return aioredis.from_url(url, decode_responses=True)


async def ping(client: aioredis.Redis) -> bool:
    """Return True if Redis answers a PING."""
    try:
        return bool(await client.ping())
    except RedisError as e:
        logger.warning(f"Redis ping failed: {e}")
        return False


async def close_redis_client() -> None:
    """Close the cached client and forget it."""
    if get_redis_client.cache_info().currsize:
        client = get_redis_client()
        await client.aclose()
        get_redis_client.cache_clear()
