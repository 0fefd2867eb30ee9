from __future__ import annotations

import logging

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from pumpbot.exceptions import ConfigurationException

logger = logging.getLogger("pumpbot.store")


async def connect_store(url: str) -> aioredis.Redis:
    """Open the Redis connection and fail fast if the server does not answer."""
    client = aioredis.from_url(url, decode_responses=True)
    try:
        await client.ping()
    except (RedisError, OSError) as e:
        await client.aclose()
        raise ConfigurationException("Redis store unreachable", error=str(e)) from e
    logger.info("✅ Connected to Redis store")
    return client
