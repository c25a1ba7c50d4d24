"""
Shared async Redis client for status events.

Created on first use by the publisher or the gateway's subscriber and
closed in the gateway lifespan. Building the client does not await, so two
first callers on the same loop always get the same instance.
"""

from __future__ import annotations

import redis.asyncio as redis

from shared.config.settings import settings
from shared.config.logging import get_logger

logger = get_logger(__name__)

_client: redis.Redis | None = None


async def get_redis_pool() -> redis.Redis:
    """Get or create the pooled async Redis client."""
    global _client
    if _client is None:
        _client = redis.from_url(
            settings.redis_url,
            max_connections=settings.redis_pool_max_connections,
            decode_responses=True,
            socket_connect_timeout=settings.redis_socket_timeout,
            socket_timeout=settings.redis_socket_timeout,
            health_check_interval=30,
        )
        logger.info(
            "Redis client created",
            max_connections=settings.redis_pool_max_connections,
        )
    return _client


async def close_redis_pool() -> None:
    """Close the shared client, if one was created."""
    global _client
    client, _client = _client, None
    if client is not None:
        await client.aclose()
        logger.info("Redis client closed")
