"""
Status Event Publishing with Retry.

The REST layer publishes block / unblock changes here; the realtime gateway
subscribes and forwards them to the affected user's room as
``friend-status-update``.
"""

from __future__ import annotations

import asyncio
import json
from enum import Enum
from typing import Any

import redis.asyncio as redis

from shared.config.settings import settings
from shared.config.logging import get_logger
from shared.infrastructure.events.backoff import Backoff

logger = get_logger(__name__)


class StatusUpdateType(str, Enum):
    """Friendship status changes announced to the other party."""

    BLOCKED = "blocked"
    UNBLOCKED = "unblocked"


VALID_STATUS_UPDATE_TYPES = frozenset(t.value for t in StatusUpdateType)


def build_status_update(
    target_user_id: str,
    actor_user_id: str,
    status: str,
) -> dict[str, Any]:
    """
    Build the wire payload for a friendship status change.

    Args:
        target_user_id: User who should be notified.
        actor_user_id: User who performed the block / unblock.
        status: "blocked" or "unblocked".

    Raises:
        ValueError: If the status is unknown or an ID is empty.
    """
    if status not in VALID_STATUS_UPDATE_TYPES:
        raise ValueError(f"Unknown status update type: {status!r}")
    if not target_user_id or not actor_user_id:
        raise ValueError("target_user_id and actor_user_id are required")
    return {
        "type": status,
        "targetUserId": str(target_user_id),
        "actorUserId": str(actor_user_id),
    }


async def publish_friend_status_update(
    target_user_id: str,
    actor_user_id: str,
    status: str,
    redis_client: redis.Redis | None = None,
    channel: str | None = None,
) -> int:
    """
    Publish a friendship status change to the status channel.

    Args:
        target_user_id: User who should be notified.
        actor_user_id: User who performed the change.
        status: "blocked" or "unblocked".
        redis_client: Async Redis client (defaults to the shared pool).
        channel: Channel name (defaults to settings.social_events_channel).

    Returns:
        Number of subscribers that received the message.

    Raises:
        ValueError: If the payload is invalid.
        redis.exceptions.RedisError: If all retries fail.
    """
    payload = build_status_update(target_user_id, actor_user_id, status)
    message = json.dumps(payload)
    channel = channel or settings.social_events_channel

    if redis_client is None:
        from shared.infrastructure.events.redis_pool import get_redis_pool

        redis_client = await get_redis_pool()

    backoff = Backoff.for_publisher(settings)
    max_retries = backoff.max_attempts
    last_error: Exception | None = None
    for attempt in range(max_retries):
        try:
            return await redis_client.publish(channel, message)
        except Exception as e:
            last_error = e
            if attempt < max_retries - 1:
                delay = backoff.delay(attempt)
                logger.warning(
                    "Redis publish failed, retrying",
                    channel=channel,
                    status=status,
                    attempt=attempt + 1,
                    max_retries=max_retries,
                    delay_seconds=round(delay, 2),
                    error=str(e),
                )
                await asyncio.sleep(delay)
            else:
                logger.error(
                    "Redis publish failed after all retries",
                    channel=channel,
                    status=status,
                    error=str(e),
                )

    raise last_error  # type: ignore[misc]
