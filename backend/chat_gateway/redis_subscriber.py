"""
Redis pub/sub subscriber for the chat gateway.

Listens on the status channel for block / unblock notices published by the
REST layer and hands each one to the ConnectionManager. Reconnects with
exponential backoff and jitter; gives up after the configured number of
consecutive failures.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable, TYPE_CHECKING

from redis.asyncio import Redis
import redis.exceptions

from shared.config.logging import get_logger
from shared.config.settings import settings
from shared.infrastructure.events import Backoff, get_redis_pool
from chat_gateway.components.core.context import sanitize_log_data
from chat_gateway.components.events.types import BlockStatusUpdateEvent, EventValidationError

if TYPE_CHECKING:
    from chat_gateway.connection_manager import ConnectionManager

logger = get_logger(__name__)

MessageHandler = Callable[[str], Awaitable[None]]


async def run_subscriber(
    channels: list[str],
    on_message: MessageHandler,
    redis_client: Redis | None = None,
    backoff: Backoff | None = None,
) -> None:
    """
    Subscribe to Redis channels and dispatch message payloads.

    Runs until cancelled.

    Args:
        channels: Channel names to subscribe to.
        on_message: Async callback receiving each raw message payload.
        redis_client: Async Redis client (defaults to the shared pool).
        backoff: Reconnect schedule (defaults to settings).

    Raises:
        RuntimeError: If max reconnection attempts exceeded.
    """
    if backoff is None:
        backoff = Backoff.for_subscriber(settings)
    if redis_client is None:
        redis_client = await get_redis_pool()

    pubsub: Any = None
    reconnect_attempts = 0
    try:
        while True:
            try:
                if pubsub is None:
                    pubsub = redis_client.pubsub()
                    await pubsub.subscribe(*channels)
                    logger.info("Redis subscriber subscribed", channels=channels)

                msg = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
                if msg is None:
                    continue
                if msg.get("type") != "message":
                    continue

                reconnect_attempts = 0
                await _deliver(msg, on_message)

            except redis.exceptions.TimeoutError:
                # Normal for pubsub - continue listening
                continue

            except redis.exceptions.ConnectionError as e:
                reconnect_attempts += 1
                if reconnect_attempts > backoff.max_attempts:
                    logger.error(
                        "Max reconnection attempts exceeded, subscriber giving up",
                        attempts=reconnect_attempts,
                        max_attempts=backoff.max_attempts,
                    )
                    raise RuntimeError(
                        f"Redis subscriber failed after {reconnect_attempts} reconnection attempts"
                    ) from e

                delay = backoff.delay(reconnect_attempts - 1)
                logger.warning(
                    "Redis connection error, reconnecting with jitter...",
                    error=str(e),
                    attempt=reconnect_attempts,
                    max_attempts=backoff.max_attempts,
                    delay_with_jitter=round(delay, 2),
                )
                if pubsub is not None:
                    await _close_pubsub(pubsub, channels)
                    pubsub = None
                await asyncio.sleep(delay)

    except asyncio.CancelledError:
        logger.info("Redis subscriber cancelled")
        raise
    finally:
        if pubsub is not None:
            await _close_pubsub(pubsub, channels)


async def _deliver(msg: dict[str, Any], on_message: MessageHandler) -> None:
    data = msg.get("data")
    if isinstance(data, bytes):
        data = data.decode("utf-8", errors="replace")
    if not isinstance(data, str):
        logger.warning("Non-text pubsub payload ignored", channel=msg.get("channel"))
        return
    try:
        await on_message(data)
    except Exception as e:
        # A bad notice must not stop the subscriber
        logger.error(
            "Error handling pubsub message",
            channel=msg.get("channel"),
            error=str(e),
            exc_info=True,
        )


async def _close_pubsub(pubsub: Any, channels: list[str]) -> None:
    timeout = settings.redis_pubsub_cleanup_timeout
    try:
        await asyncio.wait_for(pubsub.unsubscribe(*channels), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Pubsub unsubscribe timed out", timeout=timeout)
    except (redis.exceptions.RedisError, OSError) as e:
        logger.warning("Error during pubsub cleanup", error=str(e))

    try:
        await asyncio.wait_for(pubsub.aclose(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Pubsub close timed out", timeout=timeout)
    except (redis.exceptions.RedisError, OSError) as e:
        logger.debug("Error closing pubsub", error=str(e))


def make_status_update_handler(manager: "ConnectionManager") -> MessageHandler:
    """
    Build the callback that forwards status notices to the manager.

    Malformed notices are logged and skipped.
    """

    async def handle_status_message(raw: str) -> None:
        try:
            event = BlockStatusUpdateEvent.from_dict(json.loads(raw))
        except json.JSONDecodeError as e:
            logger.warning("Invalid JSON on status channel", error=e.msg, payload=sanitize_log_data(raw))
            return
        except EventValidationError as e:
            logger.warning("Invalid status notice", error=str(e), payload=sanitize_log_data(raw))
            return

        await manager.handle_status_update(event)

    return handle_status_message
