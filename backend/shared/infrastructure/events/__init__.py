"""
Redis messaging for status events.

Public API:
    from shared.infrastructure.events import (
        Backoff,
        get_redis_pool,
        close_redis_pool,
        publish_friend_status_update,
    )
"""

from shared.infrastructure.events.backoff import Backoff
from shared.infrastructure.events.redis_pool import close_redis_pool, get_redis_pool
from shared.infrastructure.events.publisher import (
    StatusUpdateType,
    VALID_STATUS_UPDATE_TYPES,
    build_status_update,
    publish_friend_status_update,
)

__all__ = [
    "Backoff",
    "close_redis_pool",
    "get_redis_pool",
    "StatusUpdateType",
    "VALID_STATUS_UPDATE_TYPES",
    "build_status_update",
    "publish_friend_status_update",
]
