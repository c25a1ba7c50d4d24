"""
Chat Connection Manager.

Thin orchestrator that composes the gateway's components:
- ConnectionIndex: connection ID -> socket
- PresenceRegistry / RoomMembership: who is online, who is in which room
- ConnectionBroadcaster / PresenceBroadcaster: delivery and presence notices
- EventRouter: typed client events -> recipient rooms
- ConnectionCleanup: stale and dead connection reaping

One instance per process, built by the application factory and passed
explicitly; there is no module-level manager.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, TYPE_CHECKING

from shared.config.logging import get_logger, mask_user_id
from chat_gateway.components.auth.strategies import AuthStrategy, BearerTokenAuthStrategy
from chat_gateway.components.broadcast.delivery import ConnectionBroadcaster
from chat_gateway.components.broadcast.presence import PresenceBroadcaster
from chat_gateway.components.connection.cleanup import ConnectionCleanup
from chat_gateway.components.connection.heartbeat import HeartbeatTracker
from chat_gateway.components.connection.index import ClientConnection, ConnectionIndex
from chat_gateway.components.connection.locks import PresenceLockManager
from chat_gateway.components.connection.rate_limiter import ConnectionRateLimiter
from chat_gateway.components.core.constants import WSCloseCode, WSConstants
from chat_gateway.components.core.context import sanitize_log_data
from chat_gateway.components.events.router import EventRouter, RoutingResult
from chat_gateway.components.events.types import (
    BlockStatusUpdateEvent,
    EventValidationError,
    UnknownEventError,
    parse_inbound_event,
)
from chat_gateway.components.metrics.collector import MetricsCollector
from chat_gateway.components.presence.registry import PresenceRegistry
from chat_gateway.components.presence.rooms import RoomMembership

if TYPE_CHECKING:
    from datetime import datetime

    from fastapi import WebSocket
    from shared.config.settings import Settings
    from chat_gateway.components.data.social_graph import SocialGraphGateway

logger = get_logger(__name__)


class CapacityError(ConnectionError):
    """Connection refused because a per-user or process limit is reached."""

    def __init__(self, message: str, reason: str) -> None:
        super().__init__(message)
        self.reason = reason


class ConnectionManager:
    """
    Owns all live connection state for one gateway process.

    Mutations of the index, registry and rooms are synchronous blocks with
    no await inside them, so every handler sees a consistent snapshot.
    Connect and disconnect hold the user's presence lock across the mutation
    and the announcement that follows it, so user-online and user-offline
    for one identity reach every peer in transition order.

    Usage:
        manager = ConnectionManager.from_settings(settings, social_graph)
        connection = await manager.connect(websocket, user_id)
        await manager.dispatch(connection.connection_id, raw_frame)
        await manager.disconnect(connection.connection_id)
    """

    def __init__(
        self,
        social_graph: "SocialGraphGateway",
        *,
        max_connections_per_user: int = 5,
        max_total_connections: int = 1000,
        heartbeat_timeout: float = 60.0,
        rate_limit: int = 20,
        rate_window: float = 1.0,
        broadcast_batch_size: int = 50,
        reference_counting: bool = False,
        enforce_social_graph: bool = True,
        auth_strategy: AuthStrategy | None = None,
        metrics: MetricsCollector | None = None,
        clock: "Callable[[], datetime] | None" = None,
    ) -> None:
        self._max_connections_per_user = max_connections_per_user
        self._max_total_connections = max_total_connections
        self._social_graph = social_graph
        self._shutdown = False

        self._metrics = metrics or MetricsCollector()
        self._index = ConnectionIndex()
        self._registry = PresenceRegistry(track_reference_counts=reference_counting)
        self._rooms = RoomMembership()
        self._locks = PresenceLockManager()
        self._heartbeat_tracker = HeartbeatTracker(timeout_seconds=heartbeat_timeout)
        self._rate_limiter = ConnectionRateLimiter(
            max_messages=rate_limit,
            window_seconds=rate_window,
        )
        self._auth_strategy = auth_strategy or BearerTokenAuthStrategy()

        self._cleanup = ConnectionCleanup(
            index=self._index,
            heartbeat_tracker=self._heartbeat_tracker,
            metrics=self._metrics,
            disconnect_callback=self.disconnect,
        )
        self._delivery = ConnectionBroadcaster(
            index=self._index,
            metrics=self._metrics,
            mark_dead_callback=self._cleanup.mark_dead_connection,
            batch_size=broadcast_batch_size,
        )
        self._presence = PresenceBroadcaster(self._registry, self._rooms, self._delivery)
        self._router = EventRouter(
            delivery=self._delivery,
            rooms=self._rooms,
            presence=self._presence,
            social_graph=social_graph,
            metrics=self._metrics,
            enforce_social_graph=enforce_social_graph,
            clock=clock,
        )

    @classmethod
    def from_settings(
        cls,
        settings: "Settings",
        social_graph: "SocialGraphGateway",
        **overrides: Any,
    ) -> "ConnectionManager":
        """Build a manager from application settings."""
        options: dict[str, Any] = {
            "max_connections_per_user": settings.ws_max_connections_per_user,
            "max_total_connections": settings.ws_max_total_connections,
            "heartbeat_timeout": settings.ws_heartbeat_timeout,
            "rate_limit": settings.ws_message_rate_limit,
            "rate_window": settings.ws_message_rate_window,
            "broadcast_batch_size": settings.ws_broadcast_batch_size,
            "reference_counting": settings.presence_reference_counting,
            "enforce_social_graph": settings.social_graph_enforcement,
        }
        options.update(overrides)
        return cls(social_graph, **options)

    # =========================================================================
    # Component access
    # =========================================================================

    @property
    def registry(self) -> PresenceRegistry:
        return self._registry

    @property
    def rooms(self) -> RoomMembership:
        return self._rooms

    @property
    def index(self) -> ConnectionIndex:
        return self._index

    @property
    def router(self) -> EventRouter:
        return self._router

    @property
    def presence(self) -> PresenceBroadcaster:
        return self._presence

    @property
    def metrics(self) -> MetricsCollector:
        return self._metrics

    @property
    def auth_strategy(self) -> AuthStrategy:
        return self._auth_strategy

    @property
    def social_graph(self) -> "SocialGraphGateway":
        return self._social_graph

    @property
    def rate_limiter(self) -> ConnectionRateLimiter:
        return self._rate_limiter

    @property
    def total_connections(self) -> int:
        return len(self._index)

    def is_shutting_down(self) -> bool:
        return self._shutdown

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def connect(
        self,
        websocket: "WebSocket",
        user_id: str,
        token: str | None = None,
        connection_id: str | None = None,
    ) -> ClientConnection:
        """
        Register an accepted, authenticated connection.

        Records presence, subscribes the connection to its own room and, when
        that membership is new, announces the join (private snapshot, then
        user-online to everyone).

        Raises:
            CapacityError: Per-user or process limit reached, or shutting down.
        """
        async with self._locks.user_lock(user_id):
            if self._shutdown:
                raise CapacityError("Server is shutting down", reason="shutdown")

            if len(self._index) >= self._max_total_connections:
                self._metrics.increment_connection_rejected_limit_sync()
                raise CapacityError(
                    f"Server at capacity ({self._max_total_connections} connections)",
                    reason="server_capacity",
                )
            if self._registry.connection_count(user_id) >= self._max_connections_per_user:
                self._metrics.increment_connection_rejected_limit_sync()
                raise CapacityError(
                    f"Too many connections for this user ({self._max_connections_per_user})",
                    reason="user_capacity",
                )

            connection = ClientConnection(websocket=websocket, user_id=user_id, token=token)
            if connection_id is not None:
                connection.connection_id = connection_id
            conn_id = connection.connection_id

            self._index.register(connection)
            self._registry.add(conn_id, user_id)
            self._heartbeat_tracker.record(conn_id)
            is_new_membership = self._rooms.join(conn_id, user_id, user_id)
            self._metrics.increment_connection_accepted_sync()

            logger.debug(
                "Connection registered",
                user_id=mask_user_id(user_id),
                user_connections=self._registry.connection_count(user_id),
                total_connections=len(self._index),
            )

            if is_new_membership:
                await self._presence.announce_join(conn_id, user_id)
        return connection

    async def disconnect(self, connection_id: str, reason: str = "client_disconnect") -> bool:
        """
        Remove a connection from every structure.

        Idempotent: a second call for the same ID finds nothing and does
        nothing. user-offline is broadcast only when this was the user's last
        connection, and only if no new connection for the user registered
        while waiting for the user's lock.

        Returns:
            True if the connection was known and removed.
        """
        self._heartbeat_tracker.remove(connection_id)
        self._cleanup.forget(connection_id)
        await self._rate_limiter.remove_connection(connection_id)

        user_id = self._registry.user_for(connection_id)
        if user_id is None:
            self._index.unregister(connection_id)
            self._rooms.leave_all(connection_id)
            return False

        async with self._locks.user_lock(user_id):
            self._index.unregister(connection_id)
            removed = self._registry.remove(connection_id)
            self._rooms.leave_all(connection_id)
            if removed is None:
                # A concurrent disconnect for the same ID got here first
                return False

            went_offline = not self._registry.is_online(user_id)
            logger.debug(
                "Connection removed",
                user_id=mask_user_id(user_id),
                reason=reason,
                went_offline=went_offline,
            )
            if went_offline:
                await self._presence.announce_leave(user_id)
        return True

    # =========================================================================
    # Inbound events
    # =========================================================================

    async def dispatch(self, connection_id: str, raw: str) -> RoutingResult | None:
        """
        Parse and route one client frame.

        Malformed frames and unknown event kinds are logged and ignored.

        Returns:
            RoutingResult, or None if the frame was rejected.
        """
        connection = self._index.get(connection_id)
        if connection is None or not connection.is_authenticated:
            logger.debug("Frame from unregistered connection ignored", connection_id=connection_id)
            return None

        try:
            event = parse_inbound_event(raw)
        except UnknownEventError as e:
            self._metrics.increment_invalid_frames_sync()
            logger.warning(
                "Unknown event ignored",
                event_name=sanitize_log_data(e.event_name),
                user_id=mask_user_id(connection.user_id),
            )
            return None
        except EventValidationError as e:
            self._metrics.increment_invalid_frames_sync()
            logger.warning(
                "Invalid frame ignored",
                error=str(e),
                frame=sanitize_log_data(raw),
                user_id=mask_user_id(connection.user_id),
            )
            return None

        return await self._router.route(connection_id, connection.user_id, event)

    async def handle_status_update(self, event: BlockStatusUpdateEvent) -> RoutingResult:
        """Apply a server-originated block/unblock notice."""
        invalidate = getattr(self._social_graph, "invalidate_pair", None)
        if callable(invalidate):
            invalidate(event.target_user_id, event.actor_user_id)
        return await self._router.route_status_update(event)

    # =========================================================================
    # Transport policy
    # =========================================================================

    async def check_rate_limit(self, connection_id: str) -> bool:
        return await self._rate_limiter.is_allowed(connection_id)

    def record_rate_limit_rejection(self) -> None:
        self._metrics.increment_connection_rejected_rate_limit_sync()

    def record_heartbeat(self, connection_id: str) -> None:
        self._heartbeat_tracker.record(connection_id)

    async def cleanup_stale_connections(self) -> int:
        return await self._cleanup.cleanup_stale_connections()

    async def cleanup_dead_connections(self) -> int:
        return await self._cleanup.cleanup_dead_connections()

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_stats_sync(self) -> dict[str, Any]:
        total = len(self._index)
        return {
            "total_connections": total,
            "max_connections": self._max_total_connections,
            "utilization_percent": round(total / max(1, self._max_total_connections) * 100, 1),
            "users_online": len(self._registry.online_identities()),
            "rooms": self._rooms.get_stats(),
            "presence": self._registry.get_stats(),
            "dead_connections_pending": self._cleanup.dead_connections_count,
            "rate_limiter_tracked": self._rate_limiter.tracked_count,
            "presence_locks": self._locks.get_stats(),
            "metrics": self._metrics.get_snapshot_sync(),
        }

    async def get_stats(self) -> dict[str, Any]:
        stats = self.get_stats_sync()
        stats["heartbeat_stats"] = self._heartbeat_tracker.get_stats()
        stats["rate_limiter"] = self._rate_limiter.get_stats()
        graph_stats = getattr(self._social_graph, "get_stats", None)
        if callable(graph_stats):
            stats["social_graph"] = graph_stats()
        return stats

    # =========================================================================
    # Shutdown
    # =========================================================================

    async def shutdown(self) -> int:
        """
        Close every connection and clear all state.

        No presence notices are sent: every peer is being closed too.
        """
        self._shutdown = True
        logger.info("Chat gateway shutting down", connections=len(self._index))

        connections = list(self._index.connections.values())

        async def close_one(connection: ClientConnection) -> bool:
            try:
                await asyncio.wait_for(
                    connection.websocket.close(
                        code=WSCloseCode.GOING_AWAY, reason="Server shutdown"
                    ),
                    timeout=WSConstants.WS_ACCEPT_TIMEOUT,
                )
                return True
            except Exception as e:
                logger.debug("Close failed during shutdown", error=type(e).__name__)
                return False

        results = await asyncio.gather(*[close_one(c) for c in connections])
        closed = sum(1 for r in results if r)

        for connection in connections:
            self._index.unregister(connection.connection_id)
            self._heartbeat_tracker.remove(connection.connection_id)
            self._rooms.leave_all(connection.connection_id)
            await self._rate_limiter.remove_connection(connection.connection_id)
        self._registry.clear()

        logger.info("Chat gateway shutdown complete", closed=closed)
        return closed
