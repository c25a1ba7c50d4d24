"""
WebSocket Endpoint Mixins.

Each mixin handles a single concern for the chat endpoint.

Mixins:
    MessageValidationMixin: Message size and rate limit checks
    HeartbeatMixin: Heartbeat recording
    TokenRevalidationMixin: Periodic credential revalidation
    ConnectionLifecycleMixin: Connect/disconnect audit logging

Usage:
    class MyEndpoint(MessageValidationMixin, HeartbeatMixin, WebSocketEndpointBase):
        ...
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Protocol

from fastapi import WebSocket

from shared.config.logging import audit_rate_limit_event, get_logger
from chat_gateway.components.core.constants import WSCloseCode

if TYPE_CHECKING:
    from chat_gateway.connection_manager import ConnectionManager
    from chat_gateway.components.auth.strategies import AuthStrategy
    from chat_gateway.components.core.context import ConnectionContext

logger = get_logger(__name__)


# =============================================================================
# Protocols for mixin dependencies
# =============================================================================


class HasWebSocket(Protocol):
    """Protocol for classes with websocket attribute."""

    websocket: WebSocket
    endpoint_name: str
    connection_id: str
    context: "ConnectionContext | None"


class HasManager(Protocol):
    """Protocol for classes with manager attribute."""

    manager: "ConnectionManager"


class HasToken(Protocol):
    """Protocol for classes holding a bearer credential."""

    token: str | None
    auth_strategy: "AuthStrategy"
    token_revalidation_interval: float
    _last_token_revalidation: float


# =============================================================================
# MessageValidationMixin
# =============================================================================


class MessageValidationMixin:
    """
    Mixin for message validation (size and rate limiting).

    Requires:
        - self.websocket: WebSocket
        - self.manager: ConnectionManager
        - self.endpoint_name: str
        - self.connection_id: str
        - self.max_message_size: int
    """

    async def validate_message_size(self: HasWebSocket, data: str) -> bool:
        """
        Validate message size against configured limit.

        Returns:
            True if valid, False if too large (connection closed).
        """
        max_size = self.max_message_size
        if len(data) > max_size:
            logger.warning(
                "Message size exceeded limit",
                endpoint=self.endpoint_name,
                identifier=self.context.identifier if self.context else "unknown",
                size=len(data),
                max_size=max_size,
            )
            await self.websocket.close(
                code=WSCloseCode.MESSAGE_TOO_BIG,
                reason="Message too large",
            )
            return False
        return True

    async def check_rate_limit(self: "HasWebSocket & HasManager") -> bool:
        """
        Check rate limit for this connection.

        Returns:
            True if allowed, False if rate limited (connection closed).
        """
        if not await self.manager.check_rate_limit(self.connection_id):
            limiter = self.manager.rate_limiter
            audit_rate_limit_event(
                context="chat_connection",
                identifier=self.connection_id,
                limit=limiter.max_messages,
                window=int(limiter.window_seconds),
            )
            self.manager.record_rate_limit_rejection()
            await self.websocket.close(
                code=WSCloseCode.RATE_LIMITED,
                reason="Rate limit exceeded",
            )
            return False
        return True


# =============================================================================
# HeartbeatMixin
# =============================================================================


class HeartbeatMixin:
    """
    Mixin for heartbeat handling.

    Any inbound frame counts as activity, not only pings.
    """

    def record_heartbeat(self: "HasWebSocket & HasManager") -> None:
        self.manager.record_heartbeat(self.connection_id)


# =============================================================================
# TokenRevalidationMixin
# =============================================================================


class TokenRevalidationMixin:
    """
    Mixin for periodic credential revalidation.

    Detects expired credentials during long-lived connections. The check
    runs at most once per ``token_revalidation_interval``.

    Requires:
        - self.token: str | None
        - self.auth_strategy: AuthStrategy
        - self.token_revalidation_interval: float
        - self._last_token_revalidation: float
    """

    async def revalidate_token_if_needed(self: HasToken) -> bool:
        """
        Returns:
            True if the credential is still valid (or not yet due), False otherwise.
        """
        if not self.token:
            return True
        now = time.time()
        if now - self._last_token_revalidation < self.token_revalidation_interval:
            return True

        if not await self.auth_strategy.revalidate(self.token):
            return False
        self._last_token_revalidation = now
        return True

    def reset_token_revalidation_timer(self: HasToken) -> None:
        self._last_token_revalidation = time.time()


# =============================================================================
# ConnectionLifecycleMixin
# =============================================================================


class ConnectionLifecycleMixin:
    """Mixin for connection lifecycle logging."""

    def log_connect(self: HasWebSocket) -> None:
        logger.info(
            "Chat client connected",
            **self.context.to_audit_dict("CONNECT") if self.context else {},
        )
        if self.context:
            self.context.audit("CONNECT")

    def log_disconnect(self: HasWebSocket, reason: str = "client_disconnect") -> None:
        logger.info(
            "Chat client disconnected",
            **(
                self.context.to_audit_dict("DISCONNECT", reason=reason)
                if self.context
                else {}
            ),
        )
        if self.context:
            self.context.audit("DISCONNECT", reason=reason)

    def log_connect_rejected(self: HasWebSocket, reason: str) -> None:
        logger.warning(
            "Connection rejected",
            endpoint=self.endpoint_name,
            identifier=self.context.identifier if self.context else "unknown",
            reason=reason,
        )
        if self.context:
            self.context.audit("CONNECT_REJECTED", reason=reason)


__all__ = [
    "MessageValidationMixin",
    "HeartbeatMixin",
    "TokenRevalidationMixin",
    "ConnectionLifecycleMixin",
    # Protocols
    "HasWebSocket",
    "HasManager",
    "HasToken",
]
