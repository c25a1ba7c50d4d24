"""
WebSocket endpoint components.

Base classes, mixins, and concrete endpoint handlers.
"""

from chat_gateway.components.endpoints.base import (
    WebSocketEndpointBase,
    BearerWebSocketEndpoint,
)
from chat_gateway.components.endpoints.mixins import (
    MessageValidationMixin,
    HeartbeatMixin,
    TokenRevalidationMixin,
    ConnectionLifecycleMixin,
)
from chat_gateway.components.endpoints.handlers import ChatEndpoint

__all__ = [
    # Base classes
    "WebSocketEndpointBase",
    "BearerWebSocketEndpoint",
    # Mixins
    "MessageValidationMixin",
    "HeartbeatMixin",
    "TokenRevalidationMixin",
    "ConnectionLifecycleMixin",
    # Handlers
    "ChatEndpoint",
]
