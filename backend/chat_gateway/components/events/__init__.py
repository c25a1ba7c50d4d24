"""
Event types and routing.
"""

from chat_gateway.components.events.types import (
    InboundEventType,
    OutboundEventType,
    EventValidationError,
    UnknownEventError,
    JoinRoomEvent,
    SendMessageEvent,
    FriendRequestSentEvent,
    FriendRequestAcceptedEvent,
    BlockStatusUpdateEvent,
    ClientEvent,
    RoutedEvent,
    parse_inbound_event,
    outbound,
)
from chat_gateway.components.events.router import DropReason, EventRouter, RoutingResult

__all__ = [
    "InboundEventType",
    "OutboundEventType",
    "EventValidationError",
    "UnknownEventError",
    "JoinRoomEvent",
    "SendMessageEvent",
    "FriendRequestSentEvent",
    "FriendRequestAcceptedEvent",
    "BlockStatusUpdateEvent",
    "ClientEvent",
    "RoutedEvent",
    "parse_inbound_event",
    "outbound",
    "DropReason",
    "EventRouter",
    "RoutingResult",
]
