"""
Event Router - routes typed client events to recipient rooms.

Every relayed event names a target identity; the router delivers it to the
connections in that identity's room and never to the sender's own room.
Drops (offline recipient, self-target, blocked pair, failed lookup) are
silent for the sender and reported through RoutingResult and metrics.

Usage:
    router = EventRouter(delivery, rooms, presence, social_graph)
    result = await router.route(connection_id, user_id, event)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, TYPE_CHECKING

from shared.config.logging import audit_ws_connection, get_logger, mask_user_id
from chat_gateway.components.core.constants import CHAT_ENDPOINT
from chat_gateway.components.data.social_graph import SocialGraphLookupError
from chat_gateway.components.events.types import (
    BlockStatusUpdateEvent,
    ClientEvent,
    FriendRequestAcceptedEvent,
    FriendRequestSentEvent,
    InboundEventType,
    JoinRoomEvent,
    OutboundEventType,
    SendMessageEvent,
    outbound,
    utc_timestamp,
)
from chat_gateway.components.presence.rooms import RoomAuthorizationError

if TYPE_CHECKING:
    from chat_gateway.components.broadcast.delivery import ConnectionBroadcaster
    from chat_gateway.components.broadcast.presence import PresenceBroadcaster
    from chat_gateway.components.data.social_graph import SocialGraphGateway
    from chat_gateway.components.metrics.collector import MetricsCollector
    from chat_gateway.components.presence.rooms import RoomMembership

logger = get_logger(__name__)


class DropReason:
    """Why a relay was not delivered."""

    RECIPIENT_OFFLINE = "recipient_offline"
    SELF_TARGET = "self_target"
    LOOKUP_FAILED = "lookup_failed"
    UNKNOWN_SENDER = "unknown_sender"
    BLOCKED = "blocked"
    NOT_ACCEPTED = "not_accepted"
    UNAUTHORIZED_ROOM = "unauthorized_room"


@dataclass
class RoutingResult:
    """Result of routing one event."""

    event: str
    delivered: int = 0
    dropped_reason: str | None = None
    errors: list[str] | None = None

    @property
    def dropped(self) -> bool:
        return self.dropped_reason is not None

    @property
    def success(self) -> bool:
        """Whether routing completed without errors."""
        return not self.errors


class EventRouter:
    """
    Routes client events and server-originated status updates.

    Routing rules:
    - join-room: subscribe to own room; private snapshot; announce if new
    - send-message: receive-message to the receiver's room, with the
      sender's profile and a server timestamp
    - friend-request-sent: new-friend-request to the receiver's room
    - friend-request-accepted: friend-request-accepted to the original
      requester's room, then an online-users refresh to both rooms
    - status update (server-originated): friend-status-update to the
      target's room

    With ``enforce_social_graph`` on, relays between a blocked pair are
    dropped and acceptance notices require an accepted friendship.
    """

    def __init__(
        self,
        delivery: "ConnectionBroadcaster",
        rooms: "RoomMembership",
        presence: "PresenceBroadcaster",
        social_graph: "SocialGraphGateway",
        metrics: "MetricsCollector | None" = None,
        enforce_social_graph: bool = True,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._delivery = delivery
        self._rooms = rooms
        self._presence = presence
        self._social_graph = social_graph
        self._metrics = metrics
        self._enforce = enforce_social_graph
        self._clock = clock

    @property
    def enforces_social_graph(self) -> bool:
        return self._enforce

    def _timestamp(self) -> str:
        return utc_timestamp(self._clock() if self._clock else None)

    def _drop(self, result: RoutingResult, reason: str, **log_data: Any) -> RoutingResult:
        result.dropped_reason = reason
        if self._metrics is not None:
            self._metrics.increment_dropped_sync(reason)
        logger.debug("Relay dropped", event_name=result.event, reason=reason, **log_data)
        return result

    def _recipients(self, target_user_id: str, sender_user_id: str) -> frozenset[str]:
        """Target room members, excluding anything in the sender's own room."""
        return self._rooms.members(target_user_id) - self._rooms.members(sender_user_id)

    async def _is_blocked(self, user_a: str, user_b: str) -> bool:
        state = await self._social_graph.get_friendship(user_a, user_b)
        return state is not None and state.is_blocked

    # =========================================================================
    # Entry points
    # =========================================================================

    async def route(
        self,
        connection_id: str,
        user_id: str,
        event: ClientEvent,
    ) -> RoutingResult:
        """
        Route one parsed client event from an authenticated connection.

        Never raises for delivery or lookup failures.
        """
        if isinstance(event, JoinRoomEvent):
            name = InboundEventType.JOIN_ROOM.value
            handler = self._route_join_room
        elif isinstance(event, SendMessageEvent):
            name = InboundEventType.SEND_MESSAGE.value
            handler = self._route_message
        elif isinstance(event, FriendRequestSentEvent):
            name = InboundEventType.FRIEND_REQUEST_SENT.value
            handler = self._route_friend_request
        elif isinstance(event, FriendRequestAcceptedEvent):
            name = InboundEventType.FRIEND_REQUEST_ACCEPTED.value
            handler = self._route_friend_accept
        else:
            raise TypeError(f"Unroutable event type: {type(event).__name__}")

        if self._metrics is not None:
            self._metrics.increment_routed_sync(name)
        result = RoutingResult(event=name)
        return await handler(connection_id, user_id, event, result)

    async def route_status_update(self, event: BlockStatusUpdateEvent) -> RoutingResult:
        """Deliver a block/unblock notice to the target's room."""
        result = RoutingResult(event=OutboundEventType.FRIEND_STATUS_UPDATE.value)
        if self._metrics is not None:
            self._metrics.increment_status_updates_sync()

        if event.target_user_id == event.actor_user_id:
            return self._drop(result, DropReason.SELF_TARGET)

        members = self._rooms.members(event.target_user_id)
        if not members:
            return self._drop(
                result,
                DropReason.RECIPIENT_OFFLINE,
                target=mask_user_id(event.target_user_id),
            )

        frame = outbound(
            OutboundEventType.FRIEND_STATUS_UPDATE,
            {"type": event.status, "userId": event.actor_user_id},
        )
        result.delivered = await self._delivery.send_to_connections(
            members, frame, f"room:{event.target_user_id}"
        )
        return result

    # =========================================================================
    # Handlers
    # =========================================================================

    async def _route_join_room(
        self,
        connection_id: str,
        user_id: str,
        event: JoinRoomEvent,
        result: RoutingResult,
    ) -> RoutingResult:
        try:
            is_new = self._rooms.join(connection_id, event.claimed_user_id, user_id)
        except RoomAuthorizationError as e:
            if self._metrics is not None:
                self._metrics.increment_room_denied_sync()
            audit_ws_connection(
                event_type="JOIN_REJECTED",
                endpoint=CHAT_ENDPOINT,
                user_id=user_id,
                connection_id=connection_id,
                reason="room_mismatch",
            )
            await self._delivery.send_to_connection(
                connection_id,
                outbound(OutboundEventType.ERROR, {
                    "message": str(e),
                    "code": DropReason.UNAUTHORIZED_ROOM,
                }),
            )
            result.errors = [str(e)]
            return self._drop(result, DropReason.UNAUTHORIZED_ROOM)

        if is_new:
            await self._presence.announce_join(connection_id, user_id)
        else:
            await self._presence.send_snapshot(connection_id)
        result.delivered = 1
        return result

    async def _route_message(
        self,
        connection_id: str,
        user_id: str,
        event: SendMessageEvent,
        result: RoutingResult,
    ) -> RoutingResult:
        target = event.receiver_id
        if target == user_id:
            return self._drop(result, DropReason.SELF_TARGET)

        recipients = self._recipients(target, user_id)
        if not recipients:
            return self._drop(result, DropReason.RECIPIENT_OFFLINE, target=mask_user_id(target))

        try:
            if self._enforce and await self._is_blocked(user_id, target):
                return self._drop(result, DropReason.BLOCKED)
            profile = await self._social_graph.get_profile(user_id)
        except SocialGraphLookupError as e:
            logger.warning(
                "Message dropped after failed lookup",
                sender=mask_user_id(user_id),
                error=str(e),
            )
            result.errors = [str(e)]
            return self._drop(result, DropReason.LOOKUP_FAILED)

        if profile is None:
            return self._drop(result, DropReason.UNKNOWN_SENDER, sender=mask_user_id(user_id))

        payload: dict[str, Any] = {
            "senderId": user_id,
            "receiverId": target,
            "message": event.message,
            "messageType": event.message_type,
            "sender": profile.to_payload(),
            "timestamp": self._timestamp(),
        }
        if event.message_id is not None:
            payload["messageId"] = event.message_id
        if event.file_url is not None:
            payload["fileUrl"] = event.file_url
        if event.file_name is not None:
            payload["fileName"] = event.file_name
        if event.file_size is not None:
            payload["fileSize"] = event.file_size

        result.delivered = await self._delivery.send_to_connections(
            recipients,
            outbound(OutboundEventType.RECEIVE_MESSAGE, payload),
            f"room:{target}",
        )
        return result

    async def _route_friend_request(
        self,
        connection_id: str,
        user_id: str,
        event: FriendRequestSentEvent,
        result: RoutingResult,
    ) -> RoutingResult:
        target = event.receiver_id
        if target == user_id:
            return self._drop(result, DropReason.SELF_TARGET)

        recipients = self._recipients(target, user_id)
        if not recipients:
            return self._drop(result, DropReason.RECIPIENT_OFFLINE, target=mask_user_id(target))

        if self._enforce:
            try:
                if await self._is_blocked(user_id, target):
                    return self._drop(result, DropReason.BLOCKED)
            except SocialGraphLookupError as e:
                logger.warning(
                    "Friend request dropped after failed lookup",
                    sender=mask_user_id(user_id),
                    error=str(e),
                )
                result.errors = [str(e)]
                return self._drop(result, DropReason.LOOKUP_FAILED)

        kind = OutboundEventType.NEW_FRIEND_REQUEST
        frame = outbound(kind, {
            "senderId": user_id,
            "receiverId": target,
            "request": event.request,
            "timestamp": self._timestamp(),
            "type": kind.value,
        })
        result.delivered = await self._delivery.send_to_connections(
            recipients, frame, f"room:{target}"
        )
        return result

    async def _route_friend_accept(
        self,
        connection_id: str,
        user_id: str,
        event: FriendRequestAcceptedEvent,
        result: RoutingResult,
    ) -> RoutingResult:
        requester = event.sender_id
        if requester == user_id:
            return self._drop(result, DropReason.SELF_TARGET)

        if event.receiver_id is not None and event.receiver_id != user_id:
            logger.warning(
                "Acceptance receiverId does not match the authenticated user",
                accepter=mask_user_id(user_id),
            )

        if self._enforce:
            try:
                state = await self._social_graph.get_friendship(requester, user_id, fresh=True)
            except SocialGraphLookupError as e:
                logger.warning(
                    "Acceptance dropped after failed lookup",
                    accepter=mask_user_id(user_id),
                    error=str(e),
                )
                result.errors = [str(e)]
                return self._drop(result, DropReason.LOOKUP_FAILED)
            if state is None or not state.is_accepted:
                return self._drop(result, DropReason.NOT_ACCEPTED)

        recipients = self._recipients(requester, user_id)
        if recipients:
            kind = OutboundEventType.FRIEND_REQUEST_ACCEPTED
            frame = outbound(kind, {
                "senderId": requester,
                "receiverId": user_id,
                "request": event.request,
                "timestamp": self._timestamp(),
                "type": kind.value,
            })
            result.delivered = await self._delivery.send_to_connections(
                recipients, frame, f"room:{requester}"
            )
        else:
            self._drop(result, DropReason.RECIPIENT_OFFLINE, target=mask_user_id(requester))

        # The accepter's friend list changed even if the requester is offline
        await self._presence.refresh_rooms(requester, user_id)
        return result
