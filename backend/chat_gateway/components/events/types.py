"""
Event Value Objects for the Chat Gateway.

Inbound client events are parsed into a closed set of immutable value
objects at the router boundary. Anything that does not match one of the
known kinds, or is missing required fields, is rejected here and never
reaches routing.

Wire format (both directions):
    {"event": "<name>", "data": <payload>}
"""

from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Self, Union

from chat_gateway.components.core.constants import WSConstants


class InboundEventType(str, Enum):
    """Events a client may send."""

    JOIN_ROOM = "join-room"
    SEND_MESSAGE = "send-message"
    FRIEND_REQUEST_SENT = "friend-request-sent"
    FRIEND_REQUEST_ACCEPTED = "friend-request-accepted"


class OutboundEventType(str, Enum):
    """Events the gateway emits."""

    ONLINE_USERS = "online-users"
    USER_ONLINE = "user-online"
    USER_OFFLINE = "user-offline"
    RECEIVE_MESSAGE = "receive-message"
    NEW_FRIEND_REQUEST = "new-friend-request"
    FRIEND_REQUEST_ACCEPTED = "friend-request-accepted"
    FRIEND_STATUS_UPDATE = "friend-status-update"
    CONNECT_ERROR = "connect_error"
    ERROR = "error"


VALID_INBOUND_EVENTS: frozenset[str] = frozenset(e.value for e in InboundEventType)

MESSAGE_TYPES: frozenset[str] = frozenset({"text", "image", "file"})

STATUS_UPDATE_TYPES: frozenset[str] = frozenset({"blocked", "unblocked"})


class EventValidationError(ValueError):
    """Malformed frame: bad JSON, wrong shape, missing or mistyped fields."""


class UnknownEventError(EventValidationError):
    """Well-formed frame naming an event kind the gateway does not handle."""

    def __init__(self, event_name: Any) -> None:
        super().__init__(f"Unknown event: {event_name!r}")
        self.event_name = event_name


# =============================================================================
# Field helpers
# =============================================================================


def _require_mapping(data: Any, event: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise EventValidationError(f"{event} payload must be an object")
    return data


def _identity(value: Any, field_name: str) -> str:
    """User identities arrive as strings; integers are accepted and coerced."""
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise EventValidationError(f"{field_name} must be a string")
    identity = str(value).strip()
    if not identity:
        raise EventValidationError(f"{field_name} must not be empty")
    return identity


def _optional_str(data: dict[str, Any], key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise EventValidationError(f"{key} must be a string")
    return value


def _request_record(value: Any) -> dict[str, Any] | None:
    """
    Friend request metadata is echoed to the other party as-is.

    Deep-copied so later mutation by the caller cannot leak into the frame,
    and bounded in field count.
    """
    if value is None:
        return None
    if not isinstance(value, dict):
        raise EventValidationError("request must be an object")
    if len(value) > WSConstants.MAX_REQUEST_FIELDS:
        raise EventValidationError(f"request has too many fields: {len(value)}")
    return copy.deepcopy(value)


# =============================================================================
# Inbound events
# =============================================================================


@dataclass(frozen=True, slots=True)
class JoinRoomEvent:
    """
    Control event: subscribe to the caller's own room.

    The payload is the claimed user ID, either bare or as {"userId": ...}.
    """

    claimed_user_id: str

    @classmethod
    def from_dict(cls, data: Any) -> Self:
        if isinstance(data, dict):
            data = data.get("userId")
        return cls(claimed_user_id=_identity(data, "userId"))


@dataclass(frozen=True, slots=True)
class SendMessageEvent:
    """Direct chat message. The sender is never taken from the payload."""

    receiver_id: str
    message: str
    message_type: str = "text"
    file_url: str | None = None
    file_name: str | None = None
    file_size: int | None = None
    message_id: str | None = None

    @classmethod
    def from_dict(cls, data: Any) -> Self:
        data = _require_mapping(data, InboundEventType.SEND_MESSAGE.value)
        receiver_id = _identity(data.get("receiverId"), "receiverId")

        message = data.get("message", "")
        if message is None:
            message = ""
        if not isinstance(message, str):
            raise EventValidationError("message must be a string")
        if len(message) > WSConstants.MAX_MESSAGE_BODY_LENGTH:
            raise EventValidationError("message is too long")

        message_type = data.get("messageType") or "text"
        if message_type not in MESSAGE_TYPES:
            raise EventValidationError(f"messageType must be one of {sorted(MESSAGE_TYPES)}")

        file_size = data.get("fileSize")
        if file_size is not None:
            if isinstance(file_size, bool) or not isinstance(file_size, int) or file_size < 0:
                raise EventValidationError("fileSize must be a non-negative integer")

        message_id = data.get("messageId", data.get("_id"))
        if message_id is not None:
            message_id = _identity(message_id, "messageId")

        file_url = _optional_str(data, "fileUrl")
        if not message and not file_url:
            raise EventValidationError("message or fileUrl is required")

        return cls(
            receiver_id=receiver_id,
            message=message,
            message_type=message_type,
            file_url=file_url,
            file_name=_optional_str(data, "fileName"),
            file_size=file_size,
            message_id=message_id,
        )


@dataclass(frozen=True, slots=True)
class FriendRequestSentEvent:
    """Notify a user that the caller sent them a friend request."""

    receiver_id: str
    request: dict[str, Any] | None = field(default=None, hash=False)

    @classmethod
    def from_dict(cls, data: Any) -> Self:
        data = _require_mapping(data, InboundEventType.FRIEND_REQUEST_SENT.value)
        return cls(
            receiver_id=_identity(data.get("receiverId"), "receiverId"),
            request=_request_record(data.get("request")),
        )


@dataclass(frozen=True, slots=True)
class FriendRequestAcceptedEvent:
    """
    Notify the original requester that the caller accepted their request.

    ``sender_id`` is the requester (the notification target). The accepter is
    always the authenticated caller; a client-supplied receiverId is kept
    only to detect mismatches.
    """

    sender_id: str
    receiver_id: str | None = None
    request: dict[str, Any] | None = field(default=None, hash=False)

    @classmethod
    def from_dict(cls, data: Any) -> Self:
        data = _require_mapping(data, InboundEventType.FRIEND_REQUEST_ACCEPTED.value)
        receiver = data.get("receiverId")
        return cls(
            sender_id=_identity(data.get("senderId"), "senderId"),
            receiver_id=_identity(receiver, "receiverId") if receiver is not None else None,
            request=_request_record(data.get("request")),
        )


@dataclass(frozen=True, slots=True)
class BlockStatusUpdateEvent:
    """
    Server-originated block/unblock notification.

    Published on the status channel by the REST layer, never accepted from
    a client socket.
    """

    status: str
    target_user_id: str
    actor_user_id: str

    @classmethod
    def from_dict(cls, data: Any) -> Self:
        data = _require_mapping(data, "friend-status-update")
        status = data.get("type")
        if status not in STATUS_UPDATE_TYPES:
            raise EventValidationError(f"type must be one of {sorted(STATUS_UPDATE_TYPES)}")
        return cls(
            status=status,
            target_user_id=_identity(data.get("targetUserId"), "targetUserId"),
            actor_user_id=_identity(data.get("actorUserId"), "actorUserId"),
        )


RoutedEvent = Union[
    SendMessageEvent,
    FriendRequestSentEvent,
    FriendRequestAcceptedEvent,
    BlockStatusUpdateEvent,
]

ClientEvent = Union[
    JoinRoomEvent,
    SendMessageEvent,
    FriendRequestSentEvent,
    FriendRequestAcceptedEvent,
]

_INBOUND_PARSERS: dict[str, type] = {
    InboundEventType.JOIN_ROOM.value: JoinRoomEvent,
    InboundEventType.SEND_MESSAGE.value: SendMessageEvent,
    InboundEventType.FRIEND_REQUEST_SENT.value: FriendRequestSentEvent,
    InboundEventType.FRIEND_REQUEST_ACCEPTED.value: FriendRequestAcceptedEvent,
}


def parse_inbound_event(raw: str | dict[str, Any]) -> ClientEvent:
    """
    Parse one client frame into a typed event.

    Args:
        raw: Frame text, or an already-decoded envelope.

    Raises:
        EventValidationError: Bad JSON, bad envelope, or invalid payload.
        UnknownEventError: Envelope names an unhandled event kind.
    """
    if isinstance(raw, str):
        try:
            envelope = json.loads(raw)
        except json.JSONDecodeError as e:
            raise EventValidationError(f"Invalid JSON: {e.msg}") from e
    else:
        envelope = raw

    if not isinstance(envelope, dict):
        raise EventValidationError("Frame must be an object")

    name = envelope.get("event")
    if not isinstance(name, str):
        raise EventValidationError("Frame is missing the event name")

    parser = _INBOUND_PARSERS.get(name)
    if parser is None:
        raise UnknownEventError(name)

    return parser.from_dict(envelope.get("data"))


# =============================================================================
# Outbound frames
# =============================================================================


def outbound(event: OutboundEventType | str, data: Any) -> dict[str, Any]:
    """Build an outbound frame."""
    name = event.value if isinstance(event, OutboundEventType) else event
    return {"event": name, "data": data}


def utc_timestamp(now: datetime | None = None) -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a Z suffix."""
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
