"""
Chat Gateway Constants.

Centralized constants with documentation explaining rationale for each value.
"""

from enum import IntEnum
from typing import Final, Protocol

__all__ = [
    "WSCloseCode",
    "WSConstants",
    "MSG_PING_PLAIN",
    "MSG_PING_JSON",
    "MSG_PONG_JSON",
    "CHAT_ENDPOINT",
    "DEFAULT_ALLOWED_ORIGINS",
    "validate_websocket_origin",
    "HasStats",
]


class WSCloseCode(IntEnum):
    """
    WebSocket close codes used by the gateway.

    Standard codes (1000-1999) from RFC 6455.
    Custom codes (4000-4999) for application-specific errors.
    """

    # Standard codes (RFC 6455)
    NORMAL = 1000  # Normal closure
    GOING_AWAY = 1001  # Server shutting down or client navigating away
    POLICY_VIOLATION = 1008  # Generic policy violation
    MESSAGE_TOO_BIG = 1009  # Message too large to process
    SERVER_ERROR = 1011  # Unexpected server error
    SERVER_OVERLOADED = 1013  # Connection limits reached, try again later

    # Custom application codes (4000-4999)
    AUTH_FAILED = 4001  # Missing, malformed, expired or identity-less credential
    FORBIDDEN = 4003  # Origin not allowed
    RATE_LIMITED = 4029  # Too many messages per second (see ws_message_rate_limit setting)


class WSConstants:
    """
    Gateway operational constants.

    Values read from settings at runtime (timeouts, limits) take precedence;
    these are the defaults used when a component is built without settings.
    """

    # WS_RECEIVE_TIMEOUT: 90 seconds
    # Rationale: 3x a 30s client ping interval. Allows network jitter while
    # still detecting dead connections.
    WS_RECEIVE_TIMEOUT: Final[float] = 90.0

    # WS_ACCEPT_TIMEOUT: 5 seconds
    # Rationale: the handshake should complete within TCP timeout.
    WS_ACCEPT_TIMEOUT: Final[float] = 5.0

    # TOKEN_REVALIDATION_INTERVAL: 5 minutes
    # Rationale: long-lived connections outlive short credentials; re-checking
    # expiry every 5 minutes bounds the window of use of an expired token.
    TOKEN_REVALIDATION_INTERVAL: Final[float] = 300.0

    # PROFILE_LOOKUP_TIMEOUT: 2 seconds
    # Rationale: profile reads are primary-key lookups (<10ms typical). After
    # the timeout the message is dropped instead of stalling the connection.
    PROFILE_LOOKUP_TIMEOUT: Final[float] = 2.0

    # HEARTBEAT_CLEANUP_INTERVAL: 30 seconds
    # Rationale: matches typical client ping interval.
    HEARTBEAT_CLEANUP_INTERVAL: Final[float] = 30.0

    # WORKER_SHUTDOWN_TIMEOUT: 1 second
    # Rationale: a cancelled per-connection worker only has to unwind one
    # handler; anything longer indicates a stuck collaborator call.
    WORKER_SHUTDOWN_TIMEOUT: Final[float] = 1.0

    # MAX_TRACKED_CONNECTIONS: 2000
    # Rationale: 2x ws_max_total_connections for connections in transition.
    MAX_TRACKED_CONNECTIONS: Final[int] = 2000

    # MAX_MESSAGE_BODY_LENGTH: 10000 characters
    # Rationale: chat messages are short text; attachments travel as URLs.
    MAX_MESSAGE_BODY_LENGTH: Final[int] = 10_000

    # MAX_REQUEST_FIELDS: 50
    # Rationale: friend request metadata is a small record echoed to the
    # recipient. Bounds what a client can make the server relay.
    MAX_REQUEST_FIELDS: Final[int] = 50

    # MAX_DEAD_CONNECTIONS: 500
    # Rationale: bounds the set of connections that failed a send and are
    # waiting for the cleanup loop.
    MAX_DEAD_CONNECTIONS: Final[int] = 500


# Heartbeat protocol
MSG_PING_PLAIN: Final[str] = "ping"
MSG_PING_JSON: Final[str] = '{"type":"ping"}'
MSG_PONG_JSON: Final[str] = '{"type":"pong"}'

CHAT_ENDPOINT: Final[str] = "/ws/chat"


# Default development origins
DEFAULT_ALLOWED_ORIGINS: Final[tuple[str, ...]] = (
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
)


def validate_websocket_origin(origin: str | None, settings: object) -> bool:
    """
    Validate WebSocket origin header against allowed origins.

    A missing Origin header is accepted only in development (non-browser
    clients and tests do not send one).

    Args:
        origin: The Origin header value, or None if not present.
        settings: Settings object with environment and allowed_origins attributes.

    Returns:
        True if origin is allowed, False otherwise.
    """
    from shared.config.logging import get_logger

    _logger = get_logger(__name__)

    allowed_origins_str = getattr(settings, "allowed_origins", None)
    if allowed_origins_str:
        allowed = [o.strip() for o in allowed_origins_str.split(",") if o.strip()]
    else:
        allowed = list(DEFAULT_ALLOWED_ORIGINS)

    if not origin:
        is_dev = getattr(settings, "environment", "production") == "development"
        if is_dev:
            _logger.debug("WebSocket connection with missing Origin header (allowed in dev mode only)")
            return True
        _logger.warning("WebSocket connection rejected: missing Origin header")
        return False

    if origin in allowed:
        return True

    _logger.warning(
        "WebSocket connection rejected: origin not in allowed list",
        origin=origin,
        allowed_count=len(allowed),
    )
    return False


class HasStats(Protocol):
    """
    Protocol for components that provide statistics.

    Used to aggregate stats from registry, rooms, rate limiter, metrics.
    """

    def get_stats(self) -> dict[str, int | float | str]:
        """Return component statistics as a dictionary."""
        ...
