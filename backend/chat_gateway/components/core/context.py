"""
Connection Context for audit logging.

Encapsulates connection metadata for consistent audit logging instead of
passing the same parameters to every audit_ws_connection call.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import WebSocket


# Control characters and Unicode direction overrides stripped from log data
_CONTROL_CHAR_PATTERN = re.compile(
    r'[\x00-\x1f\x7f-\x9f'  # ASCII control characters
    r'\u200b-\u200f'  # Zero-width and direction marks
    r'\u202a-\u202e'  # Bidirectional text formatting (RTL override, etc.)
    r'\u2066-\u2069'  # Isolate formatting characters
    r'\ufeff]'  # BOM / Zero-width no-break space
)


def sanitize_log_data(data: Any, max_length: int = 100) -> str:
    """
    Sanitize user-provided data before logging.

    Truncates first (so escaping cannot cut a sequence in half), then strips
    control characters and escapes JSON-dangerous characters.

    Args:
        data: Raw user data. Non-strings are converted with str().
        max_length: Maximum length to include in logs.

    Returns:
        Sanitized, truncated string safe for structured logging.
    """
    if not isinstance(data, str):
        data = str(data)

    truncated = data[:max_length] if len(data) > max_length else data
    was_truncated = len(data) > max_length

    sanitized = _CONTROL_CHAR_PATTERN.sub('', truncated)

    # Replace backslashes first to avoid double-escaping
    sanitized = sanitized.replace('\\', '\\\\')
    sanitized = sanitized.replace('"', '\\"')
    sanitized = sanitized.replace('\n', '\\n')
    sanitized = sanitized.replace('\r', '\\r')
    sanitized = sanitized.replace('\t', '\\t')

    if was_truncated:
        return sanitized + "..."
    return sanitized


@dataclass
class ConnectionContext:
    """
    Context object for chat connection metadata.

    Usage:
        ctx = ConnectionContext.from_websocket(websocket, "/ws/chat", connection_id)
        ctx.user_id = user_id
        ctx.audit("CONNECT")
        # ... later
        ctx.audit("DISCONNECT", reason="client_disconnect")
    """

    endpoint: str
    connection_id: str
    origin: str | None = None
    user_id: str | None = None

    @classmethod
    def from_websocket(
        cls,
        websocket: "WebSocket",
        endpoint: str,
        connection_id: str,
    ) -> "ConnectionContext":
        """
        Create context from a WebSocket connection.

        Only extracts basic connection info (origin). The user ID is filled
        in once the credential has been resolved.
        """
        return cls(
            endpoint=endpoint,
            connection_id=connection_id,
            origin=websocket.headers.get("origin"),
        )

    def to_audit_dict(self, event_type: str, **extra: Any) -> dict[str, Any]:
        """
        Convert to dictionary for audit logging.

        Only includes non-None fields to reduce log noise.
        """
        result: dict[str, Any] = {
            "event_type": event_type,
            "endpoint": self.endpoint,
            "connection_id": self.connection_id,
        }
        if self.origin:
            result["origin"] = self.origin
        if self.user_id:
            result["user_id"] = self.user_id

        result.update(extra)
        return result

    def audit(
        self,
        event_type: str,
        logger_func: Any = None,
        **extra: Any,
    ) -> None:
        """
        Log an audit event with all context fields.

        Args:
            event_type: The audit event type.
            logger_func: Optional custom logger function (default: audit_ws_connection).
            **extra: Additional fields to log.
        """
        if logger_func is None:
            from shared.config.logging import audit_ws_connection
            logger_func = audit_ws_connection

        logger_func(**self.to_audit_dict(event_type, **extra))

    @property
    def identifier(self) -> str:
        """Human-readable identifier for this connection."""
        if self.user_id:
            return f"user:{self.user_id}"
        return f"conn:{self.connection_id[:8]}"
