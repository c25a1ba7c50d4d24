"""
Core components: constants, connection context, FastAPI dependencies.
"""

from chat_gateway.components.core.constants import (
    WSCloseCode,
    WSConstants,
    MSG_PING_PLAIN,
    MSG_PING_JSON,
    MSG_PONG_JSON,
    CHAT_ENDPOINT,
    DEFAULT_ALLOWED_ORIGINS,
    validate_websocket_origin,
)
from chat_gateway.components.core.context import ConnectionContext, sanitize_log_data
from chat_gateway.components.core.dependencies import (
    AppSettingsDep,
    ConnectionManagerDep,
    get_app_settings,
    get_connection_manager,
)

__all__ = [
    "WSCloseCode",
    "WSConstants",
    "MSG_PING_PLAIN",
    "MSG_PING_JSON",
    "MSG_PONG_JSON",
    "CHAT_ENDPOINT",
    "DEFAULT_ALLOWED_ORIGINS",
    "validate_websocket_origin",
    "ConnectionContext",
    "sanitize_log_data",
    "AppSettingsDep",
    "ConnectionManagerDep",
    "get_app_settings",
    "get_connection_manager",
]
