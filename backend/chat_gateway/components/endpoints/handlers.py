"""
Concrete WebSocket Endpoint Implementations.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import WebSocket

from shared.config.logging import get_logger, mask_user_id
from chat_gateway.components.core.constants import CHAT_ENDPOINT
from chat_gateway.components.core.context import ConnectionContext
from chat_gateway.components.endpoints.base import BearerWebSocketEndpoint

if TYPE_CHECKING:
    from shared.config.settings import Settings
    from chat_gateway.connection_manager import ConnectionManager

logger = get_logger(__name__)


class ChatEndpoint(BearerWebSocketEndpoint):
    """
    WebSocket endpoint for chat clients.

    Features:
    - Bearer credential authentication, identity from configured claims
    - Auto-join of the client's own room on connect
    - Typed event routing (join-room, send-message, friend requests)
    """

    def __init__(
        self,
        websocket: WebSocket,
        manager: "ConnectionManager",
        token: str | None,
        settings: "Settings",
    ):
        super().__init__(
            websocket=websocket,
            manager=manager,
            endpoint_name=CHAT_ENDPOINT,
            token=token,
            token_revalidation_interval=settings.jwt_revalidation_interval,
            receive_timeout=settings.ws_receive_timeout,
            max_message_size=settings.ws_max_message_size,
            queue_size=settings.ws_inbound_queue_size,
        )
        self._user_id: str | None = None

    async def register_connection(self, context: ConnectionContext) -> None:
        self._user_id = context.user_id
        await self.manager.connect(
            self.websocket,
            context.user_id,
            token=self.token,
            connection_id=self.connection_id,
        )

    async def unregister_connection(self, context: ConnectionContext) -> None:
        await self.manager.disconnect(self.connection_id)

    async def handle_message(self, data: str) -> None:
        result = await self.manager.dispatch(self.connection_id, data)
        if result is not None and result.errors:
            logger.debug(
                "Event routed with errors",
                event_name=result.event,
                user_id=mask_user_id(self._user_id),
                errors=result.errors,
            )
