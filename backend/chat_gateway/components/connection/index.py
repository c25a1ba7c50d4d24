"""
Connection Index - transport handles for live connections.

Maps opaque connection IDs to the ClientConnection that owns the socket.
Presence and room state refer to connections only by ID; delivery resolves
the ID to a socket here.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from fastapi import WebSocket


def new_connection_id() -> str:
    """Opaque, server-assigned connection identifier."""
    return uuid.uuid4().hex


@dataclass(eq=False)
class ClientConnection:
    """
    One live client socket.

    Attributes:
        websocket: The underlying transport.
        connection_id: Unique per socket, never reused.
        user_id: Authenticated identity (None until the handshake completes).
        token: Credential the connection was authenticated with.
        connected_at: Unix timestamp of registration.
    """

    websocket: "WebSocket"
    connection_id: str = field(default_factory=new_connection_id)
    user_id: str | None = None
    token: str | None = None
    connected_at: float = field(default_factory=time.time)

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None


class ConnectionIndex:
    """
    Connection ID -> ClientConnection.

    Read-only access goes through an immutable view so callers cannot
    mutate the index behind the manager's back.
    """

    def __init__(self) -> None:
        self._connections: dict[str, ClientConnection] = {}

    @property
    def connections(self) -> MappingProxyType[str, ClientConnection]:
        return MappingProxyType(self._connections)

    @property
    def total_connections(self) -> int:
        return len(self._connections)

    def register(self, connection: ClientConnection) -> None:
        """
        Add a connection.

        Raises:
            ValueError: If the connection ID is already registered.
        """
        if connection.connection_id in self._connections:
            raise ValueError(f"Connection {connection.connection_id!r} already registered")
        self._connections[connection.connection_id] = connection

    def unregister(self, connection_id: str) -> ClientConnection | None:
        """Remove a connection. Unknown IDs return None."""
        return self._connections.pop(connection_id, None)

    def get(self, connection_id: str) -> ClientConnection | None:
        return self._connections.get(connection_id)

    def ids(self) -> list[str]:
        """Snapshot of registered connection IDs."""
        return list(self._connections)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._connections

    def __len__(self) -> int:
        return len(self._connections)
