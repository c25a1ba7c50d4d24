"""
FastAPI Dependencies for the Chat Gateway.

The ConnectionManager is built by the application lifespan and stored on
``app.state``; routes receive it through these dependencies instead of a
module-level singleton.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import Depends
from starlette.requests import HTTPConnection

from shared.config.settings import Settings, get_settings

if TYPE_CHECKING:
    from chat_gateway.connection_manager import ConnectionManager


def get_connection_manager(conn: HTTPConnection) -> "ConnectionManager":
    """
    Manager for the running application.

    Works for both HTTP requests and WebSocket connections.

    Raises:
        RuntimeError: The lifespan has not built a manager (app not started).
    """
    manager = getattr(conn.app.state, "manager", None)
    if manager is None:
        raise RuntimeError("ConnectionManager not initialized; is the lifespan running?")
    return manager


def get_app_settings(conn: HTTPConnection) -> Settings:
    """Settings the application was built with, falling back to the environment."""
    return getattr(conn.app.state, "settings", None) or get_settings()


ConnectionManagerDep = Depends(get_connection_manager)
AppSettingsDep = Depends(get_app_settings)
