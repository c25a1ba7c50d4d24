"""
Chat Gateway main application.

Real-time presence and message relay for chat clients. The application
factory builds one ConnectionManager per app inside the lifespan and keeps
it on ``app.state.manager``.
"""

from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI, Query, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from shared.config.logging import chat_gateway_logger as logger, setup_logging
from shared.config.settings import Settings, get_settings
from shared.infrastructure.correlation import CorrelationIdMiddleware
from shared.infrastructure.db import dispose_engine
from shared.infrastructure.events import close_redis_pool
from chat_gateway.connection_manager import ConnectionManager
from chat_gateway.redis_subscriber import make_status_update_handler, run_subscriber
from chat_gateway.components.auth.strategies import BearerTokenAuthStrategy
from chat_gateway.components.core.constants import (
    CHAT_ENDPOINT,
    DEFAULT_ALLOWED_ORIGINS,
    WSConstants,
)
from chat_gateway.components.core.dependencies import AppSettingsDep, ConnectionManagerDep
from chat_gateway.components.data.social_graph import SqlSocialGraphRepository
from chat_gateway.components.endpoints.handlers import ChatEndpoint
from chat_gateway.components.metrics.prometheus import generate_prometheus_metrics

if TYPE_CHECKING:
    from chat_gateway.components.data.social_graph import SocialGraphGateway


# =============================================================================
# Background tasks
# =============================================================================


async def run_heartbeat_cleanup(
    manager: ConnectionManager,
    interval: float = WSConstants.HEARTBEAT_CLEANUP_INTERVAL,
) -> None:
    """
    Periodically clean up stale connections and resources.

    Each cycle checks for:
    - Connections without recent activity
    - Dead connections marked during send operations
    - Rate limiter entries for disconnected connections
    """
    while True:
        try:
            await asyncio.sleep(interval)

            stale_cleaned = await manager.cleanup_stale_connections()
            if stale_cleaned > 0:
                logger.info("Cleaned up stale connections", count=stale_cleaned)

            dead_cleaned = await manager.cleanup_dead_connections()
            if dead_cleaned > 0:
                logger.info("Cleaned up dead connections", count=dead_cleaned)

            try:
                rate_limiter_cleaned = await manager.rate_limiter.cleanup_stale()
                if rate_limiter_cleaned > 0:
                    logger.debug("Cleaned up rate limiter entries", count=rate_limiter_cleaned)
            except Exception as e:
                logger.warning("Error during rate limiter cleanup", error=str(e))

        except asyncio.CancelledError:
            break
        except Exception as e:
            logger.error("Error in heartbeat cleanup", error=str(e))


async def run_status_subscriber(manager: ConnectionManager, channel: str) -> None:
    """Forward block / unblock notices from Redis to connected clients."""
    try:
        await run_subscriber([channel], make_status_update_handler(manager))
    except asyncio.CancelledError:
        pass
    except Exception as e:
        logger.error("Redis subscriber error", error=str(e), exc_info=True)


async def _cancel(task: asyncio.Task | None) -> None:
    if task is None:
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


def _allowed_origins(settings: Settings) -> list[str]:
    if settings.allowed_origins:
        return [o.strip() for o in settings.allowed_origins.split(",") if o.strip()]
    # HTTPS variants of the development defaults
    return list(DEFAULT_ALLOWED_ORIGINS) + [
        origin.replace("http://", "https://") for origin in DEFAULT_ALLOWED_ORIGINS
    ]


# =============================================================================
# Application factory
# =============================================================================


def create_app(
    settings: Settings | None = None,
    social_graph: "SocialGraphGateway | None" = None,
) -> FastAPI:
    """
    Build the gateway application.

    Args:
        settings: Application settings (default: environment).
        social_graph: Social graph gateway (default: SQL repository).
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Starts:
        - Heartbeat cleanup task for stale and dead connections
        - Redis status subscriber (when social events are enabled)
        """
        setup_logging()
        errors = settings.validate_production_secrets()
        if errors:
            for error in errors:
                logger.critical("Invalid production configuration", error=error)
            raise RuntimeError("Invalid production configuration: " + "; ".join(errors))

        logger.info(
            "Starting Chat Gateway",
            port=settings.ws_gateway_port,
            env=settings.environment,
            social_graph_enforcement=settings.social_graph_enforcement,
        )

        graph = social_graph or SqlSocialGraphRepository(
            timeout=settings.profile_lookup_timeout,
            cache_ttl=settings.profile_cache_ttl,
            cache_max_size=settings.profile_cache_max_size,
        )
        auth_strategy = BearerTokenAuthStrategy(
            claim_names=settings.jwt_identity_claims,
            secret=settings.jwt_secret,
        )
        manager = ConnectionManager.from_settings(settings, graph, auth_strategy=auth_strategy)
        app.state.manager = manager
        app.state.settings = settings

        cleanup_task = asyncio.create_task(run_heartbeat_cleanup(manager), name="heartbeat_cleanup")
        subscriber_task = None
        if settings.social_events_enabled:
            subscriber_task = asyncio.create_task(
                run_status_subscriber(manager, settings.social_events_channel),
                name="status_subscriber",
            )

        yield

        logger.info("Shutting down Chat Gateway")
        await _cancel(subscriber_task)
        await _cancel(cleanup_task)
        await manager.shutdown()

        if settings.social_events_enabled:
            await close_redis_pool()
        if social_graph is None:
            dispose_engine()
        app.state.manager = None

    app = FastAPI(
        title="FunChat Realtime Gateway",
        description="Presence and message relay for chat clients",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(CorrelationIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=_allowed_origins(settings),
        allow_credentials=True,
        allow_methods=["GET", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type"],
    )

    # =========================================================================
    # Health and metrics
    # =========================================================================

    @app.get("/ws/health")
    def health_check(manager: ConnectionManager = ConnectionManagerDep):
        """Basic health check endpoint."""
        try:
            stats = manager.get_stats_sync()
        except Exception as e:
            logger.warning("Failed to get stats in health check", error=str(e))
            stats = {"error": "stats_unavailable"}
        return {
            "status": "healthy",
            "service": "chat-gateway",
            "version": app.version,
            "environment": settings.environment,
            **stats,
        }

    @app.get("/ws/metrics")
    async def prometheus_metrics(manager: ConnectionManager = ConnectionManagerDep):
        """
        Prometheus-compatible metrics endpoint.

        Configure Prometheus scrape:
            scrape_configs:
              - job_name: 'chat-gateway'
                metrics_path: '/ws/metrics'
        """
        metrics_output = await generate_prometheus_metrics(manager)
        return PlainTextResponse(
            content=metrics_output,
            media_type="text/plain; version=0.0.4; charset=utf-8",
        )

    # =========================================================================
    # WebSocket endpoint
    # =========================================================================

    @app.websocket(CHAT_ENDPOINT)
    async def chat_websocket(
        websocket: WebSocket,
        token: str | None = Query(None, description="Bearer credential"),
        manager: ConnectionManager = ConnectionManagerDep,
        app_settings: Settings = AppSettingsDep,
    ):
        """
        WebSocket endpoint for chat clients.

        The credential may also be sent as an ``Authorization: Bearer`` header.
        """
        endpoint = ChatEndpoint(websocket, manager, token, app_settings)
        await endpoint.run()

    return app


app = create_app()


# =============================================================================
# Development entry point
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    _settings = get_settings()
    uvicorn.run(
        "chat_gateway.main:app",
        host="0.0.0.0",
        port=_settings.ws_gateway_port,
        reload=_settings.debug,
    )
