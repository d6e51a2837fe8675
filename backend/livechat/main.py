"""
FastAPI application entry point for the live chat hub.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging
import asyncio
from typing import Any, Dict, Optional

from . import APP_DESCRIPTION
from .config import Settings, settings as default_settings
from .api.connections import ConnectionManager
from .api.routes import admin, chatbot, health
from .api.websocket import PushChannelHandler, websocket_endpoint
from .presence import PresenceTracker
from .services import ChatService, EscalationService
from .session import SessionStore, create_session_store
from .utils.telemetry import setup_telemetry, metrics_collector
from .utils.middleware import (
    RequestIDMiddleware,
    TimingMiddleware,
    RateLimitMiddleware,
)

logging.basicConfig(
    level=getattr(logging, default_settings.log_level.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


async def periodic_cleanup_task(app: FastAPI, shutdown_event: asyncio.Event) -> None:
    """
    Background task for periodic cleanup.

    Drops resolved sessions past the retention window until ``shutdown_event`` is set.
    """
    settings: Settings = app.state.settings
    store: SessionStore = app.state.store
    logger.info("Starting periodic cleanup task")

    while not shutdown_event.is_set():
        try:
            await asyncio.wait_for(
                shutdown_event.wait(),
                timeout=settings.session_cleanup_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass

        try:
            cleaned = await store.cleanup_expired(settings.session_retention_seconds)
            if cleaned > 0:
                logger.info(f"Periodic cleanup: removed {cleaned} expired sessions")

            stats = await store.get_stats()
            logger.debug(f"Session store stats: {stats}")

        except Exception as e:
            logger.error(f"Error in periodic cleanup task: {e}", exc_info=True)


def build_services(app: FastAPI, store: SessionStore, settings: Settings) -> None:
    """Wire the store, presence tracker, connection registry and services onto app state."""
    presence = PresenceTracker(
        store,
        stale_threshold_seconds=settings.presence_stale_threshold_seconds
    )
    connections = ConnectionManager()
    chat_service = ChatService(store, presence, connections, settings)

    app.state.settings = settings
    app.state.store = store
    app.state.presence = presence
    app.state.connections = connections
    app.state.chat_service = chat_service
    app.state.escalation_service = EscalationService(store, presence, connections, settings)
    app.state.push_handler = PushChannelHandler(chat_service, connections)


def create_app(settings: Optional[Settings] = None, store: Optional[SessionStore] = None) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Configuration; defaults to the environment-driven settings
        store: Pre-built session store; built from ``settings`` at startup when omitted

    Returns:
        Configured FastAPI application
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Manage application lifecycle events.
        Build the hub on startup, stop background work and close the store on shutdown.
        """
        shutdown_event = asyncio.Event()
        cleanup_task = None

        try:
            logger.info("=" * 60)
            logger.info(f"Starting {settings.app_name} v{settings.app_version}")
            logger.info(f"Environment: {settings.environment}")
            logger.info(f"Debug mode: {settings.debug}")
            logger.info("=" * 60)

            for warning in settings.validate_configuration():
                logger.warning(f"Configuration: {warning}")
            logger.debug(f"Settings: {settings.get_safe_dict()}")

            session_store = store or create_session_store(
                settings.session_store_type,
                **settings.get_store_config()
            )
            build_services(app, session_store, settings)
            logger.info(f"✓ Session store: {type(session_store).__name__}")

            try:
                session_health = await session_store.health_check()
                if session_health.get('healthy'):
                    logger.info("✓ Session store health check passed")
                else:
                    logger.warning(f"✗ Session store health check failed: {session_health}")
            except Exception as e:
                logger.warning(f"✗ Session store health check error: {e}")

            cleanup_task = asyncio.create_task(periodic_cleanup_task(app, shutdown_event))

            logger.info("=" * 60)
            logger.info("✓ Application started successfully")
            logger.info(f"Push channel: ws://{settings.api_host}:{settings.api_port}{settings.websocket_path}")
            logger.info(f"Health check: http://{settings.api_host}:{settings.api_port}/health")
            logger.info("=" * 60)

        except Exception as e:
            logger.error(f"Failed to start application: {e}", exc_info=True)
            raise

        yield

        logger.info("=" * 60)
        logger.info("Shutting down application...")
        logger.info("=" * 60)

        shutdown_event.set()

        if cleanup_task and not cleanup_task.done():
            try:
                await asyncio.wait_for(cleanup_task, timeout=5.0)
                logger.info("✓ Cleanup task completed")
            except asyncio.TimeoutError:
                logger.warning("Cleanup task did not complete in time, cancelling...")
                cleanup_task.cancel()
                try:
                    await cleanup_task
                except asyncio.CancelledError:
                    logger.info("✓ Cleanup task cancelled")

        try:
            await app.state.store.close()
            logger.info("✓ Session store closed")
        except Exception as e:
            logger.error(f"Error closing session store: {e}")

        logger.info("✓ Application shutdown complete")

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description=APP_DESCRIPTION,
        lifespan=lifespan,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None
    )

    if settings.enable_telemetry:
        setup_telemetry(app)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Process-Time"]
    )

    # Applied in reverse order
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(TimingMiddleware)

    if settings.rate_limit_enabled:
        app.add_middleware(
            RateLimitMiddleware,
            calls=settings.rate_limit_requests,
            period=settings.rate_limit_period,
            exempt_paths=(
                "/health",
                "/metrics",
                f"{settings.api_prefix}/chatbot/admin-heartbeat",
                f"{settings.api_prefix}/chatbot/admin-response",
            )
        )

    app.include_router(
        health.router,
        prefix="/health",
        tags=["Health"]
    )

    app.include_router(
        chatbot.router,
        prefix=f"{settings.api_prefix}/chatbot",
        tags=["Chatbot"]
    )

    app.include_router(
        admin.router,
        prefix=f"{settings.api_prefix}/admin",
        tags=["Admin"]
    )

    app.add_api_websocket_route(
        settings.websocket_path,
        websocket_endpoint,
        name="websocket"
    )

    @app.get("/", tags=["Root"])
    async def root() -> Dict[str, Any]:
        """
        Root endpoint with API information and hub status.

        Returns:
            API information, version, and system status
        """
        store_type = "Unknown"
        session_stats = {}
        connection_stats = {}

        if hasattr(app.state, 'store'):
            store_type = type(app.state.store).__name__
            try:
                session_stats = await app.state.store.get_stats()
            except Exception as e:
                logger.warning(f"Failed to get session stats: {e}")

        if hasattr(app.state, 'connections'):
            connection_stats = app.state.connections.get_stats()

        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
            "status": "operational",
            "endpoints": {
                "docs": "/docs" if settings.debug else "disabled",
                "health": "/health",
                "metrics": "/metrics" if settings.enable_telemetry else "disabled",
                "api": settings.api_prefix,
                "websocket": settings.websocket_path
            },
            "session_management": {
                "store_type": store_type,
                "stats": session_stats
            },
            "connections": connection_stats,
            "metrics": metrics_collector.get_stats()
        }

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Handle uncaught exceptions gracefully.

        Args:
            request: FastAPI request
            exc: Exception that was raised

        Returns:
            JSON error response
        """
        request_id = getattr(request.state, "request_id", "unknown")

        logger.error(
            f"Unhandled exception in request {request_id}: {exc}",
            exc_info=True,
            extra={
                "path": request.url.path,
                "method": request.method,
                "client": request.client.host if request.client else "unknown"
            }
        )

        metrics_collector.record_error()

        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "message": str(exc) if settings.debug else "An unexpected error occurred",
                "request_id": request_id
            }
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    # Connection registry is process-local, so a single worker.
    uvicorn.run(
        "livechat.main:app",
        host=default_settings.api_host,
        port=default_settings.api_port,
        reload=default_settings.debug,
        log_level=default_settings.log_level.lower(),
        access_log=True
    )
