"""
FastAPI application entry point for the call signaling server.
"""
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging
from typing import Any, Dict, Optional

from redis.asyncio import Redis

from .config import Settings, get_settings
from .api.routes import calls, health
from .api.websocket import websocket_endpoint, ConnectionManager
from .calls import (
    CallCoordinator,
    CallEventDispatcher,
    PresenceRegistry,
    SessionLockManager,
    SignalingRelay,
)
from .database import init_async_db, cleanup_async_db, get_db_info
from .models.schemas import ErrorResponse
from .services.auth_service import AuthService
from .services.user_directory import HttpUserDirectory, SqlUserDirectory, UserDirectory
from .session import CallSessionStore, SqlCallSessionStore
from .utils.telemetry import setup_telemetry, metrics_collector
from .utils.middleware import RequestIDMiddleware, TimingMiddleware, install_request_id_logging

settings = get_settings()

# Configure structured logging
logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO) if not settings.debug else logging.DEBUG,
    format='%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s'
)
install_request_id_logging()

logger = logging.getLogger(__name__)


async def _connect_redis(cfg: Settings) -> Optional[Redis]:
    """Redis client for cross-process session locks, or None."""
    if not (cfg.redis_url and cfg.distributed_lock_enabled):
        return None

    client = Redis.from_url(cfg.redis_url, decode_responses=True)
    try:
        await client.ping()
        logger.info("✓ Redis connected (distributed call locks enabled)")
        return client
    except Exception as e:
        logger.warning(f"✗ Redis unavailable, using process-local locks only: {e}")
        await client.aclose()
        return None


def create_app(
    cfg: Optional[Settings] = None,
    *,
    store: Optional[CallSessionStore] = None,
    users: Optional[UserDirectory] = None
) -> FastAPI:
    """
    Build the application.

    Args:
        cfg: Settings (defaults to the process settings)
        store: Call store to use instead of the SQL store
        users: User directory to use instead of the configured one

    Returns:
        FastAPI application
    """
    cfg = cfg or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Manage application lifecycle events.
        Build the call services on startup, release them on shutdown.
        """
        # === STARTUP ===
        owns_database = False
        call_store = store
        directory = users

        try:
            logger.info("=" * 60)
            logger.info(f"Starting {cfg.app_name} v{cfg.app_version}")
            logger.info(f"Environment: {cfg.environment}")
            logger.info(f"Debug mode: {cfg.debug}")
            logger.info("=" * 60)

            for warning in cfg.validate_configuration():
                logger.warning(f"Configuration: {warning}")

            if call_store is None:
                logger.info("Initializing database...")
                session_factory = await init_async_db(cfg)
                owns_database = True
                call_store = SqlCallSessionStore(session_factory)

                if directory is None:
                    if cfg.user_directory_url:
                        directory = HttpUserDirectory(
                            cfg.user_directory_url,
                            timeout=cfg.user_directory_timeout,
                            cache_ttl=cfg.user_cache_ttl
                        )
                    else:
                        directory = SqlUserDirectory(session_factory)

            logger.info(f"✓ Call store: {type(call_store).__name__}")

            if directory is not None:
                await directory.initialize()
                logger.info(f"✓ User directory: {type(directory).__name__}")

            redis_client = await _connect_redis(cfg)

            connections = ConnectionManager()
            presence = PresenceRegistry()
            relay = SignalingRelay(connections)
            coordinator = CallCoordinator(
                store=call_store,
                presence=presence,
                relay=relay,
                sink=connections,
                users=directory,
                locks=SessionLockManager(redis_client, lock_timeout=cfg.lock_timeout_seconds),
                ring_timeout_seconds=cfg.call_ring_timeout_seconds,
                fail_fast_offline=cfg.call_fail_fast_offline,
                end_on_disconnect=cfg.call_end_on_disconnect
            )

            app.state.settings = cfg
            app.state.auth = AuthService.from_settings(cfg)
            app.state.store = call_store
            app.state.users = directory
            app.state.redis = redis_client
            app.state.connections = connections
            app.state.presence = presence
            app.state.relay = relay
            app.state.coordinator = coordinator
            app.state.dispatcher = CallEventDispatcher(coordinator, relay, connections)

            resumed = await coordinator.resume()
            logger.info(f"✓ Call coordinator ready ({resumed['rearmed']} ringing calls resumed)")

            logger.info("=" * 60)
            logger.info("✓ Application started successfully")
            logger.info(f"WebSocket: ws://{cfg.api_host}:{cfg.api_port}/ws")
            logger.info(f"Health check: http://{cfg.api_host}:{cfg.api_port}/health")
            logger.info("=" * 60)

        except Exception as e:
            logger.error(f"Failed to start application: {e}", exc_info=True)
            raise

        yield  # === APPLICATION RUNS HERE ===

        # === SHUTDOWN ===
        logger.info("Shutting down application...")

        await coordinator.shutdown()

        if directory is not None:
            try:
                await directory.cleanup()
            except Exception as e:
                logger.error(f"Error closing user directory: {e}")

        if redis_client is not None:
            try:
                await redis_client.aclose()
                logger.info("✓ Redis connection closed")
            except Exception as e:
                logger.error(f"Error closing Redis: {e}")

        if owns_database:
            await cleanup_async_db()

        logger.info("✓ Application shutdown complete")

    app = FastAPI(
        title=cfg.app_name,
        description="Real-time call signaling: presence, call lifecycle and WebRTC negotiation relay",
        version=cfg.app_version,
        lifespan=lifespan,
        docs_url="/docs" if cfg.debug else None,
        redoc_url="/redoc" if cfg.debug else None,
        openapi_url="/openapi.json" if cfg.debug else None
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origin_list,
        allow_credentials=cfg.cors_allow_credentials,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Process-Time"]
    )

    # Add custom middleware (order matters - applied in reverse)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(TimingMiddleware, slow_threshold=cfg.slow_request_threshold)

    if cfg.enable_telemetry:
        setup_telemetry(app)

    # Include API routes
    app.include_router(
        health.router,
        prefix="/health",
        tags=["Health"]
    )

    app.include_router(
        calls.router,
        prefix=f"{cfg.api_prefix}/calls",
        tags=["Calls"]
    )

    # Add WebSocket endpoint
    app.add_api_websocket_route(
        "/ws",
        websocket_endpoint,
        name="websocket"
    )

    # Root endpoint
    @app.get("/", tags=["Root"])
    async def root(request: Request) -> Dict[str, Any]:
        """
        Root endpoint with API information and status.

        Returns:
            API information, version, and call statistics
        """
        state = request.app.state
        store_stats = {}

        try:
            store_stats = await state.store.get_stats()
        except Exception as e:
            logger.warning(f"Failed to get call store stats: {e}")

        return {
            "name": cfg.app_name,
            "version": cfg.app_version,
            "environment": cfg.environment,
            "status": "operational",
            "endpoints": {
                "websocket": "/ws",
                "health": "/health",
                "metrics": "/metrics" if cfg.enable_telemetry else "disabled",
                "api": cfg.api_prefix
            },
            "calls": {
                "store_type": type(state.store).__name__,
                "stats": store_stats,
                "pending_ring_timers": state.coordinator.pending_timers(),
                "online_users": state.presence.count(),
                "connections": state.presence.connection_count()
            },
            "database": await get_db_info() if isinstance(state.store, SqlCallSessionStore) else None,
            "features": {
                "distributed_locking": state.redis is not None,
                "fail_fast_offline": cfg.call_fail_fast_offline,
                "end_on_disconnect": cfg.call_end_on_disconnect,
                "telemetry": cfg.enable_telemetry
            },
            "metrics": metrics_collector.get_stats()
        }

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """
        Handle uncaught exceptions gracefully.

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

        metrics_collector.record_error("http")

        return JSONResponse(
            status_code=500,
            content=ErrorResponse(
                error="Internal server error",
                message=str(exc) if cfg.debug else "An unexpected error occurred",
                request_id=request_id
            ).model_dump()
        )

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "callhub.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.debug,
        log_level="debug" if settings.debug else "info",
        access_log=True,
        ws_ping_interval=settings.ws_ping_interval,
        ws_ping_timeout=settings.ws_ping_timeout
    )
