"""FastAPI application factory"""

import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import PlainTextResponse

from api.routers import auth_router, config_router, verification_router
from shared.config import get_settings
from shared.database import DatabaseManager, PoolConfig
from shared.logging import setup_logging
from shared.migrations.runner import MigrationRunner
from shared.verification import build_engine

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle startup and shutdown"""
    settings = get_settings()
    app.state.start_time = time.time()

    # Startup
    logger.info("Starting Rolegate API server")
    logger.info(f"Environment: {settings.environment}")
    logger.info(f"Public URL: {settings.api_url}")

    db_manager = DatabaseManager(settings.database_url, PoolConfig.for_service("api"))
    await db_manager.connect()
    app.state.db_manager = db_manager

    await MigrationRunner(db_manager.pool).run_pending()

    engine = build_engine(db_manager.pool, settings)
    app.state.engine = engine
    if settings.enable_token_janitor:
        engine.janitor.start()

    yield

    # Shutdown
    logger.info("Shutting down Rolegate API server")
    app.state.engine = None
    try:
        await engine.aclose()
        await db_manager.disconnect()
        logger.info("Database disconnected")
    except Exception as e:
        logger.exception(f"Error during shutdown: {e}")


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    settings = get_settings()

    # Setup logging first
    setup_logging(settings.log_level)

    app = FastAPI(
        title="Rolegate API",
        description="OAuth account linking and role verification for Discord communities",
        version=VERSION,
        lifespan=lifespan,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )
    app.state.start_time = time.time()
    app.state.engine = None
    app.state.db_manager = None

    # Register routers
    app.include_router(auth_router.router)
    app.include_router(verification_router.router)
    app.include_router(config_router.router)

    # Root endpoint
    @app.get("/")
    async def root():
        """Root endpoint - minimal service info"""
        return {"service": "rolegate-api", "status": "running"}

    # Liveness probe: always 200, no external dependency
    @app.get("/health")
    async def health():
        """Liveness check (no DB dependency)"""
        return {
            "status": "healthy",
            "uptime_seconds": int(time.time() - app.state.start_time),
        }

    # Detailed status endpoint (includes DB health)
    @app.get("/status")
    async def status():
        """Readiness / status endpoint: includes actual DB health check"""
        db_manager = app.state.db_manager
        db_ok = db_manager is not None and await db_manager.check_health()
        engine = app.state.engine
        return {
            "service": "rolegate-api",
            "version": VERSION,
            "uptime_seconds": int(time.time() - app.state.start_time),
            "db_connected": db_ok,
            "engine_ready": engine is not None,
            "token_janitor": engine is not None and engine.janitor.running,
            "environment": settings.environment,
        }

    @app.api_route("/ping", methods=["GET", "HEAD"], response_class=PlainTextResponse)
    async def ping():
        """Ping endpoint"""
        return "pong"

    logger.info("FastAPI application configured")

    return app
