"""FastAPI application factory"""

import asyncio
import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from gymqueue_api.core.config import Settings, get_settings
from gymqueue_api.core.dependencies import build_queue_coordinator, close_notification_dispatcher
from gymqueue_api.core.envelope import register_exception_handlers
from gymqueue_api.core.logging import setup_logging
from gymqueue_api.core.pg_listener import pg_listen
from gymqueue_api.routers import internal_router, queue_router
from gymqueue_api.services import QueueCoordinator
from gymqueue_api.services.sweeper import (
    EQUIPMENT_FREED_CHANNEL,
    make_equipment_freed_handler,
    sweep_loop,
)
from gymqueue_shared.database import (
    DatabaseManager,
    PoolConfig,
    get_database_manager,
    init_database_manager,
)
from gymqueue_shared.migrations.runner import MigrationRunner

logger = logging.getLogger(__name__)

SERVICE_NAME = "gymqueue-api"
VERSION = "1.0.0"

_start_time: float = 0.0
_background_tasks: list[asyncio.Task] = []


def _coordinator_or_none() -> QueueCoordinator | None:
    db_manager = get_database_manager()
    if db_manager is None or not db_manager.is_connected:
        return None
    return build_queue_coordinator(db_manager.pool)


async def _on_connected(db_manager: DatabaseManager, settings: Settings) -> None:
    """Work that needs a live pool: migrations and the freed-signal listener."""
    if settings.run_migrations_on_startup:
        await MigrationRunner(db_manager.pool).run_pending()
    if settings.listen_equipment_freed:
        handler = make_equipment_freed_handler(_coordinator_or_none)
        _background_tasks.append(
            asyncio.create_task(pg_listen(db_manager.pool, EQUIPMENT_FREED_CHANNEL, handler))
        )


async def _db_retry_loop(db_manager: DatabaseManager, settings: Settings) -> None:
    """Retry the DB connection in the background after a startup failure."""
    delay = 5
    max_delay = 60
    while True:
        await asyncio.sleep(delay)
        try:
            await db_manager.connect()
            logger.info("Database connected (background retry)")
            await _on_connected(db_manager, settings)
            return
        except asyncio.CancelledError:
            return
        except Exception as e:
            logger.warning(
                f"DB background retry failed: {type(e).__name__}: {e}, "
                f"next retry in {min(delay * 2, max_delay)}s"
            )
            delay = min(delay * 2, max_delay)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle startup and shutdown"""
    global _start_time
    _start_time = time.time()

    settings = get_settings()

    logger.info("Starting equipment queue API server")
    logger.info(f"Environment: {settings.environment}")
    logger.info(
        f"Queue policy: claim_window={settings.claim_window_seconds}s, "
        f"max_length={settings.max_queue_length or 'unlimited'}, "
        f"sweep_interval={settings.sweep_interval_seconds}s"
    )

    # Wait up to 30s for the pool before accepting requests, then keep
    # retrying in the background. Requests get 503 until then.
    db_manager = init_database_manager(
        settings.database_url, PoolConfig.for_role("api", ssl=settings.database_ssl)
    )
    try:
        await asyncio.wait_for(db_manager.connect(), timeout=30)
        logger.info("Database connected")
        await _on_connected(db_manager, settings)
    except TimeoutError:
        logger.warning("DB connection timed out during startup, retrying in background")
        _background_tasks.append(asyncio.create_task(_db_retry_loop(db_manager, settings)))
    except Exception as e:
        logger.error(
            f"DB startup failed: {type(e).__name__}: {e}, retrying in background"
        )
        _background_tasks.append(asyncio.create_task(_db_retry_loop(db_manager, settings)))

    _background_tasks.append(
        asyncio.create_task(sweep_loop(_coordinator_or_none, settings.sweep_interval_seconds))
    )

    yield

    logger.info("Shutting down equipment queue API server")
    for task in _background_tasks:
        task.cancel()
    await asyncio.gather(*_background_tasks, return_exceptions=True)
    _background_tasks.clear()
    try:
        await close_notification_dispatcher()
        await db_manager.disconnect()
        logger.info("Database disconnected")
    except Exception as e:
        logger.exception(f"Error during shutdown: {e}")


def create_app(settings: Settings | None = None, *, with_lifespan: bool = True) -> FastAPI:
    """Create and configure FastAPI application"""
    settings = settings or get_settings()

    setup_logging(settings)

    app = FastAPI(
        title="Gym Equipment Queue API",
        description="Waitlists for exclusive use of gym equipment",
        version=VERSION,
        lifespan=lifespan if with_lifespan else None,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(queue_router.router)
    app.include_router(internal_router.router)

    @app.get("/")
    async def root():
        """Root endpoint - minimal service info"""
        return {"service": SERVICE_NAME, "status": "running"}

    # Liveness probe, no external dependency
    @app.get("/health")
    async def health():
        """Liveness check (no DB dependency)"""
        return {
            "status": "healthy",
            "uptime_seconds": int(time.time() - _start_time) if _start_time else 0,
        }

    @app.get("/status")
    async def status():
        """Readiness / status endpoint, includes an actual DB health check"""
        db_manager = get_database_manager()
        db_ok = db_manager is not None and await db_manager.check_health()
        return {
            "service": SERVICE_NAME,
            "version": VERSION,
            "uptime_seconds": int(time.time() - _start_time) if _start_time else 0,
            "db_connected": db_ok,
            "environment": settings.environment,
        }

    @app.api_route("/ping", methods=["GET", "HEAD"], response_class=PlainTextResponse)
    async def ping():
        """Ping endpoint"""
        return "pong"

    logger.info("FastAPI application configured")

    return app
