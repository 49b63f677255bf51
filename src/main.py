"""wastesync - task lifecycle and real-time sync engine for waste pickup."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from src.core.config import settings
from src.core.db_client import close_connection, init_db
from src.core.logging import configure_logfire, instrument_fastapi
from src.core.redis_client import redis_client
from src.core.scheduler import create_scheduler, start_scheduler, stop_scheduler
from src.interface.admin_router import router as admin_router
from src.interface.alerts_router import router as alerts_router
from src.interface.applications_router import router as applications_router
from src.interface.error_handlers import register_error_handlers
from src.interface.messages_router import router as messages_router
from src.interface.notifications_router import router as notifications_router
from src.interface.pickups_router import router as pickups_router
from src.interface.realtime_router import router as realtime_router
from src.interface.session_gateway import SessionGateway
from src.services.engine import create_engine


logger = logging.getLogger(__name__)


async def check_redis_connectivity() -> None:
    """Verify Redis connectivity (optional service).

    Without Redis the rate limiter counts in process memory, so this only warns.
    """
    if not redis_client.is_available:
        logger.info("startup_validation", extra={"service": "redis", "status": "disabled"})
        return

    try:
        result = await redis_client.ping()
        if result:
            logger.info("startup_validation", extra={"service": "redis", "status": "ok"})
        else:
            logger.warning("startup_validation", extra={"service": "redis", "status": "unavailable"})
    except Exception as e:
        logger.warning("startup_validation", extra={"service": "redis", "status": "unavailable", "error": str(e)})


async def validate_startup_configuration() -> None:
    """Fail fast on missing production credentials.

    Raises:
        SystemExit: If a required credential is missing in production
    """
    logger.info("startup_validation_begin")

    try:
        if settings.is_production:
            settings.require_credential("secret_key", "Session token signing")
        elif not settings.secret_key:
            logger.warning("startup_validation", extra={"stage": "credentials", "status": "dev_secret"})

        await check_redis_connectivity()
        logger.info("startup_validation_complete", extra={"status": "ok"})

    except ValueError as e:
        logger.error("startup_validation_failed", extra={"error": str(e)})
        print(f"\n❌ Startup validation failed: {e}\n", file=sys.stderr)  # noqa: T201
        sys.exit(1)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan context manager."""
    # Configure logging first so validation logs are captured
    configure_logfire()
    await validate_startup_configuration()

    await init_db()
    logger.info("Database initialized")

    engine = create_engine(area_precision=settings.area_room_precision)
    gateway = SessionGateway(engine)
    scheduler = create_scheduler(
        reap_sessions=gateway.reap_dead_sessions,
        purge_notifications=engine.notifications.purge_expired,
    )
    app.state.engine = engine
    app.state.gateway = gateway
    app.state.scheduler = scheduler

    start_scheduler(scheduler)
    yield

    stop_scheduler(scheduler)
    await redis_client.close()
    await close_connection()


def create_app() -> FastAPI:
    app = FastAPI(
        title="wastesync",
        description="Task lifecycle and real-time synchronization engine for waste pickup",
        version="0.1.0",
        lifespan=lifespan,
    )

    # Instrument FastAPI with Logfire
    instrument_fastapi(app)
    register_error_handlers(app)

    app.include_router(pickups_router)
    app.include_router(notifications_router)
    app.include_router(messages_router)
    app.include_router(alerts_router)
    app.include_router(applications_router)
    app.include_router(admin_router)
    app.include_router(realtime_router)

    @app.get("/health")
    async def health_check() -> JSONResponse:
        """Health check endpoint."""
        return JSONResponse(content={"status": "healthy"}, status_code=200)

    @app.get("/health/realtime")
    async def realtime_health_check() -> JSONResponse:
        """Live-session counters, scheduler state and rate limiter backend health."""
        engine = app.state.engine
        scheduler = app.state.scheduler
        scheduler_ok = scheduler.running
        return JSONResponse(
            content={
                "status": "healthy" if scheduler_ok else "degraded",
                "sessions": engine.registry.stats(),
                "scheduler": {"running": scheduler_ok, "jobs": [job.id for job in scheduler.get_jobs()]},
                "redis": redis_client.get_health_status(),
            },
            status_code=200 if scheduler_ok else 503,
        )

    return app


app = create_app()
