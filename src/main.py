"""FastAPI application entry point for OrderGuard."""

import asyncio
import contextlib
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.dependencies import Services, get_services
from src.api.middleware.error_handler import global_exception_handler
from src.api.middleware.logging import StructuredLoggingMiddleware
from src.api.routes.health import router as health_router
from src.api.routes.monitoring import router as monitoring_router
from src.api.routes.policies import router as policies_router
from src.api.routes.preauth import router as preauth_router
from src.config import settings
from src.shared.alerts import KafkaAlertEmitter
from src.shared.exceptions import OrderRiskError
from src.shared.kafka_utils import create_producer
from src.shared.logging import setup_logging

logger = structlog.get_logger()

# Track app start time for uptime calculation
APP_START_TIME: float = 0.0

_kafka_producer = None


async def run_scheduler_loop(services: Services, interval_seconds: float) -> None:
    """Drive the monitoring sweep and review expiry until cancelled."""
    logger.info("scheduler_loop_started", interval_seconds=interval_seconds)
    while True:
        try:
            results = await services.scheduler.scheduled_tick()
            if results:
                logger.info("scheduler_tick_completed", sweeps=len(results))
            await services.gate.expire_stale()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("scheduler_tick_failed")
        await asyncio.sleep(interval_seconds)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown logic."""
    global APP_START_TIME, _kafka_producer
    APP_START_TIME = time.time()
    setup_logging(settings.log_level)

    logger.info(
        "orderguard_starting",
        app_name=settings.app_name,
        version=settings.app_version,
        debug=settings.debug,
        store_backend=settings.store_backend,
    )

    if settings.store_backend == "database":
        from src.db.database import init_db

        await init_db()

    services = get_services()

    if settings.kafka_enabled:
        try:
            _kafka_producer = await create_producer(settings.kafka_bootstrap_servers)
            services.alerts.set_emitter(KafkaAlertEmitter(_kafka_producer, settings.alerts_topic))
        except Exception:
            logger.warning("kafka_producer_failed_to_start", exc_info=True)

    scheduler_task: asyncio.Task | None = None
    if settings.scheduler_enabled:
        scheduler_task = asyncio.create_task(
            run_scheduler_loop(services, settings.scheduler_tick_seconds)
        )

    yield

    if scheduler_task is not None:
        scheduler_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await scheduler_task
    await services.close()
    if _kafka_producer is not None:
        with contextlib.suppress(Exception):
            await _kafka_producer.stop()
        _kafka_producer = None
    if settings.store_backend == "database":
        from src.db.database import dispose_db

        await dispose_db()
    logger.info("orderguard_shutting_down")


app = FastAPI(
    title="OrderGuard",
    description="Pre-authorization order risk scoring and post-auth chargeback monitoring",
    version=settings.app_version,
    lifespan=lifespan,
)

# CORS for local development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.debug else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Structured logging middleware
app.add_middleware(StructuredLoggingMiddleware)

# Domain errors are answered directly; anything else falls through to the 500 handler
for exc_class in (OrderRiskError, ValueError, LookupError, PermissionError, Exception):
    app.add_exception_handler(exc_class, global_exception_handler)

# Register routers
app.include_router(health_router)
app.include_router(preauth_router)
app.include_router(monitoring_router)
app.include_router(policies_router)


def get_uptime() -> int:
    """Get application uptime in seconds."""
    if APP_START_TIME == 0.0:
        return 0
    return int(time.time() - APP_START_TIME)


def get_kafka_producer():
    return _kafka_producer
