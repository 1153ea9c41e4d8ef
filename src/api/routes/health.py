"""Health and readiness endpoints."""

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from src.config import settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health() -> dict:
    from src.main import get_uptime

    return {
        "status": "healthy",
        "version": settings.app_version,
        "uptime_seconds": get_uptime(),
    }


@router.get("/ready")
async def ready() -> JSONResponse:
    checks: dict[str, bool] = {}

    # Only backends this deployment is configured to use are checked
    if settings.store_backend == "database":
        try:
            from src.db.database import check_db

            checks["database"] = await check_db()
        except Exception:
            checks["database"] = False

    if settings.redis_locks_enabled:
        try:
            import redis.asyncio as aioredis

            r = aioredis.from_url(settings.redis_url)
            await r.ping()
            checks["redis"] = True
            await r.aclose()
        except Exception:
            checks["redis"] = False

    if settings.kafka_enabled:
        from src.main import get_kafka_producer

        checks["kafka"] = get_kafka_producer() is not None

    all_ready = all(checks.values())
    return JSONResponse(
        status_code=200 if all_ready else 503,
        content={"status": "ready" if all_ready else "degraded", **checks},
    )
