"""Health and readiness endpoints."""

from fastapi import APIRouter, Request
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
def ready(request: Request) -> JSONResponse:
    """Database and cache reachability."""
    cache_ok = True

    from src.db.database import check_db

    db_ok = check_db()

    if settings.analytics_cache_backend == "redis":
        import redis

        try:
            client = redis.Redis.from_url(settings.redis_url)
            client.ping()
            client.close()
        except redis.RedisError:
            cache_ok = False

    all_ready = db_ok and cache_ok
    return JSONResponse(
        status_code=200 if all_ready else 503,
        content={
            "status": "ready" if all_ready else "degraded",
            "database": db_ok,
            "cache": cache_ok,
            "expiry_sweeper": _sweeper_running(request),
        },
    )


def _sweeper_running(request: Request) -> bool:
    sweeper = getattr(request.app.state, "sweeper", None)
    return sweeper is not None and sweeper.running
