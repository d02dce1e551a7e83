"""
Health check endpoints with database pool and Redis monitoring.
"""

import time

from fastapi import APIRouter, Depends, Request

from app.config import settings
from app.db.pool import db_health_check
from app.infrastructure.cache import ResponseCache

router = APIRouter()


def get_cache(request: Request) -> ResponseCache | None:
    return getattr(request.app.state, "cache", None)


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "visitor-ingest"}


@router.get("/readyz")
async def readyz(cache: ResponseCache | None = Depends(get_cache)):
    """
    Readiness check: database pool, Redis cache and required configuration.
    """
    checks = {}
    overall_ok = True

    # 1) Database pool
    t0 = time.time()
    try:
        db_health = await db_health_check()
        is_healthy = db_health.get("healthy", False)

        checks["database"] = {
            "ok": is_healthy,
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }

        if "pool_stats" in db_health:
            pool_stats = db_health["pool_stats"]
            checks["database"].update(
                {
                    "pool_size": pool_stats.get("pool_size", 0),
                    "pool_available": pool_stats.get("pool_available", 0),
                }
            )

        if not is_healthy:
            checks["database"]["error"] = db_health.get("error", "Database unhealthy")

        overall_ok = overall_ok and is_healthy

    except Exception as e:
        checks["database"] = {
            "ok": False,
            "error": f"{type(e).__name__}: {e}",
            "latency_ms": round((time.time() - t0) * 1000, 1),
        }
        overall_ok = False

    # 2) Redis
    t0 = time.time()
    redis_ok = await cache.ping() if cache is not None else False
    checks["redis"] = {
        "ok": redis_ok,
        "latency_ms": round((time.time() - t0) * 1000, 1),
    }
    if not redis_ok:
        checks["redis"]["error"] = "Redis ping failed" if cache is not None else "Cache not initialized"
    overall_ok = overall_ok and redis_ok

    # 3) Configuration
    config_issues = []

    if not settings.SUPABASE_DB_URL:
        config_issues.append("SUPABASE_DB_URL not set")

    if not settings.REDIS_URL:
        config_issues.append("REDIS_URL not set")

    if not settings.CRON_SECRET:
        config_issues.append("CRON_SECRET not set")

    config_ok = not config_issues
    checks["configuration"] = {
        "ok": config_ok,
        "issues": config_issues or None,
        "environment": settings.environment,
        "import_storage": settings.IMPORT_STORAGE_STRATEGY,
    }
    overall_ok = overall_ok and config_ok

    return {"overall_ok": overall_ok, "checks": checks, "timestamp": time.time()}
