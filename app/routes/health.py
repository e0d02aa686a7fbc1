"""
Liveness and readiness endpoints.
"""

import time

from fastapi import APIRouter, Depends, Response, status

from app.config import settings
from app.db.pool import db_health_check
from app.features.queue.worker_pool import WorkerPool
from app.jobs.job_queue import worker_pool
from app.services.redis_client import fast_redis

router = APIRouter(tags=["health"])


def get_worker_pool() -> WorkerPool:
    return worker_pool


@router.get("/healthz")
async def healthz():
    """Basic health check - always returns 200 if app is running."""
    return {"status": "ok", "service": "triage-pipeline"}


@router.get("/readyz")
async def readyz(response: Response, pool: WorkerPool = Depends(get_worker_pool)):
    """
    Readiness check across the database and Redis.

    Redis only backs the rule cache, which fails open, so a Redis outage
    is reported but does not make the service unready.
    """
    checks = {}

    t0 = time.time()
    redis_ok = await fast_redis.ping()
    checks["redis"] = {
        "ok": redis_ok,
        "latency_ms": round((time.time() - t0) * 1000, 1),
        "required": False,
    }

    t0 = time.time()
    db_health = await db_health_check()
    db_ok = bool(db_health.get("healthy", False))
    checks["database"] = {
        "ok": db_ok,
        "latency_ms": round((time.time() - t0) * 1000, 1),
        "required": True,
    }
    if not db_ok:
        checks["database"]["error"] = db_health.get("error", "Database unhealthy")

    checks["worker_pool"] = {
        "ok": pool.is_running or not settings.QUEUE_AUTO_START,
        "running": pool.is_running,
        "active_workers": pool.active_workers,
        "required": settings.QUEUE_AUTO_START,
    }

    overall_ok = all(check["ok"] for check in checks.values() if check["required"])
    if not overall_ok:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return {
        "overall_ok": overall_ok,
        "checks": checks,
        "environment": settings.environment,
        "timestamp": time.time(),
    }
