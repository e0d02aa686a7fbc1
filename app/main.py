"""
FastAPI application with database, cache and worker pool lifecycle management.
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from app.config import settings
from app.db.pool import db_pool
from app.features.automation.api.router import router as automation_router
from app.features.digest.api.router import router as digest_router
from app.features.ingestion.api.router import router as pipeline_router
from app.features.learning.api.router import router as learning_router
from app.features.queue.api.router import router as queue_router
from app.infrastructure.observability.logging import get_logger, setup_logging
from app.jobs.job_queue import worker_pool
from app.routes import health
from app.services.redis_client import fast_redis

# Setup logging before creating the app
setup_logging(log_level=settings.log_level)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle application startup and shutdown with proper resource management."""

    logger.info("Application starting", environment=settings.environment, debug=settings.debug)

    startup_tasks = []

    try:
        logger.info("Initializing database pool")
        await db_pool.initialize()
        startup_tasks.append("database_pool")

        logger.info("Initializing Redis connection")
        try:
            await fast_redis.initialize()
            startup_tasks.append("redis")
        except RuntimeError as e:
            logger.warning("Redis unavailable, rule cache disabled", error=str(e))

        if settings.QUEUE_AUTO_START:
            logger.info("Starting worker pool")
            await worker_pool.initialize()
            startup_tasks.append("worker_pool")

        logger.info("All services initialized successfully", services=startup_tasks)

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e), completed_tasks=startup_tasks)

        # Clean up any successfully initialized services in reverse order
        if "redis" in startup_tasks:
            try:
                await fast_redis.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up Redis", error=str(cleanup_error))

        if "database_pool" in startup_tasks:
            try:
                await db_pool.close()
            except Exception as cleanup_error:
                logger.error("Error cleaning up database pool", error=str(cleanup_error))

        raise

    yield

    # Shutdown sequence (reverse order)
    logger.info("Application shutting down")

    shutdown_errors = []

    # Drain workers while the database is still available
    try:
        stopped = await worker_pool.shutdown()
        if stopped["stopped"]:
            logger.info("Worker pool stopped", **stopped)
    except Exception as e:
        logger.error("Error stopping worker pool", error=str(e))
        shutdown_errors.append(f"WorkerPool: {e}")

    try:
        logger.info("Closing Redis connection")
        await fast_redis.close()
    except Exception as e:
        logger.error("Error closing Redis", error=str(e))
        shutdown_errors.append(f"Redis: {e}")

    try:
        logger.info("Closing database pool")
        await db_pool.close()
    except Exception as e:
        logger.error("Error closing database pool", error=str(e))
        shutdown_errors.append(f"Database: {e}")

    if shutdown_errors:
        logger.warning("Some services had shutdown errors", errors=shutdown_errors)
    else:
        logger.info("All services closed successfully")


app = FastAPI(
    title="Triage Pipeline",
    description="Scoring, tiering, digests and rule automation for incoming items",
    version="0.1.0",
    lifespan=lifespan,
)

# Include routers
app.include_router(health.router)
app.include_router(pipeline_router)
app.include_router(digest_router)
app.include_router(automation_router)
app.include_router(queue_router)
app.include_router(learning_router)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log HTTP requests with timing."""
    start_time = time.time()
    response = await call_next(request)
    process_time = (time.time() - start_time) * 1000

    logger.info(
        "HTTP request completed",
        method=request.method,
        path=request.url.path,
        status_code=response.status_code,
        duration_ms=round(process_time, 2),
    )
    return response


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
