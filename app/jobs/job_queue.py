"""
Job queue worker process.

Builds the application's worker pool from settings and, when run as a
background worker, keeps it processing until the process is signalled.
"""

import asyncio
import signal
from datetime import timedelta

from app.config import settings
from app.features.queue.domain import RetryPolicy
from app.features.queue.worker_pool import WorkerPool
from app.infrastructure.observability.logging import get_logger
from app.jobs.handlers import build_job_handlers

logger = get_logger(__name__)


def build_worker_pool() -> WorkerPool:
    return WorkerPool(
        build_job_handlers(),
        concurrency=settings.QUEUE_MAX_CONCURRENCY,
        poll_interval=settings.QUEUE_POLL_INTERVAL_SECONDS,
        job_timeout=settings.QUEUE_JOB_TIMEOUT_SECONDS,
        drain_timeout=settings.QUEUE_DRAIN_TIMEOUT_SECONDS,
        immediate_limit=settings.QUEUE_IMMEDIATE_BATCH_LIMIT,
        max_attempts=settings.QUEUE_MAX_ATTEMPTS,
        retry_policy=RetryPolicy(
            base_seconds=settings.QUEUE_RETRY_BASE_SECONDS,
            max_seconds=settings.QUEUE_RETRY_MAX_SECONDS,
        ),
        completed_retention=timedelta(hours=settings.QUEUE_COMPLETED_RETENTION_HOURS),
    )


worker_pool = build_worker_pool()


async def start_job_queue_worker() -> None:
    """Run the worker pool until SIGINT/SIGTERM, then drain and stop."""
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    try:
        started = await worker_pool.initialize()
        logger.info("Job queue worker started", **started)
        await stop.wait()
    finally:
        stopped = await worker_pool.shutdown()
        logger.info("Job queue worker stopped", **stopped)
