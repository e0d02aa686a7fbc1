"""
Queue control routes.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.auth.verify import current_user_id
from app.features.queue.domain import JobStatus, JobType
from app.features.queue.repository import JobRepository
from app.features.queue.worker_pool import WorkerPool, WorkerPoolNotRunningError
from app.infrastructure.observability.logging import get_logger
from app.jobs.job_queue import worker_pool
from app.models.api.queue_request import ProcessImmediateRequest, RetryFailedRequest
from app.models.api.queue_response import (
    JobListResponse,
    JobResponse,
    ProcessImmediateResponse,
    QueueLifecycleResponse,
    QueueStatusResponse,
    RetryFailedResponse,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/queue", tags=["queue"])


def get_worker_pool() -> WorkerPool:
    return worker_pool


def get_job_repository():
    return JobRepository


@router.post("/initialize", response_model=QueueLifecycleResponse)
async def initialize_queue(
    user_id: str = Depends(current_user_id),
    pool: WorkerPool = Depends(get_worker_pool),
):
    """Start the worker pool; a no-op when it is already running."""
    details = await pool.initialize()
    logger.info("Queue initialize requested", user_id=user_id, started=details["started"])
    return QueueLifecycleResponse(running=pool.is_running, details=details)


@router.post("/shutdown", response_model=QueueLifecycleResponse)
async def shutdown_queue(
    user_id: str = Depends(current_user_id),
    pool: WorkerPool = Depends(get_worker_pool),
):
    """Stop taking work and drain in-flight jobs."""
    details = await pool.shutdown()
    logger.info("Queue shutdown requested", user_id=user_id, stopped=details["stopped"])
    return QueueLifecycleResponse(running=pool.is_running, details=details)


@router.post("/retry-failed", response_model=RetryFailedResponse)
async def retry_failed_jobs(
    request: RetryFailedRequest,
    user_id: str = Depends(current_user_id),
    pool: WorkerPool = Depends(get_worker_pool),
):
    moved = await pool.retry_failed(request.limit)
    return RetryFailedResponse(requested=request.limit, moved=moved)


@router.post("/process-immediate", response_model=ProcessImmediateResponse)
async def process_immediate(
    request: ProcessImmediateRequest,
    user_id: str = Depends(current_user_id),
    pool: WorkerPool = Depends(get_worker_pool),
):
    try:
        result = await pool.process_immediate(
            user_id, [str(item_id) for item_id in request.item_ids], JobType(request.job_type)
        )
    except WorkerPoolNotRunningError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    return ProcessImmediateResponse(**result)


@router.get("/status", response_model=QueueStatusResponse)
async def get_queue_status(
    user_id: str = Depends(current_user_id),
    pool: WorkerPool = Depends(get_worker_pool),
):
    return QueueStatusResponse(**await pool.status())


@router.get("/jobs", response_model=JobListResponse)
async def list_jobs(
    job_status: JobStatus | None = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    user_id: str = Depends(current_user_id),
    jobs=Depends(get_job_repository),
):
    """The caller's own jobs, newest first."""
    records = await jobs.list_jobs(user_id, job_status, limit)
    return JobListResponse(
        jobs=[JobResponse(**job.to_dict()) for job in records], total_count=len(records)
    )
