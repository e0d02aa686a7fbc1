"""
Queue API response models.
"""

from typing import Any

from pydantic import BaseModel


class QueueLifecycleResponse(BaseModel):
    running: bool
    details: dict[str, Any]


class RetryFailedResponse(BaseModel):
    requested: int
    moved: int


class ProcessImmediateResponse(BaseModel):
    requested: int
    queued: int
    processed: int
    skipped: int
    succeeded: int
    retrying: int
    failed: int


class QueueStatusResponse(BaseModel):
    running: bool
    concurrency: int
    active_workers: int
    queue_depth: int
    counts: dict[str, int]
    processed: int
    failed: int
    started_at: str | None = None


class JobResponse(BaseModel):
    id: str
    type: str
    user_id: str
    payload: dict[str, Any]
    status: str
    attempts: int
    max_attempts: int
    priority: int
    last_error: str | None = None
    scheduled_at: str | None = None
    started_at: str | None = None
    finished_at: str | None = None


class JobListResponse(BaseModel):
    jobs: list[JobResponse]
    total_count: int
