"""
Job handler contract.

A handler runs one job. Raising JobHandlerError(recoverable=False)
fails the job permanently; any other exception consumes an attempt and
lets the state machine schedule a retry.
"""

from typing import Any

from app.features.queue.domain import Job


class JobHandlerError(Exception):
    """Custom exception for job handler failures."""

    def __init__(self, message: str, job_id: str | None = None, recoverable: bool = True):
        super().__init__(message)
        self.job_id = job_id
        self.recoverable = recoverable


class JobHandler:
    """Base class for job handlers."""

    async def run(self, job: Job) -> dict[str, Any] | None:
        raise NotImplementedError

    async def on_succeeded(self, job: Job) -> None:
        """Called once, after the job has been persisted as succeeded."""
        return None

    async def reconcile(self) -> int:
        """
        Redo success side effects for succeeded jobs whose hook failed.

        Must be idempotent; returns the number of jobs repaired.
        """
        return 0


def require_payload(job: Job, *keys: str) -> list[Any]:
    """Pull required keys out of a job payload or fail the job permanently."""
    missing = [key for key in keys if not job.payload.get(key)]
    if missing:
        raise JobHandlerError(
            f"Job payload missing {', '.join(missing)}", job_id=job.id, recoverable=False
        )
    return [job.payload[key] for key in keys]
