"""
Job lifecycle state machine.

    pending --dequeued--> running
    running --succeeded--> succeeded
    running --failed--> pending (attempts < max_attempts, scheduled_at pushed back)
                     -> failed   (attempts exhausted)
    running --aborted--> failed
    running --released--> pending (attempt not consumed)
    failed  --operator_retry--> pending (attempts reset to 0)

transition() is a pure function of (job, event, now, policy); it never
mutates its input and performs no I/O. The worker pool persists the
result with a compare-and-set on the previous status.
"""

from dataclasses import replace
from datetime import datetime

from app.features.queue.domain import Job, JobEvent, JobStatus, RetryPolicy

MAX_ERROR_LENGTH = 500

ALLOWED_TRANSITIONS: dict[tuple[JobStatus, JobEvent], str] = {
    (JobStatus.PENDING, JobEvent.DEQUEUED): "start",
    (JobStatus.RUNNING, JobEvent.SUCCEEDED): "succeed",
    (JobStatus.RUNNING, JobEvent.FAILED): "fail",
    (JobStatus.RUNNING, JobEvent.ABORTED): "abort",
    (JobStatus.RUNNING, JobEvent.RELEASED): "release",
    (JobStatus.FAILED, JobEvent.OPERATOR_RETRY): "operator_retry",
}


class InvalidTransitionError(Exception):
    """Raised when an event is not valid for the job's current status."""

    def __init__(self, status: JobStatus, event: JobEvent):
        super().__init__(f"Cannot apply '{event}' to a job in status '{status}'")
        self.status = status
        self.event = event
        self.recoverable = False


def transition(
    job: Job,
    event: JobEvent,
    now: datetime,
    policy: RetryPolicy | None = None,
    error: str | None = None,
) -> Job:
    """
    Apply an event to a job and return the resulting job.

    Args:
        job: Current job state
        event: What happened
        now: Transition timestamp (injected, never read from the clock here)
        policy: Backoff policy used when a failure schedules a retry
        error: Error message for failed/aborted events

    Returns:
        New Job instance in the target state

    Raises:
        InvalidTransitionError: If the event is not allowed from job.status
    """
    step = ALLOWED_TRANSITIONS.get((JobStatus(job.status), JobEvent(event)))
    if step is None:
        raise InvalidTransitionError(job.status, event)

    truncated = error[:MAX_ERROR_LENGTH] if error else None

    if step == "start":
        return replace(job, status=JobStatus.RUNNING, started_at=now, finished_at=None)

    if step == "succeed":
        return replace(job, status=JobStatus.SUCCEEDED, finished_at=now, last_error=None)

    if step == "fail":
        attempts = job.attempts + 1
        if attempts < job.max_attempts:
            delay = (policy or RetryPolicy()).delay(attempts)
            return replace(
                job,
                status=JobStatus.PENDING,
                attempts=attempts,
                last_error=truncated,
                scheduled_at=now + delay,
                started_at=None,
            )
        return replace(
            job,
            status=JobStatus.FAILED,
            attempts=attempts,
            last_error=truncated,
            finished_at=now,
        )

    if step == "abort":
        return replace(
            job,
            status=JobStatus.FAILED,
            attempts=job.attempts + 1,
            last_error=truncated,
            finished_at=now,
        )

    if step == "release":
        return replace(job, status=JobStatus.PENDING, scheduled_at=now, started_at=None)

    # operator_retry
    return replace(
        job,
        status=JobStatus.PENDING,
        attempts=0,
        scheduled_at=now,
        started_at=None,
        finished_at=None,
    )
