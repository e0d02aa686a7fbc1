from datetime import UTC, datetime, timedelta

import pytest

from app.features.queue.domain import Job, JobEvent, JobStatus, JobType, RetryPolicy
from app.features.queue.state_machine import InvalidTransitionError, transition

NOW = datetime(2024, 6, 3, 12, 0, tzinfo=UTC)


def _job(**kwargs):
    defaults = {"id": "job-1", "type": JobType.SCORE, "user_id": "user-123"}
    defaults.update(kwargs)
    return Job(**defaults)


def test_dequeue_starts_job_without_mutating_input():
    job = _job()

    running = transition(job, JobEvent.DEQUEUED, NOW)

    assert running.status == JobStatus.RUNNING
    assert running.started_at == NOW
    assert job.status == JobStatus.PENDING


def test_failure_with_attempts_left_schedules_backoff():
    job = _job(status=JobStatus.RUNNING, attempts=1, max_attempts=3)

    retried = transition(job, JobEvent.FAILED, NOW, RetryPolicy(base_seconds=2), error="boom")

    assert retried.status == JobStatus.PENDING
    assert retried.attempts == 2
    assert retried.scheduled_at == NOW + timedelta(seconds=4)
    assert retried.last_error == "boom"


def test_failure_on_last_attempt_is_terminal():
    job = _job(status=JobStatus.RUNNING, attempts=2, max_attempts=3)

    failed = transition(job, JobEvent.FAILED, NOW, error="boom")

    assert failed.status == JobStatus.FAILED
    assert failed.attempts == 3
    assert failed.finished_at == NOW
    assert failed.is_terminal


def test_abort_fails_immediately():
    job = _job(status=JobStatus.RUNNING, attempts=0, max_attempts=5)

    failed = transition(job, JobEvent.ABORTED, NOW, error="bad payload")

    assert failed.status == JobStatus.FAILED
    assert failed.attempts == 1


def test_release_does_not_consume_attempt():
    job = _job(status=JobStatus.RUNNING, attempts=1)

    released = transition(job, JobEvent.RELEASED, NOW)

    assert released.status == JobStatus.PENDING
    assert released.attempts == 1
    assert released.scheduled_at == NOW


def test_operator_retry_resets_attempts():
    job = _job(status=JobStatus.FAILED, attempts=3, last_error="boom", finished_at=NOW)

    retried = transition(job, JobEvent.OPERATOR_RETRY, NOW)

    assert retried.status == JobStatus.PENDING
    assert retried.attempts == 0
    assert retried.finished_at is None


def test_error_message_is_truncated():
    job = _job(status=JobStatus.RUNNING, max_attempts=1)

    failed = transition(job, JobEvent.FAILED, NOW, error="x" * 2000)

    assert len(failed.last_error) == 500


@pytest.mark.parametrize(
    "status,event",
    [
        (JobStatus.PENDING, JobEvent.SUCCEEDED),
        (JobStatus.SUCCEEDED, JobEvent.DEQUEUED),
        (JobStatus.SUCCEEDED, JobEvent.OPERATOR_RETRY),
        (JobStatus.FAILED, JobEvent.DEQUEUED),
        (JobStatus.RUNNING, JobEvent.DEQUEUED),
    ],
)
def test_invalid_transitions_raise(status, event):
    with pytest.raises(InvalidTransitionError):
        transition(_job(status=status), event, NOW)


def test_backoff_is_capped():
    policy = RetryPolicy(base_seconds=10, max_seconds=60)

    assert policy.delay(1) == timedelta(seconds=10)
    assert policy.delay(3) == timedelta(seconds=40)
    assert policy.delay(10) == timedelta(seconds=60)
