"""
Persistence for queued jobs.

Status changes are written with a compare-and-set on the previous
status so two workers can never both claim or both finish one job.
"""

import uuid
from collections.abc import Sequence
from datetime import datetime
from typing import Any

from app.db.helpers import DatabaseError, as_json, execute_query, fetch_all, fetch_one, with_db_retry
from app.features.queue.domain import Job, JobStatus, JobType
from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class JobRepositoryError(DatabaseError):
    """More specific exception for job persistence failures."""


class JobRepository:
    JOB_COLUMNS = """
        id, type, user_id, payload, status, attempts, max_attempts, priority,
        last_error, dedupe_key, scheduled_at, started_at, finished_at, created_at
    """

    @classmethod
    async def enqueue(
        cls,
        job_type: JobType,
        user_id: str,
        payload: dict[str, Any],
        *,
        max_attempts: int = 3,
        priority: int = 5,
        dedupe_key: str | None = None,
        scheduled_at: datetime | None = None,
    ) -> tuple[Job, bool]:
        """
        Create a pending job unless one with the same dedupe key exists.

        Returns:
            (job, created) - created is False when the dedupe key already existed
        """
        row = await fetch_one(
            f"""
            INSERT INTO jobs (
                id, type, user_id, payload, status, attempts, max_attempts,
                priority, dedupe_key, scheduled_at
            )
            VALUES (%s, %s, %s, %s, 'pending', 0, %s, %s, %s, COALESCE(%s, NOW()))
            ON CONFLICT (dedupe_key) DO NOTHING
            RETURNING {cls.JOB_COLUMNS}
            """,
            (
                str(uuid.uuid4()),
                JobType(job_type).value,
                user_id,
                as_json(payload),
                max_attempts,
                priority,
                dedupe_key,
                scheduled_at,
            ),
        )
        if row:
            job = Job.from_row(row)
            logger.debug("Job enqueued", job_id=job.id, job_type=job.type.value, user_id=user_id)
            return job, True

        existing = await fetch_one(
            f"SELECT {cls.JOB_COLUMNS} FROM jobs WHERE dedupe_key = %s",
            (dedupe_key,),
        )
        if not existing:
            raise JobRepositoryError("Job insert returned no row", operation="enqueue")
        return Job.from_row(existing), False

    @classmethod
    async def get_job(cls, job_id: str) -> Job | None:
        row = await fetch_one(f"SELECT {cls.JOB_COLUMNS} FROM jobs WHERE id = %s", (job_id,))
        return Job.from_row(row) if row else None

    @classmethod
    @with_db_retry(max_retries=3, base_delay=0.1)
    async def fetch_due(
        cls,
        limit: int,
        now: datetime,
        *,
        job_ids: Sequence[str] | None = None,
        ignore_schedule: bool = False,
    ) -> list[Job]:
        """Pending jobs ready to run, highest priority first."""
        if limit <= 0:
            return []

        query = f"SELECT {cls.JOB_COLUMNS} FROM jobs WHERE status = 'pending'"
        params: list = []
        if not ignore_schedule:
            query += " AND scheduled_at <= %s"
            params.append(now)
        if job_ids is not None:
            query += " AND id = ANY(%s::uuid[])"
            params.append(list(job_ids))
        query += " ORDER BY priority DESC, scheduled_at, created_at LIMIT %s"
        params.append(limit)

        rows = await fetch_all(query, tuple(params))
        return [Job.from_row(row) for row in rows]

    @staticmethod
    async def save_transition(job: Job, expected_status: JobStatus) -> bool:
        """Persist a transitioned job only if the stored status still matches."""
        updated = await execute_query(
            """
            UPDATE jobs
            SET status = %s,
                attempts = %s,
                last_error = %s,
                scheduled_at = COALESCE(%s, scheduled_at),
                started_at = %s,
                finished_at = %s,
                updated_at = NOW()
            WHERE id = %s AND status = %s
            """,
            (
                job.status.value,
                job.attempts,
                job.last_error,
                job.scheduled_at,
                job.started_at,
                job.finished_at,
                job.id,
                JobStatus(expected_status).value,
            ),
        )
        return updated == 1

    @staticmethod
    async def requeue_orphaned() -> int:
        """Return jobs left running by an unclean stop to pending."""
        count = await execute_query(
            """
            UPDATE jobs
            SET status = 'pending', started_at = NULL, scheduled_at = NOW(), updated_at = NOW()
            WHERE status = 'running'
            """
        )
        if count:
            logger.warning("Requeued orphaned running jobs", count=count)
        return count

    @classmethod
    async def list_failed(cls, limit: int) -> list[Job]:
        if limit <= 0:
            return []
        rows = await fetch_all(
            f"""
            SELECT {cls.JOB_COLUMNS}
            FROM jobs
            WHERE status = 'failed'
            ORDER BY finished_at, created_at
            LIMIT %s
            """,
            (limit,),
        )
        return [Job.from_row(row) for row in rows]

    @staticmethod
    async def count_by_status(user_id: str | None = None) -> dict[str, int]:
        query = "SELECT status, COUNT(*) AS count FROM jobs"
        params: tuple = ()
        if user_id:
            query += " WHERE user_id = %s"
            params = (user_id,)
        query += " GROUP BY status"

        counts = {status.value: 0 for status in JobStatus}
        for row in await fetch_all(query, params):
            counts[row["status"]] = int(row["count"])
        return counts

    @classmethod
    async def list_jobs(
        cls, user_id: str, status: JobStatus | None = None, limit: int = 50
    ) -> list[Job]:
        query = f"SELECT {cls.JOB_COLUMNS} FROM jobs WHERE user_id = %s"
        params: list = [user_id]
        if status:
            query += " AND status = %s"
            params.append(JobStatus(status).value)
        query += " ORDER BY created_at DESC LIMIT %s"
        params.append(limit)
        rows = await fetch_all(query, tuple(params))
        return [Job.from_row(row) for row in rows]

    @staticmethod
    async def cleanup_succeeded(older_than: datetime) -> int:
        """Delete succeeded jobs without a dedupe key finished before the cutoff."""
        count = await execute_query(
            """
            DELETE FROM jobs
            WHERE status = 'succeeded'
              AND dedupe_key IS NULL
              AND finished_at < %s
            """,
            (older_than,),
        )
        if count:
            logger.info("Cleaned up succeeded jobs", count=count)
        return count
