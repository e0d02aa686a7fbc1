"""
Bounded-concurrency worker pool.

A single dispatcher task polls the store for due jobs and hands each one
to a worker task. Every worker, including the ones started by
process_immediate, runs under the same semaphore so total concurrency
never exceeds the configured pool size.
"""

import asyncio
from collections.abc import Callable, Mapping, Sequence
from datetime import UTC, datetime, timedelta
from typing import Any

from app.features.queue.domain import Job, JobEvent, JobStatus, JobType, RetryPolicy
from app.features.queue.handlers import JobHandler, JobHandlerError
from app.features.queue.repository import JobRepository
from app.features.queue.state_machine import transition
from app.infrastructure.observability.logging import get_logger, log_job_transition

logger = get_logger(__name__)


class WorkerPoolNotRunningError(Exception):
    """Raised when work is submitted to a pool that is not running."""

    def __init__(self, message: str = "Worker pool is not running", recoverable: bool = True):
        super().__init__(message)
        self.recoverable = recoverable


def _utcnow() -> datetime:
    return datetime.now(UTC)


class WorkerPool:
    """
    Drives jobs through the state machine with bounded concurrency.

    initialize() and shutdown() are idempotent. shutdown() stops the
    dispatcher immediately, lets in-flight jobs finish within the drain
    timeout, then returns anything still running to pending.
    """

    def __init__(
        self,
        handlers: Mapping[JobType, JobHandler],
        repository=JobRepository,
        *,
        concurrency: int = 5,
        poll_interval: float = 0.5,
        job_timeout: float = 30.0,
        drain_timeout: float = 30.0,
        immediate_limit: int = 50,
        max_attempts: int = 3,
        retry_policy: RetryPolicy | None = None,
        completed_retention: timedelta | None = None,
        maintenance_interval: timedelta = timedelta(minutes=10),
        clock: Callable[[], datetime] = _utcnow,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        self.handlers = dict(handlers)
        self.repository = repository
        self.concurrency = concurrency
        self.poll_interval = poll_interval
        self.job_timeout = job_timeout
        self.drain_timeout = drain_timeout
        self.immediate_limit = immediate_limit
        self.max_attempts = max_attempts
        self.retry_policy = retry_policy or RetryPolicy()
        self.completed_retention = completed_retention
        self.maintenance_interval = maintenance_interval
        self.clock = clock

        self._semaphore: asyncio.Semaphore | None = None
        self._dispatcher: asyncio.Task | None = None
        self._tasks: dict[str, asyncio.Task] = {}
        self._running_jobs: dict[str, Job] = {}
        self._accepting = False
        self._lifecycle_lock = asyncio.Lock()
        self.started_at: datetime | None = None
        self.processed = 0
        self.failed = 0

    @property
    def is_running(self) -> bool:
        return self._accepting

    @property
    def active_workers(self) -> int:
        return len(self._running_jobs)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> dict[str, Any]:
        """Start the pool. A second call while running is a no-op."""
        async with self._lifecycle_lock:
            if self._accepting:
                logger.info("Worker pool already running")
                return {"started": False, "running": True, "requeued": 0}

            requeued = await self.repository.requeue_orphaned()
            repaired = await self.reconcile()

            self._semaphore = asyncio.Semaphore(self.concurrency)
            self._accepting = True
            self.started_at = self.clock()
            self._dispatcher = asyncio.create_task(self._dispatch_loop(), name="job-dispatcher")

            logger.info(
                "Worker pool started",
                concurrency=self.concurrency,
                poll_interval=self.poll_interval,
                requeued=requeued,
                repaired=repaired,
            )
            return {"started": True, "running": True, "requeued": requeued}

    async def shutdown(self) -> dict[str, Any]:
        """Stop accepting work and drain in-flight jobs. No-op when stopped."""
        async with self._lifecycle_lock:
            if not self._accepting and not self._tasks:
                return {"stopped": False, "drained": 0, "released": 0}

            self._accepting = False
            if self._dispatcher:
                self._dispatcher.cancel()
                await asyncio.gather(self._dispatcher, return_exceptions=True)
                self._dispatcher = None

            in_flight = list(self._tasks.values())
            drained = 0
            released = 0
            if in_flight:
                logger.info("Draining in-flight jobs", count=len(in_flight))
                done, pending = await asyncio.wait(in_flight, timeout=self.drain_timeout)
                drained = len(done)

                if pending:
                    stranded = list(self._running_jobs.values())
                    for task in pending:
                        task.cancel()
                    await asyncio.gather(*pending, return_exceptions=True)
                    released = await self._release(stranded)
                    logger.warning(
                        "Drain timeout reached, released remaining jobs",
                        drain_timeout=self.drain_timeout,
                        released=released,
                    )

            self._tasks.clear()
            self._running_jobs.clear()
            logger.info("Worker pool stopped", drained=drained, released=released)
            return {"stopped": True, "drained": drained, "released": released}

    async def _release(self, jobs: Sequence[Job]) -> int:
        released = 0
        now = self.clock()
        for job in jobs:
            pending = transition(job, JobEvent.RELEASED, now)
            if await self.repository.save_transition(pending, JobStatus.RUNNING):
                released += 1
                log_job_transition(
                    job.id, job.type.value, JobStatus.RUNNING.value, pending.status.value, job.attempts
                )
        return released

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def _dispatch_loop(self) -> None:
        last_maintenance = self.clock()
        while self._accepting:
            try:
                free = self.concurrency - len(self._tasks)
                if free > 0:
                    for job in await self.repository.fetch_due(free, self.clock()):
                        self._spawn(job)

                if self.clock() - last_maintenance >= self.maintenance_interval:
                    await self.reconcile()
                    if self.completed_retention:
                        await self.repository.cleanup_succeeded(self.clock() - self.completed_retention)
                    last_maintenance = self.clock()

            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Job dispatch iteration failed", error=str(e), error_type=type(e).__name__)

            await asyncio.sleep(self.poll_interval)

    def _spawn(self, job: Job) -> asyncio.Task | None:
        if job.id in self._tasks:
            return None
        task = asyncio.create_task(self._run_slot(job), name=f"job-{job.id}")
        self._tasks[job.id] = task
        task.add_done_callback(lambda _t, job_id=job.id: self._tasks.pop(job_id, None))
        return task

    async def _run_slot(self, job: Job) -> Job | None:
        async with self._semaphore:
            if not self._accepting:
                return None
            claimed = await self._claim(job)
            if claimed is None:
                return None
            self._running_jobs[claimed.id] = claimed
            try:
                return await self.execute(claimed)
            finally:
                self._running_jobs.pop(claimed.id, None)

    async def _claim(self, job: Job) -> Job | None:
        running = transition(job, JobEvent.DEQUEUED, self.clock())
        if not await self.repository.save_transition(running, JobStatus.PENDING):
            logger.debug("Job already claimed elsewhere", job_id=job.id)
            return None
        log_job_transition(job.id, job.type.value, job.status.value, running.status.value, job.attempts)
        return running

    async def execute(self, job: Job) -> Job:
        """
        Run the handler for a job that is already running and persist the outcome.

        Returns:
            The job in its post-execution state (succeeded, pending for retry, or failed)
        """
        handler = self.handlers.get(job.type)
        event = JobEvent.SUCCEEDED
        error: str | None = None

        if handler is None:
            event, error = JobEvent.ABORTED, f"No handler registered for job type '{job.type}'"
        else:
            try:
                await asyncio.wait_for(handler.run(job), timeout=self.job_timeout)
            except TimeoutError:
                event, error = JobEvent.FAILED, f"Job timed out after {self.job_timeout}s"
            except JobHandlerError as e:
                event = JobEvent.FAILED if e.recoverable else JobEvent.ABORTED
                error = str(e)
            except Exception as e:
                event, error = JobEvent.FAILED, f"{type(e).__name__}: {e}"

        result = transition(job, event, self.clock(), self.retry_policy, error)
        saved = await self.repository.save_transition(result, JobStatus.RUNNING)
        if not saved:
            logger.warning("Job state changed during execution", job_id=job.id, job_type=job.type.value)
            return result

        log_job_transition(
            job.id, job.type.value, job.status.value, result.status.value, result.attempts, error
        )

        if result.status == JobStatus.SUCCEEDED:
            self.processed += 1
            try:
                await handler.on_succeeded(result)
            except Exception as e:
                logger.error(
                    "Job success hook failed, left for reconcile",
                    job_id=job.id,
                    job_type=job.type.value,
                    error=str(e),
                )
        elif result.status == JobStatus.FAILED:
            self.failed += 1

        return result

    async def reconcile(self) -> int:
        """Let each handler repair success side effects a failed hook left undone."""
        repaired = 0
        for job_type, handler in self.handlers.items():
            try:
                count = await handler.reconcile()
            except Exception as e:
                logger.error("Job reconcile failed", job_type=job_type.value, error=str(e))
                continue
            if count:
                logger.info("Reconciled succeeded jobs", job_type=job_type.value, repaired=count)
                repaired += count
        return repaired

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    async def process_immediate(
        self, user_id: str, item_ids: Sequence[str], job_type: JobType
    ) -> dict[str, Any]:
        """
        Run jobs for the given items now, ignoring scheduled delays.

        The batch is capped at immediate_limit and shares the pool's
        worker capacity. Results are reported per outcome.
        """
        if not self._accepting:
            raise WorkerPoolNotRunningError()

        unique_ids = list(dict.fromkeys(item_ids))
        accepted = unique_ids[: self.immediate_limit]
        skipped = len(unique_ids) - len(accepted)

        job_ids = []
        for item_id in accepted:
            job, _ = await self.repository.enqueue(
                job_type,
                user_id,
                {"item_id": item_id},
                max_attempts=self.max_attempts,
                priority=10,
            )
            job_ids.append(job.id)

        due = await self.repository.fetch_due(
            len(job_ids), self.clock(), job_ids=job_ids, ignore_schedule=True
        )
        for job in due:
            self._spawn(job)
        # includes jobs the dispatcher picked up between enqueue and fetch
        tasks = [self._tasks[job_id] for job_id in job_ids if job_id in self._tasks]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        outcomes = {status.value: 0 for status in JobStatus}
        for result in results:
            if isinstance(result, Job):
                outcomes[result.status.value] += 1

        logger.info(
            "Immediate batch processed",
            user_id=user_id,
            job_type=JobType(job_type).value,
            requested=len(unique_ids),
            processed=len(tasks),
            skipped=skipped,
        )
        return {
            "requested": len(unique_ids),
            "queued": len(job_ids),
            "processed": len(tasks),
            "skipped": skipped,
            "succeeded": outcomes[JobStatus.SUCCEEDED.value],
            "retrying": outcomes[JobStatus.PENDING.value],
            "failed": outcomes[JobStatus.FAILED.value],
        }

    async def retry_failed(self, limit: int) -> int:
        """Move up to `limit` failed jobs back to pending with attempts reset."""
        if limit <= 0:
            return 0

        moved = 0
        now = self.clock()
        for job in await self.repository.list_failed(limit):
            retried = transition(job, JobEvent.OPERATOR_RETRY, now)
            if await self.repository.save_transition(retried, JobStatus.FAILED):
                moved += 1
                log_job_transition(
                    job.id, job.type.value, job.status.value, retried.status.value, retried.attempts
                )

        logger.info("Failed jobs requeued", requested=limit, moved=moved)
        return moved

    async def status(self) -> dict[str, Any]:
        counts = await self.repository.count_by_status()
        return {
            "running": self._accepting,
            "concurrency": self.concurrency,
            "active_workers": self.active_workers,
            "queue_depth": counts.get(JobStatus.PENDING.value, 0),
            "counts": counts,
            "processed": self.processed,
            "failed": self.failed,
            "started_at": self.started_at.isoformat() if self.started_at else None,
        }
