"""
Digest scheduler.

Periodically checks every user's digest windows and queues a digest job
for each window that is due and not yet generated. The job's dedupe key
is the window key, so overlapping scheduler runs never queue the same
window twice.
"""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime
from zoneinfo import ZoneInfo

from app.config import settings
from app.features.digest.domain import DAILY_WINDOWS, WindowType
from app.features.digest.service import DigestService, digest_service
from app.features.queue.domain import JobType
from app.features.queue.repository import JobRepository
from app.infrastructure.observability.logging import get_logger
from app.repositories.item_repository import ItemRepository

logger = get_logger(__name__)

WEEKLY_DIGEST_WEEKDAY = 6  # Sunday


def digest_dedupe_key(user_id: str, window_type: WindowType, window_key: str) -> str:
    return f"digest:{user_id}:{WindowType(window_type).value}:{window_key}"


class DigestScheduler:
    def __init__(
        self,
        digests: DigestService | None = None,
        items=ItemRepository,
        jobs=JobRepository,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self.digests = digests or digest_service
        self.items = items
        self.jobs = jobs
        self.clock = clock
        self.timezone = ZoneInfo(settings.DIGEST_TIMEZONE)
        self.is_running = False
        self.last_run_time: datetime | None = None

    def due_windows(self, now: datetime) -> list[WindowType]:
        """Windows whose start hour has passed in the digest timezone."""
        local = now.astimezone(self.timezone)
        hours = settings.digest_hours()
        due = [w for w in DAILY_WINDOWS if local.hour >= hours[w.value]]
        if local.weekday() == WEEKLY_DIGEST_WEEKDAY and local.hour >= settings.DIGEST_EVENING_HOUR:
            due.append(WindowType.WEEKLY)
        return due

    async def run_once(self) -> dict:
        if self.is_running:
            logger.warning("Digest scheduler already running, skipping this iteration")
            return {"skipped": True, "reason": "already_running"}

        self.is_running = True
        try:
            now = self.clock()
            windows = self.due_windows(now)
            queued = users = errors = 0
            if windows:
                for user_id in await self.items.list_user_ids():
                    users += 1
                    try:
                        queued += await self._queue_user(user_id, windows, now)
                    except Exception as e:
                        errors += 1
                        logger.error(
                            "Digest scheduling failed for user", user_id=user_id, error=str(e)
                        )

            self.last_run_time = now
            metrics = {
                "job_run": "digest_scheduler",
                "windows": [w.value for w in windows],
                "users_checked": users,
                "jobs_queued": queued,
                "errors": errors,
            }
            logger.info("Digest scheduler run completed", **metrics)
            return metrics
        finally:
            self.is_running = False

    async def _queue_user(self, user_id: str, windows: list[WindowType], now: datetime) -> int:
        queued = 0
        for window_type in windows:
            if not await self.digests.should_generate(user_id, window_type, now):
                continue
            key = self.digests.builder.window_key(window_type, now)
            _, created = await self.jobs.enqueue(
                JobType.DIGEST,
                user_id,
                {"window_type": window_type.value, "as_of": now.isoformat()},
                max_attempts=settings.QUEUE_MAX_ATTEMPTS,
                dedupe_key=digest_dedupe_key(user_id, window_type, key.isoformat()),
            )
            if created:
                queued += 1
        return queued


digest_scheduler = DigestScheduler()


async def start_digest_scheduler() -> None:
    """Loop forever, checking digest windows every DIGEST_SCHEDULER_INTERVAL_MINUTES."""
    interval = settings.DIGEST_SCHEDULER_INTERVAL_MINUTES
    logger.info("Starting digest scheduler", interval_minutes=interval)
    while True:
        try:
            await digest_scheduler.run_once()
            await asyncio.sleep(interval * 60)
        except Exception as e:
            logger.error("Error in digest scheduler", error=str(e), error_type=type(e).__name__)
            await asyncio.sleep(60)
