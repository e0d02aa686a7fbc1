"""
Periodic learning reprocessing.

Applies any recorded user actions that have not yet influenced learned
weights, for every user. Safe to overlap with immediate learning since
each action is applied at most once.
"""

import asyncio
from datetime import UTC, datetime

from app.config import settings
from app.db.helpers import DatabaseError
from app.features.learning.service import LearningService, learning_service
from app.infrastructure.observability.logging import get_logger
from app.repositories.item_repository import ItemRepository

logger = get_logger(__name__)


class LearningJob:
    def __init__(self, learning: LearningService | None = None, items=ItemRepository):
        self.learning = learning or learning_service
        self.items = items
        self.is_running = False
        self.last_run_time: datetime | None = None

    async def run_once(self, limit: int | None = None) -> dict:
        if self.is_running:
            logger.warning("Learning job already running, skipping this iteration")
            return {"skipped": True, "reason": "already_running"}

        self.is_running = True
        try:
            users = applied = errors = 0
            for user_id in await self.items.list_user_ids():
                users += 1
                try:
                    result = await self.learning.process_historical_actions(user_id, limit)
                    applied += result["applied"]
                except DatabaseError as e:
                    errors += 1
                    logger.error("Learning reprocessing failed for user", user_id=user_id, error=str(e))

            self.last_run_time = datetime.now(UTC)
            metrics = {
                "job_run": "learning",
                "users_processed": users,
                "actions_applied": applied,
                "errors": errors,
            }
            logger.info("Learning job completed", **metrics)
            return metrics
        finally:
            self.is_running = False


learning_job = LearningJob()


async def start_learning_scheduler() -> None:
    interval = settings.LEARNING_INTERVAL_MINUTES
    logger.info("Starting learning scheduler", interval_minutes=interval)
    while True:
        try:
            await learning_job.run_once()
            await asyncio.sleep(interval * 60)
        except Exception as e:
            logger.error("Error in learning scheduler", error=str(e), error_type=type(e).__name__)
            await asyncio.sleep(60)
