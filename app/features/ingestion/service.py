"""
Ingestion service.

One pass fetches recent raw items from every registered adapter and
pushes each through upsert → score → tier → rule selection, queueing
enrichment for high/medium items. Items are isolated from each other:
one bad item or one failing adapter never stops the rest of the pass.
"""

from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from typing import Any

from app.config import settings
from app.features.automation.service import AutomationService, automation_service
from app.features.ingestion.adapters import SourceAdapterRegistry, source_adapters
from app.features.queue.domain import Job, JobType
from app.features.queue.repository import JobRepository
from app.features.scoring.domain import Score, ScoringContext
from app.features.scoring.service import ScoringService, scoring_service
from app.features.scoring.tiers import TierClassifier
from app.infrastructure.observability.logging import get_logger
from app.models.domain.item_domain import Item, RawItem, Source, Tier
from app.repositories.item_repository import ItemRepository

logger = get_logger(__name__)


class IngestionError(Exception):
    def __init__(self, message: str, item_id: str | None = None, recoverable: bool = False):
        super().__init__(message)
        self.item_id = item_id
        self.recoverable = recoverable


def enrich_dedupe_key(user_id: str, item_id: str) -> str:
    return f"enrich:{user_id}:{item_id}"


class IngestionService:
    def __init__(
        self,
        adapters: SourceAdapterRegistry | None = None,
        items=ItemRepository,
        scoring: ScoringService | None = None,
        automation: AutomationService | None = None,
        jobs=JobRepository,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self.adapters = adapters if adapters is not None else source_adapters
        self.items = items
        self.scoring = scoring or scoring_service
        self.automation = automation or automation_service
        self.jobs = jobs
        self.clock = clock

    async def run_pass(
        self,
        user_id: str,
        *,
        sources: Sequence[Source] | None = None,
        window_minutes: int | None = None,
    ) -> dict[str, Any]:
        """
        Ingest and score everything adapters report for the window.

        Returns per-tier counts of processed items plus skipped (malformed),
        failed (store or scoring errors) and adapter failure counts.
        """
        window_minutes = window_minutes or settings.INGEST_WINDOW_MINUTES
        wanted = [Source(s) for s in sources] if sources else self.adapters.sources()

        raw_items: list[RawItem] = []
        adapter_failures = 0
        for source in wanted:
            adapter = self.adapters.get(source)
            if adapter is None:
                logger.debug("No adapter registered for source", source=source.value)
                continue
            try:
                fetched = await adapter.fetch_recent(user_id, window_minutes)
            except Exception as e:
                adapter_failures += 1
                logger.warning(
                    "Source adapter failed", user_id=user_id, source=source.value, error=str(e)
                )
                continue
            raw_items.extend(fetched)

        context = await self.scoring.load_context(user_id, self.clock())
        tiers = {tier.value: 0 for tier in Tier}
        skipped = failed = jobs_enqueued = 0

        for raw in raw_items:
            try:
                item = Item.from_raw(user_id, raw)
            except (AttributeError, TypeError, ValueError) as e:
                skipped += 1
                logger.warning(
                    "Malformed raw item skipped",
                    user_id=user_id,
                    external_id=getattr(raw, "external_id", None),
                    error=str(e),
                )
                continue

            try:
                score, queued = await self._process(item, context)
            except Exception as e:
                failed += 1
                logger.error(
                    "Item processing failed",
                    user_id=user_id,
                    item_id=item.id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                continue

            tiers[score.tier.value] += 1
            jobs_enqueued += len(queued)

        result = {
            "user_id": user_id,
            "processed": sum(tiers.values()),
            "tiers": tiers,
            "skipped": skipped,
            "failed": failed,
            "adapter_failures": adapter_failures,
            "jobs_enqueued": jobs_enqueued,
        }
        logger.info("Ingestion pass completed", **result)
        return result

    async def process_stored_item(self, user_id: str, item_id: str) -> Score:
        """Re-run scoring and rule selection for an item that is already stored."""
        item = await self.items.get_item(user_id, item_id)
        if item is None:
            raise IngestionError(f"Item {item_id} not found", item_id=item_id)
        context = await self.scoring.load_context(user_id, self.clock())
        score, _ = await self._process(item, context, upsert=False)
        return score

    async def _process(
        self, item: Item, context: ScoringContext, *, upsert: bool = True
    ) -> tuple[Score, list[Job]]:
        stored = await self.items.upsert_item(item) if upsert else item
        score = await self.scoring.score_item(stored, context)
        queued = await self.automation.evaluate_and_enqueue(stored, score)

        if TierClassifier.is_enrichment_eligible(score.tier):
            job, created = await self.jobs.enqueue(
                JobType.ENRICH,
                stored.user_id,
                {"item_id": stored.id},
                max_attempts=settings.QUEUE_MAX_ATTEMPTS,
                priority=7 if score.tier == Tier.HIGH else 5,
                dedupe_key=enrich_dedupe_key(stored.user_id, stored.id),
            )
            if created:
                queued.append(job)

        logger.debug(
            "Item processed",
            user_id=stored.user_id,
            item_id=stored.id,
            tier=score.tier.value,
            jobs_enqueued=len(queued),
        )
        return score, queued


ingestion_service = IngestionService()
