"""
Concrete job handlers for the worker pool.

Each handler translates a job payload into a call on a feature service.
Transient failures are left to raise so the state machine retries them;
anything that can never succeed raises JobHandlerError(recoverable=False).
"""

from datetime import datetime
from typing import Any

from app.features.automation.executor import RuleActionExecutor
from app.features.automation.service import AutomationService, automation_service
from app.features.digest.domain import WindowType
from app.features.digest.service import DigestService, digest_service
from app.features.ingestion.service import IngestionError, IngestionService, ingestion_service
from app.features.queue.domain import Job, JobType
from app.features.queue.handlers import JobHandler, JobHandlerError, require_payload
from app.features.scoring.repository import ScoreRepository
from app.features.scoring.tiers import TierClassifier
from app.infrastructure.observability.logging import get_logger
from app.repositories.item_repository import ItemRepository
from app.services.completion_service import (
    CompletionService,
    CompletionServiceError,
    completion_service,
)

logger = get_logger(__name__)


class ScoreJobHandler(JobHandler):
    def __init__(self, ingestion: IngestionService | None = None):
        self.ingestion = ingestion or ingestion_service

    async def run(self, job: Job) -> dict[str, Any]:
        (item_id,) = require_payload(job, "item_id")
        try:
            score = await self.ingestion.process_stored_item(job.user_id, item_id)
        except IngestionError as e:
            raise JobHandlerError(str(e), job_id=job.id, recoverable=e.recoverable) from e
        return {"item_id": item_id, "final_score": score.final_score, "tier": score.tier.value}


class EnrichJobHandler(JobHandler):
    """
    Summary and smart replies for high/medium items.

    Items that dropped out of an eligible tier since queueing are skipped.
    A completion error that will not go away on retry degrades to no
    enrichment instead of failing the job.
    """

    def __init__(
        self,
        items=ItemRepository,
        scores=ScoreRepository,
        completion: CompletionService | None = None,
    ):
        self.items = items
        self.scores = scores
        self.completion = completion or completion_service

    async def run(self, job: Job) -> dict[str, Any]:
        (item_id,) = require_payload(job, "item_id")

        item = await self.items.get_item(job.user_id, item_id)
        if item is None:
            raise JobHandlerError(f"Item {item_id} not found", job_id=job.id, recoverable=False)

        score = await self.scores.get_score(job.user_id, item_id)
        if score is None or not TierClassifier.is_enrichment_eligible(score.tier):
            logger.info(
                "Enrichment skipped for ineligible item",
                job_id=job.id,
                item_id=item_id,
                tier=score.tier.value if score else None,
            )
            return {"item_id": item_id, "enriched": False}

        try:
            summary = await self.completion.summarize(item.text)
            replies = await self.completion.suggest_replies(item.text)
        except CompletionServiceError as e:
            if e.recoverable:
                raise JobHandlerError(str(e), job_id=job.id, recoverable=True) from e
            logger.warning(
                "Completion unavailable, item left without enrichment",
                job_id=job.id,
                item_id=item_id,
                error=str(e),
            )
            return {"item_id": item_id, "enriched": False}

        await self.items.save_enrichment(job.user_id, item_id, summary, replies)
        return {"item_id": item_id, "enriched": True, "reply_count": len(replies)}


class DigestJobHandler(JobHandler):
    def __init__(self, digests: DigestService | None = None):
        self.digests = digests or digest_service

    async def run(self, job: Job) -> dict[str, Any]:
        (window_type,) = require_payload(job, "window_type")
        try:
            window_type = WindowType(window_type)
        except ValueError as e:
            raise JobHandlerError(str(e), job_id=job.id, recoverable=False) from e

        # as_of pins the window so a retry on a later day builds the original one
        as_of = job.payload.get("as_of")
        now = datetime.fromisoformat(as_of) if as_of else None

        result = await self.digests.build(
            job.user_id, window_type, force=bool(job.payload.get("force")), now=now
        )
        return {
            "window_type": window_type.value,
            "window_key": result.digest.window_key.isoformat(),
            "generated": result.generated,
        }


class RuleActionJobHandler(JobHandler):
    """Executes a selected rule action; the rule is counted once the job has succeeded."""

    def __init__(
        self,
        executor: RuleActionExecutor | None = None,
        automation: AutomationService | None = None,
    ):
        self.executor = executor or RuleActionExecutor()
        self.automation = automation or automation_service

    async def run(self, job: Job) -> dict[str, Any]:
        rule_id, item_id, action = require_payload(job, "rule_id", "item_id", "action")
        return await self.executor.execute(job.user_id, rule_id, item_id, action)

    async def on_succeeded(self, job: Job) -> None:
        await self.automation.record_execution(
            job.id, job.payload["rule_id"], job.payload.get("item_id")
        )

    async def reconcile(self) -> int:
        return await self.automation.reconcile_executions()


def build_job_handlers() -> dict[JobType, JobHandler]:
    return {
        JobType.SCORE: ScoreJobHandler(),
        JobType.ENRICH: EnrichJobHandler(),
        JobType.DIGEST: DigestJobHandler(),
        JobType.RULE_ACTION: RuleActionJobHandler(),
    }
