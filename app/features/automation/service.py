"""
Automation service - rule CRUD, cached rule lookup and rule selection.
"""

from typing import Any
from zoneinfo import ZoneInfo

from app.config import settings
from app.features.automation.cache import RuleCache
from app.features.automation.domain import AutomationRule, parse_action, parse_trigger
from app.features.automation.engine import RuleOrder, RulesEngine
from app.features.automation.repository import RuleNotFoundError, RuleRepository
from app.features.automation.templates import get_templates
from app.features.queue.domain import Job, JobType
from app.features.queue.repository import JobRepository
from app.features.scoring.domain import Score
from app.infrastructure.observability.logging import get_logger
from app.models.domain.item_domain import Item

logger = get_logger(__name__)


class AutomationService:
    def __init__(
        self,
        repository=RuleRepository,
        cache: RuleCache | None = None,
        engine: RulesEngine | None = None,
        jobs=JobRepository,
        max_attempts: int | None = None,
    ):
        self.repository = repository
        self.cache = cache or RuleCache()
        self.engine = engine or RulesEngine(
            RuleOrder(settings.RULE_ORDER), ZoneInfo(settings.DIGEST_TIMEZONE)
        )
        self.jobs = jobs
        self.max_attempts = max_attempts or settings.QUEUE_MAX_ATTEMPTS

    async def list_rules(self, user_id: str) -> dict[str, Any]:
        rules = await self.repository.list_rules(user_id)
        return {"rules": rules, "templates": get_templates()}

    async def create_rule(self, user_id: str, data: dict[str, Any]) -> AutomationRule:
        """Validate the trigger/action configs, then persist. Raises RuleValidationError."""
        normalized = dict(data)
        normalized.update(_normalized_configs(data))
        rule = await self.repository.create_rule(user_id, normalized)
        await self.cache.invalidate(user_id)
        return rule

    async def update_rule(
        self, user_id: str, rule_id: str, changes: dict[str, Any]
    ) -> AutomationRule:
        existing = await self.repository.get_rule(user_id, rule_id)
        if existing is None:
            raise RuleNotFoundError(rule_id)

        changes = dict(changes)
        if {"trigger_type", "trigger_config", "action_type", "action_config"} & changes.keys():
            merged = {
                "trigger_type": changes.get("trigger_type", existing.trigger_type),
                "trigger_config": changes.get("trigger_config", existing.trigger_config),
                "action_type": changes.get("action_type", existing.action_type),
                "action_config": changes.get("action_config", existing.action_config),
            }
            changes.update(_normalized_configs(merged))

        rule = await self.repository.update_rule(user_id, rule_id, changes)
        await self.cache.invalidate(user_id)
        return rule

    async def delete_rule(self, user_id: str, rule_id: str) -> None:
        if not await self.repository.delete_rule(user_id, rule_id):
            raise RuleNotFoundError(rule_id)
        await self.cache.invalidate(user_id)

    async def get_active_rules(self, user_id: str) -> list[AutomationRule]:
        cached = await self.cache.get(user_id)
        if cached is not None:
            return cached

        rules = await self.repository.list_rules(user_id, enabled_only=True)
        await self.cache.set(user_id, rules)
        return rules

    async def evaluate_and_enqueue(
        self, item: Item, score: Score, rules: list[AutomationRule] | None = None
    ) -> list[Job]:
        """Select matching rules for a scored item and queue one rule_action job per match."""
        if rules is None:
            rules = await self.get_active_rules(item.user_id)

        queued = []
        for selection in self.engine.evaluate(item, score, rules):
            job, created = await self.jobs.enqueue(
                JobType.RULE_ACTION,
                item.user_id,
                selection.to_payload(),
                max_attempts=self.max_attempts,
                dedupe_key=selection.dedupe_key,
            )
            if created:
                queued.append(job)

        if queued:
            logger.info(
                "Rule actions queued",
                user_id=item.user_id,
                item_id=item.id,
                job_count=len(queued),
            )
        return queued

    async def record_execution(self, job_id: str, rule_id: str, item_id: str | None) -> bool:
        counted = await self.repository.record_execution(job_id, rule_id, item_id)
        if not counted:
            logger.debug("Rule execution already counted", job_id=job_id, rule_id=rule_id)
        return counted

    async def reconcile_executions(self, limit: int = 500) -> int:
        """Count succeeded rule-action jobs that never reached rule_executions."""
        counted = await self.repository.record_missing_executions(limit)
        if counted:
            logger.warning("Recovered uncounted rule executions", count=counted)
        return counted


def _normalized_configs(data: dict[str, Any]) -> dict[str, Any]:
    trigger = parse_trigger(data["trigger_type"], data.get("trigger_config"))
    action = parse_action(data["action_type"], data.get("action_config"))
    return {
        "trigger_type": trigger.type,
        "trigger_config": trigger.config(),
        "action_type": action.type,
        "action_config": action.config(),
    }


automation_service = AutomationService()
