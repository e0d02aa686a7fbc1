"""
Executes one selected rule action against current item state.

Every action is idempotent so a retried rule_action job converges on
the same result.
"""

from typing import Any

from app.features.automation.domain import (
    ACTION_ADAPTER,
    ArchiveAction,
    BoostScoreAction,
    ForwardAction,
    LabelAction,
    NotifyAction,
)
from app.features.automation.repository import RuleRepository
from app.features.queue.handlers import JobHandlerError
from app.features.scoring.service import ScoringService, scoring_service
from app.infrastructure.observability.logging import get_logger
from app.repositories.item_repository import ItemRepository

logger = get_logger(__name__)


class RuleActionExecutor:
    def __init__(
        self,
        items=ItemRepository,
        rules=RuleRepository,
        scoring: ScoringService | None = None,
    ):
        self.items = items
        self.rules = rules
        self.scoring = scoring or scoring_service

    async def execute(
        self, user_id: str, rule_id: str, item_id: str, action_data: dict[str, Any]
    ) -> dict[str, Any]:
        try:
            action = ACTION_ADAPTER.validate_python(action_data)
        except ValueError as e:
            raise JobHandlerError(f"Malformed rule action: {e}", recoverable=False) from e

        item = await self.items.get_item(user_id, item_id)
        if item is None:
            raise JobHandlerError(f"Item {item_id} no longer exists", recoverable=False)

        result: dict[str, Any] = {"action": action.type, "rule_id": rule_id, "item_id": item_id}

        if isinstance(action, LabelAction):
            result["changed"] = await self.items.add_label(user_id, item_id, action.label)
        elif isinstance(action, ArchiveAction):
            result["changed"] = await self.items.archive_item(user_id, item_id)
        elif isinstance(action, ForwardAction):
            result["changed"] = await self.rules.record_pending_action(
                user_id, item_id, rule_id, action.type, {"to": action.to, "title": item.title}
            )
        elif isinstance(action, NotifyAction):
            result["changed"] = await self.rules.record_pending_action(
                user_id, item_id, rule_id, action.type, {"message": action.message, "title": item.title}
            )
        elif isinstance(action, BoostScoreAction):
            score = await self.scoring.apply_rule_boost(user_id, item_id, rule_id, action.amount)
            result["changed"] = score is not None
            if score is not None:
                result["final_score"] = score.final_score
                result["tier"] = score.tier.value
        else:
            raise JobHandlerError(f"Unsupported action type: {action.type}", recoverable=False)

        logger.info("Rule action executed", user_id=user_id, **result)
        return result
