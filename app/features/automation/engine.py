"""
Automation rules engine.

Selection only: evaluate() decides which rules fire for an item and
returns the selected actions in evaluation order. Executing them is the
job queue's concern.

Evaluation order is ascending priority (lower number first), ties broken
by creation time and then rule id. RuleOrder.DESCENDING flips the
priority direction only; tie-breaks stay oldest-first.
"""

import re
from collections.abc import Iterable
from datetime import UTC, datetime, tzinfo
from enum import StrEnum

from app.features.automation.domain import (
    AutomationRule,
    NewItemTrigger,
    RuleValidationError,
    ScheduleTrigger,
    ScoreThresholdTrigger,
    SelectedAction,
    SenderMatchTrigger,
    Trigger,
)
from app.features.scoring.domain import Score
from app.infrastructure.observability.logging import get_logger
from app.models.domain.item_domain import Item

logger = get_logger(__name__)

_EPOCH = datetime.min.replace(tzinfo=UTC)


class RuleOrder(StrEnum):
    ASCENDING = "ascending"
    DESCENDING = "descending"


def order_rules(
    rules: Iterable[AutomationRule], order: RuleOrder = RuleOrder.ASCENDING
) -> list[AutomationRule]:
    """Stable evaluation order: priority, then created_at, then id."""
    sign = -1 if RuleOrder(order) == RuleOrder.DESCENDING else 1

    def key(rule: AutomationRule):
        created = rule.created_at or _EPOCH
        if created.tzinfo is None:
            created = created.replace(tzinfo=UTC)
        return (sign * rule.priority, created, rule.id)

    return sorted(rules, key=key)


class RulesEngine:
    def __init__(self, order: RuleOrder = RuleOrder.ASCENDING, timezone: tzinfo = UTC):
        self.order = RuleOrder(order)
        self.timezone = timezone

    def evaluate(
        self, item: Item, score: Score, rules: Iterable[AutomationRule]
    ) -> list[SelectedAction]:
        """
        Select the actions that fire for one scored item.

        Disabled rules are ignored. A rule with a malformed trigger or
        action config is logged and skipped; the rest of the batch is
        still evaluated.
        """
        selected: list[SelectedAction] = []

        for rule in order_rules((r for r in rules if r.enabled), self.order):
            try:
                trigger = rule.trigger
                action = rule.action
            except RuleValidationError as e:
                logger.warning(
                    "Skipping malformed automation rule",
                    user_id=rule.user_id,
                    rule_id=rule.id,
                    error=str(e),
                )
                continue

            try:
                matched = self.matches(trigger, item, score)
            except (AttributeError, TypeError, re.error) as e:
                logger.warning(
                    "Rule trigger could not be evaluated",
                    user_id=rule.user_id,
                    rule_id=rule.id,
                    item_id=item.id,
                    error=str(e),
                )
                continue
            if not matched:
                continue

            selected.append(
                SelectedAction(rule_id=rule.id, rule_name=rule.name, item_id=item.id, action=action)
            )

        if selected:
            logger.debug(
                "Automation rules matched",
                user_id=item.user_id,
                item_id=item.id,
                rule_ids=[s.rule_id for s in selected],
            )
        return selected

    def matches(self, trigger: Trigger, item: Item, score: Score) -> bool:
        if isinstance(trigger, NewItemTrigger):
            return self._match_new_item(trigger, item)
        if isinstance(trigger, ScoreThresholdTrigger):
            return self._match_score(trigger, score)
        if isinstance(trigger, SenderMatchTrigger):
            return self._match_sender(trigger, item)
        if isinstance(trigger, ScheduleTrigger):
            return self._match_schedule(trigger, item)
        raise RuleValidationError(f"Unsupported trigger type: {type(trigger).__name__}")

    @staticmethod
    def _match_new_item(trigger: NewItemTrigger, item: Item) -> bool:
        if trigger.source and item.source != trigger.source:
            return False
        if trigger.subject_contains and trigger.subject_contains.lower() not in item.title.lower():
            return False
        if trigger.body_contains and trigger.body_contains.lower() not in item.body.lower():
            return False
        return True

    @staticmethod
    def _match_score(trigger: ScoreThresholdTrigger, score: Score) -> bool:
        if trigger.tier and score.tier != trigger.tier:
            return False

        value = score.final_score
        if trigger.operator == "greater_than":
            return value > trigger.threshold
        if trigger.operator == "less_than":
            return value < trigger.threshold
        if trigger.operator == "equals":
            return value == trigger.threshold
        return value >= trigger.threshold

    @staticmethod
    def _match_sender(trigger: SenderMatchTrigger, item: Item) -> bool:
        sender = (item.sender or "").lower()
        if not sender:
            return False

        value = trigger.value.lower()
        if trigger.operator == "equals":
            return sender == value
        if trigger.operator == "contains":
            return value in sender
        if trigger.operator == "domain":
            return item.sender_domain == value.lstrip("@")
        return re.search(trigger.value, item.sender or "", re.IGNORECASE) is not None

    def _match_schedule(self, trigger: ScheduleTrigger, item: Item) -> bool:
        moment = item.received_at or item.created_at
        if moment is None:
            return False
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=UTC)
        local = moment.astimezone(self.timezone)
        return local.weekday() in trigger.weekdays and trigger.start_hour <= local.hour < trigger.end_hour
