"""
Learning feedback loop.

Actions are appended as immutable records. Applying one folds its
feedback into the sender's reputation and the weights of the patterns
present on the item, and bumps the learning version that later scoring
contexts carry. Each action is applied at most once, whether it came in
through tracking or through historical reprocessing.
"""

from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

from app.config import settings
from app.db.helpers import DatabaseError
from app.features.learning import feedback as learning
from app.features.learning.domain import (
    HIGH_IMPACT_ACTIONS,
    ActionTargetNotFoundError,
    UserAction,
    UserActionRecord,
)
from app.features.learning.repository import LearningRepository
from app.features.scoring.engine import ScoringEngine
from app.features.scoring.repository import ScoreRepository
from app.infrastructure.observability.logging import get_logger
from app.repositories.item_repository import ItemRepository

logger = get_logger(__name__)


class LearningService:
    def __init__(
        self,
        repository=LearningRepository,
        items=ItemRepository,
        scores=ScoreRepository,
        engine: ScoringEngine | None = None,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self.repository = repository
        self.items = items
        self.scores = scores
        self.engine = engine or ScoringEngine()
        self.clock = clock

    async def track_action(
        self,
        user_id: str,
        item_id: str,
        action: UserAction,
        occurred_at: datetime | None = None,
    ) -> UserActionRecord:
        """
        Append an action with a snapshot of the item as it is now.

        High-impact actions are learned right away. If that fails the
        record is still kept and the next reprocessing pass applies it.
        """
        action = UserAction(action)
        item = await self.items.get_item(user_id, item_id)
        if item is None:
            raise ActionTargetNotFoundError(item_id)

        score = await self.scores.get_score(user_id, item_id)
        record = await self.repository.insert_action(
            UserActionRecord(
                user_id=user_id,
                item_id=item.id,
                action=action,
                occurred_at=occurred_at or self.clock(),
                item_score=float(score.final_score) if score else None,
                sender_email=item.sender,
                subject=item.title,
                patterns=tuple(self.engine.detect_patterns(item)),
            )
        )
        logger.info("User action tracked", user_id=user_id, item_id=item.id, action=action.value)

        if action in HIGH_IMPACT_ACTIONS:
            try:
                await self.apply_action(record)
            except DatabaseError as e:
                logger.warning(
                    "Immediate learning failed, deferring to reprocessing",
                    user_id=user_id,
                    action_id=record.id,
                    error=str(e),
                )
        return record

    async def apply_action(self, record: UserActionRecord) -> bool:
        """Apply one action's feedback; False if it had already been applied."""
        fb = learning.derive_feedback(record.action)

        async with self.repository.transaction() as conn:
            if not await self.repository.mark_applied(record.id, record.user_id, connection=conn):
                return False

            if record.sender_email:
                sender = record.sender_email.lower()
                current = await self.repository.get_sender(record.user_id, sender, connection=conn)
                updated = learning.apply_to_sender(current, sender, fb)
                if updated is not None:
                    await self.repository.upsert_sender(
                        record.user_id, updated, record.occurred_at, connection=conn
                    )

            adjustment = learning.pattern_adjustment(fb, record.item_score)
            for pattern in dict.fromkeys(record.patterns):
                weight = await self.repository.get_pattern_weight(
                    record.user_id, pattern, connection=conn
                )
                await self.repository.upsert_pattern_weight(
                    record.user_id,
                    pattern,
                    learning.next_pattern_weight(weight, adjustment),
                    connection=conn,
                )

            await self.repository.bump_learning_state(record.user_id, connection=conn)

        logger.debug(
            "Action applied to learned state",
            user_id=record.user_id,
            action_id=record.id,
            feedback=fb.value,
        )
        return True

    async def process_historical_actions(
        self, user_id: str, limit: int | None = None
    ) -> dict[str, Any]:
        """
        Apply up to `limit` recent actions that have not influenced weights yet.

        Safe to run repeatedly; an action that is already applied, including
        one claimed by a concurrent pass, is counted as skipped.
        """
        limit = limit or settings.LEARNING_REPROCESS_LIMIT
        pending = await self.repository.list_unapplied_actions(user_id, limit)

        applied = skipped = 0
        for record in pending:
            if await self.apply_action(record):
                applied += 1
            else:
                skipped += 1

        result = {
            "user_id": user_id,
            "examined": len(pending),
            "applied": applied,
            "skipped": skipped,
        }
        logger.info("Historical actions processed", **result)
        return result

    async def get_learning_statistics(self, user_id: str) -> dict[str, Any]:
        counts = await self.repository.count_actions(user_id)
        scored = await self.repository.recent_scored_actions(user_id)
        state = await self.repository.learned_state(user_id)

        accurate = sum(
            1
            for row in scored
            if learning.was_prediction_accurate(
                float(row["item_score"]), learning.derive_feedback(row["action"])
            )
        )
        return {
            "user_id": user_id,
            "total_actions": sum(counts.values()),
            "actions_by_type": counts,
            "accuracy_rate": accurate / len(scored) if scored else 0.0,
            "vip_sender_count": state["vip_sender_count"],
            "pattern_weights": state["pattern_weights"],
            "pattern_effectiveness": await self.repository.pattern_effectiveness(user_id),
            "processed_actions": state["processed_actions"],
            "learning_version": state["version"],
        }

    async def list_actions(
        self,
        user_id: str,
        *,
        item_id: str | None = None,
        action: UserAction | None = None,
        limit: int = 50,
    ) -> list[UserActionRecord]:
        return await self.repository.list_actions(
            user_id, item_id=item_id, action=action, limit=limit
        )


learning_service = LearningService()
