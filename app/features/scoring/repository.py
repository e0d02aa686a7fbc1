"""
Repository helpers for scores, rule adjustments and the scoring context.
"""

from datetime import datetime

from app.db.helpers import (
    as_json,
    execute_query,
    execute_transaction,
    fetch_all,
    fetch_one,
    with_db_retry,
)
from app.features.scoring.domain import Score, ScoringContext, SenderProfile
from app.features.scoring.tiers import TierClassifier
from app.infrastructure.observability.logging import get_logger
from app.models.domain.item_domain import Tier

logger = get_logger(__name__)


class ScoreRepository:
    """One active score per (user_id, item_id)."""

    @staticmethod
    async def upsert_score(score: Score) -> None:
        """Store the score and the item's category atomically."""
        await execute_transaction(
            [
                (
                    """
                    INSERT INTO item_scores (
                        user_id, item_id, raw_score, final_score, processing_tier,
                        factors, context_version, degraded
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (user_id, item_id) DO UPDATE SET
                        raw_score = EXCLUDED.raw_score,
                        final_score = EXCLUDED.final_score,
                        processing_tier = EXCLUDED.processing_tier,
                        factors = EXCLUDED.factors,
                        context_version = EXCLUDED.context_version,
                        degraded = EXCLUDED.degraded,
                        scored_at = NOW()
                    """,
                    (
                        score.user_id,
                        score.item_id,
                        score.raw_score,
                        score.final_score,
                        score.tier.value,
                        as_json(score.factors),
                        score.context_version,
                        score.degraded,
                    ),
                ),
                (
                    "UPDATE items SET category = %s, updated_at = NOW() WHERE user_id = %s AND id = %s",
                    (score.category.value, score.user_id, score.item_id),
                ),
            ]
        )

    @staticmethod
    async def get_score(user_id: str, item_id: str) -> Score | None:
        row = await fetch_one(
            """
            SELECT user_id, item_id, raw_score, final_score, processing_tier,
                   factors, context_version, degraded
            FROM item_scores
            WHERE user_id = %s AND item_id = %s
            """,
            (user_id, item_id),
        )
        if not row:
            return None

        tier = Tier(row["processing_tier"])
        return Score(
            user_id=row["user_id"],
            item_id=str(row["item_id"]),
            raw_score=float(row["raw_score"]),
            final_score=int(row["final_score"]),
            tier=tier,
            category=TierClassifier.category_for(tier),
            factors=dict(row.get("factors") or {}),
            context_version=row.get("context_version") or 0,
            degraded=bool(row.get("degraded")),
        )

    @staticmethod
    async def get_rule_boosts(user_id: str, item_id: str) -> dict[str, int]:
        rows = await fetch_all(
            "SELECT rule_id, amount FROM score_adjustments WHERE user_id = %s AND item_id = %s",
            (user_id, item_id),
        )
        return {str(row["rule_id"]): int(row["amount"]) for row in rows}

    @staticmethod
    async def upsert_rule_adjustment(user_id: str, item_id: str, rule_id: str, amount: int) -> None:
        await execute_query(
            """
            INSERT INTO score_adjustments (user_id, item_id, rule_id, amount)
            VALUES (%s, %s, %s, %s)
            ON CONFLICT (user_id, item_id, rule_id) DO UPDATE SET amount = EXCLUDED.amount
            """,
            (user_id, item_id, rule_id, amount),
        )

    @staticmethod
    async def tier_summary(user_id: str) -> list[dict]:
        """Per-tier totals plus how many of them were enriched."""
        return await fetch_all(
            """
            SELECT s.processing_tier AS tier,
                   COUNT(*) AS total,
                   COUNT(i.enriched_at) AS enriched,
                   COALESCE(AVG(s.final_score), 0) AS average_score
            FROM item_scores s
            JOIN items i ON i.id = s.item_id
            WHERE s.user_id = %s
            GROUP BY s.processing_tier
            """,
            (user_id,),
        )


class ScoringContextRepository:
    """Loads the learned state that feeds the scoring engine."""

    @staticmethod
    @with_db_retry(max_retries=3, base_delay=0.1)
    async def load_context(user_id: str, reference_time: datetime) -> ScoringContext:
        sender_rows = await fetch_all(
            """
            SELECT sender_email, score_boost, vip_score, confidence_score
            FROM vip_senders
            WHERE user_id = %s
            """,
            (user_id,),
        )
        weight_rows = await fetch_all(
            "SELECT pattern_name, weight FROM pattern_weights WHERE user_id = %s",
            (user_id,),
        )
        state = await fetch_one(
            "SELECT version FROM learning_state WHERE user_id = %s",
            (user_id,),
        )

        senders = {
            row["sender_email"].lower(): SenderProfile(
                score_boost=int(row["score_boost"] or 0),
                vip_score=float(row["vip_score"]),
                confidence=float(row["confidence_score"]),
            )
            for row in sender_rows
        }
        weights = {row["pattern_name"]: float(row["weight"]) for row in weight_rows}

        logger.debug(
            "Scoring context loaded",
            user_id=user_id,
            sender_count=len(senders),
            pattern_count=len(weights),
        )
        return ScoringContext(
            user_id=user_id,
            reference_time=reference_time,
            senders=senders,
            pattern_weights=weights,
            version=state["version"] if state else 0,
        )
