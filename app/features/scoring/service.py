"""
Scoring service - wires the pure engine to persistence.
"""

from datetime import UTC, datetime

from app.config import settings
from app.features.scoring.domain import Score, ScoringContext
from app.features.scoring.engine import ScoringEngine
from app.features.scoring.repository import ScoreRepository, ScoringContextRepository
from app.infrastructure.observability.logging import get_logger
from app.models.domain.item_domain import Item, Tier

logger = get_logger(__name__)


class ScoringService:
    def __init__(
        self,
        engine: ScoringEngine | None = None,
        scores=ScoreRepository,
        contexts=ScoringContextRepository,
    ):
        self.engine = engine or ScoringEngine(settings.tier_thresholds())
        self.scores = scores
        self.contexts = contexts

    async def load_context(self, user_id: str, reference_time: datetime | None = None) -> ScoringContext:
        return await self.contexts.load_context(user_id, reference_time or datetime.now(UTC))

    async def score_item(self, item: Item, context: ScoringContext | None = None) -> Score:
        """Score one item against the user's context and persist the result."""
        if context is None:
            context = await self.load_context(item.user_id)

        boosts = await self.scores.get_rule_boosts(item.user_id, item.id)
        score = self.engine.score(item, context, boosts)
        await self.scores.upsert_score(score)

        logger.debug(
            "Item scored",
            user_id=item.user_id,
            item_id=item.id,
            final_score=score.final_score,
            tier=score.tier.value,
            degraded=score.degraded,
        )
        return score

    async def apply_rule_boost(
        self, user_id: str, item_id: str, rule_id: str, amount: int
    ) -> Score | None:
        """Record a boost_score adjustment and recompute the stored score."""
        await self.scores.upsert_rule_adjustment(user_id, item_id, rule_id, amount)

        current = await self.scores.get_score(user_id, item_id)
        if current is None:
            logger.warning("Boost applied to unscored item", user_id=user_id, item_id=item_id)
            return None

        boosts = await self.scores.get_rule_boosts(user_id, item_id)
        updated = self.engine.rescore(current, boosts)
        await self.scores.upsert_score(updated)

        logger.info(
            "Rule boost applied",
            user_id=user_id,
            item_id=item_id,
            rule_id=rule_id,
            amount=amount,
            final_score=updated.final_score,
            tier=updated.tier.value,
        )
        return updated

    async def tier_summary(self, user_id: str) -> dict:
        rows = {row["tier"]: row for row in await self.scores.tier_summary(user_id)}
        tiers = {}
        for tier, low, high in self.engine.classifier.bands():
            row = rows.get(tier.value, {})
            tiers[tier.value] = {
                "total": int(row.get("total", 0)),
                "enriched": int(row.get("enriched", 0)),
                "average_score": round(float(row.get("average_score", 0)), 1),
                "score_range": [low, high],
                "enrichment_eligible": self.engine.classifier.is_enrichment_eligible(tier),
            }

        return {
            "user_id": user_id,
            "tiers": tiers,
            "total": sum(t["total"] for t in tiers.values()),
            "enrichment_candidates": sum(
                tiers[t.value]["total"] for t in (Tier.HIGH, Tier.MEDIUM)
            ),
        }


scoring_service = ScoringService()
