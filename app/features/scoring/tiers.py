"""
Tier classification.

Partitions the score range into high / medium / low bands and maps each
tier onto a triage category.
"""

from dataclasses import dataclass

from app.models.domain.item_domain import Category, Tier

TIER_CATEGORY = {
    Tier.HIGH: Category.NOW,
    Tier.MEDIUM: Category.NEXT,
    Tier.LOW: Category.LATER,
}

ENRICHMENT_TIERS = frozenset({Tier.HIGH, Tier.MEDIUM})


@dataclass(frozen=True, slots=True)
class TierThresholds:
    high: int = 80
    medium: int = 40
    score_min: int = 0
    score_max: int = 100

    def __post_init__(self) -> None:
        if not (self.score_min <= self.medium < self.high <= self.score_max):
            raise ValueError(
                "Tier thresholds must satisfy "
                f"score_min <= medium < high <= score_max "
                f"(got {self.score_min}, {self.medium}, {self.high}, {self.score_max})"
            )


class TierClassifier:
    """Maps final scores onto tiers using fixed thresholds."""

    def __init__(self, thresholds: TierThresholds | None = None):
        self.thresholds = thresholds or TierThresholds()

    def clamp(self, score: float) -> int:
        t = self.thresholds
        return int(max(t.score_min, min(t.score_max, round(score))))

    def classify(self, final_score: float) -> Tier:
        score = self.clamp(final_score)
        if score >= self.thresholds.high:
            return Tier.HIGH
        if score >= self.thresholds.medium:
            return Tier.MEDIUM
        return Tier.LOW

    def bands(self) -> list[tuple[Tier, int, int]]:
        """Inclusive score range per tier, highest first."""
        t = self.thresholds
        return [
            (Tier.HIGH, t.high, t.score_max),
            (Tier.MEDIUM, t.medium, t.high - 1),
            (Tier.LOW, t.score_min, t.medium - 1),
        ]

    @staticmethod
    def category_for(tier: Tier) -> Category:
        return TIER_CATEGORY[Tier(tier)]

    @staticmethod
    def is_enrichment_eligible(tier: Tier) -> bool:
        return Tier(tier) in ENRICHMENT_TIERS
