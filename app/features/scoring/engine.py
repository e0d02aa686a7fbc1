"""
Priority scoring engine.

Pure computation: given an item, a scoring context and the rule boosts
recorded for that item, produce a Score. No I/O happens here so the
same inputs always yield the same output.
"""

import re
from collections.abc import Mapping
from datetime import UTC

from app.features.scoring.domain import Score, ScoringContext
from app.features.scoring.tiers import TierClassifier, TierThresholds
from app.infrastructure.observability.logging import get_logger
from app.models.domain.item_domain import Item

logger = get_logger(__name__)

BASE_SCORE = 30.0

MARKETING_PENALTY = -30.0
URGENT_BOOST = 25.0
IMPORTANT_BOOST = 20.0
STARRED_BOOST = 15.0
UNREAD_BOOST = 10.0
RECENT_BOOST = 15.0
STALE_PENALTY = -10.0

MAX_PATTERN_WEIGHT = 2.0

RECENT_HOURS = 2
STALE_HOURS = 24

MARKETING_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"unsubscribe",
        r"\d+\s*%\s*off",
        r"percent off",
        r"\bsale\b",
        r"\bdeals?\b",
        r"limited time",
        r"coupon",
        r"newsletter",
        r"digest",
        r"\bpromo\b",
        r"promotion",
        r"\boffer\b",
        r"clearance",
        r"flash sale",
    )
]

URGENT_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"urgent",
        r"\basap\b",
        r"immediately",
        r"deadline",
        r"overdue",
        r"critical",
    )
]


class ScoringEngine:
    """Computes explainable priority scores."""

    def __init__(self, thresholds: TierThresholds | None = None):
        self.classifier = TierClassifier(thresholds)

    def score(
        self,
        item: Item,
        context: ScoringContext,
        rule_boosts: Mapping[str, float] | None = None,
    ) -> Score:
        """
        Score one item.

        Args:
            item: Normalized item
            context: Learned scoring context snapshot
            rule_boosts: boost_score adjustments recorded for this item, keyed by rule id

        Returns:
            Score with per-factor contributions. Items whose content cannot be
            inspected get the neutral base score with degraded=True.
        """
        try:
            factors = self._content_factors(item, context)
        except (AttributeError, TypeError, ValueError) as e:
            logger.warning(
                "Item could not be scored, using neutral score",
                user_id=context.user_id,
                item_id=getattr(item, "id", None),
                error=str(e),
            )
            return self._build(item, context, {"base": BASE_SCORE}, rule_boosts, degraded=True)

        return self._build(item, context, factors, rule_boosts)

    def rescore(self, score: Score, rule_boosts: Mapping[str, float] | None) -> Score:
        """Recompute final score and tier from a stored raw score and new rule boosts."""
        factors = {
            name: value for name, value in score.factors.items() if name != "rule_boost"
        }
        total_rules = sum(rule_boosts.values()) if rule_boosts else 0
        if total_rules:
            factors["rule_boost"] = float(total_rules)

        final = self.classifier.clamp(score.raw_score + sum(_adjustments(factors)))
        tier = self.classifier.classify(final)
        return Score(
            user_id=score.user_id,
            item_id=score.item_id,
            raw_score=score.raw_score,
            final_score=final,
            tier=tier,
            category=self.classifier.category_for(tier),
            factors=factors,
            context_version=score.context_version,
            degraded=score.degraded,
        )

    def detect_patterns(self, item: Item) -> list[str]:
        """Names of the content patterns that fire for an item."""
        try:
            text = f"{item.title} {item.body}".lower()
            subject = item.title.lower()
        except (AttributeError, TypeError):
            return []

        patterns = []
        if any(p.search(text) for p in MARKETING_PATTERNS):
            patterns.append("marketing")
        if any(p.search(subject) for p in URGENT_PATTERNS):
            patterns.append("urgent")
        if item.is_important:
            patterns.append("important")
        if item.is_starred:
            patterns.append("starred")
        return patterns

    def _content_factors(self, item: Item, context: ScoringContext) -> dict[str, float]:
        if not isinstance(item.title, str) or not isinstance(item.body, str):
            raise TypeError("item title and body must be text")

        factors: dict[str, float] = {"base": BASE_SCORE}
        patterns = self.detect_patterns(item)

        if "marketing" in patterns:
            factors["marketing"] = MARKETING_PENALTY
        if "urgent" in patterns:
            factors["urgent"] = URGENT_BOOST
        if item.is_important:
            factors["important"] = IMPORTANT_BOOST
        if item.is_starred:
            factors["starred"] = STARRED_BOOST
        if item.is_unread:
            factors["unread"] = UNREAD_BOOST

        if item.received_at is not None:
            received = item.received_at
            if received.tzinfo is None:
                received = received.replace(tzinfo=UTC)
            age_hours = (context.reference_time - received).total_seconds() / 3600
            if age_hours < RECENT_HOURS:
                factors["recent"] = RECENT_BOOST
            elif age_hours > STALE_HOURS:
                factors["stale"] = STALE_PENALTY

        for name in list(factors):
            if name == "base":
                continue
            weight = context.weight(name)
            # Weights above 1 favour the pattern: boosts grow, penalties shrink.
            if factors[name] < 0:
                weight = MAX_PATTERN_WEIGHT - weight
            factors[name] = factors[name] * weight

        profile = context.sender(item.sender)
        if profile is not None:
            reputation = (profile.vip_score - 0.5) * 2 * 10 * profile.confidence
            if reputation:
                factors["sender_reputation"] = reputation

        return factors

    def _build(
        self,
        item: Item,
        context: ScoringContext,
        factors: dict[str, float],
        rule_boosts: Mapping[str, float] | None,
        degraded: bool = False,
    ) -> Score:
        raw = sum(factors.values())

        profile = context.sender(getattr(item, "sender", None))
        if profile is not None and profile.score_boost:
            factors["vip_boost"] = float(profile.score_boost)

        total_rules = sum(rule_boosts.values()) if rule_boosts else 0
        if total_rules:
            factors["rule_boost"] = float(total_rules)

        final = self.classifier.clamp(raw + sum(_adjustments(factors)))
        tier = self.classifier.classify(final)
        return Score(
            user_id=context.user_id,
            item_id=item.id,
            raw_score=raw,
            final_score=final,
            tier=tier,
            category=self.classifier.category_for(tier),
            factors=factors,
            context_version=context.version,
            degraded=degraded,
        )


def _adjustments(factors: Mapping[str, float]) -> list[float]:
    return [factors[name] for name in ("vip_boost", "rule_boost") if name in factors]
