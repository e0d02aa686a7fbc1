"""
Domain models for scoring.

ScoringContext is an immutable snapshot of everything the learning loop
has taught us about a user. Scores computed against the same item and
the same context version are identical.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any

from app.models.domain.item_domain import Category, Tier

ADJUSTMENT_FACTORS = ("vip_boost", "rule_boost")


@dataclass(frozen=True, slots=True)
class SenderProfile:
    """Learned reputation for one sender address."""

    score_boost: int = 0
    vip_score: float = 0.5
    confidence: float = 0.0


@dataclass(frozen=True)
class ScoringContext:
    user_id: str
    reference_time: datetime
    senders: Mapping[str, SenderProfile] = field(default_factory=dict)
    pattern_weights: Mapping[str, float] = field(default_factory=dict)
    version: int = 0

    def __post_init__(self) -> None:
        object.__setattr__(self, "senders", MappingProxyType(dict(self.senders)))
        object.__setattr__(self, "pattern_weights", MappingProxyType(dict(self.pattern_weights)))

    def sender(self, address: str | None) -> SenderProfile | None:
        if not address:
            return None
        return self.senders.get(address.strip().lower())

    def weight(self, pattern: str) -> float:
        return float(self.pattern_weights.get(pattern, 1.0))


@dataclass(frozen=True, slots=True)
class Score:
    user_id: str
    item_id: str
    raw_score: float
    final_score: int
    tier: Tier
    category: Category
    factors: dict[str, float]
    context_version: int = 0
    degraded: bool = False

    @property
    def adjustments(self) -> dict[str, float]:
        return {name: self.factors[name] for name in ADJUSTMENT_FACTORS if name in self.factors}

    def to_dict(self) -> dict[str, Any]:
        return {
            "item_id": self.item_id,
            "raw_score": self.raw_score,
            "final_score": self.final_score,
            "processing_tier": self.tier.value,
            "category": self.category.value,
            "factors": dict(self.factors),
            "context_version": self.context_version,
            "degraded": self.degraded,
        }
