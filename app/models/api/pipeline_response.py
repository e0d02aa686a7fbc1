"""
Pipeline API response models.
"""

from pydantic import BaseModel


class IngestResponse(BaseModel):
    user_id: str
    processed: int
    tiers: dict[str, int]
    skipped: int
    failed: int
    adapter_failures: int
    jobs_enqueued: int


class TierStats(BaseModel):
    total: int
    enriched: int
    average_score: float
    score_range: list[int]
    enrichment_eligible: bool


class TierSummaryResponse(BaseModel):
    user_id: str
    tiers: dict[str, TierStats]
    total: int
    enrichment_candidates: int
