"""
Digest API response models.
"""

from datetime import date, datetime
from typing import Any

from pydantic import BaseModel

from app.features.digest.domain import Digest, DigestPreferences


class DigestResponse(BaseModel):
    id: str | None = None
    window_type: str
    window_key: date
    buckets: dict[str, list[dict[str, Any]]]
    summary: dict[str, Any]
    generated_at: datetime | None = None

    @classmethod
    def from_digest(cls, digest: Digest) -> "DigestResponse":
        return cls(
            id=digest.id,
            window_type=digest.window_type.value,
            window_key=digest.window_key,
            buckets=digest.buckets,
            summary=digest.summary,
            generated_at=digest.generated_at,
        )


class DigestBuildResponse(BaseModel):
    generated: bool
    digest: DigestResponse


class DigestHistoryResponse(BaseModel):
    digests: list[DigestResponse]
    total_count: int


class WeeklyDigestActionResponse(BaseModel):
    week_start: date
    category: str
    action: str
    requested: int
    updated: int
    skipped: int


class DigestPreferencesResponse(BaseModel):
    enabled: bool
    include_sources: list[str]

    @classmethod
    def from_preferences(cls, preferences: DigestPreferences) -> "DigestPreferencesResponse":
        return cls(enabled=preferences.enabled, include_sources=preferences.include_sources)
