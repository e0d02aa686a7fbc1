"""
Digest API request models.
"""

from datetime import date

from pydantic import BaseModel, Field

from app.features.digest.domain import WeeklyAction, WeeklyCategory
from app.models.domain.item_domain import Source


class BuildDigestRequest(BaseModel):
    """Optional body for a digest build."""

    force: bool = Field(default=False, description="Rebuild even if this window already has a digest")


class WeeklyDigestActionRequest(BaseModel):
    """Bulk action over one category of the weekly digest."""

    category: WeeklyCategory
    action: WeeklyAction
    week_start: date | None = Field(default=None, description="Defaults to the current ISO week")


class UpdateDigestPreferencesRequest(BaseModel):
    enabled: bool | None = None
    include_sources: list[Source] | None = Field(default=None, min_length=1)
