"""
Pipeline API request models.
"""

from pydantic import BaseModel, Field

from app.models.domain.item_domain import Source


class IngestRequest(BaseModel):
    sources: list[Source] | None = Field(default=None, description="Defaults to every registered source")
    window_minutes: int | None = Field(default=None, ge=1, le=10080)
