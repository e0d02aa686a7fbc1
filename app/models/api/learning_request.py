"""
Learning API request models.
"""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from app.features.learning.domain import UserAction


class TrackActionRequest(BaseModel):
    item_id: UUID
    action: UserAction
    occurred_at: datetime | None = Field(default=None, description="Defaults to the time of the request")


class ReprocessRequest(BaseModel):
    limit: int | None = Field(default=None, ge=1, le=10000)
