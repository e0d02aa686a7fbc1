"""
Queue API request models.
"""

from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field


class RetryFailedRequest(BaseModel):
    limit: int = Field(default=100, ge=1, le=1000)


class ProcessImmediateRequest(BaseModel):
    """Item-scoped jobs to run now, bypassing scheduled delays."""

    item_ids: list[UUID] = Field(..., min_length=1)
    job_type: Literal["score", "enrich"] = "score"
