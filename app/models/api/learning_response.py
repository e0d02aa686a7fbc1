"""
Learning API response models.
"""

from datetime import datetime

from pydantic import BaseModel

from app.features.learning.domain import UserActionRecord


class UserActionResponse(BaseModel):
    id: str | None
    item_id: str
    action: str
    occurred_at: datetime
    item_score: float | None = None
    sender_email: str | None = None
    subject: str | None = None
    patterns: list[str] = []

    @classmethod
    def from_record(cls, record: UserActionRecord) -> "UserActionResponse":
        return cls(
            id=record.id,
            item_id=record.item_id,
            action=record.action.value,
            occurred_at=record.occurred_at,
            item_score=record.item_score,
            sender_email=record.sender_email,
            subject=record.subject,
            patterns=list(record.patterns),
        )


class UserActionListResponse(BaseModel):
    actions: list[UserActionResponse]
    total_count: int


class LearningStatsResponse(BaseModel):
    user_id: str
    total_actions: int
    actions_by_type: dict[str, int]
    accuracy_rate: float
    vip_sender_count: int
    pattern_weights: dict[str, float]
    pattern_effectiveness: dict[str, float]
    processed_actions: int
    learning_version: int


class ReprocessResponse(BaseModel):
    user_id: str
    examined: int
    applied: int
    skipped: int
