"""
Domain models for user actions and learned sender state.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum
from typing import Any


class UserAction(StrEnum):
    STAR = "star"
    ARCHIVE = "archive"
    REPLY = "reply"
    DELETE = "delete"
    READ = "read"
    UNREAD = "unread"


class Feedback(StrEnum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


FEEDBACK_BY_ACTION = {
    UserAction.STAR: Feedback.POSITIVE,
    UserAction.REPLY: Feedback.POSITIVE,
    UserAction.READ: Feedback.NEUTRAL,
    UserAction.ARCHIVE: Feedback.NEGATIVE,
    UserAction.DELETE: Feedback.NEGATIVE,
    UserAction.UNREAD: Feedback.NEGATIVE,
}

# Learned as soon as they are tracked; everything else waits for reprocessing.
HIGH_IMPACT_ACTIONS = frozenset({UserAction.STAR, UserAction.REPLY, UserAction.DELETE})


class ActionTargetNotFoundError(Exception):
    def __init__(self, item_id: str, recoverable: bool = False):
        super().__init__(f"Item {item_id} not found")
        self.item_id = item_id
        self.recoverable = recoverable


@dataclass(frozen=True, slots=True)
class UserActionRecord:
    """Immutable audit record of one user action, with a snapshot of the item at that time."""

    user_id: str
    item_id: str
    action: UserAction
    occurred_at: datetime
    item_score: float | None = None
    sender_email: str | None = None
    subject: str | None = None
    patterns: tuple[str, ...] = ()
    id: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "UserActionRecord":
        return cls(
            id=str(row["id"]),
            user_id=row["user_id"],
            item_id=str(row["item_id"]),
            action=UserAction(row["action"]),
            occurred_at=row["occurred_at"],
            item_score=row.get("item_score"),
            sender_email=row.get("sender_email"),
            subject=row.get("subject"),
            patterns=tuple(row.get("patterns") or ()),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "action": self.action.value,
            "occurred_at": self.occurred_at.isoformat(),
            "item_score": self.item_score,
            "sender_email": self.sender_email,
            "subject": self.subject,
            "patterns": list(self.patterns),
        }


@dataclass(slots=True)
class SenderState:
    sender_email: str
    vip_score: float = 0.5
    confidence: float = 0.0
    interaction_count: int = 0
    score_boost: int = 0
