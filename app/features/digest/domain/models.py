"""
Domain models for digests.

A digest is a durable projection keyed by (user_id, window_type,
window_key). Buckets hold item references, not item copies; bulk
actions resolve those references against current item state.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import StrEnum
from typing import Any

from app.models.domain.item_domain import Source


class WindowType(StrEnum):
    MORNING = "morning"
    AFTERNOON = "afternoon"
    EVENING = "evening"
    MANUAL = "manual"
    WEEKLY = "weekly"


DAILY_WINDOWS = (WindowType.MORNING, WindowType.AFTERNOON, WindowType.EVENING)


class WeeklyCategory(StrEnum):
    MARKETING = "marketing"
    NEWSLETTERS = "newsletters"
    SOCIAL = "social"
    AUTOMATED = "automated"


class WeeklyAction(StrEnum):
    ARCHIVE = "archive"
    MARK_READ = "mark_read"
    UNSUBSCRIBE_REQUEST = "unsubscribe_request"
    KEEP = "keep"


class DigestNotFoundError(Exception):
    def __init__(self, message: str, recoverable: bool = False):
        super().__init__(message)
        self.recoverable = recoverable


@dataclass(slots=True)
class Digest:
    user_id: str
    window_type: WindowType
    window_key: date
    buckets: dict[str, list[dict[str, Any]]]
    summary: dict[str, Any] = field(default_factory=dict)
    generated_at: datetime | None = None
    id: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Digest":
        return cls(
            id=str(row["id"]) if row.get("id") else None,
            user_id=row["user_id"],
            window_type=WindowType(row["window_type"]),
            window_key=row["window_key"],
            buckets=dict(row.get("buckets") or {}),
            summary=dict(row.get("summary") or {}),
            generated_at=row.get("generated_at"),
        )

    def references(self, bucket: str) -> list[tuple[str, str]]:
        """(source, external_id) pairs stored in one bucket."""
        return [
            (entry["source"], entry["external_id"])
            for entry in self.buckets.get(bucket, [])
            if entry.get("source") and entry.get("external_id")
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "window_type": self.window_type.value,
            "window_key": self.window_key.isoformat(),
            "buckets": self.buckets,
            "summary": self.summary,
            "generated_at": self.generated_at.isoformat() if self.generated_at else None,
        }


@dataclass(slots=True)
class DigestPreferences:
    user_id: str
    enabled: bool = True
    include_sources: list[str] = field(default_factory=lambda: [s.value for s in Source])
