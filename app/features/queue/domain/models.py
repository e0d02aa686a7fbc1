"""
Domain models for queued jobs.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any


class JobType(StrEnum):
    SCORE = "score"
    ENRICH = "enrich"
    DIGEST = "digest"
    RULE_ACTION = "rule_action"


class JobStatus(StrEnum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({JobStatus.SUCCEEDED, JobStatus.FAILED})


class JobEvent(StrEnum):
    DEQUEUED = "dequeued"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTED = "aborted"  # handler reported a permanent failure
    RELEASED = "released"  # returned to pending without consuming an attempt
    OPERATOR_RETRY = "operator_retry"


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Exponential backoff: base * 2^(attempts-1), capped."""

    base_seconds: float = 1.0
    max_seconds: float = 300.0

    def delay(self, attempts: int) -> timedelta:
        seconds = self.base_seconds * (2 ** max(attempts - 1, 0))
        return timedelta(seconds=min(seconds, self.max_seconds))


@dataclass(slots=True)
class Job:
    id: str
    type: JobType
    user_id: str
    payload: dict[str, Any] = field(default_factory=dict)
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    max_attempts: int = 3
    priority: int = 5
    last_error: str | None = None
    dedupe_key: str | None = None
    scheduled_at: datetime | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Job":
        return cls(
            id=str(row["id"]),
            type=JobType(row["type"]),
            user_id=row["user_id"],
            payload=dict(row.get("payload") or {}),
            status=JobStatus(row["status"]),
            attempts=row.get("attempts", 0),
            max_attempts=row.get("max_attempts", 3),
            priority=row.get("priority", 5),
            last_error=row.get("last_error"),
            dedupe_key=row.get("dedupe_key"),
            scheduled_at=row.get("scheduled_at"),
            started_at=row.get("started_at"),
            finished_at=row.get("finished_at"),
            created_at=row.get("created_at"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "user_id": self.user_id,
            "payload": self.payload,
            "status": self.status.value,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "priority": self.priority,
            "last_error": self.last_error,
            "scheduled_at": self.scheduled_at.isoformat() if self.scheduled_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
