"""
Shared domain models for ingested items.

Every feature slice (scoring, automation, digest, learning, ingestion)
works with the same normalized Item shape, so it lives outside any one
feature.
"""

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

ITEM_ID_NAMESPACE = uuid.UUID("5b0c3f9e-6f0a-4d8e-9a51-3c2f1f6d7e10")


class Source(StrEnum):
    MAIL = "mail"
    CHAT = "chat"
    CALENDAR = "calendar"


class Tier(StrEnum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Category(StrEnum):
    NOW = "now"
    NEXT = "next"
    LATER = "later"


def item_id_for(user_id: str, source: str, external_id: str) -> str:
    """Stable item id derived from (user, source, external id)."""
    return str(uuid.uuid5(ITEM_ID_NAMESPACE, f"{user_id}:{source}:{external_id}"))


@dataclass(slots=True)
class RawItem:
    """Item as handed over by a source adapter, before normalization."""

    source: Source
    external_id: str
    title: str = ""
    body: str = ""
    sender: str | None = None
    is_important: bool = False
    is_starred: bool = False
    is_unread: bool = True
    labels: list[str] = field(default_factory=list)
    received_at: datetime | None = None


@dataclass(slots=True)
class Item:
    """A normalized unit of incoming communication."""

    id: str
    user_id: str
    source: Source
    external_id: str
    title: str = ""
    body: str = ""
    sender: str | None = None
    category: Category | None = None
    is_important: bool = False
    is_starred: bool = False
    is_unread: bool = True
    is_archived: bool = False
    labels: list[str] = field(default_factory=list)
    received_at: datetime | None = None
    created_at: datetime | None = None

    @classmethod
    def from_raw(cls, user_id: str, raw: RawItem) -> "Item":
        source = Source(raw.source)
        return cls(
            id=item_id_for(user_id, source.value, raw.external_id),
            user_id=user_id,
            source=source,
            external_id=raw.external_id,
            title=raw.title or "",
            body=raw.body or "",
            sender=raw.sender.strip().lower() if raw.sender else None,
            is_important=raw.is_important,
            is_starred=raw.is_starred,
            is_unread=raw.is_unread,
            labels=list(raw.labels),
            received_at=_as_utc(raw.received_at),
        )

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Item":
        category = row.get("category")
        return cls(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            source=Source(row["source"]),
            external_id=row["external_id"],
            title=row.get("title") or "",
            body=row.get("body") or "",
            sender=row.get("sender"),
            category=Category(category) if category else None,
            is_important=bool(row.get("is_important")),
            is_starred=bool(row.get("is_starred")),
            is_unread=bool(row.get("is_unread", True)),
            is_archived=bool(row.get("is_archived")),
            labels=list(row.get("labels") or []),
            received_at=row.get("received_at"),
            created_at=row.get("created_at"),
        )

    @property
    def text(self) -> str:
        return f"{self.title} {self.body}"

    @property
    def sender_domain(self) -> str | None:
        if not self.sender or "@" not in self.sender:
            return None
        return self.sender.rsplit("@", 1)[1]


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
