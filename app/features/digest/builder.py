"""
Digest construction.

Pure functions over already-loaded item rows: window keys and ranges,
weekly keyword categorization and bucket assembly. Loading rows and
storing digests is the service's job.
"""

import functools
import re
from collections import Counter
from collections.abc import Iterable, Mapping
from datetime import UTC, date, datetime, time, timedelta, tzinfo
from typing import Any

from app.features.digest.domain import Digest, WeeklyCategory, WindowType
from app.features.scoring.tiers import TierClassifier
from app.models.domain.item_domain import Category, Tier

KeywordPolicy = tuple[tuple[WeeklyCategory, tuple[str, ...]], ...]

# First matching category wins; items matching nothing fall back to FALLBACK_CATEGORY.
DEFAULT_WEEKLY_POLICY: KeywordPolicy = (
    (WeeklyCategory.MARKETING, ("sale", "deal", "offer", "unsubscribe", "promotion")),
    (WeeklyCategory.NEWSLETTERS, ("newsletter", "digest")),
    (WeeklyCategory.SOCIAL, ("followed", "liked", "mentioned")),
    (WeeklyCategory.AUTOMATED, ("receipt", "invoice", "alert", "system")),
)
FALLBACK_CATEGORY = WeeklyCategory.AUTOMATED


def window_key(window_type: WindowType, moment: datetime, tz: tzinfo = UTC) -> date:
    """Calendar date for daily windows, ISO week start (Monday) for weekly."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    local_day = moment.astimezone(tz).date()
    if WindowType(window_type) == WindowType.WEEKLY:
        return local_day - timedelta(days=local_day.weekday())
    return local_day


def window_range(window_type: WindowType, key: date, tz: tzinfo = UTC) -> tuple[datetime, datetime]:
    """Half-open [start, end) range in UTC covered by a window key."""
    start = datetime.combine(key, time.min, tzinfo=tz)
    days = 7 if WindowType(window_type) == WindowType.WEEKLY else 1
    end = start + timedelta(days=days)
    return start.astimezone(UTC), end.astimezone(UTC)


@functools.lru_cache(maxsize=256)
def _keyword_pattern(keyword: str) -> re.Pattern[str]:
    # Whole words only, plural allowed: "deals" matches, "dealer" does not.
    return re.compile(rf"\b{re.escape(keyword)}s?\b", re.IGNORECASE)


def categorize(text: str, policy: KeywordPolicy = DEFAULT_WEEKLY_POLICY) -> WeeklyCategory:
    text = text or ""
    for category, keywords in policy:
        if any(_keyword_pattern(keyword).search(text) for keyword in keywords):
            return category
    return FALLBACK_CATEGORY


def _reference(row: Mapping[str, Any]) -> dict[str, Any]:
    created = row.get("created_at")
    return {
        "item_id": str(row["id"]),
        "source": row["source"],
        "external_id": row["external_id"],
        "title": row.get("title") or "",
        "sender": row.get("sender"),
        "final_score": row.get("final_score"),
        "tier": row.get("processing_tier"),
        "created_at": created.isoformat() if isinstance(created, datetime) else created,
    }


class DigestBuilder:
    def __init__(self, policy: KeywordPolicy = DEFAULT_WEEKLY_POLICY, timezone: tzinfo = UTC):
        self.policy = policy
        self.timezone = timezone

    def window_key(self, window_type: WindowType, moment: datetime) -> date:
        return window_key(window_type, moment, self.timezone)

    def window_range(self, window_type: WindowType, key: date) -> tuple[datetime, datetime]:
        return window_range(window_type, key, self.timezone)

    def build_daily(
        self,
        user_id: str,
        window_type: WindowType,
        key: date,
        rows: Iterable[Mapping[str, Any]],
        generated_at: datetime,
    ) -> Digest:
        """Group scored items into now/next/later buckets with a summary."""
        buckets: dict[str, list[dict[str, Any]]] = {c.value: [] for c in Category}
        by_source: Counter[str] = Counter()

        for row in rows:
            category = row.get("category")
            if not category and row.get("processing_tier"):
                category = TierClassifier.category_for(Tier(row["processing_tier"])).value
            buckets[category or Category.LATER.value].append(_reference(row))
            by_source[row["source"]] += 1

        summary = {
            "total": sum(len(refs) for refs in buckets.values()),
            "high_priority": len(buckets[Category.NOW.value]),
            "by_source": dict(by_source),
        }
        return Digest(
            user_id=user_id,
            window_type=WindowType(window_type),
            window_key=key,
            buckets=buckets,
            summary=summary,
            generated_at=generated_at,
        )

    def build_weekly(
        self,
        user_id: str,
        key: date,
        rows: Iterable[Mapping[str, Any]],
        generated_at: datetime,
    ) -> Digest:
        """Categorize low-tier items with the ordered keyword policy."""
        buckets: dict[str, list[dict[str, Any]]] = {c.value: [] for c in WeeklyCategory}

        for row in rows:
            category = categorize(f"{row.get('title') or ''} {row.get('body') or ''}", self.policy)
            buckets[category.value].append(_reference(row))

        summary = {
            "total": sum(len(refs) for refs in buckets.values()),
            "counts": {name: len(refs) for name, refs in buckets.items()},
            "week_start": key.isoformat(),
        }
        return Digest(
            user_id=user_id,
            window_type=WindowType.WEEKLY,
            window_key=key,
            buckets=buckets,
            summary=summary,
            generated_at=generated_at,
        )
