"""
Digest service - window idempotency, building and weekly bulk actions.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import Any
from zoneinfo import ZoneInfo

from app.config import settings
from app.features.digest.builder import DigestBuilder
from app.features.digest.domain import (
    Digest,
    DigestNotFoundError,
    DigestPreferences,
    WeeklyAction,
    WeeklyCategory,
    WindowType,
)
from app.features.digest.repository import DigestRepository
from app.infrastructure.observability.logging import get_logger
from app.models.domain.item_domain import Tier
from app.repositories.item_repository import ItemRepository

logger = get_logger(__name__)


@dataclass(slots=True)
class DigestBuildResult:
    digest: Digest
    generated: bool


class DigestService:
    def __init__(
        self,
        builder: DigestBuilder | None = None,
        repository=DigestRepository,
        items=ItemRepository,
        clock: Callable[[], datetime] = lambda: datetime.now(UTC),
    ):
        self.builder = builder or DigestBuilder(timezone=ZoneInfo(settings.DIGEST_TIMEZONE))
        self.repository = repository
        self.items = items
        self.clock = clock

    async def should_generate(
        self, user_id: str, window_type: WindowType, now: datetime | None = None
    ) -> bool:
        """
        True when a scheduled window still needs a digest.

        Manual digests are always allowed. Scheduled windows are skipped
        when the user disabled digests or the window key already has one.
        """
        window_type = WindowType(window_type)
        if window_type == WindowType.MANUAL:
            return True

        preferences = await self.repository.get_preferences(user_id)
        if not preferences.enabled:
            return False

        key = self.builder.window_key(window_type, now or self.clock())
        return await self.repository.get_digest(user_id, window_type, key) is None

    async def build(
        self,
        user_id: str,
        window_type: WindowType,
        *,
        force: bool = False,
        now: datetime | None = None,
    ) -> DigestBuildResult:
        """
        Build the digest for the window containing `now`.

        An existing digest for the same key is returned untouched unless
        force is set or the window is manual; otherwise the stored row is
        overwritten in place.
        """
        window_type = WindowType(window_type)
        now = now or self.clock()
        key = self.builder.window_key(window_type, now)

        if not force and window_type != WindowType.MANUAL:
            existing = await self.repository.get_digest(user_id, window_type, key)
            if existing is not None:
                logger.info(
                    "Digest already generated for window",
                    user_id=user_id,
                    window_type=window_type.value,
                    window_key=key.isoformat(),
                )
                return DigestBuildResult(existing, generated=False)

        start, end = self.builder.window_range(window_type, key)
        if window_type == WindowType.WEEKLY:
            rows = await self.items.list_scored_items(user_id, start, end, tiers=[Tier.LOW.value])
            digest = self.builder.build_weekly(user_id, key, rows, now)
        else:
            preferences = await self.repository.get_preferences(user_id)
            rows = await self.items.list_scored_items(
                user_id, start, end, sources=preferences.include_sources
            )
            digest = self.builder.build_daily(user_id, window_type, key, rows, now)

        stored = await self.repository.upsert_digest(digest)
        logger.info(
            "Digest generated",
            user_id=user_id,
            window_type=window_type.value,
            window_key=key.isoformat(),
            item_count=stored.summary.get("total", 0),
        )
        return DigestBuildResult(stored, generated=True)

    async def history(self, user_id: str, limit: int = 10) -> list[Digest]:
        return await self.repository.list_history(user_id, limit)

    async def current_weekly(self, user_id: str, now: datetime | None = None) -> Digest | None:
        key = self.builder.window_key(WindowType.WEEKLY, now or self.clock())
        return await self.repository.get_digest(user_id, WindowType.WEEKLY, key)

    async def apply_weekly_action(
        self,
        user_id: str,
        category: WeeklyCategory,
        action: WeeklyAction,
        week_start: date | None = None,
    ) -> dict[str, Any]:
        """
        Apply a bulk action to every item referenced by one weekly bucket.

        References are resolved against current item state; items that
        no longer exist or already have the target state are skipped.
        """
        category = WeeklyCategory(category)
        action = WeeklyAction(action)

        key = week_start or self.builder.window_key(WindowType.WEEKLY, self.clock())
        digest = await self.repository.get_digest(user_id, WindowType.WEEKLY, key)
        if digest is None:
            raise DigestNotFoundError(f"No weekly digest for week starting {key.isoformat()}")

        references = digest.references(category.value)
        current = await self.items.find_by_external_ids(user_id, references)

        if action == WeeklyAction.KEEP:
            updated = len(current)
        else:
            updated = await self.items.apply_bulk_action(
                user_id, [item.id for item in current], action.value
            )

        result = {
            "week_start": key.isoformat(),
            "category": category.value,
            "action": action.value,
            "requested": len(references),
            "updated": updated,
            "skipped": len(references) - updated,
        }
        logger.info("Weekly digest action applied", user_id=user_id, **result)
        return result

    async def get_preferences(self, user_id: str) -> DigestPreferences:
        return await self.repository.get_preferences(user_id)

    async def update_preferences(
        self, user_id: str, enabled: bool | None = None, include_sources: list[str] | None = None
    ) -> DigestPreferences:
        current = await self.repository.get_preferences(user_id)
        if enabled is not None:
            current.enabled = enabled
        if include_sources is not None:
            current.include_sources = list(dict.fromkeys(include_sources))
        return await self.repository.upsert_preferences(current)


digest_service = DigestService()
