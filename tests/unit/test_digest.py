from datetime import UTC, date, datetime

import pytest

from app.features.digest.builder import DigestBuilder, categorize, window_key, window_range
from app.features.digest.domain import (
    DigestNotFoundError,
    DigestPreferences,
    WeeklyAction,
    WeeklyCategory,
    WindowType,
)
from app.features.digest.service import DigestService
from app.features.queue.domain import Job, JobType
from app.jobs.digest_scheduler import DigestScheduler, digest_dedupe_key
from app.jobs.handlers import DigestJobHandler
from app.models.domain.item_domain import Item, Source

from tests.conftest import FakeDigestRepository, FakeItemRepository, FakeJobRepository

# Wednesday
NOW = datetime(2024, 6, 5, 9, 15, tzinfo=UTC)


def _row(n, tier="low", title="", body="", source="mail", category=None, score=20):
    return {
        "id": f"item-{n}",
        "source": source,
        "external_id": f"ext-{n}",
        "title": title,
        "body": body,
        "sender": "someone@example.com",
        "category": category,
        "processing_tier": tier,
        "final_score": score,
        "created_at": NOW,
    }


def _service(digests, items, now=NOW):
    return DigestService(builder=DigestBuilder(), repository=digests, items=items, clock=lambda: now)


@pytest.mark.parametrize(
    "text,category",
    [
        ("Big SALE ends tonight, unsubscribe here", WeeklyCategory.MARKETING),
        ("Weekly newsletter", WeeklyCategory.NEWSLETTERS),
        ("Sam liked your post", WeeklyCategory.SOCIAL),
        ("Your receipt", WeeklyCategory.AUTOMATED),
        ("Newsletter special offer", WeeklyCategory.MARKETING),
        ("hello there", WeeklyCategory.AUTOMATED),
        ("Wholesale dealer newsletter", WeeklyCategory.NEWSLETTERS),
        ("Three new deals inside", WeeklyCategory.MARKETING),
        ("Priya followed you", WeeklyCategory.SOCIAL),
    ],
)
def test_categorize_first_match_wins(text, category):
    assert categorize(text) == category


def test_window_keys():
    assert window_key(WindowType.MORNING, NOW) == date(2024, 6, 5)
    assert window_key(WindowType.WEEKLY, NOW) == date(2024, 6, 3)

    start, end = window_range(WindowType.WEEKLY, date(2024, 6, 3))
    assert start == datetime(2024, 6, 3, tzinfo=UTC)
    assert end == datetime(2024, 6, 10, tzinfo=UTC)


def test_build_daily_groups_by_category_and_tier():
    rows = [
        _row(1, tier="high", category="now", score=90),
        _row(2, tier="medium", score=50),
        _row(3, tier="low", source="chat"),
    ]

    digest = DigestBuilder().build_daily("user-123", WindowType.MORNING, NOW.date(), rows, NOW)

    assert [ref["item_id"] for ref in digest.buckets["now"]] == ["item-1"]
    assert [ref["item_id"] for ref in digest.buckets["next"]] == ["item-2"]
    assert [ref["item_id"] for ref in digest.buckets["later"]] == ["item-3"]
    assert digest.summary == {"total": 3, "high_priority": 1, "by_source": {"mail": 2, "chat": 1}}


def test_build_weekly_counts_buckets():
    rows = [
        _row(1, title="Flash sale", body="unsubscribe"),
        _row(2, title="Monthly newsletter"),
        _row(3, title="Server alert"),
    ]

    digest = DigestBuilder().build_weekly("user-123", date(2024, 6, 3), rows, NOW)

    assert digest.summary["counts"] == {"marketing": 1, "newsletters": 1, "social": 0, "automated": 1}
    assert digest.references("marketing") == [("mail", "ext-1")]


@pytest.mark.asyncio
async def test_build_is_idempotent_per_window():
    digests, items = FakeDigestRepository(), FakeItemRepository()
    items.scored_rows = [_row(1, tier="high", category="now")]
    service = _service(digests, items)

    first = await service.build("user-123", WindowType.MORNING)
    second = await service.build("user-123", WindowType.MORNING)
    forced = await service.build("user-123", WindowType.MORNING, force=True)

    assert first.generated is True
    assert second.generated is False
    assert second.digest.id == first.digest.id
    assert forced.generated is True
    assert forced.digest.id == first.digest.id
    assert digests.upserts == 2


@pytest.mark.asyncio
async def test_daily_build_respects_source_preferences():
    digests, items = FakeDigestRepository(), FakeItemRepository()
    digests.preferences["user-123"] = DigestPreferences("user-123", include_sources=["chat"])
    items.scored_rows = [_row(1), _row(2, source="chat")]
    service = _service(digests, items)

    result = await service.build("user-123", WindowType.EVENING)

    assert result.digest.summary["by_source"] == {"chat": 1}


@pytest.mark.asyncio
async def test_should_generate():
    digests, items = FakeDigestRepository(), FakeItemRepository()
    service = _service(digests, items)

    assert await service.should_generate("user-123", WindowType.MORNING) is True
    await service.build("user-123", WindowType.MORNING)
    assert await service.should_generate("user-123", WindowType.MORNING) is False
    assert await service.should_generate("user-123", WindowType.MANUAL) is True

    digests.preferences["user-123"] = DigestPreferences("user-123", enabled=False)
    assert await service.should_generate("user-123", WindowType.AFTERNOON) is False


@pytest.mark.asyncio
async def test_weekly_action_resolves_current_item_state():
    digests, items = FakeDigestRepository(), FakeItemRepository()
    items.scored_rows = [
        _row(1, title="Sale today"),
        _row(2, title="50% off deal"),
        _row(3, title="Limited offer"),
    ]
    for n, archived in ((1, False), (2, True)):
        items.items[f"item-{n}"] = Item(
            id=f"item-{n}",
            user_id="user-123",
            source=Source.MAIL,
            external_id=f"ext-{n}",
            is_archived=archived,
        )
    service = _service(digests, items)
    await service.build("user-123", WindowType.WEEKLY)

    result = await service.apply_weekly_action(
        "user-123", WeeklyCategory.MARKETING, WeeklyAction.ARCHIVE
    )

    assert result["requested"] == 3
    assert result["updated"] == 1
    assert result["skipped"] == 2
    assert result["week_start"] == "2024-06-03"
    assert items.items["item-1"].is_archived is True


@pytest.mark.asyncio
async def test_weekly_action_without_digest_raises():
    service = _service(FakeDigestRepository(), FakeItemRepository())

    with pytest.raises(DigestNotFoundError):
        await service.apply_weekly_action("user-123", "marketing", "archive")


@pytest.mark.asyncio
async def test_update_preferences_dedupes_sources():
    digests = FakeDigestRepository()
    service = _service(digests, FakeItemRepository())

    prefs = await service.update_preferences("user-123", enabled=False, include_sources=["mail", "mail"])

    assert prefs.enabled is False
    assert prefs.include_sources == ["mail"]


def test_due_windows():
    scheduler = DigestScheduler(digests=_service(FakeDigestRepository(), FakeItemRepository()))

    assert scheduler.due_windows(datetime(2024, 6, 5, 7, 0, tzinfo=UTC)) == []
    assert scheduler.due_windows(datetime(2024, 6, 5, 14, 0, tzinfo=UTC)) == [
        WindowType.MORNING,
        WindowType.AFTERNOON,
    ]
    # Sunday evening adds the weekly window
    assert WindowType.WEEKLY in scheduler.due_windows(datetime(2024, 6, 9, 19, 0, tzinfo=UTC))


@pytest.mark.asyncio
async def test_scheduler_queues_each_window_once():
    digests, items, jobs = FakeDigestRepository(), FakeItemRepository(), FakeJobRepository()
    items.items["item-1"] = Item(id="item-1", user_id="user-123", source=Source.MAIL, external_id="ext-1")
    now = datetime(2024, 6, 5, 14, 0, tzinfo=UTC)
    scheduler = DigestScheduler(
        digests=_service(digests, items, now), items=items, jobs=jobs, clock=lambda: now
    )

    first = await scheduler.run_once()
    second = await scheduler.run_once()

    assert first["jobs_queued"] == 2
    assert second["jobs_queued"] == 0
    keys = sorted(job.dedupe_key for job in jobs.jobs.values())
    assert keys == [
        digest_dedupe_key("user-123", WindowType.AFTERNOON, "2024-06-05"),
        digest_dedupe_key("user-123", WindowType.MORNING, "2024-06-05"),
    ]


@pytest.mark.asyncio
async def test_digest_job_builds_pinned_window():
    digests, items = FakeDigestRepository(), FakeItemRepository()
    later = datetime(2024, 6, 7, 9, 0, tzinfo=UTC)
    handler = DigestJobHandler(digests=_service(digests, items, later))
    job = Job(
        id="job-1",
        type=JobType.DIGEST,
        user_id="user-123",
        payload={"window_type": "morning", "as_of": NOW.isoformat()},
    )

    result = await handler.run(job)

    assert result == {"window_type": "morning", "window_key": "2024-06-05", "generated": True}
