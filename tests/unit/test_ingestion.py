import pytest

from app.features.automation.cache import RuleCache
from app.features.automation.engine import RulesEngine
from app.features.automation.service import AutomationService
from app.features.ingestion.adapters import SourceAdapterRegistry
from app.features.ingestion.service import IngestionError, IngestionService, enrich_dedupe_key
from app.features.queue.domain import JobType
from app.features.scoring.engine import ScoringEngine
from app.features.scoring.service import ScoringService
from app.features.scoring.tiers import TierThresholds
from app.models.domain.item_domain import RawItem, Source, item_id_for

from tests.conftest import (
    FakeContextRepository,
    FakeItemRepository,
    FakeJobRepository,
    FakeRedis,
    FakeScoreRepository,
)


class StaticAdapter:
    def __init__(self, source, items=None, error=None):
        self.source = source
        self.items = items or []
        self.error = error

    async def fetch_recent(self, user_id, window_minutes):
        if self.error:
            raise self.error
        return list(self.items)


class NoRules:
    async def list_rules(self, user_id, *, enabled_only=False):
        return []


RAW_ITEMS = [
    RawItem(
        source=Source.MAIL,
        external_id="hi",
        title="URGENT: sign contract",
        is_important=True,
        is_starred=True,
        sender="Boss@Corp.com",
    ),
    RawItem(source=Source.MAIL, external_id="mid", title="Lunch?", is_important=True),
    RawItem(source=Source.MAIL, external_id="lo", title="Big sale, 50% off"),
]


def _service(adapters, items=None, jobs=None):
    items = items or FakeItemRepository()
    jobs = jobs or FakeJobRepository()
    scoring = ScoringService(
        engine=ScoringEngine(TierThresholds(high=70, medium=40)),
        scores=FakeScoreRepository(),
        contexts=FakeContextRepository(),
    )
    automation = AutomationService(
        repository=NoRules(), cache=RuleCache(client=FakeRedis()), engine=RulesEngine(), jobs=jobs
    )
    return IngestionService(
        adapters=adapters, items=items, scoring=scoring, automation=automation, jobs=jobs
    )


def _registry(*adapters):
    registry = SourceAdapterRegistry()
    for adapter in adapters:
        registry.register(adapter)
    return registry


@pytest.mark.asyncio
async def test_pass_counts_items_per_tier():
    jobs = FakeJobRepository()
    service = _service(_registry(StaticAdapter(Source.MAIL, RAW_ITEMS)), jobs=jobs)

    result = await service.run_pass("user-123")

    assert result["processed"] == 3
    assert result["tiers"] == {"high": 1, "medium": 1, "low": 1}
    assert result["jobs_enqueued"] == 2
    enrich = [job for job in jobs.jobs.values() if job.type == JobType.ENRICH]
    assert sorted(job.priority for job in enrich) == [5, 7]


@pytest.mark.asyncio
async def test_repeated_passes_keep_one_item_per_source_id():
    items, jobs = FakeItemRepository(), FakeJobRepository()
    service = _service(_registry(StaticAdapter(Source.MAIL, RAW_ITEMS)), items=items, jobs=jobs)

    await service.run_pass("user-123")
    second = await service.run_pass("user-123")

    assert len(items.items) == 3
    assert items.upsert_calls == 6
    assert second["jobs_enqueued"] == 0
    assert len(jobs.jobs) == 2
    high_id = item_id_for("user-123", "mail", "hi")
    assert items.items[high_id].sender == "boss@corp.com"
    assert any(job.dedupe_key == enrich_dedupe_key("user-123", high_id) for job in jobs.jobs.values())


@pytest.mark.asyncio
async def test_rule_labels_survive_reingestion():
    items = FakeItemRepository()
    raw = [RawItem(source=Source.MAIL, external_id="lbl", title="Invoice", labels=["inbox"])]
    service = _service(_registry(StaticAdapter(Source.MAIL, raw)), items=items)
    item_id = item_id_for("user-123", "mail", "lbl")

    await service.run_pass("user-123")
    await items.add_label("user-123", item_id, "finance")
    await service.run_pass("user-123")

    assert items.items[item_id].labels == ["inbox", "finance"]


@pytest.mark.asyncio
async def test_failures_are_isolated_per_item_and_adapter():
    items = FakeItemRepository()
    items.fail_ids.add(item_id_for("user-123", "mail", "broken"))
    raw = RAW_ITEMS + [
        RawItem(source="fax", external_id="weird"),
        RawItem(source=Source.MAIL, external_id="broken", title="Hello"),
    ]
    registry = _registry(
        StaticAdapter(Source.MAIL, raw),
        StaticAdapter(Source.CHAT, error=ConnectionError("chat down")),
    )
    service = _service(registry, items=items)

    result = await service.run_pass("user-123")

    assert result["processed"] == 3
    assert result["skipped"] == 1
    assert result["failed"] == 1
    assert result["adapter_failures"] == 1


@pytest.mark.asyncio
async def test_pass_limited_to_requested_sources():
    registry = _registry(
        StaticAdapter(Source.MAIL, RAW_ITEMS),
        StaticAdapter(Source.CHAT, [RawItem(source=Source.CHAT, external_id="c1", title="hey")]),
    )
    service = _service(registry)

    result = await service.run_pass("user-123", sources=[Source.CHAT])

    assert result["processed"] == 1


@pytest.mark.asyncio
async def test_process_stored_item_rescores_without_upsert():
    items = FakeItemRepository()
    service = _service(_registry(StaticAdapter(Source.MAIL, RAW_ITEMS)), items=items)
    await service.run_pass("user-123")

    score = await service.process_stored_item("user-123", item_id_for("user-123", "mail", "mid"))

    assert score.final_score == 60
    assert items.upsert_calls == 3

    with pytest.raises(IngestionError):
        await service.process_stored_item("user-123", "missing")


def test_registry_rejects_objects_without_fetch():
    registry = SourceAdapterRegistry()

    with pytest.raises(TypeError):
        registry.register(object())

    registry.register(StaticAdapter(Source.MAIL))
    registry.unregister(Source.MAIL)
    assert len(registry) == 0
