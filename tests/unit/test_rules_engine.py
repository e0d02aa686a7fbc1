from datetime import UTC, datetime, timedelta

import pytest

from app.features.automation.cache import RuleCache
from app.features.automation.domain import (
    AutomationRule,
    RuleValidationError,
    parse_action,
    parse_trigger,
)
from app.features.automation.engine import RuleOrder, RulesEngine, order_rules
from app.features.automation.service import AutomationService
from app.features.queue.domain import JobType
from app.features.scoring.domain import Score
from app.models.domain.item_domain import Category, Item, Source, Tier

from tests.conftest import FakeJobRepository, FakeRedis

T0 = datetime(2024, 1, 1, tzinfo=UTC)


def _rule(rule_id, priority=100, created_offset=0, **kwargs):
    defaults = {
        "id": rule_id,
        "user_id": "user-123",
        "name": f"rule {rule_id}",
        "trigger_type": "new_item",
        "action_type": "label",
        "action_config": {"label": "triaged"},
        "priority": priority,
        "created_at": T0 + timedelta(minutes=created_offset),
    }
    defaults.update(kwargs)
    return AutomationRule(**defaults)


def _item(**kwargs):
    defaults = {
        "id": "item-1",
        "user_id": "user-123",
        "source": Source.MAIL,
        "external_id": "ext-1",
        "title": "Invoice for March",
        "body": "Please find attached",
        "sender": "billing@vendor.io",
        "received_at": datetime(2024, 6, 3, 9, 30, tzinfo=UTC),
    }
    defaults.update(kwargs)
    return Item(**defaults)


def _score(final=55, tier=Tier.MEDIUM):
    return Score(
        user_id="user-123",
        item_id="item-1",
        raw_score=final,
        final_score=final,
        tier=tier,
        category=Category.NEXT,
        factors={"base": final},
    )


def test_ascending_priority_with_creation_tie_break():
    rules = [
        _rule("a", priority=10, created_offset=0),
        _rule("b", priority=5, created_offset=2),
        _rule("c", priority=5, created_offset=1),
    ]

    selected = RulesEngine().evaluate(_item(), _score(), rules)

    assert [s.rule_id for s in selected] == ["c", "b", "a"]


def test_descending_flips_priority_but_not_tie_break():
    rules = [
        _rule("a", priority=10),
        _rule("b", priority=5, created_offset=2),
        _rule("c", priority=5, created_offset=1),
    ]

    ordered = order_rules(rules, RuleOrder.DESCENDING)

    assert [r.id for r in ordered] == ["a", "c", "b"]


def test_same_priority_and_creation_falls_back_to_id():
    rules = [_rule("z"), _rule("m"), _rule("d")]

    assert [r.id for r in order_rules(rules)] == ["d", "m", "z"]


def test_disabled_and_malformed_rules_are_skipped():
    rules = [
        _rule("ok"),
        _rule("off", enabled=False),
        _rule("bad-action", action_type="label", action_config={}),
        _rule("bad-trigger", trigger_type="score_threshold", trigger_config={"threshold": 500}),
    ]

    selected = RulesEngine().evaluate(_item(), _score(), rules)

    assert [s.rule_id for s in selected] == ["ok"]


def test_every_matching_rule_fires():
    rules = [
        _rule("label", created_offset=0),
        _rule("archive", created_offset=1, action_type="archive", action_config={}),
        _rule("boost", created_offset=2, action_type="boost_score", action_config={"amount": 10}),
    ]

    selected = RulesEngine().evaluate(_item(), _score(), rules)

    assert [s.rule_id for s in selected] == ["label", "archive", "boost"]
    assert selected[2].action.amount == 10
    assert selected[0].dedupe_key == "rule_action:label:item-1"


@pytest.mark.parametrize(
    "config,matched",
    [
        ({"threshold": 50}, True),
        ({"threshold": 55, "operator": "greater_than"}, False),
        ({"threshold": 60, "operator": "less_than"}, True),
        ({"threshold": 55, "operator": "equals"}, True),
        ({"threshold": 10, "tier": "high"}, False),
    ],
)
def test_score_threshold_trigger(config, matched):
    rule = _rule("r", trigger_type="score_threshold", trigger_config=config)

    assert bool(RulesEngine().evaluate(_item(), _score(), [rule])) is matched


@pytest.mark.parametrize(
    "config,matched",
    [
        ({"value": "billing@vendor.io"}, True),
        ({"value": "BILLING@VENDOR.IO"}, True),
        ({"value": "vendor", "operator": "contains"}, True),
        ({"value": "@vendor.io", "operator": "domain"}, True),
        ({"value": "other.com", "operator": "domain"}, False),
        ({"value": r"^billing@", "operator": "regex"}, True),
    ],
)
def test_sender_match_trigger(config, matched):
    rule = _rule("r", trigger_type="sender_match", trigger_config=config)

    assert bool(RulesEngine().evaluate(_item(), _score(), [rule])) is matched


def test_new_item_trigger_filters():
    engine = RulesEngine()
    by_subject = _rule("s", trigger_config={"subject_contains": "invoice"})
    by_source = _rule("c", trigger_config={"source": "chat"})

    selected = engine.evaluate(_item(), _score(), [by_subject, by_source])

    assert [s.rule_id for s in selected] == ["s"]


def test_schedule_trigger_uses_received_time():
    engine = RulesEngine()
    monday_morning = _rule(
        "m", trigger_type="schedule", trigger_config={"weekdays": [0], "start_hour": 9, "end_hour": 12}
    )
    weekend = _rule("w", trigger_type="schedule", trigger_config={"weekdays": [5, 6]})

    selected = engine.evaluate(_item(), _score(), [monday_morning, weekend])

    assert [s.rule_id for s in selected] == ["m"]


def test_invalid_configs_raise_validation_error():
    with pytest.raises(RuleValidationError):
        parse_trigger("sender_match", {"value": "(", "operator": "regex"})
    with pytest.raises(RuleValidationError):
        parse_trigger("schedule", {"start_hour": 10, "end_hour": 9})
    with pytest.raises(RuleValidationError):
        parse_action("forward", {"to": "not-an-address"})
    with pytest.raises(RuleValidationError):
        parse_action("boost_score", {"amount": 101})


class _StaticRules:
    def __init__(self, rules):
        self.rules = rules
        self.list_calls = 0

    async def list_rules(self, user_id, *, enabled_only=False):
        self.list_calls += 1
        return [r for r in self.rules if r.enabled or not enabled_only]


@pytest.mark.asyncio
async def test_evaluate_and_enqueue_dedupes_per_rule_and_item():
    jobs = FakeJobRepository()
    repository = _StaticRules([_rule("r1"), _rule("r2", priority=1)])
    service = AutomationService(
        repository=repository, cache=RuleCache(client=FakeRedis()), engine=RulesEngine(), jobs=jobs
    )

    first = await service.evaluate_and_enqueue(_item(), _score())
    second = await service.evaluate_and_enqueue(_item(), _score())

    assert [job.payload["rule_id"] for job in first] == ["r2", "r1"]
    assert all(job.type == JobType.RULE_ACTION for job in first)
    assert second == []
    assert len(jobs.jobs) == 2
    assert repository.list_calls == 1
