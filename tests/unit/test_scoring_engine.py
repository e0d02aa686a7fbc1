from datetime import UTC, datetime, timedelta

import pytest

from app.features.learning import feedback as learning
from app.features.learning.domain import Feedback
from app.features.scoring.domain import Score, ScoringContext, SenderProfile
from app.features.scoring.engine import BASE_SCORE, ScoringEngine
from app.features.scoring.service import ScoringService
from app.features.scoring.tiers import TierThresholds
from app.models.domain.item_domain import Category, Item, Source, Tier

from tests.conftest import FakeContextRepository, FakeScoreRepository

NOW = datetime(2024, 6, 3, 12, 0, tzinfo=UTC)


def _engine():
    return ScoringEngine(TierThresholds(high=70, medium=40))


def _context(**kwargs):
    return ScoringContext(user_id="user-123", reference_time=NOW, **kwargs)


def _item(**kwargs):
    defaults = {
        "id": "item-1",
        "user_id": "user-123",
        "source": Source.MAIL,
        "external_id": "ext-1",
        "title": "Quarterly planning",
        "body": "Notes attached",
        "sender": "boss@corp.com",
        "is_unread": False,
    }
    defaults.update(kwargs)
    return Item(**defaults)


def test_same_inputs_give_same_score():
    engine = _engine()
    item = _item(is_important=True, received_at=NOW - timedelta(hours=1))
    context = _context(pattern_weights={"important": 1.4})

    first = engine.score(item, context, {"rule-1": 5})
    second = engine.score(item, context, {"rule-1": 5})

    assert first == second


def test_flags_add_up_and_vip_boost_clamps_to_max():
    engine = _engine()
    item = _item(is_important=True, is_starred=True, is_unread=True)
    context = _context(senders={"boss@corp.com": SenderProfile(score_boost=30)})

    score = engine.score(item, context)

    assert score.raw_score == 75
    assert score.factors["vip_boost"] == 30
    assert score.final_score == 100
    assert score.tier == Tier.HIGH
    assert score.category == Category.NOW


def test_rescore_applies_vip_and_rule_boosts_to_raw_score():
    engine = _engine()
    stored = Score(
        user_id="user-123",
        item_id="item-1",
        raw_score=72,
        final_score=72,
        tier=Tier.HIGH,
        category=Category.NOW,
        factors={"base": 72, "vip_boost": 30.0},
    )

    updated = engine.rescore(stored, {"rule-1": 10})

    assert updated.final_score == 100
    assert updated.tier == Tier.HIGH
    assert updated.factors["rule_boost"] == 10


def test_rescore_drops_removed_rule_boost():
    engine = _engine()
    stored = Score(
        user_id="user-123",
        item_id="item-1",
        raw_score=45,
        final_score=60,
        tier=Tier.MEDIUM,
        category=Category.NEXT,
        factors={"base": 45, "rule_boost": 15.0},
    )

    updated = engine.rescore(stored, {})

    assert "rule_boost" not in updated.factors
    assert updated.final_score == 45


def test_marketing_content_is_penalized():
    engine = _engine()
    item = _item(title="Flash sale: 50% off", body="Click to unsubscribe")

    score = engine.score(item, _context())

    assert score.factors["marketing"] == -30
    assert score.final_score == 0
    assert score.tier == Tier.LOW


def test_urgent_subject_and_recency():
    engine = _engine()
    item = _item(title="URGENT: contract deadline", received_at=NOW - timedelta(minutes=30))

    score = engine.score(item, _context())

    assert score.factors["urgent"] == 25
    assert score.factors["recent"] == 15
    assert score.final_score == 70
    assert score.tier == Tier.HIGH


def test_stale_items_lose_points():
    engine = _engine()
    item = _item(received_at=NOW - timedelta(days=3))

    score = engine.score(item, _context())

    assert score.factors["stale"] == -10
    assert score.final_score == 20


def test_pattern_weights_scale_factors():
    engine = _engine()
    item = _item(is_important=True)

    score = engine.score(item, _context(pattern_weights={"important": 0.5}))

    assert score.factors["important"] == 10
    assert score.final_score == 40
    assert score.tier == Tier.MEDIUM


def test_sender_reputation_uses_confidence():
    engine = _engine()
    profile = SenderProfile(vip_score=1.0, confidence=0.5)

    score = engine.score(_item(), _context(senders={"boss@corp.com": profile}))

    assert score.factors["sender_reputation"] == pytest.approx(5.0)


def test_unreadable_item_gets_neutral_degraded_score():
    engine = _engine()
    item = _item(title=None)

    score = engine.score(item, _context(), {"rule-1": 20})

    assert score.degraded is True
    assert score.raw_score == BASE_SCORE
    assert score.final_score == 50
    assert score.tier == Tier.MEDIUM


def test_detect_patterns():
    engine = _engine()
    item = _item(title="Newsletter: urgent update", is_starred=True)

    assert engine.detect_patterns(item) == ["marketing", "urgent", "starred"]


@pytest.mark.asyncio
async def test_score_item_persists_with_recorded_boosts():
    scores = FakeScoreRepository()
    scores.boosts[("user-123", "item-1")] = {"rule-1": 20}
    service = ScoringService(engine=_engine(), scores=scores, contexts=FakeContextRepository())

    score = await service.score_item(_item())

    assert score.final_score == 50
    assert scores.scores[("user-123", "item-1")] == score


@pytest.mark.asyncio
async def test_apply_rule_boost_recomputes_stored_score():
    scores = FakeScoreRepository()
    service = ScoringService(engine=_engine(), scores=scores, contexts=FakeContextRepository())
    await service.score_item(_item())

    updated = await service.apply_rule_boost("user-123", "item-1", "rule-1", 45)

    assert updated.final_score == 75
    assert updated.tier == Tier.HIGH
    assert scores.scores[("user-123", "item-1")].final_score == 75


@pytest.mark.asyncio
async def test_apply_rule_boost_to_unscored_item_returns_none():
    scores = FakeScoreRepository()
    service = ScoringService(engine=_engine(), scores=scores, contexts=FakeContextRepository())

    assert await service.apply_rule_boost("user-123", "missing", "rule-1", 10) is None
    assert scores.boosts[("user-123", "missing")] == {"rule-1": 10}


def _learned_marketing_weight(feedback, item_score, rounds=20):
    weight = 1.0
    for _ in range(rounds):
        weight = learning.next_pattern_weight(weight, learning.pattern_adjustment(feedback, item_score))
    return weight


def test_archiving_marketing_mail_lowers_its_score():
    engine = _engine()
    item = _item(title="Flash sale: 50% off", body="Click to unsubscribe", is_important=True)
    weight = _learned_marketing_weight(Feedback.NEGATIVE, item_score=20)

    baseline = engine.score(item, _context())
    learned = engine.score(item, _context(pattern_weights={"marketing": weight}))

    assert weight == pytest.approx(0.1)
    assert baseline.final_score == 20
    assert learned.factors["marketing"] == pytest.approx(-57)
    assert learned.final_score < baseline.final_score


def test_starring_marketing_mail_softens_the_penalty():
    engine = _engine()
    item = _item(title="Flash sale: 50% off", body="Click to unsubscribe", is_important=True)
    weight = _learned_marketing_weight(Feedback.POSITIVE, item_score=100)

    learned = engine.score(item, _context(pattern_weights={"marketing": weight}))

    assert weight == pytest.approx(2.0)
    assert learned.factors["marketing"] == pytest.approx(0)
    assert learned.final_score == 50


def test_stale_penalty_follows_the_learned_weight():
    engine = _engine()
    item = _item(is_important=True, received_at=NOW - timedelta(days=3))

    score = engine.score(item, _context(pattern_weights={"stale": 0.5}))

    assert score.factors["stale"] == pytest.approx(-15)
    assert score.final_score == 35
