"""
Route tests for the learning, digest and pipeline endpoints.
"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from app.features.digest.api.router import get_digest_service
from app.features.digest.builder import DigestBuilder
from app.features.digest.service import DigestService
from app.features.ingestion.api.router import get_ingestion_service, get_scoring_service
from app.features.learning.api.router import get_learning_service
from app.features.learning.service import LearningService
from app.main import app
from app.models.domain.item_domain import Item, Source, item_id_for

from tests.conftest import (
    FakeDigestRepository,
    FakeItemRepository,
    FakeLearningRepository,
    FakeScoreRepository,
)

client = TestClient(app)

NOW = datetime(2024, 6, 5, 9, 0, tzinfo=UTC)
ITEM_ID = item_id_for("user-123", "mail", "ext-1")


@pytest.fixture
def authed(apply_auth_override):
    apply_auth_override(app)
    yield
    app.dependency_overrides.clear()


@pytest.fixture
def learning(authed):
    items = FakeItemRepository()
    items.items[ITEM_ID] = Item(
        id=ITEM_ID, user_id="user-123", source=Source.MAIL, external_id="ext-1", title="Hi"
    )
    repo = FakeLearningRepository()
    service = LearningService(
        repository=repo, items=items, scores=FakeScoreRepository(), clock=lambda: NOW
    )
    app.dependency_overrides[get_learning_service] = lambda: service
    return repo


@pytest.fixture
def digests(authed):
    items = FakeItemRepository()
    items.scored_rows = [
        {
            "id": ITEM_ID,
            "source": "mail",
            "external_id": "ext-1",
            "title": "Board meeting",
            "body": "",
            "category": "now",
            "processing_tier": "high",
            "final_score": 88,
            "created_at": NOW,
        }
    ]
    service = DigestService(
        builder=DigestBuilder(), repository=FakeDigestRepository(), items=items, clock=lambda: NOW
    )
    app.dependency_overrides[get_digest_service] = lambda: service
    return service


def test_track_action(learning):
    response = client.post("/actions", json={"item_id": ITEM_ID, "action": "star"})

    assert response.status_code == 201
    data = response.json()
    assert data["action"] == "star"
    assert data["subject"] == "Hi"
    assert learning.version["user-123"] == 1


def test_track_action_for_unknown_item(learning):
    response = client.post(
        "/actions", json={"item_id": "3f2b1f8e-6a61-4c61-9a8e-0f4b5b0c2d11", "action": "star"}
    )

    assert response.status_code == 404


def test_track_action_rejects_unknown_action(learning):
    response = client.post("/actions", json={"item_id": ITEM_ID, "action": "teleport"})

    assert response.status_code == 422


def test_list_actions_and_stats(learning):
    client.post("/actions", json={"item_id": ITEM_ID, "action": "archive"})
    client.post("/actions", json={"item_id": ITEM_ID, "action": "read"})

    listed = client.get("/actions", params={"action": "archive"})
    stats = client.get("/learning/stats")
    reprocessed = client.post("/learning/reprocess", json={"limit": 10})

    assert listed.json()["total_count"] == 1
    assert stats.json()["total_actions"] == 2
    assert reprocessed.json()["applied"] == 2


def test_build_digest_twice(digests):
    first = client.post("/digests/morning/build")
    second = client.post("/digests/morning/build")

    assert first.status_code == 200
    assert first.json()["generated"] is True
    assert first.json()["digest"]["summary"]["high_priority"] == 1
    assert second.json()["generated"] is False


def test_unknown_window_type(digests):
    response = client.post("/digests/midnight/build")

    assert response.status_code == 422


def test_weekly_endpoints_without_digest(digests):
    current = client.get("/digests/weekly/current")
    action = client.post("/digests/weekly/actions", json={"category": "marketing", "action": "archive"})

    assert current.status_code == 404
    assert action.status_code == 404


def test_update_preferences(digests):
    response = client.put("/digests/preferences", json={"enabled": False, "include_sources": ["chat"]})

    assert response.status_code == 200
    assert response.json()["enabled"] is False
    assert response.json()["include_sources"] == ["chat"]


def test_ingest_pass(authed):
    service = AsyncMock()
    service.run_pass.return_value = {
        "user_id": "user-123",
        "processed": 2,
        "tiers": {"high": 1, "medium": 0, "low": 1},
        "skipped": 0,
        "failed": 0,
        "adapter_failures": 0,
        "jobs_enqueued": 1,
    }
    app.dependency_overrides[get_ingestion_service] = lambda: service

    response = client.post("/pipeline/ingest")

    assert response.status_code == 200
    assert response.json()["tiers"]["high"] == 1
    service.run_pass.assert_awaited_once_with("user-123", sources=None, window_minutes=None)


def test_tier_summary(authed):
    service = AsyncMock()
    service.tier_summary.return_value = {
        "user_id": "user-123",
        "tiers": {
            "high": {
                "total": 2,
                "enriched": 1,
                "average_score": 85.5,
                "score_range": [80, 100],
                "enrichment_eligible": True,
            }
        },
        "total": 2,
        "enrichment_candidates": 2,
    }
    app.dependency_overrides[get_scoring_service] = lambda: service

    response = client.get("/pipeline/tiers/summary")

    assert response.status_code == 200
    assert response.json()["tiers"]["high"]["score_range"] == [80, 100]
