from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import UTC, datetime
import uuid

import pytest

from app.auth.verify import auth_dependency
from app.features.digest.domain import Digest, DigestPreferences
from app.features.learning.domain import UserActionRecord
from app.features.queue.domain import Job, JobStatus, JobType
from app.features.scoring.domain import ScoringContext


@pytest.fixture
def auth_override():
    def _override():
        return {"sub": "user-123"}

    return _override


class FakeRedis:
    def __init__(self):
        self.store: dict[str, str] = {}

    async def set_with_ttl(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        self.store[key] = value
        return True

    async def get(self, key: str) -> str | None:
        return self.store.get(key)

    async def delete(self, key: str) -> bool:
        return self.store.pop(key, None) is not None


class FakeJobRepository:
    """In-memory stand-in for JobRepository with the same compare-and-set semantics."""

    def __init__(self):
        self.jobs: dict[str, Job] = {}

    async def enqueue(
        self,
        job_type,
        user_id,
        payload,
        *,
        max_attempts=3,
        priority=5,
        dedupe_key=None,
        scheduled_at=None,
    ):
        if dedupe_key:
            for job in self.jobs.values():
                if job.dedupe_key == dedupe_key:
                    return replace(job), False
        job = Job(
            id=str(uuid.uuid4()),
            type=JobType(job_type),
            user_id=user_id,
            payload=dict(payload),
            max_attempts=max_attempts,
            priority=priority,
            dedupe_key=dedupe_key,
            scheduled_at=scheduled_at or datetime(2000, 1, 1, tzinfo=UTC),
        )
        self.jobs[job.id] = job
        return replace(job), True

    async def get_job(self, job_id):
        job = self.jobs.get(job_id)
        return replace(job) if job else None

    async def fetch_due(self, limit, now, *, job_ids=None, ignore_schedule=False):
        due = [
            job
            for job in self.jobs.values()
            if job.status == JobStatus.PENDING
            and (ignore_schedule or job.scheduled_at <= now)
            and (job_ids is None or job.id in job_ids)
        ]
        due.sort(key=lambda j: (-j.priority, j.scheduled_at))
        return [replace(job) for job in due[:limit]]

    async def save_transition(self, job, expected_status):
        stored = self.jobs.get(job.id)
        if stored is None or stored.status != expected_status:
            return False
        self.jobs[job.id] = replace(job)
        return True

    async def requeue_orphaned(self):
        count = 0
        for job_id, job in list(self.jobs.items()):
            if job.status == JobStatus.RUNNING:
                self.jobs[job_id] = replace(job, status=JobStatus.PENDING)
                count += 1
        return count

    async def list_failed(self, limit):
        failed = [job for job in self.jobs.values() if job.status == JobStatus.FAILED]
        return [replace(job) for job in failed[:limit]]

    async def count_by_status(self, user_id=None):
        counts = {status.value: 0 for status in JobStatus}
        for job in self.jobs.values():
            if user_id is None or job.user_id == user_id:
                counts[job.status.value] += 1
        return counts

    async def list_jobs(self, user_id, status=None, limit=50):
        jobs = [
            job
            for job in self.jobs.values()
            if job.user_id == user_id and (status is None or job.status == status)
        ]
        return [replace(job) for job in jobs[:limit]]

    async def cleanup_succeeded(self, older_than):
        return 0

    def by_status(self, status):
        return [job for job in self.jobs.values() if job.status == status]


class FakeItemRepository:
    """Items keyed by id; scored rows are set directly by tests."""

    def __init__(self):
        self.items = {}
        self.scored_rows: list[dict] = []
        self.upsert_calls = 0
        self.fail_ids: set[str] = set()
        self.enrichments: dict[str, tuple] = {}

    async def upsert_item(self, item):
        self.upsert_calls += 1
        if item.id in self.fail_ids:
            from app.db.helpers import DatabaseError

            raise DatabaseError("write failed", operation="upsert_item")
        stored = replace(item, created_at=item.created_at or datetime(2024, 1, 1, tzinfo=UTC))
        if item.id in self.items:
            existing = self.items[item.id]
            labels = existing.labels + [label for label in item.labels if label not in existing.labels]
            stored = replace(stored, created_at=existing.created_at, labels=labels)
        self.items[item.id] = stored
        return replace(stored)

    async def get_item(self, user_id, item_id):
        item = self.items.get(item_id)
        return replace(item) if item and item.user_id == user_id else None

    async def list_scored_items(self, user_id, start, end, *, sources=None, tiers=None):
        return [
            row
            for row in self.scored_rows
            if (sources is None or row["source"] in sources)
            and (tiers is None or row["processing_tier"] in tiers)
        ]

    async def find_by_external_ids(self, user_id, refs):
        wanted = set(refs)
        return [
            replace(item)
            for item in self.items.values()
            if item.user_id == user_id and (item.source.value, item.external_id) in wanted
        ]

    async def apply_bulk_action(self, user_id, item_ids, action):
        field_name, value = {
            "archive": ("is_archived", True),
            "mark_read": ("is_unread", False),
        }[action]
        updated = 0
        for item_id in item_ids:
            item = self.items[item_id]
            if getattr(item, field_name) != value:
                self.items[item_id] = replace(item, **{field_name: value})
                updated += 1
        return updated

    async def add_label(self, user_id, item_id, label):
        item = self.items[item_id]
        if label in item.labels:
            return False
        self.items[item_id] = replace(item, labels=[*item.labels, label])
        return True

    async def save_enrichment(self, user_id, item_id, summary, replies):
        self.enrichments[item_id] = (summary, replies)

    async def list_user_ids(self):
        return sorted({item.user_id for item in self.items.values()})


class FakeScoreRepository:
    def __init__(self):
        self.scores = {}
        self.boosts: dict[tuple[str, str], dict[str, float]] = {}

    async def upsert_score(self, score):
        self.scores[(score.user_id, score.item_id)] = score

    async def get_score(self, user_id, item_id):
        return self.scores.get((user_id, item_id))

    async def get_rule_boosts(self, user_id, item_id):
        return dict(self.boosts.get((user_id, item_id), {}))

    async def upsert_rule_adjustment(self, user_id, item_id, rule_id, amount):
        self.boosts.setdefault((user_id, item_id), {})[rule_id] = amount


class FakeContextRepository:
    def __init__(self, senders=None, pattern_weights=None):
        self.senders = senders or {}
        self.pattern_weights = pattern_weights or {}

    async def load_context(self, user_id, reference_time):
        return ScoringContext(
            user_id=user_id,
            reference_time=reference_time,
            senders=self.senders,
            pattern_weights=self.pattern_weights,
        )


class FakeDigestRepository:
    def __init__(self):
        self.digests: dict[tuple, Digest] = {}
        self.preferences: dict[str, DigestPreferences] = {}
        self.upserts = 0

    async def upsert_digest(self, digest):
        self.upserts += 1
        key = (digest.user_id, digest.window_type, digest.window_key)
        existing = self.digests.get(key)
        stored = replace(digest, id=existing.id if existing else str(uuid.uuid4()))
        self.digests[key] = stored
        return stored

    async def get_digest(self, user_id, window_type, key):
        return self.digests.get((user_id, window_type, key))

    async def list_history(self, user_id, limit=10):
        found = [d for d in self.digests.values() if d.user_id == user_id]
        found.sort(key=lambda d: d.generated_at, reverse=True)
        return found[:limit]

    async def get_preferences(self, user_id):
        prefs = self.preferences.get(user_id)
        return replace(prefs) if prefs else DigestPreferences(user_id=user_id)

    async def upsert_preferences(self, preferences):
        self.preferences[preferences.user_id] = replace(preferences)
        return replace(preferences)


class FakeLearningRepository:
    """Mirrors LearningRepository, including the applied-action ledger."""

    def __init__(self):
        self.actions: list[UserActionRecord] = []
        self.applied: set[str] = set()
        self.senders = {}
        self.weights: dict[tuple[str, str], float] = {}
        self.version: dict[str, int] = {}

    @asynccontextmanager
    async def transaction(self):
        yield None

    async def insert_action(self, record):
        stored = replace(record, id=str(uuid.uuid4()))
        self.actions.append(stored)
        return stored

    async def list_actions(self, user_id, *, item_id=None, action=None, limit=50):
        found = [
            a
            for a in self.actions
            if a.user_id == user_id
            and (item_id is None or a.item_id == item_id)
            and (action is None or a.action == action)
        ]
        return list(reversed(found))[:limit]

    async def list_unapplied_actions(self, user_id, limit):
        pending = [a for a in self.actions if a.user_id == user_id and a.id not in self.applied]
        return pending[-limit:]

    async def mark_applied(self, action_id, user_id, *, connection=None):
        if action_id in self.applied:
            return False
        self.applied.add(action_id)
        return True

    async def get_sender(self, user_id, sender_email, *, connection=None):
        state = self.senders.get((user_id, sender_email))
        return replace(state) if state else None

    async def upsert_sender(self, user_id, state, interacted_at, *, connection=None):
        self.senders[(user_id, state.sender_email)] = replace(state)

    async def get_pattern_weight(self, user_id, pattern, *, connection=None):
        return self.weights.get((user_id, pattern), 1.0)

    async def upsert_pattern_weight(self, user_id, pattern, weight, *, connection=None):
        self.weights[(user_id, pattern)] = weight

    async def bump_learning_state(self, user_id, *, connection=None):
        self.version[user_id] = self.version.get(user_id, 0) + 1

    async def count_actions(self, user_id):
        counts = {}
        for a in self.actions:
            if a.user_id == user_id:
                counts[a.action.value] = counts.get(a.action.value, 0) + 1
        return counts

    async def recent_scored_actions(self, user_id, limit=1000):
        return [
            {"action": a.action.value, "item_score": a.item_score}
            for a in self.actions
            if a.user_id == user_id and a.item_score is not None
        ][:limit]

    async def pattern_effectiveness(self, user_id):
        return {}

    async def learned_state(self, user_id):
        return {
            "pattern_weights": {p: w for (u, p), w in self.weights.items() if u == user_id},
            "vip_sender_count": sum(
                1 for (u, _), s in self.senders.items() if u == user_id and s.vip_score >= 0.7
            ),
            "version": self.version.get(user_id, 0),
            "processed_actions": self.version.get(user_id, 0),
        }


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def job_repo():
    return FakeJobRepository()


@pytest.fixture
def item_repo():
    return FakeItemRepository()


@pytest.fixture
def score_repo():
    return FakeScoreRepository()


@pytest.fixture
def digest_repo():
    return FakeDigestRepository()


@pytest.fixture
def learning_repo():
    return FakeLearningRepository()


@pytest.fixture
def apply_auth_override(auth_override):
    def _apply(app):
        app.dependency_overrides[auth_dependency] = auth_override

    return _apply
