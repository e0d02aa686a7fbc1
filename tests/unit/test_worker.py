from unittest.mock import AsyncMock

import pytest

from app.jobs import worker


@pytest.fixture
def infra(monkeypatch):
    db = AsyncMock()
    redis = AsyncMock()
    monkeypatch.setattr(worker, "db_pool", db)
    monkeypatch.setattr(worker, "fast_redis", redis)
    return db, redis


@pytest.mark.asyncio
async def test_run_worker_runs_job(monkeypatch, infra):
    called = {"ok": False}

    async def dummy_job():
        called["ok"] = True

    monkeypatch.setitem(worker.JOB_REGISTRY, "dummy", dummy_job)

    await worker.run_worker("dummy")

    db, redis = infra
    assert called["ok"] is True
    db.initialize.assert_awaited_once()
    db.close.assert_awaited_once()
    redis.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_run_worker_survives_missing_redis(monkeypatch, infra):
    db, redis = infra
    redis.initialize.side_effect = RuntimeError("Redis connection failed")
    job = AsyncMock()
    monkeypatch.setitem(worker.JOB_REGISTRY, "dummy", job)

    await worker.run_worker("dummy")

    job.assert_awaited_once()


@pytest.mark.asyncio
async def test_run_worker_closes_resources_when_job_fails(monkeypatch, infra):
    db, _ = infra
    monkeypatch.setitem(worker.JOB_REGISTRY, "dummy", AsyncMock(side_effect=RuntimeError("boom")))

    with pytest.raises(RuntimeError):
        await worker.run_worker("dummy")

    db.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_run_worker_unknown_job(infra):
    with pytest.raises(ValueError):
        await worker.run_worker("missing")

    infra[0].initialize.assert_not_awaited()
