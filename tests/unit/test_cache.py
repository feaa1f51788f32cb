"""
Unit tests for purchase_workflow/services/cache.py

Tests: event-driven invalidation, disabled cache short-circuits, degraded reads.
"""

import json
import uuid
from unittest.mock import AsyncMock

import httpx
import pytest

from purchase_workflow.config import settings
from purchase_workflow.services import cache as cache_module
from purchase_workflow.services.event_gateway import EVENT_REQUEST_CREATED, WorkflowEvent


@pytest.fixture
def redis(monkeypatch):
    monkeypatch.setattr(settings, "UPSTASH_REDIS_REST_URL", "https://redis.test")
    fake = AsyncMock()
    monkeypatch.setattr(cache_module, "cache", fake)
    return fake


@pytest.mark.asyncio
async def test_event_drops_request_and_parent_snapshots(redis):
    child, parent = uuid.uuid4(), uuid.uuid4()
    event = WorkflowEvent(
        event_type=EVENT_REQUEST_CREATED,
        request_id=str(child),
        new_phase="solicitacao",
        payload={"parent_request_id": str(parent)},
    )

    await cache_module.invalidate_on_event(event)

    deleted = [call.args[0] for call in redis.delete.await_args_list]
    assert deleted == [
        cache_module.request_cache_key(child),
        cache_module.request_cache_key(parent),
    ]


@pytest.mark.asyncio
async def test_cached_snapshot_is_decoded(redis):
    request_id = uuid.uuid4()
    redis.get.return_value = json.dumps({"id": str(request_id), "current_phase": "cotacao"})

    snapshot = await cache_module.get_cached_snapshot(request_id)

    assert snapshot["current_phase"] == "cotacao"


@pytest.mark.asyncio
async def test_read_failure_falls_back_to_miss(redis):
    redis.get.side_effect = httpx.ConnectError("down")
    assert await cache_module.get_cached_snapshot(uuid.uuid4()) is None


@pytest.mark.asyncio
async def test_disabled_cache_is_never_called(monkeypatch):
    monkeypatch.setattr(settings, "UPSTASH_REDIS_REST_URL", "")
    fake = AsyncMock()
    monkeypatch.setattr(cache_module, "cache", fake)

    await cache_module.store_snapshot(uuid.uuid4(), {"id": "x"})
    assert await cache_module.get_cached_snapshot(uuid.uuid4()) is None

    fake.set.assert_not_awaited()
    fake.get.assert_not_awaited()
