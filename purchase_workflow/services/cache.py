# purchase_workflow/services/cache.py
"""
Snapshot cache for purchase request reads (Upstash Redis REST API).

The cache is never touched from workflow logic: it subscribes to the
notification gateway and drops a request's snapshot whenever an event for
that request is published.
"""

import json
from typing import Optional

import httpx
import structlog

from purchase_workflow.config import settings
from purchase_workflow.services.event_gateway import WorkflowEvent

logger = structlog.get_logger()

# Shared client for every Redis call
_http = httpx.AsyncClient(
    limits=httpx.Limits(max_connections=20, max_keepalive_connections=10, keepalive_expiry=30)
)


class UpstashClient:
    def __init__(self):
        self.url = settings.UPSTASH_REDIS_REST_URL
        self.headers = {"Authorization": f"Bearer {settings.UPSTASH_REDIS_REST_TOKEN}"}

    async def get(self, key: str) -> Optional[str]:
        r = await _http.get(f"{self.url}/get/{key}", headers=self.headers)
        return r.json().get("result")

    async def set(self, key: str, value: str, ex: int = 300):
        # Values go in the body so JSON snapshots need no URL escaping
        await _http.post(
            f"{self.url}/set/{key}", params={"EX": ex}, content=value, headers=self.headers
        )

    async def delete(self, key: str):
        await _http.get(f"{self.url}/del/{key}", headers=self.headers)

    async def ping(self) -> bool:
        r = await _http.get(f"{self.url}/ping", headers=self.headers)
        return r.json().get("result") == "PONG"


cache = UpstashClient()


def request_cache_key(request_id) -> str:
    return f"purchase-request:{request_id}"


async def get_cached_snapshot(request_id) -> Optional[dict]:
    if not settings.cache_enabled:
        return None
    try:
        raw = await cache.get(request_cache_key(request_id))
    except httpx.HTTPError as e:
        logger.warning("request_cache_read_failed", request_id=str(request_id), error=str(e))
        return None
    return json.loads(raw) if raw else None


async def store_snapshot(request_id, snapshot: dict) -> None:
    if not settings.cache_enabled:
        return
    try:
        await cache.set(
            request_cache_key(request_id),
            json.dumps(snapshot, default=str),
            ex=settings.REQUEST_CACHE_TTL_SECONDS,
        )
    except httpx.HTTPError as e:
        logger.warning("request_cache_write_failed", request_id=str(request_id), error=str(e))


async def invalidate_on_event(event: WorkflowEvent) -> None:
    """Gateway subscriber: drop the snapshot of the request an event is about."""
    if not settings.cache_enabled:
        return
    await cache.delete(request_cache_key(event.request_id))
    parent_id = event.payload.get("parent_request_id")
    if parent_id:
        await cache.delete(request_cache_key(parent_id))
    logger.info("request_cache_invalidated", request_id=event.request_id)
