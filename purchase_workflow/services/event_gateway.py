"""
Notification gateway: fans committed workflow events out to subscribers.

Events are published only after the owning transaction commits (see
unit_of_work.atomic). Delivery is best effort: a failing subscriber is logged
and never affects the committed state.

The live-update relay pushes events to an HTTP endpoint from a background
task with its own bounded queue and exponential backoff, so request handlers
never wait on the network.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)
import structlog

from purchase_workflow.config import settings

logger = structlog.get_logger()
_std_logger = logging.getLogger(__name__)

EVENT_REQUEST_CREATED = "purchase-request:created"
EVENT_REQUEST_UPDATED = "purchase-request:updated"
EVENT_PHASE_CHANGED = "purchase-request:phase-changed"


@dataclass(frozen=True)
class WorkflowEvent:
    event_type: str
    request_id: str
    new_phase: Optional[str]
    payload: dict = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> dict:
        return {
            "event_type": self.event_type,
            "request_id": self.request_id,
            "new_phase": self.new_phase,
            "payload": self.payload,
            "occurred_at": self.occurred_at.isoformat(),
        }


Subscriber = Callable[[WorkflowEvent], Awaitable[None]]


class NotificationGateway:
    def __init__(self):
        self._subscribers: list[Subscriber] = []

    def subscribe(self, handler: Subscriber) -> Subscriber:
        if handler not in self._subscribers:
            self._subscribers.append(handler)
        return handler

    def unsubscribe(self, handler: Subscriber) -> None:
        if handler in self._subscribers:
            self._subscribers.remove(handler)

    async def emit(
        self,
        event_type: str,
        request_id: str,
        new_phase: Optional[str],
        payload: Optional[dict] = None,
    ) -> WorkflowEvent:
        event = WorkflowEvent(
            event_type=event_type,
            request_id=str(request_id),
            new_phase=new_phase,
            payload=payload or {},
        )
        await self.publish(event)
        return event

    async def publish(self, event: WorkflowEvent) -> None:
        logger.info(
            "workflow_event_emitted",
            event_type=event.event_type,
            request_id=event.request_id,
            new_phase=event.new_phase,
            subscribers=len(self._subscribers),
        )
        for handler in list(self._subscribers):
            try:
                await handler(event)
            except Exception as e:
                logger.error(
                    "workflow_event_delivery_failed",
                    event_type=event.event_type,
                    request_id=event.request_id,
                    subscriber=getattr(handler, "__qualname__", repr(handler)),
                    error=str(e),
                )


class _RelayRetryableError(Exception):
    """Raised for 5xx or network errors that warrant a retry."""


class EventRelay:
    """Cancellable background pusher for live-update clients."""

    def __init__(
        self,
        url: str,
        token: Optional[str] = None,
        max_attempts: int = 5,
        backoff_min: float = 1.0,
        backoff_max: float = 30.0,
        queue_maxsize: int = 1000,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.headers = {"Authorization": f"Bearer {token}"} if token else {}
        self.max_attempts = max_attempts
        self.backoff_min = backoff_min
        self.backoff_max = backoff_max
        self._queue: asyncio.Queue[WorkflowEvent] = asyncio.Queue(maxsize=queue_maxsize)
        self._client = client
        self._task: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(cls) -> "EventRelay":
        return cls(
            url=settings.REALTIME_WEBHOOK_URL,
            token=settings.REALTIME_WEBHOOK_TOKEN,
            max_attempts=settings.EVENT_RETRY_ATTEMPTS,
            backoff_min=settings.EVENT_BACKOFF_MIN_SECONDS,
            backoff_max=settings.EVENT_BACKOFF_MAX_SECONDS,
            queue_maxsize=settings.EVENT_QUEUE_MAXSIZE,
        )

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def enqueue(self, event: WorkflowEvent) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(
                "event_relay_queue_full",
                event_type=event.event_type,
                request_id=event.request_id,
            )

    def start(self) -> None:
        if self.running:
            return
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(10.0, connect=5.0))
        self._task = asyncio.create_task(self._run(), name="event-relay")
        logger.info("event_relay_started", url=self.url)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self._client is not None:
            await self._client.aclose()
            self._client = None
        logger.info("event_relay_stopped", dropped=self._queue.qsize())

    async def _run(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self.deliver(event)
            except RetryError:
                logger.error(
                    "event_relay_gave_up",
                    event_type=event.event_type,
                    request_id=event.request_id,
                    attempts=self.max_attempts,
                )
            finally:
                self._queue.task_done()

    async def deliver(self, event: WorkflowEvent) -> None:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(_RelayRetryableError),
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=1, min=self.backoff_min, max=self.backoff_max),
            before_sleep=before_sleep_log(_std_logger, logging.WARNING),
        ):
            with attempt:
                await self._post(event)

    async def _post(self, event: WorkflowEvent) -> None:
        try:
            response = await self._client.post(
                self.url, json=event.to_dict(), headers=self.headers
            )
        except (httpx.ConnectError, httpx.TimeoutException, httpx.NetworkError) as exc:
            logger.warning("event_relay_network_error_retrying", error=str(exc))
            raise _RelayRetryableError(str(exc)) from exc

        if response.status_code >= 500:
            logger.warning("event_relay_5xx_retrying", status_code=response.status_code)
            raise _RelayRetryableError(f"relay endpoint returned {response.status_code}")

        if response.status_code >= 400:
            # 4xx: the endpoint refused the event
            logger.error(
                "event_relay_rejected",
                status_code=response.status_code,
                response=response.text[:500],
                request_id=event.request_id,
            )
            return

        logger.info(
            "event_relay_delivered",
            event_type=event.event_type,
            request_id=event.request_id,
        )


# Module-level singleton shared by the services and the app lifespan
gateway = NotificationGateway()
