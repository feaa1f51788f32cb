"""
Transaction boundary for workflow operations.

    async with atomic(session, request_id) as events:
        ...mutate, flush, append WorkflowEvent...

Everything inside the block commits together or not at all. Events are
published to the gateway only after the commit succeeds.

Document numbers are allocated as max+1 without a lock, so two concurrent
operations can pick the same one. The loser's unique violation surfaces as
ConcurrentModification, which the caller may retry.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError
import structlog

from purchase_workflow.exceptions import ConcurrentModification
from purchase_workflow.services.event_gateway import WorkflowEvent, gateway
from purchase_workflow.services.numbering import is_number_collision

logger = structlog.get_logger()


@asynccontextmanager
async def atomic(
    session: AsyncSession, request_id: Optional[str] = None
) -> AsyncIterator[list[WorkflowEvent]]:
    events: list[WorkflowEvent] = []
    try:
        yield events
        await session.commit()
    except StaleDataError as exc:
        await session.rollback()
        logger.warning("concurrent_modification_detected", request_id=str(request_id))
        raise ConcurrentModification(
            "Purchase request was modified by another operation; reload and retry",
            request_id=request_id,
        ) from exc
    except IntegrityError as exc:
        await session.rollback()
        if not is_number_collision(exc):
            raise
        logger.warning("document_number_collision", request_id=str(request_id), error=str(exc.orig))
        raise ConcurrentModification(
            "Document number was taken by a concurrent operation; retry",
            request_id=request_id,
            details={"constraint": "document_number"},
        ) from exc
    except Exception:
        await session.rollback()
        raise

    for event in events:
        await gateway.publish(event)
