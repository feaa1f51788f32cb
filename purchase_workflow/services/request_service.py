"""Purchase request persistence: creation, loading, row locking and listing."""

import uuid
from typing import Iterable, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from purchase_workflow.exceptions import EntityNotFound
from purchase_workflow.models.purchase_request import PurchaseRequest, RequestItem
from purchase_workflow.schemas.auth import Actor
from purchase_workflow.schemas.purchase_request import PurchaseRequestCreate
from purchase_workflow.services import approval_policy
from purchase_workflow.services.approval_config_service import resolve_threshold_source
from purchase_workflow.services.audit_service import create_audit_log
from purchase_workflow.services.event_gateway import EVENT_REQUEST_CREATED, WorkflowEvent
from purchase_workflow.services.numbering import REQUEST_PREFIX, next_document_number
from purchase_workflow.services.phase_registry import INITIAL_PHASE
from purchase_workflow.services.unit_of_work import atomic

logger = structlog.get_logger()


def as_uuid(value, entity: str = "PurchaseRequest") -> uuid.UUID:
    """Parse an identifier from the outside; malformed ids are simply not found."""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError):
        raise EntityNotFound(
            f"{entity} {value} not found",
            details={"entity": entity, "id": str(value)},
        )


async def get_request(session: AsyncSession, request_id) -> PurchaseRequest:
    pr_id = as_uuid(request_id)
    pr = await session.get(PurchaseRequest, pr_id)
    if pr is None:
        raise EntityNotFound(
            f"Purchase request {request_id} not found",
            request_id=pr_id,
            details={"entity": "PurchaseRequest"},
        )
    return pr


async def lock_request(session: AsyncSession, request_id) -> PurchaseRequest:
    """Load the request row under SELECT ... FOR UPDATE, refreshing any stale copy."""
    pr_id = as_uuid(request_id)
    result = await session.execute(
        select(PurchaseRequest)
        .where(PurchaseRequest.id == pr_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    pr = result.scalar_one_or_none()
    if pr is None:
        raise EntityNotFound(
            f"Purchase request {request_id} not found",
            request_id=pr_id,
            details={"entity": "PurchaseRequest"},
        )
    return pr


async def request_version(session: AsyncSession, request_id) -> Optional[int]:
    """Committed version of the row, read past the session's identity map."""
    result = await session.execute(
        select(PurchaseRequest.version).where(PurchaseRequest.id == as_uuid(request_id))
    )
    return result.scalar_one_or_none()


async def get_request_items(
    session: AsyncSession, request_id, include_transferred: bool = True
) -> list[RequestItem]:
    q = select(RequestItem).where(RequestItem.purchase_request_id == as_uuid(request_id))
    if not include_transferred:
        q = q.where(RequestItem.is_transferred == False)  # noqa: E712
    result = await session.execute(q.order_by(RequestItem.line_number))
    return list(result.scalars().all())


def items_total_cents(items: Iterable) -> int:
    return sum(
        int(item["requested_quantity"]) * int(item.get("estimated_unit_price_cents") or 0)
        for item in items
    )


async def insert_request(
    session: AsyncSession,
    requester_id: uuid.UUID,
    items: list[dict],
    cost_center_id: Optional[uuid.UUID] = None,
    category: str = "produto",
    urgency: str = "medio",
    justification: Optional[str] = None,
    parent_request_id: Optional[uuid.UUID] = None,
) -> tuple[PurchaseRequest, list[RequestItem]]:
    """
    Insert a request in the initial phase with its items.

    The approval requirement is evaluated against the request's own total and
    the active configuration. Uses session.flush(); caller owns the transaction.
    """
    total_cents = items_total_cents(items)
    requirement = approval_policy.evaluate(
        total_cents, await resolve_threshold_source(session)
    )

    pr = PurchaseRequest(
        request_number=await next_document_number(
            session, PurchaseRequest.request_number, REQUEST_PREFIX
        ),
        requester_id=requester_id,
        cost_center_id=cost_center_id,
        category=category,
        urgency=urgency,
        justification=justification,
        total_cents=total_cents,
        current_phase=INITIAL_PHASE.value,
        requires_dual_approval=requirement.requires_dual_approval,
        approval_threshold_cents=requirement.threshold_cents,
        parent_request_id=parent_request_id,
    )
    session.add(pr)
    await session.flush()

    created: list[RequestItem] = []
    for idx, item in enumerate(items, start=1):
        ri = RequestItem(
            purchase_request_id=pr.id,
            line_number=idx,
            product_code=item.get("product_code"),
            description=item["description"],
            unit=item.get("unit") or "UN",
            requested_quantity=item["requested_quantity"],
            estimated_unit_price_cents=item.get("estimated_unit_price_cents") or 0,
            technical_specification=item.get("technical_specification"),
        )
        session.add(ri)
        created.append(ri)
    await session.flush()

    return pr, created


async def create_purchase_request(
    session: AsyncSession, actor: Actor, body: PurchaseRequestCreate
) -> PurchaseRequest:
    async with atomic(session) as events:
        pr, items = await insert_request(
            session,
            requester_id=actor.id,
            items=[item.model_dump() for item in body.items],
            cost_center_id=body.cost_center_id,
            category=body.category,
            urgency=body.urgency,
            justification=body.justification,
        )

        await create_audit_log(
            session,
            actor_id=actor.id,
            action="PR_CREATED",
            entity_type="PurchaseRequest",
            entity_id=pr.id,
            after_state={
                "request_number": pr.request_number,
                "current_phase": pr.current_phase,
                "total_cents": pr.total_cents,
                "requires_dual_approval": pr.requires_dual_approval,
            },
            actor_email=actor.email,
        )
        events.append(WorkflowEvent(
            event_type=EVENT_REQUEST_CREATED,
            request_id=str(pr.id),
            new_phase=pr.current_phase,
            payload={"request_number": pr.request_number, "total_cents": pr.total_cents},
        ))

    logger.info(
        "purchase_request_created",
        request_id=str(pr.id),
        request_number=pr.request_number,
        total_cents=pr.total_cents,
        items=len(items),
    )
    return pr


async def list_purchase_requests(
    session: AsyncSession,
    phase: Optional[str] = None,
    requester_id: Optional[uuid.UUID] = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[PurchaseRequest], int]:
    q = select(PurchaseRequest)
    count_q = select(func.count(PurchaseRequest.id))

    if phase:
        q = q.where(PurchaseRequest.current_phase == phase)
        count_q = count_q.where(PurchaseRequest.current_phase == phase)
    if requester_id:
        q = q.where(PurchaseRequest.requester_id == requester_id)
        count_q = count_q.where(PurchaseRequest.requester_id == requester_id)

    total = (await session.execute(count_q)).scalar() or 0
    result = await session.execute(
        q.order_by(PurchaseRequest.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars().all()), total
